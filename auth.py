import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from passlib.context import CryptContext

from database import User
from schemas import PasswordChange, Token, UserCreate, UserLogin, UserOut, UserUpdate
from store import LedgerStore, get_store

logger = logging.getLogger(__name__)

auth_router = APIRouter()
users_router = APIRouter()
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="auth/login")
pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return pwd_context.verify(password, password_hash)


@dataclass(frozen=True)
class Identity:
    """An authenticated caller."""

    user_id: int


class TokenAuthenticator:
    def __init__(self, secret_key: str, algorithm: str, expire_minutes: int):
        self.secret_key = secret_key
        self.algorithm = algorithm
        self.expire_minutes = expire_minutes

    def issue(self, user_id: int) -> str:
        expire = datetime.now(timezone.utc) + timedelta(minutes=self.expire_minutes)
        to_encode = {"sub": str(user_id), "exp": expire}
        return jwt.encode(to_encode, self.secret_key, algorithm=self.algorithm)

    def resolve(self, token: str) -> Optional[Identity]:
        try:
            payload = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except jwt.ExpiredSignatureError:
            logger.warning("Rejected expired token")
            return None
        except jwt.PyJWTError:
            logger.warning("Rejected invalid token")
            return None
        subject = payload.get("sub")
        try:
            return Identity(user_id=int(subject))
        except (TypeError, ValueError):
            logger.warning("Rejected token with subject %r", subject)
            return None


def get_authenticator(request: Request) -> TokenAuthenticator:
    return request.app.state.authenticator


async def get_current_identity(
    token: str = Depends(oauth2_scheme),
    authenticator: TokenAuthenticator = Depends(get_authenticator),
    store: LedgerStore = Depends(get_store),
) -> Identity:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    identity = authenticator.resolve(token)
    if identity is None or store.get_user(identity.user_id) is None:
        raise credentials_exception
    return identity


@auth_router.post("/register", response_model=UserOut, status_code=status.HTTP_201_CREATED)
async def register(user: UserCreate, store: LedgerStore = Depends(get_store)):
    if store.find_user_by_email(user.email):
        raise HTTPException(status_code=400, detail="Email already registered")

    new_user = store.add(
        User(name=user.name, email=user.email, password_hash=hash_password(user.password))
    )
    logger.info("Registered user %s", new_user.id)
    return new_user


@auth_router.post("/login", response_model=Token)
async def login(
    user: UserLogin,
    store: LedgerStore = Depends(get_store),
    authenticator: TokenAuthenticator = Depends(get_authenticator),
):
    db_user = store.find_user_by_email(user.email)
    if not db_user or not verify_password(user.password, db_user.password_hash):
        logger.warning("Failed login for %s", user.email)
        raise HTTPException(status_code=401, detail="Invalid credentials")

    return Token(access_token=authenticator.issue(db_user.id))


@auth_router.post("/logout")
async def logout():
    return {"message": "Logged out; discard the token on the client"}


@users_router.get("/me", response_model=UserOut)
async def read_me(
    identity: Identity = Depends(get_current_identity),
    store: LedgerStore = Depends(get_store),
):
    return store.get_user(identity.user_id)


@users_router.put("/me", response_model=UserOut)
async def update_me(
    update: UserUpdate,
    identity: Identity = Depends(get_current_identity),
    store: LedgerStore = Depends(get_store),
):
    user = store.get_user(identity.user_id)
    if update.email is not None:
        existing = store.find_user_by_email(update.email)
        if existing and existing.id != user.id:
            raise HTTPException(status_code=400, detail="Email already registered")
        user.email = update.email
    if update.name is not None:
        user.name = update.name

    logger.info("Updated profile of user %s", user.id)
    return store.save(user)


@users_router.put("/me/password")
async def change_password(
    change: PasswordChange,
    identity: Identity = Depends(get_current_identity),
    store: LedgerStore = Depends(get_store),
):
    user = store.get_user(identity.user_id)
    if not verify_password(change.old_password, user.password_hash):
        logger.warning("Rejected password change for user %s", user.id)
        raise HTTPException(status_code=401, detail="Old password is incorrect")

    user.password_hash = hash_password(change.new_password)
    store.save(user)
    logger.info("Changed password of user %s", user.id)
    return {"message": "Password changed successfully"}
