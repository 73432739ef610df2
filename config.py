import logging
import os
from dataclasses import dataclass
from decimal import Decimal

DEFAULT_DATABASE_URL = "sqlite:///./finance.db"
DEFAULT_SECRET_KEY = "change-me-finance-tracker-signing-key"
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = 60 * 72  # 3 days
NEAR_LIMIT_RATIO = Decimal("0.8")
NOTIFY_POLICIES = ("always", "on_transition")

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


@dataclass
class Settings:
    database_url: str = DEFAULT_DATABASE_URL
    secret_key: str = DEFAULT_SECRET_KEY
    algorithm: str = ALGORITHM
    access_token_expire_minutes: int = ACCESS_TOKEN_EXPIRE_MINUTES
    notify_policy: str = "always"
    near_limit_ratio: Decimal = NEAR_LIMIT_RATIO
    log_level: str = "INFO"

    def __post_init__(self):
        if self.notify_policy not in NOTIFY_POLICIES:
            raise ValueError(
                f"Invalid notify policy {self.notify_policy!r}. "
                f"Allowed values: {list(NOTIFY_POLICIES)}"
            )
        self.near_limit_ratio = Decimal(str(self.near_limit_ratio))
        if not Decimal("0") < self.near_limit_ratio <= Decimal("1"):
            raise ValueError("near_limit_ratio must be in (0, 1]")

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            database_url=os.getenv("DATABASE_URL", "").strip() or DEFAULT_DATABASE_URL,
            secret_key=os.getenv("SECRET_KEY", DEFAULT_SECRET_KEY),
            access_token_expire_minutes=int(
                os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", ACCESS_TOKEN_EXPIRE_MINUTES)
            ),
            notify_policy=os.getenv("BUDGET_NOTIFY_POLICY", "always").strip().lower(),
            near_limit_ratio=Decimal(
                os.getenv("BUDGET_NEAR_LIMIT_RATIO", str(NEAR_LIMIT_RATIO))
            ),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=level, format=LOG_FORMAT)
