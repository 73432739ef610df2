import logging

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from auth import TokenAuthenticator, auth_router, users_router
from config import Settings, configure_logging
from database import Base, build_engine, build_session_factory
from reports import report_router
from router import router

logger = logging.getLogger(__name__)


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": jsonable_encoder(exc.errors())},
    )


def create_app(settings: Settings = None) -> FastAPI:
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)

    engine = build_engine(settings.database_url)
    Base.metadata.create_all(bind=engine)

    app = FastAPI(title="Personal Finance Tracker API")
    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = build_session_factory(engine)
    app.state.authenticator = TokenAuthenticator(
        settings.secret_key, settings.algorithm, settings.access_token_expire_minutes
    )
    app.add_exception_handler(RequestValidationError, validation_exception_handler)

    app.include_router(auth_router, prefix="/auth", tags=["authentication"])
    app.include_router(users_router, prefix="/users", tags=["users"])
    app.include_router(router, tags=["ledger"])
    app.include_router(report_router, prefix="/reports", tags=["reports"])

    @app.get("/")
    def home():
        return {"message": "Welcome to Personal Finance Tracker API"}

    logger.info(
        "App ready (database=%s, notify_policy=%s)",
        engine.url.render_as_string(hide_password=True),
        settings.notify_policy,
    )
    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run(app, host="127.0.0.1", port=8000)
