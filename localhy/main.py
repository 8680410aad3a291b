import logging
from dotenv import load_dotenv
from fastapi import FastAPI
from mangum import Mangum
from starlette.middleware.cors import CORSMiddleware

load_dotenv("localhy/.env")

from localhy import containers  # noqa: E402
from localhy.config import settings  # noqa: E402
from localhy.core.exception_handlers import register_exception_handlers  # noqa: E402
from localhy.core.logging_middleware import LoggingMiddleware  # noqa: E402
from localhy.logging_config import setup_logging  # noqa: E402
from localhy.routers import (  # noqa: E402
    credit_router,
    health_router,
    notification_router,
    paid_action_router,
    webhook_router,
)

setup_logging(settings.LOG_LEVEL, settings.LOG_FORMAT)
logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.APP_NAME,
        debug=settings.DEBUG,
        docs_url=None if settings.is_production else "/docs",
    )
    app.container = containers.Container()  # type: ignore

    app.add_middleware(LoggingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials="*" not in settings.CORS_ORIGINS,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    @app.get("/")
    def hello() -> dict:
        return {"message": settings.APP_NAME}

    app.include_router(health_router.router, prefix=settings.API_V1_STR)
    app.include_router(credit_router.router, prefix=settings.API_V1_STR)
    app.include_router(paid_action_router.router, prefix=settings.API_V1_STR)
    app.include_router(webhook_router.router, prefix=settings.API_V1_STR)
    app.include_router(notification_router.router, prefix=settings.API_V1_STR)

    logger.info(f"{settings.APP_NAME} started ({settings.ENVIRONMENT})")
    return app


app = create_app()

handler = Mangum(app)
