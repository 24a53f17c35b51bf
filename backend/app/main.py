"""
FastAPI application entry point.

Uses structured logging from issue_watcher.logging. The API only records
work; analysis, pagination and email run in the Celery workers.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from issue_watcher.config import get_settings
from issue_watcher.db import db
from issue_watcher.logging import RequestLoggingMiddleware, configure_logging, get_logger

from .error_handlers import register_exception_handlers
from .routers import reports as reports_router

settings = get_settings()
configure_logging(level="DEBUG" if settings.debug else settings.log_level)
logger = get_logger("api")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("app_startup", app_name=settings.app_name)

    config_errors, config_warnings = settings.validate_production_config()
    for warning in config_warnings:
        logger.warning("config_warning", message=warning)
    for error in config_errors:
        logger.error("config_error", message=error)

    db.initialize(settings.database_url)
    logger.info("database_initialized")

    yield

    logger.info("app_shutdown")


def create_app() -> FastAPI:
    api_prefix = f"{settings.api_prefix}/v1"

    app = FastAPI(title=settings.app_name, debug=settings.debug, lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Accept", "Origin", "X-User-Email", "X-Request-ID"],
        expose_headers=["X-Request-ID"],
    )
    app.add_middleware(RequestLoggingMiddleware)

    register_exception_handlers(app)

    @app.get("/health", tags=["health"])
    def health_check():
        """Liveness check."""
        return {"status": "ok"}

    @app.get("/health/ready", tags=["health"])
    def readiness_check():
        """Readiness: 503 until the database answers."""
        database = db.health_check() if db.is_initialized else {"healthy": False}
        if not database.get("healthy"):
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                content={"status": "not_ready", "checks": {"database": False}},
            )
        return {"status": "ready", "checks": {"database": True}}

    app.include_router(reports_router.router, prefix=api_prefix)

    return app


app = create_app()
