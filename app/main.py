import logging

from fastapi import FastAPI

from app.api.router import api_router
from app.core.config import Settings, settings
from app.core.errors import register_exception_handlers
from app.core.stage_machine import TRANSITION_TABLE, validate_transition_table
from app.middleware.logging import RequestLoggingMiddleware
from app.services.email import EmailSender, build_email_sender
from app.webhooks.rate_limit import RateLimiter

logger = logging.getLogger("rp.app")


def create_app(app_settings: Settings | None = None, *, email_sender: EmailSender | None = None) -> FastAPI:
    app_settings = app_settings or settings
    logging.basicConfig(level=app_settings.log_level.upper())
    validate_transition_table(TRANSITION_TABLE)

    app = FastAPI(
        title=app_settings.app_name,
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.state.settings = app_settings
    app.state.rate_limiter = RateLimiter(
        limit=app_settings.webhook_rate_limit,
        window_seconds=app_settings.webhook_rate_limit_window_seconds,
    )
    app.state.email_sender = email_sender or build_email_sender(app_settings)

    app.add_middleware(RequestLoggingMiddleware)
    register_exception_handlers(app)

    @app.get("/health")
    async def health_check():
        return {"status": "ok", "environment": app_settings.environment}

    app.include_router(api_router)

    if app_settings.webhook_dev_bypass:
        logger.warning("webhook_dev_bypass_enabled", extra={"environment": app_settings.environment})
    if not app_settings.webhook_secret and not app_settings.webhook_dev_bypass:
        logger.warning("webhook_secret_missing")
    logger.info("transition_table_validated", extra={"rules": len(TRANSITION_TABLE)})
    return app


app = create_app()
