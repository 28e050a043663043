from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import Settings
from app.db.session import get_session
from app.services.email import EmailSender
from app.webhooks.rate_limit import RateLimiter


async def get_db_session() -> AsyncSession:
    async for session in get_session():
        yield session


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_rate_limiter(request: Request) -> RateLimiter:
    return request.app.state.rate_limiter


def get_email_sender(request: Request) -> EmailSender:
    return request.app.state.email_sender
