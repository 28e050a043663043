import os

os.environ.setdefault("RP_DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("RP_ENVIRONMENT", "test")
os.environ.setdefault("RP_WEBHOOK_SECRET", "test-secret")

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from app.api import deps
from app.core.config import Settings
from app.db.session import build_session_factory
from app.main import create_app
from app.models import Base
from app.services.email import LoggingEmailSender
from tests.payloads import WEBHOOK_BASE, WEBHOOK_SECRET, encode


@pytest.fixture()
async def async_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture()
def session_factory(async_engine):
    return build_session_factory(async_engine)


@pytest.fixture()
async def db_session(session_factory):
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture()
def test_settings() -> Settings:
    return Settings(
        database_url="sqlite+aiosqlite:///:memory:",
        environment="test",
        webhook_secret=WEBHOOK_SECRET,
        webhook_ip_allowlist="0.0.0.0/0",
        webhook_dev_bypass=False,
        webhook_rate_limit=1000,
        webhook_rate_limit_window_seconds=60,
        gc_threshold=800,
        gc_scale=1000,
    )


@pytest.fixture()
def email_sender() -> LoggingEmailSender:
    return LoggingEmailSender()


@pytest.fixture()
def app(test_settings, session_factory, email_sender):
    application = create_app(test_settings, email_sender=email_sender)

    async def _override_session():
        async with session_factory() as session:
            yield session

    application.dependency_overrides[deps.get_db_session] = _override_session
    yield application
    application.state.rate_limiter.clear()


@pytest.fixture()
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http:
        yield http


@pytest.fixture()
def post_webhook(client):
    async def _post(webhook_type: str, payload: dict, *, secret: str | None = WEBHOOK_SECRET, headers=None):
        request_headers = {"content-type": "application/json", "x-forwarded-for": "203.0.113.10"}
        if secret is not None:
            request_headers["x-webhook-secret"] = secret
        request_headers.update(headers or {})
        return await client.post(f"{WEBHOOK_BASE}/{webhook_type}", content=encode(payload), headers=request_headers)

    return _post


@pytest.fixture()
def count_rows(session_factory):
    async def _count(model, *criteria) -> int:
        async with session_factory() as session:
            stmt = select(func.count()).select_from(model)
            if criteria:
                stmt = stmt.where(*criteria)
            return int((await session.execute(stmt)).scalar_one())

    return _count


@pytest.fixture()
def fetch_one(session_factory):
    async def _fetch(model, *criteria):
        async with session_factory() as session:
            return (await session.execute(select(model).where(*criteria))).scalars().first()

    return _fetch


@pytest.fixture()
def fetch_all(session_factory):
    async def _fetch(model, *criteria, order_by=None):
        async with session_factory() as session:
            stmt = select(model).where(*criteria)
            if order_by is not None:
                stmt = stmt.order_by(order_by)
            return list((await session.execute(stmt)).scalars().all())

    return _fetch
