from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from app.core.config import Settings, settings


def build_engine(app_settings: Settings) -> AsyncEngine:
    return create_async_engine(
        app_settings.database_url,
        echo=app_settings.database_echo,
        pool_pre_ping=app_settings.database_pool_pre_ping,
    )


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=bind, expire_on_commit=False, autoflush=False)


engine = build_engine(settings)
SessionLocal = build_session_factory(engine)


async def get_session() -> AsyncSession:
    async with SessionLocal() as session:
        yield session
