from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from libs.common.config import get_settings

settings = get_settings()


def build_engine(url: str, **overrides) -> AsyncEngine:
    """Create an async engine with pool settings suited to the backend.

    SQLite (tests, local runs) gets a busy timeout instead of pool sizing so
    concurrent writers wait for the lock rather than failing immediately.
    """
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"timeout": 15}}
    else:
        kwargs = {
            "pool_pre_ping": True,  # Test connections before using
            "pool_size": settings.DB_POOL_SIZE,
            "max_overflow": settings.DB_MAX_OVERFLOW,
            "pool_timeout": settings.DB_POOL_TIMEOUT,
            "pool_recycle": settings.DB_POOL_RECYCLE,
        }
    kwargs.update(overrides)
    return create_async_engine(url, future=True, **kwargs)


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=bind, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )


engine = build_engine(settings.DATABASE_URL)

AsyncSessionLocal = build_session_factory(engine)
