from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession

from libs.db.config import AsyncSessionLocal


async def get_async_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency that yields an async database session.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


async def release_unchanged(db: AsyncSession) -> None:
    """
    End a transaction whose conditional writes matched no rows.

    Committing leaves instances the caller already loaded usable
    (``expire_on_commit`` is off); a rollback would expire all of them.
    Sessions holding unflushed changes are rolled back instead.
    """
    if db.new or db.dirty or db.deleted:
        await db.rollback()
    else:
        await db.commit()
