"""Bounded retry for store operations.

Only ``TransientStoreError`` and ``ConcurrencyConflict`` are retried; every
other error propagates on the first raise. Low-level SQLAlchemy failures are
translated into those two kinds first.
"""

import asyncio
from contextlib import contextmanager
from typing import Awaitable, Callable, Iterator, Optional, TypeVar

from sqlalchemy.exc import DisconnectionError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from libs.common.config import get_settings
from libs.common.errors import ConcurrencyConflict, ServiceError, TransientStoreError
from libs.common.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@contextmanager
def translate_store_errors() -> Iterator[None]:
    """Re-raise driver-level failures as retryable service errors."""
    try:
        yield
    except StaleDataError as exc:
        raise ConcurrencyConflict(str(exc)) from exc
    except (OperationalError, DisconnectionError, InterfaceError) as exc:
        raise TransientStoreError(str(exc.orig or exc)) from exc


async def run_with_store_retry(
    db: AsyncSession,
    operation: Callable[[], Awaitable[T]],
    *,
    attempts: Optional[int] = None,
    backoff_seconds: Optional[float] = None,
    label: str = "store operation",
) -> T:
    """Run ``operation`` and re-run it from scratch on retryable failures.

    The session is rolled back between attempts so each retry starts from a
    fresh read of the store.
    """
    settings = get_settings()
    attempts = attempts or settings.STORE_RETRY_ATTEMPTS
    if backoff_seconds is None:
        backoff_seconds = settings.STORE_RETRY_BACKOFF_SECONDS

    for attempt in range(1, attempts + 1):
        try:
            with translate_store_errors():
                return await operation()
        except ServiceError as exc:
            if not exc.retryable or attempt >= attempts:
                raise
            await db.rollback()
            delay = backoff_seconds * (2 ** (attempt - 1))
            logger.info(
                "%s hit %s (attempt %d/%d), retrying in %.3fs",
                label,
                exc.code,
                attempt,
                attempts,
                delay,
            )
            if delay:
                await asyncio.sleep(delay)

    raise AssertionError("unreachable")
