"""Unit tests for bounded store retries."""

import pytest
from libs.common.errors import ConcurrencyConflict, TransientStoreError
from libs.common.retry import run_with_store_retry, translate_store_errors
from services.impact_service.errors import AlreadyUsed
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError


class _Flaky:
    def __init__(self, failures):
        self.failures = list(failures)
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.failures:
            raise self.failures.pop(0)
        return "done"


@pytest.mark.asyncio
@pytest.mark.unit
async def test_retryable_errors_are_retried(db_session):
    op = _Flaky([ConcurrencyConflict("lost"), TransientStoreError("down")])

    result = await run_with_store_retry(db_session, op, backoff_seconds=0)

    assert result == "done"
    assert op.calls == 3


@pytest.mark.asyncio
@pytest.mark.unit
async def test_gives_up_after_attempts(db_session):
    op = _Flaky([ConcurrencyConflict("1"), ConcurrencyConflict("2")])

    with pytest.raises(ConcurrencyConflict):
        await run_with_store_retry(db_session, op, attempts=2, backoff_seconds=0)
    assert op.calls == 2


@pytest.mark.asyncio
@pytest.mark.unit
async def test_terminal_errors_surface_immediately(db_session):
    op = _Flaky([AlreadyUsed("used")])

    with pytest.raises(AlreadyUsed):
        await run_with_store_retry(db_session, op, backoff_seconds=0)
    assert op.calls == 1


@pytest.mark.asyncio
@pytest.mark.unit
async def test_driver_errors_are_translated_and_retried(db_session):
    op = _Flaky([OperationalError("UPDATE", {}, Exception("database is locked"))])

    assert await run_with_store_retry(db_session, op, backoff_seconds=0) == "done"
    assert op.calls == 2


@pytest.mark.unit
def test_translate_store_errors():
    with pytest.raises(ConcurrencyConflict):
        with translate_store_errors():
            raise StaleDataError("row changed")
    with pytest.raises(TransientStoreError):
        with translate_store_errors():
            raise OperationalError("SELECT 1", {}, Exception("gone"))
    with pytest.raises(KeyError):
        with translate_store_errors():
            raise KeyError("untouched")
