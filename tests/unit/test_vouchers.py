"""Unit tests for voucher redemption and consumption."""

import asyncio
import uuid
from datetime import datetime, timedelta, timezone

import pytest
from services.impact_service.errors import (
    AlreadyUsed,
    Expired,
    InsufficientPoints,
    NotFound,
    Unauthorized,
    ValidationError,
)
from services.impact_service.models import RewardType, VoucherStatus
from services.impact_service.services import vouchers
from services.impact_service.services.accounts import get_account
from tests.factories import AccountFactory, VoucherFactory


async def _account(db, user, points):
    db.add(AccountFactory.create(user_auth_id=user, total_points=points))
    await db.commit()


# ---------------------------------------------------------------------------
# Redeem
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_redeem_debits_and_issues_active_voucher(db_session):
    await _account(db_session, "saver", 500)
    now = datetime(2026, 5, 1, 12, 0, tzinfo=timezone.utc)

    voucher = await vouchers.redeem_reward(db_session, "saver", "early_access", now=now)

    assert voucher.status == VoucherStatus.ACTIVE
    assert voucher.points_spent == 400
    assert voucher.reward_type == RewardType.ACCESS
    assert voucher.code.startswith("RKS-EARLY_ACCESS-")
    assert voucher.expires_at is not None
    assert (await get_account(db_session, "saver")).total_points == 100


@pytest.mark.asyncio
@pytest.mark.unit
async def test_reward_without_validity_never_expires(db_session):
    await _account(db_session, "collector", 1000)

    voucher = await vouchers.redeem_reward(db_session, "collector", "exclusive_merch")

    assert voucher.expires_at is None
    assert (await get_account(db_session, "collector")).total_points == 0


@pytest.mark.asyncio
@pytest.mark.unit
async def test_insufficient_points_leaves_balance(db_session):
    await _account(db_session, "short", 150)

    with pytest.raises(InsufficientPoints) as exc_info:
        await vouchers.redeem_reward(db_session, "short", "discount_10")

    assert exc_info.value.required == 200
    assert exc_info.value.available == 150
    assert (await get_account(db_session, "short")).total_points == 150
    assert await vouchers.list_vouchers(db_session, "short") == []


@pytest.mark.asyncio
@pytest.mark.unit
async def test_refused_redeem_keeps_loaded_instances_usable(db_session):
    await _account(db_session, "spender", 250)
    first = await vouchers.redeem_reward(db_session, "spender", "discount_10")

    with pytest.raises(InsufficientPoints):
        await vouchers.redeem_reward(db_session, "spender", "discount_10")

    assert first.status == VoucherStatus.ACTIVE
    assert first.points_spent == 200
    assert (await get_account(db_session, "spender")).total_points == 50


@pytest.mark.asyncio
@pytest.mark.unit
async def test_redeem_guards(db_session):
    with pytest.raises(NotFound):
        await vouchers.redeem_reward(db_session, "ghost", "discount_10")
    with pytest.raises(NotFound):
        await vouchers.redeem_reward(db_session, "ghost", "no_such_reward")
    with pytest.raises(ValidationError):
        await vouchers.redeem(db_session, "ghost", "custom", -1)


@pytest.mark.asyncio
@pytest.mark.unit
async def test_idempotency_key_replays_first_voucher(db_session):
    await _account(db_session, "retrier", 600)

    first = await vouchers.redeem_reward(
        db_session, "retrier", "discount_10", idempotency_key="redeem-1"
    )
    second = await vouchers.redeem_reward(
        db_session, "retrier", "discount_10", idempotency_key="redeem-1"
    )

    assert second.id == first.id
    assert (await get_account(db_session, "retrier")).total_points == 400

    await _account(db_session, "other", 600)
    with pytest.raises(ValidationError):
        await vouchers.redeem_reward(
            db_session, "other", "discount_10", idempotency_key="redeem-1"
        )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_concurrent_redeems_never_overdraw(session_factory, db_session):
    await _account(db_session, "racer", 500)

    async def _redeem():
        async with session_factory() as session:
            return await vouchers.redeem_reward(session, "racer", "early_access")

    results = await asyncio.gather(_redeem(), _redeem(), return_exceptions=True)

    issued = [r for r in results if not isinstance(r, Exception)]
    refused = [r for r in results if isinstance(r, InsufficientPoints)]
    assert len(issued) == 1
    assert len(refused) == 1
    assert (await get_account(db_session, "racer")).total_points == 100


# ---------------------------------------------------------------------------
# Consume
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_consume_marks_used(db_session):
    voucher = VoucherFactory.create("holder")
    db_session.add(voucher)
    await db_session.commit()

    used = await vouchers.consume(db_session, voucher.id, "holder", "event registration")

    assert used.status == VoucherStatus.USED
    assert used.used_for == "event registration"
    assert used.used_at is not None

    with pytest.raises(AlreadyUsed):
        await vouchers.consume(db_session, voucher.id, "holder", "again")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_concurrent_consume_exactly_one_wins(session_factory, db_session):
    voucher = VoucherFactory.create("holder")
    db_session.add(voucher)
    await db_session.commit()

    async def _consume(purpose):
        async with session_factory() as session:
            return await vouchers.consume(session, voucher.id, "holder", purpose)

    results = await asyncio.gather(
        _consume("first"), _consume("second"), return_exceptions=True
    )

    used = [r for r in results if not isinstance(r, Exception)]
    rejected = [r for r in results if isinstance(r, AlreadyUsed)]
    assert len(used) == 1
    assert len(rejected) == 1
    stored = await vouchers.get_voucher(db_session, voucher.id)
    assert stored.used_for == used[0].used_for


@pytest.mark.asyncio
@pytest.mark.unit
async def test_consume_expired_voucher_marks_it_expired(db_session):
    issued = datetime(2026, 1, 1, tzinfo=timezone.utc)
    voucher = VoucherFactory.create(
        "late", issued_at=issued, expires_at=issued + timedelta(days=30)
    )
    db_session.add(voucher)
    await db_session.commit()

    with pytest.raises(Expired):
        await vouchers.consume(
            db_session, voucher.id, "late", "checkout", now=issued + timedelta(days=31)
        )

    stored = await vouchers.get_voucher(db_session, voucher.id)
    assert stored.status == VoucherStatus.EXPIRED
    assert stored.used_at is None


@pytest.mark.asyncio
@pytest.mark.unit
async def test_consume_guards(db_session):
    voucher = VoucherFactory.create("owner")
    db_session.add(voucher)
    await db_session.commit()

    with pytest.raises(Unauthorized):
        await vouchers.consume(db_session, voucher.id, "someone-else", "steal")
    # Loaded instances stay readable after a refused consume.
    assert voucher.status == VoucherStatus.ACTIVE
    with pytest.raises(NotFound):
        await vouchers.consume(db_session, uuid.uuid4(), "owner", "missing")

    stored = await vouchers.get_voucher(db_session, voucher.id)
    assert stored.status == VoucherStatus.ACTIVE


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_list_vouchers_derives_expiry_from_clock(db_session):
    now = datetime(2026, 6, 1, tzinfo=timezone.utc)
    fresh = VoucherFactory.create(
        "lister", issued_at=now - timedelta(days=1), expires_at=now + timedelta(days=5)
    )
    stale = VoucherFactory.create(
        "lister", issued_at=now - timedelta(days=40), expires_at=now - timedelta(days=10)
    )
    db_session.add_all([fresh, stale, VoucherFactory.create("someone-else")])
    await db_session.commit()

    items = await vouchers.list_vouchers(db_session, "lister", now=now)

    assert [v.id for v in items] == [fresh.id, stale.id]
    assert [v.status for v in items] == [VoucherStatus.ACTIVE, VoucherStatus.EXPIRED]
    stored = await vouchers.get_voucher(db_session, stale.id)
    assert stored.status == VoucherStatus.ACTIVE


@pytest.mark.unit
def test_catalog_costs_are_positive():
    assert vouchers.REWARD_CATALOG
    for reward in vouchers.REWARD_CATALOG.values():
        assert reward.cost > 0
        assert vouchers.get_reward(reward.id) is reward
