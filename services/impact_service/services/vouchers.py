"""Reward voucher ledger.

Points are debited with a conditional in-SQL update and the voucher row is
inserted in the same transaction, so a debit never exists without its
voucher. Consumption is a single compare-and-swap; the row is only re-read
afterwards to explain why a swap was lost.
"""

import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from libs.common.config import get_settings
from libs.common.datetime_utils import utc_now
from libs.common.logging import get_logger
from libs.common.retry import run_with_store_retry
from libs.db.session import release_unchanged
from services.impact_service.errors import (
    AlreadyUsed,
    ConcurrencyConflict,
    Expired,
    InsufficientPoints,
    NotFound,
    Unauthorized,
    ValidationError,
)
from services.impact_service.models import (
    RewardType,
    RewardVoucher,
    UserPointsAccount,
    VoucherStatus,
)
from services.impact_service.schemas.rewards import VoucherResponse
from services.impact_service.services.accounts import get_account
from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)


@dataclass(frozen=True)
class Reward:
    id: str
    title: str
    description: str
    type: RewardType
    cost: int
    validity_days: Optional[int]


REWARD_CATALOG: dict[str, Reward] = {
    reward.id: reward
    for reward in (
        Reward(
            "discount_10",
            "10% Off Next Event",
            "10% discount on your next event registration",
            RewardType.COUPON,
            200,
            30,
        ),
        Reward(
            "early_access",
            "Early Event Access",
            "See and register for events 24 hours before public release",
            RewardType.ACCESS,
            400,
            45,
        ),
        Reward(
            "priority_registration",
            "Priority Registration",
            "Skip waitlists and get priority access to events",
            RewardType.ACCESS,
            500,
            60,
        ),
        Reward(
            "analytics_access",
            "Event Analytics Access",
            "Analytics dashboard for your hosted events",
            RewardType.FEATURE,
            750,
            180,
        ),
        Reward(
            "exclusive_merch",
            "Exclusive Merchandise",
            "Branded T-shirt, cap or sticker pack delivered to your address",
            RewardType.PHYSICAL,
            1000,
            None,
        ),
        Reward(
            "referral_bonus",
            "Referral Bonus Multiplier",
            "Earn 2x points for every friend you refer",
            RewardType.MULTIPLIER,
            1200,
            60,
        ),
        Reward(
            "featured_badge",
            "Featured Profile Badge",
            "Gold star badge displayed on your profile",
            RewardType.BADGE,
            1500,
            90,
        ),
        Reward(
            "free_pro_hosting",
            "Free Pro Event Hosting",
            "Host one event with Pro tier benefits",
            RewardType.VOUCHER,
            3000,
            90,
        ),
    )
}


def get_reward(reward_id: str) -> Reward:
    reward = REWARD_CATALOG.get(reward_id)
    if reward is None:
        raise NotFound(f"Reward {reward_id} not found")
    return reward


def generate_code(reward_id: str) -> str:
    prefix = get_settings().VOUCHER_CODE_PREFIX
    return f"{prefix}-{reward_id.upper()[:24]}-{secrets.token_hex(4).upper()}"


async def get_voucher(db: AsyncSession, voucher_id: uuid.UUID) -> RewardVoucher:
    result = await db.execute(
        select(RewardVoucher)
        .where(RewardVoucher.id == voucher_id)
        .execution_options(populate_existing=True)
    )
    voucher = result.scalar_one_or_none()
    if not voucher:
        raise NotFound(f"Voucher {voucher_id} not found")
    return voucher


async def _find_by_idempotency_key(
    db: AsyncSession, idempotency_key: str
) -> Optional[RewardVoucher]:
    result = await db.execute(
        select(RewardVoucher).where(RewardVoucher.idempotency_key == idempotency_key)
    )
    return result.scalar_one_or_none()


# ---------------------------------------------------------------------------
# Redeem
# ---------------------------------------------------------------------------


async def _redeem_once(
    db: AsyncSession,
    user_auth_id: str,
    reward_id: str,
    point_cost: int,
    reward_type: Optional[RewardType],
    validity_days: Optional[int],
    idempotency_key: Optional[str],
    now: datetime,
) -> RewardVoucher:
    if idempotency_key:
        existing = await _find_by_idempotency_key(db, idempotency_key)
        if existing:
            if existing.user_auth_id != user_auth_id:
                raise ValidationError("Idempotency key already used by another user")
            logger.info(
                "Idempotent redemption hit for key %s, returning voucher %s",
                idempotency_key,
                existing.id,
            )
            return existing

    debit = await db.execute(
        update(UserPointsAccount)
        .where(
            UserPointsAccount.user_auth_id == user_auth_id,
            UserPointsAccount.total_points >= point_cost,
        )
        .values(
            total_points=UserPointsAccount.total_points - point_cost,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if debit.rowcount != 1:
        await release_unchanged(db)
        account = await get_account(db, user_auth_id)
        raise InsufficientPoints(required=point_cost, available=account.total_points)

    voucher = RewardVoucher(
        user_auth_id=user_auth_id,
        reward_id=reward_id,
        reward_type=reward_type,
        code=generate_code(reward_id),
        points_spent=point_cost,
        status=VoucherStatus.ACTIVE,
        idempotency_key=idempotency_key,
        issued_at=now,
        expires_at=now + timedelta(days=validity_days) if validity_days else None,
    )
    db.add(voucher)
    try:
        await db.commit()
    except IntegrityError as exc:
        # Lost an idempotency-key race or drew a duplicate code; the retry
        # replays the winner or draws a fresh code.
        await db.rollback()
        raise ConcurrencyConflict(f"Voucher insert conflicted for {user_auth_id}") from exc

    await db.refresh(voucher)
    return voucher


async def redeem(
    db: AsyncSession,
    user_auth_id: str,
    reward_id: str,
    point_cost: int,
    *,
    reward_type: Optional[RewardType] = None,
    validity_days: Optional[int] = None,
    idempotency_key: Optional[str] = None,
    now: Optional[datetime] = None,
) -> RewardVoucher:
    """Debit ``point_cost`` redeemable points and issue an active voucher.

    Raises InsufficientPoints when the balance is short, NotFound when the
    user has no account. A repeated ``idempotency_key`` returns the voucher
    issued the first time without debiting again.
    """
    if point_cost < 0:
        raise ValidationError("Point cost must be non-negative")
    now = now or utc_now()
    voucher = await run_with_store_retry(
        db,
        lambda: _redeem_once(
            db,
            user_auth_id,
            reward_id,
            point_cost,
            reward_type,
            validity_days,
            idempotency_key,
            now,
        ),
        label=f"redeem {reward_id}",
    )
    logger.info(
        "Issued voucher %s (%s) to user %s for %d points",
        voucher.code,
        reward_id,
        user_auth_id,
        voucher.points_spent,
    )
    return voucher


async def redeem_reward(
    db: AsyncSession,
    user_auth_id: str,
    reward_id: str,
    *,
    idempotency_key: Optional[str] = None,
    now: Optional[datetime] = None,
) -> RewardVoucher:
    """Redeem a catalog reward at its listed cost and validity."""
    reward = get_reward(reward_id)
    return await redeem(
        db,
        user_auth_id,
        reward.id,
        reward.cost,
        reward_type=reward.type,
        validity_days=reward.validity_days,
        idempotency_key=idempotency_key,
        now=now,
    )


# ---------------------------------------------------------------------------
# Consume
# ---------------------------------------------------------------------------


async def _raise_for_lost_consume(
    db: AsyncSession, voucher_id: uuid.UUID, consumer_id: str, now: datetime
) -> None:
    voucher = await get_voucher(db, voucher_id)
    if voucher.user_auth_id != consumer_id:
        raise Unauthorized("Only the voucher holder can use it")
    if voucher.status == VoucherStatus.USED:
        raise AlreadyUsed(f"Voucher {voucher.code} was already used")
    if voucher.status == VoucherStatus.EXPIRED or voucher.is_expired(now):
        await db.execute(
            update(RewardVoucher)
            .where(
                RewardVoucher.id == voucher_id,
                RewardVoucher.status == VoucherStatus.ACTIVE,
            )
            .values(status=VoucherStatus.EXPIRED)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        raise Expired(f"Voucher {voucher.code} expired")
    raise ConcurrencyConflict(f"Voucher {voucher_id} changed while consuming")


async def _consume_once(
    db: AsyncSession,
    voucher_id: uuid.UUID,
    consumer_id: str,
    purpose: str,
    now: datetime,
) -> RewardVoucher:
    swapped = await db.execute(
        update(RewardVoucher)
        .where(
            RewardVoucher.id == voucher_id,
            RewardVoucher.user_auth_id == consumer_id,
            RewardVoucher.status == VoucherStatus.ACTIVE,
            or_(RewardVoucher.expires_at.is_(None), RewardVoucher.expires_at >= now),
        )
        .values(status=VoucherStatus.USED, used_at=now, used_for=purpose)
        .execution_options(synchronize_session=False)
    )
    if swapped.rowcount != 1:
        await release_unchanged(db)
        await _raise_for_lost_consume(db, voucher_id, consumer_id, now)

    await db.commit()
    return await get_voucher(db, voucher_id)


async def consume(
    db: AsyncSession,
    voucher_id: uuid.UUID,
    consumer_id: str,
    purpose: str,
    *,
    now: Optional[datetime] = None,
) -> RewardVoucher:
    """Use an active voucher exactly once.

    Of any number of concurrent calls for the same voucher, one succeeds and
    the rest raise AlreadyUsed.
    """
    now = now or utc_now()
    voucher = await run_with_store_retry(
        db,
        lambda: _consume_once(db, voucher_id, consumer_id, purpose, now),
        label=f"consume voucher {voucher_id}",
    )
    logger.info(
        "Voucher %s used by %s for %s", voucher.code, consumer_id, purpose
    )
    return voucher


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


def voucher_view(voucher: RewardVoucher, now: datetime) -> VoucherResponse:
    view = VoucherResponse.model_validate(voucher)
    return view.model_copy(update={"status": voucher.effective_status(now)})


async def list_vouchers(
    db: AsyncSession, user_auth_id: str, *, now: Optional[datetime] = None
) -> list[VoucherResponse]:
    """A user's vouchers, newest first, with expiry derived from the clock."""
    now = now or utc_now()
    result = await db.execute(
        select(RewardVoucher)
        .where(RewardVoucher.user_auth_id == user_auth_id)
        .order_by(RewardVoucher.issued_at.desc(), RewardVoucher.id.asc())
        .execution_options(populate_existing=True)
    )
    return [voucher_view(v, now) for v in result.scalars().all()]
