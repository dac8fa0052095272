"""User points accounts and their atomic counter updates."""

from datetime import datetime
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.common.logging import get_logger
from services.impact_service.errors import NotFound
from services.impact_service.models import UserPointsAccount
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)


async def ensure_account(db: AsyncSession, user_auth_id: str) -> UserPointsAccount:
    """Create the account row for a user.

    Idempotent: returns the existing account if one already exists. A
    concurrent creator losing the insert race re-reads the winner's row.
    """
    existing = await db.get(UserPointsAccount, user_auth_id, populate_existing=True)
    if existing:
        return existing

    account = UserPointsAccount(user_auth_id=user_auth_id)
    db.add(account)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        result = await db.execute(
            select(UserPointsAccount).where(
                UserPointsAccount.user_auth_id == user_auth_id
            )
        )
        return result.scalar_one()

    await db.refresh(account)
    logger.info("Created points account for user %s", user_auth_id)
    return account


async def get_account(db: AsyncSession, user_auth_id: str) -> UserPointsAccount:
    """Get a user's account. Raises NotFound if the user has none."""
    result = await db.execute(
        select(UserPointsAccount)
        .where(UserPointsAccount.user_auth_id == user_auth_id)
        .execution_options(populate_existing=True)
    )
    account = result.scalar_one_or_none()
    if not account:
        raise NotFound(f"No points account for user {user_auth_id}")
    return account


async def increment_counters(
    db: AsyncSession,
    user_auth_id: str,
    *,
    total_donations: int = 0,
    impact_points: int = 0,
    total_points: int = 0,
    challenges_completed: int = 0,
    last_donation_at: Optional[datetime] = None,
) -> None:
    """Apply signed deltas to a user's counters inside the caller's transaction.

    Deltas are applied by the database (``col = col + :delta``) so concurrent
    writers from different workflows never lose each other's updates.
    ``last_donation_at`` is only written when given.
    """
    values = {
        "total_donations": UserPointsAccount.total_donations + total_donations,
        "impact_points": UserPointsAccount.impact_points + impact_points,
        "total_points": UserPointsAccount.total_points + total_points,
        "challenges_completed": UserPointsAccount.challenges_completed
        + challenges_completed,
        "updated_at": utc_now(),
    }
    if last_donation_at is not None:
        values["last_donation_at"] = last_donation_at

    result = await db.execute(
        update(UserPointsAccount)
        .where(UserPointsAccount.user_auth_id == user_auth_id)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise NotFound(f"No points account for user {user_auth_id}")


async def count_donation(
    db: AsyncSession, user_auth_id: str, *, completed_at: datetime
) -> bool:
    """Count one completed donation inside the caller's transaction.

    Returns True when it is the user's first. The zero check and the increment
    are one conditional UPDATE, so of two concurrent completions for the same
    user only one can see ``total_donations == 0``.
    """
    first = await db.execute(
        update(UserPointsAccount)
        .where(
            UserPointsAccount.user_auth_id == user_auth_id,
            UserPointsAccount.total_donations == 0,
        )
        .values(
            total_donations=1,
            last_donation_at=completed_at,
            updated_at=utc_now(),
        )
        .execution_options(synchronize_session=False)
    )
    if first.rowcount == 1:
        return True

    await increment_counters(
        db,
        user_auth_id,
        total_donations=1,
        last_donation_at=completed_at,
    )
    return False
