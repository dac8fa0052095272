"""Donation completion workflow.

``complete_donation`` runs the guard clauses and then, in a single transaction,
flips the status with a compare-and-swap, counts the donation (which decides the
first-donation bonus), scores the event and credits its points. Only after
that commit do the best-effort steps run: the challenge fan-out (tracked on
the event and retried by the worker) and the emergency closure check. Neither
can undo the award.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from libs.common.change_feed import change_feed, donation_events_topic
from libs.common.config import get_settings
from libs.common.datetime_utils import utc_now
from libs.common.errors import ServiceError
from libs.common.logging import get_logger
from libs.common.retry import run_with_store_retry
from libs.db.session import release_unchanged
from services.impact_service.errors import (
    AlreadyCompleted,
    ConcurrencyConflict,
    ValidationError,
)
from services.impact_service.models import (
    DonationEvent,
    DonationStatus,
    EmergencyRequest,
    EmergencyStatus,
    FanoutStatus,
)
from services.impact_service.services.accounts import (
    count_donation,
    ensure_account,
    increment_counters,
)
from services.impact_service.services.challenges import fan_out_completion
from services.impact_service.services.ledger import get_event, get_owned_event
from services.impact_service.services.scoring import ImpactScore, ScoringInputs, score
from sqlalchemy import and_, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = get_logger(__name__)

# A fan-out still pending after this long was interrupted and is picked up by the worker.
STALE_FANOUT_AFTER = timedelta(minutes=5)


@dataclass
class CompletionResult:
    event_id: uuid.UUID
    points_awarded: int
    breakdown: dict[str, int]
    challenges_advanced: list[uuid.UUID] = field(default_factory=list)
    emergency_fulfilled: bool = False


# ---------------------------------------------------------------------------
# Complete
# ---------------------------------------------------------------------------


async def _award_once(
    db: AsyncSession, event_id: uuid.UUID, requester_id: str, now: datetime
) -> tuple[DonationEvent, ImpactScore]:
    event = await get_owned_event(db, event_id, requester_id)
    if event.status == DonationStatus.COMPLETED:
        raise AlreadyCompleted(f"Donation event {event_id} is already completed")
    if event.status == DonationStatus.CANCELLED:
        raise ValidationError(f"Donation event {event_id} was cancelled")

    await ensure_account(db, event.user_auth_id)

    swapped = await db.execute(
        update(DonationEvent)
        .where(
            DonationEvent.id == event_id,
            DonationEvent.status == DonationStatus.PENDING,
        )
        .values(
            status=DonationStatus.COMPLETED,
            completed_at=now,
            fanout_status=FanoutStatus.PENDING,
            fanout_attempts=0,
            fanout_error=None,
            fanout_next_retry_at=None,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if swapped.rowcount != 1:
        await release_unchanged(db)
        raise ConcurrencyConflict(f"Donation event {event_id} changed while completing")

    # Decided after the swap, under the same transaction as the award.
    first_donation = await count_donation(db, event.user_auth_id, completed_at=now)
    impact = score(ScoringInputs.from_event(event, first_donation=first_donation))

    await db.execute(
        update(DonationEvent)
        .where(DonationEvent.id == event_id)
        .values(points_awarded=impact.total, points_breakdown=impact.breakdown)
        .execution_options(synchronize_session=False)
    )
    await increment_counters(db, event.user_auth_id, impact_points=impact.total)
    await db.commit()
    return await get_event(db, event_id), impact


async def complete_donation(
    db: AsyncSession,
    event_id: uuid.UUID,
    requester_id: str,
    *,
    now: Optional[datetime] = None,
) -> CompletionResult:
    """Mark a pending event completed and award its impact points exactly once."""
    now = now or utc_now()
    event, impact = await run_with_store_retry(
        db,
        lambda: _award_once(db, event_id, requester_id, now),
        label=f"complete donation {event_id}",
    )
    user_auth_id = event.user_auth_id
    emergency_id = event.related_emergency_id
    logger.info(
        "Completed event %s for user %s: %d points %s",
        event_id,
        user_auth_id,
        impact.total,
        impact.breakdown,
    )
    change_feed.publish(donation_events_topic(user_auth_id))

    advanced = await apply_fanout_with_tracking(db, event, now=now)
    fulfilled = await close_emergency_if_fulfilled(
        db, emergency_id, event_id=event_id, now=now
    )

    return CompletionResult(
        event_id=event_id,
        points_awarded=impact.total,
        breakdown=impact.breakdown,
        challenges_advanced=advanced,
        emergency_fulfilled=fulfilled,
    )


# ---------------------------------------------------------------------------
# Fan-out tracking
# ---------------------------------------------------------------------------


def _next_retry_time(attempts: int, now: datetime) -> datetime:
    # Exponential backoff capped at 60 minutes.
    base = get_settings().FANOUT_RETRY_BASE_MINUTES
    delay = min(60, base * (2 ** max(attempts - 1, 0)))
    return now + timedelta(minutes=delay)


async def apply_fanout_with_tracking(
    db: AsyncSession, event: DonationEvent, *, now: Optional[datetime] = None
) -> list[uuid.UUID]:
    """Run the challenge fan-out and record the outcome on the event.

    Failures are logged and scheduled for retry; they never propagate to the
    completion caller.
    """
    now = now or utc_now()
    event_id = event.id
    attempts = event.fanout_attempts + 1
    try:
        advanced = await fan_out_completion(db, event, now=now)
    except Exception as exc:
        # The rollback expires ``event``; only the locals above are read after it.
        await db.rollback()
        error_message = str(exc)
        max_retries = get_settings().FANOUT_MAX_RETRIES
        if attempts >= max_retries:
            status, retry_at = FanoutStatus.DEAD_LETTER, None
        else:
            status, retry_at = FanoutStatus.RETRY_SCHEDULED, _next_retry_time(attempts, now)
        await db.execute(
            update(DonationEvent)
            .where(DonationEvent.id == event_id)
            .values(
                fanout_status=status,
                fanout_attempts=attempts,
                fanout_next_retry_at=retry_at,
                fanout_error=error_message[:2000],
            )
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        logger.warning(
            "Challenge fan-out failed for event %s (attempt %d/%d): %s",
            event_id,
            attempts,
            max_retries,
            error_message,
        )
        return []

    await db.execute(
        update(DonationEvent)
        .where(DonationEvent.id == event_id)
        .values(
            fanout_status=FanoutStatus.APPLIED,
            fanout_attempts=attempts,
            fanout_next_retry_at=None,
            fanout_error=None,
            challenges_applied_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    if advanced:
        logger.info("Event %s advanced %d challenge(s)", event_id, len(advanced))
    return advanced


async def retry_pending_fanouts(
    session_factory: async_sessionmaker[AsyncSession],
    *,
    now: Optional[datetime] = None,
    limit: int = 200,
) -> int:
    """Re-run due challenge fan-outs. Returns how many events were retried."""
    now = now or utc_now()
    processed = 0

    async with session_factory() as db:
        result = await db.execute(
            select(DonationEvent.id)
            .where(
                DonationEvent.status == DonationStatus.COMPLETED,
                DonationEvent.challenges_applied_at.is_(None),
                or_(
                    and_(
                        DonationEvent.fanout_status == FanoutStatus.RETRY_SCHEDULED,
                        DonationEvent.fanout_next_retry_at <= now,
                    ),
                    and_(
                        DonationEvent.fanout_status == FanoutStatus.PENDING,
                        DonationEvent.updated_at <= now - STALE_FANOUT_AFTER,
                    ),
                ),
            )
            .order_by(DonationEvent.updated_at.asc())
            .limit(limit)
        )
        due_ids = list(result.scalars().all())

        for event_id in due_ids:
            # Reloaded per event: a failed fan-out before it expired the session.
            event = await get_event(db, event_id)
            await apply_fanout_with_tracking(db, event, now=now)
            processed += 1

    if processed:
        logger.info("Retried challenge fan-out for %d events", processed)
    return processed


# ---------------------------------------------------------------------------
# Emergency closure
# ---------------------------------------------------------------------------


async def _close_once(db: AsyncSession, emergency_id: uuid.UUID, now: datetime) -> bool:
    closed = await db.execute(
        update(EmergencyRequest)
        .where(
            EmergencyRequest.id == emergency_id,
            EmergencyRequest.status == EmergencyStatus.OPEN,
            EmergencyRequest.responders_count >= EmergencyRequest.units_needed,
        )
        .values(status=EmergencyStatus.FULFILLED, fulfilled_at=now, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if closed.rowcount != 1:
        await db.execute(
            update(EmergencyRequest)
            .where(EmergencyRequest.id == emergency_id)
            .values(updated_at=now)
            .execution_options(synchronize_session=False)
        )
    await db.commit()
    return closed.rowcount == 1


async def close_emergency_if_fulfilled(
    db: AsyncSession,
    emergency_id: Optional[uuid.UUID],
    *,
    event_id: uuid.UUID,
    now: Optional[datetime] = None,
) -> bool:
    """Mark the emergency fulfilled once enough responders completed."""
    if emergency_id is None:
        return False
    now = now or utc_now()
    try:
        fulfilled = await run_with_store_retry(
            db,
            lambda: _close_once(db, emergency_id, now),
            label=f"close emergency {emergency_id}",
        )
    except ServiceError as exc:
        await db.rollback()
        logger.warning(
            "Could not update emergency %s after event %s: %s",
            emergency_id,
            event_id,
            exc,
        )
        return False

    if fulfilled:
        logger.info("Emergency %s fulfilled by event %s", emergency_id, event_id)
    return fulfilled


# ---------------------------------------------------------------------------
# Undo
# ---------------------------------------------------------------------------


async def _undo_once(
    db: AsyncSession, event_id: uuid.UUID, requester_id: str, now: datetime
) -> DonationEvent:
    event = await get_owned_event(db, event_id, requester_id)
    if event.status != DonationStatus.COMPLETED:
        raise ValidationError(f"Donation event {event_id} is not completed")

    awarded = event.points_awarded or 0
    swapped = await db.execute(
        update(DonationEvent)
        .where(
            DonationEvent.id == event_id,
            DonationEvent.status == DonationStatus.COMPLETED,
        )
        .values(
            status=DonationStatus.PENDING,
            completed_at=None,
            points_awarded=None,
            points_breakdown=None,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if swapped.rowcount != 1:
        await release_unchanged(db)
        raise ConcurrencyConflict(f"Donation event {event_id} changed while undoing")

    await increment_counters(
        db, event.user_auth_id, total_donations=-1, impact_points=-awarded
    )
    await db.commit()
    return await get_event(db, event_id)


async def undo_completion(
    db: AsyncSession,
    event_id: uuid.UUID,
    requester_id: str,
    *,
    now: Optional[datetime] = None,
) -> DonationEvent:
    """Revert a completion made by mistake.

    Challenge progress already advanced by the event is kept.
    """
    now = now or utc_now()
    event = await run_with_store_retry(
        db,
        lambda: _undo_once(db, event_id, requester_id, now),
        label=f"undo completion {event_id}",
    )
    logger.info("Undid completion of event %s for user %s", event_id, requester_id)
    change_feed.publish(donation_events_topic(event.user_auth_id))
    return event
