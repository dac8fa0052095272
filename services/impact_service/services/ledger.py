"""Event ledger: recording, reading and cancelling donation events."""

import uuid
from typing import Optional

from libs.common.change_feed import change_feed, donation_events_topic
from libs.common.datetime_utils import utc_now
from libs.common.logging import get_logger
from libs.db.session import release_unchanged
from services.impact_service.errors import (
    AlreadyCompleted,
    ConcurrencyConflict,
    NotFound,
    Unauthorized,
    ValidationError,
)
from services.impact_service.models import (
    DonationEvent,
    DonationKind,
    DonationStatus,
    EmergencyRequest,
    EmergencyStatus,
)
from services.impact_service.schemas.events import (
    EmergencyCreate,
    EmergencyResponseCreate,
)
from services.impact_service.services.accounts import ensure_account
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


async def get_event(db: AsyncSession, event_id: uuid.UUID) -> DonationEvent:
    """Load an event with fresh column values. Raises NotFound."""
    result = await db.execute(
        select(DonationEvent)
        .where(DonationEvent.id == event_id)
        .execution_options(populate_existing=True)
    )
    event = result.scalar_one_or_none()
    if not event:
        raise NotFound(f"Donation event {event_id} not found")
    return event


async def get_owned_event(
    db: AsyncSession, event_id: uuid.UUID, requester_id: str
) -> DonationEvent:
    event = await get_event(db, event_id)
    if event.user_auth_id != requester_id:
        raise Unauthorized("Only the owner of a donation event can change it")
    return event


async def list_user_events(
    db: AsyncSession,
    user_auth_id: str,
    *,
    kind: Optional[DonationKind] = None,
    limit: int = 10,
) -> list[DonationEvent]:
    """Newest-first events for one user, optionally one kind only."""
    query = select(DonationEvent).where(DonationEvent.user_auth_id == user_auth_id)
    if kind is not None:
        query = query.where(DonationEvent.kind == kind)
    result = await db.execute(
        query.order_by(DonationEvent.created_at.desc(), DonationEvent.id.asc()).limit(
            limit
        )
    )
    return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Emergencies
# ---------------------------------------------------------------------------


async def create_emergency(db: AsyncSession, payload: EmergencyCreate) -> EmergencyRequest:
    emergency = EmergencyRequest(
        blood_type=payload.blood_type,
        urgency=payload.urgency,
        units_needed=payload.units_needed,
        hospital_name=payload.hospital_name,
        requester_auth_id=payload.requester_auth_id,
    )
    db.add(emergency)
    await db.commit()
    await db.refresh(emergency)
    logger.info(
        "Opened emergency %s (%s, %d units)",
        emergency.id,
        emergency.blood_type,
        emergency.units_needed,
    )
    return emergency


async def get_emergency(db: AsyncSession, emergency_id: uuid.UUID) -> EmergencyRequest:
    result = await db.execute(
        select(EmergencyRequest)
        .where(EmergencyRequest.id == emergency_id)
        .execution_options(populate_existing=True)
    )
    emergency = result.scalar_one_or_none()
    if not emergency:
        raise NotFound(f"Emergency {emergency_id} not found")
    return emergency


async def _claim_responder_slot(db: AsyncSession, emergency_id: uuid.UUID) -> None:
    result = await db.execute(
        update(EmergencyRequest)
        .where(
            EmergencyRequest.id == emergency_id,
            EmergencyRequest.status == EmergencyStatus.OPEN,
        )
        .values(
            responders_count=EmergencyRequest.responders_count + 1,
            updated_at=utc_now(),
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 1:
        return

    await release_unchanged(db)
    emergency = await get_emergency(db, emergency_id)
    raise ValidationError(
        f"Emergency {emergency.id} is {emergency.status.value}, not accepting responders"
    )


async def _release_responder_slot(db: AsyncSession, emergency_id: uuid.UUID) -> None:
    await db.execute(
        update(EmergencyRequest)
        .where(
            EmergencyRequest.id == emergency_id,
            EmergencyRequest.responders_count > 0,
        )
        .values(
            responders_count=EmergencyRequest.responders_count - 1,
            updated_at=utc_now(),
        )
        .execution_options(synchronize_session=False)
    )


async def has_active_response(
    db: AsyncSession, user_auth_id: str, emergency_id: uuid.UUID
) -> bool:
    """Whether the user already has a pending or completed response to the emergency."""
    result = await db.execute(
        select(DonationEvent.id)
        .where(
            DonationEvent.user_auth_id == user_auth_id,
            DonationEvent.related_emergency_id == emergency_id,
            DonationEvent.status != DonationStatus.CANCELLED,
        )
        .limit(1)
    )
    return result.scalar_one_or_none() is not None


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------


async def record_event(db: AsyncSession, user_auth_id: str, payload) -> DonationEvent:
    """Record a pending donation event for a user.

    ``payload`` is one member of the ``DonationEventCreate`` union. An
    emergency response also bumps the emergency's responder count in the same
    transaction; each user holds at most one active response per emergency.
    """
    await ensure_account(db, user_auth_id)

    fields = payload.model_dump(exclude={"kind"})
    if isinstance(payload, EmergencyResponseCreate):
        emergency_id = payload.related_emergency_id
        if await has_active_response(db, user_auth_id, emergency_id):
            raise ValidationError("You have already responded to this emergency")
        await _claim_responder_slot(db, emergency_id)

    event = DonationEvent(
        user_auth_id=user_auth_id,
        kind=payload.kind,
        status=DonationStatus.PENDING,
        **fields,
    )
    db.add(event)
    try:
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        if not isinstance(payload, EmergencyResponseCreate):
            raise
        # uq_donation_events_active_response: a concurrent duplicate response won.
        raise ValidationError("You have already responded to this emergency") from exc
    await db.refresh(event)

    logger.info(
        "Recorded %s event %s for user %s", event.kind.value, event.id, user_auth_id
    )
    change_feed.publish(donation_events_topic(user_auth_id))
    return event


async def cancel_event(
    db: AsyncSession, event_id: uuid.UUID, requester_id: str
) -> DonationEvent:
    """Move a pending event to cancelled. Compare-and-swap on the status.

    Cancelling an emergency response gives its responder slot back in the same
    transaction.
    """
    event = await get_owned_event(db, event_id, requester_id)
    if event.status == DonationStatus.COMPLETED:
        raise AlreadyCompleted("Completed donations cannot be cancelled")
    if event.status == DonationStatus.CANCELLED:
        raise ValidationError("Donation event is already cancelled")
    emergency_id = event.related_emergency_id

    now = utc_now()
    result = await db.execute(
        update(DonationEvent)
        .where(
            DonationEvent.id == event_id,
            DonationEvent.status == DonationStatus.PENDING,
        )
        .values(status=DonationStatus.CANCELLED, cancelled_at=now, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await release_unchanged(db)
        raise ConcurrencyConflict(f"Donation event {event_id} changed while cancelling")

    if emergency_id is not None:
        await _release_responder_slot(db, emergency_id)
    await db.commit()
    logger.info("Cancelled event %s for user %s", event_id, requester_id)
    change_feed.publish(donation_events_topic(requester_id))
    return await get_event(db, event_id)
