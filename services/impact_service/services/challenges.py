"""Challenge progress engine.

``advance`` is the only writer of progress rows. Each call runs in its own
transaction:

1. Record the contribution (when a ``source_key`` is given) so replays are no-ops
2. Insert the progress row, or compare-and-swap ``current`` on its old value
3. Detect the crossing from the old and new values, never by re-reading
4. On a crossing: stamp ``completed_at``, bump ``total_completions`` and
   credit the reward, all with in-SQL increments
5. Commit; a lost race surfaces as ConcurrencyConflict and the whole call is
   retried by ``run_with_store_retry``
"""

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from libs.common.datetime_utils import as_utc, utc_now
from libs.common.logging import get_logger
from libs.common.retry import run_with_store_retry
from services.impact_service.errors import ConcurrencyConflict, NotFound, ValidationError
from services.impact_service.models import (
    Challenge,
    ChallengeContribution,
    ChallengeProgress,
    ChallengeStatus,
    ChallengeType,
    DonationEvent,
)
from services.impact_service.schemas.challenges import (
    ChallengeCreate,
    ChallengeStats,
    ChallengeWithProgress,
    CompletedChallenge,
)
from services.impact_service.services.accounts import ensure_account, increment_counters
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

FAST_RESPONSE_MINUTES = 15
LONG_DISTANCE_KM = 20


# ---------------------------------------------------------------------------
# Eligibility
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ChallengeSignal:
    """The attributes of a completed event that challenge predicates look at."""

    is_emergency: bool = False
    response_time_minutes: Optional[int] = None
    distance_km: Optional[float] = None

    @classmethod
    def from_event(cls, event: DonationEvent) -> "ChallengeSignal":
        return cls(
            is_emergency=event.is_emergency,
            response_time_minutes=event.response_time_minutes,
            distance_km=event.distance_km,
        )


def _always(signal: ChallengeSignal) -> bool:
    return True


def _never(signal: ChallengeSignal) -> bool:
    # Referral progress comes from sign-ups, not donations.
    return False


def _fast_response(signal: ChallengeSignal) -> bool:
    return (
        signal.response_time_minutes is not None
        and signal.response_time_minutes <= FAST_RESPONSE_MINUTES
    )


def _long_distance(signal: ChallengeSignal) -> bool:
    return signal.distance_km is not None and signal.distance_km >= LONG_DISTANCE_KM


def _emergency(signal: ChallengeSignal) -> bool:
    return signal.is_emergency


ELIGIBILITY: dict[ChallengeType, Callable[[ChallengeSignal], bool]] = {
    ChallengeType.STREAK: _always,
    ChallengeType.COMMUNITY_GOAL: _always,
    ChallengeType.REFERRAL: _never,
    ChallengeType.SPEED_BONUS: _fast_response,
    ChallengeType.DISTANCE_BONUS: _long_distance,
    ChallengeType.EMERGENCY_HERO: _emergency,
}


def is_eligible(challenge_type: ChallengeType, signal: ChallengeSignal) -> bool:
    return ELIGIBILITY[ChallengeType(challenge_type)](signal)


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


def is_open(challenge: Challenge, now: datetime) -> bool:
    return challenge.status == ChallengeStatus.ACTIVE and now < as_utc(challenge.ends_at)


async def get_challenge(db: AsyncSession, challenge_id: uuid.UUID) -> Challenge:
    result = await db.execute(
        select(Challenge)
        .where(Challenge.id == challenge_id)
        .execution_options(populate_existing=True)
    )
    challenge = result.scalar_one_or_none()
    if not challenge:
        raise NotFound(f"Challenge {challenge_id} not found")
    return challenge


async def get_progress(
    db: AsyncSession, challenge_id: uuid.UUID, user_auth_id: str, *, for_update: bool = False
) -> Optional[ChallengeProgress]:
    query = (
        select(ChallengeProgress)
        .where(
            ChallengeProgress.challenge_id == challenge_id,
            ChallengeProgress.user_auth_id == user_auth_id,
        )
        .execution_options(populate_existing=True)
    )
    if for_update:
        query = query.with_for_update()
    result = await db.execute(query)
    return result.scalar_one_or_none()


async def list_open_challenges(
    db: AsyncSession, now: datetime, *, challenge_type: Optional[ChallengeType] = None
) -> list[Challenge]:
    query = select(Challenge).where(
        Challenge.status == ChallengeStatus.ACTIVE,
        Challenge.ends_at > now,
    )
    if challenge_type is not None:
        query = query.where(Challenge.type == challenge_type)
    result = await db.execute(
        query.order_by(Challenge.ends_at.asc(), Challenge.id.asc()).execution_options(
            populate_existing=True
        )
    )
    return list(result.scalars().all())


def _with_progress(
    challenge: Challenge, progress: Optional[ChallengeProgress]
) -> ChallengeWithProgress:
    current = progress.current if progress else 0
    display = min(current, challenge.target)
    return ChallengeWithProgress(
        id=challenge.id,
        title=challenge.title,
        description=challenge.description,
        type=challenge.type,
        target=challenge.target,
        reward_points=challenge.reward_points,
        starts_at=challenge.starts_at,
        ends_at=challenge.ends_at,
        status=challenge.status,
        total_participants=challenge.total_participants,
        total_completions=challenge.total_completions,
        current=current,
        display_current=display,
        started=bool(progress and progress.started),
        started_at=progress.started_at if progress else None,
        completed_at=progress.completed_at if progress else None,
        is_completed=current >= challenge.target,
        progress_percentage=round(display * 100 / challenge.target),
    )


async def get_active_challenges(
    db: AsyncSession, user_auth_id: str, now: Optional[datetime] = None
) -> list[ChallengeWithProgress]:
    """Open challenges, soonest-ending first, each with the user's progress."""
    now = now or utc_now()
    challenges = await list_open_challenges(db, now)
    if not challenges:
        return []

    result = await db.execute(
        select(ChallengeProgress)
        .where(
            ChallengeProgress.user_auth_id == user_auth_id,
            ChallengeProgress.challenge_id.in_([c.id for c in challenges]),
        )
        .execution_options(populate_existing=True)
    )
    by_challenge = {p.challenge_id: p for p in result.scalars().all()}
    return [_with_progress(c, by_challenge.get(c.id)) for c in challenges]


async def get_completed_challenges(
    db: AsyncSession, user_auth_id: str
) -> list[CompletedChallenge]:
    result = await db.execute(
        select(Challenge, ChallengeProgress)
        .join(ChallengeProgress, ChallengeProgress.challenge_id == Challenge.id)
        .where(
            ChallengeProgress.user_auth_id == user_auth_id,
            ChallengeProgress.completed_at.is_not(None),
        )
        .order_by(ChallengeProgress.completed_at.desc())
    )
    return [
        CompletedChallenge(
            id=challenge.id,
            title=challenge.title,
            type=challenge.type,
            target=challenge.target,
            reward_points=challenge.reward_points,
            progress=progress.current,
            completed_at=progress.completed_at,
        )
        for challenge, progress in result.all()
    ]


async def challenge_stats(db: AsyncSession, challenge_id: uuid.UUID) -> ChallengeStats:
    challenge = await get_challenge(db, challenge_id)
    result = await db.execute(
        select(
            func.count(ChallengeProgress.id),
            func.coalesce(func.sum(ChallengeProgress.current), 0),
            func.count(ChallengeProgress.completed_at),
        ).where(ChallengeProgress.challenge_id == challenge_id)
    )
    participants, total_progress, completions = result.one()
    return ChallengeStats(
        challenge_id=challenge.id,
        total_participants=participants,
        total_completions=completions,
        average_progress=(total_progress / participants) if participants else 0.0,
        completion_rate=(completions * 100 / participants) if participants else 0.0,
    )


# ---------------------------------------------------------------------------
# Challenge lifecycle
# ---------------------------------------------------------------------------


def _status_for_window(starts_at: datetime, ends_at: datetime, now: datetime) -> ChallengeStatus:
    if now >= as_utc(ends_at):
        return ChallengeStatus.EXPIRED
    if now < as_utc(starts_at):
        return ChallengeStatus.UPCOMING
    return ChallengeStatus.ACTIVE


async def create_challenge(
    db: AsyncSession,
    payload: ChallengeCreate,
    *,
    created_by: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Challenge:
    now = now or utc_now()
    challenge = Challenge(
        title=payload.title,
        description=payload.description,
        type=payload.type,
        target=payload.target,
        reward_points=payload.reward_points,
        starts_at=payload.starts_at,
        ends_at=payload.ends_at,
        status=_status_for_window(payload.starts_at, payload.ends_at, now),
        total_participants=0,
        total_completions=0,
        created_by=created_by,
    )
    db.add(challenge)
    await db.commit()
    await db.refresh(challenge)
    logger.info(
        "Created %s challenge %s (target=%d, reward=%d, status=%s)",
        challenge.type.value,
        challenge.id,
        challenge.target,
        challenge.reward_points,
        challenge.status.value,
    )
    return challenge


async def refresh_challenge_statuses(
    db: AsyncSession, now: Optional[datetime] = None
) -> dict[str, int]:
    """Open challenges whose window started and expire those whose window ended."""
    now = now or utc_now()
    expired = await db.execute(
        update(Challenge)
        .where(
            Challenge.status.in_([ChallengeStatus.UPCOMING, ChallengeStatus.ACTIVE]),
            Challenge.ends_at <= now,
        )
        .values(status=ChallengeStatus.EXPIRED, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    activated = await db.execute(
        update(Challenge)
        .where(
            Challenge.status == ChallengeStatus.UPCOMING,
            Challenge.starts_at <= now,
            Challenge.ends_at > now,
        )
        .values(status=ChallengeStatus.ACTIVE, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    await db.commit()

    counts = {"activated": activated.rowcount, "expired": expired.rowcount}
    if counts["activated"] or counts["expired"]:
        logger.info(
            "Challenge statuses refreshed: %d activated, %d expired",
            counts["activated"],
            counts["expired"],
        )
    return counts


# ---------------------------------------------------------------------------
# Progress
# ---------------------------------------------------------------------------


@dataclass
class AdvanceResult:
    progress: ChallengeProgress
    previous: int
    crossed: bool
    applied: bool = True

    @property
    def current(self) -> int:
        return self.progress.current


async def _advance_once(
    db: AsyncSession,
    challenge_id: uuid.UUID,
    user_auth_id: str,
    delta: int,
    source_key: Optional[str],
    referred_user_id: Optional[str],
    now: datetime,
) -> AdvanceResult:
    await ensure_account(db, user_auth_id)

    challenge = await get_challenge(db, challenge_id)
    if not is_open(challenge, now):
        raise ValidationError(
            f"Challenge {challenge_id} is {challenge.status.value}, not accepting progress"
        )

    if source_key is not None:
        replayed = await db.execute(
            select(ChallengeContribution.user_auth_id).where(
                ChallengeContribution.challenge_id == challenge_id,
                ChallengeContribution.source_key == source_key,
            )
        )
        credited_to = replayed.scalar_one_or_none()
        if credited_to is not None:
            if credited_to != user_auth_id:
                raise ValidationError(f"{source_key} was already credited to another user")
            progress = await get_progress(db, challenge_id, user_auth_id)
            if progress is None:
                raise ConcurrencyConflict(
                    f"Contribution {source_key} on challenge {challenge_id} has no progress row"
                )
            logger.info(
                "Ignoring replayed contribution %s on challenge %s", source_key, challenge_id
            )
            return AdvanceResult(
                progress=progress, previous=progress.current, crossed=False, applied=False
            )
        db.add(
            ChallengeContribution(
                challenge_id=challenge_id,
                user_auth_id=user_auth_id,
                source_key=source_key,
                delta=delta,
            )
        )

    progress = await get_progress(db, challenge_id, user_auth_id, for_update=True)
    if progress is None:
        previous = 0
        progress = ChallengeProgress(
            challenge_id=challenge_id,
            user_auth_id=user_auth_id,
            current=delta,
            started=True,
            started_at=now,
            last_updated=now,
            referred_user_ids=[referred_user_id] if referred_user_id else [],
        )
        db.add(progress)
        await db.execute(
            update(Challenge)
            .where(Challenge.id == challenge_id)
            .values(total_participants=Challenge.total_participants + 1)
            .execution_options(synchronize_session=False)
        )
    else:
        previous = progress.current
        values = {"current": ChallengeProgress.current + delta, "last_updated": now}
        referred = list(progress.referred_user_ids or [])
        if referred_user_id and referred_user_id not in referred:
            values["referred_user_ids"] = referred + [referred_user_id]
        swapped = await db.execute(
            update(ChallengeProgress)
            .where(
                ChallengeProgress.id == progress.id,
                ChallengeProgress.current == previous,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if swapped.rowcount != 1:
            await db.rollback()
            raise ConcurrencyConflict(
                f"Progress for {user_auth_id} on challenge {challenge_id} moved concurrently"
            )

    new_current = previous + delta
    crossed = previous < challenge.target <= new_current
    if crossed:
        if progress in db.new:
            progress.completed_at = now
        else:
            await db.execute(
                update(ChallengeProgress)
                .where(
                    ChallengeProgress.id == progress.id,
                    ChallengeProgress.completed_at.is_(None),
                )
                .values(completed_at=now)
                .execution_options(synchronize_session=False)
            )
        await db.execute(
            update(Challenge)
            .where(Challenge.id == challenge_id)
            .values(total_completions=Challenge.total_completions + 1)
            .execution_options(synchronize_session=False)
        )
        await increment_counters(
            db,
            user_auth_id,
            total_points=challenge.reward_points,
            challenges_completed=1,
        )

    try:
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise ConcurrencyConflict(
            f"Concurrent write on challenge {challenge_id} for {user_auth_id}"
        ) from exc

    progress = await get_progress(db, challenge_id, user_auth_id)
    if crossed:
        logger.info(
            "User %s completed challenge %s (%d -> %d, target %d), credited %d points",
            user_auth_id,
            challenge_id,
            previous,
            new_current,
            challenge.target,
            challenge.reward_points,
        )
    return AdvanceResult(progress=progress, previous=previous, crossed=crossed)


async def advance(
    db: AsyncSession,
    challenge_id: uuid.UUID,
    user_auth_id: str,
    delta: int = 1,
    *,
    source_key: Optional[str] = None,
    referred_user_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> AdvanceResult:
    """Add ``delta`` to a user's progress on a challenge.

    ``source_key`` identifies where the delta came from (a completed donation,
    a referral sign-up). A key already applied to this challenge leaves the
    progress untouched, which is what makes retried fan-outs safe.
    A key already credited to a different user is rejected, so one referred
    sign-up counts for a single referrer.
    """
    if delta < 0:
        raise ValidationError("Progress deltas must be non-negative")
    now = now or utc_now()
    return await run_with_store_retry(
        db,
        lambda: _advance_once(
            db, challenge_id, user_auth_id, delta, source_key, referred_user_id, now
        ),
        label=f"advance challenge {challenge_id}",
    )


class ChallengeFanoutError(Exception):
    """One or more challenges could not be advanced for a completed event."""

    def __init__(self, failures: dict[uuid.UUID, Exception]) -> None:
        self.failures = failures
        summary = "; ".join(f"{cid}: {exc}" for cid, exc in failures.items())
        super().__init__(f"Challenge fan-out failed for {len(failures)} challenge(s): {summary}")


async def fan_out_completion(
    db: AsyncSession, event: DonationEvent, now: Optional[datetime] = None
) -> list[uuid.UUID]:
    """Advance every open challenge the completed event qualifies for.

    Every eligible challenge is attempted; failures are collected and raised
    together so the caller can schedule a retry. Already-applied challenges are
    skipped on the retry through the event's source key.
    """
    now = now or utc_now()
    event_id = event.id
    user_auth_id = event.user_auth_id
    signal = ChallengeSignal.from_event(event)
    source_key = f"donation:{event_id}"
    # Plain values only: a failed advance rolls back and expires loaded rows.
    open_challenges = [(c.id, c.type) for c in await list_open_challenges(db, now)]

    advanced: list[uuid.UUID] = []
    failures: dict[uuid.UUID, Exception] = {}
    for challenge_id, challenge_type in open_challenges:
        if not is_eligible(challenge_type, signal):
            continue
        try:
            result = await advance(
                db, challenge_id, user_auth_id, 1, source_key=source_key, now=now
            )
        except Exception as exc:
            await db.rollback()
            logger.warning(
                "Could not advance challenge %s for event %s: %s",
                challenge_id,
                event_id,
                exc,
            )
            failures[challenge_id] = exc
            continue
        if result.applied:
            advanced.append(challenge_id)

    if failures:
        raise ChallengeFanoutError(failures)
    return advanced


async def record_referral(
    db: AsyncSession,
    referrer_auth_id: str,
    referred_auth_id: str,
    now: Optional[datetime] = None,
) -> list[AdvanceResult]:
    """Credit a referrer on every open referral challenge for one new sign-up."""
    if referrer_auth_id == referred_auth_id:
        raise ValidationError("Users cannot refer themselves")

    now = now or utc_now()
    challenge_ids = [
        c.id
        for c in await list_open_challenges(
            db, now, challenge_type=ChallengeType.REFERRAL
        )
    ]
    results = []
    for challenge_id in challenge_ids:
        results.append(
            await advance(
                db,
                challenge_id,
                referrer_auth_id,
                1,
                source_key=f"referral:{referred_auth_id}",
                referred_user_id=referred_auth_id,
                now=now,
            )
        )
    logger.info(
        "Referral %s -> %s applied to %d challenge(s)",
        referrer_auth_id,
        referred_auth_id,
        sum(1 for r in results if r.applied),
    )
    return results
