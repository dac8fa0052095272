"""Unit tests for the challenge progress engine."""

import asyncio
import uuid
from datetime import datetime, timedelta, timezone

import pytest
from services.impact_service.errors import NotFound, ValidationError
from services.impact_service.models import ChallengeStatus, ChallengeType
from services.impact_service.schemas.challenges import ChallengeCreate
from services.impact_service.services import challenges
from services.impact_service.services.accounts import get_account
from services.impact_service.services.challenges import (
    ChallengeSignal,
    advance,
    is_eligible,
)
from tests.factories import ChallengeFactory, ChallengeProgressFactory


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def _make_challenge(db, **overrides):
    challenge = ChallengeFactory.create(**overrides)
    db.add(challenge)
    await db.commit()
    return challenge


async def _reload(db, challenge_id):
    return await challenges.get_challenge(db, challenge_id)


# ---------------------------------------------------------------------------
# Eligibility
# ---------------------------------------------------------------------------


@pytest.mark.unit
def test_every_challenge_type_has_a_predicate():
    assert set(challenges.ELIGIBILITY) == set(ChallengeType)


@pytest.mark.unit
@pytest.mark.parametrize(
    "challenge_type, signal, expected",
    [
        (ChallengeType.STREAK, ChallengeSignal(), True),
        (ChallengeType.COMMUNITY_GOAL, ChallengeSignal(), True),
        (ChallengeType.REFERRAL, ChallengeSignal(is_emergency=True), False),
        (ChallengeType.SPEED_BONUS, ChallengeSignal(response_time_minutes=15), True),
        (ChallengeType.SPEED_BONUS, ChallengeSignal(response_time_minutes=16), False),
        (ChallengeType.SPEED_BONUS, ChallengeSignal(), False),
        (ChallengeType.DISTANCE_BONUS, ChallengeSignal(distance_km=20), True),
        (ChallengeType.DISTANCE_BONUS, ChallengeSignal(distance_km=19.9), False),
        (ChallengeType.EMERGENCY_HERO, ChallengeSignal(is_emergency=True), True),
        (ChallengeType.EMERGENCY_HERO, ChallengeSignal(is_emergency=False), False),
    ],
)
def test_eligibility(challenge_type, signal, expected):
    assert is_eligible(challenge_type, signal) is expected


# ---------------------------------------------------------------------------
# advance
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_crossing_target_completes_once(db_session):
    challenge = await _make_challenge(db_session, target=5, reward_points=120)

    for _ in range(4):
        result = await advance(db_session, challenge.id, "runner")
        assert result.crossed is False
    assert result.current == 4
    assert result.progress.completed_at is None

    fifth = await advance(db_session, challenge.id, "runner")
    assert fifth.crossed is True
    assert fifth.current == 5
    assert fifth.progress.completed_at is not None

    sixth = await advance(db_session, challenge.id, "runner")
    assert sixth.crossed is False
    assert sixth.current == 6
    assert sixth.progress.completed_at == fifth.progress.completed_at

    refreshed = await _reload(db_session, challenge.id)
    assert refreshed.total_participants == 1
    assert refreshed.total_completions == 1
    account = await get_account(db_session, "runner")
    assert account.total_points == 120
    assert account.challenges_completed == 1


@pytest.mark.asyncio
@pytest.mark.unit
async def test_first_advance_creates_participant(db_session):
    challenge = await _make_challenge(db_session, target=3)

    result = await advance(db_session, challenge.id, "newcomer", 2)

    assert result.previous == 0
    assert result.current == 2
    assert result.progress.started is True
    assert result.progress.started_at is not None
    assert (await _reload(db_session, challenge.id)).total_participants == 1


@pytest.mark.asyncio
@pytest.mark.unit
async def test_first_advance_can_cross_a_target_of_one(db_session):
    challenge = await _make_challenge(db_session, target=1, reward_points=10)

    result = await advance(db_session, challenge.id, "quick")

    assert result.crossed is True
    refreshed = await _reload(db_session, challenge.id)
    assert refreshed.total_completions == 1
    assert (await get_account(db_session, "quick")).total_points == 10


@pytest.mark.asyncio
@pytest.mark.unit
async def test_overshoot_is_stored_and_clamped_for_display(db_session):
    challenge = await _make_challenge(db_session, target=2)

    result = await advance(db_session, challenge.id, "eager", 5)

    assert result.current == 5
    assert result.progress.display_current(challenge.target) == 2


@pytest.mark.asyncio
@pytest.mark.unit
async def test_progress_is_non_decreasing(db_session):
    challenge = await _make_challenge(db_session, target=10)
    seen = []

    for delta in [0, 2, 1, 0, 3, 1]:
        seen.append((await advance(db_session, challenge.id, "steady", delta)).current)

    assert seen == sorted(seen)
    assert seen[-1] == 7


@pytest.mark.asyncio
@pytest.mark.unit
async def test_replayed_source_key_is_a_no_op(db_session):
    challenge = await _make_challenge(db_session, target=2, reward_points=50)

    first = await advance(db_session, challenge.id, "donor", source_key="donation:abc")
    replay = await advance(db_session, challenge.id, "donor", source_key="donation:abc")

    assert first.applied is True
    assert replay.applied is False
    assert replay.current == 1
    assert (await get_account(db_session, "donor")).total_points == 0


@pytest.mark.asyncio
@pytest.mark.unit
async def test_advance_guards(db_session):
    expired = await _make_challenge(
        db_session,
        starts_at=datetime.now(timezone.utc) - timedelta(days=10),
        ends_at=datetime.now(timezone.utc) - timedelta(days=1),
    )
    upcoming = await _make_challenge(
        db_session,
        status=ChallengeStatus.UPCOMING,
        starts_at=datetime.now(timezone.utc) + timedelta(days=1),
        ends_at=datetime.now(timezone.utc) + timedelta(days=10),
    )
    active = await _make_challenge(db_session)

    with pytest.raises(NotFound):
        await advance(db_session, uuid.uuid4(), "u")
    with pytest.raises(ValidationError):
        await advance(db_session, expired.id, "u")
    with pytest.raises(ValidationError):
        await advance(db_session, upcoming.id, "u")
    with pytest.raises(ValidationError):
        await advance(db_session, active.id, "u", -1)


@pytest.mark.asyncio
@pytest.mark.unit
async def test_concurrent_advances_do_not_lose_updates(session_factory, db_session):
    challenge = await _make_challenge(db_session, target=100)
    await advance(db_session, challenge.id, "racer")

    async def _bump(key):
        async with session_factory() as session:
            return await advance(session, challenge.id, "racer", source_key=key)

    await asyncio.gather(*(_bump(f"source-{i}") for i in range(2)))

    progress = await challenges.get_progress(db_session, challenge.id, "racer")
    assert progress.current == 3


@pytest.mark.asyncio
@pytest.mark.unit
async def test_completions_never_exceed_participants(db_session):
    challenge = await _make_challenge(db_session, target=2)

    for user, steps in [("a", 3), ("b", 1), ("c", 2)]:
        for _ in range(steps):
            await advance(db_session, challenge.id, user)

    refreshed = await _reload(db_session, challenge.id)
    assert refreshed.total_participants == 3
    assert refreshed.total_completions == 2
    assert refreshed.total_completions <= refreshed.total_participants


# ---------------------------------------------------------------------------
# Referrals
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_referral_advances_referral_challenges_once_per_referred_user(db_session):
    referral = await _make_challenge(db_session, type=ChallengeType.REFERRAL, target=2)
    await _make_challenge(db_session, type=ChallengeType.STREAK)

    results = await challenges.record_referral(db_session, "referrer", "friend-1")
    await challenges.record_referral(db_session, "referrer", "friend-1")
    await challenges.record_referral(db_session, "referrer", "friend-2")

    assert [r.progress.challenge_id for r in results] == [referral.id]
    progress = await challenges.get_progress(db_session, referral.id, "referrer")
    assert progress.current == 2
    assert progress.referred_user_ids == ["friend-1", "friend-2"]
    assert progress.completed_at is not None


@pytest.mark.asyncio
@pytest.mark.unit
async def test_referred_user_cannot_be_claimed_by_a_second_referrer(db_session):
    referral = await _make_challenge(db_session, type=ChallengeType.REFERRAL, target=5)
    referral_id = referral.id

    await challenges.record_referral(db_session, "alice", "newbie")
    with pytest.raises(ValidationError, match="already credited"):
        await challenges.record_referral(db_session, "bob", "newbie")

    alice = await challenges.get_progress(db_session, referral_id, "alice")
    assert alice.current == 1
    assert alice.referred_user_ids == ["newbie"]
    assert await challenges.get_progress(db_session, referral_id, "bob") is None
    challenge = await _reload(db_session, referral_id)
    assert challenge.total_participants == 1


@pytest.mark.asyncio
@pytest.mark.unit
async def test_self_referral_rejected(db_session):
    with pytest.raises(ValidationError):
        await challenges.record_referral(db_session, "same", "same")


# ---------------------------------------------------------------------------
# Views and lifecycle
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_active_challenges_include_user_progress(db_session):
    soon = await _make_challenge(
        db_session, target=4, ends_at=datetime.now(timezone.utc) + timedelta(days=2)
    )
    later = await _make_challenge(
        db_session, target=2, ends_at=datetime.now(timezone.utc) + timedelta(days=20)
    )
    await advance(db_session, later.id, "viewer", 3)

    views = await challenges.get_active_challenges(db_session, "viewer")

    assert [v.id for v in views] == [soon.id, later.id]
    assert views[0].current == 0 and views[0].started is False
    assert views[1].current == 3
    assert views[1].display_current == 2
    assert views[1].progress_percentage == 100
    assert views[1].is_completed is True


@pytest.mark.asyncio
@pytest.mark.unit
async def test_completed_challenges_and_stats(db_session):
    challenge = await _make_challenge(db_session, target=2)
    await advance(db_session, challenge.id, "done", 2)
    await advance(db_session, challenge.id, "halfway", 1)

    completed = await challenges.get_completed_challenges(db_session, "done")
    stats = await challenges.challenge_stats(db_session, challenge.id)

    assert [c.id for c in completed] == [challenge.id]
    assert await challenges.get_completed_challenges(db_session, "halfway") == []
    assert stats.total_participants == 2
    assert stats.total_completions == 1
    assert stats.average_progress == 1.5
    assert stats.completion_rate == 50.0


@pytest.mark.asyncio
@pytest.mark.unit
async def test_create_challenge_status_follows_window(db_session):
    now = datetime.now(timezone.utc)
    upcoming = await challenges.create_challenge(
        db_session,
        ChallengeCreate(
            title="Next month",
            type=ChallengeType.COMMUNITY_GOAL,
            target=100,
            starts_at=now + timedelta(days=3),
            ends_at=now + timedelta(days=33),
        ),
        created_by="admin",
    )
    running = await challenges.create_challenge(
        db_session,
        ChallengeCreate(
            title="This week",
            type=ChallengeType.STREAK,
            target=2,
            reward_points=40,
            starts_at=now - timedelta(days=1),
            ends_at=now + timedelta(days=6),
        ),
    )

    assert upcoming.status == ChallengeStatus.UPCOMING
    assert running.status == ChallengeStatus.ACTIVE


@pytest.mark.unit
def test_challenge_window_must_be_ordered():
    now = datetime.now(timezone.utc)
    with pytest.raises(ValueError):
        ChallengeCreate(
            title="Backwards",
            type=ChallengeType.STREAK,
            target=1,
            starts_at=now,
            ends_at=now - timedelta(days=1),
        )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_refresh_statuses(db_session):
    now = datetime.now(timezone.utc)
    starting = await _make_challenge(
        db_session,
        status=ChallengeStatus.UPCOMING,
        starts_at=now - timedelta(minutes=5),
        ends_at=now + timedelta(days=5),
    )
    ended = await _make_challenge(
        db_session,
        starts_at=now - timedelta(days=5),
        ends_at=now - timedelta(minutes=5),
    )

    counts = await challenges.refresh_challenge_statuses(db_session, now)

    assert counts == {"activated": 1, "expired": 1}
    assert (await _reload(db_session, starting.id)).status == ChallengeStatus.ACTIVE
    assert (await _reload(db_session, ended.id)).status == ChallengeStatus.EXPIRED


@pytest.mark.asyncio
@pytest.mark.unit
async def test_existing_progress_row_is_updated_in_place(db_session):
    challenge = await _make_challenge(db_session, target=3, total_participants=1)
    db_session.add(ChallengeProgressFactory.create(challenge.id, "seeded", current=2))
    await db_session.commit()

    result = await advance(db_session, challenge.id, "seeded")

    assert result.previous == 2
    assert result.crossed is True
    refreshed = await _reload(db_session, challenge.id)
    assert refreshed.total_participants == 1
    assert refreshed.total_completions == 1
