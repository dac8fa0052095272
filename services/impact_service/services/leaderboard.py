"""Per-challenge leaderboard, derived from stored progress rows only."""

import uuid

from services.impact_service.errors import ValidationError
from services.impact_service.models import ChallengeProgress
from services.impact_service.schemas.challenges import LeaderboardEntry
from services.impact_service.services.challenges import get_challenge
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession


async def top_n(
    db: AsyncSession, challenge_id: uuid.UUID, k: int
) -> list[LeaderboardEntry]:
    """Top ``k`` participants of a challenge.

    Ranked by progress (highest first), ties broken by who started first and
    then by user id, so equal inputs always produce the same order.
    """
    if k < 1:
        raise ValidationError("k must be at least 1")
    challenge = await get_challenge(db, challenge_id)

    result = await db.execute(
        select(ChallengeProgress)
        .where(ChallengeProgress.challenge_id == challenge_id)
        .order_by(
            ChallengeProgress.current.desc(),
            ChallengeProgress.started_at.asc(),
            ChallengeProgress.user_auth_id.asc(),
        )
        .limit(k)
        .execution_options(populate_existing=True)
    )
    return [
        LeaderboardEntry(
            rank=rank,
            user_auth_id=progress.user_auth_id,
            current=progress.current,
            display_current=progress.display_current(challenge.target),
            started_at=progress.started_at,
            completed=progress.current >= challenge.target,
        )
        for rank, progress in enumerate(result.scalars().all(), start=1)
    ]
