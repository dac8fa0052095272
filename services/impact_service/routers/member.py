"""Member-facing impact endpoints."""

import uuid
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Query, status
from libs.auth.dependencies import get_current_user
from libs.auth.models import AuthUser
from libs.common.config import get_settings
from libs.common.datetime_utils import utc_now
from libs.common.logging import get_logger
from libs.db.session import get_async_db
from services.impact_service.schemas import (
    AccountResponse,
    BadgeResponse,
    ChallengeStats,
    ChallengeWithProgress,
    CompletedChallenge,
    CompletionResponse,
    ConsumeRequest,
    DonationEventCreate,
    DonationEventResponse,
    HistoryResponse,
    LeaderboardResponse,
    RedeemRequest,
    RewardResponse,
    VoucherListResponse,
    VoucherResponse,
)
from services.impact_service.services import (
    accounts,
    challenges,
    completion,
    history,
    leaderboard,
    ledger,
    vouchers,
)
from services.impact_service.services.badges import badge_for, next_badge
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)
router = APIRouter(prefix="/impact", tags=["impact"])


def _badge(badge) -> BadgeResponse:
    return BadgeResponse(
        key=badge.key,
        title=badge.title,
        min_donations=badge.min_donations,
        max_donations=badge.max_donations,
    )


# ---------------------------------------------------------------------------
# Donation events
# ---------------------------------------------------------------------------


@router.post(
    "/events", response_model=DonationEventResponse, status_code=status.HTTP_201_CREATED
)
async def record_event(
    body: DonationEventCreate,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Record a pending appointment, drive registration or emergency response."""
    return await ledger.record_event(db, current_user.user_id, body)


@router.post("/events/{event_id}/cancel", response_model=DonationEventResponse)
async def cancel_event(
    event_id: uuid.UUID,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    return await ledger.cancel_event(db, event_id, current_user.user_id)


@router.post("/events/{event_id}/complete", response_model=CompletionResponse)
async def complete_event(
    event_id: uuid.UUID,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Mark a donation completed and award its impact points."""
    result = await completion.complete_donation(db, event_id, current_user.user_id)
    return CompletionResponse(
        event_id=result.event_id,
        points_awarded=result.points_awarded,
        breakdown=result.breakdown,
        challenges_advanced=result.challenges_advanced,
        emergency_fulfilled=result.emergency_fulfilled,
    )


@router.post("/events/{event_id}/undo", response_model=DonationEventResponse)
async def undo_event_completion(
    event_id: uuid.UUID,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Revert a completion marked by mistake."""
    return await completion.undo_completion(db, event_id, current_user.user_id)


@router.get("/history", response_model=HistoryResponse)
async def get_history(
    max_results: Annotated[Optional[int], Query(ge=1, le=100)] = None,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Newest-first donation history across all event kinds."""
    max_results = max_results or get_settings().HISTORY_MAX_RESULTS
    entries = await history.history_snapshot(db, current_user.user_id, max_results)
    return HistoryResponse(entries=entries, max_results=max_results)


# ---------------------------------------------------------------------------
# Account
# ---------------------------------------------------------------------------


@router.get("/me", response_model=AccountResponse)
async def get_my_account(
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Counters, current badge and progress toward the next one."""
    account = await accounts.ensure_account(db, current_user.user_id)
    upcoming, progress, needed = next_badge(account.total_donations)
    return AccountResponse(
        user_auth_id=account.user_auth_id,
        total_donations=account.total_donations,
        impact_points=account.impact_points,
        total_points=account.total_points,
        challenges_completed=account.challenges_completed,
        last_donation_at=account.last_donation_at,
        badge=_badge(badge_for(account.total_donations)),
        next_badge=_badge(upcoming) if upcoming else None,
        badge_progress=progress,
        donations_to_next_badge=needed,
    )


# ---------------------------------------------------------------------------
# Challenges
# ---------------------------------------------------------------------------


@router.get("/challenges/active", response_model=list[ChallengeWithProgress])
async def list_active_challenges(
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    return await challenges.get_active_challenges(db, current_user.user_id, utc_now())


@router.get("/challenges/completed", response_model=list[CompletedChallenge])
async def list_completed_challenges(
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    return await challenges.get_completed_challenges(db, current_user.user_id)


@router.get("/challenges/{challenge_id}/leaderboard", response_model=LeaderboardResponse)
async def get_leaderboard(
    challenge_id: uuid.UUID,
    k: Annotated[int, Query(ge=1, le=100)] = 10,
    _user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    entries = await leaderboard.top_n(db, challenge_id, k)
    return LeaderboardResponse(challenge_id=challenge_id, entries=entries)


@router.get("/challenges/{challenge_id}/stats", response_model=ChallengeStats)
async def get_challenge_stats(
    challenge_id: uuid.UUID,
    _user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    return await challenges.challenge_stats(db, challenge_id)


# ---------------------------------------------------------------------------
# Rewards and vouchers
# ---------------------------------------------------------------------------


@router.get("/rewards", response_model=list[RewardResponse])
async def list_rewards(_user: AuthUser = Depends(get_current_user)):
    """The reward catalog, cheapest first."""
    return [
        RewardResponse(
            id=reward.id,
            title=reward.title,
            description=reward.description,
            type=reward.type,
            cost=reward.cost,
            validity_days=reward.validity_days,
        )
        for reward in sorted(vouchers.REWARD_CATALOG.values(), key=lambda r: r.cost)
    ]


@router.post(
    "/rewards/{reward_id}/redeem",
    response_model=VoucherResponse,
    status_code=status.HTTP_201_CREATED,
)
async def redeem_reward(
    reward_id: str,
    body: Optional[RedeemRequest] = None,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Spend redeemable points on a catalog reward."""
    await accounts.ensure_account(db, current_user.user_id)
    voucher = await vouchers.redeem_reward(
        db,
        current_user.user_id,
        reward_id,
        idempotency_key=body.idempotency_key if body else None,
    )
    return vouchers.voucher_view(voucher, utc_now())


@router.get("/vouchers", response_model=VoucherListResponse)
async def list_my_vouchers(
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    items = await vouchers.list_vouchers(db, current_user.user_id)
    return VoucherListResponse(vouchers=items, total=len(items))


@router.post("/vouchers/{voucher_id}/consume", response_model=VoucherResponse)
async def consume_voucher(
    voucher_id: uuid.UUID,
    body: ConsumeRequest,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    voucher = await vouchers.consume(db, voucher_id, current_user.user_id, body.purpose)
    return vouchers.voucher_view(voucher, utc_now())
