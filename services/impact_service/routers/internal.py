"""Internal service-to-service impact endpoints.

These endpoints are called by other services via service-role JWT,
not by frontend clients directly.
"""

from fastapi import APIRouter, Depends, status
from libs.auth.dependencies import require_service_role
from libs.auth.models import AuthUser
from libs.common.logging import get_logger
from libs.db.session import get_async_db
from services.impact_service.schemas import (
    AccountCreate,
    ProgressResponse,
    ReferralSignup,
)
from services.impact_service.services import accounts, challenges
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)
router = APIRouter(prefix="/internal/impact", tags=["internal-impact"])


@router.post("/accounts", status_code=status.HTTP_201_CREATED)
async def create_account(
    body: AccountCreate,
    _service: AuthUser = Depends(require_service_role),
    db: AsyncSession = Depends(get_async_db),
) -> dict[str, str]:
    """Create the points account for a new user. Idempotent."""
    account = await accounts.ensure_account(db, body.user_auth_id)
    return {"user_auth_id": account.user_auth_id}


@router.post("/referrals", response_model=list[ProgressResponse])
async def record_referral(
    body: ReferralSignup,
    _service: AuthUser = Depends(require_service_role),
    db: AsyncSession = Depends(get_async_db),
):
    """Credit the referrer on every open referral challenge."""
    results = await challenges.record_referral(
        db, body.referrer_auth_id, body.referred_auth_id
    )
    responses = []
    for result in results:
        challenge = await challenges.get_challenge(db, result.progress.challenge_id)
        progress = result.progress
        responses.append(
            ProgressResponse(
                challenge_id=progress.challenge_id,
                user_auth_id=progress.user_auth_id,
                current=progress.current,
                display_current=progress.display_current(challenge.target),
                started=progress.started,
                started_at=progress.started_at,
                completed_at=progress.completed_at,
                referred_user_ids=list(progress.referred_user_ids or []),
            )
        )
    return responses
