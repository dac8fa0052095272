"""Admin impact endpoints (service-role tokens only)."""

from fastapi import APIRouter, Depends, status
from libs.auth.dependencies import require_service_role
from libs.auth.models import AuthUser
from libs.common.logging import get_logger
from libs.db.session import get_async_db
from services.impact_service.schemas import (
    ChallengeCreate,
    ChallengeResponse,
    EmergencyCreate,
    EmergencyResponse,
)
from services.impact_service.services import challenges, ledger
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)
router = APIRouter(prefix="/admin/impact", tags=["admin-impact"])


@router.post(
    "/challenges", response_model=ChallengeResponse, status_code=status.HTTP_201_CREATED
)
async def create_challenge(
    body: ChallengeCreate,
    admin: AuthUser = Depends(require_service_role),
    db: AsyncSession = Depends(get_async_db),
):
    """Create a challenge. Its status follows from the window and the current time."""
    return await challenges.create_challenge(db, body, created_by=admin.user_id)


@router.post("/challenges/refresh-status")
async def refresh_challenge_statuses(
    _admin: AuthUser = Depends(require_service_role),
    db: AsyncSession = Depends(get_async_db),
) -> dict[str, int]:
    """Activate started challenges and expire ended ones now instead of waiting for the worker."""
    return await challenges.refresh_challenge_statuses(db)


@router.post(
    "/emergencies", response_model=EmergencyResponse, status_code=status.HTTP_201_CREATED
)
async def create_emergency(
    body: EmergencyCreate,
    _admin: AuthUser = Depends(require_service_role),
    db: AsyncSession = Depends(get_async_db),
):
    return await ledger.create_emergency(db, body)
