"""Background tasks for the impact service."""

from libs.common.logging import get_logger
from libs.db.config import AsyncSessionLocal
from services.impact_service.services.challenges import refresh_challenge_statuses
from services.impact_service.services.completion import retry_pending_fanouts

logger = get_logger(__name__)


async def retry_challenge_fanouts() -> int:
    """Re-run challenge fan-out for completed events whose retry is due."""
    return await retry_pending_fanouts(AsyncSessionLocal)


async def refresh_statuses() -> dict[str, int]:
    async with AsyncSessionLocal() as db:
        return await refresh_challenge_statuses(db)
