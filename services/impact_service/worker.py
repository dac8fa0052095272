"""ARQ worker for challenge fan-out retries and challenge status upkeep."""

from arq import cron
from libs.common.arq_config import get_redis_settings
from libs.common.logging import get_logger

logger = get_logger(__name__)


async def task_retry_challenge_fanouts(ctx: dict):
    from services.impact_service.tasks import retry_challenge_fanouts

    logger.info("Running: retry_challenge_fanouts")
    await retry_challenge_fanouts()


async def task_refresh_challenge_statuses(ctx: dict):
    from services.impact_service.tasks import refresh_statuses

    logger.info("Running: refresh_challenge_statuses")
    await refresh_statuses()


class WorkerSettings:
    redis_settings = get_redis_settings()

    functions = [
        task_retry_challenge_fanouts,
        task_refresh_challenge_statuses,
    ]

    cron_jobs = [
        cron(
            task_retry_challenge_fanouts,
            minute={0, 5, 10, 15, 20, 25, 30, 35, 40, 45, 50, 55},
            run_at_startup=True,
        ),
        cron(
            task_refresh_challenge_statuses,
            minute={2, 17, 32, 47},
            run_at_startup=True,
        ),
    ]
