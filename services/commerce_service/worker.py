"""ARQ worker for commerce service background tasks.

Schedules periodic tasks via ARQ cron jobs backed by Redis.
Run with: arq services.commerce_service.worker.WorkerSettings
"""

from arq import cron
from libs.common.arq_config import get_redis_settings
from libs.common.logging import get_logger

logger = get_logger(__name__)


# ── Wrapper functions (ARQ requires top-level async callables) ──


async def task_expire_stale_carts(ctx: dict):
    """Expire carts whose session TTL has lapsed."""
    from services.commerce_service.tasks import run_expire_carts

    logger.info("Running: expire_stale_carts")
    await run_expire_carts()


async def task_report_low_stock(ctx: dict):
    """Log low-stock items per store."""
    from services.commerce_service.tasks import run_report_low_stock

    logger.info("Running: report_low_stock")
    await run_report_low_stock()


# ── Worker configuration ──


class WorkerSettings:
    """ARQ worker settings with cron job schedules."""

    redis_settings = get_redis_settings()

    functions = [
        task_expire_stale_carts,
        task_report_low_stock,
    ]

    cron_jobs = [
        # Every 15 minutes
        cron(
            task_expire_stale_carts,
            minute={0, 15, 30, 45},
            run_at_startup=True,
        ),
        # Hourly
        cron(
            task_report_low_stock,
            minute=5,
            run_at_startup=False,
        ),
    ]
