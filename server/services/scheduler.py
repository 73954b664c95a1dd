"""
Cron Scheduler Service using APScheduler.
Fires the periodic full metadata sync.
"""
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.jobstores.base import JobLookupError
from typing import Callable, Dict, Optional, TYPE_CHECKING

from core.logging import get_logger

if TYPE_CHECKING:
    from services.sync.orchestrator import SyncOrchestrator

logger = get_logger(__name__)

FULL_SYNC_JOB_ID = "metadata-full-sync"

_scheduler: Optional[AsyncIOScheduler] = None


def get_scheduler() -> AsyncIOScheduler:
    """Get or create the singleton scheduler instance."""
    global _scheduler
    if _scheduler is None:
        _scheduler = AsyncIOScheduler(timezone="UTC")
    return _scheduler


def start_scheduler():
    """Start the scheduler if not already running."""
    scheduler = get_scheduler()
    if not scheduler.running:
        scheduler.start()
        logger.info("Scheduler started")


def shutdown_scheduler():
    """Shutdown the scheduler gracefully."""
    scheduler = get_scheduler()
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler shutdown")


def build_cron_trigger(cron_expression: str, timezone: str = "UTC") -> CronTrigger:
    """
    Build a trigger from a 5-field (minute hour day month weekday) or
    6-field (second minute hour day month weekday) cron expression.
    """
    parts = cron_expression.split()

    if len(parts) >= 6:
        return CronTrigger(
            second=parts[0],
            minute=parts[1],
            hour=parts[2],
            day=parts[3],
            month=parts[4],
            day_of_week=parts[5],
            timezone=timezone
        )

    if len(parts) < 5:
        parts.extend(['*'] * (5 - len(parts)))
    return CronTrigger(
        second='0',
        minute=parts[0],
        hour=parts[1],
        day=parts[2],
        month=parts[3],
        day_of_week=parts[4],
        timezone=timezone
    )


def register_cron_job(
    job_id: str,
    cron_expression: str,
    callback: Callable,
    timezone: str = "UTC",
    **kwargs
) -> str:
    """
    Register a cron job with the scheduler.

    Args:
        job_id: Unique identifier for the job
        cron_expression: 5- or 6-field cron expression
        callback: Async function to call when job fires
        timezone: Timezone for schedule (default: UTC)
        **kwargs: Additional arguments passed to the callback

    Returns:
        The job_id
    """
    scheduler = get_scheduler()
    scheduler.add_job(
        callback,
        trigger=build_cron_trigger(cron_expression, timezone),
        id=job_id,
        replace_existing=True,
        max_instances=1,
        coalesce=True,
        kwargs=kwargs
    )

    logger.info("Registered cron job", job_id=job_id, cron=cron_expression)
    return job_id


def register_full_sync(orchestrator: "SyncOrchestrator", cron_expression: str) -> str:
    """Schedule SyncOrchestrator.run_full_sync. Overlapping fires are skipped by the orchestrator."""
    return register_cron_job(FULL_SYNC_JOB_ID, cron_expression, orchestrator.run_full_sync)


def remove_cron_job(job_id: str) -> bool:
    """
    Remove a cron job from the scheduler.

    Returns:
        True if job was removed, False if not found
    """
    scheduler = get_scheduler()
    try:
        scheduler.remove_job(job_id)
        logger.info("Removed cron job", job_id=job_id)
        return True
    except JobLookupError:
        logger.warning("Job not found", job_id=job_id)
        return False


def get_job_info(job_id: str) -> Optional[Dict]:
    """
    Get information about a scheduled job.

    Returns:
        Dict with job info or None if not found
    """
    scheduler = get_scheduler()
    job = scheduler.get_job(job_id)
    if job:
        next_run = getattr(job, "next_run_time", None)
        return {
            "id": job.id,
            "next_run_time": next_run.isoformat() if next_run else None,
            "trigger": str(job.trigger)
        }
    return None
