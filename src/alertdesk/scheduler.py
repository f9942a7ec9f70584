"""Background scheduler that drives periodic alert processing passes."""

from typing import Callable, List

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED
from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.jobstores.base import JobLookupError
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.background import BackgroundScheduler

from .config.logging import get_logger

logger = get_logger(__name__)

ALERT_PROCESSING_JOB_ID = "alert_processing"


def create_scheduler(max_workers: int = 3) -> BackgroundScheduler:
    """
    Create and configure a BackgroundScheduler.

    Jobs hold references to live service objects, so they live in memory
    rather than in a persistent job store.

    Returns:
        Configured BackgroundScheduler instance
    """
    scheduler = BackgroundScheduler(
        jobstores={"default": MemoryJobStore()},
        executors={"default": ThreadPoolExecutor(max_workers=max_workers)},
        job_defaults={
            "coalesce": False,  # Don't combine multiple missed executions
            "max_instances": 1,  # Only one pass at a time
            "misfire_grace_time": 30,
        },
        timezone="UTC",
    )

    scheduler.add_listener(job_executed_listener, EVENT_JOB_EXECUTED)
    scheduler.add_listener(job_error_listener, EVENT_JOB_ERROR)

    return scheduler


def job_executed_listener(event):
    """Log successful job executions."""
    logger.info(
        "Scheduled job executed",
        job_id=event.job_id,
        scheduled_run_time=str(event.scheduled_run_time),
    )


def job_error_listener(event):
    """Log job execution errors."""
    logger.error(
        "Scheduled job crashed",
        job_id=event.job_id,
        error=str(event.exception),
        traceback=event.traceback,
    )


def start_scheduler(scheduler: BackgroundScheduler) -> None:
    if not scheduler.running:
        scheduler.start()
        logger.info("Scheduler started")


def shutdown_scheduler(scheduler: BackgroundScheduler, wait: bool = True) -> None:
    if scheduler.running:
        scheduler.shutdown(wait=wait)
        logger.info("Scheduler shutdown complete")


def add_alert_processing_job(
    scheduler: BackgroundScheduler,
    callback: Callable[[], object],
    interval_minutes: int = 5,
) -> None:
    """
    Schedule the periodic alert processing pass.

    Args:
        scheduler: Scheduler to register the job with
        callback: Blocking callable running one processing pass
        interval_minutes: Minutes between passes
    """
    try:
        scheduler.remove_job(ALERT_PROCESSING_JOB_ID)
    except JobLookupError:
        pass

    scheduler.add_job(
        func=callback,
        trigger="interval",
        minutes=interval_minutes,
        id=ALERT_PROCESSING_JOB_ID,
        name="Alert Processing",
        replace_existing=True,
    )

    logger.info("Added alert processing job", interval_minutes=interval_minutes)


def list_scheduled_jobs(scheduler: BackgroundScheduler) -> List[str]:
    """Describe every scheduled job, one line each."""
    lines = [
        f"{job.id}: {job.name} (next run: {getattr(job, 'next_run_time', None)})"
        for job in scheduler.get_jobs()
    ]
    for line in lines:
        logger.info("Scheduled job", job=line)
    return lines
