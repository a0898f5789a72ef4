"""APScheduler integration for FastAPI.

Runs housekeeping jobs: expired link codes and old process-wide
notification keys are purged periodically.
"""

import logging
from datetime import datetime, timedelta, timezone

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy import delete
from sqlmodel import Session

from alert_relay.config import settings
from alert_relay.database import engine
from alert_relay.models.notification import NotificationKey
from alert_relay.services import directory

logger = logging.getLogger(__name__)

scheduler = AsyncIOScheduler()


def purge_link_codes() -> int:
    with Session(engine) as session:
        removed = directory.purge_expired_codes(session)
    if removed:
        logger.info(f"Purged {removed} expired link codes")
    return removed


def purge_notification_keys(now: datetime | None = None) -> int:
    """Drop idempotency keys older than the retention window."""
    now = now or datetime.now(timezone.utc)
    cutoff = now - timedelta(days=settings.notification_key_retention_days)
    with engine.begin() as conn:
        result = conn.execute(delete(NotificationKey).where(NotificationKey.created_at < cutoff))
    removed = result.rowcount
    if removed:
        logger.info(f"Purged {removed} notification keys older than {cutoff:%Y-%m-%d}")
    return removed


def start_scheduler():
    """Register housekeeping jobs and start the scheduler."""
    scheduler.add_job(
        purge_link_codes,
        trigger=IntervalTrigger(minutes=15),
        id="purge_link_codes",
        name="Purge link codes",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
        misfire_grace_time=60,
    )
    scheduler.add_job(
        purge_notification_keys,
        trigger=IntervalTrigger(hours=6),
        id="purge_notification_keys",
        name="Purge notification keys",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
        misfire_grace_time=300,
    )
    scheduler.start()
    logger.info(f"Scheduler started with {len(scheduler.get_jobs())} jobs")


def stop_scheduler():
    """Shut down the scheduler."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")


def get_scheduler_status() -> dict:
    """Return current scheduler state for the API."""
    jobs = scheduler.get_jobs()
    return {
        "running": scheduler.running,
        "job_count": len(jobs),
        "jobs": [
            {
                "id": j.id,
                "name": j.name,
                "next_run": str(j.next_run_time) if j.next_run_time else None,
                "trigger": str(j.trigger),
            }
            for j in jobs
        ],
    }
