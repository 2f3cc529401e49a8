"""
APARTRACK Reminders — Scheduler Jobs

Uses its own APScheduler BackgroundScheduler instance. Cron jobs fire in the
configured local timezone.
"""
import logging
from apscheduler.schedulers.background import BackgroundScheduler

from ..config import get_config, get_timezone
from ..geo import utc_now
from .engine import dispatch_reminders

logger = logging.getLogger(__name__)

_scheduler = None


def get_reminder_scheduler() -> BackgroundScheduler:
    """Get or create the singleton reminder scheduler."""
    global _scheduler
    if _scheduler is None:
        _scheduler = BackgroundScheduler(
            timezone=get_timezone(),
            job_defaults={"coalesce": True, "max_instances": 1, "misfire_grace_time": 120},
        )
    return _scheduler


def init_reminder_scheduler():
    """Register and start reminder scheduler jobs."""
    scheduler = get_reminder_scheduler()

    if scheduler.running:
        return

    tz = get_timezone()
    run_hour = get_config("reminder_run_hour", 7)

    # Reminder dispatch: once a day in local time. Markers make extra runs harmless.
    scheduler.add_job(
        _run_dispatch,
        "cron",
        hour=run_hour,
        minute=0,
        timezone=tz,
        id="reminder_dispatch_daily",
        replace_existing=True,
    )

    # Audit retention: first day of each month
    scheduler.add_job(
        _run_audit_cleanup,
        "cron",
        day=1,
        hour=2,
        minute=0,
        timezone=tz,
        id="audit_cleanup_monthly",
        replace_existing=True,
    )

    scheduler.start()
    logger.info(f"[Reminders] Scheduler started: dispatch daily at {run_hour:02d}:00 {tz.key}, monthly audit cleanup")


def shutdown_reminder_scheduler():
    global _scheduler
    if _scheduler is not None and _scheduler.running:
        _scheduler.shutdown(wait=False)
        logger.info("[Reminders] Scheduler stopped")
    _scheduler = None


def _run_dispatch():
    try:
        summary = dispatch_reminders()
        logger.info(f"[Reminders] Scheduled dispatch finished: {summary.total_sent} sent, "
                    f"{summary.total_failed} failed")
    except Exception as e:
        logger.error(f"[Reminders] Scheduled dispatch failed: {e}")


def _run_audit_cleanup():
    from ..audit.models import cleanup_events

    days = get_config("audit_retention_days", 365)
    try:
        result = cleanup_events(days, utc_now())
        logger.info(f"[Reminders] Audit cleanup removed {result['deleted_count']} events older than {days} days")
    except Exception as e:
        logger.error(f"[Reminders] Audit cleanup failed: {e}")
