"""
APARTRACK Reminders — Dispatch Engine

Sends inspection reminders a fixed number of days before each schedule's
local start date. A run may be triggered any number of times per day;
the dispatch markers in models.py keep it to one reminder per
(schedule, bucket).
"""
import datetime
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional, Tuple

from ..config import get_config, get_timezone
from ..delivery import DeliveryChannel, DeliveryResult, get_channel
from ..geo import ensure_utc, to_utc, to_zone, utc_now, ZoneLike
from ..registry.models import Asset, Inspector, get_asset, get_inspector
from ..schedules.models import Schedule, get_schedule, schedules_starting_between
from .models import claim_dispatch, mark_sent, mark_failed

logger = logging.getLogger(__name__)

# bucket name -> days before the local start date
REMINDER_BUCKETS: Tuple[Tuple[str, int], ...] = (
    ("daily", 1),
    ("weekly", 3),
    ("monthly", 7),
)

CADENCE_LABELS = {
    "weekly": "Weekly",
    "monthly": "Monthly",
    "quarterly": "Quarterly",
    "semiannual": "Semiannual",
}


@dataclass
class BucketCount:
    target_date: Optional[str] = None
    sent: int = 0
    failed: int = 0
    already_sent: int = 0
    skipped: int = 0


@dataclass
class DispatchSummary:
    run_at: datetime.datetime
    buckets: Dict[str, BucketCount] = field(default_factory=dict)

    @property
    def total_sent(self) -> int:
        return sum(b.sent for b in self.buckets.values())

    @property
    def total_failed(self) -> int:
        return sum(b.failed for b in self.buckets.values())

    def to_dict(self) -> Dict:
        return {
            "run_at": self.run_at.isoformat(),
            "total_sent": self.total_sent,
            "total_failed": self.total_failed,
            "buckets": {name: vars(count) for name, count in self.buckets.items()},
        }


def local_day_bounds(day: datetime.date, zone: ZoneLike) -> Tuple[datetime.datetime, datetime.datetime]:
    """UTC [start, end) of one calendar day in `zone`."""
    start_local = datetime.datetime.combine(day, datetime.time.min)
    end_local = datetime.datetime.combine(day + datetime.timedelta(days=1), datetime.time.min)
    return to_utc(start_local, zone), to_utc(end_local, zone)


def build_reminder_message(schedule: Schedule, asset: Optional[Asset], inspector: Inspector,
                           zone: ZoneLike) -> Tuple[str, str]:
    start = schedule.start_local(zone)
    end = schedule.end_local(zone)
    serial = asset.serial_number if asset else "-"
    location = (asset.location_name if asset else None) or "-"

    subject = f"Inspection Reminder: {serial} on {start:%A, %d %B %Y}"
    body = f"""Hello {inspector.name},

This is a reminder of your scheduled extinguisher inspection.

SCHEDULE DETAILS
================================
Date: {start:%A, %d %B %Y}
Time: {start:%H:%M} - {end:%H:%M}
Location: {location}
Asset: {serial}
Cadence: {CADENCE_LABELS.get(schedule.cadence, schedule.cadence)}

INSTRUCTIONS
================================
1. Be at the asset location on time
2. Scan the asset QR code to start the inspection
3. Take the asset photo on site with GPS enabled
4. Submit the inspection result in the app
5. Report any damage you find

Inspections are only accepted within 30 minutes of the scheduled start.
"""
    return subject, body


SCHEDULE_NOTICES = {
    "created": (
        "New Inspection Schedule",
        "You have been assigned an extinguisher inspection with the following details.",
        "Please carry out the inspection at the scheduled time.",
    ),
    "updated": (
        "Inspection Schedule Updated",
        "Your extinguisher inspection schedule has been updated. The new details are below.",
        "Please note the change and carry out the inspection at the new time.",
    ),
}


def build_schedule_notice(schedule: Schedule, asset: Optional[Asset], inspector: Inspector,
                          zone: ZoneLike, action: str) -> Tuple[str, str]:
    """Subject and body telling the assignee a schedule was created or changed."""
    if action not in SCHEDULE_NOTICES:
        raise ValueError(f"Unknown schedule notice: {action!r}")
    title, intro, closing = SCHEDULE_NOTICES[action]
    start = schedule.start_local(zone)
    end = schedule.end_local(zone)
    serial = asset.serial_number if asset else "-"
    location = (asset.location_name if asset else None) or "-"

    subject = f"{title}: {serial} on {start:%A, %d %B %Y}"
    body = f"""Hello {inspector.name},

{intro}

SCHEDULE DETAILS
================================
Asset: {serial}
Location: {location}
Date: {start:%A, %d %B %Y}
Time: {start:%H:%M} - {end:%H:%M}
Cadence: {CADENCE_LABELS.get(schedule.cadence, schedule.cadence)}
Notes: {schedule.notes or "-"}

{closing}
"""
    return subject, body


def _deliver(transport: DeliveryChannel, schedule: Schedule, inspector: Inspector,
             zone: ZoneLike, message: Optional[Tuple[str, str]] = None,
             notification_type: str = "schedule_reminder") -> DeliveryResult:
    if message is None:
        message = build_reminder_message(schedule, get_asset(schedule.asset_id), inspector, zone)
    subject, body = message
    try:
        return transport.send(
            inspector.email,
            subject,
            body,
            user_id=inspector.id,
            related_id=schedule.id,
            notification_type=notification_type,
        )
    except Exception as e:
        # transport is a black box; a raise is just another failed send
        logger.error(f"[Reminders] SendFailure: transport raised for schedule {schedule.id}: {e}")
        return DeliveryResult(success=False, recipient=inspector.email, channel=transport.channel_name,
                              error=str(e))


def dispatch_reminders(
    now: Optional[datetime.datetime] = None,
    transport: Optional[DeliveryChannel] = None,
    zone: Optional[ZoneLike] = None,
    clock: Callable[[], datetime.datetime] = utc_now,
) -> DispatchSummary:
    """
    One dispatcher run over every bucket.

    For each bucket, schedules whose local start date is today + lead are
    reminded once. Failed sends leave the marker `failed` so the next run
    retries them; one failure never stops the batch.
    """
    now = ensure_utc(now or clock())
    zone = zone if zone is not None else get_timezone()
    transport = transport or get_channel()
    ttl = get_config("dispatch_claim_ttl_minutes", 15)

    today = to_zone(now, zone).date()
    summary = DispatchSummary(run_at=now)

    for bucket, lead_days in REMINDER_BUCKETS:
        target = today + datetime.timedelta(days=lead_days)
        counts = BucketCount(target_date=target.isoformat())
        summary.buckets[bucket] = counts

        lo, hi = local_day_bounds(target, zone)
        for schedule in schedules_starting_between(lo, hi):
            inspector = get_inspector(schedule.assignee_id)
            if inspector is None or not inspector.is_contactable:
                counts.skipped += 1
                continue

            if not claim_dispatch(schedule.id, bucket, target, now, ttl_minutes=ttl):
                counts.already_sent += 1
                continue

            result = _deliver(transport, schedule, inspector, zone)
            if result.success:
                mark_sent(schedule.id, bucket, now, inspector.email, transport.channel_name, result.message_id)
                counts.sent += 1
            else:
                mark_failed(schedule.id, bucket, inspector.email, transport.channel_name, result.error)
                counts.failed += 1
                logger.warning(f"[Reminders] SendFailure: schedule {schedule.id} bucket {bucket} "
                               f"to {inspector.email}: {result.error}")

    logger.info(
        "[Reminders] Dispatch run: "
        + ", ".join(f"{name}={c.sent} sent/{c.failed} failed" for name, c in summary.buckets.items())
    )
    return summary


def send_schedule_reminder(
    schedule_id: int,
    transport: Optional[DeliveryChannel] = None,
    zone: Optional[ZoneLike] = None,
) -> DeliveryResult:
    """
    Send one reminder right now, outside the bucket rules.

    Manual sends are not recorded as bucket markers, so they never stop the
    automatic reminders from going out.
    """
    schedule = get_schedule(schedule_id)
    if schedule is None:
        raise LookupError(f"Schedule {schedule_id} not found")

    inspector = get_inspector(schedule.assignee_id)
    if inspector is None or not inspector.is_contactable:
        return DeliveryResult(success=False, recipient="", channel="none",
                              error="Schedule has no contactable assignee")

    zone = zone if zone is not None else get_timezone()
    transport = transport or get_channel()
    return _deliver(transport, schedule, inspector, zone)


def send_schedule_notification(
    schedule: Schedule,
    action: str,
    transport: Optional[DeliveryChannel] = None,
    zone: Optional[ZoneLike] = None,
) -> Optional[DeliveryResult]:
    """
    Tell the assignee that `schedule` was created or updated.

    Returns None when there is nobody to tell. A failed send is logged and
    returned; it never raises, so saving the schedule is not affected.
    """
    if action not in SCHEDULE_NOTICES:
        raise ValueError(f"Unknown schedule notice: {action!r}")

    inspector = get_inspector(schedule.assignee_id) if schedule.assignee_id is not None else None
    if inspector is None or not inspector.is_contactable:
        logger.info(f"[Reminders] Schedule {schedule.id} {action}: no contactable assignee to notify")
        return None

    zone = zone if zone is not None else get_timezone()
    transport = transport or get_channel()
    message = build_schedule_notice(schedule, get_asset(schedule.asset_id), inspector, zone, action)
    result = _deliver(transport, schedule, inspector, zone, message=message,
                      notification_type=f"schedule_{action}")
    if result.success:
        logger.info(f"[Reminders] Schedule {schedule.id} {action} notice sent to {inspector.email}")
    else:
        logger.warning(f"[Reminders] SendFailure: schedule {schedule.id} {action} notice "
                       f"to {inspector.email}: {result.error}")
    return result
