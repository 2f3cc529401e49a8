"""
APARTRACK Audit Log — Anomaly Detector

Batch scan of the audit log for inspections that look fabricated: submits
that follow their start too quickly, submits at night, and the same photo
reused for more than one inspection.
"""
import datetime
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from ..config import get_config, get_timezone
from ..geo import ensure_utc, to_zone, utc_now, ZoneLike
from .models import AuditEvent, events_since, ACTION_START, ACTION_SUBMIT

logger = logging.getLogger(__name__)


class AnomalyType(str, Enum):
    FAST_INSPECTION = "fast_inspection"
    OFF_HOURS = "off_hours"
    DUPLICATE_PHOTO = "duplicate_photo"


class AnomalySeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


SEVERITY_RANK = {
    AnomalySeverity.HIGH: 0,
    AnomalySeverity.MEDIUM: 1,
    AnomalySeverity.LOW: 2,
}


@dataclass
class Anomaly:
    type: AnomalyType
    severity: AnomalySeverity
    event_id: int
    asset_id: int
    actor_id: int
    occurred_at: datetime.datetime
    description: str
    related_event_id: Optional[int] = None
    evidence: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self, zone: Optional[ZoneLike] = None) -> Dict[str, Any]:
        data = {
            "type": self.type.value,
            "severity": self.severity.value,
            "event_id": self.event_id,
            "asset_id": self.asset_id,
            "actor_id": self.actor_id,
            "occurred_at": self.occurred_at.isoformat(),
            "description": self.description,
            "related_event_id": self.related_event_id,
            "evidence": self.evidence,
        }
        if zone is not None:
            data["occurred_local"] = to_zone(self.occurred_at, zone).isoformat()
        return data


def rank_anomalies(anomalies: List[Anomaly]) -> List[Anomaly]:
    """Most severe first; within a severity, most recent first."""
    by_recency = sorted(anomalies, key=lambda a: (a.occurred_at, a.event_id), reverse=True)
    return sorted(by_recency, key=lambda a: SEVERITY_RANK[a.severity])


def find_fast_inspections(events: List[AuditEvent], since: datetime.datetime,
                          threshold_seconds: int) -> List[Anomaly]:
    found = []
    last_start: Dict[tuple, AuditEvent] = {}
    # events are oldest-first, so last_start always holds the latest prior start
    for ev in events:
        key = (ev.asset_id, ev.actor_id)
        if ev.action == ACTION_START:
            last_start[key] = ev
            continue
        if ev.action != ACTION_SUBMIT or ev.occurred_at < since:
            continue
        start = last_start.get(key)
        if start is None:
            continue
        elapsed = (ev.occurred_at - start.occurred_at).total_seconds()
        if elapsed < threshold_seconds:
            found.append(Anomaly(
                type=AnomalyType.FAST_INSPECTION,
                severity=AnomalySeverity.HIGH,
                event_id=ev.id,
                asset_id=ev.asset_id,
                actor_id=ev.actor_id,
                occurred_at=ev.occurred_at,
                description=f"Inspection submitted {int(elapsed)} seconds after it was started",
                related_event_id=start.id,
                evidence={"elapsed_seconds": elapsed, "threshold_seconds": threshold_seconds},
            ))
    return found


def find_off_hours(events: List[AuditEvent], since: datetime.datetime, zone: ZoneLike,
                   start_hour: int, end_hour: int) -> List[Anomaly]:
    found = []
    for ev in events:
        if ev.action != ACTION_SUBMIT or not ev.is_successful or ev.occurred_at < since:
            continue
        local = to_zone(ev.occurred_at, zone)
        if local.hour < start_hour or local.hour > end_hour:
            found.append(Anomaly(
                type=AnomalyType.OFF_HOURS,
                severity=AnomalySeverity.MEDIUM,
                event_id=ev.id,
                asset_id=ev.asset_id,
                actor_id=ev.actor_id,
                occurred_at=ev.occurred_at,
                description=f"Inspection submitted at {local:%H:%M} local time",
                evidence={"local_time": local.isoformat()},
            ))
    return found


def find_duplicate_photos(events: List[AuditEvent], since: datetime.datetime) -> List[Anomaly]:
    found = []
    first_seen: Dict[str, AuditEvent] = {}
    for ev in events:
        if ev.action != ACTION_SUBMIT or not ev.is_successful or not ev.photo_hash:
            continue
        if ev.occurred_at < since:
            continue
        original = first_seen.get(ev.photo_hash)
        if original is None:
            first_seen[ev.photo_hash] = ev
            continue
        found.append(Anomaly(
            type=AnomalyType.DUPLICATE_PHOTO,
            severity=AnomalySeverity.HIGH,
            event_id=ev.id,
            asset_id=ev.asset_id,
            actor_id=ev.actor_id,
            occurred_at=ev.occurred_at,
            description=f"Photo already used in inspection event {original.id}",
            related_event_id=original.id,
            evidence={"photo_hash": ev.photo_hash, "first_asset_id": original.asset_id},
        ))
    return found


def detect_anomalies(
    now: Optional[datetime.datetime] = None,
    days: Optional[int] = None,
    zone: Optional[ZoneLike] = None,
) -> List[Anomaly]:
    """
    Scan the last `days` days of audit events and return ranked anomalies.

    Read-only. An empty window yields an empty list.
    """
    now = ensure_utc(now or utc_now())
    days = days if days is not None else get_config("anomaly_scan_days", 30)
    zone = zone if zone is not None else get_timezone()
    threshold = get_config("fast_inspection_seconds", 120)

    since = now - datetime.timedelta(days=days)
    # reach back far enough to see the start that precedes the first submit in range
    events = events_since(since - datetime.timedelta(seconds=threshold), until=now)

    anomalies = (
        find_fast_inspections(events, since, threshold)
        + find_off_hours(events, since, zone,
                         get_config("off_hours_start", 6), get_config("off_hours_end", 22))
        + find_duplicate_photos(events, since)
    )
    ranked = rank_anomalies(anomalies)
    if ranked:
        logger.info(f"[Audit] Anomaly scan over {days} days found {len(ranked)} anomalies")
    return ranked
