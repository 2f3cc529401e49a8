# ============================================================================
# APARTRACK Validation Gate
# ============================================================================
# Decides whether one field submission may be recorded as a completed
# inspection. Checks run in order: geofence, scheduled window, photo
# metadata. The first failing check decides the rejection.
#
# Rejections are returned as GateDecision values carrying the numbers the
# caller needs for a useful message (distance vs radius, window bounds).
# Every call writes exactly one audit event; an accepted call also marks
# the matched schedule completed, in the same transaction.
# ============================================================================

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, List, Callable, Dict, Any

from ..config import get_config, get_timezone
from ..db import get_conn
from ..geo import distance_meters, ensure_utc, to_zone, utc_now, ZoneLike
from ..registry.models import Asset, get_asset
from ..schedules.models import Schedule, find_open_schedules, mark_completed
from ..schedules.status import inspection_window
from ..audit.models import insert_event, ACTION_SUBMIT, ACTION_VALIDATION_FAILED
from .photo import PhotoMetadata, usable_coordinate

logger = logging.getLogger(__name__)


class Rejection(str, Enum):
    MISSING_COORDINATES = "missing_coordinates"
    OUT_OF_RANGE = "out_of_range"
    OUTSIDE_SCHEDULED_WINDOW = "outside_scheduled_window"
    PHOTO_METADATA_MISMATCH = "photo_metadata_mismatch"


class PhotoCheck(str, Enum):
    ABSENT = "absent"                  # nothing to compare against
    CONSISTENT = "consistent"
    CONTRADICTORY = "contradictory"    # present metadata disagrees with the submission


class AssetNotFound(LookupError):
    pass


@dataclass
class InspectionAttempt:
    asset_id: int
    submitted_by: int
    reported_at: datetime
    reported_lat: Optional[float] = None
    reported_lng: Optional[float] = None
    photo: Optional[PhotoMetadata] = None

    def __post_init__(self):
        self.reported_at = ensure_utc(self.reported_at)

    @property
    def has_coordinates(self) -> bool:
        return self.reported_lat is not None and self.reported_lng is not None


@dataclass
class PhotoCheckResult:
    outcome: PhotoCheck
    age_hours: Optional[float] = None
    distance_meters: Optional[float] = None
    problems: List[str] = field(default_factory=list)


@dataclass
class GateDecision:
    accepted: bool
    reported_at: datetime
    reason: Optional[Rejection] = None
    message: str = ""
    distance_meters: Optional[float] = None
    valid_radius_meters: Optional[float] = None
    window_start: Optional[datetime] = None
    window_end: Optional[datetime] = None
    schedule_id: Optional[int] = None
    photo_check: PhotoCheck = PhotoCheck.ABSENT
    photo_age_hours: Optional[float] = None
    photo_distance_meters: Optional[float] = None
    audit_event_id: Optional[int] = None

    def to_dict(self, zone: Optional[ZoneLike] = None) -> Dict[str, Any]:
        def _iso(dt):
            return dt.isoformat() if dt else None

        def _local(dt):
            return to_zone(dt, zone).isoformat() if (dt and zone is not None) else None

        return {
            "accepted": self.accepted,
            "reason": self.reason.value if self.reason else None,
            "message": self.message,
            "distance_meters": round(self.distance_meters, 1) if self.distance_meters is not None else None,
            "valid_radius_meters": self.valid_radius_meters,
            "window_start": _iso(self.window_start),
            "window_end": _iso(self.window_end),
            "window_start_local": _local(self.window_start),
            "window_end_local": _local(self.window_end),
            "reported_at": _iso(self.reported_at),
            "reported_at_local": _local(self.reported_at),
            "schedule_id": self.schedule_id,
            "photo_check": self.photo_check.value,
            "photo_age_hours": round(self.photo_age_hours, 2) if self.photo_age_hours is not None else None,
            "photo_distance_meters": (round(self.photo_distance_meters, 1)
                                      if self.photo_distance_meters is not None else None),
            "audit_event_id": self.audit_event_id,
        }


def match_schedule(schedules: List[Schedule], reported_at: datetime,
                   window_minutes: int) -> Optional[Schedule]:
    """
    Pick the schedule a submission counts against.

    Prefer one whose inspection window contains the reported instant,
    otherwise the one whose start is nearest to it.
    """
    if not schedules:
        return None
    for schedule in schedules:
        lo, hi = inspection_window(schedule, window_minutes)
        if lo <= reported_at <= hi:
            return schedule
    return min(schedules, key=lambda s: (abs((s.start_at - reported_at).total_seconds()), s.start_at))


class ValidationGate:
    """
    Location, time-window and photo-integrity gate for inspection submissions.

    Thresholds default to the stored configuration; the clock is only used
    to stamp decisions when no reported instant is supplied by the caller.
    """

    def __init__(
        self,
        window_minutes: Optional[int] = None,
        photo_max_age_hours: Optional[int] = None,
        photo_gps_tolerance_meters: Optional[float] = None,
        default_radius_meters: Optional[float] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.window_minutes = window_minutes if window_minutes is not None else get_config("inspection_window_minutes", 30)
        self.photo_max_age_hours = (photo_max_age_hours if photo_max_age_hours is not None
                                    else get_config("photo_max_age_hours", 24))
        self.photo_gps_tolerance_meters = (photo_gps_tolerance_meters if photo_gps_tolerance_meters is not None
                                           else get_config("photo_gps_tolerance_meters", 100))
        self.default_radius_meters = (default_radius_meters if default_radius_meters is not None
                                      else get_config("default_valid_radius_meters", 30))
        self.clock = clock

    # ------------------------------------------------------------
    # Individual checks (pure)
    # ------------------------------------------------------------

    def check_location(self, attempt: InspectionAttempt, asset: Asset) -> Optional[GateDecision]:
        if asset.is_mobile:
            return None

        radius = asset.valid_radius_meters if asset.valid_radius_meters is not None else self.default_radius_meters

        if not attempt.has_coordinates:
            return GateDecision(
                accepted=False,
                reported_at=attempt.reported_at,
                reason=Rejection.MISSING_COORDINATES,
                message="Location coordinates are missing. Make sure GPS is enabled.",
                valid_radius_meters=radius,
            )

        if asset.fixed_lat is None or asset.fixed_lng is None:
            raise ValueError(f"Fixed asset {asset.id} has no coordinates on record")

        distance = distance_meters(attempt.reported_lat, attempt.reported_lng, asset.fixed_lat, asset.fixed_lng)
        if distance > radius:
            return GateDecision(
                accepted=False,
                reported_at=attempt.reported_at,
                reason=Rejection.OUT_OF_RANGE,
                message=f"You are {distance:.0f} meters from the asset. Maximum {radius:g} meters.",
                distance_meters=distance,
                valid_radius_meters=radius,
            )
        return None

    def check_window(self, attempt: InspectionAttempt, schedule: Optional[Schedule],
                     zone: ZoneLike) -> Optional[GateDecision]:
        if schedule is None:
            return None
        lo, hi = inspection_window(schedule, self.window_minutes)
        if lo <= attempt.reported_at <= hi:
            return None
        return GateDecision(
            accepted=False,
            reported_at=attempt.reported_at,
            reason=Rejection.OUTSIDE_SCHEDULED_WINDOW,
            message=(
                "Inspection can only be done in the scheduled window "
                f"{to_zone(lo, zone):%Y-%m-%d %H:%M} - {to_zone(hi, zone):%H:%M}; "
                f"submitted at {to_zone(attempt.reported_at, zone):%Y-%m-%d %H:%M}."
            ),
            window_start=lo,
            window_end=hi,
            schedule_id=schedule.id,
        )

    def check_photo(self, attempt: InspectionAttempt) -> PhotoCheckResult:
        photo = attempt.photo
        if photo is None:
            return PhotoCheckResult(PhotoCheck.ABSENT)

        compared = False
        result = PhotoCheckResult(PhotoCheck.CONSISTENT)

        if photo.capture_time is not None:
            compared = True
            age = abs((attempt.reported_at - ensure_utc(photo.capture_time)).total_seconds()) / 3600
            result.age_hours = age
            if age > self.photo_max_age_hours:
                result.problems.append(
                    f"photo was taken {age:.1f} hours from submission (max {self.photo_max_age_hours})"
                )

        # GPS that cannot be compared leaves the photo check on capture time alone
        reported_usable = usable_coordinate(attempt.reported_lat, 90) and usable_coordinate(attempt.reported_lng, 180)
        if photo.has_gps and reported_usable:
            compared = True
            d = distance_meters(photo.gps_lat, photo.gps_lng, attempt.reported_lat, attempt.reported_lng)
            result.distance_meters = d
            if d > self.photo_gps_tolerance_meters:
                result.problems.append(
                    f"photo location is {d:.0f} meters from the reported location "
                    f"(max {self.photo_gps_tolerance_meters:g})"
                )

        if result.problems:
            result.outcome = PhotoCheck.CONTRADICTORY
        elif not compared:
            result.outcome = PhotoCheck.ABSENT
        return result

    def evaluate(self, attempt: InspectionAttempt, asset: Asset,
                 schedule: Optional[Schedule], zone: Optional[ZoneLike] = None) -> GateDecision:
        """Run all checks without touching storage."""
        zone = zone if zone is not None else get_timezone()

        rejected = self.check_location(attempt, asset)
        if rejected:
            return rejected

        rejected = self.check_window(attempt, schedule, zone)
        if rejected:
            return rejected

        photo = self.check_photo(attempt)
        window = inspection_window(schedule, self.window_minutes) if schedule else (None, None)
        if photo.outcome is PhotoCheck.CONTRADICTORY:
            return GateDecision(
                accepted=False,
                reported_at=attempt.reported_at,
                reason=Rejection.PHOTO_METADATA_MISMATCH,
                message="Photo metadata does not match the submission: " + "; ".join(photo.problems) + ".",
                schedule_id=schedule.id if schedule else None,
                window_start=window[0],
                window_end=window[1],
                photo_check=photo.outcome,
                photo_age_hours=photo.age_hours,
                photo_distance_meters=photo.distance_meters,
            )

        distance = None
        if not asset.is_mobile and attempt.has_coordinates:
            distance = distance_meters(attempt.reported_lat, attempt.reported_lng, asset.fixed_lat, asset.fixed_lng)

        return GateDecision(
            accepted=True,
            reported_at=attempt.reported_at,
            message="Inspection accepted.",
            distance_meters=distance,
            valid_radius_meters=None if asset.is_mobile else (
                asset.valid_radius_meters if asset.valid_radius_meters is not None else self.default_radius_meters
            ),
            window_start=window[0],
            window_end=window[1],
            schedule_id=schedule.id if schedule else None,
            photo_check=photo.outcome,
            photo_age_hours=photo.age_hours,
            photo_distance_meters=photo.distance_meters,
        )

    # ------------------------------------------------------------
    # Full submission
    # ------------------------------------------------------------

    def submit(self, attempt: InspectionAttempt) -> GateDecision:
        """Evaluate a submission, write its audit event and completion flip."""
        asset = get_asset(attempt.asset_id)
        if asset is None:
            raise AssetNotFound(f"Asset {attempt.asset_id} not found")

        schedule = match_schedule(
            find_open_schedules(attempt.asset_id, attempt.submitted_by),
            attempt.reported_at,
            self.window_minutes,
        )
        decision = self.evaluate(attempt, asset, schedule)
        decision.audit_event_id = self._record(attempt, decision)

        if decision.accepted:
            logger.info(f"[Gate] Asset {asset.serial_number} inspected by {attempt.submitted_by}"
                        f" (schedule {decision.schedule_id or 'ad-hoc'})")
        else:
            logger.info(f"[Gate] Rejected asset {asset.serial_number} by {attempt.submitted_by}:"
                        f" {decision.reason.value}")
        return decision

    def _record(self, attempt: InspectionAttempt, decision: GateDecision) -> int:
        """Audit event plus completion flip, committed together."""
        photo_hash = attempt.photo.content_hash if attempt.photo else None
        if decision.accepted:
            action, details = ACTION_SUBMIT, decision.message
        else:
            action, details = ACTION_VALIDATION_FAILED, f"{decision.reason.value}: {decision.message}"

        conn = get_conn()
        try:
            event_id = insert_event(
                asset_id=attempt.asset_id,
                actor_id=attempt.submitted_by,
                action=action,
                occurred_at=attempt.reported_at,
                is_successful=decision.accepted,
                lat=attempt.reported_lat,
                lng=attempt.reported_lng,
                details=details,
                schedule_id=decision.schedule_id,
                photo_hash=photo_hash,
                conn=conn,
            )
            if decision.accepted and decision.schedule_id is not None:
                if not mark_completed(decision.schedule_id, conn):
                    logger.warning(f"[Gate] Schedule {decision.schedule_id} was already completed")
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()
        return event_id

    def now(self) -> datetime:
        return ensure_utc(self.clock())
