"""
APARTRACK — Geo/Time Primitives

Great-circle distance and UTC <-> local timezone projection. Pure functions;
the only errors are malformed input, raised as ValueError.
"""
import math
from datetime import datetime, timezone, tzinfo
from typing import Sequence, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

EARTH_RADIUS_M = 6_371_000
DB_TIME_FORMAT = "%Y-%m-%d %H:%M:%S"

ZoneLike = Union[str, tzinfo]


def _coord(value, name: str, limit: float) -> float:
    if isinstance(value, bool):
        raise ValueError(f"{name} must be numeric, got {value!r}")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValueError(f"{name} must be numeric, got {value!r}")
    if math.isnan(number) or math.isinf(number):
        raise ValueError(f"{name} must be finite, got {value!r}")
    if number < -limit or number > limit:
        raise ValueError(f"{name} must be between -{limit:g} and {limit:g}, got {number}")
    return number


def distance_meters(lat1, lng1, lat2, lng2) -> float:
    """Haversine distance in meters between two points given in degrees."""
    lat1 = _coord(lat1, "lat1", 90)
    lng1 = _coord(lng1, "lng1", 180)
    lat2 = _coord(lat2, "lat2", 90)
    lng2 = _coord(lng2, "lng2", 180)

    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lng2 - lng1)

    a = (math.sin(d_phi / 2) ** 2
         + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2)
    # rounding can push a a hair above 1 for antipodal points
    a = min(1.0, max(0.0, a))
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_M * c


def resolve_zone(zone: ZoneLike) -> tzinfo:
    if isinstance(zone, tzinfo):
        return zone
    if not isinstance(zone, str) or not zone:
        raise ValueError(f"Invalid timezone: {zone!r}")
    try:
        return ZoneInfo(zone)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValueError(f"Unknown timezone: {zone!r}")


def to_utc(instant: datetime, source_zone: ZoneLike) -> datetime:
    """
    Project an instant into UTC.

    A naive instant is read as wall-clock time in `source_zone`; an aware
    instant keeps its own offset and `source_zone` is only validated.
    """
    if not isinstance(instant, datetime):
        raise ValueError(f"Expected datetime, got {type(instant).__name__}")
    zone = resolve_zone(source_zone)
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=zone)
    return instant.astimezone(timezone.utc)


def to_zone(instant: datetime, target_zone: ZoneLike) -> datetime:
    """Project an instant into `target_zone`. Naive input is taken as UTC."""
    if not isinstance(instant, datetime):
        raise ValueError(f"Expected datetime, got {type(instant).__name__}")
    zone = resolve_zone(target_zone)
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(zone)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(instant: datetime) -> datetime:
    """Normalise to aware UTC; naive values are assumed to already be UTC."""
    if not isinstance(instant, datetime):
        raise ValueError(f"Expected datetime, got {type(instant).__name__}")
    if instant.tzinfo is None:
        return instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(timezone.utc)


def format_instant(instant: datetime) -> str:
    """UTC storage form used by every table."""
    return ensure_utc(instant).strftime(DB_TIME_FORMAT)


def parse_instant(value) -> datetime:
    """Parse the UTC storage form (or ISO-8601 text) into aware UTC."""
    if isinstance(value, datetime):
        return ensure_utc(value)
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"Invalid instant: {value!r}")
    text = value.strip()
    try:
        return datetime.strptime(text, DB_TIME_FORMAT).replace(tzinfo=timezone.utc)
    except ValueError:
        pass
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return ensure_utc(datetime.fromisoformat(text))
    except ValueError:
        raise ValueError(f"Invalid instant: {value!r}")


def dms_to_decimal(dms: Sequence, ref: str) -> float:
    """
    Convert an EXIF degrees/minutes/seconds triple to signed decimal degrees.

    Missing parts count as zero; 'S' and 'W' references flip the sign.
    """
    parts = [float(p) for p in list(dms)[:3]]
    while len(parts) < 3:
        parts.append(0.0)
    degrees, minutes, seconds = parts
    value = degrees + minutes / 60 + seconds / 3600
    if isinstance(ref, bytes):
        ref = ref.decode("ascii", "ignore")
    if (ref or "").strip().upper() in ("S", "W"):
        value = -value
    return value
