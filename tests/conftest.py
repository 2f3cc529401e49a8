"""
APARTRACK — Test Infrastructure (conftest.py)
=============================================
Provides:
  - A fresh SQLite database per test (apartrack.db.DB_PATH monkeypatched)
  - Config cache reset, scheduler disabled, in-app reminder channel
  - A fixed, advanceable UTC clock
  - FastAPI TestClient wired to that clock
  - Seed helpers and DB assertion helpers
"""

import os
import sys
import datetime
import pytest

# Ensure project root is on path
ROOT_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, ROOT_DIR)

UTC = datetime.timezone.utc
SITE_TZ = "Asia/Jakarta"

# Jakarta office asset used across tests
SITE_LAT = -6.2000
SITE_LNG = 106.8166


def utc(year, month, day, hour=0, minute=0, second=0):
    return datetime.datetime(year, month, day, hour, minute, second, tzinfo=UTC)


def jakarta(year, month, day, hour=0, minute=0, second=0):
    """Wall-clock time in Jakarta (UTC+7, no DST) as aware UTC."""
    return utc(year, month, day, hour, minute, second) - datetime.timedelta(hours=7)


class FixedClock:
    """Callable clock for injection into routes and the gate."""

    def __init__(self, now: datetime.datetime):
        self.now = now

    def __call__(self) -> datetime.datetime:
        return self.now

    def set(self, now: datetime.datetime):
        self.now = now

    def advance(self, **kwargs):
        self.now = self.now + datetime.timedelta(**kwargs)


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture(autouse=True)
def test_db(tmp_path, monkeypatch):
    """Per-test database with schema and default settings."""
    import apartrack.db
    from apartrack.config import AppConfig, set_config

    path = str(tmp_path / "apartrack_test.db")
    monkeypatch.setattr(apartrack.db, "DB_PATH", path)
    for env_name in ("SENDGRID_API_KEY", "SMTP_USER", "SMTP_PASS"):
        monkeypatch.delenv(env_name, raising=False)

    AppConfig.reset_cache()
    apartrack.db.init_all_schemas()
    AppConfig.init_defaults()
    set_config("scheduler_enabled", False)
    set_config("reminder_channel", "internal")

    yield path

    AppConfig.reset_cache()


@pytest.fixture
def clock():
    """09:00 Jakarta on 2025-01-15."""
    return FixedClock(jakarta(2025, 1, 15, 9, 0))


@pytest.fixture
def app(clock):
    import main
    return main.create_app(clock=clock)


@pytest.fixture
def client(app):
    """FastAPI TestClient."""
    from starlette.testclient import TestClient
    with TestClient(app) as c:
        yield c


# ============================================================================
# Seed helpers
# ============================================================================

def make_asset(serial="APAR-001", location_type="fixed", lat=SITE_LAT, lng=SITE_LNG,
               radius=30, location_name="Lobby, Ground Floor"):
    from apartrack.registry.models import create_asset
    data = {
        "serial_number": serial,
        "location_type": location_type,
        "location_name": location_name,
        "valid_radius_meters": radius,
    }
    if location_type != "mobile":
        data["fixed_lat"] = lat
        data["fixed_lng"] = lng
    return create_asset(data)


def make_inspector(name="Budi Santoso", email="budi@example.com", is_active=True):
    from apartrack.registry.models import create_inspector
    return create_inspector(name, email=email, is_active=is_active)


def make_schedule(asset_id, assignee_id, start, minutes=60, cadence="weekly",
                  is_active=True, is_completed=False):
    from apartrack.schedules.models import Schedule, create_schedule
    return create_schedule(Schedule(
        asset_id=asset_id,
        assignee_id=assignee_id,
        start_at=start,
        end_at=start + datetime.timedelta(minutes=minutes),
        cadence=cadence,
        is_active=is_active,
        is_completed=is_completed,
    ))


def site_gps_ifd():
    """EXIF GPS IFD at the test site: 6°12'0" S, 106°48'59.76" E."""
    from PIL import ExifTags
    from PIL.TiffImagePlugin import IFDRational
    return {
        ExifTags.GPS.GPSLatitudeRef: "S",
        ExifTags.GPS.GPSLatitude: (IFDRational(6, 1), IFDRational(12, 1), IFDRational(0, 1)),
        ExifTags.GPS.GPSLongitudeRef: "E",
        ExifTags.GPS.GPSLongitude: (IFDRational(106, 1), IFDRational(48, 1), IFDRational(5976, 100)),
    }


def exif_jpeg(taken=None, gps=None):
    """JPEG bytes carrying DateTimeOriginal ("YYYY:MM:DD HH:MM:SS") and/or a GPS IFD."""
    import io
    from PIL import Image, ExifTags
    exif = Image.Exif()
    if taken is not None:
        exif[ExifTags.IFD.Exif] = {ExifTags.Base.DateTimeOriginal: taken}
    if gps is not None:
        exif[ExifTags.IFD.GPSInfo] = gps
    buf = io.BytesIO()
    Image.new("RGB", (16, 16), "red").save(buf, format="JPEG", exif=exif)
    return buf.getvalue()


def north_of(lat, meters):
    """Latitude `meters` due north; same-meridian haversine distance is exact."""
    import math
    from apartrack.geo import EARTH_RADIUS_M
    return lat + math.degrees(meters / EARTH_RADIUS_M)


# ============================================================================
# DB helpers
# ============================================================================

def db_query(sql, params=()):
    """Run a query against the test DB and return list of dicts."""
    from apartrack.db import get_conn
    conn = get_conn()
    rows = conn.execute(sql, params).fetchall()
    result = [dict(r) for r in rows]
    conn.close()
    return result


def db_count(table, where="1=1", params=()):
    """Count rows in a table."""
    from apartrack.db import get_conn
    conn = get_conn()
    row = conn.execute(f"SELECT COUNT(*) AS cnt FROM {table} WHERE {where}", params).fetchone()
    conn.close()
    return row["cnt"]
