"""
APARTRACK Registry — Assets & Inspectors (Database Models & Query Helpers)

Only the fields the scheduling and validation engine reads live here;
full asset administration belongs to the CRUD layer.
"""
import datetime
from dataclasses import dataclass
from typing import Optional, Dict

from ..db import get_conn

LOCATION_FIXED = "fixed"
LOCATION_MOBILE = "mobile"
LOCATION_TYPES = (LOCATION_FIXED, LOCATION_MOBILE)

# legacy labels from the old APAR tables
_LOCATION_ALIASES = {"statis": LOCATION_FIXED, "static": LOCATION_FIXED}


def _ts() -> str:
    return datetime.datetime.now(datetime.timezone.utc).strftime("%Y-%m-%d %H:%M:%S")


@dataclass
class Asset:
    id: int
    serial_number: str
    location_type: str = LOCATION_FIXED
    fixed_lat: Optional[float] = None
    fixed_lng: Optional[float] = None
    valid_radius_meters: Optional[float] = None
    location_name: Optional[str] = None
    status: str = "active"

    @property
    def is_mobile(self) -> bool:
        return self.location_type == LOCATION_MOBILE

    @classmethod
    def from_row(cls, row) -> "Asset":
        return cls(
            id=row["id"],
            serial_number=row["serial_number"],
            location_type=row["location_type"],
            fixed_lat=row["fixed_lat"],
            fixed_lng=row["fixed_lng"],
            valid_radius_meters=row["valid_radius_meters"],
            location_name=row["location_name"],
            status=row["status"],
        )


@dataclass
class Inspector:
    id: int
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    is_active: bool = True

    @property
    def is_contactable(self) -> bool:
        return bool(self.is_active and self.email and self.email.strip())


def init_registry_schema():
    conn = get_conn()
    c = conn.cursor()

    c.execute("""
        CREATE TABLE IF NOT EXISTS assets (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            serial_number TEXT UNIQUE NOT NULL,
            location_name TEXT,
            location_type TEXT NOT NULL DEFAULT 'fixed',
            fixed_lat REAL,
            fixed_lng REAL,
            valid_radius_meters REAL,
            status TEXT DEFAULT 'active',
            created_at TEXT,
            updated_at TEXT
        )
    """)

    c.execute("""
        CREATE TABLE IF NOT EXISTS inspectors (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            email TEXT,
            phone TEXT,
            is_active INTEGER DEFAULT 1,
            created_at TEXT
        )
    """)

    c.execute("CREATE INDEX IF NOT EXISTS idx_assets_location_type ON assets (location_type)")
    conn.commit()
    conn.close()


def normalize_location_type(value: Optional[str]) -> str:
    label = (value or LOCATION_FIXED).strip().lower()
    label = _LOCATION_ALIASES.get(label, label)
    if label not in LOCATION_TYPES:
        raise ValueError(f"location_type must be one of {LOCATION_TYPES}, got {value!r}")
    return label


# --- Assets ---

def create_asset(data: Dict) -> int:
    location_type = normalize_location_type(data.get("location_type"))
    if location_type == LOCATION_FIXED and (data.get("fixed_lat") is None or data.get("fixed_lng") is None):
        raise ValueError("Fixed assets need fixed_lat and fixed_lng")

    conn = get_conn()
    c = conn.cursor()
    ts = _ts()
    c.execute("""
        INSERT INTO assets (serial_number, location_name, location_type, fixed_lat, fixed_lng,
                            valid_radius_meters, status, created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
    """, (
        data["serial_number"], data.get("location_name"), location_type,
        data.get("fixed_lat"), data.get("fixed_lng"), data.get("valid_radius_meters"),
        data.get("status", "active"), ts, ts,
    ))
    asset_id = c.lastrowid
    conn.commit()
    conn.close()
    return asset_id


def get_asset(asset_id: int) -> Optional[Asset]:
    conn = get_conn()
    row = conn.execute("SELECT * FROM assets WHERE id = ?", (asset_id,)).fetchone()
    conn.close()
    return Asset.from_row(row) if row else None


def get_asset_by_serial(serial_number: str) -> Optional[Asset]:
    conn = get_conn()
    row = conn.execute("SELECT * FROM assets WHERE serial_number = ?", (serial_number,)).fetchone()
    conn.close()
    return Asset.from_row(row) if row else None


# --- Inspectors ---

def create_inspector(name: str, email: Optional[str] = None, phone: Optional[str] = None,
                     is_active: bool = True) -> int:
    conn = get_conn()
    c = conn.cursor()
    c.execute("""
        INSERT INTO inspectors (name, email, phone, is_active, created_at)
        VALUES (?, ?, ?, ?, ?)
    """, (name, email, phone, 1 if is_active else 0, _ts()))
    inspector_id = c.lastrowid
    conn.commit()
    conn.close()
    return inspector_id


def get_inspector(inspector_id: Optional[int]) -> Optional[Inspector]:
    if inspector_id is None:
        return None
    conn = get_conn()
    row = conn.execute("SELECT * FROM inspectors WHERE id = ?", (inspector_id,)).fetchone()
    conn.close()
    if not row:
        return None
    return Inspector(
        id=row["id"],
        name=row["name"],
        email=row["email"],
        phone=row["phone"],
        is_active=bool(row["is_active"]),
    )
