"""
APARTRACK Schedules — Database Models & Query Helpers

A schedule is one inspection assignment: an asset, an optional assignee and
a UTC window. The UTC instants are the only stored representation; local
dates and times are always projected from them.
"""
import sqlite3
import datetime
import logging
from dataclasses import dataclass, field, replace
from typing import Optional, List, Dict, Any

from ..db import get_conn
from ..geo import ensure_utc, format_instant, parse_instant, to_zone, ZoneLike

logger = logging.getLogger(__name__)

CADENCES = ("weekly", "monthly", "quarterly", "semiannual")


class InvalidScheduleWindow(ValueError):
    """end_at must be strictly after start_at."""

    def __init__(self, start_at, end_at):
        self.start_at = start_at
        self.end_at = end_at
        super().__init__(f"Schedule end ({end_at}) must be after start ({start_at})")


class InvalidCadence(ValueError):
    pass


def _as_flag(value, name: str) -> bool:
    """Bool from a bool, 0/1 or a "true"/"false" style string (as stored in settings)."""
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        text = value.strip().lower()
        if text in ("true", "1", "yes", "on"):
            return True
        if text in ("false", "0", "no", "off"):
            return False
    raise ValueError(f"{name} must be true or false, got {value!r}")


@dataclass
class Schedule:
    asset_id: int
    start_at: datetime.datetime
    end_at: datetime.datetime
    assignee_id: Optional[int] = None
    cadence: str = "weekly"
    is_active: bool = True
    is_completed: bool = False
    notes: Optional[str] = None
    id: Optional[int] = None
    created_at: Optional[str] = field(default=None, compare=False)
    updated_at: Optional[str] = field(default=None, compare=False)

    def __post_init__(self):
        self.start_at = ensure_utc(self.start_at)
        self.end_at = ensure_utc(self.end_at)
        if self.end_at <= self.start_at:
            raise InvalidScheduleWindow(self.start_at, self.end_at)
        if self.cadence not in CADENCES:
            raise InvalidCadence(f"cadence must be one of {CADENCES}, got {self.cadence!r}")
        self.is_active = _as_flag(self.is_active, "is_active")
        self.is_completed = _as_flag(self.is_completed, "is_completed")

    # --- display projections ---

    def start_local(self, zone: ZoneLike) -> datetime.datetime:
        return to_zone(self.start_at, zone)

    def end_local(self, zone: ZoneLike) -> datetime.datetime:
        return to_zone(self.end_at, zone)

    def local_start_date(self, zone: ZoneLike) -> datetime.date:
        return self.start_local(zone).date()

    @property
    def is_assigned(self) -> bool:
        return self.assignee_id is not None

    @classmethod
    def from_row(cls, row) -> "Schedule":
        return cls(
            id=row["id"],
            asset_id=row["asset_id"],
            assignee_id=row["assignee_id"],
            start_at=parse_instant(row["start_at"]),
            end_at=parse_instant(row["end_at"]),
            cadence=row["cadence"],
            is_active=bool(row["is_active"]),
            is_completed=bool(row["is_completed"]),
            notes=row["notes"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def to_dict(self, zone: Optional[ZoneLike] = None) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "asset_id": self.asset_id,
            "assignee_id": self.assignee_id,
            "start_at": self.start_at.isoformat(),
            "end_at": self.end_at.isoformat(),
            "cadence": self.cadence,
            "is_active": self.is_active,
            "is_completed": self.is_completed,
            "notes": self.notes,
        }
        if zone is not None:
            data["start_local"] = self.start_local(zone).isoformat()
            data["end_local"] = self.end_local(zone).isoformat()
            data["local_date"] = self.local_start_date(zone).isoformat()
        return data


def _ts() -> str:
    return format_instant(datetime.datetime.now(datetime.timezone.utc))


# ================================================================
# SCHEMA
# ================================================================

def init_schedule_schema():
    conn = get_conn()
    c = conn.cursor()
    c.execute("""
        CREATE TABLE IF NOT EXISTS inspection_schedules (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            asset_id INTEGER NOT NULL REFERENCES assets(id),
            assignee_id INTEGER REFERENCES inspectors(id),
            start_at TEXT NOT NULL,
            end_at TEXT NOT NULL,
            cadence TEXT NOT NULL DEFAULT 'weekly',
            is_active INTEGER DEFAULT 1,
            is_completed INTEGER DEFAULT 0,
            notes TEXT,
            created_at TEXT,
            updated_at TEXT,
            CHECK (end_at > start_at)
        )
    """)
    for idx in [
        "CREATE INDEX IF NOT EXISTS idx_sched_asset_start ON inspection_schedules (asset_id, start_at)",
        "CREATE INDEX IF NOT EXISTS idx_sched_start_active ON inspection_schedules (start_at, is_active)",
        "CREATE INDEX IF NOT EXISTS idx_sched_completed ON inspection_schedules (is_completed)",
    ]:
        c.execute(idx)
    conn.commit()
    conn.close()


# ================================================================
# CRUD
# ================================================================

def create_schedule(schedule: Schedule) -> Schedule:
    """Persist a validated schedule and return it with its id."""
    conn = get_conn()
    c = conn.cursor()
    ts = _ts()
    c.execute("""
        INSERT INTO inspection_schedules
            (asset_id, assignee_id, start_at, end_at, cadence, is_active, is_completed, notes, created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
    """, (
        schedule.asset_id, schedule.assignee_id,
        format_instant(schedule.start_at), format_instant(schedule.end_at),
        schedule.cadence, int(schedule.is_active), int(schedule.is_completed),
        schedule.notes, ts, ts,
    ))
    schedule_id = c.lastrowid
    conn.commit()
    conn.close()
    return replace(schedule, id=schedule_id, created_at=ts, updated_at=ts)


def get_schedule(schedule_id: int) -> Optional[Schedule]:
    conn = get_conn()
    row = conn.execute("SELECT * FROM inspection_schedules WHERE id = ?", (schedule_id,)).fetchone()
    conn.close()
    return Schedule.from_row(row) if row else None


_UPDATABLE = ("asset_id", "assignee_id", "start_at", "end_at", "cadence", "is_active", "is_completed", "notes")


def update_schedule(schedule_id: int, **changes) -> Optional[Schedule]:
    """
    Apply field changes to a schedule.

    The merged record is rebuilt through Schedule(...) so a change that
    leaves end_at <= start_at raises InvalidScheduleWindow and nothing is
    written. Moving the start or changing the assignee drops the schedule's
    reminder markers in the same transaction. Returns None when the schedule
    does not exist.
    """
    current = get_schedule(schedule_id)
    if current is None:
        return None

    unknown = set(changes) - set(_UPDATABLE)
    if unknown:
        raise ValueError(f"Cannot update fields: {', '.join(sorted(unknown))}")

    for key in ("start_at", "end_at"):
        if key in changes and not isinstance(changes[key], datetime.datetime):
            changes[key] = parse_instant(changes[key])

    merged = replace(current, **changes)
    rescheduled = merged.start_at != current.start_at or merged.assignee_id != current.assignee_id

    conn = get_conn()
    conn.execute("""
        UPDATE inspection_schedules
        SET asset_id = ?, assignee_id = ?, start_at = ?, end_at = ?, cadence = ?,
            is_active = ?, is_completed = ?, notes = ?, updated_at = ?
        WHERE id = ?
    """, (
        merged.asset_id, merged.assignee_id,
        format_instant(merged.start_at), format_instant(merged.end_at),
        merged.cadence, int(merged.is_active), int(merged.is_completed),
        merged.notes, _ts(), schedule_id,
    ))
    if rescheduled:
        # new date or new assignee: every reminder bucket is due again
        from ..reminders.models import clear_dispatch_markers
        cleared = clear_dispatch_markers(schedule_id, conn=conn)
        logger.info(f"[Schedules] Schedule {schedule_id} rescheduled; cleared {cleared} reminder markers")
    conn.commit()
    conn.close()
    return get_schedule(schedule_id)


def list_schedules(asset_id: Optional[int] = None, assignee_id: Optional[int] = None,
                   is_active: Optional[bool] = None, is_completed: Optional[bool] = None,
                   limit: int = 500) -> List[Schedule]:
    sql = "SELECT * FROM inspection_schedules WHERE 1=1"
    params: list = []
    if asset_id is not None:
        sql += " AND asset_id = ?"
        params.append(asset_id)
    if assignee_id is not None:
        sql += " AND assignee_id = ?"
        params.append(assignee_id)
    if is_active is not None:
        sql += " AND is_active = ?"
        params.append(int(is_active))
    if is_completed is not None:
        sql += " AND is_completed = ?"
        params.append(int(is_completed))
    sql += " ORDER BY start_at LIMIT ?"
    params.append(limit)

    conn = get_conn()
    rows = conn.execute(sql, params).fetchall()
    conn.close()
    return [Schedule.from_row(r) for r in rows]


def find_open_schedules(asset_id: int, assignee_id: int) -> List[Schedule]:
    """Active, uncompleted schedules an inspector can be validated against."""
    conn = get_conn()
    rows = conn.execute("""
        SELECT * FROM inspection_schedules
        WHERE asset_id = ? AND assignee_id = ?
          AND is_active = 1 AND is_completed = 0
        ORDER BY start_at
    """, (asset_id, assignee_id)).fetchall()
    conn.close()
    return [Schedule.from_row(r) for r in rows]


def schedules_starting_between(lo: datetime.datetime, hi: datetime.datetime) -> List[Schedule]:
    """Active, uncompleted schedules with lo <= start_at < hi (UTC)."""
    conn = get_conn()
    rows = conn.execute("""
        SELECT * FROM inspection_schedules
        WHERE is_active = 1 AND is_completed = 0
          AND start_at >= ? AND start_at < ?
        ORDER BY start_at
    """, (format_instant(lo), format_instant(hi))).fetchall()
    conn.close()
    return [Schedule.from_row(r) for r in rows]


def mark_completed(schedule_id: int, conn: sqlite3.Connection) -> bool:
    """Flip is_completed inside the caller's transaction. Caller commits."""
    cur = conn.execute("""
        UPDATE inspection_schedules SET is_completed = 1, updated_at = ?
        WHERE id = ? AND is_completed = 0
    """, (_ts(), schedule_id))
    return cur.rowcount == 1
