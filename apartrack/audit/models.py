"""
APARTRACK Audit Log — Database Models & Query Helpers

Append-only record of every scan, start, submit and failed validation.
Rows are never updated; the only delete is the retention cleanup.
"""
import sqlite3
import datetime
from dataclasses import dataclass, asdict
from typing import Optional, List, Dict, Any

from ..db import get_conn
from ..geo import format_instant, parse_instant, ensure_utc

ACTION_SCAN = "scan"
ACTION_START = "start"
ACTION_SUBMIT = "submit"
ACTION_VALIDATION_FAILED = "validation_failed"
ACTIONS = (ACTION_SCAN, ACTION_START, ACTION_SUBMIT, ACTION_VALIDATION_FAILED)


@dataclass(frozen=True)
class AuditEvent:
    id: int
    asset_id: int
    actor_id: int
    action: str
    occurred_at: datetime.datetime
    is_successful: bool
    lat: Optional[float] = None
    lng: Optional[float] = None
    details: Optional[str] = None
    schedule_id: Optional[int] = None
    photo_hash: Optional[str] = None

    @classmethod
    def from_row(cls, row) -> "AuditEvent":
        return cls(
            id=row["id"],
            asset_id=row["asset_id"],
            actor_id=row["actor_id"],
            action=row["action"],
            occurred_at=parse_instant(row["occurred_at"]),
            is_successful=bool(row["is_successful"]),
            lat=row["lat"],
            lng=row["lng"],
            details=row["details"],
            schedule_id=row["schedule_id"],
            photo_hash=row["photo_hash"],
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["occurred_at"] = self.occurred_at.isoformat()
        return data


def init_audit_schema():
    conn = get_conn()
    c = conn.cursor()
    c.execute("""
        CREATE TABLE IF NOT EXISTS inspection_logs (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            asset_id INTEGER NOT NULL,
            actor_id INTEGER NOT NULL,
            schedule_id INTEGER,
            action TEXT NOT NULL,
            occurred_at TEXT NOT NULL,
            lat REAL,
            lng REAL,
            is_successful INTEGER DEFAULT 1,
            details TEXT,
            photo_hash TEXT
        )
    """)
    for idx in [
        "CREATE INDEX IF NOT EXISTS idx_log_asset_time ON inspection_logs (asset_id, occurred_at)",
        "CREATE INDEX IF NOT EXISTS idx_log_actor_time ON inspection_logs (actor_id, occurred_at)",
        "CREATE INDEX IF NOT EXISTS idx_log_action ON inspection_logs (action)",
        "CREATE INDEX IF NOT EXISTS idx_log_photo_hash ON inspection_logs (photo_hash)",
    ]:
        c.execute(idx)
    conn.commit()
    conn.close()


def insert_event(
    asset_id: int,
    actor_id: int,
    action: str,
    occurred_at: datetime.datetime,
    is_successful: bool = True,
    lat: Optional[float] = None,
    lng: Optional[float] = None,
    details: Optional[str] = None,
    schedule_id: Optional[int] = None,
    photo_hash: Optional[str] = None,
    conn: Optional[sqlite3.Connection] = None,
) -> int:
    """
    Append one audit event and return its id.

    With `conn` the insert joins the caller's transaction and the caller
    commits; without it the event is committed on its own connection.
    """
    if action not in ACTIONS:
        raise ValueError(f"Unknown audit action: {action!r}")

    own_conn = conn is None
    if own_conn:
        conn = get_conn()
    try:
        cur = conn.execute("""
            INSERT INTO inspection_logs
                (asset_id, actor_id, schedule_id, action, occurred_at, lat, lng, is_successful, details, photo_hash)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            asset_id, actor_id, schedule_id, action, format_instant(occurred_at),
            lat, lng, 1 if is_successful else 0, details, photo_hash,
        ))
        event_id = cur.lastrowid
        if own_conn:
            conn.commit()
        return event_id
    finally:
        if own_conn:
            conn.close()


def query_events(
    asset_id: Optional[int] = None,
    actor_id: Optional[int] = None,
    action: Optional[str] = None,
    is_successful: Optional[bool] = None,
    since: Optional[datetime.datetime] = None,
    until: Optional[datetime.datetime] = None,
    limit: int = 100,
    offset: int = 0,
) -> List[AuditEvent]:
    """Newest-first audit events with optional filters."""
    sql = "SELECT * FROM inspection_logs WHERE 1=1"
    params: list = []
    if asset_id is not None:
        sql += " AND asset_id = ?"
        params.append(asset_id)
    if actor_id is not None:
        sql += " AND actor_id = ?"
        params.append(actor_id)
    if action:
        sql += " AND action = ?"
        params.append(action)
    if is_successful is not None:
        sql += " AND is_successful = ?"
        params.append(1 if is_successful else 0)
    if since is not None:
        sql += " AND occurred_at >= ?"
        params.append(format_instant(since))
    if until is not None:
        sql += " AND occurred_at <= ?"
        params.append(format_instant(until))
    sql += " ORDER BY occurred_at DESC, id DESC LIMIT ? OFFSET ?"
    params.extend([limit, offset])

    conn = get_conn()
    rows = conn.execute(sql, params).fetchall()
    conn.close()
    return [AuditEvent.from_row(r) for r in rows]


def events_since(since: datetime.datetime, until: Optional[datetime.datetime] = None) -> List[AuditEvent]:
    """All events in [since, until] oldest-first, for batch analysis."""
    sql = "SELECT * FROM inspection_logs WHERE occurred_at >= ?"
    params: list = [format_instant(since)]
    if until is not None:
        sql += " AND occurred_at <= ?"
        params.append(format_instant(until))
    sql += " ORDER BY occurred_at, id"

    conn = get_conn()
    rows = conn.execute(sql, params).fetchall()
    conn.close()
    return [AuditEvent.from_row(r) for r in rows]


# ================================================================
# STATS & RETENTION
# ================================================================

def audit_stats(since: Optional[datetime.datetime] = None,
                until: Optional[datetime.datetime] = None) -> Dict[str, Any]:
    where = "WHERE 1=1"
    params: list = []
    if since is not None:
        where += " AND occurred_at >= ?"
        params.append(format_instant(since))
    if until is not None:
        where += " AND occurred_at <= ?"
        params.append(format_instant(until))

    conn = get_conn()
    totals = conn.execute(f"""
        SELECT COUNT(*) AS total,
               COALESCE(SUM(CASE WHEN is_successful = 1 THEN 1 ELSE 0 END), 0) AS successful,
               COALESCE(SUM(CASE WHEN is_successful = 0 THEN 1 ELSE 0 END), 0) AS failed,
               COUNT(DISTINCT actor_id) AS unique_actors,
               COUNT(DISTINCT asset_id) AS unique_assets
        FROM inspection_logs {where}
    """, params).fetchone()
    breakdown = conn.execute(f"""
        SELECT action, COUNT(*) AS cnt FROM inspection_logs {where}
        GROUP BY action ORDER BY action
    """, params).fetchall()
    conn.close()

    return {
        "total_logs": totals["total"],
        "successful_logs": totals["successful"],
        "failed_logs": totals["failed"],
        "unique_actors": totals["unique_actors"],
        "unique_assets": totals["unique_assets"],
        "actions_breakdown": {r["action"]: r["cnt"] for r in breakdown},
    }


def cleanup_events(days: int, now: datetime.datetime) -> Dict[str, Any]:
    """Delete events older than `days` days before `now`."""
    if days < 1:
        raise ValueError("Retention must be at least one day")
    cutoff = ensure_utc(now) - datetime.timedelta(days=days)
    conn = get_conn()
    cur = conn.execute("DELETE FROM inspection_logs WHERE occurred_at < ?", (format_instant(cutoff),))
    deleted = cur.rowcount
    remaining = conn.execute("SELECT COUNT(*) FROM inspection_logs").fetchone()[0]
    conn.commit()
    conn.close()
    return {"deleted_count": deleted, "remaining_count": remaining, "cutoff": cutoff.isoformat()}


def cleanup_stats(now: datetime.datetime) -> Dict[str, Any]:
    now = ensure_utc(now)
    conn = get_conn()
    c = conn.cursor()
    stats: Dict[str, Any] = {
        "total_logs": c.execute("SELECT COUNT(*) FROM inspection_logs").fetchone()[0],
    }
    for days in (30, 60, 90, 180):
        cutoff = format_instant(now - datetime.timedelta(days=days))
        stats[f"logs_older_than_{days}_days"] = c.execute(
            "SELECT COUNT(*) FROM inspection_logs WHERE occurred_at < ?", (cutoff,)
        ).fetchone()[0]
    bounds = c.execute("SELECT MIN(occurred_at), MAX(occurred_at) FROM inspection_logs").fetchone()
    conn.close()
    stats["oldest_log"] = parse_instant(bounds[0]).isoformat() if bounds[0] else None
    stats["newest_log"] = parse_instant(bounds[1]).isoformat() if bounds[1] else None
    return stats
