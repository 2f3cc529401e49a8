"""
APARTRACK Reminders — Dispatch Markers (Database Models & Query Helpers)

One row per (schedule, bucket). The UNIQUE constraint is what makes a
reminder go out at most once when several dispatcher runs overlap, even
across processes: whoever inserts (or re-claims) the row sends, everyone
else skips.
"""
import datetime
import sqlite3
from typing import Optional, List, Dict

from ..db import get_conn
from ..geo import format_instant, ensure_utc

STATUS_PENDING = "pending"
STATUS_SENT = "sent"
STATUS_FAILED = "failed"


def init_reminder_schema():
    """Create reminder tables if they don't exist."""
    conn = get_conn()
    c = conn.cursor()
    c.execute("""
        CREATE TABLE IF NOT EXISTS reminder_dispatches (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            schedule_id INTEGER NOT NULL,
            bucket TEXT NOT NULL,
            target_date TEXT,
            recipient TEXT,
            channel TEXT,
            status TEXT NOT NULL DEFAULT 'pending',
            attempts INTEGER DEFAULT 0,
            claimed_at TEXT,
            sent_at TEXT,
            message_id TEXT,
            error TEXT,
            UNIQUE (schedule_id, bucket)
        )
    """)
    c.execute("CREATE INDEX IF NOT EXISTS idx_rd_status ON reminder_dispatches (status)")
    conn.commit()
    conn.close()


def claim_dispatch(schedule_id: int, bucket: str, target_date: datetime.date,
                   now: datetime.datetime, ttl_minutes: int = 15) -> bool:
    """
    Atomically claim the right to send (schedule_id, bucket).

    A fresh pair is claimed by INSERT OR IGNORE. An existing row is
    re-claimed only when its last attempt failed, or when a pending claim
    is older than `ttl_minutes` (the claiming process died mid-send).
    Both are single statements, so exactly one concurrent caller wins.
    """
    now_s = format_instant(now)
    stale_before = format_instant(ensure_utc(now) - datetime.timedelta(minutes=ttl_minutes))

    conn = get_conn()
    try:
        cur = conn.execute("""
            INSERT OR IGNORE INTO reminder_dispatches
                (schedule_id, bucket, target_date, status, attempts, claimed_at)
            VALUES (?, ?, ?, 'pending', 1, ?)
        """, (schedule_id, bucket, target_date.isoformat(), now_s))
        if cur.rowcount == 1:
            conn.commit()
            return True

        cur = conn.execute("""
            UPDATE reminder_dispatches
            SET status = 'pending', attempts = attempts + 1, claimed_at = ?,
                target_date = ?, error = NULL
            WHERE schedule_id = ? AND bucket = ?
              AND (status = 'failed' OR (status = 'pending' AND claimed_at < ?))
        """, (now_s, target_date.isoformat(), schedule_id, bucket, stale_before))
        conn.commit()
        return cur.rowcount == 1
    finally:
        conn.close()


def mark_sent(schedule_id: int, bucket: str, now: datetime.datetime, recipient: str,
              channel: str, message_id: Optional[str] = None) -> None:
    conn = get_conn()
    conn.execute("""
        UPDATE reminder_dispatches
        SET status = 'sent', sent_at = ?, recipient = ?, channel = ?, message_id = ?, error = NULL
        WHERE schedule_id = ? AND bucket = ?
    """, (format_instant(now), recipient, channel, message_id, schedule_id, bucket))
    conn.commit()
    conn.close()


def mark_failed(schedule_id: int, bucket: str, recipient: str, channel: str, error: str) -> None:
    conn = get_conn()
    conn.execute("""
        UPDATE reminder_dispatches
        SET status = 'failed', recipient = ?, channel = ?, error = ?
        WHERE schedule_id = ? AND bucket = ? AND status = 'pending'
    """, (recipient, channel, (error or "")[:500], schedule_id, bucket))
    conn.commit()
    conn.close()


def clear_dispatch_markers(schedule_id: int, conn: Optional[sqlite3.Connection] = None) -> int:
    """
    Forget every marker for a schedule, e.g. after its start moved.

    With `conn` the delete joins the caller's transaction and the caller commits.
    """
    if conn is not None:
        return conn.execute("DELETE FROM reminder_dispatches WHERE schedule_id = ?", (schedule_id,)).rowcount
    conn = get_conn()
    cur = conn.execute("DELETE FROM reminder_dispatches WHERE schedule_id = ?", (schedule_id,))
    removed = cur.rowcount
    conn.commit()
    conn.close()
    return removed


def get_dispatch(schedule_id: int, bucket: str) -> Optional[Dict]:
    conn = get_conn()
    row = conn.execute(
        "SELECT * FROM reminder_dispatches WHERE schedule_id = ? AND bucket = ?",
        (schedule_id, bucket),
    ).fetchone()
    conn.close()
    return dict(row) if row else None


def get_dispatch_log(status: Optional[str] = None, limit: int = 100) -> List[Dict]:
    sql = "SELECT * FROM reminder_dispatches"
    params: list = []
    if status:
        sql += " WHERE status = ?"
        params.append(status)
    sql += " ORDER BY id DESC LIMIT ?"
    params.append(limit)
    conn = get_conn()
    rows = conn.execute(sql, params).fetchall()
    conn.close()
    return [dict(r) for r in rows]
