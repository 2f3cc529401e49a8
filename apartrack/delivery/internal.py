# ============================================================================
# APARTRACK - In-App Notification Channel
# ============================================================================
# Stores the message in the notifications table for the mobile/web client
# to pick up. Used when no email provider is configured.
# ============================================================================

import logging
import sqlite3
import datetime
from typing import Optional, List, Dict

from .base import DeliveryChannel, DeliveryResult
from ..db import get_conn

logger = logging.getLogger(__name__)


def init_notification_schema():
    conn = get_conn()
    conn.execute("""
        CREATE TABLE IF NOT EXISTS notifications (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id INTEGER,
            recipient TEXT,
            type TEXT DEFAULT 'schedule_reminder',
            title TEXT,
            message TEXT,
            related_id INTEGER,
            is_read INTEGER DEFAULT 0,
            created_at TEXT
        )
    """)
    conn.execute("CREATE INDEX IF NOT EXISTS idx_notif_user ON notifications (user_id, is_read)")
    conn.commit()
    conn.close()


def get_notifications(user_id: int, unread_only: bool = False, limit: int = 50) -> List[Dict]:
    sql = "SELECT * FROM notifications WHERE user_id = ?"
    if unread_only:
        sql += " AND is_read = 0"
    sql += " ORDER BY id DESC LIMIT ?"
    conn = get_conn()
    rows = conn.execute(sql, (user_id, limit)).fetchall()
    conn.close()
    return [dict(r) for r in rows]


class InternalDelivery(DeliveryChannel):
    """In-app notification delivery."""

    channel_name = "internal"

    def is_configured(self) -> bool:
        return True

    def send(
        self,
        recipient: str,
        subject: str,
        body_text: str,
        body_html: Optional[str] = None,
        user_id: Optional[int] = None,
        related_id: Optional[int] = None,
        notification_type: str = "schedule_reminder",
        **kwargs,
    ) -> DeliveryResult:
        try:
            conn = get_conn()
            cur = conn.execute("""
                INSERT INTO notifications (user_id, recipient, type, title, message, related_id, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """, (
                user_id, recipient, notification_type, subject, body_text, related_id,
                datetime.datetime.now(datetime.timezone.utc).strftime("%Y-%m-%d %H:%M:%S"),
            ))
            notification_id = cur.lastrowid
            conn.commit()
            conn.close()
        except sqlite3.Error as e:
            logger.error(f"In-app notification failed for {recipient}: {e}")
            return DeliveryResult(success=False, recipient=recipient, channel=self.channel_name, error=str(e))

        return DeliveryResult(success=True, recipient=recipient, channel=self.channel_name,
                              message_id=str(notification_id))
