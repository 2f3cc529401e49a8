"""
APARTRACK — Shared SQLite Connection Helpers
"""
import os
import sqlite3

DB_PATH = os.environ.get("APARTRACK_DB", "apartrack.db")


def get_conn():
    conn = sqlite3.connect(DB_PATH, timeout=30, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    return conn


def init_all_schemas():
    """Create every table the engine uses. Safe to call repeatedly."""
    from .config import init_config_schema
    from .registry.models import init_registry_schema
    from .schedules.models import init_schedule_schema
    from .audit.models import init_audit_schema
    from .delivery.internal import init_notification_schema
    from .reminders.models import init_reminder_schema

    init_config_schema()
    init_registry_schema()
    init_schedule_schema()
    init_audit_schema()
    init_notification_schema()
    init_reminder_schema()
