# ============================================================================
# APARTRACK - Configuration Management
# ============================================================================
# Database-backed configuration with type casting and defaults.
# Schedule instants are stored in UTC; display and calendar-day logic use
# the configured timezone (Asia/Jakarta unless changed).
# ============================================================================

import json
import logging
import os
from typing import Any, Dict
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .db import get_conn

logger = logging.getLogger(__name__)

DEFAULT_TZ = "Asia/Jakarta"

# key: (default, value_type, category)
DEFAULT_CONFIG = {
    # Timezone
    "timezone": (DEFAULT_TZ, "string", "general"),

    # Validation gate
    "inspection_window_minutes": (30, "int", "validation"),
    "default_valid_radius_meters": (30, "int", "validation"),
    "photo_max_age_hours": (24, "int", "validation"),
    "photo_gps_tolerance_meters": (100, "int", "validation"),

    # Anomaly detection
    "fast_inspection_seconds": (120, "int", "audit"),
    "off_hours_start": (6, "int", "audit"),
    "off_hours_end": (22, "int", "audit"),
    "anomaly_scan_days": (30, "int", "audit"),
    "audit_retention_days": (365, "int", "audit"),

    # Reminders
    "scheduler_enabled": (True, "bool", "scheduler"),
    "reminder_run_hour": (7, "int", "scheduler"),
    "reminder_channel": ("email", "string", "scheduler"),
    "dispatch_claim_ttl_minutes": (15, "int", "scheduler"),

    # Email configuration
    "email_provider": ("sendgrid", "string", "email"),
    "sendgrid_api_key": ("", "string", "email"),
    "smtp_host": ("smtp.gmail.com", "string", "email"),
    "smtp_port": (587, "int", "email"),
    "smtp_user": ("", "string", "email"),
    "smtp_pass": ("", "string", "email"),
    "from_email": ("noreply@apartrack.local", "string", "email"),
    "from_name": ("APARTRACK Inspection", "string", "email"),
    "send_timeout_seconds": (10, "int", "email"),
}

# Secrets that may be supplied through the environment instead of the table
ENV_FALLBACKS = {
    "sendgrid_api_key": "SENDGRID_API_KEY",
    "smtp_user": "SMTP_USER",
    "smtp_pass": "SMTP_PASS",
}


def init_config_schema():
    conn = get_conn()
    conn.execute("""
        CREATE TABLE IF NOT EXISTS settings (
            key TEXT PRIMARY KEY,
            value TEXT,
            value_type TEXT DEFAULT 'string',
            category TEXT DEFAULT 'general',
            updated_at TEXT DEFAULT CURRENT_TIMESTAMP,
            updated_by TEXT
        )
    """)
    conn.commit()
    conn.close()


class AppConfig:
    """
    Database-backed configuration manager.

    Values live in the `settings` table; anything not stored there falls
    back to DEFAULT_CONFIG. Reads are served from a class-level cache.
    """

    _cache: Dict[str, Any] = {}
    _cache_loaded: bool = False

    @classmethod
    def _load_cache(cls):
        """Load all config into memory cache."""
        if cls._cache_loaded:
            return

        for key, (default, vtype, category) in DEFAULT_CONFIG.items():
            cls._cache[key] = default

        init_config_schema()
        conn = get_conn()
        rows = conn.execute("SELECT key, value, value_type FROM settings").fetchall()
        conn.close()

        for row in rows:
            cls._cache[row["key"]] = cls._cast_value(row["value"], row["value_type"])

        for key, env_name in ENV_FALLBACKS.items():
            if not cls._cache.get(key) and os.environ.get(env_name):
                cls._cache[key] = os.environ[env_name]

        cls._cache_loaded = True

    @classmethod
    def _cast_value(cls, value: str, value_type: str) -> Any:
        """Cast string value to appropriate type."""
        if value is None:
            return None
        if value_type == "bool":
            return value.lower() in ("true", "1", "yes", "on")
        if value_type == "int":
            try:
                return int(value)
            except ValueError:
                return 0
        if value_type == "float":
            try:
                return float(value)
            except ValueError:
                return 0.0
        if value_type == "json":
            try:
                return json.loads(value)
            except ValueError:
                return {}
        return value

    @classmethod
    def _serialize_value(cls, value: Any, value_type: str) -> str:
        """Serialize value to string for storage."""
        if value is None:
            return ""
        if value_type == "bool":
            return "true" if value else "false"
        if value_type in ("int", "float"):
            return str(value)
        if value_type == "json":
            return json.dumps(value)
        return str(value)

    @classmethod
    def get(cls, key: str, default: Any = None) -> Any:
        """Get a configuration value."""
        cls._load_cache()
        return cls._cache.get(key, default)

    @classmethod
    def set(cls, key: str, value: Any, value_type: str = None,
            category: str = "general", user: str = None) -> bool:
        """Set a configuration value."""
        cls._load_cache()

        if value_type is None:
            if key in DEFAULT_CONFIG:
                _, value_type, category = DEFAULT_CONFIG[key]
            elif isinstance(value, bool):
                value_type = "bool"
            elif isinstance(value, int):
                value_type = "int"
            elif isinstance(value, float):
                value_type = "float"
            elif isinstance(value, (dict, list)):
                value_type = "json"
            else:
                value_type = "string"

        old_value = cls._cache.get(key)
        serialized = cls._serialize_value(value, value_type)

        conn = get_conn()
        conn.execute(
            """INSERT INTO settings (key, value, value_type, category, updated_by)
               VALUES (?, ?, ?, ?, ?)
               ON CONFLICT(key) DO UPDATE SET
               value = excluded.value,
               value_type = excluded.value_type,
               category = excluded.category,
               updated_at = CURRENT_TIMESTAMP,
               updated_by = excluded.updated_by""",
            (key, serialized, value_type, category, user),
        )
        conn.commit()
        conn.close()

        cls._cache[key] = cls._cast_value(serialized, value_type)

        if old_value != cls._cache[key]:
            logger.info(f"[Config] {key} changed by {user or 'system'}")

        return True

    @classmethod
    def get_all(cls, category: str = None) -> Dict[str, Any]:
        """Get all configuration values, optionally filtered by category."""
        cls._load_cache()

        if category is None:
            return dict(cls._cache)

        result = {}
        for key, (default, vtype, cat) in DEFAULT_CONFIG.items():
            if cat == category:
                result[key] = cls._cache.get(key, default)
        return result

    @classmethod
    def reset_cache(cls):
        """Reset the configuration cache."""
        cls._cache = {}
        cls._cache_loaded = False

    @classmethod
    def init_defaults(cls):
        """Initialize default configuration values in database if not present."""
        init_config_schema()
        conn = get_conn()

        for key, (default, value_type, category) in DEFAULT_CONFIG.items():
            conn.execute(
                """INSERT OR IGNORE INTO settings (key, value, value_type, category)
                   VALUES (?, ?, ?, ?)""",
                (key, cls._serialize_value(default, value_type), value_type, category),
            )

        conn.commit()
        conn.close()
        cls.reset_cache()


# Convenience functions
def get_config(key: str, default: Any = None) -> Any:
    """Get a configuration value."""
    return AppConfig.get(key, default)


def set_config(key: str, value: Any, user: str = None) -> bool:
    """Set a configuration value."""
    return AppConfig.set(key, value, user=user)


def get_all_config() -> Dict[str, Any]:
    """Get all configuration values."""
    return AppConfig.get_all()


# ============================================================================
# Timezone Helpers
# ============================================================================

def get_timezone() -> ZoneInfo:
    """Get the configured timezone object."""
    tz_name = get_config("timezone", DEFAULT_TZ)
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"[Config] Unknown timezone {tz_name!r}, using {DEFAULT_TZ}")
        return ZoneInfo(DEFAULT_TZ)
