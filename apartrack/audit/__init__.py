"""
APARTRACK Audit Module
Append-only inspection log, retention and anomaly detection.
"""
from .routes import register_audit_routes
from .models import init_audit_schema, AuditEvent, insert_event, query_events
from .anomaly import Anomaly, AnomalyType, AnomalySeverity, detect_anomalies

__all__ = [
    "register_audit_routes",
    "init_audit_schema",
    "AuditEvent",
    "insert_event",
    "query_events",
    "Anomaly",
    "AnomalyType",
    "AnomalySeverity",
    "detect_anomalies",
]
