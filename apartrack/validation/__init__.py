"""
APARTRACK Validation Module
Geofence, schedule-window and photo-integrity gate for inspection submissions.
"""
from .routes import register_inspection_routes
from .gate import ValidationGate, InspectionAttempt, GateDecision, Rejection, PhotoCheck
from .photo import PhotoMetadata, extract_photo_metadata

__all__ = [
    "register_inspection_routes",
    "ValidationGate",
    "InspectionAttempt",
    "GateDecision",
    "Rejection",
    "PhotoCheck",
    "PhotoMetadata",
    "extract_photo_metadata",
]
