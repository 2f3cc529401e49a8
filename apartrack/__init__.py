"""
APARTRACK — Fire Extinguisher Inspection Scheduling & Validation
"""

__version__ = "1.0.0"
