"""
APARTRACK Registry Module
Assets (fixed or mobile extinguishers) and the inspectors assigned to them.
"""
from .routes import register_registry_routes
from .models import init_registry_schema, Asset, Inspector

__all__ = [
    "register_registry_routes",
    "init_registry_schema",
    "Asset",
    "Inspector",
]
