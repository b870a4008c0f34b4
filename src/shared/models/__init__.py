"""Shared data models for the cluster installer.

All models follow these conventions:
- Timestamps: timezone-aware, UTC
- Field names: lowercase snake_case
- Enums: lowercase string values
"""

# Base
from .base import InstallerBaseModel

# Cluster domain
from .cluster import (
    ALLOWED_TRANSITIONS,
    TERMINAL_STATES,
    Cluster,
    ClusterState,
    Domain,
    ProviderType,
    can_transition,
)

# Events
from .events import Event, EventType

__all__ = [
    # Base
    "InstallerBaseModel",
    # Cluster
    "Cluster",
    "ClusterState",
    "Domain",
    "ProviderType",
    "ALLOWED_TRANSITIONS",
    "TERMINAL_STATES",
    "can_transition",
    # Events
    "Event",
    "EventType",
]
