"""Event models for lifecycle broadcasting.

Events live in the installer's in-memory log for the lifetime of the
process; they are not persisted.
"""

from datetime import UTC, datetime
from enum import Enum
from uuid import uuid4

from pydantic import Field

from .base import InstallerBaseModel
from .cluster import Cluster


class EventType(str, Enum):
    """Event types emitted by the installer."""

    NEW_CLUSTER = "new_cluster"
    CLUSTER_DELETED = "cluster_deleted"
    CLUSTER_STATE = "cluster_state"
    LOG = "log"
    ERROR = "error"


class Event(InstallerBaseModel):
    """Lifecycle event delivered to subscribers."""

    id: str = Field(default_factory=lambda: uuid4().hex)
    type: EventType
    cluster_id: str = ""
    cluster: Cluster | None = Field(
        default=None, description="Snapshot of the cluster at emission time"
    )
    description: str = ""
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
