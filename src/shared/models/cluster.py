"""Cluster domain models."""

from datetime import datetime
from enum import Enum

from pydantic import ConfigDict, Field

from .base import InstallerBaseModel


class ProviderType(str, Enum):
    """Cloud provider a cluster is launched on."""

    AWS = "aws"


class ClusterState(str, Enum):
    """Lifecycle state of a cluster."""

    REQUESTED = "requested"
    VALIDATING = "validating"
    PERSISTED = "persisted"
    REGISTERED = "registered"
    PROVISIONING = "provisioning"
    READY = "ready"
    FAILED = "failed"
    DELETING = "deleting"
    DELETED = "deleted"


TERMINAL_STATES = frozenset({ClusterState.READY, ClusterState.FAILED, ClusterState.DELETED})

# Forward edges of the lifecycle. DELETING is reachable from every state
# except DELETED and is handled separately.
ALLOWED_TRANSITIONS: dict[ClusterState, frozenset[ClusterState]] = {
    ClusterState.REQUESTED: frozenset({ClusterState.VALIDATING}),
    ClusterState.VALIDATING: frozenset({ClusterState.PERSISTED}),
    ClusterState.PERSISTED: frozenset({ClusterState.REGISTERED, ClusterState.FAILED}),
    ClusterState.REGISTERED: frozenset({ClusterState.PROVISIONING, ClusterState.FAILED}),
    ClusterState.PROVISIONING: frozenset({ClusterState.READY, ClusterState.FAILED}),
    ClusterState.READY: frozenset(),
    ClusterState.FAILED: frozenset(),
    ClusterState.DELETING: frozenset({ClusterState.DELETED}),
    ClusterState.DELETED: frozenset(),
}


def can_transition(current: ClusterState | str, target: ClusterState | str) -> bool:
    """Check whether ``current -> target`` is a legal lifecycle move."""
    current = ClusterState(current)
    target = ClusterState(target)
    if target == ClusterState.DELETING:
        return current not in (ClusterState.DELETING, ClusterState.DELETED)
    return target in ALLOWED_TRANSITIONS[current]


class Domain(InstallerBaseModel):
    """DNS domain attached to a cluster. Immutable once created."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    name: str = Field(min_length=1, description="Fully qualified domain name")
    token: str = Field(default="", description="Domain verification token")


class Cluster(InstallerBaseModel):
    """Provider-agnostic view of a launched cluster."""

    id: str = Field(default="", description="Unique cluster identifier")
    credential_id: str = Field(default="", description="Credential used to provision")
    type: ProviderType | None = Field(default=None, description="Provider tag")
    state: ClusterState = ClusterState.REQUESTED
    num_instances: int = Field(default=0, ge=0, description="Number of instances")
    controller_key: str = ""
    controller_pin: str = ""
    dashboard_login_token: str = ""
    ca_cert: str = ""
    ssh_key_name: str = ""
    vpc_cidr: str = ""
    subnet_cidr: str = ""
    discovery_token: str = ""
    dns_zone_id: str = ""
    domain: Domain | None = None
    created_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        """Whether the cluster reached a terminal lifecycle state."""
        return ClusterState(self.state) in TERMINAL_STATES

    def column_values(self) -> dict:
        """Values for the ``clusters`` table (domain lives in its own table)."""
        values = self.model_dump(exclude={"domain", "created_at"}, mode="json")
        values["state"] = ClusterState(self.state).value
        return values
