"""Cluster lifecycle guards."""

from __future__ import annotations

from shared.models import Cluster, ClusterState, can_transition

from .errors import StateTransitionError


def advance(cluster: Cluster, target: ClusterState) -> ClusterState:
    """Move ``cluster`` to ``target``, enforcing the lifecycle order.

    Returns the previous state.
    """
    current = ClusterState(cluster.state)
    if not can_transition(current, target):
        raise StateTransitionError(cluster.id, current.value, ClusterState(target).value)
    cluster.state = ClusterState(target)
    return current
