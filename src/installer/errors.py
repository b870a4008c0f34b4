"""Installer error taxonomy.

Synchronous operations raise one of these; provisioning failures that
happen after ``launch_cluster`` returns are never raised to the caller and
only show up as cluster state plus an ``error`` event.
"""

from __future__ import annotations


class InstallerError(Exception):
    """Base class for all installer errors."""

    pass


class ValidationError(InstallerError):
    """Raised when a launch request is incomplete or invalid."""

    pass


class UnsupportedTypeError(InstallerError):
    """Raised when a launch request is not a registered provider variant."""

    def __init__(self, request: object):
        self.request_type = type(request)
        super().__init__(f"Invalid cluster type {type(request).__name__}")


class NotFoundError(InstallerError):
    """Raised when a cluster or credential does not exist."""

    pass


class ClusterNotFoundError(NotFoundError):
    """Raised when a cluster is absent from both the registry and storage."""

    def __init__(self, cluster_id: str):
        self.cluster_id = cluster_id
        super().__init__(f"Cluster not found: {cluster_id}")


class CredentialsNotFoundError(NotFoundError):
    """Raised when a credential id cannot be resolved."""

    def __init__(self, credential_id: str):
        self.credential_id = credential_id
        super().__init__(f"Credentials not found: {credential_id}")


class CredentialsAlreadyExistError(InstallerError):
    """Raised when saving credentials under an id that is already stored."""

    def __init__(self, credential_id: str):
        self.credential_id = credential_id
        super().__init__(f"Credentials already exist: {credential_id}")


class StorageError(InstallerError):
    """Wraps a failure of the underlying persistence layer."""

    pass


class StateTransitionError(InstallerError):
    """Raised on an illegal cluster lifecycle transition."""

    def __init__(self, cluster_id: str, current: str, target: str):
        self.cluster_id = cluster_id
        self.current = current
        self.target = target
        super().__init__(f"Cluster {cluster_id}: cannot move from {current} to {target}")


class DomainAlreadyAttachedError(InstallerError):
    """Raised when attaching a second domain to a cluster."""

    pass


class AsyncProvisioningFailure(InstallerError):
    """Failure of a background provisioning task."""

    def __init__(self, cluster_id: str, reason: str):
        self.cluster_id = cluster_id
        self.reason = reason
        super().__init__(f"Provisioning of cluster {cluster_id} failed: {reason}")
