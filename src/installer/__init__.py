"""Cluster installer.

Launches clusters on a cloud provider and tracks them through their
lifecycle:
- validate and persist launch requests
- keep an in-memory registry of active clusters, rebuilt from storage on start
- broadcast lifecycle events to subscribers
- run provider provisioning in the background
"""

from .errors import (
    AsyncProvisioningFailure,
    ClusterNotFoundError,
    CredentialsAlreadyExistError,
    CredentialsNotFoundError,
    DomainAlreadyAttachedError,
    InstallerError,
    NotFoundError,
    StateTransitionError,
    StorageError,
    UnsupportedTypeError,
    ValidationError,
)
from .providers import AWSCluster, ClusterProvider, Provisioner, ProvisioningContext
from .services import Installer, Subscription

__version__ = "0.1.0"

__all__ = [
    "Installer",
    "Subscription",
    # Providers
    "ClusterProvider",
    "AWSCluster",
    "Provisioner",
    "ProvisioningContext",
    # Errors
    "InstallerError",
    "ValidationError",
    "UnsupportedTypeError",
    "NotFoundError",
    "ClusterNotFoundError",
    "CredentialsNotFoundError",
    "CredentialsAlreadyExistError",
    "StorageError",
    "StateTransitionError",
    "DomainAlreadyAttachedError",
    "AsyncProvisioningFailure",
]
