"""Installer services."""

from .cluster_registry import ClusterRegistry
from .credential_store import CredentialStore, load_env_credentials
from .event_bus import EventBus, Subscription
from .installer import Installer, InstallerProvisioningContext

__all__ = [
    "ClusterRegistry",
    "CredentialStore",
    "load_env_credentials",
    "EventBus",
    "Subscription",
    "Installer",
    "InstallerProvisioningContext",
]
