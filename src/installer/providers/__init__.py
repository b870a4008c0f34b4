"""Cloud provider variants supported by the installer."""

from .aws import AWSCluster
from .base import (
    ClusterProvider,
    Provisioner,
    ProvisioningContext,
    is_supported,
    registered_variants,
)

__all__ = [
    "ClusterProvider",
    "Provisioner",
    "ProvisioningContext",
    "is_supported",
    "registered_variants",
    # Variants
    "AWSCluster",
]
