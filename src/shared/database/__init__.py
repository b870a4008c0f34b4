"""Database configuration and models."""

from .base import Base, create_engine, create_session_factory
from .models import (
    AWSClusterModel,
    ClusterModel,
    CredentialModel,
    DomainModel,
)

__all__ = [
    # Base
    "Base",
    "create_engine",
    "create_session_factory",
    # Installer schema
    "ClusterModel",
    "AWSClusterModel",
    "DomainModel",
    "CredentialModel",
]
