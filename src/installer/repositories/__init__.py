"""Data access for the installer."""

from .persistence import PersistenceGateway

__all__ = ["PersistenceGateway"]
