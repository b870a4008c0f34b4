"""In-memory registry of active clusters.

Entries are provider variants keyed by cluster id; callers outside the
installer only ever see the generic ``Cluster`` projection. The registry
lock guards pure in-memory work and is never held across I/O.
"""

from __future__ import annotations

from shared.models import Cluster
from shared.observability import get_logger

from ..locks import AsyncRWLock
from ..providers import ClusterProvider, is_supported

logger = get_logger(__name__)


class ClusterRegistry:
    """Authoritative index of cluster aggregates."""

    def __init__(self) -> None:
        self._clusters: dict[str, ClusterProvider] = {}
        self._lock = AsyncRWLock()

    async def add(self, provider: ClusterProvider) -> None:
        """Register ``provider``. Its cluster id must not be registered yet."""
        async with self._lock.write():
            if provider.cluster_id in self._clusters:
                raise KeyError(f"cluster {provider.cluster_id} is already registered")
            self._clusters[provider.cluster_id] = provider
            total = len(self._clusters)
        logger.debug("Cluster registered", cluster_id=provider.cluster_id, total_clusters=total)

    async def remove(self, cluster_id: str) -> ClusterProvider | None:
        """Remove the entry for ``cluster_id``; returns it, or None if absent."""
        async with self._lock.write():
            provider = self._clusters.pop(cluster_id, None)
        if provider is not None:
            logger.debug("Cluster unregistered", cluster_id=cluster_id)
        return provider

    async def get_provider(self, cluster_id: str) -> ClusterProvider | None:
        async with self._lock.read():
            provider = self._clusters.get(cluster_id)
        if provider is None or not is_supported(provider):
            return None
        return provider

    async def find(self, cluster_id: str) -> Cluster | None:
        """Generic cluster for ``cluster_id`` or None."""
        provider = await self.get_provider(cluster_id)
        return provider.cluster if provider is not None else None

    async def list(self) -> list[Cluster]:
        """Registered clusters in registration order."""
        async with self._lock.read():
            providers = list(self._clusters.values())
        return [p.cluster for p in providers if is_supported(p)]

    async def count(self) -> int:
        async with self._lock.read():
            return len(self._clusters)

    async def contains(self, cluster_id: str) -> bool:
        async with self._lock.read():
            return cluster_id in self._clusters
