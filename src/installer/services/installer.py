"""Installer service.

Single coordination point for cluster launches. Each collaborator guards
its own data with its own lock (storage, event log, subscriptions,
registry), so an event broadcast never waits on an unrelated lookup and no
lock is held while another is acquired.

Launch order: validate -> persist -> register -> emit ``new_cluster`` ->
start provisioning in the background. ``launch_cluster`` returns as soon as
the event is emitted; callers follow progress through ``find_cluster`` or a
subscription.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from typing import Any

import structlog
from botocore.credentials import Credentials

from shared.config import Settings, get_settings
from shared.models import (
    Cluster,
    ClusterState,
    Domain,
    Event,
    EventType,
    ProviderType,
    can_transition,
)
from shared.observability import ClusterContext, get_logger, setup_logging

from ..errors import (
    AsyncProvisioningFailure,
    DomainAlreadyAttachedError,
    InstallerError,
    StateTransitionError,
    StorageError,
    UnsupportedTypeError,
)
from ..lifecycle import advance
from ..providers import ClusterProvider, Provisioner, is_supported
from ..repositories import PersistenceGateway
from .cluster_registry import ClusterRegistry
from .credential_store import CredentialStore, EnvCredentialFactory, load_env_credentials
from .event_bus import EventBus, Subscription


class InstallerProvisioningContext:
    """What a provider's background ``run`` may do to its own cluster."""

    def __init__(self, installer: Installer, provider: ClusterProvider):
        self._installer = installer
        self._provider = provider
        self.provisioner: Provisioner | None = installer.provisioners.get(provider.provider_type)

    async def credentials(self) -> Credentials:
        return await self._installer.find_credentials(self._provider.cluster.credential_id)

    async def set_state(self, state: ClusterState) -> None:
        await self._installer._set_state(self._provider, state)

    async def update_fields(self, **fields: Any) -> None:
        """Persist generated values (CA cert, stack id, ...) then apply them."""
        await self._installer.gateway.update_cluster(self._provider, fields)
        for name, value in fields.items():
            target = self._provider.cluster if name in Cluster.model_fields else self._provider
            setattr(target, name, value)

    async def attach_domain(self, domain: Domain) -> None:
        cluster = self._provider.cluster
        if cluster.domain is not None:
            raise DomainAlreadyAttachedError(f"Cluster {cluster.id} already has a domain")
        await self._installer.gateway.save_domain(cluster.id, domain)
        cluster.domain = domain

    async def log(self, message: str) -> None:
        await self._installer._emit(EventType.LOG, self._provider.cluster, description=message)


class Installer:
    """Launches, tracks and deletes clusters."""

    def __init__(
        self,
        gateway: PersistenceGateway,
        settings: Settings | None = None,
        logger: structlog.stdlib.BoundLogger | None = None,
        provisioners: Mapping[ProviderType, Provisioner] | None = None,
        env_credentials: EnvCredentialFactory = load_env_credentials,
    ):
        self.settings = settings or get_settings()
        self.logger = logger or get_logger(__name__)
        self.gateway = gateway
        self.registry = ClusterRegistry()
        self.event_bus = EventBus(self.settings.events.subscription_buffer_size)
        self.credential_store = CredentialStore(
            gateway,
            env_credentials=env_credentials,
            env_credential_id=self.settings.credentials.env_credential_id,
        )
        self.provisioners: dict[ProviderType, Provisioner] = dict(provisioners or {})
        self._tasks: dict[str, asyncio.Task[None]] = {}
        # ids between validation and registration
        self._launching: set[str] = set()

    @classmethod
    async def open(
        cls,
        settings: Settings | None = None,
        logger: structlog.stdlib.BoundLogger | None = None,
        provisioners: Mapping[ProviderType, Provisioner] | None = None,
        env_credentials: EnvCredentialFactory = load_env_credentials,
    ) -> Installer:
        """Open storage, then rebuild the registry from it.

        Structured logging is configured from ``settings`` unless a logger is
        passed in.

        Raises:
            StorageError: storage cannot be opened; the installer cannot run
        """
        settings = settings or get_settings()
        if logger is None:
            setup_logging(
                service_name=settings.app_name,
                log_level=settings.log_level,
                log_format=settings.log_format,
            )
            logger = get_logger(__name__)
        gateway = await PersistenceGateway.open(
            settings.database.async_url, echo=settings.database.echo, logger=logger
        )
        installer = cls(
            gateway,
            settings=settings,
            logger=logger,
            provisioners=provisioners,
            env_credentials=env_credentials,
        )
        await installer.reconcile()
        return installer

    async def close(self) -> None:
        """Close subscriptions and release the storage handle.

        Provisioning tasks still running are left alone; there is no
        cancellation.
        """
        await self.event_bus.close()
        running = [cid for cid, task in self._tasks.items() if not task.done()]
        if running:
            self.logger.warning("Provisioning tasks still running at close", cluster_ids=running)
        await self.gateway.dispose()

    async def __aenter__(self) -> Installer:
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Clusters
    # ------------------------------------------------------------------

    async def launch_cluster(self, request: ClusterProvider) -> Cluster:
        """Validate, persist, register and announce a cluster, then provision it.

        The installer works on its own copy of ``request``; the caller's
        object is left as it was, so a rejected request can be corrected and
        submitted again.

        Raises:
            UnsupportedTypeError: ``request`` is not a registered provider variant
            ValidationError: the request is invalid; nothing was persisted
            StorageError: the cluster could not be written
            StateTransitionError: the stored cluster was deleted before registration
        """
        if not is_supported(request):
            raise UnsupportedTypeError(request)

        provider = request.model_copy(deep=True)
        cluster = provider.cluster
        advance(cluster, ClusterState.VALIDATING)
        provider.set_defaults_and_validate(self.settings)

        advance(cluster, ClusterState.PERSISTED)
        self._launching.add(cluster.id)
        try:
            try:
                await self.gateway.save_cluster(provider)
                # stored state must match memory before the provisioning task
                # makes its conditional writes
                await self.gateway.set_state(
                    cluster.id, ClusterState.REGISTERED, expected=ClusterState.PERSISTED
                )
            except (StorageError, StateTransitionError):
                advance(cluster, ClusterState.FAILED)
                raise

            advance(cluster, ClusterState.REGISTERED)
            await self.registry.add(provider)
        finally:
            self._launching.discard(cluster.id)

        self.logger.info(
            "Cluster launched",
            cluster_id=cluster.id,
            provider=provider.provider_type.value,
            num_instances=cluster.num_instances,
        )

        await self._emit(EventType.NEW_CLUSTER, cluster)
        self._start_provisioning(provider)
        return cluster

    async def find_cluster(self, cluster_id: str) -> Cluster:
        """Registry first; storage when the cluster is not registered.

        Raises:
            ClusterNotFoundError: absent from both
        """
        cluster = await self.registry.find(cluster_id)
        if cluster is not None:
            return cluster
        return await self.gateway.find_cluster(cluster_id)

    async def list_clusters(self) -> list[Cluster]:
        """Registered clusters in registration order."""
        return await self.registry.list()

    async def delete_cluster(self, cluster_id: str) -> None:
        """Remove a cluster from the registry and announce it.

        Only a partial delete: the stored rows stay (marked ``deleting``) and
        no cloud resources are torn down. An in-flight provisioning task is
        not stopped.

        Raises:
            ClusterNotFoundError: absent from both registry and storage
        """
        provider = await self.registry.get_provider(cluster_id)
        if provider is None:
            # raises ClusterNotFoundError when storage has no row either
            await self.gateway.find_cluster(cluster_id)

        # TODO: purge rows and run provider teardown once deprovisioning exists
        await self.gateway.set_state(cluster_id, ClusterState.DELETING)
        await self.registry.remove(cluster_id)

        if provider is not None and can_transition(provider.cluster.state, ClusterState.DELETING):
            advance(provider.cluster, ClusterState.DELETING)
            advance(provider.cluster, ClusterState.DELETED)

        self.logger.info("Cluster deleted", cluster_id=cluster_id)
        await self.event_bus.emit(Event(type=EventType.CLUSTER_DELETED, cluster_id=cluster_id))

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    async def save_credentials(self, credential_id: str, secret: str) -> None:
        """Store a credential pair; an existing id is rejected."""
        await self.credential_store.save(credential_id, secret)

    async def find_credentials(self, credential_id: str) -> Credentials:
        """Resolve a credential id (the reserved id reads the environment)."""
        return await self.credential_store.find(credential_id)

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    async def subscribe(self, buffer_size: int | None = None) -> Subscription:
        return await self.event_bus.subscribe(buffer_size)

    async def unsubscribe(self, subscription: Subscription) -> None:
        await self.event_bus.unsubscribe(subscription)

    async def event_history(self, since: str | None = None) -> list[Event]:
        """Logged events, optionally only those after event id ``since``."""
        return await self.event_bus.history(since)

    # ------------------------------------------------------------------
    # Provisioning tasks
    # ------------------------------------------------------------------

    def provisioning_task(self, cluster_id: str) -> asyncio.Task[None] | None:
        """Handle of the provisioning task started for ``cluster_id``."""
        return self._tasks.get(cluster_id)

    async def wait_for_provisioning(self, cluster_id: str) -> None:
        """Wait until the provisioning task of ``cluster_id`` finishes."""
        task = self._tasks.get(cluster_id)
        if task is not None:
            await asyncio.wait({task})

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    async def reconcile(self) -> int:
        """Rebuild the registry from storage.

        Every stored cluster not marked deleting/deleted is registered.
        Clusters whose provisioning was still underway belonged to a task
        that died with the previous process; they are marked failed.
        Clusters this installer is launching or already tracks are left
        alone, so calling it on a running installer is safe.

        Returns:
            Number of clusters registered
        """
        restored = 0
        for provider in await self.gateway.load_clusters():
            cluster = provider.cluster
            state = ClusterState(cluster.state)
            if state in (ClusterState.DELETING, ClusterState.DELETED):
                continue
            # a registered cluster may still have a live provisioning task
            if cluster.id in self._launching or await self.registry.contains(cluster.id):
                continue
            if not cluster.is_terminal:
                try:
                    await self.gateway.set_state(cluster.id, ClusterState.FAILED, expected=state)
                except StateTransitionError:
                    self.logger.info(
                        "Cluster changed during reconciliation, skipped",
                        cluster_id=cluster.id,
                        previous_state=state.value,
                    )
                    continue
                cluster.state = ClusterState.FAILED
                self.logger.warning(
                    "Provisioning interrupted by restart, cluster marked failed",
                    cluster_id=cluster.id,
                    previous_state=state.value,
                )
            await self.registry.add(provider)
            restored += 1

        self.logger.info("Registry reconciled from storage", clusters=restored)
        return restored

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _start_provisioning(self, provider: ClusterProvider) -> None:
        context = InstallerProvisioningContext(self, provider)
        task = asyncio.create_task(
            self._provision(provider, context),
            name=f"provision-{provider.cluster_id}",
        )
        self._tasks[provider.cluster_id] = task

    async def _provision(
        self, provider: ClusterProvider, context: InstallerProvisioningContext
    ) -> None:
        with ClusterContext(cluster_id=provider.cluster_id, operation="provision"):
            try:
                await provider.run(context)
            except Exception as e:
                failure = (
                    e
                    if isinstance(e, AsyncProvisioningFailure)
                    else AsyncProvisioningFailure(provider.cluster_id, str(e) or type(e).__name__)
                )
                self.logger.error(
                    "Provisioning failed",
                    cluster_id=provider.cluster_id,
                    error=failure.reason,
                    exc_info=e,
                )
                await self._fail(provider, failure)
            else:
                self.logger.info("Provisioning finished", cluster_id=provider.cluster_id)

    async def _fail(self, provider: ClusterProvider, failure: AsyncProvisioningFailure) -> None:
        if can_transition(provider.cluster.state, ClusterState.FAILED):
            try:
                await self._set_state(provider, ClusterState.FAILED)
            except InstallerError as e:
                self.logger.error(
                    "Could not record provisioning failure",
                    cluster_id=provider.cluster_id,
                    error=str(e),
                )
        await self._emit(EventType.ERROR, provider.cluster, description=failure.reason)

    async def _set_state(self, provider: ClusterProvider, state: ClusterState) -> None:
        """Persist then apply a state change, and announce it."""
        cluster = provider.cluster
        current = ClusterState(cluster.state)
        if not can_transition(current, state):
            raise StateTransitionError(cluster.id, current.value, ClusterState(state).value)
        # conditional write: a concurrent delete must not be overwritten
        await self.gateway.set_state(cluster.id, state, expected=current)
        advance(cluster, state)
        await self._emit(EventType.CLUSTER_STATE, cluster, description=ClusterState(state).value)

    async def _emit(self, event_type: EventType, cluster: Cluster, description: str = "") -> None:
        await self.event_bus.emit(
            Event(
                type=event_type,
                cluster_id=cluster.id,
                cluster=cluster.model_copy(deep=True),
                description=description,
            )
        )
