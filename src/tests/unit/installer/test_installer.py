"""Tests for the installer façade."""

import asyncio

import pytest

from installer import (
    AWSCluster,
    ClusterNotFoundError,
    CredentialsAlreadyExistError,
    StorageError,
    UnsupportedTypeError,
    ValidationError,
)
from installer.repositories import PersistenceGateway
from shared.config import AWSDefaults, DatabaseSettings, Settings
from shared.models import Cluster, ClusterState, EventType, ProviderType

LAUNCHED_STATES = {
    ClusterState.REGISTERED,
    ClusterState.PROVISIONING,
    ClusterState.READY,
    ClusterState.FAILED,
}


class UnregisteredCluster(AWSCluster):
    """Subclass without its own provider_type, so not a supported variant."""


class TestLaunch:
    async def test_launch_registers_cluster(self, installer, aws_request):
        """Test a launched cluster is findable straight away."""
        cluster = await installer.launch_cluster(aws_request())

        found = await installer.find_cluster(cluster.id)

        assert found.id == cluster.id
        assert found.state in LAUNCHED_STATES
        assert await installer.registry.count() == 1

    async def test_new_cluster_event_reaches_prior_subscribers(self, installer, aws_request):
        first = await installer.subscribe()
        second = await installer.subscribe()

        cluster = await installer.launch_cluster(aws_request())

        for sub in (first, second):
            event = await asyncio.wait_for(sub.get(), timeout=1)
            assert event.type == EventType.NEW_CLUSTER
            assert event.cluster_id == cluster.id
            assert event.cluster.state == ClusterState.REGISTERED

    async def test_launch_persists_cluster(self, installer, aws_request):
        cluster = await installer.launch_cluster(aws_request(region="ap-south-1"))

        stored = await installer.gateway.find_cluster(cluster.id)

        assert stored.id == cluster.id
        assert stored.controller_key == cluster.controller_key

    async def test_missing_credential(self, installer, aws_request):
        """Test an invalid request is neither persisted nor registered."""
        sub = await installer.subscribe()

        with pytest.raises(ValidationError):
            await installer.launch_cluster(aws_request(credential_id=""))

        assert await installer.registry.count() == 0
        assert await installer.gateway.load_clusters() == []
        assert sub.drain() == []

    async def test_invalid_request_not_persisted(self, installer, aws_request):
        with pytest.raises(ValidationError):
            await installer.launch_cluster(aws_request(num_instances=50))

        assert await installer.gateway.load_clusters() == []

    @pytest.mark.parametrize("request_factory", [Cluster, object])
    async def test_unsupported_type(self, installer, request_factory):
        with pytest.raises(UnsupportedTypeError):
            await installer.launch_cluster(request_factory())

    async def test_unregistered_subclass_unsupported(self, installer):
        """Test dispatch is on the exact variant class."""
        with pytest.raises(UnsupportedTypeError):
            await installer.launch_cluster(UnregisteredCluster.new(credential_id="aws_env"))

        assert await installer.registry.count() == 0

    async def test_stored_state_registered_after_launch(
        self, open_installer, make_provisioner, aws_request
    ):
        """Test storage holds the registered state once launch returns."""
        gate = asyncio.Event()
        installer = await open_installer(
            provisioners={ProviderType.AWS: make_provisioner(gate=gate)}
        )
        try:
            cluster = await installer.launch_cluster(aws_request())

            stored = await installer.gateway.find_cluster(cluster.id)
            assert stored.state == ClusterState.REGISTERED

            gate.set()
            await installer.wait_for_provisioning(cluster.id)
            assert (
                await installer.gateway.find_cluster(cluster.id)
            ).state == ClusterState.READY
        finally:
            await installer.close()

    async def test_defaults_from_installer_settings(
        self, open_installer, database_url, aws_request
    ):
        """Test launch defaults come from the installer's own settings."""
        settings = Settings(
            database=DatabaseSettings(url_override=database_url),
            aws=AWSDefaults(region="eu-west-1", num_instances=3),
        )
        installer = await open_installer(settings=settings)
        try:
            cluster = await installer.launch_cluster(aws_request())
            provider = await installer.registry.get_provider(cluster.id)

            assert provider.region == "eu-west-1"
            assert cluster.num_instances == 3
            await installer.wait_for_provisioning(cluster.id)
        finally:
            await installer.close()

    async def test_rejected_request_can_be_resubmitted(self, installer, aws_request):
        """Test a failed validation leaves the caller's request untouched."""
        request = aws_request(credential_id="")

        with pytest.raises(ValidationError):
            await installer.launch_cluster(request)

        assert request.cluster.state == ClusterState.REQUESTED
        assert request.cluster.id == ""
        request.cluster.credential_id = "aws_env"
        cluster = await installer.launch_cluster(request)
        assert await installer.registry.find(cluster.id) is cluster

    async def test_storage_failure(self, installer, aws_request):
        """Test a storage failure surfaces and the request is not registered."""
        await installer.launch_cluster(aws_request(cluster_id="dup"))
        request = aws_request(cluster_id="dup")

        with pytest.raises(StorageError):
            await installer.launch_cluster(request)

        assert request.cluster.state == ClusterState.REQUESTED
        assert await installer.registry.count() == 1

    async def test_concurrent_launches(self, installer, aws_request):
        """Test concurrent launches all register distinct clusters."""
        clusters = await asyncio.gather(
            *(installer.launch_cluster(aws_request()) for _ in range(10))
        )

        ids = {c.id for c in clusters}
        assert len(ids) == 10
        assert await installer.registry.count() == 10
        for cluster_id in ids:
            assert (await installer.find_cluster(cluster_id)).id == cluster_id

    async def test_stalled_subscriber_does_not_block_launch(self, installer, aws_request):
        stalled = await installer.subscribe(buffer_size=1)

        await asyncio.wait_for(
            asyncio.gather(*(installer.launch_cluster(aws_request()) for _ in range(5))),
            timeout=5,
        )

        assert stalled.pending() == 1
        assert stalled.dropped > 0

    async def test_list_clusters(self, installer, aws_request):
        first = await installer.launch_cluster(aws_request())
        second = await installer.launch_cluster(aws_request())

        assert [c.id for c in await installer.list_clusters()] == [first.id, second.id]


class TestProvisioning:
    async def test_provisioning_reaches_ready(
        self, installer, provisioner, env_credentials, aws_request
    ):
        sub = await installer.subscribe()
        cluster = await installer.launch_cluster(aws_request())

        await installer.wait_for_provisioning(cluster.id)

        found = await installer.find_cluster(cluster.id)
        assert found.state == ClusterState.READY
        assert found.ca_cert == "-----BEGIN CERTIFICATE-----"
        assert found.domain.name == f"{cluster.id}.example.com"
        assert provisioner.calls == [(cluster.id, env_credentials)]

        events = sub.drain()
        assert [e.type for e in events] == [
            EventType.NEW_CLUSTER,
            EventType.CLUSTER_STATE,
            EventType.LOG,
            EventType.LOG,
            EventType.CLUSTER_STATE,
        ]
        assert events[1].description == "provisioning"
        assert events[-1].description == "ready"

    async def test_provisioned_values_persisted(self, installer, aws_request):
        cluster = await installer.launch_cluster(aws_request())
        await installer.wait_for_provisioning(cluster.id)

        stored = await installer.gateway.find_cluster(cluster.id)

        assert stored.state == ClusterState.READY
        assert stored.controller_pin == "pin-123"
        assert stored.domain.name == f"{cluster.id}.example.com"

    async def test_stored_credentials_used(self, installer, provisioner, aws_request):
        await installer.save_credentials("AKIA123", "s3cret")

        cluster = await installer.launch_cluster(aws_request(credential_id="AKIA123"))
        await installer.wait_for_provisioning(cluster.id)

        [(_, credentials)] = provisioner.calls
        assert credentials.access_key == "AKIA123"
        assert credentials.secret_key == "s3cret"

    async def test_provisioning_failure(self, open_installer, make_provisioner, aws_request):
        """Test a failing provisioner leaves the cluster failed with an error event."""
        installer = await open_installer(
            provisioners={
                ProviderType.AWS: make_provisioner(fail_with=RuntimeError("quota exceeded"))
            }
        )
        try:
            sub = await installer.subscribe()
            cluster = await installer.launch_cluster(aws_request())
            await installer.wait_for_provisioning(cluster.id)

            assert (await installer.find_cluster(cluster.id)).state == ClusterState.FAILED
            assert (
                await installer.gateway.find_cluster(cluster.id)
            ).state == ClusterState.FAILED
            errors = [e for e in sub.drain() if e.type == EventType.ERROR]
            assert [e.description for e in errors] == ["quota exceeded"]
        finally:
            await installer.close()

    async def test_unknown_credentials_fail_provisioning(self, installer, aws_request):
        sub = await installer.subscribe()
        cluster = await installer.launch_cluster(aws_request(credential_id="missing"))

        await installer.wait_for_provisioning(cluster.id)

        assert (await installer.find_cluster(cluster.id)).state == ClusterState.FAILED
        assert any(e.type == EventType.ERROR for e in sub.drain())

    async def test_no_provisioner_configured(self, open_installer, aws_request):
        installer = await open_installer(provisioners={})
        try:
            sub = await installer.subscribe()
            cluster = await installer.launch_cluster(aws_request())
            await installer.wait_for_provisioning(cluster.id)

            assert (await installer.find_cluster(cluster.id)).state == ClusterState.FAILED
            errors = [e for e in sub.drain() if e.type == EventType.ERROR]
            assert errors[0].description == "no provisioner configured for aws"
        finally:
            await installer.close()

    async def test_launch_returns_before_provisioning(
        self, open_installer, make_provisioner, aws_request
    ):
        gate = asyncio.Event()
        installer = await open_installer(
            provisioners={ProviderType.AWS: make_provisioner(gate=gate)}
        )
        try:
            cluster = await installer.launch_cluster(aws_request())
            task = installer.provisioning_task(cluster.id)

            assert task is not None
            assert not task.done()

            gate.set()
            await installer.wait_for_provisioning(cluster.id)
            assert task.done()
            assert (await installer.find_cluster(cluster.id)).state == ClusterState.READY
        finally:
            await installer.close()

    async def test_event_snapshots_do_not_change(self, installer, aws_request):
        sub = await installer.subscribe()
        cluster = await installer.launch_cluster(aws_request())
        await installer.wait_for_provisioning(cluster.id)

        first = sub.drain()[0]

        assert first.cluster.state == ClusterState.REGISTERED
        assert first.cluster is not cluster


class TestDelete:
    async def test_delete_removes_from_registry(self, installer, aws_request):
        """Test a deleted cluster leaves the registry but stays in storage."""
        sub = await installer.subscribe()
        cluster = await installer.launch_cluster(aws_request())
        await installer.wait_for_provisioning(cluster.id)

        await installer.delete_cluster(cluster.id)

        assert await installer.registry.find(cluster.id) is None
        stored = await installer.find_cluster(cluster.id)
        assert stored.id == cluster.id
        assert stored.state == ClusterState.DELETING
        assert cluster.state == ClusterState.DELETED
        last = sub.drain()[-1]
        assert last.type == EventType.CLUSTER_DELETED
        assert last.cluster_id == cluster.id

    async def test_delete_missing_cluster(self, installer):
        with pytest.raises(ClusterNotFoundError):
            await installer.delete_cluster("nope")

    async def test_find_missing_cluster(self, installer):
        with pytest.raises(ClusterNotFoundError):
            await installer.find_cluster("nope")

    async def test_delete_stored_only_cluster(self, installer, aws_request):
        """Test a cluster only present in storage can still be deleted."""
        cluster = await installer.launch_cluster(aws_request())
        await installer.wait_for_provisioning(cluster.id)
        await installer.registry.remove(cluster.id)

        await installer.delete_cluster(cluster.id)

        assert (await installer.find_cluster(cluster.id)).state == ClusterState.DELETING

    async def test_delete_during_provisioning(self, open_installer, make_provisioner, aws_request):
        """Test provisioning finishing after a delete does not revive the cluster."""
        gate = asyncio.Event()
        installer = await open_installer(
            provisioners={ProviderType.AWS: make_provisioner(gate=gate)}
        )
        try:
            sub = await installer.subscribe()
            cluster = await installer.launch_cluster(aws_request())
            await asyncio.sleep(0.05)

            await installer.delete_cluster(cluster.id)
            gate.set()
            await installer.wait_for_provisioning(cluster.id)

            assert await installer.registry.find(cluster.id) is None
            stored = await installer.gateway.find_cluster(cluster.id)
            assert stored.state == ClusterState.DELETING
            assert any(e.type == EventType.ERROR for e in sub.drain())
        finally:
            await installer.close()


class TestCredentials:
    async def test_save_and_find(self, installer):
        await installer.save_credentials("AKIA123", "s3cret")

        credentials = await installer.find_credentials("AKIA123")

        assert credentials.secret_key == "s3cret"

    async def test_env_credentials(self, installer, env_credentials):
        assert await installer.find_credentials("aws_env") is env_credentials

    async def test_duplicate_rejected(self, installer):
        await installer.save_credentials("AKIA123", "first")

        with pytest.raises(CredentialsAlreadyExistError):
            await installer.save_credentials("AKIA123", "second")

        assert (await installer.find_credentials("AKIA123")).secret_key == "first"

    async def test_reserved_id_rejected(self, installer):
        with pytest.raises(ValidationError):
            await installer.save_credentials("aws_env", "secret")


class TestEvents:
    async def test_event_history(self, installer, aws_request):
        cluster = await installer.launch_cluster(aws_request())
        await installer.wait_for_provisioning(cluster.id)

        history = await installer.event_history()

        assert history[0].type == EventType.NEW_CLUSTER
        assert await installer.event_history(since=history[0].id) == history[1:]

    async def test_unsubscribe(self, installer, aws_request):
        sub = await installer.subscribe()

        await installer.unsubscribe(sub)
        await installer.launch_cluster(aws_request())

        assert sub.closed
        assert sub.drain() == []

    async def test_close_ends_subscriptions(self, open_installer):
        installer = await open_installer()
        sub = await installer.subscribe()

        await installer.close()

        assert sub.closed
        assert await sub.get() is None


class TestReconciliation:
    async def test_reopen_restores_clusters(self, open_installer, aws_request):
        """Test the registry is rebuilt from storage on open."""
        first = await open_installer()
        cluster = await first.launch_cluster(aws_request(region="eu-west-1"))
        await first.wait_for_provisioning(cluster.id)
        await first.close()

        second = await open_installer()
        try:
            restored = await second.registry.get_provider(cluster.id)

            assert restored is not None
            assert restored.region == "eu-west-1"
            assert restored.cluster.state == ClusterState.READY
            assert restored.cluster.domain.name == f"{cluster.id}.example.com"
        finally:
            await second.close()

    async def test_deleted_clusters_not_restored(self, open_installer, aws_request):
        first = await open_installer()
        cluster = await first.launch_cluster(aws_request())
        await first.wait_for_provisioning(cluster.id)
        await first.delete_cluster(cluster.id)
        await first.close()

        second = await open_installer()
        try:
            assert await second.registry.find(cluster.id) is None
            assert (await second.find_cluster(cluster.id)).state == ClusterState.DELETING
        finally:
            await second.close()

    async def test_interrupted_cluster_marked_failed(
        self, open_installer, database_url, aws_request
    ):
        """Test a cluster persisted by a process that died is restored as failed."""
        request = aws_request(cluster_id="orphan")
        request.set_defaults_and_validate()
        request.cluster.state = ClusterState.PERSISTED
        gateway = await PersistenceGateway.open(database_url)
        await gateway.save_cluster(request)
        await gateway.dispose()

        installer = await open_installer()
        try:
            restored = await installer.find_cluster("orphan")

            assert restored.state == ClusterState.FAILED
            assert (await installer.gateway.find_cluster("orphan")).state == ClusterState.FAILED
            assert installer.provisioning_task("orphan") is None
        finally:
            await installer.close()

    async def test_reconcile_leaves_live_clusters_alone(
        self, open_installer, make_provisioner, aws_request
    ):
        """Test reconciling a running installer does not fail clusters in flight."""
        gate = asyncio.Event()
        installer = await open_installer(
            provisioners={ProviderType.AWS: make_provisioner(gate=gate)}
        )
        try:
            cluster = await installer.launch_cluster(aws_request())
            for _ in range(100):
                if cluster.state == ClusterState.PROVISIONING:
                    break
                await asyncio.sleep(0.01)

            assert await installer.reconcile() == 0
            stored = await installer.gateway.find_cluster(cluster.id)
            assert stored.state == ClusterState.PROVISIONING

            gate.set()
            await installer.wait_for_provisioning(cluster.id)
            assert (await installer.find_cluster(cluster.id)).state == ClusterState.READY
        finally:
            await installer.close()

    async def test_open_with_unreachable_storage(self, open_installer, tmp_path):
        settings = Settings(
            database=DatabaseSettings(
                url_override=f"sqlite+aiosqlite:///{tmp_path / 'no' / 'such' / 'db'}"
            )
        )

        with pytest.raises(StorageError):
            await open_installer(settings=settings)
