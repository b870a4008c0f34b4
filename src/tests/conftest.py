"""Pytest configuration and shared fixtures."""

import asyncio
import os
from collections.abc import AsyncGenerator, Callable
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio
from botocore.credentials import Credentials

# Set test environment before importing settings
os.environ["ENV"] = "development"
os.environ["LOG_LEVEL"] = "DEBUG"
os.environ["LOG_FORMAT"] = "text"

from installer import AWSCluster, Installer  # noqa: E402
from installer.repositories import PersistenceGateway  # noqa: E402
from shared.config import DatabaseSettings, LogFormat, Settings  # noqa: E402
from shared.models import Domain, ProviderType  # noqa: E402

ENV_CREDENTIALS = Credentials(access_key="AKIAENVIRONMENT", secret_key="env-secret")


class FakeProvisioner:
    """Stands in for the cloud workflow.

    Records each call, optionally waits on ``gate`` before doing anything,
    then either raises ``fail_with`` or writes the values a real stack
    would produce.
    """

    def __init__(
        self,
        fail_with: Exception | None = None,
        gate: asyncio.Event | None = None,
    ):
        self.fail_with = fail_with
        self.gate = gate
        self.calls: list[tuple[str, Credentials]] = []

    async def provision(self, cluster: Any, credentials: Credentials, context: Any) -> None:
        self.calls.append((cluster.cluster_id, credentials))
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_with is not None:
            raise self.fail_with
        await context.update_fields(
            ca_cert="-----BEGIN CERTIFICATE-----",
            controller_pin="pin-123",
            stack_id=f"arn:aws:cloudformation:stack/{cluster.cluster_id}",
        )
        await context.attach_domain(Domain(name=f"{cluster.cluster_id}.example.com", token="tok"))
        await context.log("stack created")


@pytest.fixture
def database_url(tmp_path: Path) -> str:
    """SQLite database file private to one test."""
    return f"sqlite+aiosqlite:///{tmp_path / 'installer.db'}"


@pytest.fixture
def test_settings(database_url: str) -> Settings:
    return Settings(
        database=DatabaseSettings(url_override=database_url),
        log_format=LogFormat.TEXT,
    )


@pytest.fixture
def env_credentials() -> Credentials:
    return ENV_CREDENTIALS


@pytest.fixture
def make_provisioner() -> type[FakeProvisioner]:
    return FakeProvisioner


@pytest.fixture
def provisioner() -> FakeProvisioner:
    return FakeProvisioner()


@pytest.fixture
def open_installer(
    test_settings: Settings, provisioner: FakeProvisioner
) -> Callable[..., Any]:
    """Factory opening an installer on the test database."""

    async def _open(**overrides: Any) -> Installer:
        kwargs: dict[str, Any] = {
            "settings": test_settings,
            "provisioners": {ProviderType.AWS: provisioner},
            "env_credentials": lambda: ENV_CREDENTIALS,
        }
        kwargs.update(overrides)
        return await Installer.open(**kwargs)

    return _open


@pytest_asyncio.fixture
async def installer(open_installer) -> AsyncGenerator[Installer, None]:
    inst = await open_installer()
    yield inst
    # let background provisioning finish before storage goes away
    for cluster_id in list(inst._tasks):
        await inst.wait_for_provisioning(cluster_id)
    await inst.close()


@pytest_asyncio.fixture
async def gateway(database_url: str) -> AsyncGenerator[PersistenceGateway, None]:
    gw = await PersistenceGateway.open(database_url)
    yield gw
    await gw.dispose()


@pytest.fixture
def aws_request() -> Callable[..., AWSCluster]:
    """Factory for AWS launch requests."""

    def _make(credential_id: str = "aws_env", **fields: Any) -> AWSCluster:
        return AWSCluster.new(credential_id=credential_id, **fields)

    return _make


# =============================================================================
# Markers
# =============================================================================


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests (no external dependencies)")
    config.addinivalue_line(
        "markers", "integration: Integration tests (require external services)"
    )
    config.addinivalue_line("markers", "slow: Slow tests")
