"""Provider contract.

A launch request is a ``ClusterProvider`` subclass. Declaring
``provider_type`` on a subclass registers it as a supported variant, so
adding a cloud provider adds a class here, not a branch in the installer.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, ClassVar, Protocol

from pydantic import BaseModel, ConfigDict, Field

from shared.config import Settings
from shared.database import Base
from shared.models import Cluster, ClusterState, Domain, ProviderType

if TYPE_CHECKING:
    from botocore.credentials import Credentials


class Provisioner(Protocol):
    """Concrete cloud workflow for one provider (network, instances, keys)."""

    async def provision(
        self,
        cluster: ClusterProvider,
        credentials: Credentials,
        context: ProvisioningContext,
    ) -> None: ...


class ProvisioningContext(Protocol):
    """Capabilities the installer hands to a running provisioning task."""

    provisioner: Provisioner | None

    async def credentials(self) -> Credentials: ...

    async def set_state(self, state: ClusterState) -> None: ...

    async def update_fields(self, **fields: Any) -> None: ...

    async def attach_domain(self, domain: Domain) -> None: ...

    async def log(self, message: str) -> None: ...


_VARIANTS: dict[ProviderType, type[ClusterProvider]] = {}


def registered_variants() -> dict[ProviderType, type[ClusterProvider]]:
    """Return the supported provider variants keyed by provider tag."""
    return dict(_VARIANTS)


def is_supported(request: object) -> bool:
    """Whether ``request`` is an instance of a registered variant."""
    return any(type(request) is variant for variant in _VARIANTS.values())


class ClusterProvider(BaseModel, ABC):
    """Provider-specific cluster wrapping exactly one generic ``Cluster``."""

    model_config = ConfigDict(from_attributes=True, validate_assignment=False)

    provider_type: ClassVar[ProviderType]
    table: ClassVar[type[Base]]

    cluster: Cluster = Field(default_factory=Cluster)

    @classmethod
    def __pydantic_init_subclass__(cls, **kwargs: Any) -> None:
        super().__pydantic_init_subclass__(**kwargs)
        provider_type = cls.__dict__.get("provider_type")
        if provider_type is not None:
            _VARIANTS[provider_type] = cls

    @property
    def cluster_id(self) -> str:
        return self.cluster.id

    @abstractmethod
    def set_defaults_and_validate(self, settings: Settings | None = None) -> None:
        """Fill defaults from ``settings`` and check the request.

        Raises ``ValidationError``. Without ``settings`` the process-wide
        settings are used.
        """

    @abstractmethod
    def to_model(self) -> Base:
        """Row for the provider-specific table."""

    @classmethod
    @abstractmethod
    def from_models(cls, cluster: Cluster, row: Any) -> ClusterProvider:
        """Rebuild the variant from a stored cluster and its provider row."""

    @abstractmethod
    async def run(self, context: ProvisioningContext) -> None:
        """Provision cloud resources. Runs as a background task."""

    def provider_fields(self) -> set[str]:
        """Names of fields stored in the provider-specific table."""
        return set(type(self).model_fields) - {"cluster"}
