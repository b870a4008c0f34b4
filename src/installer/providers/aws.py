"""AWS cluster variant.

Holds the AWS-only launch parameters and fills in defaults before the
request is persisted. The CloudFormation/EC2 workflow itself is performed
by the injected ``Provisioner``.
"""

from __future__ import annotations

import ipaddress
import re
import secrets
from typing import Any, ClassVar
from uuid import uuid4

from shared.config import Settings, get_settings
from shared.database import AWSClusterModel
from shared.models import Cluster, ClusterState, ProviderType
from shared.observability import get_logger

from ..errors import AsyncProvisioningFailure, ValidationError
from .base import ClusterProvider, ProvisioningContext

logger = get_logger(__name__)

REGION_PATTERN = re.compile(r"^[a-z]{2}(-gov)?-[a-z]+-\d$")
MAX_INSTANCES = 5


class AWSCluster(ClusterProvider):
    """Cluster launched into an AWS VPC."""

    provider_type: ClassVar[ProviderType] = ProviderType.AWS
    table: ClassVar[type[AWSClusterModel]] = AWSClusterModel

    stack_id: str = ""
    stack_name: str = ""
    image_id: str = ""
    region: str = ""
    instance_type: str = ""

    @classmethod
    def new(
        cls,
        credential_id: str,
        num_instances: int = 0,
        cluster_id: str = "",
        **fields: Any,
    ) -> AWSCluster:
        """Build a launch request.

        Args:
            credential_id: Stored credential id or the reserved environment id
            num_instances: Cluster size, 0 for the configured default
            cluster_id: Explicit id, generated when empty
            **fields: AWS fields (region, instance_type, image_id, ...)
        """
        cluster = Cluster(id=cluster_id, credential_id=credential_id, num_instances=num_instances)
        return cls(cluster=cluster, **fields)

    def set_defaults_and_validate(self, settings: Settings | None = None) -> None:
        defaults = (settings or get_settings()).aws
        c = self.cluster

        if not c.credential_id:
            raise ValidationError("credential_id is required")

        c.type = ProviderType.AWS
        if not c.id:
            c.id = uuid4().hex
        if not self.region:
            self.region = defaults.region
        if not self.instance_type:
            self.instance_type = defaults.instance_type
        if c.num_instances == 0:
            c.num_instances = defaults.num_instances
        if not c.vpc_cidr:
            c.vpc_cidr = defaults.vpc_cidr
        if not c.subnet_cidr:
            c.subnet_cidr = defaults.subnet_cidr
        if not self.stack_name:
            self.stack_name = f"cluster-{c.id}"
        if not c.ssh_key_name:
            c.ssh_key_name = f"installer-{c.id}"
        if not c.controller_key:
            c.controller_key = secrets.token_hex(16)
        if not c.dashboard_login_token:
            c.dashboard_login_token = secrets.token_hex(16)

        if not REGION_PATTERN.match(self.region):
            raise ValidationError(f"invalid region: {self.region!r}")
        if not 1 <= c.num_instances <= MAX_INSTANCES:
            raise ValidationError(
                f"num_instances must be between 1 and {MAX_INSTANCES}, got {c.num_instances}"
            )

        try:
            vpc = ipaddress.ip_network(c.vpc_cidr)
            subnet = ipaddress.ip_network(c.subnet_cidr)
        except ValueError as e:
            raise ValidationError(f"invalid CIDR: {e}") from e
        if subnet.version != vpc.version or not subnet.subnet_of(vpc):
            raise ValidationError(f"subnet {c.subnet_cidr} is not inside VPC {c.vpc_cidr}")

    def to_model(self) -> AWSClusterModel:
        return AWSClusterModel(
            cluster_id=self.cluster_id,
            stack_id=self.stack_id,
            stack_name=self.stack_name,
            image_id=self.image_id,
            region=self.region,
            instance_type=self.instance_type,
        )

    @classmethod
    def from_models(cls, cluster: Cluster, row: AWSClusterModel) -> AWSCluster:
        return cls(
            cluster=cluster,
            stack_id=row.stack_id or "",
            stack_name=row.stack_name or "",
            image_id=row.image_id or "",
            region=row.region,
            instance_type=row.instance_type,
        )

    async def run(self, context: ProvisioningContext) -> None:
        await context.set_state(ClusterState.PROVISIONING)
        if context.provisioner is None:
            raise AsyncProvisioningFailure(self.cluster_id, "no provisioner configured for aws")

        credentials = await context.credentials()
        await context.log(
            f"Creating stack {self.stack_name} with {self.cluster.num_instances} "
            f"{self.instance_type} instance(s) in {self.region}"
        )
        logger.info(
            "Provisioning AWS cluster",
            cluster_id=self.cluster_id,
            region=self.region,
            stack_name=self.stack_name,
        )
        await context.provisioner.provision(self, credentials, context)
        await context.set_state(ClusterState.READY)
