"""SQLAlchemy ORM models.

Tables:
- clusters: provider-agnostic cluster fields
- aws_clusters: AWS-only fields, one row per AWS cluster
- domains: optional domain attached to a cluster
- credentials: stored cloud credentials
"""

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from .base import Base


class ClusterModel(Base):
    """Cluster database model."""

    __tablename__ = "clusters"
    __table_args__ = (Index("idx_clusters_state", "state"),)

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    credential_id: Mapped[str] = mapped_column(String(128), nullable=False)
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    state: Mapped[str] = mapped_column(String(20), nullable=False)
    num_instances: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    controller_key: Mapped[str] = mapped_column(String(128), default="")
    controller_pin: Mapped[str] = mapped_column(String(128), default="")
    dashboard_login_token: Mapped[str] = mapped_column(String(128), default="")
    ca_cert: Mapped[str] = mapped_column(Text, default="")
    ssh_key_name: Mapped[str] = mapped_column(String(128), default="")
    vpc_cidr: Mapped[str] = mapped_column(String(43), default="")
    subnet_cidr: Mapped[str] = mapped_column(String(43), default="")
    discovery_token: Mapped[str] = mapped_column(String(128), default="")
    dns_zone_id: Mapped[str] = mapped_column(String(64), default="")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class AWSClusterModel(Base):
    """AWS-specific cluster fields."""

    __tablename__ = "aws_clusters"

    cluster_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("clusters.id", ondelete="CASCADE"),
        primary_key=True,
    )
    stack_id: Mapped[str] = mapped_column(String(256), default="")
    stack_name: Mapped[str] = mapped_column(String(128), default="")
    image_id: Mapped[str] = mapped_column(String(64), default="")
    region: Mapped[str] = mapped_column(String(32), nullable=False)
    instance_type: Mapped[str] = mapped_column(String(32), nullable=False)


class DomainModel(Base):
    """Domain attached to a cluster (at most one per cluster)."""

    __tablename__ = "domains"

    cluster_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("clusters.id", ondelete="CASCADE"),
        primary_key=True,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    token: Mapped[str] = mapped_column(String(255), default="")


class CredentialModel(Base):
    """Stored cloud credential."""

    __tablename__ = "credentials"

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    secret: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
