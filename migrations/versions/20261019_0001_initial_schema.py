"""Initial schema creation.

Revision ID: 0001
Revises:
Create Date: 2026-10-19

Tables:
- clusters: provider-agnostic cluster fields
- aws_clusters: AWS-specific cluster fields
- domains: optional domain per cluster
- credentials: stored cloud credentials
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # clusters table
    op.create_table(
        "clusters",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("credential_id", sa.String(128), nullable=False),
        sa.Column("type", sa.String(20), nullable=False),
        sa.Column("state", sa.String(20), nullable=False),
        sa.Column("num_instances", sa.Integer, nullable=False, server_default="1"),
        sa.Column("controller_key", sa.String(128), server_default=""),
        sa.Column("controller_pin", sa.String(128), server_default=""),
        sa.Column("dashboard_login_token", sa.String(128), server_default=""),
        sa.Column("ca_cert", sa.Text, server_default=""),
        sa.Column("ssh_key_name", sa.String(128), server_default=""),
        sa.Column("vpc_cidr", sa.String(43), server_default=""),
        sa.Column("subnet_cidr", sa.String(43), server_default=""),
        sa.Column("discovery_token", sa.String(128), server_default=""),
        sa.Column("dns_zone_id", sa.String(64), server_default=""),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )
    op.create_index("idx_clusters_state", "clusters", ["state"])

    # aws_clusters table
    op.create_table(
        "aws_clusters",
        sa.Column(
            "cluster_id",
            sa.String(64),
            sa.ForeignKey("clusters.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("stack_id", sa.String(256), server_default=""),
        sa.Column("stack_name", sa.String(128), server_default=""),
        sa.Column("image_id", sa.String(64), server_default=""),
        sa.Column("region", sa.String(32), nullable=False),
        sa.Column("instance_type", sa.String(32), nullable=False),
    )

    # domains table
    op.create_table(
        "domains",
        sa.Column(
            "cluster_id",
            sa.String(64),
            sa.ForeignKey("clusters.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("token", sa.String(255), server_default=""),
    )

    # credentials table
    op.create_table(
        "credentials",
        sa.Column("id", sa.String(128), primary_key=True),
        sa.Column("secret", sa.Text, nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )


def downgrade() -> None:
    op.drop_table("credentials")
    op.drop_table("domains")
    op.drop_table("aws_clusters")
    op.drop_index("idx_clusters_state", table_name="clusters")
    op.drop_table("clusters")
