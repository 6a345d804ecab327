"""Add storage provider configuration tables

Creates tables for multi-tenant file storage:
- storage_provider_configs: Named provider configuration per organization
- project_storage_configs: Provider assignment, path prefix, and quota per project

Revision ID: d4e5f6a7b8c9
Revises:
Create Date: 2026-03-01 10:00:00.000000

"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "d4e5f6a7b8c9"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(astext_type=sa.Text()), "postgresql")


def upgrade() -> None:
    """Upgrade database schema."""
    # ==========================================================================
    # STORAGE PROVIDER CONFIGS TABLE
    # ==========================================================================
    op.create_table(
        "storage_provider_configs",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column(
            "type",
            sa.String(length=20),
            nullable=False,
            comment="local, s3, do_spaces, or github",
        ),
        sa.Column("organization_id", sa.String(length=64), nullable=False),
        sa.Column("is_default", sa.Boolean(), nullable=False),
        sa.Column("config", JSON_TYPE, nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "organization_id",
            "name",
            name="uq_storage_provider_configs_org_name",
        ),
    )
    op.create_index(
        "ix_storage_provider_configs_organization_id",
        "storage_provider_configs",
        ["organization_id"],
    )

    # ==========================================================================
    # PROJECT STORAGE CONFIGS TABLE
    # ==========================================================================
    op.create_table(
        "project_storage_configs",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("project_id", sa.String(length=64), nullable=False),
        sa.Column("provider_config_id", sa.Uuid(), nullable=False),
        sa.Column("is_default", sa.Boolean(), nullable=False),
        sa.Column(
            "path_prefix",
            sa.String(length=255),
            nullable=True,
            comment="Prefix applied to every path stored for this project",
        ),
        sa.Column(
            "quota_limit",
            sa.BigInteger(),
            nullable=True,
            comment="Quota in bytes (NULL inherits the organization quota, 0 = unlimited)",
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.ForeignKeyConstraint(
            ["provider_config_id"],
            ["storage_provider_configs.id"],
            name="fk_project_storage_configs_provider_config_id",
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_project_storage_configs_project_id",
        "project_storage_configs",
        ["project_id"],
    )
    op.create_index(
        "ix_project_storage_configs_provider_config_id",
        "project_storage_configs",
        ["provider_config_id"],
    )


def downgrade() -> None:
    """Downgrade database schema."""
    op.drop_index(
        "ix_project_storage_configs_provider_config_id",
        table_name="project_storage_configs",
    )
    op.drop_index("ix_project_storage_configs_project_id", table_name="project_storage_configs")
    op.drop_table("project_storage_configs")
    op.drop_index(
        "ix_storage_provider_configs_organization_id",
        table_name="storage_provider_configs",
    )
    op.drop_table("storage_provider_configs")
