"""
SQLAlchemy models for storage provider configuration.

Tables:
- StorageProviderConfigRecord: Named provider configuration per organization
- ProjectStorageConfigRecord: Provider assignment, path prefix, and quota per project
"""

import uuid
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    ForeignKey,
    String,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from db.models.base_model import BaseModel

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


class StorageProviderConfigRecord(BaseModel):
    """
    A named storage provider configuration owned by an organization.

    `config` holds the provider's `ProviderConfig` variant as JSON. At most
    one record per organization has `is_default` set.
    """

    __tablename__ = "storage_provider_configs"

    name: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        comment="local, s3, do_spaces, or github",
    )
    organization_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        index=True,
    )
    is_default: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    config: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False)

    projects: Mapped[list["ProjectStorageConfigRecord"]] = relationship(
        back_populates="provider_config",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        UniqueConstraint("organization_id", "name", name="uq_storage_provider_configs_org_name"),
    )

    def __repr__(self) -> str:
        return f"<StorageProviderConfigRecord {self.name} ({self.type}) org={self.organization_id}>"


class ProjectStorageConfigRecord(BaseModel):
    """Binds a project to a provider configuration."""

    __tablename__ = "project_storage_configs"

    project_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        index=True,
    )
    provider_config_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("storage_provider_configs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    is_default: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    path_prefix: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        comment="Prefix applied to every path stored for this project",
    )
    quota_limit: Mapped[int | None] = mapped_column(
        BigInteger,
        nullable=True,
        comment="Quota in bytes (NULL inherits the organization quota, 0 = unlimited)",
    )

    provider_config: Mapped[StorageProviderConfigRecord] = relationship(
        back_populates="projects",
    )

    def __repr__(self) -> str:
        return f"<ProjectStorageConfigRecord project={self.project_id} provider={self.provider_config_id}>"
