"""
Persistence for storage provider and project storage configuration.

The repository works on an AsyncSession and only flushes; the service
wraps it with not-found handling, validation errors, and commits, and turns
stored records into live providers.
"""

import logging
import uuid
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from db.models.storage_config import ProjectStorageConfigRecord, StorageProviderConfigRecord
from packages.shared.exceptions import NotFoundError, ValidationError
from packages.storage.config import BaseStorageConfig, provider_config_to_dict
from packages.storage.errors import StorageConfigurationError
from packages.storage.factory import create_provider, parse_provider_config
from packages.storage.providers.base import StorageProvider
from packages.storage.service import StorageService

logger = logging.getLogger(__name__)

_UNSET: Any = object()


class StorageProviderConfigRepository:
    """Data access for provider and project storage configuration records."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # =========================================================================
    # Provider Configs
    # =========================================================================

    async def create_provider_config(
        self,
        organization_id: str,
        name: str,
        config: BaseStorageConfig | dict[str, Any],
        is_default: bool = False,
    ) -> StorageProviderConfigRecord:
        """
        Store a provider configuration.

        Raises:
            StorageConfigurationError: If `config` is not a valid ProviderConfig
        """
        parsed = parse_provider_config(config)
        if is_default:
            await self._clear_default_provider(organization_id)

        record = StorageProviderConfigRecord(
            organization_id=organization_id,
            name=name,
            type=parsed.type,
            is_default=is_default,
            config=provider_config_to_dict(parsed),
        )
        self.db.add(record)
        await self.db.flush()
        return record

    async def find_provider_config(
        self,
        config_id: uuid.UUID,
        organization_id: str | None = None,
    ) -> StorageProviderConfigRecord | None:
        stmt = select(StorageProviderConfigRecord).where(StorageProviderConfigRecord.id == config_id)
        if organization_id is not None:
            stmt = stmt.where(StorageProviderConfigRecord.organization_id == organization_id)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def find_provider_config_by_name(
        self,
        organization_id: str,
        name: str,
    ) -> StorageProviderConfigRecord | None:
        stmt = select(StorageProviderConfigRecord).where(
            StorageProviderConfigRecord.organization_id == organization_id,
            StorageProviderConfigRecord.name == name,
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def find_provider_configs_by_organization(
        self,
        organization_id: str,
    ) -> list[StorageProviderConfigRecord]:
        stmt = (
            select(StorageProviderConfigRecord)
            .where(StorageProviderConfigRecord.organization_id == organization_id)
            .order_by(StorageProviderConfigRecord.name)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def find_default_provider_config(
        self,
        organization_id: str,
    ) -> StorageProviderConfigRecord | None:
        stmt = select(StorageProviderConfigRecord).where(
            StorageProviderConfigRecord.organization_id == organization_id,
            StorageProviderConfigRecord.is_default.is_(True),
        )
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def update_provider_config(
        self,
        record: StorageProviderConfigRecord,
        *,
        name: str | None = None,
        config: BaseStorageConfig | dict[str, Any] | None = None,
        is_default: bool | None = None,
    ) -> StorageProviderConfigRecord:
        if name is not None:
            record.name = name
        if config is not None:
            parsed = parse_provider_config(config)
            record.type = parsed.type
            record.config = provider_config_to_dict(parsed)
        if is_default is not None:
            if is_default:
                await self._clear_default_provider(record.organization_id, exclude_id=record.id)
            record.is_default = is_default
        await self.db.flush()
        return record

    async def delete_provider_config(self, record: StorageProviderConfigRecord) -> None:
        await self.db.delete(record)
        await self.db.flush()

    async def _clear_default_provider(
        self,
        organization_id: str,
        exclude_id: uuid.UUID | None = None,
    ) -> None:
        stmt = (
            update(StorageProviderConfigRecord)
            .where(
                StorageProviderConfigRecord.organization_id == organization_id,
                StorageProviderConfigRecord.is_default.is_(True),
            )
            .values(is_default=False)
            .execution_options(synchronize_session="fetch")
        )
        if exclude_id is not None:
            stmt = stmt.where(StorageProviderConfigRecord.id != exclude_id)
        await self.db.execute(stmt)

    # =========================================================================
    # Project Configs
    # =========================================================================

    async def create_project_config(
        self,
        project_id: str,
        provider_config_id: uuid.UUID,
        is_default: bool = False,
        path_prefix: str | None = None,
        quota_limit: int | None = None,
    ) -> ProjectStorageConfigRecord:
        if is_default:
            await self._clear_default_project(project_id)

        record = ProjectStorageConfigRecord(
            project_id=project_id,
            provider_config_id=provider_config_id,
            is_default=is_default,
            path_prefix=path_prefix,
            quota_limit=quota_limit,
        )
        self.db.add(record)
        await self.db.flush()
        return record

    async def find_project_config(self, config_id: uuid.UUID) -> ProjectStorageConfigRecord | None:
        return await self.db.get(ProjectStorageConfigRecord, config_id)

    async def find_project_configs(self, project_id: str) -> list[ProjectStorageConfigRecord]:
        stmt = (
            select(ProjectStorageConfigRecord)
            .where(ProjectStorageConfigRecord.project_id == project_id)
            .order_by(ProjectStorageConfigRecord.created_at)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def find_default_project_config(
        self,
        project_id: str,
    ) -> ProjectStorageConfigRecord | None:
        stmt = select(ProjectStorageConfigRecord).where(
            ProjectStorageConfigRecord.project_id == project_id,
            ProjectStorageConfigRecord.is_default.is_(True),
        )
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def update_project_config(
        self,
        record: ProjectStorageConfigRecord,
        *,
        provider_config_id: uuid.UUID | None = None,
        is_default: bool | None = None,
        path_prefix: str | None = _UNSET,
        quota_limit: int | None = _UNSET,
    ) -> ProjectStorageConfigRecord:
        """Update a project config. `None` clears `path_prefix` and `quota_limit`."""
        if provider_config_id is not None:
            record.provider_config_id = provider_config_id
        if path_prefix is not _UNSET:
            record.path_prefix = path_prefix
        if quota_limit is not _UNSET:
            record.quota_limit = quota_limit
        if is_default is not None:
            if is_default:
                await self._clear_default_project(record.project_id, exclude_id=record.id)
            record.is_default = is_default
        await self.db.flush()
        return record

    async def delete_project_config(self, record: ProjectStorageConfigRecord) -> None:
        await self.db.delete(record)
        await self.db.flush()

    async def _clear_default_project(
        self,
        project_id: str,
        exclude_id: uuid.UUID | None = None,
    ) -> None:
        stmt = (
            update(ProjectStorageConfigRecord)
            .where(
                ProjectStorageConfigRecord.project_id == project_id,
                ProjectStorageConfigRecord.is_default.is_(True),
            )
            .values(is_default=False)
            .execution_options(synchronize_session="fetch")
        )
        if exclude_id is not None:
            stmt = stmt.where(ProjectStorageConfigRecord.id != exclude_id)
        await self.db.execute(stmt)


class StorageProviderConfigService:
    """
    Service for managing stored storage configuration.

    Raises the shared `NotFoundError` (404) for missing records and
    `ValidationError` (422) for configs that are not a valid ProviderConfig.
    """

    def __init__(self, db: AsyncSession):
        """
        Initialize config service.

        Args:
            db: Async database session
        """
        self.db = db
        self.repository = StorageProviderConfigRepository(db)

    # =========================================================================
    # Provider Configs
    # =========================================================================

    async def get_provider_config(
        self,
        config_id: uuid.UUID,
        organization_id: str,
    ) -> StorageProviderConfigRecord:
        record = await self.repository.find_provider_config(config_id, organization_id)
        if record is None:
            raise NotFoundError("Storage provider config", str(config_id))
        return record

    async def list_provider_configs(self, organization_id: str) -> list[StorageProviderConfigRecord]:
        return await self.repository.find_provider_configs_by_organization(organization_id)

    async def get_default_provider_config(self, organization_id: str) -> StorageProviderConfigRecord:
        record = await self.repository.find_default_provider_config(organization_id)
        if record is None:
            raise NotFoundError("Default storage provider config for organization", organization_id)
        return record

    async def create_provider_config(
        self,
        organization_id: str,
        name: str,
        config: BaseStorageConfig | dict[str, Any],
        is_default: bool = False,
    ) -> StorageProviderConfigRecord:
        if await self.repository.find_provider_config_by_name(organization_id, name):
            raise ValidationError(f"Storage provider config '{name}' already exists")
        try:
            record = await self.repository.create_provider_config(
                organization_id, name, config, is_default
            )
        except StorageConfigurationError as e:
            raise ValidationError(e.message) from e
        await self.db.commit()
        await self.db.refresh(record)
        logger.info(f"Created {record.type} storage provider config '{name}' for organization {organization_id}")
        return record

    async def update_provider_config(
        self,
        config_id: uuid.UUID,
        organization_id: str,
        *,
        name: str | None = None,
        config: BaseStorageConfig | dict[str, Any] | None = None,
        is_default: bool | None = None,
    ) -> StorageProviderConfigRecord:
        record = await self.get_provider_config(config_id, organization_id)
        try:
            record = await self.repository.update_provider_config(
                record,
                name=name,
                config=config,
                is_default=is_default,
            )
        except StorageConfigurationError as e:
            raise ValidationError(e.message) from e
        await self.db.commit()
        await self.db.refresh(record)
        return record

    async def delete_provider_config(self, config_id: uuid.UUID, organization_id: str) -> None:
        record = await self.get_provider_config(config_id, organization_id)
        await self.repository.delete_provider_config(record)
        await self.db.commit()

    # =========================================================================
    # Project Configs
    # =========================================================================

    async def get_project_config(self, config_id: uuid.UUID) -> ProjectStorageConfigRecord:
        record = await self.repository.find_project_config(config_id)
        if record is None:
            raise NotFoundError("Project storage config", str(config_id))
        return record

    async def list_project_configs(self, project_id: str) -> list[ProjectStorageConfigRecord]:
        return await self.repository.find_project_configs(project_id)

    async def get_default_project_config(self, project_id: str) -> ProjectStorageConfigRecord:
        record = await self.repository.find_default_project_config(project_id)
        if record is None:
            raise NotFoundError("Default storage config for project", project_id)
        return record

    async def create_project_config(
        self,
        project_id: str,
        provider_config_id: uuid.UUID,
        organization_id: str,
        is_default: bool = False,
        path_prefix: str | None = None,
        quota_limit: int | None = None,
    ) -> ProjectStorageConfigRecord:
        # The provider config must belong to the project's organization
        await self.get_provider_config(provider_config_id, organization_id)
        if quota_limit is not None and quota_limit < 0:
            raise ValidationError("quota_limit must be >= 0")

        record = await self.repository.create_project_config(
            project_id,
            provider_config_id,
            is_default=is_default,
            path_prefix=path_prefix,
            quota_limit=quota_limit,
        )
        await self.db.commit()
        await self.db.refresh(record)
        return record

    async def update_project_config(
        self,
        config_id: uuid.UUID,
        **fields: Any,
    ) -> ProjectStorageConfigRecord:
        record = await self.get_project_config(config_id)
        quota_limit = fields.get("quota_limit")
        if quota_limit is not None and quota_limit < 0:
            raise ValidationError("quota_limit must be >= 0")
        record = await self.repository.update_project_config(record, **fields)
        await self.db.commit()
        await self.db.refresh(record)
        return record

    async def delete_project_config(self, config_id: uuid.UUID) -> None:
        record = await self.get_project_config(config_id)
        await self.repository.delete_project_config(record)
        await self.db.commit()

    # =========================================================================
    # Provider Construction
    # =========================================================================

    async def build_providers(self, organization_id: str) -> dict[str, StorageProvider]:
        """
        Create one provider per stored config of an organization.

        Raises:
            StorageConfigurationError: If a stored config is incomplete
        """
        records = await self.repository.find_provider_configs_by_organization(organization_id)
        return {record.name: create_provider(record.config) for record in records}

    async def build_storage_service(
        self,
        organization_id: str,
        **service_kwargs: Any,
    ) -> StorageService:
        """
        Create a StorageService over an organization's stored providers.

        The organization's default config becomes the default provider.
        """
        default = await self.get_default_provider_config(organization_id)
        providers = await self.build_providers(organization_id)
        return StorageService(providers, default_provider=default.name, **service_kwargs)
