"""Database models package."""

from db.models.base_model import BaseModel, TimestampMixin
from db.models.storage_config import (
    ProjectStorageConfigRecord,
    StorageProviderConfigRecord,
)

__all__ = [
    # Base models and mixins
    "BaseModel",
    "TimestampMixin",
    # Storage configuration models
    "ProjectStorageConfigRecord",
    "StorageProviderConfigRecord",
]
