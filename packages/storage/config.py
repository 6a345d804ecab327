"""
Provider configuration models.

`ProviderConfig` is a tagged union discriminated on `type`. Each variant
carries only the fields its backend needs and declares which of them are
required in `REQUIRED_FIELDS`; the factory checks those before building a
provider. Field names accept both snake_case and camelCase keys so stored
JSON configurations from either convention parse.
"""

from enum import Enum
from typing import Annotated, Any, ClassVar, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel

from packages.storage.schemas import StorageAcl


class StorageProviderType(str, Enum):
    """Supported storage backends."""

    LOCAL = "local"
    S3 = "s3"
    DO_SPACES = "do_spaces"
    GITHUB = "github"


class BaseStorageConfig(BaseModel):
    """Fields shared by every provider."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        frozen=True,
    )

    REQUIRED_FIELDS: ClassVar[tuple[str, ...]] = ()

    root_path: str | None = None
    default_acl: StorageAcl | None = None
    max_file_size: int = Field(default=0, ge=0, description="0 means unlimited")
    allowed_mime_types: list[str] = Field(default_factory=list)

    def missing_fields(self) -> list[str]:
        """Return the required fields that are unset or empty."""
        return [name for name in self.REQUIRED_FIELDS if not getattr(self, name)]


class LocalStorageConfig(BaseStorageConfig):
    REQUIRED_FIELDS: ClassVar[tuple[str, ...]] = ("directory",)

    type: Literal["local"] = "local"
    directory: str | None = None
    base_url: str | None = None


class S3StorageConfig(BaseStorageConfig):
    REQUIRED_FIELDS: ClassVar[tuple[str, ...]] = (
        "bucket",
        "region",
        "access_key_id",
        "secret_access_key",
    )

    type: Literal["s3"] = "s3"
    region: str | None = None
    bucket: str | None = None
    access_key_id: str | None = None
    secret_access_key: str | None = None
    endpoint: str | None = None  # S3-compatible services (MinIO etc.)
    base_url: str | None = None


class DOSpacesStorageConfig(BaseStorageConfig):
    REQUIRED_FIELDS: ClassVar[tuple[str, ...]] = (
        "space",
        "region",
        "access_key_id",
        "secret_access_key",
    )

    type: Literal["do_spaces"] = "do_spaces"
    region: str | None = None
    space: str | None = None
    access_key_id: str | None = None
    secret_access_key: str | None = None
    cdn_endpoint: str | None = None
    custom_domain: str | None = None
    use_cdn: bool = True
    force_path_style: bool = False


class GitHubStorageConfig(BaseStorageConfig):
    REQUIRED_FIELDS: ClassVar[tuple[str, ...]] = ("owner", "repo", "token")

    type: Literal["github"] = "github"
    token: str | None = None
    owner: str | None = None
    repo: str | None = None
    branch: str = "main"
    base_path: str | None = None
    use_raw_url: bool = True
    custom_domain: str | None = None


ProviderConfig = Annotated[
    LocalStorageConfig | S3StorageConfig | DOSpacesStorageConfig | GitHubStorageConfig,
    Field(discriminator="type"),
]

provider_config_adapter: TypeAdapter[ProviderConfig] = TypeAdapter(ProviderConfig)


def provider_config_to_dict(config: BaseStorageConfig) -> dict[str, Any]:
    """Serialize a provider config for persistence (snake_case, JSON-safe)."""
    return config.model_dump(mode="json", exclude_none=True)
