"""DigitalOcean Spaces storage provider (S3-compatible)."""

import aioboto3
from botocore.config import Config

from packages.storage.config import DOSpacesStorageConfig
from packages.storage.providers.s3 import S3StorageProvider


class DOSpacesStorageProvider(S3StorageProvider):
    """
    DigitalOcean Spaces provider.

    Spaces speaks the S3 API at `https://<region>.digitaloceanspaces.com`,
    so every operation is inherited from the S3 provider. Only the client
    endpoint and public URL selection differ.
    """

    provider_type = "do_spaces"

    def __init__(self, config: DOSpacesStorageConfig):
        self.config = config
        self.bucket = config.space
        self.root_path = config.root_path
        self.endpoint = f"https://{config.region}.digitaloceanspaces.com"
        self._session = aioboto3.Session()

    def _get_client_kwargs(self) -> dict:
        kwargs = {
            "region_name": self.config.region,
            "endpoint_url": self.endpoint,
            "aws_access_key_id": self.config.access_key_id,
            "aws_secret_access_key": self.config.secret_access_key,
        }
        if self.config.force_path_style:
            kwargs["config"] = Config(s3={"addressing_style": "path"})
        return kwargs

    def _public_url(self, key: str) -> str | None:
        """Prefer the CDN endpoint, then a custom domain, then the origin."""
        if self.config.use_cdn and self.config.cdn_endpoint:
            return f"{self.config.cdn_endpoint.rstrip('/')}/{key}"
        if self.config.custom_domain:
            return f"{self.config.custom_domain.rstrip('/')}/{key}"
        return f"{self.endpoint}/{self.bucket}/{key}"
