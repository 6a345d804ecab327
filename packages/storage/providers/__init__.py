"""
Storage provider implementations.

- Local disk (development)
- AWS S3 and S3-compatible services
- DigitalOcean Spaces
- GitHub repository contents
"""

from packages.storage.providers.base import StorageProvider
from packages.storage.providers.do_spaces import DOSpacesStorageProvider
from packages.storage.providers.github import GitHubStorageProvider
from packages.storage.providers.local import LocalStorageProvider
from packages.storage.providers.s3 import S3StorageProvider

__all__ = [
    "StorageProvider",
    "LocalStorageProvider",
    "S3StorageProvider",
    "DOSpacesStorageProvider",
    "GitHubStorageProvider",
]
