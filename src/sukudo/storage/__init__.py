"""Object storage backends for inputs and enhanced outputs."""

from __future__ import annotations

from typing import TYPE_CHECKING

from sukudo.storage.base import (
    DEFAULT_SIGNED_URL_TTL,
    ObjectNotFoundError,
    ObjectStorage,
    StorageError,
    guess_content_type,
    output_object_path,
)
from sukudo.storage.local import LocalObjectStorage

if TYPE_CHECKING:
    from sukudo.config.models import StorageConfig


def create_storage(config: StorageConfig) -> ObjectStorage:
    """Build the storage backend named in the configuration.

    Raises:
        ValueError: If the backend is unknown or incompletely configured.
    """
    if config.backend == "local":
        return LocalObjectStorage(config.root)
    if config.backend == "s3":
        from sukudo.storage.s3 import S3ObjectStorage

        return S3ObjectStorage.from_config(config)
    raise ValueError(f"Unknown storage backend: {config.backend}")


__all__ = [
    "DEFAULT_SIGNED_URL_TTL",
    "LocalObjectStorage",
    "ObjectNotFoundError",
    "ObjectStorage",
    "StorageError",
    "create_storage",
    "guess_content_type",
    "output_object_path",
]
