"""Object storage interface."""

from __future__ import annotations

import mimetypes
from pathlib import Path
from typing import Protocol

# Lifetime of signed asset URLs (seconds)
DEFAULT_SIGNED_URL_TTL = 3600

# Storage prefix for enhanced outputs
OUTPUTS_PREFIX = "outputs"


class StorageError(Exception):
    """An object storage operation failed.

    Attributes:
        path: Object path involved in the failed operation.
    """

    def __init__(self, path: str, message: str) -> None:
        self.path = path
        super().__init__(f"{path}: {message}")


class ObjectNotFoundError(StorageError):
    """The requested object does not exist."""

    def __init__(self, path: str) -> None:
        super().__init__(path, "object not found")


class ObjectStorage(Protocol):
    """Operations the pipeline needs from an object store.

    Paths are slash-separated keys relative to the store root, e.g.
    ``outputs/<job id>/talk.enhanced.m4a``.
    """

    def upload(self, path: str, data: bytes, content_type: str) -> None: ...

    def download(self, path: str) -> bytes: ...

    def upload_file(self, path: str, source: Path, content_type: str) -> None: ...

    def download_file(self, path: str, dest: Path) -> None: ...

    def exists(self, path: str) -> bool: ...

    def signed_url(
        self, path: str, expires_in: int = DEFAULT_SIGNED_URL_TTL
    ) -> str: ...


def guess_content_type(name: str) -> str:
    """Best-effort MIME type for an object name."""
    content_type, _ = mimetypes.guess_type(name)
    return content_type or "application/octet-stream"


def output_object_path(job_id: str, filename: str) -> str:
    """Storage path for an enhanced output of a job."""
    return f"{OUTPUTS_PREFIX}/{job_id}/{filename}"


def validate_object_path(path: str) -> str:
    """Reject object paths that are absolute or climb out of the root.

    Raises:
        StorageError: If the path is unsafe.
    """
    parts = path.split("/")
    if not path or path.startswith("/") or any(p in ("", "..", ".") for p in parts):
        raise StorageError(path, "invalid object path")
    return path
