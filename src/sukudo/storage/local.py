"""Object storage on the local filesystem.

Used for single-host deployments and tests. Signed URLs are ``file://``
URLs with an expiry query parameter; nothing enforces the expiry.
"""

import logging
import shutil
import time
from pathlib import Path
from urllib.parse import urlencode

from sukudo.storage.base import (
    DEFAULT_SIGNED_URL_TTL,
    ObjectNotFoundError,
    StorageError,
    validate_object_path,
)

logger = logging.getLogger(__name__)


class LocalObjectStorage:
    """Directory-tree backed object storage."""

    def __init__(self, root: Path) -> None:
        self.root = root.expanduser()

    def _resolve(self, path: str) -> Path:
        return self.root.joinpath(*validate_object_path(path).split("/"))

    def upload(self, path: str, data: bytes, content_type: str) -> None:
        target = self._resolve(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as e:
            raise StorageError(path, f"upload failed: {e}") from e
        logger.debug("Stored %s (%d bytes, %s)", path, len(data), content_type)

    def upload_file(self, path: str, source: Path, content_type: str) -> None:
        target = self._resolve(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(source, target)
        except OSError as e:
            raise StorageError(path, f"upload failed: {e}") from e
        logger.debug("Stored %s from %s (%s)", path, source.name, content_type)

    def download(self, path: str) -> bytes:
        source = self._resolve(path)
        if not source.is_file():
            raise ObjectNotFoundError(path)
        try:
            return source.read_bytes()
        except OSError as e:
            raise StorageError(path, f"download failed: {e}") from e

    def download_file(self, path: str, dest: Path) -> None:
        source = self._resolve(path)
        if not source.is_file():
            raise ObjectNotFoundError(path)
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(source, dest)
        except OSError as e:
            raise StorageError(path, f"download failed: {e}") from e

    def exists(self, path: str) -> bool:
        return self._resolve(path).is_file()

    def signed_url(self, path: str, expires_in: int = DEFAULT_SIGNED_URL_TTL) -> str:
        target = self._resolve(path)
        if not target.is_file():
            raise ObjectNotFoundError(path)
        expires = int(time.time()) + expires_in
        return f"{target.resolve().as_uri()}?{urlencode({'expires': expires})}"
