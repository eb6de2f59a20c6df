"""Object storage on S3 or an S3-compatible service."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from sukudo.storage.base import (
    DEFAULT_SIGNED_URL_TTL,
    ObjectNotFoundError,
    StorageError,
    validate_object_path,
)

if TYPE_CHECKING:
    from sukudo.config.models import StorageConfig

logger = logging.getLogger(__name__)

_NOT_FOUND_CODES = frozenset({"404", "NoSuchKey", "NotFound"})


def _is_not_found(error: ClientError) -> bool:
    return str(error.response.get("Error", {}).get("Code")) in _NOT_FOUND_CODES


class S3ObjectStorage:
    """Bucket-backed object storage using boto3.

    Args:
        bucket: Bucket name.
        client: Preconfigured boto3 S3 client. Created from region and
            endpoint_url when omitted.
        region: AWS region for a new client.
        endpoint_url: Custom endpoint for S3-compatible services.
    """

    def __init__(
        self,
        bucket: str,
        client: Any | None = None,
        region: str | None = None,
        endpoint_url: str | None = None,
    ) -> None:
        self.bucket = bucket
        if client is None:
            client = boto3.client("s3", region_name=region, endpoint_url=endpoint_url)
        self.client = client

    @classmethod
    def from_config(cls, config: StorageConfig) -> S3ObjectStorage:
        if not config.bucket:
            raise ValueError("storage.bucket is required for the s3 backend")
        return cls(
            bucket=config.bucket,
            region=config.region,
            endpoint_url=config.endpoint_url,
        )

    def upload(self, path: str, data: bytes, content_type: str) -> None:
        key = validate_object_path(path)
        try:
            self.client.put_object(
                Bucket=self.bucket, Key=key, Body=data, ContentType=content_type
            )
        except (ClientError, BotoCoreError) as e:
            raise StorageError(path, f"upload failed: {e}") from e
        logger.debug("Uploaded s3://%s/%s", self.bucket, key)

    def upload_file(self, path: str, source: Path, content_type: str) -> None:
        key = validate_object_path(path)
        try:
            self.client.upload_file(
                str(source),
                self.bucket,
                key,
                ExtraArgs={"ContentType": content_type},
            )
        except (ClientError, BotoCoreError) as e:
            raise StorageError(path, f"upload failed: {e}") from e
        logger.debug("Uploaded %s to s3://%s/%s", source.name, self.bucket, key)

    def download(self, path: str) -> bytes:
        key = validate_object_path(path)
        try:
            response = self.client.get_object(Bucket=self.bucket, Key=key)
            return response["Body"].read()
        except ClientError as e:
            if _is_not_found(e):
                raise ObjectNotFoundError(path) from e
            raise StorageError(path, f"download failed: {e}") from e
        except BotoCoreError as e:
            raise StorageError(path, f"download failed: {e}") from e

    def download_file(self, path: str, dest: Path) -> None:
        key = validate_object_path(path)
        dest.parent.mkdir(parents=True, exist_ok=True)
        try:
            self.client.download_file(self.bucket, key, str(dest))
        except ClientError as e:
            if _is_not_found(e):
                raise ObjectNotFoundError(path) from e
            raise StorageError(path, f"download failed: {e}") from e
        except BotoCoreError as e:
            raise StorageError(path, f"download failed: {e}") from e

    def exists(self, path: str) -> bool:
        key = validate_object_path(path)
        try:
            self.client.head_object(Bucket=self.bucket, Key=key)
            return True
        except ClientError as e:
            if _is_not_found(e):
                return False
            raise StorageError(path, f"lookup failed: {e}") from e

    def signed_url(self, path: str, expires_in: int = DEFAULT_SIGNED_URL_TTL) -> str:
        key = validate_object_path(path)
        try:
            return self.client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.bucket, "Key": key},
                ExpiresIn=expires_in,
            )
        except (ClientError, BotoCoreError) as e:
            raise StorageError(path, f"could not sign URL: {e}") from e
