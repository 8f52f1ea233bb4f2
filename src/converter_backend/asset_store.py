"""
Asset host client for pushing files and handing out durable URLs.

This module provides functionality for:
- Uploading staged files or in-memory buffers to an S3 bucket
- Generating presigned URLs the processing provider and browsers can fetch
- Looking up and deleting stored assets

The bucket and endpoint come from the ``assets`` config section. Any
S3-compatible endpoint works when ``endpoint_url`` is set. Calls are not
retried; the caller decides what to do with a failure.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError
from starlette.concurrency import run_in_threadpool

from .configuration import Settings
from .exceptions import AssetNotFound, RemoteUploadError
from .models import AssetInfo
from .utils import media_type_for, split_extension, unique_asset_id

logger = logging.getLogger(__name__)

_NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}


@dataclass(frozen=True)
class AssetReference:
    """Durable pointer to an object stored on the asset host."""

    url: str
    asset_id: str
    size: int
    format: str


def _format_of(asset_id: str) -> str:
    return split_extension(asset_id)[1].lstrip(".")


class AssetStore:
    """
    Pushes files to the asset host.

    Attributes:
        bucket: Target bucket name; an empty name means the host is not configured
        url_expiration: Lifetime of generated URLs in seconds
    """

    def __init__(self, client: Any, bucket: str, url_expiration: int = 3600) -> None:
        self._client = client
        self.bucket = bucket
        self.url_expiration = url_expiration

    @classmethod
    def from_settings(cls, settings: Settings) -> "AssetStore":
        assets = settings.assets
        timeout = settings.providers.timeout_seconds
        client = boto3.client(
            "s3",
            region_name=assets.region or None,
            endpoint_url=assets.endpoint_url or None,
            config=BotoConfig(
                connect_timeout=timeout,
                read_timeout=timeout,
                retries={"total_max_attempts": 1},
            ),
        )
        return cls(client, assets.bucket, assets.url_expiration_seconds)

    def is_configured(self) -> bool:
        return bool(self.bucket)

    def _require_bucket(self) -> None:
        if not self.bucket:
            raise RemoteUploadError("Asset host is not configured", details="Set ASSET_BUCKET_NAME to enable uploads")

    def _presigned_url(self, asset_id: str) -> str:
        return self._client.generate_presigned_url(
            "get_object",
            Params={"Bucket": self.bucket, "Key": asset_id},
            ExpiresIn=self.url_expiration,
        )

    async def push_file(self, local_path: Path, name_hint: str, folder: str = "") -> AssetReference:
        """
        Upload a local file and return a reference to it.

        Raises:
            RemoteUploadError: The host is unreachable, misconfigured or rejected the object
        """
        self._require_bucket()
        asset_id = unique_asset_id(name_hint, folder)
        logger.info(f"Uploading {local_path} to s3://{self.bucket}/{asset_id}")

        try:
            size = Path(local_path).stat().st_size
            await run_in_threadpool(
                self._client.upload_file,
                str(local_path),
                self.bucket,
                asset_id,
                ExtraArgs={"ContentType": media_type_for(name_hint)},
            )
            url = self._presigned_url(asset_id)
        except (BotoCoreError, ClientError, OSError) as exc:
            logger.error(f"Asset upload failed for {name_hint!r}: {exc}")
            raise RemoteUploadError("Upload to asset host failed", details=str(exc)) from exc

        return AssetReference(url=url, asset_id=asset_id, size=size, format=_format_of(asset_id))

    async def push_buffer(self, data: bytes, name_hint: str, folder: str = "") -> AssetReference:
        """Same contract as ``push_file`` for bytes produced by an earlier remote call."""
        self._require_bucket()
        asset_id = unique_asset_id(name_hint, folder)
        logger.info(f"Uploading {len(data)} bytes to s3://{self.bucket}/{asset_id}")

        try:
            await run_in_threadpool(
                self._client.put_object,
                Bucket=self.bucket,
                Key=asset_id,
                Body=data,
                ContentType=media_type_for(name_hint),
            )
            url = self._presigned_url(asset_id)
        except (BotoCoreError, ClientError) as exc:
            logger.error(f"Asset upload failed for {name_hint!r}: {exc}")
            raise RemoteUploadError("Upload to asset host failed", details=str(exc)) from exc

        return AssetReference(url=url, asset_id=asset_id, size=len(data), format=_format_of(asset_id))

    async def delete_asset(self, reference: AssetReference) -> None:
        """Best-effort removal; failures are logged and swallowed."""
        if not self.bucket:
            return
        try:
            await run_in_threadpool(self._client.delete_object, Bucket=self.bucket, Key=reference.asset_id)
            logger.debug(f"Deleted asset s3://{self.bucket}/{reference.asset_id}")
        except (BotoCoreError, ClientError) as exc:
            logger.warning(f"Failed to delete asset {reference.asset_id}: {exc}")

    async def describe_asset(self, asset_id: str) -> AssetInfo:
        """
        Fetch metadata for a stored asset.

        Raises:
            AssetNotFound: No object exists under ``asset_id``
            RemoteUploadError: The host could not be queried
        """
        self._require_bucket()
        try:
            head = await run_in_threadpool(self._client.head_object, Bucket=self.bucket, Key=asset_id)
            url = self._presigned_url(asset_id)
        except ClientError as exc:
            code = str(exc.response.get("Error", {}).get("Code", ""))
            if code in _NOT_FOUND_CODES:
                raise AssetNotFound("File not found", details=asset_id) from exc
            raise RemoteUploadError("Asset lookup failed", details=str(exc)) from exc
        except BotoCoreError as exc:
            raise RemoteUploadError("Asset lookup failed", details=str(exc)) from exc

        return AssetInfo(
            asset_id=asset_id,
            url=url,
            size=head.get("ContentLength", 0),
            format=_format_of(asset_id),
            content_type=head.get("ContentType"),
            last_modified=head.get("LastModified"),
        )
