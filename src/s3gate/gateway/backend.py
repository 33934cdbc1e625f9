"""Object-storage backends used by the gateway."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, BinaryIO, Optional

import boto3
from boto3.exceptions import S3UploadFailedError
from boto3.s3.transfer import TransferConfig
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from ..common.settings import GatewaySettings


NOT_FOUND_CODES = frozenset({"404", "NoSuchKey", "NotFound"})


class StorageError(Exception):
    """Base class for failed backend calls."""

    def __init__(self, key: str, cause: BaseException | None = None):
        self.key = key
        self.cause = cause
        message = f"{key}: {cause}" if cause is not None else key
        super().__init__(message)


class ObjectNotFound(StorageError):
    """The requested object does not exist in the bucket."""


class BackendError(StorageError):
    """Any other backend failure (transport, permissions, throttling)."""


@dataclass
class ObjectInfo:
    key: str
    content_length: int
    content_type: str = ""
    etag: Optional[str] = None
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass
class StoredObject:
    info: ObjectInfo
    body: Any


def _error_code(exc: ClientError) -> str:
    return str(exc.response.get("Error", {}).get("Code", ""))


def translate_error(key: str, exc: Exception) -> StorageError:
    if isinstance(exc, ClientError) and _error_code(exc) in NOT_FOUND_CODES:
        return ObjectNotFound(key, exc)
    return BackendError(key, exc)


def _object_info(key: str, response: dict[str, Any]) -> ObjectInfo:
    return ObjectInfo(
        key=key,
        content_length=int(response.get("ContentLength", 0)),
        content_type=response.get("ContentType") or "",
        etag=response.get("ETag"),
        metadata=dict(response.get("Metadata") or {}),
    )


class ObjectBackend:
    async def head(self, key: str) -> ObjectInfo:  # pragma: no cover - interface
        raise NotImplementedError

    async def open(self, key: str) -> StoredObject:
        raise NotImplementedError

    async def store(self, key: str, body: BinaryIO, content_type: str, metadata: dict[str, str]) -> None:
        raise NotImplementedError

    def status(self) -> dict[str, object]:
        raise NotImplementedError


class S3ObjectBackend(ObjectBackend):
    def __init__(self, settings: GatewaySettings):
        self._settings = settings
        session = boto3.session.Session()
        client_args: dict[str, Optional[str]] = {
            "endpoint_url": settings.s3_endpoint_url,
            "region_name": settings.s3_region,
        }
        # no SDK retries: every backend call is attempted once
        boto_config = BotoConfig(retries={"total_max_attempts": 1, "mode": "standard"})
        self._client = session.client(
            "s3",
            config=boto_config,
            **{k: v for k, v in client_args.items() if v},
        )
        self._bucket = settings.bucket
        self._transfer_config = TransferConfig(
            multipart_threshold=settings.multipart_threshold_bytes,
            multipart_chunksize=settings.multipart_chunk_bytes,
            max_concurrency=settings.upload_max_concurrency,
        )

    async def head(self, key: str) -> ObjectInfo:
        try:
            response = await asyncio.to_thread(self._client.head_object, Bucket=self._bucket, Key=key)
        except (ClientError, BotoCoreError) as exc:
            raise translate_error(key, exc) from exc
        if not response:
            raise ObjectNotFound(key)
        return _object_info(key, response)

    async def open(self, key: str) -> StoredObject:
        try:
            response = await asyncio.to_thread(self._client.get_object, Bucket=self._bucket, Key=key)
        except (ClientError, BotoCoreError) as exc:
            raise translate_error(key, exc) from exc
        return StoredObject(info=_object_info(key, response), body=response["Body"])

    async def store(self, key: str, body: BinaryIO, content_type: str, metadata: dict[str, str]) -> None:
        extra_args: dict[str, Any] = {"ContentType": content_type, "Metadata": metadata}
        try:
            await asyncio.to_thread(
                self._client.upload_fileobj,
                body,
                self._bucket,
                key,
                ExtraArgs=extra_args,
                Config=self._transfer_config,
            )
        except (ClientError, BotoCoreError, S3UploadFailedError) as exc:
            raise translate_error(key, exc) from exc

    def status(self) -> dict[str, object]:
        return {
            "backend": "s3",
            "bucket": self._bucket,
            "endpoint": self._settings.s3_endpoint_url,
            "region": self._settings.s3_region,
        }


def build_backend(settings: GatewaySettings) -> ObjectBackend:
    return S3ObjectBackend(settings)
