"""S3-compatible object store gateway (Backblaze B2, MinIO, AWS S3)."""

from __future__ import annotations

import asyncio
from typing import Any, Callable, TypeVar

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from app.config import StorageSettings, get_settings
from app.logging import logger
from app.services.exceptions import ObjectNotFound, StoreUnavailable

T = TypeVar("T")

# S3 DeleteObjects accepts at most 1000 keys per request.
MAX_DELETE_BATCH = 1000
MISSING_KEY_CODES = {"404", "NoSuchKey", "NotFound"}


def _error_code(exc: ClientError) -> str:
    return str(exc.response.get("Error", {}).get("Code", "Unknown"))


class ObjectStoreGateway:
    """Upload, presign and prefix-delete against one bucket.

    boto3 is blocking, so every call is pushed to a worker thread and bounded
    by ``request_timeout_seconds``.
    """

    def __init__(
        self,
        settings: StorageSettings | None = None,
        *,
        client: Any | None = None,
        page_size: int = MAX_DELETE_BATCH,
    ) -> None:
        self.settings = settings or get_settings().storage
        self.bucket = self.settings.bucket
        self.expiry_seconds = self.settings.presigned_url_expiry_seconds
        self.timeout = self.settings.request_timeout_seconds
        self.page_size = max(1, min(page_size, MAX_DELETE_BATCH))
        self.client = client or self._build_client(self.settings)

    @staticmethod
    def _build_client(settings: StorageSettings):
        access_key = settings.access_key_id.get_secret_value() if settings.access_key_id else None
        secret_key = (
            settings.secret_access_key.get_secret_value() if settings.secret_access_key else None
        )
        return boto3.client(
            "s3",
            endpoint_url=str(settings.endpoint_url) if settings.endpoint_url else None,
            region_name=settings.region,
            aws_access_key_id=access_key,
            aws_secret_access_key=secret_key,
            config=Config(
                signature_version="s3v4",
                connect_timeout=10,
                read_timeout=settings.request_timeout_seconds,
                retries={"max_attempts": 3, "mode": "standard"},
            ),
        )

    async def _call(self, operation: str, func: Callable[..., T], **kwargs: Any) -> T:
        try:
            return await asyncio.wait_for(asyncio.to_thread(func, **kwargs), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            logger.warning("object_store_timeout", operation=operation, timeout=self.timeout)
            raise StoreUnavailable(f"{operation} timed out after {self.timeout}s") from exc
        except ClientError as exc:
            if operation == "head_object" and _error_code(exc) in MISSING_KEY_CODES:
                raise ObjectNotFound(kwargs.get("Key", "")) from exc
            logger.warning("object_store_error", operation=operation, code=_error_code(exc))
            raise StoreUnavailable(f"{operation} failed: {_error_code(exc)}") from exc
        except BotoCoreError as exc:
            logger.warning("object_store_error", operation=operation, error=str(exc))
            raise StoreUnavailable(f"{operation} failed: {exc}") from exc

    async def upload(
        self,
        key: str,
        data: bytes,
        mime_type: str,
        *,
        checksum: str | None = None,
    ) -> None:
        """Store ``data`` under ``key``; an existing object with that key is replaced."""

        extra: dict[str, Any] = {}
        if checksum:
            extra["Metadata"] = {"sha256": checksum}
        await self._call(
            "put_object",
            self.client.put_object,
            Bucket=self.bucket,
            Key=key,
            Body=data,
            ContentType=mime_type,
            **extra,
        )
        logger.info("object_uploaded", storage_key=key, size_bytes=len(data))

    async def presigned_url(self, key: str) -> str:
        """Return a time-limited GET URL; raises ObjectNotFound for a missing key."""

        await self._call("head_object", self.client.head_object, Bucket=self.bucket, Key=key)
        try:
            return self.client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.bucket, "Key": key},
                ExpiresIn=self.expiry_seconds,
            )
        except (ClientError, BotoCoreError) as exc:
            raise StoreUnavailable(f"presign failed for {key}: {exc}") from exc

    async def delete(self, key: str) -> None:
        await self._call("delete_object", self.client.delete_object, Bucket=self.bucket, Key=key)
        logger.info("object_deleted", storage_key=key)

    async def delete_prefix(self, prefix: str) -> int:
        """Delete every object whose key starts with ``prefix``.

        Safe to re-run after an interruption: already-deleted keys simply no
        longer show up in the listing.
        """

        if not prefix:
            raise ValueError("Refusing to delete with an empty prefix")

        deleted = 0
        continuation_token: str | None = None
        while True:
            params: dict[str, Any] = {
                "Bucket": self.bucket,
                "Prefix": prefix,
                "MaxKeys": self.page_size,
            }
            if continuation_token:
                params["ContinuationToken"] = continuation_token
            page = await self._call("list_objects_v2", self.client.list_objects_v2, **params)
            keys = [item["Key"] for item in page.get("Contents", []) if item.get("Key")]
            if keys:
                response = await self._call(
                    "delete_objects",
                    self.client.delete_objects,
                    Bucket=self.bucket,
                    Delete={"Objects": [{"Key": key} for key in keys], "Quiet": True},
                )
                errors = [
                    error
                    for error in response.get("Errors", [])
                    if error.get("Code") not in MISSING_KEY_CODES
                ]
                if errors:
                    logger.warning(
                        "object_prefix_delete_partial",
                        prefix=prefix,
                        failed=len(errors),
                        first_error=errors[0].get("Code"),
                    )
                    raise StoreUnavailable(
                        f"{len(errors)} objects under {prefix} could not be deleted"
                    )
                deleted += len(keys)
            if not page.get("IsTruncated"):
                break
            continuation_token = page.get("NextContinuationToken")
            if not continuation_token:
                break

        logger.info("object_prefix_deleted", prefix=prefix, deleted=deleted)
        return deleted

    async def ensure_bucket(self) -> None:
        await self._call("head_bucket", self.client.head_bucket, Bucket=self.bucket)
        logger.info("object_store_bucket_verified", bucket=self.bucket)


__all__ = ["ObjectStoreGateway"]
