"""
S3 object store backed by aiobotocore.

Streams of unknown length are uploaded with the multipart API: the stream is
cut into ``part_size_bytes`` parts as it arrives, so at most one part is held
in memory. Streams shorter than one part fall back to a single PUT.

Invariants:
    - A failed or cancelled multipart upload is aborted, never completed
    - At most one part buffer is held in memory per upload
    - Credentials are passed to the client only, never logged

How to change safely:
    - Parts must stay >= 5 MiB (except the last) or S3 rejects completion
    - Test against MinIO before changing addressing or checksum options
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from aiobotocore.config import AioConfig
from aiobotocore.session import get_session
from botocore.exceptions import BotoCoreError, ClientError

from ..config import S3Config
from ..errors import StorageError, UploadError
from .base import ByteSource, ObjectInfo, UploadResult

logger = logging.getLogger(__name__)

MAX_PARTS = 10000


class S3ObjectStore:
    """ObjectStore implementation for S3-compatible services.

    Attributes:
        s3_config: S3 configuration
        part_size: Multipart part size in bytes

    Example:
        >>> async with S3ObjectStore(config.s3) as store:
        ...     result = await store.put_stream(bucket, key, channel)
    """

    def __init__(self, s3_config: S3Config, client: Any = None) -> None:
        """Initialize the store.

        Args:
            s3_config: S3Config instance
            client: Pre-built client (tests); created lazily when omitted
        """
        self.s3_config = s3_config
        self.part_size = s3_config.part_size_bytes
        self._s3_client = client
        self._s3_ctx = None
        self._session = None

    async def __aenter__(self) -> S3ObjectStore:
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def connect(self) -> None:
        """Initialize S3 client."""
        if self._s3_client is not None:
            return

        self._session = get_session()

        client_kwargs: dict[str, Any] = {
            "region_name": self.s3_config.region,
        }

        if self.s3_config.endpoint_url:
            client_kwargs["endpoint_url"] = self.s3_config.endpoint_url

        if self.s3_config.access_key_id:
            client_kwargs["aws_access_key_id"] = self.s3_config.access_key_id
            client_kwargs["aws_secret_access_key"] = self.s3_config.secret_access_key

        if self.s3_config.force_path_style:
            client_kwargs["config"] = AioConfig(s3={"addressing_style": "path"})

        self._s3_ctx = self._session.create_client("s3", **client_kwargs)
        self._s3_client = await self._s3_ctx.__aenter__()

    async def close(self) -> None:
        """Close S3 client."""
        if self._s3_ctx is not None and self._s3_client is not None:
            await self._s3_ctx.__aexit__(None, None, None)
            self._s3_ctx = None
        self._s3_client = None

    async def _client(self) -> Any:
        if self._s3_client is None:
            await self.connect()
        return self._s3_client

    async def put_object(
        self,
        bucket: str,
        key: str,
        body: bytes,
        content_type: str = "application/octet-stream",
    ) -> None:
        """Upload a small object in one request."""
        client = await self._client()
        try:
            await client.put_object(
                Bucket=bucket,
                Key=key,
                Body=body,
                ContentType=content_type,
            )
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Failed to put s3://{bucket}/{key}: {e}", key=key) from e

    async def put_stream(
        self,
        bucket: str,
        key: str,
        source: ByteSource,
        content_type: str = "application/octet-stream",
    ) -> UploadResult:
        """Upload a stream of unknown length.

        Args:
            bucket: Target bucket
            key: Target key
            source: Chunk source; ``b""`` ends the stream
            content_type: Content type of the final object

        Returns:
            UploadResult with uploaded size and part count

        Raises:
            UploadError: On any read or upload failure
        """
        client = await self._client()
        buffer = bytearray()
        total = 0
        upload_id: str | None = None
        parts: list[dict[str, Any]] = []

        try:
            while True:
                chunk = await source.aread()
                if not chunk:
                    break
                buffer += chunk
                total += len(chunk)

                while len(buffer) >= self.part_size:
                    if upload_id is None:
                        response = await client.create_multipart_upload(
                            Bucket=bucket,
                            Key=key,
                            ContentType=content_type,
                        )
                        upload_id = response["UploadId"]
                        logger.debug(
                            "Started multipart upload",
                            extra={"bucket": bucket, "key": key, "upload_id": upload_id},
                        )
                    part = bytes(buffer[: self.part_size])
                    del buffer[: self.part_size]
                    await self._upload_part(client, bucket, key, upload_id, parts, part)

            if upload_id is None:
                await client.put_object(
                    Bucket=bucket,
                    Key=key,
                    Body=bytes(buffer),
                    ContentType=content_type,
                )
                return UploadResult(key=key, size_bytes=total, parts=1)

            if buffer:
                await self._upload_part(client, bucket, key, upload_id, parts, bytes(buffer))
                buffer.clear()

            await client.complete_multipart_upload(
                Bucket=bucket,
                Key=key,
                UploadId=upload_id,
                MultipartUpload={"Parts": parts},
            )
            return UploadResult(key=key, size_bytes=total, parts=len(parts))

        except BaseException as e:
            if upload_id is not None:
                await self._abort_multipart(client, bucket, key, upload_id)
            if not isinstance(e, Exception) or isinstance(e, UploadError):
                raise
            raise UploadError(
                f"Upload to s3://{bucket}/{key} failed: {e}",
                details={"key": key, "bytes_read": total, "parts": len(parts)},
            ) from e

    async def _upload_part(
        self,
        client: Any,
        bucket: str,
        key: str,
        upload_id: str,
        parts: list[dict[str, Any]],
        data: bytes,
    ) -> None:
        part_number = len(parts) + 1
        if part_number > MAX_PARTS:
            raise UploadError(
                f"Upload to s3://{bucket}/{key} exceeds {MAX_PARTS} parts; "
                "increase S3_PART_SIZE_BYTES",
                details={"key": key},
            )
        response = await client.upload_part(
            Bucket=bucket,
            Key=key,
            UploadId=upload_id,
            PartNumber=part_number,
            Body=data,
        )
        parts.append({"ETag": response["ETag"], "PartNumber": part_number})

    async def _abort_multipart(self, client: Any, bucket: str, key: str, upload_id: str) -> None:
        try:
            await asyncio.shield(
                client.abort_multipart_upload(Bucket=bucket, Key=key, UploadId=upload_id)
            )
            logger.info(
                "Aborted multipart upload",
                extra={"bucket": bucket, "key": key, "upload_id": upload_id},
            )
        except (BotoCoreError, ClientError, asyncio.CancelledError) as e:
            logger.warning(
                f"Failed to abort multipart upload {upload_id} for {key}: {e}",
                extra={"bucket": bucket, "key": key},
            )

    async def list_objects(self, bucket: str, prefix: str) -> list[ObjectInfo]:
        """List all objects under a prefix, following pagination."""
        client = await self._client()
        objects: list[ObjectInfo] = []
        try:
            paginator = client.get_paginator("list_objects_v2")
            async for page in paginator.paginate(Bucket=bucket, Prefix=prefix):
                for obj in page.get("Contents", []):
                    objects.append(
                        ObjectInfo(
                            key=obj["Key"],
                            size=obj.get("Size", 0),
                            last_modified=obj.get("LastModified"),
                        )
                    )
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Failed to list s3://{bucket}/{prefix}: {e}", key=prefix) from e
        return objects

    async def delete_object(self, bucket: str, key: str) -> None:
        """Delete one object."""
        client = await self._client()
        try:
            await client.delete_object(Bucket=bucket, Key=key)
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Failed to delete s3://{bucket}/{key}: {e}", key=key) from e
