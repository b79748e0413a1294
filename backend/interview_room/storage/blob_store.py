from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Protocol

from core.config import (
    AWS_ACCESS_KEY_ID,
    AWS_BUCKET_NAME,
    AWS_REGION,
    AWS_SECRET_ACCESS_KEY,
    BLOB_BACKEND,
    BLOB_URL_EXPIRES_SEC,
    LOCAL_BLOB_DIR,
)
from interview_room.errors import BlobUploadError

logger = logging.getLogger("interview_room.storage.blob_store")


class BlobStore(Protocol):
    async def upload(self, data: bytes, key: str, content_type: str) -> str:
        ...


class LocalBlobStore:
    """Writes blobs under a directory and returns file:// URLs."""

    def __init__(self, base_dir: str | Path):
        self.base_dir = Path(base_dir).resolve()

    def _target(self, key: str) -> Path:
        target = (self.base_dir / str(key or "").lstrip("/")).resolve()
        if self.base_dir not in target.parents:
            raise BlobUploadError(f"Invalid blob key: {key}")
        return target

    def _write(self, data: bytes, key: str) -> str:
        target = self._target(key)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
        return target.as_uri()

    async def upload(self, data: bytes, key: str, content_type: str) -> str:
        try:
            url = await asyncio.to_thread(self._write, bytes(data), key)
        except BlobUploadError:
            raise
        except OSError as exc:
            logger.warning("local blob write failed | key=%s err=%s", key, exc)
            raise BlobUploadError(f"Failed to store blob {key}: {exc}") from exc
        logger.info("blob stored | key=%s bytes=%s content_type=%s", key, len(data), content_type)
        return url


class S3BlobStore:
    def __init__(self, bucket: str, client=None, url_expires_sec: int = BLOB_URL_EXPIRES_SEC):
        if not bucket:
            raise RuntimeError("AWS_BUCKET_NAME is required for the s3 blob backend")
        if client is None:
            import boto3

            client = boto3.client(
                "s3",
                region_name=AWS_REGION,
                aws_access_key_id=AWS_ACCESS_KEY_ID or None,
                aws_secret_access_key=AWS_SECRET_ACCESS_KEY or None,
            )
        self.bucket = bucket
        self.url_expires_sec = int(url_expires_sec)
        self._client = client

    def _put_and_sign(self, data: bytes, key: str, content_type: str) -> str:
        result = self._client.put_object(
            Bucket=self.bucket,
            Key=key,
            Body=data,
            ContentType=content_type,
        )
        logger.info(
            "s3 upload ok | key=%s bytes=%s etag=%s",
            key,
            len(data),
            (result or {}).get("ETag"),
        )
        return self._client.generate_presigned_url(
            "get_object",
            Params={"Bucket": self.bucket, "Key": key},
            ExpiresIn=self.url_expires_sec,
        )

    async def upload(self, data: bytes, key: str, content_type: str) -> str:
        try:
            return await asyncio.to_thread(self._put_and_sign, bytes(data), key, content_type)
        except Exception as exc:
            logger.warning("s3 upload failed | bucket=%s key=%s err=%s", self.bucket, key, exc)
            raise BlobUploadError(f"Failed to upload {key} to S3: {exc}") from exc


def build_blob_store() -> BlobStore:
    if BLOB_BACKEND == "s3":
        return S3BlobStore(bucket=AWS_BUCKET_NAME)
    return LocalBlobStore(LOCAL_BLOB_DIR)
