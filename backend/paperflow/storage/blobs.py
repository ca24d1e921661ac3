"""
Blob Store Gateway — S3 API (MinIO in docker-compose)

Objects live flat in one bucket under ``{document_id}{extension}``; the key
is built by paperflow.schemas.documents.blob_key, never accepted from a
message or a caller-supplied path.

Error mapping:
  - NoSuchKey / 404 on get        → FileNotFoundError
  - NoSuchKey / 404 on delete     → no-op (delete is idempotent)
  - NoSuchKey / 404 on exists     → False
  - any other ClientError or an
    unreachable endpoint          → TransientInfrastructureError
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import BinaryIO

import aioboto3
from botocore.exceptions import BotoCoreError, ClientError

from paperflow.core.config import Settings
from paperflow.core.exceptions import TransientInfrastructureError, ValidationError

logger = logging.getLogger(__name__)

_NOT_FOUND_CODES = frozenset({"NoSuchKey", "404", "NotFound", "NoSuchBucket"})


def _is_not_found(exc: ClientError) -> bool:
    return exc.response.get("Error", {}).get("Code") in _NOT_FOUND_CODES


class BlobStore:
    """
    Async put/get/delete/exists for binary objects in a single bucket.

    One instance per process; every call opens a scoped client from the
    shared aioboto3 session.
    """

    def __init__(self, settings: Settings) -> None:
        self._bucket   = settings.s3_bucket
        self._settings = settings
        self._session  = aioboto3.Session()

    @property
    def bucket(self) -> str:
        return self._bucket

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _client(self):
        """Return a scoped async S3 client context manager."""
        s = self._settings
        return self._session.client(
            "s3",
            region_name=s.s3_region,
            endpoint_url=s.s3_endpoint_url or None,
            aws_access_key_id=s.s3_access_key_id or None,
            aws_secret_access_key=s.s3_secret_access_key or None,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def ensure_bucket(self) -> None:
        """Create the bucket if it does not exist yet. Safe to call on every start."""
        async with self._client() as s3:
            try:
                await s3.head_bucket(Bucket=self._bucket)
                return
            except ClientError as exc:
                if not _is_not_found(exc):
                    raise TransientInfrastructureError(
                        f"Cannot access bucket {self._bucket}: {exc}"
                    ) from exc
            except BotoCoreError as exc:
                raise TransientInfrastructureError(
                    f"Blob store unreachable: {exc}"
                ) from exc

            try:
                await s3.create_bucket(Bucket=self._bucket)
            except ClientError as exc:
                code = exc.response.get("Error", {}).get("Code")
                if code not in ("BucketAlreadyOwnedByYou", "BucketAlreadyExists"):
                    raise TransientInfrastructureError(
                        f"Cannot create bucket {self._bucket}: {exc}"
                    ) from exc
        logger.info("S3 bucket created | bucket=%s", self._bucket)

    # ------------------------------------------------------------------
    # Core operations
    # ------------------------------------------------------------------

    async def put_blob(
        self,
        key: str,
        stream: bytes | BinaryIO,
        length: int,
        content_type: str,
    ) -> None:
        body = stream if isinstance(stream, bytes) else stream.read()
        if len(body) != length:
            raise ValidationError(
                f"Declared length {length} does not match {len(body)} bytes read for {key}"
            )
        try:
            async with self._client() as s3:
                await s3.put_object(
                    Bucket=self._bucket,
                    Key=key,
                    Body=body,
                    ContentLength=length,
                    ContentType=content_type,
                )
        except (ClientError, BotoCoreError) as exc:
            raise TransientInfrastructureError(f"Blob write failed for {key}: {exc}") from exc

        logger.info("S3 upload ok | bucket=%s key=%s size=%d", self._bucket, key, length)

    async def get_blob(self, key: str) -> bytes:
        try:
            async with self._client() as s3:
                resp = await s3.get_object(Bucket=self._bucket, Key=key)
                return await resp["Body"].read()
        except ClientError as exc:
            if _is_not_found(exc):
                raise FileNotFoundError(f"Object not found: {key}") from exc
            raise TransientInfrastructureError(f"Blob read failed for {key}: {exc}") from exc
        except BotoCoreError as exc:
            raise TransientInfrastructureError(f"Blob read failed for {key}: {exc}") from exc

    async def download_to(self, key: str, path: str | Path) -> Path:
        """Write the object to ``path`` and return it."""
        target = Path(path)
        target.write_bytes(await self.get_blob(key))
        return target

    async def delete_blob(self, key: str) -> None:
        try:
            async with self._client() as s3:
                await s3.delete_object(Bucket=self._bucket, Key=key)
        except ClientError as exc:
            if _is_not_found(exc):
                logger.debug("S3 delete of missing object | key=%s", key)
                return
            raise TransientInfrastructureError(f"Blob delete failed for {key}: {exc}") from exc
        except BotoCoreError as exc:
            raise TransientInfrastructureError(f"Blob delete failed for {key}: {exc}") from exc

        logger.info("S3 delete ok | bucket=%s key=%s", self._bucket, key)

    async def exists_blob(self, key: str) -> bool:
        try:
            async with self._client() as s3:
                await s3.head_object(Bucket=self._bucket, Key=key)
        except ClientError as exc:
            if _is_not_found(exc):
                return False
            raise TransientInfrastructureError(f"Blob head failed for {key}: {exc}") from exc
        except BotoCoreError as exc:
            raise TransientInfrastructureError(f"Blob head failed for {key}: {exc}") from exc
        return True
