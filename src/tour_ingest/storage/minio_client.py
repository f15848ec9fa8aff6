"""MinIO client adapter (object storage for re-hosted PDF previews)."""

from __future__ import annotations

import asyncio
import io
from dataclasses import dataclass
from urllib.parse import urlparse

from minio import Minio
from minio.error import S3Error
from urllib3.exceptions import HTTPError as TransportError

from ..domain.errors import StorageError
from ..observability.logger import get_logger

logger = get_logger(__name__)

# S3 answers, plus an unreachable or dropped endpoint surfacing from urllib3.
STORAGE_FAILURES = (S3Error, TransportError, OSError)


@dataclass(frozen=True)
class UploadResult:
    object_name: str
    size_bytes: int
    content_type: str
    url: str


class MinIOClient:
    """Storage adapter for MinIO.

    Rules:
    - Only raw artifacts (PDF bytes) are stored here, never job state.
    - This adapter must not contain business logic.
    """

    def __init__(
        self,
        endpoint: str,
        access_key: str,
        secret_key: str,
        secure: bool,
        bucket: str,
        public_base_url: str | None = None,
    ):
        self._bucket = bucket
        self._endpoint = endpoint
        self._secure = secure
        self._public_base_url = (public_base_url or "").rstrip("/")
        self._client = Minio(
            endpoint=endpoint,
            access_key=access_key,
            secret_key=secret_key,
            secure=secure,
        )

    @property
    def bucket(self) -> str:
        return self._bucket

    async def health_check(self) -> bool:
        try:
            # MinIO SDK is sync; run in thread to avoid blocking the event loop.
            def _ensure_bucket() -> None:
                if not self._client.bucket_exists(self._bucket):
                    self._client.make_bucket(self._bucket)

            await asyncio.to_thread(_ensure_bucket)
            return True
        except Exception as e:
            logger.warning("minio_health_check_error", error=str(e))
            return False

    def public_url(self, object_name: str) -> str:
        if self._public_base_url:
            return f"{self._public_base_url}/{object_name}"
        scheme = "https" if self._secure else "http"
        return f"{scheme}://{self._endpoint}/{self._bucket}/{object_name}"

    async def put(self, object_name: str, data: bytes, content_type: str) -> UploadResult:
        """Upload raw bytes and return the public URL of the object."""
        try:
            def _put() -> None:
                self._client.put_object(
                    bucket_name=self._bucket,
                    object_name=object_name,
                    data=io.BytesIO(data),
                    length=len(data),
                    content_type=content_type,
                )

            await asyncio.to_thread(_put)
        except STORAGE_FAILURES as e:
            logger.error("minio_upload_failed", object_name=object_name, error=str(e))
            raise StorageError("failed to upload object", detail=str(e)) from e
        return UploadResult(
            object_name=object_name,
            size_bytes=len(data),
            content_type=content_type,
            url=self.public_url(object_name),
        )

    async def delete(self, object_name: str) -> None:
        try:
            await asyncio.to_thread(self._client.remove_object, self._bucket, object_name)
        except STORAGE_FAILURES as e:
            logger.error("minio_delete_failed", object_name=object_name, error=str(e))
            raise StorageError("failed to delete object", detail=str(e)) from e


def object_key_from_url(url: str, anchor: str) -> str | None:
    """Recover an object key from a public URL, starting at the `anchor` segment."""
    parts = urlparse(url).path.split("/")
    if anchor not in parts:
        return None
    return "/".join(parts[parts.index(anchor) :])
