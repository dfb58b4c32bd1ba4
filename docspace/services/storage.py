from __future__ import annotations

import asyncio
from dataclasses import dataclass
from functools import lru_cache
import logging
from pathlib import Path
from typing import Protocol

from google.cloud import storage as gcs

from docspace.core.config import get_settings
from docspace.core.errors import ProviderConfigError, StorageError


logger = logging.getLogger(__name__)


class BlobStorage(Protocol):
    # Object storage backends for uploaded document bytes.
    async def put(self, path: str, data: bytes, content_type: str) -> str:
        ...

    async def get(self, path: str) -> bytes:
        ...

    async def delete(self, path: str) -> None:
        ...

    async def exists(self, path: str) -> bool:
        ...


def _safe_relative(path: str) -> Path:
    relative = Path(path)
    if relative.is_absolute() or ".." in relative.parts:
        raise StorageError(f"Refusing blob path outside storage root: {path}")
    return relative


@dataclass(frozen=True)
class LocalBlobStorage:
    # Filesystem storage for local development and tests.
    base_dir: Path
    public_base_url: str

    def _resolve(self, path: str) -> Path:
        return self.base_dir / _safe_relative(path)

    async def put(self, path: str, data: bytes, content_type: str) -> str:
        target = self._resolve(path)

        def _write() -> None:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)

        try:
            await asyncio.to_thread(_write)
        except OSError as exc:
            raise StorageError(f"Failed to write blob {path}") from exc
        return f"{self.public_base_url.rstrip('/')}/{path}"

    async def get(self, path: str) -> bytes:
        try:
            return await asyncio.to_thread(self._resolve(path).read_bytes)
        except OSError as exc:
            raise StorageError(f"Failed to read blob {path}") from exc

    async def delete(self, path: str) -> None:
        target = self._resolve(path)
        try:
            await asyncio.to_thread(target.unlink, missing_ok=True)
        except OSError as exc:
            raise StorageError(f"Failed to delete blob {path}") from exc

    async def exists(self, path: str) -> bool:
        target = self._resolve(path)
        try:
            return await asyncio.to_thread(target.exists)
        except OSError as exc:
            raise StorageError(f"Failed to check blob {path}") from exc


class GcsBlobStorage:
    """Google Cloud Storage backend; the SDK is blocking, so calls run in a thread.

    Every SDK failure surfaces as ``StorageError`` so callers handle one type.
    """

    def __init__(self, bucket_name: str, client: gcs.Client | None = None) -> None:
        self._client = client or gcs.Client()
        self._bucket = self._client.bucket(bucket_name)

    async def put(self, path: str, data: bytes, content_type: str) -> str:
        blob = self._bucket.blob(path)
        try:
            await asyncio.to_thread(blob.upload_from_string, data, content_type=content_type)
        except Exception as exc:  # noqa: BLE001 - SDK raises many transport error types
            raise StorageError(f"Failed to upload blob {path}") from exc
        return blob.public_url

    async def get(self, path: str) -> bytes:
        blob = self._bucket.blob(path)
        try:
            return await asyncio.to_thread(blob.download_as_bytes)
        except Exception as exc:  # noqa: BLE001 - SDK raises many transport error types
            raise StorageError(f"Failed to download blob {path}") from exc

    async def delete(self, path: str) -> None:
        blob = self._bucket.blob(path)
        try:
            if await asyncio.to_thread(blob.exists):
                await asyncio.to_thread(blob.delete)
        except Exception as exc:  # noqa: BLE001 - SDK raises many transport error types
            raise StorageError(f"Failed to delete blob {path}") from exc

    async def exists(self, path: str) -> bool:
        blob = self._bucket.blob(path)
        try:
            return await asyncio.to_thread(blob.exists)
        except Exception as exc:  # noqa: BLE001 - SDK raises many transport error types
            raise StorageError(f"Failed to check blob {path}") from exc


@lru_cache
def _gcs_storage(bucket_name: str) -> GcsBlobStorage:
    # One SDK client per bucket for the process; it pools its own HTTP connections.
    return GcsBlobStorage(bucket_name)


def get_blob_storage() -> BlobStorage:
    settings = get_settings()
    backend = (settings.storage_backend or "local").lower()
    if backend == "gcs":
        if not settings.gcs_bucket:
            raise ProviderConfigError("GCS storage selected: set GCS_BUCKET in .env.")
        return _gcs_storage(settings.gcs_bucket)
    return LocalBlobStorage(
        base_dir=Path(settings.storage_local_dir),
        public_base_url=settings.storage_public_base_url,
    )
