from __future__ import annotations

from google.api_core.exceptions import Forbidden
import pytest

from docspace.core.config import get_settings
from docspace.core.errors import ProviderConfigError, StorageError
from docspace.services import storage as storage_module
from docspace.services.storage import GcsBlobStorage, LocalBlobStorage, get_blob_storage


class FakeBlob:
    def __init__(self, name: str, *, error: Exception | None = None, present: bool = True) -> None:
        self.name = name
        self.public_url = f"https://storage.googleapis.com/docs/{name}"
        self._error = error
        self._present = present
        self.deleted = False

    def _maybe_fail(self) -> None:
        if self._error is not None:
            raise self._error

    def upload_from_string(self, data, content_type=None) -> None:
        self._maybe_fail()

    def download_as_bytes(self) -> bytes:
        self._maybe_fail()
        return b"%PDF-1.4"

    def exists(self) -> bool:
        self._maybe_fail()
        return self._present

    def delete(self) -> None:
        self._maybe_fail()
        self.deleted = True


class FakeBucket:
    def __init__(self, **blob_kwargs) -> None:
        self._blob_kwargs = blob_kwargs
        self.blobs: list[FakeBlob] = []

    def blob(self, name: str) -> FakeBlob:
        blob = FakeBlob(name, **self._blob_kwargs)
        self.blobs.append(blob)
        return blob


class FakeClient:
    instances = 0

    def __init__(self, **blob_kwargs) -> None:
        FakeClient.instances += 1
        self.buckets: dict[str, FakeBucket] = {}
        self._blob_kwargs = blob_kwargs

    def bucket(self, name: str) -> FakeBucket:
        return self.buckets.setdefault(name, FakeBucket(**self._blob_kwargs))


@pytest.mark.asyncio
async def test_gcs_wraps_sdk_errors_for_every_operation() -> None:
    store = GcsBlobStorage("docs", client=FakeClient(error=Forbidden("caller lacks storage.objects access")))

    with pytest.raises(StorageError) as put_error:
        await store.put("documents/ws/a.pdf", b"%PDF", "application/pdf")
    with pytest.raises(StorageError):
        await store.get("documents/ws/a.pdf")
    with pytest.raises(StorageError) as delete_error:
        await store.delete("documents/ws/a.pdf")
    with pytest.raises(StorageError):
        await store.exists("documents/ws/a.pdf")

    assert isinstance(put_error.value.__cause__, Forbidden)
    # The existence check inside delete fails first and is still wrapped.
    assert isinstance(delete_error.value.__cause__, Forbidden)


@pytest.mark.asyncio
async def test_gcs_happy_path_and_missing_blob_delete() -> None:
    client = FakeClient()
    store = GcsBlobStorage("docs", client=client)
    url = await store.put("documents/ws/a.pdf", b"%PDF", "application/pdf")
    assert url == "https://storage.googleapis.com/docs/documents/ws/a.pdf"
    assert await store.get("documents/ws/a.pdf") == b"%PDF-1.4"
    await store.delete("documents/ws/a.pdf")
    assert client.buckets["docs"].blobs[-1].deleted is True

    absent = FakeClient(present=False)
    absent_store = GcsBlobStorage("docs", client=absent)
    await absent_store.delete("documents/ws/gone.pdf")
    assert absent.buckets["docs"].blobs[-1].deleted is False
    assert await absent_store.exists("documents/ws/gone.pdf") is False


def test_gcs_backend_reuses_one_client(monkeypatch) -> None:
    monkeypatch.setenv("STORAGE_BACKEND", "gcs")
    monkeypatch.setenv("GCS_BUCKET", "docs")
    monkeypatch.setattr(storage_module.gcs, "Client", FakeClient)
    get_settings.cache_clear()
    storage_module._gcs_storage.cache_clear()
    FakeClient.instances = 0
    try:
        first = get_blob_storage()
        second = get_blob_storage()
    finally:
        storage_module._gcs_storage.cache_clear()
    assert first is second
    assert FakeClient.instances == 1


def test_gcs_backend_requires_bucket(monkeypatch) -> None:
    monkeypatch.setenv("STORAGE_BACKEND", "gcs")
    monkeypatch.setenv("GCS_BUCKET", "")
    get_settings.cache_clear()
    with pytest.raises(ProviderConfigError):
        get_blob_storage()


@pytest.mark.asyncio
async def test_local_storage_round_trip_and_path_escape(tmp_path) -> None:
    store = LocalBlobStorage(base_dir=tmp_path, public_base_url="http://localhost:8000/blobs/")
    url = await store.put("documents/ws/a.txt", b"hello", "text/plain")
    assert url == "http://localhost:8000/blobs/documents/ws/a.txt"
    assert await store.exists("documents/ws/a.txt") is True
    await store.delete("documents/ws/a.txt")
    assert await store.exists("documents/ws/a.txt") is False
    # Deleting twice is a no-op.
    await store.delete("documents/ws/a.txt")

    with pytest.raises(StorageError):
        await store.get("documents/ws/a.txt")
    with pytest.raises(StorageError):
        await store.put("../outside.txt", b"x", "text/plain")
    with pytest.raises(StorageError):
        await store.exists("/etc/passwd")
