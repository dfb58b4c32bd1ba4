from __future__ import annotations

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.exc import OperationalError

from docspace.apps.api.deps import get_storage
from docspace.apps.api.main import create_app
from docspace.core.config import get_settings
from docspace.core.errors import StorageError
from docspace.persistence.repos import documents as documents_repo
from docspace.services.processing import drain_background_tasks
from docspace.tests.utils.auth import create_test_user
from docspace.tests.utils.files import build_pdf
from docspace.tests.utils.seed import create_workspace


class RecordingStorage:
    # Captures writes so tests can assert nothing reached storage.
    def __init__(self) -> None:
        self.puts: list[str] = []

    async def put(self, path: str, data: bytes, content_type: str) -> str:
        self.puts.append(path)
        return f"http://blobs.test/{path}"

    async def get(self, path: str) -> bytes:
        raise AssertionError("unexpected read")

    async def delete(self, path: str) -> None:
        return None

    async def exists(self, path: str) -> bool:
        return path in self.puts


def _pdf_upload(name: str = "report.pdf") -> dict:
    return {"file": (name, build_pdf("Quarterly report revenue grew", pad_to=2048), "application/pdf")}


@pytest.mark.asyncio
async def test_upload_pdf_then_poll_shows_extracted_text() -> None:
    user_id, headers = await create_test_user()
    workspace_id = await create_workspace(user_id)
    app = create_app()
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.post(
            "/v1/upload",
            headers=headers,
            data={"workspace_id": workspace_id},
            files=_pdf_upload(),
        )
        assert response.status_code == 201
        body = response.json()
        assert body["success"] is True
        uploaded = body["document"]
        assert uploaded["name"] == "report.pdf"
        assert uploaded["type"] == "pdf"
        assert uploaded["extracted_text"] is None
        assert uploaded["size"] > 2000

        polled = await client.get(f"/v1/documents/{uploaded['id']}", headers=headers)

    document = polled.json()["document"]
    assert document["processing_status"] == "ready"
    assert "Quarterly report revenue grew" in document["extracted_text"]
    assert document["metadata"]["word_count"] == 4
    assert document["metadata"]["original_name"] == "report.pdf"
    assert document["metadata"]["mime_type"] == "application/pdf"
    assert "processed_at" in document["metadata"]


@pytest.mark.asyncio
async def test_background_processing_completes_after_response(monkeypatch) -> None:
    monkeypatch.setenv("PROCESSING_EXECUTION_MODE", "background")
    get_settings.cache_clear()
    user_id, headers = await create_test_user()
    workspace_id = await create_workspace(user_id)
    app = create_app()
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.post(
            "/v1/upload", headers=headers, data={"workspace_id": workspace_id}, files=_pdf_upload()
        )
        assert response.status_code == 201
        document_id = response.json()["document"]["id"]
        await drain_background_tasks()
        polled = await client.get(f"/v1/documents/{document_id}", headers=headers)
    assert polled.json()["document"]["processing_status"] == "ready"


@pytest.mark.asyncio
async def test_failed_extraction_is_recorded_on_the_document() -> None:
    user_id, headers = await create_test_user()
    workspace_id = await create_workspace(user_id)
    app = create_app()
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.post(
            "/v1/upload",
            headers=headers,
            data={"workspace_id": workspace_id},
            files={"file": ("broken.docx", b"not really a docx", "application/octet-stream")},
        )
        assert response.status_code == 201
        document_id = response.json()["document"]["id"]

        polled = await client.get(f"/v1/documents/{document_id}", headers=headers)
        document = polled.json()["document"]
        assert document["processing_status"] == "failed"
        assert document["extracted_text"] is None
        assert document["failure_reason"] == "Failed to extract text from DOCX"

        retry = await client.post(f"/v1/documents/{document_id}/process", headers=headers)
    assert retry.status_code == 422
    assert retry.json()["code"] == "PROCESSING_FAILED"


@pytest.mark.asyncio
async def test_oversize_upload_is_rejected_before_storage(monkeypatch) -> None:
    monkeypatch.setenv("UPLOAD_MAX_BYTES", "1024")
    get_settings.cache_clear()
    user_id, headers = await create_test_user()
    workspace_id = await create_workspace(user_id)
    storage = RecordingStorage()
    app = create_app()
    app.dependency_overrides[get_storage] = lambda: storage
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.post(
            "/v1/upload", headers=headers, data={"workspace_id": workspace_id}, files=_pdf_upload()
        )
    assert response.status_code == 400
    body = response.json()
    assert body == {
        "success": False,
        "error": body["error"],
        "code": "INVALID_FILE",
        "request_id": body["request_id"],
    }
    assert storage.puts == []


@pytest.mark.asyncio
async def test_unsupported_file_type_is_rejected_before_storage() -> None:
    user_id, headers = await create_test_user()
    workspace_id = await create_workspace(user_id)
    storage = RecordingStorage()
    app = create_app()
    app.dependency_overrides[get_storage] = lambda: storage
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.post(
            "/v1/upload",
            headers=headers,
            data={"workspace_id": workspace_id},
            files={"file": ("tool.exe", b"MZ\x90\x00", "application/x-msdownload")},
        )
    assert response.status_code == 400
    assert "not supported" in response.json()["error"]
    assert storage.puts == []


@pytest.mark.asyncio
async def test_upload_requires_workspace_membership() -> None:
    owner_id, _owner_headers = await create_test_user()
    _outsider_id, outsider_headers = await create_test_user()
    workspace_id = await create_workspace(owner_id)
    storage = RecordingStorage()
    app = create_app()
    app.dependency_overrides[get_storage] = lambda: storage
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.post(
            "/v1/upload", headers=outsider_headers, data={"workspace_id": workspace_id}, files=_pdf_upload()
        )
    assert response.status_code == 403
    assert response.json()["code"] == "ACCESS_DENIED"
    assert storage.puts == []


@pytest.mark.asyncio
async def test_upload_validates_required_fields_and_auth() -> None:
    user_id, headers = await create_test_user()
    workspace_id = await create_workspace(user_id)
    app = create_app()
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        missing_workspace = await client.post("/v1/upload", headers=headers, files=_pdf_upload())
        missing_file = await client.post("/v1/upload", headers=headers, data={"workspace_id": workspace_id})
        anonymous = await client.post("/v1/upload", data={"workspace_id": workspace_id}, files=_pdf_upload())
    assert missing_workspace.status_code == 400
    assert missing_workspace.json()["error"] == "workspace_id is required"
    assert missing_file.status_code == 400
    assert missing_file.json()["error"] == "file is required"
    assert anonymous.status_code == 401
    assert anonymous.headers["www-authenticate"] == "Bearer"


class UncleanableStorage(RecordingStorage):
    async def delete(self, path: str) -> None:
        raise StorageError(f"Failed to delete blob {path}")


@pytest.mark.asyncio
async def test_insert_failure_is_not_masked_by_blob_cleanup_failure(monkeypatch) -> None:
    user_id, headers = await create_test_user()
    workspace_id = await create_workspace(user_id)
    storage = UncleanableStorage()

    async def failing_insert(*_args, **_kwargs):
        raise OperationalError("INSERT INTO documents", {}, Exception("database is locked"))

    monkeypatch.setattr(documents_repo, "create_document", failing_insert)
    app = create_app()
    app.dependency_overrides[get_storage] = lambda: storage
    # ASGITransport re-raises the exception that reached the server error handler.
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        with pytest.raises(OperationalError):
            await client.post("/v1/upload", headers=headers, data={"workspace_id": workspace_id}, files=_pdf_upload())
    assert len(storage.puts) == 1
