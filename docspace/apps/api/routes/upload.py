from __future__ import annotations

from datetime import datetime, timezone
import logging
from uuid import uuid4

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from docspace.apps.api.deps import CurrentUser, get_current_user, get_db, get_storage
from docspace.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from docspace.apps.api.response import get_request_id, success_response
from docspace.core.errors import StorageError
from docspace.persistence.repos import documents as documents_repo
from docspace.services.access import require_workspace_member
from docspace.services.processing import schedule_processing
from docspace.services.storage import BlobStorage
from docspace.services.uploads import generate_blob_path, validate_upload


logger = logging.getLogger(__name__)
router = APIRouter(tags=["upload"], responses=DEFAULT_ERROR_RESPONSES)


def _missing_field(field: str) -> HTTPException:
    return HTTPException(
        status_code=400,
        detail={"code": "VALIDATION_ERROR", "message": f"{field} is required"},
    )


@router.post("/upload", status_code=201)
async def upload_document(
    request: Request,
    file: UploadFile | None = File(default=None),
    workspace_id: str | None = Form(default=None),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    storage: BlobStorage = Depends(get_storage),
) -> dict:
    if file is None or not file.filename:
        raise _missing_field("file")
    if not workspace_id:
        raise _missing_field("workspace_id")

    data = await file.read()
    # Validation happens before any storage write.
    upload = validate_upload(file.filename, file.content_type, len(data))
    await require_workspace_member(db, workspace_id, user.id)

    storage_path = generate_blob_path(workspace_id, upload.extension)
    try:
        storage_url = await storage.put(storage_path, data, upload.content_type)
    except StorageError as exc:
        logger.exception("upload_store_failed workspace_id=%s", workspace_id)
        raise HTTPException(
            status_code=500,
            detail={"code": "STORAGE_ERROR", "message": "Failed to store uploaded file"},
        ) from exc

    document_id = str(uuid4())
    try:
        document = await documents_repo.create_document(
            db,
            document_id=document_id,
            name=upload.filename,
            file_type=upload.file_type,
            storage_url=storage_url,
            storage_path=storage_path,
            metadata_json={
                "size": upload.size,
                "mime_type": upload.content_type,
                "uploaded_at": datetime.now(timezone.utc).isoformat(),
                "original_name": upload.filename,
            },
            user_id=user.id,
            workspace_id=workspace_id,
        )
        await db.commit()
    except SQLAlchemyError:
        await db.rollback()
        # Drop the blob so a failed insert leaves nothing behind; the DB error is what propagates.
        try:
            await storage.delete(storage_path)
        except StorageError:
            logger.warning("upload_blob_cleanup_failed path=%s", storage_path)
        raise

    request_id = get_request_id(request)
    job_id = await schedule_processing(document_id, request_id=request_id)
    logger.info(
        "document_uploaded document_id=%s workspace_id=%s type=%s size=%s job_id=%s",
        document_id,
        workspace_id,
        upload.file_type,
        upload.size,
        job_id,
    )
    return success_response(
        document={
            "id": document.id,
            "name": document.name,
            "type": document.type,
            "url": document.storage_url,
            "size": upload.size,
            "created_at": document.created_at.isoformat(),
            # Extraction runs after the response; clients poll GET /documents/{id}.
            "extracted_text": None,
            "processing_status": document.processing_status,
        }
    )
