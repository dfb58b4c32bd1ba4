from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from docspace.apps.api.deps import (
    CurrentUser,
    get_ai_client,
    get_current_user,
    get_db,
    get_storage,
)
from docspace.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from docspace.apps.api.response import success_response
from docspace.core.errors import DocspaceError, StorageError
from docspace.domain.models import AIQuery, Document
from docspace.persistence.repos import documents as documents_repo
from docspace.persistence.repos import queries as queries_repo
from docspace.persistence.repos import workspaces as workspaces_repo
from docspace.services.access import require_document, require_workspace_member
from docspace.services.ai_client import GeminiClient
from docspace.services.processing import process_document
from docspace.services.storage import BlobStorage


logger = logging.getLogger(__name__)
router = APIRouter(prefix="/documents", tags=["documents"], responses=DEFAULT_ERROR_RESPONSES)


class DocumentResponse(BaseModel):
    id: str
    name: str
    type: str
    url: str
    tags: list[str]
    metadata: dict[str, Any]
    extracted_text: str | None
    processing_status: str
    failure_reason: str | None
    user_id: str
    workspace_id: str
    created_at: str
    updated_at: str


class DocumentUpdateRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    tags: list[str] | None = Field(default=None, max_length=50)

    model_config = {"extra": "forbid"}


def _to_response(doc: Document, *, include_text: bool = True) -> DocumentResponse:
    # List views drop the text body; clients fetch it per document.
    return DocumentResponse(
        id=doc.id,
        name=doc.name,
        type=doc.type,
        url=doc.storage_url,
        tags=list(doc.tags or []),
        metadata=dict(doc.metadata_json or {}),
        extracted_text=doc.extracted_text if include_text else None,
        processing_status=doc.processing_status,
        failure_reason=doc.failure_reason,
        user_id=doc.user_id,
        workspace_id=doc.workspace_id,
        created_at=doc.created_at.isoformat(),
        updated_at=doc.updated_at.isoformat(),
    )


def query_to_dict(row: AIQuery) -> dict[str, Any]:
    return {
        "id": row.id,
        "document_id": row.document_id,
        "user_id": row.user_id,
        "query": row.query,
        "response": row.response,
        "model": row.model,
        "created_at": row.created_at.isoformat(),
    }


@router.get("")
async def list_documents(
    workspace_id: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> dict:
    if workspace_id:
        await require_workspace_member(db, workspace_id, user.id)
        workspace_ids = [workspace_id]
    else:
        workspace_ids = await workspaces_repo.list_user_workspace_ids(db, user.id)
    documents, total = await documents_repo.list_documents(db, workspace_ids, limit=limit, offset=offset)
    return success_response(
        documents=[_to_response(doc, include_text=False) for doc in documents],
        total=total,
        limit=limit,
        offset=offset,
        has_more=offset + len(documents) < total,
    )


@router.get("/{document_id}")
async def get_document(
    document_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> dict:
    document = await require_document(db, document_id, user.id)
    return success_response(document=_to_response(document))


@router.patch("/{document_id}")
async def update_document(
    document_id: str,
    payload: DocumentUpdateRequest,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> dict:
    document = await require_document(db, document_id, user.id, modify=True)
    tags = [tag.strip() for tag in payload.tags if tag.strip()] if payload.tags is not None else None
    await documents_repo.update_document(
        db,
        document,
        name=payload.name.strip() if payload.name else None,
        tags=tags,
    )
    await db.commit()
    await db.refresh(document)
    return success_response(document=_to_response(document))


@router.delete("/{document_id}")
async def delete_document(
    document_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    storage: BlobStorage = Depends(get_storage),
) -> dict:
    document = await require_document(db, document_id, user.id, modify=True)
    storage_path = document.storage_path
    await documents_repo.delete_document(db, document)
    await db.commit()
    try:
        await storage.delete(storage_path)
    except StorageError:
        # The row is gone; an orphaned blob is logged for cleanup rather than failing the delete.
        logger.warning("blob_delete_failed document_id=%s path=%s", document_id, storage_path)
    logger.info("document_deleted document_id=%s user_id=%s", document_id, user.id)
    return success_response(message="Document deleted successfully")


@router.get("/{document_id}/download")
async def download_document(
    document_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    storage: BlobStorage = Depends(get_storage),
) -> Response:
    document = await require_document(db, document_id, user.id)
    try:
        found = await storage.exists(document.storage_path)
        data = await storage.get(document.storage_path) if found else None
    except StorageError as exc:
        logger.exception("download_read_failed document_id=%s path=%s", document_id, document.storage_path)
        raise HTTPException(
            status_code=500,
            detail={"code": "STORAGE_ERROR", "message": "Failed to read stored file"},
        ) from exc
    if data is None:
        raise HTTPException(
            status_code=404,
            detail={"code": "FILE_NOT_FOUND", "message": "Stored file is no longer available"},
        )
    metadata = document.metadata_json or {}
    filename = metadata.get("original_name") or document.name
    return Response(
        content=data,
        media_type=metadata.get("mime_type") or "application/octet-stream",
        headers={"Content-Disposition": f"attachment; filename*=UTF-8''{quote(filename)}"},
    )


@router.get("/{document_id}/queries")
async def list_document_queries(
    document_id: str,
    limit: int = Query(default=50, ge=1, le=200),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> dict:
    await require_document(db, document_id, user.id)
    rows = await queries_repo.list_for_document(db, document_id, limit=limit)
    return success_response(queries=[query_to_dict(row) for row in rows])


@router.post("/{document_id}/process")
async def reprocess_document(
    document_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    storage: BlobStorage = Depends(get_storage),
    ai_client: GeminiClient = Depends(get_ai_client),
) -> dict:
    document = await require_document(db, document_id, user.id, modify=True)
    await documents_repo.mark_processing(db, document)
    await db.commit()
    logger.info("reprocess_requested document_id=%s user_id=%s", document_id, user.id)
    try:
        await process_document(document_id, ai_client=ai_client, storage=storage)
    except DocspaceError as exc:
        await db.refresh(document)
        raise HTTPException(
            status_code=422,
            detail={
                "code": "PROCESSING_FAILED",
                "message": document.failure_reason or str(exc),
                "document_id": document_id,
            },
        ) from exc
    await db.refresh(document)
    return success_response(document=_to_response(document))
