from __future__ import annotations

from typing import Any

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from docspace.domain.models import AIQuery, Document


async def create_document(
    session: AsyncSession,
    *,
    document_id: str,
    name: str,
    file_type: str,
    storage_url: str,
    storage_path: str,
    metadata_json: dict[str, Any],
    user_id: str,
    workspace_id: str,
) -> Document:
    # Text stays null until background extraction writes it.
    doc = Document(
        id=document_id,
        name=name,
        type=file_type,
        storage_url=storage_url,
        storage_path=storage_path,
        extracted_text=None,
        tags=[],
        metadata_json=metadata_json,
        processing_status="processing",
        user_id=user_id,
        workspace_id=workspace_id,
    )
    session.add(doc)
    await session.flush()
    return doc


async def get_document(session: AsyncSession, document_id: str) -> Document | None:
    # Access checks are enforced by callers.
    result = await session.execute(select(Document).where(Document.id == document_id))
    return result.scalar_one_or_none()


async def list_documents(
    session: AsyncSession,
    workspace_ids: list[str],
    *,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[Document], int]:
    if not workspace_ids:
        return [], 0
    scope = Document.workspace_id.in_(workspace_ids)
    total = await session.execute(select(func.count()).select_from(Document).where(scope))
    result = await session.execute(
        select(Document)
        .where(scope)
        .order_by(Document.created_at.desc(), Document.id)
        .limit(limit)
        .offset(offset)
    )
    return list(result.scalars().all()), int(total.scalar() or 0)


async def list_recent_documents(
    session: AsyncSession, workspace_ids: list[str], *, limit: int
) -> list[Document]:
    documents, _total = await list_documents(session, workspace_ids, limit=limit)
    return documents


async def storage_bytes(session: AsyncSession, workspace_ids: list[str]) -> int:
    # Sizes live in metadata JSON, so sum client-side across backends.
    if not workspace_ids:
        return 0
    result = await session.execute(
        select(Document.metadata_json).where(Document.workspace_id.in_(workspace_ids))
    )
    total = 0
    for metadata in result.scalars().all():
        size = (metadata or {}).get("size")
        if isinstance(size, (int, float)):
            total += int(size)
    return total


async def mark_ready(
    session: AsyncSession,
    document: Document,
    *,
    extracted_text: str,
    metadata_updates: dict[str, Any],
) -> Document:
    # Reassign the dict so JSON column changes are detected.
    merged = dict(document.metadata_json or {})
    merged.update(metadata_updates)
    document.extracted_text = extracted_text
    document.metadata_json = merged
    document.processing_status = "ready"
    document.failure_reason = None
    await session.flush()
    return document


async def mark_failed(session: AsyncSession, document: Document, *, failure_reason: str) -> Document:
    document.processing_status = "failed"
    document.failure_reason = failure_reason
    await session.flush()
    return document


async def mark_processing(session: AsyncSession, document: Document) -> Document:
    document.processing_status = "processing"
    document.failure_reason = None
    await session.flush()
    return document


async def update_document(
    session: AsyncSession,
    document: Document,
    *,
    name: str | None = None,
    tags: list[str] | None = None,
) -> Document:
    if name is not None:
        document.name = name
    if tags is not None:
        document.tags = list(tags)
    await session.flush()
    return document


async def delete_document(session: AsyncSession, document: Document) -> None:
    # Remove queries explicitly; SQLite does not enforce ON DELETE CASCADE by default.
    await session.execute(delete(AIQuery).where(AIQuery.document_id == document.id))
    await session.delete(document)
    await session.flush()


async def count_documents(session: AsyncSession, workspace_ids: list[str]) -> int:
    if not workspace_ids:
        return 0
    result = await session.execute(
        select(func.count()).select_from(Document).where(Document.workspace_id.in_(workspace_ids))
    )
    return int(result.scalar() or 0)
