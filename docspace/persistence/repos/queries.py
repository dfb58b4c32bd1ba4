from __future__ import annotations

from typing import Sequence
from uuid import uuid4

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from docspace.domain.models import AIQuery, Document


async def add_query(
    session: AsyncSession,
    *,
    document_id: str,
    user_id: str,
    query: str,
    response: str,
    model: str,
) -> AIQuery:
    row = AIQuery(
        id=str(uuid4()),
        document_id=document_id,
        user_id=user_id,
        query=query,
        response=response,
        model=model,
    )
    session.add(row)
    await session.flush()
    return row


async def get_query(session: AsyncSession, query_id: str) -> AIQuery | None:
    result = await session.execute(select(AIQuery).where(AIQuery.id == query_id))
    return result.scalar_one_or_none()


async def list_recent_for_conversation(
    session: AsyncSession, document_id: str, user_id: str, *, limit: int
) -> list[AIQuery]:
    # Newest N rows, returned oldest-first for chronological replay.
    result = await session.execute(
        select(AIQuery)
        .where(AIQuery.document_id == document_id, AIQuery.user_id == user_id)
        .order_by(AIQuery.created_at.desc())
        .limit(limit)
    )
    rows = list(result.scalars().all())
    rows.reverse()
    return rows


async def list_for_conversation(session: AsyncSession, document_id: str, user_id: str) -> list[AIQuery]:
    result = await session.execute(
        select(AIQuery)
        .where(AIQuery.document_id == document_id, AIQuery.user_id == user_id)
        .order_by(AIQuery.created_at.asc())
    )
    return list(result.scalars().all())


async def list_for_document(session: AsyncSession, document_id: str, *, limit: int = 50) -> list[AIQuery]:
    result = await session.execute(
        select(AIQuery)
        .where(AIQuery.document_id == document_id)
        .order_by(AIQuery.created_at.desc())
        .limit(limit)
    )
    return list(result.scalars().all())


async def find_latest(
    session: AsyncSession,
    document_id: str,
    user_id: str,
    *,
    query_equals: str | None = None,
    query_in: Sequence[str] | None = None,
    query_startswith: str | None = None,
    query_contains: str | None = None,
) -> AIQuery | None:
    # Label matches escape LIKE wildcards so document names are taken literally.
    stmt = select(AIQuery).where(AIQuery.document_id == document_id, AIQuery.user_id == user_id)
    if query_equals is not None:
        stmt = stmt.where(AIQuery.query == query_equals)
    if query_in is not None:
        stmt = stmt.where(AIQuery.query.in_(list(query_in)))
    if query_startswith is not None:
        stmt = stmt.where(AIQuery.query.startswith(query_startswith, autoescape=True))
    if query_contains is not None:
        stmt = stmt.where(AIQuery.query.contains(query_contains, autoescape=True))
    result = await session.execute(stmt.order_by(AIQuery.created_at.desc()).limit(1))
    return result.scalar_one_or_none()


async def list_user_history(
    session: AsyncSession, user_id: str, *, limit: int = 100
) -> list[tuple[AIQuery, Document]]:
    result = await session.execute(
        select(AIQuery, Document)
        .join(Document, Document.id == AIQuery.document_id)
        .where(AIQuery.user_id == user_id)
        .order_by(AIQuery.created_at.desc())
        .limit(limit)
    )
    return [(row, doc) for row, doc in result.all()]


async def list_recent_in_workspaces(
    session: AsyncSession, workspace_ids: list[str], *, limit: int
) -> list[tuple[AIQuery, Document]]:
    if not workspace_ids:
        return []
    result = await session.execute(
        select(AIQuery, Document)
        .join(Document, Document.id == AIQuery.document_id)
        .where(Document.workspace_id.in_(workspace_ids))
        .order_by(AIQuery.created_at.desc())
        .limit(limit)
    )
    return [(row, doc) for row, doc in result.all()]


async def count_in_workspaces(session: AsyncSession, workspace_ids: list[str]) -> int:
    if not workspace_ids:
        return 0
    result = await session.execute(
        select(func.count())
        .select_from(AIQuery)
        .join(Document, Document.id == AIQuery.document_id)
        .where(Document.workspace_id.in_(workspace_ids))
    )
    return int(result.scalar() or 0)


async def delete_query(session: AsyncSession, row: AIQuery) -> None:
    await session.delete(row)
    await session.flush()


async def delete_for_conversation(session: AsyncSession, document_id: str, user_id: str) -> int:
    result = await session.execute(
        delete(AIQuery).where(AIQuery.document_id == document_id, AIQuery.user_id == user_id)
    )
    return int(result.rowcount or 0)
