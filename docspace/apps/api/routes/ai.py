from __future__ import annotations

from dataclasses import asdict
from datetime import datetime, timezone
import json
import logging
import time
from typing import Any, AsyncGenerator, Literal

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field, model_validator
from sqlalchemy.ext.asyncio import AsyncSession

from docspace.apps.api.deps import (
    CurrentUser,
    get_analyzer,
    get_conversation_manager,
    get_current_user,
    get_db,
    rate_limited_user,
)
from docspace.apps.api.openapi import AI_ERROR_RESPONSES
from docspace.apps.api.response import success_response
from docspace.apps.api.routes.documents import query_to_dict
from docspace.core.errors import AccessDeniedError, AIError, ConversationError, NotFoundError
from docspace.domain.analysis import SUMMARY_FORMATS, SUMMARY_STYLES, Entity, SummaryOptions
from docspace.domain.events import EventPayload
from docspace.domain.models import Document
from docspace.persistence.db import SessionLocal
from docspace.persistence.repos import queries as queries_repo
from docspace.services.access import require_document
from docspace.services.ai_client import cache_stats, get_usage_stats
from docspace.services.analyzer import DocumentAnalyzer, group_entities
from docspace.services.conversation import ConversationManager


logger = logging.getLogger(__name__)
router = APIRouter(prefix="/ai", tags=["ai"], responses=AI_ERROR_RESPONSES)

ENTITY_QUERY_LABEL = "Extract entities from document"
COMPARE_QUERY_PREFIX = "Compare documents: "
QUERY_HISTORY_LIMIT = 100
SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}
RATE_LIMIT_HEADER_PREFIX = "x-ratelimit-"


def summary_query_label(summary_format: str, summary_style: str) -> str:
    return f"Generate {summary_format} summary in {summary_style} format"


def compare_query_label(first_name: str, second_name: str) -> str:
    return f'{COMPARE_QUERY_PREFIX}"{first_name}" vs "{second_name}"'


SUMMARY_QUERY_LABELS = tuple(
    summary_query_label(summary_format, summary_style)
    for summary_format in SUMMARY_FORMATS
    for summary_style in SUMMARY_STYLES
)


class QueryRequest(BaseModel):
    document_id: str = Field(min_length=1)
    query: str = Field(min_length=1, max_length=10_000)

    @model_validator(mode="after")
    def _strip_query(self) -> "QueryRequest":
        if not self.query.strip():
            raise ValueError("query must not be blank")
        return self


class QuerySimpleRequest(QueryRequest):
    extract_structured: bool = False


class SummaryRequest(SummaryOptions):
    document_id: str = Field(min_length=1)


class ExtractRequest(BaseModel):
    document_id: str = Field(min_length=1)


class CompareRequest(BaseModel):
    document1_id: str = Field(min_length=1)
    document2_id: str = Field(min_length=1)

    @model_validator(mode="after")
    def _distinct_documents(self) -> "CompareRequest":
        if self.document1_id == self.document2_id:
            raise ValueError("Please select two different documents to compare")
        return self


def _sse_message(payload: EventPayload) -> str:
    # SSE framing invariants: event name is "message" and data is a compact JSON line.
    data = json.dumps(payload, ensure_ascii=False, separators=(",", ":"))
    return f"event: message\ndata: {data}\n\n"


def _require_text(document: Document) -> str:
    # Every AI feature is gated on finished extraction.
    if not (document.extracted_text or "").strip():
        raise HTTPException(
            status_code=400,
            detail={
                "code": "TEXT_NOT_EXTRACTED",
                "message": "Document text has not been extracted yet. Please wait for processing to complete.",
                "processing_status": document.processing_status,
            },
        )
    return document.extracted_text


def _load_stored_response(raw: str) -> Any:
    # Structured results are stored as JSON; older rows may hold plain text.
    try:
        return json.loads(raw)
    except ValueError:
        return raw


def _entity_stats(entities: list[Entity], grouped: dict[str, list[Entity]]) -> dict[str, Any]:
    average = sum(entity.confidence for entity in entities) / len(entities) if entities else 0.0
    return {
        "total": len(entities),
        "by_type": {entity_type: len(items) for entity_type, items in grouped.items()},
        "average_confidence": round(average, 2),
    }


@router.post("/query")
async def query_document(
    payload: QueryRequest,
    http_request: Request,
    response: Response,
    user: CurrentUser = Depends(rate_limited_user),
    db: AsyncSession = Depends(get_db),
    analyzer: DocumentAnalyzer = Depends(get_analyzer),
    conversations: ConversationManager = Depends(get_conversation_manager),
) -> StreamingResponse:
    # Access, gating and history all resolve before the stream opens so they surface as plain HTTP errors.
    document = await require_document(db, payload.document_id, user.id)
    document_text = _require_text(document)
    question = payload.query.strip()
    context = await conversations.get_context(db, document.id, user.id)
    history = await conversations.prepare_history(context, document_text)
    stream = analyzer.analyze_document_stream(document_text, question, history=history)
    document_id = document.id
    started = time.monotonic()

    async def event_stream() -> AsyncGenerator[str, None]:
        yield _sse_message({"type": "connected", "data": {"message": "Stream connected"}})
        try:
            async for chunk in stream:
                if await http_request.is_disconnected():
                    # Stop generating once the client goes away; nothing is persisted.
                    logger.info("ai_query_disconnected document_id=%s user_id=%s", document_id, user.id)
                    await stream.aclose()
                    return
                yield _sse_message({"type": "chunk", "data": {"content": chunk}})
        except AIError as exc:
            yield _sse_message({"type": "error", "data": {"error": exc.message, "code": exc.code}})
            return
        except Exception:  # noqa: BLE001 - the stream already started; report in-band
            logger.exception("ai_query_stream_failed document_id=%s", document_id)
            yield _sse_message(
                {"type": "error", "data": {"error": "Failed to generate response", "code": "STREAM_ERROR"}}
            )
            return

        # A fresh session: the request-scoped one may already be closed while the body streams.
        async with SessionLocal() as session:
            try:
                row = await conversations.add_message(
                    session,
                    document_id,
                    user.id,
                    question,
                    stream.response,
                    stream.model,
                )
                await session.commit()
            except ConversationError as exc:
                await session.rollback()
                yield _sse_message({"type": "error", "data": {"error": exc.message, "code": exc.code}})
                return

        processing_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            "ai_query_complete document_id=%s query_id=%s processing_ms=%s",
            document_id,
            row.id,
            processing_ms,
        )
        yield _sse_message(
            {
                "type": "done",
                "data": {
                    "query_id": row.id,
                    "metadata": {
                        "processing_time": processing_ms,
                        "model": stream.model,
                        "timestamp": datetime.now(timezone.utc).isoformat(),
                    },
                },
            }
        )

    # Rate-limit headers land on the injected response, which a returned StreamingResponse replaces.
    headers = dict(SSE_HEADERS)
    for name, value in response.headers.items():
        if name.lower().startswith(RATE_LIMIT_HEADER_PREFIX):
            headers[name] = value
    return StreamingResponse(event_stream(), headers=headers, media_type="text/event-stream")


@router.post("/query-simple")
async def query_document_simple(
    payload: QuerySimpleRequest,
    user: CurrentUser = Depends(rate_limited_user),
    db: AsyncSession = Depends(get_db),
    analyzer: DocumentAnalyzer = Depends(get_analyzer),
    conversations: ConversationManager = Depends(get_conversation_manager),
) -> dict:
    document = await require_document(db, payload.document_id, user.id)
    document_text = _require_text(document)
    question = payload.query.strip()
    context = await conversations.get_context(db, document.id, user.id)
    history = await conversations.prepare_history(context, document_text)
    result = await analyzer.analyze_document(
        document_text,
        question,
        history=history,
        extract_structured=payload.extract_structured,
    )
    row = await conversations.add_message(db, document.id, user.id, question, result.answer, result.model)
    await db.commit()
    logger.info("ai_query_simple_complete document_id=%s query_id=%s", document.id, row.id)
    return success_response(**result.model_dump(), query_id=row.id)


@router.get("/query")
async def query_history(
    document_id: str = Query(min_length=1),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> dict:
    await require_document(db, document_id, user.id)
    rows = await queries_repo.list_for_conversation(db, document_id, user.id)
    return success_response(queries=[query_to_dict(row) for row in rows])


@router.delete("/query")
async def delete_query(
    query_id: str = Query(min_length=1),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> dict:
    row = await queries_repo.get_query(db, query_id)
    if row is None:
        raise NotFoundError("Query not found")
    if row.user_id != user.id:
        raise AccessDeniedError("You can only delete your own queries")
    await queries_repo.delete_query(db, row)
    await db.commit()
    return success_response(message="Query deleted successfully")


@router.post("/summary")
async def create_summary(
    payload: SummaryRequest,
    user: CurrentUser = Depends(rate_limited_user),
    db: AsyncSession = Depends(get_db),
    analyzer: DocumentAnalyzer = Depends(get_analyzer),
) -> dict:
    document = await require_document(db, payload.document_id, user.id)
    document_text = _require_text(document)
    options = SummaryOptions.model_validate(payload.model_dump(exclude={"document_id"}))
    summary = await analyzer.generate_summary(document_text, options)
    row = await queries_repo.add_query(
        db,
        document_id=document.id,
        user_id=user.id,
        query=summary_query_label(options.format, options.style),
        response=summary.model_dump_json(),
        model=analyzer.model,
    )
    await db.commit()
    return success_response(summary=summary, query_id=row.id)


@router.get("/summary")
async def latest_summary(
    document_id: str = Query(min_length=1),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> dict:
    await require_document(db, document_id, user.id)
    row = await queries_repo.find_latest(db, document_id, user.id, query_in=SUMMARY_QUERY_LABELS)
    if row is None:
        raise NotFoundError("No summary found for this document")
    return success_response(
        summary=_load_stored_response(row.response),
        query_id=row.id,
        created_at=row.created_at.isoformat(),
    )


@router.post("/extract")
async def extract_entities(
    payload: ExtractRequest,
    user: CurrentUser = Depends(rate_limited_user),
    db: AsyncSession = Depends(get_db),
    analyzer: DocumentAnalyzer = Depends(get_analyzer),
) -> dict:
    document = await require_document(db, payload.document_id, user.id)
    document_text = _require_text(document)
    entities = await analyzer.extract_entities(document_text)
    grouped = group_entities(entities)
    result = {
        "entities": [entity.model_dump() for entity in entities],
        "entities_by_type": {
            entity_type: [entity.model_dump() for entity in items] for entity_type, items in grouped.items()
        },
        "stats": _entity_stats(entities, grouped),
    }
    row = await queries_repo.add_query(
        db,
        document_id=document.id,
        user_id=user.id,
        query=ENTITY_QUERY_LABEL,
        response=json.dumps(result),
        model=analyzer.model,
    )
    await db.commit()
    return success_response(**result, query_id=row.id)


@router.get("/extract")
async def latest_entities(
    document_id: str = Query(min_length=1),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> dict:
    await require_document(db, document_id, user.id)
    row = await queries_repo.find_latest(db, document_id, user.id, query_equals=ENTITY_QUERY_LABEL)
    if row is None:
        raise NotFoundError("No extracted entities found for this document")
    stored = _load_stored_response(row.response)
    if not isinstance(stored, dict):
        stored = {"entities": [], "entities_by_type": {}, "stats": None}
    return success_response(**stored, query_id=row.id, created_at=row.created_at.isoformat())


@router.post("/compare")
async def compare_documents(
    payload: CompareRequest,
    user: CurrentUser = Depends(rate_limited_user),
    db: AsyncSession = Depends(get_db),
    analyzer: DocumentAnalyzer = Depends(get_analyzer),
) -> dict:
    first = await require_document(db, payload.document1_id, user.id)
    second = await require_document(db, payload.document2_id, user.id)
    first_text = _require_text(first)
    second_text = _require_text(second)
    comparison = await analyzer.compare_documents(first_text, second_text)
    label = compare_query_label(first.name, second.name)
    stored = comparison.model_dump_json()
    # Record the comparison in both documents' histories.
    for document in (first, second):
        await queries_repo.add_query(
            db,
            document_id=document.id,
            user_id=user.id,
            query=label,
            response=stored,
            model=analyzer.model,
        )
    await db.commit()
    return success_response(
        comparison=comparison,
        documents=[{"id": first.id, "name": first.name}, {"id": second.id, "name": second.name}],
    )


@router.get("/compare")
async def latest_comparison(
    document1_id: str = Query(min_length=1),
    document2_id: str = Query(min_length=1),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> dict:
    first = await require_document(db, document1_id, user.id)
    second = await require_document(db, document2_id, user.id)
    documents = [{"id": first.id, "name": first.name}, {"id": second.id, "name": second.name}]
    row = await queries_repo.find_latest(
        db,
        first.id,
        user.id,
        query_startswith=COMPARE_QUERY_PREFIX,
        query_contains=f'"{second.name}"',
    )
    stored = _load_stored_response(row.response) if row is not None else None
    if not isinstance(stored, dict):
        return success_response(has_comparison=False, comparison=None, documents=documents)
    return success_response(
        has_comparison=True,
        comparison=stored,
        documents=documents,
        query_id=row.id,
        created_at=row.created_at.isoformat(),
    )


@router.get("/queries/history")
async def user_query_history(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> dict:
    rows = await queries_repo.list_user_history(db, user.id, limit=QUERY_HISTORY_LIMIT)
    return success_response(
        queries=[
            {**query_to_dict(row), "document_name": document.name, "document_type": document.type}
            for row, document in rows
        ]
    )


@router.get("/conversations/{document_id}/export")
async def export_conversation(
    document_id: str,
    format: Literal["json", "markdown"] = Query(default="json"),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    conversations: ConversationManager = Depends(get_conversation_manager),
) -> Response:
    await require_document(db, document_id, user.id)
    content = await conversations.export_conversation(db, document_id, user.id, format)
    extension, media_type = ("json", "application/json") if format == "json" else ("md", "text/markdown")
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="conversation-{document_id}.{extension}"'},
    )


@router.get("/conversations/{document_id}/summary")
async def conversation_summary(
    document_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    conversations: ConversationManager = Depends(get_conversation_manager),
) -> dict:
    await require_document(db, document_id, user.id)
    summary = await conversations.get_conversation_summary(db, document_id, user.id)
    return success_response(summary=asdict(summary))


@router.delete("/conversations/{document_id}")
async def clear_conversation(
    document_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    conversations: ConversationManager = Depends(get_conversation_manager),
) -> dict:
    await require_document(db, document_id, user.id)
    deleted = await conversations.clear_context(db, document_id, user.id)
    await db.commit()
    logger.info("conversation_cleared document_id=%s user_id=%s deleted=%s", document_id, user.id, deleted)
    return success_response(deleted=deleted)


@router.get("/usage")
async def usage(user: CurrentUser = Depends(get_current_user)) -> dict:
    # Process-local counters; each API instance reports its own traffic.
    return success_response(usage=get_usage_stats(), cache=cache_stats())
