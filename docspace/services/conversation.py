from __future__ import annotations

from collections import Counter
from dataclasses import asdict
from datetime import datetime, timezone
import json
import logging
import re
from typing import Literal

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from docspace.core.config import MAX_CONTEXT_TOKENS
from docspace.core.errors import ConversationError
from docspace.domain.conversation import (
    ConversationContext,
    ConversationMessage,
    ConversationSummary,
    HistoryMessage,
)
from docspace.domain.models import AIQuery
from docspace.persistence.repos import queries as queries_repo
from docspace.services.ai_client import GeminiClient


logger = logging.getLogger(__name__)

CONTEXT_QUERY_LIMIT = 50
TRUNCATED_MESSAGE_CHARS = 500
TOPIC_LIMIT = 5
STOP_WORDS = frozenset(
    {
        "what", "how", "where", "when", "why", "who", "the", "is", "are", "and",
        "or", "but", "in", "on", "at", "to", "for", "of", "with", "a", "an",
        "this", "that", "these", "those", "can", "could", "would", "should",
        "will", "shall",
    }
)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _history_role(role: str) -> Literal["user", "assistant"]:
    return "assistant" if role == "assistant" else "user"


def extract_topics(texts: list[str], limit: int = TOPIC_LIMIT) -> list[str]:
    """Return the most frequent non-stop-words longer than three characters."""
    words = re.split(r"\W+", " ".join(texts).lower())
    counts = Counter(word for word in words if len(word) > 3 and word not in STOP_WORDS)
    # most_common keeps first-seen order for ties.
    return [word for word, _count in counts.most_common(limit)]


class ConversationManager:
    """Rebuilds per-document chat history from the query log and fits it to the context budget."""

    def __init__(self, ai_client: GeminiClient, *, max_context_tokens: int = MAX_CONTEXT_TOKENS) -> None:
        self._ai = ai_client
        self._max_context_tokens = max_context_tokens

    async def get_context(self, session: AsyncSession, document_id: str, user_id: str) -> ConversationContext:
        try:
            rows = await queries_repo.list_recent_for_conversation(
                session, document_id, user_id, limit=CONTEXT_QUERY_LIMIT
            )
        except SQLAlchemyError as exc:
            logger.exception("conversation_context_failed document_id=%s", document_id)
            raise ConversationError("Failed to retrieve conversation context", "CONTEXT_ERROR") from exc

        messages: list[ConversationMessage] = []
        total_tokens = 0
        for row in rows:
            user_tokens = await self._ai.count_tokens(row.query)
            messages.append(
                ConversationMessage(
                    id=f"{row.id}-user",
                    role="user",
                    content=row.query,
                    timestamp=row.created_at,
                    tokens=user_tokens,
                )
            )
            assistant_tokens = await self._ai.count_tokens(row.response)
            messages.append(
                ConversationMessage(
                    id=f"{row.id}-assistant",
                    role="assistant",
                    content=row.response,
                    timestamp=row.created_at,
                    tokens=assistant_tokens,
                    model=row.model,
                )
            )
            total_tokens += user_tokens + assistant_tokens

        return ConversationContext(
            document_id=document_id,
            user_id=user_id,
            messages=messages,
            total_tokens=total_tokens,
            last_updated=rows[-1].created_at if rows else _utc_now(),
        )

    async def add_message(
        self,
        session: AsyncSession,
        document_id: str,
        user_id: str,
        query: str,
        response: str,
        model: str,
    ) -> AIQuery:
        try:
            return await queries_repo.add_query(
                session,
                document_id=document_id,
                user_id=user_id,
                query=query,
                response=response,
                model=model,
            )
        except SQLAlchemyError as exc:
            logger.exception("conversation_save_failed document_id=%s", document_id)
            raise ConversationError("Failed to save conversation message", "SAVE_ERROR") from exc

    async def prepare_history(
        self, context: ConversationContext, document_text: str | None = None
    ) -> list[HistoryMessage]:
        available = self._max_context_tokens
        if document_text:
            available -= await self._ai.count_tokens(document_text)

        if context.total_tokens <= available:
            return [
                HistoryMessage(role=_history_role(msg.role), content=msg.content)
                for msg in context.messages
            ]
        return await self._trim(context, available)

    async def _trim(self, context: ConversationContext, target_tokens: int) -> list[HistoryMessage]:
        # Newest first; equality with the budget still fits.
        trimmed: list[HistoryMessage] = []
        current = 0
        for message in reversed(context.messages):
            tokens = message.tokens if message.tokens is not None else await self._ai.count_tokens(message.content)
            if current + tokens > target_tokens:
                if not trimmed:
                    # The latest turn is always kept, truncated, even past a tiny budget.
                    trimmed.append(
                        HistoryMessage(
                            role=_history_role(message.role),
                            content=message.content[:TRUNCATED_MESSAGE_CHARS] + "...",
                        )
                    )
                break
            trimmed.append(HistoryMessage(role=_history_role(message.role), content=message.content))
            current += tokens
        trimmed.reverse()
        logger.info(
            "conversation_trimmed document_id=%s kept=%s of=%s",
            context.document_id,
            len(trimmed),
            len(context.messages),
        )
        return trimmed

    async def clear_context(self, session: AsyncSession, document_id: str, user_id: str) -> int:
        try:
            return await queries_repo.delete_for_conversation(session, document_id, user_id)
        except SQLAlchemyError as exc:
            logger.exception("conversation_clear_failed document_id=%s", document_id)
            raise ConversationError("Failed to clear conversation context", "CLEAR_ERROR") from exc

    async def get_conversation_summary(
        self, session: AsyncSession, document_id: str, user_id: str
    ) -> ConversationSummary:
        try:
            rows = await queries_repo.list_for_conversation(session, document_id, user_id)
        except SQLAlchemyError as exc:
            logger.exception("conversation_summary_failed document_id=%s", document_id)
            raise ConversationError("Failed to summarize conversation", "SUMMARY_ERROR") from exc
        if not rows:
            return ConversationSummary(
                message_count=0, total_tokens=0, first_message=None, last_message=None, topics=[]
            )
        total_tokens = 0
        for row in rows:
            total_tokens += await self._ai.count_tokens(row.query)
        return ConversationSummary(
            # Each row is one user turn plus one assistant turn.
            message_count=len(rows) * 2,
            total_tokens=total_tokens,
            first_message=rows[0].created_at,
            last_message=rows[-1].created_at,
            topics=extract_topics([row.query for row in rows]),
        )

    async def export_conversation(
        self,
        session: AsyncSession,
        document_id: str,
        user_id: str,
        fmt: Literal["json", "markdown"] = "json",
    ) -> str:
        context = await self.get_context(session, document_id, user_id)
        if fmt == "json":
            return json.dumps(asdict(context), default=_json_default, indent=2)
        return render_markdown(context)


def _json_default(value: object) -> str:
    if isinstance(value, datetime):
        return value.isoformat()
    raise TypeError(f"Unserializable value: {type(value).__name__}")


def _format_ts(value: datetime | None) -> str:
    if value is None:
        return ""
    return value.strftime("%Y-%m-%d %H:%M:%S")


def render_markdown(context: ConversationContext) -> str:
    lines = [
        "# Conversation History",
        "",
        f"**Document ID:** {context.document_id}",
        f"**Total Messages:** {len(context.messages)}",
        f"**Last Updated:** {_format_ts(context.last_updated)}",
        "",
        "---",
        "",
    ]
    for message in context.messages:
        speaker = "**You**" if message.role == "user" else "**Assistant**"
        lines.extend(
            [
                f"### {speaker} - {_format_ts(message.timestamp)}",
                "",
                message.content,
                "",
                "---",
                "",
            ]
        )
    return "\n".join(lines)
