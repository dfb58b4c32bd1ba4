from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal, TypedDict


@dataclass
class ConversationMessage:
    id: str
    role: Literal["user", "assistant", "system"]
    content: str
    timestamp: datetime
    # Cached token count; filled when the context is built.
    tokens: int | None = None
    model: str | None = None


@dataclass
class ConversationContext:
    document_id: str
    user_id: str
    messages: list[ConversationMessage] = field(default_factory=list)
    total_tokens: int = 0
    last_updated: datetime | None = None


class HistoryMessage(TypedDict):
    role: Literal["user", "assistant"]
    content: str


@dataclass
class ConversationSummary:
    message_count: int
    total_tokens: int
    first_message: datetime | None
    last_message: datetime | None
    topics: list[str]
