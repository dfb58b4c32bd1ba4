from __future__ import annotations

from dataclasses import dataclass
from typing import AsyncIterator, Protocol

from docspace.domain.conversation import HistoryMessage


@dataclass(frozen=True)
class GenerationConfig:
    temperature: float = 0.7
    top_p: float = 0.95
    top_k: int = 40
    max_output_tokens: int = 8192


@dataclass(frozen=True)
class ProviderResponse:
    text: str
    total_tokens: int = 0


@dataclass(frozen=True)
class ProviderChunk:
    text: str
    # Only the final chunk carries usage totals.
    total_tokens: int | None = None


class LLMProvider(Protocol):
    model: str

    async def generate(
        self,
        prompt: str,
        *,
        system_instruction: str | None = None,
        history: list[HistoryMessage] | None = None,
        config: GenerationConfig | None = None,
    ) -> ProviderResponse:
        ...

    def stream(
        self,
        prompt: str,
        *,
        system_instruction: str | None = None,
        history: list[HistoryMessage] | None = None,
        config: GenerationConfig | None = None,
    ) -> AsyncIterator[ProviderChunk]:
        ...

    async def count_tokens(self, text: str) -> int:
        ...

    async def extract_text_from_image(self, data: bytes, mime_type: str, prompt: str) -> str:
        ...
