from __future__ import annotations

import json
import math
from typing import AsyncIterator, Callable

from docspace.domain.conversation import HistoryMessage
from docspace.providers.llm.base import GenerationConfig, ProviderChunk, ProviderResponse


_ENTITIES = [
    {"type": "organization", "value": "Acme Corp", "context": "Acme Corp signed the agreement", "confidence": 0.9},
    {"type": "date", "value": "2024-01-15", "context": "effective 2024-01-15", "confidence": 0.8},
]
_SUMMARY = {
    "summary": "This is a fake summary.",
    "keyInsights": ["Fake insight"],
    "actionItems": [],
}
_COMPARISON = {
    "similarities": ["Both are fake documents"],
    "differences": [],
    "conflicts": [],
    "overallSimilarity": 0.8,
    "analysis": "The documents are broadly similar.",
}


def _canned_reply(prompt: str) -> str:
    # Mirror the reply shape each analyzer prompt asks for so offline runs parse cleanly.
    if "entities" in prompt and "JSON array" in prompt:
        return json.dumps(_ENTITIES)
    if "overallSimilarity" in prompt:
        return json.dumps(_COMPARISON)
    if "keyInsights" in prompt:
        return json.dumps(_SUMMARY)
    return "This is a fake response."


class FakeLLMProvider:
    model = "fake-model"

    def __init__(
        self,
        response: str | None = None,
        responder: Callable[[str], str] | None = None,
        ocr_text: str = "Fake OCR text.",
    ) -> None:
        # Deterministic replies keep tests stable without external calls.
        self._response = response
        self._responder = responder
        self._ocr_text = ocr_text
        self.prompts: list[str] = []

    def _reply(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if self._responder is not None:
            return self._responder(prompt)
        if self._response is not None:
            return self._response
        return _canned_reply(prompt)

    async def generate(
        self,
        prompt: str,
        *,
        system_instruction: str | None = None,
        history: list[HistoryMessage] | None = None,
        config: GenerationConfig | None = None,
    ) -> ProviderResponse:
        text = self._reply(prompt)
        return ProviderResponse(text=text, total_tokens=await self.count_tokens(prompt + text))

    async def stream(
        self,
        prompt: str,
        *,
        system_instruction: str | None = None,
        history: list[HistoryMessage] | None = None,
        config: GenerationConfig | None = None,
    ) -> AsyncIterator[ProviderChunk]:
        text = self._reply(prompt)
        words = text.split()
        # Yield word tokens for streaming tests; the last chunk carries usage.
        for index, word in enumerate(words):
            total = await self.count_tokens(prompt + text) if index == len(words) - 1 else None
            yield ProviderChunk(text=f"{word} ", total_tokens=total)

    async def count_tokens(self, text: str) -> int:
        return math.ceil(len(text) / 4)

    async def extract_text_from_image(self, data: bytes, mime_type: str, prompt: str) -> str:
        _ = (data, mime_type, prompt)
        return self._ocr_text
