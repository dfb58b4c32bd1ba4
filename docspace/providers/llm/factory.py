from __future__ import annotations

from docspace.core.config import get_settings
from docspace.providers.llm.base import LLMProvider
from docspace.providers.llm.fake import FakeLLMProvider
from docspace.providers.llm.gemini import GeminiProvider


def get_llm_provider() -> LLMProvider:
    settings = get_settings()
    provider = (settings.llm_provider or "gemini").lower()

    if provider == "fake":
        return FakeLLMProvider()
    return GeminiProvider()
