from __future__ import annotations

import logging
from typing import AsyncIterator

from google import genai
from google.genai import types

from docspace.core.config import get_settings
from docspace.core.errors import ProviderConfigError
from docspace.domain.conversation import HistoryMessage
from docspace.providers.llm.base import GenerationConfig, ProviderChunk, ProviderResponse

logger = logging.getLogger(__name__)


def _role(role: str) -> str:
    # The Gemini API names the assistant turn "model".
    return "model" if role == "assistant" else "user"


class GeminiProvider:
    def __init__(self, client: genai.Client | None = None) -> None:
        self._settings = get_settings()
        self.model = self._settings.gemini_model
        self._client = client

    def _validate_config(self) -> dict:
        # Fail fast to avoid confusing downstream SDK errors.
        settings = self._settings
        missing = []
        if not settings.gemini_model:
            missing.append("GEMINI_MODEL")
        if settings.gemini_use_vertex:
            if not settings.google_cloud_project:
                missing.append("GOOGLE_CLOUD_PROJECT")
            if not settings.google_cloud_location:
                missing.append("GOOGLE_CLOUD_LOCATION")
        elif not settings.gemini_api_key:
            missing.append("GEMINI_API_KEY")
        if missing:
            raise ProviderConfigError(f"Gemini config missing: set {', '.join(missing)} in .env.")
        if settings.gemini_use_vertex:
            return {
                "vertexai": True,
                "project": settings.google_cloud_project,
                "location": settings.google_cloud_location,
            }
        return {"api_key": settings.gemini_api_key}

    @property
    def client(self) -> genai.Client:
        if self._client is None:
            self._client = genai.Client(**self._validate_config())
        return self._client

    def _contents(self, prompt: str, history: list[HistoryMessage] | None) -> list[types.Content]:
        contents = [
            types.Content(role=_role(msg["role"]), parts=[types.Part.from_text(text=msg["content"])])
            for msg in history or []
        ]
        contents.append(types.Content(role="user", parts=[types.Part.from_text(text=prompt)]))
        return contents

    def _config(
        self, system_instruction: str | None, config: GenerationConfig | None
    ) -> types.GenerateContentConfig:
        config = config or GenerationConfig()
        return types.GenerateContentConfig(
            system_instruction=system_instruction,
            temperature=config.temperature,
            top_p=config.top_p,
            top_k=config.top_k,
            max_output_tokens=config.max_output_tokens,
        )

    async def generate(
        self,
        prompt: str,
        *,
        system_instruction: str | None = None,
        history: list[HistoryMessage] | None = None,
        config: GenerationConfig | None = None,
    ) -> ProviderResponse:
        response = await self.client.aio.models.generate_content(
            model=self.model,
            contents=self._contents(prompt, history),
            config=self._config(system_instruction, config),
        )
        usage = response.usage_metadata
        return ProviderResponse(
            text=response.text or "",
            total_tokens=int(getattr(usage, "total_token_count", 0) or 0),
        )

    async def stream(
        self,
        prompt: str,
        *,
        system_instruction: str | None = None,
        history: list[HistoryMessage] | None = None,
        config: GenerationConfig | None = None,
    ) -> AsyncIterator[ProviderChunk]:
        logger.info("gemini_stream_start model=%s", self.model)
        stream = await self.client.aio.models.generate_content_stream(
            model=self.model,
            contents=self._contents(prompt, history),
            config=self._config(system_instruction, config),
        )
        async for chunk in stream:
            usage = chunk.usage_metadata
            total = getattr(usage, "total_token_count", None) if usage is not None else None
            yield ProviderChunk(text=chunk.text or "", total_tokens=total)

    async def count_tokens(self, text: str) -> int:
        response = await self.client.aio.models.count_tokens(model=self.model, contents=text)
        return int(response.total_tokens or 0)

    async def extract_text_from_image(self, data: bytes, mime_type: str, prompt: str) -> str:
        response = await self.client.aio.models.generate_content(
            model=self.model,
            contents=[types.Part.from_bytes(data=data, mime_type=mime_type), prompt],
        )
        return response.text or ""
