from __future__ import annotations

import asyncio
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
import json
import logging
import math
import time
from typing import Any, AsyncIterator, Awaitable, Callable

from docspace.core.config import get_settings
from docspace.core.errors import (
    AIError,
    InvalidResponseError,
    RateLimitError,
    TokenLimitError,
)
from docspace.domain.analysis import GenerationResult
from docspace.domain.conversation import HistoryMessage
from docspace.providers.llm.base import GenerationConfig, LLMProvider
from docspace.providers.llm.factory import get_llm_provider
from docspace.services.resilience import RetryPolicy, retry_async


logger = logging.getLogger(__name__)

OCR_PROMPT = (
    "Extract all text from this image. Return only the text content, no descriptions or commentary."
)
_RETRYABLE_STATUS = {429, 500, 503}
_RETRYABLE_MESSAGES = ("rate limit", "timeout", "temporarily unavailable")


@dataclass
class CacheEntry:
    result: GenerationResult
    stored_at: float
    hits: int = 0


@dataclass
class UsageStats:
    total_requests: int
    total_tokens: int
    total_cost: float
    last_reset: datetime


# Process-wide state shared by every client instance; not coordinated across processes.
_cache: dict[str, CacheEntry] = {}
_usage = UsageStats(total_requests=0, total_tokens=0, total_cost=0.0, last_reset=datetime.now(timezone.utc))


def estimate_tokens(text: str) -> int:
    # Roughly four characters per token when the provider cannot count.
    return math.ceil(len(text) / 4)


def _status_of(exc: BaseException) -> int | None:
    for attr in ("code", "status_code", "status"):
        value = getattr(exc, attr, None)
        if isinstance(value, int):
            return value
    return None


def is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, RateLimitError):
        return True
    if isinstance(exc, AIError):
        return exc.retryable
    if _status_of(exc) in _RETRYABLE_STATUS:
        return True
    message = str(exc).lower()
    return any(marker in message for marker in _RETRYABLE_MESSAGES)


def map_error(exc: BaseException, *, max_output_tokens: int = 8192) -> AIError:
    """Translate provider exceptions into the AI error hierarchy."""
    if isinstance(exc, AIError):
        return exc
    message = str(exc) or "Unknown error occurred"
    lowered = message.lower()
    status = _status_of(exc)
    if status == 429 or "rate limit" in lowered:
        retry_after = getattr(exc, "retry_after", None) or 60
        return RateLimitError("API rate limit exceeded. Please try again later.", retry_after=retry_after)
    if "token limit" in lowered or "context length" in lowered:
        return TokenLimitError("Token limit exceeded for this request", max_tokens=max_output_tokens)
    if status == 400 or "invalid" in lowered:
        return InvalidResponseError(f"Invalid request: {message}")
    return AIError(message, "GEMINI_ERROR", status_code=status, retryable=is_retryable(exc))


def get_usage_stats() -> dict[str, Any]:
    return {
        "total_requests": _usage.total_requests,
        "total_tokens": _usage.total_tokens,
        "total_cost": _usage.total_cost,
        "last_reset": _usage.last_reset.isoformat(),
    }


def reset_usage_stats() -> None:
    _usage.total_requests = 0
    _usage.total_tokens = 0
    _usage.total_cost = 0.0
    _usage.last_reset = datetime.now(timezone.utc)


def clear_cache() -> None:
    _cache.clear()


def cache_stats() -> dict[str, Any]:
    return {
        "size": len(_cache),
        "entries": [{"key": key[:50], "hits": entry.hits} for key, entry in _cache.items()],
    }


class GeminiClient:
    """Hosted-model wrapper adding retries, a response cache and usage accounting.

    Every instance shares the module-level cache and usage counters, so they
    reflect all traffic in this process.
    """

    def __init__(
        self,
        provider: LLMProvider | None = None,
        *,
        config: GenerationConfig | None = None,
        retry_policy: RetryPolicy | None = None,
        time_provider: Callable[[], float] | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        settings = get_settings()
        self._settings = settings
        self._provider = provider or get_llm_provider()
        self._config = config or GenerationConfig(
            temperature=settings.gemini_temperature,
            top_p=settings.gemini_top_p,
            top_k=settings.gemini_top_k,
            max_output_tokens=settings.gemini_max_output_tokens,
        )
        self._retry_policy = retry_policy or RetryPolicy(
            max_retries=settings.gemini_max_retries,
            base_delay_ms=settings.gemini_retry_base_delay_ms,
            max_delay_ms=settings.gemini_retry_max_delay_ms,
        )
        self._time = time_provider or time.monotonic
        self._sleep = sleep

    @property
    def model(self) -> str:
        return self._provider.model

    @property
    def provider(self) -> LLMProvider:
        return self._provider

    def _cache_key(
        self, prompt: str, system_instruction: str | None, history: list[HistoryMessage] | None
    ) -> str:
        options = {
            "system_instruction": system_instruction,
            "history": history or [],
            "config": asdict(self._config),
        }
        return prompt + json.dumps(options, sort_keys=True)

    def _get_cached(self, key: str) -> GenerationResult | None:
        entry = _cache.get(key)
        if entry is None:
            return None
        if self._time() - entry.stored_at > self._settings.ai_cache_ttl_s:
            _cache.pop(key, None)
            return None
        entry.hits += 1
        return entry.result.model_copy(update={"cached": True})

    def _set_cached(self, key: str, result: GenerationResult) -> None:
        _cache[key] = CacheEntry(result=result, stored_at=self._time())
        # Guard growth by evicting the oldest inserted entry; not an LRU.
        if len(_cache) > self._settings.ai_cache_max_entries:
            oldest = next(iter(_cache))
            _cache.pop(oldest, None)

    def _track_usage(self, total_tokens: int) -> None:
        _usage.total_requests += 1
        _usage.total_tokens += total_tokens
        _usage.total_cost += (total_tokens / 1000) * self._settings.ai_cost_per_1k_tokens

    async def generate(
        self,
        prompt: str,
        *,
        system_instruction: str | None = None,
        history: list[HistoryMessage] | None = None,
        cache: bool = False,
    ) -> GenerationResult:
        cache_key = self._cache_key(prompt, system_instruction, history) if cache else None
        if cache_key is not None:
            cached = self._get_cached(cache_key)
            if cached is not None:
                logger.info("ai_cache_hit model=%s", self.model)
                return cached

        async def _attempt():
            return await self._provider.generate(
                prompt,
                system_instruction=system_instruction,
                history=history,
                config=self._config,
            )

        try:
            response = await retry_async(
                _attempt,
                policy=self._retry_policy,
                retryable=is_retryable,
                sleep=self._sleep,
            )
        except Exception as exc:  # noqa: BLE001 - mapped into the AI error hierarchy
            mapped = map_error(exc, max_output_tokens=self._config.max_output_tokens)
            logger.warning("ai_generate_failed model=%s code=%s", self.model, mapped.code)
            raise mapped from exc

        result = GenerationResult(text=response.text, total_tokens=response.total_tokens, model=self.model)
        if cache_key is not None:
            self._set_cached(cache_key, result)
        self._track_usage(result.total_tokens)
        return result

    async def generate_stream(
        self,
        prompt: str,
        *,
        system_instruction: str | None = None,
        history: list[HistoryMessage] | None = None,
    ) -> AsyncIterator[str]:
        total_tokens: int | None = None
        try:
            async for chunk in self._provider.stream(
                prompt,
                system_instruction=system_instruction,
                history=history,
                config=self._config,
            ):
                if chunk.total_tokens is not None:
                    total_tokens = chunk.total_tokens
                if chunk.text:
                    yield chunk.text
        except (asyncio.CancelledError, GeneratorExit):
            raise
        except Exception as exc:  # noqa: BLE001 - mapped into the AI error hierarchy
            mapped = map_error(exc, max_output_tokens=self._config.max_output_tokens)
            logger.warning("ai_stream_failed model=%s code=%s", self.model, mapped.code)
            raise mapped from exc
        self._track_usage(total_tokens or 0)

    async def count_tokens(self, text: str) -> int:
        try:
            return await self._provider.count_tokens(text)
        except Exception as exc:  # noqa: BLE001 - estimation is good enough for budgeting
            logger.warning("ai_count_tokens_failed error=%s", type(exc).__name__)
            return estimate_tokens(text)

    async def extract_text_from_image(self, data: bytes, mime_type: str) -> str:
        try:
            text = await self._provider.extract_text_from_image(data, mime_type, OCR_PROMPT)
        except Exception as exc:  # noqa: BLE001 - mapped into the AI error hierarchy
            raise map_error(exc, max_output_tokens=self._config.max_output_tokens) from exc
        return text.strip()


def get_ai_client() -> GeminiClient:
    return GeminiClient()
