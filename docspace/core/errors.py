from __future__ import annotations


class DocspaceError(Exception):
    """Base error for docspace."""


class ProviderConfigError(DocspaceError):
    """Missing or invalid provider configuration."""


class StorageError(DocspaceError):
    """Blob storage read/write failure."""


class ExtractionError(DocspaceError):
    """Text extraction failed for an uploaded document."""


class UploadValidationError(DocspaceError):
    """Uploaded file rejected before storage."""


class AuthTokenError(DocspaceError):
    """Bearer token missing, malformed, expired or signed with the wrong key."""


class AIError(DocspaceError):
    """Hosted model failure carrying a stable code and retry hint."""

    def __init__(
        self,
        message: str,
        code: str = "AI_ERROR",
        *,
        status_code: int | None = None,
        retryable: bool = False,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code
        self.retryable = retryable


class RateLimitError(AIError):
    """Hosted model throttled the request."""

    def __init__(self, message: str = "Rate limit exceeded", retry_after: int | None = None) -> None:
        super().__init__(message, "RATE_LIMIT", status_code=429, retryable=True)
        self.retry_after = retry_after


class TokenLimitError(AIError):
    """Prompt exceeds the model context window."""

    def __init__(
        self,
        message: str = "Token limit exceeded",
        *,
        token_count: int = 0,
        max_tokens: int = 0,
    ) -> None:
        super().__init__(message, "TOKEN_LIMIT", status_code=400, retryable=False)
        self.token_count = token_count
        self.max_tokens = max_tokens


class InvalidResponseError(AIError):
    """Model reply could not be used."""

    def __init__(self, message: str = "Invalid response from AI model") -> None:
        super().__init__(message, "INVALID_RESPONSE", status_code=500, retryable=False)


class ConversationError(DocspaceError):
    """Conversation history could not be loaded or written."""

    def __init__(self, message: str, code: str) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.retryable = False


class NotFoundError(DocspaceError):
    """Requested resource does not exist."""


class AccessDeniedError(DocspaceError):
    """Authenticated user lacks permission on the resource."""
