from __future__ import annotations

from typing import Any

from docspace.apps.api.response import ErrorEnvelope


def _error_example(*, code: str, message: str) -> dict[str, Any]:
    # Build a consistent error envelope example for OpenAPI docs.
    return {"success": False, "error": message, "code": code, "request_id": "req_example"}


def _response(description: str, code: str, message: str) -> dict[str, Any]:
    return {
        "model": ErrorEnvelope,
        "description": description,
        "content": {"application/json": {"example": _error_example(code=code, message=message)}},
    }


DEFAULT_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    400: _response("Bad request", "VALIDATION_ERROR", "document_id: Field required"),
    401: _response("Unauthorized", "AUTH_UNAUTHORIZED", "Unauthorized. Please log in to continue."),
    403: _response("Forbidden", "ACCESS_DENIED", "You do not have permission to access this document."),
    404: _response("Not found", "NOT_FOUND", "Document not found"),
    500: _response("Internal error", "INTERNAL_ERROR", "Internal server error"),
}

AI_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    **DEFAULT_ERROR_RESPONSES,
    429: _response("Rate limited", "RATE_LIMITED", "Too many requests. Please try again later."),
}
