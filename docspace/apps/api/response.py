from __future__ import annotations

from typing import Any
from uuid import uuid4

from fastapi import Request
from pydantic import BaseModel


API_VERSION = "v1"


class ErrorEnvelope(BaseModel):
    # Flat error shape shared by every route: {"success": false, "error", "code"}.
    success: bool = False
    error: str
    code: str
    request_id: str | None = None


def get_request_id(request: Request) -> str:
    # Use existing request IDs when provided to preserve traceability.
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        return request_id
    header_request_id = request.headers.get("X-Request-Id")
    if header_request_id:
        request.state.request_id = header_request_id
        return header_request_id
    generated = str(uuid4())
    request.state.request_id = generated
    return generated


def success_response(**payload: Any) -> dict[str, Any]:
    return {"success": True, **payload}


def error_response(
    *,
    request: Request,
    code: str,
    message: str,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "success": False,
        "error": message,
        "code": code,
        "request_id": get_request_id(request),
    }
    if details:
        # Extra fields never overwrite the envelope keys.
        payload.update({k: v for k, v in details.items() if k not in payload})
    return payload
