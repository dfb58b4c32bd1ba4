from __future__ import annotations

import logging
from typing import Any

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from docspace.apps.api.response import error_response
from docspace.core.errors import (
    AccessDeniedError,
    AIError,
    ConversationError,
    NotFoundError,
    ProviderConfigError,
    RateLimitError,
    UploadValidationError,
)


logger = logging.getLogger(__name__)

_DEFAULT_ERROR_CODES: dict[int, str] = {
    400: "BAD_REQUEST",
    401: "AUTH_UNAUTHORIZED",
    403: "ACCESS_DENIED",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
    413: "PAYLOAD_TOO_LARGE",
    429: "RATE_LIMITED",
    500: "INTERNAL_ERROR",
    503: "SERVICE_UNAVAILABLE",
}
# Client-side AI failures keep 4xx; everything else from the model is a 5xx.
_AI_STATUS_BY_CODE: dict[str, int] = {
    "INVALID_INPUT": 400,
    "TOKEN_LIMIT": 400,
    "RATE_LIMIT": 429,
}


def _default_code(status_code: int) -> str:
    # Map status codes to fallback error codes when none are provided.
    return _DEFAULT_ERROR_CODES.get(status_code, "UNKNOWN_ERROR")


def _split_detail(detail: Any, status_code: int) -> tuple[str, str, dict[str, Any] | None]:
    # Extract code/message/details from HTTPException detail payloads.
    if isinstance(detail, dict):
        code = str(detail.get("code") or _default_code(status_code))
        message = str(detail.get("message") or "Request failed")
        details = {k: v for k, v in detail.items() if k not in {"code", "message"}}
        return code, message, details or None
    if isinstance(detail, str):
        return _default_code(status_code), detail, None
    return _default_code(status_code), "Request failed", None


def ai_error_status(exc: AIError) -> int:
    return _AI_STATUS_BY_CODE.get(exc.code, 500)


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    code, message, details = _split_detail(exc.detail, exc.status_code)
    payload = error_response(request=request, code=code, message=message, details=details)
    return JSONResponse(content=payload, status_code=exc.status_code, headers=exc.headers)


async def starlette_http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    # Ensure Starlette-raised exceptions (404 routes, 405) share the envelope.
    code, message, details = _split_detail(exc.detail, exc.status_code)
    payload = error_response(request=request, code=code, message=message, details=details)
    return JSONResponse(content=payload, status_code=exc.status_code, headers=exc.headers)


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    # Body/query validation failures are client errors: 400 with field details.
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part not in {"body", "query"})
    message = f"{location}: {first.get('msg')}" if location else str(first.get("msg") or "Validation error")
    payload = error_response(
        request=request,
        code="VALIDATION_ERROR",
        message=message,
        details={"errors": [{"loc": list(err.get("loc", ())), "msg": err.get("msg")} for err in errors]},
    )
    return JSONResponse(content=payload, status_code=400)


async def not_found_exception_handler(request: Request, exc: NotFoundError) -> JSONResponse:
    payload = error_response(request=request, code="NOT_FOUND", message=str(exc))
    return JSONResponse(content=payload, status_code=404)


async def access_denied_exception_handler(request: Request, exc: AccessDeniedError) -> JSONResponse:
    payload = error_response(request=request, code="ACCESS_DENIED", message=str(exc))
    return JSONResponse(content=payload, status_code=403)


async def upload_validation_exception_handler(
    request: Request, exc: UploadValidationError
) -> JSONResponse:
    payload = error_response(request=request, code="INVALID_FILE", message=str(exc))
    return JSONResponse(content=payload, status_code=400)


async def ai_exception_handler(request: Request, exc: AIError) -> JSONResponse:
    status_code = ai_error_status(exc)
    headers = None
    if isinstance(exc, RateLimitError) and exc.retry_after:
        headers = {"Retry-After": str(exc.retry_after)}
    if status_code >= 500:
        logger.error("ai_request_failed path=%s code=%s", request.url.path, exc.code)
    payload = error_response(request=request, code=exc.code, message=exc.message)
    return JSONResponse(content=payload, status_code=status_code, headers=headers)


async def conversation_exception_handler(request: Request, exc: ConversationError) -> JSONResponse:
    payload = error_response(request=request, code=exc.code, message=exc.message)
    return JSONResponse(content=payload, status_code=500)


async def provider_config_exception_handler(
    request: Request, exc: ProviderConfigError
) -> JSONResponse:
    # Surface misconfiguration to operators without leaking secrets.
    logger.error("provider_config_error path=%s error=%s", request.url.path, exc)
    payload = error_response(request=request, code="SERVICE_MISCONFIGURED", message=str(exc))
    return JSONResponse(content=payload, status_code=503)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    # Avoid leaking stack traces; return a stable internal error envelope.
    logger.exception("unhandled_exception path=%s", request.url.path, exc_info=exc)
    payload = error_response(
        request=request,
        code="INTERNAL_ERROR",
        message="Internal server error",
    )
    return JSONResponse(content=payload, status_code=500)
