from __future__ import annotations

from typing import AsyncGenerator

from fastapi import Depends, HTTPException, Request, Response, status
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from docspace.apps.api.rate_limit import enforce_rate_limit
from docspace.core.config import get_settings
from docspace.core.errors import AuthTokenError
from docspace.persistence.db import get_session
from docspace.services.accounts import ensure_user
from docspace.services.ai_client import GeminiClient
from docspace.services.ai_client import get_ai_client as _build_ai_client
from docspace.services.analyzer import DocumentAnalyzer
from docspace.services.auth.tokens import AuthClaims, verify_access_token
from docspace.services.conversation import ConversationManager
from docspace.services.storage import BlobStorage, get_blob_storage


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    # One AsyncSession per request; context manager ensures close on success/error.
    async with get_session() as session:
        yield session


class CurrentUser(BaseModel):
    # Authenticated identity used for ownership and membership checks.
    id: str
    email: str
    name: str | None = None
    auth_method: str = "bearer"


def _auth_error(message: str) -> HTTPException:
    # Normalize auth errors for clients without leaking internal details.
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"code": "AUTH_UNAUTHORIZED", "message": message},
        headers={"WWW-Authenticate": "Bearer"},
    )


def _parse_bearer_token(header_value: str | None) -> str | None:
    if not header_value:
        return None
    parts = header_value.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise _auth_error("Missing or invalid bearer token")
    return parts[1]


def _claims_from_dev_headers(request: Request) -> AuthClaims | None:
    # Local development only: trust X-User-Id when the bypass is enabled.
    user_id = request.headers.get("X-User-Id")
    if not user_id:
        return None
    email = request.headers.get("X-User-Email") or f"{user_id}@dev.local"
    return AuthClaims(
        subject=user_id,
        email=email,
        name=request.headers.get("X-User-Name"),
        provider="dev",
    )


async def get_auth_claims(request: Request) -> AuthClaims:
    settings = get_settings()
    token = _parse_bearer_token(request.headers.get("Authorization"))
    if token is None and settings.auth_dev_bypass:
        claims = _claims_from_dev_headers(request)
        if claims is not None:
            return claims
    if token is None:
        raise _auth_error("Unauthorized. Please log in to continue.")
    try:
        return verify_access_token(token)
    except AuthTokenError as exc:
        raise _auth_error(str(exc)) from exc


async def get_current_user(
    claims: AuthClaims = Depends(get_auth_claims),
    db: AsyncSession = Depends(get_db),
) -> CurrentUser:
    try:
        user = await ensure_user(db, claims)
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"code": "DB_ERROR", "message": "Failed to load user profile"},
        ) from exc
    return CurrentUser(
        id=user.id,
        email=user.email,
        name=user.name,
        auth_method="dev_bypass" if claims.provider == "dev" else "bearer",
    )


async def rate_limited_user(
    request: Request,
    response: Response,
    user: CurrentUser = Depends(get_current_user),
) -> CurrentUser:
    await enforce_rate_limit(request=request, response=response, user_id=user.id)
    return user


def get_ai_client() -> GeminiClient:
    return _build_ai_client()


def get_storage() -> BlobStorage:
    return get_blob_storage()


def get_analyzer(ai_client: GeminiClient = Depends(get_ai_client)) -> DocumentAnalyzer:
    return DocumentAnalyzer(ai_client)


def get_conversation_manager(ai_client: GeminiClient = Depends(get_ai_client)) -> ConversationManager:
    return ConversationManager(ai_client)
