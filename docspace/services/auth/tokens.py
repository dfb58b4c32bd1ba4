from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import jwt

from docspace.core.config import get_settings
from docspace.core.errors import AuthTokenError, ProviderConfigError


@dataclass(frozen=True)
class AuthClaims:
    # Identity asserted by the hosted auth provider.
    subject: str
    email: str | None
    name: str | None = None
    avatar_url: str | None = None
    provider: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)


def claims_from_payload(payload: dict[str, Any]) -> AuthClaims:
    subject = payload.get("sub")
    if not subject:
        raise AuthTokenError("Token is missing the subject claim")
    user_metadata = payload.get("user_metadata") or {}
    app_metadata = payload.get("app_metadata") or {}
    return AuthClaims(
        subject=str(subject),
        email=payload.get("email"),
        name=user_metadata.get("name") or user_metadata.get("full_name"),
        avatar_url=user_metadata.get("avatar_url"),
        provider=app_metadata.get("provider"),
        raw=payload,
    )


def verify_access_token(token: str) -> AuthClaims:
    """Validate a provider-issued access token and return its identity claims."""
    settings = get_settings()
    if not settings.auth_jwt_secret:
        raise ProviderConfigError("Auth config missing: set AUTH_JWT_SECRET in .env.")
    try:
        payload = jwt.decode(
            token,
            settings.auth_jwt_secret,
            algorithms=[settings.auth_jwt_algorithm],
            audience=settings.auth_jwt_audience,
            options={"require": ["exp", "sub"]},
        )
    except jwt.ExpiredSignatureError as exc:
        raise AuthTokenError("Token has expired") from exc
    except jwt.InvalidTokenError as exc:
        raise AuthTokenError("Invalid bearer token") from exc
    return claims_from_payload(payload)


def default_display_name(claims: AuthClaims) -> str:
    if claims.name:
        return claims.name
    if claims.email:
        return claims.email.split("@", 1)[0]
    return "User"
