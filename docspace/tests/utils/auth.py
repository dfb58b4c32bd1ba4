from __future__ import annotations

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import jwt

from docspace.core.config import get_settings
from docspace.domain.models import User
from docspace.persistence.db import SessionLocal


def dev_headers(user_id: str, email: str | None = None) -> dict[str, str]:
    # Header identity accepted when AUTH_DEV_BYPASS is on.
    return {"X-User-Id": user_id, "X-User-Email": email or f"{user_id}@example.com"}


def make_access_token(
    subject: str,
    *,
    email: str | None = None,
    name: str | None = None,
    expires_in_s: int = 3600,
    audience: str | None = None,
    secret: str | None = None,
) -> str:
    # Mint a token shaped like the hosted auth provider's access tokens.
    settings = get_settings()
    now = datetime.now(timezone.utc)
    payload = {
        "sub": subject,
        "email": email or f"{subject}@example.com",
        "aud": audience or settings.auth_jwt_audience,
        "iat": now,
        "exp": now + timedelta(seconds=expires_in_s),
        "user_metadata": {"full_name": name} if name else {},
        "app_metadata": {"provider": "email"},
    }
    return jwt.encode(payload, secret or settings.auth_jwt_secret, algorithm=settings.auth_jwt_algorithm)


async def create_test_user(*, name: str | None = "Test User") -> tuple[str, dict[str, str]]:
    # Provision a user row and matching dev-bypass headers.
    user_id = f"u-{uuid4().hex}"
    email = f"{user_id}@example.com"
    async with SessionLocal() as session:
        session.add(User(id=user_id, email=email, name=name, provider="email", usage_tier="free"))
        await session.commit()
    return user_id, dev_headers(user_id, email)
