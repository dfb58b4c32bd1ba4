from __future__ import annotations

import pytest

from docspace.core.config import get_settings
from docspace.core.errors import AuthTokenError, ProviderConfigError
from docspace.services.auth.tokens import AuthClaims, default_display_name, verify_access_token
from docspace.tests.utils.auth import make_access_token


def test_verify_access_token_returns_claims() -> None:
    claims = verify_access_token(make_access_token("user-123", email="ada@example.com", name="Ada"))
    assert claims.subject == "user-123"
    assert claims.email == "ada@example.com"
    assert claims.name == "Ada"
    assert claims.provider == "email"


def test_expired_token_is_rejected() -> None:
    with pytest.raises(AuthTokenError, match="expired"):
        verify_access_token(make_access_token("user-123", expires_in_s=-10))


def test_wrong_audience_or_secret_is_rejected() -> None:
    with pytest.raises(AuthTokenError):
        verify_access_token(make_access_token("user-123", audience="someone-else"))
    with pytest.raises(AuthTokenError):
        verify_access_token(make_access_token("user-123", secret="another-secret-with-enough-bytes"))


def test_missing_secret_is_a_configuration_error(monkeypatch) -> None:
    token = make_access_token("user-123")
    monkeypatch.delenv("AUTH_JWT_SECRET", raising=False)
    get_settings.cache_clear()
    with pytest.raises(ProviderConfigError):
        verify_access_token(token)


def test_default_display_name() -> None:
    assert default_display_name(AuthClaims(subject="s", email="grace@example.com", name="Grace")) == "Grace"
    assert default_display_name(AuthClaims(subject="s", email="grace@example.com")) == "grace"
    assert default_display_name(AuthClaims(subject="s", email=None)) == "User"
