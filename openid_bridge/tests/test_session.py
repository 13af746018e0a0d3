"""
Tests for session JWT creation and verification.
"""

from datetime import datetime, timedelta, timezone

import jwt
import pytest
from fastapi import HTTPException

from openid_bridge.auth.session import (
    JWTSessionError,
    create_session_jwt,
    create_session_jwt_for_user,
    extract_token_from_header,
    verify_session_jwt,
)
from openid_bridge.config import Settings
from openid_bridge.models import LocalUser


@pytest.fixture
def settings() -> Settings:
    return Settings(
        SESSION_JWT_SECRET="test-session-secret-that-is-long-enough",
        SESSION_JWT_EXPIRY_MINUTES=30,
        JWT_ISSUER="openid-bridge-test",
    )


def test_session_token_for_user(settings):
    user = LocalUser(username="idp1_u1", email="a@ok.org", firstname="Ada", lastname="Lovelace")

    token = create_session_jwt_for_user(user, "idp1", settings)
    claims = verify_session_jwt(token, settings)

    assert claims["sub"] == "idp1_u1"
    assert claims["email"] == "a@ok.org"
    assert claims["name"] == "Ada Lovelace"
    assert claims["provider"] == "idp1"
    assert claims["iss"] == "openid-bridge-test"
    assert claims["exp"] - claims["iat"] == 30 * 60


def test_name_falls_back_to_username(settings):
    token = create_session_jwt_for_user(LocalUser(username="u1", email="a@ok.org"), "idp1", settings)

    assert verify_session_jwt(token, settings)["name"] == "u1"


def test_missing_required_claim(settings):
    with pytest.raises(JWTSessionError):
        create_session_jwt({"email": "a@ok.org"}, settings)


def test_expired_token_rejected(settings):
    now = datetime.now(timezone.utc)
    token = jwt.encode(
        {
            "sub": "u1",
            "email": "a@ok.org",
            "iss": settings.JWT_ISSUER,
            "iat": now - timedelta(hours=2),
            "exp": now - timedelta(hours=1),
        },
        settings.SESSION_JWT_SECRET,
        algorithm="HS256",
    )

    with pytest.raises(HTTPException) as exc_info:
        verify_session_jwt(token, settings)

    assert exc_info.value.status_code == 401
    assert exc_info.value.detail == "Token has expired"


def test_wrong_secret_rejected(settings):
    other = Settings(SESSION_JWT_SECRET="another-secret-that-is-also-long-enough")
    token = create_session_jwt({"sub": "u1", "email": "a@ok.org"}, other)

    with pytest.raises(HTTPException) as exc_info:
        verify_session_jwt(token, settings)

    assert exc_info.value.status_code == 401
    assert exc_info.value.headers == {"WWW-Authenticate": "Bearer"}


def test_empty_token_rejected(settings):
    with pytest.raises(HTTPException):
        verify_session_jwt("", settings)


class TestAuthorizationHeader:

    def test_bearer_token(self):
        assert extract_token_from_header("Bearer abc.def") == "abc.def"

    @pytest.mark.parametrize("header", [None, "", "abc.def", "Basic abc", "Bearer a b"])
    def test_invalid_headers(self, header):
        with pytest.raises(HTTPException) as exc_info:
            extract_token_from_header(header)

        assert exc_info.value.status_code == 401
