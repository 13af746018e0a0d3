"""
Shared fixtures: RSA-signed identity tokens, provider configs, a fake token
source and httpx mock transports.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import httpx
import jwt
import pytest
from cryptography.hazmat.primitives.asymmetric import rsa
from jwt.algorithms import RSAAlgorithm

from openid_bridge.auth.utils import clear_jwks_cache
from openid_bridge.errors import OAuthError
from openid_bridge.models import AccessToken, ProviderConfig


# Test RSA key pair, generated once for the session
TEST_PRIVATE_KEY = rsa.generate_private_key(public_exponent=65537, key_size=2048)
TEST_KID = "test-key-id-2024"
TEST_CLIENT_ID = "bridge-client"
TEST_ISSUER = "https://idp.example.org"


def create_id_token(
    claims: Optional[Dict[str, Any]] = None,
    kid: str = TEST_KID,
    exp_delta_minutes: int = 60,
) -> str:
    """Identity token signed with the test key."""
    now = datetime.now(timezone.utc)
    payload = {
        "iss": TEST_ISSUER,
        "aud": TEST_CLIENT_ID,
        "iat": now,
        "exp": now + timedelta(minutes=exp_delta_minutes),
    }
    payload.update(claims or {})
    return jwt.encode(payload, TEST_PRIVATE_KEY, algorithm="RS256", headers={"kid": kid})


def create_jwks(kid: str = TEST_KID) -> Dict[str, Any]:
    key = RSAAlgorithm.to_jwk(TEST_PRIVATE_KEY.public_key(), as_dict=True)
    key["kid"] = kid
    key["use"] = "sig"
    key["alg"] = "RS256"
    return {"keys": [key]}


def make_provider(**overrides: Any) -> ProviderConfig:
    values: Dict[str, Any] = {
        "provider_id": "idp1",
        "name": "Test IdP",
        "enabled": True,
        "client_id": TEST_CLIENT_ID,
        "client_secret": "s3cret",
        "access_token_uri": "https://idp.example.org/token",
        "user_authorization_uri": "https://idp.example.org/authorize",
        "redirect_uri": "http://testserver/auth/callback",
    }
    values.update(overrides)
    return ProviderConfig(**values)


def make_token(claims: Optional[Dict[str, Any]] = None, **extra: Any) -> AccessToken:
    data = {"access_token": "access-123", "token_type": "Bearer", "expires_in": 3600}
    if claims is not None:
        data["id_token"] = create_id_token(claims)
    data.update(extra)
    return AccessToken.from_token_response(data)


class FakeTokenSource:
    """Token source returning a fixed token, or raising a fixed error."""

    def __init__(self, token: Optional[AccessToken] = None, error: Optional[Exception] = None):
        self.token = token
        self.error = error
        self.calls = 0

    async def get_access_token(self) -> AccessToken:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.token


def json_transport(routes: Dict[str, Any], calls: Optional[list] = None) -> httpx.MockTransport:
    """
    MockTransport answering ``routes[url]``.

    A route value is a JSON body, an ``httpx.Response`` or an exception
    instance to raise. Unknown URLs get a 404.
    """
    def handler(request: httpx.Request) -> httpx.Response:
        if calls is not None:
            calls.append(request)
        url = str(request.url).split("?")[0]
        if url not in routes:
            return httpx.Response(404, json={"error": "not_found"})
        value = routes[url]
        if isinstance(value, Exception):
            raise value
        if isinstance(value, httpx.Response):
            return value
        return httpx.Response(200, json=value)

    return httpx.MockTransport(handler)


@pytest.fixture(autouse=True)
def reset_jwks_cache():
    clear_jwks_cache()
    yield
    clear_jwks_cache()


@pytest.fixture
def provider() -> ProviderConfig:
    return make_provider()


@pytest.fixture
def oauth_error() -> OAuthError:
    return OAuthError("invalid_grant", "Code expired")
