"""
Authentication utilities for provider HTTP calls and identity token decoding.

This module handles:
- Fetching and caching a provider's JWKS (JSON Web Key Set)
- Decoding identity tokens, with or without local signature verification
- Fetching the UserInfo document for an access token
- Checking the identity token nonce against the login request
"""

import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional, Tuple

import httpx
from jose import JWTError, jwk, jwt

from ..errors import UpstreamTimeoutError
from ..models import ProviderConfig


# =============================================================================
# HTTP Client Helper
# =============================================================================

@asynccontextmanager
async def provider_client(
    client: Optional[httpx.AsyncClient],
    timeout: float,
) -> AsyncIterator[httpx.AsyncClient]:
    """Use the shared client when one is given, otherwise a short-lived one."""
    if client is not None:
        yield client
        return
    async with httpx.AsyncClient(timeout=timeout) as own:
        yield own


# =============================================================================
# JWKS Cache
# =============================================================================

# jwks_uri -> (fetched_at, jwks document)
_jwks_cache: Dict[str, Tuple[float, Dict[str, Any]]] = {}


def clear_jwks_cache() -> None:
    _jwks_cache.clear()


async def fetch_jwks(
    jwks_uri: str,
    client: Optional[httpx.AsyncClient] = None,
    timeout: float = 10.0,
    cache_seconds: int = 3600,
    force_refresh: bool = False,
) -> Dict[str, Any]:
    """
    Fetch a provider's JWKS with caching.

    Raises:
        UpstreamTimeoutError: If the endpoint does not answer in time
        httpx.HTTPError: If the JWKS endpoint is unreachable
        ValueError: If the response is not a key set
    """
    current_time = time.time()
    cached = _jwks_cache.get(jwks_uri)
    if not force_refresh and cached and (current_time - cached[0]) < cache_seconds:
        return cached[1]

    async with provider_client(client, timeout) as http:
        try:
            response = await http.get(jwks_uri, timeout=timeout)
        except httpx.TimeoutException as e:
            raise UpstreamTimeoutError("JWKS endpoint") from e
        response.raise_for_status()
        jwks_data = response.json()

    if not isinstance(jwks_data, dict) or "keys" not in jwks_data:
        raise ValueError("Invalid JWKS response: missing 'keys' field")

    _jwks_cache[jwks_uri] = (current_time, jwks_data)
    return jwks_data


def get_signing_key(token: str, jwks: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """
    Return the key from JWKS that matches the token's kid, or None.

    Raises:
        JWTError: If the token header is malformed or has no kid
    """
    unverified_header = jwt.get_unverified_header(token)

    kid = unverified_header.get("kid")
    if not kid:
        raise JWTError("Token header missing 'kid' (Key ID)")

    for key in jwks.get("keys", []):
        if key.get("kid") == kid:
            return key

    return None


# =============================================================================
# Identity Token Decoding
# =============================================================================

def decode_token_without_verification(token: str) -> Dict[str, Any]:
    """
    Decode identity token claims without checking the signature.

    Used when the provider has no ``jwksUri``: the token came straight from
    the provider's token endpoint over the back channel.

    Raises:
        JWTError: If the token is malformed
    """
    return jwt.get_unverified_claims(token)


async def verify_id_token(
    id_token: str,
    provider: ProviderConfig,
    access_token: Optional[str] = None,
    client: Optional[httpx.AsyncClient] = None,
    timeout: float = 10.0,
    cache_seconds: int = 3600,
) -> Dict[str, Any]:
    """
    Verify an identity token against the provider's JWKS and return its claims.

    Audience is checked against the provider's client id and issuer against
    its configured issuer, when those are set.

    Raises:
        JWTError: If the signature, key or claims are invalid
        UpstreamTimeoutError: If the JWKS endpoint does not answer in time
        httpx.HTTPError: If the JWKS endpoint is unreachable
    """
    if not provider.jwks_uri:
        raise JWTError(f"Provider {provider.provider_id} has no jwksUri configured")

    jwks = await fetch_jwks(provider.jwks_uri, client, timeout, cache_seconds)
    signing_key = get_signing_key(id_token, jwks)
    if not signing_key:
        # Keys may have rotated since the last fetch
        jwks = await fetch_jwks(provider.jwks_uri, client, timeout, cache_seconds, force_refresh=True)
        signing_key = get_signing_key(id_token, jwks)

        if not signing_key:
            raise JWTError("Unable to find matching signing key in JWKS")

    try:
        public_key = jwk.construct(signing_key)
    except Exception as e:
        raise JWTError(f"Failed to construct public key from JWK: {e}") from e

    return jwt.decode(
        id_token,
        public_key.to_pem().decode("utf-8"),
        algorithms=[signing_key.get("alg", "RS256")],
        audience=provider.client_id,
        issuer=provider.issuer,
        access_token=access_token,
        options={
            "verify_aud": provider.client_id is not None,
            "verify_iss": provider.issuer is not None,
            "leeway": 10,  # clock skew tolerance in seconds
        },
    )


# =============================================================================
# UserInfo
# =============================================================================

async def fetch_user_info(
    user_info_uri: str,
    access_token: str,
    client: Optional[httpx.AsyncClient] = None,
    timeout: float = 10.0,
) -> Dict[str, Any]:
    """
    GET the UserInfo document for an access token.

    Only JSON responses are supported; ``application/jwt`` UserInfo responses
    are rare and rejected as malformed.

    Raises:
        UpstreamTimeoutError: If the endpoint does not answer in time
        httpx.HTTPError: On transport errors or non-2xx status
        ValueError: If the body is not a JSON object
    """
    headers = {
        "Authorization": f"Bearer {access_token}",
        "Accept": "application/json",
        "Content-Type": "application/json",
    }

    async with provider_client(client, timeout) as http:
        try:
            response = await http.get(user_info_uri, headers=headers, timeout=timeout)
        except httpx.TimeoutException as e:
            raise UpstreamTimeoutError("UserInfo endpoint") from e
        response.raise_for_status()
        data = response.json()

    if not isinstance(data, dict):
        raise ValueError("UserInfo response is not a JSON object")

    return data


# =============================================================================
# Token Validation Helpers
# =============================================================================

def validate_nonce(claims: Dict[str, Any], expected_nonce: Optional[str]) -> bool:
    """
    Check the identity token's nonce against the one sent at login.

    Args:
        claims: Identity token claims
        expected_nonce: Nonce stored in the session, None when none was sent

    Returns:
        True if no nonce was sent or the token echoes it, False otherwise
    """
    if expected_nonce is None:
        return True

    token_nonce = claims.get("nonce")
    return isinstance(token_nonce, str) and token_nonce == expected_nonce
