"""
Identity claim extraction.

Turns the token endpoint response into ``IdentityClaims``: decode the
identity token, merge the UserInfo document when the provider has one, and
derive username, email and names through the provider's claim mapping.
"""

import logging
import re
from typing import Any, Dict, Mapping, Optional

import httpx
from jose import JWTError

from ..errors import ExtractionError, ExtractionErrorKind, UpstreamTimeoutError
from ..models import AccessToken, ClaimMapping, IdentityClaims, ProviderConfig
from .utils import decode_token_without_verification, fetch_user_info, validate_nonce, verify_id_token

logger = logging.getLogger(__name__)

# Keys of the token response that may carry the identity token
ID_TOKEN_FIELDS = ("id_token",)

_PLACEHOLDER = re.compile(r"\[([^\[\]]+)\]")
_USERNAME_UNSAFE = re.compile(r"[^A-Za-z0-9_.@-]")


def _claim_str(claims: Mapping[str, Any], name: str) -> str:
    value = claims.get(name)
    if value is None or isinstance(value, (dict, list)):
        return ""
    return str(value).strip()


def build_username(provider_id: str, claims: Mapping[str, Any], mapping: ClaimMapping) -> str:
    """
    Render the provider's username pattern.

    ``[providerId]`` is the provider id, any other ``[name]`` is the claim of
    that name. A missing claim yields an empty username.
    """
    missing = []

    def substitute(match: "re.Match[str]") -> str:
        name = match.group(1)
        if name == "providerId":
            return provider_id
        value = _claim_str(claims, name)
        if not value:
            missing.append(name)
        return value

    rendered = _PLACEHOLDER.sub(substitute, mapping.username_pattern)
    if missing:
        return ""
    return normalize_username(rendered)


def normalize_username(username: str) -> str:
    return _USERNAME_UNSAFE.sub("_", username.strip())


class ClaimsExtractor:
    """Builds IdentityClaims from an access token response."""

    def __init__(
        self,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
        jwks_cache_seconds: int = 3600,
    ):
        self.http_client = http_client
        self.timeout = timeout
        self.jwks_cache_seconds = jwks_cache_seconds

    async def extract(
        self,
        token: AccessToken,
        provider: ProviderConfig,
        nonce: Optional[str] = None,
    ) -> IdentityClaims:
        """
        Raises:
            ExtractionError: If the identity token is missing, invalid or does
                not carry ``nonce``, the UserInfo fetch fails, or no
                username/email can be derived
            UpstreamTimeoutError: If UserInfo or JWKS calls time out
        """
        id_token = self._find_id_token(token)
        claims = await self._decode(id_token, token, provider)

        if not validate_nonce(claims, nonce):
            raise ExtractionError(
                ExtractionErrorKind.MISSING_OR_INVALID_TOKEN,
                "Identity token nonce does not match the login request",
            )

        if provider.user_info_uri:
            user_info = await self._user_info(token, provider)
            claims.update(user_info)

        return self._identity(claims, provider)

    def _find_id_token(self, token: AccessToken) -> str:
        for field in ID_TOKEN_FIELDS:
            value = token.additional_information.get(field)
            if isinstance(value, str) and value.strip():
                return value.strip()
        raise ExtractionError(
            ExtractionErrorKind.MISSING_OR_INVALID_TOKEN,
            "Token response does not contain an identity token",
        )

    async def _decode(self, id_token: str, token: AccessToken, provider: ProviderConfig) -> Dict[str, Any]:
        try:
            if provider.verifies_signature:
                claims = await verify_id_token(
                    id_token,
                    provider,
                    access_token=token.value,
                    client=self.http_client,
                    timeout=self.timeout,
                    cache_seconds=self.jwks_cache_seconds,
                )
            else:
                claims = decode_token_without_verification(id_token)
        except UpstreamTimeoutError:
            raise
        except (JWTError, httpx.HTTPError, ValueError) as e:
            raise ExtractionError(
                ExtractionErrorKind.MISSING_OR_INVALID_TOKEN,
                f"Could not obtain user details from token: {e}",
            ) from e

        logger.debug(
            "Decoded identity token",
            extra={"provider_id": provider.provider_id, "claim_names": sorted(claims)},
        )
        return dict(claims)

    async def _user_info(self, token: AccessToken, provider: ProviderConfig) -> Dict[str, Any]:
        try:
            return await fetch_user_info(
                provider.user_info_uri,
                token.value,
                client=self.http_client,
                timeout=self.timeout,
            )
        except UpstreamTimeoutError:
            raise
        except (httpx.HTTPError, ValueError) as e:
            raise ExtractionError(
                ExtractionErrorKind.USERINFO_FETCH_FAILED,
                f"UserInfo request failed: {e}",
            ) from e

    def _identity(self, claims: Dict[str, Any], provider: ProviderConfig) -> IdentityClaims:
        mapping = provider.claims
        username = build_username(provider.provider_id, claims, mapping)
        email = _claim_str(claims, mapping.email_property)

        if not username or not email:
            raise ExtractionError(
                ExtractionErrorKind.MISSING_IDENTITY_CLAIMS,
                "Identity is missing a username or email "
                f"(pattern={mapping.username_pattern!r}, email claim={mapping.email_property!r})",
            )

        return IdentityClaims(
            provider_id=provider.provider_id,
            claims=claims,
            username=username,
            email=email,
            firstname=_claim_str(claims, mapping.given_name_property),
            lastname=_claim_str(claims, mapping.family_name_property),
        )
