"""
Token acquisition.

``TokenSource`` is what the orchestrator calls to get an access token.
``AuthorizationCodeTokenClient`` redeems an authorization code at the
provider's token endpoint (OAuth 2.0 authorization code grant, with PKCE
when a verifier is supplied).
"""

import logging
from typing import Optional, Protocol

import httpx

from ..errors import OAuthError, UpstreamTimeoutError
from ..models import AccessToken, ProviderConfig
from .utils import provider_client

logger = logging.getLogger(__name__)


class TokenSource(Protocol):
    async def get_access_token(self) -> AccessToken:
        """Raises OAuthError, UpstreamTimeoutError or httpx.HTTPError."""
        ...


class AuthorizationCodeTokenClient:
    """Exchanges one authorization code for tokens."""

    def __init__(
        self,
        provider: ProviderConfig,
        code: str,
        redirect_uri: Optional[str] = None,
        code_verifier: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
    ):
        self.provider = provider
        self.code = code
        self.redirect_uri = redirect_uri or provider.redirect_uri
        self.code_verifier = code_verifier
        self.http_client = http_client
        self.timeout = timeout

    def _payload(self) -> dict:
        payload = {
            "client_id": self.provider.client_id,
            "grant_type": "authorization_code",
            "code": self.code,
            "redirect_uri": self.redirect_uri,
            "scope": " ".join(self.provider.scopes),
        }

        # Confidential client
        if self.provider.client_secret:
            payload["client_secret"] = self.provider.client_secret

        if self.code_verifier:
            payload["code_verifier"] = self.code_verifier

        return payload

    async def get_access_token(self) -> AccessToken:
        if not self.provider.access_token_uri:
            raise OAuthError("invalid_client", f"No accessTokenUri for provider {self.provider.provider_id}")

        async with provider_client(self.http_client, self.timeout) as client:
            try:
                response = await client.post(
                    self.provider.access_token_uri,
                    data=self._payload(),
                    headers={
                        "Content-Type": "application/x-www-form-urlencoded",
                        "Accept": "application/json",
                    },
                    timeout=self.timeout,
                )
            except httpx.TimeoutException as e:
                raise UpstreamTimeoutError("token endpoint") from e

        if not response.is_success:
            error_data = {}
            if response.headers.get("content-type", "").startswith("application/json"):
                error_data = response.json()
            raise OAuthError(
                error_data.get("error") or f"http_{response.status_code}",
                error_data.get("error_description") or "Token exchange failed",
            )

        token_data = response.json()
        if not token_data.get("access_token"):
            raise OAuthError("invalid_response", "Token response missing access_token")

        logger.debug(
            "Obtained access token",
            extra={
                "provider_id": self.provider.provider_id,
                "fields": sorted(token_data),
            },
        )
        return AccessToken.from_token_response(token_data)
