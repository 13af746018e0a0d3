"""
One authentication attempt, start to finish.

    token -> claims -> policy -> local identity

Each step either hands its result to the next or ends the attempt with a
``Rejected`` outcome. Nothing is retried; the caller may start a fresh
attempt.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Union

import httpx

from ..errors import ExtractionError, OAuthError, UpstreamTimeoutError
from ..models import (
    AccessToken,
    AuthOutcome,
    IdentityClaims,
    ProviderConfig,
    Rejected,
    RejectionReason,
)
from ..providers import ProviderRegistry
from .claims import ClaimsExtractor
from .policy import PolicyEnforcer
from .resolver import IdentityResolver
from .tokens import TokenSource

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AttemptContext:
    """
    Inputs of one attempt.

    ``nonce`` is the value sent with the authorization request. When set, the
    identity token must carry the same value.
    """
    provider_id: str
    token_source: TokenSource
    nonce: Optional[str] = None


class AuthenticationOrchestrator:
    def __init__(
        self,
        registry: ProviderRegistry,
        extractor: ClaimsExtractor,
        enforcer: PolicyEnforcer,
        resolver: IdentityResolver,
    ):
        self.registry = registry
        self.extractor = extractor
        self.enforcer = enforcer
        self.resolver = resolver

    async def authenticate(self, attempt: AttemptContext) -> AuthOutcome:
        provider = self.registry.get_config(attempt.provider_id)

        token = await self._acquire_token(attempt, provider)
        if isinstance(token, Rejected):
            return token

        claims = await self._extract(token, provider, attempt.nonce)
        if isinstance(claims, Rejected):
            return claims

        decision = self.enforcer.check_policy(claims, provider)
        if not decision.allowed:
            logger.warning(
                "OpenID login denied by policy",
                extra={
                    "provider_id": provider.provider_id,
                    "reason": decision.reason.value,
                    "email": claims.email,
                },
            )
            return Rejected(
                provider_id=provider.provider_id,
                reason=RejectionReason.POLICY_DENIED,
                deny_reason=decision.reason,
                detail=f"Login not permitted: {decision.reason.value}",
                username=claims.username,
                email=claims.email,
            )

        outcome = await self.resolver.resolve(claims, provider)
        logger.info(
            "OpenID authentication attempt finished",
            extra={
                "provider_id": provider.provider_id,
                "outcome": outcome.kind,
                "username": claims.username,
            },
        )
        return outcome

    async def _acquire_token(self, attempt: AttemptContext, provider: ProviderConfig) -> Union[AccessToken, Rejected]:
        try:
            return await attempt.token_source.get_access_token()
        except UpstreamTimeoutError as e:
            logger.warning("Timed out obtaining access token", extra={"provider_id": provider.provider_id})
            return _timeout(provider, e)
        except (OAuthError, httpx.HTTPError) as e:
            logger.warning(
                "Could not obtain access token",
                extra={"provider_id": provider.provider_id, "error": str(e)},
            )
            return _token_failure(provider, str(e))
        except Exception as e:
            logger.error(
                "Unexpected error obtaining access token",
                extra={"provider_id": provider.provider_id},
                exc_info=True,
            )
            return _token_failure(provider, f"Unexpected error: {e}")

    async def _extract(
        self, token: AccessToken, provider: ProviderConfig, nonce: Optional[str]
    ) -> Union[IdentityClaims, Rejected]:
        try:
            return await self.extractor.extract(token, provider, nonce=nonce)
        except UpstreamTimeoutError as e:
            logger.warning("Timed out extracting claims", extra={"provider_id": provider.provider_id})
            return _timeout(provider, e)
        except ExtractionError as e:
            logger.warning(
                "Could not extract identity claims",
                extra={"provider_id": provider.provider_id, "kind": e.kind.value, "error": str(e)},
            )
            return Rejected(
                provider_id=provider.provider_id,
                reason=RejectionReason.EXTRACTION_FAILED,
                extraction_kind=e.kind,
                detail=str(e),
            )


def _token_failure(provider: ProviderConfig, detail: str) -> Rejected:
    return Rejected(
        provider_id=provider.provider_id,
        reason=RejectionReason.TOKEN_ACQUISITION_FAILED,
        detail=detail,
    )


def _timeout(provider: ProviderConfig, error: UpstreamTimeoutError) -> Rejected:
    return Rejected(
        provider_id=provider.provider_id,
        reason=RejectionReason.UPSTREAM_TIMEOUT,
        detail=str(error),
    )
