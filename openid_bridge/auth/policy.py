"""
Access policy for extracted identities.

Two independent rules, evaluated in a fixed order:

1. Email domain allow-list (only when the provider filters domains)
2. Provider enabled list

Each rule denies with its own reason. The check is pure: no I/O, no logging
side effects beyond debug output.
"""

import logging
from typing import Optional

from pydantic import BaseModel, ConfigDict

from ..models import DenyReason, IdentityClaims, ProviderConfig

logger = logging.getLogger(__name__)


class PolicyDecision(BaseModel):
    model_config = ConfigDict(frozen=True)

    allowed: bool
    reason: Optional[DenyReason] = None

    @classmethod
    def allow(cls) -> "PolicyDecision":
        return cls(allowed=True)

    @classmethod
    def deny(cls, reason: DenyReason) -> "PolicyDecision":
        return cls(allowed=False, reason=reason)


def is_allowed_email_domain(email: Optional[str], provider: ProviderConfig) -> bool:
    """
    True when the part after the first '@' matches an allowed domain.

    Emails without '@', or with nothing after it, never match.
    """
    if not email:
        return False
    _, sep, domain = email.partition("@")
    if not sep or not domain:
        return False
    return domain.lower() in provider.allowed_email_domains


class PolicyEnforcer:
    def check_policy(self, claims: IdentityClaims, provider: ProviderConfig) -> PolicyDecision:
        if provider.should_filter_email_domains and not is_allowed_email_domain(claims.email, provider):
            logger.debug(
                "Email domain not on allow-list",
                extra={"provider_id": provider.provider_id, "domain": claims.email_domain},
            )
            return PolicyDecision.deny(DenyReason.DOMAIN_NOT_ALLOWED)

        if not provider.enabled:
            return PolicyDecision.deny(DenyReason.PROVIDER_DISABLED)

        return PolicyDecision.allow()
