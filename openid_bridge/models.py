"""
Data Models Module

This module defines the Pydantic models that flow through the
authentication pipeline.

Models are organized by functional area:
- Provider models (per-provider policy and claim-name mapping)
- Token and claim models (access token, extracted identity)
- Local user models (system-of-record user, audit event details)
- Outcome models (the tagged result of one authentication attempt)
"""

from enum import Enum
from typing import Any, Dict, FrozenSet, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .errors import ExtractionErrorKind


# ============================================================================
# Provider Models
# ============================================================================

class ClaimMapping(BaseModel):
    """Provider-specific claim names used to derive the local identity."""
    model_config = ConfigDict(frozen=True)

    username_pattern: str = Field(default="[sub]", description="Username template with [claim] placeholders")
    email_property: str = Field(default="email", description="Claim holding the email address")
    given_name_property: str = Field(default="given_name", description="Claim holding the first name")
    family_name_property: str = Field(default="family_name", description="Claim holding the last name")


class ProviderConfig(BaseModel):
    """Settings for one OpenID provider, fixed for the duration of an attempt."""
    model_config = ConfigDict(frozen=True)

    provider_id: str = Field(..., description="Provider identifier used in properties and sessions")
    name: Optional[str] = Field(None, description="Display name for the login page")
    enabled: bool = Field(default=False, description="Whether the provider is on the enabled list")

    user_info_uri: Optional[str] = Field(None, description="UserInfo endpoint, skipped when empty")
    allowed_email_domains: FrozenSet[str] = Field(default_factory=frozenset, description="Lowercased allow-list")
    should_filter_email_domains: bool = Field(default=False)
    user_auto_enabled: bool = Field(default=False)
    user_auto_verified: bool = Field(default=False)
    force_user_create: bool = Field(default=False)
    claims: ClaimMapping = Field(default_factory=ClaimMapping)

    # OAuth2 client settings
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    access_token_uri: Optional[str] = None
    user_authorization_uri: Optional[str] = None
    redirect_uri: Optional[str] = None
    scopes: Tuple[str, ...] = ("openid", "profile", "email")

    # Local signature verification (off unless jwks_uri is set)
    jwks_uri: Optional[str] = None
    issuer: Optional[str] = None

    @field_validator("allowed_email_domains", mode="before")
    @classmethod
    def normalize_domains(cls, v: Any) -> FrozenSet[str]:
        if isinstance(v, str):
            v = v.split(",")
        return frozenset(d.strip().lower() for d in (v or ()) if d and d.strip())

    @field_validator(
        "user_info_uri", "jwks_uri", "issuer", "client_id", "client_secret", mode="before"
    )
    @classmethod
    def blank_to_none(cls, v: Optional[str]) -> Optional[str]:
        if v is None or not str(v).strip():
            return None
        return str(v).strip()

    @property
    def verifies_signature(self) -> bool:
        return self.jwks_uri is not None


# ============================================================================
# Token & Claim Models
# ============================================================================

class AccessToken(BaseModel):
    """Access token returned by the token endpoint."""
    value: str = Field(..., description="Access token value")
    token_type: str = Field(default="Bearer")
    expires_in: Optional[int] = None
    additional_information: Dict[str, Any] = Field(
        default_factory=dict,
        description="Remaining token response fields, including id_token",
    )

    @field_validator("expires_in", mode="before")
    @classmethod
    def whole_seconds(cls, v: Any) -> Optional[int]:
        """Fractional lifetimes are truncated; unparseable ones are dropped."""
        if v is None or isinstance(v, bool):
            return None
        try:
            return int(float(v))
        except (TypeError, ValueError, OverflowError):
            return None

    @classmethod
    def from_token_response(cls, data: Dict[str, Any]) -> "AccessToken":
        extra = {
            k: v for k, v in data.items()
            if k not in ("access_token", "token_type", "expires_in")
        }
        return cls(
            value=data.get("access_token") or "",
            token_type=data.get("token_type") or "Bearer",
            expires_in=data.get("expires_in"),
            additional_information=extra,
        )


class IdentityClaims(BaseModel):
    """Merged identity token and UserInfo claims with the derived identity."""
    model_config = ConfigDict(frozen=True)

    provider_id: str
    claims: Dict[str, Any] = Field(default_factory=dict)
    username: str
    email: str
    firstname: str = ""
    lastname: str = ""

    @property
    def email_domain(self) -> Optional[str]:
        """Substring after the first '@', or None when there is none."""
        _, sep, domain = self.email.partition("@")
        if not sep or not domain:
            return None
        return domain


# ============================================================================
# Local User Models
# ============================================================================

class LocalUser(BaseModel):
    """System-of-record user."""
    id: Optional[int] = None
    username: str = ""
    email: str = ""
    firstname: str = ""
    lastname: str = ""
    enabled: bool = False
    verified: bool = False


class EventDetails(BaseModel):
    """Audit event attached to an administrative save."""
    model_config = ConfigDict(frozen=True)

    category: str
    type: str
    action: str
    reason: str
    comment: Optional[str] = None


# ============================================================================
# Outcome Models
# ============================================================================

class RejectionReason(str, Enum):
    TOKEN_ACQUISITION_FAILED = "token_acquisition_failed"
    EXTRACTION_FAILED = "extraction_failed"
    POLICY_DENIED = "policy_denied"
    USER_INIT_FAILURE = "user_init_failure"
    UPSTREAM_TIMEOUT = "upstream_timeout"


class DenyReason(str, Enum):
    PROVIDER_DISABLED = "provider_disabled"
    DOMAIN_NOT_ALLOWED = "domain_not_allowed"


class Authenticated(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["authenticated"] = "authenticated"
    provider_id: str
    user: LocalUser
    provisioned: bool = Field(default=False, description="User was created during this attempt")
    persisted: bool = Field(default=True, description="User is known to be saved in the store")


class PendingEnablement(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["pending_enablement"] = "pending_enablement"
    provider_id: str
    user: LocalUser
    provisioned: bool = False
    persisted: bool = True

    @property
    def username(self) -> str:
        return self.user.username

    @property
    def email(self) -> str:
        return self.user.email


class Rejected(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["rejected"] = "rejected"
    provider_id: Optional[str] = None
    reason: RejectionReason
    deny_reason: Optional[DenyReason] = None
    extraction_kind: Optional[ExtractionErrorKind] = None
    detail: str = ""
    username: Optional[str] = None
    email: Optional[str] = None


AuthOutcome = Union[Authenticated, PendingEnablement, Rejected]


class ProviderSummary(BaseModel):
    """Entry in the /auth/providers listing."""
    id: str
    name: str
    login_url: str
