"""
Exception types raised inside the authentication pipeline.

The orchestrator catches these and turns them into a terminal
``AuthOutcome``; route handlers never see them directly.
"""

from enum import Enum
from typing import Optional


class BridgeError(Exception):
    """Base exception for openid-bridge errors"""
    pass


class OAuthError(BridgeError):
    """The provider rejected the authorization grant."""

    def __init__(self, error: str, description: Optional[str] = None):
        self.error = error
        self.description = description
        super().__init__(f"{error}: {description}" if description else error)


class UpstreamTimeoutError(BridgeError):
    """An outbound call did not complete within HTTP_TIMEOUT_SECONDS."""

    def __init__(self, target: str):
        self.target = target
        super().__init__(f"Timed out waiting for {target}")


class ExtractionErrorKind(str, Enum):
    MISSING_OR_INVALID_TOKEN = "missing_or_invalid_token"
    USERINFO_FETCH_FAILED = "userinfo_fetch_failed"
    MISSING_IDENTITY_CLAIMS = "missing_identity_claims"


class ExtractionError(BridgeError):
    """Claims could not be extracted from the token response."""

    def __init__(self, kind: ExtractionErrorKind, message: str):
        self.kind = kind
        super().__init__(message)


# =============================================================================
# User store errors
# =============================================================================

class UserNotFoundError(BridgeError):
    """No local user exists for the requested username."""

    def __init__(self, username: str):
        self.username = username
        super().__init__(f"User not found: {username}")


class UserInitError(BridgeError):
    """A local user record exists but could not be loaded."""
    pass


class PersistenceError(BridgeError):
    """Saving a local user failed."""
    pass
