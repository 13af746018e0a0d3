"""
JWT Session Management Module
==============================

Creates and verifies the session JWT handed out after a successful OpenID
login. Sessions are signed with the HMAC algorithm configured in
SESSION_JWT_ALGORITHM.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt
from fastapi import HTTPException, status
from jwt.exceptions import ExpiredSignatureError, InvalidTokenError

from ..config import Settings, get_settings
from ..models import LocalUser

logger = logging.getLogger(__name__)


class JWTSessionError(Exception):
    """Base exception for JWT session errors"""
    pass


# =============================================================================
# Token Creation
# =============================================================================

def create_session_jwt(claims: Dict[str, Any], settings: Optional[Settings] = None) -> str:
    """
    Create a session JWT with the provided claims.

    Args:
        claims: Claims to include. Must contain 'sub' and 'email'.

    Raises:
        JWTSessionError: If JWT creation fails
    """
    settings = settings or get_settings()

    payload = claims.copy()
    if "sub" not in payload:
        raise JWTSessionError("Missing required claim: 'sub' (subject/user ID)")
    if "email" not in payload:
        raise JWTSessionError("Missing required claim: 'email'")

    now = datetime.now(timezone.utc)
    payload.update({
        "iat": now,
        "exp": now + timedelta(minutes=settings.SESSION_JWT_EXPIRY_MINUTES),
        "iss": settings.JWT_ISSUER,
    })

    try:
        token = jwt.encode(payload, settings.SESSION_JWT_SECRET, algorithm=settings.SESSION_JWT_ALGORITHM)
    except Exception as e:
        logger.error(f"Failed to create session JWT: {e}", exc_info=True)
        raise JWTSessionError(f"Failed to create session JWT: {str(e)}") from e

    logger.debug(
        f"Created session JWT for user {payload.get('sub')}",
        extra={"expires_in_minutes": settings.SESSION_JWT_EXPIRY_MINUTES},
    )
    return token


def create_session_jwt_for_user(
    user: LocalUser,
    provider_id: str,
    settings: Optional[Settings] = None,
) -> str:
    """Session JWT for a local user authenticated through ``provider_id``."""
    name = " ".join(part for part in (user.firstname, user.lastname) if part)
    return create_session_jwt(
        {
            "sub": user.username,
            "email": user.email,
            "name": name or user.username,
            "provider": provider_id,
        },
        settings,
    )


# =============================================================================
# Token Verification
# =============================================================================

def verify_session_jwt(token: str, settings: Optional[Settings] = None) -> Dict[str, Any]:
    """
    Verify and decode a session JWT.

    Raises:
        HTTPException: 401 for missing, expired or invalid tokens
    """
    settings = settings or get_settings()

    if not token:
        logger.warning("Empty token provided for verification")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="No authentication token provided",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        decoded = jwt.decode(
            token,
            settings.SESSION_JWT_SECRET,
            algorithms=[settings.SESSION_JWT_ALGORITHM],
            issuer=settings.JWT_ISSUER,
            options={"require": ["exp", "iat", "sub", "email", "iss"]},
        )
    except ExpiredSignatureError:
        logger.warning("JWT token expired")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired",
            headers={"WWW-Authenticate": "Bearer"},
        )
    except InvalidTokenError as e:
        logger.warning(f"Invalid JWT token: {e}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid token: {str(e)}",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return decoded


def extract_token_from_header(authorization: Optional[str]) -> str:
    """
    Extract Bearer token from Authorization header.

    Raises:
        HTTPException: If header is missing or not 'Bearer <token>'
    """
    if not authorization:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing Authorization header",
            headers={"WWW-Authenticate": "Bearer"},
        )

    parts = authorization.split()

    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid Authorization header format. Expected: 'Bearer <token>'",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return parts[1]
