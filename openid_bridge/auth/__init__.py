"""
Authentication Package

This package turns an OpenID provider's token response into a local user
session.

Key responsibilities:
- Authorization code login flow and callback handling
- Identity token decoding, optionally verified against the provider's JWKS
- Email domain and enabled-provider policy checks
- Mapping identities onto local users, provisioning new ones
- Session JWT issuance and validation for client applications

Modules:
- routes: Public authentication endpoints (/auth/login/{id}, /auth/callback, etc.)
- tokens: Access token acquisition (authorization code grant)
- claims: Identity claim extraction and username derivation
- policy: Email domain and provider-enabled checks
- resolver: Local user lookup and provisioning
- orchestrator: One authentication attempt, token through local identity
- utils: JWKS fetching, caching, token decoding and UserInfo calls
- session: Session JWT creation and validation logic

The authentication flow:
1. Client picks a provider and is sent to /auth/login/{provider_id}
2. User authenticates with the provider
3. Bridge receives an authorization code on /auth/callback
4. Bridge redeems the code, extracts claims, applies policy, resolves the user
5. Enabled users receive a session JWT for subsequent API requests
"""

from .routes import auth_router

__all__ = [
    "auth_router",
]
