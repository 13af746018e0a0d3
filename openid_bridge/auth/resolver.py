"""
Local identity resolution and provisioning.

Maps an allowed identity onto a local user:

- existing, enabled user    -> Authenticated
- existing, disabled user   -> PendingEnablement (never re-provisioned)
- unreadable user record    -> Rejected(USER_INIT_FAILURE)
- no user                   -> provision from claims

Provisioned users take ``enabled``/``verified`` from the provider's
userAutoEnabled/userAutoVerified flags. With forceUserCreate the new user is
saved straight away as an admin action; a failed save is logged and the
login carries on with the unsaved user.
"""

import logging

from ..errors import UserInitError, UserNotFoundError
from ..models import (
    AuthOutcome,
    Authenticated,
    EventDetails,
    IdentityClaims,
    LocalUser,
    PendingEnablement,
    ProviderConfig,
    Rejected,
    RejectionReason,
)
from ..users import UserStore

logger = logging.getLogger(__name__)

NEW_USER_EVENT = EventDetails(
    category="PROJECT_ACCESS",
    type="PROCESS",
    action="added new user",
    reason="new user logged in",
    comment="OpenID connect new user",
)


class IdentityResolver:
    def __init__(self, store: UserStore, admin_username: str = "admin"):
        self.store = store
        self.admin_username = admin_username

    async def resolve(self, claims: IdentityClaims, provider: ProviderConfig) -> AuthOutcome:
        try:
            user = await self.store.get_user(claims.username)
        except UserInitError as e:
            logger.error(
                "Cannot init OpenID user from store",
                extra={"username": claims.username, "provider_id": provider.provider_id},
                exc_info=True,
            )
            return Rejected(
                provider_id=provider.provider_id,
                reason=RejectionReason.USER_INIT_FAILURE,
                detail=str(e),
                username=claims.username,
                email=claims.email,
            )
        except UserNotFoundError:
            return await self._provision(claims, provider)

        if user.enabled:
            logger.debug("Existing user is enabled", extra={"username": user.username})
            return Authenticated(provider_id=provider.provider_id, user=user)

        logger.info("Existing user is not enabled", extra={"username": user.username})
        return PendingEnablement(provider_id=provider.provider_id, user=user)

    async def _provision(self, claims: IdentityClaims, provider: ProviderConfig) -> AuthOutcome:
        user = self.store.create_user()
        user.email = claims.email
        user.username = claims.username
        user.firstname = claims.firstname
        user.lastname = claims.lastname
        user.enabled = provider.user_auto_enabled
        user.verified = provider.user_auto_verified

        persisted = False
        if provider.force_user_create:
            persisted = await self._save_new_user(user, provider)

        logger.info(
            "Provisioned new OpenID user",
            extra={
                "username": user.username,
                "provider_id": provider.provider_id,
                "enabled": user.enabled,
                "persisted": persisted,
            },
        )

        if user.enabled:
            return Authenticated(
                provider_id=provider.provider_id, user=user, provisioned=True, persisted=persisted
            )
        return PendingEnablement(
            provider_id=provider.provider_id, user=user, provisioned=True, persisted=persisted
        )

    async def _save_new_user(self, user: LocalUser, provider: ProviderConfig) -> bool:
        """Best-effort eager save. Returns whether the save went through."""
        try:
            admin = await self.store.get_user(self.admin_username)
            await self.store.save(user, admin, True, NEW_USER_EVENT)
        except Exception:
            logger.warning(
                "Ignoring failure to save new OpenID user",
                extra={"username": user.username, "provider_id": provider.provider_id},
                exc_info=True,
            )
            return False
        return True
