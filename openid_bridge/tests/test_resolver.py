"""
Tests for local identity resolution and provisioning.
"""

from unittest.mock import AsyncMock, Mock

import pytest

from openid_bridge.auth.resolver import NEW_USER_EVENT, IdentityResolver
from openid_bridge.errors import PersistenceError, UserInitError, UserNotFoundError
from openid_bridge.models import (
    Authenticated,
    IdentityClaims,
    LocalUser,
    PendingEnablement,
    Rejected,
    RejectionReason,
)
from openid_bridge.users import InMemoryUserStore

from conftest import make_provider


ADMIN = LocalUser(username="admin", email="admin@ok.org", enabled=True)


def identity(username: str = "u1", email: str = "a@ok.org") -> IdentityClaims:
    return IdentityClaims(
        provider_id="idp1",
        username=username,
        email=email,
        firstname="Ada",
        lastname="Lovelace",
    )


@pytest.fixture
def store() -> InMemoryUserStore:
    return InMemoryUserStore([ADMIN])


class TestExistingUsers:

    @pytest.mark.asyncio
    async def test_enabled_user_authenticated(self, store):
        await store.add_if_absent(LocalUser(username="u1", email="a@ok.org", enabled=True))

        outcome = await IdentityResolver(store).resolve(identity(), make_provider())

        assert isinstance(outcome, Authenticated)
        assert outcome.user.username == "u1"
        assert outcome.provisioned is False

    @pytest.mark.asyncio
    async def test_disabled_user_pending_without_provisioning(self, store):
        await store.add_if_absent(LocalUser(username="u1", email="a@ok.org", enabled=False))

        outcome = await IdentityResolver(store).resolve(
            identity(), make_provider(user_auto_enabled=True, force_user_create=True)
        )

        assert isinstance(outcome, PendingEnablement)
        assert outcome.provisioned is False
        assert outcome.username == "u1"
        assert store.audit_log == []

    @pytest.mark.asyncio
    async def test_init_failure_rejected(self, store):
        store.mark_corrupt("u1")

        outcome = await IdentityResolver(store).resolve(identity(), make_provider())

        assert isinstance(outcome, Rejected)
        assert outcome.reason == RejectionReason.USER_INIT_FAILURE
        assert outcome.username == "u1"
        assert outcome.email == "a@ok.org"


class TestProvisioning:

    @pytest.mark.asyncio
    async def test_auto_enabled_new_user(self, store):
        outcome = await IdentityResolver(store).resolve(
            identity(), make_provider(user_auto_enabled=True, user_auto_verified=True)
        )

        assert isinstance(outcome, Authenticated)
        assert outcome.provisioned is True
        assert outcome.persisted is False
        assert outcome.user.enabled is True
        assert outcome.user.verified is True
        assert outcome.user.firstname == "Ada"
        assert "u1" not in store

    @pytest.mark.asyncio
    async def test_new_user_pending_without_auto_enable(self, store):
        outcome = await IdentityResolver(store).resolve(identity(), make_provider())

        assert isinstance(outcome, PendingEnablement)
        assert outcome.provisioned is True
        assert outcome.user.enabled is False
        assert outcome.user.verified is False

    @pytest.mark.asyncio
    async def test_force_create_saves_once_as_admin(self, store):
        outcome = await IdentityResolver(store).resolve(
            identity(), make_provider(user_auto_enabled=True, force_user_create=True)
        )

        assert isinstance(outcome, Authenticated)
        assert outcome.persisted is True
        assert "u1" in store
        assert store.audit_log == [("u1", "admin", NEW_USER_EVENT)]

    @pytest.mark.asyncio
    async def test_force_create_failure_is_swallowed(self):
        mock_store = Mock()
        mock_store.create_user = Mock(return_value=LocalUser())
        mock_store.get_user = AsyncMock(side_effect=[UserNotFoundError("u1"), ADMIN])
        mock_store.save = AsyncMock(side_effect=PersistenceError("database down"))

        outcome = await IdentityResolver(mock_store).resolve(
            identity(), make_provider(user_auto_enabled=True, force_user_create=True)
        )

        assert isinstance(outcome, Authenticated)
        assert outcome.persisted is False
        assert outcome.user.username == "u1"
        mock_store.save.assert_awaited_once()
        saved_user, acting_user, audit, event = mock_store.save.await_args.args
        assert acting_user is ADMIN
        assert audit is True
        assert event == NEW_USER_EVENT

    @pytest.mark.asyncio
    async def test_missing_admin_is_swallowed(self):
        store = InMemoryUserStore()

        outcome = await IdentityResolver(store).resolve(
            identity(), make_provider(force_user_create=True)
        )

        assert isinstance(outcome, PendingEnablement)
        assert outcome.persisted is False
        assert "u1" not in store

    @pytest.mark.asyncio
    async def test_admin_lookup_init_error_is_swallowed(self, store):
        store.mark_corrupt("admin")

        outcome = await IdentityResolver(store).resolve(
            identity(), make_provider(user_auto_enabled=True, force_user_create=True)
        )

        assert isinstance(outcome, Authenticated)
        assert outcome.persisted is False


class TestInMemoryUserStore:

    @pytest.mark.asyncio
    async def test_get_missing_user(self, store):
        with pytest.raises(UserNotFoundError):
            await store.get_user("nobody")

    @pytest.mark.asyncio
    async def test_corrupt_user(self, store):
        store.mark_corrupt("admin")

        with pytest.raises(UserInitError):
            await store.get_user("admin")

    @pytest.mark.asyncio
    async def test_add_if_absent(self, store):
        assert await store.add_if_absent(LocalUser(username="u1")) is True
        assert await store.add_if_absent(LocalUser(username="u1", email="other")) is False
        assert (await store.get_user("u1")).email == ""

    @pytest.mark.asyncio
    async def test_save_without_username(self, store):
        with pytest.raises(PersistenceError):
            await store.save(LocalUser(), None, True, NEW_USER_EVENT)

    @pytest.mark.asyncio
    async def test_returned_users_are_copies(self, store):
        user = await store.get_user("admin")
        user.enabled = False

        assert (await store.get_user("admin")).enabled is True
