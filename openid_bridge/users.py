"""
Local user store boundary.

``UserStore`` is the contract the identity resolver relies on. Real
deployments plug in their user-management service; ``InMemoryUserStore`` is
the reference implementation used by the development server and the tests.
"""

import asyncio
import copy
import logging
from typing import Dict, List, Optional, Protocol, Set, Tuple

from .errors import PersistenceError, UserInitError, UserNotFoundError
from .models import EventDetails, LocalUser

logger = logging.getLogger(__name__)


class UserStore(Protocol):
    async def get_user(self, username: str) -> LocalUser:
        """Raises UserNotFoundError or UserInitError."""
        ...

    def create_user(self) -> LocalUser:
        """Blank, unsaved user."""
        ...

    async def save(
        self,
        user: LocalUser,
        acting_user: Optional[LocalUser],
        audit: bool,
        event: EventDetails,
    ) -> None:
        """Raises PersistenceError."""
        ...


class InMemoryUserStore:
    """
    Dict-backed user store.

    Lookups and saves are serialized with an asyncio lock. ``add_if_absent``
    is the compare-and-create primitive for callers that need atomic
    get-or-create; the resolver itself does not use it.
    """

    def __init__(self, users: Optional[List[LocalUser]] = None):
        self._users: Dict[str, LocalUser] = {}
        self._broken: Set[str] = set()
        self._next_id = 1
        self._lock = asyncio.Lock()
        self.audit_log: List[Tuple[str, Optional[str], EventDetails]] = []
        for user in users or []:
            self._insert(user)

    def _insert(self, user: LocalUser) -> LocalUser:
        stored = copy.deepcopy(user)
        if stored.id is None:
            stored.id = self._next_id
            self._next_id += 1
        user.id = stored.id
        self._users[stored.username] = stored
        return stored

    def mark_corrupt(self, username: str) -> None:
        """Make lookups for ``username`` fail with UserInitError."""
        self._broken.add(username)

    async def get_user(self, username: str) -> LocalUser:
        async with self._lock:
            if username in self._broken:
                raise UserInitError(f"Cannot initialize user record: {username}")
            user = self._users.get(username)
            if user is None:
                raise UserNotFoundError(username)
            return copy.deepcopy(user)

    def create_user(self) -> LocalUser:
        return LocalUser()

    async def save(
        self,
        user: LocalUser,
        acting_user: Optional[LocalUser],
        audit: bool,
        event: EventDetails,
    ) -> None:
        if not user.username:
            raise PersistenceError("Cannot save a user without a username")

        async with self._lock:
            self._insert(user)
            if audit:
                self.audit_log.append(
                    (user.username, acting_user.username if acting_user else None, event)
                )

        logger.info(
            "Saved local user",
            extra={"username": user.username, "action": event.action},
        )

    async def add_if_absent(self, user: LocalUser) -> bool:
        """Insert ``user`` unless the username is taken. Returns True when inserted."""
        async with self._lock:
            if user.username in self._users:
                return False
            self._insert(user)
            return True

    def __contains__(self, username: str) -> bool:
        return username in self._users

    def __len__(self) -> int:
        return len(self._users)
