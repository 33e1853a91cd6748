"""
Session Context
Explicit holder for per-session state: the current user and the background
feeds that depend on it. start() resolves the user and starts the feeds,
stop() tears them down. Use it as an async context manager:

    async with SessionContext(users, email="ana@example.com") as session:
        feed = NotificationFeed(notifications, session)
        await feed.start()
        ...
"""

import logging
from typing import List, Optional

from salescrm.models import User
from salescrm.store.base import RecordStore

logger = logging.getLogger(__name__)


class SessionContext:

    def __init__(self, users: RecordStore, email: str = ''):
        self._users = users
        self._email = email
        self.current_user: Optional[User] = None
        self._feeds: List = []

    def attach(self, feed) -> None:
        """Register a feed to be stopped with the session."""
        if feed not in self._feeds:
            self._feeds.append(feed)

    async def start(self) -> Optional[User]:
        """
        Resolve the current user by email. An unknown or empty email leaves
        the session anonymous; feeds then stay idle.
        """
        if self._email:
            found = await self._users.filter({'email': self._email}, limit=1)
            self.current_user = found[0] if found else None

        if self.current_user is None:
            logger.warning(f"Session started without an authenticated user (email={self._email!r})")
            return None

        logger.info(f"Session started for user {self.current_user.id} ({self.current_user.email})")
        for feed in self._feeds:
            await feed.start()
        return self.current_user

    async def stop(self) -> None:
        for feed in self._feeds:
            await feed.stop()
        if self.current_user is not None:
            logger.info(f"Session stopped for user {self.current_user.id}")
        self.current_user = None

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.stop()
