"""
Notification Feed - unread counter and read-state mutator.

Polls the current user's most recent notifications on a fixed interval while
the session is running. Read-state changes are optimistic: the local copy and
the counter change first, then the store update is issued, and a failed update
is logged but never rolled back. Local state is eventually consistent with the
store (the next successful poll reconciles it).
"""

import asyncio
import logging
from typing import List, Optional

from salescrm.bus.events import bus, EventBus, EVENT_NOTIFICATIONS_REFRESHED, EVENT_NOTIFICATION_READ
from salescrm.engine.session import SessionContext
from salescrm.errors import CrmError
from salescrm.models import Notification
from salescrm.store.base import RecordStore

logger = logging.getLogger(__name__)

POLL_INTERVAL_SECONDS = 30.0
FETCH_LIMIT = 20


class NotificationFeed:

    def __init__(self, store: RecordStore, session: SessionContext,
                 interval: float = POLL_INTERVAL_SECONDS, limit: int = FETCH_LIMIT,
                 event_bus: Optional[EventBus] = None):
        self._store = store
        self._session = session
        self._interval = interval
        self._limit = limit
        self._bus = event_bus if event_bus is not None else bus

        self.notifications: List[Notification] = []
        self.unread_count = 0

        self._task: Optional[asyncio.Task] = None
        self._stopping: Optional[asyncio.Event] = None
        # Bumped by stop(); a fetch started under an older generation is discarded
        self._generation = 0

        session.attach(self)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    # =========================================================================
    # POLLING
    # =========================================================================

    async def refresh(self) -> List[Notification]:
        """Fetch the newest notifications for the current user and recount unread."""
        user = self._session.current_user
        if user is None:
            return self.notifications

        generation = self._generation
        fetched = await self._store.filter({'user_id': user.id}, '-created_date', self._limit)
        if generation != self._generation:
            logger.debug(f"Discarding {len(fetched)} notifications fetched after teardown")
            return self.notifications

        self.notifications = fetched
        self.unread_count = sum(1 for n in fetched if not n.read)
        logger.debug(f"Notifications refreshed: {len(fetched)} fetched, {self.unread_count} unread")
        self._bus.emit(EVENT_NOTIFICATIONS_REFRESHED, {'user_id': user.id, 'unread_count': self.unread_count})
        return fetched

    async def start(self) -> None:
        """Start polling. A no-op until the session has a user, or when already running."""
        if self.running:
            return
        if self._session.current_user is None:
            logger.debug("Notification polling not started: no current user")
            return
        self._stopping = asyncio.Event()
        self._task = asyncio.create_task(self._poll(self._stopping))
        logger.info(f"Notification polling started (every {self._interval}s)")

    async def stop(self) -> None:
        """
        Cancel the recurring schedule. An in-flight fetch is allowed to finish
        and its result is dropped. If the polling task crashed, its exception is
        re-raised here once the feed is already stopped.
        """
        self._generation += 1
        if self._task is None:
            return
        self._stopping.set()
        task, self._task = self._task, None
        try:
            await task
        finally:
            logger.info("Notification polling stopped")

    async def _poll(self, stopping: asyncio.Event) -> None:
        while not stopping.is_set():
            try:
                await self.refresh()
            except CrmError as exc:
                logger.error(f"Notification poll failed: {exc}")
            try:
                await asyncio.wait_for(stopping.wait(), timeout=self._interval)
            except asyncio.TimeoutError:
                pass

    # =========================================================================
    # READ STATE
    # =========================================================================

    async def mark_read(self, notification_id) -> None:
        """
        Flip the local copy to read and decrement the counter (floor 0), then
        update the store. Already-read notifications leave the counter alone.
        """
        local = next((n for n in self.notifications if n.id == notification_id), None)
        if local is not None and not local.read:
            local.read = True
            self.unread_count = max(0, self.unread_count - 1)

        try:
            await self._store.update(notification_id, {'read': True})
        except CrmError as exc:
            logger.warning(f"mark_read: store update failed for notification {notification_id}: {exc}")

        self._bus.emit(EVENT_NOTIFICATION_READ, {'notification_id': notification_id})

    async def mark_all_read(self) -> List:
        """
        Update every locally-unread notification, one store call at a time.
        Failed updates are logged and skipped; local state always ends all-read.
        Returns the ids whose store update failed.
        """
        unread = [n for n in self.notifications if not n.read]
        failed = []
        for notification in unread:
            try:
                await self._store.update(notification.id, {'read': True})
            except CrmError as exc:
                failed.append(notification.id)
                logger.warning(f"mark_all_read: store update failed for notification {notification.id}: {exc}")

        for notification in self.notifications:
            notification.read = True
        self.unread_count = 0

        logger.info(f"Marked {len(unread)} notifications read ({len(failed)} store failures)")
        for notification in unread:
            self._bus.emit(EVENT_NOTIFICATION_READ, {'notification_id': notification.id})
        return failed
