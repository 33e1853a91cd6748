"""
Runtime wiring: stores for the configured backend plus the engine objects built on them.
"""

import logging
from dataclasses import dataclass

from salescrm.config import config as default_config
from salescrm.engine.audit_log import AuditLog
from salescrm.engine.columns import ColumnPreference, JsonPreferenceStorage
from salescrm.engine.notifications import NotificationFeed
from salescrm.engine.session import SessionContext
from salescrm.engine.stage_machine import StageMachine
from salescrm.models import Contact, Interaction, Notification, User
from salescrm.store.base import RecordStore
from salescrm.store.memory import MemoryStore

logger = logging.getLogger(__name__)


@dataclass
class Runtime:
    contacts: RecordStore
    interactions: RecordStore
    users: RecordStore
    notifications: RecordStore
    machine: StageMachine
    columns: ColumnPreference
    settings: object

    def session(self) -> SessionContext:
        return SessionContext(self.users, self.settings.CURRENT_USER_EMAIL)

    def notification_feed(self, session: SessionContext) -> NotificationFeed:
        return NotificationFeed(
            self.notifications, session,
            interval=self.settings.NOTIFICATION_POLL_SECONDS,
            limit=self.settings.NOTIFICATION_LIMIT,
        )


def make_store(model, settings) -> RecordStore:
    if settings.STORE_BACKEND == 'memory':
        return MemoryStore(model)
    # Imported lazily so the memory backend never needs psycopg2
    from salescrm.store.postgres import PostgresStore
    return PostgresStore(model, database_url=settings.DATABASE_URL)


def build_runtime(settings=None) -> Runtime:
    settings = settings or default_config
    contacts = make_store(Contact, settings)
    interactions = make_store(Interaction, settings)
    logger.debug(f"Runtime built on the {settings.STORE_BACKEND} backend")
    return Runtime(
        contacts=contacts,
        interactions=interactions,
        users=make_store(User, settings),
        notifications=make_store(Notification, settings),
        machine=StageMachine(contacts, AuditLog(interactions)),
        columns=ColumnPreference(JsonPreferenceStorage(settings.PREFERENCES_PATH)),
        settings=settings,
    )
