"""
Suite-wide fixtures.

The whole suite runs on the in-memory store backend. STORE_BACKEND is set
before salescrm.config is first imported, because Config reads the
environment at import time and would otherwise demand a DATABASE_URL.
"""

import os

os.environ["STORE_BACKEND"] = "memory"

from datetime import datetime, timedelta, timezone  # noqa: E402

import pytest  # noqa: E402

from salescrm.bus.events import EventBus  # noqa: E402
from salescrm.engine.audit_log import AuditLog  # noqa: E402
from salescrm.engine.stage_machine import StageMachine  # noqa: E402
from salescrm.models import Contact, Interaction, Notification, User  # noqa: E402
from salescrm.store.memory import MemoryStore  # noqa: E402


class TickingClock:
    """Deterministic clock: every call is one minute after the previous one."""

    def __init__(self, start=datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc), step=timedelta(minutes=1)):
        self.now = start
        self.step = step

    def __call__(self):
        self.now += self.step
        return self.now


@pytest.fixture
def clock():
    return TickingClock()


@pytest.fixture
def event_bus():
    return EventBus()


@pytest.fixture
def contacts_store(clock):
    return MemoryStore(Contact, clock=clock)


@pytest.fixture
def interactions_store(clock):
    return MemoryStore(Interaction, clock=clock)


@pytest.fixture
def users_store(clock):
    return MemoryStore(User, clock=clock)


@pytest.fixture
def notifications_store(clock):
    return MemoryStore(Notification, clock=clock)


@pytest.fixture
def machine(contacts_store, interactions_store, event_bus, clock):
    return StageMachine(contacts_store, AuditLog(interactions_store), event_bus=event_bus, clock=clock)
