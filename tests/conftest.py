"""Shared test fixtures."""

import pytest

from ticket_sentinel.config import AuthorRole
from ticket_sentinel.tickets.application import TicketCommandService, TicketLifecycleService
from ticket_sentinel.tickets.domain import TimerPolicy
from ticket_sentinel.tickets.infrastructure import TimerRegistry
from tests.support import (
    CATEGORY_ID,
    INTAKE_BOT_ID,
    KING_ID,
    KING_ROLE_ID,
    LOG_CHANNEL_ID,
    OTHER_BOT_ID,
    STAFF_ID,
    STAFF_ROLE_ID,
    FakeScheduler,
    InMemoryTicketStore,
    RecordingMessenger,
    VirtualClock,
)


@pytest.fixture
def clock():
    return VirtualClock()


@pytest.fixture
def scheduler(clock):
    return FakeScheduler(clock)


@pytest.fixture
def registry(scheduler, clock):
    return TimerRegistry(scheduler=scheduler, clock=clock)


@pytest.fixture
def store():
    return InMemoryTicketStore()


@pytest.fixture
def messenger():
    messenger = RecordingMessenger()
    messenger.roles.update({
        STAFF_ID: AuthorRole.STAFF,
        KING_ID: AuthorRole.PRIVILEGED,
        INTAKE_BOT_ID: AuthorRole.BOT,
        OTHER_BOT_ID: AuthorRole.BOT,
    })
    return messenger


@pytest.fixture
def policy():
    return TimerPolicy()


@pytest.fixture
def make_engine(store, messenger, registry, policy, clock):
    """Build an engine; the fixture doubles are shared, so a second engine simulates a restart."""
    def _make(timers=None, **overrides):
        options = dict(
            intake_bot_id=INTAKE_BOT_ID,
            ticket_category_id=CATEGORY_ID,
            alert_role_ids=[STAFF_ROLE_ID, KING_ROLE_ID],
            log_channel_id=LOG_CHANNEL_ID,
            clock=clock,
            retry_backoff_seconds=0,
        )
        options.update(overrides)
        return TicketLifecycleService(store, messenger, timers or registry, policy, **options)
    return _make


@pytest.fixture
def engine(make_engine):
    return make_engine()


@pytest.fixture
def commands(engine, messenger):
    return TicketCommandService(engine, messenger)
