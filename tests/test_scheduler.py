"""Tests for the APScheduler-backed timer registry."""

import asyncio
from datetime import timedelta

import pytest

from ticket_sentinel.config import TimerKind
from ticket_sentinel.tickets.infrastructure import TimerRegistry
from tests.support import EPOCH, HOUR, MINUTE, OTHER_TICKET_ID, TICKET_ID

pytestmark = pytest.mark.asyncio


class Recorder:
    def __init__(self, clock):
        self.clock = clock
        self.fired = []

    async def __call__(self, handle):
        self.fired.append((handle.ticket_id, handle.kind, self.clock()))


class TestArm:
    async def test_one_shot_fires_once(self, registry, scheduler, clock):
        recorder = Recorder(clock)
        registry.arm(TICKET_ID, TimerKind.PENDING_START, recorder, delay=10 * MINUTE)

        await scheduler.advance(HOUR)

        assert recorder.fired == [(TICKET_ID, TimerKind.PENDING_START, EPOCH + 10 * MINUTE)]
        assert not registry.has_live(TICKET_ID)

    async def test_loop_first_fire_after_delay_then_every_period(self, registry, scheduler, clock):
        recorder = Recorder(clock)
        registry.arm(
            TICKET_ID, TimerKind.REMINDER_LOOP, recorder, delay=2 * HOUR, period=6 * HOUR
        )

        await scheduler.advance(15 * HOUR)

        assert [t for _, _, t in recorder.fired] == [EPOCH + 2 * HOUR, EPOCH + 8 * HOUR, EPOCH + 14 * HOUR]
        assert registry.has_live(TICKET_ID, TimerKind.REMINDER_LOOP)

    async def test_loop_defaults_first_fire_to_period(self, registry, scheduler, clock):
        recorder = Recorder(clock)
        registry.arm(TICKET_ID, TimerKind.REMINDER_LOOP, recorder, period=6 * HOUR)

        await scheduler.advance(7 * HOUR)

        assert [t for _, _, t in recorder.fired] == [EPOCH + 6 * HOUR]

    async def test_job_id_is_ticket_and_kind(self, registry, scheduler):
        handle = registry.arm(TICKET_ID, TimerKind.STAFF_ALERT, Recorder(None), delay=HOUR)
        assert handle.job_id == f"{TICKET_ID}:staff_alert"
        assert scheduler.job_ids() == {f"{TICKET_ID}:staff_alert"}

    async def test_rearm_replaces_previous_handle(self, registry, scheduler, clock):
        recorder = Recorder(clock)
        first = registry.arm(TICKET_ID, TimerKind.PENDING_START, recorder, delay=10 * MINUTE)
        await scheduler.advance(5 * MINUTE)
        registry.arm(TICKET_ID, TimerKind.PENDING_START, recorder, delay=10 * MINUTE)

        await scheduler.advance(HOUR)

        assert first.cancelled
        assert [t for _, _, t in recorder.fired] == [EPOCH + 15 * MINUTE]


class TestCancel:
    async def test_cancel_all_leaves_nothing_live(self, registry, scheduler, clock):
        recorder = Recorder(clock)
        registry.arm(TICKET_ID, TimerKind.REMINDER_LOOP, recorder, period=6 * HOUR)
        registry.arm(TICKET_ID, TimerKind.STAFF_ALERT, recorder, delay=24 * HOUR)

        registry.cancel_all(TICKET_ID)
        await scheduler.advance(48 * HOUR)

        assert recorder.fired == []
        assert registry.live_kinds(TICKET_ID) == set()
        assert scheduler.job_ids() == set()

    async def test_cancel_all_is_idempotent(self, registry):
        registry.cancel_all(TICKET_ID)
        registry.cancel_all(TICKET_ID)
        assert not registry.has_live(TICKET_ID)

    async def test_cancel_after_one_shot_fired(self, registry, scheduler, clock):
        handle = registry.arm(TICKET_ID, TimerKind.PENDING_START, Recorder(clock), delay=MINUTE)
        await scheduler.advance(2 * MINUTE)

        registry.cancel_all(TICKET_ID)

        assert handle.fired
        assert handle.cancelled

    async def test_tickets_are_isolated(self, registry, scheduler, clock):
        recorder = Recorder(clock)
        registry.arm(TICKET_ID, TimerKind.STAFF_ALERT, recorder, delay=HOUR)
        registry.arm(OTHER_TICKET_ID, TimerKind.STAFF_ALERT, recorder, delay=HOUR)

        registry.cancel_all(TICKET_ID)
        await scheduler.advance(2 * HOUR)

        assert [tid for tid, _, _ in recorder.fired] == [OTHER_TICKET_ID]

    async def test_cancelled_in_flight_callback_sees_flag(self, registry, scheduler, clock):
        seen = []

        async def callback(handle):
            registry.cancel_all(handle.ticket_id)
            seen.append(handle.cancelled)

        registry.arm(TICKET_ID, TimerKind.STAFF_ALERT, callback, delay=HOUR)
        await scheduler.advance(2 * HOUR)

        assert seen == [True]


class TestDispatch:
    async def test_failing_callback_does_not_affect_other_jobs(self, registry, scheduler, clock):
        recorder = Recorder(clock)

        async def broken(handle):
            raise RuntimeError("boom")

        registry.arm(TICKET_ID, TimerKind.STAFF_ALERT, broken, delay=HOUR)
        registry.arm(OTHER_TICKET_ID, TimerKind.STAFF_ALERT, recorder, delay=HOUR)

        await scheduler.advance(2 * HOUR)

        assert [tid for tid, _, _ in recorder.fired] == [OTHER_TICKET_ID]

    async def test_shutdown_cancels_everything(self, registry, scheduler, clock):
        registry.start()
        recorder = Recorder(clock)
        registry.arm(TICKET_ID, TimerKind.REMINDER_LOOP, recorder, period=HOUR)

        registry.shutdown()
        await scheduler.advance(3 * HOUR)

        assert recorder.fired == []
        assert not registry.is_running


class TestRealScheduler:
    async def test_fires_on_asyncio_scheduler(self):
        registry = TimerRegistry()
        registry.start()
        fired = asyncio.Event()

        async def callback(handle):
            fired.set()

        try:
            registry.arm(TICKET_ID, TimerKind.PENDING_START, callback, delay=timedelta(milliseconds=50))
            await asyncio.wait_for(fired.wait(), timeout=5)
        finally:
            registry.shutdown()

        assert not registry.has_live(TICKET_ID)
