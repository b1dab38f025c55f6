"""Tests for the ticket domain: records, state derivation, schedule arithmetic."""

from datetime import timedelta

import pytest

from ticket_sentinel.config import TimerState
from ticket_sentinel.tickets.application.notices import (
    describe_duration,
    reminder_notice,
    staff_alert_notice,
    timer_status_notice,
)
from ticket_sentinel.tickets.domain import ScheduleCalculator, TicketRecord, TimerPolicy, derive_state
from tests.support import CREATOR_ID, EPOCH, HOUR, KING_ROLE_ID, MINUTE, STAFF_ROLE_ID, TICKET_ID


def running(count=0, **kwargs):
    return TicketRecord(
        id=TICKET_ID, creator_id=CREATOR_ID, timer_start_time=EPOCH, reminder_count=count, **kwargs
    )


class TestTicketRecord:
    def test_new_record_is_idle(self):
        record = TicketRecord(id=TICKET_ID, creator_id=CREATOR_ID)
        assert not record.is_running
        assert not record.is_escalated
        assert record.reminder_count == 0

    def test_rejects_negative_count(self):
        with pytest.raises(ValueError):
            TicketRecord(id=TICKET_ID, creator_id=CREATOR_ID, reminder_count=-1)

    def test_rejects_count_without_running_timer(self):
        with pytest.raises(ValueError):
            TicketRecord(id=TICKET_ID, creator_id=CREATOR_ID, reminder_count=2)

    def test_rejects_escalation_without_running_timer(self):
        with pytest.raises(ValueError):
            TicketRecord(id=TICKET_ID, creator_id=CREATOR_ID, staff_alerted_at=EPOCH)

    def test_start_countdown_resets_epoch(self):
        record = running(count=2, staff_alerted_at=EPOCH + 24 * HOUR)
        later = EPOCH + 30 * HOUR
        record.start_countdown(later)
        assert record.timer_start_time == later
        assert record.reminder_count == 0
        assert record.staff_alerted_at is None

    def test_clear_timer(self):
        record = running(count=3)
        record.clear_timer()
        assert record.timer_start_time is None
        assert record.reminder_count == 0

    def test_record_reminder_counts_up(self):
        record = running(count=1)
        assert record.record_reminder() == 2
        assert record.reminder_count == 2

    def test_record_reminder_requires_running_timer(self):
        record = TicketRecord(id=TICKET_ID, creator_id=CREATOR_ID)
        with pytest.raises(ValueError):
            record.record_reminder()

    def test_copy_is_independent(self):
        record = running(count=1)
        working = record.copy()
        working.record_reminder()
        assert record.reminder_count == 1


class TestDeriveState:
    def test_untracked(self):
        assert derive_state(None) == TimerState.UNTRACKED

    def test_idle(self):
        assert derive_state(TicketRecord(id=TICKET_ID, creator_id=CREATOR_ID)) == TimerState.IDLE

    def test_pending_start(self):
        record = TicketRecord(id=TICKET_ID, creator_id=CREATOR_ID)
        assert derive_state(record, pending_start=True) == TimerState.PENDING_START

    def test_active(self):
        assert derive_state(running()) == TimerState.ACTIVE

    def test_escalated(self):
        record = running(count=3, staff_alerted_at=EPOCH + 24 * HOUR)
        assert derive_state(record) == TimerState.ESCALATED

    def test_pending_start_supersedes_persisted_countdown(self):
        assert derive_state(running(count=1), pending_start=True) == TimerState.PENDING_START
        record = running(count=3, staff_alerted_at=EPOCH + 24 * HOUR)
        assert derive_state(record, pending_start=True) == TimerState.PENDING_START


class TestTimerPolicy:
    def test_defaults(self):
        policy = TimerPolicy()
        assert policy.start_delay == 10 * MINUTE
        assert policy.reminder_interval == 6 * HOUR
        assert policy.staff_alert_offset == 24 * HOUR
        assert policy.final_reminder_number == 3

    def test_alert_must_not_precede_interval(self):
        with pytest.raises(ValueError):
            TimerPolicy(reminder_interval_seconds=7200, staff_alert_seconds=3600)


class TestScheduleCalculator:
    policy = TimerPolicy()

    def test_elapsed_never_negative(self):
        assert ScheduleCalculator.elapsed(EPOCH, EPOCH - MINUTE) == timedelta(0)

    def test_format_elapsed(self):
        assert ScheduleCalculator.format_elapsed(3 * HOUR + 7 * MINUTE + timedelta(seconds=59)) == "3h 7m"
        assert ScheduleCalculator.format_elapsed(timedelta(0)) == "0h 0m"

    def test_format_elapsed_not_started(self):
        assert ScheduleCalculator.format_elapsed(None) == "Timer not started"

    def test_next_reminder_at(self):
        assert ScheduleCalculator.next_reminder_at(EPOCH, 0, self.policy) == EPOCH + 6 * HOUR
        assert ScheduleCalculator.next_reminder_at(EPOCH, 2, self.policy) == EPOCH + 18 * HOUR

    def test_no_reminder_at_alert_boundary(self):
        assert ScheduleCalculator.next_reminder_at(EPOCH, 3, self.policy) is None

    def test_alert_window(self):
        assert not ScheduleCalculator.alert_window_closed(EPOCH, EPOCH + 24 * HOUR - MINUTE, self.policy)
        assert ScheduleCalculator.alert_window_closed(EPOCH, EPOCH + 24 * HOUR, self.policy)

    def test_final_reminder(self):
        assert ScheduleCalculator.is_final_reminder(3, self.policy)
        assert not ScheduleCalculator.is_final_reminder(2, self.policy)
        assert not ScheduleCalculator.is_final_reminder(4, self.policy)


class TestPlanRecovery:
    policy = TimerPolicy()

    def test_mid_interval(self):
        plan = ScheduleCalculator.plan_recovery(13 * HOUR, 2, self.policy)
        assert not plan.fire_alert_now
        assert not plan.fire_reminder_now
        assert plan.reminder_count == 2
        assert plan.next_reminder_delay == 5 * HOUR
        assert plan.alert_delay == 11 * HOUR

    def test_backfills_missed_reminders_without_resending(self):
        plan = ScheduleCalculator.plan_recovery(13 * HOUR, 0, self.policy)
        assert plan.reminder_count == 2
        assert not plan.fire_reminder_now

    def test_never_lowers_persisted_count(self):
        plan = ScheduleCalculator.plan_recovery(HOUR, 1, self.policy)
        assert plan.reminder_count == 1

    def test_exact_interval_is_counted(self):
        plan = ScheduleCalculator.plan_recovery(6 * HOUR, 0, self.policy)
        assert plan.reminder_count == 1
        assert plan.next_reminder_delay == 6 * HOUR

    def test_due_within_tolerance_fires_now(self):
        plan = ScheduleCalculator.plan_recovery(12 * HOUR - timedelta(milliseconds=500), 1, self.policy)
        assert plan.fire_reminder_now
        assert plan.reminder_count == 1
        assert plan.next_reminder_delay == 6 * HOUR + timedelta(milliseconds=500)

    def test_reminder_at_alert_instant_is_not_fired(self):
        plan = ScheduleCalculator.plan_recovery(24 * HOUR - timedelta(milliseconds=500), 3, self.policy)
        assert not plan.fire_alert_now
        assert not plan.fire_reminder_now
        assert plan.alert_delay == timedelta(milliseconds=500)

    def test_expired_alert_window(self):
        plan = ScheduleCalculator.plan_recovery(25 * HOUR, 3, self.policy)
        assert plan.fire_alert_now
        assert plan.next_reminder_delay is None


class TestNotices:
    policy = TimerPolicy()

    def test_describe_duration(self):
        assert describe_duration(6 * HOUR) == "6 hours"
        assert describe_duration(HOUR) == "1 hour"
        assert describe_duration(10 * MINUTE) == "10 minutes"
        assert describe_duration(timedelta(seconds=90)) == "90 seconds"

    def test_regular_reminder(self):
        notice = reminder_notice(running(count=1), self.policy, EPOCH)
        assert notice.title == "🔔 Ticket Reminder"
        assert f"<@{CREATOR_ID}>" in notice.description
        assert notice.footer == "Reminder 1 of 3 • Next reminder in 6 hours"

    def test_final_reminder(self):
        notice = reminder_notice(running(count=3), self.policy, EPOCH)
        assert notice.title == "🔔 Final Ticket Reminder ⚠️"
        assert "6 hours" in notice.footer

    def test_staff_alert_pings_roles(self):
        notice = staff_alert_notice(running(count=3), [STAFF_ROLE_ID, KING_ROLE_ID], self.policy, EPOCH)
        assert notice.title == "⏰ 24-Hour Inactivity Alert"
        assert f"<@&{STAFF_ROLE_ID}> <@&{KING_ROLE_ID}>" in notice.description

    def test_status_notice(self):
        notice = timer_status_notice(running(count=1), TimerState.ACTIVE, self.policy, EPOCH + 7 * HOUR)
        assert "**Status:** ✅ Active" in notice.description
        assert "**Time Elapsed:** 7h 0m" in notice.description
        assert "**Reminders Sent:** 1" in notice.description
