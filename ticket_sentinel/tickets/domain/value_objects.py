"""
Ticket Timer Value Objects
===========================

Immutable value objects for the ticket timer domain.

Value objects are defined by their attributes rather than an identity.
They are immutable and can be freely shared.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from pydantic import BaseModel, Field, model_validator


class TimerPolicy(BaseModel):
    """
    Fixed durations that drive every ticket countdown.

    Loaded from settings, optionally overridden by a YAML file.
    """
    model_config = {"frozen": True}

    start_delay_seconds: int = Field(default=10 * 60, ge=0, description="Pre-delay after a staff message")
    reminder_interval_seconds: int = Field(default=6 * 60 * 60, ge=1, description="Reminder period")
    staff_alert_seconds: int = Field(default=24 * 60 * 60, ge=1, description="Staff alert offset")
    final_reminder_number: int = Field(default=3, ge=1, description="Reminder with final-warning copy")
    reminder_tolerance_seconds: float = Field(default=1.0, ge=0, description="Recovery catch-up window")

    @model_validator(mode="after")
    def validate_window(self) -> "TimerPolicy":
        """The alert must not precede the first reminder window."""
        if self.staff_alert_seconds < self.reminder_interval_seconds:
            raise ValueError("staff_alert_seconds must be >= reminder_interval_seconds")
        return self

    @property
    def start_delay(self) -> timedelta:
        return timedelta(seconds=self.start_delay_seconds)

    @property
    def reminder_interval(self) -> timedelta:
        return timedelta(seconds=self.reminder_interval_seconds)

    @property
    def staff_alert_offset(self) -> timedelta:
        return timedelta(seconds=self.staff_alert_seconds)


@dataclass(frozen=True)
class RecoveryPlan:
    """
    Schedule reconstructed for a running ticket after a process restart.

    When ``fire_alert_now`` is set, every other field is irrelevant: the
    alert window already expired during downtime.
    """
    fire_alert_now: bool
    reminder_count: int
    fire_reminder_now: bool = False
    next_reminder_delay: Optional[timedelta] = None
    alert_delay: Optional[timedelta] = None


class ScheduleCalculator:
    """
    Pure functions for countdown arithmetic.

    Stateless utility class; the live engine and startup recovery both
    compute schedules here so they cannot drift apart.
    """

    @staticmethod
    def elapsed(start: datetime, now: datetime) -> timedelta:
        """Time since the countdown started, never negative."""
        return max(now - start, timedelta(0))

    @staticmethod
    def alert_window_closed(start: datetime, now: datetime, policy: TimerPolicy) -> bool:
        """True once the staff alert offset has been reached."""
        return now - start >= policy.staff_alert_offset

    @staticmethod
    def is_final_reminder(reminder_count: int, policy: TimerPolicy) -> bool:
        """Whether a reminder gets the final-warning copy."""
        return reminder_count == policy.final_reminder_number

    @staticmethod
    def next_reminder_at(start: datetime, reminder_count: int, policy: TimerPolicy) -> Optional[datetime]:
        """Due time of the next reminder, None if it falls after the alert."""
        due = start + policy.reminder_interval * (reminder_count + 1)
        if due - start >= policy.staff_alert_offset:
            return None
        return due

    @staticmethod
    def alert_at(start: datetime, policy: TimerPolicy) -> datetime:
        """Due time of the staff alert."""
        return start + policy.staff_alert_offset

    @staticmethod
    def format_elapsed(elapsed: Optional[timedelta]) -> str:
        """Render as ``"<hours>h <minutes>m"``."""
        if elapsed is None:
            return "Timer not started"
        total_minutes = int(elapsed.total_seconds() // 60)
        return f"{total_minutes // 60}h {total_minutes % 60}m"

    @staticmethod
    def plan_recovery(
        elapsed: timedelta,
        reminder_count: int,
        policy: TimerPolicy
    ) -> RecoveryPlan:
        """
        Rebuild the schedule a continuously running process would have.

        Args:
            elapsed: Time since ``timer_start_time``
            reminder_count: Count persisted before the restart
            policy: Timer durations

        Returns:
            RecoveryPlan
        """
        if elapsed >= policy.staff_alert_offset:
            return RecoveryPlan(fire_alert_now=True, reminder_count=reminder_count)

        interval = policy.reminder_interval_seconds
        elapsed_s = elapsed.total_seconds()

        # Reminders missed while down are counted, not re-sent
        completed = int(elapsed_s // interval)
        count = max(reminder_count, completed)

        since_last = elapsed_s - completed * interval
        to_next = interval - since_last

        fire_now = (
            to_next <= policy.reminder_tolerance_seconds
            and elapsed_s + to_next < policy.staff_alert_seconds
        )
        next_delay = to_next + interval if fire_now else to_next

        return RecoveryPlan(
            fire_alert_now=False,
            reminder_count=count,
            fire_reminder_now=fire_now,
            next_reminder_delay=timedelta(seconds=next_delay),
            alert_delay=policy.staff_alert_offset - elapsed,
        )
