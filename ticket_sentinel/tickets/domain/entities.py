"""
Ticket Domain Entities
=======================

Pure Python domain entities for the ticket timer lifecycle.

These entities contain the business rules for a single ticket record and
are free of infrastructure concerns. Timestamps are timezone-aware UTC.
"""

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Optional

from ticket_sentinel.config import TimerState


@dataclass
class TicketRecord:
    """
    Durable timer state of one ticket channel.

    ``timer_start_time`` marks when the active countdown began, which is the
    end of the pre-delay rather than the staff message that triggered it.
    """

    id: str
    creator_id: str
    timer_start_time: Optional[datetime] = None
    reminder_count: int = 0
    staff_alerted_at: Optional[datetime] = None

    def __post_init__(self):
        """Validate record invariants on initialization."""
        if self.reminder_count < 0:
            raise ValueError("reminder_count cannot be negative")

        if self.reminder_count > 0 and self.timer_start_time is None:
            raise ValueError("reminder_count requires a running timer")

        if self.staff_alerted_at is not None and self.timer_start_time is None:
            raise ValueError("staff_alerted_at requires a running timer")

    @property
    def is_running(self) -> bool:
        """Check if a countdown epoch is recorded."""
        return self.timer_start_time is not None

    @property
    def is_escalated(self) -> bool:
        """Check if the staff alert fired for the current epoch."""
        return self.staff_alerted_at is not None

    def copy(self) -> "TicketRecord":
        """Working copy; the stored record only changes once a write succeeds."""
        return replace(self)

    def start_countdown(self, now: datetime) -> None:
        """Begin a fresh countdown epoch at ``now``."""
        self.timer_start_time = now
        self.reminder_count = 0
        self.staff_alerted_at = None

    def clear_timer(self) -> None:
        """Return to idle."""
        self.timer_start_time = None
        self.reminder_count = 0
        self.staff_alerted_at = None

    def record_reminder(self) -> int:
        """Count one more reminder and return the new total."""
        if self.timer_start_time is None:
            raise ValueError("cannot record a reminder without a running timer")
        self.reminder_count += 1
        return self.reminder_count

    def mark_escalated(self, now: datetime) -> None:
        """Mark the staff alert as sent for the current epoch."""
        if self.timer_start_time is None:
            raise ValueError("cannot escalate without a running timer")
        self.staff_alerted_at = now


def derive_state(record: Optional[TicketRecord], pending_start: bool = False) -> TimerState:
    """
    Single source of truth for a ticket's lifecycle state.

    An armed pre-delay wins over a persisted countdown: the countdown it
    supersedes is only replaced once the pre-delay elapses.

    Args:
        record: Persisted record, or None when the ticket is untracked
        pending_start: Whether a pre-delay handle is armed for the ticket

    Returns:
        TimerState
    """
    if record is None:
        return TimerState.UNTRACKED
    if pending_start:
        return TimerState.PENDING_START
    if record.is_escalated:
        return TimerState.ESCALATED
    if record.is_running:
        return TimerState.ACTIVE
    return TimerState.IDLE
