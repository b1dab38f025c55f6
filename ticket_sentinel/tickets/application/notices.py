"""
Ticket Notices
==============

Copy for everything the engine posts into a ticket or the log channel.

Builders are pure: they take a record and the timer policy and return a
``Notice`` the messenger renders for the chat platform.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Sequence

from ticket_sentinel.config import TimerState
from ticket_sentinel.tickets.application.dto import NoticeResponse
from ticket_sentinel.tickets.domain import ScheduleCalculator, TicketRecord, TimerPolicy

# Embed colors
YELLOW = 0xFEE75C
RED = 0xED4245
BLUE = 0x3498DB
GREEN = 0x57F287

NOT_AUTHORIZED = "❌ You are not authorized to use this command."
STORE_UNAVAILABLE = "❌ Could not update the ticket right now. Please try again."


@dataclass(frozen=True)
class Notice:
    """Rich message (embed) independent of any chat platform."""
    title: str
    description: str
    color: int
    footer: Optional[str] = None
    timestamp: Optional[datetime] = None

    def to_response(self) -> NoticeResponse:
        return NoticeResponse(
            title=self.title,
            description=self.description,
            color=self.color,
            footer=self.footer,
            timestamp=self.timestamp,
        )


def describe_duration(value: timedelta) -> str:
    """``6 hours``, ``10 minutes``, ``1 hour``..."""
    seconds = int(value.total_seconds())
    for unit, size in (("hour", 3600), ("minute", 60)):
        if seconds >= size and seconds % size == 0:
            count = seconds // size
            return f"{count} {unit}" + ("" if count == 1 else "s")
    return f"{seconds} second" + ("" if seconds == 1 else "s")


def user_mention(user_id: str) -> str:
    return f"<@{user_id}>"


def role_mention(role_id: str) -> str:
    return f"<@&{role_id}>"


def channel_mention(channel_id: str) -> str:
    return f"<#{channel_id}>"


def reminder_notice(record: TicketRecord, policy: TimerPolicy, now: datetime) -> Notice:
    """Reminder for the requester; the final one carries the last-chance copy."""
    interval = describe_duration(policy.reminder_interval)
    creator = user_mention(record.creator_id)

    if ScheduleCalculator.is_final_reminder(record.reminder_count, policy):
        remaining = policy.staff_alert_offset - policy.reminder_interval * record.reminder_count
        left = describe_duration(max(remaining, timedelta(0)))
        return Notice(
            title="🔔 Final Ticket Reminder ⚠️",
            description=(
                f"{creator}, please respond to this ticket immediately.\n\n"
                "• If you have any questions or need help, reply now\n"
                "• If your issue is solved, click the 🔒 button to close the ticket\n"
                f"• ⚠️ This is your last chance - our team will close this ticket in {left} "
                "if you don't respond"
            ),
            color=RED,
            footer=(
                f"Reminder {record.reminder_count} of {policy.final_reminder_number} "
                f"• Final warning - {left} remaining"
            ),
            timestamp=now,
        )

    return Notice(
        title="🔔 Ticket Reminder",
        description=(
            f"{creator}, please respond to this ticket.\n\n"
            "• If you have any questions or need help, reply here\n"
            "• If your issue is solved, click the 🔒 button to close the ticket\n"
            f"• If we don't hear from you within {describe_duration(policy.staff_alert_offset)}, "
            "our team may close this ticket"
        ),
        color=YELLOW,
        footer=(
            f"Reminder {record.reminder_count} of {policy.final_reminder_number} "
            f"• Next reminder in {interval}"
        ),
        timestamp=now,
    )


def staff_alert_notice(
    record: TicketRecord,
    role_ids: Sequence[str],
    policy: TimerPolicy,
    now: datetime
) -> Notice:
    """Escalation notice for the staff roles."""
    window = describe_duration(policy.staff_alert_offset)
    hours = policy.staff_alert_seconds / 3600
    roles = " ".join(role_mention(r) for r in role_ids)
    return Notice(
        title=f"⏰ {hours:g}-Hour Inactivity Alert",
        description=(
            f"{roles}\n\n"
            f"🚨 **No response from ticket creator** {user_mention(record.creator_id)} "
            f"**for {window}.**\n\n"
            "Please **close and delete** this ticket manually."
        ),
        color=RED,
        footer=f"Ticket has been inactive for {window}",
        timestamp=now,
    )


def timer_status_notice(
    record: TicketRecord,
    state: TimerState,
    policy: TimerPolicy,
    now: datetime
) -> Notice:
    """Status embed for a running or escalated countdown."""
    elapsed = ScheduleCalculator.elapsed(record.timer_start_time, now)
    window = describe_duration(policy.staff_alert_offset)

    if state == TimerState.ESCALATED:
        status = "🚨 Escalated"
        footer = f"Staff alert sent after {window}"
    else:
        status = "✅ Active"
        footer = f"Staff alert will trigger at {window}"

    return Notice(
        title="⏱️ Timer Status",
        description=(
            f"**Status:** {status}\n"
            f"**Time Elapsed:** {ScheduleCalculator.format_elapsed(elapsed)}\n"
            f"**Reminders Sent:** {record.reminder_count}\n"
            f"**Creator:** {user_mention(record.creator_id)}"
        ),
        color=BLUE,
        footer=footer,
        timestamp=now,
    )


def creator_notice(record: TicketRecord, now: datetime) -> Notice:
    """Creator lookup embed."""
    return Notice(
        title="🎫 Ticket Creator",
        description=(
            f"**Creator:** {user_mention(record.creator_id)}\n"
            f"**User ID:** {record.creator_id}"
        ),
        color=GREEN,
        footer="Use /creator assign to change if incorrect",
        timestamp=now,
    )
