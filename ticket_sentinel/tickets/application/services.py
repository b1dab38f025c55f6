"""
Ticket Application Services
============================

The ticket timer lifecycle engine and the ports it depends on.

Following SOLID principles:
- Single Responsibility: the engine owns state transitions and scheduling,
  delivery and storage live behind interfaces
- Dependency Inversion: depend on abstractions (store, messenger, timer
  registry), not on SQLAlchemy, Discord or APScheduler

Every read-modify-persist-and-rearm sequence runs under a per-ticket
``asyncio.Lock``. Locks are never shared between tickets.
"""

import asyncio
import weakref
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from functools import partial
from typing import Awaitable, Callable, List, Optional, Sequence, Set

from ticket_sentinel.config import (
    AuthorRole, MessageOutcome, STAFF_ROLES, TimerKind, TimerState
)
from ticket_sentinel.core import (
    DeliveryException, PersistenceException, ResourceNotFoundException
)
from ticket_sentinel.shared.infrastructure.logging import get_logger
from ticket_sentinel.tickets.application.dto import InboundMessage
from ticket_sentinel.tickets.application.notices import (
    Notice, channel_mention, reminder_notice, staff_alert_notice, user_mention
)
from ticket_sentinel.tickets.domain import (
    ScheduleCalculator, TicketRecord, TimerPolicy, derive_state
)

logger = get_logger(__name__)


# ========== Ports (Dependency Inversion) ==========

class ITicketStore(ABC):
    """Durable key-value storage of ticket records, keyed by channel ID."""

    @abstractmethod
    async def get(self, ticket_id: str) -> Optional[TicketRecord]:
        """Get a record, None when the ticket is untracked."""

    @abstractmethod
    async def upsert(self, record: TicketRecord) -> None:
        """Insert or replace a record."""

    @abstractmethod
    async def delete(self, ticket_id: str) -> bool:
        """Delete a record; False if it did not exist."""

    @abstractmethod
    async def count(self) -> int:
        """Number of tracked tickets."""

    @abstractmethod
    async def list_all(self) -> List[TicketRecord]:
        """Every stored record."""


class IMessenger(ABC):
    """Chat platform boundary: delivery, role lookup, channel lookup."""

    @abstractmethod
    async def send_message(
        self,
        channel_id: str,
        content: Optional[str] = None,
        notice: Optional[Notice] = None
    ) -> None:
        """Post a message; raises DeliveryException on failure."""

    @abstractmethod
    async def send_alert(self, channel_id: str, role_ids: Sequence[str], notice: Notice) -> None:
        """Post a notice that pings the given roles."""

    @abstractmethod
    async def classify_author_role(self, user_id: str, channel_id: str) -> AuthorRole:
        """Role of a user within the channel's guild."""

    @abstractmethod
    async def resolve_first_non_staff_mention(self, message: InboundMessage) -> Optional[str]:
        """First mentioned user that is neither staff-privileged nor a bot."""

    @abstractmethod
    async def channel_exists(self, channel_id: str) -> bool:
        """False only when the platform reports the channel gone."""


TimerCallback = Callable[["TimerHandle"], Awaitable[None]]


@dataclass(eq=False)
class TimerHandle:
    """
    Identity of one scheduled callback: (ticket, kind).

    ``cancelled`` is flipped by the registry; a callback that was already
    running when its timer got cancelled must check it and bail out.
    """
    ticket_id: str
    kind: TimerKind
    job_id: str
    repeating: bool = False
    cancelled: bool = False
    fired: bool = False

    @property
    def live(self) -> bool:
        if self.cancelled:
            return False
        return self.repeating or not self.fired


class ITimerRegistry(ABC):
    """Cancellable timer bookkeeping keyed by (ticket, kind)."""

    @abstractmethod
    def arm(
        self,
        ticket_id: str,
        kind: TimerKind,
        callback: TimerCallback,
        delay: Optional[timedelta] = None,
        period: Optional[timedelta] = None
    ) -> TimerHandle:
        """
        Schedule ``callback``; an existing handle of the same kind is
        cancelled first. With ``period`` the callback repeats, first firing
        after ``delay`` (default: one period).
        """

    @abstractmethod
    def cancel_all(self, ticket_id: str) -> None:
        """Cancel every handle of a ticket. Idempotent."""

    @abstractmethod
    def has_live(self, ticket_id: str, kind: Optional[TimerKind] = None) -> bool:
        """Whether any (or the given kind of) handle is live."""

    @abstractmethod
    def live_kinds(self, ticket_id: str) -> Set[TimerKind]:
        """Kinds with a live handle."""


@dataclass
class RecoverySummary:
    """Outcome counts of startup reconciliation."""
    restored: int = 0
    escalated: int = 0
    already_escalated: int = 0
    orphaned: int = 0
    skipped: int = 0
    failed: int = 0
    failed_ids: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "restored": self.restored,
            "escalated": self.escalated,
            "already_escalated": self.already_escalated,
            "orphaned": self.orphaned,
            "skipped": self.skipped,
            "failed": self.failed,
        }


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ========== Lifecycle Engine ==========

class TicketLifecycleService:
    """
    Ticket timer lifecycle engine.

    Owns the per-ticket state machine (untracked, idle, pending_start,
    active, escalated), decides when timers start, stop and restart, and
    reconciles the timer registry against persisted records on startup.
    The engine is the only writer of timer handles and timer fields.
    """

    def __init__(
        self,
        store: ITicketStore,
        messenger: IMessenger,
        timers: ITimerRegistry,
        policy: TimerPolicy,
        *,
        intake_bot_id: Optional[str] = None,
        ticket_category_id: Optional[str] = None,
        alert_role_ids: Sequence[str] = (),
        log_channel_id: Optional[str] = None,
        clock: Optional[Callable[[], datetime]] = None,
        persistence_retries: int = 3,
        retry_backoff_seconds: float = 0.5
    ):
        self._store = store
        self._messenger = messenger
        self._timers = timers
        self._policy = policy
        self._intake_bot_id = intake_bot_id
        self._ticket_category_id = ticket_category_id
        self._alert_role_ids = [r for r in alert_role_ids if r]
        self._log_channel_id = log_channel_id
        self._clock = clock or _utcnow
        self._retries = max(1, persistence_retries)
        self._backoff = retry_backoff_seconds
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    @property
    def policy(self) -> TimerPolicy:
        return self._policy

    def now(self) -> datetime:
        return self._clock()

    # ---------- plumbing ----------

    def _lock_for(self, ticket_id: str) -> asyncio.Lock:
        lock = self._locks.get(ticket_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[ticket_id] = lock
        return lock

    async def _with_retry(self, operation: str, ticket_id: Optional[str], call):
        """Run a store call, retrying with exponential backoff."""
        last_error: Optional[PersistenceException] = None
        for attempt in range(self._retries):
            try:
                return await call()
            except PersistenceException as e:
                last_error = e
                logger.warning(
                    "Ticket store call failed",
                    extra={
                        "operation": operation,
                        "ticket_id": ticket_id,
                        "attempt": attempt + 1,
                        "error": str(e)
                    }
                )
            if attempt < self._retries - 1:
                await asyncio.sleep(self._backoff * 2 ** attempt)

        logger.error(
            "Ticket store call abandoned",
            extra={"operation": operation, "ticket_id": ticket_id, "attempts": self._retries}
        )
        raise last_error

    async def _load(self, ticket_id: str) -> Optional[TicketRecord]:
        return await self._with_retry("get", ticket_id, partial(self._store.get, ticket_id))

    async def _persist(self, record: TicketRecord) -> None:
        await self._with_retry("upsert", record.id, partial(self._store.upsert, record))

    async def _deliver(
        self,
        channel_id: str,
        content: Optional[str] = None,
        notice: Optional[Notice] = None
    ) -> bool:
        """Best-effort delivery; failures never reach timer bookkeeping."""
        try:
            await self._messenger.send_message(channel_id, content=content, notice=notice)
            return True
        except DeliveryException as e:
            logger.warning(
                "Message delivery failed",
                extra={"channel_id": channel_id, "error": str(e)}
            )
            return False

    async def _announce(self, text: str) -> None:
        """Post an activity line to the log channel, if one is configured."""
        if self._log_channel_id:
            await self._deliver(self._log_channel_id, content=text)

    # ---------- read views ----------

    async def get_record(self, ticket_id: str) -> Optional[TicketRecord]:
        return await self._load(ticket_id)

    async def get_state(self, ticket_id: str) -> TimerState:
        record = await self._load(ticket_id)
        return derive_state(record, self._timers.has_live(ticket_id, TimerKind.PENDING_START))

    def live_timers(self, ticket_id: str) -> Set[TimerKind]:
        return self._timers.live_kinds(ticket_id)

    # ---------- inbound messages ----------

    async def handle_message(self, message: InboundMessage) -> MessageOutcome:
        """
        Classify a ticket-channel message and apply the transition it causes.

        Returns:
            MessageOutcome describing what the message did
        """
        if not message.guild_id:
            return MessageOutcome.IGNORED
        if message.author_is_bot and message.author_id != self._intake_bot_id:
            return MessageOutcome.IGNORED
        if self._ticket_category_id and message.parent_id != self._ticket_category_id:
            return MessageOutcome.IGNORED

        if message.author_is_bot:
            role = AuthorRole.BOT
        else:
            role = await self._messenger.classify_author_role(message.author_id, message.channel_id)
        # Staff identity wins over being the recorded creator
        is_staff = role in STAFF_ROLES

        async with self._lock_for(message.channel_id):
            record = await self._load(message.channel_id)

            if record is None:
                return await self._qualify_creator(message, role)

            if not is_staff and message.author_id == record.creator_id:
                await self._stop_locked(record, "🛑 **Timer stopped** (creator replied)")
                return MessageOutcome.REQUESTER_REPLY

            if is_staff:
                await self._begin_pending_start(record)
                return MessageOutcome.STAFF_MESSAGE

        return MessageOutcome.IGNORED

    async def _qualify_creator(self, message: InboundMessage, role: AuthorRole) -> MessageOutcome:
        """Attribute an untracked ticket to its requester, if one can be found."""
        creator_id: Optional[str] = None

        if self._intake_bot_id and message.author_id == self._intake_bot_id:
            creator_id = await self._messenger.resolve_first_non_staff_mention(message)
        elif role == AuthorRole.REQUESTER:
            creator_id = message.author_id

        if not creator_id:
            return MessageOutcome.UNTRACKED

        record = TicketRecord(id=message.channel_id, creator_id=creator_id)
        await self._persist(record)

        logger.info(
            "Ticket creator stored",
            extra={"ticket_id": record.id, "creator_id": creator_id}
        )
        await self._announce(
            f"🎫 **Ticket creator stored:** {user_mention(creator_id)} in {channel_mention(record.id)}"
        )
        return MessageOutcome.CREATOR_STORED

    async def _begin_pending_start(self, record: TicketRecord) -> None:
        """
        Debounce: every staff message restarts the pre-delay window.

        A persisted countdown is left as is until the pre-delay elapses, so a
        restart inside the window resumes it.
        """
        self._timers.cancel_all(record.id)
        self._timers.arm(
            record.id,
            TimerKind.PENDING_START,
            self._on_pending_elapsed,
            delay=self._policy.start_delay,
        )
        logger.debug("Pre-delay armed", extra={"ticket_id": record.id})

    # ---------- timer callbacks ----------

    async def _on_pending_elapsed(self, handle: TimerHandle) -> None:
        async with self._lock_for(handle.ticket_id):
            if handle.cancelled:
                return
            try:
                record = await self._load(handle.ticket_id)
                if record is None:
                    return
                await self._activate_locked(record)
            except PersistenceException as e:
                logger.error(
                    "Countdown activation aborted",
                    extra={"ticket_id": handle.ticket_id, "error": str(e)}
                )
                return

        await self._announce(f"⏱️ **Timer started** in {channel_mention(handle.ticket_id)}")

    async def _on_reminder(self, epoch: datetime, handle: TimerHandle) -> None:
        async with self._lock_for(handle.ticket_id):
            if handle.cancelled:
                return
            try:
                record = await self._load(handle.ticket_id)
                if not self._is_current(record, epoch):
                    return
                await self._send_reminder_locked(record)
            except PersistenceException as e:
                logger.error(
                    "Reminder aborted",
                    extra={"ticket_id": handle.ticket_id, "error": str(e)}
                )

    async def _on_staff_alert(self, epoch: datetime, handle: TimerHandle) -> None:
        async with self._lock_for(handle.ticket_id):
            if handle.cancelled:
                return
            try:
                record = await self._load(handle.ticket_id)
                if not self._is_current(record, epoch):
                    return
                await self._escalate_locked(record)
            except PersistenceException as e:
                logger.error(
                    "Staff alert aborted",
                    extra={"ticket_id": handle.ticket_id, "error": str(e)}
                )

    @staticmethod
    def _is_current(record: Optional[TicketRecord], epoch: datetime) -> bool:
        """A callback only acts on the countdown epoch it was armed for."""
        return (
            record is not None
            and record.timer_start_time == epoch
            and not record.is_escalated
        )

    # ---------- transitions (caller holds the ticket lock) ----------

    async def _activate_locked(self, record: TicketRecord) -> TicketRecord:
        """Start a countdown now: persist the epoch, then arm its timers."""
        now = self.now()
        working = record.copy()
        working.start_countdown(now)
        await self._persist(working)

        self._timers.cancel_all(record.id)
        self._arm_countdown(
            record.id,
            epoch=now,
            first_reminder=self._policy.reminder_interval,
            alert_delay=self._policy.staff_alert_offset,
        )
        logger.info("Countdown active", extra={"ticket_id": record.id})
        return working

    def _arm_countdown(
        self,
        ticket_id: str,
        epoch: datetime,
        first_reminder: timedelta,
        alert_delay: timedelta
    ) -> None:
        self._timers.arm(
            ticket_id,
            TimerKind.REMINDER_LOOP,
            partial(self._on_reminder, epoch),
            delay=first_reminder,
            period=self._policy.reminder_interval,
        )
        self._timers.arm(
            ticket_id,
            TimerKind.STAFF_ALERT,
            partial(self._on_staff_alert, epoch),
            delay=alert_delay,
        )

    async def _send_reminder_locked(self, record: TicketRecord) -> Optional[TicketRecord]:
        """Count, persist, then deliver one reminder."""
        now = self.now()
        if ScheduleCalculator.alert_window_closed(record.timer_start_time, now, self._policy):
            # The staff alert owns this instant
            logger.debug("Reminder skipped at alert boundary", extra={"ticket_id": record.id})
            return None

        working = record.copy()
        count = working.record_reminder()
        await self._persist(working)

        await self._deliver(record.id, notice=reminder_notice(working, self._policy, now))
        logger.info(
            "Reminder sent",
            extra={"ticket_id": record.id, "reminder_count": count}
        )
        await self._announce(f"🔔 Reminder #{count} sent in {channel_mention(record.id)}")
        return working

    async def _escalate_locked(self, record: TicketRecord) -> TicketRecord:
        """Mark the epoch escalated before alerting, so it alerts exactly once."""
        now = self.now()
        working = record.copy()
        working.mark_escalated(now)
        await self._persist(working)

        self._timers.cancel_all(record.id)

        notice = staff_alert_notice(working, self._alert_role_ids, self._policy, now)
        try:
            await self._messenger.send_alert(record.id, self._alert_role_ids, notice)
        except DeliveryException as e:
            logger.warning(
                "Staff alert delivery failed",
                extra={"ticket_id": record.id, "error": str(e)}
            )

        logger.info(
            "Staff alert sent",
            extra={"ticket_id": record.id, "reminder_count": working.reminder_count}
        )
        hours = self._policy.staff_alert_seconds / 3600
        await self._announce(f"⚠️ **{hours:g}-hour staff alert** sent for {channel_mention(record.id)}")
        return working

    async def _stop_locked(self, record: TicketRecord, announcement: Optional[str]) -> None:
        """Clear the countdown (persisted first) and cancel every handle."""
        was_running = record.is_running
        if record.is_running or record.reminder_count:
            working = record.copy()
            working.clear_timer()
            await self._persist(working)

        self._timers.cancel_all(record.id)

        if was_running:
            logger.info("Countdown stopped", extra={"ticket_id": record.id})
            if announcement:
                await self._announce(f"{announcement} in {channel_mention(record.id)}")

    # ---------- manual operations ----------

    async def stop(self, ticket_id: str) -> bool:
        """
        Stop the countdown in any state.

        Returns:
            False when there was nothing to stop
        """
        async with self._lock_for(ticket_id):
            record = await self._load(ticket_id)
            if record is None:
                self._timers.cancel_all(ticket_id)
                return False
            if not record.is_running and not self._timers.has_live(ticket_id):
                return False

            await self._stop_locked(record, None)

        await self._announce(f"⏹️ **Timer manually stopped** in {channel_mention(ticket_id)}")
        return True

    async def restart(self, ticket_id: str) -> TicketRecord:
        """
        Start a fresh countdown immediately, skipping the pre-delay.

        No reminder is sent; the first one follows one interval later.

        Raises:
            ResourceNotFoundException: ticket is untracked
        """
        async with self._lock_for(ticket_id):
            record = await self._load(ticket_id)
            if record is None:
                raise ResourceNotFoundException("Ticket", ticket_id)
            working = await self._activate_locked(record)

        await self._announce(f"🔄 **Timer manually restarted** in {channel_mention(ticket_id)}")
        return working

    async def assign_creator(self, ticket_id: str, user_id: str) -> TicketRecord:
        """Set the creator, creating the record if needed. Timers are untouched."""
        async with self._lock_for(ticket_id):
            record = await self._load(ticket_id)
            if record is None:
                working = TicketRecord(id=ticket_id, creator_id=user_id)
            else:
                working = record.copy()
                working.creator_id = user_id
            await self._persist(working)

        logger.info("Ticket creator assigned", extra={"ticket_id": ticket_id, "creator_id": user_id})
        await self._announce(
            f"✏️ **Ticket creator manually assigned** to {user_mention(user_id)} "
            f"in {channel_mention(ticket_id)}"
        )
        return working

    async def delete_ticket(self, ticket_id: str) -> bool:
        """The channel is gone: drop its record, then its timers."""
        async with self._lock_for(ticket_id):
            deleted = await self._with_retry(
                "delete", ticket_id, partial(self._store.delete, ticket_id)
            )
            self._timers.cancel_all(ticket_id)

        if deleted:
            logger.info("Cleaned up ticket data for deleted channel", extra={"ticket_id": ticket_id})
        return deleted

    # ---------- startup recovery ----------

    async def recover(self) -> RecoverySummary:
        """
        Rebuild timers for every persisted running countdown.

        A failure on one ticket is logged and never stops the others.
        """
        summary = RecoverySummary()
        records = await self._with_retry("list_all", None, self._store.list_all)

        for record in records:
            if not record.is_running:
                continue
            try:
                outcome = await self._recover_one(record.id)
            except (PersistenceException, DeliveryException) as e:
                summary.failed += 1
                summary.failed_ids.append(record.id)
                logger.error(
                    "Timer recovery failed",
                    extra={"ticket_id": record.id, "error": str(e)}
                )
                continue

            if outcome == "restored":
                summary.restored += 1
            elif outcome == "escalated":
                summary.escalated += 1
            elif outcome == "already_escalated":
                summary.already_escalated += 1
            elif outcome == "orphaned":
                summary.orphaned += 1
            else:
                summary.skipped += 1

        logger.info("Timer recovery finished", extra=summary.to_dict())
        return summary

    async def _recover_one(self, ticket_id: str) -> str:
        if not await self._messenger.channel_exists(ticket_id):
            async with self._lock_for(ticket_id):
                self._timers.cancel_all(ticket_id)
                await self._with_retry("delete", ticket_id, partial(self._store.delete, ticket_id))
            logger.warning("Deleted orphaned ticket record", extra={"ticket_id": ticket_id})
            return "orphaned"

        async with self._lock_for(ticket_id):
            record = await self._load(ticket_id)
            if record is None or not record.is_running:
                return "skipped"
            if record.is_escalated:
                return "already_escalated"

            now = self.now()
            elapsed = ScheduleCalculator.elapsed(record.timer_start_time, now)
            plan = ScheduleCalculator.plan_recovery(elapsed, record.reminder_count, self._policy)

            self._timers.cancel_all(ticket_id)

            if plan.fire_alert_now:
                logger.info(
                    "Alert window expired during downtime",
                    extra={"ticket_id": ticket_id, "elapsed_seconds": elapsed.total_seconds()}
                )
                await self._escalate_locked(record)
                return "escalated"

            if plan.reminder_count != record.reminder_count:
                working = record.copy()
                working.reminder_count = plan.reminder_count
                await self._persist(working)
                record = working

            self._arm_countdown(
                ticket_id,
                epoch=record.timer_start_time,
                first_reminder=plan.next_reminder_delay,
                alert_delay=plan.alert_delay,
            )
            logger.info(
                "Restored timer",
                extra={
                    "ticket_id": ticket_id,
                    "elapsed_seconds": elapsed.total_seconds(),
                    "reminder_count": record.reminder_count,
                    "next_reminder_seconds": plan.next_reminder_delay.total_seconds()
                }
            )

            if plan.fire_reminder_now:
                try:
                    await self._send_reminder_locked(record)
                except PersistenceException as e:
                    logger.error(
                        "Catch-up reminder aborted",
                        extra={"ticket_id": ticket_id, "error": str(e)}
                    )

        return "restored"
