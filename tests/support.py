"""Test doubles shared across the suite: virtual time, store, messenger."""

import asyncio
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence, Set, Tuple

from apscheduler.jobstores.base import JobLookupError

from ticket_sentinel.config import AuthorRole
from ticket_sentinel.core import DeliveryException, PersistenceException
from ticket_sentinel.tickets.application import IMessenger, ITicketStore, InboundMessage, MentionDTO
from ticket_sentinel.tickets.application.notices import Notice
from ticket_sentinel.tickets.domain import TicketRecord

EPOCH = datetime(2024, 1, 15, 9, 0, tzinfo=timezone.utc)

GUILD_ID = "900"
CATEGORY_ID = "910"
TICKET_ID = "1001"
OTHER_TICKET_ID = "1002"
LOG_CHANNEL_ID = "950"
STAFF_ROLE_ID = "920"
KING_ROLE_ID = "921"

CREATOR_ID = "501"
OTHER_USER_ID = "502"
STAFF_ID = "601"
KING_ID = "602"
INTAKE_BOT_ID = "701"
OTHER_BOT_ID = "702"

MINUTE = timedelta(minutes=1)
HOUR = timedelta(hours=1)


class VirtualClock:
    """Callable clock; only FakeScheduler and tests move it."""

    def __init__(self, start: datetime = EPOCH):
        self.now = start

    def __call__(self) -> datetime:
        return self.now


class _FakeJob:
    def __init__(self, job_id, func, trigger, args, seq, next_run_time):
        self.id = job_id
        self.func = func
        self.trigger = trigger
        self.args = args
        self.seq = seq
        self.next_run_time = next_run_time


class FakeScheduler:
    """
    Stand-in for AsyncIOScheduler driven by a VirtualClock.

    Fire times come from the real APScheduler triggers; jobs due at the same
    instant run in the order they were added.
    """

    def __init__(self, clock: VirtualClock):
        self._clock = clock
        self._jobs: Dict[str, _FakeJob] = {}
        self._seq = 0
        self.running = False

    def start(self) -> None:
        self.running = True

    def shutdown(self, wait: bool = True) -> None:
        self.running = False

    def add_job(self, func, trigger, args=None, id=None, replace_existing=False, **kwargs):
        if id in self._jobs and not replace_existing:
            raise ValueError(f"duplicate job {id}")
        self._seq += 1
        self._jobs[id] = _FakeJob(
            id, func, trigger, list(args or []), self._seq,
            trigger.get_next_fire_time(None, self._clock())
        )

    def remove_job(self, job_id: str) -> None:
        if job_id not in self._jobs:
            raise JobLookupError(job_id)
        del self._jobs[job_id]

    def job_ids(self) -> Set[str]:
        return set(self._jobs)

    def next_run_time(self, job_id: str) -> Optional[datetime]:
        job = self._jobs.get(job_id)
        return job.next_run_time if job else None

    async def advance(self, delta: timedelta) -> None:
        await self.advance_to(self._clock.now + delta)

    async def advance_to(self, target: datetime) -> None:
        """Fire every job due up to ``target`` in time order."""
        while True:
            due = [
                j for j in self._jobs.values()
                if j.next_run_time is not None and j.next_run_time <= target
            ]
            if not due:
                break

            job = min(due, key=lambda j: (j.next_run_time, j.seq))
            fire_time = job.next_run_time
            self._clock.now = max(self._clock.now, fire_time)

            job.next_run_time = job.trigger.get_next_fire_time(fire_time, fire_time)
            if job.next_run_time is None:
                self._jobs.pop(job.id, None)

            await job.func(*job.args)

        self._clock.now = max(self._clock.now, target)


class InMemoryTicketStore(ITicketStore):
    """
    Dict-backed store; ``failing`` names operations that always raise.

    An upsert for a ticket in ``upsert_gates`` waits until its event is set.
    """

    def __init__(self):
        self.records: Dict[str, TicketRecord] = {}
        self.failing: Set[str] = set()
        self.transient_failures = 0
        self.calls: List[Tuple[str, Optional[str]]] = []
        self.upsert_gates: Dict[str, asyncio.Event] = {}

    def _check(self, operation: str, ticket_id: Optional[str]) -> None:
        self.calls.append((operation, ticket_id))
        if operation in self.failing:
            raise PersistenceException(operation, ticket_id, message="store offline")
        if self.transient_failures > 0:
            self.transient_failures -= 1
            raise PersistenceException(operation, ticket_id, message="connection reset")

    def put(self, record: TicketRecord) -> None:
        """Seed a record without going through the failure hooks."""
        self.records[record.id] = replace(record)

    async def get(self, ticket_id: str) -> Optional[TicketRecord]:
        self._check("get", ticket_id)
        record = self.records.get(ticket_id)
        return replace(record) if record else None

    async def upsert(self, record: TicketRecord) -> None:
        self._check("upsert", record.id)
        gate = self.upsert_gates.get(record.id)
        if gate is not None:
            await gate.wait()
        self.records[record.id] = replace(record)

    async def delete(self, ticket_id: str) -> bool:
        self._check("delete", ticket_id)
        return self.records.pop(ticket_id, None) is not None

    async def count(self) -> int:
        self._check("count", None)
        return len(self.records)

    async def list_all(self) -> List[TicketRecord]:
        self._check("list_all", None)
        return [replace(r) for r in self.records.values()]


class RecordingMessenger(IMessenger):
    """Records deliveries; roles default to requester."""

    def __init__(self):
        self.roles: Dict[str, AuthorRole] = {}
        self.missing_channels: Set[str] = set()
        self.unreachable_channels: Set[str] = set()
        self.messages: List[Tuple[str, Optional[str], Optional[Notice]]] = []
        self.alerts: List[Tuple[str, List[str], Notice]] = []
        self.fail_delivery = False

    async def send_message(
        self,
        channel_id: str,
        content: Optional[str] = None,
        notice: Optional[Notice] = None
    ) -> None:
        if self.fail_delivery:
            raise DeliveryException("gateway unavailable")
        self.messages.append((channel_id, content, notice))

    async def send_alert(self, channel_id: str, role_ids: Sequence[str], notice: Notice) -> None:
        if self.fail_delivery:
            raise DeliveryException("gateway unavailable")
        self.alerts.append((channel_id, list(role_ids), notice))

    async def classify_author_role(self, user_id: str, channel_id: str) -> AuthorRole:
        return self.roles.get(user_id, AuthorRole.REQUESTER)

    async def resolve_first_non_staff_mention(self, message: InboundMessage) -> Optional[str]:
        for mention in message.mentions:
            if mention.bot:
                continue
            if self.roles.get(mention.id, AuthorRole.REQUESTER) == AuthorRole.REQUESTER:
                return mention.id
        return None

    async def channel_exists(self, channel_id: str) -> bool:
        if channel_id in self.unreachable_channels:
            raise DeliveryException("lookup timed out")
        return channel_id not in self.missing_channels

    def reminders(self, channel_id: str = TICKET_ID) -> List[Notice]:
        return [
            notice for channel, _, notice in self.messages
            if channel == channel_id and notice is not None and "Reminder" in notice.title
        ]

    def alerts_for(self, channel_id: str = TICKET_ID) -> List[Notice]:
        return [notice for channel, _, notice in self.alerts if channel == channel_id]

    def log_lines(self) -> List[str]:
        return [content for channel, content, _ in self.messages if channel == LOG_CHANNEL_ID]


def make_message(
    author_id: str,
    channel_id: str = TICKET_ID,
    *,
    author_is_bot: bool = False,
    mentions: Sequence[Tuple[str, bool]] = (),
    guild_id: Optional[str] = GUILD_ID,
    parent_id: Optional[str] = CATEGORY_ID,
    content: str = "hello"
) -> InboundMessage:
    return InboundMessage(
        channel_id=channel_id,
        guild_id=guild_id,
        parent_id=parent_id,
        author_id=author_id,
        author_is_bot=author_is_bot,
        mentions=[MentionDTO(id=uid, bot=bot) for uid, bot in mentions],
        content=content,
    )
