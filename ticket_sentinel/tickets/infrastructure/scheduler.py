"""
Ticket Timer Registry
======================

APScheduler-backed bookkeeping of per-ticket timers.

Each ticket holds at most one job per ``TimerKind``; job ids are
``"{ticket_id}:{kind}"``. The scheduler and clock are injectable so tests
can drive the same triggers in virtual time.
"""

from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional, Set

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from ticket_sentinel.config import TimerKind
from ticket_sentinel.shared.infrastructure.logging import get_logger
from ticket_sentinel.tickets.application import ITimerRegistry, TimerHandle
from ticket_sentinel.tickets.application.services import TimerCallback

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TimerRegistry(ITimerRegistry):
    """
    Wrapper for APScheduler holding every live ticket timer.

    Manages the lifecycle of the scheduler and jobs. A callback that raises
    is logged and never affects other jobs.
    """

    def __init__(
        self,
        scheduler: Optional[AsyncIOScheduler] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self._scheduler = scheduler or AsyncIOScheduler(timezone=timezone.utc)
        self._clock = clock or _utcnow
        self._handles: Dict[str, Dict[TimerKind, TimerHandle]] = {}

    def start(self) -> None:
        """Start the scheduler."""
        if self._scheduler.running:
            logger.warning("Timer scheduler already running")
            return
        self._scheduler.start()
        logger.info("Timer scheduler started")

    def shutdown(self) -> None:
        """Cancel every handle and stop the scheduler."""
        for ticket_id in list(self._handles):
            self.cancel_all(ticket_id)
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        logger.info("Timer scheduler stopped")

    @property
    def is_running(self) -> bool:
        return self._scheduler.running

    def arm(
        self,
        ticket_id: str,
        kind: TimerKind,
        callback: TimerCallback,
        delay: Optional[timedelta] = None,
        period: Optional[timedelta] = None
    ) -> TimerHandle:
        self._cancel(ticket_id, kind)

        job_id = f"{ticket_id}:{kind.value}"
        now = self._clock()

        if period is not None:
            first = now + (delay if delay is not None else period)
            trigger = IntervalTrigger(
                seconds=period.total_seconds(),
                start_date=first,
                timezone=timezone.utc
            )
        else:
            first = now + (delay or timedelta(0))
            trigger = DateTrigger(run_date=first, timezone=timezone.utc)

        handle = TimerHandle(
            ticket_id=ticket_id,
            kind=kind,
            job_id=job_id,
            repeating=period is not None
        )
        self._scheduler.add_job(
            self._dispatch,
            trigger,
            args=[handle, callback],
            id=job_id,
            name=f"{kind.value} for ticket {ticket_id}",
            misfire_grace_time=None,
            coalesce=True,
            max_instances=1,
            replace_existing=True
        )
        self._handles.setdefault(ticket_id, {})[kind] = handle

        logger.debug(
            "Timer armed",
            extra={
                "ticket_id": ticket_id,
                "kind": kind.value,
                "first_fire": first.isoformat(),
                "period_seconds": period.total_seconds() if period else None
            }
        )
        return handle

    def cancel_all(self, ticket_id: str) -> None:
        for kind in list(self._handles.get(ticket_id, {})):
            self._cancel(ticket_id, kind)
        self._handles.pop(ticket_id, None)

    def has_live(self, ticket_id: str, kind: Optional[TimerKind] = None) -> bool:
        kinds = self.live_kinds(ticket_id)
        if kind is None:
            return bool(kinds)
        return kind in kinds

    def live_kinds(self, ticket_id: str) -> Set[TimerKind]:
        return {
            kind for kind, handle in self._handles.get(ticket_id, {}).items()
            if handle.live
        }

    def _cancel(self, ticket_id: str, kind: TimerKind) -> None:
        handles = self._handles.get(ticket_id)
        if not handles or kind not in handles:
            return

        handle = handles.pop(kind)
        handle.cancelled = True
        try:
            self._scheduler.remove_job(handle.job_id)
        except JobLookupError:
            # One-shot jobs leave the job store once they fire
            pass

        if not handles:
            self._handles.pop(ticket_id, None)

    async def _dispatch(self, handle: TimerHandle, callback: TimerCallback) -> None:
        if handle.cancelled:
            return
        if not handle.repeating:
            # Kept until cancelled so an in-flight callback can still be revoked
            handle.fired = True

        try:
            await callback(handle)
        except Exception:
            logger.exception(
                "Timer callback failed",
                extra={"ticket_id": handle.ticket_id, "kind": handle.kind.value}
            )
