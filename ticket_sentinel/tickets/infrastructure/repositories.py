"""
Ticket Infrastructure Repositories
===================================

Concrete implementations of the ticket store port using SQLAlchemy, and the
timer policy provider.

This layer contains the data access logic - how we store and retrieve
entities from the database.
"""

import asyncio
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable, List, Optional, TypeVar, Union

import yaml
from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ticket_sentinel.config import Settings
from ticket_sentinel.core import ConfigurationException, PersistenceException
from ticket_sentinel.shared.infrastructure.logging import get_logger
from ticket_sentinel.tickets.application import ITicketStore
from ticket_sentinel.tickets.domain import TicketRecord, TimerPolicy
from ticket_sentinel.tickets.infrastructure.models import TicketModel

logger = get_logger(__name__)

T = TypeVar("T")


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; everything stored is UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def _to_record(model: TicketModel) -> TicketRecord:
    return TicketRecord(
        id=model.channel_id,
        creator_id=model.creator_id,
        timer_start_time=_as_utc(model.timer_start_time),
        reminder_count=model.reminder_count,
        staff_alerted_at=_as_utc(model.staff_alerted_at),
    )


class SQLAlchemyTicketStore(ITicketStore):
    """
    SQLAlchemy implementation of the ticket store.

    Opens one session per call so a failed call never poisons the next one.
    Every call is bounded by ``timeout_seconds``; driver errors and timeouts
    surface as PersistenceException.
    """

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        timeout_seconds: float = 15.0
    ):
        self._session_maker = session_maker
        self._timeout = timeout_seconds

    async def _run(
        self,
        operation: str,
        ticket_id: Optional[str],
        work: Callable[[AsyncSession], Awaitable[T]]
    ) -> T:
        async def _in_session() -> T:
            async with self._session_maker() as session:
                try:
                    result = await work(session)
                    await session.commit()
                    return result
                except Exception:
                    await session.rollback()
                    raise

        try:
            return await asyncio.wait_for(_in_session(), timeout=self._timeout)
        except asyncio.TimeoutError as e:
            raise PersistenceException(
                operation, ticket_id, message=f"timed out after {self._timeout:g}s"
            ) from e
        except SQLAlchemyError as e:
            raise PersistenceException(operation, ticket_id, message=str(e)) from e

    async def get(self, ticket_id: str) -> Optional[TicketRecord]:
        """Get ticket record by channel ID."""
        async def work(session: AsyncSession) -> Optional[TicketRecord]:
            model = await session.get(TicketModel, ticket_id)
            return _to_record(model) if model else None

        return await self._run("get", ticket_id, work)

    async def upsert(self, record: TicketRecord) -> None:
        """Insert or replace a ticket record."""
        async def work(session: AsyncSession) -> None:
            model = await session.get(TicketModel, record.id)
            if model is None:
                model = TicketModel(channel_id=record.id)
                session.add(model)
            model.creator_id = record.creator_id
            model.timer_start_time = record.timer_start_time
            model.reminder_count = record.reminder_count
            model.staff_alerted_at = record.staff_alerted_at
            await session.flush()

        await self._run("upsert", record.id, work)

    async def delete(self, ticket_id: str) -> bool:
        """Delete ticket record; False if none existed."""
        async def work(session: AsyncSession) -> bool:
            stmt = delete(TicketModel).where(TicketModel.channel_id == ticket_id)
            result = await session.execute(stmt)
            return result.rowcount > 0

        return await self._run("delete", ticket_id, work)

    async def count(self) -> int:
        """Count tracked tickets."""
        async def work(session: AsyncSession) -> int:
            result = await session.execute(select(func.count()).select_from(TicketModel))
            return int(result.scalar_one())

        return await self._run("count", None, work)

    async def list_all(self) -> List[TicketRecord]:
        """List every ticket record."""
        async def work(session: AsyncSession) -> List[TicketRecord]:
            result = await session.execute(select(TicketModel).order_by(TicketModel.channel_id))
            return [_to_record(m) for m in result.scalars().all()]

        return await self._run("list_all", None, work)


class YAMLTimerPolicyProvider:
    """
    Timer policy provider that loads from YAML.

    Durations come from settings; an optional YAML file overrides any of
    them. Unknown keys are rejected so a typo cannot silently fall back to
    a default.
    """

    def __init__(self, defaults: TimerPolicy, config_path: Optional[Union[str, Path]] = None):
        self._defaults = defaults
        self._config_path = Path(config_path) if config_path else None
        self._policy: Optional[TimerPolicy] = None
        self._load_config()

    @classmethod
    def from_settings(cls, settings: Settings) -> "YAMLTimerPolicyProvider":
        defaults = TimerPolicy(
            start_delay_seconds=settings.start_delay_seconds,
            reminder_interval_seconds=settings.reminder_interval_seconds,
            staff_alert_seconds=settings.staff_alert_seconds,
            final_reminder_number=settings.final_reminder_number,
            reminder_tolerance_seconds=settings.reminder_tolerance_seconds,
        )
        return cls(defaults, settings.timer_policy_path)

    def _load_config(self) -> None:
        """Load configuration from YAML file."""
        if self._config_path is None:
            self._policy = self._defaults
            return

        if not self._config_path.exists():
            logger.warning(
                "Timer policy file not found, using settings",
                extra={"path": str(self._config_path)}
            )
            self._policy = self._defaults
            return

        with open(self._config_path, "r") as f:
            data: Any = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ConfigurationException(f"Timer policy file {self._config_path} must be a mapping")

        section = data.get("timer", data) or {}
        if not isinstance(section, dict):
            raise ConfigurationException(f"Timer policy section in {self._config_path} must be a mapping")

        unknown = set(section) - set(TimerPolicy.model_fields)
        if unknown:
            raise ConfigurationException(
                f"Unknown timer policy keys: {', '.join(sorted(unknown))}",
                {"path": str(self._config_path)}
            )

        try:
            self._policy = TimerPolicy.model_validate({**self._defaults.model_dump(), **section})
        except ValueError as e:
            raise ConfigurationException(f"Invalid timer policy: {e}") from e

        logger.info(
            "Timer policy loaded",
            extra={"path": str(self._config_path), **self._policy.model_dump()}
        )

    def get_policy(self) -> TimerPolicy:
        """Get current timer policy."""
        return self._policy

    def reload(self) -> None:
        """Reload configuration from file."""
        self._load_config()
