"""
Ticket Infrastructure Layer
============================

Infrastructure implementations for ticket timers:
- Models: SQLAlchemy ORM models
- Repositories: Ticket store and timer policy provider
- Scheduler: APScheduler-backed timer registry
- External: Discord REST client
"""

from ticket_sentinel.tickets.infrastructure.models import TicketModel
from ticket_sentinel.tickets.infrastructure.repositories import (
    SQLAlchemyTicketStore,
    YAMLTimerPolicyProvider,
)
from ticket_sentinel.tickets.infrastructure.scheduler import TimerRegistry
from ticket_sentinel.tickets.infrastructure.external import DiscordClient, CircuitBreaker

__all__ = [
    "TicketModel",
    "SQLAlchemyTicketStore",
    "YAMLTimerPolicyProvider",
    "TimerRegistry",
    "DiscordClient",
    "CircuitBreaker",
]
