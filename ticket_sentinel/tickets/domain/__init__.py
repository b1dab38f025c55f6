"""
Ticket Domain Layer
===================

Domain layer for the ticket timer module.

Contains:
- Entities: TicketRecord and the state derivation shared by engine and recovery
- Value Objects: TimerPolicy, RecoveryPlan
- Domain Services: ScheduleCalculator (pure countdown arithmetic)

This layer has no dependencies on infrastructure - pure Python business logic.
"""

from ticket_sentinel.tickets.domain.entities import TicketRecord, derive_state
from ticket_sentinel.tickets.domain.value_objects import (
    TimerPolicy,
    RecoveryPlan,
    ScheduleCalculator,
)

__all__ = [
    # Entities
    "TicketRecord",
    "derive_state",
    # Value Objects & Services
    "TimerPolicy",
    "RecoveryPlan",
    "ScheduleCalculator",
]
