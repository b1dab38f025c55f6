"""
Ticket Application Layer
=========================

Application layer for the ticket timer module.

Contains:
- Services: the lifecycle engine, the command surface and the ports they use
- Notices: copy posted into tickets and the log channel
- DTOs: Data transfer objects for API serialization

This layer depends on the domain layer and port interfaces,
but not on concrete infrastructure implementations.
"""

from ticket_sentinel.tickets.application.dto import (
    MentionDTO,
    InboundMessage,
    ChannelDeletedEvent,
    TimerCommandRequest,
    CreatorCommandRequest,
    NoticeResponse,
    CommandReply,
    MessageEventResponse,
    ChannelDeletedResponse,
    TicketTimerResponse,
)
from ticket_sentinel.tickets.application.notices import Notice
from ticket_sentinel.tickets.application.services import (
    TicketLifecycleService,
    RecoverySummary,
    TimerHandle,
    ITicketStore,
    IMessenger,
    ITimerRegistry,
)
from ticket_sentinel.tickets.application.commands import TicketCommandService

__all__ = [
    # DTOs
    "MentionDTO",
    "InboundMessage",
    "ChannelDeletedEvent",
    "TimerCommandRequest",
    "CreatorCommandRequest",
    "NoticeResponse",
    "CommandReply",
    "MessageEventResponse",
    "ChannelDeletedResponse",
    "TicketTimerResponse",
    "Notice",
    # Services
    "TicketLifecycleService",
    "TicketCommandService",
    "RecoverySummary",
    "TimerHandle",
    # Ports
    "ITicketStore",
    "IMessenger",
    "ITimerRegistry",
]
