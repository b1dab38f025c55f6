"""
Ticket Application DTOs
========================

Data Transfer Objects for the ticket API layer.

These Pydantic models handle serialization/deserialization and validation
for relayed chat events, commands and read views.
"""

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, model_validator


# ========== Type Aliases for Literals ==========
TimerActionStr = Literal["stop", "restart", "status"]
CreatorActionStr = Literal["check", "assign"]
TimerStateStr = Literal["untracked", "idle", "pending_start", "active", "escalated"]
MessageOutcomeStr = Literal[
    "ignored", "untracked", "creator_stored", "requester_reply", "staff_message"
]


# ========== Inbound Events ==========

class MentionDTO(BaseModel):
    """A user mentioned in a message, in mention order."""
    id: str = Field(..., min_length=1, description="User ID")
    bot: bool = Field(default=False, description="Whether the user is a bot account")


class InboundMessage(BaseModel):
    """A message posted in a guild channel, as relayed from the gateway."""
    channel_id: str = Field(..., min_length=1, description="Channel (ticket) ID")
    guild_id: Optional[str] = Field(None, description="Guild ID, absent for direct messages")
    parent_id: Optional[str] = Field(None, description="Category the channel belongs to")
    author_id: str = Field(..., min_length=1, description="Author user ID")
    author_is_bot: bool = Field(default=False, description="Whether the author is a bot account")
    mentions: List[MentionDTO] = Field(default_factory=list, description="Mentioned users in order")
    content: Optional[str] = Field(None, description="Message text")


class ChannelDeletedEvent(BaseModel):
    """Notification that a channel no longer exists."""
    channel_id: str = Field(..., min_length=1, description="Deleted channel ID")


# ========== Commands ==========

class TimerCommandRequest(BaseModel):
    """The ``/timer`` command."""
    channel_id: str = Field(..., min_length=1)
    invoker_id: str = Field(..., min_length=1, description="User who ran the command")
    action: TimerActionStr


class CreatorCommandRequest(BaseModel):
    """The ``/creator`` command."""
    channel_id: str = Field(..., min_length=1)
    invoker_id: str = Field(..., min_length=1, description="User who ran the command")
    action: CreatorActionStr
    user_id: Optional[str] = Field(None, description="User to assign (assign only)")


class NoticeResponse(BaseModel):
    """Embed-style rich message."""
    title: str
    description: str
    color: int
    footer: Optional[str] = None
    timestamp: Optional[datetime] = None


class CommandReply(BaseModel):
    """Reply shown to the command invoker."""
    content: Optional[str] = None
    embed: Optional[NoticeResponse] = None
    ephemeral: bool = True

    @model_validator(mode="after")
    def validate_body(self) -> "CommandReply":
        """A reply needs text or an embed."""
        if self.content is None and self.embed is None:
            raise ValueError("reply requires content or embed")
        return self


# ========== Response DTOs ==========

class MessageEventResponse(BaseModel):
    """How the engine classified a relayed message."""
    channel_id: str
    outcome: MessageOutcomeStr
    state: TimerStateStr


class ChannelDeletedResponse(BaseModel):
    """Result of a channel deletion notice."""
    channel_id: str
    deleted: bool


class TicketTimerResponse(BaseModel):
    """Read view of a ticket's timer."""
    channel_id: str
    creator_id: Optional[str] = None
    state: TimerStateStr
    timer_start_time: Optional[datetime] = None
    reminder_count: int = 0
    staff_alerted_at: Optional[datetime] = None
    next_reminder_at: Optional[datetime] = None
    staff_alert_at: Optional[datetime] = None
    live_timers: List[str] = Field(default_factory=list)
