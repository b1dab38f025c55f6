"""
Ticket Controllers (API Routes)
================================

FastAPI routes for relayed chat events, staff commands and the ticket view.

Controllers are thin - they delegate to application services.
"""

from fastapi import APIRouter, Depends, Request

from ticket_sentinel.config import TimerState
from ticket_sentinel.shared.infrastructure.logging import get_context_logger
from ticket_sentinel.tickets.application import (
    TicketLifecycleService,
    TicketCommandService,
    InboundMessage,
    ChannelDeletedEvent,
    TimerCommandRequest,
    CreatorCommandRequest,
    CommandReply,
    MessageEventResponse,
    ChannelDeletedResponse,
    TicketTimerResponse,
)
from ticket_sentinel.tickets.domain import ScheduleCalculator

router = APIRouter(prefix="/tickets", tags=["Ticket Timers"])


# ========== Example payloads for Swagger ==========

MESSAGE_EVENT_EXAMPLE = {
    "channel_id": "1180000000000000001",
    "guild_id": "1170000000000000000",
    "parent_id": "1170000000000000100",
    "author_id": "1160000000000000042",
    "author_is_bot": False,
    "mentions": [],
    "content": "Any update on this?"
}


# ========== Dependencies ==========

def get_lifecycle_service(request: Request) -> TicketLifecycleService:
    """Engine built once in the application lifespan."""
    return request.app.state.lifecycle_service


def get_command_service(request: Request) -> TicketCommandService:
    """Command surface built once in the application lifespan."""
    return request.app.state.command_service


# ========== Route Handlers ==========

@router.post(
    "/events/message",
    response_model=MessageEventResponse,
    summary="Relay a ticket-channel message",
    description="""
    Feed one guild message to the timer engine.

    - Intake bot message or first requester message on an untracked channel
      stores the ticket creator
    - Creator reply stops the countdown
    - Staff message (re)arms the pre-delay before the countdown starts

    Messages outside the ticket category, direct messages and other bots
    are ignored.
    """,
    responses={200: {"content": {"application/json": {"example": {
        "channel_id": MESSAGE_EVENT_EXAMPLE["channel_id"],
        "outcome": "requester_reply",
        "state": "idle"
    }}}}}
)
async def message_event(
    request: Request,
    message: InboundMessage,
    engine: TicketLifecycleService = Depends(get_lifecycle_service)
):
    outcome = await engine.handle_message(message)
    state = await engine.get_state(message.channel_id)

    log = get_context_logger(__name__, getattr(request.state, "correlation_id", None))
    log.debug(
        "Message event handled",
        extra={"ticket_id": message.channel_id, "outcome": outcome.value, "state": state.value}
    )
    return MessageEventResponse(
        channel_id=message.channel_id,
        outcome=outcome.value,
        state=state.value
    )


@router.post(
    "/events/channel-deleted",
    response_model=ChannelDeletedResponse,
    summary="Relay a channel deletion"
)
async def channel_deleted_event(
    request: Request,
    event: ChannelDeletedEvent,
    engine: TicketLifecycleService = Depends(get_lifecycle_service)
):
    deleted = await engine.delete_ticket(event.channel_id)
    get_context_logger(__name__, getattr(request.state, "correlation_id", None)).info(
        "Channel deletion relayed",
        extra={"ticket_id": event.channel_id, "deleted": deleted}
    )
    return ChannelDeletedResponse(channel_id=event.channel_id, deleted=deleted)


@router.post(
    "/commands/timer",
    response_model=CommandReply,
    summary="Run the /timer command",
    description="Stop, restart or inspect a ticket countdown. Staff or privileged role required."
)
async def timer_command(
    command: TimerCommandRequest,
    commands: TicketCommandService = Depends(get_command_service)
):
    return await commands.handle_timer(command)


@router.post(
    "/commands/creator",
    response_model=CommandReply,
    summary="Run the /creator command",
    description="Check or reassign the ticket creator. Staff or privileged role required."
)
async def creator_command(
    command: CreatorCommandRequest,
    commands: TicketCommandService = Depends(get_command_service)
):
    return await commands.handle_creator(command)


@router.get(
    "/{channel_id}",
    response_model=TicketTimerResponse,
    summary="Get ticket timer state"
)
async def get_ticket(
    channel_id: str,
    engine: TicketLifecycleService = Depends(get_lifecycle_service)
):
    record = await engine.get_record(channel_id)
    state = await engine.get_state(channel_id)
    live = sorted(kind.value for kind in engine.live_timers(channel_id))

    if record is None:
        return TicketTimerResponse(channel_id=channel_id, state=state.value, live_timers=live)

    next_reminder_at = None
    staff_alert_at = None
    if state == TimerState.ACTIVE:
        next_reminder_at = ScheduleCalculator.next_reminder_at(
            record.timer_start_time, record.reminder_count, engine.policy
        )
        staff_alert_at = ScheduleCalculator.alert_at(record.timer_start_time, engine.policy)

    return TicketTimerResponse(
        channel_id=channel_id,
        creator_id=record.creator_id,
        state=state.value,
        timer_start_time=record.timer_start_time,
        reminder_count=record.reminder_count,
        staff_alerted_at=record.staff_alerted_at,
        next_reminder_at=next_reminder_at,
        staff_alert_at=staff_alert_at,
        live_timers=live
    )


# Export router for inclusion in main app
tickets_router = router
