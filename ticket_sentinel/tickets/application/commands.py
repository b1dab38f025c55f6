"""
Ticket Command Service
=======================

Staff-facing ``/timer`` and ``/creator`` commands.

Authorization happens here; every state change is delegated to the
lifecycle engine. Replies are ephemeral and meant for the invoker only.
"""

from ticket_sentinel.config import STAFF_ROLES, CreatorAction, TimerAction, TimerState
from ticket_sentinel.core import (
    PersistenceException, ResourceNotFoundException, UnauthorizedException
)
from ticket_sentinel.shared.infrastructure.logging import get_logger
from ticket_sentinel.tickets.application.dto import (
    CommandReply, CreatorCommandRequest, TimerCommandRequest
)
from ticket_sentinel.tickets.application.notices import (
    NOT_AUTHORIZED,
    STORE_UNAVAILABLE,
    creator_notice,
    describe_duration,
    timer_status_notice,
    user_mention,
)
from ticket_sentinel.tickets.application.services import IMessenger, TicketLifecycleService

logger = get_logger(__name__)


class TicketCommandService:
    """Dispatches staff commands onto the lifecycle engine."""

    def __init__(self, engine: TicketLifecycleService, messenger: IMessenger):
        self._engine = engine
        self._messenger = messenger

    async def _authorize(self, invoker_id: str, channel_id: str) -> None:
        role = await self._messenger.classify_author_role(invoker_id, channel_id)
        if role not in STAFF_ROLES:
            logger.info(
                "Command denied",
                extra={"ticket_id": channel_id, "invoker_id": invoker_id, "role": role.value}
            )
            raise UnauthorizedException(NOT_AUTHORIZED)

    async def handle_timer(self, request: TimerCommandRequest) -> CommandReply:
        """
        Run ``/timer stop|restart|status``.

        Raises:
            UnauthorizedException: invoker is neither staff nor privileged
        """
        await self._authorize(request.invoker_id, request.channel_id)
        action = TimerAction(request.action)

        try:
            if action == TimerAction.STOP:
                return await self._timer_stop(request.channel_id)
            if action == TimerAction.RESTART:
                return await self._timer_restart(request.channel_id)
            return await self._timer_status(request.channel_id)
        except PersistenceException as e:
            logger.error(
                "Timer command failed",
                extra={"ticket_id": request.channel_id, "action": action.value, "error": str(e)}
            )
            return CommandReply(content=STORE_UNAVAILABLE)

    async def _timer_stop(self, channel_id: str) -> CommandReply:
        if not await self._engine.stop(channel_id):
            return CommandReply(content="⏹️ No active timer to stop.")
        return CommandReply(content="⏹️ **Timer stopped immediately.**")

    async def _timer_restart(self, channel_id: str) -> CommandReply:
        try:
            await self._engine.restart(channel_id)
        except ResourceNotFoundException:
            return CommandReply(content="❌ No ticket data found. Please assign a creator first.")

        interval = describe_duration(self._engine.policy.reminder_interval)
        return CommandReply(
            content=f"🔄 **Timer restarted immediately.** First reminder will be sent in {interval}."
        )

    async def _timer_status(self, channel_id: str) -> CommandReply:
        record = await self._engine.get_record(channel_id)
        if record is None:
            return CommandReply(content="❌ No ticket data found.")

        state = await self._engine.get_state(channel_id)
        if state == TimerState.PENDING_START:
            delay = describe_duration(self._engine.policy.start_delay)
            return CommandReply(
                content=(
                    "⏱️ **Timer Status:** Pending\n\n"
                    f"⏳ The countdown starts {delay} after the last staff message."
                )
            )
        if state == TimerState.IDLE:
            return CommandReply(
                content="⏱️ **Timer Status:** Inactive\n\n❌ Timer is not currently running."
            )

        notice = timer_status_notice(record, state, self._engine.policy, self._engine.now())
        return CommandReply(embed=notice.to_response())

    async def handle_creator(self, request: CreatorCommandRequest) -> CommandReply:
        """
        Run ``/creator check|assign <user>``.

        Raises:
            UnauthorizedException: invoker is neither staff nor privileged
        """
        await self._authorize(request.invoker_id, request.channel_id)
        action = CreatorAction(request.action)

        try:
            if action == CreatorAction.CHECK:
                record = await self._engine.get_record(request.channel_id)
                if record is None:
                    return CommandReply(content="❌ No creator assigned yet.")
                return CommandReply(embed=creator_notice(record, self._engine.now()).to_response())

            if not request.user_id:
                return CommandReply(content="❌ You must provide a user to assign.")

            await self._engine.assign_creator(request.channel_id, request.user_id)
            return CommandReply(
                content=f"✅ **Ticket creator manually assigned to** {user_mention(request.user_id)}"
            )
        except PersistenceException as e:
            logger.error(
                "Creator command failed",
                extra={"ticket_id": request.channel_id, "action": action.value, "error": str(e)}
            )
            return CommandReply(content=STORE_UNAVAILABLE)
