"""
Ticket External Service Integrations
=====================================

External services for ticket timers:
- Discord REST API client (delivery, member roles, channel lookup)
- Circuit breaker guarding the client
"""

import asyncio
import time
from typing import Any, Dict, List, Optional, Sequence

import httpx

from ticket_sentinel.config import Settings, AuthorRole
from ticket_sentinel.core import DeliveryException
from ticket_sentinel.shared.infrastructure.logging import get_logger
from ticket_sentinel.tickets.application import IMessenger, InboundMessage
from ticket_sentinel.tickets.application.notices import Notice, role_mention

logger = get_logger(__name__)


class CircuitState:
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Circuit breaker for preventing cascade failures.

    States:
    - CLOSED: Normal operation, requests pass through
    - OPEN: After N failures, reject all requests for M seconds
    - HALF_OPEN: After timeout, allow one test request
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0
    ):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: Optional[float] = None

    @property
    def state(self) -> str:
        """Get current circuit state."""
        if self._state == CircuitState.OPEN and self._last_failure_time is not None:
            if time.monotonic() - self._last_failure_time >= self.recovery_timeout:
                self._state = CircuitState.HALF_OPEN
        return self._state

    def allow_request(self) -> bool:
        """Check if request should be allowed."""
        return self.state in (CircuitState.CLOSED, CircuitState.HALF_OPEN)

    def record_success(self) -> None:
        """Record successful request."""
        self._failure_count = 0
        self._state = CircuitState.CLOSED

    def record_failure(self) -> None:
        """Record failed request."""
        self._failure_count += 1
        self._last_failure_time = time.monotonic()

        if self._failure_count >= self.failure_threshold:
            self._state = CircuitState.OPEN
            logger.warning(
                "Circuit breaker opened",
                extra={
                    "failure_count": self._failure_count,
                    "recovery_timeout": self.recovery_timeout
                }
            )


def build_embed(notice: Notice) -> Dict[str, Any]:
    """Render a notice as a Discord embed object."""
    embed: Dict[str, Any] = {
        "title": notice.title,
        "description": notice.description,
        "color": notice.color,
    }
    if notice.footer:
        embed["footer"] = {"text": notice.footer}
    if notice.timestamp:
        embed["timestamp"] = notice.timestamp.isoformat()
    return embed


class DiscordClient(IMessenger):
    """
    Discord REST client with circuit breaker and retry logic.

    Handles:
    - Posting messages and embeds to ticket and log channels
    - Resolving member roles to staff, privileged or requester
    - Channel existence checks for startup reconciliation

    Rate limits (429) and server errors are retried with exponential
    backoff; other 4xx responses are returned to the caller as-is.
    """

    def __init__(
        self,
        token: str,
        staff_role_id: Optional[str],
        king_role_id: Optional[str],
        base_url: str = "https://discord.com/api/v10",
        timeout_seconds: float = 5.0,
        max_retries: int = 3,
        retry_backoff_seconds: float = 1.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self._token = token
        self._staff_role_id = staff_role_id
        self._king_role_id = king_role_id
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout_seconds
        self._max_retries = max(1, max_retries)
        self._backoff = retry_backoff_seconds
        self._transport = transport
        self._circuit_breaker = CircuitBreaker(
            failure_threshold=5,
            recovery_timeout=60
        )
        self._http_client: Optional[httpx.AsyncClient] = None
        self._guild_by_channel: Dict[str, str] = {}

    @classmethod
    def from_settings(cls, settings: Settings) -> "DiscordClient":
        return cls(
            token=settings.discord_bot_token or "",
            staff_role_id=settings.staff_role_id,
            king_role_id=settings.king_role_id,
            base_url=settings.discord_api_base_url,
            timeout_seconds=settings.discord_timeout_seconds,
        )

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
                headers={
                    "Authorization": f"Bot {self._token}",
                    "User-Agent": "DiscordBot (ticket-sentinel, 1.0)",
                },
                transport=self._transport,
            )
        return self._http_client

    async def _request(
        self,
        method: str,
        path: str,
        json: Optional[Dict[str, Any]] = None
    ) -> httpx.Response:
        """
        Send one API request with retries.

        Raises:
            DeliveryException: circuit open, or retries exhausted
        """
        if not self._circuit_breaker.allow_request():
            logger.warning("Circuit breaker open, skipping Discord call", extra={"path": path})
            raise DeliveryException("circuit breaker open", {"path": path})

        for attempt in range(self._max_retries):
            delay = self._backoff * 2 ** attempt
            try:
                client = await self._get_client()
                response = await client.request(method, path, json=json)

                if response.status_code == 429:
                    retry_after = float(response.json().get("retry_after", 0))
                    delay = max(delay, retry_after)
                    logger.warning(
                        "Discord rate limit hit",
                        extra={"path": path, "retry_after": retry_after, "attempt": attempt + 1}
                    )
                elif response.status_code >= 500:
                    logger.warning(
                        "Discord returned server error",
                        extra={
                            "path": path,
                            "status_code": response.status_code,
                            "attempt": attempt + 1
                        }
                    )
                else:
                    self._circuit_breaker.record_success()
                    return response

            except httpx.HTTPError as e:
                logger.error(
                    "Discord request failed",
                    extra={"path": path, "error": str(e), "attempt": attempt + 1}
                )

            if attempt < self._max_retries - 1:
                await asyncio.sleep(delay)

        self._circuit_breaker.record_failure()
        raise DeliveryException(
            f"{method} {path} failed after {self._max_retries} attempts",
            {"path": path}
        )

    @staticmethod
    def _expect_ok(response: httpx.Response, path: str) -> None:
        if response.is_success:
            return
        raise DeliveryException(
            f"unexpected status {response.status_code}",
            {"path": path, "status_code": response.status_code}
        )

    # ========== Delivery ==========

    async def send_message(
        self,
        channel_id: str,
        content: Optional[str] = None,
        notice: Optional[Notice] = None
    ) -> None:
        payload: Dict[str, Any] = {"allowed_mentions": {"parse": ["users"]}}
        if content:
            payload["content"] = content
        if notice:
            payload["embeds"] = [build_embed(notice)]

        path = f"/channels/{channel_id}/messages"
        self._expect_ok(await self._request("POST", path, json=payload), path)

    async def send_alert(self, channel_id: str, role_ids: Sequence[str], notice: Notice) -> None:
        roles: List[str] = [r for r in role_ids if r]
        payload: Dict[str, Any] = {
            "embeds": [build_embed(notice)],
            "allowed_mentions": {"parse": ["users"], "roles": roles},
        }
        if roles:
            payload["content"] = " ".join(role_mention(r) for r in roles)

        path = f"/channels/{channel_id}/messages"
        self._expect_ok(await self._request("POST", path, json=payload), path)

        logger.info(
            "Staff alert delivered",
            extra={"ticket_id": channel_id, "roles": roles}
        )

    # ========== Lookups ==========

    async def channel_exists(self, channel_id: str) -> bool:
        path = f"/channels/{channel_id}"
        response = await self._request("GET", path)
        if response.status_code == 404:
            return False
        self._expect_ok(response, path)

        guild_id = response.json().get("guild_id")
        if guild_id:
            self._guild_by_channel[channel_id] = guild_id
        return True

    async def _guild_for(self, channel_id: str) -> str:
        guild_id = self._guild_by_channel.get(channel_id)
        if guild_id:
            return guild_id

        path = f"/channels/{channel_id}"
        response = await self._request("GET", path)
        self._expect_ok(response, path)

        guild_id = response.json().get("guild_id")
        if not guild_id:
            raise DeliveryException("channel is not in a guild", {"channel_id": channel_id})
        self._guild_by_channel[channel_id] = guild_id
        return guild_id

    async def _fetch_member(self, guild_id: str, user_id: str) -> Optional[Dict[str, Any]]:
        """Guild member object, None when the user is not in the guild."""
        path = f"/guilds/{guild_id}/members/{user_id}"
        response = await self._request("GET", path)
        if response.status_code == 404:
            return None
        self._expect_ok(response, path)
        return response.json()

    def _role_of(self, member: Dict[str, Any]) -> AuthorRole:
        roles = set(member.get("roles", []))
        if member.get("user", {}).get("bot"):
            return AuthorRole.BOT
        if self._king_role_id and self._king_role_id in roles:
            return AuthorRole.PRIVILEGED
        if self._staff_role_id and self._staff_role_id in roles:
            return AuthorRole.STAFF
        return AuthorRole.REQUESTER

    async def classify_author_role(self, user_id: str, channel_id: str) -> AuthorRole:
        guild_id = await self._guild_for(channel_id)
        member = await self._fetch_member(guild_id, user_id)
        if member is None:
            return AuthorRole.REQUESTER
        return self._role_of(member)

    async def resolve_first_non_staff_mention(self, message: InboundMessage) -> Optional[str]:
        if message.guild_id:
            self._guild_by_channel.setdefault(message.channel_id, message.guild_id)

        for mention in message.mentions:
            if mention.bot:
                continue
            guild_id = message.guild_id or await self._guild_for(message.channel_id)
            member = await self._fetch_member(guild_id, mention.id)
            # Users who already left the guild cannot own the ticket
            if member is None:
                continue
            if self._role_of(member) == AuthorRole.REQUESTER:
                return mention.id
        return None

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None
