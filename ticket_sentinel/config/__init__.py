"""
Configuration Module
====================

Application settings and configuration management using Pydantic.
"""

from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Uses Pydantic for validation and type safety. Platform identifiers are
    optional at import time so tooling and tests can load the module; the
    application lifespan refuses to start while any of them is missing.
    """

    # ========== Application ==========
    app_name: str = Field(default="ticket-sentinel", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # ========== Server ==========
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=3000, description="Server port", ge=1, le=65535)

    # ========== Database ==========
    database_url: str = Field(
        default="sqlite+aiosqlite:///./tickets.db",
        description="Ticket store connection URL (async driver)"
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size", ge=1)
    db_max_overflow: int = Field(default=10, description="Max overflow connections", ge=0)
    persistence_timeout_seconds: float = Field(
        default=15.0,
        description="Upper bound for a single ticket store call",
        gt=0
    )
    persistence_retries: int = Field(
        default=3,
        description="Attempts for a ticket store write before the transition is aborted",
        ge=1
    )
    persistence_retry_backoff_seconds: float = Field(
        default=0.5,
        description="Base delay for exponential backoff between store attempts",
        ge=0
    )

    # ========== Discord ==========
    discord_bot_token: Optional[str] = Field(default=None, description="Bot token")
    discord_api_base_url: str = Field(
        default="https://discord.com/api/v10",
        description="Discord REST API base URL"
    )
    discord_timeout_seconds: float = Field(
        default=5.0,
        description="Timeout for Discord API calls",
        ge=0.1,
        le=30
    )
    ticket_category_id: Optional[str] = Field(
        default=None,
        description="Category whose channels are tracked as tickets"
    )
    staff_role_id: Optional[str] = Field(default=None, description="Staff role")
    king_role_id: Optional[str] = Field(default=None, description="Privileged (king) role")
    log_channel_id: Optional[str] = Field(default=None, description="Channel for activity notices")
    ticket_tool_bot_id: Optional[str] = Field(
        default=None,
        description="User id of the intake bot that opens tickets"
    )

    # ========== Timer Policy ==========
    start_delay_seconds: int = Field(
        default=10 * 60,
        description="Wait after a staff message before the countdown is active",
        ge=0
    )
    reminder_interval_seconds: int = Field(
        default=6 * 60 * 60,
        description="Period between requester reminders",
        ge=1
    )
    staff_alert_seconds: int = Field(
        default=24 * 60 * 60,
        description="Offset from countdown start at which staff are alerted",
        ge=1
    )
    final_reminder_number: int = Field(
        default=3,
        description="Reminder rendered with the final-warning copy",
        ge=1
    )
    reminder_tolerance_seconds: float = Field(
        default=1.0,
        description="Recovery fires a reminder immediately when it is due within this window",
        ge=0
    )
    timer_policy_path: Optional[Path] = Field(
        default=None,
        description="Optional YAML file overriding the timer policy"
    )

    # ========== CORS ==========
    cors_origins: List[str] = Field(
        default=["http://localhost:3000"],
        description="Allowed CORS origins"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Ensure environment is one of allowed values."""
        allowed = {"development", "staging", "production"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v

    def missing_required(self) -> List[str]:
        """Names of required platform settings that are not configured."""
        required = (
            "discord_bot_token",
            "ticket_category_id",
            "staff_role_id",
            "king_role_id",
            "log_channel_id",
            "ticket_tool_bot_id",
            "database_url",
        )
        return [name for name in required if not getattr(self, name)]


@lru_cache()
def get_settings() -> Settings:
    """Returns cached Settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()


# ========== Constants ==========

class TimerKind(str, Enum):
    """Kinds of scheduled callbacks a ticket can hold."""
    PENDING_START = "pending_start"
    REMINDER_LOOP = "reminder_loop"
    STAFF_ALERT = "staff_alert"


class TimerState(str, Enum):
    """Ticket timer lifecycle states."""
    UNTRACKED = "untracked"
    IDLE = "idle"
    PENDING_START = "pending_start"
    ACTIVE = "active"
    ESCALATED = "escalated"


class AuthorRole(str, Enum):
    """Role of a message author or command invoker inside a ticket."""
    STAFF = "staff"
    PRIVILEGED = "privileged"
    REQUESTER = "requester"
    BOT = "bot"


class TimerAction(str, Enum):
    """Actions of the timer command."""
    STOP = "stop"
    RESTART = "restart"
    STATUS = "status"


class CreatorAction(str, Enum):
    """Actions of the creator command."""
    CHECK = "check"
    ASSIGN = "assign"


class MessageOutcome(str, Enum):
    """How the engine classified an inbound message."""
    IGNORED = "ignored"
    UNTRACKED = "untracked"
    CREATOR_STORED = "creator_stored"
    REQUESTER_REPLY = "requester_reply"
    STAFF_MESSAGE = "staff_message"


STAFF_ROLES = (AuthorRole.STAFF, AuthorRole.PRIVILEGED)
