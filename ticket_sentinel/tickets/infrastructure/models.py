"""
Ticket Infrastructure Models
=============================

SQLAlchemy ORM models for the ticket module.

These are the database representations of our domain entities.
They belong in the infrastructure layer, not the domain layer.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import String, DateTime, Integer
from sqlalchemy.orm import Mapped, mapped_column

from ticket_sentinel.infrastructure.database import Base


class TicketModel(Base):
    """
    Database model for TicketRecord.

    Maps to the 'tickets' table, one row per ticket channel.
    """
    __tablename__ = "tickets"

    # Chat channel ID doubles as the ticket ID
    channel_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    creator_id: Mapped[str] = mapped_column(String(64), nullable=False)

    # Countdown
    timer_start_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    reminder_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    staff_alerted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
