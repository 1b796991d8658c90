"""
Trigger conditions: the rule deciding when a message is delivered.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import String, DateTime, Boolean, Integer, Index, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from . import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MessageCondition(Base):
    __tablename__ = "conditions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    message_id: Mapped[str] = mapped_column(String(36), index=True)
    user_id: Mapped[str] = mapped_column(String(36), index=True)
    # no_check_in | recurring_check_in | inactivity_to_date | scheduled_date | panic_trigger | group_confirmation
    condition_type: Mapped[str] = mapped_column(String(32))
    active: Mapped[bool] = mapped_column(Boolean, default=False)
    last_checked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    hours_threshold: Mapped[int] = mapped_column(Integer, default=0)
    minutes_threshold: Mapped[int] = mapped_column(Integer, default=0)
    trigger_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    recurring_pattern: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    reminder_minutes: Mapped[list | None] = mapped_column(JSONB, nullable=True)
    recipients_json: Mapped[list | None] = mapped_column(JSONB, nullable=True)
    panic_config_json: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    confirmations_required: Mapped[int | None] = mapped_column(Integer, nullable=True)
    pin_code: Mapped[str | None] = mapped_column(String(32), nullable=True)
    unlock_delay_hours: Mapped[int] = mapped_column(Integer, default=0)
    expiry_hours: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        # At most one armed condition per message.
        Index(
            "uq_conditions_message_active",
            "message_id",
            unique=True,
            postgresql_where=text("active"),
            sqlite_where=text("active"),
        ),
        Index("ix_conditions_type_active", "condition_type", "active"),
    )
