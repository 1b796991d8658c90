"""
Append-only audit of every (entry, recipient, channel) delivery attempt.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import String, DateTime, Text, Index
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from . import Base


class DeliveryLog(Base):
    __tablename__ = "delivery_log"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    entry_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    message_id: Mapped[str] = mapped_column(String(36), index=True)
    condition_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    recipient: Mapped[str] = mapped_column(String(256))
    channel: Mapped[str] = mapped_column(String(16))  # EMAIL | WHATSAPP | SYSTEM
    status: Mapped[str] = mapped_column(String(16))  # sent | failed | skipped
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    response_json: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        Index("ix_delivery_log_entry_recipient_channel", "entry_id", "recipient", "channel"),
        Index("ix_delivery_log_status_created", "status", "created_at"),
    )
