"""
Scheduled notifications (reminders, owner notices and final deliveries).
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import String, DateTime, Integer, Text, Index, text
from sqlalchemy.orm import Mapped, mapped_column

from . import Base


ENTRY_KINDS = ("reminder", "final_notice", "final_delivery")
ENTRY_STATUSES = ("pending", "processing", "sent", "failed", "obsolete")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ScheduleEntry(Base):
    __tablename__ = "schedule_entries"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    message_id: Mapped[str] = mapped_column(String(36), index=True)
    condition_id: Mapped[str] = mapped_column(String(36), index=True)
    scheduled_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    entry_kind: Mapped[str] = mapped_column(String(16))  # reminder | final_notice | final_delivery
    status: Mapped[str] = mapped_column(String(16), default="pending")  # pending | processing | sent | failed | obsolete
    delivery_priority: Mapped[str] = mapped_column(String(16), default="normal")  # normal | high | critical
    retry_count: Mapped[int] = mapped_column(Integer, default=0)
    last_attempt_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    next_attempt_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        # Dedup key: obsolete rows are history and do not block regeneration.
        Index(
            "uq_schedule_entries_dedup",
            "message_id",
            "condition_id",
            "scheduled_at",
            "entry_kind",
            unique=True,
            postgresql_where=text("status <> 'obsolete'"),
            sqlite_where=text("status <> 'obsolete'"),
        ),
        Index("ix_schedule_entries_status_scheduled", "status", "scheduled_at"),
    )

    @property
    def dedup_key(self) -> tuple[str, str, datetime, str]:
        ts = self.scheduled_at
        if ts is not None and ts.tzinfo is None:
            ts = ts.replace(tzinfo=timezone.utc)
        return (self.message_id, self.condition_id, ts, self.entry_kind)
