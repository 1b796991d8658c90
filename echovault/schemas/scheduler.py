"""
Pydantic schemas for the processing cycle, schedule entries and the delivery log.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict


class ProcessIn(BaseModel):
    message_id: Optional[str] = None
    force_send: bool = False
    debug: bool = False
    limit: Optional[int] = None


class ProcessOut(BaseModel):
    processed: int
    succeeded: int
    failed: int


class RegenerateOut(BaseModel):
    ok: bool
    condition_id: str
    inserted: int


class FixStuckOut(BaseModel):
    reset_count: int
    synthesized_count: int = 0


class StatsOut(BaseModel):
    due_count: int
    sent_recent: int
    failed_recent: int


class ScheduleEntryOut(BaseModel):
    id: str
    message_id: str
    condition_id: str
    scheduled_at: datetime
    entry_kind: str
    status: str
    delivery_priority: str
    retry_count: int
    last_attempt_at: Optional[datetime] = None
    next_attempt_at: Optional[datetime] = None
    last_error: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class DeliveryLogOut(BaseModel):
    id: str
    entry_id: Optional[str] = None
    message_id: str
    condition_id: Optional[str] = None
    recipient: str
    channel: str
    status: str
    error: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
