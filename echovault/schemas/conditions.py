"""
Pydantic schemas for trigger conditions and check-ins.
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


ConditionKind = Literal[
    "no_check_in",
    "recurring_check_in",
    "inactivity_to_date",
    "scheduled_date",
    "panic_trigger",
    "group_confirmation",
]


class RecipientIn(BaseModel):
    id: Optional[str] = None
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None


class RecurringPatternIn(BaseModel):
    type: Literal["daily", "weekly", "monthly", "yearly"]
    interval: int = Field(1, ge=1)


class PanicConfigIn(BaseModel):
    trigger_keyword: str = "SOS"
    keep_armed: bool = False


class ConditionIn(BaseModel):
    message_id: str
    user_id: str
    condition_type: ConditionKind
    active: bool = False
    hours_threshold: int = Field(0, ge=0)
    minutes_threshold: int = Field(0, ge=0)
    trigger_at: Optional[datetime] = None
    recurring_pattern: Optional[RecurringPatternIn] = None
    reminder_minutes: Optional[list[int]] = None
    recipients: list[RecipientIn] = Field(default_factory=list)
    panic_config: Optional[PanicConfigIn] = None
    confirmations_required: Optional[int] = None
    pin_code: Optional[str] = None
    unlock_delay_hours: int = Field(0, ge=0)
    expiry_hours: int = Field(0, ge=0)


class ConditionUpdate(BaseModel):
    condition_type: Optional[ConditionKind] = None
    hours_threshold: Optional[int] = Field(None, ge=0)
    minutes_threshold: Optional[int] = Field(None, ge=0)
    trigger_at: Optional[datetime] = None
    recurring_pattern: Optional[RecurringPatternIn] = None
    reminder_minutes: Optional[list[int]] = None
    recipients: Optional[list[RecipientIn]] = None
    panic_config: Optional[PanicConfigIn] = None
    confirmations_required: Optional[int] = None
    pin_code: Optional[str] = None
    unlock_delay_hours: Optional[int] = Field(None, ge=0)
    expiry_hours: Optional[int] = Field(None, ge=0)

    def fields(self) -> dict:
        return self.model_dump(exclude_unset=True)


class ConditionOut(BaseModel):
    id: str
    message_id: str
    user_id: str
    condition_type: str
    active: bool
    last_checked_at: Optional[datetime] = None
    hours_threshold: int
    minutes_threshold: int
    trigger_at: Optional[datetime] = None
    recurring_pattern: Optional[dict] = None
    reminder_minutes: Optional[list[int]] = None
    recipients: Optional[list[dict]] = Field(None, validation_alias="recipients_json")
    panic_config: Optional[dict] = Field(None, validation_alias="panic_config_json")
    unlock_delay_hours: int = 0
    expiry_hours: int = 0
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


class CheckInIn(BaseModel):
    user_id: str
    method: Literal["app", "whatsapp", "api"] = "app"
    device_info: Optional[str] = None


class CheckInOut(BaseModel):
    ok: bool
    check_in_id: str
    conditions_updated: int
    checked_in_at: datetime
