"""
Pydantic schemas for emergency triggers and selection replies.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field


class LocationIn(BaseModel):
    latitude: float
    longitude: float
    name: Optional[str] = None


class PanicTriggerIn(BaseModel):
    user_id: str
    keyword: Optional[str] = None
    location: Optional[LocationIn] = None


class SelectionReplyIn(BaseModel):
    user_id: str
    reply: str


class SelectionCandidateOut(BaseModel):
    condition_id: str
    message_id: str
    title: str


class PanicOut(BaseModel):
    status: str
    message: str
    condition_id: Optional[str] = None
    message_id: Optional[str] = None
    delivery_status: Optional[str] = None
    candidates: list[SelectionCandidateOut] = Field(default_factory=list)
