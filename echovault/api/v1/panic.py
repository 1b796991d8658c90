"""
Emergency trigger endpoints (app panic button and selection replies).
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ...core.db import get_db
from ...schemas.panic import PanicOut, PanicTriggerIn, SelectionReplyIn
from ...services.channels import ChannelSet
from ...services.panic import PanicResult, handle_selection_reply, trigger_panic
from .common import get_channels


router = APIRouter(prefix="/api/v1/panic", tags=["panic"])


def panic_result_out(result: PanicResult) -> dict:
    return {
        "status": result.status,
        "message": result.message,
        "condition_id": result.condition_id,
        "message_id": result.message_id,
        "delivery_status": result.outcome.status if result.outcome else None,
        "candidates": [
            {"condition_id": c.condition_id, "message_id": c.message_id, "title": c.title}
            for c in result.candidates
        ],
    }


@router.post("/trigger", response_model=PanicOut)
def post_trigger(
    payload: PanicTriggerIn,
    db: Session = Depends(get_db),
    channels: Optional[ChannelSet] = Depends(get_channels),
) -> dict:
    location = payload.location.model_dump() if payload.location else None
    result = trigger_panic(db, payload.user_id, keyword=payload.keyword, location=location, channels=channels)
    return panic_result_out(result)


@router.post("/selection", response_model=PanicOut)
def post_selection(
    payload: SelectionReplyIn,
    db: Session = Depends(get_db),
    channels: Optional[ChannelSet] = Depends(get_channels),
) -> dict:
    result = handle_selection_reply(db, payload.user_id, payload.reply, channels=channels)
    return panic_result_out(result)
