"""
Check-in endpoint.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ...core.db import get_db
from ...schemas.conditions import CheckInIn, CheckInOut
from ...services.lifecycle import check_in


router = APIRouter(prefix="/api/v1/check-in", tags=["check-in"])


@router.post("", response_model=CheckInOut)
def post_check_in(payload: CheckInIn, db: Session = Depends(get_db)) -> dict:
    return check_in(db, payload.user_id, method=payload.method, device_info=payload.device_info)
