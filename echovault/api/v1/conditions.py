"""
Condition lifecycle endpoints, called by the app backend.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ...core.db import get_db
from ...core.errors import EngineError
from ...models.condition import MessageCondition
from ...schemas.conditions import ConditionIn, ConditionOut, ConditionUpdate
from ...services import lifecycle
from .common import to_http_error


router = APIRouter(prefix="/api/v1/conditions", tags=["conditions"])


@router.post("", response_model=ConditionOut)
def create_condition(payload: ConditionIn, db: Session = Depends(get_db)) -> MessageCondition:
    fields = payload.model_dump(exclude={"message_id", "user_id", "condition_type", "active"})
    try:
        return lifecycle.create_condition(
            db,
            message_id=payload.message_id,
            user_id=payload.user_id,
            condition_type=payload.condition_type,
            active=payload.active,
            **fields,
        )
    except EngineError as exc:
        db.rollback()
        raise to_http_error(exc) from exc


@router.get("/{condition_id}", response_model=ConditionOut)
def get_condition(condition_id: str, db: Session = Depends(get_db)) -> MessageCondition:
    condition = db.get(MessageCondition, condition_id)
    if not condition:
        raise HTTPException(status_code=404, detail="Condition not found")
    return condition


@router.patch("/{condition_id}", response_model=ConditionOut)
def update_condition(condition_id: str, payload: ConditionUpdate, db: Session = Depends(get_db)) -> MessageCondition:
    try:
        return lifecycle.update_condition(db, condition_id, **payload.fields())
    except EngineError as exc:
        db.rollback()
        raise to_http_error(exc) from exc


@router.post("/{condition_id}/arm", response_model=ConditionOut)
def arm_condition(condition_id: str, db: Session = Depends(get_db)) -> MessageCondition:
    try:
        return lifecycle.arm(db, condition_id)
    except EngineError as exc:
        db.rollback()
        raise to_http_error(exc) from exc


@router.post("/{condition_id}/disarm", response_model=ConditionOut)
def disarm_condition(condition_id: str, db: Session = Depends(get_db)) -> MessageCondition:
    try:
        return lifecycle.disarm(db, condition_id)
    except EngineError as exc:
        db.rollback()
        raise to_http_error(exc) from exc
