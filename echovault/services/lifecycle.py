"""
Condition lifecycle: create, edit, arm, disarm and check-in.

Each operation commits the condition change first and then regenerates the
schedule in its own transaction; a regeneration failure is logged and does
not undo the condition change.
"""

from __future__ import annotations

import datetime
import logging
from typing import Any, Optional

from sqlalchemy.orm import Session

from ..core.errors import ConditionNotFound, ConfigurationError, InvalidTransition
from ..core.timeutil import ensure_utc, utcnow
from ..models.check_in import CheckIn
from ..models.condition import MessageCondition
from .schedule_generator import obsolete_pending, safe_regenerate
from .triggers import CHECK_IN_KINDS, CONDITION_KINDS, is_check_in_kind, parse_recurring_pattern, trigger_spec


logger = logging.getLogger("lifecycle")

EDITABLE_FIELDS = {
    "condition_type": "condition_type",
    "hours_threshold": "hours_threshold",
    "minutes_threshold": "minutes_threshold",
    "trigger_at": "trigger_at",
    "recurring_pattern": "recurring_pattern",
    "reminder_minutes": "reminder_minutes",
    "recipients": "recipients_json",
    "panic_config": "panic_config_json",
    "confirmations_required": "confirmations_required",
    "pin_code": "pin_code",
    "unlock_delay_hours": "unlock_delay_hours",
    "expiry_hours": "expiry_hours",
}


def _get_condition(db: Session, condition_id: str) -> MessageCondition:
    condition = db.get(MessageCondition, condition_id)
    if condition is None:
        raise ConditionNotFound(f"Condition {condition_id} not found")
    return condition


def _apply_fields(condition: MessageCondition, fields: dict[str, Any]) -> None:
    for key, value in fields.items():
        attr = EDITABLE_FIELDS.get(key)
        if attr is None:
            raise ConfigurationError(f"Unknown condition field: {key}")
        if attr == "trigger_at":
            value = ensure_utc(value)
        setattr(condition, attr, value)


def _validate(condition: MessageCondition) -> None:
    if condition.condition_type not in CONDITION_KINDS:
        raise ConfigurationError(f"Unknown condition type: {condition.condition_type!r}")
    if condition.condition_type in CHECK_IN_KINDS:
        if int(condition.hours_threshold or 0) < 0 or int(condition.minutes_threshold or 0) < 0:
            raise ConfigurationError("Thresholds must be non-negative")
        if not (condition.hours_threshold or condition.minutes_threshold):
            raise ConfigurationError("Check-in conditions need a non-zero threshold")
    if condition.condition_type == "scheduled_date" and condition.trigger_at is None:
        raise ConfigurationError("scheduled_date conditions need trigger_at")
    parse_recurring_pattern(condition.recurring_pattern)
    trigger_spec(condition)


def _deactivate_others(db: Session, condition: MessageCondition) -> None:
    others = (
        db.query(MessageCondition)
        .filter(
            MessageCondition.message_id == condition.message_id,
            MessageCondition.active.is_(True),
            MessageCondition.id != condition.id,
        )
        .all()
    )
    for other in others:
        other.active = False
        obsolete_pending(db, other)
        logger.info("Deactivated superseded condition condition_id=%s message_id=%s", other.id, other.message_id)
    if others:
        # The one-active-per-message index must see these before the new activation.
        db.flush()


def create_condition(
    db: Session,
    *,
    message_id: str,
    user_id: str,
    condition_type: str,
    active: bool = False,
    now: Optional[datetime.datetime] = None,
    **fields: Any,
) -> MessageCondition:
    now = ensure_utc(now) or utcnow()
    condition = MessageCondition(
        message_id=message_id,
        user_id=user_id,
        condition_type=condition_type,
        active=False,
        hours_threshold=0,
        minutes_threshold=0,
        unlock_delay_hours=0,
        expiry_hours=0,
        created_at=now,
        updated_at=now,
    )
    _apply_fields(condition, fields)
    _validate(condition)
    db.add(condition)
    db.flush()
    if active:
        _deactivate_others(db, condition)
        condition.active = True
        if is_check_in_kind(condition_type) and condition.last_checked_at is None:
            condition.last_checked_at = now
    db.commit()
    db.refresh(condition)
    logger.info(
        "Condition created condition_id=%s message_id=%s type=%s active=%s",
        condition.id,
        message_id,
        condition_type,
        condition.active,
    )
    if condition.active:
        safe_regenerate(db, condition, now)
    return condition


def update_condition(
    db: Session,
    condition_id: str,
    *,
    now: Optional[datetime.datetime] = None,
    **fields: Any,
) -> MessageCondition:
    now = ensure_utc(now) or utcnow()
    condition = _get_condition(db, condition_id)
    _apply_fields(condition, fields)
    _validate(condition)
    condition.updated_at = now
    db.commit()
    db.refresh(condition)
    logger.info("Condition updated condition_id=%s fields=%s", condition.id, ",".join(sorted(fields)))
    safe_regenerate(db, condition, now)
    return condition


def arm(db: Session, condition_id: str, *, now: Optional[datetime.datetime] = None) -> MessageCondition:
    now = ensure_utc(now) or utcnow()
    condition = _get_condition(db, condition_id)
    _validate(condition)
    was_active = bool(condition.active)
    if not was_active:
        _deactivate_others(db, condition)
        condition.active = True
        if is_check_in_kind(condition.condition_type):
            condition.last_checked_at = now
    condition.updated_at = now
    db.commit()
    db.refresh(condition)
    logger.info("Condition armed condition_id=%s already_active=%s", condition.id, was_active)
    safe_regenerate(db, condition, now, force_arm=True)
    return condition


def disarm(db: Session, condition_id: str, *, now: Optional[datetime.datetime] = None) -> MessageCondition:
    now = ensure_utc(now) or utcnow()
    condition = _get_condition(db, condition_id)
    if not condition.active:
        raise InvalidTransition(f"Condition {condition_id} is not armed")
    condition.active = False
    condition.updated_at = now
    db.commit()
    db.refresh(condition)
    logger.info("Condition disarmed condition_id=%s", condition.id)
    safe_regenerate(db, condition, now)
    return condition


def check_in(
    db: Session,
    user_id: str,
    *,
    now: Optional[datetime.datetime] = None,
    method: str = "app",
    device_info: Optional[str] = None,
) -> dict:
    """Reset the clock on every armed check-in condition of the user."""
    now = ensure_utc(now) or utcnow()
    conditions = (
        db.query(MessageCondition)
        .filter(
            MessageCondition.user_id == user_id,
            MessageCondition.active.is_(True),
            MessageCondition.condition_type.in_(tuple(sorted(CHECK_IN_KINDS))),
        )
        .all()
    )
    for condition in conditions:
        condition.last_checked_at = now
        condition.updated_at = now
    record = CheckIn(user_id=user_id, method=method, device_info=device_info, created_at=now)
    db.add(record)
    db.commit()

    regenerated = 0
    for condition in conditions:
        if safe_regenerate(db, condition, now) is not None:
            regenerated += 1
    logger.info(
        "Check-in recorded user_id=%s method=%s conditions=%s regenerated=%s",
        user_id,
        method,
        len(conditions),
        regenerated,
    )
    return {
        "ok": True,
        "check_in_id": record.id,
        "conditions_updated": len(conditions),
        "checked_in_at": now,
    }
