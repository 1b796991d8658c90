"""
Stuck-entry reclaimer.

Entries left in `processing` by a killed cycle are handed back to the
queue once their claim is older than the staleness window. A second sweep
synthesizes final deliveries that should exist but do not.
"""

from __future__ import annotations

import datetime
import logging
from typing import Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.errors import log_exception
from ..core.timeutil import ensure_utc, utcnow
from ..models.condition import MessageCondition
from ..models.schedule_entry import ScheduleEntry
from .schedule_generator import EntryDraft, already_delivered, insert_ignore
from .triggers import CHECK_IN_KINDS, condition_deadline


logger = logging.getLogger("reclaimer")

SWEEP_KINDS = tuple(sorted(CHECK_IN_KINDS | {"scheduled_date"}))


def reset_stuck(db: Session, now: datetime.datetime) -> int:
    cutoff = now - datetime.timedelta(minutes=settings.stuck_after_minutes)
    result = db.execute(
        update(ScheduleEntry)
        .where(
            ScheduleEntry.status == "processing",
            ScheduleEntry.last_attempt_at.is_not(None),
            ScheduleEntry.last_attempt_at < cutoff,
        )
        .values(status="pending", last_attempt_at=None, next_attempt_at=None, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount or 0


def synthesize_missing_finals(db: Session, now: datetime.datetime) -> int:
    conditions = (
        db.query(MessageCondition)
        .filter(MessageCondition.active.is_(True), MessageCondition.condition_type.in_(SWEEP_KINDS))
        .all()
    )
    synthesized = 0
    for condition in conditions:
        try:
            deadline = condition_deadline(condition)
        except Exception as exc:
            log_exception(logger, "Deadline computation failed", extra={"condition_id": condition.id}, exc=exc)
            continue
        if deadline is None or deadline > now:
            continue
        if already_delivered(db, condition, deadline):
            continue
        count = insert_ignore(
            db,
            [
                EntryDraft(
                    message_id=condition.message_id,
                    condition_id=condition.id,
                    scheduled_at=deadline,
                    entry_kind="final_delivery",
                    delivery_priority="critical",
                )
            ],
        )
        if count:
            logger.warning(
                "Synthesized missing final delivery condition_id=%s message_id=%s deadline=%s",
                condition.id,
                condition.message_id,
                deadline,
            )
        synthesized += count
    return synthesized


def fix_stuck(db: Session, now: Optional[datetime.datetime] = None) -> dict:
    now = ensure_utc(now) or utcnow()
    reset_count = reset_stuck(db, now)
    db.commit()
    synthesized_count = synthesize_missing_finals(db, now)
    db.commit()
    if reset_count or synthesized_count:
        logger.info("Reclaimed reset=%s synthesized=%s", reset_count, synthesized_count)
    return {"reset_count": reset_count, "synthesized_count": synthesized_count}
