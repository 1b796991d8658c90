"""
Reminder schedule generator.

`generate` turns a condition into ordered entry drafts; `persist_drafts`
applies them with obsolescence-then-insert so the dedup key holds no
matter how many times (or how concurrently) a schedule is regenerated.
"""

from __future__ import annotations

import datetime
import logging
import uuid
from dataclasses import dataclass
from typing import Iterable, Optional

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.errors import ConditionNotFound, guarded_call
from ..core.timeutil import ensure_utc, utcnow
from ..models.condition import MessageCondition
from ..models.schedule_entry import ScheduleEntry
from ..models.sent_record import SentRecord
from .triggers import condition_deadline


logger = logging.getLogger("schedule_generator")


@dataclass(frozen=True)
class EntryDraft:
    message_id: str
    condition_id: str
    scheduled_at: datetime.datetime
    entry_kind: str
    delivery_priority: str = "normal"

    def as_row(self) -> dict:
        return {
            "id": str(uuid.uuid4()),
            "message_id": self.message_id,
            "condition_id": self.condition_id,
            "scheduled_at": self.scheduled_at,
            "entry_kind": self.entry_kind,
            "status": "pending",
            "delivery_priority": self.delivery_priority,
            "retry_count": 0,
        }


def reminder_offsets(condition: MessageCondition) -> list[int]:
    """Lead times in minutes, largest first; falls back to the configured default."""
    raw = condition.reminder_minutes
    if raw is None:
        raw = settings.default_reminders()
    offsets: set[int] = set()
    for value in raw or []:
        try:
            minutes = int(value)
        except (TypeError, ValueError):
            logger.warning("Ignoring invalid reminder offset condition_id=%s value=%r", condition.id, value)
            continue
        if minutes > 0:
            offsets.add(minutes)
    return sorted(offsets, reverse=True)


def is_reminder_stale(
    scheduled_at: datetime.datetime,
    lead: datetime.timedelta,
    now: datetime.datetime,
    factor: Optional[float] = None,
) -> bool:
    """A reminder is too stale to send once it is more than `factor` lead-times overdue."""
    factor = settings.reminder_stale_factor if factor is None else factor
    return ensure_utc(now) > ensure_utc(scheduled_at) + lead * factor


def generate(
    condition: MessageCondition,
    now: datetime.datetime,
    *,
    force_arm: bool = False,
) -> list[EntryDraft]:
    now = ensure_utc(now)
    deadline = condition_deadline(condition, basis=now if force_arm else None)
    if deadline is None:
        return []

    drafts: list[EntryDraft] = []
    for minutes in reminder_offsets(condition):
        lead = datetime.timedelta(minutes=minutes)
        at = deadline - lead
        if is_reminder_stale(at, lead, now):
            continue
        drafts.append(
            EntryDraft(
                message_id=condition.message_id,
                condition_id=condition.id,
                scheduled_at=at,
                entry_kind="reminder",
                delivery_priority="normal",
            )
        )

    drafts.append(
        EntryDraft(
            message_id=condition.message_id,
            condition_id=condition.id,
            scheduled_at=deadline,
            entry_kind="final_delivery",
            delivery_priority="critical" if deadline <= now else "high",
        )
    )
    drafts.sort(key=lambda d: (d.scheduled_at, d.entry_kind == "final_delivery"))
    return drafts


def _insert_statement(db: Session, row: dict):
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert(ScheduleEntry).values(**row).on_conflict_do_nothing()
    if dialect == "sqlite":
        return sqlite_insert(ScheduleEntry).values(**row).on_conflict_do_nothing()
    return None


def insert_ignore(db: Session, drafts: Iterable[EntryDraft]) -> int:
    """Insert drafts, silently skipping any whose dedup key already has a live row."""
    inserted = 0
    for draft in drafts:
        row = draft.as_row()
        stmt = _insert_statement(db, row)
        if stmt is not None:
            result = db.execute(stmt)
            inserted += max(result.rowcount or 0, 0)
            continue
        savepoint = db.begin_nested()
        try:
            db.add(ScheduleEntry(**row))
            db.flush()
            savepoint.commit()
            inserted += 1
        except IntegrityError:
            savepoint.rollback()
    return inserted


def obsolete_pending(db: Session, condition: MessageCondition) -> int:
    result = db.execute(
        update(ScheduleEntry)
        .where(
            ScheduleEntry.message_id == condition.message_id,
            ScheduleEntry.condition_id == condition.id,
            ScheduleEntry.status == "pending",
        )
        .values(status="obsolete", updated_at=utcnow())
    )
    return result.rowcount or 0


def already_delivered(db: Session, condition: MessageCondition, deadline: datetime.datetime) -> bool:
    row = db.execute(
        select(SentRecord.id).where(
            SentRecord.message_id == condition.message_id,
            SentRecord.condition_id == condition.id,
            SentRecord.deadline == ensure_utc(deadline),
        )
    ).first()
    return row is not None


def persist_drafts(db: Session, condition: MessageCondition, drafts: list[EntryDraft]) -> int:
    """Obsolete the pair's pending entries, then insert-or-ignore the drafts. Does not commit."""
    obsoleted = obsolete_pending(db, condition)
    keep = [
        d
        for d in drafts
        if not (d.entry_kind == "final_delivery" and already_delivered(db, condition, d.scheduled_at))
    ]
    inserted = insert_ignore(db, keep)
    logger.info(
        "Schedule regenerated condition_id=%s message_id=%s obsoleted=%s drafted=%s inserted=%s",
        condition.id,
        condition.message_id,
        obsoleted,
        len(keep),
        inserted,
    )
    return inserted


def regenerate_for_condition(
    db: Session,
    condition: MessageCondition,
    now: Optional[datetime.datetime] = None,
    *,
    force_arm: bool = False,
) -> int:
    now = ensure_utc(now) or utcnow()
    drafts = generate(condition, now, force_arm=force_arm) if condition.active else []
    return persist_drafts(db, condition, drafts)


def safe_regenerate(
    db: Session,
    condition: MessageCondition,
    now: Optional[datetime.datetime] = None,
    *,
    force_arm: bool = False,
) -> Optional[int]:
    """
    Regenerate and commit in a transaction of its own. Callers commit their
    condition changes first; a failure here is logged and never propagates.
    """

    def _run() -> int:
        try:
            count = regenerate_for_condition(db, condition, now, force_arm=force_arm)
            db.commit()
        except Exception:
            db.rollback()
            raise
        return count

    return guarded_call(
        "regenerate_schedule",
        _run,
        fallback=None,
        logger=logger,
        context={"condition_id": condition.id, "message_id": condition.message_id},
    )


def regenerate_schedule(
    db: Session,
    message_id: str,
    now: Optional[datetime.datetime] = None,
) -> dict:
    """Rebuild the schedule for the message's active condition and commit."""
    condition = (
        db.query(MessageCondition)
        .filter(MessageCondition.message_id == message_id, MessageCondition.active.is_(True))
        .first()
    )
    if condition is None:
        raise ConditionNotFound(f"No active condition for message {message_id}")
    inserted = regenerate_for_condition(db, condition, now)
    db.commit()
    return {"ok": True, "condition_id": condition.id, "inserted": inserted}
