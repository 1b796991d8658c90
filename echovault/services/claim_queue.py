"""
Due-entry claim queue.

Candidates are selected (row-locked with SKIP LOCKED on PostgreSQL) and then
moved to `processing` with a compare-and-set update, so two overlapping
claimers never both own an entry on any dialect.
"""

from __future__ import annotations

import datetime
import logging
from typing import Optional

from sqlalchemy import case, or_, update
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.timeutil import ensure_utc, utcnow
from ..models.schedule_entry import ScheduleEntry


logger = logging.getLogger("claim_queue")

PRIORITY_RANK = {"critical": 0, "high": 1, "normal": 2}


def _priority_order():
    return case(
        (ScheduleEntry.delivery_priority == "critical", 0),
        (ScheduleEntry.delivery_priority == "high", 1),
        else_=2,
    )


def _try_claim(db: Session, entry_id: str, now: datetime.datetime) -> bool:
    result = db.execute(
        update(ScheduleEntry)
        .where(ScheduleEntry.id == entry_id, ScheduleEntry.status == "pending")
        .values(status="processing", last_attempt_at=now, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    return (result.rowcount or 0) == 1


def claim(
    db: Session,
    *,
    limit: Optional[int] = None,
    message_id: Optional[str] = None,
    force_send: bool = False,
    now: Optional[datetime.datetime] = None,
) -> list[ScheduleEntry]:
    """
    Claim up to `limit` due entries and return them in `processing`.

    `force_send` widens the selection to entries that are not yet due or are
    waiting out a retry backoff, but only ever `pending` rows are claimable.
    """
    now = ensure_utc(now) or utcnow()
    limit = limit or settings.claim_batch_size

    query = db.query(ScheduleEntry.id).filter(ScheduleEntry.status == "pending")
    if not force_send:
        query = query.filter(
            ScheduleEntry.scheduled_at <= now,
            or_(ScheduleEntry.next_attempt_at.is_(None), ScheduleEntry.next_attempt_at <= now),
        )
    if message_id:
        query = query.filter(ScheduleEntry.message_id == message_id)
    query = query.order_by(_priority_order(), ScheduleEntry.scheduled_at.asc()).limit(limit)
    if db.bind and db.bind.dialect.name == "postgresql":
        query = query.with_for_update(skip_locked=True)

    candidate_ids = [row[0] for row in query.all()]
    claimed_ids: list[str] = []
    for entry_id in candidate_ids:
        if _try_claim(db, entry_id, now):
            claimed_ids.append(entry_id)
    db.commit()

    if not claimed_ids:
        return []
    entries = db.query(ScheduleEntry).filter(ScheduleEntry.id.in_(claimed_ids)).all()
    entries.sort(key=lambda e: (PRIORITY_RANK.get(e.delivery_priority, 2), ensure_utc(e.scheduled_at)))
    logger.info(
        "Claimed entries count=%s candidates=%s force_send=%s message_id=%s",
        len(entries),
        len(candidate_ids),
        force_send,
        message_id,
    )
    return entries


def claim_by_id(db: Session, entry_id: str, now: Optional[datetime.datetime] = None) -> Optional[ScheduleEntry]:
    """Claim one specific pending entry regardless of its scheduled time."""
    now = ensure_utc(now) or utcnow()
    ok = _try_claim(db, entry_id, now)
    db.commit()
    if not ok:
        return None
    return db.get(ScheduleEntry, entry_id)
