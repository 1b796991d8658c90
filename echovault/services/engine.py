"""
The processing cycle: reclaim, claim, dispatch.

There is no scheduler thread here. A host (the worker loop, cron hitting
the HTTP endpoint, a test) calls `process` whenever it wants a cycle;
overlapping cycles are safe.
"""

from __future__ import annotations

import datetime
import logging
from typing import Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.errors import log_exception
from ..core.timeutil import ensure_utc, utcnow
from ..models.delivery_log import DeliveryLog
from ..models.schedule_entry import ScheduleEntry
from .channels import ChannelSet, build_channels
from .claim_queue import claim
from .dispatcher import deliver
from .reclaimer import fix_stuck


logger = logging.getLogger("engine")


def process(
    db: Session,
    *,
    channels: Optional[ChannelSet] = None,
    message_id: Optional[str] = None,
    force_send: bool = False,
    debug: bool = False,
    now: Optional[datetime.datetime] = None,
    limit: Optional[int] = None,
) -> dict:
    # Build channels once per worker lifetime (pass channels from worker.py),
    # this fallback is for one-off HTTP invocations.
    owned = channels is None
    channels = channels or build_channels()
    now = ensure_utc(now) or utcnow()
    try:
        try:
            fix_stuck(db, now)
        except Exception as exc:
            db.rollback()
            log_exception(logger, "Reclaim step failed", exc=exc)

        entries = claim(db, limit=limit, message_id=message_id, force_send=force_send, now=now)
        processed = succeeded = failed = 0
        for entry in entries:
            processed += 1
            outcome = deliver(db, entry, channels=channels, now=now, force_send=force_send, debug=debug)
            if outcome.ok:
                succeeded += 1
            elif outcome.status == "failed" or (outcome.status == "pending" and outcome.error != "not_due"):
                failed += 1
    finally:
        if owned:
            channels.close()

    if processed or debug:
        logger.info(
            "Cycle complete processed=%s succeeded=%s failed=%s message_id=%s force_send=%s",
            processed,
            succeeded,
            failed,
            message_id,
            force_send,
        )
    return {"processed": processed, "succeeded": succeeded, "failed": failed}


def stats(db: Session, now: Optional[datetime.datetime] = None) -> dict:
    now = ensure_utc(now) or utcnow()
    window_start = now - datetime.timedelta(hours=settings.stats_window_hours)
    due_count = (
        db.query(func.count(ScheduleEntry.id))
        .filter(
            ScheduleEntry.status == "pending",
            ScheduleEntry.scheduled_at <= now,
            or_(ScheduleEntry.next_attempt_at.is_(None), ScheduleEntry.next_attempt_at <= now),
        )
        .scalar()
    )
    sent_recent = (
        db.query(func.count(DeliveryLog.id))
        .filter(DeliveryLog.status == "sent", DeliveryLog.created_at >= window_start)
        .scalar()
    )
    failed_recent = (
        db.query(func.count(DeliveryLog.id))
        .filter(DeliveryLog.status == "failed", DeliveryLog.created_at >= window_start)
        .scalar()
    )
    return {
        "due_count": int(due_count or 0),
        "sent_recent": int(sent_recent or 0),
        "failed_recent": int(failed_recent or 0),
    }
