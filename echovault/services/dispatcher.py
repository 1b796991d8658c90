"""
Delivery dispatcher.

`deliver` takes one claimed (`processing`) entry, re-validates it, resolves
its recipients, fans out over email and messaging, and records exactly one
status transition plus one DeliveryLog row per attempt. Every exception is
caught here and converted into a transition; nothing propagates to the cycle.
"""

from __future__ import annotations

import datetime
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.errors import DataIntegrityError, NoRecipientsError, error_tag, is_retryable, log_exception
from ..core.timeutil import ensure_utc, utcnow
from ..models.condition import MessageCondition
from ..models.delivery_log import DeliveryLog
from ..models.message import Message
from ..models.profile import UserProfile
from ..models.schedule_entry import ScheduleEntry
from ..models.sent_record import SentRecord
from . import templates
from .channels import ChannelResult, ChannelSet
from .schedule_generator import (
    EntryDraft,
    insert_ignore,
    is_reminder_stale,
    obsolete_pending,
    reminder_offsets,
    safe_regenerate,
)
from .triggers import (
    CheckInTrigger,
    GroupConfirmationTrigger,
    PanicTrigger,
    ScheduledTrigger,
    compute_deadline,
    is_check_in_kind,
    next_occurrence,
    trigger_spec,
)


logger = logging.getLogger("dispatcher")


@dataclass(frozen=True)
class Recipient:
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    id: Optional[str] = None


@dataclass
class DeliveryOutcome:
    entry_id: str
    status: str  # sent | failed | pending | obsolete
    error: Optional[str] = None
    attempts: int = 0
    successes: int = 0

    @property
    def ok(self) -> bool:
        return self.status == "sent"


def parse_recipients(raw: Optional[list]) -> list[Recipient]:
    recipients: list[Recipient] = []
    for item in raw or []:
        if not isinstance(item, dict):
            continue
        email = (item.get("email") or "").strip() or None
        phone = (item.get("phone") or "").strip() or None
        if not email and not phone:
            continue
        recipients.append(Recipient(name=item.get("name"), email=email, phone=phone, id=item.get("id")))
    return recipients


def owner_recipient(owner: UserProfile) -> Recipient:
    return Recipient(
        name=owner.display_name,
        email=(owner.email or "").strip() or None,
        phone=(owner.whatsapp_number or "").strip() or None,
        id=owner.id,
    )


def resolve_recipients(
    entry_kind: str,
    condition: MessageCondition,
    owner: Optional[UserProfile],
) -> list[Recipient]:
    """
    `final_delivery` goes to the configured recipients; reminders and notices
    on check-in kinds go to the owner only; anything else goes to the
    configured recipients.
    """
    if entry_kind == "final_delivery":
        return parse_recipients(condition.recipients_json)
    if is_check_in_kind(condition.condition_type):
        if owner is None:
            raise DataIntegrityError(f"Owner profile {condition.user_id} missing for condition {condition.id}")
        owner_target = owner_recipient(owner)
        return [owner_target] if (owner_target.email or owner_target.phone) else []
    return parse_recipients(condition.recipients_json)


def _backoff_seconds(retry_count: int) -> int:
    schedule = settings.backoff_schedule()
    idx = min(max(retry_count - 1, 0), len(schedule) - 1)
    return schedule[idx]


def _recently_sent(db: Session, entry_id: str, target: str, channel: str, now: datetime.datetime) -> bool:
    window_start = now - datetime.timedelta(minutes=settings.delivery_dedup_minutes)
    row = db.execute(
        select(DeliveryLog.id).where(
            DeliveryLog.entry_id == entry_id,
            DeliveryLog.recipient == target,
            DeliveryLog.channel == channel,
            DeliveryLog.status == "sent",
            DeliveryLog.created_at >= window_start,
        )
    ).first()
    return row is not None


def _log_attempt(
    db: Session,
    entry: ScheduleEntry,
    *,
    recipient: str,
    channel: str,
    result: ChannelResult,
    now: datetime.datetime,
) -> None:
    db.add(
        DeliveryLog(
            entry_id=entry.id,
            message_id=entry.message_id,
            condition_id=entry.condition_id,
            recipient=recipient,
            channel=channel,
            status="sent" if result.ok else "failed",
            error=result.error,
            response_json=result.as_dict(),
            created_at=now,
        )
    )


def _finish(entry: ScheduleEntry, status: str, now: datetime.datetime, error: Optional[str] = None) -> None:
    entry.status = status
    entry.last_error = error
    entry.next_attempt_at = None
    entry.updated_at = now


def _release(entry: ScheduleEntry, now: datetime.datetime) -> None:
    """Hand a claimed-but-not-due entry back to the queue untouched."""
    entry.status = "pending"
    entry.last_attempt_at = None
    entry.updated_at = now


def _apply_failure(entry: ScheduleEntry, error: str, now: datetime.datetime, *, retryable: bool) -> str:
    entry.retry_count = int(entry.retry_count or 0) + 1
    entry.last_error = error
    entry.updated_at = now
    if retryable and entry.retry_count < settings.max_retries:
        entry.status = "pending"
        entry.next_attempt_at = now + datetime.timedelta(seconds=_backoff_seconds(entry.retry_count))
    else:
        entry.status = "failed"
        entry.next_attempt_at = None
    return entry.status


def _build_content(
    entry: ScheduleEntry,
    condition: MessageCondition,
    message: Message,
    owner: Optional[UserProfile],
    recipient: Recipient,
    now: datetime.datetime,
    *,
    emergency: bool,
) -> templates.DeliveryContent:
    sender_name = owner.display_name if owner else settings.sender_display_name
    if entry.entry_kind == "final_delivery":
        return templates.build_final_delivery(
            message,
            condition,
            sender_name=sender_name,
            recipient_name=recipient.name,
            recipient_email=recipient.email,
            delivery_id=entry.id,
            emergency=emergency,
        )
    if entry.entry_kind == "final_notice":
        return templates.build_owner_notice(
            message,
            owner_name=recipient.name or sender_name,
            recipient_count=len(parse_recipients(condition.recipients_json)),
        )
    deadline = compute_deadline(trigger_spec(condition))
    if is_check_in_kind(condition.condition_type):
        return templates.build_check_in_reminder(message, owner_name=recipient.name or sender_name, deadline=deadline, now=now)
    return templates.build_upcoming_delivery(message, sender_name=sender_name, deadline=deadline, now=now)


def _fan_out(
    db: Session,
    entry: ScheduleEntry,
    recipients: list[Recipient],
    contents: list[templates.DeliveryContent],
    channels: ChannelSet,
    now: datetime.datetime,
    *,
    debug: bool = False,
) -> tuple[int, int, list[str]]:
    attempts = 0
    successes = 0
    errors: list[str] = []
    for recipient, content in zip(recipients, contents):
        pairs = []
        if recipient.email:
            pairs.append((channels.email.name, recipient.email))
        if recipient.phone:
            pairs.append((channels.messaging.name, recipient.phone))
        for channel, target in pairs:
            if _recently_sent(db, entry.id, target, channel, now):
                logger.info("Skipping already-sent pair entry_id=%s channel=%s target=%s", entry.id, channel, target)
                successes += 1
                continue
            attempts += 1
            if channel == channels.email.name:
                result = channels.send_email(target, content.email_subject, content.email_html)
            else:
                result = channels.send_message(target, content.text)
            _log_attempt(db, entry, recipient=target, channel=channel, result=result, now=now)
            if result.ok:
                successes += 1
            else:
                errors.append(f"{channel}:{target}:{result.error}")
            if debug:
                logger.info(
                    "Attempt entry_id=%s kind=%s channel=%s target=%s ok=%s id=%s err=%s",
                    entry.id,
                    entry.entry_kind,
                    channel,
                    target,
                    result.ok,
                    result.id,
                    result.error,
                )
    return attempts, successes, errors


def _complete_final_delivery(
    db: Session,
    entry: ScheduleEntry,
    condition: MessageCondition,
    now: datetime.datetime,
    *,
    emergency: bool,
) -> bool:
    """Append the ledger row and settle the condition. Returns True when it needs a new schedule."""
    db.add(
        SentRecord(
            message_id=entry.message_id,
            condition_id=condition.id,
            user_id=condition.user_id,
            deadline=ensure_utc(entry.scheduled_at),
            sent_at=now,
        )
    )
    spec = trigger_spec(condition)
    if isinstance(spec, PanicTrigger):
        if not spec.keep_armed:
            condition.active = False
        return False

    if isinstance(spec, ScheduledTrigger) and spec.recurring and spec.trigger_at:
        condition.trigger_at = next_occurrence(spec.trigger_at, spec.recurring, after=now)
        logger.info("Recurring condition advanced condition_id=%s next=%s", condition.id, condition.trigger_at)
        return True

    condition.active = False
    obsolete_pending(db, condition)
    if isinstance(spec, CheckInTrigger) and settings.notify_owner_on_delivery and not emergency:
        insert_ignore(
            db,
            [
                EntryDraft(
                    message_id=entry.message_id,
                    condition_id=condition.id,
                    scheduled_at=now,
                    entry_kind="final_notice",
                    delivery_priority="high",
                )
            ],
        )
    return False


def _revalidate(
    db: Session,
    entry: ScheduleEntry,
    condition: MessageCondition,
    now: datetime.datetime,
    *,
    force_send: bool,
    emergency: bool,
) -> Optional[str]:
    """Return the reason an entry must not be sent, or None when it is still valid."""
    if not force_send and not emergency and ensure_utc(entry.scheduled_at) > now:
        return "not_due"
    if emergency:
        return None
    if not condition.active and entry.entry_kind != "final_notice":
        return "condition_inactive"
    spec = trigger_spec(condition)
    if isinstance(spec, (PanicTrigger, GroupConfirmationTrigger)) and entry.entry_kind == "reminder":
        return "no_deadline"
    if entry.entry_kind == "reminder":
        deadline = compute_deadline(spec)
        if deadline is None:
            return "no_deadline"
        lead = deadline - ensure_utc(entry.scheduled_at)
        if is_reminder_stale(entry.scheduled_at, lead, now):
            return "stale"
        # a check-in or edit after the claim moves the deadline under the entry
        if lead not in {datetime.timedelta(minutes=m) for m in reminder_offsets(condition)}:
            return "superseded"
    if entry.entry_kind == "final_delivery":
        deadline = compute_deadline(spec)
        if deadline is not None and ensure_utc(entry.scheduled_at) != deadline:
            return "superseded"
        sent = db.execute(
            select(SentRecord.id).where(
                SentRecord.message_id == entry.message_id,
                SentRecord.condition_id == condition.id,
                SentRecord.deadline == ensure_utc(entry.scheduled_at),
            )
        ).first()
        if sent is not None:
            return "already_delivered"
    return None


def _deliver_claimed(
    db: Session,
    entry: ScheduleEntry,
    channels: ChannelSet,
    now: datetime.datetime,
    *,
    force_send: bool,
    emergency: bool,
    debug: bool,
) -> DeliveryOutcome:
    condition = db.get(MessageCondition, entry.condition_id)
    if condition is None:
        raise DataIntegrityError(f"Condition {entry.condition_id} missing for entry {entry.id}")
    message = db.get(Message, entry.message_id)
    if message is None:
        raise DataIntegrityError(f"Message {entry.message_id} missing for entry {entry.id}")

    reason = _revalidate(db, entry, condition, now, force_send=force_send, emergency=emergency)
    if reason == "not_due":
        _release(entry, now)
        db.commit()
        return DeliveryOutcome(entry_id=entry.id, status="pending", error=reason)
    if reason is not None:
        _finish(entry, "obsolete", now, error=reason)
        db.commit()
        logger.info("Entry obsoleted entry_id=%s kind=%s reason=%s", entry.id, entry.entry_kind, reason)
        return DeliveryOutcome(entry_id=entry.id, status="obsolete", error=reason)

    owner = db.get(UserProfile, condition.user_id) if condition.user_id else None
    recipients = resolve_recipients(entry.entry_kind, condition, owner)
    if not recipients:
        raise NoRecipientsError(f"No recipients for {entry.entry_kind} on condition {condition.id}")

    contents = [
        _build_content(entry, condition, message, owner, recipient, now, emergency=emergency)
        for recipient in recipients
    ]
    attempts, successes, errors = _fan_out(db, entry, recipients, contents, channels, now, debug=debug)
    # attempt logs outlive a failure in the settle step below
    db.commit()

    if successes == 0:
        detail = "; ".join(errors) or "no channel available"
        status = _apply_failure(entry, f"channel_error: {detail}", now, retryable=True)
        db.commit()
        logger.warning(
            "Delivery failed entry_id=%s kind=%s retry_count=%s status=%s err=%s",
            entry.id,
            entry.entry_kind,
            entry.retry_count,
            status,
            detail,
        )
        return DeliveryOutcome(entry_id=entry.id, status=status, error=detail, attempts=attempts)

    _finish(entry, "sent", now)
    needs_schedule = False
    if entry.entry_kind == "final_delivery":
        needs_schedule = _complete_final_delivery(db, entry, condition, now, emergency=emergency)
    db.commit()
    logger.info(
        "Delivered entry_id=%s kind=%s message_id=%s recipients=%s successes=%s failures=%s",
        entry.id,
        entry.entry_kind,
        entry.message_id,
        len(recipients),
        successes,
        len(errors),
    )
    if needs_schedule:
        safe_regenerate(db, condition, now)
    return DeliveryOutcome(entry_id=entry.id, status="sent", attempts=attempts, successes=successes)


def deliver(
    db: Session,
    entry: ScheduleEntry,
    *,
    channels: ChannelSet,
    now: Optional[datetime.datetime] = None,
    force_send: bool = False,
    emergency: bool = False,
    debug: bool = False,
) -> DeliveryOutcome:
    now = ensure_utc(now) or utcnow()
    entry_id = entry.id
    if entry.status != "processing":
        logger.warning("Refusing to deliver unclaimed entry_id=%s status=%s", entry_id, entry.status)
        return DeliveryOutcome(entry_id=entry_id, status=entry.status, error="not_claimed")

    try:
        return _deliver_claimed(
            db,
            entry,
            channels,
            now,
            force_send=force_send,
            emergency=emergency,
            debug=debug,
        )
    except Exception as exc:
        db.rollback()
        tag = error_tag(exc)
        log_exception(logger, "Delivery error", extra={"entry_id": entry_id, "tag": tag}, exc=exc)
        row = db.get(ScheduleEntry, entry_id)
        if row is None:
            return DeliveryOutcome(entry_id=entry_id, status="failed", error=tag)
        db.add(
            DeliveryLog(
                entry_id=row.id,
                message_id=row.message_id,
                condition_id=row.condition_id,
                recipient="-",
                channel="SYSTEM",
                status="failed",
                error=f"{tag}: {exc}",
                created_at=now,
            )
        )
        status = _apply_failure(row, f"{tag}: {exc}", now, retryable=is_retryable(exc))
        db.commit()
        return DeliveryOutcome(entry_id=entry_id, status=status, error=tag)
