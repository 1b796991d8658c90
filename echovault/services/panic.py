"""
Panic / emergency trigger and the multi-message selection dialogue.

Selection state lives in memory only. Losing it on restart just means the
user has to send the emergency signal again.
"""

from __future__ import annotations

import datetime
import logging
import threading
from dataclasses import dataclass, field
from typing import Callable, Optional

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.timeutil import ensure_utc, utcnow
from ..models.condition import MessageCondition
from ..models.message import Message
from ..models.schedule_entry import ScheduleEntry
from .channels import ChannelSet, build_channels
from .claim_queue import claim_by_id
from .dispatcher import DeliveryOutcome, deliver
from .schedule_generator import EntryDraft, insert_ignore
from .triggers import parse_panic_config


logger = logging.getLogger("panic")

CANCEL_WORDS = {"CANCEL", "ABORT", "STOP"}
DEFAULT_TITLE = "Emergency Message"


@dataclass(frozen=True)
class SelectionCandidate:
    condition_id: str
    message_id: str
    title: str


@dataclass
class SelectionState:
    user_id: str
    candidates: list[SelectionCandidate]
    expires_at: datetime.datetime
    location: Optional[dict] = None


@dataclass
class PanicResult:
    status: str  # no_active | delivered | failed | selection_required | cancelled | invalid_selection | expired
    message: str
    condition_id: Optional[str] = None
    message_id: Optional[str] = None
    outcome: Optional[DeliveryOutcome] = None
    candidates: list[SelectionCandidate] = field(default_factory=list)


class SelectionStore:
    """Thread-safe user_id -> SelectionState map with TTL and an injectable clock."""

    def __init__(
        self,
        ttl_seconds: Optional[int] = None,
        clock: Callable[[], datetime.datetime] = utcnow,
    ) -> None:
        self.ttl = datetime.timedelta(seconds=ttl_seconds if ttl_seconds is not None else settings.selection_ttl_seconds)
        self.clock = clock
        self._lock = threading.Lock()
        self._states: dict[str, SelectionState] = {}

    def _now(self, now: Optional[datetime.datetime]) -> datetime.datetime:
        return ensure_utc(now) or ensure_utc(self.clock())

    def put(
        self,
        user_id: str,
        candidates: list[SelectionCandidate],
        *,
        location: Optional[dict] = None,
        now: Optional[datetime.datetime] = None,
    ) -> SelectionState:
        state = SelectionState(
            user_id=user_id,
            candidates=list(candidates),
            expires_at=self._now(now) + self.ttl,
            location=location,
        )
        with self._lock:
            self._states[user_id] = state
        return state

    def get(self, user_id: str, *, now: Optional[datetime.datetime] = None) -> Optional[SelectionState]:
        current = self._now(now)
        with self._lock:
            state = self._states.get(user_id)
            if state is None:
                return None
            if current >= state.expires_at:
                del self._states[user_id]
                return None
            return state

    def pop(self, user_id: str) -> Optional[SelectionState]:
        with self._lock:
            return self._states.pop(user_id, None)

    def has_pending(self, user_id: str, *, now: Optional[datetime.datetime] = None) -> bool:
        return self.get(user_id, now=now) is not None

    def purge_expired(self, *, now: Optional[datetime.datetime] = None) -> int:
        current = self._now(now)
        with self._lock:
            expired = [uid for uid, state in self._states.items() if current >= state.expires_at]
            for uid in expired:
                del self._states[uid]
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._states.clear()


selection_store = SelectionStore()


def format_selection_prompt(candidates: list[SelectionCandidate]) -> str:
    lines = ["EMERGENCY - Select message:", ""]
    for idx, candidate in enumerate(candidates, start=1):
        lines.append(f"{idx}. {candidate.title}")
    lines.append("")
    lines.append("Reply: 1, 2, 3... or CANCEL")
    return "\n".join(lines)


def find_panic_conditions(db: Session, user_id: str, keyword: Optional[str] = None) -> list[MessageCondition]:
    rows = (
        db.query(MessageCondition)
        .filter(
            MessageCondition.user_id == user_id,
            MessageCondition.active.is_(True),
            MessageCondition.condition_type == "panic_trigger",
        )
        .order_by(MessageCondition.created_at.asc(), MessageCondition.id.asc())
        .all()
    )
    return [row for row in rows if parse_panic_config(row.panic_config_json).matches(keyword)]


def _apply_location(message: Message, location: Optional[dict]) -> None:
    if not location:
        return
    lat = location.get("latitude")
    lng = location.get("longitude")
    if lat is None or lng is None:
        return
    message.location_latitude = float(lat)
    message.location_longitude = float(lng)
    if location.get("name"):
        message.location_name = str(location["name"])


def fire_condition(
    db: Session,
    condition: MessageCondition,
    *,
    channels: ChannelSet,
    location: Optional[dict] = None,
    now: Optional[datetime.datetime] = None,
) -> PanicResult:
    """Schedule, claim and dispatch an immediate critical final delivery."""
    now = ensure_utc(now) or utcnow()
    message = db.get(Message, condition.message_id)
    if message is not None:
        _apply_location(message, location)

    insert_ignore(
        db,
        [
            EntryDraft(
                message_id=condition.message_id,
                condition_id=condition.id,
                scheduled_at=now,
                entry_kind="final_delivery",
                delivery_priority="critical",
            )
        ],
    )
    db.commit()

    entry = (
        db.query(ScheduleEntry)
        .filter(
            ScheduleEntry.message_id == condition.message_id,
            ScheduleEntry.condition_id == condition.id,
            ScheduleEntry.entry_kind == "final_delivery",
            ScheduleEntry.scheduled_at == now,
            ScheduleEntry.status == "pending",
        )
        .first()
    )
    claimed = claim_by_id(db, entry.id, now) if entry is not None else None
    if claimed is None:
        logger.warning("Panic entry already claimed condition_id=%s", condition.id)
        return PanicResult(
            status="failed",
            message="Emergency delivery is already in progress.",
            condition_id=condition.id,
            message_id=condition.message_id,
        )

    outcome = deliver(db, claimed, channels=channels, now=now, emergency=True)
    logger.warning(
        "Panic delivery condition_id=%s message_id=%s status=%s",
        condition.id,
        condition.message_id,
        outcome.status,
    )
    if outcome.ok:
        title = message.title if message is not None else DEFAULT_TITLE
        return PanicResult(
            status="delivered",
            message=f"Emergency message sent: {title}",
            condition_id=condition.id,
            message_id=condition.message_id,
            outcome=outcome,
        )
    return PanicResult(
        status="failed",
        message="Emergency message could not be sent yet; it will be retried.",
        condition_id=condition.id,
        message_id=condition.message_id,
        outcome=outcome,
    )


def _fire_with(
    db: Session,
    condition: MessageCondition,
    *,
    channels: Optional[ChannelSet],
    location: Optional[dict],
    now: datetime.datetime,
) -> PanicResult:
    if channels is not None:
        return fire_condition(db, condition, channels=channels, location=location, now=now)
    owned = build_channels()
    try:
        return fire_condition(db, condition, channels=owned, location=location, now=now)
    finally:
        owned.close()


def trigger_panic(
    db: Session,
    user_id: str,
    *,
    keyword: Optional[str] = None,
    location: Optional[dict] = None,
    channels: Optional[ChannelSet] = None,
    store: Optional[SelectionStore] = None,
    now: Optional[datetime.datetime] = None,
) -> PanicResult:
    store = store or selection_store
    now = ensure_utc(now) or utcnow()
    conditions = find_panic_conditions(db, user_id, keyword)
    if not conditions:
        logger.info("Panic signal with no armed condition user_id=%s keyword=%s", user_id, keyword)
        return PanicResult(status="no_active", message="No active emergency message.")

    if len(conditions) == 1:
        return _fire_with(db, conditions[0], channels=channels, location=location, now=now)

    titles = {
        m.id: m.title
        for m in db.query(Message).filter(Message.id.in_([c.message_id for c in conditions])).all()
    }
    candidates = [
        SelectionCandidate(condition_id=c.id, message_id=c.message_id, title=titles.get(c.message_id) or DEFAULT_TITLE)
        for c in conditions
    ]
    store.put(user_id, candidates, location=location, now=now)
    logger.info("Panic selection required user_id=%s options=%s", user_id, len(candidates))
    return PanicResult(
        status="selection_required",
        message=format_selection_prompt(candidates),
        candidates=candidates,
    )


def handle_selection_reply(
    db: Session,
    user_id: str,
    reply: str,
    *,
    channels: Optional[ChannelSet] = None,
    store: Optional[SelectionStore] = None,
    now: Optional[datetime.datetime] = None,
) -> PanicResult:
    store = store or selection_store
    now = ensure_utc(now) or utcnow()
    state = store.get(user_id, now=now)
    if state is None:
        return PanicResult(status="expired", message="No pending emergency selection. Nothing was sent.")

    text = (reply or "").strip().upper()
    if text in CANCEL_WORDS:
        store.pop(user_id)
        logger.info("Panic selection cancelled user_id=%s", user_id)
        return PanicResult(status="cancelled", message="Emergency cancelled")

    count = len(state.candidates)
    try:
        choice = int(text)
    except ValueError:
        choice = 0
    if choice < 1 or choice > count:
        return PanicResult(
            status="invalid_selection",
            message=f"Invalid. Reply: 1-{count} or CANCEL",
            candidates=state.candidates,
        )

    store.pop(user_id)
    selected = state.candidates[choice - 1]
    logger.info("Panic selection user_id=%s option=%s condition_id=%s", user_id, choice, selected.condition_id)
    condition = db.get(MessageCondition, selected.condition_id)
    if condition is None or not condition.active:
        return PanicResult(status="no_active", message="That emergency message is no longer armed.")
    return _fire_with(db, condition, channels=channels, location=state.location, now=now)
