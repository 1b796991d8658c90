"""
Trigger configuration as a tagged union, and the deadline calculator.

Each condition kind maps to one frozen config type. `compute_deadline`
matches on the type exhaustively and is a pure function of the config and
the (optional) basis instant; it never reads the clock.
"""

from __future__ import annotations

import calendar
import datetime
from dataclasses import dataclass
from typing import Optional, Union

from ..core.errors import ConfigurationError
from ..core.timeutil import ensure_utc
from ..models.condition import MessageCondition


CHECK_IN_KINDS = frozenset({"no_check_in", "recurring_check_in", "inactivity_to_date"})
CONDITION_KINDS = CHECK_IN_KINDS | {"scheduled_date", "panic_trigger", "group_confirmation"}
RECURRING_TYPES = ("daily", "weekly", "monthly", "yearly")
DEFAULT_PANIC_KEYWORD = "SOS"


@dataclass(frozen=True)
class RecurringPattern:
    type: str
    interval: int = 1


@dataclass(frozen=True)
class CheckInTrigger:
    kind: str
    last_checked_at: Optional[datetime.datetime]
    hours_threshold: int = 0
    minutes_threshold: int = 0

    @property
    def window(self) -> datetime.timedelta:
        return datetime.timedelta(hours=self.hours_threshold, minutes=self.minutes_threshold)


@dataclass(frozen=True)
class ScheduledTrigger:
    trigger_at: Optional[datetime.datetime]
    recurring: Optional[RecurringPattern] = None


@dataclass(frozen=True)
class PanicTrigger:
    keyword: str = DEFAULT_PANIC_KEYWORD
    keep_armed: bool = False

    def matches(self, keyword: Optional[str]) -> bool:
        if keyword is None:
            return True
        return keyword.strip().upper() == self.keyword.strip().upper()


@dataclass(frozen=True)
class GroupConfirmationTrigger:
    confirmations_required: Optional[int] = None


TriggerSpec = Union[CheckInTrigger, ScheduledTrigger, PanicTrigger, GroupConfirmationTrigger]


def is_check_in_kind(kind: Optional[str]) -> bool:
    return kind in CHECK_IN_KINDS


def parse_recurring_pattern(raw: Optional[dict]) -> Optional[RecurringPattern]:
    if not raw:
        return None
    ptype = str(raw.get("type") or "").strip().lower()
    if ptype not in RECURRING_TYPES:
        raise ConfigurationError(f"Unsupported recurring pattern type: {raw.get('type')!r}")
    try:
        interval = int(raw.get("interval") or 1)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid recurring interval: {raw.get('interval')!r}") from exc
    return RecurringPattern(type=ptype, interval=max(1, interval))


def parse_panic_config(raw: Optional[dict]) -> PanicTrigger:
    raw = raw or {}
    keyword = str(raw.get("trigger_keyword") or DEFAULT_PANIC_KEYWORD).strip() or DEFAULT_PANIC_KEYWORD
    return PanicTrigger(keyword=keyword, keep_armed=bool(raw.get("keep_armed", False)))


def trigger_spec(condition: MessageCondition) -> TriggerSpec:
    """Build the typed trigger config for a condition row."""
    kind = condition.condition_type
    if kind in CHECK_IN_KINDS:
        return CheckInTrigger(
            kind=kind,
            last_checked_at=ensure_utc(condition.last_checked_at),
            hours_threshold=int(condition.hours_threshold or 0),
            minutes_threshold=int(condition.minutes_threshold or 0),
        )
    if kind == "scheduled_date":
        return ScheduledTrigger(
            trigger_at=ensure_utc(condition.trigger_at),
            recurring=parse_recurring_pattern(condition.recurring_pattern),
        )
    if kind == "panic_trigger":
        return parse_panic_config(condition.panic_config_json)
    if kind == "group_confirmation":
        return GroupConfirmationTrigger(confirmations_required=condition.confirmations_required)
    raise ConfigurationError(f"Unknown condition type: {kind!r}")


def compute_deadline(
    spec: TriggerSpec,
    *,
    basis: Optional[datetime.datetime] = None,
) -> Optional[datetime.datetime]:
    """
    Return the effective deadline for a trigger config, or None.

    `basis` replaces a missing last check-in for check-in kinds (force-arm).
    """
    if isinstance(spec, CheckInTrigger):
        anchor = spec.last_checked_at or ensure_utc(basis)
        if anchor is None:
            return None
        return anchor + spec.window
    if isinstance(spec, ScheduledTrigger):
        return spec.trigger_at
    if isinstance(spec, PanicTrigger):
        return None
    if isinstance(spec, GroupConfirmationTrigger):
        return None
    raise ConfigurationError(f"Unhandled trigger config: {type(spec).__name__}")


def condition_deadline(
    condition: MessageCondition,
    *,
    basis: Optional[datetime.datetime] = None,
) -> Optional[datetime.datetime]:
    return compute_deadline(trigger_spec(condition), basis=basis)


def _add_months(ts: datetime.datetime, months: int) -> datetime.datetime:
    month_index = ts.month - 1 + months
    year = ts.year + month_index // 12
    month = month_index % 12 + 1
    day = min(ts.day, calendar.monthrange(year, month)[1])
    return ts.replace(year=year, month=month, day=day)


def next_occurrence(
    ts: datetime.datetime,
    pattern: RecurringPattern,
    *,
    after: Optional[datetime.datetime] = None,
) -> datetime.datetime:
    """Advance `ts` by the pattern until it is strictly later than `after` (default `ts`)."""
    floor = ensure_utc(after) or ensure_utc(ts)
    current = ensure_utc(ts)
    while True:
        if pattern.type == "daily":
            current = current + datetime.timedelta(days=pattern.interval)
        elif pattern.type == "weekly":
            current = current + datetime.timedelta(weeks=pattern.interval)
        elif pattern.type == "monthly":
            current = _add_months(current, pattern.interval)
        elif pattern.type == "yearly":
            current = _add_months(current, 12 * pattern.interval)
        else:
            raise ConfigurationError(f"Unsupported recurring pattern type: {pattern.type!r}")
        if current > floor:
            return current
