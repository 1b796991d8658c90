"""
Message templating for reminders, recipient deliveries and owner notices.
"""

from __future__ import annotations

import datetime
import html
from dataclasses import dataclass
from typing import Any, Optional
from urllib.parse import quote, urlencode

from ..core.config import settings
from ..core.timeutil import ensure_utc
from ..models.condition import MessageCondition
from ..models.message import Message


@dataclass
class DeliveryContent:
    email_subject: str
    email_html: str
    text: str


def _safe(v: Any) -> str:
    return html.escape(str(v)) if v is not None else ""


def _format_ts(ts: Optional[datetime.datetime]) -> str:
    ts = ensure_utc(ts)
    if not ts:
        return "-"
    return ts.strftime("%d %b %Y %H:%M UTC")


def _format_remaining(deadline: Optional[datetime.datetime], now: datetime.datetime) -> str:
    deadline = ensure_utc(deadline)
    if deadline is None:
        return "soon"
    seconds = int((deadline - ensure_utc(now)).total_seconds())
    if seconds <= 0:
        return "now"
    hours, rem = divmod(seconds, 3600)
    minutes = rem // 60
    if hours and minutes:
        return f"{hours}h {minutes}m"
    if hours:
        return f"{hours}h"
    return f"{max(minutes, 1)}m"


def build_access_url(message_id: str, recipient_email: Optional[str], delivery_id: str) -> str:
    base = (settings.public_base_url or "").rstrip("/")
    query = {"delivery": delivery_id}
    if recipient_email:
        query["recipient"] = recipient_email
    return f"{base}/access/message/{quote(message_id, safe='')}?{urlencode(query)}"


def build_location_url(message: Message) -> Optional[str]:
    if not message.share_location:
        return None
    if message.location_latitude is None or message.location_longitude is None:
        return None
    return f"https://maps.google.com/?q={message.location_latitude},{message.location_longitude}"


def _security_notes(condition: Optional[MessageCondition]) -> list[str]:
    if condition is None:
        return []
    notes: list[str] = []
    if condition.pin_code:
        notes.append("This message is protected by a PIN code. The sender should have shared it with you.")
    if condition.unlock_delay_hours:
        notes.append(f"This message unlocks {condition.unlock_delay_hours} hour(s) after delivery.")
    if condition.expiry_hours:
        notes.append(f"This message expires {condition.expiry_hours} hour(s) after delivery.")
    return notes


def build_check_in_reminder(
    message: Message,
    *,
    owner_name: str,
    deadline: Optional[datetime.datetime],
    now: datetime.datetime,
) -> DeliveryContent:
    remaining = _format_remaining(deadline, now)
    check_in_url = f"{(settings.public_base_url or '').rstrip('/')}/check-in"
    subject = f"Reminder: check in before \"{message.title}\" is delivered"
    text = (
        f"Hi {owner_name}, your message \"{message.title}\" will be delivered in {remaining} "
        f"({_format_ts(deadline)}) unless you check in.\n"
        f"Reply CHECKIN or open {check_in_url}"
    )
    body = (
        f"<h3>Check-in reminder</h3>"
        f"<p>Hi {_safe(owner_name)},</p>"
        f"<p>Your message <strong>{_safe(message.title)}</strong> will be delivered in "
        f"<strong>{_safe(remaining)}</strong> ({_safe(_format_ts(deadline))}) unless you check in.</p>"
        f"<p><a href=\"{_safe(check_in_url)}\">Check in now</a></p>"
    )
    return DeliveryContent(email_subject=subject, email_html=body, text=text)


def build_upcoming_delivery(
    message: Message,
    *,
    sender_name: str,
    deadline: Optional[datetime.datetime],
    now: datetime.datetime,
) -> DeliveryContent:
    remaining = _format_remaining(deadline, now)
    subject = f"{sender_name} has a message scheduled for you"
    text = (
        f"{sender_name} has scheduled a secure message for you via {settings.sender_display_name}. "
        f"It will arrive in {remaining} ({_format_ts(deadline)})."
    )
    body = (
        f"<h3>Upcoming message</h3>"
        f"<p>{_safe(sender_name)} has scheduled a secure message for you via "
        f"{_safe(settings.sender_display_name)}.</p>"
        f"<p>It will arrive in <strong>{_safe(remaining)}</strong> ({_safe(_format_ts(deadline))}).</p>"
    )
    return DeliveryContent(email_subject=subject, email_html=body, text=text)


def build_final_delivery(
    message: Message,
    condition: Optional[MessageCondition],
    *,
    sender_name: str,
    recipient_name: Optional[str],
    recipient_email: Optional[str],
    delivery_id: str,
    emergency: bool = False,
) -> DeliveryContent:
    access_url = build_access_url(message.id, recipient_email, delivery_id)
    location_url = build_location_url(message)
    greeting = f"Hi {recipient_name}," if recipient_name else "Hi,"
    prefix = "EMERGENCY: " if emergency else ""
    subject = f"{prefix}{sender_name} sent you a secure message: {message.title}"

    lines = [
        f"{prefix}{greeting} {sender_name} has sent you a secure message via {settings.sender_display_name}.",
        f"Title: {message.title}",
        f"Open: {access_url}",
    ]
    if location_url:
        label = message.location_name or "Shared location"
        lines.append(f"{label}: {location_url}")
    notes = _security_notes(condition)
    lines.extend(notes)

    body = f"<h3>{_safe(prefix + message.title)}</h3><p>{_safe(greeting)}</p>"
    body += (
        f"<p>{_safe(sender_name)} has sent you a secure message via "
        f"{_safe(settings.sender_display_name)}.</p>"
        f"<p><a href=\"{_safe(access_url)}\">View message</a></p>"
    )
    if location_url:
        body += (
            f"<p><strong>Location:</strong> "
            f"<a href=\"{_safe(location_url)}\">{_safe(message.location_name or 'Open map')}</a></p>"
        )
    for note in notes:
        body += f"<p><em>{_safe(note)}</em></p>"
    return DeliveryContent(email_subject=subject, email_html=body, text="\n".join(lines))


def build_owner_notice(message: Message, *, owner_name: str, recipient_count: int) -> DeliveryContent:
    subject = f"Your message \"{message.title}\" was delivered"
    text = (
        f"Hi {owner_name}, your message \"{message.title}\" was delivered to "
        f"{recipient_count} recipient(s) because you did not check in."
    )
    body = (
        f"<h3>Message delivered</h3>"
        f"<p>Hi {_safe(owner_name)},</p>"
        f"<p>Your message <strong>{_safe(message.title)}</strong> was delivered to "
        f"{recipient_count} recipient(s) because you did not check in.</p>"
    )
    return DeliveryContent(email_subject=subject, email_html=body, text=text)
