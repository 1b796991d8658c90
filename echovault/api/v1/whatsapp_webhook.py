"""
Inbound WhatsApp webhook (Twilio form posts).

Turns an inbound message into one of three signals: a check-in, a reply to
an open panic selection, or a panic trigger carrying the text as keyword.
The reply goes back inline as TwiML.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Form
from fastapi.responses import Response
from sqlalchemy import or_
from sqlalchemy.orm import Session
from twilio.twiml.messaging_response import MessagingResponse

from ...core.db import get_db
from ...integrations.twilio_client import strip_whatsapp_prefix
from ...models.profile import UserProfile
from ...services.channels import ChannelSet
from ...services.lifecycle import check_in
from ...services.panic import handle_selection_reply, selection_store, trigger_panic
from .common import get_channels


logger = logging.getLogger("whatsapp_webhook")
router = APIRouter(prefix="/api/v1/webhooks", tags=["webhooks"])

CHECK_IN_WORDS = {"CHECKIN", "CHECK-IN", "CHECK IN", "CODE"}
HELP_TEXT = "Reply CHECKIN to check in, or send your emergency keyword to trigger an emergency message."


def _twiml(text: str) -> Response:
    reply = MessagingResponse()
    reply.message(text)
    return Response(content=str(reply), media_type="application/xml")


def find_profile_by_phone(db: Session, phone: str) -> Optional[UserProfile]:
    raw = strip_whatsapp_prefix(phone)
    if not raw:
        return None
    bare = raw.lstrip("+")
    return (
        db.query(UserProfile)
        .filter(or_(UserProfile.whatsapp_number == f"+{bare}", UserProfile.whatsapp_number == bare))
        .first()
    )


@router.post("/whatsapp")
def whatsapp_inbound(
    from_number: str = Form(..., alias="From"),
    body: str = Form("", alias="Body"),
    db: Session = Depends(get_db),
    channels: Optional[ChannelSet] = Depends(get_channels),
) -> Response:
    profile = find_profile_by_phone(db, from_number)
    if profile is None:
        logger.warning("Inbound WhatsApp from unknown number=%s", from_number)
        return _twiml("This number is not linked to an EchoVault account.")

    text = (body or "").strip()
    command = text.upper()

    if command in CHECK_IN_WORDS:
        result = check_in(db, profile.id, method="whatsapp", device_info="whatsapp")
        count = result["conditions_updated"]
        return _twiml(f"Check-in recorded. {count} message(s) reset.")

    if selection_store.has_pending(profile.id):
        result = handle_selection_reply(db, profile.id, text, channels=channels)
        return _twiml(result.message)

    if not text:
        return _twiml(HELP_TEXT)

    result = trigger_panic(db, profile.id, keyword=text, channels=channels)
    if result.status == "no_active":
        return _twiml(HELP_TEXT)
    return _twiml(result.message)
