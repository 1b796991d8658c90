"""Helpers to build the Twilio REST client used for WhatsApp messaging."""

from __future__ import annotations

import os

from twilio.rest import Client

from ..core.config import settings


def _resolve_config(attr: str, legacy_env: str) -> str | None:
    value = getattr(settings, attr, None)
    if value:
        return value
    return os.getenv(legacy_env)


def _ensure(value: str | None, name: str) -> str:
    if not value:
        raise RuntimeError(f"Twilio config missing: {name}")
    return value


def get_twilio_messaging_client() -> Client:
    account_sid = _ensure(_resolve_config("TWILIO_ACCOUNT_SID", "TWILIO_SID"), "TWILIO_ACCOUNT_SID")
    auth_token = _ensure(_resolve_config("TWILIO_AUTH_TOKEN", "TWILIO_TOKEN"), "TWILIO_AUTH_TOKEN")
    return Client(account_sid, auth_token)


def whatsapp_address(number: str) -> str:
    """Return a `whatsapp:`-prefixed E.164 address for Twilio."""
    raw = (number or "").strip()
    if not raw:
        raise RuntimeError("WhatsApp target is empty")
    if raw.lower().startswith("whatsapp:"):
        raw = raw.split(":", 1)[1].strip()
    if not raw.startswith("+"):
        raw = f"+{raw}"
    return f"whatsapp:{raw}"


def strip_whatsapp_prefix(address: str | None) -> str:
    raw = (address or "").strip()
    if raw.lower().startswith("whatsapp:"):
        raw = raw.split(":", 1)[1].strip()
    return raw
