"""
Delivery channels (email and WhatsApp messaging) with bounded send timeouts.
"""

from __future__ import annotations

import concurrent.futures
import logging
import os
import smtplib
from dataclasses import dataclass, field
from email.message import EmailMessage
from typing import Callable, Optional

import requests

from ..core.config import settings
from ..core.errors import ChannelError
from ..integrations.twilio_client import get_twilio_messaging_client, whatsapp_address


logger = logging.getLogger("channels")

RESEND_API_URL = "https://api.resend.com/emails"


@dataclass
class ChannelResult:
    ok: bool
    id: Optional[str] = None
    error: Optional[str] = None

    def as_dict(self) -> dict:
        return {"ok": self.ok, "id": self.id, "error": self.error}


class EmailChannel:
    name = "EMAIL"

    def send(self, to: str, subject: str, html: str) -> ChannelResult:
        raise NotImplementedError


class MessagingChannel:
    name = "WHATSAPP"

    def send(self, to: str, text: str) -> ChannelResult:
        raise NotImplementedError


class EmailLogChannel(EmailChannel):
    def send(self, to: str, subject: str, html: str) -> ChannelResult:
        logging.getLogger("notifications").info("Log Email to=%s subject=%s", to, subject)
        return ChannelResult(ok=True)


class EmailSMTPChannel(EmailChannel):
    """
    SMTP email channel.

    For MailHog:
        SMTP_HOST=127.0.0.1
        SMTP_PORT=1025
        SMTP_STARTTLS=false
    """

    def __init__(self) -> None:
        self.host = settings.smtp_host
        self.port = int(settings.smtp_port or 587)
        self.user = settings.smtp_user
        self.password = settings.smtp_password
        self.sender = settings.smtp_from or self.user or "echovault@localhost"
        if settings.smtp_starttls is None:
            self.starttls = self.port != 1025
        else:
            self.starttls = bool(settings.smtp_starttls)
        if not self.host:
            raise RuntimeError("SMTP_HOST is not configured")
        logger.info("SMTP config loaded host=%s port=%s starttls=%s", self.host, self.port, self.starttls)

    def send(self, to: str, subject: str, html: str) -> ChannelResult:
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = self.sender
        msg["To"] = to
        msg.set_content("You have a new message from EchoVault.")  # plain text fallback
        msg.add_alternative(html, subtype="html")
        try:
            with smtplib.SMTP(self.host, self.port, timeout=settings.channel_timeout_seconds) as server:
                server.ehlo()
                if self.starttls:
                    server.starttls()
                    server.ehlo()
                if self.user and self.password:
                    server.login(self.user, self.password)
                server.send_message(msg)
        except Exception as exc:
            raise ChannelError(f"SMTP send failed: {exc}") from exc
        return ChannelResult(ok=True, id=msg.get("Message-ID"))


class EmailResendChannel(EmailChannel):
    def __init__(self) -> None:
        self.api_key = (settings.resend_api_key or "").strip()
        self.sender = settings.resend_from
        if not self.api_key:
            raise RuntimeError("RESEND_API_KEY is not configured")

    def send(self, to: str, subject: str, html: str) -> ChannelResult:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        payload = {"from": self.sender, "to": [to], "subject": subject, "html": html}
        try:
            response = requests.post(
                RESEND_API_URL,
                headers=headers,
                json=payload,
                timeout=(5, settings.channel_timeout_seconds),
            )
        except requests.RequestException as exc:
            raise ChannelError(f"Resend request failed: {exc}") from exc
        if response.status_code // 100 != 2:
            return ChannelResult(ok=False, error=f"Resend send failed status={response.status_code} detail={response.text}")
        try:
            data = response.json()
        except ValueError:
            data = {}
        return ChannelResult(ok=True, id=data.get("id") if isinstance(data, dict) else None)


class MessagingLogChannel(MessagingChannel):
    def send(self, to: str, text: str) -> ChannelResult:
        logging.getLogger("notifications").info("Log WhatsApp to=%s message=%s", to, text)
        return ChannelResult(ok=True)


class MessagingUnavailableChannel(MessagingChannel):
    def __init__(self, reason: str) -> None:
        self.reason = reason

    def send(self, to: str, text: str) -> ChannelResult:
        return ChannelResult(ok=False, error=self.reason)


class TwilioWhatsAppChannel(MessagingChannel):
    def __init__(self) -> None:
        self.from_number = (settings.TWILIO_WHATSAPP_FROM or os.getenv("TWILIO_WHATSAPP_NUMBER") or "").strip()
        if not self.from_number:
            raise RuntimeError("Twilio WhatsApp 'from' number is missing (TWILIO_WHATSAPP_FROM).")
        self.client = get_twilio_messaging_client()

    def send(self, to: str, text: str) -> ChannelResult:
        try:
            message = self.client.messages.create(
                from_=whatsapp_address(self.from_number),
                to=whatsapp_address(to),
                body=text,
            )
        except Exception as exc:
            raise ChannelError(f"Twilio WhatsApp send failed: {exc}") from exc
        sid = getattr(message, "sid", None)
        logging.getLogger("notifications").info("Twilio WhatsApp sent to=%s sid=%s", to, sid)
        return ChannelResult(ok=True, id=sid)


@dataclass
class ChannelSet:
    email: EmailChannel
    messaging: MessagingChannel
    timeout_seconds: float = 20.0
    max_workers: int = 8
    _executor: Optional[concurrent.futures.ThreadPoolExecutor] = field(default=None, init=False, repr=False)

    def _pool(self) -> concurrent.futures.ThreadPoolExecutor:
        if self._executor is None:
            self._executor = concurrent.futures.ThreadPoolExecutor(
                max_workers=self.max_workers,
                thread_name_prefix="channel-send",
            )
        return self._executor

    def _run(self, label: str, fn: Callable[[], ChannelResult]) -> ChannelResult:
        future = self._pool().submit(fn)
        try:
            result = future.result(timeout=self.timeout_seconds)
        except concurrent.futures.TimeoutError:
            future.cancel()
            logger.warning("%s send timed out after %ss", label, self.timeout_seconds)
            return ChannelResult(ok=False, error=f"timeout after {self.timeout_seconds}s")
        except Exception as exc:
            logger.warning("%s send failed err=%s", label, exc)
            return ChannelResult(ok=False, error=str(exc))
        if not isinstance(result, ChannelResult):
            return ChannelResult(ok=False, error=f"{label} returned {type(result).__name__}")
        return result

    def send_email(self, to: str, subject: str, html: str) -> ChannelResult:
        return self._run(self.email.name, lambda: self.email.send(to, subject, html))

    def send_message(self, to: str, text: str) -> ChannelResult:
        return self._run(self.messaging.name, lambda: self.messaging.send(to, text))

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None


def build_channels() -> ChannelSet:
    provider = (settings.email_provider or "").lower().strip() or "smtp"
    email: EmailChannel
    if provider == "resend":
        try:
            email = EmailResendChannel()
        except Exception as exc:
            logger.error("Resend email disabled: %s; using EmailLogChannel.", exc)
            email = EmailLogChannel()
    elif provider == "smtp" and settings.smtp_host:
        email = EmailSMTPChannel()
    else:
        if provider != "log":
            logger.error("Email provider %r not configured; using EmailLogChannel.", provider)
        email = EmailLogChannel()

    missing = []
    if not settings.TWILIO_ACCOUNT_SID:
        missing.append("TWILIO_ACCOUNT_SID")
    if not settings.TWILIO_AUTH_TOKEN:
        missing.append("TWILIO_AUTH_TOKEN")
    if not settings.TWILIO_WHATSAPP_FROM:
        missing.append("TWILIO_WHATSAPP_FROM")

    messaging: MessagingChannel
    if not missing:
        try:
            messaging = TwilioWhatsAppChannel()
        except Exception as exc:
            reason = f"Twilio WhatsApp unavailable: {exc}"
            logger.error(reason)
            messaging = MessagingUnavailableChannel(reason)
    else:
        logger.error("Twilio WhatsApp disabled (missing env): %s; using MessagingLogChannel.", ", ".join(missing))
        messaging = MessagingLogChannel()

    logger.info("Channels selected: email=%s messaging=%s", type(email).__name__, type(messaging).__name__)
    return ChannelSet(
        email=email,
        messaging=messaging,
        timeout_seconds=settings.channel_timeout_seconds,
        max_workers=settings.channel_max_workers,
    )
