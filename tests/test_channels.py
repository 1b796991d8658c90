import time

import pytest
import requests

from echovault.integrations.twilio_client import strip_whatsapp_prefix, whatsapp_address
from echovault.services import channels as channels_mod
from echovault.services.channels import (
    ChannelResult,
    ChannelSet,
    EmailChannel,
    EmailLogChannel,
    EmailResendChannel,
    MessagingChannel,
    MessagingLogChannel,
    MessagingUnavailableChannel,
    TwilioWhatsAppChannel,
    build_channels,
)


class _SleepyEmail(EmailChannel):
    def send(self, to, subject, html):
        time.sleep(0.5)
        return ChannelResult(ok=True)


class _BrokenMessaging(MessagingChannel):
    def send(self, to, text):
        raise RuntimeError("socket closed")


class _WrongType(MessagingChannel):
    def send(self, to, text):
        return {"ok": True}


def test_channel_set_turns_timeouts_and_errors_into_results():
    channel_set = ChannelSet(email=_SleepyEmail(), messaging=_BrokenMessaging(), timeout_seconds=0.05)
    try:
        timed_out = channel_set.send_email("a@b.c", "s", "<p>x</p>")
        broken = channel_set.send_message("+1", "x")
    finally:
        channel_set.close()

    assert timed_out.ok is False
    assert timed_out.error.startswith("timeout")
    assert broken.ok is False
    assert broken.error == "socket closed"


def test_channel_set_rejects_non_result_returns():
    channel_set = ChannelSet(email=EmailLogChannel(), messaging=_WrongType(), timeout_seconds=1.0)
    try:
        assert channel_set.send_message("+1", "x").ok is False
        assert channel_set.send_email("a@b.c", "s", "x").ok is True
    finally:
        channel_set.close()


def test_build_channels_falls_back_to_log_channels(monkeypatch):
    monkeypatch.setattr(channels_mod.settings, "email_provider", "smtp")
    monkeypatch.setattr(channels_mod.settings, "smtp_host", None)
    monkeypatch.setattr(channels_mod.settings, "TWILIO_ACCOUNT_SID", None)
    monkeypatch.setattr(channels_mod.settings, "TWILIO_AUTH_TOKEN", None)
    monkeypatch.setattr(channels_mod.settings, "TWILIO_WHATSAPP_FROM", None)

    built = build_channels()
    try:
        assert isinstance(built.email, EmailLogChannel)
        assert isinstance(built.messaging, MessagingLogChannel)
    finally:
        built.close()


def test_build_channels_resend_without_key_logs_only(monkeypatch):
    monkeypatch.setattr(channels_mod.settings, "email_provider", "resend")
    monkeypatch.setattr(channels_mod.settings, "resend_api_key", None)
    built = build_channels()
    try:
        assert isinstance(built.email, EmailLogChannel)
    finally:
        built.close()


class _FakeTwilioMessage:
    sid = "SM123"


class _FakeTwilioMessages:
    def __init__(self):
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        return _FakeTwilioMessage()


class _FakeTwilioClient:
    def __init__(self):
        self.messages = _FakeTwilioMessages()


def test_twilio_whatsapp_channel_sends_prefixed_addresses(monkeypatch):
    fake = _FakeTwilioClient()
    monkeypatch.setattr(channels_mod.settings, "TWILIO_WHATSAPP_FROM", "+15550009")
    monkeypatch.setattr(channels_mod, "get_twilio_messaging_client", lambda: fake)

    result = TwilioWhatsAppChannel().send("15550002", "hello")

    assert result.ok is True
    assert result.id == "SM123"
    assert fake.messages.calls == [{"from_": "whatsapp:+15550009", "to": "whatsapp:+15550002", "body": "hello"}]


def test_build_channels_marks_broken_twilio_unavailable(monkeypatch):
    monkeypatch.setattr(channels_mod.settings, "email_provider", "log")
    monkeypatch.setattr(channels_mod.settings, "TWILIO_ACCOUNT_SID", "AC123")
    monkeypatch.setattr(channels_mod.settings, "TWILIO_AUTH_TOKEN", "secret")
    monkeypatch.setattr(channels_mod.settings, "TWILIO_WHATSAPP_FROM", "+15550009")

    def _broken():
        raise RuntimeError("bad credentials")

    monkeypatch.setattr(channels_mod, "get_twilio_messaging_client", _broken)
    built = build_channels()
    try:
        assert isinstance(built.messaging, MessagingUnavailableChannel)
        result = built.send_message("+15550002", "hi")
        assert result.ok is False
        assert "bad credentials" in result.error
    finally:
        built.close()


class _FakeResponse:
    def __init__(self, status_code, payload=None, text=""):
        self.status_code = status_code
        self._payload = payload
        self.text = text

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


def test_resend_channel_posts_payload(monkeypatch):
    monkeypatch.setattr(channels_mod.settings, "resend_api_key", "re_test")
    calls = []

    def _post(url, **kwargs):
        calls.append((url, kwargs))
        return _FakeResponse(200, {"id": "email-42"})

    monkeypatch.setattr(channels_mod.requests, "post", _post)
    result = EmailResendChannel().send("ana@example.com", "Subject", "<p>x</p>")

    assert result.ok is True
    assert result.id == "email-42"
    url, kwargs = calls[0]
    assert url == channels_mod.RESEND_API_URL
    assert kwargs["headers"]["Authorization"] == "Bearer re_test"
    assert kwargs["json"]["to"] == ["ana@example.com"]


def test_resend_channel_reports_http_errors(monkeypatch):
    monkeypatch.setattr(channels_mod.settings, "resend_api_key", "re_test")
    monkeypatch.setattr(channels_mod.requests, "post", lambda url, **kw: _FakeResponse(422, text="invalid"))

    result = EmailResendChannel().send("ana@example.com", "Subject", "<p>x</p>")
    assert result.ok is False
    assert "status=422" in result.error


def test_resend_channel_wraps_transport_errors(monkeypatch):
    monkeypatch.setattr(channels_mod.settings, "resend_api_key", "re_test")

    def _post(url, **kwargs):
        raise requests.ConnectionError("refused")

    monkeypatch.setattr(channels_mod.requests, "post", _post)
    with pytest.raises(RuntimeError, match="Resend request failed"):
        EmailResendChannel().send("ana@example.com", "Subject", "<p>x</p>")


def test_whatsapp_address_helpers():
    assert whatsapp_address("whatsapp:+1555") == "whatsapp:+1555"
    assert whatsapp_address(" 1555 ") == "whatsapp:+1555"
    assert strip_whatsapp_prefix("whatsapp:+1555") == "+1555"
    assert strip_whatsapp_prefix(None) == ""
    with pytest.raises(RuntimeError):
        whatsapp_address("")
