import datetime

from echovault.models.condition import MessageCondition
from echovault.models.message import Message
from echovault.services import templates


NOW = datetime.datetime(2026, 1, 5, 9, 0, tzinfo=datetime.timezone.utc)


def _message(**kwargs):
    params = dict(id="msg-1", user_id="user-1", title="<b>Last words</b>", content="secret")
    params.update(kwargs)
    return Message(**params)


def test_final_delivery_escapes_html_and_links_access_page(monkeypatch):
    monkeypatch.setattr(templates.settings, "public_base_url", "https://vault.example/")
    content = templates.build_final_delivery(
        _message(),
        None,
        sender_name="Olga",
        recipient_name="Ana",
        recipient_email="ana@example.com",
        delivery_id="entry-9",
    )

    assert "<b>Last words</b>" not in content.email_html
    assert "&lt;b&gt;Last words&lt;/b&gt;" in content.email_html
    assert "https://vault.example/access/message/msg-1?delivery=entry-9&recipient=ana%40example.com" in content.text
    assert content.email_subject == "Olga sent you a secure message: <b>Last words</b>"


def test_emergency_delivery_carries_location_and_security_notes():
    message = _message(
        title="Help",
        share_location=True,
        location_latitude=52.5,
        location_longitude=13.4,
        location_name="Berlin",
    )
    condition = MessageCondition(pin_code="1234", unlock_delay_hours=2, expiry_hours=0)

    content = templates.build_final_delivery(
        message,
        condition,
        sender_name="Olga",
        recipient_name=None,
        recipient_email=None,
        delivery_id="entry-1",
        emergency=True,
    )

    assert content.email_subject.startswith("EMERGENCY: ")
    assert "Berlin: https://maps.google.com/?q=52.5,13.4" in content.text
    assert "PIN code" in content.text
    assert "unlocks 2 hour(s)" in content.text
    assert "expires" not in content.text
    assert "recipient=" not in content.text


def test_location_is_hidden_unless_shared():
    message = _message(share_location=False, location_latitude=1.0, location_longitude=2.0)
    assert templates.build_location_url(message) is None


def test_check_in_reminder_shows_remaining_time():
    content = templates.build_check_in_reminder(
        _message(title="Letter"),
        owner_name="Olga",
        deadline=NOW + datetime.timedelta(hours=1, minutes=30),
        now=NOW,
    )
    assert "1h 30m" in content.text
    assert "05 Jan 2026 10:30 UTC" in content.text
    assert "Reply CHECKIN" in content.text


def test_format_remaining_edges():
    assert templates._format_remaining(None, NOW) == "soon"
    assert templates._format_remaining(NOW, NOW) == "now"
    assert templates._format_remaining(NOW + datetime.timedelta(seconds=20), NOW) == "1m"
    assert templates._format_remaining(NOW + datetime.timedelta(hours=2), NOW) == "2h"


def test_owner_notice_counts_recipients():
    content = templates.build_owner_notice(_message(title="Letter"), owner_name="Olga", recipient_count=3)
    assert content.email_subject == 'Your message "Letter" was delivered'
    assert "3 recipient(s)" in content.text
