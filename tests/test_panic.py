import datetime

from echovault.models.condition import MessageCondition
from echovault.models.message import Message
from echovault.models.schedule_entry import ScheduleEntry
from echovault.models.sent_record import SentRecord
from echovault.services import lifecycle
from echovault.services.panic import (
    SelectionCandidate,
    SelectionStore,
    format_selection_prompt,
    handle_selection_reply,
    selection_store,
    trigger_panic,
)


T0 = datetime.datetime(2026, 1, 5, 9, 0, tzinfo=datetime.timezone.utc)


def _panic(db, make_message, message_id, title, *, now=T0, panic_config=None, email="ana@example.com"):
    make_message(message_id, "user-1", title=title)
    return lifecycle.create_condition(
        db,
        message_id=message_id,
        user_id="user-1",
        condition_type="panic_trigger",
        active=True,
        now=now,
        panic_config=panic_config,
        recipients=[{"name": "Ana", "email": email}],
    )


def test_single_armed_condition_is_sent_immediately(db, owner, make_message, channels, email):
    condition = _panic(db, make_message, "msg-1", "Help")

    result = trigger_panic(db, "user-1", channels=channels, now=T0)

    assert result.status == "delivered"
    assert result.message == "Emergency message sent: Help"
    assert email.sent[0][0] == "ana@example.com"
    assert email.sent[0][1].startswith("EMERGENCY: ")
    entry = db.query(ScheduleEntry).one()
    assert entry.status == "sent"
    assert entry.delivery_priority == "critical"
    assert db.query(SentRecord).count() == 1
    assert db.get(MessageCondition, condition.id).active is False


def test_keep_armed_condition_stays_active(db, owner, make_message, channels):
    condition = _panic(db, make_message, "msg-1", "Help", panic_config={"trigger_keyword": "SOS", "keep_armed": True})

    first = trigger_panic(db, "user-1", channels=channels, now=T0)
    second = trigger_panic(db, "user-1", channels=channels, now=T0 + datetime.timedelta(minutes=5))

    assert first.status == second.status == "delivered"
    assert db.get(MessageCondition, condition.id).active is True
    assert db.query(SentRecord).count() == 2


def test_no_armed_condition(db, owner, channels, email):
    result = trigger_panic(db, "user-1", channels=channels, now=T0)
    assert result.status == "no_active"
    assert email.sent == []


def test_keyword_selects_matching_conditions_only(db, owner, make_message, channels, email):
    _panic(db, make_message, "msg-1", "Flood", panic_config={"trigger_keyword": "FLOOD"})
    _panic(db, make_message, "msg-2", "Fire", now=T0 + datetime.timedelta(minutes=1), panic_config={"trigger_keyword": "FIRE"})

    assert trigger_panic(db, "user-1", keyword="quake", channels=channels, now=T0).status == "no_active"
    result = trigger_panic(db, "user-1", keyword="fire", channels=channels, now=T0)
    assert result.status == "delivered"
    assert result.message_id == "msg-2"


def test_multiple_conditions_need_a_selection(db, owner, make_message, channels, email):
    _panic(db, make_message, "msg-1", "For family")
    _panic(db, make_message, "msg-2", "For work", now=T0 + datetime.timedelta(minutes=1))

    result = trigger_panic(db, "user-1", channels=channels, now=T0)
    assert result.status == "selection_required"
    assert result.message == "EMERGENCY - Select message:\n\n1. For family\n2. For work\n\nReply: 1, 2, 3... or CANCEL"
    assert email.sent == []
    assert selection_store.has_pending("user-1", now=T0)

    reply = handle_selection_reply(db, "user-1", "2", channels=channels, now=T0 + datetime.timedelta(seconds=30))
    assert reply.status == "delivered"
    assert reply.message == "Emergency message sent: For work"
    assert reply.message_id == "msg-2"
    assert len(email.sent) == 1
    assert not selection_store.has_pending("user-1", now=T0 + datetime.timedelta(seconds=30))


def test_cancel_clears_selection(db, owner, make_message, channels, email):
    _panic(db, make_message, "msg-1", "A")
    _panic(db, make_message, "msg-2", "B", now=T0 + datetime.timedelta(minutes=1))
    trigger_panic(db, "user-1", channels=channels, now=T0)

    reply = handle_selection_reply(db, "user-1", " cancel ", channels=channels, now=T0)
    assert reply.status == "cancelled"
    assert reply.message == "Emergency cancelled"
    assert email.sent == []
    assert handle_selection_reply(db, "user-1", "1", channels=channels, now=T0).status == "expired"


def test_invalid_reply_keeps_selection_open(db, owner, make_message, channels, email):
    _panic(db, make_message, "msg-1", "A")
    _panic(db, make_message, "msg-2", "B", now=T0 + datetime.timedelta(minutes=1))
    trigger_panic(db, "user-1", channels=channels, now=T0)

    for bad in ("7", "zero", "0"):
        reply = handle_selection_reply(db, "user-1", bad, channels=channels, now=T0)
        assert reply.status == "invalid_selection"
        assert reply.message == "Invalid. Reply: 1-2 or CANCEL"

    assert handle_selection_reply(db, "user-1", "1", channels=channels, now=T0).status == "delivered"
    assert [to for to, _, _ in email.sent] == ["ana@example.com"]


def test_selection_expires_after_ttl(db, owner, make_message, channels, email):
    _panic(db, make_message, "msg-1", "A")
    _panic(db, make_message, "msg-2", "B", now=T0 + datetime.timedelta(minutes=1))
    trigger_panic(db, "user-1", channels=channels, now=T0)

    reply = handle_selection_reply(db, "user-1", "1", channels=channels, now=T0 + datetime.timedelta(seconds=121))
    assert reply.status == "expired"
    assert email.sent == []


def test_selected_condition_disarmed_meanwhile(db, owner, make_message, channels, email):
    first = _panic(db, make_message, "msg-1", "A")
    _panic(db, make_message, "msg-2", "B", now=T0 + datetime.timedelta(minutes=1))
    trigger_panic(db, "user-1", channels=channels, now=T0)
    lifecycle.disarm(db, first.id, now=T0)

    reply = handle_selection_reply(db, "user-1", "1", channels=channels, now=T0)
    assert reply.status == "no_active"
    assert email.sent == []


def test_location_is_recorded_on_the_message(db, owner, make_message, channels):
    _panic(db, make_message, "msg-1", "Help")

    trigger_panic(
        db,
        "user-1",
        location={"latitude": 52.52, "longitude": 13.40, "name": "Berlin"},
        channels=channels,
        now=T0,
    )

    message = db.get(Message, "msg-1")
    assert message.location_latitude == 52.52
    assert message.location_longitude == 13.40
    assert message.location_name == "Berlin"


def test_selection_store_ttl_and_purge():
    clock_now = [T0]
    store = SelectionStore(ttl_seconds=60, clock=lambda: clock_now[0])
    candidates = [SelectionCandidate(condition_id="c-1", message_id="m-1", title="A")]
    store.put("user-1", candidates)
    store.put("user-2", candidates)

    assert store.has_pending("user-1")
    clock_now[0] = T0 + datetime.timedelta(seconds=60)
    assert store.get("user-1") is None
    assert store.purge_expired() == 1
    assert not store.has_pending("user-2")


def test_format_selection_prompt_numbers_titles():
    prompt = format_selection_prompt(
        [
            SelectionCandidate(condition_id="c-1", message_id="m-1", title="One"),
            SelectionCandidate(condition_id="c-2", message_id="m-2", title="Two"),
        ]
    )
    assert prompt.splitlines()[2:4] == ["1. One", "2. Two"]
