import datetime

import pytest
from fastapi.testclient import TestClient

from echovault.api.v1.common import get_channels
from echovault.core.db import get_db
from echovault.main import create_app
from echovault.models.condition import MessageCondition
from echovault.models.schedule_entry import ScheduleEntry
from echovault.services import lifecycle


T0 = datetime.datetime(2026, 1, 5, 9, 0, tzinfo=datetime.timezone.utc)


@pytest.fixture
def client(session_factory, channels):
    app = create_app()

    def _db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _db
    app.dependency_overrides[get_channels] = lambda: channels
    return TestClient(app)


def _condition_payload(**overrides):
    payload = {
        "message_id": "msg-1",
        "user_id": "user-1",
        "condition_type": "no_check_in",
        "active": True,
        "hours_threshold": 24,
        "reminder_minutes": [60],
        "recipients": [{"name": "Ana", "email": "ana@example.com"}],
    }
    payload.update(overrides)
    return payload


def test_health_reports_queue(client):
    res = client.get("/api/v1/health")
    assert res.status_code == 200
    body = res.json()
    assert body["status"] == "ok"
    assert body["database"] is True
    assert body["queue"] == {"due_count": 0, "sent_recent": 0, "failed_recent": 0}


def test_condition_lifecycle_over_http(client, db, owner, make_message):
    make_message()

    res = client.post("/api/v1/conditions", json=_condition_payload())
    assert res.status_code == 200
    created = res.json()
    assert created["active"] is True
    assert created["recipients"][0]["email"] == "ana@example.com"
    condition_id = created["id"]

    res = client.get(f"/api/v1/conditions/{condition_id}")
    assert res.status_code == 200
    assert res.json()["hours_threshold"] == 24

    res = client.patch(f"/api/v1/conditions/{condition_id}", json={"hours_threshold": 48})
    assert res.status_code == 200
    assert res.json()["hours_threshold"] == 48

    res = client.post(f"/api/v1/conditions/{condition_id}/disarm")
    assert res.status_code == 200
    assert res.json()["active"] is False
    assert client.post(f"/api/v1/conditions/{condition_id}/disarm").status_code == 409

    res = client.post(f"/api/v1/conditions/{condition_id}/arm")
    assert res.status_code == 200
    assert res.json()["active"] is True

    assert client.get("/api/v1/conditions/nope").status_code == 404
    assert client.post("/api/v1/conditions/nope/arm").status_code == 404


def test_invalid_condition_is_a_bad_request(client, make_message):
    make_message()
    res = client.post("/api/v1/conditions", json=_condition_payload(hours_threshold=0))
    assert res.status_code == 400
    res = client.post("/api/v1/conditions", json=_condition_payload(condition_type="moon_phase"))
    assert res.status_code == 422


def test_process_stats_and_entries(client, db, owner, make_message, email):
    make_message()
    lifecycle.create_condition(
        db,
        message_id="msg-1",
        user_id="user-1",
        condition_type="scheduled_date",
        active=True,
        now=T0,
        trigger_at=T0,
        reminder_minutes=[],
        recipients=[{"email": "ana@example.com"}],
    )

    stats = client.get("/api/v1/scheduler/stats").json()
    assert stats["due_count"] == 1

    res = client.post("/api/v1/scheduler/process")
    assert res.status_code == 200
    assert res.json() == {"processed": 1, "succeeded": 1, "failed": 0}
    assert [to for to, _, _ in email.sent] == ["ana@example.com"]

    res = client.get("/api/v1/scheduler/entries", params={"message_id": "msg-1", "status": "sent", "kind": "final_delivery"})
    assert res.status_code == 200
    assert res.headers["X-Total-Count"] == "1"
    assert res.json()[0]["entry_kind"] == "final_delivery"
    assert client.get("/api/v1/scheduler/entries", params={"status": "bogus"}).status_code == 400
    assert client.get("/api/v1/scheduler/entries", params={"kind": "bogus"}).status_code == 400

    res = client.get("/api/v1/deliveries", params={"channel": "email", "page_size": 1})
    assert res.status_code == 200
    assert res.headers["X-Total-Count"] == "1"
    assert res.headers["X-Page-Size"] == "1"
    assert res.json()[0]["recipient"] == "ana@example.com"


def test_process_accepts_filters(client, db, owner, make_message, email):
    make_message()
    lifecycle.create_condition(
        db,
        message_id="msg-1",
        user_id="user-1",
        condition_type="scheduled_date",
        active=True,
        now=T0,
        trigger_at=datetime.datetime(2099, 1, 1, tzinfo=datetime.timezone.utc),
        reminder_minutes=[],
        recipients=[{"email": "ana@example.com"}],
    )

    assert client.post("/api/v1/scheduler/process", json={"message_id": "msg-1"}).json()["processed"] == 0
    res = client.post("/api/v1/scheduler/process", json={"message_id": "msg-1", "force_send": True})
    assert res.json()["succeeded"] == 1


def test_regenerate_and_fix_stuck(client, db, make_message):
    assert client.post("/api/v1/scheduler/regenerate/msg-1").status_code == 404

    make_message()
    condition = lifecycle.create_condition(
        db,
        message_id="msg-1",
        user_id="user-1",
        condition_type="scheduled_date",
        active=True,
        now=T0,
        trigger_at=datetime.datetime(2099, 1, 1, tzinfo=datetime.timezone.utc),
        reminder_minutes=[],
    )
    res = client.post("/api/v1/scheduler/regenerate/msg-1")
    assert res.status_code == 200
    assert res.json()["condition_id"] == condition.id
    assert db.query(ScheduleEntry).filter(ScheduleEntry.status == "pending").count() == 1

    res = client.post("/api/v1/scheduler/fix-stuck")
    assert res.status_code == 200
    assert res.json() == {"reset_count": 0, "synthesized_count": 0}


def test_check_in_endpoint(client, db, owner, make_message):
    make_message()
    condition = lifecycle.create_condition(
        db,
        message_id="msg-1",
        user_id="user-1",
        condition_type="no_check_in",
        active=True,
        now=T0,
        hours_threshold=24,
    )

    res = client.post("/api/v1/check-in", json={"user_id": "user-1", "method": "app"})
    assert res.status_code == 200
    assert res.json()["conditions_updated"] == 1
    db.expire_all()
    assert db.get(MessageCondition, condition.id).last_checked_at is not None


def test_panic_endpoints(client, db, owner, make_message, email):
    for idx, title in enumerate(["Family", "Work"], start=1):
        make_message(f"msg-{idx}", title=title)
        lifecycle.create_condition(
            db,
            message_id=f"msg-{idx}",
            user_id="user-1",
            condition_type="panic_trigger",
            active=True,
            now=T0 + datetime.timedelta(minutes=idx),
            recipients=[{"email": f"r{idx}@example.com"}],
        )

    res = client.post("/api/v1/panic/trigger", json={"user_id": "user-1"})
    assert res.status_code == 200
    body = res.json()
    assert body["status"] == "selection_required"
    assert [c["title"] for c in body["candidates"]] == ["Family", "Work"]

    res = client.post("/api/v1/panic/selection", json={"user_id": "user-1", "reply": "1"})
    body = res.json()
    assert body["status"] == "delivered"
    assert body["delivery_status"] == "sent"
    assert [to for to, _, _ in email.sent] == ["r1@example.com"]


def test_whatsapp_webhook_check_in(client, db, owner, make_message):
    make_message()
    lifecycle.create_condition(
        db,
        message_id="msg-1",
        user_id="user-1",
        condition_type="no_check_in",
        active=True,
        now=T0,
        hours_threshold=24,
    )

    res = client.post("/api/v1/webhooks/whatsapp", data={"From": "whatsapp:+15550001", "Body": "checkin"})
    assert res.status_code == 200
    assert res.headers["content-type"].startswith("application/xml")
    assert "Check-in recorded. 1 message(s) reset." in res.text


def test_whatsapp_webhook_unknown_number(client):
    res = client.post("/api/v1/webhooks/whatsapp", data={"From": "whatsapp:+19999999", "Body": "SOS"})
    assert res.status_code == 200
    assert "not linked" in res.text


def test_whatsapp_webhook_panic_keyword(client, db, owner, make_message, email):
    make_message(title="Help me")
    lifecycle.create_condition(
        db,
        message_id="msg-1",
        user_id="user-1",
        condition_type="panic_trigger",
        active=True,
        now=T0,
        panic_config={"trigger_keyword": "SOS"},
        recipients=[{"email": "ana@example.com"}],
    )

    res = client.post("/api/v1/webhooks/whatsapp", data={"From": "whatsapp:+15550001", "Body": "hello"})
    assert "Reply CHECKIN" in res.text

    res = client.post("/api/v1/webhooks/whatsapp", data={"From": "whatsapp:+15550001", "Body": "sos"})
    assert "Emergency message sent: Help me" in res.text
    assert [to for to, _, _ in email.sent] == ["ana@example.com"]


def test_page_size_is_capped(client, monkeypatch):
    monkeypatch.setenv("API_MAX_PAGE_SIZE", "5")
    res = client.get("/api/v1/deliveries", params={"page_size": 100})
    assert res.status_code == 200
    assert res.headers["X-Page-Size"] == "5"
    assert res.headers["X-Total-Count"] == "0"
    assert client.get("/api/v1/scheduler/entries", params={"page": 0}).status_code == 422
