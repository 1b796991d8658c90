import datetime

from echovault.models.schedule_entry import ScheduleEntry
from echovault.services import lifecycle
from echovault.services.engine import process, stats
from echovault.services.panic import SelectionCandidate, selection_store
from echovault.worker import run_once


T0 = datetime.datetime(2026, 1, 5, 9, 0, tzinfo=datetime.timezone.utc)


def _scheduled(db, message_id, trigger_at, recipients):
    return lifecycle.create_condition(
        db,
        message_id=message_id,
        user_id="user-1",
        condition_type="scheduled_date",
        active=True,
        now=T0,
        trigger_at=trigger_at,
        reminder_minutes=[],
        recipients=recipients,
    )


def test_process_counts_outcomes(db, owner, make_message, channels, email):
    make_message("msg-1")
    make_message("msg-2")
    make_message("msg-3")
    _scheduled(db, "msg-1", T0, [{"email": "ana@example.com"}])
    _scheduled(db, "msg-2", T0, [])
    _scheduled(db, "msg-3", T0 + datetime.timedelta(days=1), [{"email": "bo@example.com"}])

    result = process(db, channels=channels, now=T0 + datetime.timedelta(minutes=1))

    assert result == {"processed": 2, "succeeded": 1, "failed": 1}
    assert [to for to, _, _ in email.sent] == ["ana@example.com"]
    assert process(db, channels=channels, now=T0 + datetime.timedelta(minutes=2)) == {
        "processed": 0,
        "succeeded": 0,
        "failed": 0,
    }


def test_process_respects_limit(db, owner, make_message, channels):
    for idx in range(3):
        make_message(f"msg-{idx}")
        _scheduled(db, f"msg-{idx}", T0, [{"email": f"r{idx}@example.com"}])

    assert process(db, channels=channels, now=T0, limit=2)["processed"] == 2
    assert process(db, channels=channels, now=T0, limit=2)["processed"] == 1


def test_process_reclaims_before_claiming(db, owner, make_message, channels, email):
    make_message("msg-1")
    _scheduled(db, "msg-1", T0, [{"email": "ana@example.com"}])
    entry = db.query(ScheduleEntry).one()
    entry.status = "processing"
    entry.last_attempt_at = T0
    db.commit()

    assert process(db, channels=channels, now=T0 + datetime.timedelta(minutes=1))["processed"] == 0
    assert process(db, channels=channels, now=T0 + datetime.timedelta(minutes=10))["succeeded"] == 1
    assert len(email.sent) == 1


def test_stats_counts_due_and_recent_logs(db, owner, make_message, channels):
    make_message("msg-1")
    make_message("msg-2")
    _scheduled(db, "msg-1", T0, [{"email": "ana@example.com"}])
    _scheduled(db, "msg-2", T0 + datetime.timedelta(hours=2), [{"email": "bo@example.com"}])

    assert stats(db, now=T0) == {"due_count": 1, "sent_recent": 0, "failed_recent": 0}

    process(db, channels=channels, now=T0)
    assert stats(db, now=T0) == {"due_count": 0, "sent_recent": 1, "failed_recent": 0}
    assert stats(db, now=T0 + datetime.timedelta(hours=1))["due_count"] == 0
    assert stats(db, now=T0 + datetime.timedelta(hours=3))["due_count"] == 1
    assert stats(db, now=T0 + datetime.timedelta(days=2))["sent_recent"] == 0


def test_worker_run_once_purges_expired_selections(db, channels):
    selection_store.put(
        "user-1",
        [SelectionCandidate(condition_id="c-1", message_id="m-1", title="A")],
        now=T0,
    )
    result = run_once(db, channels)
    assert result["processed"] == 0
    assert selection_store.get("user-1", now=T0) is None
