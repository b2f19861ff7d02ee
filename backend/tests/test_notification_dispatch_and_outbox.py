from __future__ import annotations

from campus_connect.modules.notifications import dispatcher, events, inbox
from campus_connect.repositories import notifications_repo, outbox_repo
from campus_connect.services import email_ses
from campus_connect.workers import outbox_worker


def _job(owner_id: str) -> dict:
    return {"jobId": "job_1", "title": "Lab assistant", "createdById": owner_id}


def test_email_failure_keeps_notification_and_queues_retry(fake_table, make_actor, monkeypatch):
    owner = make_actor("owner")
    monkeypatch.setattr(
        email_ses, "send_email", lambda **_: {"ok": False, "error": "ses_unavailable: throttled"}
    )

    result = dispatcher.dispatch(events.job_approved(_job(owner.profile_id)))

    assert result.notification_written is True
    assert result.email_error == "ses_unavailable: throttled"
    [note] = fake_table.notifications_for(owner.profile_id, "JOB_APPROVED")
    assert note["notificationId"] == result.notification_id

    [queued] = fake_table.all_of("OutboxEvent")
    assert queued["eventId"] == f"email_{result.notification_id}"
    assert queued["eventType"] == "email.send"
    assert queued["payload"]["recipient"] == "owner@campus.test"
    assert queued["payload"]["templateKind"] == "JOB_APPROVED"
    assert result.to_api()["emailResult"]["ok"] is False


def test_missing_address_skips_email_without_retry(fake_table, make_actor, sent_emails):
    result = dispatcher.dispatch(events.job_approved(_job("prf_without_profile")))
    assert result.notification_written is True
    assert result.email_result.skipped is True
    assert result.email_error == "recipient_has_no_email"
    assert sent_emails == []
    assert fake_table.all_of("OutboxEvent") == []


def test_in_app_only_events_send_no_email(fake_table, make_actor, sent_emails):
    owner = make_actor("owner")
    written = dispatcher.dispatch_best_effort(
        [events.job_posted(_job("someone"), recipient_id=owner.profile_id, match_score=75)]
    )
    assert written == 1
    assert sent_emails == []
    [note] = fake_table.notifications_for(owner.profile_id, "JOB_POSTED")
    assert note["metadata"]["matchScore"] == 75


def test_outbox_worker_retries_then_completes(fake_table, monkeypatch):
    outbox_repo.enqueue_event(
        event_type="email.send",
        payload={"recipient": "a@campus.test", "templateKind": "JOB_FILLED", "templateData": {"jobTitle": "X"}},
        dedupe_key="email_ntf_1",
    )
    # Same dedupe key collapses into one event.
    outbox_repo.enqueue_event(event_type="email.send", payload={}, dedupe_key="email_ntf_1")
    assert len(fake_table.all_of("OutboxEvent")) == 1

    monkeypatch.setattr(email_ses, "send_email", lambda **_: {"ok": False, "error": "ses_unavailable"})
    first = outbox_worker.run_once()
    assert first["processed"] == 0 and first["failed"] == 1
    [evt] = fake_table.all_of("OutboxEvent")
    assert evt["status"] == "pending"
    assert evt["attempts"] == 1
    assert evt["lastError"] == "ses_unavailable"

    # Backoff has not elapsed yet.
    assert outbox_worker.run_once()["scanned"] == 0

    sent = []
    monkeypatch.setattr(email_ses, "send_email", lambda **kw: sent.append(kw) or {"ok": True, "messageId": "m-1"})
    due = outbox_repo.list_due(now="9999-01-01T00:00:00Z")
    assert [e["eventId"] for e in due] == ["email_ntf_1"]
    monkeypatch.setattr(outbox_worker, "list_due", lambda **_: due)
    second = outbox_worker.run_once()
    assert second["processed"] == 1
    assert sent[0]["template_kind"] == "JOB_FILLED"
    [evt] = fake_table.all_of("OutboxEvent")
    assert evt["status"] == "done"


def test_outbox_worker_unknown_event_type():
    res = outbox_worker.dispatch_event({"eventType": "sms.send", "payload": {}})
    assert res == {"ok": False, "error": "unknown_event_type", "eventType": "sms.send"}


def _racing_inbox(monkeypatch, victim_id: str) -> None:
    """The inbox read sees `victim_id`, then another request deletes it before the sweep writes."""
    real = notifications_repo._inbox_items

    def _inbox_then_delete(recipient_id, **kw):
        rows = list(real(recipient_id, **kw))
        notifications_repo.delete_notifications([victim_id])
        return rows

    monkeypatch.setattr(notifications_repo, "_inbox_items", _inbox_then_delete)


def test_bulk_inbox_sweeps_skip_rows_deleted_concurrently(fake_table, make_actor, monkeypatch):
    owner = make_actor("owner")
    dispatcher.dispatch_best_effort(
        [events.job_posted(_job(f"someone-{i}"), recipient_id=owner.profile_id, match_score=60) for i in range(3)]
    )
    notes = fake_table.notifications_for(owner.profile_id, "JOB_POSTED")
    assert len(notes) == 3

    _racing_inbox(monkeypatch, notes[0]["notificationId"])
    assert inbox.mark_all_read(actor=owner) == 2
    left = fake_table.notifications_for(owner.profile_id, "JOB_POSTED")
    assert len(left) == 2 and all(n["isRead"] for n in left)

    _racing_inbox(monkeypatch, left[0]["notificationId"])
    assert inbox.delete_read(actor=owner) == 1
    assert fake_table.notifications_for(owner.profile_id, "JOB_POSTED") == []


def test_abandoned_processing_event_is_reclaimed_after_lease(fake_table, monkeypatch):
    outbox_repo.enqueue_event(
        event_type="email.send",
        payload={"recipient": "a@campus.test", "templateKind": "JOB_FILLED", "templateData": {"jobTitle": "X"}},
        dedupe_key="email_ntf_2",
    )
    # A worker claims the event and dies before marking it.
    claimed = outbox_repo.claim_event(event_id="email_ntf_2")
    assert claimed["status"] == "processing"

    # Lease still running: neither the sweep nor the due scan touches it.
    fresh = outbox_worker.run_once()
    assert fresh["reclaimed"] == 0 and fresh["scanned"] == 0
    assert fake_table.all_of("OutboxEvent")[0]["status"] == "processing"

    # A sweep holding a stale view of the lock changes nothing.
    assert outbox_repo.release_stale(event_id="email_ntf_2", locked_at="2000-01-01T00:00:00Z") is None

    assert outbox_worker.reclaim_stale(older_than="9999-01-01T00:00:00Z") == 1
    [evt] = fake_table.all_of("OutboxEvent")
    assert evt["status"] == "pending"
    assert evt["lastError"] == "lock_expired"
    assert "lockedAt" not in evt
    assert outbox_worker.reclaim_stale(older_than="9999-01-01T00:00:00Z") == 0

    sent = []
    monkeypatch.setattr(email_ses, "send_email", lambda **kw: sent.append(kw) or {"ok": True, "messageId": "m-2"})
    monkeypatch.setattr(outbox_worker, "list_due", lambda **_: outbox_repo.list_due(now="9999-01-01T00:00:00Z"))
    assert outbox_worker.run_once()["processed"] == 1
    assert len(sent) == 1
    assert fake_table.all_of("OutboxEvent")[0]["status"] == "done"
