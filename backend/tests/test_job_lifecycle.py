from __future__ import annotations

import pytest

from campus_connect.db.dynamodb.errors import DdbThrottled
from campus_connect.errors import Forbidden, InvalidInput, InvalidTransition, NotFound, ServiceUnavailable
from campus_connect.modules.jobs import job_lifecycle
from campus_connect.repositories import applications_repo, jobs_repo
from campus_connect.settings import settings


def _content(**overrides):
    base = {
        "title": "Frontend help for club site",
        "description": "Rebuild the robotics club website.",
        "tags": ["react", "design"],
        "type": "PART_TIME_JOB",
    }
    base.update(overrides)
    return base


def _assert_publication_invariant(fake_table):
    for job in fake_table.all_of("Job"):
        if job.get("isPublished"):
            assert job.get("moderationStatus") == "APPROVED"
            assert not job.get("isDraft")


def test_draft_rejected_and_resubmitted(fake_table, make_actor, sent_emails):
    owner = make_actor("owner")
    admin = make_actor("admin", admin=True)

    job = job_lifecycle.create_job(actor=owner, content=_content(), is_draft=True)
    assert job["status"] == "DRAFT"
    assert job["isPublished"] is False

    pending = job_lifecycle.submit(job_id=job["jobId"], actor=owner)
    assert pending["status"] == "PENDING"
    assert fake_table.all_of("Notification") == []

    rejected = job_lifecycle.moderate(job_id=job["jobId"], actor=admin, decision="REJECT", reason="too vague")
    assert rejected["status"] == "REJECTED"
    assert rejected["rejectionReason"] == "too vague"
    assert rejected["isPublished"] is False

    [note] = fake_table.notifications_for(owner.profile_id, "JOB_REJECTED")
    assert "too vague" in note["body"]
    assert [e["kind"] for e in sent_emails] == ["JOB_REJECTED"]
    assert sent_emails[0]["recipient"] == "owner@campus.test"

    again = job_lifecycle.submit(job_id=job["jobId"], actor=owner)
    assert again["status"] == "PENDING"
    assert "rejectionReason" not in again
    stored = jobs_repo.get_job_item(job["jobId"])
    assert "rejectionReason" not in stored
    assert stored["moderationStatus"] == "PENDING"
    _assert_publication_invariant(fake_table)


def test_approve_auto_publishes_and_notifies_owner(fake_table, make_actor, sent_emails, monkeypatch):
    monkeypatch.setattr(settings, "jobs_auto_publish_on_approve", True)
    owner = make_actor("owner")
    admin = make_actor("admin", admin=True)

    job = job_lifecycle.create_job(actor=owner, content=_content())
    assert job["status"] == "PENDING"
    approved = job_lifecycle.moderate(job_id=job["jobId"], actor=admin, decision="approve")

    assert approved["status"] == "APPROVED"
    assert approved["isPublished"] is True
    [note] = fake_table.notifications_for(owner.profile_id, "JOB_APPROVED")
    assert note["link"] == f"/jobs/{job['jobId']}"
    assert note["isRead"] is False
    _assert_publication_invariant(fake_table)


def test_approve_without_auto_publish_then_owner_publishes(fake_table, make_actor, sent_emails, monkeypatch):
    monkeypatch.setattr(settings, "jobs_auto_publish_on_approve", False)
    owner = make_actor("owner")
    admin = make_actor("admin", admin=True)

    job = job_lifecycle.create_job(actor=owner, content=_content())
    approved = job_lifecycle.moderate(job_id=job["jobId"], actor=admin, decision="APPROVE")
    assert approved["isPublished"] is False

    published = job_lifecycle.set_published(job_id=job["jobId"], actor=owner, value=True)
    assert published["isPublished"] is True
    # Same value again is a no-op.
    assert job_lifecycle.set_published(job_id=job["jobId"], actor=owner, value=True)["isPublished"] is True
    hidden = job_lifecycle.set_published(job_id=job["jobId"], actor=owner, value=False)
    assert hidden["isPublished"] is False
    _assert_publication_invariant(fake_table)


def test_cannot_publish_unapproved_job(fake_table, make_actor):
    owner = make_actor("owner")
    job = job_lifecycle.create_job(actor=owner, content=_content(), is_draft=True)
    with pytest.raises(InvalidTransition):
        job_lifecycle.set_published(job_id=job["jobId"], actor=owner, value=True)
    _assert_publication_invariant(fake_table)


def test_moderation_guards(fake_table, make_actor, sent_emails):
    owner = make_actor("owner")
    admin = make_actor("admin", admin=True)
    job = job_lifecycle.create_job(actor=owner, content=_content())

    with pytest.raises(Forbidden):
        job_lifecycle.moderate(job_id=job["jobId"], actor=owner, decision="APPROVE")
    with pytest.raises(InvalidInput):
        job_lifecycle.moderate(job_id=job["jobId"], actor=admin, decision="REJECT", reason="   ")
    with pytest.raises(InvalidInput):
        job_lifecycle.moderate(job_id=job["jobId"], actor=admin, decision="MAYBE")
    with pytest.raises(NotFound):
        job_lifecycle.moderate(job_id="missing", actor=admin, decision="APPROVE")

    job_lifecycle.moderate(job_id=job["jobId"], actor=admin, decision="APPROVE")
    with pytest.raises(InvalidTransition):
        job_lifecycle.moderate(job_id=job["jobId"], actor=admin, decision="REJECT", reason="late")
    assert len(fake_table.notifications_for(owner.profile_id)) == 1


def test_only_draft_or_rejected_can_be_submitted(fake_table, make_actor):
    owner = make_actor("owner")
    other = make_actor("other")
    job = job_lifecycle.create_job(actor=owner, content=_content())
    with pytest.raises(InvalidTransition):
        job_lifecycle.submit(job_id=job["jobId"], actor=owner)

    draft = job_lifecycle.create_job(actor=owner, content=_content(), is_draft=True)
    with pytest.raises(Forbidden):
        job_lifecycle.submit(job_id=draft["jobId"], actor=other)


def test_store_outage_during_moderation_leaves_no_trace(fake_table, make_actor, sent_emails):
    owner = make_actor("owner")
    admin = make_actor("admin", admin=True)
    job = job_lifecycle.create_job(actor=owner, content=_content())

    fake_table.fail_transact = lambda ops: DdbThrottled(message="slow down", operation="TransactWriteItems")
    with pytest.raises(ServiceUnavailable) as exc:
        job_lifecycle.moderate(job_id=job["jobId"], actor=admin, decision="APPROVE")
    assert exc.value.retryable is True

    assert jobs_repo.get_job_item(job["jobId"])["moderationStatus"] == "PENDING"
    assert fake_table.all_of("Notification") == []
    assert sent_emails == []


def test_create_job_validates_content(fake_table, make_actor):
    owner = make_actor("owner")
    with pytest.raises(InvalidInput):
        job_lifecycle.create_job(actor=owner, content=_content(title="  "))
    with pytest.raises(InvalidInput):
        job_lifecycle.create_job(actor=owner, content=_content(type="FULL_TIME"))
    job = job_lifecycle.create_job(actor=owner, content=_content(tags=["React", " react ", "", "Design"]))
    assert job["tags"] == ["React", "Design"]


def test_content_edit_keeps_lifecycle_flags(fake_table, make_actor, published_job):
    owner = make_actor("owner")
    job = published_job(owner)
    updated = job_lifecycle.update_job_content(
        job_id=job["jobId"], actor=owner, patch={"title": "New title", "isPublished": False}
    )
    assert updated["title"] == "New title"
    assert updated["isPublished"] is True
    assert updated["status"] == "APPROVED"


def test_fill_notifies_only_open_applicants(fake_table, make_actor, published_job, sent_emails):
    from campus_connect.modules.applications import application_lifecycle

    owner = make_actor("owner")
    a = make_actor("alice", skills=["python"])
    b = make_actor("bob", skills=["python"])
    job = published_job(owner)

    app_a = application_lifecycle.apply(job_id=job["jobId"], actor=a, proposal="I would love to help " * 4)
    app_b = application_lifecycle.apply(job_id=job["jobId"], actor=b, proposal="Count me in please " * 4)
    application_lifecycle.set_status(application_id=app_a["applicationId"], actor=owner, new_status="ACCEPTED")

    filled = job_lifecycle.set_filled(job_id=job["jobId"], actor=owner, value=True)
    assert filled["isFilled"] is True

    assert fake_table.notifications_for(a.profile_id, "JOB_FILLED") == []
    [note] = fake_table.notifications_for(b.profile_id, "JOB_FILLED")
    assert note["metadata"]["applicationId"] == app_b["applicationId"]

    with pytest.raises(InvalidTransition):
        job_lifecycle.set_filled(job_id=job["jobId"], actor=owner, value=True)

    reopened = job_lifecycle.set_filled(job_id=job["jobId"], actor=owner, value=False)
    assert reopened["isFilled"] is False
    assert "filledAt" not in jobs_repo.get_job_item(job["jobId"])


def test_failed_fanout_chunk_rolls_back_fill(fake_table, make_actor, published_job, sent_emails):
    owner = make_actor("owner")
    job = jobs_repo.get_job_item(published_job(owner)["jobId"])

    for i in range(120):
        item, guard = applications_repo.build_application_items(
            job=job, applicant_id=f"prf_{i}", proposal="hello", resume_ref=None, match_score=0
        )
        fake_table.put_item(item=item)
        fake_table.put_item(item=guard)

    def _fail_later_chunk(ops):
        # The first chunk carries the job update; later chunks are notification puts only.
        if all(kind == "Put" and op["Item"].get("entityType") == "Notification" for kind, op in ops):
            return DdbThrottled(message="slow down", operation="TransactWriteItems")
        return None

    fake_table.fail_transact = _fail_later_chunk
    with pytest.raises(ServiceUnavailable):
        job_lifecycle.set_filled(job_id=job["jobId"], actor=owner, value=True)

    stored = jobs_repo.get_job_item(job["jobId"])
    assert stored["isFilled"] is False
    assert [n for n in fake_table.all_of("Notification") if n["type"] == "JOB_FILLED"] == []
    assert [e for e in sent_emails if e["kind"] == "JOB_FILLED"] == []


def test_match_alerts_on_publish(fake_table, make_actor, published_job):
    owner = make_actor("owner")
    fan = make_actor("fan", skills=["Python"], interests=["machine learning"])
    half = make_actor("half", interests=["python"])
    make_actor("nobody", skills=["cooking"])

    job = published_job(owner, tags=["python", "machine learning"])

    [full] = fake_table.notifications_for(fan.profile_id, "JOB_POSTED")
    assert full["metadata"]["matchScore"] == 100
    [partial] = fake_table.notifications_for(half.profile_id, "JOB_POSTED")
    assert partial["metadata"]["matchScore"] == 50
    assert fake_table.notifications_for(owner.profile_id, "JOB_POSTED") == []
    assert len(fake_table.all_of("Notification")) == 3  # two alerts + JOB_APPROVED
    assert job["isPublished"] is True


def test_unpublished_job_hidden_from_others(fake_table, make_actor):
    owner = make_actor("owner")
    other = make_actor("other")
    admin = make_actor("admin", admin=True)
    job = job_lifecycle.create_job(actor=owner, content=_content(), is_draft=True)

    with pytest.raises(NotFound):
        job_lifecycle.get_job_for_viewer(job_id=job["jobId"], actor=other)
    assert job_lifecycle.get_job_for_viewer(job_id=job["jobId"], actor=owner)["jobId"] == job["jobId"]
    assert job_lifecycle.get_job_for_viewer(job_id=job["jobId"], actor=admin)["viewCount"] == 1


def test_views_by_others_count(fake_table, make_actor, published_job):
    owner = make_actor("owner")
    viewer = make_actor("viewer")
    job = published_job(owner)
    job_lifecycle.get_job_for_viewer(job_id=job["jobId"], actor=owner)
    job_lifecycle.get_job_for_viewer(job_id=job["jobId"], actor=viewer)
    seen = job_lifecycle.get_job_for_viewer(job_id=job["jobId"], actor=viewer)
    assert seen["viewCount"] == 2


def test_open_listing_and_admin_queue(fake_table, make_actor, published_job):
    owner = make_actor("owner")
    admin = make_actor("boss", admin=True)
    seeker = make_actor("seeker", skills=["rust"])
    published_job(owner, title="Python project", tags=["python"])
    published_job(owner, title="Rust project", tags=["rust"])
    job_lifecycle.create_job(actor=owner, content=_content(title="Waiting"))

    ranked = job_lifecycle.list_open_jobs(actor=seeker, rank="match")
    assert [j["title"] for j in ranked] == ["Rust project", "Python project"]
    assert [j["title"] for j in job_lifecycle.list_open_jobs(actor=seeker, search="python")] == ["Python project"]

    queue = job_lifecycle.list_admin_queue(actor=admin)
    assert [j["title"] for j in queue["jobs"]] == ["Waiting"]
    assert queue["counts"] == {"pending": 1, "approved": 2, "rejected": 0}
    with pytest.raises(Forbidden):
        job_lifecycle.list_admin_queue(actor=owner)


def test_delete_job_owner_only(fake_table, make_actor):
    owner = make_actor("owner")
    other = make_actor("other")
    job = job_lifecycle.create_job(actor=owner, content=_content())
    with pytest.raises(Forbidden):
        job_lifecycle.delete_job(job_id=job["jobId"], actor=other)
    job_lifecycle.delete_job(job_id=job["jobId"], actor=owner)
    assert jobs_repo.get_job_item(job["jobId"]) is None
