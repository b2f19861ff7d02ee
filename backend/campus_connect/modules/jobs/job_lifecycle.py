from __future__ import annotations

from typing import Any, Iterable

from ...db.dynamodb.errors import DdbConflict, DdbError
from ...errors import Forbidden, InvalidInput, InvalidTransition, LifecycleError, NotFound
from ...observability.logging import get_logger
from ...repositories import applications_repo, jobs_repo, profiles_repo
from ...settings import settings
from ...shared.clock import now_iso
from ..identity.actor import Actor
from ..matching.match_scorer import rank_jobs, score_profile_for_job
from ..notifications import dispatcher, events

log = get_logger("job_lifecycle")

MODERATION_DECISIONS = ("APPROVE", "REJECT")
_NOTIFY_ON_FILL = ("PENDING", "SHORTLISTED")


def _load(job_id: str) -> dict[str, Any]:
    job = jobs_repo.get_job_item(job_id)
    if not job:
        raise NotFound(message="Job not found", entity="job", entity_id=job_id)
    return job


def _is_owner(job: dict[str, Any], actor: Actor) -> bool:
    return str(job.get("createdById") or "") == actor.profile_id


def _require_owner(job: dict[str, Any], actor: Actor, *, action: str) -> None:
    if not _is_owner(job, actor):
        raise Forbidden(
            message=f"Only the job owner can {action}",
            entity="job",
            entity_id=str(job.get("jobId") or ""),
        )


def _conflict(job_id: str, *, action: str) -> LifecycleError:
    """Classify a lost conditional write by re-reading the job."""
    current = jobs_repo.get_job_item(job_id)
    if not current:
        return NotFound(message="Job not found", entity="job", entity_id=job_id)
    return InvalidTransition(
        message=f"Cannot {action}: job is now {jobs_repo.lifecycle_state(current)}",
        entity="job",
        entity_id=job_id,
    )


def _applied(job: dict[str, Any], set_fields: dict[str, Any], remove_fields: Iterable[str] = ()) -> dict[str, Any]:
    out = {**job, **set_fields}
    for k in remove_fields:
        out.pop(k, None)
    return jobs_repo.normalize_job_for_api(out) or {}


def _clean_tags(values: Any) -> list[str]:
    out: list[str] = []
    seen: set[str] = set()
    for v in values if isinstance(values, (list, tuple)) else []:
        s = str(v or "").strip()
        if s and s.lower() not in seen:
            out.append(s)
            seen.add(s.lower())
    return out


def _content_fields(payload: dict[str, Any], *, partial: bool) -> dict[str, Any]:
    fields: dict[str, Any] = {}
    for k in jobs_repo.CONTENT_FIELDS:
        if k not in payload or payload[k] is None:
            continue
        v = payload[k]
        if k == "tags":
            fields[k] = _clean_tags(v)
        elif k == "type":
            jt = str(v or "").strip().upper()
            if jt not in jobs_repo.JOB_TYPES:
                raise InvalidInput(message=f"Unknown job type: {v}", entity="job")
            fields[k] = jt
        elif k == "teamSize":
            fields[k] = int(v)
        else:
            fields[k] = str(v).strip()

    if not partial:
        for required in ("title", "description"):
            if not fields.get(required):
                raise InvalidInput(message=f"{required} is required", entity="job")
    else:
        for required in ("title", "description"):
            if required in fields and not fields[required]:
                raise InvalidInput(message=f"{required} cannot be empty", entity="job")
    return fields


# --- content ---


def create_job(*, actor: Actor, content: dict[str, Any], is_draft: bool = False) -> dict[str, Any]:
    """
    Any authenticated profile may post. A draft starts in DRAFT; otherwise the
    job is submitted for moderation right away (PENDING).
    """
    fields = _content_fields(content, partial=False)
    item = jobs_repo.build_job_item(owner_id=actor.profile_id, content=fields, is_draft=is_draft)
    job = jobs_repo.create_job_item(item)
    log.info("job_created", job_id=job.get("jobId"), state=job.get("status"))
    return job


def update_job_content(*, job_id: str, actor: Actor, patch: dict[str, Any]) -> dict[str, Any]:
    """Owner edits content. Lifecycle flags are not reachable from here."""
    job = _load(job_id)
    _require_owner(job, actor, action="edit it")
    fields = _content_fields(patch, partial=True)
    if not fields:
        return jobs_repo.normalize_job_for_api(job) or {}
    try:
        updated = jobs_repo.update_job(job_id=job_id, set_fields=fields, expect={"createdById": actor.profile_id})
    except DdbConflict:
        raise NotFound(message="Job not found", entity="job", entity_id=job_id)
    return updated or {}


def delete_job(*, job_id: str, actor: Actor) -> None:
    job = _load(job_id)
    _require_owner(job, actor, action="delete it")
    try:
        jobs_repo.delete_job(job_id=job_id, owner_id=actor.profile_id)
    except DdbConflict:
        raise NotFound(message="Job not found", entity="job", entity_id=job_id)
    log.info("job_deleted", job_id=job_id)


def get_job_for_viewer(*, job_id: str, actor: Actor) -> dict[str, Any]:
    """
    Unpublished jobs are visible to their owner and administrators only.
    Views by anyone but the owner bump viewCount atomically.
    """
    job = _load(job_id)
    owner = _is_owner(job, actor)
    if not bool(job.get("isPublished")) and not owner and not actor.is_admin:
        raise NotFound(message="Job not found", entity="job", entity_id=job_id)
    if owner:
        return jobs_repo.normalize_job_for_api(job) or {}
    try:
        updated = jobs_repo.increment_view_count(job_id)
    except DdbConflict:
        raise NotFound(message="Job not found", entity="job", entity_id=job_id)
    return updated or {}


# --- lifecycle transitions ---


def submit(*, job_id: str, actor: Actor) -> dict[str, Any]:
    """DRAFT or REJECTED -> PENDING. Clears any rejection reason."""
    job = _load(job_id)
    _require_owner(job, actor, action="submit it")
    state = jobs_repo.lifecycle_state(job)
    if state not in ("DRAFT", "REJECTED"):
        raise InvalidTransition(message=f"Cannot submit a job in {state}", entity="job", entity_id=job_id)

    now = now_iso()
    set_fields = {
        "moderationStatus": "PENDING",
        "isDraft": False,
        "isPublished": False,
        "submittedAt": now,
        "gsi1pk": jobs_repo.state_gsi_pk("PENDING"),
    }
    remove = ("rejectionReason",)
    try:
        jobs_repo.update_job(
            job_id=job_id,
            set_fields=set_fields,
            remove_fields=remove,
            expect={"moderationStatus": job.get("moderationStatus"), "isDraft": bool(job.get("isDraft"))},
        )
    except DdbConflict:
        raise _conflict(job_id, action="submit")
    log.info("job_submitted", job_id=job_id, from_state=state)
    return _applied(job, {**set_fields, "updatedAt": now}, remove)


def moderate(*, job_id: str, actor: Actor, decision: str, reason: str | None = None) -> dict[str, Any]:
    """
    Administrator decision on a PENDING job.

    APPROVE publishes when JOBS_AUTO_PUBLISH_ON_APPROVE is on. REJECT needs a
    reason and always unpublishes. The owner is notified either way.
    """
    if not actor.is_admin:
        raise Forbidden(message="Moderation requires administrator access", entity="job", entity_id=job_id)
    d = str(decision or "").strip().upper()
    if d not in MODERATION_DECISIONS:
        raise InvalidInput(message="decision must be APPROVE or REJECT", entity="job", entity_id=job_id)
    why = str(reason or "").strip()
    if d == "REJECT" and not why:
        raise InvalidInput(message="A rejection reason is required", entity="job", entity_id=job_id)

    job = _load(job_id)
    state = jobs_repo.lifecycle_state(job)
    if state != "PENDING":
        raise InvalidTransition(message=f"Cannot moderate a job in {state}", entity="job", entity_id=job_id)

    now = now_iso()
    remove: tuple[str, ...] = ()
    if d == "APPROVE":
        set_fields: dict[str, Any] = {
            "moderationStatus": "APPROVED",
            "approvedAt": now,
            "approvedBy": actor.profile_id,
            "gsi1pk": jobs_repo.state_gsi_pk("APPROVED"),
        }
        if settings.jobs_auto_publish_on_approve:
            set_fields.update({"isPublished": True, "publishedAt": now})
        remove = ("rejectionReason",)
        event = events.job_approved(job)
    else:
        set_fields = {
            "moderationStatus": "REJECTED",
            "rejectionReason": why,
            "rejectedAt": now,
            "isPublished": False,
            "gsi1pk": jobs_repo.state_gsi_pk("REJECTED"),
        }
        event = events.job_rejected(job, reason=why)

    update = jobs_repo.tx_update_job(
        job_id=job_id,
        set_fields=set_fields,
        remove_fields=remove,
        expect={"moderationStatus": "PENDING", "isDraft": False},
    )
    try:
        results = dispatcher.commit_transition(updates=[update], events=[event], entity="job", entity_id=job_id)
    except DdbConflict:
        raise _conflict(job_id, action="moderate")

    after = _applied(job, {**set_fields, "updatedAt": now}, remove)
    log.info(
        "job_moderated",
        job_id=job_id,
        decision=d,
        published=bool(after.get("isPublished")),
        email_error=results[0].email_error if results else None,
    )
    if after.get("isPublished"):
        send_match_alerts(after)
    return after


def send_match_alerts(job: dict[str, Any]) -> int:
    """
    JOB_POSTED to profiles whose skills or interests meet the job's tags.

    Best-effort: never affects the moderation outcome.
    """
    owner_id = str(job.get("createdById") or "")
    try:
        ids = profiles_repo.list_profile_ids_for_tags(
            tags=job.get("tags") or [],
            limit=int(settings.job_match_alert_limit or 100),
            exclude=[owner_id],
        )
        profiles = profiles_repo.get_profiles(ids)
    except DdbError as e:
        log.warning("job_match_alerts_failed", job_id=job.get("jobId"), error=str(e))
        return 0

    alerts = []
    for pid in ids:
        p = profiles.get(pid)
        if not p or not p.get("canSeek", True):
            continue
        s = score_profile_for_job(p, job)
        if s > 0:
            alerts.append(events.job_posted(job, recipient_id=pid, match_score=s))
    written = dispatcher.dispatch_best_effort(alerts)
    log.info("job_match_alerts_sent", job_id=job.get("jobId"), candidates=len(ids), written=written)
    return written


def set_published(*, job_id: str, actor: Actor, value: bool) -> dict[str, Any]:
    """Owner toggles visibility of an APPROVED job. Setting the current value is a no-op."""
    job = _load(job_id)
    _require_owner(job, actor, action="publish it")
    state = jobs_repo.lifecycle_state(job)
    if state != "APPROVED":
        raise InvalidTransition(message=f"Cannot publish a job in {state}", entity="job", entity_id=job_id)
    want = bool(value)
    if bool(job.get("isPublished")) == want:
        return jobs_repo.normalize_job_for_api(job) or {}

    set_fields: dict[str, Any] = {"isPublished": want}
    if want:
        set_fields["publishedAt"] = now_iso()
    try:
        updated = jobs_repo.update_job(
            job_id=job_id,
            set_fields=set_fields,
            expect={"moderationStatus": "APPROVED", "isDraft": False, "isPublished": not want},
        )
    except DdbConflict:
        raise _conflict(job_id, action="change publication")
    log.info("job_publication_changed", job_id=job_id, is_published=want)
    return updated or {}


def set_filled(*, job_id: str, actor: Actor, value: bool) -> dict[str, Any]:
    """
    Owner marks a published job filled (or reopens it).

    Filling notifies every applicant still PENDING or SHORTLISTED. The job write
    and the first batch of notifications commit together.
    """
    job = _load(job_id)
    _require_owner(job, actor, action="change its filled status")
    if not bool(job.get("isPublished")):
        raise InvalidTransition(message="Only a published job can be filled", entity="job", entity_id=job_id)
    want = bool(value)
    if bool(job.get("isFilled")) == want:
        raise InvalidTransition(
            message="Job is already filled" if want else "Job is not filled",
            entity="job",
            entity_id=job_id,
        )

    now = now_iso()
    if want:
        set_fields: dict[str, Any] = {"isFilled": True, "filledAt": now}
        remove: tuple[str, ...] = ()
    else:
        set_fields = {"isFilled": False}
        remove = ("filledAt",)
    update = jobs_repo.tx_update_job(
        job_id=job_id,
        set_fields=set_fields,
        remove_fields=remove,
        expect={"isPublished": True, "isFilled": not want},
    )

    try:
        if want:
            targets = [
                a
                for a in applications_repo.list_applications_for_job(job_id=job_id)
                if a.get("status") in _NOTIFY_ON_FILL
            ]
            compensate = jobs_repo.tx_update_job(
                job_id=job_id,
                set_fields={"isFilled": False},
                remove_fields=("filledAt",),
                expect={"isFilled": True},
            )
            dispatcher.commit_fanout(
                updates=[update],
                events=[events.job_filled(job, a) for a in targets],
                compensate=[compensate],
                entity="job",
                entity_id=job_id,
            )
            log.info("job_filled", job_id=job_id, notified=len(targets))
        else:
            dispatcher.commit_transition(updates=[update], entity="job", entity_id=job_id)
            log.info("job_reopened", job_id=job_id)
    except DdbConflict:
        raise _conflict(job_id, action="change filled status")

    return _applied(job, {**set_fields, "updatedAt": now}, remove)


# --- listings ---


def list_open_jobs(
    *,
    actor: Actor,
    search: str | None = None,
    job_type: str | None = None,
    rank: str | None = None,
) -> list[dict[str, Any]]:
    jobs = jobs_repo.list_open_jobs(search=search, job_type=job_type)
    if str(rank or "").strip().lower() == "match":
        return rank_jobs(profiles_repo.get_profile(actor.profile_id), jobs)
    return jobs


def list_my_jobs(*, actor: Actor) -> list[dict[str, Any]]:
    return jobs_repo.list_jobs_for_owner(owner_id=actor.profile_id)


def list_admin_queue(*, actor: Actor, status: str | None = "PENDING") -> dict[str, Any]:
    if not actor.is_admin:
        raise Forbidden(message="Moderation requires administrator access", entity="job")
    want = str(status or "PENDING").strip().upper()
    if want not in ("PENDING", "APPROVED", "REJECTED"):
        raise InvalidInput(message=f"Unknown moderation status: {status}", entity="job")
    by_state = {s: jobs_repo.list_jobs_in_state(state=s) for s in ("PENDING", "APPROVED", "REJECTED")}
    return {
        "jobs": by_state[want],
        "counts": {s.lower(): len(v) for s, v in by_state.items()},
    }
