from __future__ import annotations

from typing import Any

from ...db.dynamodb.errors import DdbConflict
from ...errors import DuplicateRequest, Forbidden, InvalidInput, InvalidTransition, LifecycleError, NotFound, ServiceUnavailable
from ...observability.logging import get_logger
from ...repositories import applications_repo, jobs_repo, profiles_repo
from ...shared.clock import now_iso
from ..identity.actor import Actor
from ..matching.ai_match_scoring import analyze_match
from ..matching.match_scorer import score_profile_for_job
from ..notifications import dispatcher, events

log = get_logger("application_lifecycle")

# ACCEPTED is terminal.
TRANSITIONS: dict[str, frozenset[str]] = {
    "PENDING": frozenset({"SHORTLISTED", "ACCEPTED", "REJECTED"}),
    "SHORTLISTED": frozenset({"ACCEPTED", "REJECTED", "PENDING"}),
    "REJECTED": frozenset({"PENDING"}),
    "ACCEPTED": frozenset(),
}

MAX_STATUS_ATTEMPTS = 3


def can_transition(current: str, new_status: str) -> bool:
    return new_status in TRANSITIONS.get(current, frozenset())


def _load(application_id: str) -> dict[str, Any]:
    app = applications_repo.get_application_item(application_id)
    if not app:
        raise NotFound(message="Application not found", entity="application", entity_id=application_id)
    return app


def _load_job_for(app: dict[str, Any]) -> dict[str, Any]:
    job_id = str(app.get("jobId") or "")
    job = jobs_repo.get_job_item(job_id) if job_id else None
    if not job:
        raise NotFound(message="The job for this application no longer exists", entity="job", entity_id=job_id)
    return job


def _is_job_open(job: dict[str, Any]) -> bool:
    return bool(job.get("isPublished")) and not bool(job.get("isFilled"))


def apply(
    *,
    job_id: str,
    actor: Actor,
    proposal: str,
    resume_ref: str | None = None,
) -> dict[str, Any]:
    """
    Create a PENDING application with its initial rules-based match score.

    The application, its (job, applicant) guard, the job's applicationsCount
    and the owner's APPLICATION_RECEIVED notification are one transaction,
    conditioned on the job still being open.
    """
    job = jobs_repo.get_job_item(job_id)
    if not job:
        raise NotFound(message="Job not found", entity="job", entity_id=job_id)
    if str(job.get("createdById") or "") == actor.profile_id:
        raise Forbidden(message="You cannot apply to your own job", entity="job", entity_id=job_id)
    if not _is_job_open(job):
        raise InvalidTransition(message="Job is not accepting applications", entity="job", entity_id=job_id)
    existing = applications_repo.get_application_id_for_pair(job_id=job_id, applicant_id=actor.profile_id)
    if existing:
        raise DuplicateRequest(
            message="You have already applied to this job", entity="application", entity_id=existing
        )

    profile = profiles_repo.get_profile(actor.profile_id)
    initial = score_profile_for_job(profile, job)
    item, guard = applications_repo.build_application_items(
        job=job,
        applicant_id=actor.profile_id,
        proposal=str(proposal or "").strip(),
        resume_ref=str(resume_ref or "").strip() or None,
        match_score=initial,
    )
    job_update = jobs_repo.tx_update_job(
        job_id=job_id,
        add_fields={"applicationsCount": 1},
        expect={"isPublished": True, "isFilled": False},
    )
    event = events.application_received(job, item, applicant_name=profiles_repo.display_name(profile))

    try:
        dispatcher.commit_transition(
            updates=[job_update],
            puts=[applications_repo.tx_put_new(item), applications_repo.tx_put_new(guard)],
            events=[event],
            entity="application",
            entity_id=str(item["applicationId"]),
        )
    except DdbConflict as e:
        raise _apply_conflict(job_id=job_id, applicant_id=actor.profile_id, exc=e)

    log.info("application_created", application_id=item["applicationId"], job_id=job_id, match_score=initial)
    return applications_repo.normalize_application_for_api(item) or {}


def _apply_conflict(*, job_id: str, applicant_id: str, exc: DdbConflict) -> LifecycleError:
    # Transaction order: [job update, application put, guard put, notification put].
    if 2 in exc.failed_indexes():
        return DuplicateRequest(
            message="You have already applied to this job",
            entity="application",
            entity_id=applications_repo.get_application_id_for_pair(job_id=job_id, applicant_id=applicant_id),
        )
    job = jobs_repo.get_job_item(job_id)
    if not job:
        return NotFound(message="Job not found", entity="job", entity_id=job_id)
    if not _is_job_open(job):
        return InvalidTransition(message="Job is not accepting applications", entity="job", entity_id=job_id)
    existing = applications_repo.get_application_id_for_pair(job_id=job_id, applicant_id=applicant_id)
    if existing:
        return DuplicateRequest(message="You have already applied to this job", entity="application", entity_id=existing)
    return ServiceUnavailable(message="Could not record the application; retry", entity="job", entity_id=job_id)


def set_status(*, application_id: str, actor: Actor, new_status: str) -> dict[str, Any]:
    """
    Job owner moves an application along the transition table.

    The write is conditioned on the status that was read. On conflict the
    application is re-read and the decision re-made, a bounded number of
    times, so ACCEPTED can never be left.
    """
    want = str(new_status or "").strip().upper()
    if want not in applications_repo.APPLICATION_STATUSES:
        raise InvalidInput(message=f"Unknown application status: {new_status}", entity="application")

    for attempt in range(1, MAX_STATUS_ATTEMPTS + 1):
        app = _load(application_id)
        job = _load_job_for(app)
        if str(job.get("createdById") or "") != actor.profile_id:
            raise Forbidden(
                message="Only the job owner can change application status",
                entity="application",
                entity_id=application_id,
            )
        current = str(app.get("status") or "PENDING")
        if not can_transition(current, want):
            raise InvalidTransition(
                message=f"Cannot move an application from {current} to {want}",
                entity="application",
                entity_id=application_id,
            )

        update = applications_repo.tx_set_status(application_id=application_id, current=current, new_status=want)
        try:
            dispatcher.commit_transition(
                updates=[update],
                events=[events.application_status_changed(app, new_status=want)],
                entity="application",
                entity_id=application_id,
            )
        except DdbConflict:
            log.info("application_status_conflict", application_id=application_id, attempt=attempt)
            continue

        log.info("application_status_changed", application_id=application_id, from_status=current, to_status=want)
        now = now_iso()
        return applications_repo.normalize_application_for_api(
            {**app, "status": want, "statusChangedAt": now, "updatedAt": now}
        ) or {}

    raise ServiceUnavailable(
        message="Application is being changed concurrently; retry",
        entity="application",
        entity_id=application_id,
    )


def recalculate_score(*, application_id: str, actor: Actor) -> dict[str, Any]:
    """
    Recompute matchScore (AI analysis when configured, rules otherwise).

    Owner or applicant only. Overwrites the stored score; no notification.
    """
    app = _load(application_id)
    job = _load_job_for(app)
    if actor.profile_id not in (str(job.get("createdById") or ""), str(app.get("applicantId") or "")):
        raise Forbidden(message="Not allowed to score this application", entity="application", entity_id=application_id)

    profile = profiles_repo.get_profile(str(app.get("applicantId") or "")) or {}
    analysis = analyze_match(job=job, profile=profile, proposal=app.get("proposal"))
    if analysis is not None:
        score, source, detail = analysis.score, "ai", analysis.model_dump()
    else:
        score, source, detail = score_profile_for_job(profile, job), "rules", None

    try:
        updated = applications_repo.set_match_score(
            application_id=application_id, score=score, source=source, analysis=detail
        )
    except DdbConflict:
        raise NotFound(message="Application not found", entity="application", entity_id=application_id)
    log.info("application_score_recalculated", application_id=application_id, score=score, source=source)
    return updated or {}


def get_application_for_viewer(*, application_id: str, actor: Actor) -> dict[str, Any]:
    app = _load(application_id)
    if actor.profile_id not in (str(app.get("jobOwnerId") or ""), str(app.get("applicantId") or "")):
        raise Forbidden(message="Not allowed to view this application", entity="application", entity_id=application_id)
    return applications_repo.normalize_application_for_api(app) or {}


def list_for_job(*, job_id: str, actor: Actor, status: str | None = None) -> dict[str, Any]:
    """Owner's applicant list with per-status counts and applicant summaries."""
    job = jobs_repo.get_job_item(job_id)
    if not job:
        raise NotFound(message="Job not found", entity="job", entity_id=job_id)
    if str(job.get("createdById") or "") != actor.profile_id and not actor.is_admin:
        raise Forbidden(message="Only the job owner can list applications", entity="job", entity_id=job_id)

    everything = applications_repo.list_applications_for_job(job_id=job_id)
    want = str(status or "").strip().upper()
    shown = [a for a in everything if not want or a.get("status") == want]
    applicants = profiles_repo.get_profiles(a.get("applicantId") for a in shown)
    for a in shown:
        p = applicants.get(str(a.get("applicantId")))
        a["applicant"] = (
            {
                "profileId": p.get("profileId"),
                "fullName": p.get("fullName"),
                "email": p.get("email"),
                "skills": p.get("skills"),
                "interests": p.get("interests"),
            }
            if p
            else None
        )
    return {"applications": shown, "counts": applications_repo.count_by_status(everything)}


def list_mine(*, actor: Actor) -> list[dict[str, Any]]:
    return applications_repo.list_applications_for_applicant(applicant_id=actor.profile_id)
