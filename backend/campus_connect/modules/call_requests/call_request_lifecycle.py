from __future__ import annotations

from typing import Any

from ...db.dynamodb.errors import DdbConflict
from ...errors import DuplicateRequest, Forbidden, InvalidInput, InvalidTransition, LifecycleError, NotFound, ServiceUnavailable
from ...observability.logging import get_logger
from ...repositories import applications_repo, call_requests_repo, jobs_repo, profiles_repo
from ...services import video_rooms
from ...shared.clock import now_iso
from ..identity.actor import Actor
from ..notifications import dispatcher, events

log = get_logger("call_request_lifecycle")


def _load(call_request_id: str) -> dict[str, Any]:
    cr = call_requests_repo.get_call_request_item(call_request_id)
    if not cr:
        raise NotFound(message="Call request not found", entity="call_request", entity_id=call_request_id)
    return cr


def _is_party(cr: dict[str, Any], actor: Actor) -> bool:
    return actor.profile_id in (str(cr.get("requesterId") or ""), str(cr.get("receiverId") or ""))


def _require_status(cr: dict[str, Any], expected: str, *, action: str) -> str:
    current = str(cr.get("status") or "")
    if current != expected:
        raise InvalidTransition(
            message=f"Cannot {action} a call request that is {current}",
            entity="call_request",
            entity_id=str(cr.get("callRequestId") or ""),
        )
    return current


def _conflict(call_request_id: str, *, action: str) -> LifecycleError:
    current = call_requests_repo.get_call_request_item(call_request_id)
    if not current:
        return NotFound(message="Call request not found", entity="call_request", entity_id=call_request_id)
    return InvalidTransition(
        message=f"Cannot {action}: call request is now {current.get('status')}",
        entity="call_request",
        entity_id=call_request_id,
    )


def _for_api(cr: dict[str, Any], set_fields: dict[str, Any], remove_fields: tuple[str, ...] = ()) -> dict[str, Any]:
    out = {**cr, **{k: v for k, v in set_fields.items() if v is not None}}
    for k in remove_fields:
        out.pop(k, None)
    return call_requests_repo.normalize_call_request_for_api(out) or {}


def request(
    *,
    actor: Actor,
    job_id: str,
    receiver_id: str,
    application_id: str | None = None,
    requested_time: str | None = None,
    message: str | None = None,
) -> dict[str, Any]:
    """
    A candidate asks the job owner for a video interview about the job.

    Only the non-owner party may start a request, and the receiver must be the
    job owner. At most one open request exists per (job, requester, receiver);
    the guard item enforces it.
    """
    rid = str(receiver_id or "").strip()
    if not rid or rid == actor.profile_id:
        raise Forbidden(message="You cannot request a call with yourself", entity="call_request")

    job = jobs_repo.get_job_item(job_id)
    if not job:
        raise NotFound(message="Job not found", entity="job", entity_id=job_id)
    owner_id = str(job.get("createdById") or "")
    if actor.profile_id == owner_id:
        raise Forbidden(message="Job owners cannot start call requests", entity="job", entity_id=job_id)
    if rid != owner_id:
        raise Forbidden(message="Receiver must be the job owner", entity="job", entity_id=job_id)
    if not profiles_repo.get_profile_item(rid):
        raise NotFound(message="Receiver not found", entity="profile", entity_id=rid)

    app_id = str(application_id or "").strip() or None
    if app_id:
        app = applications_repo.get_application_item(app_id)
        if not app or app.get("jobId") != job_id or app.get("applicantId") != actor.profile_id:
            raise InvalidInput(
                message="Application does not belong to this job and candidate",
                entity="application",
                entity_id=app_id,
            )

    existing = call_requests_repo.get_open_request_id(job_id=job_id, requester_id=actor.profile_id, receiver_id=rid)
    if existing:
        raise DuplicateRequest(
            message="An open call request already exists", entity="call_request", entity_id=existing
        )

    item, guard = call_requests_repo.build_call_request_items(
        job=job,
        requester_id=actor.profile_id,
        receiver_id=rid,
        application_id=app_id,
        requested_time=str(requested_time or "").strip() or None,
        message=str(message or "").strip() or None,
    )
    cid = str(item["callRequestId"])
    try:
        dispatcher.commit_transition(
            puts=[call_requests_repo.tx_put_new(item), call_requests_repo.tx_put_new(guard)],
            events=[events.call_request_received(item, requester_name=actor.display_name or "Someone")],
            entity="call_request",
            entity_id=cid,
        )
    except DdbConflict:
        raise DuplicateRequest(
            message="An open call request already exists",
            entity="call_request",
            entity_id=call_requests_repo.get_open_request_id(
                job_id=job_id, requester_id=actor.profile_id, receiver_id=rid
            ),
        )
    log.info("call_request_created", call_request_id=cid, job_id=job_id)
    return call_requests_repo.normalize_call_request_for_api(item) or {}


def accept(*, call_request_id: str, actor: Actor, scheduled_time: str | None = None) -> dict[str, Any]:
    """
    Receiver accepts a PENDING request.

    The room is allocated first; if that fails the request stays PENDING.
    """
    cr = _load(call_request_id)
    if actor.profile_id != str(cr.get("receiverId") or ""):
        raise Forbidden(message="Only the receiver can accept", entity="call_request", entity_id=call_request_id)
    current = _require_status(cr, "PENDING", action="accept")

    try:
        room_id = video_rooms.allocate_room(
            name=video_rooms.room_name(job_id=str(cr.get("jobId")), requester_id=str(cr.get("requesterId"))),
            description=f"Interview for {cr.get('jobTitle') or 'a CampusConnect job'}",
        )
    except video_rooms.VideoServiceUnavailable as e:
        raise ServiceUnavailable(
            message="Video service is unavailable; try accepting again shortly",
            entity="call_request",
            entity_id=call_request_id,
            cause=e,
        )

    set_fields = {
        "roomId": room_id,
        "scheduledTime": str(scheduled_time or "").strip() or cr.get("requestedTime"),
        "acceptedAt": now_iso(),
    }
    set_fields = {k: v for k, v in set_fields.items() if v is not None}
    update = call_requests_repo.tx_transition(
        call_request_id=call_request_id, current=current, new_status="ACCEPTED", set_fields=set_fields
    )
    after = {**cr, **set_fields, "status": "ACCEPTED"}
    try:
        dispatcher.commit_transition(
            updates=[update],
            events=[events.call_request_accepted(after, room_id=room_id)],
            entity="call_request",
            entity_id=call_request_id,
        )
    except DdbConflict:
        log.warning("video_room_orphaned", call_request_id=call_request_id, room_id=room_id)
        raise _conflict(call_request_id, action="accept")

    log.info("call_request_accepted", call_request_id=call_request_id, room_id=room_id)
    return _for_api(after, {"updatedAt": now_iso()})


def reject(*, call_request_id: str, actor: Actor, reason: str | None = None) -> dict[str, Any]:
    cr = _load(call_request_id)
    if actor.profile_id != str(cr.get("receiverId") or ""):
        raise Forbidden(message="Only the receiver can reject", entity="call_request", entity_id=call_request_id)
    current = _require_status(cr, "PENDING", action="reject")

    why = str(reason or "").strip() or None
    set_fields: dict[str, Any] = {"rejectedAt": now_iso()}
    if why:
        set_fields["rejectReason"] = why
    update = call_requests_repo.tx_transition(
        call_request_id=call_request_id, current=current, new_status="REJECTED", set_fields=set_fields
    )
    try:
        dispatcher.commit_transition(
            updates=[update],
            deletes=[call_requests_repo.tx_release_guard(cr)],
            events=[events.call_request_rejected(cr, reason=why)],
            entity="call_request",
            entity_id=call_request_id,
        )
    except DdbConflict:
        raise _conflict(call_request_id, action="reject")
    log.info("call_request_rejected", call_request_id=call_request_id)
    return _for_api(cr, {**set_fields, "status": "REJECTED"})


def cancel(*, call_request_id: str, actor: Actor) -> dict[str, Any]:
    """Either party cancels an ACCEPTED call; the other party is notified."""
    cr = _load(call_request_id)
    if not _is_party(cr, actor):
        raise Forbidden(message="Not a party to this call", entity="call_request", entity_id=call_request_id)
    current = _require_status(cr, "ACCEPTED", action="cancel")

    other = str(cr.get("receiverId") if actor.profile_id == cr.get("requesterId") else cr.get("requesterId"))
    set_fields = {"cancelledAt": now_iso(), "cancelledBy": actor.profile_id}
    update = call_requests_repo.tx_transition(
        call_request_id=call_request_id,
        current=current,
        new_status="CANCELLED",
        set_fields=set_fields,
        remove_fields=("roomId",),
    )
    try:
        dispatcher.commit_transition(
            updates=[update],
            deletes=[call_requests_repo.tx_release_guard(cr)],
            events=[
                events.call_request_cancelled(cr, recipient_id=other, actor_name=actor.display_name or "The other party")
            ],
            entity="call_request",
            entity_id=call_request_id,
        )
    except DdbConflict:
        raise _conflict(call_request_id, action="cancel")
    log.info("call_request_cancelled", call_request_id=call_request_id)
    return _for_api(cr, {**set_fields, "status": "CANCELLED"}, ("roomId",))


def complete(*, call_request_id: str, actor: Actor) -> dict[str, Any]:
    cr = _load(call_request_id)
    if not _is_party(cr, actor):
        raise Forbidden(message="Not a party to this call", entity="call_request", entity_id=call_request_id)
    current = _require_status(cr, "ACCEPTED", action="complete")

    set_fields = {"completedAt": now_iso()}
    update = call_requests_repo.tx_transition(
        call_request_id=call_request_id,
        current=current,
        new_status="COMPLETED",
        set_fields=set_fields,
        remove_fields=("roomId",),
    )
    try:
        dispatcher.commit_transition(
            updates=[update],
            deletes=[call_requests_repo.tx_release_guard(cr)],
            entity="call_request",
            entity_id=call_request_id,
        )
    except DdbConflict:
        raise _conflict(call_request_id, action="complete")
    log.info("call_request_completed", call_request_id=call_request_id)
    return _for_api(cr, {**set_fields, "status": "COMPLETED"}, ("roomId",))


def join(*, call_request_id: str, actor: Actor) -> dict[str, Any]:
    """Short-lived join token for an ACCEPTED call. No state change."""
    cr = _load(call_request_id)
    if not _is_party(cr, actor):
        raise Forbidden(message="Not a party to this call", entity="call_request", entity_id=call_request_id)
    _require_status(cr, "ACCEPTED", action="join")
    room_id = str(cr.get("roomId") or "").strip()
    if not room_id:
        raise InvalidTransition(message="Call has no room", entity="call_request", entity_id=call_request_id)

    role = "host" if actor.profile_id == str(cr.get("jobOwnerId") or "") else "guest"
    try:
        return video_rooms.issue_token(room_id=room_id, user_id=actor.profile_id, role=role)
    except video_rooms.VideoServiceUnavailable as e:
        raise ServiceUnavailable(
            message="Video service is unavailable; try joining again shortly",
            entity="call_request",
            entity_id=call_request_id,
            cause=e,
        )


def get_for_viewer(*, call_request_id: str, actor: Actor) -> dict[str, Any]:
    cr = _load(call_request_id)
    if not _is_party(cr, actor):
        raise Forbidden(message="Not a party to this call", entity="call_request", entity_id=call_request_id)
    return call_requests_repo.normalize_call_request_for_api(cr) or {}


def list_for_actor(*, actor: Actor, role: str | None = "all", status: str | None = None) -> list[dict[str, Any]]:
    r = str(role or "all").strip().lower()
    if r not in ("all", "sent", "received"):
        raise InvalidInput(message="role must be sent, received or all", entity="call_request")
    return call_requests_repo.list_call_requests(profile_id=actor.profile_id, role=r, status=status)
