from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

NotificationType = Literal[
    "JOB_APPROVED",
    "JOB_REJECTED",
    "JOB_FILLED",
    "JOB_POSTED",
    "APPLICATION_RECEIVED",
    "APPLICATION_STATUS_CHANGED",
    "CALL_REQUEST_RECEIVED",
    "CALL_REQUEST_ACCEPTED",
    "CALL_REQUEST_REJECTED",
    "CALL_REQUEST_CANCELLED",
]


@dataclass(frozen=True, slots=True)
class NotificationEvent:
    """
    One notification for one recipient.

    `email_kind` is None for in-app-only events. `email_data` is merged with
    the recipient's name when the email is rendered.
    """

    type: NotificationType
    recipient_id: str
    title: str
    body: str
    link: str | None = None
    subtype: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    email_kind: str | None = None
    email_data: dict[str, Any] = field(default_factory=dict)


def _title_of(entity: dict[str, Any]) -> str:
    return str(entity.get("title") or entity.get("jobTitle") or "").strip()


def job_approved(job: dict[str, Any]) -> NotificationEvent:
    jid = str(job.get("jobId"))
    title = _title_of(job)
    link = f"/jobs/{jid}"
    return NotificationEvent(
        type="JOB_APPROVED",
        recipient_id=str(job.get("createdById")),
        title="✅ Job Approved!",
        body=f'Your job "{title}" has been approved and is now live.',
        link=link,
        metadata={"jobId": jid},
        email_kind="JOB_APPROVED",
        email_data={"jobTitle": title, "link": link},
    )


def job_rejected(job: dict[str, Any], *, reason: str) -> NotificationEvent:
    jid = str(job.get("jobId"))
    title = _title_of(job)
    return NotificationEvent(
        type="JOB_REJECTED",
        recipient_id=str(job.get("createdById")),
        title="❌ Job Needs Changes",
        body=f'Your job "{title}" was not approved. Reason: {reason}',
        link="/drafts",
        metadata={"jobId": jid, "reason": reason},
        email_kind="JOB_REJECTED",
        email_data={"jobTitle": title, "reason": reason, "link": "/drafts"},
    )


def job_filled(job: dict[str, Any], application: dict[str, Any]) -> NotificationEvent:
    jid = str(job.get("jobId"))
    title = _title_of(job)
    return NotificationEvent(
        type="JOB_FILLED",
        recipient_id=str(application.get("applicantId")),
        title="📌 Position Filled",
        body=f'The position "{title}" has been filled.',
        link=f"/jobs/{jid}",
        metadata={"jobId": jid, "applicationId": application.get("applicationId")},
        email_kind="JOB_FILLED",
        email_data={"jobTitle": title},
    )


def job_posted(job: dict[str, Any], *, recipient_id: str, match_score: int) -> NotificationEvent:
    """New-job match alert; in-app only."""
    jid = str(job.get("jobId"))
    title = _title_of(job)
    return NotificationEvent(
        type="JOB_POSTED",
        recipient_id=recipient_id,
        title="🆕 New Opportunity For You",
        body=f'"{title}" matches your skills ({match_score}% match).',
        link=f"/jobs/{jid}",
        metadata={"jobId": jid, "matchScore": int(match_score)},
    )


def application_received(
    job: dict[str, Any], application: dict[str, Any], *, applicant_name: str
) -> NotificationEvent:
    jid = str(job.get("jobId"))
    title = _title_of(job)
    score = int(application.get("matchScore") or 0)
    link = f"/jobs/{jid}/applications"
    return NotificationEvent(
        type="APPLICATION_RECEIVED",
        recipient_id=str(job.get("createdById")),
        title="📩 New Application",
        body=f'{applicant_name} applied to "{title}" ({score}% match).',
        link=link,
        metadata={"jobId": jid, "applicationId": application.get("applicationId"), "matchScore": score},
        email_kind="APPLICATION_RECEIVED",
        email_data={"jobTitle": title, "applicantName": applicant_name, "matchScore": score, "link": link},
    )


_STATUS_TITLES = {
    "SHORTLISTED": ("⭐ Application Shortlisted", "You have been shortlisted for"),
    "ACCEPTED": ("🎉 Application Accepted", "Your application was accepted for"),
    "REJECTED": ("❌ Application Update", "Your application was not selected for"),
    "PENDING": ("Application Under Review", "Your application is back under review for"),
}


def application_status_changed(application: dict[str, Any], *, new_status: str) -> NotificationEvent:
    title = _title_of(application)
    heading, lead = _STATUS_TITLES.get(new_status, ("Application Update", "Your application changed for"))
    return NotificationEvent(
        type="APPLICATION_STATUS_CHANGED",
        subtype=new_status,
        recipient_id=str(application.get("applicantId")),
        title=heading,
        body=f'{lead} "{title}".',
        link="/my-applications",
        metadata={"jobId": application.get("jobId"), "applicationId": application.get("applicationId")},
        email_kind="APPLICATION_STATUS_CHANGED",
        email_data={"jobTitle": title, "status": new_status, "link": "/my-applications"},
    )


def call_request_received(cr: dict[str, Any], *, requester_name: str) -> NotificationEvent:
    title = _title_of(cr)
    return NotificationEvent(
        type="CALL_REQUEST_RECEIVED",
        recipient_id=str(cr.get("receiverId")),
        title="📹 Video Interview Request",
        body=f'{requester_name} requested a video interview about "{title}".',
        link="/video-calls",
        metadata={"callRequestId": cr.get("callRequestId"), "jobId": cr.get("jobId")},
        email_kind="CALL_REQUEST_RECEIVED",
        email_data={
            "jobTitle": title,
            "requesterName": requester_name,
            "requestedTime": cr.get("requestedTime"),
            "message": cr.get("message"),
            "link": "/video-calls",
        },
    )


def join_link(*, call_request_id: str, room_id: str) -> str:
    return f"/video-call/{call_request_id}?room={room_id}"


def call_request_accepted(cr: dict[str, Any], *, room_id: str) -> NotificationEvent:
    cid = str(cr.get("callRequestId"))
    title = _title_of(cr)
    link = join_link(call_request_id=cid, room_id=room_id)
    return NotificationEvent(
        type="CALL_REQUEST_ACCEPTED",
        recipient_id=str(cr.get("requesterId")),
        title="🎉 Video Interview Accepted",
        body=f'Your video interview request for "{title}" was accepted.',
        link=link,
        metadata={"callRequestId": cid, "jobId": cr.get("jobId"), "roomId": room_id},
        email_kind="CALL_REQUEST_ACCEPTED",
        email_data={"jobTitle": title, "scheduledTime": cr.get("scheduledTime"), "link": link},
    )


def call_request_rejected(cr: dict[str, Any], *, reason: str | None) -> NotificationEvent:
    title = _title_of(cr)
    body = f'Your video interview request for "{title}" was declined.'
    if reason:
        body += f" Reason: {reason}"
    return NotificationEvent(
        type="CALL_REQUEST_REJECTED",
        recipient_id=str(cr.get("requesterId")),
        title="Video Interview Declined",
        body=body,
        link="/video-calls",
        metadata={"callRequestId": cr.get("callRequestId"), "jobId": cr.get("jobId")},
        email_kind="CALL_REQUEST_REJECTED",
        email_data={"jobTitle": title, "reason": reason, "link": "/video-calls"},
    )


def call_request_cancelled(cr: dict[str, Any], *, recipient_id: str, actor_name: str) -> NotificationEvent:
    title = _title_of(cr)
    return NotificationEvent(
        type="CALL_REQUEST_CANCELLED",
        recipient_id=recipient_id,
        title="Video Interview Cancelled",
        body=f'{actor_name} cancelled the video interview for "{title}".',
        link="/video-calls",
        metadata={"callRequestId": cr.get("callRequestId"), "jobId": cr.get("jobId")},
        email_kind="CALL_REQUEST_CANCELLED",
        email_data={"jobTitle": title, "actorName": actor_name, "link": "/video-calls"},
    )
