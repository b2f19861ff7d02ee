from __future__ import annotations

import html
from dataclasses import dataclass
from typing import Any, Callable

from ..settings import settings

APP_NAME = "CampusConnect"


@dataclass(frozen=True, slots=True)
class RenderedEmail:
    subject: str
    text: str
    html: str


class UnknownTemplate(KeyError):
    pass


def _link(path: str | None) -> str:
    base = str(settings.frontend_base_url or "").rstrip("/")
    p = str(path or "/")
    return f"{base}{p if p.startswith('/') else '/' + p}"


def _s(data: dict[str, Any], key: str, default: str = "") -> str:
    return str(data.get(key) or default).strip()


def _html(heading: str, paragraphs: list[str], *, cta_label: str | None, cta_url: str | None) -> str:
    body = "".join(f"<p>{html.escape(p)}</p>" for p in paragraphs if p)
    button = ""
    if cta_label and cta_url:
        button = (
            f'<p style="text-align:center"><a href="{html.escape(cta_url, quote=True)}" '
            'style="display:inline-block;padding:14px 32px;background:#1E3A8A;color:#fff;'
            f'text-decoration:none;border-radius:8px;font-weight:600">{html.escape(cta_label)}</a></p>'
        )
    return (
        "<!DOCTYPE html><html><head><meta charset=\"utf-8\"></head>"
        "<body style=\"font-family:-apple-system,Segoe UI,Roboto,Arial,sans-serif;line-height:1.6;color:#333\">"
        f"<div style=\"max-width:600px;margin:40px auto\"><h2>{html.escape(heading)}</h2>{body}{button}"
        f"<p style=\"color:#6b7280;font-size:14px\">{APP_NAME}. Connect. Collaborate. Create.</p>"
        "</div></body></html>"
    )


def _text(paragraphs: list[str], *, cta_label: str | None, cta_url: str | None) -> str:
    lines = [p for p in paragraphs if p]
    if cta_label and cta_url:
        lines.append(f"{cta_label}: {cta_url}")
    lines.append(f"The {APP_NAME} Team")
    return "\n\n".join(lines)


def _render(
    *,
    subject: str,
    heading: str,
    paragraphs: list[str],
    cta_label: str | None = None,
    cta_path: str | None = None,
) -> RenderedEmail:
    url = _link(cta_path) if cta_path else None
    return RenderedEmail(
        subject=subject[:200],
        text=_text(paragraphs, cta_label=cta_label, cta_url=url),
        html=_html(heading, paragraphs, cta_label=cta_label, cta_url=url),
    )


def _job_approved(d: dict[str, Any]) -> RenderedEmail:
    title = _s(d, "jobTitle")
    return _render(
        subject=f'Your Job "{title}" has been Approved! ✅',
        heading="✅ Your Job Has Been Approved!",
        paragraphs=[
            f"Hi {_s(d, 'recipientName', 'there')},",
            f'Great news! "{title}" has been approved by our admin team and is now live.',
            "Review applications from your job dashboard and mark the position as filled when you find the right match.",
        ],
        cta_label="View Your Job",
        cta_path=_s(d, "link") or None,
    )


def _job_rejected(d: dict[str, Any]) -> RenderedEmail:
    title = _s(d, "jobTitle")
    return _render(
        subject=f'Update on Your Job "{title}" - Action Required ❌',
        heading="❌ Job Posting Update",
        paragraphs=[
            f"Hi {_s(d, 'recipientName', 'there')},",
            f'Your job posting "{title}" could not be approved at this time.',
            f"Reason: {_s(d, 'reason', 'Not specified')}",
            "You can edit the posting and resubmit it for review.",
        ],
        cta_label="Edit Your Job",
        cta_path=_s(d, "link") or None,
    )


def _application_received(d: dict[str, Any]) -> RenderedEmail:
    title = _s(d, "jobTitle")
    return _render(
        subject=f'New Application for "{title}" 📩',
        heading="📩 New Application Received",
        paragraphs=[
            f"Hi {_s(d, 'recipientName', 'there')},",
            f'{_s(d, "applicantName", "Someone")} applied to "{title}".',
            f"Initial match score: {_s(d, 'matchScore', '0')}%",
        ],
        cta_label="Review Applications",
        cta_path=_s(d, "link") or None,
    )


_STATUS_LABELS = {
    "SHORTLISTED": ("⭐ Application Shortlisted", "You have been shortlisted. The poster may reach out for an interview."),
    "ACCEPTED": ("🎉 Application Accepted", "Congratulations! Your application has been accepted."),
    "REJECTED": ("❌ Application Update", "Unfortunately your application was not selected this time."),
    "PENDING": ("Application Back Under Review", "Your application is back under review."),
}


def _application_status_changed(d: dict[str, Any]) -> RenderedEmail:
    title = _s(d, "jobTitle")
    label, sentence = _STATUS_LABELS.get(_s(d, "status").upper(), ("Application Update", "Your application status changed."))
    return _render(
        subject=f"{label} - {title}",
        heading=label,
        paragraphs=[f"Hi {_s(d, 'recipientName', 'there')},", f'Update on "{title}": {sentence}'],
        cta_label="View My Applications",
        cta_path=_s(d, "link") or None,
    )


def _job_filled(d: dict[str, Any]) -> RenderedEmail:
    title = _s(d, "jobTitle")
    return _render(
        subject=f"Position Filled: {title}",
        heading="📌 Position Filled",
        paragraphs=[
            f"Hi {_s(d, 'recipientName', 'there')},",
            f'The position "{title}" you applied to has been filled. Thank you for your interest.',
        ],
        cta_label="Browse Opportunities",
        cta_path="/jobs",
    )


def _call_request_received(d: dict[str, Any]) -> RenderedEmail:
    name = _s(d, "requesterName", "Someone")
    return _render(
        subject=f"Video Interview Request from {name} 📹",
        heading="📹 Video Interview Request",
        paragraphs=[
            f"Hi {_s(d, 'recipientName', 'there')},",
            f'{name} would like a video interview about "{_s(d, "jobTitle")}".',
            f"Proposed time: {_s(d, 'requestedTime', 'flexible')}",
            _s(d, "message"),
        ],
        cta_label="Respond to Request",
        cta_path=_s(d, "link") or None,
    )


def _call_request_accepted(d: dict[str, Any]) -> RenderedEmail:
    title = _s(d, "jobTitle")
    return _render(
        subject=f"Video Interview Accepted! 🎉 - {title}",
        heading="🎉 Video Interview Accepted",
        paragraphs=[
            f"Hi {_s(d, 'recipientName', 'there')},",
            f'Your video interview request for "{title}" was accepted.',
            f"Scheduled time: {_s(d, 'scheduledTime', 'to be confirmed')}",
        ],
        cta_label="Join Video Call",
        cta_path=_s(d, "link") or None,
    )


def _call_request_rejected(d: dict[str, Any]) -> RenderedEmail:
    title = _s(d, "jobTitle")
    return _render(
        subject=f"Video Interview Request Update - {title}",
        heading="Video Interview Request Declined",
        paragraphs=[
            f"Hi {_s(d, 'recipientName', 'there')},",
            f'Your video interview request for "{title}" was declined.',
            f"Reason: {_s(d, 'reason')}" if _s(d, "reason") else "",
        ],
        cta_label="View Requests",
        cta_path=_s(d, "link") or None,
    )


def _call_request_cancelled(d: dict[str, Any]) -> RenderedEmail:
    title = _s(d, "jobTitle")
    return _render(
        subject=f"Video Interview Cancelled - {title}",
        heading="Video Interview Cancelled",
        paragraphs=[
            f"Hi {_s(d, 'recipientName', 'there')},",
            f'The video interview for "{title}" was cancelled by {_s(d, "actorName", "the other party")}.',
        ],
        cta_label="View Requests",
        cta_path=_s(d, "link") or None,
    )


_TEMPLATES: dict[str, Callable[[dict[str, Any]], RenderedEmail]] = {
    "JOB_APPROVED": _job_approved,
    "JOB_REJECTED": _job_rejected,
    "JOB_FILLED": _job_filled,
    "APPLICATION_RECEIVED": _application_received,
    "APPLICATION_STATUS_CHANGED": _application_status_changed,
    "CALL_REQUEST_RECEIVED": _call_request_received,
    "CALL_REQUEST_ACCEPTED": _call_request_accepted,
    "CALL_REQUEST_REJECTED": _call_request_rejected,
    "CALL_REQUEST_CANCELLED": _call_request_cancelled,
}


def render(template_kind: str, template_data: dict[str, Any]) -> RenderedEmail:
    fn = _TEMPLATES.get(str(template_kind or "").strip().upper())
    if fn is None:
        raise UnknownTemplate(template_kind)
    return fn(template_data or {})
