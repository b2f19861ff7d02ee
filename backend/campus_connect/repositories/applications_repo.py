from __future__ import annotations

from typing import Any, Literal

from boto3.dynamodb.conditions import Key

from ..db.dynamodb.expressions import update_kwargs
from ..db.dynamodb.table import get_main_table
from ..shared.clock import new_id, now_iso
from ..shared.values import to_plain

ApplicationStatus = Literal["PENDING", "SHORTLISTED", "ACCEPTED", "REJECTED"]
APPLICATION_STATUSES: tuple[str, ...] = ("PENDING", "SHORTLISTED", "ACCEPTED", "REJECTED")


def application_key(application_id: str) -> dict[str, str]:
    aid = str(application_id or "").strip()
    if not aid:
        raise ValueError("application_id is required")
    return {"pk": f"APPLICATION#{aid}", "sk": "PROFILE"}


def guard_key(*, job_id: str, applicant_id: str) -> dict[str, str]:
    # One guard item per (job, applicant): the uniqueness constraint lives in the key.
    return {"pk": f"APPLICATION_GUARD#{job_id}#{applicant_id}", "sk": "PROFILE"}


def job_gsi_pk(job_id: str) -> str:
    return f"JOB_APPLICATIONS#{job_id}"


def applicant_gsi_pk(applicant_id: str) -> str:
    return f"APPLICANT_APPLICATIONS#{applicant_id}"


def normalize_application_for_api(item: dict[str, Any] | None) -> dict[str, Any] | None:
    if not item:
        return None
    obj = {k: to_plain(v) for k, v in item.items()}
    for k in ("pk", "sk", "gsi1pk", "gsi1sk", "gsi2pk", "gsi2sk", "entityType"):
        obj.pop(k, None)
    if obj.get("matchScore") is not None:
        obj["matchScore"] = int(obj["matchScore"])
    return obj


def get_application_item(application_id: str) -> dict[str, Any] | None:
    return get_main_table().get_item(key=application_key(application_id))


def get_application_id_for_pair(*, job_id: str, applicant_id: str) -> str | None:
    g = get_main_table().get_item(key=guard_key(job_id=job_id, applicant_id=applicant_id))
    aid = str((g or {}).get("applicationId") or "").strip()
    return aid or None


def build_application_items(
    *,
    job: dict[str, Any],
    applicant_id: str,
    proposal: str,
    resume_ref: str | None,
    match_score: int,
) -> tuple[dict[str, Any], dict[str, Any]]:
    """Returns (application item, uniqueness guard item)."""
    aid = new_id("app")
    now = now_iso()
    job_id = str(job.get("jobId") or "")
    item: dict[str, Any] = {
        **application_key(aid),
        "entityType": "Application",
        "applicationId": aid,
        "jobId": job_id,
        "jobOwnerId": str(job.get("createdById") or ""),
        "jobTitle": str(job.get("title") or ""),
        "applicantId": applicant_id,
        "status": "PENDING",
        "proposal": proposal,
        "resumeRef": resume_ref,
        "matchScore": int(match_score),
        "scoreSource": "rules",
        "createdAt": now,
        "updatedAt": now,
        "gsi1pk": job_gsi_pk(job_id),
        "gsi1sk": f"{now}#{aid}",
        "gsi2pk": applicant_gsi_pk(applicant_id),
        "gsi2sk": f"{now}#{aid}",
    }
    item = {k: v for k, v in item.items() if v is not None}
    guard: dict[str, Any] = {
        **guard_key(job_id=job_id, applicant_id=applicant_id),
        "entityType": "ApplicationGuard",
        "applicationId": aid,
        "createdAt": now,
    }
    return item, guard


def tx_put_new(item: dict[str, Any]) -> dict[str, Any]:
    return get_main_table().tx_put(
        item=item,
        condition_expression="attribute_not_exists(pk) AND attribute_not_exists(sk)",
    )


def tx_set_status(*, application_id: str, current: str, new_status: str) -> dict[str, Any]:
    now = now_iso()
    return get_main_table().tx_update(
        key=application_key(application_id),
        **update_kwargs(
            set_fields={"status": new_status, "statusChangedAt": now, "updatedAt": now},
            expect={"status": current},
        ),
    )


def set_match_score(
    *,
    application_id: str,
    score: int,
    source: str,
    analysis: dict[str, Any] | None = None,
) -> dict[str, Any] | None:
    now = now_iso()
    fields: dict[str, Any] = {
        "matchScore": max(0, min(100, int(score))),
        "scoreSource": source,
        "scoredAt": now,
        "updatedAt": now,
    }
    remove: tuple[str, ...] = ()
    if analysis:
        fields["matchAnalysis"] = analysis
    else:
        remove = ("matchAnalysis",)
    updated = get_main_table().update_item(
        key=application_key(application_id),
        **update_kwargs(set_fields=fields, remove_fields=remove),
    )
    return normalize_application_for_api(updated)


def list_applications_for_job(*, job_id: str, status: str | None = None) -> list[dict[str, Any]]:
    t = get_main_table()
    want = str(status or "").strip().upper()
    out: list[dict[str, Any]] = []
    for it in t.query_all(
        index_name="GSI1",
        key_condition_expression=Key("gsi1pk").eq(job_gsi_pk(job_id)),
        scan_index_forward=False,
    ):
        app = normalize_application_for_api(it)
        if app and (not want or app.get("status") == want):
            out.append(app)
    return out


def list_applications_for_applicant(*, applicant_id: str) -> list[dict[str, Any]]:
    t = get_main_table()
    items = t.query_all(
        index_name="GSI2",
        key_condition_expression=Key("gsi2pk").eq(applicant_gsi_pk(applicant_id)),
        scan_index_forward=False,
    )
    return [a for a in (normalize_application_for_api(it) for it in items) if a]


def count_by_status(applications: list[dict[str, Any]]) -> dict[str, int]:
    counts = {s: 0 for s in APPLICATION_STATUSES}
    for a in applications:
        s = str(a.get("status") or "")
        if s in counts:
            counts[s] += 1
    counts["total"] = len(applications)
    return counts
