from __future__ import annotations

from typing import Any, Literal

from boto3.dynamodb.conditions import Key

from ..db.dynamodb.expressions import condition_kwargs, update_kwargs
from ..db.dynamodb.table import get_main_table
from ..shared.clock import new_id, now_iso
from ..shared.values import to_plain

ModerationStatus = Literal["PENDING", "APPROVED", "REJECTED"]
# DRAFT is not a moderation status: a draft is a PENDING job with isDraft=true.
LifecycleState = Literal["DRAFT", "PENDING", "APPROVED", "REJECTED"]

JOB_TYPES = ("ACADEMIC_PROJECT", "STARTUP_COLLABORATION", "PART_TIME_JOB", "COMPETITION_HACKATHON")
CONTENT_FIELDS = (
    "title",
    "description",
    "tags",
    "type",
    "requirements",
    "duration",
    "compensation",
    "location",
    "teamSize",
)


def job_key(job_id: str) -> dict[str, str]:
    jid = str(job_id or "").strip()
    if not jid:
        raise ValueError("job_id is required")
    return {"pk": f"JOB#{jid}", "sk": "PROFILE"}


def lifecycle_state(job: dict[str, Any]) -> LifecycleState:
    if bool(job.get("isDraft")):
        return "DRAFT"
    ms = str(job.get("moderationStatus") or "PENDING").upper()
    if ms in ("APPROVED", "REJECTED"):
        return ms  # type: ignore[return-value]
    return "PENDING"


def state_gsi_pk(state: str) -> str:
    return f"JOBS#{state}"


def owner_gsi_pk(owner_id: str) -> str:
    return f"OWNER_JOBS#{owner_id}"


def normalize_job_for_api(item: dict[str, Any] | None) -> dict[str, Any] | None:
    if not item:
        return None
    obj = {k: to_plain(v) for k, v in item.items()}
    for k in ("pk", "sk", "gsi1pk", "gsi1sk", "gsi2pk", "gsi2sk", "entityType"):
        obj.pop(k, None)
    obj["tags"] = list(obj.get("tags") or [])
    obj["viewCount"] = int(obj.get("viewCount") or 0)
    obj["applicationsCount"] = int(obj.get("applicationsCount") or 0)
    obj["status"] = lifecycle_state(item)
    return obj


def get_job_item(job_id: str) -> dict[str, Any] | None:
    return get_main_table().get_item(key=job_key(job_id))


def build_job_item(*, owner_id: str, content: dict[str, Any], is_draft: bool) -> dict[str, Any]:
    jid = new_id("job")
    now = now_iso()
    state = "DRAFT" if is_draft else "PENDING"
    item: dict[str, Any] = {
        **job_key(jid),
        "entityType": "Job",
        "jobId": jid,
        "createdById": owner_id,
        "moderationStatus": "PENDING",
        "isDraft": bool(is_draft),
        "isPublished": False,
        "isFilled": False,
        "viewCount": 0,
        "applicationsCount": 0,
        "createdAt": now,
        "updatedAt": now,
        "submittedAt": None if is_draft else now,
        "gsi1pk": state_gsi_pk(state),
        "gsi1sk": f"{now}#{jid}",
        "gsi2pk": owner_gsi_pk(owner_id),
        "gsi2sk": f"{now}#{jid}",
    }
    for k in CONTENT_FIELDS:
        if content.get(k) is not None:
            item[k] = content[k]
    return {k: v for k, v in item.items() if v is not None}


def create_job_item(item: dict[str, Any]) -> dict[str, Any]:
    get_main_table().put_item(item=item, condition_expression="attribute_not_exists(pk) AND attribute_not_exists(sk)")
    return normalize_job_for_api(item) or {}


def update_job(
    *,
    job_id: str,
    set_fields: dict[str, Any] | None = None,
    remove_fields: tuple[str, ...] = (),
    expect: dict[str, Any] | None = None,
) -> dict[str, Any] | None:
    """Conditional update; raises DdbConflict when a guard in `expect` no longer holds."""
    fields = {"updatedAt": now_iso(), **(set_fields or {})}
    updated = get_main_table().update_item(
        key=job_key(job_id),
        **update_kwargs(set_fields=fields, remove_fields=remove_fields, expect=expect),
    )
    return normalize_job_for_api(updated)


def tx_update_job(
    *,
    job_id: str,
    set_fields: dict[str, Any] | None = None,
    remove_fields: tuple[str, ...] = (),
    add_fields: dict[str, int] | None = None,
    expect: dict[str, Any] | None = None,
) -> dict[str, Any]:
    fields = {"updatedAt": now_iso(), **(set_fields or {})}
    return get_main_table().tx_update(
        key=job_key(job_id),
        **update_kwargs(set_fields=fields, remove_fields=remove_fields, add_fields=add_fields, expect=expect),
    )


def increment_view_count(job_id: str) -> dict[str, Any] | None:
    # Atomic ADD: concurrent views never lose increments.
    updated = get_main_table().update_item(
        key=job_key(job_id),
        **update_kwargs(add_fields={"viewCount": 1}),
    )
    return normalize_job_for_api(updated)


def delete_job(*, job_id: str, owner_id: str) -> None:
    get_main_table().delete_item(key=job_key(job_id), **condition_kwargs(expect={"createdById": owner_id}))


def list_jobs_in_state(*, state: LifecycleState) -> list[dict[str, Any]]:
    t = get_main_table()
    items = t.query_all(
        index_name="GSI1",
        key_condition_expression=Key("gsi1pk").eq(state_gsi_pk(state)),
        scan_index_forward=False,
    )
    return [j for j in (normalize_job_for_api(it) for it in items) if j]


def list_jobs_for_owner(*, owner_id: str) -> list[dict[str, Any]]:
    t = get_main_table()
    items = t.query_all(
        index_name="GSI2",
        key_condition_expression=Key("gsi2pk").eq(owner_gsi_pk(owner_id)),
        scan_index_forward=False,
    )
    return [j for j in (normalize_job_for_api(it) for it in items) if j]


def list_open_jobs(*, search: str | None = None, job_type: str | None = None) -> list[dict[str, Any]]:
    """Published, unfilled jobs, newest first."""
    q = str(search or "").strip().lower()
    jt = str(job_type or "").strip().upper()
    out: list[dict[str, Any]] = []
    for job in list_jobs_in_state(state="APPROVED"):
        if not job.get("isPublished") or job.get("isFilled"):
            continue
        if jt and str(job.get("type") or "").upper() != jt:
            continue
        if q and q not in str(job.get("title") or "").lower() and q not in str(job.get("description") or "").lower():
            continue
        out.append(job)
    return out
