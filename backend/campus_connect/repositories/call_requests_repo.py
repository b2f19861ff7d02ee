from __future__ import annotations

from typing import Any, Literal

from boto3.dynamodb.conditions import Key

from ..db.dynamodb.expressions import update_kwargs
from ..db.dynamodb.table import get_main_table
from ..shared.clock import new_id, now_iso
from ..shared.values import to_plain

CallRequestStatus = Literal["PENDING", "ACCEPTED", "REJECTED", "CANCELLED", "COMPLETED"]
OPEN_STATUSES: tuple[str, ...] = ("PENDING", "ACCEPTED")


def call_request_key(call_request_id: str) -> dict[str, str]:
    cid = str(call_request_id or "").strip()
    if not cid:
        raise ValueError("call_request_id is required")
    return {"pk": f"CALL_REQUEST#{cid}", "sk": "PROFILE"}


def open_guard_key(*, job_id: str, requester_id: str, receiver_id: str) -> dict[str, str]:
    """
    At most one open (PENDING/ACCEPTED) request per (job, requester, receiver).

    The guard is written with the request and deleted by whichever transition
    takes the request out of the open set.
    """
    return {"pk": f"CALL_GUARD#{job_id}#{requester_id}#{receiver_id}", "sk": "PROFILE"}


def sent_gsi_pk(requester_id: str) -> str:
    return f"CALL_REQUESTS_SENT#{requester_id}"


def received_gsi_pk(receiver_id: str) -> str:
    return f"CALL_REQUESTS_RECEIVED#{receiver_id}"


def guard_key_for(cr: dict[str, Any]) -> dict[str, str]:
    return open_guard_key(
        job_id=str(cr.get("jobId") or ""),
        requester_id=str(cr.get("requesterId") or ""),
        receiver_id=str(cr.get("receiverId") or ""),
    )


def normalize_call_request_for_api(item: dict[str, Any] | None) -> dict[str, Any] | None:
    if not item:
        return None
    obj = {k: to_plain(v) for k, v in item.items()}
    for k in ("pk", "sk", "gsi1pk", "gsi1sk", "gsi2pk", "gsi2sk", "entityType"):
        obj.pop(k, None)
    obj.setdefault("roomId", None)
    return obj


def get_call_request_item(call_request_id: str) -> dict[str, Any] | None:
    return get_main_table().get_item(key=call_request_key(call_request_id))


def get_open_request_id(*, job_id: str, requester_id: str, receiver_id: str) -> str | None:
    g = get_main_table().get_item(
        key=open_guard_key(job_id=job_id, requester_id=requester_id, receiver_id=receiver_id)
    )
    cid = str((g or {}).get("callRequestId") or "").strip()
    return cid or None


def build_call_request_items(
    *,
    job: dict[str, Any],
    requester_id: str,
    receiver_id: str,
    application_id: str | None,
    requested_time: str | None,
    message: str | None,
) -> tuple[dict[str, Any], dict[str, Any]]:
    """Returns (call request item, open-request guard item)."""
    cid = new_id("call")
    now = now_iso()
    job_id = str(job.get("jobId") or "")
    item: dict[str, Any] = {
        **call_request_key(cid),
        "entityType": "CallRequest",
        "callRequestId": cid,
        "jobId": job_id,
        "jobTitle": str(job.get("title") or ""),
        "jobOwnerId": str(job.get("createdById") or ""),
        "applicationId": application_id,
        "requesterId": requester_id,
        "receiverId": receiver_id,
        "status": "PENDING",
        "requestedTime": requested_time,
        "message": message,
        "createdAt": now,
        "updatedAt": now,
        "gsi1pk": sent_gsi_pk(requester_id),
        "gsi1sk": f"{now}#{cid}",
        "gsi2pk": received_gsi_pk(receiver_id),
        "gsi2sk": f"{now}#{cid}",
    }
    item = {k: v for k, v in item.items() if v is not None}
    guard: dict[str, Any] = {
        **open_guard_key(job_id=job_id, requester_id=requester_id, receiver_id=receiver_id),
        "entityType": "CallRequestGuard",
        "callRequestId": cid,
        "createdAt": now,
    }
    return item, guard


def tx_put_new(item: dict[str, Any]) -> dict[str, Any]:
    return get_main_table().tx_put(
        item=item,
        condition_expression="attribute_not_exists(pk) AND attribute_not_exists(sk)",
    )


def tx_transition(
    *,
    call_request_id: str,
    current: str,
    new_status: str,
    set_fields: dict[str, Any] | None = None,
    remove_fields: tuple[str, ...] = (),
) -> dict[str, Any]:
    """Conditional status change keyed on the status that was read."""
    now = now_iso()
    fields = {"status": new_status, "updatedAt": now, **(set_fields or {})}
    return get_main_table().tx_update(
        key=call_request_key(call_request_id),
        **update_kwargs(set_fields=fields, remove_fields=remove_fields, expect={"status": current}),
    )


def tx_release_guard(cr: dict[str, Any]) -> dict[str, Any]:
    return get_main_table().tx_delete(key=guard_key_for(cr))


def list_call_requests(*, profile_id: str, role: str = "all", status: str | None = None) -> list[dict[str, Any]]:
    t = get_main_table()
    r = str(role or "all").strip().lower()
    want = str(status or "").strip().upper()
    found: dict[str, dict[str, Any]] = {}
    sources: list[tuple[str, str]] = []
    if r in ("all", "sent"):
        sources.append(("GSI1", sent_gsi_pk(profile_id)))
    if r in ("all", "received"):
        sources.append(("GSI2", received_gsi_pk(profile_id)))
    for index_name, pk_value in sources:
        attr = "gsi1pk" if index_name == "GSI1" else "gsi2pk"
        for it in t.query_all(index_name=index_name, key_condition_expression=Key(attr).eq(pk_value)):
            cr = normalize_call_request_for_api(it)
            if not cr or (want and cr.get("status") != want):
                continue
            found[str(cr.get("callRequestId"))] = cr
    return sorted(found.values(), key=lambda x: str(x.get("createdAt") or ""), reverse=True)
