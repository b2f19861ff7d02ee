from __future__ import annotations

import uuid
from typing import Any

from boto3.dynamodb.conditions import Key

from ..db.dynamodb.errors import DdbConflict
from ..db.dynamodb.expressions import update_kwargs
from ..db.dynamodb.table import get_main_table
from ..shared.clock import iso_after, now_iso
from ..shared.values import to_plain

PENDING_GSI_PK = "OUTBOX#PENDING"
PROCESSING_GSI_PK = "OUTBOX#PROCESSING"


def outbox_key(event_id: str) -> dict[str, str]:
    eid = str(event_id or "").strip()
    if not eid:
        raise ValueError("event_id is required")
    return {"pk": f"OUTBOX#{eid}", "sk": "PROFILE"}


def _for_api(item: dict[str, Any] | None) -> dict[str, Any] | None:
    if not item:
        return None
    return {k: to_plain(v) for k, v in item.items() if k not in ("pk", "sk")}


def enqueue_event(
    *,
    event_type: str,
    payload: dict[str, Any],
    dedupe_key: str | None = None,
    max_attempts: int = 8,
) -> dict[str, Any]:
    """
    Enqueue an outbox event for async side effects (email retries).

    When dedupe_key is provided it becomes the event id, so retries of the same
    side effect collapse into one event.
    """
    et = str(event_type or "").strip()
    if not et:
        raise ValueError("event_type is required")
    eid = str(dedupe_key or "").strip() or ("evt_" + uuid.uuid4().hex[:18])

    now = now_iso()
    item: dict[str, Any] = {
        **outbox_key(eid),
        "entityType": "OutboxEvent",
        "eventId": eid,
        "eventType": et,
        "status": "pending",
        "attempts": 0,
        "maxAttempts": int(max_attempts),
        "nextAttemptAt": now,
        "createdAt": now,
        "updatedAt": now,
        "payload": payload if isinstance(payload, dict) else {},
        "gsi1pk": PENDING_GSI_PK,
        "gsi1sk": f"{now}#{eid}",
    }
    try:
        get_main_table().put_item(item=item, condition_expression="attribute_not_exists(pk)")
    except DdbConflict:
        return _for_api(get_main_table().get_item(key=outbox_key(eid))) or {}
    return _for_api(item) or {}


def list_due(*, limit: int = 50, now: str | None = None) -> list[dict[str, Any]]:
    """Pending events whose backoff has elapsed, oldest first."""
    cutoff = now or now_iso()
    pg = get_main_table().query_page(
        index_name="GSI1",
        key_condition_expression=Key("gsi1pk").eq(PENDING_GSI_PK),
        scan_index_forward=True,
        limit=max(1, min(200, int(limit or 50))),
    )
    return [it for it in pg.items if str(it.get("nextAttemptAt") or "") <= cutoff]


def claim_event(*, event_id: str) -> dict[str, Any] | None:
    """
    Atomically move an event from pending to processing.

    Returns None when another worker claimed it first.
    """
    now = now_iso()
    try:
        updated = get_main_table().update_item(
            key=outbox_key(event_id),
            **update_kwargs(
                set_fields={
                    "status": "processing",
                    "lockedAt": now,
                    "updatedAt": now,
                    "gsi1pk": PROCESSING_GSI_PK,
                    "gsi1sk": f"{now}#{event_id}",
                },
                expect={"status": "pending"},
            ),
        )
    except DdbConflict:
        return None
    return _for_api(updated)


def mark_done(*, event_id: str, result: dict[str, Any] | None = None) -> dict[str, Any] | None:
    updated = get_main_table().update_item(
        key=outbox_key(event_id),
        **update_kwargs(
            set_fields={"status": "done", "updatedAt": now_iso(), "result": result if isinstance(result, dict) else {}},
            remove_fields=("gsi1pk", "gsi1sk"),
        ),
    )
    return _for_api(updated)


def mark_retry(*, event_id: str, error: str) -> dict[str, Any] | None:
    """
    Put a processing event back to pending with exponential backoff, or mark it
    failed once maxAttempts is reached.
    """
    raw = get_main_table().get_item(key=outbox_key(event_id)) or {}
    attempts = int(raw.get("attempts") or 0) + 1
    max_attempts = int(raw.get("maxAttempts") or 8)
    now = now_iso()
    err = str(error or "")[:800]

    if attempts >= max_attempts:
        updated = get_main_table().update_item(
            key=outbox_key(event_id),
            **update_kwargs(
                set_fields={"status": "failed", "attempts": attempts, "lastError": err, "updatedAt": now},
                remove_fields=("gsi1pk", "gsi1sk"),
            ),
        )
        return _for_api(updated)

    # Exponential backoff capped at 5 minutes
    delay_s = min(300, int(2 ** min(10, attempts)))
    next_at = iso_after(delay_s)
    updated = get_main_table().update_item(
        key=outbox_key(event_id),
        **update_kwargs(
            set_fields={
                "status": "pending",
                "attempts": attempts,
                "lastError": err,
                "nextAttemptAt": next_at,
                "updatedAt": now,
                "gsi1pk": PENDING_GSI_PK,
                "gsi1sk": f"{next_at}#{event_id}",
            }
        ),
    )
    return _for_api(updated)


def list_stale(*, older_than: str, limit: int = 50) -> list[dict[str, Any]]:
    """Processing events locked at or before `older_than`, oldest lock first."""
    pg = get_main_table().query_page(
        index_name="GSI1",
        key_condition_expression=Key("gsi1pk").eq(PROCESSING_GSI_PK),
        scan_index_forward=True,
        limit=max(1, min(200, int(limit or 50))),
    )
    return [it for it in pg.items if str(it.get("lockedAt") or "") <= older_than]


def release_stale(*, event_id: str, locked_at: str) -> dict[str, Any] | None:
    """
    Return an abandoned processing event to pending, due immediately.

    Conditional on the lock that was read: if the owning worker finished or
    another sweep already released it, nothing changes and None is returned.
    """
    now = now_iso()
    try:
        updated = get_main_table().update_item(
            key=outbox_key(event_id),
            **update_kwargs(
                set_fields={
                    "status": "pending",
                    "nextAttemptAt": now,
                    "lastError": "lock_expired",
                    "updatedAt": now,
                    "gsi1pk": PENDING_GSI_PK,
                    "gsi1sk": f"{now}#{event_id}",
                },
                remove_fields=("lockedAt",),
                expect={"status": "processing", "lockedAt": locked_at},
            ),
        )
    except DdbConflict:
        return None
    return _for_api(updated)
