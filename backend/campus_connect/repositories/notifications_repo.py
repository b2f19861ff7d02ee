from __future__ import annotations

from typing import Any, Iterable

from boto3.dynamodb.conditions import Key

from ..db.dynamodb.errors import DdbConflict
from ..db.dynamodb.expressions import condition_kwargs, update_kwargs
from ..db.dynamodb.table import MAX_TRANSACT_ITEMS, get_main_table
from ..shared.clock import new_id, now_iso
from ..shared.values import to_plain


def notification_key(notification_id: str) -> dict[str, str]:
    nid = str(notification_id or "").strip()
    if not nid:
        raise ValueError("notification_id is required")
    return {"pk": f"NOTIFICATION#{nid}", "sk": "PROFILE"}


def inbox_gsi_pk(recipient_id: str) -> str:
    return f"NOTIFICATIONS#{recipient_id}"


def normalize_notification_for_api(item: dict[str, Any] | None) -> dict[str, Any] | None:
    if not item:
        return None
    obj = {k: to_plain(v) for k, v in item.items()}
    for k in ("pk", "sk", "gsi1pk", "gsi1sk", "entityType"):
        obj.pop(k, None)
    obj["isRead"] = bool(obj.get("isRead"))
    return obj


def build_notification_item(
    *,
    recipient_id: str,
    type: str,
    title: str,
    body: str,
    link: str | None = None,
    subtype: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> dict[str, Any]:
    nid = new_id("ntf")
    now = now_iso()
    item: dict[str, Any] = {
        **notification_key(nid),
        "entityType": "Notification",
        "notificationId": nid,
        "recipientId": recipient_id,
        "type": type,
        "subtype": subtype,
        "title": title,
        "body": body,
        "link": link,
        "isRead": False,
        "metadata": metadata or {},
        "createdAt": now,
        "gsi1pk": inbox_gsi_pk(recipient_id),
        "gsi1sk": f"{now}#{nid}",
    }
    return {k: v for k, v in item.items() if v is not None}


def tx_put_notification(item: dict[str, Any]) -> dict[str, Any]:
    return get_main_table().tx_put(item=item, condition_expression="attribute_not_exists(pk)")


def write_transition(
    *,
    updates: Iterable[dict[str, Any]] = (),
    puts: Iterable[dict[str, Any]] = (),
    deletes: Iterable[dict[str, Any]] = (),
    notifications: Iterable[dict[str, Any]] = (),
) -> None:
    """
    One TransactWriteItems: entity state writes plus the in-app notifications
    they produce. Either everything lands or nothing does.
    """
    t = get_main_table()
    t.transact_write(
        updates=list(updates),
        puts=[*puts, *[tx_put_notification(n) for n in notifications]],
        deletes=list(deletes),
    )


def delete_notifications(notification_ids: Iterable[str]) -> None:
    t = get_main_table()
    ids = [i for i in notification_ids if i]
    for start in range(0, len(ids), MAX_TRANSACT_ITEMS):
        chunk = ids[start : start + MAX_TRANSACT_ITEMS]
        t.transact_write(deletes=[t.tx_delete(key=notification_key(i)) for i in chunk])


def get_notification_item(notification_id: str) -> dict[str, Any] | None:
    return get_main_table().get_item(key=notification_key(notification_id))


def _inbox_items(recipient_id: str, *, max_items: int | None = None) -> Iterable[dict[str, Any]]:
    return get_main_table().query_all(
        index_name="GSI1",
        key_condition_expression=Key("gsi1pk").eq(inbox_gsi_pk(recipient_id)),
        scan_index_forward=False,
        max_items=max_items,
    )


def list_notifications(*, recipient_id: str, limit: int = 50, unread_only: bool = False) -> list[dict[str, Any]]:
    lim = max(1, min(200, int(limit or 50)))
    out: list[dict[str, Any]] = []
    for it in _inbox_items(recipient_id):
        if unread_only and bool(it.get("isRead")):
            continue
        n = normalize_notification_for_api(it)
        if n:
            out.append(n)
        if len(out) >= lim:
            break
    return out


def count_unread(*, recipient_id: str) -> int:
    return sum(1 for it in _inbox_items(recipient_id) if not bool(it.get("isRead")))


def mark_read(*, notification_id: str, recipient_id: str) -> dict[str, Any] | None:
    updated = get_main_table().update_item(
        key=notification_key(notification_id),
        **update_kwargs(
            set_fields={"isRead": True, "readAt": now_iso()},
            expect={"recipientId": recipient_id},
        ),
    )
    return normalize_notification_for_api(updated)


def mark_all_read(*, recipient_id: str) -> int:
    """Mark every unread inbox row read; rows deleted mid-sweep are skipped."""
    t = get_main_table()
    now = now_iso()
    count = 0
    for it in list(_inbox_items(recipient_id)):
        if bool(it.get("isRead")):
            continue
        nid = str(it.get("notificationId"))
        try:
            t.update_item(
                key=notification_key(nid),
                **update_kwargs(set_fields={"isRead": True, "readAt": now}, expect={"recipientId": recipient_id}),
            )
        except DdbConflict:
            # Deleted by a concurrent request after the inbox read.
            continue
        count += 1
    return count


def delete_notification(*, notification_id: str, recipient_id: str) -> None:
    get_main_table().delete_item(
        key=notification_key(notification_id),
        **condition_kwargs(expect={"recipientId": recipient_id}),
    )


def delete_read(*, recipient_id: str) -> int:
    read_ids = [str(it.get("notificationId")) for it in _inbox_items(recipient_id) if bool(it.get("isRead"))]
    count = 0
    for nid in read_ids:
        try:
            delete_notification(notification_id=nid, recipient_id=recipient_id)
        except DdbConflict:
            continue
        count += 1
    return count
