from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Sequence

from ...db.dynamodb.errors import DdbConflict, DdbError
from ...db.dynamodb.table import MAX_TRANSACT_ITEMS, get_main_table
from ...errors import ServiceUnavailable
from ...observability.logging import get_logger
from ...repositories import notifications_repo, outbox_repo, profiles_repo
from ...services import email_ses
from .events import NotificationEvent

log = get_logger("notification_dispatcher")

EMAIL_SEND_EVENT = "email.send"


@dataclass(slots=True)
class EmailResult:
    ok: bool
    message_id: str | None = None
    error: str | None = None
    skipped: bool = False


@dataclass(slots=True)
class DispatchResult:
    """
    Outcome of one dispatch.

    Callers branch on `notification_written` only; email problems are
    reported here and in the logs, never raised.
    """

    notification_written: bool
    notification_id: str | None = None
    email_result: EmailResult | None = None

    @property
    def email_error(self) -> str | None:
        r = self.email_result
        return r.error if r is not None and not r.ok else None

    def to_api(self) -> dict[str, Any]:
        r = self.email_result
        return {
            "notificationWritten": self.notification_written,
            "notificationId": self.notification_id,
            "emailResult": None
            if r is None
            else {"ok": r.ok, "messageId": r.message_id, "error": r.error, "skipped": r.skipped},
        }


def _items_for(events: Sequence[NotificationEvent]) -> list[dict[str, Any]]:
    return [
        notifications_repo.build_notification_item(
            recipient_id=e.recipient_id,
            type=e.type,
            title=e.title,
            body=e.body,
            link=e.link,
            subtype=e.subtype,
            metadata=e.metadata,
        )
        for e in events
    ]


def _as_unavailable(e: DdbError, *, entity: str | None, entity_id: str | None) -> ServiceUnavailable:
    return ServiceUnavailable(
        message="The store is temporarily unavailable; retry the request.",
        entity=entity,
        entity_id=entity_id,
        cause=e,
    )


def _send_email(event: NotificationEvent, *, notification_id: str | None) -> EmailResult | None:
    if not event.email_kind:
        return None

    try:
        profile = profiles_repo.get_profile(event.recipient_id)
    except DdbError as e:
        log.warning(
            "notification_email_failed",
            notification_type=event.type,
            recipient_id=event.recipient_id,
            error=f"recipient_lookup_failed: {e}",
        )
        return EmailResult(ok=False, error="recipient_lookup_failed")

    to_addr = str((profile or {}).get("email") or "").strip()
    if not to_addr:
        return EmailResult(ok=False, error="recipient_has_no_email", skipped=True)

    data = {**event.email_data, "recipientName": profiles_repo.display_name(profile)}
    res = email_ses.send_email(recipient=to_addr, template_kind=event.email_kind, template_data=data)
    if res.get("ok"):
        return EmailResult(ok=True, message_id=res.get("messageId"))

    result = EmailResult(ok=False, error=str(res.get("error") or "send_failed"), skipped=bool(res.get("skipped")))
    if result.skipped:
        return result

    log.warning(
        "notification_email_failed",
        notification_type=event.type,
        notification_id=notification_id,
        recipient_id=event.recipient_id,
        error=result.error,
    )
    try:
        outbox_repo.enqueue_event(
            event_type=EMAIL_SEND_EVENT,
            payload={
                "recipient": to_addr,
                "templateKind": event.email_kind,
                "templateData": data,
                "notificationId": notification_id,
            },
            dedupe_key=f"email_{notification_id}" if notification_id else None,
        )
    except DdbError as e:
        log.warning("notification_email_retry_enqueue_failed", notification_id=notification_id, error=str(e))
    return result


def _send_emails(events: Sequence[NotificationEvent], items: Sequence[dict[str, Any]]) -> list[DispatchResult]:
    out: list[DispatchResult] = []
    for event, item in zip(events, items):
        nid = str(item.get("notificationId"))
        out.append(
            DispatchResult(
                notification_written=True,
                notification_id=nid,
                email_result=_send_email(event, notification_id=nid),
            )
        )
    return out


def commit_transition(
    *,
    updates: Iterable[dict[str, Any]] = (),
    puts: Iterable[dict[str, Any]] = (),
    deletes: Iterable[dict[str, Any]] = (),
    events: Sequence[NotificationEvent] = (),
    entity: str | None = None,
    entity_id: str | None = None,
) -> list[DispatchResult]:
    """
    Commit a state transition together with the notifications it produces.

    State writes and notification records are one TransactWriteItems, so
    neither exists without the other. A failed guard surfaces as DdbConflict
    for the caller to re-read and classify. Emails go out after commit.
    """
    items = _items_for(events)
    try:
        notifications_repo.write_transition(updates=updates, puts=puts, deletes=deletes, notifications=items)
    except DdbConflict:
        raise
    except DdbError as e:
        raise _as_unavailable(e, entity=entity, entity_id=entity_id) from e
    return _send_emails(events, items)


def commit_fanout(
    *,
    updates: Sequence[dict[str, Any]] = (),
    events: Sequence[NotificationEvent] = (),
    compensate: Sequence[dict[str, Any]] = (),
    entity: str | None = None,
    entity_id: str | None = None,
) -> list[DispatchResult]:
    """
    Like commit_transition, for fan-outs larger than one transaction.

    The first chunk carries the state writes. When a later chunk fails,
    `compensate` (update items restoring the previous state) runs, the
    notifications already written are deleted, and ServiceUnavailable is raised.
    """
    state_writes = list(updates)
    first_cap = MAX_TRANSACT_ITEMS - len(state_writes)
    if first_cap < 1:
        raise ValueError("state writes leave no room for notifications")

    items = _items_for(events)
    first, rest = items[:first_cap], items[first_cap:]
    try:
        notifications_repo.write_transition(updates=state_writes, notifications=first)
    except DdbConflict:
        raise
    except DdbError as e:
        raise _as_unavailable(e, entity=entity, entity_id=entity_id) from e

    written = [str(it["notificationId"]) for it in first]
    for start in range(0, len(rest), MAX_TRANSACT_ITEMS):
        chunk = rest[start : start + MAX_TRANSACT_ITEMS]
        try:
            notifications_repo.write_transition(notifications=chunk)
        except DdbError as e:
            log.error(
                "notification_fanout_failed",
                entity=entity,
                entity_id=entity_id,
                written=len(written),
                total=len(items),
                error=str(e),
            )
            _compensate(compensate=compensate, written_ids=written, entity=entity, entity_id=entity_id)
            raise _as_unavailable(e, entity=entity, entity_id=entity_id) from e
        written.extend(str(it["notificationId"]) for it in chunk)

    return _send_emails(events, items)


def _compensate(
    *,
    compensate: Sequence[dict[str, Any]],
    written_ids: list[str],
    entity: str | None,
    entity_id: str | None,
) -> None:
    try:
        if compensate:
            get_main_table().transact_write(updates=list(compensate))
        notifications_repo.delete_notifications(written_ids)
    except DdbError as e:
        # Leaves the transition applied with a partial fan-out; needs an operator.
        log.error("notification_fanout_compensation_failed", entity=entity, entity_id=entity_id, error=str(e))


def dispatch(event: NotificationEvent) -> DispatchResult:
    """Standalone dispatch of one event with no accompanying state write."""
    return commit_transition(events=[event])[0]


def dispatch_best_effort(events: Sequence[NotificationEvent]) -> int:
    """
    In-app notifications not tied to a state change (match alerts).

    No email. Failures are logged and skipped. Returns the number written.
    """
    written = 0
    items = _items_for(events)
    for start in range(0, len(items), MAX_TRANSACT_ITEMS):
        chunk = items[start : start + MAX_TRANSACT_ITEMS]
        try:
            notifications_repo.write_transition(notifications=chunk)
        except DdbError as e:
            log.warning("notification_best_effort_failed", count=len(chunk), error=str(e))
            continue
        written += len(chunk)
    return written
