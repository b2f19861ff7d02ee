from __future__ import annotations

from typing import Any

from ..db.dynamodb.errors import DdbError
from ..observability.logging import configure_logging, get_logger
from ..repositories.outbox_repo import claim_event, list_due, list_stale, mark_done, mark_retry, release_stale
from ..services import email_ses
from ..shared.clock import iso_after

log = get_logger("outbox_worker")

# A claimed event whose worker has not finished within this window is
# considered abandoned. Far above the email send timeout.
LOCK_LEASE_S = 300


def dispatch_event(event: dict[str, Any]) -> dict[str, Any]:
    """Dispatch a single outbox event. Only email retries go through here today."""
    et = str(event.get("eventType") or "").strip()
    payload_raw = event.get("payload")
    payload: dict[str, Any] = payload_raw if isinstance(payload_raw, dict) else {}

    if et == "email.send":
        res = email_ses.send_email(
            recipient=str(payload.get("recipient") or ""),
            template_kind=str(payload.get("templateKind") or ""),
            template_data=payload.get("templateData") if isinstance(payload.get("templateData"), dict) else {},
        )
        # Skipped sends (email disabled, no address) will never succeed; stop retrying.
        if res.get("skipped"):
            return {"ok": True, "skipped": True, "reason": res.get("error")}
        return res

    return {"ok": False, "error": "unknown_event_type", "eventType": et}


def reclaim_stale(*, older_than: str | None = None, limit: int = 50) -> int:
    """Put events stuck in processing past the lease back in the pending queue."""
    cutoff = older_than or iso_after(-LOCK_LEASE_S)
    reclaimed = 0
    for it in list_stale(older_than=cutoff, limit=limit):
        eid = str(it.get("eventId") or "").strip()
        if eid and release_stale(event_id=eid, locked_at=str(it.get("lockedAt") or "")):
            reclaimed += 1
            log.warning("outbox_event_lock_expired", event_id=eid, locked_at=it.get("lockedAt"))
    return reclaimed


def run_once(*, limit: int = 30) -> dict[str, Any]:
    """
    Process due outbox events once. Safe to run from cron or a scheduled task.
    """
    lim = max(1, min(100, int(limit or 30)))
    reclaimed = reclaim_stale()
    scanned = 0
    processed = 0
    failed = 0

    for it in list_due(limit=lim):
        scanned += 1
        eid = str(it.get("eventId") or "").strip()
        if not eid:
            continue
        claimed = claim_event(event_id=eid)
        if not claimed:
            continue
        res = dispatch_event(claimed)
        try:
            if res.get("ok"):
                processed += 1
                mark_done(event_id=eid, result=res)
            else:
                failed += 1
                mark_retry(event_id=eid, error=str(res.get("error") or "dispatch_failed"))
        except DdbError as e:
            # The event stays in processing until its lease expires.
            log.warning("outbox_event_state_update_failed", event_id=eid, error=str(e))

    out = {"ok": True, "reclaimed": reclaimed, "scanned": scanned, "processed": processed, "failed": failed}
    log.info("outbox_run_once_done", **out)
    return out


if __name__ == "__main__":
    configure_logging(level="INFO")
    run_once(limit=30)
