from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from ..modules.identity.actor import Actor, current_actor
from ..modules.notifications import inbox

router = APIRouter(tags=["notifications"])


@router.get("")
def list_notifications(
    limit: int = Query(default=50, ge=1, le=200),
    unread: bool = False,
    actor: Actor = Depends(current_actor),
):
    return inbox.list_inbox(actor=actor, limit=limit, unread_only=unread)


@router.patch("")
def mark_all_read(actor: Actor = Depends(current_actor)):
    return {"ok": True, "updated": inbox.mark_all_read(actor=actor)}


@router.delete("")
def delete_read(actor: Actor = Depends(current_actor)):
    return {"ok": True, "deleted": inbox.delete_read(actor=actor)}


@router.patch("/{notificationId}")
def mark_read(notificationId: str, actor: Actor = Depends(current_actor)):
    return {"notification": inbox.mark_read(notification_id=notificationId, actor=actor)}


@router.delete("/{notificationId}")
def delete_notification(notificationId: str, actor: Actor = Depends(current_actor)):
    inbox.delete(notification_id=notificationId, actor=actor)
    return {"ok": True}
