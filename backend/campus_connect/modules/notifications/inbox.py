from __future__ import annotations

from typing import Any

from ...db.dynamodb.errors import DdbConflict
from ...errors import Forbidden, NotFound
from ...repositories import notifications_repo
from ..identity.actor import Actor


def _load_owned(notification_id: str, actor: Actor) -> dict[str, Any]:
    item = notifications_repo.get_notification_item(notification_id)
    if not item:
        raise NotFound(message="Notification not found", entity="notification", entity_id=notification_id)
    if str(item.get("recipientId") or "") != actor.profile_id:
        raise Forbidden(message="Not your notification", entity="notification", entity_id=notification_id)
    return item


def list_inbox(*, actor: Actor, limit: int = 50, unread_only: bool = False) -> dict[str, Any]:
    return {
        "notifications": notifications_repo.list_notifications(
            recipient_id=actor.profile_id, limit=limit, unread_only=unread_only
        ),
        "unreadCount": notifications_repo.count_unread(recipient_id=actor.profile_id),
    }


def mark_read(*, notification_id: str, actor: Actor) -> dict[str, Any]:
    _load_owned(notification_id, actor)
    try:
        updated = notifications_repo.mark_read(notification_id=notification_id, recipient_id=actor.profile_id)
    except DdbConflict:
        raise NotFound(message="Notification not found", entity="notification", entity_id=notification_id)
    return updated or {}


def mark_all_read(*, actor: Actor) -> int:
    return notifications_repo.mark_all_read(recipient_id=actor.profile_id)


def delete(*, notification_id: str, actor: Actor) -> None:
    _load_owned(notification_id, actor)
    try:
        notifications_repo.delete_notification(notification_id=notification_id, recipient_id=actor.profile_id)
    except DdbConflict:
        raise NotFound(message="Notification not found", entity="notification", entity_id=notification_id)


def delete_read(*, actor: Actor) -> int:
    return notifications_repo.delete_read(recipient_id=actor.profile_id)
