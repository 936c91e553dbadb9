"""
Notification fan-out and inbox operations.

Writes go to the `notifications` collection and each new notification id is
handed to the push queue. Fan-out never raises: callers are business
operations that must not fail because a notification could not be stored.
"""

from __future__ import annotations

import logging
import time
from typing import Optional

from cleanops.db import DbClient, DocumentRecord
from cleanops.errors import (
    ErrorCode,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from cleanops.queue import PushQueue
from cleanops.types import (
    NOTIFICATIONS,
    CurrentUser,
    NotificationStatus,
    NotificationType,
    UserRole,
)

logger = logging.getLogger(__name__)

NOTIFICATION_ACTIONS = ("mark_as_read", "archive", "approve", "reject")


class Notifier:
    def __init__(self, db: DbClient, queue: Optional[PushQueue] = None):
        self.db = db
        self.queue = queue

    def notify(
        self,
        *,
        title: str,
        message: str,
        type: NotificationType,
        recipient_role: Optional[UserRole] = None,
        recipient_id: Optional[str] = None,
        sender: Optional[CurrentUser] = None,
        related_entity_id: Optional[str] = None,
        related_entity_type: Optional[str] = None,
        related_entity_name: Optional[str] = None,
        action_required: bool = False,
        priority: str = "normal",
        link: Optional[str] = None,
    ) -> Optional[str]:
        payload = {
            "title": title,
            "message": message,
            "type": NotificationType(type).value,
            "priority": priority,
            "recipient_role": recipient_role.value if recipient_role else None,
            "recipient_id": recipient_id,
            "sender_id": sender.id if sender else "system",
            "sender_name": sender.display_name if sender else "System",
            "related_entity_id": related_entity_id,
            "related_entity_type": related_entity_type,
            "related_entity_name": related_entity_name,
            "action_required": action_required,
            "action_status": "PENDING" if action_required else None,
            "link": link,
            "status": NotificationStatus.UNREAD.value,
            "created_at": time.time(),
        }
        try:
            record = self.db.add(NOTIFICATIONS, payload)
        except Exception:
            logger.exception("Failed to store %s notification", payload["type"])
            return None
        if self.queue is not None:
            try:
                self.queue.enqueue(record.id)
            except Exception:
                logger.exception("Failed to enqueue push for notification %s", record.id)
        return record.id

    def notify_role(self, role: UserRole, **kwargs) -> Optional[str]:
        return self.notify(recipient_role=role, **kwargs)

    def notify_user(self, user_id: Optional[str], **kwargs) -> Optional[str]:
        if not user_id:
            return None
        return self.notify(recipient_id=user_id, **kwargs)

    def notify_admins(self, **kwargs) -> Optional[str]:
        return self.notify_role(UserRole.ADMIN, **kwargs)


def is_visible_to(data: dict, user: CurrentUser) -> bool:
    if data.get("recipient_id") == user.id:
        return True
    if data.get("recipient_role") != user.role.value:
        return False
    return user.is_admin or not data.get("recipient_id")


def list_for_user(
    db: DbClient,
    user: CurrentUser,
    *,
    unread_only: bool = False,
    action_required: Optional[bool] = None,
    include_archived: bool = False,
    limit: int = 50,
) -> list[DocumentRecord]:
    records = db.query(NOTIFICATIONS, order_by="created_at", descending=True)
    results = []
    for record in records:
        data = record.data
        if not is_visible_to(data, user):
            continue
        status = data.get("status")
        if not include_archived and status == NotificationStatus.ARCHIVED.value:
            continue
        if unread_only and status != NotificationStatus.UNREAD.value:
            continue
        if action_required is not None and bool(data.get("action_required")) != action_required:
            continue
        results.append(record)
        if len(results) >= limit:
            break
    return results


def count_unread(db: DbClient, user: CurrentUser) -> int:
    return len(list_for_user(db, user, unread_only=True, limit=10_000))


def _load_visible(db: DbClient, notification_id: str, user: CurrentUser) -> DocumentRecord:
    record = db.get(NOTIFICATIONS, notification_id)
    if not record:
        raise NotFoundError(ErrorCode.NOTIFICATION_NOT_FOUND, "Notification not found")
    if not is_visible_to(record.data, user):
        raise PermissionDeniedError("Notification belongs to another user")
    return record


def apply_action(
    db: DbClient, notification_id: str, action: str, user: CurrentUser
) -> DocumentRecord:
    if action not in NOTIFICATION_ACTIONS:
        raise ValidationError(f"Unknown action: {action}")
    record = _load_visible(db, notification_id, user)
    now = time.time()
    if action == "mark_as_read":
        changes = {"status": NotificationStatus.READ.value, "read_at": now}
    elif action == "archive":
        changes = {"status": NotificationStatus.ARCHIVED.value, "archived_at": now}
    else:
        if not user.is_admin:
            raise PermissionDeniedError("Only admins can approve or reject")
        changes = {
            "action_status": "APPROVED" if action == "approve" else "REJECTED",
            "action_by": user.id,
            "action_at": now,
            "status": NotificationStatus.READ.value,
            "read_at": record.data.get("read_at") or now,
        }
    return db.update(NOTIFICATIONS, notification_id, changes)


def mark_all_read(db: DbClient, user: CurrentUser) -> int:
    now = time.time()
    updated = 0
    for record in list_for_user(db, user, unread_only=True, limit=10_000):
        db.update(
            NOTIFICATIONS,
            record.id,
            {"status": NotificationStatus.READ.value, "read_at": now},
        )
        updated += 1
    return updated


def delete_notification(db: DbClient, notification_id: str, user: CurrentUser) -> None:
    _load_visible(db, notification_id, user)
    db.delete(NOTIFICATIONS, notification_id)
