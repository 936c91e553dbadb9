"""
Push worker: delivers queued notifications to the recipients' devices.
"""

from __future__ import annotations

import logging
import time
from typing import Optional

from cleanops.config import get_settings
from cleanops.db import DbClient, DocumentRecord
from cleanops.dependencies import get_db_client, get_queue_client
from cleanops.push import FirebasePushSender, LoggingPushSender, PushSender
from cleanops.queue import PushQueue
from cleanops.types import NOTIFICATIONS, USERS

logger = logging.getLogger(__name__)


def recipients(db: DbClient, notification: dict) -> list[DocumentRecord]:
    recipient_id = notification.get("recipient_id")
    if recipient_id:
        user = db.get(USERS, recipient_id)
        return [user] if user else []
    role = notification.get("recipient_role")
    if role:
        return db.query(USERS, [("role", "==", role)])
    return []


def _drop_invalid_tokens(db: DbClient, users: list[DocumentRecord], invalid: list[str]) -> None:
    bad = set(invalid)
    for user in users:
        tokens = user.data.get("push_tokens") or []
        kept = [t for t in tokens if t not in bad]
        if len(kept) != len(tokens):
            db.update(USERS, user.id, {"push_tokens": kept})


def deliver(db: DbClient, sender: PushSender, notification_id: str) -> bool:
    record = db.get(NOTIFICATIONS, notification_id)
    if not record:
        logger.warning("Received notification %s from queue but no record found", notification_id)
        return False
    users = recipients(db, record.data)
    tokens = sorted({t for u in users for t in u.data.get("push_tokens") or []})
    data = {
        "notification_id": notification_id,
        "type": str(record.data.get("type") or ""),
        "related_entity_id": str(record.data.get("related_entity_id") or ""),
        "link": str(record.data.get("link") or ""),
    }
    result = sender.send(tokens, record.data.get("title") or "", record.data.get("message") or "", data)
    if result.invalid_tokens:
        _drop_invalid_tokens(db, users, result.invalid_tokens)
    db.update(
        NOTIFICATIONS,
        notification_id,
        {"push_sent_at": time.time(), "push_delivered": result.success_count > 0},
    )
    logger.info(
        "Push for notification %s: %d sent, %d failed",
        notification_id,
        result.success_count,
        result.failure_count,
    )
    return True


def process_next(
    *,
    db: Optional[DbClient] = None,
    queue: Optional[PushQueue] = None,
    sender: Optional[PushSender] = None,
    block: bool = True,
    timeout: Optional[int] = None,
) -> bool:
    """
    Fetch and deliver one notification from the queue. Returns False when the queue is empty.
    """
    db = db or get_db_client()
    queue = queue or get_queue_client()
    sender = sender or LoggingPushSender()

    notification_id = queue.dequeue(block=block, timeout=timeout)
    if not notification_id:
        return False
    try:
        deliver(db, sender, notification_id)
    except Exception:
        logger.exception("Push delivery failed for notification %s", notification_id)
    return True


def build_sender() -> PushSender:
    settings = get_settings()
    if settings.use_in_memory_backends:
        return LoggingPushSender()
    return FirebasePushSender(settings.firebase_credentials_path)


def run_loop(poll_interval_seconds: float = 2.0) -> None:
    """
    Blocking loop over the push queue. Intended to be run under systemd/supervisor.
    """
    db = get_db_client()
    queue = get_queue_client()
    sender = build_sender()
    while True:
        processed = process_next(
            db=db, queue=queue, sender=sender, block=True, timeout=int(poll_interval_seconds)
        )
        if not processed:
            time.sleep(poll_interval_seconds)


if __name__ == "__main__":
    logging.basicConfig(level=get_settings().log_level)
    run_loop()
