"""
Dependency wiring for the FastAPI app.
"""

from __future__ import annotations

from typing import Optional

from fastapi import Cookie, Depends, Header

from cleanops.auth import resolve_user
from cleanops.config import get_settings
from cleanops.db import DbClient, InMemoryDbClient, PostgresDbClient
from cleanops.errors import PermissionDeniedError
from cleanops.notifications import Notifier
from cleanops.queue import InMemoryPushQueue, PushQueue, RedisPushQueue
from cleanops.storage import InMemoryStorageClient, S3StorageClient, StorageClient
from cleanops.types import CurrentUser

_db_client: DbClient | None = None
_storage_client: StorageClient | None = None
_queue_client: PushQueue | None = None


def get_db_client() -> DbClient:
    """
    Return a singleton DB client so documents and listeners persist across requests.
    """
    global _db_client
    if _db_client:
        return _db_client

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.database_url:
        _db_client = InMemoryDbClient()
    else:
        _db_client = PostgresDbClient(settings.database_url)
    return _db_client


def get_storage_client() -> StorageClient:
    global _storage_client
    if _storage_client:
        return _storage_client

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.s3_bucket:
        _storage_client = InMemoryStorageClient()
    else:
        _storage_client = S3StorageClient(
            bucket=settings.s3_bucket,
            region=settings.s3_region or "",
            endpoint=settings.s3_endpoint or "",
            access_key_id=settings.aws_access_key_id or "",
            secret_access_key=settings.aws_secret_access_key or "",
            public_base_url=settings.s3_public_base_url,
        )
    return _storage_client


def get_queue_client() -> PushQueue:
    """
    Return a singleton queue client for handing notifications to the push worker.
    """
    global _queue_client
    if _queue_client:
        return _queue_client

    settings = get_settings()
    if settings.redis_url and not settings.use_in_memory_backends:
        _queue_client = RedisPushQueue(
            url=settings.redis_url,
            queue_key=settings.redis_queue_key,
        )
    else:
        _queue_client = InMemoryPushQueue()
    return _queue_client


def get_notifier(
    db: DbClient = Depends(get_db_client),
    queue: PushQueue = Depends(get_queue_client),
) -> Notifier:
    return Notifier(db, queue)


def get_current_user(
    firebase_user: Optional[str] = Cookie(default=None, alias="firebase-user"),
    x_user: Optional[str] = Header(default=None, alias="X-User"),
) -> CurrentUser:
    return resolve_user(firebase_user, x_user)


def require_admin(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    if not user.is_admin:
        raise PermissionDeniedError("Admin access required")
    return user
