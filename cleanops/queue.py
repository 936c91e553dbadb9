"""
Queue abstraction for push notification delivery.

Supports an in-memory fallback for tests/local runs and a Redis-backed
implementation for production.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Protocol

import redis
from redis import exceptions as redis_exceptions


class PushQueue(Protocol):
    """Minimal queue interface for handing notification ids to the push worker."""

    def enqueue(self, notification_id: str) -> None:
        ...

    def dequeue(self, *, block: bool = True, timeout: int | None = None) -> Optional[str]:
        ...


@dataclass
class InMemoryPushQueue:
    """Simple FIFO queue for testing/dev."""

    items: list[str] = field(default_factory=list)

    def enqueue(self, notification_id: str) -> None:
        self.items.append(notification_id)

    def dequeue(self, *, block: bool = True, timeout: int | None = None) -> Optional[str]:
        if not self.items:
            return None
        return self.items.pop(0)


@dataclass
class RedisPushQueue:
    """Redis-backed queue using list push/pop operations."""

    url: str
    queue_key: str = "cleanops:push"

    def __post_init__(self):
        self.client = redis.Redis.from_url(self.url)

    def enqueue(self, notification_id: str) -> None:
        self.client.rpush(self.queue_key, notification_id)

    def dequeue(self, *, block: bool = True, timeout: int | None = None) -> Optional[str]:
        try:
            if block:
                result = self.client.blpop(self.queue_key, timeout=timeout or 0)
                if result is None:
                    return None
                _, notification_id = result
            else:
                notification_id = self.client.lpop(self.queue_key)
                if notification_id is None:
                    return None
            return notification_id.decode("utf-8")
        except redis_exceptions.ConnectionError:
            # Managed Redis drops idle connections; reconnect and let the loop retry.
            self.client = redis.Redis.from_url(self.url)
            return None
