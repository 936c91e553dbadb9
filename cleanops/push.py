"""
Push delivery backends used by the notification worker.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional, Protocol

import firebase_admin
from firebase_admin import credentials, messaging

logger = logging.getLogger(__name__)


@dataclass
class PushResult:
    success_count: int = 0
    failure_count: int = 0
    invalid_tokens: list[str] = field(default_factory=list)


class PushSender(Protocol):
    def send(
        self, tokens: list[str], title: str, body: str, data: dict[str, str]
    ) -> PushResult:
        ...


@dataclass
class LoggingPushSender:
    """Development sender that records pushes instead of delivering them."""

    sent: list[dict] = field(default_factory=list)

    def send(
        self, tokens: list[str], title: str, body: str, data: dict[str, str]
    ) -> PushResult:
        self.sent.append({"tokens": list(tokens), "title": title, "body": body, "data": data})
        logger.info("Push to %d device(s): %s", len(tokens), title)
        return PushResult(success_count=len(tokens))


class FirebasePushSender:
    """Delivers pushes through Firebase Cloud Messaging."""

    def __init__(self, credentials_path: Optional[str] = None):
        try:
            self.app = firebase_admin.get_app()
        except ValueError:
            cred = credentials.Certificate(credentials_path) if credentials_path else None
            self.app = firebase_admin.initialize_app(cred)

    def send(
        self, tokens: list[str], title: str, body: str, data: dict[str, str]
    ) -> PushResult:
        if not tokens:
            return PushResult()
        message = messaging.MulticastMessage(
            tokens=tokens,
            notification=messaging.Notification(title=title, body=body),
            data=data,
        )
        response = messaging.send_each_for_multicast(message, app=self.app)
        invalid = [
            token
            for token, item in zip(tokens, response.responses)
            if not item.success
            and isinstance(item.exception, messaging.UnregisteredError)
        ]
        return PushResult(
            success_count=response.success_count,
            failure_count=response.failure_count,
            invalid_tokens=invalid,
        )
