"""
Live views over a collection that merge server snapshots with local edits.

A ``LiveView`` is fed by ``DbClient.subscribe``. Local edits are applied
optimistically and kept field by field until the server confirms them, the
server reports a newer write, or the edit expires. Until then the local value
wins, so a late snapshot cannot clobber what the user just changed.
"""

from __future__ import annotations

import copy
import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from cleanops.config import get_settings
from cleanops.db import ChangeEvent, DbClient
from cleanops.lifecycle import parse_status
from cleanops.types import CLEANINGS, ORDERS, CleaningStatus, OrderStatus

logger = logging.getLogger(__name__)

Transform = Callable[[dict], dict]
Predicate = Callable[[dict], bool]
SortKey = Callable[[dict], Any]

DEFAULT_EDIT_TTL = 30.0


@dataclass
class PendingEdit:
    value: Any
    at: float


class LiveView:
    def __init__(
        self,
        collection: str,
        transform: Optional[Transform] = None,
        keep: Optional[Predicate] = None,
        sort_key: Optional[SortKey] = None,
        *,
        descending: bool = False,
        edit_ttl: float = DEFAULT_EDIT_TTL,
        clock: Callable[[], float] = time.time,
    ):
        self.collection = collection
        self.transform = transform
        self.keep = keep
        self.sort_key = sort_key
        self.descending = descending
        self.edit_ttl = edit_ttl
        self.clock = clock
        self._server: dict[str, dict] = {}
        self._server_time: dict[str, float] = {}
        self._pending: dict[str, dict[str, PendingEdit]] = {}
        self._lock = threading.RLock()
        self._unsubscribe: Optional[Callable[[], None]] = None

    def attach(self, db: DbClient) -> "LiveView":
        self._unsubscribe = db.subscribe(self.collection, self.apply_event)
        return self

    def close(self) -> None:
        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None

    def apply_event(self, event: ChangeEvent) -> None:
        with self._lock:
            if event.kind == "removed":
                self._server.pop(event.doc_id, None)
                self._server_time.pop(event.doc_id, None)
                self._pending.pop(event.doc_id, None)
                return
            data = copy.deepcopy(event.data or {})
            self._server[event.doc_id] = data
            server_time = data.get("updated_at")
            if not isinstance(server_time, (int, float)):
                server_time = event.timestamp
            self._server_time[event.doc_id] = server_time
            self._prune(event.doc_id)

    def apply_local(self, doc_id: str, changes: dict) -> dict:
        now = self.clock()
        with self._lock:
            pending = self._pending.setdefault(doc_id, {})
            for name, value in changes.items():
                pending[name] = PendingEdit(copy.deepcopy(value), now)
            return self._merged(doc_id)

    def discard_local(self, doc_id: str) -> Optional[dict]:
        with self._lock:
            self._pending.pop(doc_id, None)
            return self._merged(doc_id) if doc_id in self._server else None

    def pending_fields(self, doc_id: str) -> set[str]:
        with self._lock:
            self._prune(doc_id)
            return set(self._pending.get(doc_id, {}))

    def document(self, doc_id: str) -> Optional[dict]:
        with self._lock:
            self._prune(doc_id)
            if doc_id not in self._server and doc_id not in self._pending:
                return None
            return self._merged(doc_id)

    def snapshot(self) -> list[dict]:
        with self._lock:
            ids = set(self._server) | set(self._pending)
            for doc_id in ids:
                self._prune(doc_id)
            docs = [
                self._merged(doc_id)
                for doc_id in ids
                if doc_id in self._server or doc_id in self._pending
            ]
        if self.transform:
            docs = [self.transform(doc) for doc in docs]
        if self.keep:
            docs = [doc for doc in docs if self.keep(doc)]
        if self.sort_key:
            present = [doc for doc in docs if self.sort_key(doc) is not None]
            absent = [doc for doc in docs if self.sort_key(doc) is None]
            present.sort(key=self.sort_key, reverse=self.descending)
            docs = present + absent
        return docs

    def _prune(self, doc_id: str) -> None:
        pending = self._pending.get(doc_id)
        if not pending:
            return
        server = self._server.get(doc_id)
        server_time = self._server_time.get(doc_id)
        now = self.clock()
        for name in list(pending):
            edit = pending[name]
            if server is not None and name in server and server[name] == edit.value:
                del pending[name]
            elif server_time is not None and server_time > edit.at:
                logger.debug("Server overrode local %s on %s/%s", name, self.collection, doc_id)
                del pending[name]
            elif now - edit.at > self.edit_ttl:
                del pending[name]
        if not pending:
            del self._pending[doc_id]

    def _merged(self, doc_id: str) -> dict:
        merged = copy.deepcopy(self._server.get(doc_id, {}))
        for name, edit in self._pending.get(doc_id, {}).items():
            merged[name] = copy.deepcopy(edit.value)
        merged["id"] = doc_id
        return merged


def dedupe_operators(doc: dict) -> dict:
    seen = set()
    operators = []
    for operator in doc.get("operators") or []:
        operator_id = operator.get("id")
        if not operator_id or operator_id in seen:
            continue
        seen.add(operator_id)
        operators.append(operator)
    return {**doc, "operators": operators}


def _iso(value: Any) -> Any:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc).isoformat()
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).isoformat()
    return value


def normalize_timestamps(doc: dict) -> dict:
    return {
        name: _iso(value) if name.endswith("_at") else value
        for name, value in doc.items()
    }


def normalize_cleaning(doc: dict) -> dict:
    doc = normalize_timestamps(dedupe_operators(doc))
    doc["status"] = parse_status(doc.get("status")).value
    return doc


def _edit_ttl(edit_ttl: Optional[float]) -> float:
    return edit_ttl if edit_ttl is not None else get_settings().local_edit_ttl_seconds


def cleanings_view(db: DbClient, edit_ttl: Optional[float] = None) -> LiveView:
    return LiveView(
        CLEANINGS,
        transform=normalize_cleaning,
        sort_key=lambda doc: doc.get("scheduled_date"),
        descending=True,
        edit_ttl=_edit_ttl(edit_ttl),
    ).attach(db)


def orders_view(db: DbClient, edit_ttl: Optional[float] = None) -> LiveView:
    return LiveView(
        ORDERS,
        transform=normalize_timestamps,
        keep=lambda doc: doc.get("status") != OrderStatus.CANCELLED.value,
        sort_key=lambda doc: doc.get("scheduled_date"),
        edit_ttl=_edit_ttl(edit_ttl),
    ).attach(db)


def dashboard_counts(cleanings: list[dict]) -> dict[str, int]:
    counts = {"pending": 0, "in_progress": 0, "completed": 0, "total": len(cleanings)}
    for cleaning in cleanings:
        status = parse_status(cleaning.get("status"))
        if status in (CleaningStatus.SCHEDULED, CleaningStatus.ASSIGNED):
            counts["pending"] += 1
        elif status == CleaningStatus.IN_PROGRESS:
            counts["in_progress"] += 1
        elif status == CleaningStatus.COMPLETED:
            counts["completed"] += 1
    return counts
