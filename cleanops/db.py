"""
Document store abstraction for SQL databases and an in-memory test implementation.

Documents are schema-less JSON objects grouped in named collections. Both
implementations support collection-scoped CRUD, query-by-field and realtime
change subscription for listeners in the same process.
"""

from __future__ import annotations

import copy
import logging
import threading
import time
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, Optional, Protocol, Sequence

from sqlalchemy import JSON, Column, Float, String, create_engine, select
from sqlalchemy.orm import Session, declarative_base, sessionmaker

logger = logging.getLogger(__name__)

Filter = tuple[str, str, Any]


class DbClient(Protocol):
    """Interface for document access."""

    def add(
        self, collection: str, data: dict, doc_id: str | None = None
    ) -> "DocumentRecord":
        ...

    def get(self, collection: str, doc_id: str) -> Optional["DocumentRecord"]:
        ...

    def set(self, collection: str, doc_id: str, data: dict) -> "DocumentRecord":
        ...

    def update(
        self, collection: str, doc_id: str, changes: dict
    ) -> Optional["DocumentRecord"]:
        ...

    def increment(
        self, collection: str, doc_id: str, field_name: str, amount: float
    ) -> "DocumentRecord":
        ...

    def delete(self, collection: str, doc_id: str) -> bool:
        ...

    def query(
        self,
        collection: str,
        where: Iterable[Filter] = (),
        *,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list["DocumentRecord"]:
        ...

    def subscribe(
        self, collection: str, listener: "Listener"
    ) -> Callable[[], None]:
        ...


@dataclass
class DocumentRecord:
    id: str
    collection: str
    data: dict
    created_at: float = field(default_factory=lambda: time.time())
    updated_at: float = field(default_factory=lambda: time.time())

    def as_dict(self) -> dict:
        return {"id": self.id, **self.data}


@dataclass
class ChangeEvent:
    kind: str  # added | modified | removed
    collection: str
    doc_id: str
    data: Optional[dict]
    timestamp: float


Listener = Callable[[ChangeEvent], None]


def get_field(data: dict, path: str, default: Any = None) -> Any:
    """Resolve a dotted field path inside a document."""
    current: Any = data
    for part in path.split("."):
        if not isinstance(current, dict) or part not in current:
            return default
        current = current[part]
    return current


def _compare(value: Any, op: str, expected: Any) -> bool:
    if op == "==":
        return value == expected
    if op == "!=":
        return value != expected
    if op == "in":
        return value in expected
    if op == "not_in":
        return value not in expected
    if op == "array_contains":
        return isinstance(value, list) and expected in value
    if value is None:
        return False
    try:
        if op == "<":
            return value < expected
        if op == "<=":
            return value <= expected
        if op == ">":
            return value > expected
        if op == ">=":
            return value >= expected
    except TypeError:
        return False
    raise ValueError(f"Unsupported query operator: {op}")


def matches(data: dict, where: Iterable[Filter]) -> bool:
    for path, op, expected in where:
        if not _compare(get_field(data, path), op, expected):
            return False
    return True


def _order_records(
    records: list[DocumentRecord],
    order_by: str | None,
    descending: bool,
    limit: int | None,
) -> list[DocumentRecord]:
    if order_by:
        present = [r for r in records if get_field(r.data, order_by) is not None]
        absent = [r for r in records if get_field(r.data, order_by) is None]
        present.sort(key=lambda r: get_field(r.data, order_by), reverse=descending)
        records = present + absent
    if limit is not None:
        records = records[:limit]
    return records


class _ListenerRegistry:
    """Same-process change fan-out shared by both store implementations."""

    def _init_listeners(self) -> None:
        self._listeners: Dict[str, list[Listener]] = defaultdict(list)
        self._listeners_lock = threading.Lock()

    def subscribe(self, collection: str, listener: Listener) -> Callable[[], None]:
        # Registered before the snapshot so writes made meanwhile are streamed.
        with self._listeners_lock:
            self._listeners[collection].append(listener)
        for record in self.query(collection):
            self._deliver(
                listener,
                ChangeEvent(
                    kind="added",
                    collection=collection,
                    doc_id=record.id,
                    data=copy.deepcopy(record.data),
                    timestamp=record.updated_at,
                ),
            )

        def unsubscribe() -> None:
            with self._listeners_lock:
                if listener in self._listeners[collection]:
                    self._listeners[collection].remove(listener)

        return unsubscribe

    def _emit(
        self,
        kind: str,
        collection: str,
        doc_id: str,
        data: Optional[dict],
        timestamp: float,
    ) -> None:
        with self._listeners_lock:
            listeners = list(self._listeners.get(collection, ()))
        for listener in listeners:
            event = ChangeEvent(
                kind=kind,
                collection=collection,
                doc_id=doc_id,
                data=copy.deepcopy(data),
                timestamp=timestamp,
            )
            self._deliver(listener, event)

    @staticmethod
    def _deliver(listener: Listener, event: ChangeEvent) -> None:
        try:
            listener(event)
        except Exception:
            logger.exception(
                "Realtime listener failed for %s/%s", event.collection, event.doc_id
            )


class InMemoryDbClient(_ListenerRegistry):
    """Simple in-memory document store for development and tests."""

    def __init__(self):
        self.collections: Dict[str, Dict[str, DocumentRecord]] = defaultdict(dict)
        self._lock = threading.RLock()
        self._init_listeners()

    @staticmethod
    def _copy(record: DocumentRecord) -> DocumentRecord:
        return DocumentRecord(
            id=record.id,
            collection=record.collection,
            data=copy.deepcopy(record.data),
            created_at=record.created_at,
            updated_at=record.updated_at,
        )

    def reset(self) -> None:
        """Clear all stored data and listeners (useful in tests)."""
        with self._lock:
            self.collections.clear()
        with self._listeners_lock:
            self._listeners.clear()

    def add(
        self, collection: str, data: dict, doc_id: str | None = None
    ) -> DocumentRecord:
        doc_id = doc_id or uuid.uuid4().hex
        return self.set(collection, doc_id, data)

    def get(self, collection: str, doc_id: str) -> Optional[DocumentRecord]:
        with self._lock:
            record = self.collections[collection].get(doc_id)
            return self._copy(record) if record else None

    def set(self, collection: str, doc_id: str, data: dict) -> DocumentRecord:
        now = time.time()
        with self._lock:
            existing = self.collections[collection].get(doc_id)
            record = DocumentRecord(
                id=doc_id,
                collection=collection,
                data=copy.deepcopy(data),
                created_at=existing.created_at if existing else now,
                updated_at=now,
            )
            self.collections[collection][doc_id] = record
            result = self._copy(record)
        self._emit(
            "modified" if existing else "added", collection, doc_id, result.data, now
        )
        return result

    def update(
        self, collection: str, doc_id: str, changes: dict
    ) -> Optional[DocumentRecord]:
        now = time.time()
        with self._lock:
            record = self.collections[collection].get(doc_id)
            if not record:
                return None
            record.data.update(copy.deepcopy(changes))
            record.updated_at = now
            result = self._copy(record)
        self._emit("modified", collection, doc_id, result.data, now)
        return result

    def increment(
        self, collection: str, doc_id: str, field_name: str, amount: float
    ) -> DocumentRecord:
        with self._lock:
            record = self.collections[collection].get(doc_id)
            data = copy.deepcopy(record.data) if record else {}
            data[field_name] = (data.get(field_name) or 0) + amount
            return self.set(collection, doc_id, data)

    def delete(self, collection: str, doc_id: str) -> bool:
        with self._lock:
            record = self.collections[collection].pop(doc_id, None)
        if record is None:
            return False
        self._emit("removed", collection, doc_id, None, time.time())
        return True

    def query(
        self,
        collection: str,
        where: Iterable[Filter] = (),
        *,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[DocumentRecord]:
        where = list(where)
        with self._lock:
            records = [
                self._copy(r)
                for r in self.collections[collection].values()
                if matches(r.data, where)
            ]
        return _order_records(records, order_by, descending, limit)


class PostgresDbClient(_ListenerRegistry):
    """
    SQLAlchemy-backed implementation. Accepts any SQLAlchemy URL (e.g., Postgres or SQLite for tests).
    """

    def __init__(self, database_url: str):
        if not database_url:
            raise ValueError("DATABASE_URL is required for PostgresDbClient")
        self.engine = create_engine(
            database_url,
            future=True,
            pool_pre_ping=True,
            pool_recycle=1800,
        )
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        Base.metadata.create_all(self.engine)
        self._init_listeners()

    @staticmethod
    def _to_record(row: "DocumentRow") -> DocumentRecord:
        return DocumentRecord(
            id=row.id,
            collection=row.collection,
            data=copy.deepcopy(row.data or {}),
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    def add(
        self, collection: str, data: dict, doc_id: str | None = None
    ) -> DocumentRecord:
        doc_id = doc_id or uuid.uuid4().hex
        return self.set(collection, doc_id, data)

    def get(self, collection: str, doc_id: str) -> Optional[DocumentRecord]:
        with self.Session() as session:
            row = session.get(DocumentRow, (collection, doc_id))
            if not row:
                return None
            return self._to_record(row)

    def set(self, collection: str, doc_id: str, data: dict) -> DocumentRecord:
        now = time.time()
        with self.Session() as session:
            row = session.get(DocumentRow, (collection, doc_id))
            existed = row is not None
            if row:
                row.data = copy.deepcopy(data)
                row.updated_at = now
            else:
                row = DocumentRow(
                    collection=collection,
                    id=doc_id,
                    data=copy.deepcopy(data),
                    created_at=now,
                    updated_at=now,
                )
                session.add(row)
            session.commit()
            session.refresh(row)
            record = self._to_record(row)
        self._emit("modified" if existed else "added", collection, doc_id, record.data, now)
        return record

    def update(
        self, collection: str, doc_id: str, changes: dict
    ) -> Optional[DocumentRecord]:
        now = time.time()
        with self.Session() as session:
            row = session.get(DocumentRow, (collection, doc_id))
            if not row:
                return None
            merged = copy.deepcopy(row.data or {})
            merged.update(copy.deepcopy(changes))
            # Assign a new object so the JSON column is flagged dirty.
            row.data = merged
            row.updated_at = now
            session.commit()
            session.refresh(row)
            record = self._to_record(row)
        self._emit("modified", collection, doc_id, record.data, now)
        return record

    def increment(
        self, collection: str, doc_id: str, field_name: str, amount: float
    ) -> DocumentRecord:
        now = time.time()
        with self.Session() as session:
            stmt = (
                select(DocumentRow)
                .where(DocumentRow.collection == collection, DocumentRow.id == doc_id)
                .with_for_update()
            )
            row = session.execute(stmt).scalar_one_or_none()
            existed = row is not None
            if row:
                data = copy.deepcopy(row.data or {})
                data[field_name] = (data.get(field_name) or 0) + amount
                row.data = data
                row.updated_at = now
            else:
                row = DocumentRow(
                    collection=collection,
                    id=doc_id,
                    data={field_name: amount},
                    created_at=now,
                    updated_at=now,
                )
                session.add(row)
            session.commit()
            session.refresh(row)
            record = self._to_record(row)
        self._emit("modified" if existed else "added", collection, doc_id, record.data, now)
        return record

    def delete(self, collection: str, doc_id: str) -> bool:
        with self.Session() as session:
            row = session.get(DocumentRow, (collection, doc_id))
            if not row:
                return False
            session.delete(row)
            session.commit()
        self._emit("removed", collection, doc_id, None, time.time())
        return True

    def query(
        self,
        collection: str,
        where: Iterable[Filter] = (),
        *,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[DocumentRecord]:
        where: Sequence[Filter] = list(where)
        with self.Session() as session:
            rows = (
                session.execute(
                    select(DocumentRow)
                    .where(DocumentRow.collection == collection)
                    .order_by(DocumentRow.created_at.asc())
                )
                .scalars()
                .all()
            )
            records = [self._to_record(row) for row in rows]
        records = [r for r in records if matches(r.data, where)]
        return _order_records(records, order_by, descending, limit)


Base = declarative_base()


class DocumentRow(Base):
    __tablename__ = "documents"

    collection = Column(String, primary_key=True)
    id = Column(String, primary_key=True)
    data = Column(JSON, nullable=False)
    created_at = Column(Float, nullable=False, index=True)
    updated_at = Column(Float, nullable=False)
