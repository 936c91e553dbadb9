"""
Service types and holidays: definitions, defaults and document helpers.
"""

from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass, field
from datetime import date
from typing import Optional

from dacite import Config, from_dict

from cleanops.db import DbClient, DocumentRecord
from cleanops.errors import ConflictError, ErrorCode, NotFoundError, ValidationError
from cleanops.types import HOLIDAYS, SERVICE_TYPES

logger = logging.getLogger(__name__)

# JSON stores whole numbers as ints.
_DACITE_CONFIG = Config(type_hooks={float: float})


@dataclass
class ServiceType:
    code: str
    name: str
    description: str = ""
    base_surcharge: float = 0.0
    requires_manual_price: bool = False
    estimated_duration: int = 90
    extra_duration: int = 0
    duration_per_room: int = 0
    duration_per_bathroom: int = 0
    price_per_room: float = 0.0
    price_per_bathroom: float = 0.0
    price_per_guest: float = 0.0
    min_price: Optional[float] = None
    max_price: Optional[float] = None
    min_photos_required: int = 10
    requires_rating: bool = True
    admin_only: bool = False
    client_can_request: bool = True
    requires_approval: bool = False
    requires_reason: bool = False
    auto_assign_every_n: Optional[int] = None
    is_active: bool = True
    sort_order: int = 0
    available_for_manual: bool = True
    available_for_auto: bool = True
    id: Optional[str] = None

    def to_document(self) -> dict:
        data = asdict(self)
        data.pop("id")
        return data


@dataclass
class Holiday:
    name: str
    type: str = "custom"
    date: Optional[str] = None
    is_recurring: bool = False
    recurring_month: Optional[int] = None
    recurring_day: Optional[int] = None
    surcharge_type: str = "percentage"
    surcharge_percentage: Optional[float] = None
    surcharge_fixed: Optional[float] = None
    applies_to_all_services: bool = True
    applicable_service_types: list[str] = field(default_factory=list)
    is_active: bool = True
    notes: Optional[str] = None
    id: Optional[str] = None

    def falls_on(self, day: date) -> bool:
        if self.is_recurring and self.recurring_month and self.recurring_day:
            return (day.month, day.day) == (self.recurring_month, self.recurring_day)
        if self.date:
            return self.date[:10] == day.isoformat()
        return False

    def applies_to(self, service_type_id: Optional[str]) -> bool:
        if self.applies_to_all_services or not self.applicable_service_types:
            return True
        return service_type_id is None or service_type_id in self.applicable_service_types

    def sort_key(self) -> tuple[int, int]:
        if self.is_recurring:
            return (self.recurring_month or 0, self.recurring_day or 0)
        if self.date:
            parsed = date.fromisoformat(self.date[:10])
            return (parsed.month, parsed.day)
        return (0, 0)

    def to_document(self) -> dict:
        data = asdict(self)
        data.pop("id")
        return data


SGROSSO_REASONS: dict[str, dict] = {
    "BAMBINI": {"label": "Post famiglia con bambini", "requires_notes": False},
    "ANIMALI": {"label": "Post animali", "requires_notes": False},
    "LUNGO_PERIODO": {"label": "Lungo periodo senza pulizia", "requires_notes": False},
    "SPORCO_ESTREMO": {"label": "Danneggiamento/sporco estremo", "requires_notes": False},
    "LAVORI": {"label": "Post ristrutturazione/lavori", "requires_notes": False},
    "ALTRO": {"label": "Altro", "requires_notes": True},
}

DEFAULT_SERVICE_TYPES: list[ServiceType] = [
    ServiceType(
        code="STANDARD",
        name="Pulizia Standard",
        description="Pulizia normale per checkout o su richiesta",
        estimated_duration=90,
        min_photos_required=10,
        client_can_request=True,
        sort_order=1,
    ),
    ServiceType(
        code="APPROFONDITA",
        name="Pulizia Approfondita",
        description="Pulizia approfondita periodica",
        estimated_duration=120,
        extra_duration=30,
        min_photos_required=15,
        admin_only=True,
        client_can_request=False,
        auto_assign_every_n=5,
        sort_order=2,
    ),
    ServiceType(
        code="SGROSSO",
        name="Sgrosso",
        description="Pulizia straordinaria a prezzo concordato",
        requires_manual_price=True,
        estimated_duration=180,
        min_photos_required=20,
        client_can_request=True,
        requires_approval=True,
        requires_reason=True,
        available_for_auto=False,
        sort_order=3,
    ),
]


def _recurring(name: str, day: int, month: int, percentage: float, kind: str = "national") -> Holiday:
    return Holiday(
        name=name,
        type=kind,
        is_recurring=True,
        recurring_month=month,
        recurring_day=day,
        surcharge_percentage=percentage,
    )


ITALIAN_HOLIDAYS: list[Holiday] = [
    _recurring("Capodanno", 1, 1, 50),
    _recurring("Epifania", 6, 1, 30),
    Holiday(name="Pasqua", type="national", surcharge_percentage=50,
            notes="Data variabile: impostare ogni anno"),
    Holiday(name="Pasquetta", type="national", surcharge_percentage=50,
            notes="Data variabile: impostare ogni anno"),
    _recurring("Festa della Liberazione", 25, 4, 30),
    _recurring("Festa del Lavoro", 1, 5, 50),
    _recurring("Festa della Repubblica", 2, 6, 30),
    _recurring("Ferragosto", 15, 8, 50),
    _recurring("Ognissanti", 1, 11, 30),
    _recurring("Immacolata Concezione", 8, 12, 30),
    _recurring("Natale", 25, 12, 50),
    _recurring("Santo Stefano", 26, 12, 50),
    _recurring("San Silvestro", 31, 12, 50, kind="special"),
]


def service_type_from_record(record: DocumentRecord) -> ServiceType:
    return from_dict(ServiceType, {**record.data, "id": record.id}, config=_DACITE_CONFIG)


def holiday_from_record(record: DocumentRecord) -> Holiday:
    return from_dict(Holiday, {**record.data, "id": record.id}, config=_DACITE_CONFIG)


def default_service_type(code: str) -> Optional[ServiceType]:
    for service_type in DEFAULT_SERVICE_TYPES:
        if service_type.code == code:
            return ServiceType(**asdict(service_type))
    return None


def find_service_type(db: DbClient, code_or_id: Optional[str]) -> Optional[ServiceType]:
    """Look up a stored service type by id or code, falling back to the defaults."""
    code_or_id = code_or_id or "STANDARD"
    record = db.get(SERVICE_TYPES, code_or_id)
    if record:
        return service_type_from_record(record)
    matches = db.query(SERVICE_TYPES, [("code", "==", code_or_id)], limit=1)
    if matches:
        return service_type_from_record(matches[0])
    return default_service_type(code_or_id)


def list_service_types(db: DbClient, active_only: bool = False) -> list[ServiceType]:
    where = [("is_active", "==", True)] if active_only else []
    records = db.query(SERVICE_TYPES, where, order_by="sort_order")
    return [service_type_from_record(r) for r in records]


def create_service_type(db: DbClient, service_type: ServiceType, created_by: str) -> ServiceType:
    if db.query(SERVICE_TYPES, [("code", "==", service_type.code)], limit=1):
        raise ConflictError(
            f"Service type {service_type.code} already exists",
            code=ErrorCode.DUPLICATE_SERVICE_TYPE,
        )
    now = time.time()
    record = db.add(
        SERVICE_TYPES,
        {**service_type.to_document(), "created_at": now, "updated_at": now, "created_by": created_by},
        doc_id=service_type.id,
    )
    return service_type_from_record(record)


def update_service_type(db: DbClient, service_type_id: str, changes: dict) -> ServiceType:
    changes = {k: v for k, v in changes.items() if k not in ("id", "created_at", "created_by")}
    record = db.update(SERVICE_TYPES, service_type_id, {**changes, "updated_at": time.time()})
    if not record:
        raise NotFoundError(ErrorCode.SERVICE_TYPE_NOT_FOUND, "Service type not found")
    return service_type_from_record(record)


def seed_service_types(db: DbClient, created_by: str) -> int:
    created = 0
    for service_type in DEFAULT_SERVICE_TYPES:
        if db.query(SERVICE_TYPES, [("code", "==", service_type.code)], limit=1):
            continue
        create_service_type(db, ServiceType(**asdict(service_type)), created_by)
        created += 1
    logger.info("Seeded %d service types", created)
    return created


def validate_holiday(holiday: Holiday) -> None:
    if not holiday.name:
        raise ValidationError("Holiday name is required")
    if holiday.is_recurring and not (holiday.recurring_month and holiday.recurring_day):
        raise ValidationError("Recurring holidays need month and day")
    if holiday.is_recurring and not (1 <= holiday.recurring_month <= 12 and 1 <= holiday.recurring_day <= 31):
        raise ValidationError("Recurring month or day out of range")
    if not holiday.is_recurring:
        if not holiday.date:
            raise ValidationError("One-off holidays need a date")
        try:
            date.fromisoformat(holiday.date[:10])
        except ValueError as exc:
            raise ValidationError(f"Invalid holiday date: {holiday.date}") from exc
    if holiday.surcharge_type == "percentage" and not holiday.surcharge_percentage:
        raise ValidationError("Percentage surcharge needs a value")
    if holiday.surcharge_type == "fixed" and not holiday.surcharge_fixed:
        raise ValidationError("Fixed surcharge needs a value")
    if holiday.surcharge_type not in ("percentage", "fixed"):
        raise ValidationError(f"Unknown surcharge type: {holiday.surcharge_type}")


def list_holidays(
    db: DbClient, active_only: bool = False, year: Optional[int] = None
) -> list[Holiday]:
    holidays = [holiday_from_record(r) for r in db.query(HOLIDAYS)]
    if active_only:
        holidays = [h for h in holidays if h.is_active]
    if year is not None:
        holidays = [
            h for h in holidays
            if h.is_recurring or (h.date and int(h.date[:4]) == year)
        ]
    holidays.sort(key=lambda h: h.sort_key())
    return holidays


def create_holiday(db: DbClient, holiday: Holiday, created_by: str) -> Holiday:
    validate_holiday(holiday)
    now = time.time()
    record = db.add(
        HOLIDAYS,
        {**holiday.to_document(), "created_at": now, "updated_at": now, "created_by": created_by},
    )
    return holiday_from_record(record)


def update_holiday(db: DbClient, holiday_id: str, changes: dict) -> Holiday:
    existing = db.get(HOLIDAYS, holiday_id)
    if not existing:
        raise NotFoundError(ErrorCode.HOLIDAY_NOT_FOUND, "Holiday not found")
    changes = {k: v for k, v in changes.items() if k not in ("id", "created_at", "created_by")}
    merged = from_dict(
        Holiday, {**existing.data, **changes, "id": holiday_id}, config=_DACITE_CONFIG
    )
    validate_holiday(merged)
    record = db.update(HOLIDAYS, holiday_id, {**changes, "updated_at": time.time()})
    return holiday_from_record(record)


def seed_holidays(db: DbClient, created_by: str) -> int:
    existing = {h.name for h in list_holidays(db)}
    created = 0
    now = time.time()
    for holiday in ITALIAN_HOLIDAYS:
        if holiday.name in existing:
            continue
        # Movable feasts are stored inactive until someone sets this year's date.
        document = holiday.to_document()
        if not holiday.is_recurring and not holiday.date:
            document["is_active"] = False
        db.add(HOLIDAYS, {**document, "created_at": now, "updated_at": now, "created_by": created_by})
        created += 1
    logger.info("Seeded %d holidays", created)
    return created


def delete_service_type(db: DbClient, service_type_id: str) -> None:
    if not db.delete(SERVICE_TYPES, service_type_id):
        raise NotFoundError(ErrorCode.SERVICE_TYPE_NOT_FOUND, "Service type not found")


def delete_holiday(db: DbClient, holiday_id: str) -> None:
    if not db.delete(HOLIDAYS, holiday_id):
        raise NotFoundError(ErrorCode.HOLIDAY_NOT_FOUND, "Holiday not found")
