"""
Cleaning operations: scheduling, assignment, start, completion, cancellation
and rescheduling.

Every operation loads the cleaning, checks the caller against the lifecycle
rules and writes the new state. Side effects (notifications, laundry orders,
client balances) are logged on failure and never undo the main write.
"""

from __future__ import annotations

import logging
import time
from datetime import date, datetime
from typing import Optional

from cleanops import issues as issue_service
from cleanops import orders as order_service
from cleanops import ratings as rating_service
from cleanops import wizard
from cleanops.catalog import SGROSSO_REASONS, find_service_type, list_holidays
from cleanops.config import Settings, get_settings
from cleanops.db import DbClient, DocumentRecord
from cleanops.errors import (
    ConflictError,
    ErrorCode,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from cleanops.lifecycle import (
    ASSIGNABLE,
    COMPLETABLE,
    MOVABLE,
    STARTABLE,
    can_manage,
    can_operate,
    ensure_transition,
    is_property_owner,
    operator_ids,
    parse_status,
)
from cleanops.linen import DotationResult, calculate_dotation
from cleanops.notifications import Notifier
from cleanops.pricing import calculate_cleaning_price, calculate_estimated_duration
from cleanops.properties import owned_property_ids
from cleanops.reconcile import dashboard_counts
from cleanops.types import (
    CANCELLED_CLEANINGS,
    CLEANINGS,
    CLIENT_BALANCES,
    INVENTORY,
    ORDERS,
    PROPERTIES,
    SYNC_EXCLUSIONS,
    USERS,
    CleaningStatus,
    CurrentUser,
    NotificationType,
    OrderStatus,
    UserRole,
)

logger = logging.getLogger(__name__)

DEFAULT_TIME = "10:00"
MIN_CANCEL_REASON = 3


def _day(value: Optional[str]) -> str:
    return (value or "")[:10]


def scheduled_datetime(day: str, at: Optional[str] = None) -> datetime:
    try:
        parsed = date.fromisoformat(_day(day))
        hours, minutes = (at or DEFAULT_TIME).split(":")[:2]
        return datetime(parsed.year, parsed.month, parsed.day, int(hours), int(minutes))
    except ValueError as exc:
        raise ValidationError(f"Invalid date or time: {day} {at or ''}".strip()) from exc


def _load(db: DbClient, cleaning_id: str) -> DocumentRecord:
    record = db.get(CLEANINGS, cleaning_id)
    if not record:
        raise NotFoundError(ErrorCode.CLEANING_NOT_FOUND, "Cleaning not found")
    return record


def _property(db: DbClient, property_id: Optional[str]) -> Optional[dict]:
    if not property_id:
        return None
    record = db.get(PROPERTIES, property_id)
    return record.as_dict() if record else None


def _is_booking_sourced(cleaning: dict) -> bool:
    return bool(cleaning.get("booking_source") or cleaning.get("external_uid"))


def _public(record: DocumentRecord) -> dict:
    data = record.as_dict()
    data["status"] = parse_status(data.get("status")).value
    return data


# ---------------------------------------------------------------------------
# Create and read


def create_cleaning(
    db: DbClient, notifier: Notifier, user: CurrentUser, payload: dict
) -> DocumentRecord:
    property = _property(db, payload.get("property_id"))
    if not property:
        raise NotFoundError(ErrorCode.PROPERTY_NOT_FOUND, "Property not found")
    if not can_manage(property, user):
        raise PermissionDeniedError("Only admins or the property owner can schedule cleanings")
    if not payload.get("scheduled_date"):
        raise ValidationError("scheduled_date is required")
    when = scheduled_datetime(payload["scheduled_date"], payload.get("scheduled_time"))

    service_type = find_service_type(db, payload.get("service_type"))
    if not service_type:
        raise NotFoundError(ErrorCode.SERVICE_TYPE_NOT_FOUND, "Service type not found")
    if service_type.admin_only and not user.is_admin:
        raise PermissionDeniedError(f"{service_type.name} can only be scheduled by an admin")

    auto_promoted = False
    if service_type.code == "STANDARD":
        deep = find_service_type(db, "APPROFONDITA")
        if deep and deep.is_active and deep.auto_assign_every_n:
            done = db.query(
                CLEANINGS,
                [
                    ("property_id", "==", property["id"]),
                    ("status", "!=", CleaningStatus.CANCELLED.value),
                ],
            )
            if (len(done) + 1) % deep.auto_assign_every_n == 0:
                service_type = deep
                auto_promoted = True

    reason = payload.get("sgrosso_reason")
    reason_notes = (payload.get("sgrosso_notes") or "").strip()
    if service_type.requires_reason:
        if reason not in SGROSSO_REASONS:
            raise ValidationError(
                "A valid reason is required", details={"allowed": list(SGROSSO_REASONS)}
            )
        if SGROSSO_REASONS[reason]["requires_notes"] and not reason_notes:
            raise ValidationError("Notes are required for this reason")

    needs_approval = service_type.requires_approval and not user.is_admin
    holidays = list_holidays(db, active_only=True)
    guests = payload.get("guests_count") or property.get("max_guests")
    breakdown = []
    holiday_fee = 0.0
    if service_type.requires_manual_price:
        price = payload.get("price")
        if price is None and not needs_approval:
            raise ValidationError(f"{service_type.name} needs a manual price")
        price = float(price) if price is not None else None
    elif payload.get("price") is not None and user.is_admin:
        price = float(payload["price"])
    else:
        base = float(property.get("cleaning_price") or 0) + service_type.base_surcharge
        result = calculate_cleaning_price(
            service_type,
            base,
            when,
            bedrooms=property.get("bedrooms"),
            bathrooms=property.get("bathrooms"),
            guests_count=guests,
            holidays=holidays,
            is_urgent=bool(payload.get("is_urgent")),
        )
        holiday_fee = result.holiday_surcharge
        price = round(result.total - holiday_fee, 2)
        breakdown = result.as_dict()["breakdown"]

    now = time.time()
    data = {
        "property_id": property["id"],
        "property_name": property.get("name") or "",
        "property_address": property.get("address"),
        "owner_id": property.get("owner_id"),
        "scheduled_date": when.date().isoformat(),
        "scheduled_time": when.strftime("%H:%M"),
        "status": CleaningStatus.SCHEDULED.value,
        "service_type": service_type.code,
        "service_type_id": service_type.id,
        "service_type_name": service_type.name,
        "auto_promoted": auto_promoted,
        "sgrosso_reason": reason if service_type.requires_reason else None,
        "sgrosso_notes": reason_notes or None,
        "price": price,
        "holiday_fee": holiday_fee,
        "price_breakdown": breakdown,
        "estimated_duration": calculate_estimated_duration(
            service_type, property.get("bedrooms"), property.get("bathrooms")
        ),
        "guests_count": guests,
        "operators": [],
        "operator_id": None,
        "operator_name": None,
        "notes": payload.get("notes") or "",
        "approval_status": "PENDING" if needs_approval else None,
        "created_by": user.id,
        "created_at": now,
        "updated_at": now,
    }
    record = db.add(CLEANINGS, data)
    logger.info(
        "Cleaning %s scheduled for %s on %s (%s)",
        record.id,
        property["id"],
        data["scheduled_date"],
        service_type.code,
    )
    if needs_approval:
        notifier.notify_admins(
            title=f"{service_type.name} requested",
            message=f"{user.display_name} requested {service_type.name} for {data['property_name']} on {data['scheduled_date']}",
            type=NotificationType.INFO,
            sender=user,
            related_entity_id=record.id,
            related_entity_type="CLEANING",
            related_entity_name=data["property_name"],
            action_required=True,
        )
    return record


def list_cleanings(
    db: DbClient,
    user: CurrentUser,
    *,
    property_id: Optional[str] = None,
    status: Optional[str] = None,
    operator_id: Optional[str] = None,
    day: Optional[str] = None,
) -> dict:
    if user.role == UserRole.RIDER:
        raise PermissionDeniedError("Riders cannot list cleanings")
    where = []
    if property_id:
        where.append(("property_id", "==", property_id))
    records = db.query(CLEANINGS, where, order_by="scheduled_date", descending=True)
    wanted = parse_status(status) if status else None

    if user.role == UserRole.OPERATOR:
        operator_id = user.id
    owned = owned_property_ids(db, user) if user.role == UserRole.OWNER else None

    cleanings = []
    for record in records:
        data = _public(record)
        if wanted and data["status"] != wanted.value:
            continue
        if operator_id and operator_id not in operator_ids(data):
            continue
        if day and _day(data.get("scheduled_date")) != _day(day):
            continue
        if owned is not None and data.get("property_id") not in owned:
            continue
        cleanings.append(data)
    return {"cleanings": cleanings, "counts": dashboard_counts(cleanings)}


def get_cleaning(db: DbClient, user: CurrentUser, cleaning_id: str) -> dict:
    record = _load(db, cleaning_id)
    data = _public(record)
    if not (can_operate(data, user) or is_property_owner(_property(db, data.get("property_id")), user)):
        raise PermissionDeniedError("Not allowed to view this cleaning")
    return data


# ---------------------------------------------------------------------------
# Assignment


def _operator_entries(cleaning: dict) -> list[dict]:
    operators = [dict(op) for op in cleaning.get("operators") or [] if op.get("id")]
    legacy = cleaning.get("operator_id")
    if legacy and legacy not in {op["id"] for op in operators}:
        operators.insert(0, {"id": legacy, "name": cleaning.get("operator_name") or ""})
    return operators


def _operator_fields(operators: list[dict]) -> dict:
    first = operators[0] if operators else {}
    return {
        "operators": operators,
        "operator_id": first.get("id"),
        "operator_name": first.get("name"),
    }


def assign_operator(
    db: DbClient, notifier: Notifier, user: CurrentUser, cleaning_id: str, operator_id: str
) -> DocumentRecord:
    if not user.is_admin:
        raise PermissionDeniedError("Only admins can assign operators")
    if not operator_id:
        raise ValidationError("operator_id is required")
    record = _load(db, cleaning_id)
    status = parse_status(record.data.get("status"))
    if status not in ASSIGNABLE:
        raise ValidationError(
            f"Cannot assign operators to a {status.value} cleaning",
            code=ErrorCode.INVALID_STATUS,
        )

    operator = db.get(USERS, operator_id)
    if not operator or operator.data.get("role") != UserRole.OPERATOR.value:
        raise ValidationError("Operator not found", code=ErrorCode.INVALID_OPERATOR)
    name = (operator.data.get("name") or "").strip()
    if not name:
        raise ValidationError("Operator has no name", code=ErrorCode.INVALID_OPERATOR)

    operators = _operator_entries(record.data)
    if operator_id in {op["id"] for op in operators}:
        raise ValidationError("Operator already assigned", code=ErrorCode.ALREADY_ASSIGNED)
    operators.append({"id": operator_id, "name": name})

    changes = _operator_fields(operators)
    if status == CleaningStatus.SCHEDULED:
        ensure_transition(status, CleaningStatus.ASSIGNED)
        changes["status"] = CleaningStatus.ASSIGNED.value
    changes.update({"assigned_by": user.id, "assigned_at": time.time(), "updated_at": time.time()})
    updated = db.update(CLEANINGS, cleaning_id, changes)

    notifier.notify_user(
        operator_id,
        recipient_role=UserRole.OPERATOR,
        title="New cleaning assigned",
        message=(
            f"{record.data.get('property_name') or 'A property'} on "
            f"{_day(record.data.get('scheduled_date'))} at {record.data.get('scheduled_time') or DEFAULT_TIME}"
        ),
        type=NotificationType.CLEANING_ASSIGNED,
        sender=user,
        related_entity_id=cleaning_id,
        related_entity_type="CLEANING",
        related_entity_name=record.data.get("property_name"),
    )
    return updated


def unassign_operator(
    db: DbClient, user: CurrentUser, cleaning_id: str, operator_id: str
) -> DocumentRecord:
    if not user.is_admin:
        raise PermissionDeniedError("Only admins can unassign operators")
    record = _load(db, cleaning_id)
    operators = _operator_entries(record.data)
    remaining = [op for op in operators if op["id"] != operator_id]
    if len(remaining) == len(operators):
        raise NotFoundError(ErrorCode.INVALID_OPERATOR, "Operator is not assigned to this cleaning")
    changes = _operator_fields(remaining)
    status = parse_status(record.data.get("status"))
    if not remaining and status == CleaningStatus.ASSIGNED:
        ensure_transition(status, CleaningStatus.SCHEDULED)
        changes["status"] = CleaningStatus.SCHEDULED.value
    changes["updated_at"] = time.time()
    return db.update(CLEANINGS, cleaning_id, changes)


# ---------------------------------------------------------------------------
# Start and complete


def start_cleaning(
    db: DbClient, notifier: Notifier, user: CurrentUser, cleaning_id: str
) -> dict:
    record = _load(db, cleaning_id)
    cleaning = record.data
    status = parse_status(cleaning.get("status"))
    if status not in STARTABLE:
        raise ValidationError(
            f"Cannot start a cleaning in status {cleaning.get('status')}",
            code=ErrorCode.INVALID_STATUS,
        )
    if not can_operate(cleaning, user):
        raise PermissionDeniedError("You are not assigned to this cleaning")
    ensure_transition(status, CleaningStatus.IN_PROGRESS)

    now = time.time()
    db.update(
        CLEANINGS,
        cleaning_id,
        {
            "status": CleaningStatus.IN_PROGRESS.value,
            "started_at": now,
            "started_by": user.id,
            "updated_at": now,
        },
    )

    laundry_order_id = cleaning.get("laundry_order_id")
    property = _property(db, cleaning.get("property_id"))
    if property:
        try:
            order = order_service.generate_laundry_order(db, cleaning_id, cleaning, property)
            if order:
                laundry_order_id = order.id
        except Exception:
            logger.exception("Laundry order generation failed for cleaning %s", cleaning_id)

    property_name = cleaning.get("property_name") or "a property"
    notifier.notify_admins(
        title="Cleaning started",
        message=f"{user.display_name} started the cleaning of {property_name}",
        type=NotificationType.CLEANING_STARTED,
        sender=user,
        related_entity_id=cleaning_id,
        related_entity_type="CLEANING",
        related_entity_name=cleaning.get("property_name"),
    )
    notifier.notify_user(
        cleaning.get("owner_id") or (property or {}).get("owner_id"),
        recipient_role=UserRole.OWNER,
        title="Cleaning in progress",
        message=f"The cleaning of {property_name} has started",
        type=NotificationType.CLEANING_STARTED,
        related_entity_id=cleaning_id,
        related_entity_type="CLEANING",
        related_entity_name=cleaning.get("property_name"),
    )
    order_ids = [laundry_order_id] if laundry_order_id else []
    order_ids += [
        record.id
        for record in order_service.orders_for_cleaning(db, cleaning_id)
        if record.id not in order_ids
    ]
    for order_id in order_ids:
        notifier.notify_role(
            UserRole.RIDER,
            title="New laundry delivery",
            message=f"Cleaning of {property_name} in progress: prepare the delivery",
            type=NotificationType.LAUNDRY_NEW,
            sender=user,
            related_entity_id=order_id,
            related_entity_type="ORDER",
            related_entity_name=cleaning.get("property_name"),
        )
    logger.info("Cleaning %s started by %s", cleaning_id, user.id)
    return {
        "success": True,
        "started_at": now,
        "laundry_order_id": laundry_order_id,
        "order_ids": order_ids,
        "message": "Cleaning started",
    }


def _photo_count(payload: dict, cleaning: dict) -> int:
    if payload.get("photos_count") is not None:
        return int(payload["photos_count"])
    photos = payload.get("photos")
    if photos is None:
        photos = cleaning.get("photos") or []
    return len(photos)


def _confirm_linked_orders(db: DbClient, cleaning_id: str, cleaning: dict) -> list[str]:
    confirmed = []
    for order in order_service.linked_orders(db, cleaning_id, cleaning):
        status = order.data.get("status")
        if status == OrderStatus.CANCELLED.value:
            continue
        confirmed.append(order.id)
        if status in (OrderStatus.DELIVERED.value, OrderStatus.COMPLETED.value):
            continue
        db.update(
            ORDERS,
            order.id,
            {
                "status": OrderStatus.DELIVERED.value,
                "delivered_at": time.time(),
                "auto_confirmed": True,
                "updated_at": time.time(),
            },
        )
    return confirmed


def complete_cleaning(
    db: DbClient,
    notifier: Notifier,
    user: CurrentUser,
    cleaning_id: str,
    payload: dict,
    settings: Optional[Settings] = None,
) -> dict:
    settings = settings or get_settings()
    record = _load(db, cleaning_id)
    cleaning = record.data
    status = parse_status(cleaning.get("status"))
    if status not in COMPLETABLE:
        raise ValidationError(
            f"Cannot complete a cleaning in status {cleaning.get('status')}",
            code=ErrorCode.INVALID_STATUS,
        )
    if not can_operate(cleaning, user):
        raise PermissionDeniedError("You are not assigned to this cleaning")
    ensure_transition(status, CleaningStatus.COMPLETED)

    service_type = find_service_type(db, cleaning.get("service_type"))
    min_photos = service_type.min_photos_required if service_type else settings.min_photos_required
    photos = _photo_count(payload, cleaning)
    if photos < min_photos:
        raise ValidationError(
            f"At least {min_photos} photos are required ({photos} uploaded)",
            code=ErrorCode.NOT_ENOUGH_PHOTOS,
            details={"required": min_photos, "uploaded": photos},
        )
    issues = [
        {
            **issue,
            "property_id": cleaning.get("property_id"),
            "property_name": cleaning.get("property_name"),
            "cleaning_id": cleaning_id,
        }
        for issue in payload.get("issues") or []
    ]
    for issue in issues:
        issue_service.validate_issue(issue)
    scores = payload.get("rating")
    if scores:
        rating_service.validate_scores(scores)

    now = time.time()
    started_at = cleaning.get("started_at")
    duration = max(0, round((now - started_at) / 60)) if started_at else None

    rating_id = None
    rating_score = None
    issue_ids: list[str] = []
    if scores:
        rating = rating_service.create_rating(
            db,
            notifier,
            user,
            {
                "cleaning_id": cleaning_id,
                "property_id": cleaning.get("property_id"),
                "scores": scores,
                "notes": payload.get("rating_notes"),
                "issues": issues,
            },
        )
        rating_id = rating.id
        rating_score = rating.data["average"]
        issue_ids = list(rating.data.get("issue_ids") or [])
    else:
        for issue in issues:
            created = issue_service.create_issue(db, notifier, user, issue)
            issue_ids.append(created.id)
    urgent_issues = sum(
        1
        for issue in issues
        if issue.get("severity") in issue_service.URGENT_SEVERITIES
    )

    extra_charges = [
        {"description": c.get("description") or "", "amount": float(c.get("amount") or 0)}
        for c in payload.get("extra_charges") or []
    ]
    extras_total = round(sum(c["amount"] for c in extra_charges), 2)
    final_price = round(
        float(cleaning.get("price") or 0) + float(cleaning.get("holiday_fee") or 0) + extras_total, 2
    )

    changes = {
        "status": CleaningStatus.COMPLETED.value,
        "completed_at": now,
        "completed_by": user.id,
        "duration_minutes": duration,
        "checklist": payload.get("checklist") or cleaning.get("checklist") or [],
        "notes": payload.get("notes") if payload.get("notes") is not None else cleaning.get("notes"),
        "photos_count": photos,
        "extra_charges": extra_charges,
        "extra_charges_total": extras_total,
        "final_price": final_price,
        "updated_at": now,
    }
    if payload.get("photos") is not None:
        changes["photos"] = list(payload["photos"])
    if rating_id:
        changes.update({"rating_id": rating_id, "rating_score": rating_score})
    if issue_ids:
        changes["issue_ids"] = issue_ids
    db.update(CLEANINGS, cleaning_id, changes)

    order_ids: list[str] = []
    try:
        order_ids = _confirm_linked_orders(db, cleaning_id, cleaning)
    except Exception:
        logger.exception("Could not confirm delivery for cleaning %s", cleaning_id)

    owner_id = cleaning.get("owner_id") or (_property(db, cleaning.get("property_id")) or {}).get("owner_id")
    if owner_id and final_price:
        try:
            db.increment(CLIENT_BALANCES, owner_id, "total_due", final_price)
        except Exception:
            logger.exception("Could not update balance of client %s", owner_id)

    property_name = cleaning.get("property_name") or "a property"
    message = f"{user.display_name} completed the cleaning of {property_name}"
    if urgent_issues:
        message += f" ({urgent_issues} urgent issues reported)"
    notifier.notify_admins(
        title="Cleaning completed",
        message=message,
        type=NotificationType.CLEANING_COMPLETED,
        sender=user,
        related_entity_id=cleaning_id,
        related_entity_type="CLEANING",
        related_entity_name=cleaning.get("property_name"),
        priority="high" if urgent_issues else "normal",
    )
    logger.info("Cleaning %s completed in %s minutes", cleaning_id, duration)
    return {
        "success": True,
        "completed_at": now,
        "duration_minutes": duration,
        "rating_id": rating_id,
        "rating_score": rating_score,
        "issue_ids": issue_ids,
        "final_price": final_price,
        "order_id": order_ids[0] if order_ids else None,
        "order_ids": order_ids,
    }


# ---------------------------------------------------------------------------
# Cancel and move


def _record_sync_exclusion(
    db: DbClient, cleaning_id: str, cleaning: dict, user: CurrentUser, reason: str, note: str
) -> None:
    now = time.time()
    db.add(
        SYNC_EXCLUSIONS,
        {
            "property_id": cleaning.get("property_id"),
            "external_uid": cleaning.get("external_uid"),
            "booking_source": cleaning.get("booking_source"),
            "original_date": cleaning.get("scheduled_date"),
            "cleaning_id": cleaning_id,
            "reason": reason,
            "created_by": user.id,
            "created_at": now,
        },
    )
    db.add(
        CANCELLED_CLEANINGS,
        {
            "cleaning_id": cleaning_id,
            "property_id": cleaning.get("property_id"),
            "external_uid": cleaning.get("external_uid"),
            "booking_source": cleaning.get("booking_source"),
            "original_date": cleaning.get("scheduled_date"),
            "reason": reason,
            "note": note,
            "cancelled_by": user.id,
            "cancelled_at": now,
        },
    )


def cancel_cleaning(
    db: DbClient,
    notifier: Notifier,
    user: CurrentUser,
    cleaning_id: str,
    reason: Optional[str],
    delete_completely: bool = False,
) -> dict:
    reason = (reason or "").strip()
    if len(reason) < MIN_CANCEL_REASON:
        raise ValidationError(f"A reason of at least {MIN_CANCEL_REASON} characters is required")
    record = _load(db, cleaning_id)
    cleaning = record.data
    if not can_manage(_property(db, cleaning.get("property_id")), user):
        raise PermissionDeniedError("Only admins or the property owner can cancel")
    status = parse_status(cleaning.get("status"))
    ensure_transition(status, CleaningStatus.CANCELLED, is_admin=user.is_admin)

    if _is_booking_sourced(cleaning):
        _record_sync_exclusion(db, cleaning_id, cleaning, user, "CANCELLED", reason)

    order_cancelled = False
    if cleaning.get("laundry_order_id"):
        try:
            order_cancelled = order_service.cancel_order(
                db, cleaning["laundry_order_id"], f"Cleaning cancelled: {reason}"
            )
        except Exception:
            logger.exception("Could not cancel laundry order for cleaning %s", cleaning_id)

    property_name = cleaning.get("property_name") or "a property"
    day = _day(cleaning.get("scheduled_date"))
    for operator_id in operator_ids(cleaning):
        notifier.notify_user(
            operator_id,
            recipient_role=UserRole.OPERATOR,
            title="Cleaning cancelled",
            message=f"The cleaning of {property_name} on {day} was cancelled: {reason}",
            type=NotificationType.CLEANING_CANCELLED,
            sender=user,
            related_entity_id=cleaning_id,
            related_entity_type="CLEANING",
            related_entity_name=cleaning.get("property_name"),
        )
    if not user.is_admin:
        notifier.notify_admins(
            title="Cleaning cancelled by owner",
            message=f"{user.display_name} cancelled the cleaning of {property_name} on {day}: {reason}",
            type=NotificationType.CLEANING_CANCELLED,
            sender=user,
            related_entity_id=cleaning_id,
            related_entity_type="CLEANING",
            related_entity_name=cleaning.get("property_name"),
        )

    deleted = bool(delete_completely and user.is_admin)
    if deleted:
        db.delete(CLEANINGS, cleaning_id)
    else:
        db.update(
            CLEANINGS,
            cleaning_id,
            {
                "status": CleaningStatus.CANCELLED.value,
                "cancelled_at": time.time(),
                "cancelled_by": user.id,
                "cancelled_by_name": user.display_name,
                "cancel_reason": reason,
                "updated_at": time.time(),
            },
        )
    logger.info("Cleaning %s cancelled by %s (deleted=%s)", cleaning_id, user.id, deleted)
    return {"success": True, "deleted": deleted, "order_cancelled": order_cancelled}


def move_cleaning(
    db: DbClient, user: CurrentUser, cleaning_id: str, payload: dict
) -> DocumentRecord:
    new_date = payload.get("new_date")
    if not new_date:
        raise ValidationError("new_date is required")
    record = _load(db, cleaning_id)
    cleaning = record.data
    if not can_manage(_property(db, cleaning.get("property_id")), user):
        raise PermissionDeniedError("Only admins or the property owner can move a cleaning")
    status = parse_status(cleaning.get("status"))
    if status not in MOVABLE:
        raise ConflictError(
            f"Cannot move a {status.value} cleaning", details={"from": status.value}
        )

    new_time = payload.get("new_time")
    target = scheduled_datetime(new_date, new_time or cleaning.get("scheduled_time"))
    now = time.time()
    if target.date().isoformat() == _day(cleaning.get("scheduled_date")):
        if not new_time or new_time == cleaning.get("scheduled_time"):
            raise ValidationError("The new date is the same as the current one")
        return db.update(
            CLEANINGS,
            cleaning_id,
            {"scheduled_time": target.strftime("%H:%M"), "manually_modified": True, "updated_at": now},
        )

    if _is_booking_sourced(cleaning):
        _record_sync_exclusion(db, cleaning_id, cleaning, user, "MOVED", payload.get("reason") or "")

    return db.update(
        CLEANINGS,
        cleaning_id,
        {
            "scheduled_date": target.date().isoformat(),
            "scheduled_time": target.strftime("%H:%M"),
            "original_date": cleaning.get("original_date") or cleaning.get("scheduled_date"),
            "moved_at": now,
            "moved_by": user.id,
            "move_reason": payload.get("reason"),
            "manually_modified": True,
            "updated_at": now,
        },
    )


# ---------------------------------------------------------------------------
# Dotation and wizard


def cleaning_dotation(db: DbClient, user: CurrentUser, cleaning_id: str) -> DotationResult:
    cleaning = get_cleaning(db, user, cleaning_id)
    inventory = [r.as_dict() for r in db.query(INVENTORY)]
    return calculate_dotation(cleaning, _property(db, cleaning.get("property_id")), inventory)


def _wizard_response(cleaning_id: str, state: wizard.WizardState, status: CleaningStatus) -> dict:
    return {
        "cleaning_id": cleaning_id,
        "status": status.value,
        "wizard": state.to_document(),
        "can_complete": wizard.can_complete(state),
        "blockers": wizard.completion_blockers(state),
    }


def get_wizard(db: DbClient, user: CurrentUser, cleaning_id: str) -> dict:
    record = _load(db, cleaning_id)
    if not can_operate(record.data, user):
        raise PermissionDeniedError("You are not assigned to this cleaning")
    status = parse_status(record.data.get("status"))
    return _wizard_response(cleaning_id, wizard.WizardState.from_cleaning(record.data, status), status)


WIZARD_FIELDS = ("checklist", "completed_items", "photos", "rating", "issues", "products", "notes")


def update_wizard(db: DbClient, user: CurrentUser, cleaning_id: str, payload: dict) -> dict:
    record = _load(db, cleaning_id)
    if not can_operate(record.data, user):
        raise PermissionDeniedError("You are not assigned to this cleaning")
    status = parse_status(record.data.get("status"))
    state = wizard.WizardState.from_cleaning(record.data, status)
    for name in WIZARD_FIELDS:
        if payload.get(name) is not None:
            setattr(state, name, payload[name])

    action = payload.get("action") or "save"
    if action == "advance":
        wizard.advance(state, status)
    elif action == "back":
        wizard.back(state)
    elif action != "save":
        raise ValidationError(f"Unknown wizard action: {action}")

    db.update(CLEANINGS, cleaning_id, {"wizard": state.to_document(), "updated_at": time.time()})
    return _wizard_response(cleaning_id, state, status)
