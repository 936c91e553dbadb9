"""
Delivery orders and the product requests that feed them.

Orders carry linen and cleaning products to a property. They are created
automatically when a cleaning starts (laundry) or when an operator asks for
products, and riders move them along PENDING → ASSIGNED → IN_TRANSIT →
DELIVERED → COMPLETED.
"""

from __future__ import annotations

import logging
import time
from typing import Iterable, Optional

from cleanops.db import DbClient, DocumentRecord
from cleanops.errors import (
    ConflictError,
    ErrorCode,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from cleanops.notifications import Notifier
from cleanops.properties import visible_property_ids
from cleanops.types import (
    CLEANINGS,
    ORDERS,
    PRODUCT_REQUESTS,
    PROPERTIES,
    USERS,
    CleaningStatus,
    CurrentUser,
    NotificationType,
    OrderStatus,
    OrderType,
    OrderUrgency,
    UserRole,
)

logger = logging.getLogger(__name__)

ORDER_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.ASSIGNED, OrderStatus.CANCELLED}),
    OrderStatus.ASSIGNED: frozenset(
        {
            OrderStatus.PENDING,
            OrderStatus.IN_TRANSIT,
            OrderStatus.DELIVERED,
            OrderStatus.CANCELLED,
        }
    ),
    OrderStatus.IN_TRANSIT: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset({OrderStatus.COMPLETED}),
    OrderStatus.COMPLETED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

# Orders past this point are already on the road and are left alone.
LOCKED_STATUSES = frozenset(
    {OrderStatus.IN_TRANSIT.value, OrderStatus.DELIVERED.value, OrderStatus.COMPLETED.value}
)
OPEN_STATUSES = (OrderStatus.PENDING.value, OrderStatus.ASSIGNED.value)

PRODUCT_CATEGORY = "prodotti_pulizia"
PRODUCT_ITEM_TYPE = "cleaning_product"


def parse_order_status(value: Optional[str]) -> OrderStatus:
    try:
        return OrderStatus((value or OrderStatus.PENDING.value).upper())
    except ValueError as exc:
        raise ValidationError(f"Unknown order status: {value}", code=ErrorCode.INVALID_STATUS) from exc


def get_order(db: DbClient, order_id: str) -> DocumentRecord:
    record = db.get(ORDERS, order_id)
    if not record:
        raise NotFoundError(ErrorCode.ORDER_NOT_FOUND, "Order not found")
    return record


def _visible_to_rider(order: dict, rider_id: str) -> bool:
    # Unassigned pending orders are open for any rider to pick up.
    if order.get("rider_id"):
        return order["rider_id"] == rider_id
    return order.get("status") == OrderStatus.PENDING.value


def list_orders(
    db: DbClient,
    *,
    user: Optional[CurrentUser] = None,
    property_id: Optional[str] = None,
    status: Optional[str] = None,
    rider_id: Optional[str] = None,
    include_cancelled: bool = False,
) -> list[DocumentRecord]:
    where = []
    if property_id:
        where.append(("property_id", "==", property_id))
    if status:
        where.append(("status", "==", parse_order_status(status).value))
    elif not include_cancelled:
        where.append(("status", "!=", OrderStatus.CANCELLED.value))
    if rider_id:
        where.append(("rider_id", "==", rider_id))
    records = db.query(ORDERS, where, order_by="created_at", descending=True)
    if user is None or user.is_admin:
        return records
    if user.role == UserRole.RIDER:
        return [r for r in records if _visible_to_rider(r.data, user.id)]
    visible = visible_property_ids(db, user)
    return [r for r in records if r.data.get("property_id") in visible]


def create_order(db: DbClient, data: dict) -> DocumentRecord:
    now = time.time()
    payload = {
        "status": OrderStatus.PENDING.value,
        "urgency": OrderUrgency.NORMAL.value,
        "type": OrderType.LINEN.value,
        "items": [],
        "rider_id": None,
        "rider_name": None,
        "created_at": now,
        "updated_at": now,
    }
    payload.update(data)
    return db.add(ORDERS, payload)


def order_type_for(items: Iterable[dict]) -> OrderType:
    kinds = {item.get("type") for item in items}
    has_products = PRODUCT_ITEM_TYPE in kinds
    has_linen = bool(kinds - {PRODUCT_ITEM_TYPE})
    if has_products and has_linen:
        return OrderType.MIXED
    if has_products:
        return OrderType.PRODUCTS
    return OrderType.LINEN


def assign_rider(
    db: DbClient, notifier: Notifier, user: CurrentUser, order_id: str, rider_id: str
) -> DocumentRecord:
    if not user.is_admin:
        raise PermissionDeniedError("Only admins can assign riders")
    if not rider_id:
        raise ValidationError("rider_id is required")
    order = get_order(db, order_id)
    current = parse_order_status(order.data.get("status"))
    if current not in (OrderStatus.PENDING, OrderStatus.ASSIGNED):
        raise ConflictError(
            f"Cannot assign a rider to an order in {current.value}",
            details={"from": current.value},
        )
    rider = db.get(USERS, rider_id)
    if not rider or rider.data.get("role") != UserRole.RIDER.value:
        raise ValidationError("Rider not found", code=ErrorCode.INVALID_OPERATOR)
    rider_name = rider.data.get("name") or rider.data.get("email") or rider_id
    record = db.update(
        ORDERS,
        order_id,
        {
            "rider_id": rider_id,
            "rider_name": rider_name,
            "status": OrderStatus.ASSIGNED.value,
            "assigned_at": time.time(),
            "assigned_by": user.id,
            "updated_at": time.time(),
        },
    )
    notifier.notify_user(
        rider_id,
        recipient_role=UserRole.RIDER,
        title="New delivery assigned",
        message=f"Delivery to {order.data.get('property_name') or 'a property'} was assigned to you",
        type=NotificationType.ORDER_ASSIGNED,
        sender=user,
        related_entity_id=order_id,
        related_entity_type="ORDER",
        related_entity_name=order.data.get("property_name"),
    )
    return record


def unassign_rider(db: DbClient, user: CurrentUser, order_id: str) -> DocumentRecord:
    if not user.is_admin:
        raise PermissionDeniedError("Only admins can unassign riders")
    order = get_order(db, order_id)
    current = parse_order_status(order.data.get("status"))
    if current != OrderStatus.ASSIGNED:
        raise ConflictError(
            f"Cannot unassign an order in {current.value}", details={"from": current.value}
        )
    return db.update(
        ORDERS,
        order_id,
        {
            "rider_id": None,
            "rider_name": None,
            "status": OrderStatus.PENDING.value,
            "updated_at": time.time(),
        },
    )


def change_status(
    db: DbClient, notifier: Notifier, user: CurrentUser, order_id: str, status: str
) -> DocumentRecord:
    order = get_order(db, order_id)
    if not user.is_admin and order.data.get("rider_id") != user.id:
        raise PermissionDeniedError("Only admins or the assigned rider can update this order")
    current = parse_order_status(order.data.get("status"))
    target = parse_order_status(status)
    if target not in ORDER_TRANSITIONS[current]:
        raise ConflictError(
            f"Cannot move order from {current.value} to {target.value}",
            details={"from": current.value, "to": target.value},
        )
    now = time.time()
    changes = {"status": target.value, "updated_at": now}
    if target == OrderStatus.IN_TRANSIT:
        changes["picked_up_at"] = now
    elif target == OrderStatus.DELIVERED:
        changes["delivered_at"] = now
    elif target == OrderStatus.COMPLETED:
        changes["completed_at"] = now
    elif target == OrderStatus.PENDING:
        changes.update({"rider_id": None, "rider_name": None})
    record = db.update(ORDERS, order_id, changes)

    if target in (OrderStatus.IN_TRANSIT, OrderStatus.DELIVERED):
        in_transit = target == OrderStatus.IN_TRANSIT
        notifier.notify_admins(
            title="Delivery on its way" if in_transit else "Delivery completed",
            message=(
                f"{user.display_name} "
                f"{'picked up' if in_transit else 'delivered'} the order for "
                f"{order.data.get('property_name') or 'a property'}"
            ),
            type=NotificationType.ORDER_IN_PROGRESS if in_transit else NotificationType.ORDER_DELIVERED,
            sender=user,
            related_entity_id=order_id,
            related_entity_type="ORDER",
            related_entity_name=order.data.get("property_name"),
        )
    return record


def set_urgency(
    db: DbClient, notifier: Notifier, user: CurrentUser, order_id: str, urgency: Optional[str]
) -> dict:
    if not user.is_admin:
        raise PermissionDeniedError("Only admins can change urgency")
    try:
        value = OrderUrgency(urgency)
    except ValueError as exc:
        raise ValidationError(
            "Urgency must be 'normal' or 'urgent'", code=ErrorCode.INVALID_URGENCY
        ) from exc
    order = get_order(db, order_id)
    if order.data.get("urgency", OrderUrgency.NORMAL.value) == value.value:
        return {"success": True, "message": f"Urgency already set to {value.value}", "urgency": value.value}

    db.update(
        ORDERS,
        order_id,
        {
            "urgency": value.value,
            "urgency_changed_at": time.time(),
            "urgency_changed_by": user.id,
            "updated_at": time.time(),
        },
    )
    notified = 0
    if value == OrderUrgency.URGENT:
        property_name = order.data.get("property_name") or "a property"
        for rider in db.query(USERS, [("role", "==", UserRole.RIDER.value)]):
            sent = notifier.notify_user(
                rider.id,
                recipient_role=UserRole.RIDER,
                title="Urgent delivery",
                message=f"The delivery to {property_name} is now urgent",
                type=NotificationType.URGENT_ORDER,
                sender=user,
                related_entity_id=order_id,
                related_entity_type="ORDER",
                related_entity_name=order.data.get("property_name"),
                priority="high",
            )
            notified += 1 if sent else 0
    logger.info("Order %s urgency set to %s (%d riders notified)", order_id, value.value, notified)
    return {
        "success": True,
        "message": f"Urgency set to {value.value}",
        "urgency": value.value,
        "riders_notified": notified,
    }


def orders_for_cleaning(db: DbClient, cleaning_id: str) -> list[DocumentRecord]:
    """Non-cancelled orders carrying this cleaning_id."""
    return [
        record
        for record in db.query(ORDERS, [("cleaning_id", "==", cleaning_id)])
        if record.data.get("status") != OrderStatus.CANCELLED.value
    ]


def linked_orders(db: DbClient, cleaning_id: str, cleaning: dict) -> list[DocumentRecord]:
    """
    Orders delivering to this cleaning: the explicit laundry order plus every
    order carrying its cleaning_id. When neither exists, an order for the same
    property and day is used.
    """
    linked: list[DocumentRecord] = []
    order_id = cleaning.get("laundry_order_id")
    if order_id:
        record = db.get(ORDERS, order_id)
        if record:
            linked.append(record)
    seen = {record.id for record in linked}
    for record in db.query(ORDERS, [("cleaning_id", "==", cleaning_id)]):
        if record.id not in seen:
            linked.append(record)
            seen.add(record.id)
    if linked:
        return linked
    property_id = cleaning.get("property_id")
    day = (cleaning.get("scheduled_date") or "")[:10]
    if property_id and day:
        for record in db.query(ORDERS, [("property_id", "==", property_id)]):
            if (record.data.get("scheduled_date") or "")[:10] == day:
                return [record]
    return []


def cancel_order(db: DbClient, order_id: str, reason: str) -> bool:
    record = db.get(ORDERS, order_id)
    if not record or record.data.get("status") in LOCKED_STATUSES:
        return False
    db.update(
        ORDERS,
        order_id,
        {
            "status": OrderStatus.CANCELLED.value,
            "cancel_reason": reason,
            "cancelled_at": time.time(),
            "updated_at": time.time(),
        },
    )
    return True


def _pending_requests(db: DbClient, property_id: str) -> list[DocumentRecord]:
    return db.query(
        PRODUCT_REQUESTS,
        [("property_id", "==", property_id), ("status", "==", "pending")],
        order_by="created_at",
    )


def aggregate_items(items: Iterable[dict]) -> list[dict]:
    totals: dict[str, dict] = {}
    for item in items:
        key = item.get("item_id") or item.get("name")
        if key in totals:
            totals[key]["quantity"] += item.get("quantity") or 0
        else:
            totals[key] = dict(item)
    return list(totals.values())


def generate_laundry_order(
    db: DbClient, cleaning_id: str, cleaning: dict, property: dict
) -> Optional[DocumentRecord]:
    """Build the delivery for a cleaning that just started, merging pending product requests."""
    if not property.get("auto_generate_laundry") or property.get("uses_own_linen"):
        return None
    if cleaning.get("laundry_order_id"):
        return None

    linen_items = [
        {
            "item_id": entry.get("item_id"),
            "name": entry.get("item_name") or entry.get("name"),
            "quantity": entry.get("quantity") or 0,
            "type": "linen",
        }
        for entry in property.get("linen_config") or []
    ]
    requests = _pending_requests(db, cleaning["property_id"])
    product_items = aggregate_items(
        {**item, "type": PRODUCT_ITEM_TYPE}
        for request in requests
        for item in request.data.get("items") or []
    )
    items = linen_items + product_items
    if not items:
        return None

    order = create_order(
        db,
        {
            "property_id": cleaning["property_id"],
            "property_name": cleaning.get("property_name") or property.get("name"),
            "property_address": property.get("address"),
            "cleaning_id": cleaning_id,
            "scheduled_date": cleaning.get("scheduled_date"),
            "scheduled_time": cleaning.get("scheduled_time"),
            "type": order_type_for(items).value,
            "items": items,
            "has_cleaning_products": bool(product_items),
            "product_request_ids": [r.id for r in requests],
            "auto_generated": True,
        },
    )
    for request in requests:
        db.update(
            PRODUCT_REQUESTS,
            request.id,
            {"status": "fulfilled", "linked_order_id": order.id, "updated_at": time.time()},
        )
    db.update(
        CLEANINGS,
        cleaning_id,
        {"laundry_order_id": order.id, "requires_laundry": True},
    )
    logger.info(
        "Generated %s order %s for cleaning %s (%d requests merged)",
        order.data["type"],
        order.id,
        cleaning_id,
        len(requests),
    )
    return order


def list_product_requests(
    db: DbClient,
    *,
    user: Optional[CurrentUser] = None,
    property_id: Optional[str] = None,
    status: Optional[str] = None,
) -> list[DocumentRecord]:
    if user is not None and user.role == UserRole.RIDER:
        raise PermissionDeniedError("Riders cannot list product requests")
    where = []
    if property_id:
        where.append(("property_id", "==", property_id))
    if status:
        where.append(("status", "==", status))
    records = db.query(PRODUCT_REQUESTS, where, order_by="created_at", descending=True)
    visible = visible_property_ids(db, user) if user is not None else None
    if visible is None:
        return records
    return [r for r in records if r.data.get("property_id") in visible]


def normalize_request_items(items: Iterable[dict]) -> list[dict]:
    normalized = []
    for item in items:
        normalized.append(
            {
                "item_id": item.get("item_id") or item.get("id"),
                "name": item.get("name") or "",
                "quantity": int(item.get("quantity") or 1),
                "category_id": PRODUCT_CATEGORY,
                "type": PRODUCT_ITEM_TYPE,
            }
        )
    return normalized


def _next_cleaning(db: DbClient, property_id: str) -> Optional[DocumentRecord]:
    today = time.strftime("%Y-%m-%d", time.gmtime())
    upcoming = db.query(
        CLEANINGS,
        [
            ("property_id", "==", property_id),
            ("status", "in", [CleaningStatus.SCHEDULED.value, CleaningStatus.ASSIGNED.value]),
            ("scheduled_date", ">=", today),
        ],
        order_by="scheduled_date",
        limit=1,
    )
    return upcoming[0] if upcoming else None


def create_product_request(
    db: DbClient, notifier: Notifier, user: CurrentUser, payload: dict
) -> dict:
    property_id = payload.get("property_id")
    cleaning_id = payload.get("cleaning_id")
    items = payload.get("items") or []
    if not property_id or not cleaning_id or not items:
        raise ValidationError("property_id, cleaning_id and at least one item are required")

    property_record = db.get(PROPERTIES, property_id)
    property_name = payload.get("property_name") or (
        property_record.data.get("name") if property_record else ""
    )
    items = normalize_request_items(items)
    now = time.time()
    request = db.add(
        PRODUCT_REQUESTS,
        {
            "property_id": property_id,
            "property_name": property_name,
            "cleaning_id": cleaning_id,
            "requested_by": user.id,
            "requested_by_name": user.display_name,
            "items": items,
            "notes": payload.get("notes") or "",
            "status": "pending",
            "linked_order_id": None,
            "created_at": now,
            "updated_at": now,
        },
    )

    linked_order_id = None
    open_orders = db.query(
        ORDERS,
        [("property_id", "==", property_id), ("status", "in", list(OPEN_STATUSES))],
        order_by="created_at",
        limit=1,
    )
    if open_orders:
        order = open_orders[0]
        merged = aggregate_items(list(order.data.get("items") or []) + items)
        db.update(
            ORDERS,
            order.id,
            {
                "items": merged,
                "type": order_type_for(merged).value,
                "has_cleaning_products": True,
                "updated_at": now,
            },
        )
        linked_order_id = order.id
        message = "Products added to the next delivery"
    else:
        next_cleaning = _next_cleaning(db, property_id)
        if next_cleaning:
            order = create_order(
                db,
                {
                    "property_id": property_id,
                    "property_name": property_name,
                    "cleaning_id": next_cleaning.id,
                    "scheduled_date": next_cleaning.data.get("scheduled_date"),
                    "type": OrderType.PRODUCTS.value,
                    "items": items,
                    "has_cleaning_products": True,
                    "product_request_ids": [request.id],
                },
            )
            linked_order_id = order.id
            message = "Products will be delivered with the next cleaning"
        else:
            message = "No upcoming cleaning: the request will be delivered when one is scheduled"

    if linked_order_id:
        request = db.update(
            PRODUCT_REQUESTS,
            request.id,
            {"status": "linked_to_order", "linked_order_id": linked_order_id, "updated_at": now},
        )

    notifier.notify_admins(
        title="Product request",
        message=(
            f"{user.display_name} asked for {len(items)} products for "
            f"{property_name or 'a property'}"
        ),
        type=NotificationType.PRODUCT_REQUEST,
        sender=user,
        related_entity_id=request.id,
        related_entity_type="PRODUCT_REQUEST",
        related_entity_name=property_name,
    )
    return {
        "success": True,
        "request": request.as_dict(),
        "linked_order_id": linked_order_id,
        "message": message,
    }
