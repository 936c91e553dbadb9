"""
Properties, inventory items and user records.
"""

from __future__ import annotations

import logging
import time
from typing import Optional

from cleanops import linen
from cleanops.auth import parse_role
from cleanops.db import DbClient, DocumentRecord
from cleanops.errors import ErrorCode, NotFoundError, PermissionDeniedError, ValidationError
from cleanops.lifecycle import can_manage, is_assigned_operator, is_property_owner
from cleanops.types import CLEANINGS, INVENTORY, PROPERTIES, USERS, CurrentUser, UserRole

logger = logging.getLogger(__name__)


def create_property(db: DbClient, user: CurrentUser, payload: dict) -> DocumentRecord:
    now = time.time()
    return db.add(
        PROPERTIES,
        {**payload, "created_by": user.id, "created_at": now, "updated_at": now},
    )


def owned_property_ids(db: DbClient, user: CurrentUser) -> set[str]:
    ids = {r.id for r in db.query(PROPERTIES, [("owner_id", "==", user.id)])}
    if user.email:
        ids.update(r.id for r in db.query(PROPERTIES, [("owner_email", "==", user.email)]))
    return ids


def visible_property_ids(db: DbClient, user: CurrentUser) -> Optional[set[str]]:
    """
    Properties whose orders, requests and issues the user may list.

    None means no restriction (admins). Owners see their own properties and
    operators see the properties of the cleanings they are assigned to.
    """
    if user.is_admin:
        return None
    if user.role == UserRole.OWNER:
        return owned_property_ids(db, user)
    if user.role == UserRole.OPERATOR:
        return {
            r.data.get("property_id")
            for r in db.query(CLEANINGS)
            if is_assigned_operator(r.data, user.id)
        }
    return set()


def get_property(db: DbClient, user: CurrentUser, property_id: str) -> DocumentRecord:
    record = db.get(PROPERTIES, property_id)
    if not record:
        raise NotFoundError(ErrorCode.PROPERTY_NOT_FOUND, "Property not found")
    if not (user.role in (UserRole.ADMIN, UserRole.OPERATOR, UserRole.RIDER)
            or is_property_owner(record.as_dict(), user)):
        raise PermissionDeniedError("Not allowed to view this property")
    return record


def list_inventory(db: DbClient, category: Optional[str] = None) -> list[DocumentRecord]:
    where = [("category", "==", category)] if category else []
    return db.query(INVENTORY, where, order_by="name")


def create_inventory_item(db: DbClient, payload: dict) -> DocumentRecord:
    now = time.time()
    return db.add(INVENTORY, {**payload, "created_at": now, "updated_at": now})


def _linen_lines(config: Optional[dict], inventory: list[dict]) -> list[dict]:
    return [
        {"item_id": line["id"], "item_name": line["name"], "quantity": line["quantity"]}
        for line in linen.config_to_selected_items(config, inventory)
        if line["category"] in (linen.BED_LINEN, linen.BATH_LINEN)
    ]


def configure_linen(
    db: DbClient, user: CurrentUser, property_id: str, payload: dict
) -> dict:
    """Store or regenerate per-guest linen configs and report whether every guest count is covered."""
    record = db.get(PROPERTIES, property_id)
    if not record:
        raise NotFoundError(ErrorCode.PROPERTY_NOT_FOUND, "Property not found")
    property = record.as_dict()
    if not can_manage(property, user):
        raise PermissionDeniedError("Only admins or the owner can change linen settings")

    max_guests = int(property.get("max_guests") or 2)
    bedrooms = int(property.get("bedrooms") or 1)
    bathrooms = int(property.get("bathrooms") or 1)
    inventory = [r.as_dict() for r in db.query(INVENTORY)]
    beds = payload.get("beds") or property.get("beds") or linen.generate_auto_beds(max_guests, bedrooms)
    if any(not bed.get("id") for bed in beds):
        raise ValidationError("Every bed needs an id")

    if payload.get("service_configs") and not payload.get("regenerate"):
        configs = {
            str(guests): linen.migrate_old_config(config, beds, inventory)
            for guests, config in payload["service_configs"].items()
        }
    else:
        configs = linen.generate_all_guest_configs(max_guests, beds, bathrooms, inventory)

    valid, report = linen.validate_all_configs(configs, beds, max_guests)
    db.update(
        PROPERTIES,
        property_id,
        {
            "beds": beds,
            "service_configs": configs,
            "linen_config": _linen_lines(configs.get(str(max_guests)), inventory),
            "updated_at": time.time(),
        },
    )
    logger.info("Linen config for property %s saved (valid=%s)", property_id, valid)
    return {
        "property_id": property_id,
        "valid": valid,
        "validation": {guests: result.as_dict() for guests, result in report.items()},
        "beds": beds,
        "service_configs": configs,
    }


def get_linen_config(db: DbClient, user: CurrentUser, property_id: str) -> dict:
    property = get_property(db, user, property_id).as_dict()
    max_guests = int(property.get("max_guests") or 2)
    beds = property.get("beds") or linen.generate_auto_beds(
        max_guests, int(property.get("bedrooms") or 1)
    )
    configs = property.get("service_configs") or {}
    valid, report = linen.validate_all_configs(configs, beds, max_guests)
    return {
        "property_id": property_id,
        "valid": valid,
        "validation": {guests: result.as_dict() for guests, result in report.items()},
        "beds": beds,
        "service_configs": configs,
        "linen_config": property.get("linen_config") or [],
    }


def create_user(db: DbClient, payload: dict) -> DocumentRecord:
    role = parse_role(payload.get("role"))
    if role is None:
        raise ValidationError(f"Unknown role: {payload.get('role')}")
    if not (payload.get("name") or "").strip():
        raise ValidationError("name is required")
    now = time.time()
    data = {
        "name": payload["name"].strip(),
        "email": payload.get("email"),
        "role": role.value,
        "push_tokens": list(payload.get("push_tokens") or []),
        "created_at": now,
        "updated_at": now,
    }
    return db.add(USERS, data, doc_id=payload.get("id"))


def list_users(db: DbClient, role: Optional[str] = None) -> list[DocumentRecord]:
    where = [("role", "==", role)] if role else []
    return db.query(USERS, where, order_by="name")


def register_push_token(db: DbClient, user: CurrentUser, token: str) -> DocumentRecord:
    record = db.get(USERS, user.id)
    tokens = list((record.data.get("push_tokens") if record else None) or [])
    if token not in tokens:
        tokens.append(token)
    if record:
        return db.update(USERS, user.id, {"push_tokens": tokens, "updated_at": time.time()})
    return db.set(
        USERS,
        user.id,
        {
            "name": user.name,
            "email": user.email,
            "role": user.role.value,
            "push_tokens": tokens,
            "created_at": time.time(),
            "updated_at": time.time(),
        },
    )
