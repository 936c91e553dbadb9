"""
Issue reports raised by operators during or after a cleaning.
"""

from __future__ import annotations

import logging
import time
from typing import Optional

from cleanops.db import DbClient, DocumentRecord
from cleanops.errors import ErrorCode, NotFoundError, PermissionDeniedError, ValidationError
from cleanops.notifications import Notifier
from cleanops.properties import visible_property_ids
from cleanops.types import (
    CLEANING_ISSUES,
    PROPERTIES,
    CurrentUser,
    IssueSeverity,
    IssueType,
    NotificationType,
    UserRole,
)

logger = logging.getLogger(__name__)

URGENT_SEVERITIES = frozenset({IssueSeverity.HIGH.value, IssueSeverity.CRITICAL.value})

_EDITABLE_FIELDS = ("title", "description", "severity", "type", "photos", "status")

_RESOLUTION_FIELDS = (
    "resolved_at",
    "resolved_by",
    "resolved_by_name",
    "resolved_in_cleaning_id",
    "resolution_notes",
)


def _excerpt(text: str, limit: int = 100) -> str:
    return text if len(text) <= limit else text[:limit] + "..."


def _owner_id(db: DbClient, property_id: Optional[str]) -> Optional[str]:
    if not property_id:
        return None
    record = db.get(PROPERTIES, property_id)
    return record.data.get("owner_id") if record else None


def validate_issue(payload: dict) -> tuple[IssueType, IssueSeverity]:
    missing = [
        name
        for name in ("property_id", "cleaning_id", "type", "title", "description")
        if not payload.get(name)
    ]
    if missing:
        raise ValidationError(
            "Missing required fields", details={"missing": missing}
        )
    try:
        issue_type = IssueType(payload["type"])
        severity = IssueSeverity(payload.get("severity") or IssueSeverity.MEDIUM.value)
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc
    return issue_type, severity


def create_issue(
    db: DbClient, notifier: Notifier, user: CurrentUser, payload: dict
) -> DocumentRecord:
    issue_type, severity = validate_issue(payload)

    now = time.time()
    data = {
        "property_id": payload["property_id"],
        "property_name": payload.get("property_name") or "",
        "cleaning_id": payload["cleaning_id"],
        "rating_id": payload.get("rating_id"),
        "reported_by": user.id,
        "reported_by_name": user.display_name,
        "reported_at": now,
        "type": issue_type.value,
        "title": payload["title"],
        "description": payload["description"],
        "severity": severity.value,
        "photos": list(payload.get("photos") or []),
        "status": "open",
        "resolved": False,
        "resolution_photos": [],
        "created_at": now,
        "updated_at": now,
    }
    data.update({name: None for name in _RESOLUTION_FIELDS})
    record = db.add(CLEANING_ISSUES, data)
    logger.info("Issue %s reported on property %s (%s)", record.id, data["property_id"], severity.value)

    property_label = data["property_name"] or "a property"
    notifier.notify_admins(
        title=f"New issue: {data['title']}",
        message=f"{user.display_name} reported a problem in {property_label}: {_excerpt(data['description'])}",
        type=NotificationType.WARNING if severity == IssueSeverity.CRITICAL else NotificationType.INFO,
        sender=user,
        related_entity_id=record.id,
        related_entity_type="issue",
        related_entity_name=data["title"],
        action_required=severity.value in URGENT_SEVERITIES,
        priority="high" if severity.value in URGENT_SEVERITIES else "normal",
    )
    notifier.notify_user(
        _owner_id(db, data["property_id"]),
        recipient_role=UserRole.OWNER,
        title=f"Issue reported: {data['title']}",
        message=f"A problem was reported in {property_label}: {_excerpt(data['description'])}",
        type=NotificationType.WARNING if severity == IssueSeverity.CRITICAL else NotificationType.INFO,
        sender=user,
        related_entity_id=record.id,
        related_entity_type="issue",
    )
    return record


def list_issues(
    db: DbClient,
    *,
    user: Optional[CurrentUser] = None,
    property_id: Optional[str] = None,
    only_open: bool = False,
    status: Optional[str] = None,
) -> list[DocumentRecord]:
    if user is not None and user.role == UserRole.RIDER:
        raise PermissionDeniedError("Riders cannot list issues")
    where = []
    if property_id:
        where.append(("property_id", "==", property_id))
    order_by = "reported_at"
    if only_open or status == "open":
        where.append(("resolved", "==", False))
    elif status == "resolved":
        where.append(("resolved", "==", True))
        order_by = "resolved_at"
    records = db.query(CLEANING_ISSUES, where, order_by=order_by, descending=True)
    visible = visible_property_ids(db, user) if user is not None else None
    if visible is None:
        return records
    return [r for r in records if r.data.get("property_id") in visible]


def get_issue(db: DbClient, issue_id: str) -> DocumentRecord:
    record = db.get(CLEANING_ISSUES, issue_id)
    if not record:
        raise NotFoundError(ErrorCode.ISSUE_NOT_FOUND, "Issue not found")
    return record


def update_issue(
    db: DbClient,
    notifier: Notifier,
    user: CurrentUser,
    issue_id: str,
    payload: dict,
) -> DocumentRecord:
    issue = get_issue(db, issue_id)
    action = payload.get("action")
    now = time.time()

    if action == "resolve":
        changes = {
            "status": "resolved",
            "resolved": True,
            "resolved_at": now,
            "resolved_by": user.id,
            "resolved_by_name": user.display_name,
            "resolved_in_cleaning_id": payload.get("resolved_in_cleaning_id"),
            "resolution_notes": payload.get("resolution_notes"),
            "resolution_photos": list(payload.get("resolution_photos") or []),
            "updated_at": now,
        }
        record = db.update(CLEANING_ISSUES, issue_id, changes)
        notes = payload.get("resolution_notes")
        message = f"The issue \"{issue.data.get('title')}\" was resolved."
        if notes:
            message += f" Notes: {notes}"
        notifier.notify_user(
            _owner_id(db, issue.data.get("property_id")),
            recipient_role=UserRole.OWNER,
            title=f"Issue resolved: {issue.data.get('title')}",
            message=message,
            type=NotificationType.SUCCESS,
            sender=user,
            related_entity_id=issue_id,
            related_entity_type="issue",
        )
        notifier.notify_admins(
            title=f"Issue resolved: {issue.data.get('title')}",
            message=message,
            type=NotificationType.SUCCESS,
            sender=user,
            related_entity_id=issue_id,
            related_entity_type="issue",
        )
        return record

    if action == "reopen":
        changes = {name: None for name in _RESOLUTION_FIELDS}
        changes.update(
            {"status": "open", "resolved": False, "resolution_photos": [], "updated_at": now}
        )
        return db.update(CLEANING_ISSUES, issue_id, changes)

    if action:
        raise ValidationError(f"Unknown action: {action}")

    changes = {k: payload[k] for k in _EDITABLE_FIELDS if k in payload}
    if "severity" in changes:
        try:
            IssueSeverity(changes["severity"])
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc
    changes["updated_at"] = now
    return db.update(CLEANING_ISSUES, issue_id, changes)


def delete_issue(db: DbClient, issue_id: str) -> None:
    get_issue(db, issue_id)
    db.delete(CLEANING_ISSUES, issue_id)
