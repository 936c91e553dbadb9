"""
Cleaning status machine and the permission checks that go with it.
"""

from __future__ import annotations

from typing import Optional

from cleanops.errors import ConflictError, ErrorCode, ValidationError
from cleanops.types import CleaningStatus, CurrentUser

# Status strings written by older clients.
_LEGACY_STATUSES = {
    "pending": CleaningStatus.SCHEDULED,
    "PENDING": CleaningStatus.SCHEDULED,
    "scheduled": CleaningStatus.SCHEDULED,
    "assigned": CleaningStatus.ASSIGNED,
    "in_progress": CleaningStatus.IN_PROGRESS,
    "completed": CleaningStatus.COMPLETED,
    "cancelled": CleaningStatus.CANCELLED,
}

TRANSITIONS: dict[CleaningStatus, frozenset[CleaningStatus]] = {
    CleaningStatus.SCHEDULED: frozenset(
        {CleaningStatus.ASSIGNED, CleaningStatus.IN_PROGRESS, CleaningStatus.CANCELLED}
    ),
    CleaningStatus.ASSIGNED: frozenset(
        {
            CleaningStatus.SCHEDULED,
            CleaningStatus.IN_PROGRESS,
            CleaningStatus.COMPLETED,
            CleaningStatus.CANCELLED,
        }
    ),
    CleaningStatus.IN_PROGRESS: frozenset(
        {CleaningStatus.COMPLETED, CleaningStatus.CANCELLED}
    ),
    CleaningStatus.COMPLETED: frozenset(),
    CleaningStatus.CANCELLED: frozenset(),
}

STARTABLE = frozenset({CleaningStatus.SCHEDULED, CleaningStatus.ASSIGNED})
COMPLETABLE = frozenset({CleaningStatus.IN_PROGRESS, CleaningStatus.ASSIGNED})
ASSIGNABLE = frozenset(
    {CleaningStatus.SCHEDULED, CleaningStatus.ASSIGNED, CleaningStatus.IN_PROGRESS}
)
MOVABLE = frozenset({CleaningStatus.SCHEDULED, CleaningStatus.ASSIGNED})


def parse_status(value: Optional[str]) -> CleaningStatus:
    if not value:
        return CleaningStatus.SCHEDULED
    if value in _LEGACY_STATUSES:
        return _LEGACY_STATUSES[value]
    try:
        return CleaningStatus(value)
    except ValueError as exc:
        raise ValidationError(
            f"Unknown cleaning status: {value}", code=ErrorCode.INVALID_STATUS
        ) from exc


def can_transition(current: CleaningStatus, target: CleaningStatus) -> bool:
    return target in TRANSITIONS[current]


def ensure_transition(
    current: CleaningStatus, target: CleaningStatus, *, is_admin: bool = True
) -> None:
    if not can_transition(current, target):
        raise ConflictError(
            f"Cannot move cleaning from {current.value} to {target.value}",
            details={"from": current.value, "to": target.value},
        )
    if (
        current == CleaningStatus.IN_PROGRESS
        and target == CleaningStatus.CANCELLED
        and not is_admin
    ):
        raise ConflictError(
            "Only an admin can cancel a cleaning in progress",
            details={"from": current.value, "to": target.value},
        )


def operator_ids(cleaning: dict) -> list[str]:
    ids = [op.get("id") for op in cleaning.get("operators") or [] if op.get("id")]
    legacy = cleaning.get("operator_id")
    if legacy and legacy not in ids:
        ids.insert(0, legacy)
    return ids


def is_assigned_operator(cleaning: dict, user_id: str) -> bool:
    return user_id in operator_ids(cleaning)


def is_property_owner(property: Optional[dict], user: CurrentUser) -> bool:
    if not property:
        return False
    if property.get("owner_id") and property.get("owner_id") == user.id:
        return True
    return bool(user.email) and property.get("owner_email") == user.email


def can_operate(cleaning: dict, user: CurrentUser) -> bool:
    """Admins and the cleaning's own operators may start and complete it."""
    return user.is_admin or is_assigned_operator(cleaning, user.id)


def can_manage(property: Optional[dict], user: CurrentUser) -> bool:
    """Admins and the property owner may cancel, move or reschedule."""
    return user.is_admin or is_property_owner(property, user)
