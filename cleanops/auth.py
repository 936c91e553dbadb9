"""
Request identity.

The web client stores the signed-in user as URL-encoded JSON in the
``firebase-user`` cookie; API clients may send the same JSON in ``X-User``.
"""

from __future__ import annotations

import json
import logging
from typing import Optional
from urllib.parse import unquote

from cleanops.errors import AuthenticationError
from cleanops.types import CurrentUser, UserRole

logger = logging.getLogger(__name__)

USER_COOKIE = "firebase-user"
USER_HEADER = "X-User"

ROLE_ALIASES = {
    "OWNER": UserRole.OWNER,
    "CLIENTE": UserRole.OWNER,
    "OPERATORE": UserRole.OPERATOR,
    "OPERATOR": UserRole.OPERATOR,
}


def parse_role(value: object) -> Optional[UserRole]:
    """Case-insensitive role lookup that also accepts legacy role names."""
    name = str(value or "").strip().upper()
    if name in ROLE_ALIASES:
        return ROLE_ALIASES[name]
    try:
        return UserRole(name)
    except ValueError:
        return None


def parse_user(raw: Optional[str]) -> Optional[CurrentUser]:
    if not raw:
        return None
    try:
        payload = json.loads(unquote(raw))
    except ValueError:
        logger.warning("Ignoring malformed user payload")
        return None
    if not isinstance(payload, dict) or not payload.get("id"):
        return None
    role = parse_role(payload.get("role"))
    if role is None:
        logger.warning("Unknown role %r for user %s", payload.get("role"), payload.get("id"))
        return None
    return CurrentUser(
        id=str(payload["id"]),
        role=role,
        name=payload.get("name") or "",
        email=payload.get("email"),
    )


def resolve_user(cookie: Optional[str], header: Optional[str]) -> CurrentUser:
    user = parse_user(cookie) or parse_user(header)
    if not user:
        raise AuthenticationError()
    return user
