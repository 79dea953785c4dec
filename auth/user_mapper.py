"""Conversion of server user payloads into ``User``

This is the only place a server user document becomes a ``User``; login,
MFA verification, password change and /auth/me all go through it.
"""

import logging
from typing import Any, Dict, Optional

from pydantic import ValidationError

from .errors import IdentityServiceError
from .models import NotificationPreferences, User, UserPreferences
from .schemas import PreferencesPayload, UserPayload

logger = logging.getLogger(__name__)

KNOWN_ROLES = ("admin", "analyst", "viewer", "auditor", "user")

# The server only knows light/dark; "system" is resolved to light
_THEMES = {"light": "light", "dark": "dark", "system": "light"}


def map_preferences(payload: Optional[PreferencesPayload]) -> UserPreferences:
    if payload is None:
        return UserPreferences()

    notifications = NotificationPreferences()
    if payload.notifications is not None:
        n = payload.notifications
        notifications = NotificationPreferences(
            email=bool(n.email),
            in_app=bool(n.browser),
            push=bool(n.mobile),
            digest=n.digest or "daily",
        )

    return UserPreferences(
        theme=_THEMES.get((payload.theme or "").lower(), "light"),
        notifications=notifications,
        language=payload.language or "en-US",
    )


def map_user(payload: UserPayload) -> User:
    """Convert a parsed user payload

    Args:
        payload: Validated server user document

    Returns:
        User with display name, role and preferences normalized
    """
    name = payload.name
    if not name:
        name = " ".join(part for part in (payload.first_name, payload.last_name) if part).strip()
    if not name:
        name = payload.email

    role = (payload.role or "user").lower()
    if role not in KNOWN_ROLES:
        logger.warning(f"Unknown role '{role}' for user {payload.id}, treating as 'user'")
        role = "user"

    return User(
        id=payload.id,
        email=payload.email,
        name=name,
        role=role,
        permissions=tuple(payload.permissions),
        mfa_enabled=payload.mfa_enabled,
        last_login=payload.last_login,
        preferences=map_preferences(payload.preferences),
    )


def user_from_dict(data: Dict[str, Any]) -> User:
    """Validate and convert a raw user document

    Raises:
        IdentityServiceError: If the document is not a valid user
    """
    try:
        payload = UserPayload.model_validate(data)
    except ValidationError as e:
        raise IdentityServiceError(f"Malformed user payload: {e.error_count()} invalid field(s)") from e
    return map_user(payload)
