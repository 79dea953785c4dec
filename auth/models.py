"""Data models for the Logware session client"""

import datetime
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class SessionState(str, Enum):
    """States of the client session"""

    ANONYMOUS = "anonymous"
    AUTHENTICATING = "authenticating"
    MFA_PENDING = "mfa_pending"
    AUTHENTICATED = "authenticated"
    REFRESHING = "refreshing"
    EXPIRED = "expired"


class MFAMethod(str, Enum):
    """Second-factor methods offered by the identity service"""

    APP = "app"
    SMS = "sms"
    EMAIL = "email"
    RECOVERY = "recovery"

    @property
    def can_resend(self) -> bool:
        """Only delivered codes can be re-sent"""
        return self in (MFAMethod.SMS, MFAMethod.EMAIL)


@dataclass(frozen=True)
class TokenPair:
    """Access/refresh token pair

    Attributes:
        access_token: Short-lived bearer token attached to API requests
        refresh_token: Long-lived token used only to obtain a new pair
        expires_at: Access token expiry (UTC), None when unknown
    """
    access_token: str
    refresh_token: str
    expires_at: Optional[datetime.datetime] = None

    def __post_init__(self):
        if not self.access_token or not self.refresh_token:
            raise ValueError("TokenPair requires both an access token and a refresh token")

    def is_expired(self, skew_seconds: float = 5.0, now: Optional[datetime.datetime] = None) -> bool:
        """Check if the access token is expired (unknown expiry counts as valid)"""
        if self.expires_at is None:
            return False
        now = now or utcnow()
        return now >= self.expires_at - datetime.timedelta(seconds=skew_seconds)

    def seconds_until_expiry(self, now: Optional[datetime.datetime] = None) -> Optional[float]:
        if self.expires_at is None:
            return None
        now = now or utcnow()
        return (self.expires_at - now).total_seconds()

    def __repr__(self) -> str:
        # Keep secrets out of logs and tracebacks
        return f"TokenPair(expires_at={self.expires_at!r})"


@dataclass(frozen=True)
class NotificationPreferences:
    email: bool = False
    in_app: bool = False
    push: bool = False
    digest: str = "daily"


@dataclass(frozen=True)
class UserPreferences:
    theme: str = "light"
    notifications: NotificationPreferences = field(default_factory=NotificationPreferences)
    language: str = "en-US"


@dataclass(frozen=True)
class User:
    """Authenticated dashboard user

    Attributes:
        id: Server-side user identifier
        email: Login e-mail address
        name: Display name
        role: One of admin, analyst, viewer, auditor, user
        permissions: Explicit permission grants
        mfa_enabled: True when the account requires a second factor
        last_login: ISO 8601 timestamp of the previous login
        preferences: Dashboard preferences
    """
    id: str
    email: str
    name: str = ""
    role: str = "user"
    permissions: Tuple[str, ...] = ()
    mfa_enabled: bool = False
    last_login: Optional[str] = None
    preferences: UserPreferences = field(default_factory=UserPreferences)

    def has_role(self, role: str) -> bool:
        return self.role == role

    def has_any_role(self, roles: List[str]) -> bool:
        return self.role in roles

    def has_permission(self, permission: str) -> bool:
        # Admins have all permissions
        if self.role == "admin":
            return True
        return permission in self.permissions


@dataclass(frozen=True)
class MFAChallenge:
    """In-progress second-factor verification tied to one login attempt"""
    verification_id: str
    user_id: str
    method: MFAMethod = MFAMethod.APP
    created_at: datetime.datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class MfaRequired:
    """Login answered "second factor required" (a control-flow signal, not an error)"""
    user_id: str
    verification_id: str
    methods: Tuple[MFAMethod, ...] = ()


@dataclass(frozen=True)
class AuthResult:
    """Outcome of a completed authentication step"""
    tokens: TokenPair
    user: Optional[User] = None


@dataclass(frozen=True)
class Session:
    """Read-only snapshot of the session published to subscribers"""
    state: SessionState = SessionState.ANONYMOUS
    user: Optional[User] = None
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    access_token_expiry: Optional[datetime.datetime] = None
    mfa_challenge: Optional[MFAChallenge] = None
    mfa_failed_attempts: int = 0

    @property
    def is_authenticated(self) -> bool:
        return self.state in (SessionState.AUTHENTICATED, SessionState.REFRESHING)

    def __repr__(self) -> str:
        return (
            f"Session(state={self.state.value!r}, user={self.user.email if self.user else None!r}, "
            f"access_token_expiry={self.access_token_expiry!r}, mfa_challenge={self.mfa_challenge!r})"
        )
