"""
Pydantic models for the identity service wire format.
"""
from typing import Any, Dict, List, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class WireModel(BaseModel):
    """Base for server payloads (camelCase on the wire, unknown fields ignored)"""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class NotificationPreferencesPayload(WireModel):
    email: Optional[bool] = None
    browser: Optional[bool] = None
    mobile: Optional[bool] = None
    digest: Optional[str] = None


class PreferencesPayload(WireModel):
    theme: Optional[str] = None
    notifications: Optional[NotificationPreferencesPayload] = None
    language: Optional[str] = None


class UserPayload(WireModel):
    """User document as returned by login, verify-2fa and /auth/me"""
    id: str = Field(validation_alias=AliasChoices("id", "_id"))
    email: str
    name: Optional[str] = None
    first_name: Optional[str] = Field(default=None, alias="firstName")
    last_name: Optional[str] = Field(default=None, alias="lastName")
    role: Optional[str] = None
    permissions: List[str] = Field(default_factory=list)
    mfa_enabled: bool = Field(
        default=False,
        validation_alias=AliasChoices("mfaEnabled", "twoFactorEnabled", "mfa_enabled"),
    )
    last_login: Optional[str] = Field(default=None, alias="lastLogin")
    preferences: Optional[PreferencesPayload] = None

    @field_validator("id", mode="before")
    @classmethod
    def _stringify_id(cls, value: Any) -> Any:
        # Mongo-style ids may arrive as numbers
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value


class TokenResponse(WireModel):
    """Successful login, verify-2fa, refresh-token or change-password body"""
    access_token: str = Field(alias="accessToken", min_length=1)
    refresh_token: str = Field(alias="refreshToken", min_length=1)
    expires_at: Optional[float] = Field(default=None, alias="expiresAt")
    expires_in: Optional[float] = Field(default=None, alias="expiresIn")
    user: Optional[UserPayload] = None


class MfaRequiredResponse(WireModel):
    """Login body when a second factor is needed"""
    require_2fa: bool = Field(alias="require2FA")
    user_id: str = Field(alias="userId")
    verification_id: Optional[str] = Field(default=None, alias="verificationId")
    methods: List[str] = Field(default_factory=list)

    @field_validator("user_id", mode="before")
    @classmethod
    def _stringify_user_id(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value


class SendCodeResponse(WireModel):
    success: bool = True
    verification_id: Optional[str] = Field(default=None, alias="verificationId")
    message: Optional[str] = None


class CurrentUserResponse(WireModel):
    """Body of GET /auth/me, either ``{user}`` or ``{data: {user}}``"""
    user: Optional[UserPayload] = None
    data: Optional[Dict[str, Any]] = None

    def resolved_user(self) -> Optional[UserPayload]:
        if self.user is not None:
            return self.user
        if self.data and isinstance(self.data.get("user"), dict):
            return UserPayload.model_validate(self.data["user"])
        return None


class ErrorResponse(WireModel):
    """Error body; the message is shown to the user verbatim"""
    message: Optional[str] = None
    error: Optional[Union[str, Dict[str, Any]]] = None
    lock_until: Optional[str] = Field(default=None, alias="lockUntil")
    errors: Optional[Dict[str, Any]] = None

    def text(self, fallback: str) -> str:
        if self.message:
            return self.message
        if isinstance(self.error, str) and self.error:
            return self.error
        if isinstance(self.error, dict) and isinstance(self.error.get("message"), str):
            return self.error["message"]
        return fallback
