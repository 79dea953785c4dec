"""HTTP client for the Logware identity service

Each method is one request/response exchange. HTTP failures are mapped to the
``auth.errors`` taxonomy here; retry and refresh coordination live elsewhere.
"""

import datetime
import logging
from typing import Any, Dict, Optional, Union

import httpx
from pydantic import ValidationError

from settings import (
    CHANGE_PASSWORD_PATH,
    CONNECT_TIMEOUT,
    CURRENT_USER_PATH,
    FORGOT_PASSWORD_PATH,
    LOGIN_PATH,
    LOGOUT_PATH,
    REFRESH_TOKEN_PATH,
    REQUEST_TIMEOUT,
    SEND_MFA_CODE_PATH,
    VERIFY_MFA_PATH,
)
from utils.logging_utils import redact, redact_payload

from .errors import (
    IdentityServiceError,
    InvalidCredentials,
    MfaChallengeExpired,
    MfaInvalidCode,
    MfaRateLimited,
    NetworkError,
    RefreshFailed,
    TokenExpired,
)
from .jwt_utils import token_expiry
from .models import AuthResult, MFAMethod, MfaRequired, TokenPair, User, utcnow
from .schemas import (
    CurrentUserResponse,
    ErrorResponse,
    MfaRequiredResponse,
    SendCodeResponse,
    TokenResponse,
)
from .user_mapper import map_user

logger = logging.getLogger(__name__)

# expiresAt values above this are epoch milliseconds
_MILLISECONDS_THRESHOLD = 1e11


def resolve_expiry(payload: TokenResponse, now: Optional[datetime.datetime] = None) -> Optional[datetime.datetime]:
    """Access token expiry from the response fields, else from the JWT ``exp`` claim"""
    if payload.expires_at is not None:
        seconds = payload.expires_at
        if seconds > _MILLISECONDS_THRESHOLD:
            seconds = seconds / 1000.0
        try:
            return datetime.datetime.fromtimestamp(seconds, datetime.timezone.utc)
        except (OverflowError, OSError, ValueError):
            logger.warning(f"Ignoring invalid expiresAt value: {payload.expires_at}")
    if payload.expires_in is not None:
        return (now or utcnow()) + datetime.timedelta(seconds=payload.expires_in)
    return token_expiry(payload.access_token)


class IdentityClient:
    """Async client for the /auth endpoints

    One ``httpx.AsyncClient`` is kept for the lifetime of the instance so the
    cookies set by the backend (MFA and refresh cookies) are sent back.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = REQUEST_TIMEOUT,
        connect_timeout: float = CONNECT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout, connect=connect_timeout),
            transport=transport,
            headers={"Accept": "application/json"},
        )

    async def aclose(self):
        await self._client.aclose()

    async def _send(
        self,
        method: str,
        path: str,
        *,
        json: Optional[Dict[str, Any]] = None,
        access_token: Optional[str] = None,
    ) -> httpx.Response:
        headers = {}
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"

        if json is not None:
            logger.debug(f"{method} {path} {redact_payload(json)}")
        else:
            logger.debug(f"{method} {path}")

        try:
            response = await self._client.request(method, path, json=json, headers=headers)
        except httpx.TimeoutException as e:
            raise NetworkError(f"Request to {path} timed out") from e
        except httpx.TransportError as e:
            raise NetworkError(f"Could not reach the identity service: {e}") from e

        logger.debug(f"{method} {path} -> {response.status_code}")
        return response

    @staticmethod
    def _body(response: httpx.Response) -> Dict[str, Any]:
        try:
            data = response.json()
        except ValueError as e:
            raise IdentityServiceError(
                f"Invalid JSON from identity service ({response.status_code})", response.status_code
            ) from e
        if not isinstance(data, dict):
            raise IdentityServiceError("Unexpected response shape from identity service", response.status_code)
        return data

    @staticmethod
    def _error(response: httpx.Response) -> ErrorResponse:
        try:
            data = response.json()
        except ValueError:
            return ErrorResponse()
        if not isinstance(data, dict):
            return ErrorResponse()
        try:
            return ErrorResponse.model_validate(data)
        except ValidationError:
            return ErrorResponse(message=data.get("message") if isinstance(data.get("message"), str) else None)

    def _unexpected(self, response: httpx.Response, operation: str) -> IdentityServiceError:
        message = self._error(response).text(f"{operation} failed with status {response.status_code}")
        logger.error(f"{operation} failed with status {response.status_code}: {message}")
        return IdentityServiceError(message, response.status_code)

    @staticmethod
    def _unwrap(body: Dict[str, Any]) -> Dict[str, Any]:
        # Some deployments wrap payloads in a {"data": {...}} envelope
        if "accessToken" not in body and "require2FA" not in body and isinstance(body.get("data"), dict):
            return body["data"]
        return body

    def _auth_result(self, body: Dict[str, Any], status_code: int) -> AuthResult:
        try:
            payload = TokenResponse.model_validate(body)
        except ValidationError as e:
            raise IdentityServiceError("Identity service returned an incomplete token response", status_code) from e

        tokens = TokenPair(
            access_token=payload.access_token,
            refresh_token=payload.refresh_token,
            expires_at=resolve_expiry(payload),
        )
        user = map_user(payload.user) if payload.user is not None else None
        return AuthResult(tokens=tokens, user=user)

    async def login(self, email: str, password: str) -> Union[AuthResult, MfaRequired]:
        """Submit identifier and secret

        Returns:
            AuthResult when no second factor is needed, MfaRequired otherwise

        Raises:
            InvalidCredentials: Bad credentials or locked account
            NetworkError: Transport failure or timeout
        """
        response = await self._send("POST", LOGIN_PATH, json={"email": email, "password": password})

        if response.status_code in (400, 401, 423):
            error = self._error(response)
            field_errors = {}
            if error.errors:
                field_errors = {k: str(v) for k, v in error.errors.items()}
            logger.info(f"Login rejected for {email} ({response.status_code})")
            raise InvalidCredentials(
                error.text("Invalid email or password"),
                response.status_code,
                field_errors=field_errors,
                lock_until=error.lock_until,
            )
        if not response.is_success:
            raise self._unexpected(response, "Login")

        body = self._unwrap(self._body(response))
        if body.get("require2FA"):
            try:
                mfa = MfaRequiredResponse.model_validate(body)
            except ValidationError as e:
                raise IdentityServiceError("Malformed two-factor response", response.status_code) from e
            methods = []
            for name in mfa.methods:
                try:
                    methods.append(MFAMethod(name))
                except ValueError:
                    logger.debug(f"Ignoring unknown MFA method '{name}'")
            logger.info(f"Second factor required for user {mfa.user_id}")
            return MfaRequired(
                user_id=mfa.user_id,
                verification_id=mfa.verification_id or "",
                methods=tuple(methods),
            )

        return self._auth_result(body, response.status_code)

    async def verify_mfa(self, user_id: str, verification_id: str, method: MFAMethod, code: str) -> AuthResult:
        """Submit a second-factor code

        Raises:
            MfaInvalidCode: Code rejected (challenge still open)
            MfaChallengeExpired: Challenge unknown or expired
        """
        response = await self._send(
            "POST",
            VERIFY_MFA_PATH,
            json={
                "userId": user_id,
                "verificationId": verification_id,
                "method": method.value,
                "code": code,
            },
        )

        if response.status_code in (400, 401):
            raise MfaInvalidCode(self._error(response).text("Invalid verification code"), response.status_code)
        if response.status_code in (404, 410):
            raise MfaChallengeExpired(
                self._error(response).text("Verification session expired, please log in again"),
                response.status_code,
            )
        if not response.is_success:
            raise self._unexpected(response, "Two-factor verification")

        return self._auth_result(self._unwrap(self._body(response)), response.status_code)

    async def send_code(self, method: MFAMethod) -> Optional[str]:
        """Ask the server to deliver a new code

        Returns:
            The new verification id, if the server issued one

        Raises:
            MfaRateLimited: Server refused to send yet (message verbatim)
        """
        response = await self._send("POST", SEND_MFA_CODE_PATH, json={"method": method.value})

        if response.status_code == 429:
            retry_after = None
            header = response.headers.get("Retry-After")
            if header:
                try:
                    retry_after = float(header)
                except ValueError:
                    retry_after = None
            raise MfaRateLimited(
                self._error(response).text("Too many requests, please wait before requesting a new code"),
                429,
                retry_after=retry_after,
            )
        if not response.is_success:
            raise self._unexpected(response, "Sending verification code")

        try:
            payload = SendCodeResponse.model_validate(self._unwrap(self._body(response)))
        except ValidationError as e:
            raise IdentityServiceError("Malformed send-code response", response.status_code) from e
        if not payload.success:
            raise IdentityServiceError(payload.message or "Verification code could not be sent", response.status_code)
        return payload.verification_id

    async def refresh(self, refresh_token: str) -> AuthResult:
        """Exchange the refresh token for a new pair

        Raises:
            RefreshFailed: Refresh token rejected
        """
        logger.debug(f"Refreshing with refresh token {redact(refresh_token)}")
        response = await self._send("POST", REFRESH_TOKEN_PATH, json={"refreshToken": refresh_token})

        if response.status_code in (400, 401, 403):
            raise RefreshFailed(
                self._error(response).text("Refresh token is invalid or expired"), response.status_code
            )
        if not response.is_success:
            raise self._unexpected(response, "Token refresh")

        body = dict(self._unwrap(self._body(response)))
        # Servers that do not rotate refresh tokens omit it
        if not body.get("refreshToken"):
            body["refreshToken"] = refresh_token
        return self._auth_result(body, response.status_code)

    async def get_current_user(self, access_token: str) -> User:
        """Fetch the user owning ``access_token``

        Raises:
            TokenExpired: Access token rejected
        """
        response = await self._send("GET", CURRENT_USER_PATH, access_token=access_token)

        if response.status_code == 401:
            raise TokenExpired(self._error(response).text("Access token expired"), 401)
        if not response.is_success:
            raise self._unexpected(response, "Fetching current user")

        try:
            user = CurrentUserResponse.model_validate(self._body(response)).resolved_user()
        except ValidationError as e:
            raise IdentityServiceError("Malformed user payload", response.status_code) from e
        if user is None:
            raise IdentityServiceError("Identity service returned no user", response.status_code)
        return map_user(user)

    async def logout(self, refresh_token: Optional[str], access_token: Optional[str] = None) -> None:
        """Tell the server to revoke the refresh token"""
        body = {"refreshToken": refresh_token} if refresh_token else {}
        response = await self._send("POST", LOGOUT_PATH, json=body, access_token=access_token)
        if not response.is_success:
            raise self._unexpected(response, "Logout")

    async def forgot_password(self, email: str) -> str:
        """Request a password reset e-mail

        Returns:
            The server's confirmation message
        """
        response = await self._send("POST", FORGOT_PASSWORD_PATH, json={"email": email})
        if not response.is_success:
            raise self._unexpected(response, "Password reset request")
        return self._error(response).text("If the account exists, a reset link has been sent")

    async def change_password(self, access_token: str, current_password: str, new_password: str) -> AuthResult:
        """Change the password of the signed-in user

        The server answers 401 both for a rejected bearer token and for a
        wrong current password; the latter is told apart by its message.

        Raises:
            InvalidCredentials: Current password wrong or new password refused
            TokenExpired: Access token rejected
        """
        response = await self._send(
            "PATCH",
            CHANGE_PASSWORD_PATH,
            json={
                "currentPassword": current_password,
                "newPassword": new_password,
                "newPasswordConfirm": new_password,
            },
            access_token=access_token,
        )

        if response.status_code == 400:
            message = self._error(response).text("New password was not accepted")
            raise InvalidCredentials(message, 400, field_errors={"newPassword": message})
        if response.status_code == 401:
            message = self._error(response).text("Access token expired")
            if "current password" in message.lower():
                raise InvalidCredentials(message, 401, field_errors={"currentPassword": message})
            raise TokenExpired(message, 401)
        if not response.is_success:
            raise self._unexpected(response, "Password change")

        return self._auth_result(self._unwrap(self._body(response)), response.status_code)
