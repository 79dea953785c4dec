"""Error taxonomy of the session client

Login and MFA errors are surfaced verbatim to callers. ``TokenExpired`` is an
internal signal consumed by the refresh coordinator; ``SessionExpired`` is
terminal and means the local session has already been torn down.
"""

from typing import Dict, Optional


class AuthError(Exception):
    """Base class for every authentication/session failure"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class InvalidCredentials(AuthError):
    """Login rejected, or the login form failed client-side validation

    Attributes:
        field_errors: Field name -> message, for form-level display
        lock_until: Account lock expiry reported by the server, if any
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        field_errors: Optional[Dict[str, str]] = None,
        lock_until: Optional[str] = None,
    ):
        super().__init__(message, status_code)
        self.field_errors = field_errors or {}
        self.lock_until = lock_until


class MfaInvalidCode(AuthError):
    """Second-factor code rejected; the challenge stays open for a retry"""

    field = "code"

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        failed_attempts: int = 0,
        attempts_remaining: Optional[int] = None,
    ):
        super().__init__(message, status_code)
        self.failed_attempts = failed_attempts
        self.attempts_remaining = attempts_remaining


class MfaChallengeExpired(AuthError):
    """The challenge is gone; login must be restarted"""


class MfaAttemptsExceeded(MfaChallengeExpired):
    """Too many rejected codes for one challenge"""


class MfaRateLimited(AuthError):
    """The identity service refused to send another code yet"""

    def __init__(self, message: str, status_code: Optional[int] = 429, retry_after: Optional[float] = None):
        super().__init__(message, status_code)
        self.retry_after = retry_after


class UnsupportedMfaMethod(AuthError):
    """Operation not available for the requested MFA method"""


class TokenExpired(AuthError):
    """Access token rejected by the server"""


class RefreshFailed(AuthError):
    """The refresh endpoint did not issue a new token pair"""


class SessionExpired(RefreshFailed):
    """The session could not be recovered and has been cleared locally"""


class NetworkError(AuthError):
    """Transport failure or timeout talking to the server"""


class IdentityServiceError(AuthError):
    """Unexpected response from the identity service"""


class InvalidSessionTransition(AuthError):
    """Operation not allowed in the current session state"""
