"""Authentication and session package for the Logware API"""

from pathlib import Path
from typing import Optional, Union

import httpx

from settings import (
    API_BASE_URL,
    CONNECT_TIMEOUT,
    MFA_MAX_ATTEMPTS,
    MIN_PROACTIVE_REFRESH_DELAY,
    PROACTIVE_REFRESH_LEAD_SECONDS,
    REQUEST_TIMEOUT,
    STORAGE_DIR,
    STORAGE_FILE_NAME,
)
from utils.kv_store import FileKeyValueStore, KeyValueStore

from .credential_store import CredentialStore
from .errors import (
    AuthError,
    IdentityServiceError,
    InvalidCredentials,
    InvalidSessionTransition,
    MfaAttemptsExceeded,
    MfaChallengeExpired,
    MfaInvalidCode,
    MfaRateLimited,
    NetworkError,
    RefreshFailed,
    SessionExpired,
    TokenExpired,
    UnsupportedMfaMethod,
)
from .identity_client import IdentityClient
from .mfa import MFAChallengeManager
from .models import (
    AuthResult,
    MFAChallenge,
    MFAMethod,
    MfaRequired,
    Session,
    SessionState,
    TokenPair,
    User,
)
from .request_guard import AuthenticatedClient
from .session import SessionManager
from .token_refresh import TokenRefreshCoordinator


class AuthClient:
    """Session client for one Logware API origin

    Builds and wires every component explicitly:
    - Credential storage scoped to the API origin
    - Identity service client
    - Single-flight token refresh coordinator
    - MFA challenge manager
    - Session state machine
    - Authenticated HTTP client for other API calls

    Nothing is shared between instances, so tests and embedders can run
    several clients side by side.
    """

    def __init__(
        self,
        api_base_url: str = API_BASE_URL,
        *,
        kv_store: Optional[KeyValueStore] = None,
        storage_dir: Union[str, Path] = STORAGE_DIR,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = REQUEST_TIMEOUT,
        connect_timeout: float = CONNECT_TIMEOUT,
        refresh_lead_seconds: float = PROACTIVE_REFRESH_LEAD_SECONDS,
        min_refresh_delay: float = MIN_PROACTIVE_REFRESH_DELAY,
        mfa_max_attempts: int = MFA_MAX_ATTEMPTS,
    ):
        self.api_base_url = api_base_url.rstrip("/")
        if kv_store is None:
            kv_store = FileKeyValueStore.for_origin(self.api_base_url, Path(storage_dir), STORAGE_FILE_NAME)

        self.store = CredentialStore(kv_store)
        self.identity = IdentityClient(
            self.api_base_url,
            timeout=timeout,
            connect_timeout=connect_timeout,
            transport=transport,
        )
        self.coordinator = TokenRefreshCoordinator(self.store, self.identity)
        self.mfa = MFAChallengeManager(self.identity, max_attempts=mfa_max_attempts)
        self.session = SessionManager(
            self.identity,
            self.store,
            self.coordinator,
            self.mfa,
            refresh_lead_seconds=refresh_lead_seconds,
            min_refresh_delay=min_refresh_delay,
        )
        self.http = AuthenticatedClient(
            self.coordinator,
            self.api_base_url,
            timeout=timeout,
            connect_timeout=connect_timeout,
            transport=transport,
        )

    async def aclose(self):
        """Stop the refresh timer and close both HTTP clients"""
        await self.session.close()
        await self.http.aclose()

    async def __aenter__(self) -> "AuthClient":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()


__all__ = [
    "AuthClient",
    "AuthenticatedClient",
    "CredentialStore",
    "IdentityClient",
    "MFAChallengeManager",
    "SessionManager",
    "TokenRefreshCoordinator",
    "AuthResult",
    "MFAChallenge",
    "MFAMethod",
    "MfaRequired",
    "Session",
    "SessionState",
    "TokenPair",
    "User",
    "AuthError",
    "IdentityServiceError",
    "InvalidCredentials",
    "InvalidSessionTransition",
    "MfaAttemptsExceeded",
    "MfaChallengeExpired",
    "MfaInvalidCode",
    "MfaRateLimited",
    "NetworkError",
    "RefreshFailed",
    "SessionExpired",
    "TokenExpired",
    "UnsupportedMfaMethod",
]
