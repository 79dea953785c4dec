"""Session state machine

``SessionManager`` is the single owner of the session state. The CLI and any
other front end read ``session`` or ``subscribe`` to it; they never keep a
second copy.
"""

import asyncio
import datetime
import logging
from dataclasses import replace
from typing import Any, Callable, Dict, List, Optional, Union

from settings import MIN_PROACTIVE_REFRESH_DELAY, PROACTIVE_REFRESH_LEAD_SECONDS

from .credential_store import CredentialStore
from .errors import (
    AuthError,
    IdentityServiceError,
    InvalidCredentials,
    InvalidSessionTransition,
    MfaInvalidCode,
    NetworkError,
    RefreshFailed,
    SessionExpired,
    TokenExpired,
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
    utcnow,
)
from .token_refresh import TokenRefreshCoordinator
from .validators import validate_credentials

logger = logging.getLogger(__name__)

SessionListener = Callable[[Session], None]

TRANSITIONS = {
    SessionState.ANONYMOUS: {SessionState.AUTHENTICATING, SessionState.ANONYMOUS},
    SessionState.AUTHENTICATING: {
        SessionState.AUTHENTICATED,
        SessionState.MFA_PENDING,
        SessionState.ANONYMOUS,
        SessionState.EXPIRED,
    },
    SessionState.MFA_PENDING: {
        SessionState.AUTHENTICATED,
        SessionState.MFA_PENDING,
        SessionState.AUTHENTICATING,
        SessionState.ANONYMOUS,
    },
    SessionState.AUTHENTICATED: {
        SessionState.REFRESHING,
        SessionState.AUTHENTICATED,
        SessionState.ANONYMOUS,
        SessionState.EXPIRED,
    },
    SessionState.REFRESHING: {SessionState.AUTHENTICATED, SessionState.ANONYMOUS, SessionState.EXPIRED},
    SessionState.EXPIRED: {SessionState.ANONYMOUS},
}

_CLEARED = dict(
    user=None,
    access_token=None,
    refresh_token=None,
    access_token_expiry=None,
    mfa_challenge=None,
    mfa_failed_attempts=0,
)


class SessionManager:
    """Drives login, MFA, refresh and logout for one API origin

    Every ``await`` in an operation is followed by a check of the attempt
    counter; ``logout`` bumps it so results of logins, verifications and
    restores still in flight are dropped instead of resurrecting the session.
    """

    def __init__(
        self,
        identity: IdentityClient,
        store: CredentialStore,
        coordinator: TokenRefreshCoordinator,
        mfa: MFAChallengeManager,
        *,
        refresh_lead_seconds: float = PROACTIVE_REFRESH_LEAD_SECONDS,
        min_refresh_delay: float = MIN_PROACTIVE_REFRESH_DELAY,
        clock: Callable[[], datetime.datetime] = utcnow,
    ):
        self.identity = identity
        self.store = store
        self.coordinator = coordinator
        self.mfa = mfa
        self.refresh_lead_seconds = refresh_lead_seconds
        self.min_refresh_delay = min_refresh_delay
        self._clock = clock
        self._session = Session()
        self._listeners: List[SessionListener] = []
        self._attempt = 0
        self._refresh_timer: Optional[asyncio.Task] = None
        self._restored = False
        self._verifying = False
        self._remove_refresh_listener = coordinator.add_listener(self)

    # Read / subscribe

    @property
    def session(self) -> Session:
        return self._session

    @property
    def state(self) -> SessionState:
        return self._session.state

    @property
    def user(self) -> Optional[User]:
        return self._session.user

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        """Call ``listener(session)`` after every transition

        Returns:
            Function that unsubscribes the listener
        """
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _publish(self) -> None:
        snapshot = self._session
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Session listener failed")

    def _transition(self, state: SessionState, **changes: Any) -> None:
        current = self._session.state
        if state not in TRANSITIONS[current]:
            raise InvalidSessionTransition(f"Cannot move from {current.value} to {state.value}")
        self._session = replace(self._session, state=state, **changes)
        if state != current:
            logger.info(f"Session {current.value} -> {state.value}")
        self._publish()

    def _require(self, *states: SessionState) -> None:
        if self._session.state not in states:
            allowed = ", ".join(s.value for s in states)
            raise InvalidSessionTransition(
                f"Operation not allowed while {self._session.state.value} (requires {allowed})"
            )

    def _token_fields(self, pair: TokenPair) -> Dict[str, Any]:
        return dict(
            access_token=pair.access_token,
            refresh_token=pair.refresh_token,
            access_token_expiry=pair.expires_at,
        )

    def _enter_authenticated(self, pair: TokenPair, user: Optional[User]) -> None:
        self._transition(
            SessionState.AUTHENTICATED,
            user=user,
            mfa_challenge=None,
            mfa_failed_attempts=0,
            **self._token_fields(pair),
        )
        self._schedule_refresh(pair)

    def _expire(self) -> None:
        self._attempt += 1
        self._cancel_refresh_timer()
        self.mfa.cancel()
        self._transition(SessionState.EXPIRED, **_CLEARED)
        self._transition(SessionState.ANONYMOUS)

    async def _with_user(self, result: AuthResult) -> AuthResult:
        if result.user is not None:
            return result
        user = await self.identity.get_current_user(result.tokens.access_token)
        return AuthResult(tokens=result.tokens, user=user)

    def _check_attempt(self, attempt: int) -> None:
        if attempt != self._attempt:
            raise SessionExpired("Signed out while the request was in flight")

    # Login and MFA

    async def login(self, email: str, password: str, remember: bool = False) -> Union[AuthResult, MfaRequired]:
        """Authenticate with identifier and secret

        Args:
            email: Login identifier
            password: Secret
            remember: Persist the identifier for the next login prompt

        Returns:
            AuthResult when signed in, MfaRequired when a code is needed next

        Raises:
            InvalidCredentials: Form validation failed or the server refused
            NetworkError: Identity service unreachable
        """
        self._require(SessionState.ANONYMOUS, SessionState.MFA_PENDING)

        field_errors = validate_credentials(email, password)
        if field_errors:
            raise InvalidCredentials(next(iter(field_errors.values())), field_errors=field_errors)
        email = email.strip()

        self.mfa.cancel()
        self._attempt += 1
        attempt = self._attempt
        self._transition(SessionState.AUTHENTICATING, **_CLEARED)

        try:
            outcome = await self.identity.login(email, password)
            if isinstance(outcome, AuthResult):
                outcome = await self._with_user(outcome)
        except BaseException:
            if attempt == self._attempt:
                self._transition(SessionState.ANONYMOUS, **_CLEARED)
            raise
        self._check_attempt(attempt)

        if remember:
            self.store.remember_identifier(email)
        else:
            self.store.forget_identifier()

        if isinstance(outcome, MfaRequired):
            method = MFAMethod.APP
            if outcome.methods and MFAMethod.APP not in outcome.methods:
                method = outcome.methods[0]
            challenge = self.mfa.begin(outcome.user_id, outcome.verification_id, method)
            self._transition(SessionState.MFA_PENDING, mfa_challenge=challenge, mfa_failed_attempts=0)
            return outcome

        self.coordinator.install(outcome.tokens)
        self._enter_authenticated(outcome.tokens, outcome.user)
        return outcome

    async def verify_mfa(self, code: str) -> AuthResult:
        """Submit the second-factor code of the pending challenge

        Raises:
            MfaInvalidCode: Wrong or malformed code, challenge still open
            MfaChallengeExpired: Challenge gone, session back to anonymous
            InvalidSessionTransition: Not pending, or a code is already being verified
        """
        self._require(SessionState.MFA_PENDING)
        if self._verifying:
            raise InvalidSessionTransition("A verification code is already being checked")
        attempt = self._attempt

        self._verifying = True
        try:
            result = await self.mfa.verify(code)
            result = await self._with_user(result)
        except MfaInvalidCode:
            if attempt == self._attempt:
                self._transition(SessionState.MFA_PENDING, mfa_failed_attempts=self.mfa.failed_attempts)
            raise
        except BaseException:
            if attempt == self._attempt and self.mfa.challenge is None:
                self._transition(SessionState.ANONYMOUS, **_CLEARED)
            raise
        finally:
            self._verifying = False
        self._check_attempt(attempt)

        self.coordinator.install(result.tokens)
        self._enter_authenticated(result.tokens, result.user)
        return result

    async def resend_mfa_code(self, method: Optional[MFAMethod] = None) -> MFAChallenge:
        """Request a new SMS or e-mail code for the pending challenge"""
        self._require(SessionState.MFA_PENDING)
        attempt = self._attempt
        challenge = await self.mfa.resend_code(method)
        self._check_attempt(attempt)
        self._transition(SessionState.MFA_PENDING, mfa_challenge=challenge)
        return challenge

    def select_mfa_method(self, method: MFAMethod) -> MFAChallenge:
        self._require(SessionState.MFA_PENDING)
        challenge = self.mfa.select_method(method)
        self._transition(SessionState.MFA_PENDING, mfa_challenge=challenge)
        return challenge

    def cancel_mfa(self) -> None:
        self._require(SessionState.MFA_PENDING)
        self._attempt += 1
        self.mfa.cancel()
        self._transition(SessionState.ANONYMOUS, **_CLEARED)

    # Session lifetime

    async def logout(self) -> None:
        """End the session locally, then tell the server (best effort)"""
        self._attempt += 1
        self._cancel_refresh_timer()
        self.mfa.cancel()
        pair = self.store.read()
        self.coordinator.reset("Signed out")
        self._transition(SessionState.ANONYMOUS, **_CLEARED)

        if pair is None:
            return
        try:
            await self.identity.logout(pair.refresh_token, pair.access_token)
        except AuthError as e:
            logger.warning(f"Server-side logout failed (local session already cleared): {e}")

    async def restore_session(self) -> Optional[User]:
        """Resume a stored session at process start

        Returns:
            The signed-in user, or None when there is nothing to restore

        Raises:
            NetworkError: Server unreachable; stored tokens are kept for a retry
            IdentityServiceError: Unexpected server answer; tokens are kept as well
        """
        if self._restored:
            logger.debug("Session restore already ran")
            return self._session.user
        self._restored = True

        if self.store.read() is None:
            logger.debug("No stored session")
            return None

        self._require(SessionState.ANONYMOUS)
        self._attempt += 1
        attempt = self._attempt
        self._transition(SessionState.AUTHENTICATING)

        try:
            user = await self.coordinator.call(self.identity.get_current_user)
        except (NetworkError, IdentityServiceError):
            self._restored = False
            if attempt == self._attempt:
                self._transition(SessionState.ANONYMOUS, **_CLEARED)
            raise
        except (RefreshFailed, TokenExpired) as e:
            if attempt == self._attempt:
                logger.info(f"Stored session is no longer valid: {e}")
                self.coordinator.reset("Stored session is no longer valid")
                self._transition(SessionState.ANONYMOUS, **_CLEARED)
            return None
        except BaseException:
            if attempt == self._attempt:
                self._transition(SessionState.ANONYMOUS, **_CLEARED)
            raise
        self._check_attempt(attempt)

        pair = self.store.read()
        if pair is None:
            self._transition(SessionState.ANONYMOUS, **_CLEARED)
            return None
        self._enter_authenticated(pair, user)
        logger.info(f"Restored session for {user.email}")
        return user

    async def refresh_now(self) -> TokenPair:
        """Refresh the token pair now (joins a refresh already in flight)"""
        self._require(SessionState.AUTHENTICATED, SessionState.REFRESHING)
        return await self.coordinator.refresh()

    async def fetch_current_user(self) -> User:
        """Reload the user from the server and publish it"""
        self._require(SessionState.AUTHENTICATED, SessionState.REFRESHING)
        user = await self.coordinator.call(self.identity.get_current_user)
        if self._session.state == SessionState.AUTHENTICATED:
            self._transition(SessionState.AUTHENTICATED, user=user)
        return user

    async def change_password(self, current_password: str, new_password: str) -> AuthResult:
        """Change the password; the server issues a new token pair"""
        self._require(SessionState.AUTHENTICATED)
        attempt = self._attempt
        result = await self.coordinator.call(
            lambda access_token: self.identity.change_password(access_token, current_password, new_password)
        )
        self._check_attempt(attempt)
        self.coordinator.install(result.tokens)
        self._enter_authenticated(result.tokens, result.user or self._session.user)
        return result

    async def forgot_password(self, email: str) -> str:
        field_errors = validate_credentials(email, "-")
        if field_errors:
            raise InvalidCredentials(field_errors["email"], field_errors=field_errors)
        return await self.identity.forgot_password(email.strip())

    def status(self) -> Dict[str, Any]:
        """Session and token status without secrets"""
        status = self.store.get_status(now=self._clock())
        status["state"] = self._session.state.value
        status["user"] = self._session.user.email if self._session.user else None
        status["refreshing"] = self.coordinator.is_refreshing
        status["remembered_identifier"] = self.store.remembered_identifier()
        return status

    async def close(self) -> None:
        self._cancel_refresh_timer()
        self._remove_refresh_listener()
        self.coordinator.shutdown()
        await self.identity.aclose()

    # Proactive refresh

    def _refresh_delay(self, expires_at: datetime.datetime) -> float:
        """Seconds until the proactive refresh

        Normally ``lead`` seconds before expiry. A token that is already
        inside the lead window (short lifetime, large lead, clock skew) is
        refreshed after half its remaining lifetime, never sooner than
        ``min_refresh_delay``.
        """
        remaining = (expires_at - self._clock()).total_seconds()
        return max(remaining - self.refresh_lead_seconds, remaining / 2, self.min_refresh_delay)

    def _schedule_refresh(self, pair: TokenPair) -> None:
        self._cancel_refresh_timer()
        if pair.expires_at is None:
            logger.debug("Access token expiry unknown, no proactive refresh scheduled")
            return
        delay = self._refresh_delay(pair.expires_at)
        logger.debug(f"Proactive refresh in {delay:.1f}s")
        self._refresh_timer = asyncio.create_task(self._proactive_refresh(delay))

    def _cancel_refresh_timer(self) -> None:
        timer, self._refresh_timer = self._refresh_timer, None
        if timer is None or timer.done():
            return
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        if timer is not current:
            timer.cancel()

    async def _proactive_refresh(self, delay: float) -> None:
        await asyncio.sleep(delay)
        if self._session.state != SessionState.AUTHENTICATED:
            return
        logger.info("Access token about to expire, refreshing proactively")
        try:
            await self.coordinator.refresh()
        except SessionExpired as e:
            logger.info(f"Proactive refresh ended the session: {e}")

    # Refresh coordinator events

    def refresh_started(self) -> None:
        if self._session.state == SessionState.AUTHENTICATED:
            self._transition(SessionState.REFRESHING)

    def refresh_succeeded(self, pair: TokenPair) -> None:
        state = self._session.state
        if state not in (SessionState.AUTHENTICATED, SessionState.REFRESHING):
            return
        self._transition(SessionState.AUTHENTICATED, **self._token_fields(pair))
        self._schedule_refresh(pair)

    def refresh_failed(self, error: BaseException) -> None:
        if self._session.state in (
            SessionState.AUTHENTICATING,
            SessionState.AUTHENTICATED,
            SessionState.REFRESHING,
        ):
            logger.warning(f"Session expired: {error}")
            self._expire()
