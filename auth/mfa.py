"""Second-factor challenge handling"""

import logging
from dataclasses import replace
from typing import Optional

from settings import MFA_MAX_ATTEMPTS

from .errors import (
    MfaAttemptsExceeded,
    MfaChallengeExpired,
    MfaInvalidCode,
    UnsupportedMfaMethod,
)
from .identity_client import IdentityClient
from .models import AuthResult, MFAChallenge, MFAMethod, utcnow
from .validators import mfa_code_hint, normalize_mfa_code, validate_mfa_code

logger = logging.getLogger(__name__)


class MFAChallengeManager:
    """Tracks the open challenge of one login attempt

    Codes are checked client-side before they are sent; a malformed code
    never reaches the server and does not use up an attempt.
    """

    def __init__(self, identity: IdentityClient, max_attempts: int = MFA_MAX_ATTEMPTS):
        self.identity = identity
        self.max_attempts = max_attempts
        self._challenge: Optional[MFAChallenge] = None
        self._failed_attempts = 0

    @property
    def challenge(self) -> Optional[MFAChallenge]:
        return self._challenge

    @property
    def failed_attempts(self) -> int:
        return self._failed_attempts

    @property
    def attempts_remaining(self) -> Optional[int]:
        if self._challenge is None:
            return None
        return max(self.max_attempts - self._failed_attempts, 0)

    def begin(self, user_id: str, verification_id: str, method: MFAMethod = MFAMethod.APP) -> MFAChallenge:
        """Open a challenge, replacing any previous one"""
        self._challenge = MFAChallenge(verification_id=verification_id, user_id=user_id, method=method)
        self._failed_attempts = 0
        logger.info(f"MFA challenge opened for user {user_id} (method: {method.value})")
        return self._challenge

    def cancel(self) -> None:
        if self._challenge is not None:
            logger.info(f"MFA challenge for user {self._challenge.user_id} discarded")
        self._challenge = None
        self._failed_attempts = 0

    def _require(self) -> MFAChallenge:
        if self._challenge is None:
            raise MfaChallengeExpired("No verification in progress, please log in again")
        return self._challenge

    def select_method(self, method: MFAMethod) -> MFAChallenge:
        """Switch the method the next code is verified with"""
        challenge = self._require()
        self._challenge = replace(challenge, method=method)
        logger.debug(f"MFA method switched to {method.value}")
        return self._challenge

    async def verify(self, code: str) -> AuthResult:
        """Check ``code`` against the open challenge

        Returns:
            AuthResult with the new token pair

        Raises:
            MfaInvalidCode: Malformed or rejected code (challenge kept)
            MfaAttemptsExceeded: Attempt budget used up (challenge destroyed)
            MfaChallengeExpired: Challenge missing or expired (challenge destroyed)
        """
        challenge = self._require()

        if not validate_mfa_code(challenge.method, code):
            raise MfaInvalidCode(
                mfa_code_hint(challenge.method),
                failed_attempts=self._failed_attempts,
                attempts_remaining=self.attempts_remaining,
            )

        if not challenge.verification_id:
            self.cancel()
            raise MfaChallengeExpired("Verification session expired, please log in again")

        try:
            result = await self.identity.verify_mfa(
                challenge.user_id,
                challenge.verification_id,
                challenge.method,
                normalize_mfa_code(challenge.method, code),
            )
        except MfaInvalidCode as e:
            if self._challenge is None:
                raise
            self._failed_attempts += 1
            logger.info(f"MFA code rejected ({self._failed_attempts}/{self.max_attempts})")
            if self._failed_attempts >= self.max_attempts:
                self.cancel()
                raise MfaAttemptsExceeded(
                    "Too many failed verification attempts, please log in again", e.status_code
                ) from e
            e.failed_attempts = self._failed_attempts
            e.attempts_remaining = self.attempts_remaining
            raise
        except MfaChallengeExpired:
            self.cancel()
            raise

        self.cancel()
        return result

    async def resend_code(self, method: Optional[MFAMethod] = None) -> MFAChallenge:
        """Have a new code delivered by SMS or e-mail

        The challenge switches to ``method`` and takes the new verification id.

        Raises:
            UnsupportedMfaMethod: ``method`` is app or recovery
            MfaRateLimited: Server refused to send yet
        """
        challenge = self._require()
        method = method or challenge.method
        if not method.can_resend:
            raise UnsupportedMfaMethod(f"Codes cannot be re-sent for the '{method.value}' method")

        verification_id = await self.identity.send_code(method)

        current = self._require()
        self._challenge = replace(
            current,
            method=method,
            verification_id=verification_id or current.verification_id,
            created_at=utcnow(),
        )
        logger.info(f"New {method.value} code requested")
        return self._challenge
