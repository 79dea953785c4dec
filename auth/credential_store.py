"""Persistence of the token pair and the remembered login identifier"""

import datetime
import logging
from typing import Any, Dict, Optional, Tuple

from settings import (
    ACCESS_TOKEN_KEY,
    LEGACY_TOKEN_KEYS,
    REFRESH_TOKEN_KEY,
    REMEMBERED_IDENTIFIER_KEY,
)
from utils.kv_store import KeyValueStore

from .jwt_utils import token_expiry
from .models import TokenPair, utcnow

logger = logging.getLogger(__name__)


class CredentialStore:
    """Token pair storage on top of a key-value backend

    The store holds either both tokens or neither. Only the two tokens and
    the remembered identifier are written; expiry is recovered from the
    access token's ``exp`` claim on read.
    """

    def __init__(self, kv: KeyValueStore):
        self.kv = kv
        # Expiry reported by the server for the access token written last;
        # not persisted, so restored sessions fall back to the JWT claim
        self._expiry_hint: Optional[Tuple[str, datetime.datetime]] = None

    def read(self) -> Optional[TokenPair]:
        """Load the stored pair

        Returns:
            TokenPair, or None when the store is empty. A store holding only
            one of the two tokens is cleaned and reported as empty.
        """
        values = self.kv.get_many([ACCESS_TOKEN_KEY, REFRESH_TOKEN_KEY])
        access_token = values.get(ACCESS_TOKEN_KEY)
        refresh_token = values.get(REFRESH_TOKEN_KEY)

        if not access_token and not refresh_token:
            return None
        if not access_token or not refresh_token:
            logger.warning("Found an incomplete token pair in storage, clearing it")
            self.clear()
            return None

        expires_at = None
        if self._expiry_hint is not None and self._expiry_hint[0] == access_token:
            expires_at = self._expiry_hint[1]
        if expires_at is None:
            expires_at = token_expiry(access_token)

        return TokenPair(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=expires_at,
        )

    def write(self, pair: TokenPair) -> None:
        """Replace both tokens in one backend write"""
        self.kv.update({
            ACCESS_TOKEN_KEY: pair.access_token,
            REFRESH_TOKEN_KEY: pair.refresh_token,
        })
        self._expiry_hint = (pair.access_token, pair.expires_at) if pair.expires_at else None
        logger.debug("Stored new token pair")

    def clear(self) -> None:
        """Remove both tokens and every legacy token key in one backend write"""
        self.kv.delete([ACCESS_TOKEN_KEY, REFRESH_TOKEN_KEY, *LEGACY_TOKEN_KEYS])
        self._expiry_hint = None
        logger.debug("Cleared stored tokens")

    def has_tokens(self) -> bool:
        return self.read() is not None

    # "Remember me" preference, independent of the token pair
    def remember_identifier(self, email: str) -> None:
        self.kv.update({REMEMBERED_IDENTIFIER_KEY: email})

    def remembered_identifier(self) -> Optional[str]:
        return self.kv.get(REMEMBERED_IDENTIFIER_KEY)

    def forget_identifier(self) -> None:
        self.kv.delete([REMEMBERED_IDENTIFIER_KEY])

    def get_status(self, now: Optional[datetime.datetime] = None) -> Dict[str, Any]:
        """Get token status without exposing secrets"""
        pair = self.read()
        if pair is None:
            return {
                "has_tokens": False,
                "is_expired": True,
                "expires_at": None,
                "time_until_expiry": "No tokens",
            }

        if pair.expires_at is None:
            return {
                "has_tokens": True,
                "is_expired": False,
                "expires_at": None,
                "time_until_expiry": "Unknown",
            }

        now = now or utcnow()
        remaining = int((pair.expires_at - now).total_seconds())
        expires_str = pair.expires_at.isoformat()

        if remaining <= 0:
            since = -remaining
            hours_since = since // 3600
            mins_since = (since % 3600) // 60
            if hours_since > 0:
                time_str = f"{hours_since}h {mins_since}m ago"
            else:
                time_str = f"{mins_since}m ago"
            return {
                "has_tokens": True,
                "is_expired": True,
                "expires_at": expires_str,
                "time_until_expiry": time_str,
            }

        hours = remaining // 3600
        minutes = (remaining % 3600) // 60
        if hours > 0:
            time_str = f"{hours}h {minutes}m"
        else:
            time_str = f"{minutes}m"

        return {
            "has_tokens": True,
            "is_expired": False,
            "expires_at": expires_str,
            "time_until_expiry": time_str,
            "expires_in_seconds": remaining,
        }
