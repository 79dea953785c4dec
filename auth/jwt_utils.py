"""JWT payload decoding for expiry bookkeeping

Signatures are never verified here; the server remains the authority on
whether a token is valid. These helpers only read the ``exp`` claim.
"""

import base64
import datetime
import json
import logging
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


def parse_jwt_claims(token: str) -> Optional[Dict[str, Any]]:
    """Parse JWT token and extract claims from payload

    Args:
        token: JWT token string

    Returns:
        Dictionary of claims, or None if the token is not a decodable JWT
    """
    if not token or token.count(".") != 2:
        return None

    try:
        _, payload, _ = token.split(".")
        # JWT uses base64url without padding
        padded = payload + "=" * (-len(payload) % 4)
        data = base64.urlsafe_b64decode(padded.encode())
        claims = json.loads(data.decode("utf-8"))
    except (ValueError, UnicodeDecodeError) as e:
        logger.debug(f"Token payload is not decodable JSON: {e}")
        return None

    return claims if isinstance(claims, dict) else None


def token_expiry(token: str) -> Optional[datetime.datetime]:
    """Expiry of a JWT from its ``exp`` claim

    Returns:
        Timezone-aware UTC datetime, or None if the claim is missing or invalid
    """
    claims = parse_jwt_claims(token) or {}
    exp = claims.get("exp")
    if isinstance(exp, bool) or not isinstance(exp, (int, float)):
        return None
    try:
        return datetime.datetime.fromtimestamp(float(exp), datetime.timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def is_token_expired(token: str, skew_seconds: float = 5.0) -> bool:
    """Check a JWT against its ``exp`` claim

    Tokens that cannot be decoded are reported as expired.
    """
    expiry = token_expiry(token)
    if expiry is None:
        return True
    now = datetime.datetime.now(datetime.timezone.utc)
    return now >= expiry - datetime.timedelta(seconds=skew_seconds)
