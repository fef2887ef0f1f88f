import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional, Tuple

import jwt

from shared import time

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_TTL = timedelta(hours=6)
MINTED_TOKEN_TTL = timedelta(hours=1)


def issue_token(user_id: str, secret: str, expires_in: timedelta) -> str:
    now = time.utcnow()
    claims = {"sub": user_id, "iat": int(now.timestamp()), "exp": int((now + expires_in).timestamp())}
    return jwt.encode(claims, secret, algorithm="HS256")


def decode_token(token: str, secret: str) -> dict:
    """Verified decode. Raises jwt.InvalidTokenError (expired, bad signature, malformed)."""
    return jwt.decode(token, secret, algorithms=["HS256"])


def _token_expiry(token: str) -> datetime:
    try:
        claims = jwt.decode(token, options={"verify_signature": False})
    except jwt.InvalidTokenError:
        return time.utcnow() + DEFAULT_TOKEN_TTL
    exp = claims.get("exp")
    if isinstance(exp, (int, float)):
        return datetime.fromtimestamp(exp, tz=timezone.utc)
    return time.utcnow() + DEFAULT_TOKEN_TTL


class TokenProvider:
    """
    Bearer tokens for calling the finance backend on a user's behalf.
    The backend pushes a token when the user logs in; we keep it until its `exp`.
    With minting enabled, a short-lived token signed with the shared secret is issued
    when nothing usable is cached.
    """

    def __init__(self, secret: Optional[str] = None, mint: bool = False):
        self.secret = secret
        self.mint = mint and bool(secret)
        self._cache: Dict[str, Tuple[str, datetime]] = {}

    def store_token(self, user_id: str, token: str) -> datetime:
        expires_at = _token_expiry(token)
        self._cache[user_id] = (token, expires_at)
        logger.info("Cached token for user %s (expires %s)", user_id, expires_at.isoformat())
        return expires_at

    def forget(self, user_id: str) -> None:
        self._cache.pop(user_id, None)

    async def get_token(self, user_id: str) -> Optional[str]:
        cached = self._cache.get(user_id)
        if cached:
            token, expires_at = cached
            if not time.is_past(expires_at):
                return token
            self._cache.pop(user_id, None)
            logger.info("Cached token for user %s expired", user_id)

        if self.mint:
            token = issue_token(user_id, self.secret, MINTED_TOKEN_TTL)
            self._cache[user_id] = (token, time.utcnow() + MINTED_TOKEN_TTL)
            return token

        logger.warning("No auth token available for user %s", user_id)
        return None
