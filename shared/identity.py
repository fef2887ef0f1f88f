import logging
from datetime import timedelta
from typing import Optional

from models.identity import UserMapping
from shared import time
from shared.phone import DEFAULT_COUNTRY_CODE, canonical_phone
from store.identity_store import IdentityStore

logger = logging.getLogger(__name__)

VERIFICATION_CODE_TTL_SECONDS = 10 * 60


class PhoneIdentityResolver:
    """
    Maps a raw chat address to a verified application user.
    Unknown and unverified phones look the same to callers (None), so nothing
    tells a sender whether a number is registered.
    """

    def __init__(
        self,
        store: IdentityStore,
        country_code: str = DEFAULT_COUNTRY_CODE,
        code_ttl_seconds: int = VERIFICATION_CODE_TTL_SECONDS,
    ):
        self.store = store
        self.country_code = country_code
        self.code_ttl = timedelta(seconds=code_ttl_seconds)

    def normalize(self, raw_channel_id: str) -> str:
        return canonical_phone(raw_channel_id, self.country_code)

    def resolve(self, raw_channel_id: str) -> Optional[UserMapping]:
        phone = self.normalize(raw_channel_id)
        if not phone:
            return None

        mapping = self.store.get(phone)
        if mapping is None:
            logger.warning("Phone number not found: %s", phone)
            return None
        if not mapping.is_verified:
            logger.warning("Phone number not verified: %s", phone)
            return None
        return mapping

    def verify(self, raw_channel_id: str, code: str) -> bool:
        phone = self.normalize(raw_channel_id)
        if not phone or not code:
            return False
        ok = self.store.verify_code(phone, code.strip())
        logger.info("Verification for %s: %s", phone, "ok" if ok else "rejected")
        return ok

    def create_pending_mapping(self, user_id: str, raw_channel_id: str, code: str) -> UserMapping:
        phone = self.normalize(raw_channel_id)
        if not phone:
            raise ValueError(f"invalid phone number: {raw_channel_id!r}")
        expires_at = time.utcnow() + self.code_ttl
        return self.store.upsert_pending(user_id, phone, code, expires_at)
