from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, Optional

from google.cloud import firestore

from db.base import get_db
from models.identity import UserMapping
from shared import time

logger = logging.getLogger(__name__)


class IdentityStore(ABC):
    """Phone -> user mappings, keyed by canonical phone."""

    @abstractmethod
    def get(self, phone: str) -> Optional[UserMapping]:
        pass

    @abstractmethod
    def upsert_pending(self, user_id: str, phone: str, code: str, expires_at: datetime) -> UserMapping:
        pass

    @abstractmethod
    def verify_code(self, phone: str, code: str) -> bool:
        """Single conditional update: matching, unexpired code on an unverified row."""
        pass


class FirestoreIdentityStore(IdentityStore):
    def __init__(self, db=None):
        self.db = db or get_db()
        self.collection = self.db.collection("whatsapp_mappings")

    def get(self, phone: str) -> Optional[UserMapping]:
        doc = self.collection.document(phone).get()
        if not doc.exists:
            return None
        return UserMapping(**doc.to_dict())

    def upsert_pending(self, user_id: str, phone: str, code: str, expires_at: datetime) -> UserMapping:
        now = time.utcnow()
        doc_ref = self.collection.document(phone)
        patch = {
            "user_id": user_id,
            "phone": phone,
            "verification_code": code,
            "verification_expires_at": expires_at,
            "updated_at": now,
        }
        snap = doc_ref.get()
        if not snap.exists:
            patch.update({"is_verified": False, "created_at": now})
        doc_ref.set(patch, merge=True)
        logger.info("[STORE] Pending mapping upserted for %s", phone)
        return UserMapping(**doc_ref.get().to_dict())

    def verify_code(self, phone: str, code: str) -> bool:
        doc_ref = self.collection.document(phone)
        transaction = self.db.transaction()
        now = time.utcnow()

        @firestore.transactional
        def _verify(tx) -> bool:
            snap = doc_ref.get(transaction=tx)
            if not snap.exists:
                return False
            data = snap.to_dict() or {}
            expires_at = data.get("verification_expires_at")
            if (
                data.get("is_verified")
                or not data.get("verification_code")
                or data.get("verification_code") != code
                or expires_at is None
                or time.ensure_aware_utc(expires_at) <= now
            ):
                return False
            tx.update(doc_ref, {
                "is_verified": True,
                "verified_at": now,
                "verification_code": None,
                "verification_expires_at": None,
                "updated_at": now,
            })
            return True

        return _verify(transaction)


class InMemoryIdentityStore(IdentityStore):
    def __init__(self):
        self._rows: Dict[str, UserMapping] = {}

    def get(self, phone: str) -> Optional[UserMapping]:
        row = self._rows.get(phone)
        return row.model_copy() if row else None

    def put(self, mapping: UserMapping) -> None:
        self._rows[mapping.phone] = mapping.model_copy()

    def upsert_pending(self, user_id: str, phone: str, code: str, expires_at: datetime) -> UserMapping:
        now = time.utcnow()
        row = self._rows.get(phone)
        if row is None:
            row = UserMapping(user_id=user_id, phone=phone, is_verified=False, created_at=now)
        row = row.model_copy(update={
            "user_id": user_id,
            "verification_code": code,
            "verification_expires_at": expires_at,
            "updated_at": now,
        })
        self._rows[phone] = row
        return row.model_copy()

    def verify_code(self, phone: str, code: str) -> bool:
        # no await between check and set: atomic on the event loop
        row = self._rows.get(phone)
        now = time.utcnow()
        if (
            row is None
            or row.is_verified
            or not row.verification_code
            or row.verification_code != code
            or row.verification_expires_at is None
            or time.ensure_aware_utc(row.verification_expires_at) <= now
        ):
            return False
        self._rows[phone] = row.model_copy(update={
            "is_verified": True,
            "verified_at": now,
            "verification_code": None,
            "verification_expires_at": None,
            "updated_at": now,
        })
        return True
