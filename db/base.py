import os
import logging
from typing import Optional

import firebase_admin
from firebase_admin import credentials, firestore

logger = logging.getLogger(__name__)

_db = None


def get_db(secrets_dir: Optional[str] = None):
    """Firestore client, initialized on first use from `secrets_dir`/firebase.json."""
    global _db
    if _db is None:
        secrets_dir = secrets_dir or os.getenv("SECRETS_DIR", ".secrets")
        firebase_path = os.path.join(secrets_dir, "firebase.json")

        if not firebase_admin._apps:
            cred = credentials.Certificate(firebase_path)
            firebase_admin.initialize_app(cred)
            logger.info("Firebase app initialized from %s", firebase_path)

        _db = firestore.client()
    return _db
