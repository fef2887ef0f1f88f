from __future__ import annotations

import logging
import threading
import uuid
from abc import ABC, abstractmethod
from collections import defaultdict
from enum import Enum
from typing import Any, Dict, List, Optional

from google.cloud import firestore
from google.cloud.firestore_v1 import FieldFilter

from db.base import get_db
from models.delivery import DeliveryJob, DeliveryLogEntry, DeliveryStatus
from shared import time

logger = logging.getLogger(__name__)

UNFINISHED = [DeliveryStatus.PENDING.value, DeliveryStatus.QUEUED.value]


def _to_doc(model) -> Dict[str, Any]:
    return {k: (v.value if isinstance(v, Enum) else v) for k, v in model.model_dump(mode="python").items()}


class DeliveryJobStore(ABC):
    """Job rows (last-writer-wins per job id) plus an append-only log per job."""

    @abstractmethod
    def create(self, user_id: str, recipient: str, body: str, template_id: Optional[str] = None) -> DeliveryJob:
        pass

    @abstractmethod
    def get(self, job_id: str) -> Optional[DeliveryJob]:
        pass

    @abstractmethod
    def update(self, job_id: str, **fields: Any) -> None:
        pass

    @abstractmethod
    def append_log(self, entry: DeliveryLogEntry) -> None:
        pass

    @abstractmethod
    def list_logs(self, job_id: str, limit: int = 10) -> List[DeliveryLogEntry]:
        """Newest first."""
        pass

    @abstractmethod
    def list_unfinished(self) -> List[DeliveryJob]:
        """PENDING/QUEUED jobs and FAILED jobs still waiting for a retry, oldest first."""
        pass


class FirestoreDeliveryJobStore(DeliveryJobStore):
    def __init__(self, db=None):
        self.db = db or get_db()
        self.collection = self.db.collection("messages")

    def create(self, user_id: str, recipient: str, body: str, template_id: Optional[str] = None) -> DeliveryJob:
        doc_ref = self.collection.document()  # auto-generated ID
        job = DeliveryJob(
            id=doc_ref.id,
            user_id=user_id,
            recipient=recipient,
            body=body,
            template_id=template_id,
            created_at=time.utcnow(),
        )
        doc_ref.set(_to_doc(job))
        return job

    def get(self, job_id: str) -> Optional[DeliveryJob]:
        doc = self.collection.document(job_id).get()
        if not doc.exists:
            return None
        return DeliveryJob(**doc.to_dict())

    def update(self, job_id: str, **fields: Any) -> None:
        patch = {k: (v.value if isinstance(v, DeliveryStatus) else v) for k, v in fields.items()}
        patch["updated_at"] = time.utcnow()
        self.collection.document(job_id).set(patch, merge=True)

    def append_log(self, entry: DeliveryLogEntry) -> None:
        self.collection.document(entry.job_id).collection("logs").add(_to_doc(entry))

    def list_logs(self, job_id: str, limit: int = 10) -> List[DeliveryLogEntry]:
        q = (
            self.collection.document(job_id).collection("logs")
            .order_by("created_at", direction=firestore.Query.DESCENDING)
            .limit(limit)
        )
        return [DeliveryLogEntry(**d.to_dict()) for d in q.stream()]

    def list_unfinished(self) -> List[DeliveryJob]:
        found: Dict[str, DeliveryJob] = {}
        queries = (
            self.collection.where(filter=FieldFilter("status", "in", UNFINISHED)),
            self.collection.where(filter=FieldFilter("next_attempt_at", "!=", None)),
        )
        for q in queries:
            for d in q.stream():
                job = DeliveryJob(**d.to_dict())
                found[job.id] = job
        return sorted(found.values(), key=lambda j: j.created_at)


class InMemoryDeliveryJobStore(DeliveryJobStore):
    def __init__(self):
        self._jobs: Dict[str, DeliveryJob] = {}
        self._logs: Dict[str, List[DeliveryLogEntry]] = defaultdict(list)
        self._lock = threading.Lock()

    def create(self, user_id: str, recipient: str, body: str, template_id: Optional[str] = None) -> DeliveryJob:
        job = DeliveryJob(
            id=uuid.uuid4().hex,
            user_id=user_id,
            recipient=recipient,
            body=body,
            template_id=template_id,
            created_at=time.utcnow(),
        )
        with self._lock:
            self._jobs[job.id] = job
        return job.model_copy()

    def get(self, job_id: str) -> Optional[DeliveryJob]:
        job = self._jobs.get(job_id)
        return job.model_copy() if job else None

    def update(self, job_id: str, **fields: Any) -> None:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise KeyError(job_id)
            fields["updated_at"] = time.utcnow()
            self._jobs[job_id] = job.model_copy(update=fields)

    def append_log(self, entry: DeliveryLogEntry) -> None:
        with self._lock:
            self._logs[entry.job_id].append(entry.model_copy())

    def list_logs(self, job_id: str, limit: int = 10) -> List[DeliveryLogEntry]:
        logs = list(reversed(self._logs.get(job_id, [])))
        return logs[:limit]

    def all_logs(self, job_id: str) -> List[DeliveryLogEntry]:
        """Oldest first."""
        return list(self._logs.get(job_id, []))

    def list_unfinished(self) -> List[DeliveryJob]:
        jobs = [j for j in self._jobs.values()
                if j.status.value in UNFINISHED or j.next_attempt_at is not None]
        return sorted((j.model_copy() for j in jobs), key=lambda j: j.created_at)
