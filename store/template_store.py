from __future__ import annotations

import logging
import uuid
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from google.cloud import firestore
from google.cloud.firestore_v1 import FieldFilter

from db.base import get_db
from models.template import EventType, MessageTemplate, Trigger
from shared import time

logger = logging.getLogger(__name__)


class DuplicateTemplateError(Exception):
    pass


class TemplateStore(ABC):
    @abstractmethod
    def create(self, name: str, content: str, variables: List[str], description: Optional[str] = None) -> MessageTemplate:
        pass

    @abstractmethod
    def get(self, template_id: str) -> Optional[MessageTemplate]:
        pass

    @abstractmethod
    def list(self) -> List[MessageTemplate]:
        """Newest first."""
        pass

    @abstractmethod
    def update(self, template_id: str, **fields: Any) -> Optional[MessageTemplate]:
        pass

    @abstractmethod
    def delete(self, template_id: str) -> bool:
        pass


class TriggerStore(ABC):
    @abstractmethod
    def create(self, trigger: Trigger) -> Trigger:
        pass

    @abstractmethod
    def list(self, event_type: Optional[EventType] = None, enabled_only: bool = False) -> List[Trigger]:
        pass

    @abstractmethod
    def delete(self, trigger_id: str) -> bool:
        pass


# --- Firestore ---

class FirestoreTemplateStore(TemplateStore):
    def __init__(self, db=None):
        self.db = db or get_db()
        self.collection = self.db.collection("templates")

    def _name_taken(self, name: str, exclude_id: Optional[str] = None) -> bool:
        q = self.collection.where(filter=FieldFilter("name", "==", name)).limit(2)
        return any(d.id != exclude_id for d in q.stream())

    def create(self, name: str, content: str, variables: List[str], description: Optional[str] = None) -> MessageTemplate:
        if self._name_taken(name):
            raise DuplicateTemplateError(name)
        doc_ref = self.collection.document()
        tpl = MessageTemplate(
            id=doc_ref.id, name=name, content=content, variables=variables,
            description=description, created_at=time.utcnow(),
        )
        doc_ref.set(tpl.model_dump(mode="python"))
        logger.info("[STORE] Template %s created (%s)", tpl.id, name)
        return tpl

    def get(self, template_id: str) -> Optional[MessageTemplate]:
        doc = self.collection.document(template_id).get()
        return MessageTemplate(**doc.to_dict()) if doc.exists else None

    def list(self) -> List[MessageTemplate]:
        q = self.collection.order_by("created_at", direction=firestore.Query.DESCENDING)
        return [MessageTemplate(**d.to_dict()) for d in q.stream()]

    def update(self, template_id: str, **fields: Any) -> Optional[MessageTemplate]:
        doc_ref = self.collection.document(template_id)
        if not doc_ref.get().exists:
            return None
        clean = {k: v for k, v in fields.items() if v is not None}
        if "name" in clean and self._name_taken(clean["name"], exclude_id=template_id):
            raise DuplicateTemplateError(clean["name"])
        clean["updated_at"] = time.utcnow()
        doc_ref.update(clean)
        return self.get(template_id)

    def delete(self, template_id: str) -> bool:
        doc_ref = self.collection.document(template_id)
        if not doc_ref.get().exists:
            return False
        doc_ref.delete()
        return True


class FirestoreTriggerStore(TriggerStore):
    def __init__(self, db=None):
        self.db = db or get_db()
        self.collection = self.db.collection("triggers")

    def create(self, trigger: Trigger) -> Trigger:
        self.collection.document(trigger.id).set(trigger.model_dump(mode="json"))
        return trigger

    def list(self, event_type: Optional[EventType] = None, enabled_only: bool = False) -> List[Trigger]:
        q = self.collection
        if event_type is not None:
            q = q.where(filter=FieldFilter("event_type", "==", event_type.value))
        if enabled_only:
            q = q.where(filter=FieldFilter("enabled", "==", True))
        return [Trigger(**d.to_dict()) for d in q.stream()]

    def delete(self, trigger_id: str) -> bool:
        doc_ref = self.collection.document(trigger_id)
        if not doc_ref.get().exists:
            return False
        doc_ref.delete()
        return True


# --- in-memory ---

class InMemoryTemplateStore(TemplateStore):
    def __init__(self):
        self._rows: Dict[str, MessageTemplate] = {}

    def create(self, name: str, content: str, variables: List[str], description: Optional[str] = None) -> MessageTemplate:
        if any(t.name == name for t in self._rows.values()):
            raise DuplicateTemplateError(name)
        tpl = MessageTemplate(
            id=uuid.uuid4().hex, name=name, content=content, variables=list(variables),
            description=description, created_at=time.utcnow(),
        )
        self._rows[tpl.id] = tpl
        return tpl.model_copy()

    def get(self, template_id: str) -> Optional[MessageTemplate]:
        tpl = self._rows.get(template_id)
        return tpl.model_copy() if tpl else None

    def list(self) -> List[MessageTemplate]:
        return sorted(self._rows.values(), key=lambda t: t.created_at, reverse=True)

    def update(self, template_id: str, **fields: Any) -> Optional[MessageTemplate]:
        tpl = self._rows.get(template_id)
        if tpl is None:
            return None
        clean = {k: v for k, v in fields.items() if v is not None}
        name = clean.get("name")
        if name and any(t.name == name and t.id != template_id for t in self._rows.values()):
            raise DuplicateTemplateError(name)
        clean["updated_at"] = time.utcnow()
        self._rows[template_id] = tpl.model_copy(update=clean)
        return self._rows[template_id].model_copy()

    def delete(self, template_id: str) -> bool:
        return self._rows.pop(template_id, None) is not None


class InMemoryTriggerStore(TriggerStore):
    def __init__(self):
        self._rows: Dict[str, Trigger] = {}

    def create(self, trigger: Trigger) -> Trigger:
        self._rows[trigger.id] = trigger
        return trigger

    def list(self, event_type: Optional[EventType] = None, enabled_only: bool = False) -> List[Trigger]:
        out = [t for t in self._rows.values()
               if (event_type is None or t.event_type == event_type)
               and (not enabled_only or t.enabled)]
        return sorted(out, key=lambda t: t.created_at, reverse=True)

    def delete(self, trigger_id: str) -> bool:
        return self._rows.pop(trigger_id, None) is not None
