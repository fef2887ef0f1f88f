# apps/routers/triggers.py
import logging
import uuid
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from apps.container import Container
from apps.deps import ERROR_NOT_FOUND, _err, _ok, get_container, require_api_key
from models.template import EventType, Trigger, TriggerConditions
from shared import time

logger = logging.getLogger(__name__)

triggers_router = APIRouter(prefix="/api/triggers", tags=["triggers"], dependencies=[Depends(require_api_key)])


class TriggerIn(BaseModel):
    name: str
    event_type: EventType = Field(alias="eventType")
    conditions: TriggerConditions = Field(default_factory=TriggerConditions)
    template_id: str = Field(alias="templateId")
    enabled: bool = True

    model_config = {"populate_by_name": True}


class EventIn(BaseModel):
    event_type: EventType = Field(alias="eventType")
    data: Dict[str, Any] = Field(default_factory=dict)

    model_config = {"populate_by_name": True}


@triggers_router.get("")
async def list_triggers(eventType: Optional[EventType] = None, c: Container = Depends(get_container)):
    return _ok([t.model_dump(mode="json") for t in c.trigger_store.list(event_type=eventType)])


@triggers_router.post("")
async def create_trigger(req: TriggerIn, c: Container = Depends(get_container)):
    if c.templates.get(req.template_id) is None:
        return _err(404, ERROR_NOT_FOUND, "Template not found")
    trigger = Trigger(
        id=uuid.uuid4().hex,
        name=req.name,
        event_type=req.event_type,
        conditions=req.conditions,
        template_id=req.template_id,
        enabled=req.enabled,
        created_at=time.utcnow(),
    )
    c.trigger_store.create(trigger)
    return _ok(trigger.model_dump(mode="json"), message="Trigger created successfully", status=201)


@triggers_router.delete("/{trigger_id}")
async def delete_trigger(trigger_id: str, c: Container = Depends(get_container)):
    if not c.trigger_store.delete(trigger_id):
        return _err(404, ERROR_NOT_FOUND, "Trigger not found")
    return _ok(message="Trigger deleted successfully")


@triggers_router.post("/events")
async def fire_event(req: EventIn, c: Container = Depends(get_container)):
    fired = await c.triggers.execute(req.event_type, req.data)
    return _ok({"eventType": req.event_type.value, "fired": fired}, status=202)
