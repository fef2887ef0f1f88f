# apps/routers/messages.py
import logging
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from apps.container import Container
from apps.deps import (
    ERROR_BAD_REQUEST,
    ERROR_NOT_FOUND,
    ERROR_UNEXPECTED,
    _err,
    _ok,
    get_container,
    require_user,
)
from models.delivery import BulkItemResult, DeliveryStatus
from shared.delivery import QueueInfrastructureError
from shared.phone import is_valid_recipient
from shared.templates import render_template

logger = logging.getLogger(__name__)

messages_router = APIRouter(prefix="/api/messages", tags=["messages"])


class SendMessageRequest(BaseModel):
    phone_number: str = Field(alias="phoneNumber")
    message: Optional[str] = None
    user_id: Optional[str] = Field(default=None, alias="userId")
    template_id: Optional[str] = Field(default=None, alias="templateId")
    variables: Dict[str, str] = Field(default_factory=dict)

    model_config = {"populate_by_name": True}


class BulkItem(BaseModel):
    phone_number: str = Field(alias="phoneNumber")
    message: Optional[str] = None
    variables: Dict[str, str] = Field(default_factory=dict)

    model_config = {"populate_by_name": True}


class BulkMessageRequest(BaseModel):
    messages: List[BulkItem]
    user_id: Optional[str] = Field(default=None, alias="userId")
    template_id: Optional[str] = Field(default=None, alias="templateId")

    model_config = {"populate_by_name": True}


def _body_for(c: Container, message: Optional[str], template_id: Optional[str], variables: Dict[str, str]) -> Optional[str]:
    if template_id:
        template = c.templates.get(template_id)
        if template is None:
            return None
        return render_template(template.content, variables)
    return message


@messages_router.post("/send")
async def send_message(
    req: SendMessageRequest,
    user_id: str = Depends(require_user),
    c: Container = Depends(get_container),
):
    if not is_valid_recipient(req.phone_number, c.settings.default_country_code):
        return _err(400, ERROR_BAD_REQUEST, "Invalid phone number")

    body = _body_for(c, req.message, req.template_id, req.variables)
    if req.template_id and body is None:
        return _err(404, ERROR_NOT_FOUND, "Template not found")
    if not body:
        return _err(400, ERROR_BAD_REQUEST, "message or templateId is required")

    try:
        job_id = await c.outbox.enqueue(req.phone_number, body, req.user_id or user_id, req.template_id)
    except QueueInfrastructureError as e:
        return _err(500, ERROR_UNEXPECTED, str(e))

    return _ok({"id": job_id, "status": DeliveryStatus.PENDING.value}, message="Message queued successfully", status=202)


@messages_router.post("/send-bulk")
async def send_bulk(
    req: BulkMessageRequest,
    user_id: str = Depends(require_user),
    c: Container = Depends(get_container),
):
    if not req.messages:
        return _err(400, ERROR_BAD_REQUEST, "messages must not be empty")

    owner = req.user_id or user_id
    results: List[BulkItemResult] = []
    for item in req.messages:
        if not is_valid_recipient(item.phone_number, c.settings.default_country_code):
            results.append(BulkItemResult(recipient=item.phone_number, success=False, error="Invalid phone number"))
            continue
        body = _body_for(c, item.message, req.template_id, item.variables)
        if not body:
            error = "Template not found" if req.template_id else "message is required"
            results.append(BulkItemResult(recipient=item.phone_number, success=False, error=error))
            continue
        results.extend(await c.outbox.enqueue_bulk([(item.phone_number, body)], owner, req.template_id))

    queued = sum(1 for r in results if r.success)
    return _ok(
        [r.model_dump(mode="json") for r in results],
        message=f"{queued} of {len(results)} messages queued",
        status=202,
    )


@messages_router.get("/status/{job_id}")
async def message_status(
    job_id: str,
    user_id: str = Depends(require_user),
    c: Container = Depends(get_container),
):
    try:
        view = c.outbox.get_view(job_id)
    except QueueInfrastructureError as e:
        return _err(500, ERROR_UNEXPECTED, str(e))
    if view is None:
        return _err(404, ERROR_NOT_FOUND, "Message not found")
    return _ok(view.model_dump(mode="json"))
