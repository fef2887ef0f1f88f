# apps/routers/templates.py
import logging
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from apps.container import Container
from apps.deps import ERROR_BAD_REQUEST, ERROR_CONFLICT, ERROR_NOT_FOUND, _err, _ok, get_container, require_user
from shared.templates import extract_variables, render_template
from store.template_store import DuplicateTemplateError

logger = logging.getLogger(__name__)

templates_router = APIRouter(prefix="/api/templates", tags=["templates"])


class TemplateIn(BaseModel):
    name: str
    content: str
    variables: Optional[List[str]] = None
    description: Optional[str] = None


class TemplateUpdate(BaseModel):
    name: Optional[str] = None
    content: Optional[str] = None
    variables: Optional[List[str]] = None
    description: Optional[str] = None


class RenderRequest(BaseModel):
    data: Dict[str, str] = {}


@templates_router.get("")
async def list_templates(c: Container = Depends(get_container)):
    return _ok([t.model_dump(mode="json") for t in c.templates.list()])


@templates_router.get("/{template_id}")
async def get_template(template_id: str, c: Container = Depends(get_container)):
    template = c.templates.get(template_id)
    if template is None:
        return _err(404, ERROR_NOT_FOUND, "Template not found")
    return _ok(template.model_dump(mode="json"))


@templates_router.post("", dependencies=[Depends(require_user)])
async def create_template(req: TemplateIn, c: Container = Depends(get_container)):
    if not req.name.strip() or not req.content.strip():
        return _err(400, ERROR_BAD_REQUEST, "name and content are required")
    variables = req.variables if req.variables is not None else extract_variables(req.content)
    try:
        template = c.templates.create(req.name.strip(), req.content, variables, req.description)
    except DuplicateTemplateError:
        return _err(409, ERROR_CONFLICT, "Template with this name already exists")
    return _ok(template.model_dump(mode="json"), message="Template created successfully", status=201)


@templates_router.put("/{template_id}", dependencies=[Depends(require_user)])
async def update_template(template_id: str, req: TemplateUpdate, c: Container = Depends(get_container)):
    fields = req.model_dump(exclude_none=True)
    if "content" in fields and req.variables is None:
        fields["variables"] = extract_variables(fields["content"])
    try:
        template = c.templates.update(template_id, **fields)
    except DuplicateTemplateError:
        return _err(409, ERROR_CONFLICT, "Template with this name already exists")
    if template is None:
        return _err(404, ERROR_NOT_FOUND, "Template not found")
    return _ok(template.model_dump(mode="json"), message="Template updated successfully")


@templates_router.delete("/{template_id}", dependencies=[Depends(require_user)])
async def delete_template(template_id: str, c: Container = Depends(get_container)):
    if not c.templates.delete(template_id):
        return _err(404, ERROR_NOT_FOUND, "Template not found")
    return _ok(message="Template deleted successfully")


@templates_router.post("/{template_id}/render")
async def render(template_id: str, req: RenderRequest, c: Container = Depends(get_container)):
    template = c.templates.get(template_id)
    if template is None:
        return _err(404, ERROR_NOT_FOUND, "Template not found")
    return _ok({"message": render_template(template.content, req.data)})
