"""Template routes."""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from ...auth.policies import Policy, require_policy
from ...auth.session import SessionClaims
from ...dependencies import get_incident_manager
from ...engine.incident_manager import IncidentManager

router = APIRouter(prefix="/templates", tags=["templates"])

TEMPLATE_TYPE_PATTERN = r"^(Incident|ActionItem|Timeline)$"


class CreateTemplateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    content: str = Field(min_length=1)
    type: str = Field(default="Incident", pattern=TEMPLATE_TYPE_PATTERN)


@router.get("/")
async def list_templates(
    type: Optional[str] = Query(None, pattern=TEMPLATE_TYPE_PATTERN),
    manager: IncidentManager = Depends(get_incident_manager),
    session: SessionClaims = Depends(require_policy(Policy.CAN_VIEW_OPS_DATA)),
):
    return await manager.list_templates(type)


@router.post("/", status_code=201)
async def create_template(
    body: CreateTemplateRequest,
    manager: IncidentManager = Depends(get_incident_manager),
    session: SessionClaims = Depends(require_policy(Policy.ADMIN_FULL_ACCESS)),
):
    return await manager.create_template(body.name, body.content, body.type)
