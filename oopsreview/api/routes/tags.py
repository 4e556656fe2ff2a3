"""Tag routes."""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from ...auth.policies import Policy, require_policy
from ...auth.session import SessionClaims
from ...dependencies import get_incident_manager
from ...engine.incident_manager import DuplicateTagError, IncidentManager

router = APIRouter(prefix="/tags", tags=["tags"])


class CreateTagRequest(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    color: Optional[str] = Field(default=None, pattern=r"^#[0-9a-fA-F]{6}$")


@router.get("/")
async def list_tags(
    manager: IncidentManager = Depends(get_incident_manager),
    session: SessionClaims = Depends(require_policy(Policy.CAN_VIEW_OPS_DATA)),
):
    return await manager.get_all_tags()


@router.post("/", status_code=201)
async def create_tag(
    body: CreateTagRequest,
    manager: IncidentManager = Depends(get_incident_manager),
    session: SessionClaims = Depends(require_policy(Policy.ADMIN_FULL_ACCESS)),
):
    try:
        return await manager.create_tag(body.name.strip(), body.color)
    except DuplicateTagError as e:
        raise HTTPException(status_code=409, detail=str(e))
