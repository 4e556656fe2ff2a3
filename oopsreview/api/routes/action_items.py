"""Action item routes — follow-up work tracked against incidents."""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from ...auth.policies import Policy, require_policy
from ...auth.session import SessionClaims
from ...dependencies import get_incident_manager
from ...engine.incident_manager import IncidentManager

router = APIRouter(prefix="/action-items", tags=["action-items"])

ACTION_STATUS_PATTERN = r"^(Open|In Progress|Completed|Cancelled)$"


class CreateActionItemRequest(BaseModel):
    incident_id: Optional[int] = None
    title: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    priority: str = Field(default="Medium", pattern=r"^(Low|Medium|High)$")
    assigned_to: Optional[str] = Field(default=None, max_length=200)
    due_date: Optional[datetime] = None


class UpdateActionItemStatusRequest(BaseModel):
    status: str = Field(pattern=ACTION_STATUS_PATTERN)


@router.get("/")
async def list_action_items(
    incident_id: Optional[int] = None,
    status: Optional[str] = Query(None, pattern=ACTION_STATUS_PATTERN),
    manager: IncidentManager = Depends(get_incident_manager),
    session: SessionClaims = Depends(require_policy(Policy.CAN_VIEW_OPS_DATA)),
):
    return await manager.list_action_items(incident_id=incident_id, status=status)


@router.post("/", status_code=201)
async def create_action_item(
    body: CreateActionItemRequest,
    manager: IncidentManager = Depends(get_incident_manager),
    session: SessionClaims = Depends(require_policy(Policy.CAN_EDIT_OPS_DATA)),
):
    item = await manager.add_action_item(
        incident_id=body.incident_id,
        title=body.title,
        description=body.description,
        priority=body.priority,
        assigned_to=body.assigned_to,
        due_date=body.due_date,
    )
    if item is None:
        raise HTTPException(status_code=404, detail="Incident not found")
    return item


@router.patch("/{item_id}/status")
async def update_action_item_status(
    item_id: int,
    body: UpdateActionItemStatusRequest,
    manager: IncidentManager = Depends(get_incident_manager),
    session: SessionClaims = Depends(require_policy(Policy.CAN_EDIT_OPS_DATA)),
):
    item = await manager.update_action_item_status(item_id, body.status)
    if item is None:
        raise HTTPException(status_code=404, detail="Action item not found")
    return item
