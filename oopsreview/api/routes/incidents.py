"""Incident routes — paged listing, audited edits, tags, timeline and report export."""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, Field

from ...auth.policies import Policy, require_policy
from ...auth.session import SessionClaims
from ...dependencies import get_incident_manager, get_markdown_exporter
from ...engine.incident_manager import IncidentManager
from ...export.exporter import MarkdownExporter

router = APIRouter(prefix="/incidents", tags=["incidents"])

SEVERITY_PATTERN = r"^(Low|Medium|High|Critical)$"
STATUS_PATTERN = r"^(Open|Investigating|Resolved|Closed)$"


# --- Request bodies ---

class CreateIncidentRequest(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: str = Field(min_length=1)
    severity: str = Field(pattern=SEVERITY_PATTERN)
    status: str = Field(default="Open", pattern=STATUS_PATTERN)
    occurred_at: Optional[datetime] = None
    impact: Optional[str] = None
    root_cause: Optional[str] = None
    tag_ids: list[int] = Field(default_factory=list)


class UpdateIncidentRequest(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: str = Field(min_length=1)
    status: str = Field(pattern=STATUS_PATTERN)
    severity: str = Field(pattern=SEVERITY_PATTERN)
    root_cause: Optional[str] = None
    impact: Optional[str] = None


class UpdateTagsRequest(BaseModel):
    tag_ids: list[int]


class AddTimelineEventRequest(BaseModel):
    description: str = Field(min_length=1)
    occurred_at: Optional[datetime] = None


def _not_found() -> HTTPException:
    return HTTPException(status_code=404, detail="Incident not found")


# --- Endpoints ---

@router.get("/")
async def list_incidents(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=200),
    status: Optional[str] = Query(None, pattern=STATUS_PATTERN),
    severity: Optional[str] = Query(None, pattern=SEVERITY_PATTERN),
    tag_ids: list[int] = Query([]),
    show_resolved: bool = False,
    manager: IncidentManager = Depends(get_incident_manager),
    session: SessionClaims = Depends(require_policy(Policy.CAN_VIEW_OPS_DATA)),
):
    """List incidents most-urgent first. Resolved incidents are hidden unless asked for."""
    result = await manager.get_incidents_paged(
        page=page,
        page_size=page_size,
        status_filter=status,
        severity_filter=severity,
        tag_ids=tag_ids,
        show_resolved=show_resolved,
    )
    return result.to_dict()


@router.post("/", status_code=201)
async def create_incident(
    body: CreateIncidentRequest,
    manager: IncidentManager = Depends(get_incident_manager),
    session: SessionClaims = Depends(require_policy(Policy.CAN_EDIT_OPS_DATA)),
):
    """Open a new incident."""
    return await manager.create_incident(
        title=body.title,
        description=body.description,
        severity=body.severity,
        status=body.status,
        occurred_at=body.occurred_at,
        impact=body.impact,
        root_cause=body.root_cause,
        tag_ids=body.tag_ids,
        actor_user_id=session.user_id,
        actor_name=session.display_name,
    )


@router.get("/{incident_id}")
async def get_incident(
    incident_id: int,
    manager: IncidentManager = Depends(get_incident_manager),
    session: SessionClaims = Depends(require_policy(Policy.CAN_VIEW_OPS_DATA)),
):
    """Get one incident with its timeline, tags and action items."""
    incident = await manager.get_incident(incident_id)
    if not incident:
        raise _not_found()
    return incident


@router.put("/{incident_id}")
async def update_incident(
    incident_id: int,
    body: UpdateIncidentRequest,
    manager: IncidentManager = Depends(get_incident_manager),
    session: SessionClaims = Depends(require_policy(Policy.CAN_EDIT_OPS_DATA)),
):
    """Update incident fields; each changed field is logged to the timeline."""
    found = await manager.update_incident_info(
        incident_id=incident_id,
        title=body.title,
        description=body.description,
        status=body.status,
        severity=body.severity,
        root_cause=body.root_cause,
        impact=body.impact,
        actor_user_id=session.user_id,
        actor_name=session.display_name,
    )
    if not found:
        raise _not_found()
    return await manager.get_incident(incident_id)


@router.put("/{incident_id}/tags")
async def update_incident_tags(
    incident_id: int,
    body: UpdateTagsRequest,
    manager: IncidentManager = Depends(get_incident_manager),
    session: SessionClaims = Depends(require_policy(Policy.CAN_EDIT_OPS_DATA)),
):
    """Replace an incident's tag set."""
    found = await manager.update_incident_tags(
        incident_id=incident_id,
        tag_ids=body.tag_ids,
        actor_user_id=session.user_id,
        actor_name=session.display_name,
    )
    if not found:
        raise _not_found()
    return await manager.get_incident(incident_id)


@router.post("/{incident_id}/timeline", status_code=201)
async def add_timeline_event(
    incident_id: int,
    body: AddTimelineEventRequest,
    manager: IncidentManager = Depends(get_incident_manager),
    session: SessionClaims = Depends(require_policy(Policy.CAN_EDIT_OPS_DATA)),
):
    """Add a manual timeline entry."""
    event = await manager.add_timeline_event(
        incident_id=incident_id,
        description=body.description,
        occurred_at=body.occurred_at,
        author=session.display_name,
    )
    if event is None:
        raise _not_found()
    return event


@router.get("/{incident_id}/export", response_class=PlainTextResponse)
async def export_incident(
    incident_id: int,
    exporter: MarkdownExporter = Depends(get_markdown_exporter),
    session: SessionClaims = Depends(require_policy(Policy.CAN_VIEW_OPS_DATA)),
):
    """Download the incident as a Markdown report."""
    report = await exporter.export_incident(incident_id)
    if report is None:
        raise _not_found()
    return PlainTextResponse(
        report.content,
        media_type="text/markdown; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{report.filename}"'},
    )
