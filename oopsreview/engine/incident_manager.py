"""Incident Manager — incident mutations with an automatic audit timeline.

Every change to a tracked incident field is written to the incident's
timeline in the same transaction as the change itself. Field updates emit
one timeline event per changed field; tag updates emit a single combined
event. Timeline events are only ever appended.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Iterable, Optional

from sqlalchemy import case, func, select
from sqlalchemy.orm import selectinload

from ..models.enums import (
    ACTIVE_STATUSES,
    ActionItemPriority,
    ActionItemStatus,
    SETTLED_STATUSES,
    SEVERITY_RANK,
    STATUS_RANK,
    UNKNOWN_RANK,
    IncidentStatus,
    TemplateType,
)
from ..models.action_item import ActionItem
from ..models.incident import Incident
from ..models.tag import IncidentTag, Tag
from ..models.template import Template
from ..models.timeline_event import TimelineEvent
from ..utils.logging import get_logger

logger = get_logger("engine.incident_manager")

HIDDEN_BY_DEFAULT_STATUS = IncidentStatus.RESOLVED.value


class DuplicateTagError(ValueError):
    """Raised when a tag name is already taken."""


@dataclass
class IncidentPage:
    items: list[dict] = field(default_factory=list)
    total_count: int = 0
    page: int = 1
    page_size: int = 20
    total_pages: int = 0

    def to_dict(self) -> dict:
        return {
            "items": self.items,
            "total_count": self.total_count,
            "page": self.page,
            "page_size": self.page_size,
            "total_pages": self.total_pages,
        }


def _plain(value):
    """Store enum members by their display value."""
    return value.value if isinstance(value, Enum) else value


def _author(actor_user_id: Optional[int], actor_name: Optional[str]) -> Optional[str]:
    if actor_name:
        return actor_name
    if actor_user_id is not None:
        return f"User {actor_user_id}"
    return None


def _utc(value: Optional[datetime]) -> Optional[datetime]:
    """Columns hold naive UTC; convert aware values instead of dropping the offset."""
    if value is not None and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class IncidentManager:
    """Reads and mutates incidents, their timelines and their tags."""

    def __init__(self, db_session_factory=None, clock: Optional[Callable[[], datetime]] = None):
        self._db_session_factory = db_session_factory
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def _now(self) -> datetime:
        return _utc(self._clock())

    # --- Mutations ---------------------------------------------------------

    async def update_incident_info(
        self,
        incident_id: int,
        title: str,
        description: str,
        status: str,
        severity: str,
        root_cause: Optional[str],
        impact: Optional[str],
        actor_user_id: Optional[int] = None,
        actor_name: Optional[str] = None,
    ) -> bool:
        """Apply a field-level update and log one timeline event per changed field.

        Returns False only when the incident does not exist. An update that
        changes nothing writes nothing and still returns True.
        """
        status = _plain(status)
        severity = _plain(severity)

        async with self._db_session_factory() as session:
            async with session.begin():
                incident = (await session.execute(
                    select(Incident)
                    .options(selectinload(Incident.timeline_events))
                    .where(Incident.id == incident_id)
                )).scalar_one_or_none()
                if incident is None:
                    return False

                now = self._now()
                changes: list[str] = []

                if incident.title != title:
                    changes.append(f"Title: {incident.title} → {title}")
                    incident.title = title

                if incident.description != description:
                    changes.append("Description updated")
                    incident.description = description

                if incident.status != status:
                    changes.append(f"Status: {incident.status} → {status}")
                    incident.status = status
                    if status in SETTLED_STATUSES:
                        if incident.resolved_at is None:
                            incident.resolved_at = now
                            if actor_user_id is not None:
                                incident.resolved_by_user_id = actor_user_id
                    elif status in ACTIVE_STATUSES:
                        incident.resolved_at = None
                        incident.resolved_by_user_id = None

                if incident.severity != severity:
                    changes.append(f"Severity: {incident.severity} → {severity}")
                    incident.severity = severity

                if incident.root_cause != root_cause:
                    changes.append("Root Cause updated")
                    incident.root_cause = root_cause

                if incident.impact != impact:
                    changes.append("Impact updated")
                    incident.impact = impact

                if not changes:
                    return True

                author = _author(actor_user_id, actor_name)
                for change in changes:
                    incident.timeline_events.append(TimelineEvent(
                        occurred_at=now,
                        description=change,
                        author=author,
                    ))

        logger.info("incident_updated", id=incident_id, changes=len(changes), actor=author)
        return True

    async def update_incident_tags(
        self,
        incident_id: int,
        tag_ids: Iterable[int],
        actor_user_id: Optional[int] = None,
        actor_name: Optional[str] = None,
    ) -> bool:
        """Replace an incident's tags and log the difference as one timeline event.

        Requested ids that match no tag are ignored.
        """
        requested = list(dict.fromkeys(tag_ids))

        async with self._db_session_factory() as session:
            async with session.begin():
                incident = (await session.execute(
                    select(Incident)
                    .options(
                        selectinload(Incident.incident_tags).selectinload(IncidentTag.tag),
                        selectinload(Incident.timeline_events),
                    )
                    .where(Incident.id == incident_id)
                )).scalar_one_or_none()
                if incident is None:
                    return False

                tag_names: dict[int, str] = {}
                if requested:
                    rows = await session.execute(
                        select(Tag.id, Tag.name).where(Tag.id.in_(requested))
                    )
                    tag_names = {tag_id: name for tag_id, name in rows.all()}
                requested = [tag_id for tag_id in requested if tag_id in tag_names]

                current = {link.tag_id for link in incident.incident_tags}
                wanted = set(requested)
                added = [tag_id for tag_id in requested if tag_id not in current]
                removed_links = [link for link in incident.incident_tags if link.tag_id not in wanted]

                if not added and not removed_links:
                    return True

                notes = []
                if added:
                    notes.append("Tags added: " + ", ".join(tag_names[tag_id] for tag_id in added))
                if removed_links:
                    notes.append("Tags removed: " + ", ".join(link.tag.name for link in removed_links))

                for link in removed_links:
                    incident.incident_tags.remove(link)
                for tag_id in added:
                    incident.incident_tags.append(IncidentTag(tag_id=tag_id))

                incident.timeline_events.append(TimelineEvent(
                    occurred_at=self._now(),
                    description="; ".join(notes),
                    author=_author(actor_user_id, actor_name),
                ))

        logger.info("incident_tags_updated", id=incident_id, added=len(added), removed=len(removed_links))
        return True

    async def create_incident(
        self,
        title: str,
        description: str,
        severity: str,
        occurred_at: Optional[datetime] = None,
        status: str = IncidentStatus.OPEN.value,
        impact: Optional[str] = None,
        root_cause: Optional[str] = None,
        tag_ids: Optional[Iterable[int]] = None,
        actor_user_id: Optional[int] = None,
        actor_name: Optional[str] = None,
    ) -> dict:
        """Create an incident together with its opening timeline event."""
        now = self._now()
        status = _plain(status)

        async with self._db_session_factory() as session:
            async with session.begin():
                incident = Incident(
                    title=title,
                    description=description,
                    severity=_plain(severity),
                    status=status,
                    occurred_at=_utc(occurred_at) or now,
                    created_at=now,
                    impact=impact,
                    root_cause=root_cause,
                )
                if status in SETTLED_STATUSES:
                    incident.resolved_at = now
                    incident.resolved_by_user_id = actor_user_id

                if tag_ids:
                    known = (await session.execute(
                        select(Tag.id).where(Tag.id.in_(set(tag_ids)))
                    )).scalars().all()
                    incident.incident_tags = [IncidentTag(tag_id=tag_id) for tag_id in sorted(known)]

                incident.timeline_events = [TimelineEvent(
                    occurred_at=now,
                    description="Incident created",
                    author=_author(actor_user_id, actor_name),
                )]
                session.add(incident)
            incident_id = incident.id

        logger.info("incident_created", id=incident_id, severity=incident.severity, title=title)
        return await self.get_incident(incident_id)

    async def add_timeline_event(
        self,
        incident_id: int,
        description: str,
        occurred_at: Optional[datetime] = None,
        author: Optional[str] = None,
    ) -> Optional[dict]:
        """Append a manual entry to an incident's timeline."""
        async with self._db_session_factory() as session:
            async with session.begin():
                exists = (await session.execute(
                    select(Incident.id).where(Incident.id == incident_id)
                )).scalar_one_or_none()
                if exists is None:
                    return None
                event = TimelineEvent(
                    incident_id=incident_id,
                    occurred_at=_utc(occurred_at) or self._now(),
                    description=description,
                    author=author,
                )
                session.add(event)
            return self.event_to_dict(event)

    # --- Queries -----------------------------------------------------------

    async def get_incidents_paged(
        self,
        page: int = 1,
        page_size: int = 20,
        status_filter: Optional[str] = None,
        severity_filter: Optional[str] = None,
        tag_ids: Optional[Iterable[int]] = None,
        show_resolved: bool = False,
    ) -> IncidentPage:
        """List incidents most-urgent first, one page at a time.

        An explicit status filter overrides the default of hiding incidents
        whose status is exactly "Resolved" ("Closed" stays visible). Tag
        filtering matches incidents carrying any of the given tags.
        """
        page = max(page, 1)
        page_size = max(page_size, 1)
        status_filter = _plain(status_filter)
        severity_filter = _plain(severity_filter)
        tag_ids = list(tag_ids or [])

        conditions = []
        if status_filter:
            conditions.append(Incident.status == status_filter)
        elif not show_resolved:
            conditions.append(Incident.status != HIDDEN_BY_DEFAULT_STATUS)
        if severity_filter:
            conditions.append(Incident.severity == severity_filter)
        if tag_ids:
            conditions.append(Incident.id.in_(
                select(IncidentTag.incident_id).where(IncidentTag.tag_id.in_(tag_ids))
            ))

        severity_rank = case(
            {severity.value: rank for severity, rank in SEVERITY_RANK.items()},
            value=Incident.severity,
            else_=UNKNOWN_RANK,
        )
        status_rank = case(
            {status.value: rank for status, rank in STATUS_RANK.items()},
            value=Incident.status,
            else_=UNKNOWN_RANK,
        )

        async with self._db_session_factory() as session:
            total = (await session.execute(
                select(func.count(Incident.id)).where(*conditions)
            )).scalar() or 0

            result = await session.execute(
                select(Incident)
                .options(selectinload(Incident.incident_tags).selectinload(IncidentTag.tag))
                .where(*conditions)
                .order_by(severity_rank, status_rank, Incident.occurred_at.desc(), Incident.id)
                .offset((page - 1) * page_size)
                .limit(page_size)
            )
            items = [self.to_dict(i) for i in result.scalars().all()]

        return IncidentPage(
            items=items,
            total_count=total,
            page=page,
            page_size=page_size,
            total_pages=(total + page_size - 1) // page_size,
        )

    async def get_incident(self, incident_id: int) -> Optional[dict]:
        """Get one incident with its timeline, action items, tags and resolver."""
        async with self._db_session_factory() as session:
            incident = (await session.execute(
                select(Incident)
                .options(
                    selectinload(Incident.timeline_events),
                    selectinload(Incident.action_items),
                    selectinload(Incident.incident_tags).selectinload(IncidentTag.tag),
                    selectinload(Incident.resolved_by_user),
                )
                .where(Incident.id == incident_id)
            )).scalar_one_or_none()
            return self.to_dict(incident, detail=True) if incident else None

    async def get_all_tags(self) -> list[dict]:
        async with self._db_session_factory() as session:
            result = await session.execute(select(Tag).order_by(Tag.name))
            return [self.tag_to_dict(t) for t in result.scalars().all()]

    async def create_tag(self, name: str, color: Optional[str] = None) -> dict:
        async with self._db_session_factory() as session:
            async with session.begin():
                taken = (await session.execute(
                    select(Tag.id).where(Tag.name == name)
                )).scalar_one_or_none()
                if taken is not None:
                    raise DuplicateTagError(f"Tag '{name}' already exists")
                tag = Tag(name=name, color=color, created_at=self._now())
                session.add(tag)
            return self.tag_to_dict(tag)

    # --- Action items ------------------------------------------------------

    async def add_action_item(
        self,
        incident_id: Optional[int],
        title: str,
        description: Optional[str] = None,
        priority: str = ActionItemPriority.MEDIUM.value,
        assigned_to: Optional[str] = None,
        due_date: Optional[datetime] = None,
    ) -> Optional[dict]:
        """Record follow-up work. Returns None when the incident does not exist."""
        async with self._db_session_factory() as session:
            async with session.begin():
                if incident_id is not None:
                    exists = (await session.execute(
                        select(Incident.id).where(Incident.id == incident_id)
                    )).scalar_one_or_none()
                    if exists is None:
                        return None
                item = ActionItem(
                    incident_id=incident_id,
                    title=title,
                    description=description,
                    status=ActionItemStatus.OPEN.value,
                    priority=_plain(priority),
                    assigned_to=assigned_to,
                    due_date=_utc(due_date),
                    created_at=self._now(),
                )
                session.add(item)

        logger.info("action_item_added", id=item.id, incident_id=incident_id)
        return self.action_item_to_dict(item)

    async def list_action_items(
        self,
        incident_id: Optional[int] = None,
        status: Optional[str] = None,
    ) -> list[dict]:
        """Action items, soonest due first; undated items last."""
        async with self._db_session_factory() as session:
            query = select(ActionItem).order_by(
                ActionItem.due_date.is_(None), ActionItem.due_date, ActionItem.id
            )
            if incident_id is not None:
                query = query.where(ActionItem.incident_id == incident_id)
            if status:
                query = query.where(ActionItem.status == _plain(status))
            result = await session.execute(query)
            return [self.action_item_to_dict(a) for a in result.scalars().all()]

    async def update_action_item_status(self, item_id: int, status: str) -> Optional[dict]:
        """Move an action item to a new status, stamping or clearing completion."""
        status = _plain(status)
        async with self._db_session_factory() as session:
            async with session.begin():
                item = await session.get(ActionItem, item_id)
                if item is None:
                    return None
                if item.status != status:
                    item.status = status
                    if status == ActionItemStatus.COMPLETED.value:
                        item.completed_at = self._now()
                    else:
                        item.completed_at = None

        logger.info("action_item_status_updated", id=item_id, status=status)
        return self.action_item_to_dict(item)

    # --- Templates ---------------------------------------------------------

    async def list_templates(self, template_type: Optional[str] = None) -> list[dict]:
        async with self._db_session_factory() as session:
            query = select(Template).order_by(Template.name)
            if template_type:
                query = query.where(Template.type == _plain(template_type))
            result = await session.execute(query)
            return [self.template_to_dict(t) for t in result.scalars().all()]

    async def create_template(
        self, name: str, content: str, template_type: str = TemplateType.INCIDENT.value,
    ) -> dict:
        async with self._db_session_factory() as session:
            async with session.begin():
                template = Template(
                    name=name,
                    content=content,
                    type=_plain(template_type),
                    created_at=self._now(),
                )
                session.add(template)
        logger.info("template_created", id=template.id, type=template.type)
        return self.template_to_dict(template)

    # --- Serialization -----------------------------------------------------

    @staticmethod
    def action_item_to_dict(item: ActionItem) -> dict:
        return {
            "id": item.id,
            "incident_id": item.incident_id,
            "title": item.title,
            "description": item.description,
            "status": item.status,
            "priority": item.priority,
            "assigned_to": item.assigned_to,
            "due_date": _iso(item.due_date),
            "created_at": _iso(item.created_at),
            "completed_at": _iso(item.completed_at),
        }

    @staticmethod
    def template_to_dict(template: Template) -> dict:
        return {
            "id": template.id,
            "name": template.name,
            "content": template.content,
            "type": template.type,
            "created_at": _iso(template.created_at),
            "updated_at": _iso(template.updated_at),
        }

    @staticmethod
    def event_to_dict(event: TimelineEvent) -> dict:
        return {
            "id": event.id,
            "incident_id": event.incident_id,
            "occurred_at": _iso(event.occurred_at),
            "description": event.description,
            "author": event.author,
        }

    @staticmethod
    def tag_to_dict(tag: Tag) -> dict:
        return {
            "id": tag.id,
            "name": tag.name,
            "color": tag.color,
            "created_at": _iso(tag.created_at),
        }

    @classmethod
    def to_dict(cls, incident: Incident, detail: bool = False) -> dict:
        data = {
            "id": incident.id,
            "title": incident.title,
            "description": incident.description,
            "severity": incident.severity,
            "status": incident.status,
            "occurred_at": _iso(incident.occurred_at),
            "created_at": _iso(incident.created_at),
            "resolved_at": _iso(incident.resolved_at),
            "root_cause": incident.root_cause,
            "impact": incident.impact,
            "resolved_by_user_id": incident.resolved_by_user_id,
            "tags": sorted(
                (cls.tag_to_dict(link.tag) for link in incident.incident_tags),
                key=lambda t: t["name"],
            ),
        }
        if detail:
            resolver = incident.resolved_by_user
            data["resolved_by"] = (resolver.full_name or resolver.username) if resolver else None
            data["timeline"] = [cls.event_to_dict(e) for e in incident.timeline_events]
            data["action_items"] = [cls.action_item_to_dict(a) for a in incident.action_items]
        return data
