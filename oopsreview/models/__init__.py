"""SQLAlchemy models package."""

from .base import Base
from .role import Role
from .user import User
from .incident import Incident
from .timeline_event import TimelineEvent
from .action_item import ActionItem
from .tag import IncidentTag, Tag
from .template import Template

__all__ = [
    "Base",
    "Role",
    "User",
    "Incident",
    "TimelineEvent",
    "ActionItem",
    "Tag",
    "IncidentTag",
    "Template",
]
