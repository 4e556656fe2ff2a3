"""Closed value sets for incident, action item and template fields.

Values are the display strings stored in the database, so models keep plain
``String`` columns and callers may pass either the enum member or its value.
"""

from enum import Enum

UNKNOWN_RANK = 4


class Severity(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"


class IncidentStatus(str, Enum):
    OPEN = "Open"
    INVESTIGATING = "Investigating"
    RESOLVED = "Resolved"
    CLOSED = "Closed"


class ActionItemStatus(str, Enum):
    OPEN = "Open"
    IN_PROGRESS = "In Progress"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


class ActionItemPriority(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"


class TemplateType(str, Enum):
    INCIDENT = "Incident"
    ACTION_ITEM = "ActionItem"
    TIMELINE = "Timeline"


SEVERITY_RANK = {
    Severity.CRITICAL: 0,
    Severity.HIGH: 1,
    Severity.MEDIUM: 2,
    Severity.LOW: 3,
}

STATUS_RANK = {
    IncidentStatus.OPEN: 0,
    IncidentStatus.INVESTIGATING: 1,
    IncidentStatus.RESOLVED: 2,
    IncidentStatus.CLOSED: 3,
}

SETTLED_STATUSES = frozenset({IncidentStatus.RESOLVED.value, IncidentStatus.CLOSED.value})
ACTIVE_STATUSES = frozenset({IncidentStatus.OPEN.value, IncidentStatus.INVESTIGATING.value})
