"""Markdown exporter — renders a single incident as a shareable postmortem report."""

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from ..models.enums import ActionItemStatus
from ..utils.logging import get_logger

logger = get_logger("export.exporter")

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S UTC"
DATE_FORMAT = "%Y-%m-%d"

PRIORITY_ORDER = {"High": 0, "Medium": 1, "Low": 2}


def _format(value: Optional[str], fmt: str = TIMESTAMP_FORMAT) -> str:
    if not value:
        return ""
    return datetime.fromisoformat(value).strftime(fmt)


def slugify(text: str, max_length: int = 50) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")
    return slug[:max_length].rstrip("-") or "incident"


def export_filename(incident: dict) -> str:
    """File name for a downloaded report, e.g. ``incident-7-db-failover.md``."""
    return f"incident-{incident['id']}-{slugify(incident['title'])}.md"


@dataclass(frozen=True)
class IncidentReport:
    filename: str
    content: str


class MarkdownExporter:
    """Builds Markdown reports from incidents loaded through the IncidentManager."""

    def __init__(self, incident_manager) -> None:
        self._incident_manager = incident_manager

    async def export_incident(self, incident_id: int) -> Optional[IncidentReport]:
        """Render an incident report, or None if the incident does not exist."""
        incident = await self._incident_manager.get_incident(incident_id)
        if incident is None:
            return None
        report = IncidentReport(filename=export_filename(incident), content=self.render(incident))
        logger.info("incident_exported", id=incident_id, bytes=len(report.content))
        return report

    @staticmethod
    def render(incident: dict) -> str:
        lines = [f"# Incident Report: {incident['title']}", ""]

        lines.append("## Metadata")
        lines.append(f"- **ID**: {incident['id']}")
        lines.append(f"- **Severity**: {incident['severity']}")
        lines.append(f"- **Status**: {incident['status']}")
        lines.append(f"- **Occurred At**: {_format(incident['occurred_at'])}")
        lines.append(f"- **Created At**: {_format(incident['created_at'])}")
        if incident.get("resolved_at"):
            lines.append(f"- **Resolved At**: {_format(incident['resolved_at'])}")
        if incident.get("resolved_by"):
            lines.append(f"- **Resolved By**: {incident['resolved_by']}")
        if incident.get("tags"):
            lines.append(f"- **Tags**: {', '.join(t['name'] for t in incident['tags'])}")
        lines.append("")

        lines.extend(["## Description", incident["description"], ""])

        if incident.get("impact"):
            lines.extend(["## Impact", incident["impact"], ""])

        timeline = incident.get("timeline") or []
        if timeline:
            lines.append("## Timeline")
            for event in sorted(timeline, key=lambda e: (e["occurred_at"], e["id"])):
                lines.append(f"### {_format(event['occurred_at'])}")
                lines.append(event["description"])
                if event.get("author"):
                    lines.append(f"*Author: {event['author']}*")
                lines.append("")

        if incident.get("root_cause"):
            lines.extend(["## Root Cause", incident["root_cause"], ""])

        items = incident.get("action_items") or []
        if items:
            lines.append("## Action Items")
            for item in sorted(items, key=lambda a: (PRIORITY_ORDER.get(a["priority"], 3), a["id"])):
                checkbox = "[x]" if item["status"] == ActionItemStatus.COMPLETED.value else "[ ]"
                lines.append(
                    f"{checkbox} **{item['title']}** - {item['status']} (Priority: {item['priority']})"
                )
                if item.get("description"):
                    lines.append(f"   - {item['description']}")
                if item.get("assigned_to"):
                    lines.append(f"   - Assigned to: {item['assigned_to']}")
                if item.get("due_date"):
                    lines.append(f"   - Due: {_format(item['due_date'], DATE_FORMAT)}")
                lines.append("")

        return "\n".join(lines) + "\n"
