"""Incident model — the record every timeline, action item and tag hangs off."""

from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base

if TYPE_CHECKING:
    from .action_item import ActionItem
    from .tag import IncidentTag
    from .timeline_event import TimelineEvent
    from .user import User


class Incident(Base):
    __tablename__ = "incidents"
    __table_args__ = (
        Index("ix_incidents_status_occurred", "status", "occurred_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    severity: Mapped[str] = mapped_column(
        String(20), nullable=False, default="Medium", index=True
    )  # Low, Medium, High, Critical
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="Open", index=True
    )  # Open, Investigating, Resolved, Closed
    occurred_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), nullable=False
    )
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    root_cause: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    impact: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    resolved_by_user_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )

    timeline_events: Mapped[list["TimelineEvent"]] = relationship(
        back_populates="incident",
        cascade="all, delete-orphan",
        order_by="[TimelineEvent.occurred_at, TimelineEvent.id]",
    )
    action_items: Mapped[list["ActionItem"]] = relationship(
        back_populates="incident",
        cascade="all, delete-orphan",
    )
    incident_tags: Mapped[list["IncidentTag"]] = relationship(
        back_populates="incident",
        cascade="all, delete-orphan",
    )
    resolved_by_user: Mapped[Optional["User"]] = relationship(foreign_keys=[resolved_by_user_id])
