"""SQLModel table definitions for persistence."""

from datetime import datetime, timezone
from typing import Any, Optional
from uuid import uuid4

from sqlalchemy import Column, DateTime, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlmodel import Field, SQLModel, Text


def _uuid() -> str:
    return str(uuid4())


def _now() -> datetime:
    return datetime.now(timezone.utc)


class AlertRecord(SQLModel, table=True):
    """Ingested security alert."""

    __tablename__ = "alerts"
    __table_args__ = (
        Index("ix_alerts_status_timestamp", "status", "timestamp"),
        Index("ix_alerts_created_at", "created_at"),
    )

    id: str = Field(default_factory=_uuid, primary_key=True, max_length=36)
    timestamp: datetime = Field(
        default_factory=_now, sa_column=Column(DateTime(timezone=True), nullable=False)
    )
    source_system: str = Field(default="unknown", max_length=255)
    alert_type: str = Field(default="", max_length=255)
    severity: str = Field(default="Medium", max_length=20)
    raw_log: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSONB))
    risk_score: Optional[int] = Field(default=None, ge=0, le=100)
    ai_analysis: Optional[str] = Field(default=None, sa_column=Column(Text))
    ai_used: bool = Field(default=False)
    status: str = Field(default="New", max_length=20)
    created_at: datetime = Field(
        default_factory=_now, sa_column=Column(DateTime(timezone=True), nullable=False)
    )


class IncidentRecord(SQLModel, table=True):
    """Incident created by correlation."""

    __tablename__ = "incidents"
    __table_args__ = (
        Index("ix_incidents_status", "status"),
        Index("ix_incidents_created_at", "created_at"),
    )

    id: str = Field(default_factory=_uuid, primary_key=True, max_length=36)
    severity: str = Field(default="Medium", max_length=20)
    status: str = Field(default="Open", max_length=20)
    incident_reason: Optional[str] = Field(default=None, sa_column=Column(Text))
    ai_summary: Optional[str] = Field(default=None, sa_column=Column(Text))
    auto_created: bool = Field(default=False)
    created_at: datetime = Field(
        default_factory=_now, sa_column=Column(DateTime(timezone=True), nullable=False)
    )
    resolved_at: Optional[datetime] = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )


class AlertIncidentMap(SQLModel, table=True):
    """Many-to-many join between alerts and incidents."""

    __tablename__ = "alert_incident_map"
    __table_args__ = (
        UniqueConstraint("alert_id", "incident_id", name="uq_alert_incident"),
        Index("ix_alert_incident_map_alert_id", "alert_id"),
        Index("ix_alert_incident_map_incident_id", "incident_id"),
    )

    id: str = Field(default_factory=_uuid, primary_key=True, max_length=36)
    alert_id: str = Field(
        sa_column=Column(String(36), ForeignKey("alerts.id", ondelete="CASCADE"), nullable=False)
    )
    incident_id: str = Field(
        sa_column=Column(String(36), ForeignKey("incidents.id", ondelete="CASCADE"), nullable=False)
    )
    created_at: datetime = Field(
        default_factory=_now, sa_column=Column(DateTime(timezone=True), nullable=False)
    )


class IncidentActivityRecord(SQLModel, table=True):
    """Append-only incident activity log."""

    __tablename__ = "incident_activity"
    __table_args__ = (
        Index("ix_incident_activity_incident_created", "incident_id", "created_at"),
    )

    id: str = Field(default_factory=_uuid, primary_key=True, max_length=36)
    incident_id: str = Field(
        sa_column=Column(String(36), ForeignKey("incidents.id", ondelete="CASCADE"), nullable=False)
    )
    actor: str = Field(max_length=255)
    action_type: str = Field(max_length=50)
    action_label: str = Field(max_length=500)
    activity_metadata: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSONB))
    created_at: datetime = Field(
        default_factory=_now, sa_column=Column(DateTime(timezone=True), nullable=False)
    )
