"""Incident, correlation metadata and activity models."""

from __future__ import annotations

import re
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, Field

from threatlens.models.enums import ActionType, IncidentStatus, Priority, Severity

DEFAULT_DRIVERS = ["Auto-correlated"]
DEFAULT_TRIGGER_RULE = "auto_correlation"

_DRIVERS_RE = re.compile(r"Drivers:\s*([^|]+)")
_RULE_RE = re.compile(r"Rule:\s*(\w+)")
_PRIORITY_RE = re.compile(r"Priority:\s*(P\d)")


class CorrelationReason(BaseModel):
    """Why a group of alerts became an incident.

    Kept structured in memory; flattened to a single delimited string only
    when written to the ``incident_reason`` column.
    """

    summary: str
    drivers: list[str] = Field(default_factory=list)
    trigger_rule: str = DEFAULT_TRIGGER_RULE
    priority: Optional[Priority] = None

    def to_storage(self) -> str:
        """Serialize to the stored ``reason | Drivers | Rule | Priority`` form."""
        parts = [
            self.summary,
            f"Drivers: {', '.join(self.drivers)}",
            f"Rule: {self.trigger_rule}",
        ]
        if self.priority is not None:
            parts.append(f"Priority: {self.priority.value}")
        return " | ".join(parts)

    @classmethod
    def from_storage(cls, text: Optional[str]) -> "CorrelationReason":
        """Parse a stored reason string.

        Missing pieces fall back to defaults instead of failing, so reasons
        written by hand or by older versions still load.
        """
        text = text or ""
        drivers_match = _DRIVERS_RE.search(text)
        rule_match = _RULE_RE.search(text)
        priority_match = _PRIORITY_RE.search(text)

        drivers = (
            [d.strip() for d in drivers_match.group(1).strip().split(", ") if d.strip()]
            if drivers_match
            else list(DEFAULT_DRIVERS)
        )
        priority = None
        if priority_match:
            try:
                priority = Priority(priority_match.group(1))
            except ValueError:
                priority = None

        return cls(
            summary=text.split("|")[0].strip() or "Unknown",
            drivers=drivers or list(DEFAULT_DRIVERS),
            trigger_rule=rule_match.group(1) if rule_match else DEFAULT_TRIGGER_RULE,
            priority=priority,
        )


class MatchedEntities(BaseModel):
    """Distinct entities shared by an incident's member alerts."""

    ips: list[str] = Field(default_factory=list)
    users: list[str] = Field(default_factory=list)
    assets: list[str] = Field(default_factory=list)

    def to_summary(self) -> str:
        """Render as ``IPs: ... | Users: ... | Assets: ...``."""
        return (
            f"IPs: {', '.join(self.ips) or 'None'} | "
            f"Users: {', '.join(self.users) or 'None'} | "
            f"Assets: {', '.join(self.assets) or 'None'}"
        )


class Incident(BaseModel):
    """A grouping of correlated alerts believed to be one threat."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    severity: Severity = Field(default=Severity.MEDIUM)
    status: IncidentStatus = Field(default=IncidentStatus.OPEN)
    reason: CorrelationReason = Field(
        default_factory=lambda: CorrelationReason(summary="Manually created incident")
    )
    narrative: Optional[str] = Field(default=None, description="Incident intelligence report")
    auto_created: bool = Field(default=False)
    resolved_at: Optional[datetime] = Field(default=None)

    @property
    def priority(self) -> Optional[Priority]:
        """Priority tag recorded at creation."""
        return self.reason.priority


class IncidentActivity(BaseModel):
    """Append-only record of an action taken on an incident."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    incident_id: str
    actor: str
    action_type: ActionType
    action_label: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = {"frozen": True}
