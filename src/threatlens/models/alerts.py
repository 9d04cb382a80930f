"""Alert models for ingested security events."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

from threatlens.models.enums import AlertStatus, Severity

# Field-name precedence per entity type, first non-empty value wins.
IP_FIELDS = ("source_ip", "ip", "ip_address")
USER_FIELDS = ("affected_user", "username", "user")
ASSET_FIELDS = ("affected_system", "affected_asset", "host")


def _first_present(raw_log: dict[str, Any], fields: tuple[str, ...]) -> Optional[str]:
    for name in fields:
        value = raw_log.get(name)
        if value is None or isinstance(value, (dict, list, bool)):
            continue
        text = str(value).strip()
        if text:
            return text
    return None


class Entities(BaseModel):
    """Correlation join keys extracted from an alert's raw log."""

    ip: Optional[str] = None
    user: Optional[str] = None
    asset: Optional[str] = None

    @property
    def has_identity(self) -> bool:
        """Whether the alert carries an IP or a user to correlate on."""
        return bool(self.ip or self.user)


def extract_entities(raw_log: Optional[dict[str, Any]]) -> Entities:
    """Extract IP, user and asset identifiers from a raw log document.

    Args:
        raw_log: The alert's raw log; None is treated as empty.

    Returns:
        Extracted entities; missing ones are None.
    """
    log = raw_log if isinstance(raw_log, dict) else {}
    return Entities(
        ip=_first_present(log, IP_FIELDS),
        user=_first_present(log, USER_FIELDS),
        asset=_first_present(log, ASSET_FIELDS),
    )


class Alert(BaseModel):
    """A single reported security event."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), description="Unique alert ID")
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc), description="Alert timestamp"
    )
    source_system: str = Field(default="unknown", description="Reporting system")
    alert_type: str = Field(default="", description="Free-text alert category")
    severity: Severity = Field(default=Severity.MEDIUM, description="Reported severity")
    raw_log: dict[str, Any] = Field(default_factory=dict, description="Raw evidence document")
    risk_score: Optional[int] = Field(
        default=None, ge=0, le=100, description="Deterministic risk score once computed"
    )
    narrative: Optional[str] = Field(default=None, description="Generated analysis text")
    ai_used: bool = Field(default=False, description="Whether the narrative came from an LLM")
    status: AlertStatus = Field(default=AlertStatus.NEW, description="Triage status")

    @field_validator("severity", mode="before")
    @classmethod
    def _coerce_severity(cls, value: Any) -> Severity:
        # Unrecognized labels weigh like Medium rather than failing ingestion.
        return Severity.parse(value) or Severity.MEDIUM

    @field_validator("timestamp")
    @classmethod
    def _ensure_aware(cls, value: datetime) -> datetime:
        # Naive timestamps are taken as UTC so ordering never mixes the two.
        return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)

    @field_validator("raw_log", mode="before")
    @classmethod
    def _coerce_raw_log(cls, value: Any) -> dict[str, Any]:
        return value if isinstance(value, dict) else {}

    @field_validator("alert_type", "source_system", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> str:
        return "" if value is None else str(value)

    @property
    def entities(self) -> Entities:
        """Entities extracted from the raw log."""
        return extract_entities(self.raw_log)

    def to_summary(self) -> str:
        """Generate a one-line human-readable summary of the alert.

        Returns:
            Summary string.
        """
        risk = f"{self.risk_score}/100" if self.risk_score is not None else "unscored"
        return (
            f"[{self.severity.value.upper()}] {self.alert_type or 'Security Alert'} "
            f"from {self.source_system} at {self.timestamp.isoformat()} (risk {risk})"
        )
