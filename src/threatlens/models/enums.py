"""Enumeration types for ThreatLens models."""

from enum import Enum


class Severity(str, Enum):
    """Alert/incident severity levels."""

    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"

    @property
    def rank(self) -> int:
        """Ordering rank, Critical highest."""
        return _SEVERITY_RANK[self]

    @classmethod
    def parse(cls, value: object) -> "Severity | None":
        """Parse a severity label case-insensitively.

        Args:
            value: Raw severity value.

        Returns:
            Matching Severity, or None when unrecognized.
        """
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return None
        return _SEVERITY_BY_NAME.get(value.strip().lower())

    @classmethod
    def from_risk_score(cls, score: int) -> "Severity":
        """Convert a 0-100 risk score to a severity band.

        Args:
            score: Risk score.

        Returns:
            Corresponding Severity enum value.
        """
        if score >= 80:
            return cls.CRITICAL
        elif score >= 50:
            return cls.HIGH
        elif score >= 25:
            return cls.MEDIUM
        else:
            return cls.LOW


_SEVERITY_RANK = {
    Severity.LOW: 0,
    Severity.MEDIUM: 1,
    Severity.HIGH: 2,
    Severity.CRITICAL: 3,
}
_SEVERITY_BY_NAME = {s.value.lower(): s for s in Severity}


class AlertStatus(str, Enum):
    """Triage status of an alert. Only ever advances."""

    NEW = "New"
    REVIEWED = "Reviewed"
    CORRELATED = "Correlated"

    def advance(self, target: "AlertStatus") -> "AlertStatus":
        """Return the later of the current and target status."""
        order = [AlertStatus.NEW, AlertStatus.REVIEWED, AlertStatus.CORRELATED]
        return target if order.index(target) > order.index(self) else self


class IncidentStatus(str, Enum):
    """Status of an incident."""

    OPEN = "Open"
    IN_PROGRESS = "In Progress"
    RESOLVED = "Resolved"
    CLOSED = "Closed"

    @property
    def is_active(self) -> bool:
        """Whether the incident still absorbs new alerts."""
        return self in (IncidentStatus.OPEN, IncidentStatus.IN_PROGRESS)


class Priority(str, Enum):
    """Incident response priority."""

    P1 = "P1"
    P2 = "P2"
    P3 = "P3"

    @classmethod
    def from_average_risk(cls, average_risk: float) -> "Priority":
        """Map an average member risk score to a priority tag."""
        if average_risk > 90:
            return cls.P1
        elif average_risk > 50:
            return cls.P2
        else:
            return cls.P3

    @property
    def description(self) -> str:
        """Human-readable response expectation."""
        return {
            Priority.P1: "P1 - Immediate response required",
            Priority.P2: "P2 - Urgent attention needed",
            Priority.P3: "P3 - Standard response timeline",
        }[self]


class AssetCriticality(str, Enum):
    """Criticality level of an asset."""

    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"


class Likelihood(str, Enum):
    """Three-band likelihood used for false-positive assessment."""

    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"


class TriggerRule(str, Enum):
    """Identifiers of the correlation rules, in evaluation order."""

    CREDENTIAL_ATTACK = "credential_attack"
    IP_CORRELATION = "ip_correlation"
    USER_CORRELATION = "user_correlation"
    ASSET_CORRELATION = "asset_correlation"
    PHISHING_DETECTION = "phishing_detection"
    RISK_THRESHOLD = "risk_threshold"
    MALWARE_DETECTION = "malware_detection"
    INSIDER_THREAT = "insider_threat"


class ActionType(str, Enum):
    """Analyst/system actions recorded in the incident activity log."""

    BLOCK_IP = "block_ip"
    DISABLE_USER = "disable_user"
    CONFIRM_CONTAINMENT = "confirm_containment"
    START_INVESTIGATION = "start_investigation"
    RESOLVE = "resolve"
    CLOSE = "close"
