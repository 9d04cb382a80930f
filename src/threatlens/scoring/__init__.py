"""Deterministic risk scoring."""

from threatlens.scoring.guidance import analyst_guidance
from threatlens.scoring.incident import (
    average_risk,
    collect_entities,
    compute_incident_metrics,
    incident_priority,
    incident_severity,
)
from threatlens.scoring.risk import RiskScorer, compute_risk_metrics, is_private_ip

__all__ = [
    "RiskScorer",
    "analyst_guidance",
    "average_risk",
    "collect_entities",
    "compute_incident_metrics",
    "compute_risk_metrics",
    "incident_priority",
    "incident_severity",
    "is_private_ip",
]
