"""Data models for ThreatLens."""

from threatlens.models.enums import (
    ActionType,
    AlertStatus,
    AssetCriticality,
    IncidentStatus,
    Likelihood,
    Priority,
    Severity,
    TriggerRule,
)
from threatlens.models.alerts import Alert, Entities, extract_entities
from threatlens.models.incidents import (
    CorrelationReason,
    Incident,
    IncidentActivity,
    MatchedEntities,
)
from threatlens.models.metrics import IncidentMetrics, RiskMetrics

__all__ = [
    # Enums
    "ActionType",
    "AlertStatus",
    "AssetCriticality",
    "IncidentStatus",
    "Likelihood",
    "Priority",
    "Severity",
    "TriggerRule",
    # Models
    "Alert",
    "Entities",
    "extract_entities",
    "CorrelationReason",
    "Incident",
    "IncidentActivity",
    "MatchedEntities",
    "IncidentMetrics",
    "RiskMetrics",
]
