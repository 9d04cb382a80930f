"""Alert correlation into incidents."""

from threatlens.correlation.engine import CorrelationEngine, CorrelationResult
from threatlens.correlation.locks import KeyedLock
from threatlens.correlation.rules import (
    Attachment,
    CorrelationGroup,
    CorrelationPlan,
    OpenIncidentEntities,
    plan_correlation,
)

__all__ = [
    "Attachment",
    "CorrelationEngine",
    "CorrelationGroup",
    "CorrelationPlan",
    "CorrelationResult",
    "KeyedLock",
    "OpenIncidentEntities",
    "plan_correlation",
]
