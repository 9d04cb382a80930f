"""Deterministic scoring outputs for alerts and incidents."""

from __future__ import annotations

from pydantic import BaseModel, Field

from threatlens.models.enums import AssetCriticality, Likelihood, Priority, Severity
from threatlens.models.incidents import MatchedEntities


class RiskMetrics(BaseModel):
    """Risk assessment computed for a single alert.

    Every field here is derived by the scorer; none of it is ever taken from
    a language model response.
    """

    # Scoring
    risk_score: int = Field(..., ge=0, le=100, description="Clamped risk score")
    adjusted_severity: Severity = Field(..., description="Severity band implied by the score")

    # Asset context
    asset_criticality: AssetCriticality = Field(default=AssetCriticality.MEDIUM)
    impact_note: str = Field(default="Standard monitoring applies.")

    # Confidence
    confidence_score: int = Field(..., ge=0, le=100)
    confidence_interpretation: str

    # False positive assessment
    false_positive_likelihood: Likelihood
    false_positive_rationale: str

    analyst_guidance: list[str] = Field(default_factory=list)
    entity_flags: list[str] = Field(
        default_factory=list, description="Signals that contributed to the score"
    )


class IncidentMetrics(BaseModel):
    """Aggregate assessment computed over an incident's member alerts."""

    supporting_alerts: int = Field(..., ge=0)
    average_risk: int = Field(..., ge=0, le=100)
    priority: Priority
    matched_entities: MatchedEntities = Field(default_factory=MatchedEntities)
    confidence_score: int = Field(..., ge=0, le=100)
    confidence_interpretation: str
    false_positive_likelihood: Likelihood
    false_positive_rationale: str
