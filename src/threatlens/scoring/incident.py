"""Aggregate scoring over an incident's member alerts."""

from __future__ import annotations

import math
from typing import Iterable, Sequence

from threatlens.models.alerts import Alert
from threatlens.models.enums import Likelihood, Priority, Severity
from threatlens.models.incidents import MatchedEntities
from threatlens.models.metrics import IncidentMetrics
from threatlens.scoring.risk import CONFIDENCE_HIGH, CONFIDENCE_MODERATE, clamp

# Assumed average when no member has been scored yet.
UNSCORED_AVERAGE_RISK = 50

INCIDENT_CONFIDENCE_LOW = "Low confidence - limited correlation data"

FP_LOW_RATIONALE = "Consistent multi-alert correlation detected with strong driver signals."
FP_MEDIUM_RATIONALE = "Moderate correlation signals. Additional validation recommended."
FP_HIGH_RATIONALE = (
    "Insufficient corroborating evidence. Single-signal correlation may indicate false positive."
)


def incident_severity(alerts: Iterable[Alert]) -> Severity:
    """Maximum member severity; Medium for an empty group."""
    severities = [alert.severity for alert in alerts]
    if not severities:
        return Severity.MEDIUM
    return max(severities, key=lambda s: s.rank)


def average_risk(alerts: Iterable[Alert]) -> int:
    """Rounded mean risk score over scored members."""
    scores = [alert.risk_score for alert in alerts if alert.risk_score is not None]
    if not scores:
        return UNSCORED_AVERAGE_RISK
    # Half-up rounding; round() would send 50.5 to 50.
    return int(math.floor(sum(scores) / len(scores) + 0.5))


def incident_priority(alerts: Iterable[Alert]) -> Priority:
    """Priority tag derived from the members' average risk."""
    return Priority.from_average_risk(average_risk(alerts))


def _distinct(values: Iterable[str | None]) -> list[str]:
    seen: dict[str, None] = {}
    for value in values:
        if value:
            seen.setdefault(value, None)
    return list(seen)


def collect_entities(alerts: Sequence[Alert]) -> MatchedEntities:
    """Distinct IPs, users and assets across ``alerts``, in first-seen order."""
    entities = [alert.entities for alert in alerts]
    return MatchedEntities(
        ips=_distinct(e.ip for e in entities),
        users=_distinct(e.user for e in entities),
        assets=_distinct(e.asset for e in entities),
    )


def incident_confidence(
    alerts: Sequence[Alert], drivers: Sequence[str], entities: MatchedEntities
) -> int:
    """Confidence in the correlation, from volume, entities, drivers and consistency."""
    if len(alerts) >= 3:
        score = 25
    elif len(alerts) >= 2:
        score = 15
    else:
        score = 5

    if entities.ips:
        score += 10
    if entities.users:
        score += 10
    if entities.assets:
        score += 10

    score += min(30, len(drivers) * 10)

    severities = {alert.severity for alert in alerts}
    score += 15 if len(severities) == 1 else 5

    return clamp(score)


def incident_confidence_interpretation(score: int) -> str:
    if score >= 80:
        return CONFIDENCE_HIGH
    elif score >= 50:
        return CONFIDENCE_MODERATE
    return INCIDENT_CONFIDENCE_LOW


def incident_false_positive(
    alerts: Sequence[Alert], drivers: Sequence[str], avg_risk: int
) -> tuple[Likelihood, str]:
    if len(alerts) >= 3 and len(drivers) >= 2 and avg_risk >= 60:
        return Likelihood.LOW, FP_LOW_RATIONALE
    if len(alerts) >= 2 or avg_risk >= 50:
        return Likelihood.MEDIUM, FP_MEDIUM_RATIONALE
    return Likelihood.HIGH, FP_HIGH_RATIONALE


def compute_incident_metrics(
    alerts: Sequence[Alert],
    drivers: Sequence[str],
    entities: MatchedEntities | None = None,
) -> IncidentMetrics:
    """Compute the aggregate assessment for a group of alerts.

    Args:
        alerts: Member alerts.
        drivers: Correlation drivers recorded for the group.
        entities: Entities matched by the correlation rule; collected from
            the members when omitted.

    Returns:
        IncidentMetrics for the evidence block of the incident report.
    """
    if entities is None:
        entities = collect_entities(alerts)
    avg = average_risk(alerts)
    confidence = incident_confidence(alerts, drivers, entities)
    fp_likelihood, fp_rationale = incident_false_positive(alerts, drivers, avg)
    return IncidentMetrics(
        supporting_alerts=len(alerts),
        average_risk=avg,
        priority=Priority.from_average_risk(avg),
        matched_entities=entities,
        confidence_score=confidence,
        confidence_interpretation=incident_confidence_interpretation(confidence),
        false_positive_likelihood=fp_likelihood,
        false_positive_rationale=fp_rationale,
    )
