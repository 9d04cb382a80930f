"""Deterministic risk scoring for single alerts."""

from __future__ import annotations

import ipaddress
from typing import Any

from threatlens.models.alerts import Alert
from threatlens.models.enums import AssetCriticality, Likelihood, Severity
from threatlens.models.metrics import RiskMetrics
from threatlens.scoring.classifiers import Classifier, Rule, pattern
from threatlens.scoring.guidance import analyst_guidance

SEVERITY_WEIGHTS = {
    Severity.CRITICAL: 80,
    Severity.HIGH: 50,
    Severity.MEDIUM: 25,
    Severity.LOW: 10,
}
DEFAULT_SEVERITY_WEIGHT = 25

# Signal weights
REPEATED_ACTIVITY_WEIGHT = 20
PRIVILEGED_IDENTITY_WEIGHT = 40
EXTERNAL_IP_WEIGHT = 15
SENSITIVE_ASSET_WEIGHT = 25

REPEATED_ACTIVITY_THRESHOLD = 5

FLAG_REPEATED_ACTIVITY = "Repeated Activity"
FLAG_PRIVILEGED_IDENTITY = "Privileged Identity"
FLAG_EXTERNAL_IP = "External IP"
FLAG_SENSITIVE_ASSET = "Sensitive Asset"

PRIVATE_NETWORKS = (
    ipaddress.ip_network("10.0.0.0/8"),
    ipaddress.ip_network("172.16.0.0/12"),
    ipaddress.ip_network("192.168.0.0/16"),
)

PRIVILEGED_IDENTITY = Classifier(
    [Rule("privileged", pattern(r"admin|root|system|superuser|sa\b|service"), True)],
    default=False,
)

SENSITIVE_ASSET = Classifier(
    [Rule("sensitive", pattern(r"server|database|db|domain|prod|critical|firewall|gateway"), True)],
    default=False,
)

ASSET_CRITICALITY = Classifier(
    [
        Rule(
            "critical",
            pattern(r"database|db|domain.*controller|prod.*server|active.directory"),
            (AssetCriticality.CRITICAL, "Activity involves high-value asset. Immediate investigation recommended."),
        ),
        Rule(
            "high",
            pattern(r"web.*server|app.*server|mail|gateway|firewall|exchange"),
            (AssetCriticality.HIGH, "Activity targets infrastructure-tier asset."),
        ),
        Rule(
            "medium",
            pattern(r"workstation|laptop|desktop|endpoint"),
            (AssetCriticality.MEDIUM, "Standard endpoint involved."),
        ),
        Rule(
            "low",
            pattern(r"test|dev|staging|sandbox|lab"),
            (AssetCriticality.LOW, "Non-production asset involved. Lower priority."),
        ),
    ],
    default=(AssetCriticality.MEDIUM, "Standard monitoring applies."),
)

CONFIDENCE_HIGH = "High confidence assessment"
CONFIDENCE_MODERATE = "Moderate confidence assessment"
CONFIDENCE_LOW = "Low confidence - limited data available"

FP_LOW_RATIONALE = (
    "Consistent multi-signal correlation detected across entity and severity indicators."
)
FP_HIGH_RATIONALE = (
    "Insufficient corroborating data. Single-signal alert with low severity indicators."
)
FP_MEDIUM_RATIONALE = "Standard alert pattern detected."


def clamp(value: float, low: int = 0, high: int = 100) -> int:
    """Clamp a score into [low, high]."""
    return int(min(high, max(low, value)))


def is_private_ip(ip: str) -> bool:
    """Whether ``ip`` falls in 10/8, 172.16/12 or 192.168/16.

    Unparseable values are treated as external.
    """
    try:
        address = ipaddress.ip_address(ip.strip())
    except ValueError:
        return False
    return any(address in network for network in PRIVATE_NETWORKS)


def failed_attempts(raw_log: dict[str, Any]) -> float:
    """Read the failed-authentication counter, 0 when absent or malformed."""
    value = raw_log.get("failed_attempts")
    if isinstance(value, bool) or value is None:
        return 0
    if isinstance(value, (int, float)):
        return value
    try:
        return float(str(value).strip())
    except ValueError:
        return 0


def confidence_interpretation(score: int) -> str:
    """Map a confidence score to its interpretation band."""
    if score >= 80:
        return CONFIDENCE_HIGH
    elif score >= 50:
        return CONFIDENCE_MODERATE
    return CONFIDENCE_LOW


class RiskScorer:
    """Pure alert scorer.

    Never raises on malformed input: missing or unusable raw log fields just
    contribute no signal.
    """

    def score(self, alert: Alert) -> RiskMetrics:
        """Compute the full risk assessment for an alert.

        Args:
            alert: Alert to score.

        Returns:
            RiskMetrics with score, criticality, confidence, false-positive
            likelihood, guidance and the flags that fired.
        """
        raw_log = alert.raw_log or {}
        entities = alert.entities
        flags: list[str] = []

        score = SEVERITY_WEIGHTS.get(alert.severity, DEFAULT_SEVERITY_WEIGHT)

        attempts = failed_attempts(raw_log)
        if attempts > REPEATED_ACTIVITY_THRESHOLD:
            score += REPEATED_ACTIVITY_WEIGHT
            flags.append(FLAG_REPEATED_ACTIVITY)

        privileged = PRIVILEGED_IDENTITY.classify(entities.user)
        if privileged:
            score += PRIVILEGED_IDENTITY_WEIGHT
            flags.append(FLAG_PRIVILEGED_IDENTITY)

        external_ip = bool(entities.ip) and not is_private_ip(entities.ip or "")
        if external_ip:
            score += EXTERNAL_IP_WEIGHT
            flags.append(FLAG_EXTERNAL_IP)

        sensitive_asset = SENSITIVE_ASSET.classify(entities.asset)
        if sensitive_asset:
            score += SENSITIVE_ASSET_WEIGHT
            flags.append(FLAG_SENSITIVE_ASSET)

        risk_score = clamp(score)
        criticality, impact_note = ASSET_CRITICALITY.classify(entities.asset)

        confidence = self._confidence(
            raw_log=raw_log,
            has_ip=bool(entities.ip),
            has_user=bool(entities.user),
            severity=alert.severity,
            attempts=attempts,
            privileged=privileged,
            external_ip=external_ip,
            sensitive_asset=sensitive_asset,
        )

        fp_likelihood, fp_rationale = self._false_positive(
            risk_score=risk_score,
            privileged=privileged,
            attempts=attempts,
            has_identity=entities.has_identity,
        )

        return RiskMetrics(
            risk_score=risk_score,
            adjusted_severity=Severity.from_risk_score(risk_score),
            asset_criticality=criticality,
            impact_note=impact_note,
            confidence_score=confidence,
            confidence_interpretation=confidence_interpretation(confidence),
            false_positive_likelihood=fp_likelihood,
            false_positive_rationale=fp_rationale,
            analyst_guidance=analyst_guidance(alert.alert_type),
            entity_flags=flags,
        )

    def _confidence(
        self,
        *,
        raw_log: dict[str, Any],
        has_ip: bool,
        has_user: bool,
        severity: Severity,
        attempts: float,
        privileged: bool,
        external_ip: bool,
        sensitive_asset: bool,
    ) -> int:
        confidence = 0
        if raw_log:
            confidence += 10
        if has_ip:
            confidence += 10
        if has_user:
            confidence += 10
        confidence += 15 if severity in (Severity.HIGH, Severity.CRITICAL) else 5
        if attempts > 3:
            confidence += 15
        elif attempts > 0:
            confidence += 8
        if privileged:
            confidence += 15
        if external_ip:
            confidence += 10
        if sensitive_asset:
            confidence += 15
        return clamp(confidence)

    def _false_positive(
        self,
        *,
        risk_score: int,
        privileged: bool,
        attempts: float,
        has_identity: bool,
    ) -> tuple[Likelihood, str]:
        if risk_score >= 70 and (privileged or attempts > REPEATED_ACTIVITY_THRESHOLD):
            return Likelihood.LOW, FP_LOW_RATIONALE
        if risk_score < 30 or not has_identity:
            return Likelihood.HIGH, FP_HIGH_RATIONALE
        return Likelihood.MEDIUM, FP_MEDIUM_RATIONALE


_default_scorer = RiskScorer()


def compute_risk_metrics(alert: Alert) -> RiskMetrics:
    """Score an alert with the default scorer."""
    return _default_scorer.score(alert)
