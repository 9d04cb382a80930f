"""Deterministic narrative text.

Used as the whole narrative when no provider answers, and always for the
score-derived sections, which are never taken from model output.
"""

from __future__ import annotations

from typing import NamedTuple, Sequence

from threatlens.models.alerts import Alert
from threatlens.models.enums import Severity
from threatlens.models.incidents import CorrelationReason
from threatlens.models.metrics import IncidentMetrics, RiskMetrics
from threatlens.narrative import document as doc

# Observed-behavior lines listed before the remainder is summarized.
MAX_OBSERVED_ALERTS = 10


class AlertTemplate(NamedTuple):
    what: str
    why: str
    action: str


ALERT_TEMPLATES: dict[str, AlertTemplate] = {
    "brute force attempt": AlertTemplate(
        what="Multiple failed authentication attempts detected from the same source, indicating a potential brute force attack.",
        why="Brute force attacks can lead to unauthorized access if successful, compromising sensitive data and systems.",
        action="Block the source IP immediately. Review authentication logs. Implement account lockout policies. Consider adding CAPTCHA or MFA.",
    ),
    "brute force login attack": AlertTemplate(
        what="Coordinated credential-based attack detected with repeated failed authentication attempts from a concentrated source.",
        why="Sustained brute force activity indicates an active adversary targeting authentication systems, risking credential compromise.",
        action="Block the source IP immediately. Enforce account lockout. Review all affected accounts for compromise. Enable MFA.",
    ),
    "credential stuffing attack": AlertTemplate(
        what="Automated credential testing detected using potentially compromised username/password pairs from external breach databases.",
        why="Credential stuffing exploits password reuse, potentially compromising multiple accounts with a single stolen credential set.",
        action="Block source IP range. Force password resets for targeted accounts. Enable MFA. Monitor for successful unauthorized logins.",
    ),
    "malware detection": AlertTemplate(
        what="Malicious software signature detected on a system endpoint, indicating active malware presence.",
        why="Malware can exfiltrate data, encrypt files for ransom, establish persistence, or provide backdoor access to attackers.",
        action="Isolate the affected system. Run full antivirus scan. Check for lateral movement. Restore from clean backup if needed.",
    ),
    "malware beaconing": AlertTemplate(
        what="Periodic outbound communication pattern detected consistent with command-and-control (C2) beaconing behavior.",
        why="C2 beaconing indicates an actively compromised host communicating with adversary infrastructure for instruction delivery.",
        action="Isolate the endpoint immediately. Block the C2 domain/IP. Perform memory and disk forensics. Scan network segment for spread.",
    ),
    "suspicious login": AlertTemplate(
        what="Login activity detected from an unusual location, time, or device profile deviating from established baselines.",
        why="Could indicate compromised credentials being used by an unauthorized party or a compromised account.",
        action="Verify with the user. Force password reset if unauthorized. Enable MFA. Review recent account activity for data access.",
    ),
    "phishing email detected": AlertTemplate(
        what="Potential phishing email detected targeting organization users with social engineering tactics.",
        why="Phishing can lead to credential theft, malware installation, or social engineering attacks with cascading impact.",
        action="Block sender domain. Check recipient click/open rates. Quarantine similar messages. Notify affected users. Run awareness scan.",
    ),
    "data exfiltration": AlertTemplate(
        what="Unusual data transfer patterns detected, suggesting potential unauthorized data extraction from organizational systems.",
        why="Data exfiltration can result in loss of intellectual property, customer data, or competitive advantage.",
        action="Block the data transfer. Identify the scope of data accessed. Preserve logs for forensics. Notify relevant stakeholders.",
    ),
    "privilege escalation attempt": AlertTemplate(
        what="User account attempted to gain elevated privileges through unauthorized or anomalous means.",
        why="Privilege escalation enables attackers to access sensitive systems and data, significantly increasing attack impact.",
        action="Revoke elevated privileges immediately. Audit all actions taken with elevated access. Review permission policies.",
    ),
    "port scanning activity": AlertTemplate(
        what="Network scanning activity detected indicating systematic reconnaissance of available services and open ports.",
        why="Port scanning is a precursor to exploitation, indicating an adversary mapping the attack surface for vulnerabilities.",
        action="Block the source IP. Review firewall rules. Check for follow-up exploitation. Update IDS signatures.",
    ),
    "insider threat activity": AlertTemplate(
        what="Anomalous user behavior detected suggesting potential insider threat activity including unusual data access patterns.",
        why="Insider threats bypass perimeter defenses and can cause significant damage due to legitimate access privileges.",
        action="Monitor the user account closely. Review data access logs. Engage HR and legal if warranted. Preserve audit trail.",
    ),
    "unauthorized access": AlertTemplate(
        what="Access attempt to restricted resources detected without proper authorization credentials or permissions.",
        why="Indicates potential insider threat or compromised credentials attempting to access sensitive areas.",
        action="Block access. Review access control lists. Investigate the user account. Strengthen access controls.",
    ),
}

GENERIC_WHY = "This activity may indicate a security threat that requires investigation based on observed indicators."
GENERIC_ACTION = "Investigate the alert. Review related logs. Correlate with other alerts. Escalate if necessary."

HIGH_IMPACT = (
    "Potential significant impact on business operations. Immediate investigation "
    "required to prevent data breach or service disruption."
)
MODERATE_IMPACT = "Moderate potential impact. Monitor closely and investigate within standard SLA."

CONTAINMENT_STEPS = (
    "Isolate affected systems if ongoing attack is detected",
    "Block suspicious IP addresses at firewall level",
    "Reset credentials for any compromised accounts",
    "Preserve logs and evidence for forensic analysis",
    "Monitor for lateral movement indicators",
)


def numbered(items: Sequence[str]) -> str:
    return "\n".join(f"{index}. {item}" for index, item in enumerate(items, start=1))


def alert_template(alert: Alert) -> AlertTemplate:
    """What/why/action template for the alert's type, or the generic one."""
    template = ALERT_TEMPLATES.get(alert.alert_type.strip().lower())
    if template is not None:
        return template
    return AlertTemplate(
        what=(
            f'Security alert of type "{alert.alert_type}" detected from '
            f"{alert.source_system}. Activity requires SOC review."
        ),
        why=GENERIC_WHY,
        action=GENERIC_ACTION,
    )


def alert_prose(alert: Alert) -> dict[str, str]:
    template = alert_template(alert)
    return {
        doc.WHAT_HAPPENED: template.what,
        doc.WHY_RISKY: template.why,
        doc.RECOMMENDED_ACTION: template.action,
    }


def alert_metric_sections(metrics: RiskMetrics) -> dict[str, str]:
    """Score-derived alert sections."""
    return {
        doc.RISK_SCORE: f"{metrics.risk_score}/100",
        doc.ADJUSTED_SEVERITY: metrics.adjusted_severity.value,
        doc.ASSET_CRITICALITY: metrics.asset_criticality.value,
        doc.IMPACT_NOTE: metrics.impact_note,
        doc.CONFIDENCE_SCORE: f"{metrics.confidence_score}%",
        doc.INTERPRETATION: metrics.confidence_interpretation,
        doc.FALSE_POSITIVE_LIKELIHOOD: metrics.false_positive_likelihood.value,
        doc.RATIONALE: metrics.false_positive_rationale,
        doc.ANALYST_GUIDANCE: numbered(metrics.analyst_guidance),
    }


def _distinct(values: Sequence[str]) -> str:
    return ", ".join(dict.fromkeys(v for v in values if v)) or "unknown"


def observed_behavior(alerts: Sequence[Alert]) -> str:
    lines = [
        f"- {alert.alert_type or 'Security Alert'} from {alert.source_system} at {alert.timestamp.isoformat()}"
        for alert in alerts[:MAX_OBSERVED_ALERTS]
    ]
    remaining = len(alerts) - MAX_OBSERVED_ALERTS
    if remaining > 0:
        lines.append(f"- ... and {remaining} more alert(s)")
    return "\n".join(lines) or "- No member alerts recorded"


def incident_prose(
    alerts: Sequence[Alert],
    reason: CorrelationReason,
    severity: Severity,
    metrics: IncidentMetrics,
) -> dict[str, str]:
    """Fallback prose sections for an incident report."""
    alert_types = _distinct([a.alert_type for a in alerts])
    sources = _distinct([a.source_system for a in alerts])
    impact = HIGH_IMPACT if severity in (Severity.CRITICAL, Severity.HIGH) else MODERATE_IMPACT
    return {
        doc.ATTACK_PATTERN: (
            f"{reason.summary}. This incident involves {len(alerts)} correlated alert(s) "
            f"of type: {alert_types}. Attack originated from: {sources}."
        ),
        doc.OBSERVED_BEHAVIOR: observed_behavior(alerts),
        doc.BUSINESS_IMPACT: impact,
        doc.PRIORITY_LEVEL: metrics.priority.description,
        doc.CONTAINMENT_STEPS: numbered(CONTAINMENT_STEPS),
        doc.ANALYST_RECOMMENDATION: (
            f"Review all {len(alerts)} correlated alerts in detail. "
            f"Average risk score: {metrics.average_risk}/100. Escalate to Tier 2/3 if "
            "attack pattern suggests advanced persistent threat (APT)."
        ),
    }


def incident_evidence_sections(
    reason: CorrelationReason,
    metrics: IncidentMetrics,
    auto_created: bool = True,
) -> dict[str, str]:
    """Correlation evidence block appended to every incident report."""
    return {
        doc.INCIDENT_ORIGIN: "Auto-generated" if auto_created else "Manual",
        doc.TRIGGER_RULE: reason.trigger_rule,
        doc.CORRELATION_DRIVERS: ", ".join(reason.drivers),
        doc.CORRELATION_SUMMARY: reason.summary,
        doc.MATCHED_ENTITIES: metrics.matched_entities.to_summary(),
        doc.SUPPORTING_ALERTS: str(metrics.supporting_alerts),
        doc.CONFIDENCE_SCORE: f"{metrics.confidence_score}%",
        doc.CONFIDENCE_INTERPRETATION: metrics.confidence_interpretation,
        doc.FALSE_POSITIVE_LIKELIHOOD: metrics.false_positive_likelihood.value,
        doc.FALSE_POSITIVE_RATIONALE: metrics.false_positive_rationale,
    }
