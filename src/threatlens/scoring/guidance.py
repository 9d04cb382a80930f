"""Analyst guidance checklists keyed by alert category."""

from __future__ import annotations

from threatlens.scoring.classifiers import Classifier, Rule, contains

AUTHENTICATION_GUIDANCE = (
    "Review login history for the affected account",
    "Validate source IP reputation via threat intelligence feeds",
    "Check MFA enrollment and challenge history",
    "Assess account lockout policy effectiveness",
    "Correlate with VPN and remote access logs",
)

PHISHING_GUIDANCE = (
    "Inspect sender domain and email headers for spoofing indicators",
    "Identify all recipients who received the email",
    "Check if any users clicked embedded links or downloaded attachments",
    "Block sender domain at email gateway",
    "Submit suspicious URLs to threat intelligence feeds",
)

MALWARE_GUIDANCE = (
    "Isolate the affected endpoint from the network immediately",
    "Run full endpoint detection and response (EDR) scan",
    "Check for lateral movement indicators across the segment",
    "Collect and preserve forensic artifacts from the host",
    "Verify backup integrity for affected systems",
)

EXFILTRATION_GUIDANCE = (
    "Identify the scope of data accessed or transferred",
    "Block the destination IP/domain at perimeter firewall",
    "Review DLP policy triggers and alert context",
    "Preserve network flow logs for forensic analysis",
    "Notify data governance and legal teams if PII involved",
)

PRIVILEGE_GUIDANCE = (
    "Audit the privilege change event and authorization path",
    "Revoke elevated privileges pending investigation",
    "Review recent actions performed with elevated access",
    "Check for persistence mechanisms or backdoor accounts",
    "Validate against approved change management records",
)

RECONNAISSANCE_GUIDANCE = (
    "Block the scanning source IP at the firewall",
    "Review targeted ports for known vulnerability associations",
    "Check for follow-up exploitation attempts from same source",
    "Update IDS/IPS signatures for detected scan patterns",
    "Assess exposure of scanned services to external networks",
)

ACCESS_GUIDANCE = (
    "Review access control lists for the targeted resource",
    "Verify the user identity and authorization level",
    "Check for credential compromise indicators",
    "Audit recent access patterns for the affected account",
    "Strengthen access controls and consider MFA enforcement",
)

GENERIC_GUIDANCE = (
    "Review the alert context and raw log data in detail",
    "Correlate with related alerts from the same source and timeframe",
    "Assess potential business impact based on affected assets",
    "Escalate to Tier 2/3 if indicators suggest advanced threat activity",
    "Document findings and update the incident ticket",
)

GUIDANCE_CLASSIFIER: Classifier[tuple[str, ...]] = Classifier(
    [
        Rule(
            "authentication",
            contains("brute force", "credential stuffing", "login", "authentication"),
            AUTHENTICATION_GUIDANCE,
        ),
        Rule("phishing", contains("phishing"), PHISHING_GUIDANCE),
        Rule("malware", contains("malware", "beaconing"), MALWARE_GUIDANCE),
        Rule("exfiltration", contains("data exfiltration", "exfil", "insider"), EXFILTRATION_GUIDANCE),
        Rule("privilege", contains("privilege", "escalation"), PRIVILEGE_GUIDANCE),
        Rule(
            "reconnaissance",
            contains("port scan", "reconnaissance", "scanning"),
            RECONNAISSANCE_GUIDANCE,
        ),
        Rule("access", contains("unauthorized", "access"), ACCESS_GUIDANCE),
    ],
    default=GENERIC_GUIDANCE,
)


def analyst_guidance(alert_type: str) -> list[str]:
    """Return the five-step checklist for an alert type."""
    return list(GUIDANCE_CLASSIFIER.classify(alert_type))
