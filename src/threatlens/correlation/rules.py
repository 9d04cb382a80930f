"""Correlation rules.

Planning is pure: given the untriaged alert pool and the entities of the
currently open incidents, `plan_correlation` decides which alerts attach to
existing incidents and which groups become new incidents. Nothing here
touches storage; `CorrelationEngine` applies the plan.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Literal, Optional, Sequence

from threatlens.config import CorrelationConfig
from threatlens.models.alerts import Alert
from threatlens.models.enums import Priority, Severity, TriggerRule
from threatlens.models.incidents import CorrelationReason, MatchedEntities
from threatlens.scoring.classifiers import contains, pattern
from threatlens.scoring.incident import incident_priority, incident_severity

PlanMode = Literal["batch", "single"]

# Drivers
DRIVER_CREDENTIAL_ATTACK = "High-severity credential attack"
DRIVER_SHARED_IP = "Shared Source IP"
DRIVER_REPEATED_IDENTITY = "Repeated Identity Activity"
DRIVER_MULTI_VECTOR = "Multi-vector Alert Pattern"
DRIVER_MULTI_SOURCE = "Multi-source Attack"
DRIVER_COMMON_ASSET = "Common Asset Target"
DRIVER_PHISHING = "Phishing campaign indicator"
DRIVER_RISK_THRESHOLD = "Combined risk score threshold exceeded"
DRIVER_MALWARE = "Malware activity indicator"
DRIVER_INSIDER = "Insider threat indicator"

is_credential_attack = contains("brute force", "credential stuffing")
is_authentication = pattern(r"login|auth|access|credential|brute")
is_phishing = contains("phishing")
is_malware = contains("malware", "beaconing")
is_insider = contains("insider", "exfiltration")


@dataclass
class CorrelationGroup:
    """Alerts one rule decided belong to a single new incident."""

    alerts: list[Alert]
    summary: str
    trigger_rule: TriggerRule
    drivers: list[str]
    matched_entities: MatchedEntities = field(default_factory=MatchedEntities)

    @property
    def alert_ids(self) -> list[str]:
        return [alert.id for alert in self.alerts]

    @property
    def severity(self) -> Severity:
        return incident_severity(self.alerts)

    @property
    def priority(self) -> Priority:
        return incident_priority(self.alerts)

    def reason(self) -> CorrelationReason:
        return CorrelationReason(
            summary=self.summary,
            drivers=list(self.drivers),
            trigger_rule=self.trigger_rule.value,
            priority=self.priority,
        )


@dataclass(frozen=True)
class Attachment:
    """An alert joining an existing open incident."""

    alert: Alert
    incident_id: str


@dataclass
class OpenIncidentEntities:
    """Join keys of an open incident, collected from its member alerts."""

    incident_id: str
    ips: set[str] = field(default_factory=set)
    users: set[str] = field(default_factory=set)
    last_seen: Optional[datetime] = None

    @classmethod
    def from_alerts(cls, incident_id: str, alerts: Sequence[Alert]) -> "OpenIncidentEntities":
        entities = cls(incident_id)
        for alert in alerts:
            extracted = alert.entities
            if extracted.ip:
                entities.ips.add(extracted.ip)
            if extracted.user:
                entities.users.add(extracted.user)
            if entities.last_seen is None or alert.timestamp > entities.last_seen:
                entities.last_seen = alert.timestamp
        return entities

    def matches(self, alert: Alert) -> bool:
        extracted = alert.entities
        return bool(
            (extracted.ip and extracted.ip in self.ips)
            or (extracted.user and extracted.user in self.users)
        )


@dataclass
class CorrelationPlan:
    """Decisions for one correlation run, in the order they were made."""

    attachments: list[Attachment] = field(default_factory=list)
    groups: list[CorrelationGroup] = field(default_factory=list)

    @property
    def claimed_ids(self) -> set[str]:
        claimed = {a.alert.id for a in self.attachments}
        for group in self.groups:
            claimed.update(group.alert_ids)
        return claimed

    def for_alert(self, alert_id: str) -> tuple[Optional[Attachment], Optional[CorrelationGroup]]:
        """The attachment or group that claimed ``alert_id``, if any."""
        for attachment in self.attachments:
            if attachment.alert.id == alert_id:
                return attachment, None
        for group in self.groups:
            if alert_id in group.alert_ids:
                return None, group
        return None, None


def _distinct(values) -> list[str]:
    return list(dict.fromkeys(v for v in values if v))


def _ips(alerts: Sequence[Alert]) -> list[str]:
    return _distinct(a.entities.ip for a in alerts)


def _users(alerts: Sequence[Alert]) -> list[str]:
    return _distinct(a.entities.user for a in alerts)


def _assets(alerts: Sequence[Alert]) -> list[str]:
    return _distinct(a.entities.asset for a in alerts)


class _Planner:
    """Runs the ordered rule set over one pool, tracking claimed alerts."""

    def __init__(self, config: CorrelationConfig, mode: PlanMode):
        self.config = config
        self.mode = mode
        self.plan = CorrelationPlan()
        self.claimed: set[str] = set()

    def residue(self, pool: Sequence[Alert]) -> list[Alert]:
        return [alert for alert in pool if alert.id not in self.claimed]

    def claim(self, group: CorrelationGroup) -> None:
        self.plan.groups.append(group)
        self.claimed.update(group.alert_ids)

    def group_by(
        self, alerts: Sequence[Alert], key: Callable[[Alert], Optional[str]]
    ) -> dict[str, list[Alert]]:
        grouped: dict[str, list[Alert]] = defaultdict(list)
        for alert in alerts:
            value = key(alert)
            if value:
                grouped[value].append(alert)
        return grouped

    # Phase 1

    def attach(
        self,
        pool: Sequence[Alert],
        open_incidents: Sequence[OpenIncidentEntities],
        now: datetime,
    ) -> None:
        window = self.config.attach_window_minutes
        candidates = [
            incident
            for incident in open_incidents
            if window is None
            or incident.last_seen is None
            or incident.last_seen >= now - timedelta(minutes=window)
        ]
        for alert in pool:
            if not alert.entities.has_identity:
                continue
            for incident in candidates:
                if incident.matches(alert):
                    self.plan.attachments.append(Attachment(alert, incident.incident_id))
                    self.claimed.add(alert.id)
                    break

    # Phase 2

    def credential_attack(self, pool: Sequence[Alert]) -> None:
        qualifying = [
            a
            for a in self.residue(pool)
            if is_credential_attack(a.alert_type) and a.severity in (Severity.HIGH, Severity.CRITICAL)
        ]
        if not qualifying:
            return
        batches = [[a] for a in qualifying] if self.mode == "single" else [qualifying]
        for alerts in batches:
            ips, users = _ips(alerts), _users(alerts)
            first = alerts[0]
            if len(alerts) == 1:
                summary = f"Credential-based attack: {first.alert_type} from {ips[0] if ips else 'unknown source'}"
            else:
                summary = (
                    f"Credential-based attack: {len(alerts)} {first.alert_type} alert(s) "
                    f"with {first.severity.value} severity"
                )
            drivers = [DRIVER_CREDENTIAL_ATTACK]
            if len(ips) == 1:
                drivers.append(DRIVER_SHARED_IP)
            if users:
                drivers.append(DRIVER_REPEATED_IDENTITY)
            self.claim(
                CorrelationGroup(
                    alerts=alerts,
                    summary=summary,
                    trigger_rule=TriggerRule.CREDENTIAL_ATTACK,
                    drivers=drivers,
                    matched_entities=MatchedEntities(ips=ips, users=users),
                )
            )

    def ip_burst(self, pool: Sequence[Alert]) -> None:
        by_ip = self.group_by(self.residue(pool), lambda a: a.entities.ip)
        for ip, alerts in by_ip.items():
            if len(alerts) < self.config.burst_min_alerts:
                continue
            ordered = sorted(alerts, key=lambda a: a.timestamp)
            span = (ordered[-1].timestamp - ordered[0].timestamp).total_seconds()
            if span > self.config.burst_window_seconds:
                continue
            users = _users(ordered)
            drivers = [DRIVER_SHARED_IP, DRIVER_MULTI_VECTOR]
            if users:
                drivers.append(DRIVER_REPEATED_IDENTITY)
            self.claim(
                CorrelationGroup(
                    alerts=ordered,
                    summary=f"{len(ordered)} alerts from IP {ip} within {span / 60:.1f} minutes",
                    trigger_rule=TriggerRule.IP_CORRELATION,
                    drivers=drivers,
                    matched_entities=MatchedEntities(ips=[ip], users=users, assets=_assets(ordered)),
                )
            )

    def user_authentication(self, pool: Sequence[Alert]) -> None:
        auth_alerts = [a for a in self.residue(pool) if is_authentication(a.alert_type)]
        by_user = self.group_by(auth_alerts, lambda a: a.entities.user)
        for user, alerts in by_user.items():
            if len(alerts) < self.config.user_min_alerts:
                continue
            ips = _ips(alerts)
            drivers = [DRIVER_REPEATED_IDENTITY]
            if len(ips) > 1:
                drivers.append(DRIVER_MULTI_SOURCE)
            self.claim(
                CorrelationGroup(
                    alerts=alerts,
                    summary=f'Multiple authentication alerts ({len(alerts)}) for user "{user}"',
                    trigger_rule=TriggerRule.USER_CORRELATION,
                    drivers=drivers,
                    matched_entities=MatchedEntities(ips=ips, users=[user]),
                )
            )

    def shared_asset(self, pool: Sequence[Alert]) -> None:
        # Alerts without an IP or user never join an entity-based group.
        identified = [a for a in self.residue(pool) if a.entities.has_identity]
        by_asset = self.group_by(identified, lambda a: a.entities.asset)
        for asset, alerts in by_asset.items():
            if len(alerts) < self.config.asset_min_alerts:
                continue
            ips = _ips(alerts)
            drivers = [DRIVER_COMMON_ASSET]
            if len(ips) > 1:
                drivers.append(DRIVER_MULTI_SOURCE)
            self.claim(
                CorrelationGroup(
                    alerts=alerts,
                    summary=f'Multiple alerts targeting asset "{asset}" ({len(alerts)} alerts)',
                    trigger_rule=TriggerRule.ASSET_CORRELATION,
                    drivers=drivers,
                    matched_entities=MatchedEntities(ips=ips, users=_users(alerts), assets=[asset]),
                )
            )

    def phishing(self, pool: Sequence[Alert]) -> None:
        alerts = [a for a in self.residue(pool) if is_phishing(a.alert_type)]
        if not alerts:
            return
        self.claim(
            CorrelationGroup(
                alerts=alerts,
                summary=f"Phishing campaign: {len(alerts)} phishing alert(s) detected",
                trigger_rule=TriggerRule.PHISHING_DETECTION,
                drivers=[DRIVER_PHISHING],
                matched_entities=MatchedEntities(users=_users(alerts)),
            )
        )

    def risk_threshold(self, pool: Sequence[Alert]) -> None:
        threshold = self.config.risk_threshold
        alerts = [a for a in self.residue(pool) if (a.risk_score or 0) >= threshold]
        if not alerts:
            return
        self.claim(
            CorrelationGroup(
                alerts=alerts,
                summary=f"{len(alerts)} high-risk alert(s) exceeding risk threshold ({threshold}+)",
                trigger_rule=TriggerRule.RISK_THRESHOLD,
                drivers=[DRIVER_RISK_THRESHOLD],
                matched_entities=MatchedEntities(ips=_ips(alerts), users=_users(alerts)),
            )
        )

    def malware(self, pool: Sequence[Alert]) -> None:
        alerts = [a for a in self.residue(pool) if is_malware(a.alert_type)]
        if not alerts:
            return
        assets = _assets(alerts)
        drivers = [DRIVER_MALWARE]
        if assets:
            drivers.append(DRIVER_COMMON_ASSET)
        self.claim(
            CorrelationGroup(
                alerts=alerts,
                summary=(
                    f"Malware activity: {len(alerts)} alert(s) on "
                    f"{', '.join(assets) or 'endpoint'}"
                ),
                trigger_rule=TriggerRule.MALWARE_DETECTION,
                drivers=drivers,
                matched_entities=MatchedEntities(ips=_ips(alerts), users=_users(alerts), assets=assets),
            )
        )

    def insider(self, pool: Sequence[Alert]) -> None:
        alerts = [a for a in self.residue(pool) if is_insider(a.alert_type)]
        if not alerts:
            return
        users = _users(alerts)
        drivers = [DRIVER_INSIDER]
        if users:
            drivers.append(DRIVER_REPEATED_IDENTITY)
        self.claim(
            CorrelationGroup(
                alerts=alerts,
                summary=(
                    f"Insider threat activity: {len(alerts)} alert(s) by "
                    f"{', '.join(users) or 'unknown user'}"
                ),
                trigger_rule=TriggerRule.INSIDER_THREAT,
                drivers=drivers,
                matched_entities=MatchedEntities(ips=_ips(alerts), users=users, assets=_assets(alerts)),
            )
        )


def plan_correlation(
    pool: Sequence[Alert],
    open_incidents: Sequence[OpenIncidentEntities],
    config: CorrelationConfig,
    *,
    mode: PlanMode = "batch",
    now: Optional[datetime] = None,
) -> CorrelationPlan:
    """Decide attachments and new groups for an untriaged alert pool.

    Phase 1 attaches alerts whose IP or user already belongs to an open
    incident (first matching incident wins). Phase 2 applies the grouping
    rules in priority order; each rule only sees alerts no earlier rule
    claimed.

    Args:
        pool: Untriaged alerts, oldest first.
        open_incidents: Entities of open and in-progress incidents, in
            incident order.
        config: Correlation thresholds.
        mode: "single" forms one credential-attack group per qualifying
            alert instead of one group for all of them.
        now: Reference time for the attach window.

    Returns:
        The correlation plan.
    """
    planner = _Planner(config, mode)
    planner.attach(pool, open_incidents, now or datetime.now(timezone.utc))

    # Single mode keeps this order too: malware and insider rules only see
    # what the risk threshold left.
    planner.credential_attack(pool)
    planner.ip_burst(pool)
    planner.user_authentication(pool)
    planner.shared_asset(pool)
    planner.phishing(pool)
    planner.risk_threshold(pool)
    planner.malware(pool)
    planner.insider(pool)

    return planner.plan
