"""Pytest fixtures for threatlens tests."""

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterable, Optional, Sequence
from unittest.mock import AsyncMock, MagicMock

import pytest
from langchain_core.messages import AIMessage
from sqlalchemy.ext.asyncio import AsyncSession

from threatlens.models.alerts import Alert
from threatlens.models.enums import AlertStatus, IncidentStatus, Severity
from threatlens.models.incidents import Incident, IncidentActivity
from threatlens.narrative.generator import NarrativeGenerator
from threatlens.narrative.providers import CompletionProvider

BASE_TIME = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)

_UNSET: Any = object()


class InMemoryTriageStore:
    """TriageStore kept in dictionaries.

    Mirrors the relational store closely enough for the core: the
    (alert_id, incident_id) pair is unique and creating an incident marks
    its alerts Correlated.
    """

    def __init__(self) -> None:
        self.alerts: dict[str, Alert] = {}
        self.incidents: dict[str, Incident] = {}
        self.mappings: list[tuple[str, str]] = []
        self.activity: list[IncidentActivity] = []

    async def fetch_untriaged_alerts(self) -> list[Alert]:
        pool = [
            a for a in self.alerts.values()
            if a.status in (AlertStatus.NEW, AlertStatus.REVIEWED)
        ]
        return sorted(pool, key=lambda a: a.timestamp)

    async def fetch_open_incidents(self) -> list[Incident]:
        active = [i for i in self.incidents.values() if i.status.is_active]
        return sorted(active, key=lambda i: i.created_at)

    async def fetch_mapped_alert_ids(self, incident_id: str) -> list[str]:
        return [a for a, i in self.mappings if i == incident_id]

    async def fetch_alerts(self, alert_ids: Sequence[str]) -> list[Alert]:
        found = [self.alerts[a] for a in alert_ids if a in self.alerts]
        return sorted(found, key=lambda a: a.timestamp)

    async def fetch_alerts_since(self, since: datetime) -> list[Alert]:
        return sorted(
            (a for a in self.alerts.values() if a.timestamp >= since),
            key=lambda a: a.timestamp,
        )

    async def find_mapped_alert_ids(self, alert_ids: Iterable[str]) -> set[str]:
        wanted = set(alert_ids)
        return {a for a, _ in self.mappings if a in wanted}

    async def get_alert(self, alert_id: str) -> Optional[Alert]:
        return self.alerts.get(alert_id)

    async def get_incident(self, incident_id: str) -> Optional[Incident]:
        return self.incidents.get(incident_id)

    async def insert_alert(self, alert: Alert) -> Alert:
        self.alerts[alert.id] = alert
        return alert

    async def insert_incident(self, incident: Incident, alert_ids: Sequence[str]) -> Incident:
        self.incidents[incident.id] = incident
        for alert_id in alert_ids:
            self.mappings.append((alert_id, incident.id))
            self._set_alert(alert_id, status=AlertStatus.CORRELATED)
        return incident

    async def insert_mapping(self, alert_id: str, incident_id: str) -> bool:
        if (alert_id, incident_id) in self.mappings:
            return False
        self.mappings.append((alert_id, incident_id))
        self._set_alert(alert_id, status=AlertStatus.CORRELATED)
        return True

    def _set_alert(self, alert_id: str, **changes: Any) -> None:
        if alert_id in self.alerts:
            self.alerts[alert_id] = self.alerts[alert_id].model_copy(update=changes)

    async def update_alert(
        self,
        alert_id: str,
        *,
        status: Optional[AlertStatus] = None,
        risk_score: Optional[int] = None,
        narrative: Optional[str] = None,
        ai_used: Optional[bool] = None,
    ) -> None:
        if status is not None and alert_id in self.alerts:
            status = self.alerts[alert_id].status.advance(status)
        changes = {
            "status": status,
            "risk_score": risk_score,
            "narrative": narrative,
            "ai_used": ai_used,
        }
        self._set_alert(alert_id, **{k: v for k, v in changes.items() if v is not None})

    async def update_incident(
        self,
        incident_id: str,
        *,
        status: Optional[IncidentStatus] = None,
        narrative: Optional[str] = None,
        resolved_at: Optional[datetime] = _UNSET,
    ) -> None:
        changes: dict[str, Any] = {}
        if status is not None:
            changes["status"] = status
        if narrative is not None:
            changes["narrative"] = narrative
        if resolved_at is not _UNSET:
            changes["resolved_at"] = resolved_at
        self.incidents[incident_id] = self.incidents[incident_id].model_copy(update=changes)

    async def insert_activity(self, activity: IncidentActivity) -> IncidentActivity:
        self.activity.append(activity)
        return activity

    async def fetch_activity(self, incident_id: str) -> list[IncidentActivity]:
        return [a for a in self.activity if a.incident_id == incident_id]

    async def count_incidents(
        self,
        statuses: Sequence[IncidentStatus],
        *,
        resolved_since: Optional[datetime] = None,
    ) -> int:
        return sum(
            1
            for i in self.incidents.values()
            if i.status in statuses
            and (resolved_since is None or (i.resolved_at and i.resolved_at >= resolved_since))
        )


@pytest.fixture
def mock_session() -> AsyncMock:
    """Create a mock async database session."""
    session = AsyncMock(spec=AsyncSession)
    session.add = MagicMock()
    session.flush = AsyncMock()
    session.rollback = AsyncMock()
    session.commit = AsyncMock()
    return session


@pytest.fixture
def store() -> InMemoryTriageStore:
    """Create an empty in-memory store."""
    return InMemoryTriageStore()


@pytest.fixture
def make_alert() -> Callable[..., Alert]:
    """Factory for alerts; ``offset`` is seconds after BASE_TIME."""

    def _make(
        alert_type: str = "Port Scan",
        severity: Severity | str = Severity.MEDIUM,
        offset: float = 0,
        source_system: str = "IDS",
        risk_score: Optional[int] = None,
        status: AlertStatus = AlertStatus.NEW,
        **raw_log: Any,
    ) -> Alert:
        return Alert(
            alert_type=alert_type,
            severity=severity,
            timestamp=BASE_TIME + timedelta(seconds=offset),
            source_system=source_system,
            risk_score=risk_score,
            status=status,
            raw_log=raw_log,
        )

    return _make


@pytest.fixture
def make_provider() -> Callable[..., CompletionProvider]:
    """Factory for completion providers backed by a mocked chat model."""

    def _make(
        name: str = "primary",
        response: Optional[str] = None,
        error: Optional[BaseException] = None,
        timeout_seconds: float = 5.0,
    ) -> CompletionProvider:
        llm = MagicMock()
        if error is not None:
            llm.ainvoke = AsyncMock(side_effect=error)
        else:
            llm.ainvoke = AsyncMock(return_value=AIMessage(content=response or ""))
        return CompletionProvider(name, llm, timeout_seconds)

    return _make


@pytest.fixture
def fallback_narrator() -> NarrativeGenerator:
    """Narrative generator with no providers (rule-based only)."""
    return NarrativeGenerator([])


ALERT_AI_RESPONSE = """WHAT HAPPENED:
Repeated failed logins against the admin account from one external address.

WHY IT'S RISKY:
A successful guess would give the attacker administrative control.

RECOMMENDED ACTION:
Block the address and reset the admin credentials."""

INCIDENT_AI_RESPONSE = """**ATTACK PATTERN:** Coordinated password spraying against the VPN gateway.

OBSERVED BEHAVIOR:
- Three brute force alerts within two minutes

BUSINESS IMPACT:
Remote access for all staff depends on this gateway.

PRIORITY LEVEL:
P2 - Urgent attention needed

CONTAINMENT STEPS:
1. Block the source range

ANALYST RECOMMENDATION:
Check for any successful authentication from the same range."""


@pytest.fixture
def alert_ai_response() -> str:
    return ALERT_AI_RESPONSE


@pytest.fixture
def incident_ai_response() -> str:
    return INCIDENT_AI_RESPONSE
