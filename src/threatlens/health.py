"""Daily system health summary."""

from __future__ import annotations

from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Optional

import structlog
from pydantic import BaseModel, Field

from threatlens.models.enums import AlertStatus, IncidentStatus, Severity
from threatlens.persistence.repository import ACTIVE_INCIDENT_STATUSES, TriageStore

logger = structlog.get_logger()

HEALTH_WINDOW = timedelta(hours=24)
TOP_SOURCES = 5
RESOLVED_STATUSES = (IncidentStatus.RESOLVED, IncidentStatus.CLOSED)


class HealthSummary(BaseModel):
    """Counters over the trailing 24 hours."""

    generated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    window_start: datetime
    total_alerts: int = 0
    new_alerts: int = 0
    critical_alerts: int = 0
    correlated_alerts: int = 0
    ai_analyzed_alerts: int = 0
    open_incidents: int = 0
    resolved_incidents: int = 0
    severity_distribution: dict[str, int] = Field(default_factory=dict)
    top_sources: list[tuple[str, int]] = Field(
        default_factory=list, description="Most frequent source systems, busiest first"
    )


async def build_health_summary(
    store: TriageStore, now: Optional[datetime] = None
) -> HealthSummary:
    """Collect the health counters and log them.

    Open incidents are counted regardless of age; resolved incidents only
    when resolved inside the window.
    """
    now = now or datetime.now(timezone.utc)
    since = now - HEALTH_WINDOW
    alerts = await store.fetch_alerts_since(since)

    severities = Counter(alert.severity for alert in alerts)
    sources = Counter(alert.source_system or "unknown" for alert in alerts)

    summary = HealthSummary(
        generated_at=now,
        window_start=since,
        total_alerts=len(alerts),
        new_alerts=sum(1 for a in alerts if a.status == AlertStatus.NEW),
        critical_alerts=severities.get(Severity.CRITICAL, 0),
        correlated_alerts=sum(1 for a in alerts if a.status == AlertStatus.CORRELATED),
        ai_analyzed_alerts=sum(1 for a in alerts if a.ai_used),
        open_incidents=await store.count_incidents(ACTIVE_INCIDENT_STATUSES),
        resolved_incidents=await store.count_incidents(RESOLVED_STATUSES, resolved_since=since),
        severity_distribution={s.value: severities.get(s, 0) for s in Severity},
        top_sources=sources.most_common(TOP_SOURCES),
    )

    logger.info(
        "health_summary",
        total_alerts=summary.total_alerts,
        new_alerts=summary.new_alerts,
        critical_alerts=summary.critical_alerts,
        correlated_alerts=summary.correlated_alerts,
        ai_analyzed_alerts=summary.ai_analyzed_alerts,
        open_incidents=summary.open_incidents,
        resolved_incidents=summary.resolved_incidents,
    )
    return summary
