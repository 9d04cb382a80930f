"""Triage service: the operations ThreatLens exposes to its callers."""

from __future__ import annotations

from typing import Any, Optional, Sequence, Union

import structlog
from pydantic import BaseModel, Field

from threatlens.config import Config
from threatlens.correlation.engine import CorrelationEngine, CorrelationResult
from threatlens.correlation.locks import KeyedLock
from threatlens.health import HealthSummary, build_health_summary
from threatlens.lifecycle import IncidentLifecycle, has_structured_narrative
from threatlens.models.alerts import Alert
from threatlens.models.enums import ActionType, AlertStatus
from threatlens.models.incidents import Incident, IncidentActivity
from threatlens.models.metrics import RiskMetrics
from threatlens.narrative import document as doc
from threatlens.narrative.generator import Narrative, NarrativeGenerator
from threatlens.persistence.repository import (
    AlertNotFoundError,
    TriageRepository,
    TriageStore,
)
from threatlens.scoring.risk import RiskScorer

logger = structlog.get_logger()


class AlertAnalysis(BaseModel):
    """Result of analysing one alert."""

    alert: Alert = Field(description="Alert as stored after analysis")
    metrics: RiskMetrics
    narrative: Narrative
    correlation: Optional[CorrelationResult] = None


class TriageService:
    """Facade over scoring, narration, correlation and the incident lifecycle.

    Example:
        service = TriageService.from_config(get_config())
        analysis = await service.analyze_alert(alert_id)
        result = await service.run_correlation()
    """

    def __init__(
        self,
        store: TriageStore,
        narrator: Optional[NarrativeGenerator] = None,
        engine: Optional[CorrelationEngine] = None,
        lifecycle: Optional[IncidentLifecycle] = None,
        scorer: Optional[RiskScorer] = None,
        correlate_on_analysis: bool = True,
    ):
        self.store = store
        self.scorer = scorer or RiskScorer()
        self.narrator = narrator or NarrativeGenerator(scorer=self.scorer)
        self.engine = engine or CorrelationEngine(store, self.narrator)
        self.lifecycle = lifecycle or IncidentLifecycle(store, self.narrator)
        self.correlate_on_analysis = correlate_on_analysis

    @classmethod
    def from_config(
        cls, config: Config, store: Optional[TriageStore] = None
    ) -> "TriageService":
        """Wire the service from configuration.

        Args:
            config: Loaded configuration.
            store: Storage collaborator. Defaults to the relational repository.
        """
        store = store or TriageRepository()
        scorer = RiskScorer()
        generator = NarrativeGenerator.from_config(config.narrative, scorer)
        engine = CorrelationEngine(store, generator, config.correlation, KeyedLock())
        return cls(
            store,
            narrator=generator,
            engine=engine,
            lifecycle=IncidentLifecycle(store, generator),
            scorer=scorer,
            correlate_on_analysis=config.correlation.trigger_on_new_alert,
        )

    # Scoring

    def compute_risk_metrics(self, alert: Alert) -> RiskMetrics:
        """Score an alert. Pure; never touches the store."""
        return self.scorer.score(alert)

    async def _get_alert(self, alert_id: str) -> Alert:
        alert = await self.store.get_alert(alert_id)
        if alert is None:
            raise AlertNotFoundError(alert_id)
        return alert

    async def ingest_alert(self, alert: Alert) -> Alert:
        """Store a new alert as reported, unscored."""
        return await self.store.insert_alert(
            alert.model_copy(update={"status": AlertStatus.NEW, "risk_score": None})
        )

    async def analyze_alert(
        self, alert_id: str, *, correlate: Optional[bool] = None
    ) -> AlertAnalysis:
        """Score and narrate one alert, then optionally correlate it.

        The alert moves to Reviewed unless it is already Correlated, including
        when a concurrent correlation run claims it while the narrative is
        being generated.

        Args:
            alert_id: Alert to analyse.
            correlate: Run event-triggered correlation afterwards. Defaults
                to the configured behaviour.

        Raises:
            AlertNotFoundError: If the alert does not exist.
            PersistenceError: If the analysis cannot be stored.
        """
        alert = await self._get_alert(alert_id)
        metrics = self.compute_risk_metrics(alert)
        narrative = await self.narrator.narrate_alert(alert, metrics)

        # The store keeps the later status if the alert was correlated meanwhile.
        await self.store.update_alert(
            alert.id,
            status=AlertStatus.REVIEWED,
            risk_score=metrics.risk_score,
            narrative=narrative.text,
            ai_used=narrative.ai_used,
        )
        logger.info(
            "alert_analyzed",
            alert_id=alert.id,
            risk_score=metrics.risk_score,
            adjusted_severity=metrics.adjusted_severity.value,
            ai_used=narrative.ai_used,
        )

        analysed = await self._get_alert(alert.id)

        if correlate is None:
            correlate = self.correlate_on_analysis
        correlation: Optional[CorrelationResult] = None
        if correlate:
            correlation = await self.engine.correlate_alert(alert.id)

        return AlertAnalysis(
            alert=analysed, metrics=metrics, narrative=narrative, correlation=correlation
        )

    # Correlation

    async def run_correlation(
        self, alert_pool: Optional[Sequence[Alert]] = None
    ) -> CorrelationResult:
        """Correlate a pool of alerts; defaults to every untriaged alert."""
        return await self.engine.run_batch(alert_pool)

    # Narratives

    async def alert_narrative(self, alert_id: str) -> Narrative:
        """Return an alert's stored analysis, generating it when missing.

        Generating here also stores the risk score, but leaves the alert
        status alone.
        """
        alert = await self._get_alert(alert_id)
        if has_structured_narrative(alert.narrative, doc.ALERT_REQUIRED_SECTIONS):
            return Narrative.from_stored(alert.narrative or "")

        metrics = self.compute_risk_metrics(alert)
        narrative = await self.narrator.narrate_alert(alert, metrics)
        await self.store.update_alert(
            alert.id,
            risk_score=metrics.risk_score,
            narrative=narrative.text,
            ai_used=narrative.ai_used,
        )
        logger.info("alert_narrative_generated", alert_id=alert.id, ai_used=narrative.ai_used)
        return narrative

    async def incident_narrative(self, incident_id: str) -> Narrative:
        incident = await self.lifecycle.get_incident(incident_id)
        return await self.lifecycle.incident_narrative(incident)

    async def generate_narrative(self, subject: Union[Alert, Incident]) -> Narrative:
        """Narrative for an alert or incident, cached when already structured."""
        if isinstance(subject, Incident):
            return await self.incident_narrative(subject.id)
        return await self.alert_narrative(subject.id)

    # Incident lifecycle

    async def start_investigation(self, incident_id: str, actor: str) -> Incident:
        return await self.lifecycle.start_investigation(incident_id, actor)

    async def resolve_incident(
        self,
        incident_id: str,
        actor: str,
        *,
        automated: bool = False,
        note: Optional[str] = None,
    ) -> Incident:
        return await self.lifecycle.resolve(incident_id, actor, automated=automated, note=note)

    async def close_incident(self, incident_id: str, actor: str) -> Incident:
        return await self.lifecycle.close(incident_id, actor)

    async def log_action(
        self,
        incident_id: str,
        actor: str,
        action_type: ActionType,
        label: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> IncidentActivity:
        """Record a containment action against an incident."""
        return await self.lifecycle.record_action(incident_id, actor, action_type, label, metadata)

    async def incident_activity(self, incident_id: str) -> list[IncidentActivity]:
        return await self.store.fetch_activity(incident_id)

    # Reporting

    async def health_summary(self) -> HealthSummary:
        return await build_health_summary(self.store)
