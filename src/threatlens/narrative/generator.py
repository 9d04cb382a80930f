"""Narrative generation with provider fallback."""

from __future__ import annotations

import json
from typing import Optional, Sequence

import structlog
from pydantic import BaseModel, Field

from threatlens.config import NarrativeConfig
from threatlens.models.alerts import Alert
from threatlens.models.enums import Severity
from threatlens.models.incidents import CorrelationReason, MatchedEntities
from threatlens.models.metrics import IncidentMetrics, RiskMetrics
from threatlens.narrative import document as doc
from threatlens.narrative import templates
from threatlens.narrative.document import NarrativeDocument
from threatlens.narrative.prompts import (
    ALERT_SYSTEM_PROMPT,
    ALERT_USER_PROMPT_TEMPLATE,
    INCIDENT_SYSTEM_PROMPT,
    INCIDENT_USER_PROMPT_TEMPLATE,
)
from threatlens.narrative.providers import (
    CompletionProvider,
    NarrativeProviderError,
    build_providers,
)
from threatlens.narrative.sanitize import (
    REASON_MAX_LENGTH,
    SUSPICIOUS_CONTENT_WARNING,
    contains_suspicious_patterns,
    sanitize_alert,
    sanitize_text,
)
from threatlens.scoring.incident import compute_incident_metrics
from threatlens.scoring.risk import RiskScorer

logger = structlog.get_logger()


class Narrative(BaseModel):
    """Generated narrative text plus its parsed sections."""

    text: str
    ai_used: bool = False
    sections: dict[str, str] = Field(default_factory=dict)
    provider: Optional[str] = Field(default=None, description="Provider that supplied the prose")
    cached: bool = Field(default=False, description="Returned from storage, not generated")

    @classmethod
    def from_stored(cls, text: str) -> "Narrative":
        """Wrap previously stored narrative text."""
        document = NarrativeDocument.parse(text)
        return cls(
            text=text,
            ai_used=not document.rule_based,
            sections=document.sections,
            cached=True,
        )


class NarrativeGenerator:
    """Produces alert and incident narratives.

    Providers are tried in order and the first usable completion supplies
    the prose sections. Prose sections the model leaves out are filled from
    the deterministic templates. Score-derived and correlation evidence
    sections always come from the scorer.
    """

    def __init__(
        self,
        alert_providers: Optional[Sequence[CompletionProvider]] = None,
        incident_providers: Optional[Sequence[CompletionProvider]] = None,
        scorer: Optional[RiskScorer] = None,
    ):
        self.alert_providers = list(alert_providers or [])
        self.incident_providers = list(
            incident_providers if incident_providers is not None else self.alert_providers
        )
        self.scorer = scorer or RiskScorer()

    @classmethod
    def from_config(
        cls, config: NarrativeConfig, scorer: Optional[RiskScorer] = None
    ) -> "NarrativeGenerator":
        """Build a generator from the narrative configuration."""
        alert_providers = build_providers(
            config.providers,
            temperature=config.temperature,
            max_tokens=config.alert_max_tokens,
        )
        incident_providers = build_providers(
            config.providers,
            temperature=config.temperature,
            max_tokens=config.incident_max_tokens,
        )
        logger.info(
            "narrative_generator_configured",
            providers=[p.name for p in alert_providers],
        )
        return cls(alert_providers, incident_providers, scorer)

    async def narrate_alert(
        self, alert: Alert, metrics: Optional[RiskMetrics] = None
    ) -> Narrative:
        """Generate the analysis narrative for one alert.

        Args:
            alert: Alert to narrate.
            metrics: Precomputed risk metrics; computed when omitted.

        Returns:
            Narrative with what/why/action prose and the metric sections.
        """
        metrics = metrics or self.scorer.score(alert)
        sanitized = sanitize_alert(alert)
        user_prompt = ALERT_USER_PROMPT_TEMPLATE.format(
            warning=f"\n{SUSPICIOUS_CONTENT_WARNING}\n" if sanitized.contains_suspicious_content else "",
            alert_type=sanitized.alert_type,
            severity=sanitized.severity,
            source_system=sanitized.source_system,
            timestamp=sanitized.timestamp,
            raw_log=json.dumps(sanitized.raw_log, default=str),
        )

        prose, provider = await self._complete(
            self.alert_providers,
            ALERT_SYSTEM_PROMPT,
            user_prompt,
            doc.ALERT_PROSE_SECTIONS,
            subject="alert",
            subject_id=alert.id,
        )

        fallback = templates.alert_prose(alert)
        document = NarrativeDocument(rule_based=provider is None)
        for name in doc.ALERT_PROSE_SECTIONS:
            document.set_section(name, prose.get(name) or fallback[name])
        for name, value in templates.alert_metric_sections(metrics).items():
            document.set_section(name, value)

        return Narrative(
            text=document.render(),
            ai_used=provider is not None,
            sections=document.sections,
            provider=provider,
        )

    async def narrate_incident(
        self,
        alerts: Sequence[Alert],
        reason: CorrelationReason,
        severity: Severity,
        *,
        entities: Optional[MatchedEntities] = None,
        metrics: Optional[IncidentMetrics] = None,
        auto_created: bool = True,
        subject_id: Optional[str] = None,
    ) -> Narrative:
        """Generate the intelligence report for a group of alerts.

        Args:
            alerts: Member alerts.
            reason: Structured correlation reason.
            severity: Incident severity.
            entities: Entities matched by the correlation rule.
            metrics: Precomputed incident metrics; computed when omitted.
            auto_created: Whether the incident came from correlation.
            subject_id: Incident id for logging, when known.

        Returns:
            Narrative with the six report sections and the correlation evidence block.
        """
        metrics = metrics or compute_incident_metrics(alerts, reason.drivers, entities)
        sanitized = [sanitize_alert(alert) for alert in alerts]
        suspicious = any(s.contains_suspicious_content for s in sanitized) or (
            contains_suspicious_patterns(reason.summary)
        )
        alerts_detail = json.dumps(
            [
                {
                    "type": s.alert_type,
                    "source": s.source_system,
                    "severity": s.severity,
                    "timestamp": s.timestamp,
                    "raw_log": s.raw_log,
                    "risk_score": s.risk_score,
                }
                for s in sanitized
            ],
            indent=2,
            default=str,
        )
        entities = metrics.matched_entities
        user_prompt = INCIDENT_USER_PROMPT_TEMPLATE.format(
            warning=f"\n{SUSPICIOUS_CONTENT_WARNING}" if suspicious else "",
            reason=sanitize_text(reason.summary, REASON_MAX_LENGTH),
            severity=severity.value,
            alert_count=len(alerts),
            trigger_rule=reason.trigger_rule,
            drivers=", ".join(reason.drivers),
            average_risk=metrics.average_risk,
            ips=", ".join(entities.ips) or "None",
            users=", ".join(entities.users) or "None",
            assets=", ".join(entities.assets) or "None",
            alerts_detail=alerts_detail,
        )

        prose, provider = await self._complete(
            self.incident_providers,
            INCIDENT_SYSTEM_PROMPT,
            user_prompt,
            doc.INCIDENT_PROSE_SECTIONS,
            subject="incident",
            subject_id=subject_id,
        )

        fallback = templates.incident_prose(alerts, reason, severity, metrics)
        document = NarrativeDocument(rule_based=provider is None)
        for name in doc.INCIDENT_PROSE_SECTIONS:
            document.set_section(name, prose.get(name) or fallback[name])
        for name, value in templates.incident_evidence_sections(reason, metrics, auto_created).items():
            document.set_section(name, value)

        return Narrative(
            text=document.render(),
            ai_used=provider is not None,
            sections=document.sections,
            provider=provider,
        )

    async def _complete(
        self,
        providers: Sequence[CompletionProvider],
        system_prompt: str,
        user_prompt: str,
        prose_sections: Sequence[str],
        *,
        subject: str,
        subject_id: Optional[str],
    ) -> tuple[dict[str, str], Optional[str]]:
        """Try providers in order.

        Returns:
            The parsed prose sections and the name of the provider that
            supplied them, or ({}, None) when every provider failed.
        """
        for provider in providers:
            try:
                text = await provider.complete(system_prompt, user_prompt)
            except NarrativeProviderError as e:
                logger.warning(
                    "narrative_provider_failed",
                    provider=e.provider,
                    subject=subject,
                    subject_id=subject_id,
                    error=str(e),
                )
                continue

            parsed = NarrativeDocument.parse(text)
            prose = {name: parsed.get(name) for name in prose_sections if parsed.get(name)}
            if not prose:
                logger.warning(
                    "narrative_provider_unstructured",
                    provider=provider.name,
                    subject=subject,
                    subject_id=subject_id,
                )
                continue

            logger.info(
                "narrative_generated",
                provider=provider.name,
                subject=subject,
                subject_id=subject_id,
                sections=len(prose),
            )
            return prose, provider.name

        logger.info("narrative_fallback_used", subject=subject, subject_id=subject_id)
        return {}, None
