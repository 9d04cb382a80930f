"""Correlation engine: applies correlation plans to the store."""

from __future__ import annotations

from typing import Optional, Sequence

import structlog
from pydantic import BaseModel, Field

from threatlens.config import CorrelationConfig
from threatlens.correlation.locks import KeyedLock
from threatlens.correlation.rules import (
    Attachment,
    CorrelationGroup,
    CorrelationPlan,
    OpenIncidentEntities,
    PlanMode,
    plan_correlation,
)
from threatlens.models.alerts import Alert
from threatlens.models.enums import IncidentStatus
from threatlens.models.incidents import Incident
from threatlens.narrative.generator import NarrativeGenerator
from threatlens.persistence.repository import AlertNotFoundError, TriageStore

logger = structlog.get_logger()


class CorrelationResult(BaseModel):
    """Totals for one correlation run. Only successful operations count."""

    incidents_created: int = 0
    alerts_attached: int = 0
    alerts_processed: int = 0
    failures: int = 0
    incident_ids: list[str] = Field(default_factory=list)

    def merge(self, other: "CorrelationResult") -> "CorrelationResult":
        return CorrelationResult(
            incidents_created=self.incidents_created + other.incidents_created,
            alerts_attached=self.alerts_attached + other.alerts_attached,
            alerts_processed=self.alerts_processed + other.alerts_processed,
            failures=self.failures + other.failures,
            incident_ids=self.incident_ids + other.incident_ids,
        )


class CorrelationEngine:
    """Groups untriaged alerts into incidents.

    Batch runs and per-alert runs may overlap. Every attach and create
    re-checks the join table under per-alert locks right before writing,
    and the join table's unique constraint backs that up across processes.
    No lock is held for a whole run.
    """

    def __init__(
        self,
        store: TriageStore,
        narrator: NarrativeGenerator,
        config: Optional[CorrelationConfig] = None,
        locks: Optional[KeyedLock] = None,
    ):
        """Initialize the engine.

        Args:
            store: Storage collaborator.
            narrator: Generates the report for each new incident.
            config: Correlation thresholds. Defaults to CorrelationConfig().
            locks: Shared per-alert locks; one engine per process should
                share a single instance.
        """
        self.store = store
        self.narrator = narrator
        self.config = config or CorrelationConfig()
        self.locks = locks or KeyedLock()

    def correlate(
        self,
        pool: Sequence[Alert],
        open_incidents: Sequence[OpenIncidentEntities],
        mode: PlanMode = "batch",
    ) -> CorrelationPlan:
        """Plan attachments and new incidents without touching the store."""
        return plan_correlation(pool, open_incidents, self.config, mode=mode)

    async def open_incident_entities(self) -> list[OpenIncidentEntities]:
        """Collect join keys for every open or in-progress incident."""
        entities: list[OpenIncidentEntities] = []
        for incident in await self.store.fetch_open_incidents():
            alert_ids = await self.store.fetch_mapped_alert_ids(incident.id)
            if not alert_ids:
                continue
            alerts = await self.store.fetch_alerts(alert_ids)
            entities.append(OpenIncidentEntities.from_alerts(incident.id, alerts))
        return entities

    async def _unclaimed_pool(self, pool: Optional[Sequence[Alert]] = None) -> list[Alert]:
        pool = list(pool) if pool is not None else await self.store.fetch_untriaged_alerts()
        if not pool:
            return []
        mapped = await self.store.find_mapped_alert_ids(a.id for a in pool)
        return [alert for alert in pool if alert.id not in mapped]

    async def run_batch(self, pool: Optional[Sequence[Alert]] = None) -> CorrelationResult:
        """Correlate the whole untriaged pool.

        Args:
            pool: Alerts to correlate. Defaults to every New or Reviewed alert.

        Returns:
            Totals for the run.
        """
        pool = await self._unclaimed_pool(pool)
        if not pool:
            logger.info("correlation_no_untriaged_alerts")
            return CorrelationResult()

        logger.info("correlation_started", mode="batch", pool_size=len(pool))
        open_incidents = await self.open_incident_entities()
        plan = self.correlate(pool, open_incidents, mode="batch")
        logger.info(
            "correlation_planned",
            attachments=len(plan.attachments),
            groups=len(plan.groups),
        )

        result = await self._apply(plan.attachments, plan.groups)
        logger.info(
            "correlation_complete",
            mode="batch",
            incidents_created=result.incidents_created,
            alerts_attached=result.alerts_attached,
            alerts_processed=result.alerts_processed,
            failures=result.failures,
        )
        return result

    async def correlate_alert(self, alert_id: str) -> CorrelationResult:
        """Correlate one newly analysed alert.

        No-ops if the alert is already mapped to an incident. Otherwise the
        rules run over the untriaged pool and only the decision that claims
        this alert is applied.

        Raises:
            AlertNotFoundError: If the alert does not exist.
        """
        if await self.store.find_mapped_alert_ids([alert_id]):
            logger.info("alert_already_correlated", alert_id=alert_id)
            return CorrelationResult()

        alert = await self.store.get_alert(alert_id)
        if alert is None:
            raise AlertNotFoundError(alert_id)

        pool = await self._unclaimed_pool()
        if all(a.id != alert_id for a in pool):
            pool.append(alert)

        open_incidents = await self.open_incident_entities()
        plan = self.correlate(pool, open_incidents, mode="single")
        attachment, group = plan.for_alert(alert_id)

        if attachment is None and group is None:
            logger.info("no_correlation_rule_matched", alert_id=alert_id)
            return CorrelationResult()

        result = await self._apply(
            [attachment] if attachment else [],
            [group] if group else [],
        )
        logger.info(
            "correlation_complete",
            mode="single",
            alert_id=alert_id,
            incidents_created=result.incidents_created,
            alerts_attached=result.alerts_attached,
        )
        return result

    async def _apply(
        self, attachments: Sequence[Attachment], groups: Sequence[CorrelationGroup]
    ) -> CorrelationResult:
        result = CorrelationResult()

        for attachment in attachments:
            try:
                if await self._attach(attachment):
                    result.alerts_attached += 1
                    result.alerts_processed += 1
            except Exception as e:
                result.failures += 1
                logger.error(
                    "alert_attach_failed",
                    alert_id=attachment.alert.id,
                    incident_id=attachment.incident_id,
                    error=str(e),
                )

        for group in groups:
            try:
                incident = await self._create_incident(group)
            except Exception as e:
                result.failures += 1
                logger.error(
                    "incident_creation_failed",
                    trigger_rule=group.trigger_rule.value,
                    alert_ids=group.alert_ids,
                    error=str(e),
                )
                continue
            if incident is not None:
                result.incidents_created += 1
                result.alerts_processed += len(group.alerts)
                result.incident_ids.append(incident.id)

        return result

    async def _attach(self, attachment: Attachment) -> bool:
        alert_id = attachment.alert.id
        async with self.locks.hold([alert_id]):
            if await self.store.find_mapped_alert_ids([alert_id]):
                logger.debug("alert_already_claimed", alert_id=alert_id)
                return False
            attached = await self.store.insert_mapping(alert_id, attachment.incident_id)

        if attached:
            # Attaching never regenerates the incident narrative.
            logger.info(
                "alert_attached",
                alert_id=alert_id,
                incident_id=attachment.incident_id,
            )
        return attached

    async def _claimed(self, group: CorrelationGroup) -> bool:
        mapped = await self.store.find_mapped_alert_ids(group.alert_ids)
        if not mapped:
            return False
        if len(mapped) == len(group.alert_ids):
            logger.debug("group_already_correlated", trigger_rule=group.trigger_rule.value)
        else:
            # Leftover members are picked up by the next run.
            logger.info(
                "group_partially_claimed",
                trigger_rule=group.trigger_rule.value,
                claimed=sorted(mapped),
                alert_ids=group.alert_ids,
            )
        return True

    async def _create_incident(self, group: CorrelationGroup) -> Optional[Incident]:
        if await self._claimed(group):
            return None

        reason = group.reason()
        severity = group.severity
        # Generated outside the locks; the claim is re-checked before writing.
        narrative = await self.narrator.narrate_incident(
            group.alerts,
            reason,
            severity,
            entities=group.matched_entities,
        )
        incident = Incident(
            severity=severity,
            status=IncidentStatus.OPEN,
            reason=reason,
            narrative=narrative.text,
            auto_created=True,
        )

        async with self.locks.hold(group.alert_ids):
            if await self._claimed(group):
                return None
            await self.store.insert_incident(incident, group.alert_ids)

        logger.info(
            "incident_created",
            incident_id=incident.id,
            trigger_rule=reason.trigger_rule,
            severity=severity.value,
            priority=reason.priority.value if reason.priority else None,
            alerts=len(group.alerts),
            ai_used=narrative.ai_used,
        )
        return incident
