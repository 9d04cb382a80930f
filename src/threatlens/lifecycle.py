"""Incident lifecycle: status transitions, activity log and narratives on demand.

States advance Open -> In Progress -> Resolved -> Closed. An automated path
may resolve an Open incident directly; nothing ever moves backwards.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

import structlog

from threatlens.models.enums import ActionType, IncidentStatus
from threatlens.models.incidents import Incident, IncidentActivity
from threatlens.narrative import document as doc
from threatlens.narrative.document import NarrativeDocument
from threatlens.narrative.generator import Narrative, NarrativeGenerator
from threatlens.persistence.repository import IncidentNotFoundError, TriageStore

logger = structlog.get_logger()

# (current, target) -> action recorded for the transition
TRANSITIONS: dict[tuple[IncidentStatus, IncidentStatus], ActionType] = {
    (IncidentStatus.OPEN, IncidentStatus.IN_PROGRESS): ActionType.START_INVESTIGATION,
    (IncidentStatus.IN_PROGRESS, IncidentStatus.RESOLVED): ActionType.RESOLVE,
    (IncidentStatus.RESOLVED, IncidentStatus.CLOSED): ActionType.CLOSE,
}
AUTOMATED_TRANSITIONS: dict[tuple[IncidentStatus, IncidentStatus], ActionType] = {
    (IncidentStatus.OPEN, IncidentStatus.RESOLVED): ActionType.RESOLVE,
}

CONTAINMENT_ACTIONS = frozenset(
    {ActionType.BLOCK_IP, ActionType.DISABLE_USER, ActionType.CONFIRM_CONTAINMENT}
)


class IncidentTransitionError(Exception):
    """Raised for an undefined, skipping or reverse status transition."""

    def __init__(self, incident_id: str, current: IncidentStatus, target: IncidentStatus):
        self.incident_id = incident_id
        self.current = current
        self.target = target
        super().__init__(
            f"Incident {incident_id} cannot move from {current.value} to {target.value}"
        )


def transition_action(
    incident_id: str,
    current: IncidentStatus,
    target: IncidentStatus,
    *,
    automated: bool = False,
) -> ActionType:
    """Validate a transition and return the action it records.

    Raises:
        IncidentTransitionError: If the transition is not defined.
    """
    action = TRANSITIONS.get((current, target))
    if action is None and automated:
        action = AUTOMATED_TRANSITIONS.get((current, target))
    if action is None:
        raise IncidentTransitionError(incident_id, current, target)
    return action


def has_structured_narrative(text: Optional[str], required: tuple[str, ...]) -> bool:
    """Whether stored narrative text already carries every required section."""
    if not text:
        return False
    return NarrativeDocument.parse(text).has_sections(required)


class IncidentLifecycle:
    """Governs incident status changes and the activity log."""

    def __init__(self, store: TriageStore, narrator: NarrativeGenerator):
        self.store = store
        self.narrator = narrator

    async def get_incident(self, incident_id: str) -> Incident:
        """Fetch an incident or raise IncidentNotFoundError."""
        incident = await self.store.get_incident(incident_id)
        if incident is None:
            raise IncidentNotFoundError(incident_id)
        return incident

    async def _log(
        self,
        incident_id: str,
        actor: str,
        action_type: ActionType,
        label: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> IncidentActivity:
        activity = IncidentActivity(
            incident_id=incident_id,
            actor=actor,
            action_type=action_type,
            action_label=label,
            metadata=metadata or {},
        )
        await self.store.insert_activity(activity)
        logger.info(
            "incident_activity_logged",
            incident_id=incident_id,
            action_type=action_type.value,
            actor=actor,
        )
        return activity

    async def start_investigation(self, incident_id: str, actor: str) -> Incident:
        """Move an Open incident to In Progress.

        Generates the incident narrative first if it has none.

        Raises:
            IncidentNotFoundError: If the incident does not exist.
            IncidentTransitionError: If the incident is not Open.
        """
        incident = await self.get_incident(incident_id)
        action = transition_action(incident.id, incident.status, IncidentStatus.IN_PROGRESS)

        narrative = await self.incident_narrative(incident)
        await self.store.update_incident(incident.id, status=IncidentStatus.IN_PROGRESS)
        await self._log(
            incident.id,
            actor,
            action,
            "Investigation started",
            {"started_by": actor},
        )
        logger.info("investigation_started", incident_id=incident.id, actor=actor)
        return incident.model_copy(
            update={"status": IncidentStatus.IN_PROGRESS, "narrative": narrative.text}
        )

    async def resolve(
        self,
        incident_id: str,
        actor: str,
        *,
        automated: bool = False,
        note: Optional[str] = None,
    ) -> Incident:
        """Resolve an incident and stamp its resolved time.

        Args:
            incident_id: Incident to resolve.
            actor: Analyst or system identity.
            automated: Allows resolving straight from Open.
            note: Optional resolution note kept in the activity metadata.

        Raises:
            IncidentNotFoundError: If the incident does not exist.
            IncidentTransitionError: If the incident cannot be resolved from its status.
        """
        incident = await self.get_incident(incident_id)
        action = transition_action(
            incident.id, incident.status, IncidentStatus.RESOLVED, automated=automated
        )

        resolved_at = datetime.now(timezone.utc)
        await self.store.update_incident(
            incident.id, status=IncidentStatus.RESOLVED, resolved_at=resolved_at
        )
        metadata: dict[str, Any] = {"resolved_by": actor, "resolved_at": resolved_at.isoformat()}
        if automated:
            metadata["automated"] = True
        if note:
            metadata["note"] = note
        await self._log(incident.id, actor, action, "Incident resolved", metadata)
        logger.info("incident_resolved", incident_id=incident.id, actor=actor, automated=automated)
        return incident.model_copy(
            update={"status": IncidentStatus.RESOLVED, "resolved_at": resolved_at}
        )

    async def close(self, incident_id: str, actor: str) -> Incident:
        """Administratively close a Resolved incident."""
        incident = await self.get_incident(incident_id)
        action = transition_action(incident.id, incident.status, IncidentStatus.CLOSED)
        await self.store.update_incident(incident.id, status=IncidentStatus.CLOSED)
        await self._log(incident.id, actor, action, "Incident closed", {"closed_by": actor})
        logger.info("incident_closed", incident_id=incident.id, actor=actor)
        return incident.model_copy(update={"status": IncidentStatus.CLOSED})

    async def record_action(
        self,
        incident_id: str,
        actor: str,
        action_type: ActionType,
        label: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> IncidentActivity:
        """Record a containment action. Status is left unchanged.

        Raises:
            ValueError: If ``action_type`` is a status transition.
            IncidentNotFoundError: If the incident does not exist.
        """
        if action_type not in CONTAINMENT_ACTIONS:
            raise ValueError(
                f"{action_type.value} changes incident status; use the lifecycle method instead"
            )
        incident = await self.get_incident(incident_id)
        return await self._log(incident.id, actor, action_type, label, metadata)

    async def incident_narrative(self, incident: Incident) -> Narrative:
        """Return the stored report, generating and storing it if missing.

        A stored narrative counts only if it carries the structured
        sections; anything else is regenerated.
        """
        if has_structured_narrative(incident.narrative, doc.INCIDENT_REQUIRED_SECTIONS):
            return Narrative.from_stored(incident.narrative or "")

        alert_ids = await self.store.fetch_mapped_alert_ids(incident.id)
        alerts = await self.store.fetch_alerts(alert_ids)
        narrative = await self.narrator.narrate_incident(
            alerts,
            incident.reason,
            incident.severity,
            auto_created=incident.auto_created,
            subject_id=incident.id,
        )
        await self.store.update_incident(incident.id, narrative=narrative.text)
        logger.info("incident_narrative_generated", incident_id=incident.id, ai_used=narrative.ai_used)
        return narrative

