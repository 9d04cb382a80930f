"""Triage store: the query and mutation capability the core runs against.

`TriageStore` is the protocol the core depends on; `TriageRepository` is
the relational implementation. Each method is a short, independent unit of
work with its own session.
"""

from __future__ import annotations

from contextlib import AbstractAsyncContextManager, asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Callable, Iterable, Optional, Protocol, Sequence

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from threatlens.models.alerts import Alert
from threatlens.models.enums import AlertStatus, IncidentStatus
from threatlens.models.incidents import CorrelationReason, Incident, IncidentActivity
from threatlens.persistence.database import get_async_session
from threatlens.persistence.models import (
    AlertIncidentMap,
    AlertRecord,
    IncidentActivityRecord,
    IncidentRecord,
)

logger = structlog.get_logger()

UNTRIAGED_STATUSES = (AlertStatus.NEW, AlertStatus.REVIEWED)
ACTIVE_INCIDENT_STATUSES = (IncidentStatus.OPEN, IncidentStatus.IN_PROGRESS)

# Sentinel distinguishing "not given" from an explicit None.
_UNSET: Any = object()


class PersistenceError(Exception):
    """Raised when the store rejects a read or write."""

    def __init__(self, operation: str, message: str):
        self.operation = operation
        super().__init__(f"{operation} failed: {message}")


class AlertNotFoundError(LookupError):
    """Raised when an alert id does not exist."""

    def __init__(self, alert_id: str):
        self.alert_id = alert_id
        super().__init__(f"Alert {alert_id} not found")


class IncidentNotFoundError(LookupError):
    """Raised when an incident id does not exist."""

    def __init__(self, incident_id: str):
        self.incident_id = incident_id
        super().__init__(f"Incident {incident_id} not found")


class TriageStore(Protocol):
    """Storage collaborator used by correlation, lifecycle and the service.

    ``update_alert`` never moves an alert's status backwards.
    """

    async def fetch_untriaged_alerts(self) -> list[Alert]: ...

    async def fetch_open_incidents(self) -> list[Incident]: ...

    async def fetch_mapped_alert_ids(self, incident_id: str) -> list[str]: ...

    async def fetch_alerts(self, alert_ids: Sequence[str]) -> list[Alert]: ...

    async def fetch_alerts_since(self, since: datetime) -> list[Alert]: ...

    async def find_mapped_alert_ids(self, alert_ids: Iterable[str]) -> set[str]: ...

    async def get_alert(self, alert_id: str) -> Optional[Alert]: ...

    async def get_incident(self, incident_id: str) -> Optional[Incident]: ...

    async def insert_alert(self, alert: Alert) -> Alert: ...

    async def insert_incident(self, incident: Incident, alert_ids: Sequence[str]) -> Incident: ...

    async def insert_mapping(self, alert_id: str, incident_id: str) -> bool: ...

    async def update_alert(
        self,
        alert_id: str,
        *,
        status: Optional[AlertStatus] = None,
        risk_score: Optional[int] = None,
        narrative: Optional[str] = None,
        ai_used: Optional[bool] = None,
    ) -> None: ...

    async def update_incident(
        self,
        incident_id: str,
        *,
        status: Optional[IncidentStatus] = None,
        narrative: Optional[str] = None,
        resolved_at: Optional[datetime] = _UNSET,
    ) -> None: ...

    async def insert_activity(self, activity: IncidentActivity) -> IncidentActivity: ...

    async def fetch_activity(self, incident_id: str) -> list[IncidentActivity]: ...

    async def count_incidents(
        self,
        statuses: Sequence[IncidentStatus],
        *,
        resolved_since: Optional[datetime] = None,
    ) -> int: ...


def alert_from_record(record: AlertRecord) -> Alert:
    return Alert(
        id=record.id,
        timestamp=record.timestamp,
        source_system=record.source_system,
        alert_type=record.alert_type,
        severity=record.severity,
        raw_log=record.raw_log or {},
        risk_score=record.risk_score,
        narrative=record.ai_analysis,
        ai_used=record.ai_used,
        status=AlertStatus(record.status),
    )


def incident_from_record(record: IncidentRecord) -> Incident:
    return Incident(
        id=record.id,
        created_at=record.created_at,
        severity=record.severity,
        status=IncidentStatus(record.status),
        reason=CorrelationReason.from_storage(record.incident_reason),
        narrative=record.ai_summary,
        auto_created=record.auto_created,
        resolved_at=record.resolved_at,
    )


def activity_from_record(record: IncidentActivityRecord) -> IncidentActivity:
    return IncidentActivity(
        id=record.id,
        incident_id=record.incident_id,
        actor=record.actor,
        action_type=record.action_type,
        action_label=record.action_label,
        metadata=record.activity_metadata or {},
        created_at=record.created_at,
    )


SessionFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]


class TriageRepository:
    """Relational `TriageStore` over the alerts/incidents schema."""

    def __init__(self, session_factory: SessionFactory = get_async_session):
        """Initialize the repository.

        Args:
            session_factory: Returns an async context manager yielding a
                session that commits on exit.
        """
        self._session_factory = session_factory

    @asynccontextmanager
    async def _session(self, operation: str) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_factory() as session:
                yield session
        except (AlertNotFoundError, IncidentNotFoundError):
            raise
        except SQLAlchemyError as e:
            logger.error("persistence_failed", operation=operation, error=str(e))
            raise PersistenceError(operation, str(e)) from e

    # Queries

    async def fetch_untriaged_alerts(self) -> list[Alert]:
        """Alerts in New or Reviewed status, oldest first."""
        async with self._session("fetch_untriaged_alerts") as session:
            result = await session.execute(
                select(AlertRecord)
                .where(AlertRecord.status.in_([s.value for s in UNTRIAGED_STATUSES]))
                .order_by(AlertRecord.timestamp.asc())
            )
            return [alert_from_record(r) for r in result.scalars().all()]

    async def fetch_open_incidents(self) -> list[Incident]:
        """Incidents in Open or In Progress status, oldest first."""
        async with self._session("fetch_open_incidents") as session:
            result = await session.execute(
                select(IncidentRecord)
                .where(IncidentRecord.status.in_([s.value for s in ACTIVE_INCIDENT_STATUSES]))
                .order_by(IncidentRecord.created_at.asc())
            )
            return [incident_from_record(r) for r in result.scalars().all()]

    async def fetch_mapped_alert_ids(self, incident_id: str) -> list[str]:
        async with self._session("fetch_mapped_alert_ids") as session:
            result = await session.execute(
                select(AlertIncidentMap.alert_id)
                .where(AlertIncidentMap.incident_id == incident_id)
                .order_by(AlertIncidentMap.created_at.asc())
            )
            return list(result.scalars().all())

    async def fetch_alerts(self, alert_ids: Sequence[str]) -> list[Alert]:
        if not alert_ids:
            return []
        async with self._session("fetch_alerts") as session:
            result = await session.execute(
                select(AlertRecord)
                .where(AlertRecord.id.in_(list(alert_ids)))
                .order_by(AlertRecord.timestamp.asc())
            )
            return [alert_from_record(r) for r in result.scalars().all()]

    async def fetch_alerts_since(self, since: datetime) -> list[Alert]:
        async with self._session("fetch_alerts_since") as session:
            result = await session.execute(
                select(AlertRecord)
                .where(AlertRecord.created_at >= since)
                .order_by(AlertRecord.timestamp.asc())
            )
            return [alert_from_record(r) for r in result.scalars().all()]

    async def find_mapped_alert_ids(self, alert_ids: Iterable[str]) -> set[str]:
        """Subset of ``alert_ids`` already mapped to any incident."""
        ids = list(alert_ids)
        if not ids:
            return set()
        async with self._session("find_mapped_alert_ids") as session:
            result = await session.execute(
                select(AlertIncidentMap.alert_id).where(AlertIncidentMap.alert_id.in_(ids))
            )
            return set(result.scalars().all())

    async def get_alert(self, alert_id: str) -> Optional[Alert]:
        async with self._session("get_alert") as session:
            record = await session.get(AlertRecord, alert_id)
            return alert_from_record(record) if record else None

    async def get_incident(self, incident_id: str) -> Optional[Incident]:
        async with self._session("get_incident") as session:
            record = await session.get(IncidentRecord, incident_id)
            return incident_from_record(record) if record else None

    async def fetch_activity(self, incident_id: str) -> list[IncidentActivity]:
        async with self._session("fetch_activity") as session:
            result = await session.execute(
                select(IncidentActivityRecord)
                .where(IncidentActivityRecord.incident_id == incident_id)
                .order_by(IncidentActivityRecord.created_at.asc())
            )
            return [activity_from_record(r) for r in result.scalars().all()]

    async def count_incidents(
        self,
        statuses: Sequence[IncidentStatus],
        *,
        resolved_since: Optional[datetime] = None,
    ) -> int:
        async with self._session("count_incidents") as session:
            query = select(func.count()).select_from(IncidentRecord).where(
                IncidentRecord.status.in_([s.value for s in statuses])
            )
            if resolved_since is not None:
                query = query.where(IncidentRecord.resolved_at >= resolved_since)
            result = await session.execute(query)
            return int(result.scalar_one())

    # Mutations

    async def insert_alert(self, alert: Alert) -> Alert:
        async with self._session("insert_alert") as session:
            session.add(
                AlertRecord(
                    id=alert.id,
                    timestamp=alert.timestamp,
                    source_system=alert.source_system,
                    alert_type=alert.alert_type,
                    severity=alert.severity.value,
                    raw_log=alert.raw_log,
                    risk_score=alert.risk_score,
                    ai_analysis=alert.narrative,
                    ai_used=alert.ai_used,
                    status=alert.status.value,
                )
            )
            await session.flush()
        logger.info("alert_inserted", alert_id=alert.id, alert_type=alert.alert_type)
        return alert

    async def insert_incident(self, incident: Incident, alert_ids: Sequence[str]) -> Incident:
        """Insert an incident, map its alerts and mark them Correlated.

        All of it commits or none of it does.
        """
        async with self._session("insert_incident") as session:
            session.add(
                IncidentRecord(
                    id=incident.id,
                    severity=incident.severity.value,
                    status=incident.status.value,
                    incident_reason=incident.reason.to_storage(),
                    ai_summary=incident.narrative,
                    auto_created=incident.auto_created,
                    created_at=incident.created_at,
                    resolved_at=incident.resolved_at,
                )
            )
            await session.flush()
            for alert_id in alert_ids:
                session.add(AlertIncidentMap(alert_id=alert_id, incident_id=incident.id))
            if alert_ids:
                await session.execute(
                    update(AlertRecord)
                    .where(AlertRecord.id.in_(list(alert_ids)))
                    .values(status=AlertStatus.CORRELATED.value)
                )
            await session.flush()
        return incident

    async def insert_mapping(self, alert_id: str, incident_id: str) -> bool:
        """Map an alert to an incident and mark it Correlated.

        Returns:
            False when the pair is already mapped; the unique constraint
            violation is treated as "already attached", not an error.
        """
        try:
            async with self._session_factory() as session:
                session.add(AlertIncidentMap(alert_id=alert_id, incident_id=incident_id))
                await session.flush()
                await session.execute(
                    update(AlertRecord)
                    .where(AlertRecord.id == alert_id)
                    .values(status=AlertStatus.CORRELATED.value)
                )
        except IntegrityError:
            logger.debug("mapping_already_exists", alert_id=alert_id, incident_id=incident_id)
            return False
        except SQLAlchemyError as e:
            logger.error("persistence_failed", operation="insert_mapping", error=str(e))
            raise PersistenceError("insert_mapping", str(e)) from e
        return True

    async def update_alert(
        self,
        alert_id: str,
        *,
        status: Optional[AlertStatus] = None,
        risk_score: Optional[int] = None,
        narrative: Optional[str] = None,
        ai_used: Optional[bool] = None,
    ) -> None:
        """Update an alert's triage fields.

        ``status`` only ever advances: the row is locked and the stored
        status is compared first, so a Correlated alert written by a
        concurrent correlation run is never moved back to Reviewed.
        """
        async with self._session("update_alert") as session:
            record = await session.get(AlertRecord, alert_id, with_for_update=True)
            if record is None:
                raise AlertNotFoundError(alert_id)
            if status is not None:
                record.status = AlertStatus(record.status).advance(status).value
            if risk_score is not None:
                record.risk_score = risk_score
            if narrative is not None:
                record.ai_analysis = narrative
            if ai_used is not None:
                record.ai_used = ai_used
            session.add(record)

    async def update_incident(
        self,
        incident_id: str,
        *,
        status: Optional[IncidentStatus] = None,
        narrative: Optional[str] = None,
        resolved_at: Optional[datetime] = _UNSET,
    ) -> None:
        async with self._session("update_incident") as session:
            record = await session.get(IncidentRecord, incident_id)
            if record is None:
                raise IncidentNotFoundError(incident_id)
            if status is not None:
                record.status = status.value
            if narrative is not None:
                record.ai_summary = narrative
            if resolved_at is not _UNSET:
                record.resolved_at = resolved_at
            session.add(record)

    async def insert_activity(self, activity: IncidentActivity) -> IncidentActivity:
        async with self._session("insert_activity") as session:
            session.add(
                IncidentActivityRecord(
                    id=activity.id,
                    incident_id=activity.incident_id,
                    actor=activity.actor,
                    action_type=activity.action_type.value,
                    action_label=activity.action_label,
                    activity_metadata=activity.metadata,
                    created_at=activity.created_at,
                )
            )
            await session.flush()
        return activity
