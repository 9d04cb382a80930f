"""Unit tests for the relational triage repository."""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.pool import NullPool

from threatlens.config import DatabaseConfig
from threatlens.models.enums import ActionType, AlertStatus, IncidentStatus, Priority, Severity
from threatlens.models.incidents import CorrelationReason, Incident, IncidentActivity
from threatlens.persistence import database
from threatlens.persistence.models import (
    AlertIncidentMap,
    AlertRecord,
    IncidentActivityRecord,
    IncidentRecord,
)
from threatlens.persistence.repository import (
    AlertNotFoundError,
    IncidentNotFoundError,
    PersistenceError,
    TriageRepository,
    activity_from_record,
    alert_from_record,
    incident_from_record,
)

NOW = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def repository(mock_session) -> TriageRepository:
    """Repository whose sessions all yield the mock session."""

    @asynccontextmanager
    async def session_factory():
        yield mock_session

    return TriageRepository(session_factory)


def _scalars(mock_session, values):
    result = MagicMock()
    result.scalars.return_value.all.return_value = values
    mock_session.execute.return_value = result


class TestConverters:
    """Tests for record to domain conversion."""

    def test_alert_from_record(self):
        record = AlertRecord(
            id="a-1",
            timestamp=NOW,
            source_system="Firewall",
            alert_type="Port Scan",
            severity="High",
            raw_log={"source_ip": "203.0.113.7"},
            risk_score=65,
            ai_analysis="WHAT HAPPENED: x",
            ai_used=True,
            status="Reviewed",
        )

        alert = alert_from_record(record)

        assert alert.severity == Severity.HIGH
        assert alert.status == AlertStatus.REVIEWED
        assert alert.entities.ip == "203.0.113.7"
        assert alert.narrative == "WHAT HAPPENED: x"
        assert alert.ai_used

    def test_alert_from_record_unknown_severity(self):
        record = AlertRecord(id="a-2", timestamp=NOW, severity="Informational", raw_log=None)
        alert = alert_from_record(record)
        assert alert.severity == Severity.MEDIUM
        assert alert.raw_log == {}

    def test_incident_from_record_parses_reason(self):
        record = IncidentRecord(
            id="i-1",
            severity="Critical",
            status="In Progress",
            incident_reason=(
                "3 alerts from IP 198.51.100.9 within 2.0 minutes | "
                "Drivers: Shared Source IP, Multi-vector Alert Pattern | "
                "Rule: ip_correlation | Priority: P1"
            ),
            auto_created=True,
            created_at=NOW,
        )

        incident = incident_from_record(record)

        assert incident.status == IncidentStatus.IN_PROGRESS
        assert incident.reason.trigger_rule == "ip_correlation"
        assert incident.reason.drivers == ["Shared Source IP", "Multi-vector Alert Pattern"]
        assert incident.priority == Priority.P1

    def test_incident_from_record_free_text_reason(self):
        record = IncidentRecord(id="i-2", incident_reason="Analyst grouped these", created_at=NOW)
        reason = incident_from_record(record).reason
        assert reason.summary == "Analyst grouped these"
        assert reason.drivers == ["Auto-correlated"]
        assert reason.trigger_rule == "auto_correlation"
        assert reason.priority is None

    def test_activity_from_record(self):
        record = IncidentActivityRecord(
            id="act-1",
            incident_id="i-1",
            actor="analyst1",
            action_type="block_ip",
            action_label="Blocked 203.0.113.7",
            activity_metadata=None,
            created_at=NOW,
        )
        activity = activity_from_record(record)
        assert activity.action_type == ActionType.BLOCK_IP
        assert activity.metadata == {}


class TestTriageRepository:
    """Tests for TriageRepository against a mocked session."""

    async def test_fetch_untriaged_alerts(self, repository, mock_session):
        _scalars(mock_session, [AlertRecord(id="a-1", timestamp=NOW, status="New")])

        alerts = await repository.fetch_untriaged_alerts()

        assert [a.id for a in alerts] == ["a-1"]
        mock_session.execute.assert_awaited_once()

    async def test_fetch_alerts_empty_skips_query(self, repository, mock_session):
        assert await repository.fetch_alerts([]) == []
        assert await repository.find_mapped_alert_ids([]) == set()
        mock_session.execute.assert_not_awaited()

    async def test_find_mapped_alert_ids(self, repository, mock_session):
        _scalars(mock_session, ["a-1"])
        assert await repository.find_mapped_alert_ids(["a-1", "a-2"]) == {"a-1"}

    async def test_get_alert_missing(self, repository, mock_session):
        mock_session.get.return_value = None
        assert await repository.get_alert("missing") is None

    async def test_insert_incident_maps_and_correlates(self, repository, mock_session):
        """Test that the incident and every mapping are added in one session."""
        incident = Incident(
            severity=Severity.HIGH,
            reason=CorrelationReason(summary="s", drivers=["Shared Source IP"], trigger_rule="ip_correlation"),
            auto_created=True,
        )

        await repository.insert_incident(incident, ["a-1", "a-2"])

        added = [call.args[0] for call in mock_session.add.call_args_list]
        assert isinstance(added[0], IncidentRecord)
        assert added[0].incident_reason == "s | Drivers: Shared Source IP | Rule: ip_correlation"
        maps = [a for a in added if isinstance(a, AlertIncidentMap)]
        assert [(m.alert_id, m.incident_id) for m in maps] == [
            ("a-1", incident.id),
            ("a-2", incident.id),
        ]
        mock_session.execute.assert_awaited_once()

    async def test_insert_mapping_duplicate_returns_false(self, repository, mock_session):
        """Test that the unique constraint means 'already attached'."""
        mock_session.flush.side_effect = IntegrityError("INSERT", {}, Exception("duplicate key"))

        assert await repository.insert_mapping("a-1", "i-1") is False

    async def test_insert_mapping(self, repository, mock_session):
        assert await repository.insert_mapping("a-1", "i-1") is True
        mock_session.execute.assert_awaited_once()

    async def test_database_error_becomes_persistence_error(self, repository, mock_session):
        mock_session.execute.side_effect = OperationalError("SELECT", {}, Exception("connection lost"))

        with pytest.raises(PersistenceError) as exc_info:
            await repository.fetch_open_incidents()
        assert exc_info.value.operation == "fetch_open_incidents"

    async def test_update_alert_missing(self, repository, mock_session):
        mock_session.get.return_value = None
        with pytest.raises(AlertNotFoundError):
            await repository.update_alert("missing", status=AlertStatus.REVIEWED)

    async def test_update_alert_sets_only_given_fields(self, repository, mock_session):
        record = AlertRecord(id="a-1", timestamp=NOW, status="New", ai_analysis="old")
        mock_session.get.return_value = record

        await repository.update_alert("a-1", risk_score=70)

        assert record.risk_score == 70
        assert record.status == "New"
        assert record.ai_analysis == "old"

    async def test_update_alert_status_never_regresses(self, repository, mock_session):
        """Test that a row correlated by another run stays Correlated."""
        record = AlertRecord(id="a-1", timestamp=NOW, status="Correlated")
        mock_session.get.return_value = record

        await repository.update_alert("a-1", status=AlertStatus.REVIEWED, risk_score=40)

        assert record.status == "Correlated"
        assert record.risk_score == 40
        assert mock_session.get.call_args.kwargs["with_for_update"] is True

    async def test_update_alert_advances_status(self, repository, mock_session):
        record = AlertRecord(id="a-1", timestamp=NOW, status="New")
        mock_session.get.return_value = record

        await repository.update_alert("a-1", status=AlertStatus.REVIEWED)

        assert record.status == "Reviewed"

    async def test_update_incident_missing(self, repository, mock_session):
        mock_session.get.return_value = None
        with pytest.raises(IncidentNotFoundError):
            await repository.update_incident("missing", status=IncidentStatus.RESOLVED)

    async def test_update_incident_resolved_at(self, repository, mock_session):
        record = IncidentRecord(id="i-1", status="In Progress", created_at=NOW)
        mock_session.get.return_value = record

        await repository.update_incident("i-1", status=IncidentStatus.RESOLVED, resolved_at=NOW)

        assert record.status == "Resolved"
        assert record.resolved_at == NOW

    async def test_insert_activity(self, repository, mock_session):
        activity = IncidentActivity(
            incident_id="i-1",
            actor="analyst1",
            action_type=ActionType.START_INVESTIGATION,
            action_label="Investigation started",
            metadata={"started_by": "analyst1"},
        )

        await repository.insert_activity(activity)

        record = mock_session.add.call_args.args[0]
        assert record.action_type == "start_investigation"
        assert record.activity_metadata == {"started_by": "analyst1"}

    async def test_count_incidents(self, repository, mock_session):
        result = MagicMock()
        result.scalar_one.return_value = 4
        mock_session.execute.return_value = result

        assert await repository.count_incidents([IncidentStatus.OPEN]) == 4


class TestDatabase:
    """Tests for engine configuration."""

    def test_configured_database_wins(self, monkeypatch):
        configured = DatabaseConfig(url="postgresql+asyncpg://soc@db/triage")
        monkeypatch.setattr(database, "_database", None)

        database.configure_database(configured)

        assert database.get_database_config() is configured

    def test_unpooled_by_default(self):
        options = database.engine_options(DatabaseConfig())
        assert options == {"echo": False, "poolclass": NullPool}

    def test_pool_size(self):
        options = database.engine_options(DatabaseConfig(pool_size=5, echo=True))
        assert options == {"echo": True, "pool_size": 5, "pool_pre_ping": True}

    async def test_close_without_engine(self, monkeypatch):
        monkeypatch.setattr(database, "_engine", None)
        await database.close_db()
        assert database._engine is None
