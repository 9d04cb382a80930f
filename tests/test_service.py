"""Tests for the triage service, health summary and scheduler."""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from threatlens.config import Config, CorrelationConfig
from threatlens.correlation.engine import CorrelationResult
from threatlens.health import build_health_summary
from threatlens.models.alerts import Alert
from threatlens.models.enums import ActionType, AlertStatus, IncidentStatus, Severity
from threatlens.models.incidents import Incident
from threatlens.narrative import document as doc
from threatlens.narrative.document import RULE_BASED_FOOTER
from threatlens.persistence.repository import AlertNotFoundError
from threatlens.scheduler import CorrelationScheduler
from threatlens.service import TriageService

# Same instant as the make_alert base time.
BASE_TIME = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def service(store, fallback_narrator) -> TriageService:
    return TriageService(store, narrator=fallback_narrator)


async def _store_burst(store, make_alert, count=3):
    alerts = [make_alert(offset=i * 30, source_ip="198.51.100.9") for i in range(count)]
    for alert in alerts:
        await store.insert_alert(alert)
    return alerts


class TestAnalyzeAlert:
    """Tests for TriageService.analyze_alert."""

    async def test_scores_narrates_and_reviews(self, service, store, make_alert):
        """Test that analysis stores score, narrative and Reviewed status."""
        alert = make_alert(alert_type="Brute Force Attempt", severity=Severity.HIGH, source_ip="203.0.113.5")
        await store.insert_alert(alert)

        analysis = await service.analyze_alert(alert.id, correlate=False)

        stored = store.alerts[alert.id]
        assert stored.status == AlertStatus.REVIEWED
        assert stored.risk_score == analysis.metrics.risk_score == 65
        assert stored.narrative == analysis.narrative.text
        assert stored.ai_used is False
        assert stored.severity == Severity.HIGH
        assert analysis.correlation is None
        assert analysis.alert.status == AlertStatus.REVIEWED

    async def test_correlated_alert_never_regresses(self, service, store, make_alert):
        alert = make_alert(status=AlertStatus.CORRELATED)
        await store.insert_alert(alert)

        await service.analyze_alert(alert.id, correlate=False)

        assert store.alerts[alert.id].status == AlertStatus.CORRELATED

    async def test_correlation_during_narration_is_kept(
        self, service, store, fallback_narrator, make_alert
    ):
        """Test that a batch run claiming the alert mid-analysis is not undone."""
        alert = make_alert(source_ip="198.51.100.9")
        await store.insert_alert(alert)
        narrate = fallback_narrator.narrate_alert

        async def narrate_while_correlating(subject, metrics=None):
            await store.insert_mapping(subject.id, "incident-1")
            return await narrate(subject, metrics)

        fallback_narrator.narrate_alert = narrate_while_correlating

        analysis = await service.analyze_alert(alert.id, correlate=False)

        assert store.alerts[alert.id].status == AlertStatus.CORRELATED
        assert analysis.alert.status == AlertStatus.CORRELATED
        assert store.alerts[alert.id].risk_score == analysis.metrics.risk_score
        assert alert.id not in {a.id for a in await store.fetch_untriaged_alerts()}

    async def test_third_alert_triggers_incident(self, service, store, make_alert):
        """Test event-triggered correlation after analysis."""
        alerts = await _store_burst(store, make_alert)

        analysis = await service.analyze_alert(alerts[-1].id, correlate=True)

        assert analysis.correlation.incidents_created == 1
        assert len(store.incidents) == 1
        assert all(store.alerts[a.id].status == AlertStatus.CORRELATED for a in alerts)

    async def test_correlation_defaults_to_configured_behaviour(self, store, fallback_narrator, make_alert):
        service = TriageService(store, narrator=fallback_narrator, correlate_on_analysis=False)
        alerts = await _store_burst(store, make_alert)

        analysis = await service.analyze_alert(alerts[-1].id)

        assert analysis.correlation is None
        assert store.incidents == {}

    async def test_missing_alert(self, service):
        with pytest.raises(AlertNotFoundError):
            await service.analyze_alert("missing")

    async def test_ingest_resets_triage_fields(self, service, store, make_alert):
        alert = make_alert(status=AlertStatus.REVIEWED, risk_score=90)
        stored = await service.ingest_alert(alert)
        assert stored.status == AlertStatus.NEW
        assert stored.risk_score is None
        assert store.alerts[alert.id].status == AlertStatus.NEW

    def test_compute_risk_metrics_is_pure(self, service, store, make_alert):
        metrics = service.compute_risk_metrics(make_alert(severity=Severity.CRITICAL))
        assert metrics.risk_score == 80
        assert store.alerts == {}


class TestNarratives:
    """Tests for cached narrative retrieval."""

    async def test_alert_narrative_generated_then_cached(self, service, store, make_alert):
        """Test the first call stores the analysis and the second reuses it."""
        alert = make_alert()
        await store.insert_alert(alert)

        first = await service.alert_narrative(alert.id)
        second = await service.alert_narrative(alert.id)

        assert not first.cached
        assert second.cached
        assert second.text == first.text
        assert store.alerts[alert.id].status == AlertStatus.NEW
        assert store.alerts[alert.id].risk_score == 25

    async def test_free_text_alert_narrative_is_replaced(self, service, store, make_alert):
        alert = make_alert().model_copy(update={"narrative": "analyst scribble"})
        await store.insert_alert(alert)

        narrative = await service.alert_narrative(alert.id)

        assert not narrative.cached
        assert store.alerts[alert.id].narrative.endswith(RULE_BASED_FOOTER)

    async def test_generate_narrative_dispatches_on_subject(self, service, store, make_alert):
        alerts = await _store_burst(store, make_alert)
        result = await service.run_correlation()
        incident = store.incidents[result.incident_ids[0]]

        incident_narrative = await service.generate_narrative(incident)
        alert_narrative = await service.generate_narrative(alerts[0])

        assert incident_narrative.cached
        assert incident_narrative.sections[doc.TRIGGER_RULE] == "ip_correlation"
        assert doc.WHAT_HAPPENED in alert_narrative.sections


class TestLifecycleFacade:
    """Tests for lifecycle operations through the service."""

    async def test_full_lifecycle(self, service, store, make_alert):
        await _store_burst(store, make_alert)
        incident_id = (await service.run_correlation()).incident_ids[0]

        await service.start_investigation(incident_id, "analyst1")
        await service.log_action(incident_id, "analyst1", ActionType.BLOCK_IP, "Blocked 198.51.100.9")
        await service.resolve_incident(incident_id, "analyst1")
        await service.close_incident(incident_id, "admin")

        activity = await service.incident_activity(incident_id)
        assert [a.action_type for a in activity] == [
            ActionType.START_INVESTIGATION,
            ActionType.BLOCK_IP,
            ActionType.RESOLVE,
            ActionType.CLOSE,
        ]
        assert store.incidents[incident_id].status == IncidentStatus.CLOSED

    def test_from_config(self, store):
        config = Config(correlation=CorrelationConfig(trigger_on_new_alert=False, burst_min_alerts=4))
        service = TriageService.from_config(config, store)
        assert service.engine.config.burst_min_alerts == 4
        assert not service.correlate_on_analysis
        assert service.narrator.scorer is service.scorer


class TestHealthSummary:
    """Tests for the daily health summary."""

    async def test_counts_window(self, store, make_alert):
        """Test that only alerts inside the window are counted."""
        await store.insert_alert(make_alert(severity=Severity.CRITICAL, source_system="EDR"))
        await store.insert_alert(make_alert(offset=60, status=AlertStatus.CORRELATED))
        await store.insert_alert(
            make_alert(offset=120, status=AlertStatus.REVIEWED).model_copy(update={"ai_used": True})
        )
        await store.insert_alert(make_alert(offset=-2 * 86400))
        store.incidents["open"] = Incident(id="open")
        store.incidents["done"] = Incident(
            id="done", status=IncidentStatus.RESOLVED, resolved_at=BASE_TIME
        )
        store.incidents["old"] = Incident(
            id="old", status=IncidentStatus.CLOSED, resolved_at=BASE_TIME - timedelta(days=3)
        )

        summary = await build_health_summary(store, now=BASE_TIME + timedelta(hours=1))

        assert summary.total_alerts == 3
        assert summary.new_alerts == 1
        assert summary.critical_alerts == 1
        assert summary.correlated_alerts == 1
        assert summary.ai_analyzed_alerts == 1
        assert summary.open_incidents == 1
        assert summary.resolved_incidents == 1
        assert summary.severity_distribution == {
            "Low": 0,
            "Medium": 2,
            "High": 0,
            "Critical": 1,
        }
        assert summary.top_sources == [("IDS", 2), ("EDR", 1)]

    async def test_empty_store(self, store):
        summary = await build_health_summary(store, now=BASE_TIME)
        assert summary.total_alerts == 0
        assert summary.top_sources == []
        assert set(summary.severity_distribution) == {s.value for s in Severity}


class TestCorrelationScheduler:
    """Tests for CorrelationScheduler."""

    @pytest.fixture
    def scheduler(self, service) -> CorrelationScheduler:
        return CorrelationScheduler(service, CorrelationConfig(interval_seconds=60))

    async def test_run_once(self, scheduler, store, make_alert):
        await _store_burst(store, make_alert)
        result = await scheduler.run_once()
        assert result.incidents_created == 1

    async def test_run_once_swallows_failure(self, scheduler):
        """Test that a failing run is logged and the loop survives."""
        scheduler.service.run_correlation = AsyncMock(side_effect=RuntimeError("db down"))
        assert await scheduler.run_once() is None

    async def test_run_continuous_stops_on_event(self, scheduler):
        scheduler.service.run_correlation = AsyncMock(return_value=CorrelationResult())
        stop_event = asyncio.Event()

        task = asyncio.create_task(scheduler.run_continuous(stop_event))
        await asyncio.sleep(0.05)
        assert scheduler.is_running
        stop_event.set()
        await asyncio.wait_for(task, timeout=1)

        assert not scheduler.is_running
        scheduler.service.run_correlation.assert_awaited_once()

    async def test_notify_new_alert(self, scheduler, store, make_alert):
        """Test that a new alert is analysed and correlated in the background."""
        alerts = await _store_burst(store, make_alert)

        analysis = await scheduler.notify_new_alert(alerts[-1].id)

        assert analysis.correlation.incidents_created == 1
        await scheduler.drain()
        assert scheduler.pending_tasks == 0

    async def test_notify_missing_alert_is_logged(self, scheduler):
        assert await scheduler.notify_new_alert("missing") is None

    async def test_ingested_alert_is_analysed(self, scheduler, make_alert):
        """Test ingest followed by background analysis."""
        alert: Alert = await scheduler.service.ingest_alert(make_alert(username="svc_backup"))
        analysis = await scheduler.notify_new_alert(alert.id)
        assert analysis.alert.status == AlertStatus.REVIEWED
