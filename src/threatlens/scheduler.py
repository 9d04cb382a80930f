"""Periodic and event-triggered correlation runner."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Optional

import structlog

from threatlens.config import CorrelationConfig
from threatlens.correlation.engine import CorrelationResult
from threatlens.service import AlertAnalysis, TriageService

logger = structlog.get_logger()

HEALTH_SUMMARY_INTERVAL = timedelta(hours=24)


class CorrelationScheduler:
    """Runs batch correlation on an interval and analyses new alerts as they arrive.

    Batch runs and new-alert tasks may overlap; the engine's per-alert
    re-checks keep them from claiming the same alert twice.
    """

    def __init__(
        self,
        service: TriageService,
        config: Optional[CorrelationConfig] = None,
    ):
        """Initialize the scheduler.

        Args:
            service: Triage service to drive.
            config: Correlation settings. Defaults to the engine's config.
        """
        self.service = service
        self.config = config or service.engine.config
        self.interval_seconds = self.config.interval_seconds

        self._running = False
        self._run_count = 0
        self._last_run_time: Optional[datetime] = None
        self._last_health_time: Optional[datetime] = None
        self._tasks: set[asyncio.Task] = set()

    async def run_once(self) -> Optional[CorrelationResult]:
        """Run one batch correlation. Failures are logged, never raised."""
        self._run_count += 1
        self._last_run_time = datetime.now(timezone.utc)
        try:
            return await self.service.run_correlation()
        except Exception as e:
            logger.error("scheduled_correlation_failed", run_count=self._run_count, error=str(e))
            return None

    async def _maybe_report_health(self) -> None:
        now = datetime.now(timezone.utc)
        if self._last_health_time and now - self._last_health_time < HEALTH_SUMMARY_INTERVAL:
            return
        self._last_health_time = now
        try:
            await self.service.health_summary()
        except Exception as e:
            logger.error("health_summary_failed", error=str(e))

    async def run_continuous(self, stop_event: Optional[asyncio.Event] = None) -> None:
        """Run batch correlation every ``interval_seconds`` until stopped.

        Args:
            stop_event: Optional event to signal stop.
        """
        stop_event = stop_event or asyncio.Event()
        self._running = True
        logger.info(
            "starting_correlation_scheduler",
            interval=self.interval_seconds,
            trigger_on_new_alert=self.config.trigger_on_new_alert,
        )

        try:
            while self._running and not stop_event.is_set():
                await self.run_once()
                await self._maybe_report_health()

                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=self.interval_seconds)
                except asyncio.TimeoutError:
                    pass

        except asyncio.CancelledError:
            logger.info("correlation_scheduler_cancelled")
        finally:
            self._running = False
            await self.drain()
            logger.info("correlation_scheduler_stopped", runs=self._run_count)

    def stop(self) -> None:
        """Stop the continuous loop after the current run."""
        self._running = False

    def notify_new_alert(self, alert_id: str) -> asyncio.Task:
        """Schedule analysis of a newly stored alert.

        Correlation follows the analysis when ``trigger_on_new_alert`` is set.
        Must be called from a running event loop.

        Returns:
            The background task.
        """
        task = asyncio.create_task(self._analyze(alert_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.debug("new_alert_scheduled", alert_id=alert_id, pending=len(self._tasks))
        return task

    async def _analyze(self, alert_id: str) -> Optional[AlertAnalysis]:
        try:
            return await self.service.analyze_alert(
                alert_id, correlate=self.config.trigger_on_new_alert
            )
        except Exception as e:
            logger.error("new_alert_analysis_failed", alert_id=alert_id, error=str(e))
            return None

    async def drain(self) -> None:
        """Wait for pending new-alert tasks."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def pending_tasks(self) -> int:
        return len(self._tasks)
