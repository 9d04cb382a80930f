"""Main entry point for ThreatLens."""

from __future__ import annotations

import asyncio
import json
import logging
import signal
import sys
from pathlib import Path
from typing import Any, Optional

import structlog
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from threatlens import __version__
from threatlens.config import Config, load_config
from threatlens.models.alerts import Alert
from threatlens.models.metrics import RiskMetrics
from threatlens.narrative.generator import NarrativeGenerator
from threatlens.persistence import close_db, configure_database, init_db
from threatlens.scheduler import CorrelationScheduler
from threatlens.scoring.risk import RiskScorer
from threatlens.service import TriageService

logger = structlog.get_logger()
console = Console()


def configure_logging(config: Config, debug: bool = False) -> None:
    """Configure stdlib logging and structlog from the loaded config."""
    level = logging.DEBUG if debug else getattr(logging, config.log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[logging.StreamHandler(sys.stderr)],
    )

    renderer: Any
    if config.log_format == "console":
        renderer = structlog.dev.ConsoleRenderer()
    else:
        renderer = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


class ThreatLensRunner:
    """Long-running process: periodic correlation plus the daily health summary."""

    def __init__(self, config: Config):
        self.config = config
        self.service: Optional[TriageService] = None
        self.scheduler: Optional[CorrelationScheduler] = None
        self._stop_event = asyncio.Event()
        self._db_ready = False

    async def start(self) -> None:
        """Connect to the database and run the scheduler until stopped."""
        logger.info("starting_threatlens", version=__version__)
        self._display_banner()

        try:
            console.print("[yellow]Connecting to PostgreSQL database...[/yellow]")
            configure_database(self.config.database)
            await init_db()
            self._db_ready = True
            console.print("[green]Database connected[/green]")

            self.service = TriageService.from_config(self.config)
            providers = [p.name for p in self.service.narrator.alert_providers]
            if providers:
                console.print(f"[dim]Narrative providers: {', '.join(providers)}[/dim]")
            else:
                console.print("[yellow]No narrative providers configured - rule-based narratives only[/yellow]")

            self.scheduler = CorrelationScheduler(self.service, self.config.correlation)
            console.print(
                f"[green]Correlating every {self.config.correlation.interval_seconds}s[/green]"
            )
            await self.scheduler.run_continuous(self._stop_event)

        except KeyboardInterrupt:
            logger.info("keyboard_interrupt_received")
        except Exception as e:
            logger.error("runner_error", error=str(e))
            raise
        finally:
            await self.stop()

    async def stop(self) -> None:
        """Stop the runner gracefully."""
        logger.info("stopping_threatlens")
        self._stop_event.set()
        if self.scheduler:
            self.scheduler.stop()
            await self.scheduler.drain()

        if self._db_ready:
            console.print("[yellow]Closing database connection...[/yellow]")
            await close_db()
            self._db_ready = False

        console.print("[green]Shutdown complete.[/green]")

    def _display_banner(self) -> None:
        c = self.config.correlation
        console.print(
            Panel(
                f"[bold]ThreatLens[/bold] v{__version__}\n\n"
                f"Correlation interval: {c.interval_seconds}s\n"
                f"Burst window: {c.burst_window_seconds}s / {c.burst_min_alerts} alerts\n"
                f"Risk threshold: {c.risk_threshold}\n"
                f"Correlate on new alert: {'yes' if c.trigger_on_new_alert else 'no'}",
                border_style="cyan",
            )
        )


def _metrics_table(alert: Alert, metrics: RiskMetrics) -> Table:
    table = Table(title=f"{alert.alert_type or 'Security Alert'} ({alert.severity.value})")
    table.add_column("Metric", style="cyan")
    table.add_column("Value")
    table.add_row("Risk score", f"{metrics.risk_score}/100")
    table.add_row("Adjusted severity", metrics.adjusted_severity.value)
    table.add_row("Asset criticality", metrics.asset_criticality.value)
    table.add_row("Impact", metrics.impact_note)
    table.add_row("Confidence", f"{metrics.confidence_score}% - {metrics.confidence_interpretation}")
    table.add_row(
        "False positive",
        f"{metrics.false_positive_likelihood.value} - {metrics.false_positive_rationale}",
    )
    table.add_row("Signals", ", ".join(metrics.entity_flags) or "None")
    table.add_row("Guidance", "\n".join(metrics.analyst_guidance))
    return table


def _load_alerts(path: Path) -> list[Alert]:
    document = json.loads(path.read_text())
    items = document if isinstance(document, list) else [document]
    return [Alert.model_validate(item) for item in items]


async def _score(config: Config, path: Path, narrate: bool) -> None:
    scorer = RiskScorer()
    narrator = NarrativeGenerator.from_config(config.narrative, scorer)
    for alert in _load_alerts(path):
        metrics = scorer.score(alert)
        console.print(_metrics_table(alert, metrics))
        if narrate:
            narrative = await narrator.narrate_alert(alert, metrics)
            console.print(Panel(narrative.text, title="Analysis", border_style="green"))


async def _correlate(config: Config) -> None:
    configure_database(config.database)
    try:
        service = TriageService.from_config(config)
        result = await service.run_correlation()
    finally:
        await close_db()

    table = Table(title="Correlation run")
    table.add_column("Total", style="cyan")
    table.add_column("Count", justify="right")
    table.add_row("Incidents created", str(result.incidents_created))
    table.add_row("Alerts attached", str(result.alerts_attached))
    table.add_row("Alerts processed", str(result.alerts_processed))
    table.add_row("Failures", str(result.failures))
    console.print(table)


async def _health(config: Config) -> None:
    configure_database(config.database)
    try:
        summary = await TriageService.from_config(config).health_summary()
    finally:
        await close_db()

    table = Table(title="Last 24 hours")
    table.add_column("Counter", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Total alerts", str(summary.total_alerts))
    table.add_row("New alerts", str(summary.new_alerts))
    table.add_row("Critical alerts", str(summary.critical_alerts))
    table.add_row("Correlated alerts", str(summary.correlated_alerts))
    table.add_row("AI-analysed alerts", str(summary.ai_analyzed_alerts))
    table.add_row("Open incidents", str(summary.open_incidents))
    table.add_row("Resolved incidents", str(summary.resolved_incidents))
    for severity, count in summary.severity_distribution.items():
        table.add_row(f"Severity {severity}", str(count))
    for source, count in summary.top_sources:
        table.add_row(f"Source {source}", str(count))
    console.print(table)


async def _init_db(config: Config) -> None:
    configure_database(config.database)
    try:
        await init_db()
    finally:
        await close_db()
    console.print("[green]Schema created[/green]")


def main() -> None:
    """Main entry point."""
    import argparse

    parser = argparse.ArgumentParser(
        description="ThreatLens - SOC alert triage and incident correlation",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--config",
        type=str,
        help="Path to .env config file",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )
    subparsers = parser.add_subparsers(dest="command")
    subparsers.add_parser("run", help="Run scheduled correlation until interrupted")
    subparsers.add_parser("correlate", help="Run one correlation pass and print totals")
    subparsers.add_parser("health", help="Print the 24 hour health summary")
    subparsers.add_parser("init-db", help="Create the database schema")
    score_parser = subparsers.add_parser("score", help="Score alerts from a JSON file")
    score_parser.add_argument("file", type=Path, help="JSON alert or list of alerts")
    score_parser.add_argument(
        "--narrate",
        action="store_true",
        help="Also generate the analysis narrative",
    )

    args = parser.parse_args()

    config = load_config(Path(args.config) if args.config else None)
    configure_logging(config, debug=args.debug)

    command = args.command or "run"
    if command == "score":
        asyncio.run(_score(config, args.file, args.narrate))
        return
    if command == "correlate":
        asyncio.run(_correlate(config))
        return
    if command == "health":
        asyncio.run(_health(config))
        return
    if command == "init-db":
        asyncio.run(_init_db(config))
        return

    # Set up signal handlers
    def handle_sigterm(sig, frame):
        logger.info("sigterm_received")
        raise KeyboardInterrupt()

    signal.signal(signal.SIGTERM, handle_sigterm)

    runner = ThreatLensRunner(config)

    try:
        asyncio.run(runner.start())
    except KeyboardInterrupt:
        console.print("\n[yellow]Shutting down...[/yellow]")


if __name__ == "__main__":
    main()
