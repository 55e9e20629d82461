"""Factory wiring a ready-to-use :class:`Monitor` from :class:`Settings`."""

from __future__ import annotations

import logging

from kiln import __version__
from kiln.detection import Detector, NodeSandbox, PatternLibrary
from kiln.feedback import RepairLedger
from kiln.repair import RepairEngine
from kiln.service.events import EventBus
from kiln.service.metrics import MetricsAggregator
from kiln.service.monitor import Monitor
from kiln.settings import Settings
from kiln.validation import Validator

logger = logging.getLogger("kiln.app")


def configure_logging(settings: Settings) -> None:
    level = settings.log_level.upper()
    logging.basicConfig(level=level)
    logging.getLogger("kiln").setLevel(level)


def create_monitor(settings: Settings | None = None) -> Monitor:
    """Build a monitor with one shared repair ledger, event bus and metrics log.

    The monitor is returned stopped; call :meth:`Monitor.start` to begin
    sweeping.
    """
    if settings is None:
        settings = Settings()

    ledger = RepairLedger()
    library = PatternLibrary.default()
    if settings.pattern_library_path is not None:
        added = library.load_yaml(settings.pattern_library_path)
        logger.info(
            "Loaded %d signature(s) from %s", len(added), settings.pattern_library_path
        )

    sandbox = None
    if settings.sandbox_enabled:
        sandbox = NodeSandbox(settings.node_binary, timeout_ms=settings.sandbox_timeout_ms)
        if not sandbox.available():
            logger.warning(
                "Node binary '%s' not found; runtime checks will report reduced confidence",
                settings.node_binary,
            )

    detector = Detector(library, sandbox=sandbox, ledger=ledger)
    metrics = MetricsAggregator(
        capacity=settings.metrics_log_capacity,
        trend_window=settings.trend_window,
        ledger=ledger,
    )
    monitor = Monitor(
        detector,
        Validator(min_score=settings.min_passing_score),
        RepairEngine(detector, ledger=ledger),
        events=EventBus(),
        metrics=metrics,
        sweep_interval=settings.sweep_interval_seconds,
        recheck_delay=settings.recheck_delay_seconds,
        max_workers=settings.max_workers,
        history_capacity=settings.history_capacity,
        validate_on_check=settings.validate_on_check,
        thresholds=settings.alert_thresholds,
    )
    logger.info(
        "Kiln v%s monitor ready (sweep=%ss, sandbox=%s)",
        __version__,
        settings.sweep_interval_seconds,
        "on" if sandbox is not None else "off",
    )
    return monitor
