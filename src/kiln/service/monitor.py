"""Monitor: continuous re-checking of registered artifacts."""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from collections.abc import Callable, Mapping
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import UTC, datetime

from kiln.detection import Detector
from kiln.models.artifact import (
    ArtifactSettings,
    ArtifactStatus,
    CheckResult,
    FindingDiff,
    FindingStatistics,
    HistoryEntry,
    MonitorCounters,
    MonitoringStatus,
)
from kiln.models.events import (
    AlertTriggered,
    ArtifactChecked,
    ArtifactRegistered,
    ArtifactSettingsUpdated,
    ArtifactUnregistered,
    AutoFixCompleted,
    AutoFixFailed,
    CheckFailed,
    CheckSkipped,
    CriticalErrorsDetected,
    MonitoringStarted,
    MonitoringStopped,
    NewErrorsDetected,
    ThresholdsUpdated,
)
from kiln.models.findings import Finding, Severity, count_by_severity
from kiln.models.metrics import GenerationRequest, GenerationResult
from kiln.models.reports import DetectionReport, RepairResult, ValidationReport
from kiln.repair import RepairEngine
from kiln.service.events import EventBus
from kiln.service.metrics import MetricsAggregator
from kiln.validation import Validator

logger = logging.getLogger("kiln.monitor")

DEFAULT_THRESHOLDS: dict[Severity, int] = {
    Severity.CRITICAL: 1,
    Severity.HIGH: 2,
    Severity.MEDIUM: 5,
    Severity.LOW: 10,
}
_RECENT_HISTORY = 10


class ArtifactNotFoundError(KeyError):
    """Raised when unregistering an artifact ID that is not registered."""


@dataclass
class _Artifact:
    """Internal artifact state. Guarded by the monitor lock."""

    artifact_id: str
    text: str
    type_tag: str
    metadata: dict[str, str]
    registered_at: datetime
    history: deque[HistoryEntry]
    settings: ArtifactSettings = field(default_factory=ArtifactSettings)
    last_checked_at: datetime | None = None
    current_findings: list[Finding] = field(default_factory=list)
    last_validation_score: float | None = None
    busy: bool = False


def diff_findings(previous: list[Finding], current: list[Finding]) -> FindingDiff:
    """Split ``current`` into new and unchanged, and ``previous`` into resolved."""
    before = {f.key for f in previous}
    after = {f.key for f in current}
    return FindingDiff(
        new=[f for f in current if f.key not in before],
        resolved=[f for f in previous if f.key not in after],
        unchanged=[f for f in current if f.key in before],
    )


class Monitor:
    """Owns a registry of artifacts and re-checks them on a timer.

    Thread-safe. :meth:`start` launches a daemon thread that calls
    :meth:`sweep` every ``sweep_interval`` seconds; each sweep fans out one
    check per artifact to a bounded worker pool. A per-artifact busy flag
    keeps two checks of the same artifact from overlapping: the later one
    is skipped, not queued.
    """

    def __init__(
        self,
        detector: Detector,
        validator: Validator | None = None,
        repair_engine: RepairEngine | None = None,
        *,
        events: EventBus | None = None,
        metrics: MetricsAggregator | None = None,
        sweep_interval: float = 30.0,
        recheck_delay: float = 5.0,
        max_workers: int = 8,
        history_capacity: int = 50,
        validate_on_check: bool = True,
        thresholds: Mapping[Severity, int] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._detector = detector
        self._validator = validator or Validator()
        self._repair = repair_engine or RepairEngine(detector)
        self._events = events or EventBus()
        self._metrics = metrics
        self._sweep_interval = sweep_interval
        self._recheck_delay = recheck_delay
        self._history_capacity = history_capacity
        self._validate_on_check = validate_on_check
        self._thresholds = dict(DEFAULT_THRESHOLDS)
        if thresholds:
            self._thresholds.update(thresholds)
        self._clock = clock or (lambda: datetime.now(UTC))

        self._lock = threading.Lock()
        self._artifacts: dict[str, _Artifact] = {}
        self._counters = MonitorCounters()
        self._timers: dict[str, threading.Timer] = {}
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="kiln-check")
        self._running = False
        self._started_at: float | None = None
        self._stop_event = threading.Event()
        self._sweep_thread: threading.Thread | None = None
        # Bumped by stop(); re-checks requested by checks begun earlier are dropped.
        self._generation = 0
        self._closed = False

    @property
    def events(self) -> EventBus:
        return self._events

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._running

    @property
    def thresholds(self) -> dict[Severity, int]:
        with self._lock:
            return dict(self._thresholds)

    # -- lifecycle -----------------------------------------------------------

    def start(self) -> bool:
        """Start the sweep thread. Returns ``False`` if already running."""
        with self._lock:
            if self._running:
                return False
            self._running = True
            self._started_at = time.monotonic()
            self._stop_event = threading.Event()
            self._sweep_thread = threading.Thread(
                target=self._sweep_loop, args=(self._stop_event,), daemon=True, name="kiln-sweep"
            )
            self._sweep_thread.start()
        logger.info("Monitoring started (sweep every %ss)", self._sweep_interval)
        self._events.publish(MonitoringStarted())
        return True

    def stop(self) -> bool:
        """Stop sweeping and cancel pending re-checks.

        In-flight checks are allowed to finish. Returns ``False`` if the
        monitor was not running.
        """
        with self._lock:
            if not self._running:
                return False
            self._running = False
            self._started_at = None
            self._generation += 1
            thread, self._sweep_thread = self._sweep_thread, None
            self._stop_event.set()
        self._cancel_rechecks()
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=5)
        logger.info("Monitoring stopped")
        self._events.publish(MonitoringStopped())
        return True

    def close(self) -> None:
        """Stop the monitor and shut down its worker pool."""
        with self._lock:
            self._closed = True
            self._generation += 1
        self.stop()
        self._cancel_rechecks()
        self._pool.shutdown(wait=True)

    # -- registry ------------------------------------------------------------

    def register(
        self,
        artifact_id: str,
        text: str,
        type_tag: str = "solo",
        metadata: dict[str, str] | None = None,
        *,
        auto_fix_enabled: bool = True,
        alerts_enabled: bool = True,
    ) -> bool:
        """Start watching an artifact. Returns ``False`` if the ID is taken.

        While the monitor is running an initial check is queued immediately.
        """
        with self._lock:
            if artifact_id in self._artifacts:
                return False
            self._artifacts[artifact_id] = _Artifact(
                artifact_id=artifact_id,
                text=text,
                type_tag=type_tag,
                metadata=dict(metadata or {}),
                registered_at=self._clock(),
                history=deque(maxlen=self._history_capacity),
                settings=ArtifactSettings(
                    auto_fix_enabled=auto_fix_enabled, alerts_enabled=alerts_enabled
                ),
            )
            running = self._running
        logger.info("Registered artifact %s (%s)", artifact_id, type_tag)
        self._events.publish(ArtifactRegistered(artifact_id=artifact_id, type_tag=type_tag))
        if running:
            self._pool.submit(self.check_one, artifact_id)
        return True

    def unregister(self, artifact_id: str) -> bool:
        """Stop watching an artifact.

        Raises :class:`ArtifactNotFoundError` if the ID is not registered.
        """
        with self._lock:
            if artifact_id not in self._artifacts:
                raise ArtifactNotFoundError(f"Artifact '{artifact_id}' not found")
            del self._artifacts[artifact_id]
            timer = self._timers.pop(artifact_id, None)
        if timer is not None:
            timer.cancel()
        logger.info("Unregistered artifact %s", artifact_id)
        self._events.publish(ArtifactUnregistered(artifact_id=artifact_id))
        return True

    def get_status(self, artifact_id: str) -> ArtifactStatus | None:
        with self._lock:
            artifact = self._artifacts.get(artifact_id)
            return self._status(artifact) if artifact is not None else None

    def list_all(self) -> list[ArtifactStatus]:
        with self._lock:
            return [self._status(a) for a in self._artifacts.values()]

    def update_thresholds(self, partial: Mapping[Severity | str, int]) -> dict[Severity, int]:
        """Merge per-severity alert thresholds, e.g. ``{"critical": 1, "low": 10}``."""
        updates: dict[Severity, int] = {}
        for key, value in partial.items():
            severity = key if isinstance(key, Severity) else Severity.parse(key)
            if value < 0:
                raise ValueError(f"Threshold for {severity.value} must be >= 0, got {value}")
            updates[severity] = int(value)
        with self._lock:
            self._thresholds.update(updates)
            thresholds = dict(self._thresholds)
        self._events.publish(ThresholdsUpdated(thresholds=thresholds))
        return thresholds

    def update_artifact_settings(self, artifact_id: str, partial: Mapping[str, bool]) -> bool:
        """Toggle ``auto_fix_enabled``/``alerts_enabled``. ``False`` for unknown IDs."""
        unknown = set(partial) - set(ArtifactSettings.model_fields)
        if unknown:
            raise ValueError(f"Unknown artifact setting(s): {', '.join(sorted(unknown))}")
        with self._lock:
            artifact = self._artifacts.get(artifact_id)
            if artifact is None:
                return False
            artifact.settings = artifact.settings.model_copy(update=dict(partial))
            settings = artifact.settings
        self._events.publish(
            ArtifactSettingsUpdated(
                artifact_id=artifact_id,
                auto_fix_enabled=settings.auto_fix_enabled,
                alerts_enabled=settings.alerts_enabled,
            )
        )
        return True

    # -- stateless operations ------------------------------------------------

    def run_detection(self, text: str, type_tag: str = "solo") -> DetectionReport:
        return self._detector.detect(text, type_tag)

    def run_validation(self, text: str, type_tag: str = "solo") -> ValidationReport:
        return self._validator.validate(text, type_tag)

    def repair(self, text: str, findings: list[Finding], type_tag: str = "solo") -> RepairResult:
        return self._repair.repair(text, findings, type_tag)

    # -- checking ------------------------------------------------------------

    def sweep(self) -> list[CheckResult]:
        """Check every registered artifact once and wait for the results."""
        with self._lock:
            ids = list(self._artifacts)
        futures = [self._pool.submit(self.check_one, artifact_id) for artifact_id in ids]
        results: list[CheckResult] = []
        for artifact_id, future in zip(ids, futures, strict=True):
            try:
                result = future.result()
            except Exception:
                logger.exception("Check of artifact %s raised", artifact_id)
                continue
            if result is not None:
                results.append(result)
        logger.debug("Sweep checked %d artifact(s)", len(results))
        return results

    def check_one(self, artifact_id: str) -> CheckResult | None:
        """Check one artifact. ``None`` if it is not registered."""
        with self._lock:
            artifact = self._artifacts.get(artifact_id)
            if artifact is None:
                return None
            busy = artifact.busy
            if busy:
                self._counters.skipped_checks += 1
            else:
                artifact.busy = True
        if busy:
            logger.debug("Skipping artifact %s: check already in progress", artifact_id)
            self._events.publish(CheckSkipped(artifact_id=artifact_id))
            return CheckResult(artifact_id=artifact_id, status="skipped", timestamp=self._clock())
        try:
            return self._check(artifact)
        finally:
            with self._lock:
                artifact.busy = False

    def _check(self, artifact: _Artifact) -> CheckResult:
        artifact_id = artifact.artifact_id
        with self._lock:
            text = artifact.text
            type_tag = artifact.type_tag
            previous = list(artifact.current_findings)
            generation = self._generation
        token = None
        if self._metrics is not None:
            token = self._metrics.record_start(GenerationRequest(type_tag=type_tag))

        try:
            detection = self._detector.detect(text, type_tag)
            validation = (
                self._validator.validate(text, type_tag) if self._validate_on_check else None
            )
            diff = diff_findings(previous, detection.findings)
        except Exception as exc:
            logger.exception("Check of artifact %s failed", artifact_id)
            with self._lock:
                self._counters.failed_checks += 1
            self._events.publish(CheckFailed(artifact_id=artifact_id, error=str(exc)))
            if self._metrics is not None and token is not None:
                self._metrics.record_complete(
                    token, GenerationResult(success=False, text=text, type_tag=type_tag)
                )
            return CheckResult(
                artifact_id=artifact_id,
                status="failed",
                timestamp=self._clock(),
                error=f"{type(exc).__name__}: {exc}",
            )

        now = self._clock()
        with self._lock:
            artifact.current_findings = list(detection.findings)
            artifact.history.append(
                HistoryEntry(
                    timestamp=now,
                    finding_count=len(detection.findings),
                    findings_summary=[f"{f.severity.value}: {f.kind}" for f in detection.findings],
                )
            )
            artifact.last_checked_at = now
            if validation is not None:
                artifact.last_validation_score = validation.overall_score
            self._counters.checks += 1
            self._counters.detections += len(diff.new)
            settings = artifact.settings
            thresholds = dict(self._thresholds)

        if diff.new:
            self._announce(artifact_id, diff.new, thresholds, settings.alerts_enabled)

        repair: RepairResult | None = None
        if settings.auto_fix_enabled and detection.findings:
            repair = self._auto_fix(artifact, text, detection.findings, type_tag, generation)

        self._events.publish(
            ArtifactChecked(
                artifact_id=artifact_id,
                finding_count=len(detection.findings),
                new_count=len(diff.new),
                resolved_count=len(diff.resolved),
            )
        )
        if self._metrics is not None and token is not None:
            self._metrics.record_complete(
                token,
                GenerationResult(
                    success=True,
                    text=repair.fixed_text if repair is not None else text,
                    type_tag=type_tag,
                    findings=detection.findings,
                    repair=repair,
                    validation=validation,
                ),
            )
        return CheckResult(
            artifact_id=artifact_id,
            status="completed",
            timestamp=now,
            detection=detection,
            validation=validation,
            diff=diff,
            repair=repair,
        )

    def _announce(
        self,
        artifact_id: str,
        new: list[Finding],
        thresholds: dict[Severity, int],
        alerts_enabled: bool,
    ) -> None:
        counts = count_by_severity(new)
        self._events.publish(
            NewErrorsDetected(
                artifact_id=artifact_id,
                new_findings=new,
                critical_count=counts[Severity.CRITICAL],
                high_count=counts[Severity.HIGH],
            )
        )
        critical = [f for f in new if f.severity is Severity.CRITICAL]
        if critical:
            self._events.publish(CriticalErrorsDetected(artifact_id=artifact_id, findings=critical))
        if not alerts_enabled:
            return
        reasons = [
            f"{severity.value}: {counts[severity]}"
            for severity in Severity
            if counts[severity] > 0 and counts[severity] >= thresholds.get(severity, 0)
        ]
        if reasons:
            with self._lock:
                self._counters.alerts_sent += 1
            logger.warning("Alert for artifact %s: %s", artifact_id, ", ".join(reasons))
            self._events.publish(
                AlertTriggered(artifact_id=artifact_id, severity_counts=counts, reasons=reasons)
            )

    def _auto_fix(
        self,
        artifact: _Artifact,
        text: str,
        findings: list[Finding],
        type_tag: str,
        generation: int,
    ) -> RepairResult | None:
        artifact_id = artifact.artifact_id
        with self._lock:
            self._counters.auto_fix_attempts += 1
        try:
            result = self._repair.repair(text, findings, type_tag)
        except Exception as exc:
            logger.exception("Auto-fix of artifact %s failed", artifact_id)
            self._events.publish(
                AutoFixFailed(artifact_id=artifact_id, reason=f"{type(exc).__name__}: {exc}")
            )
            return None

        if result.fix_count == 0 or not result.changed:
            reasons = sorted({a.reason for a in result.failed_fixes if a.reason})
            self._events.publish(
                AutoFixFailed(
                    artifact_id=artifact_id,
                    reason="; ".join(reasons) or "no applicable transformation",
                )
            )
            return result

        with self._lock:
            artifact.text = result.fixed_text
            self._counters.successful_fixes += 1
        logger.info("Auto-fix applied %d fix(es) to artifact %s", result.fix_count, artifact_id)
        self._events.publish(AutoFixCompleted(artifact_id=artifact_id, result=result))
        self._schedule_recheck(artifact_id, generation)
        return result

    # -- deferred re-checks --------------------------------------------------

    def _schedule_recheck(self, artifact_id: str, generation: int) -> None:
        timer = threading.Timer(self._recheck_delay, self._deferred_check, args=(artifact_id,))
        timer.daemon = True
        with self._lock:
            if self._closed or generation != self._generation:
                logger.debug("Dropping re-check of artifact %s: monitor was stopped", artifact_id)
                return
            previous = self._timers.pop(artifact_id, None)
            self._timers[artifact_id] = timer
        if previous is not None:
            previous.cancel()
        timer.start()

    def _deferred_check(self, artifact_id: str) -> None:
        with self._lock:
            self._timers.pop(artifact_id, None)
        try:
            self.check_one(artifact_id)
        except Exception:
            logger.exception("Deferred re-check of artifact %s failed", artifact_id)

    def _cancel_rechecks(self) -> None:
        with self._lock:
            timers = list(self._timers.values())
            self._timers.clear()
        for timer in timers:
            timer.cancel()

    def _sweep_loop(self, stop_event: threading.Event) -> None:
        """Background loop that sweeps until ``stop_event`` is set."""
        while not stop_event.wait(timeout=self._sweep_interval):
            try:
                self.sweep()
            except Exception:
                logger.exception("Sweep failed")

    # -- reporting -----------------------------------------------------------

    def get_monitoring_status(self) -> MonitoringStatus:
        with self._lock:
            uptime = time.monotonic() - self._started_at if self._started_at is not None else 0.0
            return MonitoringStatus(
                running=self._running,
                artifact_count=len(self._artifacts),
                thresholds=dict(self._thresholds),
                counters=self._counters.model_copy(),
                uptime_seconds=round(uptime, 3),
                sweep_interval_seconds=self._sweep_interval,
                pending_rechecks=len(self._timers),
            )

    def get_detailed_statistics(self) -> FindingStatistics:
        stats = FindingStatistics()
        with self._lock:
            artifacts = [
                (a.artifact_id, list(a.current_findings)) for a in self._artifacts.values()
            ]
        for artifact_id, findings in artifacts:
            stats.by_artifact[artifact_id] = len(findings)
            stats.total_findings += len(findings)
            for finding in findings:
                stats.by_category[finding.category] = stats.by_category.get(finding.category, 0) + 1
                stats.by_severity[finding.severity] = stats.by_severity.get(finding.severity, 0) + 1
        return stats

    # -- internal ------------------------------------------------------------

    def _status(self, artifact: _Artifact) -> ArtifactStatus:
        history = list(artifact.history)
        return ArtifactStatus(
            artifact_id=artifact.artifact_id,
            type_tag=artifact.type_tag,
            text=artifact.text,
            metadata=dict(artifact.metadata),
            registered_at=artifact.registered_at,
            last_checked_at=artifact.last_checked_at,
            current_findings=list(artifact.current_findings),
            history_count=len(history),
            recent_history=history[-_RECENT_HISTORY:],
            auto_fix_enabled=artifact.settings.auto_fix_enabled,
            alerts_enabled=artifact.settings.alerts_enabled,
            last_validation_score=artifact.last_validation_score,
        )
