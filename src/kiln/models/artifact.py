"""Artifact status snapshots and per-check results."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel

from kiln.models.findings import Category, Finding, Severity
from kiln.models.reports import DetectionReport, RepairResult, ValidationReport


class HistoryEntry(BaseModel):
    """Bounded history record kept for each check of an artifact."""

    timestamp: datetime
    finding_count: int
    findings_summary: list[str]


class ArtifactSettings(BaseModel):
    """Per-artifact toggles changeable through ``update_artifact_settings``."""

    auto_fix_enabled: bool = True
    alerts_enabled: bool = True


class ArtifactStatus(BaseModel):
    """Read-only snapshot of a watched artifact."""

    artifact_id: str
    type_tag: str
    text: str
    metadata: dict[str, str]
    registered_at: datetime
    last_checked_at: datetime | None
    current_findings: list[Finding]
    history_count: int
    recent_history: list[HistoryEntry]
    auto_fix_enabled: bool
    alerts_enabled: bool
    last_validation_score: float | None = None

    @property
    def finding_count(self) -> int:
        return len(self.current_findings)


class FindingDiff(BaseModel):
    new: list[Finding] = []
    resolved: list[Finding] = []
    unchanged: list[Finding] = []

    @property
    def net_change(self) -> int:
        return len(self.new) - len(self.resolved)


class CheckResult(BaseModel):
    """Result of checking one artifact."""

    artifact_id: str
    status: Literal["completed", "skipped", "failed"]
    timestamp: datetime
    detection: DetectionReport | None = None
    validation: ValidationReport | None = None
    diff: FindingDiff = FindingDiff()
    repair: RepairResult | None = None
    error: str | None = None


class MonitorCounters(BaseModel):
    checks: int = 0
    detections: int = 0
    failed_checks: int = 0
    skipped_checks: int = 0
    auto_fix_attempts: int = 0
    successful_fixes: int = 0
    alerts_sent: int = 0


class MonitoringStatus(BaseModel):
    """Monitor-wide state returned by ``get_monitoring_status``."""

    running: bool
    artifact_count: int
    thresholds: dict[Severity, int]
    counters: MonitorCounters
    uptime_seconds: float
    sweep_interval_seconds: float
    pending_rechecks: int = 0


class FindingStatistics(BaseModel):
    """Current findings across the registry, grouped three ways."""

    total_findings: int = 0
    by_category: dict[Category, int] = {}
    by_severity: dict[Severity, int] = {}
    by_artifact: dict[str, int] = {}
