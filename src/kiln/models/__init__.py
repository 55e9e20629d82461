"""Pydantic domain models for Kiln."""

from kiln.models.artifact import (
    ArtifactSettings,
    ArtifactStatus,
    CheckResult,
    FindingDiff,
    FindingStatistics,
    HistoryEntry,
    MonitoringStatus,
)
from kiln.models.findings import Category, Finding, Location, Severity
from kiln.models.metrics import GenerationRequest, GenerationResult, MetricSample
from kiln.models.reports import (
    CategoryResult,
    DetectionReport,
    RepairAttempt,
    RepairResult,
    ValidationReport,
)

__all__ = [
    "ArtifactSettings",
    "ArtifactStatus",
    "Category",
    "CategoryResult",
    "CheckResult",
    "DetectionReport",
    "Finding",
    "FindingDiff",
    "FindingStatistics",
    "GenerationRequest",
    "GenerationResult",
    "HistoryEntry",
    "Location",
    "MetricSample",
    "MonitoringStatus",
    "RepairAttempt",
    "RepairResult",
    "Severity",
    "ValidationReport",
]
