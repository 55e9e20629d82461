"""Metric samples, windows, trends and recommendations."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Literal

from pydantic import BaseModel, Field

from kiln.models.findings import Category, Finding
from kiln.models.reports import RepairResult, ValidationReport


class GenerationRequest(BaseModel):
    """What was asked of the generator (or of a monitor check)."""

    type_tag: str = "solo"
    token: str | None = None
    user_input: str | None = None


class GenerationResult(BaseModel):
    """Outcome handed to ``record_complete``."""

    success: bool
    text: str | None = None
    type_tag: str | None = None
    findings: list[Finding] = []
    repair: RepairResult | None = None
    validation: ValidationReport | None = None


class MetricSample(BaseModel):
    token: str
    timestamp: datetime
    duration_ms: float
    success: bool
    quality_score: int
    type_tag: str
    finding_count: int
    fix_count: int
    text_length: int = 0
    categories: list[Category] = []
    kinds: list[str] = []
    critical_count: int = 0


class WindowStats(BaseModel):
    count: int = 0
    success_rate: float = 0.0
    avg_duration: float = 0.0
    avg_quality: float = 0.0


class TrendDirection(StrEnum):
    IMPROVING = "improving"
    DECLINING = "declining"
    STABLE = "stable"


class TrendMetric(BaseModel):
    current: float
    previous: float
    delta: float
    direction: TrendDirection


class TrendReport(BaseModel):
    sufficient_data: bool
    message: str | None = None
    window: int
    success_rate: TrendMetric | None = None
    duration: TrendMetric | None = None
    quality: TrendMetric | None = None


class Recommendation(BaseModel):
    type: str
    priority: Literal["high", "medium", "low"]
    message: str
    action: str


class Band(BaseModel):
    """Warning/critical cut-offs for one metric."""

    warning: float
    critical: float


class MetricThresholds(BaseModel):
    success_rate: Band = Band(warning=70, critical=50)
    duration_ms: Band = Band(warning=10_000, critical=15_000)
    quality: Band = Band(warning=50, critical=30)
    resolution_rate: float = 80


class QualityDistribution(BaseModel):
    excellent: int = 0
    good: int = 0
    fair: int = 0
    poor: int = 0


class TypeTagStats(BaseModel):
    total: int = 0
    successful: int = 0
    avg_duration: float = 0.0
    avg_quality: float = 0.0

    @property
    def success_rate(self) -> float:
        return self.successful / self.total * 100 if self.total else 0.0


class Totals(BaseModel):
    total: int = 0
    successful: int = 0
    failed: int = 0
    findings: int = 0
    critical_findings: int = 0
    resolved: int = 0

    @property
    def success_rate(self) -> float:
        return self.successful / self.total * 100 if self.total else 0.0

    @property
    def resolution_rate(self) -> float:
        return self.resolved / self.findings * 100 if self.findings else 100.0


class MetricsStatus(BaseModel):
    uptime_seconds: float
    totals: Totals
    success_rate: float
    resolution_rate: float
    avg_duration: float
    avg_quality: float
    windows: dict[str, WindowStats]
    log_size: int
    thresholds: MetricThresholds


class DetailedStats(MetricsStatus):
    trends: TrendReport
    recommendations: list[Recommendation]
    top_kinds: list[tuple[str, int]]
    top_categories: list[tuple[Category, int]]
    type_tags: dict[str, TypeTagStats]
    quality_distribution: QualityDistribution


class PerformanceReport(BaseModel):
    timestamp: datetime
    overview: MetricsStatus
    trends: TrendReport
    recommendations: list[Recommendation]
    recent_samples: list[MetricSample] = Field(default_factory=list)
