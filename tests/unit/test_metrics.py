"""Tests for quality scoring and the metrics aggregator."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from kiln.feedback import RepairLedger
from kiln.models.findings import Category, Finding, Severity
from kiln.models.metrics import (
    GenerationRequest,
    GenerationResult,
    MetricSample,
    TrendDirection,
)
from kiln.models.reports import RepairAttempt, RepairResult
from kiln.service.metrics import UNKNOWN_DURATION_MS, MetricsAggregator, quality_score
from kiln.validation import Validator
from tests.conftest import GOOD_ARTIFACT

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


def _finding(kind: str = "console-logging", severity: Severity = Severity.LOW) -> Finding:
    return Finding(kind=kind, message=kind, severity=severity, category=Category.PERFORMANCE)


def _sample(
    index: int = 0,
    *,
    success: bool = True,
    duration: float = 1000.0,
    quality: int = 80,
    kinds: tuple[str, ...] = (),
    categories: tuple[Category, ...] = (),
    timestamp: datetime = NOW,
    type_tag: str = "solo",
) -> MetricSample:
    return MetricSample(
        token=f"t{index}",
        timestamp=timestamp,
        duration_ms=duration,
        success=success,
        quality_score=quality,
        type_tag=type_tag,
        finding_count=len(kinds),
        fix_count=0,
        kinds=list(kinds),
        categories=list(categories),
    )


def _repair(fixes: int, remaining: int) -> RepairResult:
    attempt = RepairAttempt(finding=_finding(), transformation_id="x", applied=True)
    return RepairResult(
        original_text="a",
        fixed_text="b",
        applied_fixes=[attempt] * fixes,
        remaining_findings=[_finding()] * remaining,
    )


class TestQualityScore:
    def test_small_clean_success(self) -> None:
        assert quality_score(GenerationResult(success=True, text="x" * 600)) == 65

    def test_failure_without_text(self) -> None:
        # only the "no remaining findings" points
        assert quality_score(GenerationResult(success=False)) == 20

    def test_full_marks(self) -> None:
        validation = Validator().validate(GOOD_ARTIFACT)
        result = GenerationResult(
            success=True, text="x" * 6000, repair=_repair(6, 0), validation=validation
        )
        assert quality_score(result) == 100

    def test_repair_points(self) -> None:
        result = GenerationResult(success=True, text="x" * 3500, repair=_repair(2, 1))
        # 40 + 15 + 15 + 4
        assert quality_score(result) == 74

    @pytest.mark.parametrize(
        ("count", "points"), [(0, 20), (2, 15), (5, 10), (7, 3), (12, 0)]
    )
    def test_remaining_findings_points(self, count: int, points: int) -> None:
        result = GenerationResult(success=True, text="x" * 50, findings=[_finding()] * count)
        assert quality_score(result) == 40 + points


class TestRecording:
    def test_start_and_complete(self, metrics: MetricsAggregator) -> None:
        token = metrics.record_start(GenerationRequest(type_tag="dual"))
        sample = metrics.record_complete(token, GenerationResult(success=True, text="x" * 200))
        assert sample.token == token
        assert sample.type_tag == "dual"
        assert sample.success
        assert 0 <= sample.duration_ms < UNKNOWN_DURATION_MS
        assert metrics.samples() == [sample]

    def test_caller_token(self, metrics: MetricsAggregator) -> None:
        assert metrics.record_start(GenerationRequest(token="abc")) == "abc"

    def test_short_text_is_not_success(self, metrics: MetricsAggregator) -> None:
        token = metrics.record_start()
        sample = metrics.record_complete(token, GenerationResult(success=True, text="tiny"))
        assert not sample.success

    def test_unknown_token_estimates_duration(self, metrics: MetricsAggregator) -> None:
        sample = metrics.record_complete("missing", GenerationResult(success=True, text="x" * 200))
        assert sample.duration_ms == UNKNOWN_DURATION_MS

    def test_findings_and_resolution(self, metrics: MetricsAggregator) -> None:
        findings = [_finding(), _finding("dangerous-eval", Severity.CRITICAL)]
        result = GenerationResult(
            success=True, text="x" * 200, findings=findings, repair=_repair(1, 1)
        )
        sample = metrics.record_complete(metrics.record_start(), result)
        assert sample.finding_count == 1
        assert sample.fix_count == 1
        assert sample.critical_count == 1
        assert sample.kinds == ["console-logging", "dangerous-eval"]
        totals = metrics.get_current_status().totals
        assert (totals.findings, totals.resolved, totals.critical_findings) == (2, 1, 1)
        assert totals.resolution_rate == 50

    def test_log_is_bounded(self) -> None:
        metrics = MetricsAggregator(capacity=5)
        for i in range(8):
            metrics.add_sample(_sample(i))
        assert [s.token for s in metrics.samples()] == ["t3", "t4", "t5", "t6", "t7"]
        assert metrics.get_current_status().totals.total == 8


class TestTrends:
    def test_insufficient_data(self, metrics: MetricsAggregator) -> None:
        for i in range(9):
            metrics.add_sample(_sample(i))
        report = metrics.analyze_trends()
        assert not report.sufficient_data
        assert report.success_rate is None

    def test_no_previous_window(self, metrics: MetricsAggregator) -> None:
        for i in range(20):
            metrics.add_sample(_sample(i))
        assert not metrics.analyze_trends(window=50).sufficient_data

    def test_declining_success_rate(self, metrics: MetricsAggregator) -> None:
        for i in range(40):
            metrics.add_sample(_sample(i, success=True))
        for i in range(40, 50):
            metrics.add_sample(_sample(i, success=i % 5 == 0))
        report = metrics.analyze_trends(window=10)
        assert report.sufficient_data
        assert report.success_rate is not None
        assert report.success_rate.direction is TrendDirection.DECLINING
        assert report.success_rate.current == 20
        assert report.success_rate.previous == 100

    def test_faster_is_improving(self, metrics: MetricsAggregator) -> None:
        for i in range(20):
            metrics.add_sample(_sample(i, duration=2000.0 if i < 10 else 1000.0))
        report = metrics.analyze_trends(window=10)
        assert report.duration is not None
        assert report.duration.delta == -1000
        assert report.duration.direction is TrendDirection.IMPROVING
        assert report.quality is not None
        assert report.quality.direction is TrendDirection.STABLE


class TestWindows:
    def test_samples_bucketed_by_age(self) -> None:
        metrics = MetricsAggregator(clock=lambda: NOW)
        for i, age in enumerate(
            [timedelta(minutes=30), timedelta(hours=2), timedelta(days=3), timedelta(days=10)]
        ):
            metrics.add_sample(_sample(i, timestamp=NOW - age, quality=40 + i * 10))
        windows = metrics.window_stats()
        assert windows["last_hour"].count == 1
        assert windows["last_24h"].count == 2
        assert windows["last_week"].count == 3
        assert windows["last_24h"].avg_quality == 45


class TestRecommendations:
    def test_empty_log(self, metrics: MetricsAggregator) -> None:
        assert metrics.generate_recommendations() == []

    def test_healthy_log(self, metrics: MetricsAggregator) -> None:
        for i in range(5):
            metrics.add_sample(_sample(i))
        assert metrics.generate_recommendations() == []

    def test_critical_bands(self, metrics: MetricsAggregator) -> None:
        for i in range(5):
            metrics.add_sample(_sample(i, success=False, duration=20_000, quality=10))
        by_type = {r.type: r for r in metrics.generate_recommendations()}
        assert by_type["success_rate"].priority == "high"
        assert by_type["duration"].priority == "high"
        assert by_type["quality"].priority == "high"

    def test_warning_bands(self, metrics: MetricsAggregator) -> None:
        for i in range(10):
            metrics.add_sample(_sample(i, success=i < 6, duration=12_000, quality=40))
        by_type = {r.type: r for r in metrics.generate_recommendations()}
        assert by_type["success_rate"].priority == "medium"
        assert by_type["duration"].priority == "medium"
        assert by_type["quality"].priority == "medium"

    def test_resolution_and_categories(self, metrics: MetricsAggregator) -> None:
        metrics.add_sample(
            _sample(
                0,
                kinds=("console-logging", "dangerous-eval", "blocking-dialog"),
                categories=(Category.PERFORMANCE, Category.SECURITY, Category.PERFORMANCE),
            )
        )
        types = [r.type for r in metrics.generate_recommendations()]
        assert "error_resolution" in types
        assert types[-2:] == ["category:performance", "category:security"]

    def test_failing_repairs_from_ledger(self) -> None:
        ledger = RepairLedger()
        for _ in range(3):
            ledger.record(RepairAttempt(finding=_finding(), reason="no transformation registered"))
        metrics = MetricsAggregator(ledger=ledger)
        metrics.add_sample(_sample())
        types = [r.type for r in metrics.generate_recommendations()]
        assert types == ["repair:console-logging"]

    def test_update_thresholds(self, metrics: MetricsAggregator) -> None:
        for i in range(5):
            metrics.add_sample(_sample(i, quality=60))
        assert metrics.generate_recommendations() == []
        thresholds = metrics.update_thresholds({"quality": {"warning": 70}})
        assert thresholds.quality.warning == 70
        assert thresholds.quality.critical == 30
        assert [r.type for r in metrics.generate_recommendations()] == ["quality"]

    def test_unknown_threshold_raises(self, metrics: MetricsAggregator) -> None:
        with pytest.raises(ValueError, match="Unknown metric threshold"):
            metrics.update_thresholds({"latency": 5})


class TestReports:
    def test_detailed_stats(self, metrics: MetricsAggregator) -> None:
        for i, quality in enumerate([95, 75, 55, 20]):
            metrics.add_sample(
                _sample(i, quality=quality, type_tag="dual" if i else "solo", kinds=("k",))
            )
        stats = metrics.get_detailed_stats()
        d = stats.quality_distribution
        assert (d.excellent, d.good, d.fair, d.poor) == (1, 1, 1, 1)
        assert stats.top_kinds == [("k", 4)]
        assert stats.type_tags["dual"].total == 3
        assert stats.type_tags["solo"].avg_quality == 95
        assert stats.log_size == 4
        assert not stats.trends.sufficient_data

    def test_generate_report(self, metrics: MetricsAggregator) -> None:
        for i in range(30):
            metrics.add_sample(_sample(i))
        report = metrics.generate_report(recent=5)
        assert [s.token for s in report.recent_samples] == ["t25", "t26", "t27", "t28", "t29"]
        assert report.overview.totals.total == 30
        assert report.overview.success_rate == 100
