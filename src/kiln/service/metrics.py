"""Rolling generation/check metrics with windows, trends and recommendations."""

from __future__ import annotations

import logging
import threading
import time
import uuid
from collections import Counter, deque
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

from kiln.detection.detector import CATEGORY_TIPS
from kiln.feedback import RepairLedger
from kiln.models.findings import Category, Severity
from kiln.models.metrics import (
    DetailedStats,
    GenerationRequest,
    GenerationResult,
    MetricSample,
    MetricsStatus,
    MetricThresholds,
    PerformanceReport,
    QualityDistribution,
    Recommendation,
    Totals,
    TrendDirection,
    TrendMetric,
    TrendReport,
    TypeTagStats,
    WindowStats,
)

logger = logging.getLogger("kiln.metrics")

UNKNOWN_DURATION_MS = 5000.0
MIN_TREND_SAMPLES = 10
MIN_SUCCESS_LENGTH = 100

WINDOWS: dict[str, timedelta] = {
    "last_hour": timedelta(hours=1),
    "last_24h": timedelta(hours=24),
    "last_week": timedelta(weeks=1),
}


def quality_score(result: GenerationResult) -> int:
    """Score a generation outcome on 0-100.

    40 for success, up to 20 for size, up to 20 for few remaining findings,
    up to 10 for applied fixes and 10 when validation passed.
    """
    score = 40 if result.success and result.text else 0
    length = len(result.text or "")
    if length > 5000:
        score += 20
    elif length > 3000:
        score += 15
    elif length > 1000:
        score += 10
    elif length > 500:
        score += 5

    remaining = _remaining(result)
    if remaining == 0:
        score += 20
    elif remaining <= 2:
        score += 15
    elif remaining <= 5:
        score += 10
    else:
        score += max(0, 10 - remaining)

    if result.repair is not None:
        score += min(10, 2 * result.repair.fix_count)
    if result.validation is not None and result.validation.is_valid:
        score += 10
    return max(0, min(100, score))


def _remaining(result: GenerationResult) -> int:
    if result.repair is not None:
        return len(result.repair.remaining_findings)
    return len(result.findings)


def _direction(delta: float, lower_is_better: bool = False) -> TrendDirection:
    if delta == 0:
        return TrendDirection.STABLE
    improving = delta < 0 if lower_is_better else delta > 0
    return TrendDirection.IMPROVING if improving else TrendDirection.DECLINING


def _trend(current: float, previous: float, lower_is_better: bool = False) -> TrendMetric:
    delta = current - previous
    return TrendMetric(
        current=round(current, 2),
        previous=round(previous, 2),
        delta=round(delta, 2),
        direction=_direction(delta, lower_is_better),
    )


def _mean(values: list[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def _success_rate(samples: list[MetricSample]) -> float:
    return sum(1 for s in samples if s.success) / len(samples) * 100 if samples else 0.0


class MetricsAggregator:
    """Records each generation or check outcome in a bounded rolling log.

    Thread-safe. Windows, trends and recommendations are recomputed from
    the log on demand.
    """

    def __init__(
        self,
        capacity: int = 1000,
        trend_window: int = 50,
        thresholds: MetricThresholds | None = None,
        ledger: RepairLedger | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._lock = threading.Lock()
        self._log: deque[MetricSample] = deque(maxlen=capacity)
        self._pending: dict[str, tuple[float, GenerationRequest]] = {}
        self._totals = Totals()
        self._type_tags: dict[str, TypeTagStats] = {}
        self._trend_window = trend_window
        self._thresholds = thresholds or MetricThresholds()
        self._ledger = ledger
        self._clock = clock or (lambda: datetime.now(UTC))
        self._started = time.monotonic()

    @property
    def thresholds(self) -> MetricThresholds:
        return self._thresholds

    # -- recording -----------------------------------------------------------

    def record_start(self, request: GenerationRequest | None = None) -> str:
        """Start timing a generation; returns the token for :meth:`record_complete`."""
        request = request or GenerationRequest()
        token = request.token or uuid.uuid4().hex[:8]
        with self._lock:
            self._pending[token] = (time.monotonic(), request)
        return token

    def record_complete(self, token: str, result: GenerationResult) -> MetricSample:
        with self._lock:
            pending = self._pending.pop(token, None)
        if pending is None:
            logger.warning("Unknown metrics token %s; estimating duration", token)
            duration_ms = UNKNOWN_DURATION_MS
            request = GenerationRequest()
        else:
            started, request = pending
            duration_ms = (time.monotonic() - started) * 1000

        text = result.text or ""
        findings = result.findings
        sample = MetricSample(
            token=token,
            timestamp=self._clock(),
            duration_ms=round(duration_ms, 3),
            success=result.success and len(text) > MIN_SUCCESS_LENGTH,
            quality_score=quality_score(result),
            type_tag=result.type_tag or request.type_tag,
            finding_count=_remaining(result),
            fix_count=result.repair.fix_count if result.repair is not None else 0,
            text_length=len(text),
            categories=[f.category for f in findings],
            kinds=[f.kind for f in findings],
            critical_count=sum(1 for f in findings if f.severity is Severity.CRITICAL),
        )
        resolved = max(0, len(findings) - _remaining(result)) if result.repair is not None else 0
        self._append(sample, len(findings), resolved)
        return sample

    def add_sample(self, sample: MetricSample) -> None:
        """Append an already-built sample (imports and replays)."""
        self._append(sample, len(sample.kinds), 0)

    def _append(self, sample: MetricSample, finding_count: int, resolved: int) -> None:
        with self._lock:
            self._log.append(sample)
            totals = self._totals
            totals.total += 1
            if sample.success:
                totals.successful += 1
            else:
                totals.failed += 1
            totals.findings += finding_count
            totals.critical_findings += sample.critical_count
            totals.resolved += resolved

            stats = self._type_tags.setdefault(sample.type_tag, TypeTagStats())
            n = stats.total
            stats.avg_duration = (stats.avg_duration * n + sample.duration_ms) / (n + 1)
            stats.avg_quality = (stats.avg_quality * n + sample.quality_score) / (n + 1)
            stats.total += 1
            if sample.success:
                stats.successful += 1

    def samples(self) -> list[MetricSample]:
        with self._lock:
            return list(self._log)

    def update_thresholds(self, partial: dict[str, Any]) -> MetricThresholds:
        """Merge threshold overrides, e.g. ``{"quality": {"warning": 60}}``."""
        with self._lock:
            merged = self._thresholds.model_dump()
            for key, value in partial.items():
                if key not in merged:
                    raise ValueError(f"Unknown metric threshold '{key}'")
                if isinstance(value, dict) and isinstance(merged[key], dict):
                    merged[key] = {**merged[key], **value}
                else:
                    merged[key] = value
            self._thresholds = MetricThresholds.model_validate(merged)
            return self._thresholds

    # -- derived views -------------------------------------------------------

    def window_stats(self) -> dict[str, WindowStats]:
        now = self._clock()
        samples = self.samples()
        windows: dict[str, WindowStats] = {}
        for name, span in WINDOWS.items():
            selected = [s for s in samples if now - s.timestamp <= span]
            windows[name] = WindowStats(
                count=len(selected),
                success_rate=round(_success_rate(selected), 2),
                avg_duration=round(_mean([s.duration_ms for s in selected]), 2),
                avg_quality=round(_mean([s.quality_score for s in selected]), 2),
            )
        return windows

    def analyze_trends(self, window: int | None = None) -> TrendReport:
        """Compare the last ``window`` samples with the ``window`` before them."""
        size = window or self._trend_window
        samples = self.samples()
        if len(samples) < MIN_TREND_SAMPLES:
            return TrendReport(
                sufficient_data=False,
                message="Not enough samples for trend analysis",
                window=size,
            )
        recent = samples[-size:]
        previous = samples[-2 * size : -size]
        if not previous:
            return TrendReport(
                sufficient_data=False,
                message="No earlier samples to compare against",
                window=size,
            )
        return TrendReport(
            sufficient_data=True,
            window=size,
            success_rate=_trend(_success_rate(recent), _success_rate(previous)),
            duration=_trend(
                _mean([s.duration_ms for s in recent]),
                _mean([s.duration_ms for s in previous]),
                lower_is_better=True,
            ),
            quality=_trend(
                _mean([s.quality_score for s in recent]),
                _mean([s.quality_score for s in previous]),
            ),
        )

    def generate_recommendations(self) -> list[Recommendation]:
        samples = self.samples()
        with self._lock:
            totals = self._totals.model_copy()
        thresholds = self._thresholds
        recommendations: list[Recommendation] = []
        if not samples:
            return recommendations

        success_rate = _success_rate(samples)
        avg_duration = _mean([s.duration_ms for s in samples])
        avg_quality = _mean([s.quality_score for s in samples])

        recommendations.extend(
            _banded(
                "success_rate",
                success_rate < thresholds.success_rate.critical,
                success_rate < thresholds.success_rate.warning,
                f"Success rate is {success_rate:.1f}%; review generation prompts and templates",
                "optimize_prompts",
            )
        )
        recommendations.extend(
            _banded(
                "duration",
                avg_duration > thresholds.duration_ms.critical,
                avg_duration > thresholds.duration_ms.warning,
                f"Average duration is {avg_duration:.0f} ms; parallelise or cache generation",
                "optimize_performance",
            )
        )
        recommendations.extend(
            _banded(
                "quality",
                avg_quality < thresholds.quality.critical,
                avg_quality < thresholds.quality.warning,
                f"Average quality is {avg_quality:.1f}; tighten validation and repair",
                "improve_quality",
            )
        )
        if totals.resolution_rate < thresholds.resolution_rate:
            recommendations.append(
                Recommendation(
                    type="error_resolution",
                    priority="medium",
                    message=(
                        f"Only {totals.resolution_rate:.1f}% of findings are repaired; "
                        "extend the repair transformations"
                    ),
                    action="improve_error_handling",
                )
            )

        for category, _count in self._category_counts(samples).most_common(2):
            recommendations.append(
                Recommendation(
                    type=f"category:{category.value}",
                    priority="low",
                    message=CATEGORY_TIPS[category],
                    action="review_category",
                )
            )
        if self._ledger is not None:
            for kind in self._ledger.failing_kinds():
                recommendations.append(
                    Recommendation(
                        type=f"repair:{kind}",
                        priority="medium",
                        message=f"Automatic repair of '{kind}' keeps failing",
                        action="fix_at_source",
                    )
                )
        return recommendations

    def get_current_status(self) -> MetricsStatus:
        samples = self.samples()
        with self._lock:
            totals = self._totals.model_copy()
        return MetricsStatus(
            uptime_seconds=round(time.monotonic() - self._started, 3),
            totals=totals,
            success_rate=round(totals.success_rate, 2),
            resolution_rate=round(totals.resolution_rate, 2),
            avg_duration=round(_mean([s.duration_ms for s in samples]), 2),
            avg_quality=round(_mean([s.quality_score for s in samples]), 2),
            windows=self.window_stats(),
            log_size=len(samples),
            thresholds=self._thresholds,
        )

    def get_detailed_stats(self) -> DetailedStats:
        status = self.get_current_status()
        samples = self.samples()
        kinds: Counter[str] = Counter(kind for s in samples for kind in s.kinds)
        with self._lock:
            type_tags = {tag: stats.model_copy() for tag, stats in self._type_tags.items()}
        return DetailedStats(
            **status.model_dump(),
            trends=self.analyze_trends(),
            recommendations=self.generate_recommendations(),
            top_kinds=kinds.most_common(10),
            top_categories=self._category_counts(samples).most_common(),
            type_tags=type_tags,
            quality_distribution=_distribution(samples),
        )

    def generate_report(self, recent: int = 20) -> PerformanceReport:
        return PerformanceReport(
            timestamp=self._clock(),
            overview=self.get_current_status(),
            trends=self.analyze_trends(),
            recommendations=self.generate_recommendations(),
            recent_samples=self.samples()[-recent:],
        )

    @staticmethod
    def _category_counts(samples: list[MetricSample]) -> Counter[Category]:
        return Counter(category for s in samples for category in s.categories)


def _banded(
    kind: str, critical: bool, warning: bool, message: str, action: str
) -> list[Recommendation]:
    if critical:
        return [Recommendation(type=kind, priority="high", message=message, action=action)]
    if warning:
        return [Recommendation(type=kind, priority="medium", message=message, action=action)]
    return []


def _distribution(samples: list[MetricSample]) -> QualityDistribution:
    distribution = QualityDistribution()
    for sample in samples:
        if sample.quality_score >= 90:
            distribution.excellent += 1
        elif sample.quality_score >= 70:
            distribution.good += 1
        elif sample.quality_score >= 50:
            distribution.fair += 1
        else:
            distribution.poor += 1
    return distribution

