"""Long-running services: the artifact monitor, its event bus and metrics."""

from kiln.service.events import EventBus, UnknownEventError
from kiln.service.metrics import MetricsAggregator, quality_score
from kiln.service.monitor import ArtifactNotFoundError, Monitor, diff_findings

__all__ = [
    "ArtifactNotFoundError",
    "EventBus",
    "MetricsAggregator",
    "Monitor",
    "UnknownEventError",
    "diff_findings",
    "quality_score",
]
