"""Shared settings loaded from environment / .env file."""

from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

from kiln.models.findings import Severity
from kiln.models.reports import PASSING_SCORE


class Settings(BaseSettings):
    """Configuration for a Kiln monitor.

    Values are read from ``KILN_``-prefixed environment variables and from
    a ``.env`` file in the working directory.
    """

    model_config = SettingsConfigDict(
        env_prefix="KILN_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Shared
    log_level: str = "INFO"

    # Monitor
    sweep_interval_seconds: float = 30.0
    recheck_delay_seconds: float = 5.0  # delay before re-checking a repaired artifact
    max_workers: int = 8
    history_capacity: int = 50
    validate_on_check: bool = True

    # Alert thresholds (new findings of a severity needed to raise an alert)
    alert_threshold_critical: int = 1
    alert_threshold_high: int = 2
    alert_threshold_medium: int = 5
    alert_threshold_low: int = 10

    # Detection
    sandbox_enabled: bool = True
    sandbox_timeout_ms: int = 500
    node_binary: str = "node"
    pattern_library_path: Path | None = None  # extra YAML signatures

    # Validation
    min_passing_score: float = PASSING_SCORE

    # Metrics
    metrics_log_capacity: int = 1000
    trend_window: int = 50

    @property
    def alert_thresholds(self) -> dict[Severity, int]:
        return {
            Severity.CRITICAL: self.alert_threshold_critical,
            Severity.HIGH: self.alert_threshold_high,
            Severity.MEDIUM: self.alert_threshold_medium,
            Severity.LOW: self.alert_threshold_low,
        }
