"""Tests for Settings and the monitor factory."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from kiln.app import configure_logging, create_monitor
from kiln.models.findings import Severity
from kiln.settings import Settings
from tests.conftest import GOOD_ARTIFACT

EXTRA_YAML = """\
signatures:
  - kind: document-write
    category: security
    severity: high
    description: document.write replaces the page
    patterns:
      - 'document\\.write\\s*\\('
"""


class TestSettings:
    def test_defaults(self) -> None:
        settings = Settings(_env_file=None)
        assert settings.sweep_interval_seconds == 30.0
        assert settings.recheck_delay_seconds == 5.0
        assert settings.max_workers == 8
        assert settings.sandbox_enabled is True
        assert settings.pattern_library_path is None

    def test_env_override(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("KILN_SWEEP_INTERVAL_SECONDS", "2.5")
        monkeypatch.setenv("KILN_SANDBOX_ENABLED", "false")
        settings = Settings(_env_file=None)
        assert settings.sweep_interval_seconds == 2.5
        assert settings.sandbox_enabled is False

    def test_alert_thresholds(self) -> None:
        settings = Settings(_env_file=None, alert_threshold_high=3)
        assert settings.alert_thresholds == {
            Severity.CRITICAL: 1,
            Severity.HIGH: 3,
            Severity.MEDIUM: 5,
            Severity.LOW: 10,
        }


class TestApp:
    def test_configure_logging(self) -> None:
        configure_logging(Settings(_env_file=None, log_level="debug"))
        assert logging.getLogger("kiln").level == logging.DEBUG
        configure_logging(Settings(_env_file=None, log_level="warning"))
        assert logging.getLogger("kiln").level == logging.WARNING

    def test_create_monitor(self, tmp_path: Path) -> None:
        extra = tmp_path / "signatures.yaml"
        extra.write_text(EXTRA_YAML, encoding="utf-8")
        settings = Settings(
            _env_file=None,
            sandbox_enabled=False,
            pattern_library_path=extra,
            alert_threshold_low=4,
            sweep_interval_seconds=12.0,
        )
        monitor = create_monitor(settings)
        try:
            assert monitor.is_running is False
            assert monitor.thresholds[Severity.LOW] == 4
            assert monitor.get_monitoring_status().sweep_interval_seconds == 12.0

            text = GOOD_ARTIFACT.replace(
                "render();\n", "render();\n            document.write('x');\n"
            )
            kinds = {f.kind for f in monitor.run_detection(text).findings}
            assert "document-write" in kinds
            assert monitor.run_detection(GOOD_ARTIFACT).findings == []
        finally:
            monitor.close()
