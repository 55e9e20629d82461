"""Tests for text transformations and the repair engine."""

from __future__ import annotations

import pytest

from kiln.detection import Detector
from kiln.feedback import RepairLedger
from kiln.models.findings import Category, Finding, Severity
from kiln.repair import (
    RepairEngine,
    TransformationRegistry,
    UnknownTransformationError,
    improvement_rate,
)
from kiln.repair.engine import REVERTED
from tests.conftest import GOOD_ARTIFACT, NO_INIT_ARTIFACT, NOISY_ARTIFACT

BROKEN = {
    "missing-doctype": GOOD_ARTIFACT.replace("<!DOCTYPE html>\n", ""),
    "missing-charset": GOOD_ARTIFACT.replace('<meta charset="UTF-8">', ""),
    "missing-viewport": GOOD_ARTIFACT.replace(
        '<meta name="viewport" content="width=device-width, initial-scale=1.0">', ""
    ),
    "missing-box-sizing": GOOD_ARTIFACT.replace("box-sizing: border-box; ", ""),
    "missing-alt-text": GOOD_ARTIFACT.replace("</canvas>", '</canvas><img src="logo.png">'),
    "missing-sdk-import": GOOD_ARTIFACT.replace('<script src="/js/SessionSDK.js"></script>', ""),
    "missing-sdk-initialization": NO_INIT_ARTIFACT,
    "missing-custom-event-pattern": GOOD_ARTIFACT.replace("event.detail || event", "event"),
    "unsafe-event-access": GOOD_ARTIFACT.replace("event.detail || event", "event.detail"),
    "missing-canvas-check": GOOD_ARTIFACT.replace(
        "        if (!canvas) {\n"
        "            throw new Error('Canvas element not found');\n"
        "        }\n",
        "",
    ),
    "unsafe-sensor-access": GOOD_ARTIFACT.replace(
        "data?.data?.orientation;", "data.data.orientation; const b = data.orientation.beta;"
    ),
    "missing-update-function": GOOD_ARTIFACT.replace("function update() {", "function tick() {"),
    "missing-render-function": GOOD_ARTIFACT.replace("function render() {", "function draw() {"),
    "missing-sensor-processor": GOOD_ARTIFACT.replace("processSensorData", "handleReading"),
    "high-frequency-interval": GOOD_ARTIFACT.replace(
        "requestAnimationFrame(gameLoop);\n    </script>",
        "setInterval(gameLoop, 5);\n    </script>",
    ),
    "unsafe-inner-html": GOOD_ARTIFACT.replace(
        "document.title =", "document.body.innerHTML ="
    ),
}


def _finding(kind: str, severity: Severity = Severity.HIGH, **extra) -> Finding:
    return Finding(
        kind=kind, message=f"{kind} found", severity=severity, category=Category.SYNTAX, **extra
    )


class TestTransformationRegistry:
    def test_every_fixable_kind_registered(self) -> None:
        assert set(BROKEN) <= set(TransformationRegistry.available())

    def test_unknown_raises(self) -> None:
        with pytest.raises(UnknownTransformationError, match="Available"):
            TransformationRegistry.get("console-logging")

    def test_defaults_is_a_copy(self) -> None:
        transforms = TransformationRegistry.defaults()
        transforms.pop("missing-doctype")
        assert "missing-doctype" in TransformationRegistry.available()


class TestTransformations:
    @pytest.mark.parametrize("kind", sorted(BROKEN))
    def test_changes_broken_text(self, kind: str) -> None:
        text = BROKEN[kind]
        assert text != GOOD_ARTIFACT
        assert TransformationRegistry.get(kind)(text, _finding(kind)) != text

    @pytest.mark.parametrize("kind", sorted(BROKEN))
    def test_idempotent(self, kind: str) -> None:
        transform = TransformationRegistry.get(kind)
        once = transform(BROKEN[kind], _finding(kind))
        assert transform(once, _finding(kind)) == once

    @pytest.mark.parametrize("kind", sorted(BROKEN))
    def test_no_change_on_good_artifact(self, kind: str) -> None:
        transform = TransformationRegistry.get(kind)
        assert transform(GOOD_ARTIFACT, _finding(kind)) == GOOD_ARTIFACT

    def test_sdk_initialization_after_declaration(self) -> None:
        text = NO_INIT_ARTIFACT.replace("<script>\n", "<script>\n        let sdk;\n", 1)
        fixed = TransformationRegistry.get("missing-sdk-initialization")(text, _finding("x"))
        assert "let sdk;" not in fixed
        assert "let sdk = new SessionSDK(" in fixed

    def test_sdk_initialization_without_inline_script(self) -> None:
        text = "<html><body><canvas></canvas></body></html>"
        fixed = TransformationRegistry.get("missing-sdk-initialization")(text, _finding("x"))
        assert "<script>" in fixed
        assert fixed.index("new SessionSDK(") < fixed.index("</body>")

    def test_sensor_chain_guarded(self) -> None:
        fixed = TransformationRegistry.get("unsafe-sensor-access")(
            "const b = data.data.orientation.beta;", _finding("x")
        )
        assert fixed == "const b = (data?.data?.orientation?.beta ?? 0);"

    def test_interval_slowed_to_frame_rate(self) -> None:
        fixed = TransformationRegistry.get("high-frequency-interval")(
            "setInterval(loop, 4);", _finding("x")
        )
        assert fixed == "setInterval(loop, 16);"

    def test_interval_delay_found_past_callback_arguments(self) -> None:
        transform = TransformationRegistry.get("high-frequency-interval")
        slow = "setInterval(() => move(player, 5), 1000);"
        assert transform(slow, _finding("x")) == slow
        fast = "setInterval(() => move(player, 5), 8);"
        assert transform(fast, _finding("x")) == "setInterval(() => move(player, 5), 16);"

    @pytest.mark.parametrize(
        "declaration",
        ["const update = dt => {", "let update = (dt) => {", "var update = function (dt) {"],
    )
    def test_update_stub_respects_existing_binding(self, declaration: str) -> None:
        text = GOOD_ARTIFACT.replace("function update() {", declaration)
        transform = TransformationRegistry.get("missing-update-function")
        assert transform(text, _finding("missing-update-function")) == text

    def test_render_stub_respects_existing_binding(self) -> None:
        text = GOOD_ARTIFACT.replace("function render() {", "const render = () => {")
        transform = TransformationRegistry.get("missing-render-function")
        assert transform(text, _finding("missing-render-function")) == text

    @pytest.mark.parametrize(
        "statement",
        [
            "data.orientation.gamma = v;",
            "data.data.orientation.beta += 1;",
            "data.data.orientation = reading;",
            "data.acceleration.x++;",
        ],
    )
    def test_sensor_writes_left_alone(self, statement: str) -> None:
        transform = TransformationRegistry.get("unsafe-sensor-access")
        assert transform(statement, _finding("x")) == statement

    def test_sensor_comparison_still_guarded(self) -> None:
        fixed = TransformationRegistry.get("unsafe-sensor-access")(
            "const flat = data.orientation.gamma === 0;", _finding("x")
        )
        assert fixed == "const flat = (data?.orientation?.gamma ?? 0) === 0;"

    def test_event_detail_write_left_alone(self) -> None:
        transform = TransformationRegistry.get("unsafe-event-access")
        text = "event.detail = payload;\nconst x = event.detail.x;"
        fixed = transform(text, _finding("x"))
        assert fixed == "event.detail = payload;\nconst x = (event.detail || event).x;"


class TestRepairEngine:
    def test_repairs_missing_initialisation(
        self, detector: Detector, repair_engine: RepairEngine
    ) -> None:
        findings = detector.detect(NO_INIT_ARTIFACT).findings
        result = repair_engine.repair(NO_INIT_ARTIFACT, findings)
        assert result.fix_count == 1
        assert result.applied_fixes[0].transformation_id == "missing-sdk-initialization"
        assert "new SessionSDK(" in result.fixed_text
        assert result.remaining_findings == []
        assert result.improvement_rate == 100
        assert not result.reverted

    def test_nothing_to_fix(self, repair_engine: RepairEngine) -> None:
        result = repair_engine.repair(GOOD_ARTIFACT, [])
        assert result.fixed_text == GOOD_ARTIFACT
        assert result.fix_count == 0
        assert result.improvement_rate == 100

    def test_partial_repair(self, detector: Detector, repair_engine: RepairEngine) -> None:
        findings = detector.detect(NOISY_ARTIFACT).findings
        result = repair_engine.repair(NOISY_ARTIFACT, findings)
        assert result.fix_count == 1
        assert {a.finding.kind for a in result.failed_fixes} == {
            "console-logging",
            "blocking-dialog",
            "var-declaration",
        }
        assert all(a.reason == "no transformation registered" for a in result.failed_fixes)
        assert len(result.remaining_findings) == 3
        assert result.improvement_rate == 25.0

    def test_repair_is_idempotent(self, detector: Detector, repair_engine: RepairEngine) -> None:
        first = repair_engine.repair(NOISY_ARTIFACT, detector.detect(NOISY_ARTIFACT).findings)
        second = repair_engine.repair(first.fixed_text, first.remaining_findings)
        assert second.fixed_text == first.fixed_text
        assert second.fix_count == 0

    @pytest.mark.parametrize("kind", sorted(BROKEN))
    def test_never_increases_findings(
        self, detector: Detector, repair_engine: RepairEngine, kind: str
    ) -> None:
        original = detector.detect(BROKEN[kind]).findings
        result = repair_engine.repair(BROKEN[kind], original)
        assert len(result.remaining_findings) <= len(original)
        assert 0 <= result.improvement_rate <= 100

    def test_transformation_attempted_once(self, repair_engine: RepairEngine) -> None:
        finding = _finding("missing-sdk-initialization", Severity.CRITICAL)
        duplicate = finding.model_copy(update={"message": "again"})
        result = repair_engine.repair(NO_INIT_ARTIFACT, [finding, duplicate])
        assert result.fix_count == 1
        assert result.failed_fixes == []

    def test_lookup_by_suggested_fix(self, repair_engine: RepairEngine) -> None:
        finding = _finding("sdk-runtime-error", suggested_fix="missing-sdk-initialization")
        assert repair_engine.can_repair(finding)
        assert not repair_engine.can_repair(_finding("console-logging"))
        result = repair_engine.repair(NO_INIT_ARTIFACT, [finding])
        assert result.applied_fixes[0].transformation_id == "missing-sdk-initialization"

    def test_no_change_is_a_failure(self, repair_engine: RepairEngine) -> None:
        result = repair_engine.repair(GOOD_ARTIFACT, [_finding("missing-doctype")])
        assert result.fix_count == 0
        assert result.failed_fixes[0].reason == "transformation made no change"
        assert result.failed_fixes[0].transformation_id == "missing-doctype"

    def test_raising_transformation(self, detector: Detector) -> None:
        def explode(text: str, finding: Finding) -> str:
            raise RuntimeError("bad input")

        engine = RepairEngine(detector, {"missing-doctype": explode})
        result = engine.repair(GOOD_ARTIFACT, [_finding("missing-doctype")])
        assert result.fixed_text == GOOD_ARTIFACT
        assert result.failed_fixes[0].reason == "transformation raised RuntimeError: bad input"

    def test_worse_result_is_reverted(self, detector: Detector) -> None:
        def sabotage(text: str, finding: Finding) -> str:
            return text.replace("function update() {", "function update() { eval(x);")

        ledger = RepairLedger()
        engine = RepairEngine(detector, {"console-logging": sabotage}, ledger=ledger)
        result = engine.repair(GOOD_ARTIFACT, [_finding("console-logging", Severity.LOW)])
        assert result.reverted
        assert result.fixed_text == GOOD_ARTIFACT
        assert result.applied_fixes == []
        assert result.failed_fixes[0].reason == REVERTED
        assert result.remaining_findings == []
        stats = ledger.stats("console-logging")
        assert stats is not None and stats.failed == 1

    def test_higher_severity_result_is_reverted(self, detector: Detector) -> None:
        text = GOOD_ARTIFACT.replace(
            "function update() {", "function update() {\n            console.log('tick');"
        )

        def swap(text: str, finding: Finding) -> str:
            return text.replace("console.log('tick');", "eval('tick');")

        findings = detector.detect(text).findings
        assert [f.kind for f in findings] == ["console-logging"]
        result = RepairEngine(detector, {"console-logging": swap}).repair(text, findings)
        assert result.reverted
        assert result.fixed_text == text
        assert result.failed_fixes[0].reason == REVERTED
        assert [f.kind for f in result.remaining_findings] == ["console-logging"]

    def test_ledger_records_outcomes(
        self, detector: Detector, repair_engine: RepairEngine, ledger: RepairLedger
    ) -> None:
        repair_engine.repair(NOISY_ARTIFACT, detector.detect(NOISY_ARTIFACT).findings)
        applied = ledger.stats("missing-sdk-initialization")
        failed = ledger.stats("console-logging")
        assert applied is not None and applied.applied == 1
        assert failed is not None and failed.last_reason == "no transformation registered"


class TestImprovementRate:
    @pytest.mark.parametrize(
        ("original", "remaining", "expected"),
        [(0, 0, 100.0), (4, 1, 75.0), (3, 2, 33.3), (2, 3, 0.0)],
    )
    def test_rate(self, original: int, remaining: int, expected: float) -> None:
        assert improvement_rate(original, remaining) == expected
