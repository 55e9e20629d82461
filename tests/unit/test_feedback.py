"""Tests for the repair outcome ledger."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor

from kiln.feedback import RepairLedger
from kiln.models.findings import Category, Finding, Severity
from kiln.models.reports import RepairAttempt, RepairResult


def _attempt(kind: str, applied: bool, reason: str | None = None) -> RepairAttempt:
    finding = Finding(kind=kind, message=kind, severity=Severity.HIGH, category=Category.SYNTAX)
    return RepairAttempt(finding=finding, transformation_id=kind, applied=applied, reason=reason)


class TestRepairLedger:
    def test_empty(self) -> None:
        ledger = RepairLedger()
        assert ledger.stats("anything") is None
        assert ledger.snapshot() == {}
        assert ledger.hints() == []

    def test_record_counts(self) -> None:
        ledger = RepairLedger()
        ledger.record(_attempt("a", True))
        ledger.record(_attempt("a", False, "made no change"))
        ledger.record(_attempt("a", False, "made no change"))
        stats = ledger.stats("a")
        assert stats is not None
        assert (stats.applied, stats.failed, stats.attempts) == (1, 2, 3)
        assert stats.reasons == {"made no change": 2}
        assert round(stats.success_rate, 1) == 33.3

    def test_record_result(self) -> None:
        ledger = RepairLedger()
        ledger.record_result(
            RepairResult(
                original_text="a",
                fixed_text="b",
                applied_fixes=[_attempt("x", True)],
                failed_fixes=[_attempt("y", False, "no transformation registered")],
            )
        )
        assert set(ledger.snapshot()) == {"x", "y"}

    def test_stats_are_copies(self) -> None:
        ledger = RepairLedger()
        ledger.record(_attempt("a", True))
        stats = ledger.stats("a")
        assert stats is not None
        stats.applied = 99
        assert ledger.stats("a").applied == 1  # type: ignore[union-attr]

    def test_reliable_and_failing(self) -> None:
        ledger = RepairLedger()
        for _ in range(3):
            ledger.record(_attempt("good", True))
            ledger.record(_attempt("bad", False, "raised"))
        ledger.record(_attempt("rare", False, "raised"))
        assert ledger.reliable_kinds() == ["good"]
        assert ledger.failing_kinds() == ["bad"]
        assert ledger.failing_kinds(min_attempts=1) == ["bad", "rare"]

    def test_hints_filtered_by_kind(self) -> None:
        ledger = RepairLedger()
        for _ in range(3):
            ledger.record(_attempt("good", True))
            ledger.record(_attempt("bad", False, "raised"))
        assert len(ledger.hints()) == 2
        hints = ledger.hints(["bad"])
        assert len(hints) == 1
        assert "'bad'" in hints[0] and "raised" in hints[0]

    def test_concurrent_records(self) -> None:
        ledger = RepairLedger()
        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(lambda i: ledger.record(_attempt("k", i % 2 == 0, "r")), range(200)))
        stats = ledger.stats("k")
        assert stats is not None
        assert stats.attempts == 200
        assert stats.applied == 100
