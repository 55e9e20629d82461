"""Repair outcome ledger feeding recommendations back into detection and metrics."""

from __future__ import annotations

import threading
from collections.abc import Iterable

from kiln.models.reports import RepairAttempt, RepairOutcomeStats, RepairResult

MIN_ATTEMPTS = 3
RELIABLE_RATE = 80.0
FAILING_RATE = 20.0


class RepairLedger:
    """Per-kind tally of applied and failed repair attempts.

    Shared by the repair engine (writer) and the detector and metrics
    aggregator (readers).
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._stats: dict[str, RepairOutcomeStats] = {}

    def record(self, attempt: RepairAttempt) -> None:
        kind = attempt.finding.kind
        with self._lock:
            stats = self._stats.setdefault(kind, RepairOutcomeStats(kind=kind))
            if attempt.applied:
                stats.applied += 1
                return
            stats.failed += 1
            reason = attempt.reason or "unknown"
            stats.last_reason = reason
            stats.reasons[reason] = stats.reasons.get(reason, 0) + 1

    def record_result(self, result: RepairResult) -> None:
        for attempt in [*result.applied_fixes, *result.failed_fixes]:
            self.record(attempt)

    def stats(self, kind: str) -> RepairOutcomeStats | None:
        with self._lock:
            stats = self._stats.get(kind)
            return stats.model_copy(deep=True) if stats is not None else None

    def snapshot(self) -> dict[str, RepairOutcomeStats]:
        with self._lock:
            return {kind: s.model_copy(deep=True) for kind, s in self._stats.items()}

    def reliable_kinds(self, min_attempts: int = MIN_ATTEMPTS) -> list[str]:
        """Kinds whose repairs succeed at least ``RELIABLE_RATE`` percent of the time."""
        return [
            kind
            for kind, s in self.snapshot().items()
            if s.attempts >= min_attempts and s.success_rate >= RELIABLE_RATE
        ]

    def failing_kinds(self, min_attempts: int = MIN_ATTEMPTS) -> list[str]:
        """Kinds whose repairs succeed at most ``FAILING_RATE`` percent of the time."""
        return [
            kind
            for kind, s in self.snapshot().items()
            if s.attempts >= min_attempts and s.success_rate <= FAILING_RATE
        ]

    def hints(self, kinds: Iterable[str] | None = None) -> list[str]:
        """Textual hints for ``kinds`` (every recorded kind when omitted)."""
        wanted = set(kinds) if kinds is not None else None
        hints: list[str] = []
        for kind in self.reliable_kinds():
            if wanted is None or kind in wanted:
                hints.append(f"'{kind}' is repaired automatically in most cases; keep auto-fix on")
        snapshot = self.snapshot()
        for kind in self.failing_kinds():
            if wanted is None or kind in wanted:
                reason = snapshot[kind].last_reason
                hints.append(
                    f"Automatic repair of '{kind}' keeps failing ({reason}); "
                    "address it in the generator"
                )
        return hints
