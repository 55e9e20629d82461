"""Abstract rule category with severity-weighted scoring."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from kiln.markup import find_line
from kiln.models.findings import Category, Finding, Location, Severity, analysis_error
from kiln.models.reports import CategoryResult

logger = logging.getLogger("kiln.rules")


class RuleCategory(ABC):
    """One group of structural/contract/safety checks scored together.

    Subclasses implement :meth:`check`; :meth:`evaluate` wraps it with
    scoring and turns any exception into an ``analysis-error`` finding.
    """

    @property
    @abstractmethod
    def category(self) -> Category: ...

    @property
    @abstractmethod
    def penalties(self) -> dict[Severity, int]:
        """Points deducted from 100 per finding of each severity."""

    @abstractmethod
    def check(self, text: str, type_tag: str) -> list[Finding]:
        """Return the findings of this category for ``text``."""

    def evaluate(self, text: str, type_tag: str) -> CategoryResult:
        try:
            findings = self.check(text, type_tag)
        except Exception as exc:
            logger.exception("Rule category %s failed", self.category.value)
            return CategoryResult(
                category=self.category,
                score=0,
                findings=[analysis_error(self.category, exc)],
                critical=True,
            )
        return CategoryResult(
            category=self.category,
            score=self.score(findings),
            findings=findings,
            critical=any(f.severity is Severity.CRITICAL for f in findings),
        )

    def score(self, findings: list[Finding]) -> int:
        deducted = sum(self.penalties.get(f.severity, 0) for f in findings)
        return max(0, 100 - deducted)

    # -- helpers for subclasses ---------------------------------------------

    def finding(
        self,
        kind: str,
        severity: Severity,
        message: str,
        line: int = 1,
        suggested_fix: str | None = None,
    ) -> Finding:
        return Finding(
            kind=kind,
            message=message,
            severity=severity,
            category=self.category,
            location=Location(line=line),
            suggested_fix=suggested_fix,
        )

    def finding_at(
        self, kind: str, severity: Severity, message: str, text: str, needle: str
    ) -> Finding:
        return self.finding(kind, severity, message, line=find_line(text, needle))
