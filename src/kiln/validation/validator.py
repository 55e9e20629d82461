"""Runs the rule catalog over an artifact and aggregates a verdict."""

from __future__ import annotations

from kiln.models.findings import Category, sort_by_severity
from kiln.models.reports import (
    PASSING_SCORE,
    CategoryResult,
    ValidationMetadata,
    ValidationReport,
)
from kiln.rules import RuleCatalog
from kiln.rules.syntax import estimate_complexity, estimate_performance


class Validator:
    """Scores an artifact per rule category.

    ``is_valid`` needs both ``overall_score >= min_score`` and no critical
    category: averaging can hide a single critical issue, so the gate is
    checked separately.
    """

    def __init__(
        self, catalog: RuleCatalog | None = None, min_score: float = PASSING_SCORE
    ) -> None:
        self._catalog = catalog if catalog is not None else RuleCatalog.default()
        self._min_score = min_score

    @property
    def catalog(self) -> RuleCatalog:
        return self._catalog

    def validate(self, text: str, type_tag: str = "solo") -> ValidationReport:
        results: dict[Category, CategoryResult] = {}
        for rule in self._catalog:
            result = rule.evaluate(text, type_tag)
            results[result.category] = result

        scores = [result.score for result in results.values()]
        overall = round(sum(scores) / len(scores), 1) if scores else 100.0
        critical = any(result.critical for result in results.values())
        findings = [f for result in results.values() for f in result.findings]

        return ValidationReport(
            type_tag=type_tag,
            categories=results,
            overall_score=overall,
            is_valid=overall >= self._min_score and not critical,
            suggestions=sort_by_severity(findings),
            metadata=ValidationMetadata(
                text_length=len(text),
                complexity_score=estimate_complexity(text),
                estimated_performance=estimate_performance(text),
            ),
        )
