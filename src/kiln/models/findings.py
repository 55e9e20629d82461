"""Finding value objects: severity, category and source location."""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, ConfigDict, field_validator


class Severity(StrEnum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        """Ordinal urgency, higher is more urgent."""
        return _SEVERITY_RANK[self]

    @property
    def weight(self) -> int:
        """Weight used by the detector's severity roll-up."""
        return _SEVERITY_WEIGHT[self]

    @classmethod
    def parse(cls, value: str) -> Severity:
        """Parse a severity name, accepting the ``major``/``minor`` aliases."""
        normalized = value.strip().lower()
        return cls(_SEVERITY_ALIASES.get(normalized, normalized))


_SEVERITY_RANK = {
    Severity.CRITICAL: 4,
    Severity.HIGH: 3,
    Severity.MEDIUM: 2,
    Severity.LOW: 1,
}
_SEVERITY_WEIGHT = {
    Severity.CRITICAL: 10,
    Severity.HIGH: 5,
    Severity.MEDIUM: 2,
    Severity.LOW: 1,
}
_SEVERITY_ALIASES = {"major": "high", "minor": "low"}


class Category(StrEnum):
    """Concern area of a finding, shared by the validator and the detector."""

    SYNTAX = "syntax"
    FRAMEWORK_CONTRACT = "framework-contract"
    RUNTIME_SAFETY = "runtime-safety"
    PERFORMANCE = "performance"
    SECURITY = "security"
    ACCESSIBILITY = "accessibility"


class Location(BaseModel):
    """Points to a position in the artifact text (1-based)."""

    model_config = ConfigDict(frozen=True)

    line: int = 1
    column: int | None = None


class Finding(BaseModel):
    """One concrete issue detected in an artifact."""

    model_config = ConfigDict(frozen=True)

    kind: str
    message: str
    severity: Severity
    category: Category
    location: Location = Location()
    suggested_fix: str | None = None

    @field_validator("severity", mode="before")
    @classmethod
    def _accept_aliases(cls, value: object) -> object:
        if isinstance(value, str) and not isinstance(value, Severity):
            return Severity.parse(value)
        return value

    @property
    def key(self) -> tuple[str, str]:
        """Identity used for diffing and deduplication."""
        return (self.kind, self.message)


ANALYSIS_ERROR = "analysis-error"


def analysis_error(category: Category, exc: BaseException) -> Finding:
    """Build the synthetic finding that stands in for a failed analysis pass."""
    return Finding(
        kind=ANALYSIS_ERROR,
        message=f"{category.value} analysis failed: {exc}",
        severity=Severity.CRITICAL,
        category=category,
    )


def dedupe(findings: list[Finding]) -> list[Finding]:
    """Drop findings whose ``(kind, message)`` was already seen, keeping order."""
    seen: set[tuple[str, str]] = set()
    unique: list[Finding] = []
    for finding in findings:
        if finding.key in seen:
            continue
        seen.add(finding.key)
        unique.append(finding)
    return unique


def sort_by_severity(findings: list[Finding]) -> list[Finding]:
    """Stable sort, most severe first."""
    return sorted(findings, key=lambda f: f.severity.rank, reverse=True)


def count_by_severity(findings: list[Finding]) -> dict[Severity, int]:
    counts = {severity: 0 for severity in Severity}
    for finding in findings:
        counts[finding.severity] += 1
    return counts
