"""Validation, detection and repair reports."""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, Field, computed_field

from kiln.models.findings import Category, Finding, Severity

PASSING_SCORE = 80


class CategoryResult(BaseModel):
    """Score and findings of one rule category."""

    category: Category
    score: int = 100
    findings: list[Finding] = []
    critical: bool = False


class ValidationMetadata(BaseModel):
    text_length: int = 0
    complexity_score: int = 0
    estimated_performance: str = "basic"


class ValidationReport(BaseModel):
    """Per-category scored summary with an aggregate pass/fail verdict."""

    type_tag: str
    categories: dict[Category, CategoryResult]
    overall_score: float
    is_valid: bool
    suggestions: list[Finding] = []
    metadata: ValidationMetadata = ValidationMetadata()

    @property
    def findings(self) -> list[Finding]:
        return list(self.suggestions)

    @property
    def has_critical(self) -> bool:
        return any(result.critical for result in self.categories.values())


class Confidence(StrEnum):
    FULL = "full"
    REDUCED = "reduced"


class SandboxStatus(StrEnum):
    COMPLETED = "completed"
    TIMED_OUT = "timed_out"
    UNAVAILABLE = "unavailable"
    DISABLED = "disabled"
    SKIPPED = "skipped"


class DetectionReport(BaseModel):
    """Findings of the pattern and sandbox passes over one artifact."""

    type_tag: str
    findings: list[Finding] = []
    severity_level: Severity = Severity.LOW
    categories: dict[Category, list[Finding]] = {}
    recommendations: list[str] = []
    confidence: Confidence = Confidence.FULL
    sandbox_status: SandboxStatus = SandboxStatus.DISABLED
    duration_ms: float = 0.0

    @property
    def finding_count(self) -> int:
        return len(self.findings)


class RepairAttempt(BaseModel):
    """Outcome of applying one transformation for one finding."""

    finding: Finding
    transformation_id: str | None = None
    applied: bool = False
    reason: str | None = None


class RepairResult(BaseModel):
    """Aggregate of a repair run."""

    original_text: str
    fixed_text: str
    applied_fixes: list[RepairAttempt] = []
    failed_fixes: list[RepairAttempt] = []
    remaining_findings: list[Finding] = []
    improvement_rate: float = 100.0
    reverted: bool = False

    @computed_field  # type: ignore[prop-decorator]
    @property
    def fix_count(self) -> int:
        return len(self.applied_fixes)

    @property
    def changed(self) -> bool:
        return self.fixed_text != self.original_text


class RepairOutcomeStats(BaseModel):
    """Accumulated repair outcomes for one finding kind."""

    kind: str
    applied: int = 0
    failed: int = 0
    last_reason: str | None = None
    reasons: dict[str, int] = Field(default_factory=dict)

    @property
    def attempts(self) -> int:
        return self.applied + self.failed

    @property
    def success_rate(self) -> float:
        return self.applied / self.attempts * 100 if self.attempts else 0.0
