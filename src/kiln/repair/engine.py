"""Apply transformations for a set of findings and measure the improvement."""

from __future__ import annotations

import logging
from collections.abc import Mapping

from kiln.detection import Detector
from kiln.feedback import RepairLedger
from kiln.models.findings import Finding
from kiln.models.reports import RepairAttempt, RepairResult
from kiln.repair.transforms import Transformation, TransformationRegistry

logger = logging.getLogger("kiln.repair")

REVERTED = "reverted: repaired text is worse than the original"


class RepairEngine:
    """Maps finding kinds to text transformations and applies them in order.

    Each transformation runs at most once per call, on the text as left by
    the transformations before it. The detector is re-run on the result;
    if it has more findings, or a higher severity-weighted total, than the
    original, the whole repair is reverted.
    """

    def __init__(
        self,
        detector: Detector,
        transforms: Mapping[str, Transformation] | None = None,
        ledger: RepairLedger | None = None,
    ) -> None:
        self._detector = detector
        self._transforms = (
            dict(transforms) if transforms is not None else TransformationRegistry.defaults()
        )
        self._ledger = ledger

    @property
    def kinds(self) -> list[str]:
        return sorted(self._transforms)

    def can_repair(self, finding: Finding) -> bool:
        return self._transform_id(finding) is not None

    def repair(self, text: str, findings: list[Finding], type_tag: str = "solo") -> RepairResult:
        current = text
        applied: list[RepairAttempt] = []
        failed: list[RepairAttempt] = []
        attempted: set[str] = set()

        for finding in findings:
            transform_id = self._transform_id(finding)
            if transform_id is None:
                failed.append(RepairAttempt(finding=finding, reason="no transformation registered"))
                continue
            if transform_id in attempted:
                continue
            attempted.add(transform_id)
            try:
                fixed = self._transforms[transform_id](current, finding)
            except Exception as exc:
                logger.warning("Transformation %s raised: %s", transform_id, exc, exc_info=True)
                failed.append(
                    RepairAttempt(
                        finding=finding,
                        transformation_id=transform_id,
                        reason=f"transformation raised {type(exc).__name__}: {exc}",
                    )
                )
                continue
            if fixed == current:
                failed.append(
                    RepairAttempt(
                        finding=finding,
                        transformation_id=transform_id,
                        reason="transformation made no change",
                    )
                )
                continue
            current = fixed
            applied.append(
                RepairAttempt(finding=finding, transformation_id=transform_id, applied=True)
            )

        remaining = self._detector.detect(current, type_tag).findings
        reverted = False
        if applied:
            original = self._detector.detect(text, type_tag).findings
            if len(remaining) > len(original) or _weight(remaining) > _weight(original):
                logger.info(
                    "Reverting repair: %d finding(s) (weight %d) after vs %d (weight %d) before",
                    len(remaining),
                    _weight(remaining),
                    len(original),
                    _weight(original),
                )
                failed.extend(
                    attempt.model_copy(update={"applied": False, "reason": REVERTED})
                    for attempt in applied
                )
                applied = []
                current = text
                remaining = original
                reverted = True

        result = RepairResult(
            original_text=text,
            fixed_text=current,
            applied_fixes=applied,
            failed_fixes=failed,
            remaining_findings=remaining,
            improvement_rate=improvement_rate(len(findings), len(remaining)),
            reverted=reverted,
        )
        if self._ledger is not None:
            self._ledger.record_result(result)
        logger.debug(
            "Repair applied %d fix(es), %d failed, %d finding(s) remain",
            len(applied),
            len(failed),
            len(remaining),
        )
        return result

    def _transform_id(self, finding: Finding) -> str | None:
        if finding.kind in self._transforms:
            return finding.kind
        if finding.suggested_fix in self._transforms:
            return finding.suggested_fix
        return None


def improvement_rate(original: int, remaining: int) -> float:
    """Percentage of findings resolved, 100 when there was nothing to fix."""
    if original == 0:
        return 100.0
    return max(0.0, round((original - remaining) / original * 100, 1))


def _weight(findings: list[Finding]) -> int:
    return sum(f.severity.weight for f in findings)
