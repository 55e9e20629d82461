"""Pattern and sandbox detection over one artifact."""

from __future__ import annotations

import logging
import re
import time

from kiln.detection.patterns import ErrorSignature, PatternLibrary, SignatureScope
from kiln.detection.sandbox import NodeSandbox, SandboxResult
from kiln.feedback import RepairLedger
from kiln.markup import (
    FRAME_INTERVAL_MS,
    find_line,
    first_unbalanced,
    inline_scripts,
    interval_delays,
    script_segments,
    script_source,
    strip_js_literals,
)
from kiln.models.findings import (
    ANALYSIS_ERROR,
    Category,
    Finding,
    Location,
    Severity,
    analysis_error,
    dedupe,
)
from kiln.models.reports import Confidence, DetectionReport, SandboxStatus

logger = logging.getLogger("kiln.detection")

CATEGORY_TIPS: dict[Category, str] = {
    Category.SYNTAX: "Check bracket and quote pairing; generate scripts in smaller blocks",
    Category.FRAMEWORK_CONTRACT: (
        "Initialise SessionSDK once and unwrap payloads with `event.detail || event`"
    ),
    Category.RUNTIME_SAFETY: (
        "Guard canvas and sensor access with null checks and optional chaining"
    ),
    Category.PERFORMANCE: "Drive animation with requestAnimationFrame and keep loops bounded",
    Category.SECURITY: "Avoid eval and innerHTML; build DOM nodes or use textContent",
    Category.ACCESSIBILITY: "Offer keyboard controls and avoid blocking dialogs",
}

# Fallback translations for runtime errors no runtime signature claims.
_RUNTIME_SHAPES: list[tuple[re.Pattern[str], str, Severity, Category]] = [
    (
        re.compile(r"ReferenceError: (\w+) is not defined"),
        "undefined-variable",
        Severity.HIGH,
        Category.RUNTIME_SAFETY,
    ),
    (re.compile(r"SyntaxError: "), "syntax-error", Severity.CRITICAL, Category.SYNTAX),
    (
        re.compile(r"TypeError: Cannot read propert(?:y|ies) of (?:undefined|null)"),
        "null-property-access",
        Severity.HIGH,
        Category.RUNTIME_SAFETY,
    ),
    (
        re.compile(r"TypeError: .+ is not a function"),
        "not-a-function",
        Severity.HIGH,
        Category.RUNTIME_SAFETY,
    ),
]

_REDUCED_STATUSES = {SandboxStatus.TIMED_OUT, SandboxStatus.UNAVAILABLE}


def severity_level(findings: list[Finding]) -> Severity:
    """Weighted roll-up of finding severities into one level."""
    total = sum(f.severity.weight for f in findings)
    if total >= 20:
        return Severity.CRITICAL
    if total >= 10:
        return Severity.HIGH
    if total >= 5:
        return Severity.MEDIUM
    return Severity.LOW


class Detector:
    """Matches an artifact against a :class:`PatternLibrary` and, when a
    sandbox is configured, against the output of a trial run.

    Every pass is isolated: an exception inside one becomes a single
    critical ``analysis-error`` finding and the other passes still report.
    """

    def __init__(
        self,
        library: PatternLibrary | None = None,
        sandbox: NodeSandbox | None = None,
        ledger: RepairLedger | None = None,
    ) -> None:
        self._library = library if library is not None else PatternLibrary.default()
        self._sandbox = sandbox
        self._ledger = ledger

    @property
    def library(self) -> PatternLibrary:
        return self._library

    def detect(self, text: str, type_tag: str = "solo") -> DetectionReport:
        start = time.monotonic()
        findings = self._match_signatures(text)
        findings.extend(self._check_balance(text))
        findings.extend(self._check_intervals(text))
        runtime, status = self._run_sandbox(text)
        findings.extend(runtime)
        findings = dedupe(findings)

        categories: dict[Category, list[Finding]] = {}
        for finding in findings:
            categories.setdefault(finding.category, []).append(finding)

        reduced = status in _REDUCED_STATUSES or any(
            f.kind == ANALYSIS_ERROR and f.category is Category.RUNTIME_SAFETY for f in runtime
        )
        report = DetectionReport(
            type_tag=type_tag,
            findings=findings,
            severity_level=severity_level(findings),
            categories=categories,
            recommendations=self._recommend(findings, categories),
            confidence=Confidence.REDUCED if reduced else Confidence.FULL,
            sandbox_status=status,
            duration_ms=(time.monotonic() - start) * 1000,
        )
        logger.debug(
            "Detected %d finding(s) in %s artifact (sandbox %s)",
            len(findings),
            type_tag,
            status.value,
        )
        return report

    # -- passes --------------------------------------------------------------

    def _match_signatures(self, text: str) -> list[Finding]:
        findings: list[Finding] = []
        script = None
        for signature in self._library.signatures():
            if signature.scope is SignatureScope.RUNTIME:
                continue
            try:
                if signature.scope is SignatureScope.TEXT:
                    source = text
                else:
                    if script is None:
                        script = strip_js_literals(script_source(text))
                    source = script
                hit, match = signature.fires(source)
                if hit:
                    line = find_line(text, match.group(0)) if match is not None else 1
                    findings.append(_finding(signature, signature.description, line))
            except Exception as exc:
                logger.exception("Signature %s failed", signature.kind)
                findings.append(analysis_error(signature.category, exc))
                break
        return findings

    def _check_balance(self, text: str) -> list[Finding]:
        findings: list[Finding] = []
        try:
            for index, block in enumerate(inline_scripts(text), start=1):
                code = strip_js_literals(block.body)
                unbalanced = first_unbalanced(code)
                if unbalanced is None:
                    continue
                delimiter, offset = unbalanced
                findings.append(
                    Finding(
                        kind="unbalanced-delimiter",
                        message=f"Unbalanced '{delimiter}' in script block {index}",
                        severity=Severity.CRITICAL,
                        category=Category.SYNTAX,
                        location=Location(line=block.line + code.count("\n", 0, offset)),
                    )
                )
        except Exception as exc:
            logger.exception("Delimiter balance pass failed")
            return [analysis_error(Category.SYNTAX, exc)]
        return findings

    def _check_intervals(self, text: str) -> list[Finding]:
        findings: list[Finding] = []
        try:
            for block in script_segments(text):
                code = strip_js_literals(block.body)
                for start, _end, delay in interval_delays(code):
                    if delay >= FRAME_INTERVAL_MS:
                        continue
                    findings.append(
                        Finding(
                            kind="high-frequency-interval",
                            message=(
                                f"Interval fires every {delay} ms, faster than the display "
                                "refresh rate"
                            ),
                            severity=Severity.LOW,
                            category=Category.PERFORMANCE,
                            location=Location(line=block.line + code.count("\n", 0, start)),
                            suggested_fix="high-frequency-interval",
                        )
                    )
        except Exception as exc:
            logger.exception("Interval pass failed")
            return [analysis_error(Category.PERFORMANCE, exc)]
        return findings

    def _run_sandbox(self, text: str) -> tuple[list[Finding], SandboxStatus]:
        if self._sandbox is None:
            return [], SandboxStatus.DISABLED
        try:
            result = self._sandbox.run(text)
            return self._translate(result), result.status
        except Exception as exc:
            logger.exception("Sandbox pass failed")
            return [analysis_error(Category.RUNTIME_SAFETY, exc)], SandboxStatus.SKIPPED

    def _translate(self, result: SandboxResult) -> list[Finding]:
        if not result.failed:
            return []
        message = result.error_message
        if message is None:
            lines = result.stderr.strip().splitlines()
            message = lines[-1] if lines else f"node exited with code {result.exit_code}"
        line = result.error_line

        findings = [
            _finding(signature, f"{signature.description}: {message}", line)
            for signature in self._library.signatures(SignatureScope.RUNTIME)
            if signature.fires(result.stderr)[0]
        ]
        if findings:
            return findings
        for pattern, kind, severity, category in _RUNTIME_SHAPES:
            if pattern.search(message):
                return [
                    Finding(
                        kind=kind,
                        message=message,
                        severity=severity,
                        category=category,
                        location=Location(line=line),
                    )
                ]
        return [
            Finding(
                kind="runtime-error",
                message=message,
                severity=Severity.HIGH,
                category=Category.RUNTIME_SAFETY,
                location=Location(line=line),
            )
        ]

    # -- recommendations -----------------------------------------------------

    def _recommend(
        self, findings: list[Finding], categories: dict[Category, list[Finding]]
    ) -> list[str]:
        recommendations = [CATEGORY_TIPS[c] for c in Category if c in categories]
        if self._ledger is not None:
            recommendations.extend(self._ledger.hints(f.kind for f in findings))
        return recommendations


def _finding(signature: ErrorSignature, message: str, line: int) -> Finding:
    return Finding(
        kind=signature.kind,
        message=message,
        severity=signature.severity,
        category=signature.category,
        location=Location(line=line),
        suggested_fix=signature.suggested_fix,
    )
