"""Performance, security and accessibility checks."""

from __future__ import annotations

import re

from kiln.models.findings import Category, Finding, Severity
from kiln.rules.base import RuleCategory
from kiln.rules.registry import RuleRegistry

_EXTERNAL_SCRIPT_RE = re.compile(r"src=[\"']https?://[^\"']+[\"']", re.IGNORECASE)
_IMG_RE = re.compile(r"<img\b[^>]*>", re.IGNORECASE)
_DRAW_RE = re.compile(r"fillRect|strokeRect|drawImage")
_EVAL_RE = re.compile(r"(?<![\w.$])eval\s*\(")


@RuleRegistry.register
class PerformanceRules(RuleCategory):
    @property
    def category(self) -> Category:
        return Category.PERFORMANCE

    @property
    def penalties(self) -> dict[Severity, int]:
        return {Severity.CRITICAL: 40, Severity.HIGH: 20, Severity.MEDIUM: 15, Severity.LOW: 10}

    def check(self, text: str, type_tag: str) -> list[Finding]:
        findings: list[Finding] = []
        if "setInterval" in text and "requestAnimationFrame" not in text:
            findings.append(
                self.finding_at(
                    "inefficient-animation",
                    Severity.HIGH,
                    "Use requestAnimationFrame instead of setInterval for animation",
                    text,
                    "setInterval",
                )
            )
        if "addEventListener" in text and "removeEventListener" not in text:
            findings.append(
                self.finding_at(
                    "potential-memory-leak",
                    Severity.LOW,
                    "Event listeners are added but never removed",
                    text,
                    "addEventListener",
                )
            )
        if "clearRect" in text:
            clears = text.count("clearRect")
            draws = len(_DRAW_RE.findall(text))
            if draws > clears * 10:
                findings.append(
                    self.finding_at(
                        "excessive-drawing",
                        Severity.LOW,
                        f"{draws} draw calls per {clears} clears; consider batching",
                        text,
                        "clearRect",
                    )
                )
        return findings


@RuleRegistry.register
class SecurityRules(RuleCategory):
    @property
    def category(self) -> Category:
        return Category.SECURITY

    @property
    def penalties(self) -> dict[Severity, int]:
        return {Severity.CRITICAL: 50, Severity.HIGH: 25, Severity.MEDIUM: 10, Severity.LOW: 5}

    def check(self, text: str, type_tag: str) -> list[Finding]:
        findings: list[Finding] = []
        if "innerHTML" in text and "escape" not in text:
            findings.append(
                self.finding_at(
                    "unsafe-inner-html",
                    Severity.HIGH,
                    "innerHTML without escaping is open to XSS",
                    text,
                    "innerHTML",
                )
            )
        eval_match = _EVAL_RE.search(text)
        if eval_match:
            findings.append(
                self.finding(
                    "dangerous-eval",
                    Severity.CRITICAL,
                    "eval() must not be used",
                    line=text.count("\n", 0, eval_match.start()) + 1,
                )
            )
        if "document.write" in text:
            findings.append(
                self.finding_at(
                    "document-write",
                    Severity.HIGH,
                    "document.write() replaces the page and blocks parsing",
                    text,
                    "document.write",
                )
            )
        if len(_EXTERNAL_SCRIPT_RE.findall(text)) > 2:
            findings.append(
                self.finding(
                    "excessive-external-scripts",
                    Severity.LOW,
                    "Too many external scripts; load only what is needed",
                )
            )
        return findings


@RuleRegistry.register
class AccessibilityRules(RuleCategory):
    @property
    def category(self) -> Category:
        return Category.ACCESSIBILITY

    @property
    def penalties(self) -> dict[Severity, int]:
        return {Severity.CRITICAL: 30, Severity.HIGH: 15, Severity.MEDIUM: 10, Severity.LOW: 5}

    def check(self, text: str, type_tag: str) -> list[Finding]:
        findings: list[Finding] = []
        for match in _IMG_RE.finditer(text):
            if "alt=" not in match.group(0):
                findings.append(
                    self.finding(
                        "missing-alt-text",
                        Severity.LOW,
                        f"Image without alt text: {match.group(0)}",
                        line=text.count("\n", 0, match.start()) + 1,
                        suggested_fix="missing-alt-text",
                    )
                )
        if "keydown" not in text and "keyup" not in text:
            findings.append(
                self.finding(
                    "no-keyboard-support",
                    Severity.LOW,
                    "No keyboard navigation support",
                )
            )
        if "<button" in text and "aria-label" not in text:
            findings.append(
                self.finding_at(
                    "missing-aria-labels",
                    Severity.LOW,
                    "Buttons have no ARIA labels",
                    text,
                    "<button",
                )
            )
        return findings
