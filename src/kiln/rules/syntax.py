"""Markup, style and script structure checks."""

from __future__ import annotations

import re

from kiln.markup import (
    count_balance,
    inline_scripts,
    script_blocks,
    strip_css_comments,
    strip_js_literals,
    style_blocks,
)
from kiln.models.findings import Category, Finding, Severity
from kiln.rules.base import RuleCategory
from kiln.rules.registry import RuleRegistry

_DOCTYPE_RE = re.compile(r"<!DOCTYPE\s+html\s*>", re.IGNORECASE)


@RuleRegistry.register
class SyntaxRules(RuleCategory):
    """Document skeleton plus brace balance in styles and scripts."""

    @property
    def category(self) -> Category:
        return Category.SYNTAX

    @property
    def penalties(self) -> dict[Severity, int]:
        return {Severity.CRITICAL: 30, Severity.HIGH: 10, Severity.MEDIUM: 7, Severity.LOW: 5}

    def check(self, text: str, type_tag: str) -> list[Finding]:
        findings = self._check_document(text)
        findings.extend(self._check_styles(text))
        findings.extend(self._check_scripts(text))
        return findings

    def _check_document(self, text: str) -> list[Finding]:
        findings: list[Finding] = []
        lowered = text.lower()
        if not _DOCTYPE_RE.search(text):
            findings.append(
                self.finding("missing-doctype", Severity.HIGH, "DOCTYPE declaration is missing")
            )
        if "<html" not in lowered:
            findings.append(
                self.finding("missing-html-tag", Severity.CRITICAL, "<html> element is missing")
            )
        if "<head" not in lowered or "</head>" not in lowered:
            findings.append(
                self.finding("missing-head", Severity.HIGH, "<head> element is missing")
            )
        if "<body" not in lowered or "</body>" not in lowered:
            findings.append(
                self.finding("missing-body", Severity.CRITICAL, "<body> element is missing")
            )
        if "charset=" not in lowered:
            findings.append(
                self.finding("missing-charset", Severity.HIGH, "Character encoding is not declared")
            )
        if "viewport" not in lowered:
            findings.append(
                self.finding("missing-viewport", Severity.LOW, "Viewport meta tag is missing")
            )
        if "<canvas" not in lowered:
            findings.append(
                self.finding("missing-canvas", Severity.HIGH, "Game <canvas> element is missing")
            )
        return findings

    def _check_styles(self, text: str) -> list[Finding]:
        blocks = style_blocks(text)
        if not blocks:
            return [self.finding("missing-styles", Severity.LOW, "No CSS styles are defined")]

        findings: list[Finding] = []
        for index, block in enumerate(blocks, start=1):
            css = strip_css_comments(block.body)
            if count_balance(css, "{", "}") != 0:
                findings.append(
                    self.finding(
                        "css-brace-mismatch",
                        Severity.CRITICAL,
                        f"Unbalanced braces in style block {index}",
                        line=block.line,
                    )
                )
        if not any("box-sizing" in block.body for block in blocks):
            findings.append(
                self.finding(
                    "missing-box-sizing",
                    Severity.LOW,
                    "box-sizing is recommended for predictable layout",
                    line=blocks[0].line,
                )
            )
        return findings

    def _check_scripts(self, text: str) -> list[Finding]:
        if not script_blocks(text):
            return [
                self.finding("missing-scripts", Severity.CRITICAL, "JavaScript code is missing")
            ]

        findings: list[Finding] = []
        for index, block in enumerate(inline_scripts(text), start=1):
            code = strip_js_literals(block.body)
            if count_balance(code, "{", "}") != 0:
                findings.append(
                    self.finding(
                        "js-brace-mismatch",
                        Severity.CRITICAL,
                        f"Unbalanced braces in script block {index}",
                        line=block.line,
                    )
                )
            if count_balance(code, "(", ")") != 0:
                findings.append(
                    self.finding(
                        "js-paren-mismatch",
                        Severity.HIGH,
                        f"Unbalanced parentheses in script block {index}",
                        line=block.line,
                    )
                )
        return findings


def estimate_complexity(text: str) -> int:
    """Rough complexity score from keyword frequency."""
    return (
        len(re.findall(r"\bfunction\b", text)) * 2
        + len(re.findall(r"\bclass\b", text)) * 3
        + len(re.findall(r"\b(?:if|else|while|for)\b", text))
        + len(re.findall(r"\b(?:try|catch)\b", text)) * 2
    )


def estimate_performance(text: str) -> str:
    animation_frames = text.count("requestAnimationFrame")
    intervals = text.count("setInterval")
    canvas_ops = len(re.findall(r"fillRect|strokeRect|drawImage", text))
    if intervals > animation_frames:
        return "poor"
    if canvas_ops > 50:
        return "heavy"
    if animation_frames > 0:
        return "good"
    return "basic"

