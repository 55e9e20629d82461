"""SessionSDK contract and sensor-data handling checks."""

from __future__ import annotations

import re

from kiln.markup import find_line
from kiln.models.findings import Category, Finding, Severity
from kiln.rules.base import RuleCategory
from kiln.rules.registry import RuleRegistry

REQUIRED_EVENTS = ("connected", "session-created", "sensor-data")
SENSOR_FIELDS = ("orientation", "acceleration", "rotationRate")
SDK_INIT_RE = re.compile(r"new\s+SessionSDK\s*\(")

_SENSOR_GUARD_RE = re.compile(r"\bdata\s*&&|!\s*data\b|\bdata\?\.")


def _sdk_line(text: str) -> int:
    line = find_line(text, "SessionSDK")
    return line if line > 1 else find_line(text, "sdk")


@RuleRegistry.register
class FrameworkContractRules(RuleCategory):
    """The artifact must load, initialise and listen through SessionSDK."""

    @property
    def category(self) -> Category:
        return Category.FRAMEWORK_CONTRACT

    @property
    def penalties(self) -> dict[Severity, int]:
        return {Severity.CRITICAL: 40, Severity.HIGH: 15, Severity.MEDIUM: 8, Severity.LOW: 4}

    def check(self, text: str, type_tag: str) -> list[Finding]:
        findings: list[Finding] = []
        line = _sdk_line(text)

        if "SessionSDK.js" not in text:
            findings.append(
                self.finding(
                    "missing-sdk-import",
                    Severity.CRITICAL,
                    "SessionSDK script is not loaded",
                    line=line,
                    suggested_fix="missing-sdk-import",
                )
            )
        if not SDK_INIT_RE.search(text):
            findings.append(
                self.finding(
                    "missing-sdk-initialization",
                    Severity.CRITICAL,
                    "SessionSDK is never initialised",
                    line=line,
                    suggested_fix="missing-sdk-initialization",
                )
            )
        for event in REQUIRED_EVENTS:
            if f"'{event}'" not in text and f'"{event}"' not in text:
                findings.append(
                    self.finding(
                        "missing-event-listener",
                        Severity.HIGH,
                        f"Required event listener is missing: {event}",
                        line=line,
                    )
                )
        if "sdk.on" in text and ".detail" not in text:
            findings.append(
                self.finding(
                    "missing-custom-event-pattern",
                    Severity.HIGH,
                    "SDK handlers must unwrap CustomEvent payloads (event.detail || event)",
                    line=find_line(text, "sdk.on"),
                    suggested_fix="missing-custom-event-pattern",
                )
            )
        return findings


@RuleRegistry.register
class RuntimeSafetyRules(RuleCategory):
    """Sensor payloads must be handled and accessed safely."""

    @property
    def category(self) -> Category:
        return Category.RUNTIME_SAFETY

    @property
    def penalties(self) -> dict[Severity, int]:
        return {Severity.CRITICAL: 50, Severity.HIGH: 20, Severity.MEDIUM: 10, Severity.LOW: 5}

    def check(self, text: str, type_tag: str) -> list[Finding]:
        findings: list[Finding] = []

        if "sensor-data" not in text and "processSensorData" not in text:
            findings.append(
                self.finding(
                    "missing-sensor-handler",
                    Severity.CRITICAL,
                    "Sensor data is never handled",
                )
            )
        for name in SENSOR_FIELDS:
            if name in text and not any(
                f"{name}.{axis}" in text for axis in ("alpha", "beta", "gamma", "x", "y", "z")
            ):
                findings.append(
                    self.finding_at(
                        "incomplete-sensor-usage",
                        Severity.LOW,
                        f"Sensor field {name} is referenced but none of its axes are used",
                        text,
                        name,
                    )
                )
        if "data.data" in text and not _SENSOR_GUARD_RE.search(text):
            findings.append(
                self.finding_at(
                    "unsafe-sensor-access",
                    Severity.HIGH,
                    "Sensor payload is accessed without a null check",
                    text,
                    "data.data",
                )
            )
        return findings
