"""Monitor events, one model per event, discriminated by ``kind``."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Annotated, ClassVar, Literal

from pydantic import BaseModel, Field

from kiln.models.findings import Finding, Severity
from kiln.models.reports import RepairResult


class _Event(BaseModel):
    name: ClassVar[str]

    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))


class MonitoringStarted(_Event):
    name: ClassVar[str] = "monitoringStarted"
    kind: Literal["monitoringStarted"] = "monitoringStarted"


class MonitoringStopped(_Event):
    name: ClassVar[str] = "monitoringStopped"
    kind: Literal["monitoringStopped"] = "monitoringStopped"


class ArtifactRegistered(_Event):
    name: ClassVar[str] = "artifactRegistered"
    kind: Literal["artifactRegistered"] = "artifactRegistered"
    artifact_id: str
    type_tag: str


class ArtifactUnregistered(_Event):
    name: ClassVar[str] = "artifactUnregistered"
    kind: Literal["artifactUnregistered"] = "artifactUnregistered"
    artifact_id: str


class NewErrorsDetected(_Event):
    name: ClassVar[str] = "newErrorsDetected"
    kind: Literal["newErrorsDetected"] = "newErrorsDetected"
    artifact_id: str
    new_findings: list[Finding]
    critical_count: int = 0
    high_count: int = 0


class CriticalErrorsDetected(_Event):
    name: ClassVar[str] = "criticalErrorsDetected"
    kind: Literal["criticalErrorsDetected"] = "criticalErrorsDetected"
    artifact_id: str
    findings: list[Finding]


class AutoFixCompleted(_Event):
    name: ClassVar[str] = "autoFixCompleted"
    kind: Literal["autoFixCompleted"] = "autoFixCompleted"
    artifact_id: str
    result: RepairResult


class AutoFixFailed(_Event):
    name: ClassVar[str] = "autoFixFailed"
    kind: Literal["autoFixFailed"] = "autoFixFailed"
    artifact_id: str
    reason: str


class AlertTriggered(_Event):
    name: ClassVar[str] = "alertTriggered"
    kind: Literal["alertTriggered"] = "alertTriggered"
    artifact_id: str
    severity_counts: dict[Severity, int]
    reasons: list[str]


class ArtifactChecked(_Event):
    name: ClassVar[str] = "artifactChecked"
    kind: Literal["artifactChecked"] = "artifactChecked"
    artifact_id: str
    finding_count: int
    new_count: int
    resolved_count: int


class CheckFailed(_Event):
    name: ClassVar[str] = "checkFailed"
    kind: Literal["checkFailed"] = "checkFailed"
    artifact_id: str
    error: str


class CheckSkipped(_Event):
    name: ClassVar[str] = "checkSkipped"
    kind: Literal["checkSkipped"] = "checkSkipped"
    artifact_id: str
    reason: str = "check already in progress"


class ThresholdsUpdated(_Event):
    name: ClassVar[str] = "thresholdsUpdated"
    kind: Literal["thresholdsUpdated"] = "thresholdsUpdated"
    thresholds: dict[Severity, int]


class ArtifactSettingsUpdated(_Event):
    name: ClassVar[str] = "artifactSettingsUpdated"
    kind: Literal["artifactSettingsUpdated"] = "artifactSettingsUpdated"
    artifact_id: str
    auto_fix_enabled: bool
    alerts_enabled: bool


MonitorEvent = Annotated[
    MonitoringStarted
    | MonitoringStopped
    | ArtifactRegistered
    | ArtifactUnregistered
    | NewErrorsDetected
    | CriticalErrorsDetected
    | AutoFixCompleted
    | AutoFixFailed
    | AlertTriggered
    | ArtifactChecked
    | CheckFailed
    | CheckSkipped
    | ThresholdsUpdated
    | ArtifactSettingsUpdated,
    Field(discriminator="kind"),
]

EVENT_TYPES: dict[str, type[_Event]] = {
    cls.name: cls
    for cls in (
        MonitoringStarted,
        MonitoringStopped,
        ArtifactRegistered,
        ArtifactUnregistered,
        NewErrorsDetected,
        CriticalErrorsDetected,
        AutoFixCompleted,
        AutoFixFailed,
        AlertTriggered,
        ArtifactChecked,
        CheckFailed,
        CheckSkipped,
        ThresholdsUpdated,
        ArtifactSettingsUpdated,
    )
}
