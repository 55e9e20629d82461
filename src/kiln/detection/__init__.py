"""Error signature library, sandbox trial runs and the detector combining them."""

from kiln.detection.detector import CATEGORY_TIPS, Detector, severity_level
from kiln.detection.patterns import (
    ErrorSignature,
    PatternLibrary,
    PatternLibraryError,
    SignatureScope,
    YAMLSafetyError,
)
from kiln.detection.sandbox import NodeSandbox, SandboxResult

__all__ = [
    "CATEGORY_TIPS",
    "Detector",
    "ErrorSignature",
    "NodeSandbox",
    "PatternLibrary",
    "PatternLibraryError",
    "SandboxResult",
    "SignatureScope",
    "YAMLSafetyError",
    "severity_level",
]
