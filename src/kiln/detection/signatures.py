"""Built-in error signatures."""

from __future__ import annotations

from kiln.detection.patterns import ErrorSignature, SignatureScope
from kiln.markup import NOT_ASSIGNED
from kiln.models.findings import Category, Severity

_RUNTIME = SignatureScope.RUNTIME
_TEXT = SignatureScope.TEXT

BUILTIN_SIGNATURES: list[ErrorSignature] = [
    # -- runtime output -------------------------------------------------------
    ErrorSignature(
        kind="syntax-error",
        category=Category.SYNTAX,
        severity=Severity.CRITICAL,
        description="Script fails to parse",
        patterns=[
            r"SyntaxError: Unexpected token",
            r"SyntaxError: Invalid or unexpected token",
            r"SyntaxError: Unexpected end of input",
            r"SyntaxError: missing \) after argument list",
        ],
        scope=_RUNTIME,
    ),
    ErrorSignature(
        kind="sdk-runtime-error",
        category=Category.FRAMEWORK_CONTRACT,
        severity=Severity.CRITICAL,
        description="SessionSDK is not available or not initialised at runtime",
        patterns=[
            r"SessionSDK is not defined",
            r"Cannot read propert(?:y|ies) of (?:undefined|null) \(reading 'on'\)",
            r"Cannot read property 'on' of undefined",
            r"sdk\.createSession is not a function",
        ],
        scope=_RUNTIME,
        suggested_fix="missing-sdk-initialization",
    ),
    ErrorSignature(
        kind="canvas-runtime-error",
        category=Category.RUNTIME_SAFETY,
        severity=Severity.HIGH,
        description="Canvas element or context is missing at runtime",
        patterns=[
            r"Cannot read propert(?:y|ies) of null \(reading 'getContext'\)",
            r"Cannot read property 'getContext' of null",
            r"Canvas context is null",
        ],
        scope=_RUNTIME,
        suggested_fix="missing-canvas-check",
    ),
    ErrorSignature(
        kind="sensor-runtime-error",
        category=Category.RUNTIME_SAFETY,
        severity=Severity.HIGH,
        description="Sensor payload is read without checking its shape",
        patterns=[
            r"Cannot read propert(?:y|ies) of undefined "
            r"\(reading '(?:orientation|acceleration|rotationRate)'\)",
            r"Cannot read property '(?:orientation|acceleration|rotationRate)' of undefined",
            r"Invalid sensor data format",
        ],
        scope=_RUNTIME,
        suggested_fix="unsafe-sensor-access",
    ),
    ErrorSignature(
        kind="game-loop-runtime-error",
        category=Category.RUNTIME_SAFETY,
        severity=Severity.HIGH,
        description="Game loop calls a function that does not exist",
        patterns=[r"\bupdate is not a function", r"\brender is not a function"],
        scope=_RUNTIME,
    ),
    # -- framework contract ---------------------------------------------------
    ErrorSignature(
        kind="missing-sdk-initialization",
        category=Category.FRAMEWORK_CONTRACT,
        severity=Severity.CRITICAL,
        description="SessionSDK is never constructed",
        patterns=[r"new\s+SessionSDK\s*\("],
        when_absent=True,
        scope=_TEXT,
        suggested_fix="missing-sdk-initialization",
    ),
    ErrorSignature(
        kind="unsafe-event-access",
        category=Category.FRAMEWORK_CONTRACT,
        severity=Severity.MEDIUM,
        description="CustomEvent payload read without the `event.detail || event` fallback",
        patterns=[r"\b(?:event|evt|e)\.detail\b(?!\s*\|\|)"],
        suggested_fix="unsafe-event-access",
    ),
    # -- runtime safety -------------------------------------------------------
    ErrorSignature(
        kind="missing-canvas-check",
        category=Category.RUNTIME_SAFETY,
        severity=Severity.MEDIUM,
        description="Canvas context is requested without checking the element exists",
        patterns=[r"\.getContext\s*\("],
        unless=[r"if\s*\(\s*!\s*canvas\s*\)"],
        suggested_fix="missing-canvas-check",
    ),
    ErrorSignature(
        kind="unsafe-sensor-access",
        category=Category.RUNTIME_SAFETY,
        severity=Severity.MEDIUM,
        description="Sensor axis read without optional chaining",
        patterns=[
            r"(?<![\w$.?])data(?:\.data)?\.(?:orientation|acceleration|rotationRate)\.\w+\b"
            + NOT_ASSIGNED
        ],
        suggested_fix="unsafe-sensor-access",
    ),
    ErrorSignature(
        kind="missing-update-function",
        category=Category.RUNTIME_SAFETY,
        severity=Severity.HIGH,
        description="Game loop runs but no update function is defined",
        patterns=[r"requestAnimationFrame|setInterval"],
        unless=[
            r"function\s+update\s*\(",
            r"\bupdate\s*=\s*(?:async\s+)?(?:function\b|\(?[\w\s,]*\)?\s*=>)",
            r"^\s*update\s*\([^)]*\)\s*\{",
        ],
        suggested_fix="missing-update-function",
    ),
    ErrorSignature(
        kind="missing-render-function",
        category=Category.RUNTIME_SAFETY,
        severity=Severity.HIGH,
        description="Game loop runs but no render function is defined",
        patterns=[r"requestAnimationFrame|setInterval"],
        unless=[
            r"function\s+render\s*\(",
            r"\brender\s*=\s*(?:async\s+)?(?:function\b|\(?[\w\s,]*\)?\s*=>)",
            r"^\s*render\s*\([^)]*\)\s*\{",
        ],
        suggested_fix="missing-render-function",
    ),
    ErrorSignature(
        kind="missing-sensor-processor",
        category=Category.RUNTIME_SAFETY,
        severity=Severity.HIGH,
        description="Sensor events are subscribed but never processed",
        patterns=[r"['\"]sensor-data['\"]"],
        unless=[r"\bprocessSensorData\b"],
        scope=_TEXT,
        suggested_fix="missing-sensor-processor",
    ),
    # -- performance ----------------------------------------------------------
    ErrorSignature(
        kind="potential-infinite-loop",
        category=Category.PERFORMANCE,
        severity=Severity.HIGH,
        description="Unconditional loop without break or return",
        patterns=[r"while\s*\(\s*(?:true|1)\s*\)\s*\{(?![^}]*\b(?:break|return)\b)"],
    ),
    ErrorSignature(
        kind="console-logging",
        category=Category.PERFORMANCE,
        severity=Severity.LOW,
        description="console.log left in the game code",
        patterns=[r"\bconsole\.log\s*\("],
    ),
    # -- security and accessibility --------------------------------------------
    ErrorSignature(
        kind="dangerous-eval",
        category=Category.SECURITY,
        severity=Severity.CRITICAL,
        description="eval() executes arbitrary strings",
        patterns=[r"(?<![\w.$])eval\s*\("],
    ),
    ErrorSignature(
        kind="blocking-dialog",
        category=Category.ACCESSIBILITY,
        severity=Severity.LOW,
        description="alert() blocks the game loop and steals focus",
        patterns=[r"(?<![\w.$])alert\s*\("],
    ),
    ErrorSignature(
        kind="var-declaration",
        category=Category.SYNTAX,
        severity=Severity.LOW,
        description="`var` declarations leak out of block scope; use let or const",
        patterns=[r"\bvar\s+[A-Za-z_$]"],
    ),
]
