"""Deterministic text transformations keyed by finding kind.

Every transformation is idempotent: it first checks whether the issue is
already absent and returns the text unchanged if so.
"""

from __future__ import annotations

import re
from collections.abc import Callable

from kiln.markup import (
    FRAME_INTERVAL_MS,
    NOT_ASSIGNED,
    interval_delays,
    script_segments,
    strip_js_literals,
)
from kiln.models.findings import Finding

Transformation = Callable[[str, Finding], str]


class UnknownTransformationError(Exception):
    """Raised when a requested transformation is not registered."""

    def __init__(self, kind: str, available: list[str]) -> None:
        self.kind = kind
        self.available = available
        super().__init__(f"No transformation for '{kind}'. Available: {', '.join(available)}")


class TransformationRegistry:
    """Registry of built-in transformations, one per finding kind."""

    _transforms: dict[str, Transformation] = {}

    @classmethod
    def register(cls, kind: str) -> Callable[[Transformation], Transformation]:
        """Register a transformation for ``kind``. Used as a decorator."""

        def decorator(func: Transformation) -> Transformation:
            cls._transforms[kind] = func
            return func

        return decorator

    @classmethod
    def get(cls, kind: str) -> Transformation:
        if kind not in cls._transforms:
            raise UnknownTransformationError(kind, available=cls.available())
        return cls._transforms[kind]

    @classmethod
    def available(cls) -> list[str]:
        return sorted(cls._transforms)

    @classmethod
    def defaults(cls) -> dict[str, Transformation]:
        """A fresh mapping of every registered transformation."""
        return dict(cls._transforms)


_DOCTYPE_RE = re.compile(r"<!DOCTYPE\s+html\s*>", re.IGNORECASE)
_HEAD_OPEN_RE = re.compile(r"<head\b[^>]*>", re.IGNORECASE)
_HEAD_CLOSE_RE = re.compile(r"</head\s*>", re.IGNORECASE)
_BODY_CLOSE_RE = re.compile(r"</body\s*>", re.IGNORECASE)
_STYLE_OPEN_RE = re.compile(r"<style\b[^>]*>", re.IGNORECASE)
_SCRIPT_OPEN_RE = re.compile(r"<script\b", re.IGNORECASE)
_INLINE_SCRIPT_OPEN_RE = re.compile(r"<script\b(?![^>]*\bsrc\s*=)[^>]*>", re.IGNORECASE)
_IMG_NO_ALT_RE = re.compile(r"<img\b(?![^>]*\balt=)([^>]*?)(/?)>", re.IGNORECASE)

_SDK_INIT_RE = re.compile(r"new\s+SessionSDK\s*\(")
_SDK_DECLARED_RE = re.compile(r"\b(?:let|var)\s+sdk\s*;")
_SDK_CONST_RE = re.compile(r"\bconst\s+sdk\b")
_SDK_HANDLER_RE = re.compile(
    r"(sdk\.on\(\s*['\"][\w-]+['\"]\s*,\s*)(async\s+)?"
    r"(?:\(\s*(\w+)\s*\)\s*=>|(\w+)\s*=>|function\s*\(\s*(\w+)\s*\))\s*\{"
)
_EVENT_DETAIL_RE = re.compile(r"\b(event|evt|e)\.detail\b(?!\s*\|\|)" + NOT_ASSIGNED)
_CANVAS_GUARD_RE = re.compile(r"if\s*\(\s*!\s*canvas\s*\)")
_CANVAS_LOOKUP_RE = re.compile(
    r"(?:const|let|var)\s+canvas\s*=\s*document\.(?:getElementById|querySelector)\([^)]*\)\s*;?"
)
_SENSOR_CHAIN_RE = re.compile(
    r"(?<![\w$.?])data(?:\.data)?\.(?:orientation|acceleration|rotationRate)\.\w+\b"
    + NOT_ASSIGNED
)
# The whole member chain, so that writes through it are left alone.
_NESTED_SENSOR_RE = re.compile(
    r"(?<![\w$.?])data\.data\b(?!\?)((?:\.\w+)*+)(?![\w$])" + NOT_ASSIGNED
)
_DECLARED_RE = r"function\s+{name}\s*\(|\b(?:const|let|var)\s+{name}\b"

_SDK_INIT = """
    const sdk = new SessionSDK({
        gameId: 'generated-game',
        gameType: 'solo'
    });
"""

_UPDATE_STUB = """
function update() {
    // advance game state
}
"""

_RENDER_STUB = """
function render() {
    if (typeof ctx === "undefined" || !ctx) return;
    ctx.clearRect(0, 0, canvas.width, canvas.height);
}
"""

_SENSOR_STUB = """
function processSensorData(event) {
    const data = event && (event.detail || event);
    if (!data || !data.data) {
        return;
    }
    const orientation = data.data.orientation || {};
    tiltX = orientation.gamma || 0;
    tiltY = orientation.beta || 0;
}
"""


def _insert_after(pattern: re.Pattern[str], text: str, snippet: str) -> str:
    match = pattern.search(text)
    if match is None:
        return text
    return text[: match.end()] + snippet + text[match.end() :]


def _insert_before(pattern: re.Pattern[str], text: str, snippet: str) -> str:
    match = pattern.search(text)
    if match is None:
        return text
    return text[: match.start()] + snippet + text[match.start() :]


def _append_script(text: str, snippet: str) -> str:
    """Append ``snippet`` to the end of the last inline script."""
    blocks = list(_INLINE_SCRIPT_OPEN_RE.finditer(text))
    if not blocks:
        return text
    close = text.lower().find("</script", blocks[-1].end())
    if close < 0:
        return text
    return text[:close] + snippet + text[close:]


# -- document skeleton -------------------------------------------------------


@TransformationRegistry.register("missing-doctype")
def add_doctype(text: str, finding: Finding) -> str:
    if _DOCTYPE_RE.search(text):
        return text
    return "<!DOCTYPE html>\n" + text.lstrip()


@TransformationRegistry.register("missing-charset")
def add_charset(text: str, finding: Finding) -> str:
    if "charset=" in text.lower():
        return text
    return _insert_after(_HEAD_OPEN_RE, text, '\n    <meta charset="UTF-8">')


@TransformationRegistry.register("missing-viewport")
def add_viewport(text: str, finding: Finding) -> str:
    if "viewport" in text.lower():
        return text
    return _insert_after(
        _HEAD_OPEN_RE,
        text,
        '\n    <meta name="viewport" content="width=device-width, initial-scale=1.0">',
    )


@TransformationRegistry.register("missing-box-sizing")
def add_box_sizing(text: str, finding: Finding) -> str:
    if "box-sizing" in text:
        return text
    rule = "\n        * { margin: 0; padding: 0; box-sizing: border-box; }"
    if _STYLE_OPEN_RE.search(text):
        return _insert_after(_STYLE_OPEN_RE, text, rule)
    return _insert_before(_HEAD_CLOSE_RE, text, f"    <style>{rule}\n    </style>\n")


@TransformationRegistry.register("missing-alt-text")
def add_alt_text(text: str, finding: Finding) -> str:
    return _IMG_NO_ALT_RE.sub(lambda m: f'<img{m.group(1)} alt=""{m.group(2)}>', text)


# -- framework contract ------------------------------------------------------


@TransformationRegistry.register("missing-sdk-import")
def add_sdk_import(text: str, finding: Finding) -> str:
    if "SessionSDK.js" in text:
        return text
    tag = '<script src="/js/SessionSDK.js"></script>\n'
    if _SCRIPT_OPEN_RE.search(text):
        return _insert_before(_SCRIPT_OPEN_RE, text, tag)
    return _insert_before(_BODY_CLOSE_RE, text, tag)


@TransformationRegistry.register("missing-sdk-initialization")
def add_sdk_initialization(text: str, finding: Finding) -> str:
    if _SDK_INIT_RE.search(text):
        return text
    declared = _SDK_DECLARED_RE.search(text)
    if declared:
        init = _SDK_INIT.strip().removeprefix("const ")
        return text[: declared.start()] + "let " + init + text[declared.end() :]
    if _SDK_CONST_RE.search(text):
        # a const sdk bound to something else cannot be re-declared
        return text
    if _INLINE_SCRIPT_OPEN_RE.search(text):
        return _insert_after(_INLINE_SCRIPT_OPEN_RE, text, _SDK_INIT)
    return _insert_before(_BODY_CLOSE_RE, text, f"<script>{_SDK_INIT}</script>\n")


@TransformationRegistry.register("missing-custom-event-pattern")
def unwrap_custom_events(text: str, finding: Finding) -> str:
    if ".detail" in text:
        return text

    def rewrite(match: re.Match[str]) -> str:
        head, is_async = match.group(1), match.group(2) or ""
        param = match.group(3) or match.group(4) or match.group(5)
        if param == "event":
            unwrap = "event = event.detail || event;"
        else:
            unwrap = f"const {param} = event.detail || event;"
        return f"{head}{is_async}(event) => {{\n    {unwrap}"

    return _SDK_HANDLER_RE.sub(rewrite, text)


@TransformationRegistry.register("unsafe-event-access")
def guard_event_detail(text: str, finding: Finding) -> str:
    return _EVENT_DETAIL_RE.sub(lambda m: f"({m.group(1)}.detail || {m.group(1)})", text)


# -- runtime safety ----------------------------------------------------------


@TransformationRegistry.register("missing-canvas-check")
def add_canvas_check(text: str, finding: Finding) -> str:
    if _CANVAS_GUARD_RE.search(text):
        return text
    guard = "\n    if (!canvas) {\n        throw new Error('Canvas element not found');\n    }"
    return _insert_after(_CANVAS_LOOKUP_RE, text, guard)


@TransformationRegistry.register("unsafe-sensor-access")
def guard_sensor_access(text: str, finding: Finding) -> str:
    fixed = _SENSOR_CHAIN_RE.sub(lambda m: f"({m.group(0).replace('.', '?.')} ?? 0)", text)
    return _NESTED_SENSOR_RE.sub(lambda m: "data?.data" + m.group(1), fixed)


@TransformationRegistry.register("missing-update-function")
def add_update_function(text: str, finding: Finding) -> str:
    if re.search(_DECLARED_RE.format(name="update"), text):
        return text
    return _append_script(text, _UPDATE_STUB)


@TransformationRegistry.register("missing-render-function")
def add_render_function(text: str, finding: Finding) -> str:
    if re.search(_DECLARED_RE.format(name="render"), text):
        return text
    return _append_script(text, _RENDER_STUB)


@TransformationRegistry.register("missing-sensor-processor")
def add_sensor_processor(text: str, finding: Finding) -> str:
    if "processSensorData" in text:
        return text
    stub = _SENSOR_STUB
    if not re.search(r"\b(?:let|var)\s+tiltX\b", text):
        stub = "\nlet tiltX = 0;\nlet tiltY = 0;" + stub
    return _append_script(text, stub)


# -- performance and security --------------------------------------------------


@TransformationRegistry.register("high-frequency-interval")
def slow_interval(text: str, finding: Finding) -> str:
    spans = [
        (block.start + start, block.start + end)
        for block in script_segments(text)
        for start, end, delay in interval_delays(strip_js_literals(block.body))
        if delay < FRAME_INTERVAL_MS
    ]
    for start, end in reversed(spans):
        text = text[:start] + str(FRAME_INTERVAL_MS) + text[end:]
    return text


@TransformationRegistry.register("unsafe-inner-html")
def replace_inner_html(text: str, finding: Finding) -> str:
    return re.sub(r"\.innerHTML(\s*=(?!=))", r".textContent\1", text)
