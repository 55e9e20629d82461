"""Named error signatures and the library that holds them."""

from __future__ import annotations

import re
import threading
from enum import StrEnum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, PrivateAttr, ValidationError, field_validator
from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

from kiln.models.findings import Category, Severity

# ---------------------------------------------------------------------------
# Safety limits for signature documents
# ---------------------------------------------------------------------------

_MAX_DOCUMENT_SIZE = 1_000_000
_MAX_NODE_COUNT = 10_000
_MAX_DEPTH = 10

_ANCHOR_RE = re.compile(r"(?:^|[\s\-:])&(\w+)", re.MULTILINE)


class PatternLibraryError(ValueError):
    """Raised for an invalid signature or signature document."""


class YAMLSafetyError(PatternLibraryError):
    """Raised when a signature document violates safety constraints."""


class SignatureScope(StrEnum):
    TEXT = "text"  # whole artifact
    SCRIPT = "script"  # inline script bodies only
    RUNTIME = "runtime"  # sandbox error output


class ErrorSignature(BaseModel):
    """A named error shape.

    Fires when any of ``patterns`` matches in its scope (or, with
    ``when_absent``, when none does), unless one of the ``unless`` guards
    matches the same scope.
    """

    kind: str
    category: Category
    severity: Severity
    description: str
    patterns: list[str]
    unless: list[str] = []
    when_absent: bool = False
    scope: SignatureScope = SignatureScope.SCRIPT
    suggested_fix: str | None = None

    _compiled: list[re.Pattern[str]] = PrivateAttr(default_factory=list)
    _guards: list[re.Pattern[str]] = PrivateAttr(default_factory=list)

    @field_validator("severity", mode="before")
    @classmethod
    def _accept_aliases(cls, value: object) -> object:
        if isinstance(value, str) and not isinstance(value, Severity):
            return Severity.parse(value)
        return value

    @field_validator("patterns")
    @classmethod
    def _non_empty(cls, value: list[str]) -> list[str]:
        if not value:
            raise ValueError("a signature needs at least one pattern")
        return value

    @field_validator("patterns", "unless")
    @classmethod
    def _compilable(cls, value: list[str]) -> list[str]:
        for pattern in value:
            try:
                re.compile(pattern)
            except re.error as exc:
                raise ValueError(f"invalid pattern {pattern!r}: {exc}") from exc
        return value

    def model_post_init(self, __context: Any) -> None:
        flags = re.MULTILINE | (re.IGNORECASE if self.scope is SignatureScope.RUNTIME else 0)
        self._compiled = [re.compile(p, flags) for p in self.patterns]
        self._guards = [re.compile(p, flags) for p in self.unless]

    def search(self, source: str) -> re.Match[str] | None:
        """First pattern match in ``source``, or ``None``."""
        for pattern in self._compiled:
            match = pattern.search(source)
            if match:
                return match
        return None

    def guarded(self, source: str) -> bool:
        return any(guard.search(source) for guard in self._guards)

    def fires(self, source: str) -> tuple[bool, re.Match[str] | None]:
        """Whether the signature fires on ``source`` and the triggering match."""
        match = self.search(source)
        hit = match is None if self.when_absent else match is not None
        if hit and self.guarded(source):
            return False, None
        return hit, match


class PatternLibrary:
    """Ordered, thread-safe registry of error signatures keyed by kind."""

    def __init__(self, signatures: list[ErrorSignature] | None = None) -> None:
        self._lock = threading.Lock()
        self._signatures: dict[str, ErrorSignature] = {}
        for signature in signatures or []:
            self.register(signature)

    @classmethod
    def default(cls) -> PatternLibrary:
        """Library of the built-in signatures."""
        from kiln.detection.signatures import BUILTIN_SIGNATURES

        return cls(list(BUILTIN_SIGNATURES))

    # -- registry ------------------------------------------------------------

    def register(self, signature: ErrorSignature, *, replace: bool = False) -> None:
        with self._lock:
            if signature.kind in self._signatures and not replace:
                raise PatternLibraryError(f"Signature '{signature.kind}' is already registered")
            self._signatures[signature.kind] = signature

    def unregister(self, kind: str) -> bool:
        with self._lock:
            return self._signatures.pop(kind, None) is not None

    def get(self, kind: str) -> ErrorSignature | None:
        with self._lock:
            return self._signatures.get(kind)

    def kinds(self) -> list[str]:
        with self._lock:
            return list(self._signatures)

    def signatures(self, scope: SignatureScope | None = None) -> list[ErrorSignature]:
        with self._lock:
            values = list(self._signatures.values())
        if scope is None:
            return values
        return [s for s in values if s.scope is scope]

    def __len__(self) -> int:
        with self._lock:
            return len(self._signatures)

    def __contains__(self, kind: object) -> bool:
        with self._lock:
            return kind in self._signatures

    # -- YAML extension documents -------------------------------------------

    def load_yaml(self, source: str | Path, *, replace: bool = False) -> list[str]:
        """Register signatures from a YAML document (path or string).

        The document is a mapping with a ``signatures`` list. Returns the
        kinds registered. Nothing is registered if any entry is invalid.
        """
        if isinstance(source, Path):
            with source.open("r", encoding="utf-8") as handle:
                content = handle.read()
        else:
            content = source
        data = _load_safe_yaml(content)
        entries = data.get("signatures", []) if isinstance(data, dict) else None
        if not isinstance(entries, list):
            raise PatternLibraryError("Signature document must contain a 'signatures' list")

        parsed: list[ErrorSignature] = []
        for index, entry in enumerate(entries):
            try:
                parsed.append(ErrorSignature.model_validate(entry))
            except ValidationError as exc:
                raise PatternLibraryError(f"signatures[{index}] is invalid: {exc}") from exc
        for signature in parsed:
            if signature.kind in self and not replace:
                raise PatternLibraryError(f"Signature '{signature.kind}' is already registered")
        for signature in parsed:
            self.register(signature, replace=replace)
        return [s.kind for s in parsed]


def _load_safe_yaml(content: str) -> Any:
    if len(content) > _MAX_DOCUMENT_SIZE:
        raise YAMLSafetyError(
            f"YAML document exceeds maximum size "
            f"({len(content):,} chars > {_MAX_DOCUMENT_SIZE:,} limit)"
        )
    if _ANCHOR_RE.search(content):
        raise YAMLSafetyError("YAML anchors/aliases are not supported in signature documents")

    yaml = YAML(typ="safe", pure=True)
    try:
        data = yaml.load(content)
    except YAMLError as exc:
        raise PatternLibraryError(f"Invalid YAML: {exc}") from exc
    _check_shape(data)
    return data


def _check_shape(data: Any) -> None:
    """Reject documents that are too large or too deeply nested."""
    count = 0
    stack: list[tuple[Any, int]] = [(data, 0)]
    while stack:
        node, depth = stack.pop()
        count += 1
        if count > _MAX_NODE_COUNT:
            raise YAMLSafetyError(f"YAML document exceeds maximum node count ({_MAX_NODE_COUNT:,})")
        if depth > _MAX_DEPTH:
            raise YAMLSafetyError(f"YAML document exceeds maximum depth ({_MAX_DEPTH})")
        if isinstance(node, dict):
            stack.extend((value, depth + 1) for value in node.values())
        elif isinstance(node, list):
            stack.extend((item, depth + 1) for item in node)
