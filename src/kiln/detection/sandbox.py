"""Best-effort trial execution of an artifact's inline scripts under Node.js.

Artifact code never runs in Node's own global scope. A fixed runner loads
each inline block into a fresh ``vm`` context that holds only the browser
stubs below, so ``require``, ``process`` and every other host object are
out of reach. On Node 20+ the runner itself is also started under the
permission model with read access to its own temporary directory only
(no writes, child processes or workers).
"""

from __future__ import annotations

import functools
import json
import logging
import os
import re
import shutil
import subprocess
import tempfile
import time
from dataclasses import dataclass, field
from pathlib import Path

from kiln.markup import inline_scripts
from kiln.models.reports import SandboxStatus

logger = logging.getLogger("kiln.detection.sandbox")

_ERROR_LINE_RE = re.compile(r"^(\w*Error): (.+)$", re.MULTILINE)
_SCRIPT_NAME = "artifact.js"
_LOCATION_RE = re.compile(re.escape(_SCRIPT_NAME) + r":(\d+)")
_VERSION_RE = re.compile(r"v(\d+)\.(\d+)")

_RUNNER_NAME = "runner.cjs"
_PAYLOAD_NAME = "payload.json"

# Evaluated inside the artifact's context before its scripts: a permissive
# DOM, a recording SessionSDK and capped timers feeding a queue that the
# runner drains, so the page lifecycle plays out once.
_PRELUDE = r"""
(function () {
  const stub = (overrides) => {
    const store = Object.assign(Object.create(null), overrides || {});
    return new Proxy(function () {}, {
      get(_target, prop) {
        if (prop in store) return store[prop];
        if (prop === Symbol.toPrimitive) return () => 0;
        if (typeof prop === "symbol" || prop === "then" || prop === "toJSON") return undefined;
        return (store[prop] = stub());
      },
      set(_target, prop, value) {
        store[prop] = value;
        return true;
      },
      apply: () => stub(),
      construct: () => stub(),
    });
  };

  const queue = [];
  globalThis.__kilnPending = () => queue.length > 0;
  globalThis.__kilnDrain = () => {
    const errors = [];
    for (let budget = 200; queue.length && budget > 0; budget--) {
      try {
        queue.shift()();
      } catch (error) {
        errors.push(String((error && error.stack) || error));
      }
    }
    return errors.join("\n");
  };

  const lifecycle = { DOMContentLoaded: [], load: [] };
  const listen = (type, handler) => {
    if (type in lifecycle && typeof handler === "function") lifecycle[type].push(handler);
  };
  let timers = 0;
  const once = (callback) => {
    if (typeof callback === "function" && ++timers <= 20) {
      const stamp = timers * 16;
      queue.push(() => callback(stamp));
    }
    return timers;
  };
  const quiet = () => {};

  globalThis.window = globalThis;
  globalThis.console = { log: quiet, info: quiet, warn: quiet, error: quiet, debug: quiet };
  globalThis.document = stub({
    addEventListener: listen,
    removeEventListener: () => {},
    readyState: "complete",
  });
  globalThis.navigator = stub({ userAgent: "kiln-sandbox" });
  globalThis.location = { origin: "http://localhost", href: "http://localhost/", search: "" };
  globalThis.localStorage = stub({ getItem: () => null });
  globalThis.addEventListener = listen;
  globalThis.removeEventListener = () => {};
  globalThis.requestAnimationFrame = once;
  globalThis.cancelAnimationFrame = () => {};
  globalThis.setInterval = once;
  globalThis.setTimeout = once;
  globalThis.clearInterval = () => {};
  globalThis.clearTimeout = () => {};
  globalThis.alert = () => {};
  globalThis.Image = function () { return stub(); };
  globalThis.Audio = function () { return stub(); };

  const sessions = [];
  globalThis.SessionSDK = class {
    constructor(options) {
      this.config = Object.assign({ gameType: "solo" }, options || {});
      this.handlers = new Map();
      sessions.push(this);
    }
    on(name, handler) {
      if (!this.handlers.has(name)) this.handlers.set(name, []);
      this.handlers.get(name).push(handler);
      return this;
    }
    off() { return this; }
    emit(name, payload) {
      for (const handler of this.handlers.get(name) || []) handler({ type: name, detail: payload });
    }
    async connect() { return true; }
    async createSession() { return { sessionCode: "1234" }; }
    disconnect() {}
  };

  queue.push(() => {
    for (const handler of [...lifecycle.DOMContentLoaded, ...lifecycle.load]) {
      handler({ type: "load" });
    }
    const reading = {
      sensorId: "sensor",
      gameType: "solo",
      data: {
        orientation: { alpha: 0, beta: 10, gamma: -5 },
        acceleration: { x: 0.1, y: 0.2, z: 9.8 },
        rotationRate: { alpha: 0, beta: 0, gamma: 0 },
      },
      timestamp: Date.now(),
    };
    for (const sdk of sessions) {
      sdk.emit("connected", {});
      sdk.emit("session-created", { sessionCode: "1234", gameType: sdk.config.gameType });
      sdk.emit("sensor-connected", { sensorId: "sensor" });
      sdk.emit("sensor-data", reading);
    }
  });
})();
"""

# Host side. Only plain data crosses into the context; uncaught errors are
# written to stderr and turn the exit code to 1.
_RUNNER = r"""
"use strict";
const fs = require("fs");
const path = require("path");
const vm = require("vm");

const report = (error) => {
  process.stderr.write(String((error && error.stack) || error) + "\n");
  process.exitCode = 1;
};
process.on("uncaughtException", report);
process.on("unhandledRejection", report);

const payload = JSON.parse(fs.readFileSync(path.join(__dirname, "payload.json"), "utf8"));
const context = vm.createContext({});
vm.runInContext(payload.prelude, context, { filename: "kiln-prelude.js" });
for (const block of payload.blocks) {
  try {
    new vm.Script(block.source, {
      filename: "artifact.js",
      lineOffset: block.lineOffset,
    }).runInContext(context);
  } catch (error) {
    report(error);
  }
}

(async () => {
  for (let round = 0; round < 50; round++) {
    const errors = context.__kilnDrain();
    if (errors) report(errors);
    await new Promise((resolve) => setImmediate(resolve));
    if (!context.__kilnPending()) break;
  }
})();
"""


@functools.lru_cache(maxsize=8)
def node_version(binary: str) -> tuple[int, int] | None:
    """``(major, minor)`` of a Node binary, ``None`` when it cannot be asked."""
    try:
        proc = subprocess.run(
            [binary, "--version"], capture_output=True, text=True, timeout=5, env={}
        )
    except (OSError, subprocess.TimeoutExpired) as exc:
        logger.debug("Could not query %s --version: %s", binary, exc)
        return None
    match = _VERSION_RE.search(proc.stdout)
    if match is None:
        return None
    version = (int(match.group(1)), int(match.group(2)))
    if version < (20, 0):
        logger.warning(
            "Node %d.%d has no permission model; sandbox isolation relies on the vm context only",
            *version,
        )
    return version


def permission_flags(version: tuple[int, int] | None, readable: str) -> list[str]:
    """Permission-model flags granting reads under ``readable`` and nothing else."""
    if version is None or version < (20, 0):
        return []
    stable = version >= (23, 5) or (22, 13) <= version < (23, 0)
    flag = "--permission" if stable else "--experimental-permission"
    return [flag, f"--allow-fs-read={readable}{os.sep}*", "--no-warnings"]


@dataclass
class SandboxResult:
    """Outcome of one sandbox run.

    ``line_map`` holds ``(script_line, artifact_line)`` pairs marking where
    each inline block starts in the reported stack lines and in the artifact.
    """

    status: SandboxStatus
    exit_code: int | None = None
    stderr: str = ""
    duration_ms: float = 0.0
    line_map: list[tuple[int, int]] = field(default_factory=list)

    @property
    def failed(self) -> bool:
        return self.status is SandboxStatus.COMPLETED and self.exit_code not in (0, None)

    @property
    def error_message(self) -> str | None:
        """``"TypeError: ..."`` line of the first uncaught error, if any."""
        match = _ERROR_LINE_RE.search(self.stderr)
        if match is None:
            return None
        return f"{match.group(1)}: {match.group(2).strip()}"

    @property
    def error_line(self) -> int:
        """Artifact line of the first uncaught error (1 when unknown)."""
        match = _LOCATION_RE.search(self.stderr)
        if match is None or not self.line_map:
            return 1
        script_line = int(match.group(1))
        artifact_line = 1
        for start, line in self.line_map:
            if script_line < start:
                break
            artifact_line = line + (script_line - start)
        return artifact_line


class NodeSandbox:
    """Run inline scripts in an isolated Node ``vm`` context with a hard timeout.

    Each block runs separately, as a browser would run it: an error in one
    block does not stop the next.
    """

    def __init__(self, node_binary: str = "node", timeout_ms: int = 500) -> None:
        self._node_binary = node_binary
        self._timeout_ms = timeout_ms

    @property
    def timeout_ms(self) -> int:
        return self._timeout_ms

    def available(self) -> bool:
        return shutil.which(self._node_binary) is not None

    def run(self, text: str) -> SandboxResult:
        blocks = inline_scripts(text)
        if not blocks:
            return SandboxResult(status=SandboxStatus.SKIPPED)
        binary = shutil.which(self._node_binary)
        if binary is None:
            logger.debug("Sandbox binary %r not found", self._node_binary)
            return SandboxResult(status=SandboxStatus.UNAVAILABLE)

        # Stack lines carry artifact line numbers directly.
        payload = {
            "prelude": _PRELUDE,
            "blocks": [{"source": b.body, "lineOffset": b.line - 1} for b in blocks],
        }
        line_map = [(block.line, block.line) for block in blocks]

        start = time.monotonic()
        with tempfile.TemporaryDirectory(prefix="kiln_sandbox_") as tmp:
            workdir = Path(os.path.realpath(tmp))
            runner = workdir / _RUNNER_NAME
            runner.write_text(_RUNNER, encoding="utf-8")
            (workdir / _PAYLOAD_NAME).write_text(json.dumps(payload), encoding="utf-8")
            command = [
                binary,
                *permission_flags(node_version(binary), str(workdir)),
                str(runner),
            ]
            try:
                proc = subprocess.run(
                    command,
                    capture_output=True,
                    text=True,
                    timeout=self._timeout_ms / 1000,
                    cwd=workdir,
                    env={},
                )
            except subprocess.TimeoutExpired:
                logger.info("Sandbox run exceeded %d ms", self._timeout_ms)
                return SandboxResult(
                    status=SandboxStatus.TIMED_OUT,
                    duration_ms=(time.monotonic() - start) * 1000,
                )
            except OSError as exc:
                logger.warning("Could not start sandbox binary %s: %s", binary, exc)
                return SandboxResult(status=SandboxStatus.UNAVAILABLE)
        return SandboxResult(
            status=SandboxStatus.COMPLETED,
            exit_code=proc.returncode,
            stderr=proc.stderr,
            duration_ms=(time.monotonic() - start) * 1000,
            line_map=line_map,
        )
