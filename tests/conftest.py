"""Shared test fixtures for Kiln."""

from __future__ import annotations

from collections.abc import Iterator

import pytest

from kiln.detection import Detector, PatternLibrary
from kiln.feedback import RepairLedger
from kiln.repair import RepairEngine
from kiln.service.events import EventBus
from kiln.service.metrics import MetricsAggregator
from kiln.service.monitor import Monitor
from kiln.validation import Validator

GOOD_ARTIFACT = """\
<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>Tilt Runner</title>
    <style>
        * { box-sizing: border-box; margin: 0; padding: 0; }
        body { background: #111; overflow: hidden; }
        canvas { display: block; }
    </style>
</head>
<body>
    <canvas id="gameCanvas" width="800" height="600"></canvas>
    <script src="/js/SessionSDK.js"></script>
    <script>
        const canvas = document.getElementById('gameCanvas');
        if (!canvas) {
            throw new Error('Canvas element not found');
        }
        const ctx = canvas.getContext('2d');
        const player = { x: 400, y: 300, size: 20 };

        const sdk = new SessionSDK({ gameId: 'tilt-runner', gameType: 'solo' });

        sdk.on('connected', () => {
            sdk.createSession();
        });

        sdk.on('session-created', (event) => {
            const session = event.detail || event;
            document.title = 'Session ' + session.sessionCode;
        });

        sdk.on('sensor-data', (event) => {
            const data = event.detail || event;
            processSensorData(data);
        });

        function processSensorData(data) {
            const orientation = data?.data?.orientation;
            if (!orientation) {
                return;
            }
            player.x += (orientation.gamma || 0) * 0.5;
            player.y += (orientation.beta || 0) * 0.5;
        }

        function update() {
            player.x = Math.max(0, Math.min(canvas.width, player.x));
            player.y = Math.max(0, Math.min(canvas.height, player.y));
        }

        function render() {
            ctx.clearRect(0, 0, canvas.width, canvas.height);
            ctx.fillStyle = '#4ade80';
            ctx.fillRect(player.x, player.y, player.size, player.size);
        }

        function onKeyDown(event) {
            if (event.key === 'ArrowLeft') player.x -= 10;
            if (event.key === 'ArrowRight') player.x += 10;
        }
        window.addEventListener('keydown', onKeyDown);
        window.addEventListener('beforeunload', () => {
            window.removeEventListener('keydown', onKeyDown);
        });

        function gameLoop() {
            update();
            render();
            requestAnimationFrame(gameLoop);
        }
        requestAnimationFrame(gameLoop);
    </script>
</body>
</html>
"""

SDK_INIT_LINE = "        const sdk = new SessionSDK({ gameId: 'tilt-runner', gameType: 'solo' });\n"

# Same game without the SessionSDK constructor call.
NO_INIT_ARTIFACT = GOOD_ARTIFACT.replace(SDK_INIT_LINE, "")

# One critical finding (no SDK init) plus three low ones.
NOISY_ARTIFACT = NO_INIT_ARTIFACT.replace(
    "        function update() {\n",
    "        var speed = 2;\n        function update() {\n            console.log('tick');\n",
).replace(
    "            if (event.key === 'ArrowLeft')",
    "            if (event.key === 'p') alert('Paused');\n"
    "            if (event.key === 'ArrowLeft')",
)

UNBALANCED_ARTIFACT = GOOD_ARTIFACT.replace(
    "        function update() {\n", "        function update() {{\n"
)


@pytest.fixture
def library() -> PatternLibrary:
    return PatternLibrary.default()


@pytest.fixture
def ledger() -> RepairLedger:
    return RepairLedger()


@pytest.fixture
def detector(library: PatternLibrary, ledger: RepairLedger) -> Detector:
    """Detector with the built-in signatures and no sandbox."""
    return Detector(library, ledger=ledger)


@pytest.fixture
def validator() -> Validator:
    return Validator()


@pytest.fixture
def repair_engine(detector: Detector, ledger: RepairLedger) -> RepairEngine:
    return RepairEngine(detector, ledger=ledger)


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


@pytest.fixture
def metrics() -> MetricsAggregator:
    return MetricsAggregator()


@pytest.fixture
def monitor(
    detector: Detector,
    validator: Validator,
    repair_engine: RepairEngine,
    event_bus: EventBus,
    metrics: MetricsAggregator,
) -> Iterator[Monitor]:
    """Monitor with a short re-check delay and no sweep thread (for tests)."""
    mon = Monitor(
        detector,
        validator,
        repair_engine,
        events=event_bus,
        metrics=metrics,
        sweep_interval=9999,
        recheck_delay=0.2,
        max_workers=4,
    )
    try:
        yield mon
    finally:
        mon.close()


class EventRecorder:
    """Collects every event published on a bus."""

    def __init__(self, bus: EventBus) -> None:
        self.events: list = []
        bus.subscribe_all(self.events.append)

    def names(self) -> list[str]:
        return [event.name for event in self.events]

    def of(self, name: str) -> list:
        return [event for event in self.events if event.name == name]


@pytest.fixture
def recorder(event_bus: EventBus) -> EventRecorder:
    return EventRecorder(event_bus)
