"""Self-healing: idempotent text transformations and the engine that applies them."""

from kiln.repair.engine import RepairEngine, improvement_rate
from kiln.repair.transforms import (
    Transformation,
    TransformationRegistry,
    UnknownTransformationError,
)

__all__ = [
    "RepairEngine",
    "Transformation",
    "TransformationRegistry",
    "UnknownTransformationError",
    "improvement_rate",
]
