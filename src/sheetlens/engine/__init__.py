"""Pure diff and simulation engine."""

from .differ import DiffCalculator, DiffResult, diff
from .simulator import OperationSimulator, SimulationResult, SkippedOperation, simulate
from .styles import FORMAT_PRESETS, merge_style, parse_style, serialize_style

__all__ = [
    "DiffCalculator",
    "DiffResult",
    "diff",
    "OperationSimulator",
    "SimulationResult",
    "SkippedOperation",
    "simulate",
    "FORMAT_PRESETS",
    "merge_style",
    "parse_style",
    "serialize_style",
]
