"""
Exception types raised at the edges of the pipeline.

Pure computations never raise for short or degenerate input; they return
neutral values instead. The exceptions below are reserved for the places
where a caller must be told "no": guard rejections, provider failures and
numeric invariant violations.
"""

from __future__ import annotations

import math
from typing import Iterable


class EdgePipelineError(RuntimeError):
    """Base class for pipeline errors."""


class DataProviderError(EdgePipelineError):
    """Candle or depth data could not be loaded or parsed."""


class ExecutionGuardTriggered(EdgePipelineError):
    """An execution guard refused to act. ``reasons`` is never empty."""

    def __init__(self, reasons: Iterable[str]):
        self.reasons = tuple(reasons) or ("Execution blocked",)
        super().__init__("; ".join(self.reasons))


def ensure_finite(value: float, name: str) -> float:
    """Raise ``ValueError`` when ``value`` is NaN or infinite."""
    if not math.isfinite(value):
        raise ValueError(f"{name} is not finite: {value!r}")
    return value
