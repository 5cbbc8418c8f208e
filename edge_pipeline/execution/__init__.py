"""
Execution layer: order-style routing, child-order algorithms and
pre-trade guards.
"""

from .algorithms import IcebergSlicer, LimitChaser, TWAPExecutor, TWAPSchedule
from .guards import ExecutionGuard, GuardDecision, OpenPosition, asset_class
from .router import MicrostructureSnapshot, OrderIntent, SmartExecutionRouter, estimate_slippage

__all__ = [
    "IcebergSlicer",
    "LimitChaser",
    "TWAPExecutor",
    "TWAPSchedule",
    "ExecutionGuard",
    "GuardDecision",
    "OpenPosition",
    "asset_class",
    "MicrostructureSnapshot",
    "OrderIntent",
    "SmartExecutionRouter",
    "estimate_slippage",
]
