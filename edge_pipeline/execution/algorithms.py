"""
Execution Algorithms

Helpers that carry out a routed decision:
    - IcebergSlicer: hides a large order behind randomized visible slices
    - LimitChaser: re-prices a resting limit toward the book, a bounded number of times
    - TWAPExecutor: splits an order evenly over a time window

Randomness always comes from a seeded ``numpy.random.Generator`` so a
schedule can be reproduced.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional

import numpy as np
from numpy.typing import NDArray

from ..signals.order_book import DepthSnapshot
from ..types import OrderSide

logger = logging.getLogger(__name__)

SLICE_DECIMALS = 4
SLICE_TOLERANCE = 1e-4


class IcebergSlicer:
    """
    Slices ``total_size`` into chunks of ``visible_size`` +/- ``variance``.

    Slices always sum to ``total_size``: the final slice is whatever
    remains, never more.

    Usage:
        slicer = IcebergSlicer(seed=7)
        for qty in slicer.generate_slices(2500, 250, 0.2):
            place_child_order(qty)
    """

    def __init__(self, seed: Optional[int] = None, rng: Optional[np.random.Generator] = None):
        self.rng = rng if rng is not None else np.random.default_rng(seed)

    def generate_slices(self, total_size: float, visible_size: float, variance: float = 0.2) -> List[float]:
        if total_size < 0:
            raise ValueError(f"total_size must be non-negative, got {total_size}")
        if visible_size <= 0:
            raise ValueError(f"visible_size must be positive, got {visible_size}")
        if not 0 <= variance < 1:
            raise ValueError(f"variance must be in [0, 1), got {variance}")
        min_chunk = 10 ** -SLICE_DECIMALS
        if visible_size * (1 - variance) < min_chunk:
            raise ValueError(
                f"visible_size {visible_size} with variance {variance} can round to an empty slice (minimum {min_chunk:g})"
            )

        slices: List[float] = []
        remaining = float(total_size)
        while remaining > 0:
            jitter = 1 + self.rng.uniform(-variance, variance)
            chunk = round(visible_size * jitter, SLICE_DECIMALS)
            if chunk >= remaining or remaining - chunk < SLICE_TOLERANCE:
                slices.append(remaining)
                break
            slices.append(chunk)
            remaining -= chunk

        logger.debug(f"Iceberg {total_size} -> {len(slices)} slices (visible {visible_size}, var {variance})")
        return slices


@dataclass
class LimitChaser:
    """
    Follows the top of book with a resting limit order.

    A BUY only moves up, and never beyond ``max_price``; a SELL only moves
    down, and never below ``max_price``. After ``max_chases`` re-quotes the
    order stays where it is.
    """
    side: OrderSide
    price: float
    max_price: float
    max_chases: int = 3
    chases: int = 0

    @staticmethod
    def calculate_chase_price(side: OrderSide, current_price: float, best_book_price: float, max_price: float) -> float:
        if side is OrderSide.BUY:
            if best_book_price > current_price and best_book_price <= max_price:
                return best_book_price
        else:
            if best_book_price < current_price and best_book_price >= max_price:
                return best_book_price
        return current_price

    @property
    def exhausted(self) -> bool:
        return self.chases >= self.max_chases

    def update(self, best_book_price: float) -> float:
        """Re-quote against a new best price; returns the working price."""
        if self.exhausted:
            return self.price
        new_price = self.calculate_chase_price(self.side, self.price, best_book_price, self.max_price)
        if new_price != self.price:
            self.chases += 1
            logger.debug(f"Chase {self.chases}/{self.max_chases}: {self.side.value} {self.price} -> {new_price}")
            self.price = new_price
        return self.price

    def follow(self, depth: DepthSnapshot) -> float:
        """Re-quote at our side of the top of book in ``depth``."""
        best = depth.best_bid if self.side is OrderSide.BUY else depth.best_ask
        if best is None:
            return self.price
        return self.update(best)


@dataclass
class TWAPSchedule:
    """TWAP execution schedule."""
    time_points: NDArray[np.float64]
    trade_sizes: NDArray[np.float64]
    total_size: float
    horizon_minutes: float
    interval_minutes: float


class TWAPExecutor:
    """
    Time-Weighted Average Price Executor.

    Splits an order evenly across ``slices`` intervals of the horizon.

    Usage:
        twap = TWAPExecutor(seed=1)
        schedule = twap.generate_schedule(total_size=10000, horizon_minutes=60, slices=10)

        for t, size in zip(schedule.time_points, schedule.trade_sizes):
            execute_at_time(t, size)
    """

    def __init__(
        self,
        randomize: bool = True,
        randomize_pct: float = 0.1,
        seed: Optional[int] = None,
    ):
        """
        Args:
            randomize: Add randomness to sizes to reduce predictability
            randomize_pct: Randomization as fraction of slice size
            seed: Seed for the size jitter
        """
        self.randomize = randomize
        self.randomize_pct = randomize_pct
        self.rng = np.random.default_rng(seed)

    def generate_schedule(self, total_size: float, horizon_minutes: float, slices: int = 10) -> TWAPSchedule:
        """
        Args:
            total_size: Total size to trade
            horizon_minutes: Execution horizon
            slices: Number of child orders

        Returns:
            TWAPSchedule with trade times and sizes
        """
        if slices < 1:
            raise ValueError(f"slices must be at least 1, got {slices}")
        if horizon_minutes <= 0:
            raise ValueError(f"horizon_minutes must be positive, got {horizon_minutes}")

        interval = horizon_minutes / slices
        time_points = np.linspace(0, horizon_minutes, slices + 1)[:-1]

        base_size = total_size / slices
        trade_sizes = np.full(slices, base_size, dtype=float)

        if self.randomize and slices > 1 and total_size != 0:
            # Mean-zero adjustments keep the total unchanged
            adjustments = self.rng.standard_normal(slices)
            adjustments = adjustments - adjustments.mean()
            adjustments *= self.randomize_pct * abs(base_size)
            trade_sizes += adjustments

        # Absorb floating-point drift in the last slice
        trade_sizes[-1] += total_size - trade_sizes.sum()

        return TWAPSchedule(
            time_points=time_points,
            trade_sizes=trade_sizes,
            total_size=total_size,
            horizon_minutes=horizon_minutes,
            interval_minutes=interval,
        )
