"""
Historical candle providers for the backtester.

Data sources:
1. In-memory candles (tests, callers that already hold data)
2. CSV files (timestamp,open,high,low,close,volume)
3. Synthetic seeded random walk (offline demos and optimization smoke runs)

Every provider answers ``fetch_history(symbol, timeframe, limit)`` with a
chronological list of at most ``limit`` candles.
"""

from __future__ import annotations

import csv
import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Protocol, Sequence, Union

import numpy as np

from ..errors import DataProviderError
from ..types import Candle

logger = logging.getLogger(__name__)


TIMEFRAME_DELTAS: Dict[str, timedelta] = {
    "1m": timedelta(minutes=1),
    "5m": timedelta(minutes=5),
    "15m": timedelta(minutes=15),
    "30m": timedelta(minutes=30),
    "1h": timedelta(hours=1),
    "2h": timedelta(hours=2),
    "4h": timedelta(hours=4),
    "1d": timedelta(days=1),
    "1w": timedelta(weeks=1),
}


def timeframe_delta(timeframe: str) -> timedelta:
    """Bar length for a timeframe label such as ``"15m"`` or ``"1H"``."""
    key = timeframe.strip().lower()
    if key == "w":
        key = "1w"
    try:
        return TIMEFRAME_DELTAS[key]
    except KeyError:
        raise ValueError(f"Unknown timeframe: {timeframe!r}") from None


class CandleProvider(Protocol):
    def fetch_history(self, symbol: str, timeframe: str, limit: int) -> List[Candle]:
        ...


# =============================================================================
# IN-MEMORY
# =============================================================================

class InMemoryCandleProvider:
    """
    Serves candles already held in memory.

    Pass one sequence for every symbol, or a mapping keyed by symbol.
    """

    def __init__(self, candles: Union[Sequence[Candle], Mapping[str, Sequence[Candle]]]):
        if isinstance(candles, Mapping):
            self._by_symbol: Optional[Dict[str, List[Candle]]] = {k: list(v) for k, v in candles.items()}
            self._candles: List[Candle] = []
        else:
            self._by_symbol = None
            self._candles = list(candles)

    def fetch_history(self, symbol: str, timeframe: str, limit: int) -> List[Candle]:
        if self._by_symbol is not None:
            if symbol not in self._by_symbol:
                raise DataProviderError(f"No candles loaded for {symbol}")
            candles = self._by_symbol[symbol]
        else:
            candles = self._candles
        return list(candles[-limit:]) if limit > 0 else []


# =============================================================================
# CSV
# =============================================================================

def parse_timestamp(value: str) -> datetime:
    """ISO-8601 text or epoch seconds (milliseconds are detected) to an aware UTC datetime."""
    text = value.strip()
    if not text:
        raise ValueError("empty timestamp")
    try:
        epoch = float(text)
    except ValueError:
        ts = datetime.fromisoformat(text.replace("Z", "+00:00"))
        if ts.tzinfo is None:
            ts = ts.replace(tzinfo=timezone.utc)
        return ts.astimezone(timezone.utc)
    if epoch > 1e11:
        epoch /= 1000.0
    return datetime.fromtimestamp(epoch, tz=timezone.utc)


class CSVCandleProvider:
    """
    Reads OHLCV rows from CSV.

    ``path`` is either one file, used for every symbol, or a directory
    holding ``{SYMBOL}_{timeframe}.csv`` files.

    Usage:
        provider = CSVCandleProvider("data/")
        candles = provider.fetch_history("BTCUSDT", "1h", 500)
    """

    REQUIRED = ("open", "high", "low", "close")

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def _resolve(self, symbol: str, timeframe: str) -> Path:
        if self.path.is_dir():
            return self.path / f"{symbol}_{timeframe}.csv"
        return self.path

    def load(self, path: Path) -> List[Candle]:
        candles: List[Candle] = []
        try:
            with open(path, "r", newline="", encoding="utf-8") as f:
                reader = csv.DictReader(f)
                if reader.fieldnames is None:
                    raise DataProviderError(f"{path}: empty CSV file")
                for line_no, raw in enumerate(reader, start=2):
                    row = {(k or "").strip().lower(): (v or "") for k, v in raw.items()}
                    candles.append(self._parse_row(path, line_no, row))
        except OSError as e:
            raise DataProviderError(f"Cannot read candles from {path}: {e}") from e

        candles.sort(key=lambda c: c.timestamp)
        return candles

    def _parse_row(self, path: Path, line_no: int, row: Dict[str, str]) -> Candle:
        ts_str = row.get("timestamp") or row.get("time") or row.get("date") or row.get("datetime") or ""
        try:
            values = {name: float(row[name]) for name in self.REQUIRED}
            volume = float(row.get("volume") or 0.0)
            ts = parse_timestamp(ts_str)
        except (KeyError, ValueError) as e:
            raise DataProviderError(f"{path}:{line_no}: malformed candle row ({e})") from e
        if not all(math.isfinite(v) for v in values.values()) or not math.isfinite(volume):
            raise DataProviderError(f"{path}:{line_no}: non-finite value in candle row")
        return Candle(timestamp=ts, volume=volume, **values)

    def fetch_history(self, symbol: str, timeframe: str, limit: int) -> List[Candle]:
        path = self._resolve(symbol, timeframe)
        candles = self.load(path)
        logger.info(f"Loaded {len(candles)} candles for {symbol} {timeframe} from {path}")
        return candles[-limit:] if limit > 0 else []


# =============================================================================
# SYNTHETIC
# =============================================================================

@dataclass(frozen=True)
class SyntheticRegime:
    name: str
    drift: float
    volatility: float


DEFAULT_REGIMES = (
    SyntheticRegime("TREND_UP", 0.0008, 0.004),
    SyntheticRegime("TREND_DOWN", -0.0008, 0.004),
    SyntheticRegime("RANGE", 0.0, 0.003),
    SyntheticRegime("EXPANSION", 0.0, 0.009),
)


class SyntheticCandleProvider:
    """
    Seeded regime-switching random walk.

    The walk switches regime with probability ``switch_prob`` per bar.
    Volume follows an intraday seasonality (quiet Asian hours, busy
    London/New York overlap) with log-normal noise. Same seed, same
    symbol, same candles.
    """

    def __init__(
        self,
        seed: int = 42,
        start_price: float = 100.0,
        start: Optional[datetime] = None,
        switch_prob: float = 0.02,
        base_volume: float = 1_000.0,
        regimes: Sequence[SyntheticRegime] = DEFAULT_REGIMES,
    ):
        if start_price <= 0:
            raise ValueError("start_price must be positive")
        self.seed = seed
        self.start_price = start_price
        self.start = start or datetime(2024, 1, 1, tzinfo=timezone.utc)
        self.switch_prob = switch_prob
        self.base_volume = base_volume
        self.regimes = tuple(regimes)

    @staticmethod
    def _seasonality(hour: int) -> float:
        if 12 <= hour < 16:
            return 1.8
        if 7 <= hour < 21:
            return 1.3
        return 0.6

    def generate(self, count: int, timeframe: str = "1h", symbol: str = "") -> List[Candle]:
        step = timeframe_delta(timeframe)
        # Symbol-specific stream, stable across interpreter runs
        symbol_key = sum(ord(ch) * (i + 1) for i, ch in enumerate(symbol))
        rng = np.random.default_rng([self.seed, symbol_key])

        candles: List[Candle] = []
        price = self.start_price
        regime = self.regimes[int(rng.integers(len(self.regimes)))]
        for i in range(count):
            if rng.random() < self.switch_prob:
                regime = self.regimes[int(rng.integers(len(self.regimes)))]

            ts = self.start + step * i
            open_ = price
            ret = regime.drift + regime.volatility * rng.standard_normal()
            close = open_ * math.exp(ret)
            high = max(open_, close) * (1 + abs(rng.standard_normal()) * regime.volatility * 0.5)
            low = min(open_, close) * (1 - abs(rng.standard_normal()) * regime.volatility * 0.5)
            volume = self.base_volume * self._seasonality(ts.hour) * float(rng.lognormal(0.0, 0.35))
            volume *= 1 + abs(ret) / max(regime.volatility, 1e-9) * 0.25

            candles.append(Candle(
                timestamp=ts,
                open=round(open_, 6),
                high=round(high, 6),
                low=round(low, 6),
                close=round(close, 6),
                volume=round(volume, 2),
            ))
            price = close
        return candles

    def fetch_history(self, symbol: str, timeframe: str, limit: int) -> List[Candle]:
        if limit <= 0:
            return []
        return self.generate(limit, timeframe, symbol)
