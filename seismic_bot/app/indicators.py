"""
Technical analysis helpers used by the signal strategy.

Closed-form indicator functions over a price sequence. Every function accepts
a list or numpy array of floats ordered oldest -> newest and returns plain
floats, so results can go straight into JSON responses.

Contains:
- sma, ema: moving averages over the trailing window
- rsi: simple-average relative strength index
- macd: ema12 - ema26 with an approximated signal line
- bollinger_bands: SMA +/- N population standard deviations
- calculate_technical_indicators: the bundle the strategy scores

Usage:
    from seismic_bot.app.indicators import calculate_technical_indicators

    ta = calculate_technical_indicators(prices)
    if ta.rsi < 30:
        ...
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Iterable, Sequence

import numpy as np


MIN_HISTORY = 50


@dataclass(slots=True)
class MACDResult:
    macd_line: float
    signal_line: float
    histogram: float


@dataclass(slots=True)
class BollingerBands:
    upper: float
    middle: float
    lower: float


@dataclass(slots=True)
class TechnicalIndicators:
    rsi: float
    sma20: float
    sma50: float
    macd: float
    signal: float
    histogram: float
    bb_upper: float
    bb_middle: float
    bb_lower: float
    current_price: float

    def to_dict(self) -> dict[str, float]:
        return asdict(self)


def extract_prices(history: Iterable[Any]) -> list[float]:
    """Accept numbers, ``{"price": x}`` dicts or ``[timestamp, price]`` pairs."""
    prices: list[float] = []
    for point in history or []:
        if isinstance(point, dict):
            value = point.get("price")
        elif isinstance(point, (list, tuple)):
            value = point[1] if len(point) > 1 else None
        else:
            value = point
        if value is None:
            continue
        prices.append(float(value))
    return prices


def _as_array(prices: Sequence[float] | np.ndarray) -> np.ndarray:
    return np.asarray(prices, dtype=float)


def _last(arr: np.ndarray) -> float:
    return float(arr[-1]) if arr.size else 0.0


def sma(prices: Sequence[float] | np.ndarray, period: int) -> float:
    arr = _as_array(prices)
    if arr.size < period:
        return _last(arr)
    return float(arr[-period:].mean())


def ema(prices: Sequence[float] | np.ndarray, period: int) -> float:
    """EMA seeded with the trailing SMA, then smoothed over the same window."""
    arr = _as_array(prices)
    if arr.size < period:
        return _last(arr)

    multiplier = 2.0 / (period + 1)
    window = arr[-period:]
    value = float(window.mean())
    for price in window:
        value = (float(price) - value) * multiplier + value
    return value


def rsi(prices: Sequence[float] | np.ndarray, period: int = 14) -> float:
    """RSI = 100 - 100 / (1 + avg_gain / avg_loss) over the last ``period`` changes."""
    arr = _as_array(prices)
    if arr.size < 2:
        return 50.0

    changes = np.diff(arr)[-period:]
    avg_gain = float(np.where(changes > 0, changes, 0.0).mean())
    avg_loss = float(np.where(changes < 0, -changes, 0.0).mean())
    if avg_loss == 0:
        return 100.0
    rs = avg_gain / avg_loss
    return 100.0 - (100.0 / (1.0 + rs))


def macd(prices: Sequence[float] | np.ndarray) -> MACDResult:
    line = ema(prices, 12) - ema(prices, 26)
    # approximated signal line, no 9-period EMA history is kept
    signal_line = line * 0.9
    return MACDResult(macd_line=line, signal_line=signal_line, histogram=line - signal_line)


def bollinger_bands(prices: Sequence[float] | np.ndarray, period: int = 20, num_std: float = 2.0) -> BollingerBands:
    arr = _as_array(prices)
    middle = sma(arr, period)
    window = arr[-period:]
    if window.size == 0:
        return BollingerBands(upper=0.0, middle=0.0, lower=0.0)
    std = float(np.sqrt(np.mean((window - middle) ** 2)))
    return BollingerBands(upper=middle + std * num_std, middle=middle, lower=middle - std * num_std)


def calculate_technical_indicators(
    prices: Sequence[float] | np.ndarray,
    rsi_period: int = 14,
    sma_short_period: int = 20,
    sma_long_period: int = 50,
) -> TechnicalIndicators:
    arr = _as_array(prices)
    current = _last(arr)

    if arr.size < MIN_HISTORY:
        return TechnicalIndicators(
            rsi=50.0,
            sma20=current,
            sma50=current,
            macd=0.0,
            signal=0.0,
            histogram=0.0,
            bb_upper=current,
            bb_middle=current,
            bb_lower=current,
            current_price=current,
        )

    macd_result = macd(arr)
    bands = bollinger_bands(arr, period=sma_short_period)
    return TechnicalIndicators(
        rsi=rsi(arr, rsi_period),
        sma20=sma(arr, sma_short_period),
        sma50=sma(arr, sma_long_period),
        macd=macd_result.macd_line,
        signal=macd_result.signal_line,
        histogram=macd_result.histogram,
        bb_upper=bands.upper,
        bb_middle=bands.middle,
        bb_lower=bands.lower,
        current_price=current,
    )
