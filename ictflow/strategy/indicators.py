"""Technical indicators — ATR, swing points, displacement, EMA. Pure functions, no I/O.

Short histories are not errors here: every function returns ``None`` (or an
empty result) when it cannot be computed, so detectors can treat missing
data as "no signal".
"""

from dataclasses import dataclass
from typing import Optional, Sequence

from ictflow.strategy.models import Candle


def calculate_atr(candles: Sequence[Candle], period: int = 14) -> Optional[float]:
    """Calculate the Average True Range over the last *period* candles.

    Uses the standard True Range definition:
        TR = max(high - low, |high - prev_close|, |low - prev_close|)

    Requires at least ``period + 1`` candles (need a previous close for TR).
    Returns ``None`` if insufficient data.
    """
    if period <= 0 or len(candles) < period + 1:
        return None

    total = 0.0
    for i in range(len(candles) - period, len(candles)):
        high = candles[i].high
        low = candles[i].low
        prev_close = candles[i - 1].close
        total += max(
            high - low,
            abs(high - prev_close),
            abs(low - prev_close),
        )
    return total / period


@dataclass(frozen=True)
class SwingPoints:
    """Indices of swing highs and swing lows, ascending."""

    highs: tuple[int, ...]
    lows: tuple[int, ...]


def find_swings(
    candles: Sequence[Candle],
    left: int = 2,
    right: int = 2,
) -> SwingPoints:
    """Locate local swing highs and lows.

    Index *i* is a swing high when its high is strictly above every high in
    the *left* candles before it and no candle in the *right* candles after
    it trades higher (ties on the right do not break it).  Swing lows mirror
    this.
    """
    highs: list[int] = []
    lows: list[int] = []
    for i in range(left, len(candles) - right):
        h = candles[i].high
        lo = candles[i].low
        is_high = True
        is_low = True
        for j in range(1, left + 1):
            if candles[i - j].high >= h:
                is_high = False
            if candles[i - j].low <= lo:
                is_low = False
        for j in range(1, right + 1):
            if candles[i + j].high > h:
                is_high = False
            if candles[i + j].low < lo:
                is_low = False
        if is_high:
            highs.append(i)
        if is_low:
            lows.append(i)
    return SwingPoints(highs=tuple(highs), lows=tuple(lows))


def is_displacement(
    candle: Candle,
    atr: Optional[float],
    multiplier: float = 1.2,
) -> bool:
    """Return True if the candle body is at least ``multiplier × atr``.

    An unavailable ATR never qualifies.
    """
    if not atr:
        return False
    return candle.body >= multiplier * atr


class IncrementalEMA:
    """Exponential moving average updated one close at a time.

    The first value seeds the average; afterwards
        ``EMA = close × k + EMA_prev × (1 - k)`` with ``k = 2 / (length + 1)``.
    """

    def __init__(self, length: int = 14) -> None:
        self.length = max(1, length)
        self._alpha = 2.0 / (self.length + 1)
        self.value: Optional[float] = None

    def update(self, close: float) -> float:
        if self.value is None:
            self.value = close
        else:
            self.value = self._alpha * close + (1 - self._alpha) * self.value
        return self.value
