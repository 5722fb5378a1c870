"""Strategy data models — candles, session context, setups and entries."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional


@dataclass(frozen=True)
class Candle:
    """A single closed candlestick bar.

    ``open_time_ms`` is the epoch-millisecond start of the bar.
    """

    open_time_ms: int
    open: float
    high: float
    low: float
    close: float

    @property
    def is_bullish(self) -> bool:
        return self.close > self.open

    @property
    def is_bearish(self) -> bool:
        return self.close < self.open

    @property
    def body(self) -> float:
        return abs(self.close - self.open)


@dataclass(frozen=True)
class CandleWindow:
    """Read-only view of an instrument's recent candle history.

    Both sequences are ordered oldest-first.
    """

    m1: tuple[Candle, ...] = ()
    m5: tuple[Candle, ...] = ()

    @property
    def last(self) -> Optional[Candle]:
        return self.m1[-1] if self.m1 else None


@dataclass(frozen=True)
class SessionContext:
    """Immutable snapshot of one instrument's rolling session levels.

    Produced by the aggregator on every read; detectors never see the
    aggregator's live state.
    """

    day_key: Optional[str] = None
    daily_open: Optional[float] = None
    asia_high: Optional[float] = None
    asia_low: Optional[float] = None
    asia_locked: bool = False
    prev_day_high: Optional[float] = None
    prev_day_low: Optional[float] = None
    prev_day_open: Optional[float] = None
    prev_day_close: Optional[float] = None
    today_high: Optional[float] = None
    today_low: Optional[float] = None

    @property
    def has_asia_range(self) -> bool:
        return self.asia_high is not None and self.asia_low is not None

    def to_dict(self) -> dict:
        return {
            "day_key": self.day_key,
            "daily_open": self.daily_open,
            "asia_high": self.asia_high,
            "asia_low": self.asia_low,
            "asia_locked": self.asia_locked,
            "prev_day_high": self.prev_day_high,
            "prev_day_low": self.prev_day_low,
            "prev_day_open": self.prev_day_open,
            "prev_day_close": self.prev_day_close,
            "today_high": self.today_high,
            "today_low": self.today_low,
        }


@dataclass(frozen=True)
class PendingSetup:
    """An armed setup waiting for price to reach its trigger zone.

    ``zone_low`` / ``zone_high`` are equal when the trigger is a single
    level.  ``stop`` and ``targets`` are the detector's native structural
    levels, when it computes any.
    """

    direction: str  # "buy" or "sell"
    zone_low: float
    zone_high: float
    formed_at_ms: int
    stop: Optional[float] = None
    targets: tuple[float, ...] = ()
    expires_at_ms: Optional[int] = None

    def contains(self, price: float) -> bool:
        lo, hi = sorted((self.zone_low, self.zone_high))
        return lo <= price <= hi

    def is_expired(self, ts_ms: int) -> bool:
        return self.expires_at_ms is not None and ts_ms > self.expires_at_ms


@dataclass(frozen=True)
class SetupDescriptor:
    """Describes an arm-step event, for logging and the status API."""

    strategy: str
    event: str
    direction: Optional[str] = None
    data: dict = field(default_factory=dict)


@dataclass(frozen=True)
class FiredEntry:
    """A detector's entry signal, emitted on the tick that triggered it."""

    strategy: str
    direction: str  # "buy" or "sell"
    entry_price: float
    stop: Optional[float] = None
    targets: tuple[float, ...] = ()
    level: Optional[str] = None  # which candidate level triggered, if any
