"""NY Range Order Block detector (evening session).

    1. Track the 17:00–21:00 local range; lock it at 21:00.
    2. After the lock, a tick crossing the range high or low records a sweep.
    3. On synthetic 3-minute bars, a displacement bar closing through the
       prior opposite-colour bar marks that bar as the order block.
    4. Entry on the first cross of the order block's midpoint, once per day.
"""

from dataclasses import dataclass
from typing import Optional
from zoneinfo import ZoneInfo

from ictflow.strategy.models import (
    Candle,
    CandleWindow,
    FiredEntry,
    SessionContext,
    SetupDescriptor,
)
from ictflow.strategy.session_clock import NY_ZONE, local_hour

_M3_MS = 3 * 60_000


@dataclass(frozen=True)
class _ArmedBlock:
    direction: str
    high: float
    low: float
    formed_at_ms: int

    @property
    def mid(self) -> float:
        return (self.high + self.low) / 2


class NYRangeOBDetector:
    """Implements ``DetectorProtocol``."""

    name = "NYRangeOB"

    MAX_M3_BARS: int = 500
    DISPLACEMENT_WINDOW: int = 10
    DISPLACEMENT_MULT: float = 1.3

    def __init__(
        self,
        pip_size: float = 0.0001,
        decimals: int = 5,
        range_start: float = 17.0,
        range_end: float = 21.0,
        tz: ZoneInfo = NY_ZONE,
    ) -> None:
        self.pip_size = pip_size
        self.decimals = decimals
        self.range_start = range_start
        self.range_end = range_end
        self._tz = tz
        self.reset_day()

    def reset_day(self) -> None:
        self.range_high: Optional[float] = None
        self.range_low: Optional[float] = None
        self.range_locked = False
        self._sweep_side: Optional[str] = None  # "high" or "low"
        self.armed: Optional[_ArmedBlock] = None
        self._done = False
        self._m3_bars: list[Candle] = []
        self._m3_forming: Optional[Candle] = None
        self._prev_price: Optional[float] = None

    # ── Candle side ──────────────────────────────────────────────────────

    def arm(
        self,
        window: CandleWindow,
        session: SessionContext,
    ) -> Optional[SetupDescriptor]:
        c = window.last
        if c is None:
            return None

        hr = local_hour(c.open_time_ms, self._tz)
        if self.range_start <= hr < self.range_end:
            self.range_high = c.high if self.range_high is None else max(self.range_high, c.high)
            self.range_low = c.low if self.range_low is None else min(self.range_low, c.low)

        event: Optional[SetupDescriptor] = None
        if not self.range_locked and hr >= self.range_end and self.range_high is not None:
            self.range_locked = True
            event = SetupDescriptor(
                self.name,
                "range_locked",
                None,
                {
                    "high": round(self.range_high, self.decimals),
                    "low": round(self.range_low, self.decimals),
                },
            )

        if self._ingest_m3(c):
            block = self._detect_block()
            if block is not None:
                self.armed = block
                event = SetupDescriptor(
                    self.name,
                    "ob_armed",
                    block.direction,
                    {
                        "ob_high": round(block.high, self.decimals),
                        "ob_low": round(block.low, self.decimals),
                        "mid": round(block.mid, self.decimals),
                    },
                )
        return event

    def _ingest_m3(self, m1: Candle) -> bool:
        """Fold a 1-minute candle into the 3-minute series.

        Returns True when a 3-minute bar was completed.
        """
        bucket = (m1.open_time_ms // _M3_MS) * _M3_MS
        cur = self._m3_forming
        if cur is None:
            self._m3_forming = Candle(bucket, m1.open, m1.high, m1.low, m1.close)
            return False
        if bucket != cur.open_time_ms:
            self._m3_bars.append(cur)
            if len(self._m3_bars) > self.MAX_M3_BARS:
                del self._m3_bars[0]
            self._m3_forming = Candle(bucket, m1.open, m1.high, m1.low, m1.close)
            return True
        self._m3_forming = Candle(
            cur.open_time_ms,
            cur.open,
            max(cur.high, m1.high),
            min(cur.low, m1.low),
            m1.close,
        )
        return False

    def _detect_block(self) -> Optional[_ArmedBlock]:
        if self._sweep_side is None or self.armed is not None or self._done:
            return None
        bars = self._m3_bars
        if len(bars) < 3:
            return None

        recent = bars[-self.DISPLACEMENT_WINDOW:]
        avg_range = sum(b.high - b.low for b in recent) / len(recent)
        prev, cur = bars[-2], bars[-1]
        if (cur.high - cur.low) <= self.DISPLACEMENT_MULT * avg_range:
            return None

        if self._sweep_side == "high" and prev.is_bullish and cur.close < prev.low:
            return _ArmedBlock("sell", prev.high, prev.low, cur.open_time_ms)
        if self._sweep_side == "low" and prev.is_bearish and cur.close > prev.high:
            return _ArmedBlock("buy", prev.high, prev.low, cur.open_time_ms)
        return None

    # ── Tick side ────────────────────────────────────────────────────────

    def fire(
        self,
        price: float,
        ts_ms: int,
        session: SessionContext,
    ) -> Optional[FiredEntry]:
        prev = self._prev_price
        self._prev_price = price

        if not self.range_locked or self._done or prev is None:
            return None
        if local_hour(ts_ms, self._tz) < self.range_end:
            return None

        if self.range_high is not None and prev < self.range_high <= price:
            self._sweep_side = "high"
            self.armed = None
        if self.range_low is not None and prev > self.range_low >= price:
            self._sweep_side = "low"
            self.armed = None

        block = self.armed
        if block is None:
            return None
        mid = block.mid
        crossed = (
            (block.direction == "sell" and prev > mid >= price)
            or (block.direction == "buy" and prev < mid <= price)
        )
        if not crossed:
            return None

        self._done = True
        self.armed = None
        return FiredEntry(
            strategy=self.name,
            direction=block.direction,
            entry_price=mid,
            level="ob_mid",
        )
