"""Breaker Reversal detector.

After a swing is followed by a structure shift (close through the next
opposing swing), the last opposite-coloured candle before the broken swing
becomes a breaker; entry on its retest.
"""

from typing import Optional, Sequence

from ictflow.strategy.indicators import find_swings
from ictflow.strategy.models import (
    Candle,
    CandleWindow,
    FiredEntry,
    PendingSetup,
    SessionContext,
    SetupDescriptor,
)
from ictflow.strategy.patterns import find_order_block


class BreakerReversalDetector:
    """Implements ``DetectorProtocol``."""

    name = "BREAKER"

    MIN_CANDLES: int = 80
    SWING_LEFT: int = 2
    SWING_RIGHT: int = 2
    BREAKER_LOOKBACK: int = 15

    def __init__(
        self,
        pip_size: float = 0.0001,
        decimals: int = 5,
        buffer_pips: float = 3.0,
    ) -> None:
        self.pip_size = pip_size
        self.decimals = decimals
        self.buffer = buffer_pips * pip_size
        self.pending: Optional[PendingSetup] = None
        self._last_break_key: Optional[str] = None

    def reset_day(self) -> None:
        # _last_break_key survives the day roll so a break seen yesterday is not re-armed.
        self.pending = None

    def arm(
        self,
        window: CandleWindow,
        session: SessionContext,
    ) -> Optional[SetupDescriptor]:
        m1 = window.m1
        if len(m1) < self.MIN_CANDLES:
            return None

        swings = find_swings(m1, self.SWING_LEFT, self.SWING_RIGHT)
        if len(swings.highs) < 2 or len(swings.lows) < 2:
            return None

        last_close = m1[-1].close

        # Bearish: swing high, then a close below the first swing low after it.
        h = swings.highs[-1]
        low_after = next((i for i in swings.lows if i > h), None)
        if low_after is not None and last_close < m1[low_after].low:
            result = self._arm_breaker(m1, "sell", h, low_after)
            if result is not None:
                return result

        # Bullish: swing low, then a close above the first swing high after it.
        lo = swings.lows[-1]
        high_after = next((i for i in swings.highs if i > lo), None)
        if high_after is not None and last_close > m1[high_after].high:
            return self._arm_breaker(m1, "buy", lo, high_after)

        return None

    def _arm_breaker(
        self,
        m1: Sequence[Candle],
        direction: str,
        swing_idx: int,
        shift_idx: int,
    ) -> Optional[SetupDescriptor]:
        # A bearish breaker is the last up candle before the swing high, and
        # vice versa; find_order_block takes the move's direction.
        block = find_order_block(
            m1, swing_idx, "buy" if direction == "buy" else "sell",
            lookback=self.BREAKER_LOOKBACK,
        )
        if block is None:
            return None

        kind = "bear" if direction == "sell" else "bull"
        key = f"{kind}:{m1[swing_idx].open_time_ms}:{m1[shift_idx].open_time_ms}"
        if key == self._last_break_key:
            return None
        self._last_break_key = key

        if direction == "sell":
            stop = block.high + self.buffer
            swing_level = m1[shift_idx].low
        else:
            stop = block.low - self.buffer
            swing_level = m1[shift_idx].high

        self.pending = PendingSetup(
            direction=direction,
            zone_low=block.low,
            zone_high=block.high,
            formed_at_ms=m1[-1].open_time_ms,
            stop=stop,
            targets=(swing_level,),
        )
        return SetupDescriptor(
            self.name,
            "setup_down" if direction == "sell" else "setup_up",
            direction,
            {
                "zone_low": round(block.low, self.decimals),
                "zone_high": round(block.high, self.decimals),
                "stop": round(stop, self.decimals),
                "swing": round(swing_level, self.decimals),
            },
        )

    def fire(
        self,
        price: float,
        ts_ms: int,
        session: SessionContext,
    ) -> Optional[FiredEntry]:
        setup = self.pending
        if setup is None or not setup.contains(price):
            return None

        self.pending = None
        return FiredEntry(
            strategy=self.name,
            direction=setup.direction,
            entry_price=price,
            stop=setup.stop,
            targets=setup.targets,
        )
