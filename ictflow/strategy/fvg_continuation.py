"""FVG Continuation detector.

Trend from the 5-minute series (close through the prior 10-bar range),
entry on a retest of the latest 1-minute fair-value gap aligned with it.
"""

from typing import Optional

from ictflow.strategy.models import (
    CandleWindow,
    FiredEntry,
    PendingSetup,
    SessionContext,
    SetupDescriptor,
)
from ictflow.strategy.patterns import detect_fvg


class FVGContinuationDetector:
    """Implements ``DetectorProtocol``."""

    name = "FVGC"

    MIN_M1: int = 50
    MIN_M5: int = 30
    TREND_LOOKBACK: int = 10
    FVG_LOOKBACK: int = 120

    def __init__(
        self,
        pip_size: float = 0.0001,
        decimals: int = 5,
        buffer_pips: float = 2.0,
    ) -> None:
        self.pip_size = pip_size
        self.decimals = decimals
        self.buffer = buffer_pips * pip_size
        self.pending: Optional[PendingSetup] = None
        self._last_fvg_key: Optional[str] = None

    def reset_day(self) -> None:
        self.pending = None

    def _trend(self, window: CandleWindow) -> Optional[str]:
        m5 = window.m5
        prior = m5[-(self.TREND_LOOKBACK + 1):-1]
        if len(prior) < self.TREND_LOOKBACK:
            return None
        close = m5[-1].close
        if close > max(c.high for c in prior):
            return "up"
        if close < min(c.low for c in prior):
            return "down"
        return None

    def arm(
        self,
        window: CandleWindow,
        session: SessionContext,
    ) -> Optional[SetupDescriptor]:
        if len(window.m1) < self.MIN_M1 or len(window.m5) < self.MIN_M5:
            return None

        trend = self._trend(window)
        if trend is None:
            return None

        want = "bull" if trend == "up" else "bear"
        aligned = [g for g in detect_fvg(window.m1, self.FVG_LOOKBACK) if g.kind == want]
        if not aligned:
            return None
        gap = aligned[-1]
        if gap.key == self._last_fvg_key:
            return None
        self._last_fvg_key = gap.key

        if trend == "up":
            direction, stop, target = "buy", gap.low - self.buffer, gap.high
        else:
            direction, stop, target = "sell", gap.high + self.buffer, gap.low

        self.pending = PendingSetup(
            direction=direction,
            zone_low=gap.low,
            zone_high=gap.high,
            formed_at_ms=gap.formed_at_ms,
            stop=stop,
            targets=(target,),
        )
        return SetupDescriptor(
            self.name,
            "setup",
            direction,
            {
                "zone_low": round(gap.low, self.decimals),
                "zone_high": round(gap.high, self.decimals),
                "stop": round(stop, self.decimals),
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
