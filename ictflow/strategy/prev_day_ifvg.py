"""Previous-Day Inverse FVG detector.

Price tags the previous day's open or close; the first 5-minute fair-value
gap that forms afterwards with the opposite polarity to the approach arms a
market entry on the next tick.

    approach from above → bullish gap → buy
    approach from below → bearish gap → sell
"""

from dataclasses import dataclass
from typing import Optional

from ictflow.strategy.models import (
    CandleWindow,
    FiredEntry,
    SessionContext,
    SetupDescriptor,
)
from ictflow.strategy.patterns import detect_fvg

_M5_MS = 5 * 60_000


@dataclass(frozen=True)
class _Touch:
    level_type: str  # "open" or "close"
    level: float
    side: str  # "from_above" or "from_below"
    ts_ms: int


class PrevDayIFVGDetector:
    """Implements ``DetectorProtocol``.

    Touch tracking happens on ticks inside ``fire``; ``arm`` only looks for
    the inverse gap once a touch is recorded.
    """

    name = "PDIFVG"

    FVG_LOOKBACK: int = 40

    def __init__(
        self,
        pip_size: float = 0.0001,
        decimals: int = 5,
        touch_pips: float = 3.0,
    ) -> None:
        self.pip_size = pip_size
        self.decimals = decimals
        self.touch_tol = max(1e-10, touch_pips * pip_size)
        self._prev_price: Optional[float] = None
        self._touch: Optional[_Touch] = None
        self._armed: Optional[str] = None
        self._last_fvg_key: Optional[str] = None

    def reset_day(self) -> None:
        self._prev_price = None
        self._touch = None
        self._armed = None
        self._last_fvg_key = None

    def arm(
        self,
        window: CandleWindow,
        session: SessionContext,
    ) -> Optional[SetupDescriptor]:
        touch = self._touch
        if touch is None or self._armed is not None:
            return None
        if len(window.m5) < 3:
            return None

        gaps = detect_fvg(window.m5, self.FVG_LOOKBACK)
        if not gaps:
            return None
        gap = gaps[-1]
        if gap.key == self._last_fvg_key:
            return None
        # Gap must have completed after the touch.
        if gap.formed_at_ms + _M5_MS <= touch.ts_ms:
            return None

        need = "bull" if touch.side == "from_above" else "bear"
        if gap.kind != need:
            return None

        self._last_fvg_key = gap.key
        self._armed = "buy" if need == "bull" else "sell"
        return SetupDescriptor(
            self.name,
            "armed",
            self._armed,
            {
                "level_type": touch.level_type,
                "level": round(touch.level, self.decimals),
                "side": touch.side,
                "gap_low": round(gap.low, self.decimals),
                "gap_high": round(gap.high, self.decimals),
            },
        )

    def fire(
        self,
        price: float,
        ts_ms: int,
        session: SessionContext,
    ) -> Optional[FiredEntry]:
        if self._armed is not None:
            direction = self._armed
            self._armed = None
            self._touch = None
            self._prev_price = price
            return FiredEntry(
                strategy=self.name,
                direction=direction,
                entry_price=price,
            )

        self._record_touch(price, ts_ms, session)
        self._prev_price = price
        return None

    def _record_touch(self, price: float, ts_ms: int, session: SessionContext) -> None:
        if self._touch is not None:
            return
        for level_type, level in (
            ("open", session.prev_day_open),
            ("close", session.prev_day_close),
        ):
            if level is None or abs(price - level) > self.touch_tol:
                continue
            prev = self._prev_price
            if prev is None or prev == level:
                continue  # approach side unknown
            side = "from_above" if prev > level else "from_below"
            self._touch = _Touch(level_type, level, side, ts_ms)
            return
