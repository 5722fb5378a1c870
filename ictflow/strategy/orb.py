"""Opening Range Breakout detector.

Builds the opening range over ``[start_hour, start_hour + duration)`` local
time, then enters on a break of its high or low until the end-of-day cutoff.
Entry price is the broken range edge.
"""

from typing import Optional
from zoneinfo import ZoneInfo

from ictflow.strategy.models import (
    CandleWindow,
    FiredEntry,
    SessionContext,
    SetupDescriptor,
)
from ictflow.strategy.session_clock import NY_ZONE, local_hour


class ORBDetector:
    """Implements ``DetectorProtocol``.

    Args:
        start_hour: Opening range start, fractional local hours.
        duration_min: Opening range length in minutes.
        confirm_by_close: Require a closed candle beyond the range rather
            than a tick touch.
        reverse_logic: Fade the breakout instead of following it.
        allow_second_chance: Permit a second entry on the opposite side.
        max_entries_per_day: Entry cap, clamped to 1..2.
        touch_pips: Tolerance inside the range edge that still counts.
        eod_hour: No entries after this local hour.
    """

    name = "ORB"

    def __init__(
        self,
        pip_size: float = 0.0001,
        decimals: int = 5,
        start_hour: float = 9.5,
        duration_min: int = 30,
        confirm_by_close: bool = True,
        reverse_logic: bool = False,
        allow_second_chance: bool = False,
        max_entries_per_day: int = 1,
        touch_pips: float = 0.0,
        eod_hour: float = 16.5,
        tz: ZoneInfo = NY_ZONE,
    ) -> None:
        self.pip_size = pip_size
        self.decimals = decimals
        self.start_hour = start_hour
        self.end_hour = start_hour + duration_min / 60
        self.confirm_by_close = confirm_by_close
        self.reverse_logic = reverse_logic
        self.allow_second_chance = allow_second_chance
        self.max_entries = max(1, min(2, max_entries_per_day))
        self.touch_tol = max(0.0, touch_pips * pip_size)
        self.eod_hour = eod_hour
        self._tz = tz
        self.reset_day()

    def reset_day(self) -> None:
        self.or_high: Optional[float] = None
        self.or_low: Optional[float] = None
        self.or_complete = False
        self.entries_taken = 0
        self._first_side: Optional[str] = None
        self._last_close: Optional[float] = None

    def _complete_if_due(self, hr: float) -> bool:
        if not self.or_complete and self.or_high is not None and hr >= self.end_hour:
            self.or_complete = True
            return True
        return False

    def arm(
        self,
        window: CandleWindow,
        session: SessionContext,
    ) -> Optional[SetupDescriptor]:
        c = window.last
        if c is None:
            return None

        hr = local_hour(c.open_time_ms, self._tz)
        if self.start_hour <= hr < self.end_hour:
            self.or_high = c.high if self.or_high is None else max(self.or_high, c.high)
            self.or_low = c.low if self.or_low is None else min(self.or_low, c.low)
            return None

        if hr >= self.end_hour:
            self._last_close = c.close

        if self._complete_if_due(hr):
            return SetupDescriptor(
                self.name,
                "range_complete",
                None,
                {
                    "high": round(self.or_high, self.decimals),
                    "low": round(self.or_low, self.decimals),
                },
            )
        return None

    def fire(
        self,
        price: float,
        ts_ms: int,
        session: SessionContext,
    ) -> Optional[FiredEntry]:
        hr = local_hour(ts_ms, self._tz)
        self._complete_if_due(hr)
        if not self.or_complete or hr > self.eod_hour:
            return None
        if self.entries_taken >= self.max_entries:
            return None

        if self.confirm_by_close:
            ref = self._last_close
            if ref is None:
                return None
            above = ref > self.or_high - self.touch_tol
            below = ref < self.or_low + self.touch_tol
        else:
            above = price >= self.or_high - self.touch_tol
            below = price <= self.or_low + self.touch_tol

        if above:
            side, edge = "high", self.or_high
        elif below:
            side, edge = "low", self.or_low
        else:
            return None

        if self.entries_taken > 0:
            if not self.allow_second_chance or side == self._first_side:
                return None

        if side == "high":
            direction = "sell" if self.reverse_logic else "buy"
        else:
            direction = "buy" if self.reverse_logic else "sell"

        self.entries_taken += 1
        if self._first_side is None:
            self._first_side = side
        return FiredEntry(
            strategy=self.name,
            direction=direction,
            entry_price=edge,
            level=f"or_{side}",
        )
