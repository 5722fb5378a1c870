"""Judas Swing detector — London sweep of the Asia range, faded straight back.

Same sweep as PO3 but armed on the sweep candle itself, without waiting for
displacement.
"""

from typing import Optional
from zoneinfo import ZoneInfo

from ictflow.strategy.models import (
    CandleWindow,
    FiredEntry,
    PendingSetup,
    SessionContext,
    SetupDescriptor,
)
from ictflow.strategy.session_clock import (
    DEFAULT_WINDOWS,
    NY_ZONE,
    SessionWindows,
    in_hour_range,
)


class JudasSwingDetector:
    """Fade a false London breakout of the Asia range.

    Implements ``DetectorProtocol``.

    Args:
        pip_size: Instrument pip size.
        decimals: Price precision for reporting.
        buffer_pips: Stop distance beyond the sweep extreme.
    """

    name = "JUDAS"

    MIN_CANDLES: int = 10

    def __init__(
        self,
        pip_size: float = 0.0001,
        decimals: int = 5,
        buffer_pips: float = 5.0,
        tz: ZoneInfo = NY_ZONE,
        windows: SessionWindows = DEFAULT_WINDOWS,
    ) -> None:
        self.pip_size = pip_size
        self.decimals = decimals
        self.buffer = buffer_pips * pip_size
        self._tz = tz
        self._windows = windows
        self.pending: Optional[PendingSetup] = None

    def reset_day(self) -> None:
        self.pending = None

    def arm(
        self,
        window: CandleWindow,
        session: SessionContext,
    ) -> Optional[SetupDescriptor]:
        m1 = window.m1
        if len(m1) < self.MIN_CANDLES:
            return None
        if not session.has_asia_range or not session.asia_locked:
            return None

        c = m1[-1]
        w = self._windows
        if not in_hour_range(c.open_time_ms, w.london_start, w.london_end, self._tz):
            return None

        if c.high > session.asia_high and c.close <= session.asia_high:
            boundary = session.asia_high
            self.pending = PendingSetup(
                direction="sell",
                zone_low=boundary,
                zone_high=(boundary + c.high) / 2,
                formed_at_ms=c.open_time_ms,
                stop=c.high + self.buffer,
                targets=(boundary,),
            )
        elif c.low < session.asia_low and c.close >= session.asia_low:
            boundary = session.asia_low
            self.pending = PendingSetup(
                direction="buy",
                zone_low=(boundary + c.low) / 2,
                zone_high=boundary,
                formed_at_ms=c.open_time_ms,
                stop=c.low - self.buffer,
                targets=(boundary,),
            )
        else:
            return None

        p = self.pending
        return SetupDescriptor(
            self.name,
            f"setup_{p.direction}",
            p.direction,
            {
                "zone_low": round(p.zone_low, self.decimals),
                "zone_high": round(p.zone_high, self.decimals),
                "stop": round(p.stop, self.decimals),
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
