"""Gold-Time detector (XAUUSD).

    BBP = (high - EMA) + (low - EMA), sampled on each top-of-hour candle.

If the three hours before the check hour all sampled negative, go long on
the first tick of the check hour's first minute.  Long only, one per day.
"""

from typing import Optional
from zoneinfo import ZoneInfo

from ictflow.strategy.indicators import IncrementalEMA
from ictflow.strategy.models import (
    CandleWindow,
    FiredEntry,
    SessionContext,
    SetupDescriptor,
)
from ictflow.strategy.session_clock import NY_ZONE, to_local


class GoldTimeDetector:
    """Implements ``DetectorProtocol``.

    The EMA is carried across days; only the hourly samples and the entry
    flag reset.
    """

    name = "GoldTime"

    def __init__(
        self,
        pip_size: float = 0.1,
        decimals: int = 2,
        length: int = 14,
        check_hour: int = 4,
        tz: ZoneInfo = NY_ZONE,
    ) -> None:
        self.pip_size = pip_size
        self.decimals = decimals
        self.check_hour = max(0, min(23, check_hour))
        self._tz = tz
        self._ema = IncrementalEMA(length)
        self._watch_hours = tuple((self.check_hour - k) % 24 for k in (3, 2, 1))
        self.reset_day()

    def reset_day(self) -> None:
        self._samples: dict[int, float] = {}
        self._entered_today = False

    @property
    def ema(self) -> Optional[float]:
        return self._ema.value

    def arm(
        self,
        window: CandleWindow,
        session: SessionContext,
    ) -> Optional[SetupDescriptor]:
        c = window.last
        if c is None:
            return None

        ema = self._ema.update(c.close)
        local = to_local(c.open_time_ms, self._tz)
        if local.minute != 0 or local.hour not in self._watch_hours:
            return None

        bbp = (c.high - ema) + (c.low - ema)
        self._samples[local.hour] = bbp
        return SetupDescriptor(
            self.name,
            "bbp_sample",
            None,
            {"hour": local.hour, "bbp": round(bbp, self.decimals + 2)},
        )

    def fire(
        self,
        price: float,
        ts_ms: int,
        session: SessionContext,
    ) -> Optional[FiredEntry]:
        if self._entered_today:
            return None
        local = to_local(ts_ms, self._tz)
        if local.hour != self.check_hour or local.minute != 0:
            return None

        values = [self._samples.get(h) for h in self._watch_hours]
        self._samples = {}
        if any(v is None or v >= 0 for v in values):
            return None

        self._entered_today = True
        return FiredEntry(
            strategy=self.name,
            direction="buy",
            entry_price=price,
        )
