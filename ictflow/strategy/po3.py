"""PO3 (accumulation / manipulation / distribution) detector.

Flow:
    1. London window: a candle sweeps beyond the locked Asia high/low and
       closes back inside → manipulation leg recorded.
    2. A later candle displaces (body ≥ 1.2 × ATR) back into the range →
       entry zone = 50–100 % retracement of that candle's body.
    3. First tick inside the zone fires; one entry per day.
"""

from dataclasses import dataclass
from typing import Optional
from zoneinfo import ZoneInfo

from ictflow.strategy.indicators import calculate_atr, is_displacement
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


@dataclass(frozen=True)
class _Sweep:
    direction: str  # trade direction implied by the sweep
    level: float  # sweep extreme
    ts_ms: int


class PO3Detector:
    """Asia-range sweep + displacement setup.

    Implements ``DetectorProtocol``.
    """

    name = "PO3"

    MIN_CANDLES: int = 30
    ATR_PERIOD: int = 14
    DISPLACEMENT_MULT: float = 1.2
    STOP_BUFFER_PIPS: float = 5.0
    CRYPTO_STOP_PCT: float = 0.0015

    def __init__(
        self,
        pip_size: float = 0.0001,
        decimals: int = 5,
        asset: str = "fx",
        tz: ZoneInfo = NY_ZONE,
        windows: SessionWindows = DEFAULT_WINDOWS,
    ) -> None:
        self.pip_size = pip_size
        self.decimals = decimals
        self.asset = asset
        self._tz = tz
        self._windows = windows
        self._sweep: Optional[_Sweep] = None
        self.pending: Optional[PendingSetup] = None
        self._done = False

    def reset_day(self) -> None:
        self._sweep = None
        self.pending = None
        self._done = False

    # ── Arm ──────────────────────────────────────────────────────────────

    def arm(
        self,
        window: CandleWindow,
        session: SessionContext,
    ) -> Optional[SetupDescriptor]:
        m1 = window.m1
        if self._done or self.pending is not None:
            return None
        if len(m1) < self.MIN_CANDLES:
            return None
        if (
            session.daily_open is None
            or not session.has_asia_range
            or not session.asia_locked
        ):
            return None

        last = m1[-1]
        atr = calculate_atr(m1, self.ATR_PERIOD)
        if atr is None:
            return None

        if self._sweep is None:
            w = self._windows
            if not in_hour_range(last.open_time_ms, w.london_start, w.london_end, self._tz):
                return None
            if last.high > session.asia_high and last.close <= session.asia_high:
                self._sweep = _Sweep("sell", last.high, last.open_time_ms)
                return SetupDescriptor(self.name, "sweep_high", "sell", {"level": last.high})
            if last.low < session.asia_low and last.close >= session.asia_low:
                self._sweep = _Sweep("buy", last.low, last.open_time_ms)
                return SetupDescriptor(self.name, "sweep_low", "buy", {"level": last.low})
            return None

        if not is_displacement(last, atr, self.DISPLACEMENT_MULT):
            return None

        body_mid = (last.open + last.close) / 2
        if self._sweep.direction == "sell":
            if not (last.is_bearish and last.close < session.asia_high):
                return None
            zone_low, zone_high = body_mid, max(last.open, last.close)
        else:
            if not (last.is_bullish and last.close > session.asia_low):
                return None
            zone_low, zone_high = min(last.open, last.close), body_mid

        direction = self._sweep.direction
        stop = self._stop(self._sweep.level, direction)
        targets = self._targets(direction, session)
        self.pending = PendingSetup(
            direction=direction,
            zone_low=zone_low,
            zone_high=zone_high,
            formed_at_ms=last.open_time_ms,
            stop=stop,
            targets=targets,
        )
        event = "displacement_down" if direction == "sell" else "displacement_up"
        return SetupDescriptor(
            self.name,
            event,
            direction,
            {
                "zone_low": round(zone_low, self.decimals),
                "zone_high": round(zone_high, self.decimals),
                "stop": round(stop, self.decimals),
                "targets": [round(t, self.decimals) for t in targets],
            },
        )

    # ── Fire ─────────────────────────────────────────────────────────────

    def fire(
        self,
        price: float,
        ts_ms: int,
        session: SessionContext,
    ) -> Optional[FiredEntry]:
        setup = self.pending
        if setup is None or self._done:
            return None
        if not setup.contains(price):
            return None

        self.pending = None
        self._done = True
        return FiredEntry(
            strategy=self.name,
            direction=setup.direction,
            entry_price=price,
            stop=setup.stop,
            targets=setup.targets,
        )

    # ── Levels ───────────────────────────────────────────────────────────

    def _stop(self, sweep_level: float, direction: str) -> float:
        if self.asset == "crypto":
            pct = self.CRYPTO_STOP_PCT
            return sweep_level * (1 + pct) if direction == "sell" else sweep_level * (1 - pct)
        buffer = self.STOP_BUFFER_PIPS * self.pip_size
        return sweep_level + buffer if direction == "sell" else sweep_level - buffer

    @staticmethod
    def _targets(direction: str, session: SessionContext) -> tuple[float, ...]:
        """Daily open, opposite Asia boundary and previous-day extreme.

        Ordered nearest-first in the trade direction: descending for a
        sell, ascending for a buy, so ``targets[0]`` is the first objective.
        """
        levels = [session.daily_open]
        if direction == "sell":
            levels += [session.asia_low, session.prev_day_low]
        else:
            levels += [session.asia_high, session.prev_day_high]
        unique = {lvl for lvl in levels if lvl is not None}
        return tuple(sorted(unique, reverse=(direction == "sell")))
