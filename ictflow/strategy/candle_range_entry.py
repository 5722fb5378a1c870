"""Candle Range Entry detector.

Inside the New York window, a displacement candle that took liquidity
(Asia range, previous-day extreme or the daily open) is marked with up to
five retracement levels.  The first level price returns to, checked in
priority order, triggers the entry at that level.
"""

from dataclasses import dataclass, field
from typing import Optional, Sequence
from zoneinfo import ZoneInfo

from ictflow.strategy.indicators import calculate_atr
from ictflow.strategy.models import (
    CandleWindow,
    FiredEntry,
    PendingSetup,
    SessionContext,
    SetupDescriptor,
)
from ictflow.strategy.patterns import (
    detect_fvg,
    find_order_block,
    infer_sweep_direction,
)
from ictflow.strategy.session_clock import NY_ZONE, in_hour_range

DEFAULT_LEVEL_PRIORITY = ("fvg_mid", "ob_50", "body_50", "range_50", "ob_open")


@dataclass(frozen=True)
class _ArmedRange(PendingSetup):
    """Pending setup whose zone spans all candidate levels."""

    levels: dict = field(default_factory=dict)  # level name → price


class CandleRangeEntryDetector:
    """Implements ``DetectorProtocol``."""

    name = "CandleRange"

    MIN_CANDLES: int = 20
    ATR_PERIOD: int = 14
    FVG_CONTEXT: int = 10

    def __init__(
        self,
        pip_size: float = 0.0001,
        decimals: int = 5,
        start_hour: float = 8.5,
        end_hour: float = 11.0,
        use_asia: bool = True,
        use_prev_day: bool = True,
        use_daily_open: bool = True,
        displacement_mult: float = 1.2,
        min_body_pips: float = 0.0,
        expiry_min: int = 60,
        levels: Sequence[str] = DEFAULT_LEVEL_PRIORITY,
        touch_pips: float = 1.0,
        one_trade_per_day: bool = True,
        tz: ZoneInfo = NY_ZONE,
    ) -> None:
        self.pip_size = pip_size
        self.decimals = decimals
        self.start_hour = start_hour
        self.end_hour = end_hour
        self.use_asia = use_asia
        self.use_prev_day = use_prev_day
        self.use_daily_open = use_daily_open
        self.displacement_mult = displacement_mult
        self.min_body_pips = min_body_pips
        self.expiry_min = expiry_min
        self.levels = tuple(levels) or DEFAULT_LEVEL_PRIORITY
        self.touch_tol = max(1e-10, touch_pips * pip_size)
        self.one_trade_per_day = one_trade_per_day
        self._tz = tz
        self.armed: Optional[_ArmedRange] = None
        self._entered_today = False

    def reset_day(self) -> None:
        self.armed = None
        self._entered_today = False

    def _in_window(self, ts_ms: int) -> bool:
        return in_hour_range(ts_ms, self.start_hour, self.end_hour, self._tz)

    # ── Arm ──────────────────────────────────────────────────────────────

    def arm(
        self,
        window: CandleWindow,
        session: SessionContext,
    ) -> Optional[SetupDescriptor]:
        m1 = window.m1
        if len(m1) < self.MIN_CANDLES:
            return None
        if self.one_trade_per_day and self._entered_today:
            return None

        idx = len(m1) - 1
        c = m1[idx]
        if not self._in_window(c.open_time_ms):
            return None

        atr = calculate_atr(m1, self.ATR_PERIOD)
        if atr is None or c.body < self.displacement_mult * atr:
            return None
        if self.min_body_pips > 0 and c.body / self.pip_size < self.min_body_pips:
            return None

        direction = infer_sweep_direction(
            c,
            session,
            use_asia=self.use_asia,
            use_prev_day=self.use_prev_day,
            use_daily_open=self.use_daily_open,
        )
        if direction is None:
            return None

        levels = {
            "range_50": (c.high + c.low) / 2,
            "body_50": (c.open + c.close) / 2,
        }
        block = find_order_block(m1, idx, direction)
        if block is not None:
            levels["ob_50"] = block.mid
            levels["ob_open"] = block.open
        gaps = detect_fvg(m1[max(0, idx - self.FVG_CONTEXT):], lookback=2 * self.FVG_CONTEXT)
        if gaps and gaps[-1].kind == ("bull" if direction == "buy" else "bear"):
            levels["fvg_mid"] = gaps[-1].mid

        expires = (
            c.open_time_ms + self.expiry_min * 60_000 if self.expiry_min > 0 else None
        )
        self.armed = _ArmedRange(
            direction=direction,
            zone_low=min(levels.values()),
            zone_high=max(levels.values()),
            formed_at_ms=c.open_time_ms,
            expires_at_ms=expires,
            levels=levels,
        )
        return SetupDescriptor(
            self.name,
            "armed",
            direction,
            {name: round(px, self.decimals) for name, px in levels.items()},
        )

    # ── Fire ─────────────────────────────────────────────────────────────

    def fire(
        self,
        price: float,
        ts_ms: int,
        session: SessionContext,
    ) -> Optional[FiredEntry]:
        setup = self.armed
        if setup is None:
            return None
        if self.one_trade_per_day and self._entered_today:
            return None
        if setup.is_expired(ts_ms):
            self.armed = None
            return None
        if not self._in_window(ts_ms):
            return None

        for name in self.levels:
            px = setup.levels.get(name)
            if px is None:
                continue
            # Touch or cross: price came back to within tolerance of the
            # level, or traded through it, from the displacement side.
            if setup.direction == "buy":
                reached = price <= px + self.touch_tol
            else:
                reached = price >= px - self.touch_tol
            if reached:
                self.armed = None
                self._entered_today = True
                return FiredEntry(
                    strategy=self.name,
                    direction=setup.direction,
                    entry_price=px,
                    level=name,
                )
        return None
