"""Candle/session aggregator — ticks → 1-minute and 5-minute candles.

Also owns the instrument's rolling session context (daily open, Asia range,
previous-day and today levels) and rolls it over at the local day boundary.
Everything downstream reads that context through ``get_sessions()``, which
returns an immutable copy.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import replace
from typing import Callable, Iterable, Optional
from zoneinfo import ZoneInfo

from ictflow.strategy.models import Candle, CandleWindow, SessionContext
from ictflow.strategy.session_clock import (
    DEFAULT_WINDOWS,
    NY_ZONE,
    SessionWindows,
    day_key,
    to_local,
)

logger = logging.getLogger("ictflow.aggregator")

CandleCallback = Callable[[Candle], None]

_MINUTE_MS = 60_000


class _FormingCandle:
    """Mutable in-progress 1-minute bar."""

    __slots__ = ("minute_key", "open", "high", "low", "close")

    def __init__(self, minute_key: int, price: float) -> None:
        self.minute_key = minute_key
        self.open = price
        self.high = price
        self.low = price
        self.close = price

    def update(self, price: float) -> None:
        self.high = max(self.high, price)
        self.low = min(self.low, price)
        self.close = price

    def freeze(self) -> Candle:
        return Candle(
            open_time_ms=self.minute_key * _MINUTE_MS,
            open=self.open,
            high=self.high,
            low=self.low,
            close=self.close,
        )


class CandleAggregator:
    """Builds candles and session context for one instrument.

    Args:
        instrument_id: Instrument this aggregator serves (for logging).
        on_m1: Called with every closed 1-minute candle.
        on_m5: Called with every derived 5-minute candle.
        tz: Session timezone.
        windows: Session windows; only the Asia window is used here.
        max_m1: Bound on retained 1-minute candles.
        max_m5: Bound on retained 5-minute candles.
    """

    def __init__(
        self,
        instrument_id: str,
        on_m1: Optional[CandleCallback] = None,
        on_m5: Optional[CandleCallback] = None,
        tz: ZoneInfo = NY_ZONE,
        windows: SessionWindows = DEFAULT_WINDOWS,
        max_m1: int = 5000,
        max_m5: int = 2000,
    ) -> None:
        self.instrument_id = instrument_id
        self.on_m1 = on_m1
        self.on_m5 = on_m5
        self._tz = tz
        self._windows = windows

        self._forming: Optional[_FormingCandle] = None
        self._m1: deque[Candle] = deque(maxlen=max_m1)
        self._m5: deque[Candle] = deque(maxlen=max_m5)
        self._closed_since_m5 = 0
        self._session = SessionContext()

    # ── Ingest ───────────────────────────────────────────────────────────

    def ingest_tick(self, price: float, ts_ms: int) -> Optional[Candle]:
        """Add a tick; returns the 1-minute candle it closed, if any.

        A tick for a later minute closes the forming candle and opens a new
        one.  A tick stamped with an earlier minute than the forming candle
        is folded into the forming candle, since feed order is best-effort.
        """
        minute_key = ts_ms // _MINUTE_MS
        forming = self._forming

        if forming is None:
            self._forming = _FormingCandle(minute_key, price)
            return None

        if minute_key > forming.minute_key:
            closed = forming.freeze()
            self._forming = _FormingCandle(minute_key, price)
            self._finalize_m1(closed)
            return closed

        forming.update(price)
        return None

    def seed_history(self, candles: Iterable[Candle], silent: bool = True) -> None:
        """Replay closed 1-minute candles (oldest-first) through the session logic.

        With *silent* the subscriber callbacks are not invoked.
        """
        saved = (self.on_m1, self.on_m5)
        if silent:
            self.on_m1 = self.on_m5 = None
        try:
            for candle in candles:
                self._finalize_m1(candle)
        finally:
            self.on_m1, self.on_m5 = saved

    def seed_from_snapshot(self, snapshot: SessionContext) -> None:
        """Restore session levels saved earlier the same day.

        Only fields present in *snapshot* overwrite current values.
        """
        updates = {
            name: value
            for name, value in snapshot.to_dict().items()
            if value is not None
        }
        if not snapshot.asia_locked:
            updates.pop("asia_locked", None)
        self._session = replace(self._session, **updates)
        logger.info(
            "%s | session seeded for %s: DO=%s Asia=[%s - %s] locked=%s",
            self.instrument_id,
            self._session.day_key,
            self._session.daily_open,
            self._session.asia_low,
            self._session.asia_high,
            self._session.asia_locked,
        )

    # ── Queries ──────────────────────────────────────────────────────────

    def get_sessions(self) -> SessionContext:
        """Return an immutable copy of the current session context."""
        return self._session

    def window(self) -> CandleWindow:
        """Snapshot of retained 1-minute and 5-minute history."""
        return CandleWindow(m1=tuple(self._m1), m5=tuple(self._m5))

    @property
    def m1(self) -> list[Candle]:
        return list(self._m1)

    @property
    def m5(self) -> list[Candle]:
        return list(self._m5)

    @property
    def last_price(self) -> Optional[float]:
        if self._forming is not None:
            return self._forming.close
        return self._m1[-1].close if self._m1 else None

    # ── Internals ────────────────────────────────────────────────────────

    def _finalize_m1(self, candle: Candle) -> None:
        local = to_local(candle.open_time_ms, self._tz)
        dkey = day_key(candle.open_time_ms, self._tz)
        hr = local.hour + local.minute / 60
        s = self._session

        if s.day_key != dkey:
            if s.day_key is not None:
                s = replace(
                    s,
                    prev_day_high=s.today_high,
                    prev_day_low=s.today_low,
                    prev_day_open=s.daily_open,
                    prev_day_close=self._m1[-1].close if self._m1 else None,
                )
                logger.info(
                    "%s | day roll %s → %s (prev H/L %s / %s)",
                    self.instrument_id, s.day_key, dkey,
                    s.prev_day_high, s.prev_day_low,
                )
            s = replace(
                s,
                day_key=dkey,
                daily_open=None,
                asia_high=None,
                asia_low=None,
                asia_locked=False,
                today_high=None,
                today_low=None,
            )

        if local.hour == 0 and local.minute == 0 and s.daily_open is None:
            s = replace(s, daily_open=candle.open)

        s = replace(
            s,
            today_high=candle.high if s.today_high is None else max(s.today_high, candle.high),
            today_low=candle.low if s.today_low is None else min(s.today_low, candle.low),
        )

        w = self._windows
        if not s.asia_locked:
            if w.asia_start <= hr <= w.asia_end:
                s = replace(
                    s,
                    asia_high=candle.high if s.asia_high is None else max(s.asia_high, candle.high),
                    asia_low=candle.low if s.asia_low is None else min(s.asia_low, candle.low),
                )
            if hr >= w.asia_end:
                s = replace(s, asia_locked=True)
                logger.info(
                    "%s | Asia range locked for %s: [%s - %s]",
                    self.instrument_id, dkey, s.asia_low, s.asia_high,
                )

        self._session = s

        self._m1.append(candle)
        m5: Optional[Candle] = None
        self._closed_since_m5 += 1
        if self._closed_since_m5 >= 5 and len(self._m1) >= 5:
            self._closed_since_m5 = 0
            last5 = [self._m1[i] for i in range(-5, 0)]
            m5 = Candle(
                open_time_ms=last5[0].open_time_ms,
                open=last5[0].open,
                high=max(c.high for c in last5),
                low=min(c.low for c in last5),
                close=last5[-1].close,
            )
            self._m5.append(m5)

        if self.on_m1:
            self.on_m1(candle)
        if m5 is not None and self.on_m5:
            self.on_m5(m5)
