"""ICTFlow — per-instrument signal engine (the dispatcher).

Owns one ``CandleAggregator`` and one instance of each enabled detector.
Closed candles arm detectors; ticks fire them.  Every fired entry becomes a
``Trade`` with fixed pip (or native) stop/target, handed to the trade
monitor and reported to the collaborators through the outbox.
"""

import logging
import time
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from ictflow.core.aggregator import CandleAggregator
from ictflow.models.instrument import InstrumentConfig
from ictflow.monitor.trade_monitor import Trade, TradeMonitor
from ictflow.notify.outbox import Outbox
from ictflow.repos.snapshot_repo import SessionSnapshot
from ictflow.strategy.base import DetectorProtocol
from ictflow.strategy.models import (
    Candle,
    FiredEntry,
    SessionContext,
    SetupDescriptor,
)
from ictflow.strategy.registry import build_detectors
from ictflow.strategy.session_clock import DEFAULT_WINDOWS, NY_ZONE, SessionWindows

logger = logging.getLogger("ictflow")


def _wall_clock_ms() -> int:
    return int(time.time() * 1000)


class InstrumentEngine:
    """Routes one instrument's candles and ticks through its detectors.

    Not thread-safe: callers deliver one instrument's ticks strictly in
    order, one at a time.

    Args:
        instrument:     Static instrument configuration.
        monitor:        Shared ``TradeMonitor``.
        detectors:      Detector list in fire order; built from the
                        registry when omitted.
        outbox:         Delivery queue for collaborator calls.  Without it
                        no collaborator is called.
        notifier:       Object with ``async send(message_type, payload)``.
        trade_repo:     Reporting store with ``record_open(trade)``.
        dashboard:      Remote reporter with ``async post_entry(trade)``.
        snapshot_repo:  Session snapshot store with ``save(...)``.
        tz:             Session timezone.
        windows:        Session windows.
        clock_ms:       Wall clock for snapshot timestamps.
    """

    def __init__(
        self,
        instrument: InstrumentConfig,
        monitor: TradeMonitor,
        detectors: Optional[list[DetectorProtocol]] = None,
        outbox: Optional[Outbox] = None,
        notifier=None,
        trade_repo=None,
        dashboard=None,
        snapshot_repo=None,
        tz: ZoneInfo = NY_ZONE,
        windows: SessionWindows = DEFAULT_WINDOWS,
        clock_ms: Callable[[], int] = _wall_clock_ms,
    ) -> None:
        self.instrument = instrument
        self.monitor = monitor
        self.detectors: list[DetectorProtocol] = (
            detectors if detectors is not None else build_detectors(instrument, tz)
        )
        self.outbox = outbox
        self.notifier = notifier
        self.trade_repo = trade_repo
        self.dashboard = dashboard
        self.snapshot_repo = snapshot_repo
        self._clock_ms = clock_ms

        self.aggregator = CandleAggregator(
            instrument.id,
            on_m1=self.on_candle_close,
            tz=tz,
            windows=windows,
        )

        self._day_key: Optional[str] = None
        self._snapshot_saved_for: Optional[str] = None
        self.last_setups: dict[str, SetupDescriptor] = {}
        self.entries_fired = 0
        self.ticks_seen = 0

    @property
    def instrument_id(self) -> str:
        return self.instrument.id

    # ── Inputs ───────────────────────────────────────────────────────────

    def ingest(self, price: float, ts_ms: int) -> list[Trade]:
        """Feed one tick: aggregate it, then let detectors fire on it.

        A tick that closes a 1-minute candle triggers ``on_candle_close``
        before any detector sees the tick.
        """
        self.ticks_seen += 1
        self.aggregator.ingest_tick(price, ts_ms)
        return self.on_tick(price, ts_ms)

    def restore_snapshot(self, snapshot: SessionSnapshot) -> bool:
        """Seed the aggregator from a same-day snapshot.

        Returns ``False`` (and changes nothing) if the snapshot has no
        locked Asia range.
        """
        if not snapshot.is_restorable:
            return False
        self.aggregator.seed_from_snapshot(snapshot.session)
        self._snapshot_saved_for = snapshot.session.day_key
        return True

    def on_candle_close(self, candle: Candle) -> None:
        """Arm every detector on a closed 1-minute candle."""
        session = self.aggregator.get_sessions()

        if session.day_key != self._day_key:
            if self._day_key is not None:
                for det in self.detectors:
                    det.reset_day()
                self.last_setups.clear()
                logger.info(
                    "%s | new day %s. Prev H/L: %s / %s",
                    self.instrument_id,
                    session.day_key,
                    self._px(session.prev_day_high),
                    self._px(session.prev_day_low),
                )
            self._day_key = session.day_key

        if (
            session.asia_locked
            and session.has_asia_range
            and self._snapshot_saved_for != session.day_key
        ):
            self._snapshot_saved_for = session.day_key
            self._save_snapshot(session)

        window = self.aggregator.window()
        for det in self.detectors:
            try:
                setup = det.arm(window, session)
            except Exception:
                logger.exception("%s | %s arm failed", self.instrument_id, det.name)
                continue
            if setup is not None:
                self.last_setups[det.name] = setup
                logger.info(
                    "%s | %s %s %s %s",
                    self.instrument_id,
                    setup.strategy,
                    setup.event,
                    (setup.direction or "").upper(),
                    setup.data,
                )

    def on_tick(self, price: float, ts_ms: int) -> list[Trade]:
        """Run every detector's fire step; returns the trades opened."""
        session = self.aggregator.get_sessions()
        opened: list[Trade] = []
        for det in self.detectors:
            try:
                entry = det.fire(price, ts_ms, session)
            except Exception:
                logger.exception("%s | %s fire failed", self.instrument_id, det.name)
                continue
            if entry is None:
                continue
            trade = self.build_trade(entry, ts_ms, session)
            self._dispatch(trade)
            opened.append(trade)
        return opened

    # ── Trade construction ───────────────────────────────────────────────

    def build_trade(
        self,
        entry: FiredEntry,
        ts_ms: int,
        session: SessionContext,
    ) -> Trade:
        """Turn a fired entry into a ``Trade``.

        With ``stop_mode="native"`` the detector's own stop and first
        target are used when both exist and sit on the correct sides of
        the entry; otherwise the instrument's fixed pip distances apply.
        """
        inst = self.instrument
        rr = inst.risk_reward
        px = entry.entry_price
        sign = 1 if entry.direction == "buy" else -1

        stop = px - sign * rr.sl_pips * inst.pip_size
        target = px + sign * rr.tp_pips * inst.pip_size
        variant = rr.label

        if inst.stop_mode == "native" and entry.stop is not None and entry.targets:
            native_target = entry.targets[0]
            if sign * (px - entry.stop) > 0 and sign * (native_target - px) > 0:
                stop, target, variant = entry.stop, native_target, "Native"

        return Trade(
            instrument_id=inst.id,
            strategy=entry.strategy,
            direction=entry.direction,
            entry_price=px,
            entry_ts_ms=ts_ms,
            stop_price=stop,
            target_price=target,
            pip_size=inst.pip_size,
            decimals=inst.decimals,
            variant_label=variant,
            session=session,
            native_stop=entry.stop,
            native_targets=entry.targets,
            level=entry.level,
        )

    def _dispatch(self, trade: Trade) -> None:
        self.entries_fired += 1
        logger.info(
            "%s | %s ENTRY %s @ %s SL %s TP %s (%s) id=%s",
            trade.instrument_id,
            trade.strategy,
            trade.direction.upper(),
            self._px(trade.entry_price),
            self._px(trade.stop_price),
            self._px(trade.target_price),
            trade.variant_label,
            trade.trade_id,
        )
        self.monitor.add_trade(trade)

        if self.outbox is None:
            return
        if self.notifier is not None:
            self.outbox.submit(
                f"notify entry {trade.trade_id}",
                self.notifier.send, "strategy_entry", trade.to_dict(),
            )
        if self.trade_repo is not None:
            self.outbox.submit(
                f"report open {trade.trade_id}",
                self.trade_repo.record_open, trade,
            )
        if self.dashboard is not None:
            self.outbox.submit(
                f"dashboard open {trade.trade_id}",
                self.dashboard.post_entry, trade,
            )

    def _save_snapshot(self, session: SessionContext) -> None:
        logger.info(
            "%s | Asia snapshot saved for %s: [%s - %s], DO=%s",
            self.instrument_id,
            session.day_key,
            self._px(session.asia_low),
            self._px(session.asia_high),
            self._px(session.daily_open),
        )
        if self.snapshot_repo is None or self.outbox is None:
            return
        self.outbox.submit(
            f"snapshot {self.instrument_id} {session.day_key}",
            self.snapshot_repo.save, self.instrument_id, session, self._clock_ms(),
        )

    # ── Status ───────────────────────────────────────────────────────────

    def status(self) -> dict:
        session = self.aggregator.get_sessions()
        return {
            "instrument_id": self.instrument_id,
            "last_price": self.aggregator.last_price,
            "session": session.to_dict(),
            "detectors": [d.name for d in self.detectors],
            "last_setups": {
                name: {"event": s.event, "direction": s.direction, "data": s.data}
                for name, s in self.last_setups.items()
            },
            "entries_fired": self.entries_fired,
            "ticks_seen": self.ticks_seen,
            "open_trades": len(self.monitor.open_trades(self.instrument_id)),
        }

    def _px(self, value: Optional[float]) -> str:
        return "n/a" if value is None else f"{value:.{self.instrument.decimals}f}"
