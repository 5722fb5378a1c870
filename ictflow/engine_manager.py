"""EngineManager — instrument-keyed registry of InstrumentEngines.

Built once at startup from the instrument list.  Feed ticks are queued per
instrument and consumed by one task per instrument, so each instrument's
ticks are processed strictly in order while instruments run independently.
The shared ``TradeMonitor`` and ``Outbox`` live here.
"""

import asyncio
import logging
import time
from typing import Optional
from zoneinfo import ZoneInfo

from ictflow.engine import InstrumentEngine
from ictflow.models.instrument import InstrumentConfig
from ictflow.monitor.trade_monitor import ClosedTrade, TradeMonitor
from ictflow.notify.outbox import Outbox
from ictflow.strategy.session_clock import NY_ZONE, day_key

logger = logging.getLogger("ictflow.engine_manager")

_STATUS_INTERVAL_SECONDS = 60.0


class EngineManager:
    """Lifecycle manager for one engine per instrument.

    Args:
        instruments:   Instrument configurations (validated).
        outbox:        Shared delivery queue; a private one is created
                       when omitted.
        monitor:       Shared trade monitor; created when omitted.
        notifier:      ``async send(message_type, payload)`` collaborator.
        trade_repo:    Reporting store (``record_open`` / ``record_close``).
        snapshot_repo: Session snapshot store (``load`` / ``save``).
        dashboard:     Optional remote reporter.
        tz:            Session timezone.
    """

    def __init__(
        self,
        instruments: list[InstrumentConfig],
        outbox: Optional[Outbox] = None,
        monitor: Optional[TradeMonitor] = None,
        notifier=None,
        trade_repo=None,
        snapshot_repo=None,
        dashboard=None,
        tz: ZoneInfo = NY_ZONE,
        status_interval: float = _STATUS_INTERVAL_SECONDS,
    ) -> None:
        self._instruments = list(instruments)
        self.outbox = outbox or Outbox()
        self.monitor = monitor or TradeMonitor()
        self.monitor.on_close = self._on_trade_closed
        self.notifier = notifier
        self.trade_repo = trade_repo
        self.snapshot_repo = snapshot_repo
        self.dashboard = dashboard
        self._tz = tz
        self._status_interval = status_interval

        self._engines: dict[str, InstrumentEngine] = {}
        self._by_symbol: dict[str, str] = {}
        self._queues: dict[str, asyncio.Queue] = {}
        self._tasks: list[asyncio.Task] = []
        self._stopped: Optional[asyncio.Event] = None

    # ── Public API ───────────────────────────────────────────────────────

    @property
    def engines(self) -> dict[str, InstrumentEngine]:
        """Map of instrument id → ``InstrumentEngine``."""
        return dict(self._engines)

    @property
    def instrument_ids(self) -> list[str]:
        return list(self._engines.keys())

    @property
    def feed_symbols(self) -> list[str]:
        return list(self._by_symbol.keys())

    def build_engines(self) -> None:
        """Instantiate an ``InstrumentEngine`` per instrument.

        Call **once** before :meth:`run_all`.  Raises ``ValueError`` on a
        duplicate instrument id or feed symbol.
        """
        for inst in self._instruments:
            if inst.id in self._engines:
                raise ValueError(f"Duplicate instrument id '{inst.id}'")
            if inst.feed_symbol in self._by_symbol:
                raise ValueError(f"Duplicate feed symbol '{inst.feed_symbol}'")
            engine = InstrumentEngine(
                instrument=inst,
                monitor=self.monitor,
                outbox=self.outbox,
                notifier=self.notifier,
                trade_repo=self.trade_repo,
                dashboard=self.dashboard,
                snapshot_repo=self.snapshot_repo,
                tz=self._tz,
            )
            self._engines[inst.id] = engine
            self._by_symbol[inst.feed_symbol] = inst.id
            logger.info(
                "Registered %s (%s) → %s",
                inst.id,
                inst.feed_symbol,
                ", ".join(d.name for d in engine.detectors),
            )

    def restore_snapshots(self, now_ms: Optional[int] = None) -> list[str]:
        """Seed each engine from today's snapshot, if one was saved.

        Returns the instrument ids that were restored.
        """
        if self.snapshot_repo is None:
            return []
        if now_ms is None:
            now_ms = int(time.time() * 1000)
        today = day_key(now_ms, self._tz)

        restored: list[str] = []
        for inst_id, engine in self._engines.items():
            snapshot = self.snapshot_repo.load(inst_id, today)
            if snapshot is None:
                continue
            if engine.restore_snapshot(snapshot):
                restored.append(inst_id)
            else:
                logger.info("%s | snapshot for %s has no locked Asia range; ignored", inst_id, today)
        return restored

    def handle_tick(self, symbol: str, price: float, ts_ms: int) -> bool:
        """Feed callback: enqueue a tick for its instrument's worker.

        Returns ``False`` for symbols no engine is registered for.
        """
        inst_id = self._by_symbol.get(symbol) or (symbol if symbol in self._engines else None)
        if inst_id is None:
            logger.debug("Tick for unknown symbol %s ignored", symbol)
            return False
        queue = self._queues.get(inst_id)
        if queue is None:
            self.process_tick(inst_id, price, ts_ms)
        else:
            queue.put_nowait((price, ts_ms))
        return True

    def process_tick(self, instrument_id: str, price: float, ts_ms: int) -> None:
        """Synchronous ordered path: aggregator → detectors → monitor."""
        engine = self._engines[instrument_id]
        engine.ingest(price, ts_ms)
        self.monitor.on_tick(instrument_id, price, ts_ms)

    async def run_all(self) -> None:
        """Run the per-instrument workers until :meth:`stop_all`."""
        if not self._engines:
            self.build_engines()

        self._stopped = asyncio.Event()
        self.outbox.start()
        for inst_id in self._engines:
            self._queues[inst_id] = asyncio.Queue()
            self._tasks.append(asyncio.create_task(self._worker(inst_id)))
        self._tasks.append(asyncio.create_task(self._status_loop()))
        logger.info("Started %d instrument stream(s).", len(self._engines))

        await self._stopped.wait()

        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        self._queues.clear()
        await self.outbox.stop()
        logger.info("All instrument streams stopped.")

    def stop_all(self) -> None:
        """Signal every worker to stop; open trades stay in memory."""
        if self._stopped is not None:
            self._stopped.set()

    def get_sessions(self, instrument_id: Optional[str] = None) -> dict:
        """Session context per instrument (or for one)."""
        if instrument_id is not None:
            engine = self._engines.get(instrument_id)
            if engine is None:
                raise KeyError(f"Unknown instrument: {instrument_id}")
            return engine.aggregator.get_sessions().to_dict()
        return {
            inst_id: eng.aggregator.get_sessions().to_dict()
            for inst_id, eng in self._engines.items()
        }

    def get_status(self) -> dict:
        return {
            "instruments": {i: e.status() for i, e in self._engines.items()},
            "open_trades": len(self.monitor.open_trades()),
            "outbox": {
                "pending": self.outbox.pending,
                "delivered": self.outbox.delivered,
                "dead_lettered": self.outbox.dead_lettered,
            },
        }

    # ── Internals ────────────────────────────────────────────────────────

    async def _worker(self, instrument_id: str) -> None:
        queue = self._queues[instrument_id]
        while True:
            price, ts_ms = await queue.get()
            try:
                self.process_tick(instrument_id, price, ts_ms)
            except Exception:
                logger.exception("%s | tick processing failed", instrument_id)
            finally:
                queue.task_done()

    async def _status_loop(self) -> None:
        while True:
            await asyncio.sleep(self._status_interval)
            self.log_status()

    def log_status(self) -> None:
        for inst_id, engine in self._engines.items():
            s = engine.aggregator.get_sessions()
            logger.info(
                "%s | last=%s DO=%s Asia=[%s - %s]%s open=%d",
                inst_id,
                engine._px(engine.aggregator.last_price),
                engine._px(s.daily_open),
                engine._px(s.asia_low),
                engine._px(s.asia_high),
                " (locked)" if s.asia_locked else "",
                len(self.monitor.open_trades(inst_id)),
            )

    def _on_trade_closed(self, closed: ClosedTrade) -> None:
        trade = closed.trade
        if self.notifier is not None:
            payload = closed.to_dict()
            payload["decimals"] = trade.decimals
            payload["session"] = trade.session.to_dict()
            self.outbox.submit(
                f"notify result {closed.trade_id}",
                self.notifier.send, "result", payload,
            )
        if self.trade_repo is not None:
            self.outbox.submit(
                f"report close {closed.trade_id}",
                self.trade_repo.record_close, closed,
            )
        if self.dashboard is not None:
            self.outbox.submit(
                f"dashboard close {closed.trade_id}",
                self.dashboard.post_result, closed,
            )
