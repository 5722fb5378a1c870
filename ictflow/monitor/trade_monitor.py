"""Trade monitor — simulated stop/target resolution against live ticks.

Holds every open simulated trade across all instruments.  Per-instrument
tick streams may call in concurrently, so the open set is guarded by a
lock; the close callback runs outside it.
"""

import logging
import threading
from dataclasses import asdict, dataclass, field
from typing import Callable, Optional

from ictflow.strategy.models import SessionContext

logger = logging.getLogger("ictflow.monitor")


@dataclass(frozen=True)
class Trade:
    """An open simulated position, created when a detector fires."""

    instrument_id: str
    strategy: str
    direction: str  # "buy" or "sell"
    entry_price: float
    entry_ts_ms: int
    stop_price: float
    target_price: float
    pip_size: float
    decimals: int
    variant_label: str = "FixedPips"
    session: SessionContext = field(default_factory=SessionContext)
    native_stop: Optional[float] = None
    native_targets: tuple[float, ...] = ()
    level: Optional[str] = None

    @property
    def trade_id(self) -> str:
        """``{instrument}-{strategy}-{entry_ts}``, stable end-to-end."""
        return f"{self.instrument_id}-{self.strategy}-{self.entry_ts_ms}"

    def to_dict(self) -> dict:
        d = asdict(self)
        d["trade_id"] = self.trade_id
        d["native_targets"] = list(self.native_targets)
        return d


@dataclass(frozen=True)
class ClosedTrade:
    """Terminal state of a ``Trade``."""

    trade: Trade
    exit_price: float
    exit_ts_ms: int
    outcome: str  # "win" or "loss"
    pips: float

    @property
    def trade_id(self) -> str:
        return self.trade.trade_id

    def to_dict(self) -> dict:
        return {
            "trade_id": self.trade_id,
            "instrument_id": self.trade.instrument_id,
            "strategy": self.trade.strategy,
            "direction": self.trade.direction,
            "entry_price": self.trade.entry_price,
            "entry_ts_ms": self.trade.entry_ts_ms,
            "exit_price": self.exit_price,
            "exit_ts_ms": self.exit_ts_ms,
            "outcome": self.outcome,
            "pips": self.pips,
            "variant_label": self.trade.variant_label,
        }


def calculate_pips(direction: str, entry: float, exit_price: float, pip_size: float) -> float:
    """Signed result in pips; positive when the move favoured *direction*."""
    diff = exit_price - entry if direction == "buy" else entry - exit_price
    return diff / pip_size


class TradeMonitor:
    """Open-trade set with first-touch stop/target resolution.

    Args:
        on_close: Called with each ``ClosedTrade``.  Must not block; any
                  exception it raises is logged and discarded.
    """

    def __init__(self, on_close: Optional[Callable[[ClosedTrade], None]] = None) -> None:
        self.on_close = on_close
        self._lock = threading.Lock()
        self._open: list[Trade] = []

    # ── Public API ───────────────────────────────────────────────────────

    def add_trade(self, trade: Trade) -> str:
        """Register an open trade and return its id."""
        with self._lock:
            self._open.append(trade)
        return trade.trade_id

    def open_trades(self, instrument_id: Optional[str] = None) -> list[Trade]:
        with self._lock:
            return [
                t for t in self._open
                if instrument_id is None or t.instrument_id == instrument_id
            ]

    def on_tick(self, instrument_id: str, price: float, ts_ms: int) -> list[ClosedTrade]:
        """Close every open trade on *instrument_id* whose stop or target was touched.

        Returns the trades closed by this tick.
        """
        closed: list[ClosedTrade] = []
        with self._lock:
            remaining: list[Trade] = []
            for t in self._open:
                outcome = None
                if t.instrument_id == instrument_id:
                    outcome = self._resolve(t, price)
                if outcome is None:
                    remaining.append(t)
                    continue
                closed.append(
                    ClosedTrade(
                        trade=t,
                        exit_price=price,
                        exit_ts_ms=ts_ms,
                        outcome=outcome,
                        pips=calculate_pips(t.direction, t.entry_price, price, t.pip_size),
                    )
                )
            self._open = remaining

        for c in closed:
            logger.info(
                "%s | %s %s closed %s @ %s (%+.1f pips) id=%s",
                c.trade.instrument_id,
                c.trade.strategy,
                c.trade.direction.upper(),
                c.outcome.upper(),
                round(price, c.trade.decimals),
                c.pips,
                c.trade_id,
            )
            self._report(c)
        return closed

    # ── Internals ────────────────────────────────────────────────────────

    @staticmethod
    def _resolve(t: Trade, price: float) -> Optional[str]:
        if t.direction == "buy":
            if price <= t.stop_price:
                return "loss"
            if price >= t.target_price:
                return "win"
        else:
            if price >= t.stop_price:
                return "loss"
            if price <= t.target_price:
                return "win"
        return None

    def _report(self, closed: ClosedTrade) -> None:
        if self.on_close is None:
            return
        try:
            self.on_close(closed)
        except Exception as exc:
            logger.warning("Close callback failed for %s: %s", closed.trade_id, exc)
