"""Finnhub websocket tick feed.

Subscribes to trade ticks for a set of symbols and hands each one to
``on_tick(symbol, price, ts_ms)``.  Disconnects are recovered with bounded
exponential backoff; downstream state is never touched by a reconnect.
"""

import asyncio
import json
import logging
import time
from typing import Callable, Optional

import websockets

logger = logging.getLogger("ictflow.feed")

FINNHUB_WS_URL = "wss://ws.finnhub.io"

_RECONNECT_BASE_DELAY = 2.0  # seconds; doubles each failed attempt
_RECONNECT_MAX_DELAY = 30.0

TickCallback = Callable[[str, float, int], None]


def parse_message(raw, now_ms: Optional[int] = None) -> list[tuple[str, float, int]]:
    """Extract ``(symbol, price, ts_ms)`` ticks from one feed message.

    Non-trade messages (pings, subscription acks) yield nothing.  A tick
    without a timestamp is stamped with *now_ms*.
    """
    msg = json.loads(raw)
    if msg.get("type") != "trade" or not isinstance(msg.get("data"), list):
        return []
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return [
        (t["s"], float(t["p"]), int(t.get("t") or now_ms))
        for t in msg["data"]
    ]


class FinnhubFeed:
    """Reconnecting websocket subscription.

    Args:
        api_key:  Finnhub API token.
        symbols:  Feed symbols to subscribe, e.g. ``"OANDA:EUR_USD"``.
        on_tick:  Called for every trade tick; must not block.
        connect:  Websocket connect factory (injectable for tests).
        url:      Websocket endpoint.
    """

    def __init__(
        self,
        api_key: str,
        symbols: list[str],
        on_tick: TickCallback,
        connect=websockets.connect,
        url: str = FINNHUB_WS_URL,
        base_delay: float = _RECONNECT_BASE_DELAY,
        max_delay: float = _RECONNECT_MAX_DELAY,
    ) -> None:
        self._url = f"{url}?token={api_key}"
        self.symbols = list(symbols)
        self.on_tick = on_tick
        self._connect = connect
        self._base_delay = base_delay
        self._max_delay = max_delay
        self._running = False
        self._ws = None
        self.connections = 0

    # ── Public API ───────────────────────────────────────────────────────

    async def run(self) -> None:
        """Stay subscribed until :meth:`stop` is called."""
        self._running = True
        delay = self._base_delay
        while self._running:
            try:
                async with self._connect(self._url) as ws:
                    self._ws = ws
                    self.connections += 1
                    delay = self._base_delay
                    logger.info("Finnhub WS connected (%d symbols).", len(self.symbols))
                    for symbol in self.symbols:
                        await ws.send(json.dumps({"type": "subscribe", "symbol": symbol}))
                    async for raw in ws:
                        self._handle(raw)
                        if not self._running:
                            break
            except (websockets.exceptions.WebSocketException, OSError) as exc:
                logger.warning("Finnhub WS error: %s", exc)
            finally:
                self._ws = None

            if not self._running:
                break
            logger.info("Finnhub WS closed. Reconnecting in %.0fs...", delay)
            await asyncio.sleep(delay)
            delay = min(delay * 2, self._max_delay)

        logger.info("Finnhub feed stopped.")

    def stop(self) -> None:
        """Stop receiving ticks; in-memory pipeline state is left as is."""
        self._running = False
        ws = self._ws
        if ws is None:
            return
        try:
            asyncio.get_running_loop().create_task(ws.close())
        except RuntimeError:
            pass  # no running loop; run() exits on its next message

    # ── Internals ────────────────────────────────────────────────────────

    def _handle(self, raw) -> None:
        try:
            ticks = parse_message(raw)
        except (ValueError, KeyError, TypeError) as exc:
            logger.warning("Finnhub WS parse error: %s", exc)
            return
        for symbol, price, ts_ms in ticks:
            try:
                self.on_tick(symbol, price, ts_ms)
            except Exception:
                logger.exception("Tick handler failed for %s", symbol)
