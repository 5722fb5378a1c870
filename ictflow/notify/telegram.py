"""Signal notifications — Telegram transport with a per-key throttle.

Two message types are sent: ``"strategy_entry"`` when a detector fires and
``"result"`` when the monitor closes a trade.  Messages repeating the same
(type, instrument, direction, variant) within the throttle interval are
dropped silently.
"""

import logging
import time
from typing import Callable

import httpx

logger = logging.getLogger("ictflow.notify")

_TELEGRAM_API = "https://api.telegram.org"


def format_message(message_type: str, payload: dict) -> str:
    """Render a human-readable notification body."""
    decimals = payload.get("decimals", 5)

    def px(value) -> str:
        return "n/a" if value is None else f"{value:.{decimals}f}"

    inst = payload.get("instrument_id", "?")
    direction = str(payload.get("direction", "?")).upper()
    strategy = payload.get("strategy", "?")
    variant = payload.get("variant_label", "")

    if message_type == "result":
        lines = [
            f"{inst} {strategy} {direction} closed: {str(payload.get('outcome', '?')).upper()}",
            f"Entry {px(payload.get('entry_price'))} → Exit {px(payload.get('exit_price'))}",
            f"Result {payload.get('pips', 0.0):+.1f} pips ({variant})",
        ]
    else:
        lines = [
            f"{inst} {strategy} {direction} @ {px(payload.get('entry_price'))}",
            f"SL {px(payload.get('stop_price'))} | TP {px(payload.get('target_price'))} ({variant})",
        ]

    session = payload.get("session") or {}
    if session:
        lines.append(
            f"DO {px(session.get('daily_open'))} | Asia "
            f"[{px(session.get('asia_low'))} - {px(session.get('asia_high'))}] | "
            f"PDH/PDL {px(session.get('prev_day_high'))} / {px(session.get('prev_day_low'))}"
        )
    return "\n".join(lines)


class _Throttle:
    def __init__(self, interval: float, clock: Callable[[], float]) -> None:
        self.interval = interval
        self._clock = clock
        self._last: dict[tuple, float] = {}

    def allow(self, message_type: str, payload: dict) -> bool:
        key = (
            message_type,
            payload.get("instrument_id"),
            payload.get("direction"),
            payload.get("variant_label"),
        )
        now = self._clock()
        last = self._last.get(key)
        if last is not None and now - last < self.interval:
            return False
        self._last[key] = now
        return True


class TelegramNotifier:
    """Sends notifications through the Telegram Bot API.

    Args:
        bot_token:  Telegram bot token.
        chat_id:    Destination chat.
        throttle_seconds: Minimum interval per throttle key.
        clock:      Monotonic time source (injectable for tests).
    """

    def __init__(
        self,
        bot_token: str,
        chat_id: str,
        throttle_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._url = f"{_TELEGRAM_API}/bot{bot_token}/sendMessage"
        self._chat_id = chat_id
        self._throttle = _Throttle(throttle_seconds, clock)

    async def send(self, message_type: str, payload: dict) -> bool:
        """Send one notification.

        Returns ``False`` when throttled.  HTTP errors propagate so the
        outbox can retry.
        """
        if not self._throttle.allow(message_type, payload):
            logger.debug("Throttled %s for %s", message_type, payload.get("instrument_id"))
            return False

        async with httpx.AsyncClient() as client:
            resp = await client.post(
                self._url,
                json={"chat_id": self._chat_id, "text": format_message(message_type, payload)},
                timeout=10.0,
            )
        resp.raise_for_status()
        return True


class LogNotifier:
    """Notification fallback that writes to the log when Telegram is not configured."""

    def __init__(
        self,
        throttle_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._throttle = _Throttle(throttle_seconds, clock)

    async def send(self, message_type: str, payload: dict) -> bool:
        if not self._throttle.allow(message_type, payload):
            return False
        logger.info("[%s] %s", message_type, format_message(message_type, payload).replace("\n", " | "))
        return True
