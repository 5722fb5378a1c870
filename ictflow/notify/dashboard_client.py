"""Remote reporting API client.

Posts open-trade and close-trade payloads to another ICTFlow API (or any
service exposing the same ``/_internal`` routes).  Used only when
``DASHBOARD_URL`` is configured.
"""

import logging

import httpx

from ictflow.monitor.trade_monitor import ClosedTrade, Trade

logger = logging.getLogger("ictflow.notify")


def entry_payload(trade: Trade) -> dict:
    """Wire shape of an open-trade report."""
    rr = trade.to_dict()
    return {
        "instrument_id": trade.instrument_id,
        "strategy": trade.strategy,
        "direction": trade.direction,
        "entry_price": trade.entry_price,
        "entry_ts_ms": trade.entry_ts_ms,
        "stop_price": trade.stop_price,
        "target_price": trade.target_price,
        "pip_size": trade.pip_size,
        "decimals": trade.decimals,
        "variant_label": trade.variant_label,
        "session": rr["session"],
        "native_stop": trade.native_stop,
        "native_targets": list(trade.native_targets),
    }


def result_payload(closed: ClosedTrade) -> dict:
    """Wire shape of a close-trade report."""
    return closed.to_dict()


class DashboardClient:
    """Async client for the remote ``/_internal`` reporting routes.

    Non-2xx responses raise ``httpx.HTTPStatusError`` so the outbox retries.
    """

    def __init__(self, base_url: str, timeout: float = 10.0) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout

    async def _post(self, path: str, payload: dict) -> dict:
        async with httpx.AsyncClient() as client:
            resp = await client.post(
                f"{self._base_url}{path}",
                json=payload,
                timeout=self._timeout,
            )
        resp.raise_for_status()
        return resp.json()

    async def post_entry(self, trade: Trade) -> dict:
        return await self._post("/_internal/strategy_entry", entry_payload(trade))

    async def post_result(self, closed: ClosedTrade) -> dict:
        return await self._post("/_internal/result", result_payload(closed))
