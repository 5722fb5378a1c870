"""ICTFlow — Internal API routes.

Read-only reporting endpoints (trades, stats, sessions, open trades) plus
the ``/_internal`` routes that a remote ``DashboardClient`` posts open and
close reports to.
"""

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Query

from ictflow.monitor.trade_monitor import ClosedTrade, Trade
from ictflow.repos.trade_repo import TradeRepo
from ictflow.strategy.models import SessionContext

logger = logging.getLogger("ictflow.api")

router = APIRouter()

# Module-level references set by configure_routers()
_trade_repo: Optional[TradeRepo] = None
_engine_manager = None


def configure_routers(trade_repo: TradeRepo, engine_manager=None) -> None:
    """Inject dependencies into the router module.

    Called once at startup by the CLI entry point.
    """
    global _trade_repo, _engine_manager
    _trade_repo = trade_repo
    _engine_manager = engine_manager


# ── Trades ───────────────────────────────────────────────────────────────


@router.get("/trades")
async def get_trades(
    limit: int = Query(default=50, ge=1, le=500),
    status: Optional[str] = Query(default=None, pattern="^(open|closed)$"),
    instrument: Optional[str] = None,
    strategy: Optional[str] = None,
):
    """Recent trades, newest first, optionally filtered."""
    if _trade_repo is None:
        return {"trades": [], "total": 0}
    return _trade_repo.get_trades(
        limit=limit, status=status, instrument=instrument, strategy=strategy,
    )


@router.get("/trades/open")
async def get_open_trades(instrument: Optional[str] = None):
    """Trades still being watched by the in-memory monitor."""
    if _engine_manager is None:
        return {"trades": [], "count": 0}
    trades = [t.to_dict() for t in _engine_manager.monitor.open_trades(instrument)]
    return {"trades": trades, "count": len(trades)}


@router.get("/trades/{trade_id}")
async def get_trade(trade_id: str):
    if _trade_repo is None:
        raise HTTPException(status_code=404, detail="No trade store configured")
    trade = _trade_repo.get_trade(trade_id)
    if trade is None:
        raise HTTPException(status_code=404, detail=f"Unknown trade: {trade_id}")
    return trade


@router.get("/stats/summary")
async def get_stats_summary():
    """Signals, wins, losses and net pips overall, per strategy and per instrument."""
    if _trade_repo is None:
        return {"totals": {}, "by_strategy": [], "by_instrument": []}
    return _trade_repo.get_stats()


# ── Sessions / status ────────────────────────────────────────────────────


@router.get("/sessions")
async def get_sessions():
    """Current session context for every instrument."""
    if _engine_manager is None:
        return {}
    return _engine_manager.get_sessions()


@router.get("/sessions/{instrument_id}")
async def get_instrument_session(instrument_id: str):
    if _engine_manager is None:
        raise HTTPException(status_code=404, detail="No engines running")
    try:
        return _engine_manager.get_sessions(instrument_id)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Unknown instrument: {instrument_id}")


@router.get("/status")
async def get_status():
    """Per-instrument pipeline state and outbox counters."""
    if _engine_manager is None:
        return {"instruments": {}, "open_trades": 0}
    return _engine_manager.get_status()


# ── Remote reporting (DashboardClient target) ────────────────────────────


def _trade_from_payload(body: dict) -> Trade:
    try:
        session_fields = set(SessionContext().to_dict())
        session = SessionContext(
            **{k: v for k, v in (body.get("session") or {}).items() if k in session_fields}
        )
        return Trade(
            instrument_id=body["instrument_id"],
            strategy=body["strategy"],
            direction=body["direction"],
            entry_price=float(body["entry_price"]),
            entry_ts_ms=int(body["entry_ts_ms"]),
            stop_price=float(body.get("stop_price") or 0.0),
            target_price=float(body.get("target_price") or 0.0),
            pip_size=float(body.get("pip_size") or 0.0),
            decimals=int(body.get("decimals") or 5),
            variant_label=body.get("variant_label") or "FixedPips",
            session=session,
            native_stop=body.get("native_stop"),
            native_targets=tuple(body.get("native_targets") or ()),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise HTTPException(status_code=422, detail=f"Invalid trade payload: {exc}")


@router.post("/_internal/strategy_entry")
async def post_strategy_entry(body: dict):
    """Record an open trade reported by a remote engine."""
    if _trade_repo is None:
        raise HTTPException(status_code=503, detail="No trade store configured")
    trade = _trade_from_payload(body)
    trade_id = _trade_repo.record_open(trade)
    logger.info("Remote entry recorded: %s", trade_id)
    return {"status": "ok", "trade_id": trade_id}


@router.post("/_internal/result")
async def post_result(body: dict):
    """Close a trade reported by a remote engine.

    Returns 404 if no open report exists for the id.
    """
    if _trade_repo is None:
        raise HTTPException(status_code=503, detail="No trade store configured")
    trade = _trade_from_payload(body)
    try:
        closed = ClosedTrade(
            trade=trade,
            exit_price=float(body["exit_price"]),
            exit_ts_ms=int(body["exit_ts_ms"]),
            outcome=body["outcome"],
            pips=float(body["pips"]),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise HTTPException(status_code=422, detail=f"Invalid result payload: {exc}")
    if not _trade_repo.record_close(closed):
        raise HTTPException(status_code=404, detail=f"Unknown trade: {closed.trade_id}")
    logger.info("Remote result recorded: %s %s %.1f pips", closed.trade_id, closed.outcome, closed.pips)
    return {"status": "ok", "trade_id": closed.trade_id}
