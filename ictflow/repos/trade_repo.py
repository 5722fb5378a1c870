"""Trade repository — SQLite reporting store for simulated trades.

Open and close reports are keyed by the same
``{instrument}-{strategy}-{entry_ts}`` id end-to-end; a repeated open report
for an existing id is ignored.
"""

import json
from datetime import datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from ictflow.monitor.trade_monitor import ClosedTrade, Trade
from ictflow.repos.db import get_connection
from ictflow.strategy.session_clock import NY_ZONE, day_key, session_label


class TradeRepo:
    """Data access layer for trade records.

    Args:
        db_path: Path to the SQLite database file.
        tz:      Timezone for entry dates and session labels.
    """

    def __init__(self, db_path: str, tz: ZoneInfo = NY_ZONE) -> None:
        self._db_path = db_path
        self._tz = tz

    # ── Write ────────────────────────────────────────────────────────────

    def record_open(self, trade: Trade) -> str:
        """Insert an open trade (insert-or-ignore) and return its id."""
        conn = get_connection(self._db_path)
        try:
            conn.execute(
                """
                INSERT OR IGNORE INTO trades
                    (trade_id, instrument_id, strategy, direction, entry_price,
                     entry_ts_ms, entry_date, session_label, stop_price,
                     target_price, pip_size, decimals, variant_label,
                     native_stop, context_json, status, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 'open', ?)
                """,
                (
                    trade.trade_id,
                    trade.instrument_id,
                    trade.strategy,
                    trade.direction,
                    trade.entry_price,
                    trade.entry_ts_ms,
                    day_key(trade.entry_ts_ms, self._tz),
                    session_label(trade.entry_ts_ms, self._tz),
                    trade.stop_price,
                    trade.target_price,
                    trade.pip_size,
                    trade.decimals,
                    trade.variant_label,
                    trade.native_stop,
                    json.dumps(trade.session.to_dict()),
                    datetime.now(timezone.utc).isoformat(),
                ),
            )
            conn.commit()
            return trade.trade_id
        finally:
            conn.close()

    def record_close(self, closed: ClosedTrade) -> bool:
        """Close an open trade.  Returns ``False`` if the id is unknown."""
        entry_ts = closed.trade.entry_ts_ms
        minutes = max(0, round((closed.exit_ts_ms - entry_ts) / 60_000))
        conn = get_connection(self._db_path)
        try:
            cur = conn.execute(
                """
                UPDATE trades
                SET status = 'closed', exit_price = ?, exit_ts_ms = ?,
                    outcome = ?, result_pips = ?, time_to_close_min = ?,
                    variant_label = COALESCE(?, variant_label)
                WHERE trade_id = ?
                """,
                (
                    closed.exit_price,
                    closed.exit_ts_ms,
                    closed.outcome,
                    closed.pips,
                    minutes,
                    closed.trade.variant_label,
                    closed.trade_id,
                ),
            )
            conn.commit()
            return cur.rowcount > 0
        finally:
            conn.close()

    # ── Read ─────────────────────────────────────────────────────────────

    def get_trade(self, trade_id: str) -> Optional[dict]:
        conn = get_connection(self._db_path)
        try:
            row = conn.execute(
                "SELECT * FROM trades WHERE trade_id = ?", (trade_id,)
            ).fetchone()
            return self._row_to_dict(row) if row else None
        finally:
            conn.close()

    def get_trades(
        self,
        limit: int = 50,
        status: Optional[str] = None,
        instrument: Optional[str] = None,
        strategy: Optional[str] = None,
    ) -> dict:
        """Return recent trades, newest first.

        Returns:
            ``{"trades": [...], "total": int}``
        """
        conn = get_connection(self._db_path)
        try:
            conditions: list[str] = []
            params: list = []

            if status:
                conditions.append("status = ?")
                params.append(status)
            if instrument:
                conditions.append("instrument_id = ?")
                params.append(instrument)
            if strategy:
                conditions.append("strategy = ?")
                params.append(strategy)

            where_clause = ""
            if conditions:
                where_clause = "WHERE " + " AND ".join(conditions)

            rows = conn.execute(
                f"SELECT * FROM trades {where_clause} "
                "ORDER BY entry_ts_ms DESC LIMIT ?",
                (*params, limit),
            ).fetchall()
            total = conn.execute(
                f"SELECT COUNT(*) FROM trades {where_clause}",
                params,
            ).fetchone()[0]

            return {"trades": [self._row_to_dict(r) for r in rows], "total": total}
        finally:
            conn.close()

    def get_stats(self) -> dict:
        """Summary counts and pips, overall and per strategy / instrument.

        A closed trade with ``result_pips > 0`` counts as a win.
        """
        conn = get_connection(self._db_path)
        try:
            totals = dict(conn.execute(self._STATS_SQL.format(group="", key="NULL")).fetchone())
            totals.pop("grp", None)
            by_strategy = [
                dict(r) for r in conn.execute(
                    self._STATS_SQL.format(group="GROUP BY strategy", key="strategy")
                    + " ORDER BY net_pips DESC"
                ).fetchall()
            ]
            by_instrument = [
                dict(r) for r in conn.execute(
                    self._STATS_SQL.format(group="GROUP BY instrument_id", key="instrument_id")
                    + " ORDER BY net_pips DESC"
                ).fetchall()
            ]
        finally:
            conn.close()

        for block in [totals, *by_strategy, *by_instrument]:
            decided = (block["wins"] or 0) + (block["losses"] or 0)
            block["win_rate"] = (block["wins"] or 0) / decided if decided else 0.0
            block["net_pips"] = round(block["net_pips"] or 0.0, 1)

        for block in by_strategy:
            block["strategy"] = block.pop("grp")
        for block in by_instrument:
            block["instrument_id"] = block.pop("grp")

        return {
            "totals": totals,
            "by_strategy": by_strategy,
            "by_instrument": by_instrument,
        }

    _STATS_SQL = """
        SELECT
            {key} AS grp,
            COUNT(*) AS signals,
            COALESCE(SUM(status = 'open'), 0) AS open,
            COALESCE(SUM(status = 'closed'), 0) AS closed,
            COALESCE(SUM(status = 'closed' AND result_pips > 0), 0) AS wins,
            COALESCE(SUM(status = 'closed' AND result_pips <= 0), 0) AS losses,
            COALESCE(SUM(CASE WHEN status = 'closed' THEN result_pips END), 0.0) AS net_pips
        FROM trades {group}
    """

    @staticmethod
    def _row_to_dict(row) -> dict:
        d = dict(row)
        raw = d.pop("context_json", None)
        d["context"] = json.loads(raw) if raw else None
        return d
