"""Tests for the SQLite repositories: trades and session snapshots."""

from datetime import datetime

import pytest

from ictflow.monitor.trade_monitor import ClosedTrade, Trade
from ictflow.repos.db import init_db
from ictflow.repos.snapshot_repo import SnapshotRepo
from ictflow.repos.trade_repo import TradeRepo
from ictflow.strategy.models import SessionContext
from ictflow.strategy.session_clock import NY_ZONE


def _ny_ms(hour: int, minute: int = 0) -> int:
    dt = datetime(2025, 1, 15, hour, minute, tzinfo=NY_ZONE)
    return int(dt.timestamp() * 1000)


def _make_trade(**overrides) -> Trade:
    defaults = dict(
        instrument_id="EURUSD",
        strategy="ORB",
        direction="buy",
        entry_price=1.1000,
        entry_ts_ms=_ny_ms(10),
        stop_price=1.0975,
        target_price=1.1020,
        pip_size=0.0001,
        decimals=5,
        variant_label="TP20/SL25",
        session=SessionContext(day_key="2025-01-15", daily_open=1.099),
    )
    defaults.update(overrides)
    return Trade(**defaults)


@pytest.fixture
def db_path(tmp_path):
    path = str(tmp_path / "data" / "ictflow.db")
    init_db(path)
    return path


@pytest.fixture
def repo(db_path):
    return TradeRepo(db_path)


# ── Trades ───────────────────────────────────────────────────────────────


class TestTradeRepoWrites:
    def test_record_open_and_fetch(self, repo):
        trade = _make_trade()
        assert repo.record_open(trade) == trade.trade_id

        row = repo.get_trade(trade.trade_id)
        assert row["status"] == "open"
        assert row["entry_date"] == "2025-01-15"
        assert row["session_label"] == "NY KZ"
        assert row["context"]["daily_open"] == 1.099
        assert row["exit_price"] is None

    def test_duplicate_open_ignored(self, repo):
        trade = _make_trade()
        repo.record_open(trade)
        repo.record_open(trade)
        assert repo.get_trades()["total"] == 1

    def test_record_close(self, repo):
        trade = _make_trade()
        repo.record_open(trade)
        closed = ClosedTrade(trade, 1.1020, trade.entry_ts_ms + 25 * 60_000, "win", 20.0)
        assert repo.record_close(closed) is True

        row = repo.get_trade(trade.trade_id)
        assert row["status"] == "closed"
        assert row["outcome"] == "win"
        assert row["result_pips"] == 20.0
        assert row["time_to_close_min"] == 25

    def test_close_of_unknown_trade(self, repo):
        closed = ClosedTrade(_make_trade(), 1.1020, 1, "win", 20.0)
        assert repo.record_close(closed) is False

    def test_unknown_id_returns_none(self, repo):
        assert repo.get_trade("nope") is None

    def test_init_db_is_idempotent(self, db_path, repo):
        repo.record_open(_make_trade())
        init_db(db_path)
        assert repo.get_trades()["total"] == 1


class TestTradeRepoReads:
    @pytest.fixture
    def populated(self, repo):
        trades = [
            _make_trade(entry_ts_ms=_ny_ms(3), strategy="PO3"),
            _make_trade(entry_ts_ms=_ny_ms(9), strategy="ORB"),
            _make_trade(entry_ts_ms=_ny_ms(10), strategy="ORB", instrument_id="GBPUSD"),
            _make_trade(entry_ts_ms=_ny_ms(12), strategy="PO3", direction="sell",
                        stop_price=1.1025, target_price=1.0980),
        ]
        for t in trades:
            repo.record_open(t)
        repo.record_close(ClosedTrade(trades[0], 1.1020, _ny_ms(4), "win", 20.0))
        repo.record_close(ClosedTrade(trades[1], 1.0975, _ny_ms(9, 30), "loss", -25.0))
        repo.record_close(ClosedTrade(trades[2], 1.1020, _ny_ms(11), "win", 20.0))
        return repo

    def test_newest_first_and_limit(self, populated):
        result = populated.get_trades(limit=2)
        assert result["total"] == 4
        assert [t["entry_ts_ms"] for t in result["trades"]] == [_ny_ms(12), _ny_ms(10)]

    def test_filters(self, populated):
        assert populated.get_trades(status="open")["total"] == 1
        assert populated.get_trades(instrument="GBPUSD")["total"] == 1
        assert populated.get_trades(strategy="PO3", status="closed")["total"] == 1

    def test_session_labels(self, populated):
        labels = {t["entry_ts_ms"]: t["session_label"] for t in populated.get_trades()["trades"]}
        assert labels[_ny_ms(3)] == "London KZ"
        assert labels[_ny_ms(9)] == "NY KZ"
        assert labels[_ny_ms(12)] == "NY"

    def test_stats(self, populated):
        stats = populated.get_stats()
        totals = stats["totals"]
        assert totals["signals"] == 4
        assert totals["open"] == 1
        assert totals["closed"] == 3
        assert totals["wins"] == 2
        assert totals["losses"] == 1
        assert totals["net_pips"] == 15.0
        assert totals["win_rate"] == pytest.approx(2 / 3)

        by_strategy = {b["strategy"]: b for b in stats["by_strategy"]}
        assert by_strategy["PO3"]["net_pips"] == 20.0
        assert by_strategy["ORB"]["net_pips"] == -5.0
        by_instrument = {b["instrument_id"]: b for b in stats["by_instrument"]}
        assert by_instrument["GBPUSD"]["wins"] == 1

    def test_empty_stats(self, repo):
        stats = repo.get_stats()
        assert stats["totals"]["signals"] == 0
        assert stats["totals"]["win_rate"] == 0.0
        assert stats["by_strategy"] == []


# ── Snapshots ────────────────────────────────────────────────────────────


class TestSnapshotRepo:
    def test_save_and_load(self, db_path):
        repo = SnapshotRepo(db_path)
        session = SessionContext(
            day_key="2025-01-15", daily_open=1.1, asia_high=1.105, asia_low=1.098, asia_locked=True,
        )
        repo.save("EURUSD", session, 123)

        snapshot = repo.load("EURUSD", "2025-01-15")
        assert snapshot.session == session
        assert snapshot.saved_at_ms == 123
        assert snapshot.is_restorable is True

    def test_missing_key(self, db_path):
        repo = SnapshotRepo(db_path)
        assert repo.load("EURUSD", "2025-01-15") is None

    def test_save_upserts(self, db_path):
        repo = SnapshotRepo(db_path)
        repo.save("EURUSD", SessionContext(day_key="2025-01-15", asia_high=1.1), 1)
        repo.save("EURUSD", SessionContext(day_key="2025-01-15", asia_high=1.2), 2)
        snapshot = repo.load("EURUSD", "2025-01-15")
        assert snapshot.session.asia_high == 1.2
        assert snapshot.saved_at_ms == 2
        assert snapshot.is_restorable is False

    def test_keys_are_per_instrument_and_day(self, db_path):
        repo = SnapshotRepo(db_path)
        repo.save("EURUSD", SessionContext(day_key="2025-01-15"), 1)
        assert repo.load("GBPUSD", "2025-01-15") is None
        assert repo.load("EURUSD", "2025-01-16") is None

    def test_save_requires_day_key(self, db_path):
        with pytest.raises(ValueError):
            SnapshotRepo(db_path).save("EURUSD", SessionContext(), 1)
