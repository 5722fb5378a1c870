"""Tests for ictflow.core.aggregator — candle building and session context."""

from datetime import datetime

import pytest

from ictflow.core.aggregator import CandleAggregator
from ictflow.strategy.models import Candle, SessionContext
from ictflow.strategy.session_clock import NY_ZONE


# ── Helpers ──────────────────────────────────────────────────────────────


def _ny_ms(day: int, hour: int, minute: int = 0, second: int = 0, month: int = 1) -> int:
    """Epoch ms for a New York wall-clock time in 2025."""
    dt = datetime(2025, month, day, hour, minute, second, tzinfo=NY_ZONE)
    return int(dt.timestamp() * 1000)


def _make_candle(ts_ms: int, o: float, h: float, lo: float, c: float) -> Candle:
    return Candle(open_time_ms=ts_ms, open=o, high=h, low=lo, close=c)


def _feed_minute(agg: CandleAggregator, ts_ms: int, o: float, h: float, lo: float, c: float) -> None:
    """Four ticks inside one minute: open, high, low, close."""
    for offset, price in enumerate((o, h, lo, c)):
        agg.ingest_tick(price, ts_ms + offset * 10_000)


# ── Candle building ──────────────────────────────────────────────────────


class TestCandleBuilding:
    def test_first_tick_closes_nothing(self):
        agg = CandleAggregator("EURUSD")
        assert agg.ingest_tick(1.1000, _ny_ms(15, 3)) is None
        assert agg.m1 == []
        assert agg.last_price == 1.1000

    def test_new_minute_closes_candle_with_ohlc(self):
        closed = []
        agg = CandleAggregator("EURUSD", on_m1=closed.append)
        t0 = _ny_ms(15, 3)
        _feed_minute(agg, t0, 1.1000, 1.1010, 1.0990, 1.1005)
        candle = agg.ingest_tick(1.1006, t0 + 60_000)

        assert candle == Candle(t0, 1.1000, 1.1010, 1.0990, 1.1005)
        assert closed == [candle]
        assert agg.last_price == 1.1006

    def test_candle_invariants_hold(self):
        agg = CandleAggregator("EURUSD")
        t0 = _ny_ms(15, 3)
        prices = [1.1000, 1.1012, 1.0995, 1.1003, 1.1020, 1.0980, 1.1001]
        for minute in range(5):
            for k, p in enumerate(prices):
                agg.ingest_tick(p + minute * 0.0001, t0 + minute * 60_000 + k * 5_000)
        agg.ingest_tick(1.1000, t0 + 5 * 60_000)

        assert len(agg.m1) == 5
        for c in agg.m1:
            assert c.low <= min(c.open, c.close)
            assert c.high >= max(c.open, c.close)

    def test_one_candle_per_closed_minute(self):
        agg = CandleAggregator("EURUSD")
        t0 = _ny_ms(15, 3)
        for minute in range(12):
            agg.ingest_tick(1.1, t0 + minute * 60_000)
            agg.ingest_tick(1.1, t0 + minute * 60_000 + 30_000)
        assert len(agg.m1) == 11

    def test_older_minute_tick_merges_into_forming(self):
        agg = CandleAggregator("EURUSD")
        t0 = _ny_ms(15, 3)
        agg.ingest_tick(1.1000, t0)
        agg.ingest_tick(1.1001, t0 + 60_000)
        agg.ingest_tick(1.0950, t0 + 30_000)  # late tick from the closed minute
        agg.ingest_tick(1.1002, t0 + 120_000)

        assert len(agg.m1) == 2
        assert agg.m1[1].low == 1.0950
        assert agg.m1[0].low == 1.1000

    def test_m5_built_every_five_candles(self):
        m5_seen = []
        agg = CandleAggregator("EURUSD", on_m5=m5_seen.append)
        t0 = _ny_ms(15, 3)
        for i in range(11):
            agg.ingest_tick(1.1000 + i * 0.0001, t0 + i * 60_000)

        assert len(agg.m1) == 10
        assert len(agg.m5) == 2
        first = agg.m5[0]
        assert first.open_time_ms == t0
        assert first.open == 1.1000
        assert first.close == pytest.approx(1.1004)
        assert first.high == pytest.approx(1.1004)
        assert m5_seen == agg.m5

    def test_history_is_bounded(self):
        agg = CandleAggregator("EURUSD", max_m1=10, max_m5=2)
        t0 = _ny_ms(15, 3)
        for i in range(40):
            agg.ingest_tick(1.1, t0 + i * 60_000)
        assert len(agg.m1) == 10
        assert len(agg.m5) == 2

    def test_window_is_a_snapshot(self):
        agg = CandleAggregator("EURUSD")
        t0 = _ny_ms(15, 3)
        agg.ingest_tick(1.1, t0)
        agg.ingest_tick(1.1, t0 + 60_000)
        window = agg.window()
        agg.ingest_tick(1.1, t0 + 120_000)
        assert len(window.m1) == 1
        assert len(agg.window().m1) == 2


# ── Session context ──────────────────────────────────────────────────────


class TestSessionContext:
    def test_daily_open_from_midnight_candle(self):
        agg = CandleAggregator("EURUSD")
        agg.seed_history([_make_candle(_ny_ms(15, 0, 0), 1.1020, 1.1025, 1.1015, 1.1022)])
        s = agg.get_sessions()
        assert s.day_key == "2025-01-15"
        assert s.daily_open == 1.1020

    def test_asia_range_builds_and_locks(self):
        agg = CandleAggregator("EURUSD")
        candles = [
            _make_candle(_ny_ms(15, 0, 0), 1.1020, 1.1030, 1.1010, 1.1020),
            _make_candle(_ny_ms(15, 0, 30), 1.1020, 1.1050, 1.1015, 1.1030),
            _make_candle(_ny_ms(15, 1, 15), 1.1030, 1.1035, 1.1000, 1.1010),
            _make_candle(_ny_ms(15, 1, 59), 1.1010, 1.1020, 1.1005, 1.1015),
        ]
        agg.seed_history(candles)
        s = agg.get_sessions()
        assert (s.asia_low, s.asia_high) == (1.1000, 1.1050)
        assert s.asia_locked is False

        agg.seed_history([_make_candle(_ny_ms(15, 2, 5), 1.1015, 1.1090, 1.0900, 1.1000)])
        s = agg.get_sessions()
        assert s.asia_locked is True
        assert (s.asia_low, s.asia_high) == (1.1000, 1.1050)

        # Locked range ignores later extremes.
        agg.seed_history([_make_candle(_ny_ms(15, 3, 0), 1.1000, 1.1200, 1.0800, 1.1000)])
        assert agg.get_sessions().asia_high == 1.1050

    def test_day_roll_moves_today_to_prev(self):
        agg = CandleAggregator("EURUSD")
        agg.seed_history([
            _make_candle(_ny_ms(14, 0, 0), 1.1000, 1.1010, 1.0990, 1.1005),
            _make_candle(_ny_ms(14, 12, 0), 1.1005, 1.1100, 1.1000, 1.1080),
            _make_candle(_ny_ms(14, 23, 59), 1.1080, 1.1085, 1.1070, 1.1075),
            _make_candle(_ny_ms(15, 0, 0), 1.1076, 1.1078, 1.1070, 1.1072),
        ])
        s = agg.get_sessions()
        assert s.day_key == "2025-01-15"
        assert s.prev_day_high == 1.1100
        assert s.prev_day_low == 1.0990
        assert s.prev_day_open == 1.1000
        assert s.prev_day_close == 1.1075
        assert s.daily_open == 1.1076
        assert s.asia_locked is False
        assert (s.today_high, s.today_low) == (1.1078, 1.1070)

    def test_day_roll_happens_once(self):
        agg = CandleAggregator("EURUSD")
        agg.seed_history([
            _make_candle(_ny_ms(14, 10, 0), 1.1000, 1.1100, 1.0900, 1.1050),
            _make_candle(_ny_ms(15, 0, 0), 1.1050, 1.1060, 1.1040, 1.1055),
            _make_candle(_ny_ms(15, 0, 1), 1.1055, 1.1300, 1.1050, 1.1250),
        ])
        s = agg.get_sessions()
        assert s.prev_day_high == 1.1100
        assert s.prev_day_low == 1.0900
        assert s.today_high == 1.1300

    def test_seed_history_is_silent_by_default(self):
        closed = []
        agg = CandleAggregator("EURUSD", on_m1=closed.append)
        agg.seed_history([_make_candle(_ny_ms(15, 3, i), 1.1, 1.1, 1.1, 1.1) for i in range(6)])
        assert closed == []
        assert len(agg.m1) == 6
        assert len(agg.m5) == 1

        agg.seed_history([_make_candle(_ny_ms(15, 3, 10), 1.1, 1.1, 1.1, 1.1)], silent=False)
        assert len(closed) == 1

    def test_seed_from_snapshot_restores_locked_asia(self):
        agg = CandleAggregator("EURUSD")
        agg.seed_from_snapshot(SessionContext(
            day_key="2025-01-15",
            daily_open=1.1020,
            asia_high=1.1050,
            asia_low=1.1000,
            asia_locked=True,
        ))
        # A live candle the same morning keeps the restored range.
        agg.seed_history([_make_candle(_ny_ms(15, 6, 0), 1.1030, 1.1070, 1.0980, 1.1040)])
        s = agg.get_sessions()
        assert s.asia_locked is True
        assert (s.asia_low, s.asia_high) == (1.1000, 1.1050)
        assert s.daily_open == 1.1020
        assert s.today_high == 1.1070

    def test_get_sessions_returns_immutable_copy(self):
        agg = CandleAggregator("EURUSD")
        agg.seed_history([_make_candle(_ny_ms(15, 0, 0), 1.1, 1.2, 1.0, 1.1)])
        before = agg.get_sessions()
        agg.seed_history([_make_candle(_ny_ms(15, 0, 1), 1.1, 1.3, 1.0, 1.1)])
        assert before.today_high == 1.2
        assert agg.get_sessions().today_high == 1.3
