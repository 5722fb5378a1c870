"""Tests for ictflow.engine — the per-instrument dispatcher."""

from datetime import datetime
from unittest.mock import MagicMock

import pytest

from ictflow.engine import InstrumentEngine
from ictflow.models.instrument import InstrumentConfig
from ictflow.monitor.trade_monitor import TradeMonitor
from ictflow.repos.snapshot_repo import SessionSnapshot
from ictflow.strategy.breaker_reversal import BreakerReversalDetector
from ictflow.strategy.models import Candle, CandleWindow, FiredEntry, SessionContext, SetupDescriptor
from ictflow.strategy.po3 import PO3Detector
from ictflow.strategy.session_clock import NY_ZONE


# ── Helpers ──────────────────────────────────────────────────────────────


def _ny_ms(day: int, hour: int, minute: int = 0, second: int = 0) -> int:
    dt = datetime(2025, 1, day, hour, minute, second, tzinfo=NY_ZONE)
    return int(dt.timestamp() * 1000)


def _make_instrument(**overrides) -> InstrumentConfig:
    defaults = dict(id="EURUSD", feed_symbol="OANDA:EUR_USD", pip_size=0.0001, decimals=5)
    defaults.update(overrides)
    return InstrumentConfig(**defaults)


def _make_detector(name="MOCK", arm=None, fire=None) -> MagicMock:
    det = MagicMock()
    det.name = name
    det.arm.return_value = arm
    det.fire.return_value = fire
    return det


def _make_engine(detectors=None, **kwargs) -> InstrumentEngine:
    instrument = kwargs.pop("instrument", None) or _make_instrument()
    return InstrumentEngine(
        instrument=instrument,
        monitor=kwargs.pop("monitor", None) or TradeMonitor(),
        detectors=detectors if detectors is not None else [],
        clock_ms=lambda: 1_000,
        **kwargs,
    )


def _feed_candle(engine, ts_ms, o, h, lo, c):
    """Four ticks inside one minute; returns trades opened by them."""
    opened = []
    for offset, price in enumerate((o, h, lo, c)):
        opened += engine.ingest(price, ts_ms + offset * 10_000)
    return opened


def _feed_po3_morning(engine) -> None:
    """00:00–02:31: Asia range [1.1000, 1.1050], London sweep, displacement."""
    for minute in range(150):
        hour, mm = divmod(minute, 60)
        bar = (1.1020, 1.1025, 1.1018, 1.1022)
        if minute == 10:
            bar = (1.1020, 1.1050, 1.1018, 1.1022)
        elif minute == 20:
            bar = (1.1020, 1.1025, 1.1000, 1.1022)
        _feed_candle(engine, _ny_ms(15, hour, mm), *bar)
    _feed_candle(engine, _ny_ms(15, 2, 30), 1.1045, 1.1060, 1.1040, 1.1040)
    _feed_candle(engine, _ny_ms(15, 2, 31), 1.1040, 1.1042, 1.1008, 1.1010)


# ── End-to-end PO3 ───────────────────────────────────────────────────────


class TestPO3Scenario:
    def test_london_sweep_opens_one_sell_trade(self):
        monitor = TradeMonitor()
        engine = _make_engine([PO3Detector()], monitor=monitor)
        _feed_po3_morning(engine)

        session = engine.aggregator.get_sessions()
        assert session.asia_locked is True
        assert (session.asia_low, session.asia_high) == (1.1000, 1.1050)
        assert session.daily_open == 1.1020
        assert engine.last_setups["PO3"].event == "sweep_high"

        entry_ts = _ny_ms(15, 2, 32)
        opened = engine.ingest(1.10325, entry_ts)
        assert engine.last_setups["PO3"].event == "displacement_down"
        assert len(opened) == 1
        trade = opened[0]
        assert trade.direction == "sell"
        assert trade.entry_price == 1.10325
        assert trade.stop_price == pytest.approx(1.10575)
        assert trade.target_price == pytest.approx(1.10125)
        assert trade.variant_label == "TP20/SL25"
        assert trade.native_stop == pytest.approx(1.1065)
        assert trade.trade_id == f"EURUSD-PO3-{entry_ts}"

        assert engine.ingest(1.10325, entry_ts + 1_000) == []
        assert len(monitor.open_trades("EURUSD")) == 1

        [closed] = monitor.on_tick("EURUSD", 1.1012, entry_ts + 600_000)
        assert closed.outcome == "win"
        assert closed.pips == pytest.approx(20.5)
        assert monitor.open_trades() == []


# ── Trade construction ───────────────────────────────────────────────────


class TestBuildTrade:
    def test_fixed_pips_by_default(self):
        engine = _make_engine()
        entry = FiredEntry("ORB", "buy", 1.1000, stop=1.0990, targets=(1.1030,))
        trade = engine.build_trade(entry, 5_000, SessionContext())
        assert trade.stop_price == pytest.approx(1.0975)
        assert trade.target_price == pytest.approx(1.1020)
        assert trade.variant_label == "TP20/SL25"
        assert trade.native_stop == 1.0990
        assert trade.native_targets == (1.1030,)

    def test_native_mode_uses_detector_levels(self):
        engine = _make_engine(instrument=_make_instrument(stop_mode="native"))
        entry = FiredEntry("PO3", "buy", 1.1000, stop=1.0990, targets=(1.1030, 1.1050))
        trade = engine.build_trade(entry, 5_000, SessionContext())
        assert trade.stop_price == 1.0990
        assert trade.target_price == 1.1030
        assert trade.variant_label == "Native"

    def test_native_mode_falls_back_when_levels_wrong_side(self):
        engine = _make_engine(instrument=_make_instrument(stop_mode="native"))
        entry = FiredEntry("BREAKER", "sell", 1.1010, stop=1.1025, targets=(1.1030,))
        trade = engine.build_trade(entry, 5_000, SessionContext())
        assert trade.variant_label == "TP20/SL25"
        assert trade.stop_price == pytest.approx(1.1035)

    def test_native_mode_with_breaker_levels(self):
        rows = [(1.1000, 1.1002, 1.0998, 1.1000)] * 70 + [
            (1.1000, 1.1012, 1.0998, 1.1010),
            (1.1010, 1.1022, 1.1008, 1.1020),
            (1.1020, 1.1030, 1.1013, 1.1015),
            (1.1015, 1.1017, 1.1003, 1.1005),
            (1.1005, 1.1007, 1.0990, 1.0995),
            (1.0995, 1.1002, 1.0980, 1.1000),
            (1.1000, 1.1004, 1.0996, 1.1003),
            (1.1003, 1.1004, 1.0985, 1.0990),
            (1.0990, 1.0992, 1.0972, 1.0975),
            (1.0975, 1.0977, 1.0968, 1.0970),
        ]
        m1 = tuple(Candle(i * 60_000, *row) for i, row in enumerate(rows))
        det = BreakerReversalDetector()
        det.arm(CandleWindow(m1=m1), SessionContext())
        entry = det.fire(1.1015, 5_000, SessionContext())

        engine = _make_engine(instrument=_make_instrument(stop_mode="native"))
        trade = engine.build_trade(entry, 5_000, SessionContext())
        assert trade.variant_label == "Native"
        assert trade.stop_price == pytest.approx(1.1025)
        assert trade.target_price == 1.0980

    def test_native_mode_without_levels_falls_back(self):
        engine = _make_engine(instrument=_make_instrument(stop_mode="native"))
        trade = engine.build_trade(FiredEntry("ORB", "sell", 1.1000), 5_000, SessionContext())
        assert trade.variant_label == "TP20/SL25"

    def test_instrument_override(self):
        engine = _make_engine(instrument=_make_instrument(tp_pips=10, sl_pips=10))
        trade = engine.build_trade(FiredEntry("ORB", "sell", 1.1000), 5_000, SessionContext())
        assert trade.target_price == pytest.approx(1.0990)
        assert trade.variant_label == "TP10/SL10"


# ── Dispatch ─────────────────────────────────────────────────────────────


class TestDispatch:
    def test_detectors_fire_in_list_order(self):
        first = _make_detector("A", fire=FiredEntry("A", "buy", 1.1))
        second = _make_detector("B", fire=FiredEntry("B", "sell", 1.1))
        engine = _make_engine([first, second])
        opened = engine.on_tick(1.1, 60_000)
        assert [t.strategy for t in opened] == ["A", "B"]
        assert engine.entries_fired == 2

    def test_collaborators_called_through_outbox(self):
        outbox = MagicMock()
        notifier, repo, dashboard = MagicMock(), MagicMock(), MagicMock()
        engine = _make_engine(
            [_make_detector("A", fire=FiredEntry("A", "buy", 1.1))],
            outbox=outbox, notifier=notifier, trade_repo=repo, dashboard=dashboard,
        )
        [trade] = engine.on_tick(1.1, 60_000)

        calls = {c.args[1]: c.args[2:] for c in outbox.submit.call_args_list}
        assert calls[notifier.send][0] == "strategy_entry"
        assert calls[notifier.send][1]["trade_id"] == trade.trade_id
        assert calls[repo.record_open] == (trade,)
        assert calls[dashboard.post_entry] == (trade,)
        notifier.send.assert_not_called()

    def test_no_outbox_means_no_collaborator_calls(self):
        repo = MagicMock()
        engine = _make_engine(
            [_make_detector("A", fire=FiredEntry("A", "buy", 1.1))], trade_repo=repo,
        )
        engine.on_tick(1.1, 60_000)
        repo.record_open.assert_not_called()
        assert len(engine.monitor.open_trades()) == 1

    def test_failing_detector_does_not_stop_others(self):
        bad = _make_detector("BAD")
        bad.fire.side_effect = RuntimeError("boom")
        bad.arm.side_effect = RuntimeError("boom")
        good = _make_detector("GOOD", arm=SetupDescriptor("GOOD", "setup", "buy"))
        engine = _make_engine([bad, good])

        engine.ingest(1.1, _ny_ms(15, 3, 0))
        engine.ingest(1.1, _ny_ms(15, 3, 1))
        assert good.arm.call_count == 1
        assert good.fire.call_count == 2
        assert engine.last_setups == {"GOOD": SetupDescriptor("GOOD", "setup", "buy")}


# ── Day roll and snapshots ───────────────────────────────────────────────


class TestDayRollAndSnapshot:
    def test_detectors_reset_once_on_new_day(self):
        det = _make_detector()
        engine = _make_engine([det])
        for ts in (_ny_ms(15, 23, 58), _ny_ms(15, 23, 59), _ny_ms(16, 0, 0), _ny_ms(16, 0, 1), _ny_ms(16, 0, 2)):
            engine.ingest(1.1, ts)
        assert det.reset_day.call_count == 1
        assert det.arm.call_count == 4

    def test_snapshot_saved_once_when_asia_locks(self):
        outbox, snapshots = MagicMock(), MagicMock()
        engine = _make_engine(outbox=outbox, snapshot_repo=snapshots)
        for minute in (0, 60, 120, 121, 122, 123):
            engine.ingest(1.1, _ny_ms(15, 0, 0) + minute * 60_000)

        saves = [c for c in outbox.submit.call_args_list if c.args[1] == snapshots.save]
        assert len(saves) == 1
        _, _, inst_id, session, saved_at = saves[0].args
        assert inst_id == "EURUSD"
        assert session.asia_locked is True
        assert session.day_key == "2025-01-15"
        assert saved_at == 1_000

    def test_restore_snapshot_seeds_aggregator(self):
        engine = _make_engine()
        snapshot = SessionSnapshot(
            "EURUSD",
            SessionContext(day_key="2025-01-15", daily_open=1.1, asia_high=1.2, asia_low=1.0, asia_locked=True),
            saved_at_ms=1,
        )
        assert engine.restore_snapshot(snapshot) is True
        assert engine.aggregator.get_sessions().asia_high == 1.2

    def test_unlocked_snapshot_is_rejected(self):
        engine = _make_engine()
        snapshot = SessionSnapshot(
            "EURUSD",
            SessionContext(day_key="2025-01-15", asia_high=1.2, asia_low=1.0, asia_locked=False),
            saved_at_ms=1,
        )
        assert engine.restore_snapshot(snapshot) is False
        assert engine.aggregator.get_sessions().asia_high is None

    def test_status(self):
        engine = _make_engine([_make_detector("A")])
        engine.ingest(1.1, _ny_ms(15, 3))
        status = engine.status()
        assert status["instrument_id"] == "EURUSD"
        assert status["detectors"] == ["A"]
        assert status["ticks_seen"] == 1
        assert status["last_price"] == 1.1


class TestDefaultDetectors:
    def test_registry_builds_defaults(self):
        engine = InstrumentEngine(_make_instrument(), TradeMonitor())
        names = [d.name for d in engine.detectors]
        assert names[0] == "PO3"
        assert "GoldTime" not in names
        assert len(names) == 8

    def test_gold_gets_gold_time(self):
        inst = _make_instrument(id="XAUUSD", feed_symbol="OANDA:XAU_USD", pip_size=0.1, decimals=2)
        engine = InstrumentEngine(inst, TradeMonitor())
        assert engine.detectors[-1].name == "GoldTime"
