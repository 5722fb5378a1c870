"""Strategy registry — maps strategy names to detector classes.

Used by ``InstrumentEngine`` to build its detector list from an
``InstrumentConfig.strategies`` selection.
"""

from zoneinfo import ZoneInfo

from ictflow.models.instrument import InstrumentConfig
from ictflow.strategy.base import DetectorProtocol
from ictflow.strategy.breaker_reversal import BreakerReversalDetector
from ictflow.strategy.candle_range_entry import CandleRangeEntryDetector
from ictflow.strategy.fvg_continuation import FVGContinuationDetector
from ictflow.strategy.gold_time import GoldTimeDetector
from ictflow.strategy.judas_swing import JudasSwingDetector
from ictflow.strategy.ny_range_ob import NYRangeOBDetector
from ictflow.strategy.orb import ORBDetector
from ictflow.strategy.po3 import PO3Detector
from ictflow.strategy.prev_day_ifvg import PrevDayIFVGDetector
from ictflow.strategy.session_clock import NY_ZONE


STRATEGY_REGISTRY: dict[str, type] = {
    "po3": PO3Detector,
    "prev_day_ifvg": PrevDayIFVGDetector,
    "fvg_continuation": FVGContinuationDetector,
    "breaker_reversal": BreakerReversalDetector,
    "judas_swing": JudasSwingDetector,
    "ny_range_ob": NYRangeOBDetector,
    "orb": ORBDetector,
    "candle_range_entry": CandleRangeEntryDetector,
    "gold_time": GoldTimeDetector,
}

# Order in which detectors see each tick.
FIRE_ORDER: tuple[str, ...] = tuple(STRATEGY_REGISTRY)

DEFAULT_STRATEGIES: tuple[str, ...] = tuple(k for k in FIRE_ORDER if k != "gold_time")

# Instruments that get the Gold-Time detector on top of the defaults.
GOLD_TIME_INSTRUMENTS = frozenset({"XAUUSD"})

# Detectors whose windows are expressed in local session time.
_SESSION_AWARE = frozenset({
    "po3", "judas_swing", "ny_range_ob", "orb", "candle_range_entry", "gold_time",
})


def default_strategies(instrument_id: str) -> tuple[str, ...]:
    """Strategy keys enabled when an instrument does not list its own."""
    if instrument_id in GOLD_TIME_INSTRUMENTS:
        return DEFAULT_STRATEGIES + ("gold_time",)
    return DEFAULT_STRATEGIES


def get_strategy(name: str, **kwargs) -> DetectorProtocol:
    """Look up and instantiate a detector by registry key.

    Raises ``KeyError`` if the strategy name is not registered.
    """
    if name not in STRATEGY_REGISTRY:
        raise KeyError(
            f"Unknown strategy '{name}'. "
            f"Available: {', '.join(STRATEGY_REGISTRY.keys())}"
        )
    return STRATEGY_REGISTRY[name](**kwargs)


def build_detectors(
    instrument: InstrumentConfig,
    tz: ZoneInfo = NY_ZONE,
) -> list[DetectorProtocol]:
    """Instantiate the instrument's detectors, in fire order.

    Each detector receives the instrument's pip size and decimals plus any
    ``strategy_params`` configured under its key.
    """
    selected = instrument.strategies or default_strategies(instrument.id)
    for name in selected:
        if name not in STRATEGY_REGISTRY:
            raise KeyError(
                f"Unknown strategy '{name}' for {instrument.id}. "
                f"Available: {', '.join(STRATEGY_REGISTRY.keys())}"
            )

    detectors: list[DetectorProtocol] = []
    for name in FIRE_ORDER:
        if name not in selected:
            continue
        kwargs = {
            "pip_size": instrument.pip_size,
            "decimals": instrument.decimals,
        }
        if name in _SESSION_AWARE:
            kwargs["tz"] = tz
        if name == "po3":
            kwargs["asset"] = instrument.asset
        kwargs.update(instrument.strategy_params.get(name, {}))
        detectors.append(get_strategy(name, **kwargs))
    return detectors
