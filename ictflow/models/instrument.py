"""Instrument configuration dataclass and fixed pip stop/target table.

Represents one priced instrument in the signal pipeline.
"""

from dataclasses import dataclass, field


@dataclass(frozen=True)
class RiskReward:
    """Fixed take-profit / stop-loss distances, in pips."""

    tp_pips: float
    sl_pips: float

    @property
    def label(self) -> str:
        """Variant label carried on every trade record, e.g. ``TP20/SL25``."""
        return f"TP{self.tp_pips:g}/SL{self.sl_pips:g}"


RR_BY_INSTRUMENT: dict[str, RiskReward] = {
    # Metals (pip = 0.10 gold, 0.01 silver)
    "XAUUSD": RiskReward(70, 70),
    "XAGUSD": RiskReward(200, 200),
    # Majors
    "EURUSD": RiskReward(20, 25),
    "GBPUSD": RiskReward(25, 30),
    "AUDUSD": RiskReward(20, 25),
    "NZDUSD": RiskReward(20, 25),
    "USDCAD": RiskReward(20, 25),
    # Yen pairs
    "USDJPY": RiskReward(20, 25),
    "EURJPY": RiskReward(22, 28),
    "GBPJPY": RiskReward(25, 30),
}

DEFAULT_RR = RiskReward(100, 100)

STOP_MODES = ("fixed", "native")


@dataclass(frozen=True)
class InstrumentConfig:
    """Static per-instrument metadata, shared read-only across the pipeline.

    ``strategies`` holds registry keys; an empty tuple means the registry's
    defaults for this instrument.  ``strategy_params`` maps a registry key
    to extra detector constructor arguments.
    """

    id: str
    feed_symbol: str
    pip_size: float
    decimals: int
    asset: str = "fx"  # "fx" or "crypto"
    tp_pips: float | None = None
    sl_pips: float | None = None
    stop_mode: str = "fixed"
    strategies: tuple[str, ...] = ()
    strategy_params: dict = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.id:
            raise ValueError("Instrument id must not be empty")
        if self.pip_size is None or self.pip_size <= 0:
            raise ValueError(f"{self.id}: pip_size must be a positive number")
        if self.decimals is None or self.decimals < 0:
            raise ValueError(f"{self.id}: decimals must be a non-negative integer")
        if self.stop_mode not in STOP_MODES:
            raise ValueError(
                f"{self.id}: stop_mode must be one of {', '.join(STOP_MODES)}"
            )

    @property
    def risk_reward(self) -> RiskReward:
        """Fixed distances: instrument overrides, then the table, then default."""
        base = RR_BY_INSTRUMENT.get(self.id, DEFAULT_RR)
        return RiskReward(
            tp_pips=self.tp_pips if self.tp_pips is not None else base.tp_pips,
            sl_pips=self.sl_pips if self.sl_pips is not None else base.sl_pips,
        )

    def round_price(self, price: float) -> float:
        return round(price, self.decimals)


BUILTIN_INSTRUMENTS: tuple[InstrumentConfig, ...] = (
    InstrumentConfig("EURUSD", "OANDA:EUR_USD", 0.0001, 5),
    InstrumentConfig("GBPUSD", "OANDA:GBP_USD", 0.0001, 5),
    InstrumentConfig("USDJPY", "OANDA:USD_JPY", 0.01, 3),
    InstrumentConfig("AUDUSD", "OANDA:AUD_USD", 0.0001, 5),
    InstrumentConfig("USDCAD", "OANDA:USD_CAD", 0.0001, 5),
    InstrumentConfig("XAUUSD", "OANDA:XAU_USD", 0.1, 2),
)
