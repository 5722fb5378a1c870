"""Structural patterns — fair-value gaps, order blocks, liquidity sweeps.

Stateless helpers over an oldest-first candle sequence, shared by the
detectors.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

from ictflow.strategy.models import Candle, SessionContext


# ── Fair-value gaps ──────────────────────────────────────────────────────


@dataclass(frozen=True)
class FairValueGap:
    """A three-candle imbalance.

    ``start_index`` / ``end_index`` point at the first and third candles of
    the pattern in the sequence it was detected in.
    """

    kind: str  # "bull" or "bear"
    start_index: int
    end_index: int
    low: float
    high: float
    formed_at_ms: int  # open time of the third candle

    @property
    def mid(self) -> float:
        return (self.low + self.high) / 2

    @property
    def key(self) -> str:
        """Identity that survives eviction of older candles."""
        return f"{self.kind}:{self.formed_at_ms}"


def detect_fvg(
    candles: Sequence[Candle],
    lookback: int = 100,
    keep: int = 10,
) -> list[FairValueGap]:
    """Find fair-value gaps among the last *lookback* candles.

    For consecutive candles ``a, b, c``:
        - bullish gap when ``a.high < c.low``  → ``[a.high, c.low]``
        - bearish gap when ``a.low > c.high``  → ``[c.high, a.low]``

    Same-direction gaps whose third candles are within 2 candles of each
    other are coalesced to the most recent one.  At most *keep* gaps are
    returned, oldest-first.
    """
    n = len(candles)
    found: list[FairValueGap] = []
    for i in range(max(1, n - lookback), n - 1):
        a = candles[i - 1]
        c = candles[i + 1]
        if a.high < c.low:
            found.append(FairValueGap(
                kind="bull", start_index=i - 1, end_index=i + 1,
                low=a.high, high=c.low, formed_at_ms=c.open_time_ms,
            ))
        if a.low > c.high:
            found.append(FairValueGap(
                kind="bear", start_index=i - 1, end_index=i + 1,
                low=c.high, high=a.low, formed_at_ms=c.open_time_ms,
            ))

    merged: list[FairValueGap] = []
    for gap in found:
        if (
            merged
            and merged[-1].kind == gap.kind
            and abs(merged[-1].end_index - gap.end_index) <= 2
        ):
            merged[-1] = gap
        else:
            merged.append(gap)
    return merged[-keep:]


# ── Order blocks ─────────────────────────────────────────────────────────


@dataclass(frozen=True)
class OrderBlock:
    """The last opposite-colour candle before a displacement move."""

    index: int
    open: float
    high: float
    low: float
    open_time_ms: int

    @property
    def mid(self) -> float:
        return (self.high + self.low) / 2


def find_order_block(
    candles: Sequence[Candle],
    index: int,
    direction: str,
    lookback: int = 15,
) -> Optional[OrderBlock]:
    """Return the nearest opposite-colour candle before ``candles[index]``.

    A bullish (``"buy"``) displacement looks back for the last bearish
    candle; a bearish (``"sell"``) one for the last bullish candle.  The
    search covers at most *lookback* candles.
    """
    stop = max(-1, index - lookback - 1)
    for k in range(index - 1, stop, -1):
        c = candles[k]
        if (direction == "buy" and c.is_bearish) or (
            direction == "sell" and c.is_bullish
        ):
            return OrderBlock(
                index=k, open=c.open, high=c.high, low=c.low,
                open_time_ms=c.open_time_ms,
            )
    return None


# ── Liquidity ────────────────────────────────────────────────────────────


def infer_sweep_direction(
    candle: Candle,
    session: SessionContext,
    use_asia: bool = True,
    use_prev_day: bool = True,
    use_daily_open: bool = True,
) -> Optional[str]:
    """Infer the trade direction implied by a liquidity sweep on *candle*.

    Taking sell-side liquidity (below Asia low, previous-day low, or a dip
    through the daily open that closes back above) implies ``"buy"``; the
    mirror implies ``"sell"``.  When both sides were swept the candle's
    colour decides.  Returns ``None`` when nothing was swept.
    """
    swept_buy = False
    swept_sell = False

    if use_asia:
        if session.asia_high is not None and candle.high >= session.asia_high:
            swept_sell = True
        if session.asia_low is not None and candle.low <= session.asia_low:
            swept_buy = True
    if use_prev_day:
        if session.prev_day_high is not None and candle.high >= session.prev_day_high:
            swept_sell = True
        if session.prev_day_low is not None and candle.low <= session.prev_day_low:
            swept_buy = True
    if use_daily_open and session.daily_open is not None:
        do = session.daily_open
        if candle.low <= do and candle.close > do:
            swept_buy = True
        if candle.high >= do and candle.close < do:
            swept_sell = True

    if swept_buy and not swept_sell:
        return "buy"
    if swept_sell and not swept_buy:
        return "sell"
    if swept_buy and swept_sell:
        return "buy" if candle.close >= candle.open else "sell"
    return None
