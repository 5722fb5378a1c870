"""Detector protocol — the two-phase contract every strategy implements.

Defines the interface that all detectors must satisfy so the dispatcher can
hold them in one homogeneous list.
"""

from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable

from ictflow.strategy.models import (
    CandleWindow,
    FiredEntry,
    SessionContext,
    SetupDescriptor,
)


@runtime_checkable
class DetectorProtocol(Protocol):
    """Interface that all strategy detectors must satisfy.

    ``arm`` runs once per closed 1-minute candle and may hold at most one
    pending setup; ``fire`` runs once per tick and consumes that setup.
    """

    name: str

    def arm(
        self,
        window: CandleWindow,
        session: SessionContext,
    ) -> Optional[SetupDescriptor]:
        """Inspect closed candles and arm (or re-arm) a setup."""
        ...

    def fire(
        self,
        price: float,
        ts_ms: int,
        session: SessionContext,
    ) -> Optional[FiredEntry]:
        """Check the tick against the armed setup and emit an entry."""
        ...

    def reset_day(self) -> None:
        """Discard all per-day state, including any armed setup."""
        ...
