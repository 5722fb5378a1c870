"""Session clock — pure functions mapping epoch-ms timestamps to local session time.

All session logic runs on New York time by default.  Hours are fractional
(``8.5`` = 08:30) and window checks are inclusive at both ends.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from zoneinfo import ZoneInfo

NY_ZONE = ZoneInfo("America/New_York")


@dataclass(frozen=True)
class SessionWindows:
    """Local-time session windows used by the aggregator and detectors."""

    asia_start: float = 0.0
    asia_end: float = 2.0
    london_start: float = 2.0
    london_end: float = 5.0
    ny_start: float = 8.5
    ny_end: float = 11.0


DEFAULT_WINDOWS = SessionWindows()


def to_local(ts_ms: int, tz: ZoneInfo = NY_ZONE) -> datetime:
    """Convert an epoch-millisecond timestamp to an aware local datetime."""
    return datetime.fromtimestamp(ts_ms / 1000, tz=timezone.utc).astimezone(tz)


def day_key(ts_ms: int, tz: ZoneInfo = NY_ZONE) -> str:
    """Return the ``YYYY-MM-DD`` calendar day of *ts_ms* in *tz*."""
    return to_local(ts_ms, tz).strftime("%Y-%m-%d")


def local_hour(ts_ms: int, tz: ZoneInfo = NY_ZONE) -> float:
    """Return the local time of day as a fractional hour (09:30 → 9.5)."""
    dt = to_local(ts_ms, tz)
    return dt.hour + dt.minute / 60


def in_hour_range(
    ts_ms: int,
    start_hour: float,
    end_hour: float,
    tz: ZoneInfo = NY_ZONE,
) -> bool:
    """Return True if *ts_ms* falls within ``[start_hour, end_hour]`` local time.

    Args:
        ts_ms: Epoch milliseconds.
        start_hour: Window start (inclusive), fractional hours.
        end_hour: Window end (inclusive), fractional hours.
        tz: Session timezone.
    """
    hr = local_hour(ts_ms, tz)
    return start_hour <= hr <= end_hour


def session_label(ts_ms: int, tz: ZoneInfo = NY_ZONE) -> str:
    """Name the trading session a timestamp belongs to (for trade records)."""
    hr = local_hour(ts_ms, tz)
    if 2 <= hr < 5:
        return "London KZ"
    if 8.5 <= hr < 11:
        return "NY KZ"
    if 0 <= hr < 2:
        return "Asia"
    if 5 <= hr < 8.5:
        return "Pre-NY"
    if 11 <= hr < 17:
        return "NY"
    return "After-hours"
