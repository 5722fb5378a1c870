"""ICTFlow — application configuration.

Loads .env variables into a typed config object and the instrument list
from ``instruments.json``.  Validates required values on startup so a bad
configuration fails before any stream starts.
"""

import json
import os
import pathlib
from dataclasses import dataclass

from dotenv import load_dotenv

from ictflow.models.instrument import BUILTIN_INSTRUMENTS, InstrumentConfig


_REQUIRED_VARS = [
    "FINNHUB_API_KEY",
]


@dataclass(frozen=True)
class Config:
    """Typed configuration loaded from environment variables."""

    finnhub_api_key: str
    instruments_path: str
    db_path: str
    log_level: str
    health_port: int
    session_timezone: str
    telegram_bot_token: str | None
    telegram_chat_id: str | None
    notify_throttle_seconds: float
    dashboard_url: str | None
    outbox_max_retries: int

    @property
    def telegram_enabled(self) -> bool:
        return bool(self.telegram_bot_token and self.telegram_chat_id)


def load_config(env_path: str | None = None) -> Config:
    """Load configuration from environment variables.

    Raises ``ValueError`` with a message naming the missing variable when a
    required variable is absent.
    """
    load_dotenv(dotenv_path=env_path)

    missing = [v for v in _REQUIRED_VARS if not os.environ.get(v)]
    if missing:
        raise ValueError(
            f"Missing required environment variable(s): {', '.join(missing)}"
        )

    return Config(
        finnhub_api_key=os.environ["FINNHUB_API_KEY"],
        instruments_path=os.environ.get("INSTRUMENTS_PATH", "instruments.json"),
        db_path=os.environ.get("DB_PATH", "data/ictflow.db"),
        log_level=os.environ.get("LOG_LEVEL", "INFO"),
        health_port=int(os.environ.get("HEALTH_PORT", "8080")),
        session_timezone=os.environ.get("SESSION_TIMEZONE", "America/New_York"),
        telegram_bot_token=os.environ.get("TELEGRAM_BOT_TOKEN") or None,
        telegram_chat_id=os.environ.get("TELEGRAM_CHAT_ID") or None,
        notify_throttle_seconds=float(os.environ.get("NOTIFY_THROTTLE_SECONDS", "60")),
        dashboard_url=os.environ.get("DASHBOARD_URL") or None,
        outbox_max_retries=int(os.environ.get("OUTBOX_MAX_RETRIES", "3")),
    )


def load_instruments(path: str | pathlib.Path | None = None) -> list[InstrumentConfig]:
    """Load instrument definitions from ``instruments.json``.

    Falls back to the built-in instrument list if the file does not exist.
    Raises ``ValueError`` when an entry lacks ``pip_size`` or ``decimals``
    (or either is invalid), and on duplicate ids.

    Args:
        path: Explicit path to the JSON file.  Defaults to
              ``instruments.json`` in the project root.
    """
    if path is None:
        path = pathlib.Path(__file__).resolve().parent.parent / "instruments.json"
    else:
        path = pathlib.Path(path)

    if not path.exists():
        return list(BUILTIN_INSTRUMENTS)

    with open(path, encoding="utf-8") as fh:
        data = json.load(fh)

    instruments: list[InstrumentConfig] = []
    seen: set[str] = set()
    for raw in data.get("instruments", []):
        inst_id = raw.get("id")
        if not inst_id:
            raise ValueError(f"Instrument entry without 'id' in {path}")
        for key in ("pip_size", "decimals"):
            if raw.get(key) is None:
                raise ValueError(f"{inst_id}: missing required field '{key}'")
        if inst_id in seen:
            raise ValueError(f"Duplicate instrument id '{inst_id}' in {path}")
        seen.add(inst_id)

        instruments.append(
            InstrumentConfig(
                id=inst_id,
                feed_symbol=raw.get("feed_symbol", inst_id),
                pip_size=float(raw["pip_size"]),
                decimals=int(raw["decimals"]),
                asset=raw.get("asset", "fx"),
                tp_pips=raw.get("tp_pips"),
                sl_pips=raw.get("sl_pips"),
                stop_mode=raw.get("stop_mode", "fixed"),
                strategies=tuple(raw.get("strategies", ())),
                strategy_params=dict(raw.get("strategy_params", {})),
            )
        )
    return instruments
