"""Session snapshot store — key-value persistence of per-day session levels.

Keyed by ``(instrument_id, day_key)``.  Saved once per day when the Asia
range locks; loaded at startup so a restart after the Asia window does not
leave the range unavailable.
"""

import json
from dataclasses import dataclass
from typing import Optional

from ictflow.repos.db import get_connection
from ictflow.strategy.models import SessionContext


@dataclass(frozen=True)
class SessionSnapshot:
    instrument_id: str
    session: SessionContext
    saved_at_ms: int

    @property
    def is_restorable(self) -> bool:
        """Only a locked, complete Asia range is worth restoring."""
        return self.session.asia_locked and self.session.has_asia_range

    def to_payload(self) -> dict:
        payload = self.session.to_dict()
        payload["saved_at_ms"] = self.saved_at_ms
        return payload


class SnapshotRepo:
    """SQLite-backed ``load`` / ``save`` for session snapshots.

    Args:
        db_path: Path to the SQLite database file.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    def save(self, instrument_id: str, session: SessionContext, saved_at_ms: int) -> None:
        """Upsert the snapshot for ``(instrument_id, session.day_key)``."""
        if session.day_key is None:
            raise ValueError("Cannot save a session snapshot without a day key")
        snapshot = SessionSnapshot(instrument_id, session, saved_at_ms)
        conn = get_connection(self._db_path)
        try:
            conn.execute(
                """
                INSERT INTO session_snapshots
                    (instrument_id, day_key, payload_json, saved_at_ms)
                VALUES (?, ?, ?, ?)
                ON CONFLICT (instrument_id, day_key) DO UPDATE SET
                    payload_json = excluded.payload_json,
                    saved_at_ms = excluded.saved_at_ms
                """,
                (
                    instrument_id,
                    session.day_key,
                    json.dumps(snapshot.to_payload()),
                    saved_at_ms,
                ),
            )
            conn.commit()
        finally:
            conn.close()

    def load(self, instrument_id: str, day_key: str) -> Optional[SessionSnapshot]:
        """Return the snapshot for the key, or ``None`` if absent."""
        conn = get_connection(self._db_path)
        try:
            row = conn.execute(
                """
                SELECT payload_json, saved_at_ms FROM session_snapshots
                WHERE instrument_id = ? AND day_key = ?
                """,
                (instrument_id, day_key),
            ).fetchone()
        finally:
            conn.close()
        if row is None:
            return None

        payload = json.loads(row["payload_json"])
        payload.pop("saved_at_ms", None)
        fields = set(SessionContext().to_dict())
        session = SessionContext(**{k: v for k, v in payload.items() if k in fields})
        return SessionSnapshot(instrument_id, session, row["saved_at_ms"])
