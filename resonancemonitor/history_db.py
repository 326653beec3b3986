"""SQLite-backed persistence gateway for sessions and samples.

One file holds two tables: ``sessions`` (metadata, the bounded
recent-sample ring and the post-session summary) and ``samples`` (one typed
row per accepted reading).  Samples reference their session with
``ON DELETE CASCADE`` so deleting a session removes its readings in the same
transaction.

All methods are blocking; async callers go through ``asyncio.to_thread``.
"""

from __future__ import annotations

import logging
import math
import sqlite3
from collections.abc import Iterable
from contextlib import contextmanager
from pathlib import Path
from threading import RLock
from typing import Any

from .errors import DuplicateNameError, PersistenceError
from .json_utils import safe_json_dumps, safe_json_loads
from .models import (
    RECENT_SAMPLES_CAPACITY,
    MechanicalProperties,
    RecentSampleRing,
    Sample,
    Session,
)

LOGGER = logging.getLogger(__name__)

# -- Schema -------------------------------------------------------------------

_SCHEMA_VERSION = 1

_SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS schema_meta (
    key   TEXT PRIMARY KEY,
    value TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS sessions (
    id                           TEXT PRIMARY KEY,
    name                         TEXT NOT NULL UNIQUE,
    start_time                   TEXT NOT NULL,
    end_time                     TEXT,
    is_active                    INTEGER NOT NULL DEFAULT 1,
    test_mass                    REAL NOT NULL,
    created_at                   TEXT NOT NULL,
    recent_samples_json          TEXT NOT NULL DEFAULT '[]',
    natural_frequency            REAL,
    peak_amplitude               REAL,
    frequency_analysis_complete  INTEGER NOT NULL DEFAULT 0,
    mechanical_properties_json   TEXT
);

CREATE TABLE IF NOT EXISTS samples (
    id                INTEGER PRIMARY KEY AUTOINCREMENT,
    session_id        TEXT NOT NULL REFERENCES sessions(id) ON DELETE CASCADE,
    device_id         TEXT NOT NULL,
    timestamp         REAL,
    delta_z           REAL,
    raw_acceleration  REAL,
    frequency         REAL,
    amplitude         REAL,
    received_at       TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_samples_session_time ON samples(session_id, timestamp);
CREATE INDEX IF NOT EXISTS idx_sessions_created ON sessions(created_at);
"""

_SESSION_COLS = (
    "id, name, start_time, end_time, is_active, test_mass, created_at, "
    "recent_samples_json, natural_frequency, peak_amplitude, "
    "frequency_analysis_complete, mechanical_properties_json"
)

_SAMPLE_COLS = (
    "session_id, device_id, timestamp, delta_z, raw_acceleration, "
    "frequency, amplitude, received_at"
)


def _nan_if_null(value: Any) -> float:
    # SQLite stores NaN as NULL; restore it so non-finite input stays visible.
    return math.nan if value is None else float(value)


class HistoryDB:
    """Thin wrapper around a SQLite database for session history."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        self._lock = RLock()
        db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(db_path), check_same_thread=False)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA foreign_keys=ON")
        self._ensure_schema()

    # -- lifecycle ------------------------------------------------------------

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    @contextmanager
    def _cursor(self, *, commit: bool = True):
        with self._lock:
            cur = self._conn.cursor()
            try:
                yield cur
                if commit:
                    self._conn.commit()
            except Exception:
                self._conn.rollback()
                raise
            finally:
                cur.close()

    def _ensure_schema(self) -> None:
        with self._cursor() as cur:
            cur.executescript(_SCHEMA_SQL)
        with self._cursor() as cur:
            cur.execute("SELECT value FROM schema_meta WHERE key = ?", ("version",))
            row = cur.fetchone()
            if row is None:
                cur.execute(
                    "INSERT INTO schema_meta (key, value) VALUES (?, ?)",
                    ("version", str(_SCHEMA_VERSION)),
                )
                return
            version = int(str(row[0]))
            if version != _SCHEMA_VERSION:
                raise RuntimeError(
                    f"Unsupported session DB schema version {version}; "
                    f"expected {_SCHEMA_VERSION}. Delete the database file to recreate."
                )

    # -- row mapping ----------------------------------------------------------

    @staticmethod
    def _row_to_session(row: tuple[Any, ...]) -> Session:
        (
            session_id,
            name,
            start_time,
            end_time,
            is_active,
            test_mass,
            created_at,
            recent_json,
            natural_frequency,
            peak_amplitude,
            analysis_complete,
            mech_json,
        ) = row
        recent = safe_json_loads(recent_json, context=f"session {session_id} recent_samples")
        mech = safe_json_loads(mech_json, context=f"session {session_id} mechanical_properties")
        return Session(
            id=session_id,
            name=name,
            start_time=start_time,
            end_time=end_time,
            is_active=bool(is_active),
            test_mass=float(test_mass),
            created_at=created_at,
            recent_samples=recent if isinstance(recent, list) else [],
            natural_frequency=natural_frequency,
            peak_amplitude=peak_amplitude,
            frequency_analysis_complete=bool(analysis_complete),
            mechanical_properties=(
                MechanicalProperties.from_dict(mech) if isinstance(mech, dict) else None
            ),
        )

    @staticmethod
    def _row_to_sample(row: tuple[Any, ...]) -> Sample:
        session_id, device_id, ts, delta_z, raw, freq, amp, received_at = row
        return Sample(
            session_id=session_id,
            device_id=device_id,
            timestamp=_nan_if_null(ts),
            delta_z=_nan_if_null(delta_z),
            raw_acceleration=_nan_if_null(raw),
            frequency=freq,
            amplitude=amp,
            received_at=received_at,
        )

    # -- sessions: write ------------------------------------------------------

    def create_session(self, session: Session) -> None:
        """Insert *session*; a taken name raises :class:`DuplicateNameError`."""
        try:
            with self._cursor() as cur:
                cur.execute(
                    f"INSERT INTO sessions ({_SESSION_COLS}) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        session.id,
                        session.name,
                        session.start_time,
                        session.end_time,
                        int(session.is_active),
                        float(session.test_mass),
                        session.created_at,
                        safe_json_dumps(session.recent_samples),
                        session.natural_frequency,
                        session.peak_amplitude,
                        int(session.frequency_analysis_complete),
                        (
                            safe_json_dumps(session.mechanical_properties.to_dict())
                            if session.mechanical_properties is not None
                            else None
                        ),
                    ),
                )
        except sqlite3.IntegrityError as exc:
            if "sessions.name" in str(exc):
                raise DuplicateNameError(
                    f"A session named {session.name!r} already exists"
                ) from exc
            raise PersistenceError(f"Could not create session: {exc}") from exc

    def seal_session(self, session_id: str, end_time: str) -> bool:
        with self._cursor() as cur:
            cur.execute(
                "UPDATE sessions SET is_active = 0, end_time = ? WHERE id = ?",
                (end_time, session_id),
            )
            if cur.rowcount == 0:
                LOGGER.warning("seal_session for %s: no rows updated (session missing)", session_id)
            return cur.rowcount > 0

    def store_analysis(
        self,
        session_id: str,
        *,
        natural_frequency: float,
        peak_amplitude: float,
        mechanical_properties: MechanicalProperties,
    ) -> bool:
        with self._cursor() as cur:
            cur.execute(
                "UPDATE sessions SET natural_frequency = ?, peak_amplitude = ?, "
                "frequency_analysis_complete = 1, mechanical_properties_json = ? "
                "WHERE id = ?",
                (
                    natural_frequency if math.isfinite(natural_frequency) else None,
                    peak_amplitude if math.isfinite(peak_amplitude) else None,
                    safe_json_dumps(mechanical_properties.to_dict()),
                    session_id,
                ),
            )
            if cur.rowcount == 0:
                LOGGER.warning(
                    "store_analysis for session %s: skipped, session no longer exists",
                    session_id,
                )
            return cur.rowcount > 0

    def append_recent_samples(
        self,
        session_id: str,
        projections: Iterable[dict[str, Any]],
        capacity: int = RECENT_SAMPLES_CAPACITY,
    ) -> bool:
        """Append to the session's recent-sample ring, keeping the newest *capacity*."""
        with self._cursor() as cur:
            cur.execute("SELECT recent_samples_json FROM sessions WHERE id = ?", (session_id,))
            row = cur.fetchone()
            if row is None:
                return False
            existing = safe_json_loads(row[0], context=f"session {session_id} recent_samples")
            ring = RecentSampleRing(existing if isinstance(existing, list) else [], capacity)
            ring.extend(projections)
            cur.execute(
                "UPDATE sessions SET recent_samples_json = ? WHERE id = ?",
                (safe_json_dumps(ring.to_list()), session_id),
            )
            return cur.rowcount > 0

    def delete_session(self, session_id: str) -> bool:
        with self._cursor() as cur:
            cur.execute("DELETE FROM sessions WHERE id = ?", (session_id,))
            return cur.rowcount > 0

    def recover_stale_active_sessions(self, end_time: str) -> int:
        """Seal sessions left active by an unclean shutdown and return the count."""
        with self._cursor() as cur:
            cur.execute(
                "UPDATE sessions SET is_active = 0, end_time = COALESCE(end_time, ?) "
                "WHERE is_active = 1",
                (end_time,),
            )
            return cur.rowcount

    # -- sessions: read -------------------------------------------------------

    def get_session(self, session_id: str) -> Session | None:
        with self._cursor(commit=False) as cur:
            cur.execute(f"SELECT {_SESSION_COLS} FROM sessions WHERE id = ?", (session_id,))
            row = cur.fetchone()
        return self._row_to_session(row) if row is not None else None

    def list_sessions(self, limit: int | None = None) -> list[Session]:
        sql = f"SELECT {_SESSION_COLS} FROM sessions ORDER BY created_at DESC, rowid DESC"
        params: tuple[Any, ...] = ()
        if limit is not None:
            sql += " LIMIT ?"
            params = (max(0, int(limit)),)
        with self._cursor(commit=False) as cur:
            cur.execute(sql, params)
            rows = cur.fetchall()
        return [self._row_to_session(row) for row in rows]

    # -- samples --------------------------------------------------------------

    def create_sample(self, sample: Sample) -> None:
        with self._cursor() as cur:
            cur.execute(
                f"INSERT INTO samples ({_SAMPLE_COLS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    sample.session_id,
                    sample.device_id,
                    sample.timestamp,
                    sample.delta_z,
                    sample.raw_acceleration,
                    sample.frequency,
                    sample.amplitude,
                    sample.received_at,
                ),
            )

    def list_samples(self, session_id: str) -> list[Sample]:
        """Samples of a session in ascending device-timestamp order."""
        with self._cursor(commit=False) as cur:
            cur.execute(
                f"SELECT {_SAMPLE_COLS} FROM samples WHERE session_id = ? "
                "ORDER BY timestamp ASC, id ASC",
                (session_id,),
            )
            rows = cur.fetchall()
        return [self._row_to_sample(row) for row in rows]
