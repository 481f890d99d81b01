from __future__ import annotations

import sqlite3
import os
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple

from .constants import DEFAULT_DB_PATH
from .errors import StoreError
from .models import OutcomeKind, RawOutcome, TrialSpec, targets_key, TARGET_SEPARATOR


def _db_path_from_env(override: Path | str | None = None) -> Path:
    """Resolve the SQLite DB path with optional env override.

    Precedence: explicit override > BUSCALUSO_BENCH_DB env > DEFAULT_DB_PATH.
    """
    if override is not None:
        return Path(override)
    p = os.getenv("BUSCALUSO_BENCH_DB")
    return Path(p) if p else DEFAULT_DB_PATH


@contextmanager
def _store_op(what: str) -> Iterator[None]:
    try:
        yield
    except sqlite3.Error as exc:
        raise StoreError(f"{what}: {exc}") from exc


def _create_schema(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS sessions (
            session_id INTEGER PRIMARY KEY,
            machine_id TEXT NOT NULL,
            created_at INTEGER NOT NULL,
            completed_at INTEGER,
            config_json TEXT
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS session_info (
            session_id INTEGER NOT NULL,
            name TEXT NOT NULL,
            value TEXT NOT NULL,
            PRIMARY KEY (session_id, name)
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS trials (
            trial_id INTEGER PRIMARY KEY AUTOINCREMENT,
            session_id INTEGER NOT NULL,
            start_word TEXT NOT NULL,
            targets TEXT NOT NULL,
            label TEXT NOT NULL,
            source_line TEXT,
            UNIQUE (session_id, start_word, targets)
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS outcomes (
            trial_id INTEGER NOT NULL,
            repeat_idx INTEGER NOT NULL,
            kind TEXT NOT NULL,
            rank INTEGER,
            elapsed REAL NOT NULL,
            error TEXT,
            PRIMARY KEY (trial_id, repeat_idx)
        )
        """
    )
    conn.execute("CREATE INDEX IF NOT EXISTS idx_session_info_name ON session_info(name, value)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_trials_session ON trials(session_id, trial_id)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_trials_label ON trials(label, session_id)")
    conn.commit()


def _ensure_db(path: Path | str | None = None) -> sqlite3.Connection:
    path_resolved = _db_path_from_env(path)
    with _store_op(f"Cannot open database {path_resolved}"):
        path_resolved.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(path_resolved))
        _create_schema(conn)
    return conn


def open_db_readonly(path: Path | str | None = None) -> sqlite3.Connection:
    """Open an existing database without write access."""
    path_resolved = _db_path_from_env(path)
    if not path_resolved.is_file():
        raise StoreError(f"Database not found: {path_resolved}")
    with _store_op(f"Cannot open database {path_resolved}"):
        conn = sqlite3.connect(f"{path_resolved.resolve().as_uri()}?mode=ro", uri=True)
        conn.execute("SELECT 1 FROM sessions LIMIT 1")
    return conn


def new_session_id(conn: sqlite3.Connection, now: Optional[int] = None) -> int:
    """Unix start time in seconds, bumped until it is not taken."""
    session_id = int(time.time()) if now is None else int(now)
    with _store_op("Cannot allocate session id"):
        while conn.execute("SELECT 1 FROM sessions WHERE session_id = ? LIMIT 1", (session_id,)).fetchone():
            session_id += 1
    return session_id


def create_session(
    conn: sqlite3.Connection,
    machine_id: str,
    config_json: str,
    now: Optional[int] = None,
) -> int:
    session_id = new_session_id(conn, now)
    with _store_op("Cannot create session"):
        conn.execute(
            "INSERT INTO sessions (session_id, machine_id, created_at, completed_at, config_json) VALUES (?, ?, ?, NULL, ?)",
            (session_id, machine_id, int(time.time()), config_json),
        )
        conn.commit()
    return session_id


def get_session(conn: sqlite3.Connection, session_id: int) -> Optional[Dict[str, Any]]:
    with _store_op("Cannot read session"):
        row = conn.execute(
            "SELECT session_id, machine_id, created_at, completed_at, config_json FROM sessions WHERE session_id = ?",
            (session_id,),
        ).fetchone()
    if row is None:
        return None
    return {
        "session_id": row[0],
        "machine_id": row[1],
        "created_at": row[2],
        "completed_at": row[3],
        "config_json": row[4],
    }


def _require_open(conn: sqlite3.Connection, session_id: int) -> None:
    session = get_session(conn, session_id)
    if session is None:
        raise StoreError(f"Session {session_id} does not exist")
    if session["completed_at"] is not None:
        raise StoreError(f"Session {session_id} is completed and cannot be modified")


def complete_session(conn: sqlite3.Connection, session_id: int) -> None:
    _require_open(conn, session_id)
    with _store_op("Cannot complete session"):
        conn.execute(
            "UPDATE sessions SET completed_at = ? WHERE session_id = ?",
            (int(time.time()), session_id),
        )
        conn.commit()


def set_info(conn: sqlite3.Connection, session_id: int, name: str, value: str) -> None:
    _require_open(conn, session_id)
    with _store_op(f"Cannot store session info '{name}'"):
        conn.execute(
            """
            INSERT INTO session_info (session_id, name, value) VALUES (?, ?, ?)
            ON CONFLICT(session_id, name) DO UPDATE SET value = excluded.value
            """,
            (session_id, name, value),
        )
        conn.commit()


def get_info(conn: sqlite3.Connection, session_id: int, name: str) -> Optional[str]:
    with _store_op("Cannot read session info"):
        row = conn.execute(
            "SELECT value FROM session_info WHERE session_id = ? AND name = ?",
            (session_id, name),
        ).fetchone()
    return row[0] if row else None


def get_all_info(conn: sqlite3.Connection, session_id: int) -> Dict[str, str]:
    with _store_op("Cannot read session info"):
        rows = conn.execute(
            "SELECT name, value FROM session_info WHERE session_id = ? ORDER BY name",
            (session_id,),
        ).fetchall()
    return {name: value for name, value in rows}


def insert_trial(conn: sqlite3.Connection, session_id: int, spec: TrialSpec) -> int:
    _require_open(conn, session_id)
    with _store_op(f"Cannot store trial {spec.label!r}"):
        cur = conn.execute(
            "INSERT INTO trials (session_id, start_word, targets, label, source_line) VALUES (?, ?, ?, ?, ?)",
            (session_id, spec.start_word, targets_key(spec.targets), spec.label, spec.source_line),
        )
        conn.commit()
    return int(cur.lastrowid)


def insert_outcome(conn: sqlite3.Connection, trial_id: int, repeat_idx: int, outcome: RawOutcome) -> None:
    with _store_op("Cannot find trial"):
        row = conn.execute("SELECT session_id FROM trials WHERE trial_id = ?", (trial_id,)).fetchone()
    if row is None:
        raise StoreError(f"Trial {trial_id} does not exist")
    _require_open(conn, row[0])
    with _store_op(f"Cannot store outcome {repeat_idx} of trial {trial_id}"):
        conn.execute(
            "INSERT INTO outcomes (trial_id, repeat_idx, kind, rank, elapsed, error) VALUES (?, ?, ?, ?, ?, ?)",
            (trial_id, repeat_idx, outcome.kind.value, outcome.rank, outcome.elapsed, outcome.error),
        )
        conn.commit()


def list_sessions(conn: sqlite3.Connection) -> List[Dict[str, Any]]:
    """All sessions, oldest first, with their trial counts."""
    with _store_op("Cannot list sessions"):
        rows = conn.execute(
            """
            SELECT s.session_id, s.machine_id, s.created_at, s.completed_at,
                   (SELECT COUNT(*) FROM trials t WHERE t.session_id = s.session_id)
              FROM sessions s
             ORDER BY s.session_id
            """
        ).fetchall()
    return [
        {
            "session_id": r[0],
            "machine_id": r[1],
            "created_at": r[2],
            "completed_at": r[3],
            "n_trials": r[4],
        }
        for r in rows
    ]


def _outcome_from_row(kind: str, rank: Optional[int], elapsed: float, error: Optional[str]) -> RawOutcome:
    return RawOutcome(OutcomeKind(kind), float(elapsed), rank=rank, error=error)


def load_trial_outcomes(conn: sqlite3.Connection, session_id: int) -> Dict[str, Tuple[TrialSpec, List[RawOutcome]]]:
    """Trial label -> (spec, outcomes by repeat index), in run order."""
    with _store_op("Cannot load outcomes"):
        trials = conn.execute(
            "SELECT trial_id, start_word, targets, source_line FROM trials WHERE session_id = ? ORDER BY trial_id",
            (session_id,),
        ).fetchall()
        rows = conn.execute(
            """
            SELECT o.trial_id, o.kind, o.rank, o.elapsed, o.error
              FROM outcomes o JOIN trials t ON t.trial_id = o.trial_id
             WHERE t.session_id = ?
             ORDER BY o.trial_id, o.repeat_idx
            """,
            (session_id,),
        ).fetchall()
    by_trial: Dict[int, List[RawOutcome]] = {}
    for trial_id, kind, rank, elapsed, error in rows:
        by_trial.setdefault(trial_id, []).append(_outcome_from_row(kind, rank, elapsed, error))
    out: Dict[str, Tuple[TrialSpec, List[RawOutcome]]] = {}
    for trial_id, start_word, targets, source_line in trials:
        spec = TrialSpec(start_word, frozenset(targets.split(TARGET_SEPARATOR)), source_line=source_line or "")
        out[spec.label] = (spec, by_trial.get(trial_id, []))
    return out
