from __future__ import annotations

import os
import sqlite3
import sys
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable

from .settings import settings


def utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _resolve_db_path() -> str:
    """Return a file path usable by sqlite.

    If the configured path is a directory (e.g. a bind mount that did not
    exist yet), the DB file is placed inside it.
    """

    p = os.path.abspath(settings.db_path)

    if os.path.isdir(p):
        p = os.path.join(p, "cpr.db")

    parent = os.path.dirname(p)
    if parent and not os.path.exists(parent):
        os.makedirs(parent, exist_ok=True)

    return p


def connect() -> sqlite3.Connection:
    conn = sqlite3.connect(_resolve_db_path(), check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys=ON")
    return conn


def init_db() -> None:
    """Create tables if they do not exist."""
    with connect() as conn:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS runs (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              backup_dir TEXT NOT NULL,
              state TEXT NOT NULL, -- running|succeeded|failed
              message TEXT NOT NULL DEFAULT '',
              started_at TEXT NOT NULL,
              finished_at TEXT
            );

            CREATE TABLE IF NOT EXISTS steps (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              run_id INTEGER,
              name TEXT NOT NULL,
              component TEXT,
              state TEXT NOT NULL, -- running|done|failed|skipped
              detail TEXT NOT NULL DEFAULT '',
              revision INTEGER,
              started_at TEXT NOT NULL,
              finished_at TEXT,
              duration_s REAL,
              FOREIGN KEY(run_id) REFERENCES runs(id) ON DELETE CASCADE
            );

            CREATE TABLE IF NOT EXISTS events (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              ts TEXT NOT NULL,
              level TEXT NOT NULL,
              component TEXT,
              run_id INTEGER,
              message TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_events_ts ON events(ts);
            CREATE INDEX IF NOT EXISTS idx_events_run_id ON events(run_id);
            CREATE INDEX IF NOT EXISTS idx_steps_run_id ON steps(run_id);
            """
        )


def log_event(level: str, message: str, component: str | None = None, run_id: int | None = None) -> None:
    """Persist an event and echo it for the operator.

    DEBUG events are only persisted.
    """
    level = level.upper()
    ts = utc_now()
    with connect() as conn:
        conn.execute(
            "INSERT INTO events (ts, level, component, run_id, message) VALUES (?, ?, ?, ?, ?)",
            (ts, level, component, run_id, message),
        )
    if level != "DEBUG":
        prefix = f"[{component}] " if component else ""
        print(f"##### {ts}: {level} {prefix}{message}", file=sys.stderr, flush=True)


@dataclass(frozen=True)
class RunRow:
    id: int
    backup_dir: str
    state: str
    message: str
    started_at: str
    finished_at: str | None


@dataclass(frozen=True)
class StepRow:
    id: int
    run_id: int | None
    name: str
    component: str | None
    state: str
    detail: str
    revision: int | None
    started_at: str
    finished_at: str | None
    duration_s: float | None


def _rows_to_dataclass(rows: Iterable[sqlite3.Row], cls: Any) -> list[Any]:
    out: list[Any] = []
    for r in rows:
        out.append(cls(**dict(r)))
    return out


def create_run(backup_dir: str) -> RunRow:
    with connect() as conn:
        cur = conn.execute(
            "INSERT INTO runs (backup_dir, state, started_at) VALUES (?, 'running', ?)",
            (backup_dir, utc_now()),
        )
        row = conn.execute("SELECT * FROM runs WHERE id=?", (cur.lastrowid,)).fetchone()
        return RunRow(**dict(row))


def finish_run(run_id: int, state: str, message: str = "") -> None:
    with connect() as conn:
        conn.execute(
            "UPDATE runs SET state=?, message=?, finished_at=? WHERE id=?",
            (state, message, utc_now(), run_id),
        )


def get_run(run_id: int) -> RunRow | None:
    with connect() as conn:
        row = conn.execute("SELECT * FROM runs WHERE id=?", (run_id,)).fetchone()
        return RunRow(**dict(row)) if row else None


def list_runs(limit: int = 50) -> list[RunRow]:
    with connect() as conn:
        rows = conn.execute("SELECT * FROM runs ORDER BY id DESC LIMIT ?", (limit,)).fetchall()
        return _rows_to_dataclass(rows, RunRow)


def start_step(run_id: int | None, name: str, component: str | None = None) -> StepRow:
    with connect() as conn:
        cur = conn.execute(
            "INSERT INTO steps (run_id, name, component, state, started_at) VALUES (?, ?, ?, 'running', ?)",
            (run_id, name, component, utc_now()),
        )
        row = conn.execute("SELECT * FROM steps WHERE id=?", (cur.lastrowid,)).fetchone()
        return StepRow(**dict(row))


def finish_step(
    step_id: int,
    state: str,
    duration_s: float,
    detail: str = "",
    revision: int | None = None,
) -> None:
    with connect() as conn:
        conn.execute(
            """
            UPDATE steps
            SET state=?, detail=?, revision=?, finished_at=?, duration_s=?
            WHERE id=?
            """,
            (state, detail, revision, utc_now(), round(duration_s, 3), step_id),
        )


def list_steps(run_id: int) -> list[StepRow]:
    with connect() as conn:
        rows = conn.execute("SELECT * FROM steps WHERE run_id=? ORDER BY id", (run_id,)).fetchall()
        return _rows_to_dataclass(rows, StepRow)


def latest_events(limit: int = 100, run_id: int | None = None) -> list[dict[str, Any]]:
    with connect() as conn:
        if run_id is not None:
            rows = conn.execute(
                "SELECT * FROM events WHERE run_id=? ORDER BY id DESC LIMIT ?", (run_id, limit)
            ).fetchall()
        else:
            rows = conn.execute("SELECT * FROM events ORDER BY id DESC LIMIT ?", (limit,)).fetchall()
        return [dict(r) for r in rows]
