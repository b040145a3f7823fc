from __future__ import annotations

import json
import os
import sqlite3
from typing import Any

from .runtime import utc_now


class Journal:
    """SQLite event journal: one row per run, one row per event.

    Every method opens its own connection, so a Journal can be shared by
    worker threads.
    """

    def __init__(self, db_path: str):
        self.db_path = db_path

    def _resolve_db_path(self) -> str:
        # A bind-mounted path that did not exist may have been created as a
        # directory by Docker; keep the database inside it in that case.
        p = os.path.abspath(self.db_path)
        if os.path.isdir(p):
            p = os.path.join(p, "ssr.db")
        parent = os.path.dirname(p)
        if parent and not os.path.exists(parent):
            os.makedirs(parent, exist_ok=True)
        return p

    def connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._resolve_db_path(), check_same_thread=False, timeout=10)
        conn.row_factory = sqlite3.Row
        return conn

    def init(self) -> None:
        """Create tables if they do not exist."""
        with self.connect() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS runs (
                  id INTEGER PRIMARY KEY AUTOINCREMENT,
                  action TEXT NOT NULL,
                  started_at TEXT NOT NULL,
                  finished_at TEXT,
                  status TEXT NOT NULL, -- running|ok|failed|aborted
                  summary TEXT
                );

                CREATE TABLE IF NOT EXISTS events (
                  id INTEGER PRIMARY KEY AUTOINCREMENT,
                  ts TEXT NOT NULL,
                  level TEXT NOT NULL,
                  run_id INTEGER,
                  service_name TEXT,
                  stage TEXT,
                  message TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_events_run_id ON events(run_id);
                """
            )

    def start_run(self, action: str) -> int:
        with self.connect() as conn:
            cur = conn.execute(
                "INSERT INTO runs (action, started_at, status) VALUES (?, ?, ?)",
                (action, utc_now(), "running"),
            )
            return int(cur.lastrowid)

    def finish_run(self, run_id: int, status: str, summary: dict[str, Any]) -> None:
        with self.connect() as conn:
            conn.execute(
                "UPDATE runs SET finished_at=?, status=?, summary=? WHERE id=?",
                (utc_now(), status, json.dumps(summary), run_id),
            )

    def get_run(self, run_id: int) -> dict[str, Any] | None:
        with self.connect() as conn:
            row = conn.execute("SELECT * FROM runs WHERE id=?", (run_id,)).fetchone()
        if not row:
            return None
        out = dict(row)
        out["summary"] = json.loads(out["summary"]) if out["summary"] else None
        return out

    def log_event(
        self,
        level: str,
        message: str,
        run_id: int | None = None,
        service_name: str | None = None,
        stage: str | None = None,
    ) -> None:
        with self.connect() as conn:
            conn.execute(
                "INSERT INTO events (ts, level, run_id, service_name, stage, message) VALUES (?, ?, ?, ?, ?, ?)",
                (utc_now(), level.upper(), run_id, service_name, stage, message),
            )

    def latest_events(self, limit: int = 100, run_id: int | None = None) -> list[dict[str, Any]]:
        with self.connect() as conn:
            if run_id is not None:
                rows = conn.execute(
                    "SELECT * FROM events WHERE run_id=? ORDER BY id DESC LIMIT ?", (run_id, limit)
                ).fetchall()
            else:
                rows = conn.execute("SELECT * FROM events ORDER BY id DESC LIMIT ?", (limit,)).fetchall()
        return [dict(r) for r in rows]
