from __future__ import annotations

import json
import os
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from .settings import settings


def utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _resolve_db_path(path: str) -> str:
    """Return a file path usable by sqlite.

    If the configured path is a directory (Docker creates one when a missing
    bind-mounted file is mounted), the DB file is placed inside it.
    """
    p = os.path.abspath(path)

    if os.path.isdir(p):
        p = os.path.join(p, "drc.db")

    parent = os.path.dirname(p)
    if parent and not os.path.exists(parent):
        os.makedirs(parent, exist_ok=True)

    return p


@dataclass(frozen=True)
class ObservedState:
    """What the daemon actually holds for a resource after its last successful apply."""

    resource_id: str
    kind: str
    attributes: dict[str, Any]
    outputs: dict[str, Any]
    depends_on: list[str] = field(default_factory=list)
    updated_at: str = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "resource_id": self.resource_id,
            "kind": self.kind,
            "attributes": self.attributes,
            "outputs": self.outputs,
            "depends_on": self.depends_on,
            "updated_at": self.updated_at,
        }


class StateStore:
    """Last observed state per resource id, persisted in SQLite.

    Reads are served from an in-memory cache loaded once; writes go through
    to the database immediately. One writer per reconciliation run.
    """

    def __init__(self, db_path: str | None = None):
        self.db_path = _resolve_db_path(db_path or settings.db_path)
        self._cache: dict[str, ObservedState] | None = None

    def connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    def init_db(self) -> None:
        """Create tables if they do not exist."""
        with self.connect() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS resources (
                  resource_id TEXT PRIMARY KEY,
                  kind TEXT NOT NULL,
                  attributes TEXT NOT NULL, -- json
                  outputs TEXT NOT NULL, -- json
                  depends_on TEXT NOT NULL, -- json list of resource ids
                  updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS events (
                  id INTEGER PRIMARY KEY AUTOINCREMENT,
                  ts TEXT NOT NULL,
                  level TEXT NOT NULL,
                  resource_id TEXT,
                  message TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_events_ts ON events(ts);
                """
            )

    def _load(self) -> dict[str, ObservedState]:
        if self._cache is None:
            self.init_db()
            with self.connect() as conn:
                rows = conn.execute("SELECT * FROM resources ORDER BY resource_id").fetchall()
            self._cache = {r["resource_id"]: _row_to_state(r) for r in rows}
        return self._cache

    def reload(self) -> None:
        self._cache = None

    def get(self, resource_id: str) -> ObservedState | None:
        return self._load().get(resource_id)

    def list_states(self) -> list[ObservedState]:
        return list(self._load().values())

    def put(self, state: ObservedState) -> None:
        cache = self._load()
        with self.connect() as conn:
            conn.execute(
                """
                INSERT INTO resources (resource_id, kind, attributes, outputs, depends_on, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(resource_id) DO UPDATE SET
                  kind=excluded.kind,
                  attributes=excluded.attributes,
                  outputs=excluded.outputs,
                  depends_on=excluded.depends_on,
                  updated_at=excluded.updated_at
                """,
                (
                    state.resource_id,
                    state.kind,
                    json.dumps(state.attributes, sort_keys=True),
                    json.dumps(state.outputs, sort_keys=True),
                    json.dumps(state.depends_on),
                    state.updated_at,
                ),
            )
        cache[state.resource_id] = state

    def delete(self, resource_id: str) -> None:
        cache = self._load()
        with self.connect() as conn:
            conn.execute("DELETE FROM resources WHERE resource_id=?", (resource_id,))
        cache.pop(resource_id, None)

    def log_event(self, level: str, message: str, resource_id: str | None = None) -> None:
        self._load()
        with self.connect() as conn:
            conn.execute(
                "INSERT INTO events (ts, level, resource_id, message) VALUES (?, ?, ?, ?)",
                (utc_now(), level.upper(), resource_id, message),
            )

    def latest_events(self, limit: int = 100) -> list[dict[str, Any]]:
        self._load()
        with self.connect() as conn:
            rows = conn.execute("SELECT * FROM events ORDER BY id DESC LIMIT ?", (limit,)).fetchall()
            return [dict(r) for r in rows]

    def prune_events(self, keep: int | None = None) -> int:
        """Drop all but the newest `keep` events. Returns the number removed."""
        keep = settings.keep_events if keep is None else max(0, int(keep))
        self._load()
        with self.connect() as conn:
            cur = conn.execute(
                "DELETE FROM events WHERE id NOT IN (SELECT id FROM events ORDER BY id DESC LIMIT ?)",
                (keep,),
            )
            return cur.rowcount


def _row_to_state(row: sqlite3.Row) -> ObservedState:
    return ObservedState(
        resource_id=row["resource_id"],
        kind=row["kind"],
        attributes=json.loads(row["attributes"]),
        outputs=json.loads(row["outputs"]),
        depends_on=json.loads(row["depends_on"]),
        updated_at=row["updated_at"],
    )
