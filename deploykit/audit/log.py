"""AuditLog — tamper-evident record of deployment events, kept in SQLite."""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from deploykit.audit.hasher import Hasher

logger = logging.getLogger(__name__)

_TABLE = "deployment_events"

_DDL = f"""\
CREATE TABLE IF NOT EXISTS {_TABLE} (
    seq          INTEGER PRIMARY KEY AUTOINCREMENT,
    recorded_at  TEXT NOT NULL,
    actor        TEXT NOT NULL,
    action       TEXT NOT NULL,
    environment  TEXT NOT NULL DEFAULT '',
    version      TEXT NOT NULL DEFAULT '',
    details      TEXT NOT NULL DEFAULT '{{}}',
    digest       TEXT NOT NULL,
    prev_digest  TEXT NOT NULL DEFAULT ''
);
CREATE INDEX IF NOT EXISTS idx_{_TABLE}_env ON {_TABLE} (environment, version);
"""

# Filter keyword -> column
_FILTERS = {
    "environment": "environment",
    "version": "version",
    "action": "action",
    "actor": "actor",
}


class AuditEntry(BaseModel):
    """One deployment event as stored in the log."""

    id: int = 0
    timestamp: str = ""
    actor: str = ""
    action: str = ""
    environment: str = ""
    version: str = ""
    details: dict[str, Any] = Field(default_factory=dict)
    entry_hash: str = ""
    prev_entry_hash: str = ""


def _digest(row: dict[str, str], prev: str) -> str:
    fields = ("recorded_at", "actor", "action", "environment", "version", "details")
    return Hasher.hash_string("\x1f".join([row[f] for f in fields] + [prev]))


def _to_entry(row: sqlite3.Row) -> AuditEntry:
    return AuditEntry(
        id=row["seq"],
        timestamp=row["recorded_at"],
        actor=row["actor"],
        action=row["action"],
        environment=row["environment"],
        version=row["version"],
        details=json.loads(row["details"] or "{}"),
        entry_hash=row["digest"],
        prev_entry_hash=row["prev_digest"],
    )


class AuditLog:
    """Append-only deployment event log.

    Every row stores a digest of its own fields chained to the digest of the
    row before it, so editing or deleting a stored event breaks
    :meth:`verify_chain`.

    Parameters
    ----------
    db_path:
        SQLite database file, or ``':memory:'``.
    """

    def __init__(self, db_path: str | Path = ":memory:") -> None:
        self.db_path = str(db_path)
        in_memory = self.db_path == ":memory:"
        if not in_memory:
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        if not in_memory:
            self._conn.execute("PRAGMA journal_mode=WAL")
        with self._conn:
            self._conn.executescript(_DDL)

    def record(
        self,
        actor: str,
        action: str,
        environment: str = "",
        version: str = "",
        details: dict[str, Any] | None = None,
    ) -> AuditEntry:
        """Append one event, chained to the previous one."""
        row = {
            "recorded_at": datetime.now(timezone.utc).isoformat(),
            "actor": actor,
            "action": action,
            "environment": environment,
            "version": version,
            "details": json.dumps(details or {}, sort_keys=True, default=str),
        }
        with self._lock, self._conn:
            last = self._conn.execute(
                f"SELECT digest FROM {_TABLE} ORDER BY seq DESC LIMIT 1"
            ).fetchone()
            row["prev_digest"] = last["digest"] if last else ""
            row["digest"] = _digest(row, row["prev_digest"])
            columns = ", ".join(row)
            cur = self._conn.execute(
                f"INSERT INTO {_TABLE} ({columns}) VALUES ({', '.join('?' * len(row))})",
                tuple(row.values()),
            )
            stored = self._conn.execute(
                f"SELECT * FROM {_TABLE} WHERE seq = ?", (cur.lastrowid,)
            ).fetchone()

        logger.debug("Audit: %s %s %s@%s", actor or "-", action, version, environment)
        return _to_entry(stored)

    def verify_chain(self) -> bool:
        """Return False if any stored event was altered, removed, or reordered."""
        with self._lock:
            rows = self._conn.execute(f"SELECT * FROM {_TABLE} ORDER BY seq").fetchall()

        prev = ""
        for row in rows:
            if row["prev_digest"] != prev or _digest(dict(row), prev) != row["digest"]:
                logger.warning("Audit chain broken at event %d", row["seq"])
                return False
            prev = row["digest"]
        return True

    def entries(self, since: str | None = None, **filters: str | None) -> list[AuditEntry]:
        """Events in order, narrowed by ``environment``, ``version``,
        ``action``, ``actor`` and an ISO timestamp lower bound *since*.
        """
        unknown = set(filters) - set(_FILTERS)
        if unknown:
            raise TypeError(f"Unknown audit filter(s): {', '.join(sorted(unknown))}")

        clauses = [f"{_FILTERS[k]} = ?" for k, v in filters.items() if v is not None]
        params: list[str] = [v for v in filters.values() if v is not None]
        if since is not None:
            clauses.append("recorded_at >= ?")
            params.append(since)

        sql = f"SELECT * FROM {_TABLE}"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        with self._lock:
            rows = self._conn.execute(sql + " ORDER BY seq", params).fetchall()
        return [_to_entry(r) for r in rows]

    def export_json(self) -> str:
        return json.dumps([e.model_dump() for e in self.entries()], indent=2)

    def close(self) -> None:
        self._conn.close()
