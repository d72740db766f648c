from __future__ import annotations

import hashlib
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

SQLITE_CONNECT_TIMEOUT_SECONDS = 30.0
SQLITE_BUSY_TIMEOUT_MS = 30_000

OWNER_SCHEMA = """
CREATE TABLE IF NOT EXISTS links (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    owner TEXT NOT NULL,
    url TEXT NOT NULL UNIQUE,
    created_at DATETIME DEFAULT CURRENT_TIMESTAMP
);
CREATE TABLE IF NOT EXISTS link_vectors (
    id TEXT PRIMARY KEY NOT NULL,
    link_id INTEGER NOT NULL,
    FOREIGN KEY (link_id) REFERENCES links(id) ON DELETE CASCADE
);
CREATE INDEX IF NOT EXISTS idx_link_vectors_link_id ON link_vectors(link_id);
"""


def _configure_connection(conn: sqlite3.Connection) -> None:
    conn.execute("PRAGMA foreign_keys = ON;")
    conn.execute("PRAGMA journal_mode = WAL;")
    conn.execute("PRAGMA synchronous = NORMAL;")
    conn.execute(f"PRAGMA busy_timeout = {SQLITE_BUSY_TIMEOUT_MS};")


@contextmanager
def get_connection(db_path: Path) -> Iterator[sqlite3.Connection]:
    """Open a configured connection, commit on success and always close it."""
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path, timeout=SQLITE_CONNECT_TIMEOUT_SECONDS)
    conn.row_factory = sqlite3.Row
    try:
        _configure_connection(conn)
        with conn:
            yield conn
    finally:
        conn.close()


def initialize_schema(db_path: Path, schema: str) -> None:
    with get_connection(db_path) as conn:
        conn.executescript(schema)


def owner_db_path(data_dir: Path, owner: str) -> Path:
    """Each owner gets its own database file, named by a digest of the owner key."""
    digest = hashlib.sha256(owner.encode("utf-8")).hexdigest()[:32]
    return data_dir / f"{digest}.sqlite3"
