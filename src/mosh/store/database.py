"""SQLite connection and schema for snapshot storage."""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path

logger = logging.getLogger(__name__)

MEMORY_DATABASE = ":memory:"

SCHEMA = """
CREATE TABLE IF NOT EXISTS snapshots (
    id TEXT PRIMARY KEY,
    notes TEXT DEFAULT '',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS photos (
    id TEXT PRIMARY KEY,
    snapshot_id TEXT NOT NULL,
    type TEXT NOT NULL CHECK (type IN ('front', 'top')),
    image_data TEXT NOT NULL,
    created_at TEXT NOT NULL,
    FOREIGN KEY (snapshot_id) REFERENCES snapshots(id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_photos_snapshot_id ON photos(snapshot_id);
CREATE INDEX IF NOT EXISTS idx_snapshots_created_at ON snapshots(created_at DESC);
"""


def connect(database_path: Path | str) -> sqlite3.Connection:
    """Open the database, creating its directory and schema if needed."""
    if str(database_path) != MEMORY_DATABASE:
        Path(database_path).parent.mkdir(parents=True, exist_ok=True)

    # Shared across FastAPI's worker threads; callers serialize access.
    conn = sqlite3.connect(str(database_path), check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    conn.executescript(SCHEMA)
    logger.info("Opened snapshot database at %s", database_path)
    return conn
