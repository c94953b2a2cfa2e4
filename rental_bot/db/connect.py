from __future__ import annotations

import sqlite3
from pathlib import Path

SCHEMA = """
CREATE TABLE IF NOT EXISTS tools (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'available',
    price REAL,
    duration_minutes REAL,
    rates TEXT,
    updated_at TEXT DEFAULT CURRENT_TIMESTAMP
);
"""


def get_conn(path: Path) -> sqlite3.Connection:
    db_path = Path(path)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    con = sqlite3.connect(db_path, timeout=10)
    con.row_factory = sqlite3.Row
    con.execute("PRAGMA journal_mode=WAL;")
    return con


def init_db(path: Path) -> None:
    con = get_conn(path)
    try:
        con.executescript(SCHEMA)
        con.commit()
    finally:
        con.close()
