"""SQLite connection and schema setup for the tour and master-data documents."""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).parent / "migrations" / "sqlite"


def connect_sqlite(path: str | Path = ":memory:") -> sqlite3.Connection:
    # The API serves requests from a thread pool over one shared connection.
    conn = sqlite3.connect(path, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    return conn


def applied_migrations(conn: sqlite3.Connection) -> list[str]:
    conn.execute(
        "CREATE TABLE IF NOT EXISTS schema_migration (name TEXT PRIMARY KEY, applied_at TEXT NOT NULL)"
    )
    return [row["name"] for row in conn.execute("SELECT name FROM schema_migration ORDER BY name")]


def apply_migrations(conn: sqlite3.Connection, migrations_dir: str | Path = MIGRATIONS_DIR) -> list[str]:
    """Run every ``*.sql`` file not yet recorded, in file-name order.

    Returns the names applied by this call.
    """
    done = set(applied_migrations(conn))
    applied = []
    for path in sorted(Path(migrations_dir).glob("*.sql")):
        if path.name in done:
            continue
        conn.executescript(path.read_text(encoding="utf-8"))
        with conn:
            conn.execute(
                "INSERT INTO schema_migration(name, applied_at) VALUES (?, CURRENT_TIMESTAMP)",
                (path.name,),
            )
        logger.info("Applied migration %s", path.name)
        applied.append(path.name)
    return applied


def open_tour_database(path: str | Path = ":memory:") -> sqlite3.Connection:
    """Connect to the tour database and bring its schema up to date."""
    conn = connect_sqlite(path)
    apply_migrations(conn)
    return conn
