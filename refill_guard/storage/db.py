"""
Database connection management.

Provides SQLite connections for inventory and outbox persistence.
"""

import sqlite3
from pathlib import Path

DEFAULT_DB_PATH = "refill_guard.db"


def get_connection(db_path: str = DEFAULT_DB_PATH) -> sqlite3.Connection:
    """Create and return a SQLite database connection with foreign keys enabled.

    The parent directory is created on demand so a fresh install can point
    at a nested path.

    Args:
        db_path: Path to SQLite database file

    Returns:
        SQLite connection with foreign key constraints enabled

    Raises:
        sqlite3.OperationalError: If the database or its directory cannot be opened
    """
    path = Path(db_path)
    if path.parent and not path.parent.exists():
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise sqlite3.OperationalError(f"unable to create directory {path.parent}: {e}") from e
    conn = sqlite3.connect(str(path))
    conn.execute("PRAGMA foreign_keys = ON")
    return conn
