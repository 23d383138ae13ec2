"""
Database connection management.

Provides SQLite connection for ledger persistence.
"""

import sqlite3
from pathlib import Path

DEFAULT_DB_PATH = "job_quota_guard.db"
DEFAULT_BUSY_TIMEOUT = 10.0


def get_connection(
    db_path: str = DEFAULT_DB_PATH,
    timeout: float = DEFAULT_BUSY_TIMEOUT
) -> sqlite3.Connection:
    """Create and return a SQLite database connection with foreign keys enabled.

    The connection runs in autocommit mode; multi-statement work must open
    its own transaction with an explicit BEGIN.

    Args:
        db_path: Path to SQLite database file
        timeout: Seconds to wait on a locked database before failing

    Returns:
        SQLite connection with foreign key constraints enabled
    """
    path = Path(db_path)
    conn = sqlite3.connect(str(path), timeout=timeout, isolation_level=None)
    conn.execute("PRAGMA foreign_keys = ON")
    return conn
