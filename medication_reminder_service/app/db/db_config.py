# app/db/db_config.py

import sqlite3
from pathlib import Path

from app.core.settings import DB_PATH


def get_sqlite_connection(db_path: str = DB_PATH) -> sqlite3.Connection:
    """
    Create and configure SQLite connection with recommended PRAGMA settings.
    Transactions are managed explicitly by the store (autocommit mode).
    """
    if db_path != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(db_path, check_same_thread=False, isolation_level=None)
    conn.row_factory = sqlite3.Row

    # Performance & concurrency settings
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    conn.execute("PRAGMA busy_timeout=5000;")
    conn.execute("PRAGMA foreign_keys=ON;")

    return conn
