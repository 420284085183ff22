"""SQLite connection management with context manager."""

import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path


class DatabaseConnection:
    """Manages SQLite connections for the local report cache.

    Timer threads (autosave, heartbeat) write through the same database,
    so writes are serialized with a process-level lock.
    """

    def __init__(self, db_path: str | Path):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._write_lock = threading.RLock()

    @property
    def write_lock(self) -> threading.RLock:
        """Hold across several statements that must not interleave."""
        return self._write_lock

    @contextmanager
    def get_connection(self):
        """Yield a connection that auto-commits or rolls back."""
        with self._write_lock:
            conn = sqlite3.connect(str(self.db_path), timeout=10)
            conn.row_factory = sqlite3.Row
            try:
                yield conn
                conn.commit()
            except Exception:
                conn.rollback()
                raise
            finally:
                conn.close()

    def execute(self, sql: str, params: tuple = ()):
        """Run a single statement and return all fetched rows."""
        with self.get_connection() as conn:
            cursor = conn.execute(sql, params)
            return cursor.fetchall()

    def execute_script(self, sql_script: str):
        """Run a multi-statement SQL script."""
        with self.get_connection() as conn:
            conn.executescript(sql_script)
