"""
Database connection management.
"""
import sqlite3
import logging
import threading
from pathlib import Path
from typing import Optional

from .schema import init_schema


class DBManager:
    """
    Owns the single connection to the scan result database.

    A file that SQLite cannot read is renamed to `<name>.corrupt` and a fresh
    database is created in its place, so a damaged store reads as empty.
    """

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self._conn: Optional[sqlite3.Connection] = None
        # WAL allows concurrent readers; writes are serialized here
        self._write_lock = threading.Lock()

    def connect(self) -> sqlite3.Connection:
        if self._conn:
            return self._conn

        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        logging.info(f"Connecting to database: {self.db_path}")
        try:
            self._conn = self._open()
        except sqlite3.DatabaseError as e:
            quarantine = self.db_path.with_name(self.db_path.name + ".corrupt")
            logging.error(f"Unreadable database {self.db_path} ({e}); moving it to {quarantine}")
            self.db_path.replace(quarantine)
            self._conn = self._open()

        return self._conn

    def _open(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, check_same_thread=False)
        try:
            conn.execute("PRAGMA journal_mode=WAL;")
            conn.execute("PRAGMA synchronous=NORMAL;")
            conn.execute("PRAGMA temp_store=MEMORY;")
            conn.execute("PRAGMA foreign_keys=ON;")
            init_schema(conn)
        except sqlite3.DatabaseError:
            conn.close()
            raise
        return conn

    def close(self):
        if self._conn:
            self._conn.close()
            self._conn = None

    def __enter__(self):
        return self.connect()

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    @property
    def write_lock(self) -> threading.Lock:
        return self._write_lock
