import os
import sqlite3


class Database:

    @staticmethod
    def ensure_dir(path):
        """Create the parent directory of a database/file path if needed"""
        db_dir = os.path.dirname(path)
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)

    @staticmethod
    def connect(path, row_factory=False):
        """
        Open a SQLite connection.

        Use as ``with Database.connect(path) as conn`` for a committed
        transaction; the caller still owns closing it.
        """
        conn = sqlite3.connect(path, timeout=10)
        if row_factory:
            conn.row_factory = sqlite3.Row
        return conn
