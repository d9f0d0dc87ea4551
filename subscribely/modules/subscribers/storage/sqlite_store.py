"""
SQLite Store
============

Embedded relational backend. The UNIQUE constraint on ``email`` is the
authority for deduplication; a losing concurrent insert surfaces as
DuplicateKeyError.
"""

import logging
import sqlite3
from contextlib import closing

from ....core.database import Database
from ..models import (
    DuplicateKeyError, NotFoundError, PagedRecords, StorageUnavailableError,
    Subscriber, format_timestamp,
)
from .base import check_page_args

logger = logging.getLogger(__name__)

COLUMNS = (
    'id', 'email', 'subscribed_at', 'source', 'ip_address', 'user_agent',
    'status', 'unsubscribe_token', 'created_at', 'updated_at',
)

# SQLite CURRENT_TIMESTAMP output, always UTC
LEGACY_TIMESTAMP_GLOB = '[0-9][0-9][0-9][0-9]-[0-9][0-9]-[0-9][0-9] [0-9][0-9]:[0-9][0-9]:[0-9][0-9]'


class EmbeddedSqlAdapter:
    """Subscriber storage in a local SQLite database"""

    def __init__(self, db_path, table='subscribers'):
        self.db_path = db_path
        self.table = table
        self.init_db()

    def __repr__(self):
        return f"EmbeddedSqlAdapter({self.db_path!r})"

    def _connect(self):
        return Database.connect(self.db_path, row_factory=True)

    def init_db(self):
        """Create the subscribers table and its indexes"""
        try:
            Database.ensure_dir(self.db_path)
            with closing(self._connect()) as conn:
                cursor = conn.cursor()
                cursor.execute(f'''
                    CREATE TABLE IF NOT EXISTS {self.table} (
                        id TEXT PRIMARY KEY,
                        email TEXT UNIQUE NOT NULL,
                        subscribed_at TEXT NOT NULL,
                        source TEXT DEFAULT 'emailjs-learning-tool',
                        ip_address TEXT,
                        user_agent TEXT,
                        status TEXT NOT NULL DEFAULT 'active',
                        unsubscribe_token TEXT UNIQUE,
                        created_at TEXT NOT NULL,
                        updated_at TEXT NOT NULL
                    )
                ''')
                cursor.execute(f'CREATE INDEX IF NOT EXISTS idx_{self.table}_email ON {self.table}(email)')
                cursor.execute(f'CREATE INDEX IF NOT EXISTS idx_{self.table}_subscribed_at ON {self.table}(subscribed_at)')
                cursor.execute(f'CREATE INDEX IF NOT EXISTS idx_{self.table}_status ON {self.table}(status)')
                cursor.execute(f'CREATE INDEX IF NOT EXISTS idx_{self.table}_token ON {self.table}(unsubscribe_token)')

                # Rows written with CURRENT_TIMESTAMP ("2024-01-01 10:00:00") sort before the
                # ISO "T" form; rewrite them so range filters and ordering compare correctly
                migrated = 0
                for column in ('subscribed_at', 'created_at', 'updated_at'):
                    cursor.execute(
                        f"UPDATE {self.table} SET {column} = replace({column}, ' ', 'T') || '.000000+00:00' "
                        f"WHERE {column} GLOB ?",
                        (LEGACY_TIMESTAMP_GLOB,)
                    )
                    migrated += cursor.rowcount
                conn.commit()
                if migrated:
                    logger.info(f"Normalised {migrated} legacy timestamp value(s) in {self.table}")
            logger.info(f"Subscribers table created/verified in {self.db_path}")
        except (sqlite3.Error, OSError) as e:
            raise StorageUnavailableError(f"Error initializing subscribers database: {e}") from e

    def _fetch_one(self, column, value):
        try:
            with closing(self._connect()) as conn:
                row = conn.execute(
                    f'SELECT * FROM {self.table} WHERE {column} = ?', (value,)
                ).fetchone()
        except sqlite3.Error as e:
            raise StorageUnavailableError(f"Database error reading {column}: {e}") from e
        return Subscriber.from_dict(row) if row else None

    def find_by_email(self, email):
        return self._fetch_one('email', email)

    def find_by_token(self, token):
        if not token:
            return None
        return self._fetch_one('unsubscribe_token', token)

    def insert(self, subscriber):
        row = subscriber.to_dict()
        placeholders = ', '.join('?' for _ in COLUMNS)
        try:
            with closing(self._connect()) as conn:
                conn.execute(
                    f'INSERT INTO {self.table} ({", ".join(COLUMNS)}) VALUES ({placeholders})',
                    tuple(row[c] for c in COLUMNS)
                )
                conn.commit()
        except sqlite3.IntegrityError as e:
            if 'email' in str(e):
                raise DuplicateKeyError(f"Email already stored: {subscriber.email}") from e
            raise StorageUnavailableError(f"Integrity error inserting subscriber: {e}") from e
        except sqlite3.Error as e:
            raise StorageUnavailableError(f"Database error inserting subscriber: {e}") from e
        return subscriber

    def update_status(self, email, status, updated_at):
        try:
            with closing(self._connect()) as conn:
                cursor = conn.execute(
                    f'UPDATE {self.table} SET status = ?, updated_at = ? WHERE email = ?',
                    (status, format_timestamp(updated_at), email)
                )
                conn.commit()
                if cursor.rowcount == 0:
                    raise NotFoundError(f"No subscriber with email {email}")
                row = conn.execute(
                    f'SELECT * FROM {self.table} WHERE email = ?', (email,)
                ).fetchone()
        except sqlite3.Error as e:
            raise StorageUnavailableError(f"Database error updating subscriber: {e}") from e
        return Subscriber.from_dict(row)

    def count(self, status=None, subscribed_since=None):
        where, params = _where(status, subscribed_since)
        try:
            with closing(self._connect()) as conn:
                return conn.execute(f'SELECT COUNT(*) FROM {self.table}{where}', params).fetchone()[0]
        except sqlite3.Error as e:
            raise StorageUnavailableError(f"Database error counting subscribers: {e}") from e

    def list(self, page, page_size, status=None):
        offset = check_page_args(page, page_size)
        where, params = _where(status, None)
        try:
            with closing(self._connect()) as conn:
                total = conn.execute(f'SELECT COUNT(*) FROM {self.table}{where}', params).fetchone()[0]
                rows = conn.execute(
                    f'SELECT * FROM {self.table}{where} '
                    f'ORDER BY subscribed_at DESC LIMIT ? OFFSET ?',
                    params + [page_size, offset]
                ).fetchall()
        except sqlite3.Error as e:
            raise StorageUnavailableError(f"Database error listing subscribers: {e}") from e
        return PagedRecords(records=[Subscriber.from_dict(r) for r in rows], total_count=total)

    def count_by_source(self):
        try:
            with closing(self._connect()) as conn:
                rows = conn.execute(f'''
                    SELECT
                        source,
                        COUNT(*) AS count,
                        COUNT(CASE WHEN status = 'active' THEN 1 END) AS active_count
                    FROM {self.table}
                    GROUP BY source
                    ORDER BY count DESC, source ASC
                ''').fetchall()
        except sqlite3.Error as e:
            raise StorageUnavailableError(f"Database error in source stats: {e}") from e
        return [dict(r) for r in rows]


def _where(status, subscribed_since):
    clauses, params = [], []
    if status is not None:
        clauses.append('status = ?')
        params.append(status)
    if subscribed_since is not None:
        clauses.append('subscribed_at >= ?')
        params.append(format_timestamp(subscribed_since))
    if not clauses:
        return '', params
    return ' WHERE ' + ' AND '.join(clauses), params
