"""
Centralized logging service for the Subscribely application.
Provides structured logging with database storage and easy integration.
"""

import json
import logging
from datetime import datetime, timedelta, timezone
from flask import request, has_request_context
from .database import Database
from .config import Config, get_config_value

_stdout = logging.getLogger('subscribely')


class LoggingService:
    """Centralized logging service for application-wide logging"""

    @staticmethod
    def _db_path():
        return get_config_value('LOGS_DB', Config.LOGS_DB)

    @staticmethod
    def _ensure_logs_table(db_path):
        """Ensure the app_logs table exists"""
        Database.ensure_dir(db_path)
        with Database.connect(db_path) as conn:
            cursor = conn.cursor()
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS app_logs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    timestamp TEXT NOT NULL,
                    level TEXT NOT NULL,
                    source TEXT NOT NULL,
                    message TEXT NOT NULL,
                    details TEXT,
                    ip_address TEXT,
                    user_agent TEXT,
                    request_path TEXT
                )
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_logs_timestamp
                ON app_logs(timestamp DESC)
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_logs_level
                ON app_logs(level)
            """)
            conn.commit()
        conn.close()

    @staticmethod
    def _get_request_context():
        """Extract request context information"""
        if not has_request_context():
            return None, None, None

        ip_address = request.headers.get('X-Forwarded-For', request.remote_addr)
        if ip_address and ',' in ip_address:
            ip_address = ip_address.split(',')[0].strip()

        user_agent = request.headers.get('User-Agent', '')
        return ip_address, user_agent, request.path

    @staticmethod
    def log(level, source, message, details=None):
        """
        Log a message to the database

        Args:
            level (str): Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
            source (str): Source component (subscribers, storage, etc.)
            message (str): Main log message
            details (str/dict): Additional details (will be JSON-encoded if dict)
        """
        if isinstance(details, dict):
            details = json.dumps(details, indent=2, default=str)

        try:
            db_path = LoggingService._db_path()
            LoggingService._ensure_logs_table(db_path)
            ip_address, user_agent, request_path = LoggingService._get_request_context()

            with Database.connect(db_path) as conn:
                conn.execute("""
                    INSERT INTO app_logs
                    (timestamp, level, source, message, details, ip_address, user_agent, request_path)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    datetime.now(timezone.utc).isoformat(), level.upper(), source, message,
                    details, ip_address, user_agent, request_path
                ))
                conn.commit()
            conn.close()

        except Exception as e:
            # Fallback to stdout logger if database fails
            _stdout.warning(f"[{level.upper()}] [{source}] {message} (persistent log unavailable: {e})")

    @staticmethod
    def info(source, message, details=None):
        """Log info message"""
        LoggingService.log('INFO', source, message, details)

    @staticmethod
    def error(source, message, details=None):
        """Log error message"""
        LoggingService.log('ERROR', source, message, details)

    @staticmethod
    def log_error_with_traceback(source, error, details=None):
        """Log error with full traceback"""
        import traceback
        error_details = {
            'error_type': type(error).__name__,
            'error_message': str(error),
            'traceback': traceback.format_exc()
        }
        if details:
            error_details['additional_details'] = details

        LoggingService.error(source, f"Exception occurred: {type(error).__name__}", error_details)

    @staticmethod
    def recent(limit=50, source=None):
        """Return the newest log rows as dicts"""
        db_path = LoggingService._db_path()
        LoggingService._ensure_logs_table(db_path)
        query = "SELECT * FROM app_logs"
        params = []
        if source:
            query += " WHERE source = ?"
            params.append(source)
        query += " ORDER BY id DESC LIMIT ?"
        params.append(limit)

        conn = Database.connect(db_path, row_factory=True)
        try:
            return [dict(row) for row in conn.execute(query, params).fetchall()]
        finally:
            conn.close()

    @staticmethod
    def cleanup_old_logs(days_to_keep=30):
        """Clean up old log entries"""
        try:
            cutoff_iso = (datetime.now(timezone.utc) - timedelta(days=days_to_keep)).isoformat()
            db_path = LoggingService._db_path()

            with Database.connect(db_path) as conn:
                cursor = conn.cursor()
                cursor.execute("DELETE FROM app_logs WHERE timestamp < ?", (cutoff_iso,))
                deleted_count = cursor.rowcount
                conn.commit()
            conn.close()

            LoggingService.info('system', f"Cleaned up {deleted_count} old log entries")
            return deleted_count

        except Exception as e:
            LoggingService.error('system', f"Failed to cleanup old logs: {e}")
            return 0


def db_log(level, source, message, details=None):
    """Shorthand used by modules: persist a log line, never raise"""
    LoggingService.log(level, source, message, details)

