# logging_config.py

import logging
import re
import sqlite3
import sys
from contextlib import closing
from datetime import datetime, timezone

MAX_LOG_ENTRIES = 10000  # Maximum number of log entries to keep
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

PRIVATE_KEY_PATTERN = re.compile(
    r"-----BEGIN [A-Z0-9 ]*PRIVATE KEY-----.*?(?:-----END [A-Z0-9 ]*PRIVATE KEY-----|$)",
    re.DOTALL,
)
REDACTED = "[REDACTED PRIVATE KEY]"

# Marks handlers installed by setup_logging so repeated calls replace them.
_HANDLER_FLAG = "_auto_brancher_handler"


class RedactPrivateKeyFilter(logging.Filter):
    """Strips PEM/OpenSSH private key blocks from log records before they are emitted."""

    def filter(self, record):
        message = record.getMessage()
        if "PRIVATE KEY" in message:
            record.msg = PRIVATE_KEY_PATTERN.sub(REDACTED, message)
            record.args = None
        if record.exc_text and "PRIVATE KEY" in record.exc_text:
            record.exc_text = PRIVATE_KEY_PATTERN.sub(REDACTED, record.exc_text)
        return True


class SQLiteHandler(logging.Handler):
    def __init__(self, db_path, max_entries=MAX_LOG_ENTRIES):
        super().__init__()
        self.db_path = db_path
        self.max_entries = max_entries
        self.create_table()

    def create_table(self):
        """Creates the logs table if it doesn't exist."""
        with closing(sqlite3.connect(self.db_path)) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS logs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    timestamp TEXT NOT NULL,
                    level TEXT NOT NULL,
                    message TEXT NOT NULL,
                    module TEXT,
                    exception TEXT
                )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_logs_id ON logs (id DESC)")
            conn.commit()

    def emit(self, record):
        """Stores the record and trims the table down to max_entries."""
        try:
            exception = record.exc_text
            if record.exc_info and not exception:
                exception = logging.Formatter().formatException(record.exc_info)
                exception = PRIVATE_KEY_PATTERN.sub(REDACTED, exception)

            with closing(sqlite3.connect(self.db_path)) as conn:
                conn.execute("""
                    INSERT INTO logs (timestamp, level, message, module, exception)
                    VALUES (:timestamp, :level, :message, :module, :exception)
                """, {
                    "timestamp": datetime.now(timezone.utc).isoformat(),
                    "level": record.levelname,
                    "message": record.getMessage(),
                    "module": record.module,
                    "exception": exception,
                })
                count = conn.execute("SELECT COUNT(*) FROM logs").fetchone()[0]
                if count > self.max_entries:
                    conn.execute("""
                        DELETE FROM logs
                        WHERE id IN (SELECT id FROM logs ORDER BY id ASC LIMIT ?)
                    """, (count - self.max_entries,))
                conn.commit()
        except Exception:
            self.handleError(record)


def setup_logging(debug_mode: bool = False, log_db_path: str = "", console: bool = True):
    """
    Configure the root logger with a console handler and, if `log_db_path` is set, a
    SQLite handler that keeps the last MAX_LOG_ENTRIES records.

    Safe to call on every invocation: handlers from a previous call are replaced.
    Pass console=False where the platform already owns a root handler (Lambda); the
    redaction filter is attached to that handler instead.
    """
    level = logging.DEBUG if debug_mode else logging.INFO
    logger = logging.getLogger()
    logger.setLevel(level)

    for handler in list(logger.handlers):
        if getattr(handler, _HANDLER_FLAG, False):
            logger.removeHandler(handler)
            handler.close()

    redact = RedactPrivateKeyFilter()
    formatter = logging.Formatter(LOG_FORMAT)

    for handler in logger.handlers:
        if not any(isinstance(f, RedactPrivateKeyFilter) for f in handler.filters):
            handler.addFilter(redact)

    if console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        console_handler.addFilter(redact)
        setattr(console_handler, _HANDLER_FLAG, True)
        logger.addHandler(console_handler)

    if log_db_path:
        sqlite_handler = SQLiteHandler(db_path=log_db_path, max_entries=MAX_LOG_ENTRIES)
        sqlite_handler.setLevel(level)
        sqlite_handler.setFormatter(formatter)
        sqlite_handler.addFilter(redact)
        setattr(sqlite_handler, _HANDLER_FLAG, True)
        logger.addHandler(sqlite_handler)

    # boto and paramiko are chatty at DEBUG.
    for noisy in ("botocore", "boto3", "urllib3", "paramiko"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
