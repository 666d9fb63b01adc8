"""
SQLite storage for Toolsmith.

A single SQLite database holds the capability catalog, the builder relay,
capability secrets and storage, and the assistant's memories.

Design Principles:
    - One connection per process, guarded by a re-entrant lock
    - Explicit transactions (BEGIN IMMEDIATE) for read-then-write operations
    - Secrets and storage cascade with their capability
    - Relay rows are append-only apart from the consumed flag

Tables:
    - capabilities: Catalog entries and lifecycle status
    - relay_messages: Directional mailbox between session and builder
    - capability_secrets: Encrypted per-capability credentials
    - capability_storage: Per-capability JSON scratch space
    - memories: Facts remembered about the user
"""

import json
import sqlite3
import threading
import uuid
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Generator, Iterable

import structlog

from toolsmith.errors import StorageConnectionError, StorageReadError, StorageWriteError

logger = structlog.get_logger(__name__)

# Schema version for migrations
SCHEMA_VERSION = 1

CREATE_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY,
    applied_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS capabilities (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL UNIQUE,
    description TEXT NOT NULL,
    version INTEGER NOT NULL DEFAULT 1,
    status TEXT NOT NULL CHECK(status IN ('building', 'active', 'failed', 'disabled')),
    input_schema TEXT NOT NULL DEFAULT '{}',
    output_schema TEXT NOT NULL DEFAULT '{}',
    tags TEXT NOT NULL DEFAULT '[]',
    path TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS relay_messages (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    id TEXT NOT NULL UNIQUE,
    build_id TEXT NOT NULL,
    direction TEXT NOT NULL CHECK(direction IN ('to_user', 'to_builder')),
    kind TEXT NOT NULL CHECK(kind IN (
        'question', 'answer', 'progress', 'complete', 'error',
        'secret_request', 'secret_response'
    )),
    payload TEXT NOT NULL DEFAULT '{}',
    consumed INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS capability_secrets (
    capability_id TEXT NOT NULL,
    key TEXT NOT NULL,
    encrypted_value TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    PRIMARY KEY (capability_id, key),
    FOREIGN KEY (capability_id) REFERENCES capabilities(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS capability_storage (
    capability_id TEXT NOT NULL,
    key TEXT NOT NULL,
    value TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    PRIMARY KEY (capability_id, key),
    FOREIGN KEY (capability_id) REFERENCES capabilities(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS memories (
    id TEXT PRIMARY KEY,
    content TEXT NOT NULL,
    tier TEXT NOT NULL CHECK(tier IN ('short_term', 'long_term')),
    tags TEXT NOT NULL DEFAULT '[]',
    priority REAL NOT NULL DEFAULT 0.5,
    decay_rate REAL NOT NULL DEFAULT 0.01,
    created_at TEXT NOT NULL,
    last_accessed TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_capabilities_status ON capabilities(status);
CREATE INDEX IF NOT EXISTS idx_relay_queue ON relay_messages(build_id, direction, consumed, seq);
CREATE INDEX IF NOT EXISTS idx_memories_priority ON memories(priority DESC);
"""


def generate_id() -> str:
    """Generate a unique ID for catalog rows, messages and memories."""
    return str(uuid.uuid4())


def now_iso() -> str:
    """Get current UTC time in ISO format."""
    return datetime.now(UTC).isoformat()


def dumps(data: Any) -> str:
    """Serialize a value for a JSON column."""
    return json.dumps(data, default=str)


class ToolsmithDB:
    """
    SQLite database for Toolsmith storage.

    Component modules (catalog, relay, secrets, storage, memory) own their
    SQL and go through execute/query/transaction so that every sqlite3
    error surfaces as a StorageError and every access is serialized.

    Usage:
        db = ToolsmithDB("toolsmith.db")
        with db.transaction():
            db.execute("UPDATE ...", (...))
        db.close()

    Or use as context manager:
        with ToolsmithDB("toolsmith.db") as db:
            ...
    """

    def __init__(self, db_path: str | Path) -> None:
        """
        Initialize the database connection.

        Args:
            db_path: Path to the SQLite database file, or ":memory:".
                     Parent directories are created if needed.
        """
        self.db_path = Path(db_path) if str(db_path) != ":memory:" else db_path
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.RLock()
        self._connect()
        self._init_schema()

    def _connect(self) -> None:
        """Establish database connection."""
        try:
            if isinstance(self.db_path, Path):
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(
                str(self.db_path),
                check_same_thread=False,
                isolation_level=None,
                timeout=30.0,
            )
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA foreign_keys = ON")
            if isinstance(self.db_path, Path):
                self._conn.execute("PRAGMA journal_mode = WAL")
            logger.debug("db.connected", path=str(self.db_path))
        except (sqlite3.Error, OSError) as e:
            raise StorageConnectionError(
                db_path=str(self.db_path),
                operation="connect",
                message=f"Failed to connect to database: {e}",
            ) from e

    def _init_schema(self) -> None:
        """Initialize database schema if needed."""
        try:
            with self._lock:
                self._conn.executescript(CREATE_TABLES_SQL)
                row = self._conn.execute(
                    "SELECT version FROM schema_version ORDER BY version DESC LIMIT 1"
                ).fetchone()
                if row is None:
                    self._conn.execute(
                        "INSERT INTO schema_version (version, applied_at) VALUES (?, ?)",
                        (SCHEMA_VERSION, now_iso()),
                    )
        except sqlite3.Error as e:
            raise StorageWriteError(
                operation="init_schema",
                underlying_error=str(e),
            ) from e

    @property
    def connection(self) -> sqlite3.Connection:
        """The underlying connection (raises if closed)."""
        if self._conn is None:
            raise StorageConnectionError(
                db_path=str(self.db_path),
                operation="connection",
                message="Database is closed",
            )
        return self._conn

    @contextmanager
    def transaction(self) -> Generator[None, None, None]:
        """
        Run a block atomically.

        Nested use joins the outer transaction. The lock is held for the
        whole block so no other thread interleaves statements.
        """
        with self._lock:
            conn = self.connection
            if conn.in_transaction:
                yield
                return
            try:
                conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as e:
                raise StorageWriteError(operation="begin", underlying_error=str(e)) from e
            try:
                yield
                conn.execute("COMMIT")
            except BaseException:
                conn.execute("ROLLBACK")
                raise

    def execute(self, sql: str, params: Iterable[Any] = (), operation: str = "execute") -> int:
        """
        Execute a write statement.

        Returns:
            Number of rows affected
        """
        with self._lock:
            try:
                cursor = self.connection.execute(sql, tuple(params))
                return cursor.rowcount
            except sqlite3.Error as e:
                raise StorageWriteError(operation=operation, underlying_error=str(e)) from e

    def query(self, sql: str, params: Iterable[Any] = (), operation: str = "query") -> list[sqlite3.Row]:
        """Run a read statement and return all rows."""
        with self._lock:
            try:
                return self.connection.execute(sql, tuple(params)).fetchall()
            except sqlite3.Error as e:
                raise StorageReadError(operation=operation, underlying_error=str(e)) from e

    def query_one(
        self, sql: str, params: Iterable[Any] = (), operation: str = "query"
    ) -> sqlite3.Row | None:
        """Run a read statement and return the first row, if any."""
        rows = self.query(sql, params, operation=operation)
        return rows[0] if rows else None

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._conn:
                self._conn.close()
                self._conn = None

    def __enter__(self) -> "ToolsmithDB":
        """Enter context manager."""
        return self

    def __exit__(self, *args: Any) -> None:
        """Exit context manager."""
        self.close()
