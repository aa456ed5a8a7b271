"""
SQLite database for ConfDB.

This module owns the single SQLite file that stores:
- Namespaces (app_id, cluster_name, namespace_name -> id)
- Items with their ordering and soft-delete flag
- Audit records for every committed mutation

Invariants:
    - All write operations run inside transaction() (BEGIN IMMEDIATE)
    - Audit rows are written on the same connection as the mutation they describe
    - Rows are never physically deleted from items or audits

How to change safely:
    - Schema migrations must be backward compatible
    - Bump SCHEMA_VERSION and add an idempotent migration step

Table schema:
    namespaces:
        - id INTEGER PRIMARY KEY
        - app_id, cluster_name, namespace_name TEXT
        - created_by TEXT, created_at INTEGER (Unix ms)
        - UNIQUE (app_id, cluster_name, namespace_name)

    items:
        - id INTEGER PRIMARY KEY
        - namespace_id INTEGER
        - item_key, item_value, comment TEXT
        - line_num INTEGER
        - deleted INTEGER (0/1)
        - created_by, last_modified_by TEXT
        - created_at, last_modified_at INTEGER (Unix ms)

    audits:
        - id INTEGER PRIMARY KEY
        - entity_name TEXT, entity_id INTEGER
        - op TEXT (INSERT, UPDATE, DELETE)
        - operator TEXT, created_at INTEGER
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

logger = logging.getLogger(__name__)


class Database:
    """Connection factory and unit-of-work scope for the ConfDB SQLite file.

    Thread safety:
        Each database connection is created per-operation.
        SQLite handles concurrent access via WAL mode.

    Example:
        >>> db = Database("/var/lib/confdb/confdb.db")
        >>> db.initialize()
        >>> with db.transaction() as conn:
        ...     conn.execute("UPDATE items SET deleted = 1 WHERE id = ?", (7,))
    """

    SCHEMA_VERSION = 1

    def __init__(
        self,
        path: str | Path,
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
        cache_size_pages: int = -64000,
    ) -> None:
        """Initialize the database.

        Args:
            path: SQLite database file path
            wal_mode: Enable SQLite WAL mode
            busy_timeout_ms: SQLite busy timeout
            cache_size_pages: SQLite cache size (negative = KB)
        """
        self.path = Path(path)
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms
        self.cache_size_pages = cache_size_pages

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        """Open a configured autocommit connection.

        Yields:
            SQLite connection
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(
            str(self.path),
            timeout=self.busy_timeout_ms / 1000.0,
            isolation_level=None,  # Autocommit by default, explicit transactions
        )
        conn.row_factory = sqlite3.Row

        try:
            conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            conn.execute(f"PRAGMA cache_size = {self.cache_size_pages}")
            if self.wal_mode:
                conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")
            conn.execute("PRAGMA foreign_keys = ON")

            yield conn
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run a block as one atomic unit of work.

        The write lock is taken up front so a read of the current state
        followed by a write cannot interleave with another writer.

        Yields:
            SQLite connection inside an open transaction

        Raises:
            Any exception raised inside the block, after rolling back
        """
        with self.connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
                conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise

    def initialize(self) -> None:
        """Create the schema if it does not exist."""
        with self.connect() as conn:
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY,
                    applied_at INTEGER NOT NULL
                );

                CREATE TABLE IF NOT EXISTS namespaces (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    app_id TEXT NOT NULL,
                    cluster_name TEXT NOT NULL,
                    namespace_name TEXT NOT NULL,
                    created_by TEXT NOT NULL DEFAULT '',
                    created_at INTEGER NOT NULL,
                    UNIQUE (app_id, cluster_name, namespace_name)
                );

                CREATE TABLE IF NOT EXISTS items (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    namespace_id INTEGER NOT NULL,
                    item_key TEXT NOT NULL DEFAULT '',
                    item_value TEXT NOT NULL DEFAULT '',
                    comment TEXT NOT NULL DEFAULT '',
                    line_num INTEGER NOT NULL,
                    deleted INTEGER NOT NULL DEFAULT 0,
                    created_by TEXT NOT NULL DEFAULT '',
                    created_at INTEGER NOT NULL,
                    last_modified_by TEXT NOT NULL DEFAULT '',
                    last_modified_at INTEGER NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_items_namespace
                    ON items(namespace_id, deleted, line_num);
                CREATE INDEX IF NOT EXISTS idx_items_key ON items(item_key, deleted);
                CREATE INDEX IF NOT EXISTS idx_items_modified
                    ON items(namespace_id, last_modified_at);

                CREATE TABLE IF NOT EXISTS audits (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    entity_name TEXT NOT NULL,
                    entity_id INTEGER NOT NULL,
                    op TEXT NOT NULL,
                    operator TEXT NOT NULL DEFAULT '',
                    created_at INTEGER NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_audits_entity ON audits(entity_name, entity_id);

                INSERT OR IGNORE INTO schema_version (version, applied_at)
                VALUES (1, strftime('%s', 'now') * 1000);
            """)
        logger.info(f"Initialized database: {self.path}")
