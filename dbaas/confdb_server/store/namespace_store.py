"""
Namespace directory for ConfDB.

Maps (app_id, cluster_name, namespace_name) to a namespace id. The item
service only depends on the lookup side of this store.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Callable
from dataclasses import dataclass

from .audit_store import AuditOp, AuditStore
from .database import Database
from .item_store import now_ms

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Namespace:
    """A named scope holding an ordered collection of items."""

    id: int
    app_id: str
    cluster_name: str
    namespace_name: str
    created_by: str
    created_at: int

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> Namespace:
        return cls(
            id=row["id"],
            app_id=row["app_id"],
            cluster_name=row["cluster_name"],
            namespace_name=row["namespace_name"],
            created_by=row["created_by"],
            created_at=row["created_at"],
        )


class NamespaceStore:
    """SQLite-backed namespace directory.

    Example:
        >>> namespaces = NamespaceStore(db, audit_store)
        >>> ns = await namespaces.create_namespace("app1", "default", "application", "alice")
        >>> await namespaces.find_one("app1", "default", "application")
    """

    def __init__(
        self,
        db: Database,
        audit_store: AuditStore,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._db = db
        self._audit = audit_store
        self._clock = clock

    async def create_namespace(
        self,
        app_id: str,
        cluster_name: str,
        namespace_name: str,
        operator: str,
    ) -> Namespace:
        """Create a namespace and audit it.

        Raises:
            sqlite3.IntegrityError: If the namespace already exists
        """
        now = self._clock()
        with self._db.transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO namespaces (app_id, cluster_name, namespace_name, created_by, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (app_id, cluster_name, namespace_name, operator, now),
            )
            namespace = Namespace(
                id=cursor.lastrowid,
                app_id=app_id,
                cluster_name=cluster_name,
                namespace_name=namespace_name,
                created_by=operator,
                created_at=now,
            )
            await self._audit.audit(conn, "Namespace", namespace.id, AuditOp.INSERT, operator)

        logger.info(
            "Created namespace",
            extra={
                "namespace_id": namespace.id,
                "app_id": app_id,
                "cluster_name": cluster_name,
                "namespace_name": namespace_name,
            },
        )
        return namespace

    async def find_one(
        self, app_id: str, cluster_name: str, namespace_name: str
    ) -> Namespace | None:
        """Resolve a namespace triple, or None if it does not exist."""
        with self._db.connect() as conn:
            row = conn.execute(
                """
                SELECT * FROM namespaces
                WHERE app_id = ? AND cluster_name = ? AND namespace_name = ?
                """,
                (app_id, cluster_name, namespace_name),
            ).fetchone()
            return Namespace.from_row(row) if row else None

    async def find_by_id(self, namespace_id: int) -> Namespace | None:
        with self._db.connect() as conn:
            row = conn.execute("SELECT * FROM namespaces WHERE id = ?", (namespace_id,)).fetchone()
            return Namespace.from_row(row) if row else None
