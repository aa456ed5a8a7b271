"""
Audit log for ConfDB.

Append-only record of "who did what to which entity". Writes always go
through the caller's transaction connection, so an audit row exists if and
only if the mutation it describes was committed.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from .database import Database
from .item_store import now_ms

logger = logging.getLogger(__name__)


class AuditOp(Enum):
    """Audited operation kinds."""

    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


@dataclass(frozen=True)
class Audit:
    """An immutable audit entry.

    Attributes:
        id: Audit row id
        entity_name: Kind of entity ("Item", "Namespace")
        entity_id: Id of the affected entity
        op: Operation kind
        operator: Actor that performed the operation
        created_at: Timestamp (Unix ms)
    """

    id: int
    entity_name: str
    entity_id: int
    op: AuditOp
    operator: str
    created_at: int

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> Audit:
        return cls(
            id=row["id"],
            entity_name=row["entity_name"],
            entity_id=row["entity_id"],
            op=AuditOp(row["op"]),
            operator=row["operator"],
            created_at=row["created_at"],
        )


class AuditStore:
    """SQLite-backed audit recorder."""

    def __init__(self, db: Database, clock: Callable[[], int] = now_ms) -> None:
        self._db = db
        self._clock = clock

    async def audit(
        self,
        conn: sqlite3.Connection,
        entity_name: str,
        entity_id: int,
        op: AuditOp,
        operator: str,
    ) -> Audit:
        """Append an audit entry on the caller's transaction.

        Args:
            conn: Connection of the enclosing transaction
            entity_name: Kind of entity
            entity_id: Id of the affected entity
            op: Operation kind
            operator: Actor performing the operation

        Returns:
            The recorded entry
        """
        now = self._clock()
        cursor = conn.execute(
            """
            INSERT INTO audits (entity_name, entity_id, op, operator, created_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (entity_name, entity_id, op.value, operator, now),
        )
        logger.debug(
            "Recorded audit",
            extra={
                "entity_name": entity_name,
                "entity_id": entity_id,
                "op": op.value,
                "operator": operator,
            },
        )
        return Audit(
            id=cursor.lastrowid,
            entity_name=entity_name,
            entity_id=entity_id,
            op=op,
            operator=operator,
            created_at=now,
        )

    async def find_audits(self, entity_name: str, entity_id: int | None = None) -> list[Audit]:
        """List audit entries for an entity kind, optionally for one entity."""
        with self._db.connect() as conn:
            if entity_id is not None:
                cursor = conn.execute(
                    "SELECT * FROM audits WHERE entity_name = ? AND entity_id = ? ORDER BY id",
                    (entity_name, entity_id),
                )
            else:
                cursor = conn.execute(
                    "SELECT * FROM audits WHERE entity_name = ? ORDER BY id",
                    (entity_name,),
                )
            return [Audit.from_row(row) for row in cursor.fetchall()]

    async def count(self) -> int:
        """Count all audit entries."""
        with self._db.connect() as conn:
            return conn.execute("SELECT COUNT(*) FROM audits").fetchone()[0]
