"""
Item store for ConfDB.

Durable storage for namespace items. Soft-deleted rows stay in the table and
are filtered out of every read path except lookup by id.

Invariants:
    - Rows are never physically deleted
    - created_at/last_modified_at are stamped here, not by callers
    - An item id never changes after the first save

How to change safely:
    - Keep the `deleted = 0` filter on every namespace/key query
    - Writes accept the caller's transaction connection so they commit
      or roll back together with the audit record
"""

from __future__ import annotations

import logging
import sqlite3
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Generic, TypeVar

from .database import Database

logger = logging.getLogger(__name__)

T = TypeVar("T")


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class Item:
    """A configuration entry (or comment-only entry) within a namespace.

    Attributes:
        namespace_id: Owning namespace identifier
        key: Item key ("" for comment-only entries)
        value: Item value
        comment: Free-form annotation
        line_num: Display order within the namespace (0 = unset)
        id: Surrogate id (0 = not yet persisted)
        deleted: Soft-delete marker
        created_by: Actor who created the item
        created_at: Creation timestamp (Unix ms)
        last_modified_by: Actor who last modified the item
        last_modified_at: Last modification timestamp (Unix ms)
    """

    namespace_id: int
    key: str = ""
    value: str = ""
    comment: str = ""
    line_num: int = 0
    id: int = 0
    deleted: bool = False
    created_by: str = ""
    created_at: int = 0
    last_modified_by: str = ""
    last_modified_at: int = 0

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> Item:
        return cls(
            id=row["id"],
            namespace_id=row["namespace_id"],
            key=row["item_key"],
            value=row["item_value"],
            comment=row["comment"],
            line_num=row["line_num"],
            deleted=bool(row["deleted"]),
            created_by=row["created_by"],
            created_at=row["created_at"],
            last_modified_by=row["last_modified_by"],
            last_modified_at=row["last_modified_at"],
        )


@dataclass(frozen=True)
class PageRequest:
    """Zero-based page request."""

    page: int = 0
    size: int = 20

    def __post_init__(self) -> None:
        if self.page < 0:
            raise ValueError("Page index must not be negative")
        if self.size < 1:
            raise ValueError("Page size must be at least 1")

    @property
    def offset(self) -> int:
        return self.page * self.size


@dataclass
class Page(Generic[T]):
    """One page of a larger result set.

    Attributes:
        items: Rows on this page
        page: Zero-based page index
        size: Requested page size
        total: Total number of matching rows
    """

    items: list[T] = field(default_factory=list)
    page: int = 0
    size: int = 20
    total: int = 0

    @property
    def total_pages(self) -> int:
        return (self.total + self.size - 1) // self.size

    @property
    def has_next(self) -> bool:
        return self.page + 1 < self.total_pages


class ItemStore:
    """SQLite-backed storage for items.

    Example:
        >>> store = ItemStore(db)
        >>> with db.transaction() as conn:
        ...     item = await store.save(Item(namespace_id=1, key="a", line_num=1), conn)
        >>> await store.get_by_namespace_and_key(1, "a")
    """

    def __init__(self, db: Database, clock: Callable[[], int] = now_ms) -> None:
        """Initialize the item store.

        Args:
            db: Database to read from and write to
            clock: Returns the current time in Unix ms
        """
        self._db = db
        self._clock = clock

    @contextmanager
    def _connection(self, conn: sqlite3.Connection | None) -> Iterator[sqlite3.Connection]:
        if conn is not None:
            yield conn
        else:
            with self._db.connect() as own:
                yield own

    async def get_by_id(
        self, item_id: int, conn: sqlite3.Connection | None = None
    ) -> Item | None:
        """Get an item by id, including soft-deleted items."""
        with self._connection(conn) as c:
            row = c.execute("SELECT * FROM items WHERE id = ?", (item_id,)).fetchone()
            return Item.from_row(row) if row else None

    async def get_by_namespace_and_key(self, namespace_id: int, key: str) -> Item | None:
        """Get the live item with the given key.

        Keys are not unique, so the lowest line number wins.
        """
        with self._db.connect() as conn:
            row = conn.execute(
                """
                SELECT * FROM items
                WHERE namespace_id = ? AND item_key = ? AND deleted = 0
                ORDER BY line_num ASC, id ASC
                LIMIT 1
                """,
                (namespace_id, key),
            ).fetchone()
            return Item.from_row(row) if row else None

    async def get_last_by_namespace(
        self, namespace_id: int, conn: sqlite3.Connection | None = None
    ) -> Item | None:
        """Get the live item with the highest line number."""
        with self._connection(conn) as c:
            row = c.execute(
                """
                SELECT * FROM items
                WHERE namespace_id = ? AND deleted = 0
                ORDER BY line_num DESC, id DESC
                LIMIT 1
                """,
                (namespace_id,),
            ).fetchone()
            return Item.from_row(row) if row else None

    async def list_by_namespace(self, namespace_id: int) -> list[Item]:
        """List live items in storage order."""
        with self._db.connect() as conn:
            cursor = conn.execute(
                "SELECT * FROM items WHERE namespace_id = ? AND deleted = 0 ORDER BY id",
                (namespace_id,),
            )
            return [Item.from_row(row) for row in cursor.fetchall()]

    async def list_by_namespace_ordered(self, namespace_id: int) -> list[Item]:
        """List live items by ascending line number."""
        with self._db.connect() as conn:
            cursor = conn.execute(
                """
                SELECT * FROM items
                WHERE namespace_id = ? AND deleted = 0
                ORDER BY line_num ASC, id ASC
                """,
                (namespace_id,),
            )
            return [Item.from_row(row) for row in cursor.fetchall()]

    async def list_by_namespace_modified_after(
        self, namespace_id: int, timestamp_ms: int
    ) -> list[Item]:
        """List live items modified strictly after a timestamp."""
        with self._db.connect() as conn:
            cursor = conn.execute(
                """
                SELECT * FROM items
                WHERE namespace_id = ? AND deleted = 0 AND last_modified_at > ?
                ORDER BY id
                """,
                (namespace_id, timestamp_ms),
            )
            return [Item.from_row(row) for row in cursor.fetchall()]

    async def search_by_key(self, key: str, page: PageRequest) -> Page[Item]:
        """Find live items with an exact key across all namespaces."""
        with self._db.connect() as conn:
            total = conn.execute(
                "SELECT COUNT(*) FROM items WHERE item_key = ? AND deleted = 0", (key,)
            ).fetchone()[0]
            cursor = conn.execute(
                """
                SELECT * FROM items
                WHERE item_key = ? AND deleted = 0
                ORDER BY id
                LIMIT ? OFFSET ?
                """,
                (key, page.size, page.offset),
            )
            return Page(
                items=[Item.from_row(row) for row in cursor.fetchall()],
                page=page.page,
                size=page.size,
                total=total,
            )

    async def count_by_namespace(self, namespace_id: int) -> int:
        """Count live items in a namespace."""
        with self._db.connect() as conn:
            cursor = conn.execute(
                "SELECT COUNT(*) FROM items WHERE namespace_id = ? AND deleted = 0",
                (namespace_id,),
            )
            return cursor.fetchone()[0]

    async def save(self, item: Item, conn: sqlite3.Connection) -> Item:
        """Insert (id == 0) or update (id != 0) an item.

        Args:
            item: Item to persist
            conn: Connection of the enclosing transaction

        Returns:
            The persisted item with id and timestamps filled in
        """
        now = self._clock()
        if item.id == 0:
            cursor = conn.execute(
                """
                INSERT INTO items (namespace_id, item_key, item_value, comment, line_num,
                                   deleted, created_by, created_at,
                                   last_modified_by, last_modified_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    item.namespace_id,
                    item.key,
                    item.value,
                    item.comment,
                    item.line_num,
                    int(item.deleted),
                    item.created_by,
                    now,
                    item.last_modified_by or item.created_by,
                    now,
                ),
            )
            item_id = cursor.lastrowid
        else:
            conn.execute(
                """
                UPDATE items SET namespace_id = ?, item_key = ?, item_value = ?, comment = ?,
                                 line_num = ?, deleted = ?, last_modified_by = ?,
                                 last_modified_at = ?
                WHERE id = ?
                """,
                (
                    item.namespace_id,
                    item.key,
                    item.value,
                    item.comment,
                    item.line_num,
                    int(item.deleted),
                    item.last_modified_by,
                    now,
                    item.id,
                ),
            )
            item_id = item.id

        saved = await self.get_by_id(item_id, conn)
        if saved is None:
            raise sqlite3.IntegrityError(f"Item {item_id} missing after save")

        logger.debug(
            "Saved item",
            extra={
                "item_id": saved.id,
                "namespace_id": saved.namespace_id,
                "line_num": saved.line_num,
            },
        )
        return saved

    async def delete_by_namespace(
        self, namespace_id: int, operator: str, conn: sqlite3.Connection
    ) -> int:
        """Soft-delete every live item in a namespace.

        Returns:
            Number of rows affected
        """
        cursor = conn.execute(
            """
            UPDATE items SET deleted = 1, last_modified_by = ?, last_modified_at = ?
            WHERE namespace_id = ? AND deleted = 0
            """,
            (operator, self._clock(), namespace_id),
        )
        return cursor.rowcount
