"""
Item ordering and mutation service for ConfDB.

The ItemService owns the rules for:
- Assigning line numbers to newly inserted items
- Validating key/value lengths against configured limits
- Soft-deleting items without renumbering the rest
- Recording exactly one audit entry per item mutation

Invariants:
    - Among live items of a namespace, line numbers are distinct and increase
      in insertion order
    - An unset line number (0) becomes max(live line_num) + 1, or 1
    - Soft delete never changes another item's line number
    - Validation happens before any write; write and audit commit together

How to change safely:
    - Keep line-number assignment inside the write transaction; BEGIN IMMEDIATE
      serializes the read-then-write across connections
    - Every new mutating method must audit on the same connection
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Mapping
from dataclasses import replace
from typing import Protocol, runtime_checkable

from ..errors import BadRequestError, NotFoundError
from ..store.audit_store import Audit, AuditOp
from ..store.database import Database
from ..store.item_store import Item, ItemStore, Page, PageRequest
from ..store.namespace_store import Namespace

logger = logging.getLogger(__name__)

ITEM_ENTITY = "Item"


@runtime_checkable
class NamespaceResolver(Protocol):
    """Resolves a namespace triple to a namespace."""

    async def find_one(
        self, app_id: str, cluster_name: str, namespace_name: str
    ) -> Namespace | None: ...


@runtime_checkable
class AuditRecorder(Protocol):
    """Appends audit entries on the caller's transaction."""

    async def audit(
        self,
        conn: sqlite3.Connection,
        entity_name: str,
        entity_id: int,
        op: AuditOp,
        operator: str,
    ) -> Audit: ...


@runtime_checkable
class LimitsProvider(Protocol):
    """Supplies item length limits."""

    def item_key_length_limit(self) -> int: ...

    def item_value_length_limit(self) -> int: ...

    def namespace_value_length_limit_override(self) -> Mapping[int, int]: ...


class ItemService:
    """Ordered, audited mutation of namespace items.

    Collaborators are passed in already constructed; the namespace resolver is
    only used for lookups, so it carries no reference back to this service.

    Example:
        >>> service = ItemService(db, ItemStore(db), namespaces, audits, LimitsConfig())
        >>> item = await service.save(Item(namespace_id=1, key="timeout", value="30",
        ...                                created_by="alice"))
        >>> item.line_num
        1
    """

    def __init__(
        self,
        db: Database,
        item_store: ItemStore,
        namespace_resolver: NamespaceResolver,
        audit_recorder: AuditRecorder,
        limits: LimitsProvider,
    ) -> None:
        self._db = db
        self._items = item_store
        self._namespaces = namespace_resolver
        self._audit = audit_recorder
        self._limits = limits

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def _require_namespace(
        self, app_id: str, cluster_name: str, namespace_name: str
    ) -> Namespace:
        namespace = await self._namespaces.find_one(app_id, cluster_name, namespace_name)
        if namespace is None:
            raise NotFoundError(
                f"namespace not found for {app_id} {cluster_name} {namespace_name}",
                app_id=app_id,
                cluster_name=cluster_name,
                namespace_name=namespace_name,
            )
        return namespace

    async def find_one(self, namespace_id: int, key: str) -> Item | None:
        """Find a live item by namespace id and key."""
        return await self._items.get_by_namespace_and_key(namespace_id, key)

    async def find_one_in(
        self, app_id: str, cluster_name: str, namespace_name: str, key: str
    ) -> Item | None:
        """Find a live item by namespace triple and key.

        Raises:
            NotFoundError: If the namespace does not exist
        """
        namespace = await self._require_namespace(app_id, cluster_name, namespace_name)
        return await self._items.get_by_namespace_and_key(namespace.id, key)

    async def find_by_id(self, item_id: int) -> Item | None:
        """Find an item by id, soft-deleted or not."""
        return await self._items.get_by_id(item_id)

    async def find_last_one(self, namespace_id: int) -> Item | None:
        """Find the live item with the highest line number."""
        return await self._items.get_last_by_namespace(namespace_id)

    async def find_last_one_in(
        self, app_id: str, cluster_name: str, namespace_name: str
    ) -> Item | None:
        """Find the last live item of a namespace triple.

        Raises:
            NotFoundError: If the namespace does not exist
        """
        namespace = await self._require_namespace(app_id, cluster_name, namespace_name)
        return await self.find_last_one(namespace.id)

    async def find_items_without_ordered(self, namespace_id: int) -> list[Item]:
        return await self._items.list_by_namespace(namespace_id)

    async def find_items_without_ordered_in(
        self, app_id: str, cluster_name: str, namespace_name: str
    ) -> list[Item]:
        """List live items in storage order; empty if the namespace is unknown."""
        namespace = await self._namespaces.find_one(app_id, cluster_name, namespace_name)
        if namespace is None:
            return []
        return await self.find_items_without_ordered(namespace.id)

    async def find_items_with_ordered(self, namespace_id: int) -> list[Item]:
        return await self._items.list_by_namespace_ordered(namespace_id)

    async def find_items_with_ordered_in(
        self, app_id: str, cluster_name: str, namespace_name: str
    ) -> list[Item]:
        """List live items by line number; empty if the namespace is unknown."""
        namespace = await self._namespaces.find_one(app_id, cluster_name, namespace_name)
        if namespace is None:
            return []
        return await self.find_items_with_ordered(namespace.id)

    async def find_items_modified_after(self, namespace_id: int, timestamp_ms: int) -> list[Item]:
        """List live items modified strictly after timestamp_ms."""
        return await self._items.list_by_namespace_modified_after(namespace_id, timestamp_ms)

    async def find_items_by_key(
        self, key: str, page_request: PageRequest | None = None
    ) -> Page[Item]:
        """Search live items by exact key across all namespaces."""
        return await self._items.search_by_key(key, page_request or PageRequest())

    async def count_items(self, namespace_id: int) -> int:
        return await self._items.count_by_namespace(namespace_id)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def save(self, entity: Item) -> Item:
        """Insert a new item.

        A caller-supplied id is discarded. A line number of 0 is replaced by
        the next line number of the namespace.

        Raises:
            BadRequestError: If key or value exceeds its length limit
        """
        self._check_item_key_length(entity.key)
        self._check_item_value_length(entity.namespace_id, entity.value)
        return await self._insert(replace(entity, id=0))

    async def save_comment(self, entity: Item) -> Item:
        """Insert a comment-only item; key and value are forced empty."""
        return await self._insert(replace(entity, id=0, key="", value=""))

    async def _insert(self, entity: Item) -> Item:
        with self._db.transaction() as conn:
            if entity.line_num == 0:
                last_item = await self._items.get_last_by_namespace(entity.namespace_id, conn)
                entity.line_num = 1 if last_item is None else last_item.line_num + 1

            item = await self._items.save(entity, conn)
            await self._audit.audit(conn, ITEM_ENTITY, item.id, AuditOp.INSERT, item.created_by)

        logger.info(
            "Inserted item",
            extra={
                "item_id": item.id,
                "namespace_id": item.namespace_id,
                "line_num": item.line_num,
                "operator": item.created_by,
            },
        )
        return item

    async def update(self, item: Item) -> Item:
        """Update the content of an existing live item.

        Copies key, value, comment and last_modified_by onto the stored
        record. Namespace, line number and creator are never changed here,
        so limits are those of the namespace the item is stored in.

        Raises:
            BadRequestError: If the key or value exceeds its length limit
            NotFoundError: If the item does not exist or was deleted
        """
        with self._db.transaction() as conn:
            managed_item = await self._items.get_by_id(item.id, conn)
            if managed_item is None or managed_item.deleted:
                raise NotFoundError(f"item not exist. ID:{item.id}", item_id=item.id)

            self._check_item_key_length(item.key)
            self._check_item_value_length(managed_item.namespace_id, item.value)

            managed_item.key = item.key
            managed_item.value = item.value
            managed_item.comment = item.comment
            managed_item.last_modified_by = item.last_modified_by

            managed_item = await self._items.save(managed_item, conn)
            await self._audit.audit(
                conn,
                ITEM_ENTITY,
                managed_item.id,
                AuditOp.UPDATE,
                managed_item.last_modified_by,
            )

        logger.info(
            "Updated item",
            extra={"item_id": managed_item.id, "operator": managed_item.last_modified_by},
        )
        return managed_item

    async def delete(self, item_id: int, operator: str) -> Item:
        """Soft-delete one item.

        Raises:
            NotFoundError: If the item does not exist or was already deleted
        """
        with self._db.transaction() as conn:
            item = await self._items.get_by_id(item_id, conn)
            if item is None or item.deleted:
                raise NotFoundError(f"item not exist. ID:{item_id}", item_id=item_id)

            item.deleted = True
            item.last_modified_by = operator
            deleted_item = await self._items.save(item, conn)

            await self._audit.audit(conn, ITEM_ENTITY, item_id, AuditOp.DELETE, operator)

        logger.info("Deleted item", extra={"item_id": item_id, "operator": operator})
        return deleted_item

    async def batch_delete(self, namespace_id: int, operator: str) -> int:
        """Soft-delete every live item of a namespace in one statement.

        No per-item audit entries are written for the bulk path.

        Returns:
            Number of items deleted
        """
        with self._db.transaction() as conn:
            count = await self._items.delete_by_namespace(namespace_id, operator, conn)

        logger.info(
            "Batch deleted items",
            extra={"namespace_id": namespace_id, "count": count, "operator": operator},
        )
        return count

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def _check_item_value_length(self, namespace_id: int, value: str) -> None:
        limit = self._get_item_value_length_limit(namespace_id)
        if value and len(value) > limit:
            logger.warning(
                "Rejected item value",
                extra={"namespace_id": namespace_id, "length": len(value), "limit": limit},
            )
            raise BadRequestError(f"value too long. length limit:{limit}", "value", limit)

    def _check_item_key_length(self, key: str) -> None:
        limit = self._limits.item_key_length_limit()
        if key and len(key) > limit:
            logger.warning("Rejected item key", extra={"length": len(key), "limit": limit})
            raise BadRequestError(f"key too long. length limit:{limit}", "key", limit)

    def _get_item_value_length_limit(self, namespace_id: int) -> int:
        overrides = self._limits.namespace_value_length_limit_override()
        if overrides and namespace_id in overrides:
            return overrides[namespace_id]
        return self._limits.item_value_length_limit()
