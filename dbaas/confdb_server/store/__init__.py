"""
Storage module for ConfDB - SQLite tables for namespaces, items and audits.

Invariants:
    - All writes run inside Database.transaction()
    - Item and audit rows written in one transaction commit or roll back together
    - Soft-deleted items are excluded from every read path except lookup by id
"""

from .audit_store import Audit, AuditOp, AuditStore
from .database import Database
from .item_store import Item, ItemStore, Page, PageRequest
from .namespace_store import Namespace, NamespaceStore

__all__ = [
    "Audit",
    "AuditOp",
    "AuditStore",
    "Database",
    "Item",
    "ItemStore",
    "Namespace",
    "NamespaceStore",
    "Page",
    "PageRequest",
]
