"""
ConfDB Server - ordered, audited configuration items for a multi-tenant config backend.

Each namespace (an app/cluster/namespace-name triple) holds an ordered list of
items: key/value entries plus comment-only entries. This package implements:
- Automatic, gap-tolerant line-number ordering on insert
- Soft delete that preserves ordering and history
- Per-namespace value length limits checked before any write
- One audit record per item mutation, committed in the same transaction

Architecture:
    ┌─────────────┐     ┌──────────────────┐     ┌───────────────┐
    │   Caller    │────▶│   ItemService    │────▶│ NamespaceStore│
    └─────────────┘     └────────┬─────────┘     └───────────────┘
                                 │ transaction()
                    ┌────────────┴────────────┐
                    ▼                         ▼
               ┌─────────┐              ┌──────────┐
               │ItemStore│              │AuditStore│
               └────┬────┘              └────┬─────┘
                    └──────────┬─────────────┘
                               ▼
                          ┌─────────┐
                          │ SQLite  │
                          └─────────┘

Invariants:
    - Live items of a namespace have distinct, increasing line numbers
    - Items are never physically deleted
    - No item row changes without a matching audit row (bulk delete excepted)
"""

from ._version import __version__

__all__ = ["__version__"]
