"""
Service module for ConfDB - ordered, validated, audited item mutations.
"""

from .item_service import AuditRecorder, ItemService, LimitsProvider, NamespaceResolver

__all__ = ["AuditRecorder", "ItemService", "LimitsProvider", "NamespaceResolver"]
