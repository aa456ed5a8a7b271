"""
Error types for the ConfDB item service.

This module defines all exception types raised by the service layer:
- ConfDbError: Base exception
- NotFoundError: Referenced namespace or item does not exist
- BadRequestError: Payload violates a configured length limit

Invariants:
    - All errors inherit from ConfDbError
    - Errors include context for debugging
    - Length-limit errors always carry the offending limit
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class ConfDbError(Exception):
    """Base exception for all ConfDB service errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "CONFDB_ERROR"
        self.details = details or {}


class NotFoundError(ConfDbError):
    """A namespace or item referenced by identity does not exist.

    Raised when:
    - An (app_id, cluster, namespace) triple does not resolve
    - An item id does not resolve to a live record
    """

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message, code="NOT_FOUND", details=details)


class BadRequestError(ConfDbError):
    """Item payload exceeds a configured length limit.

    Attributes:
        field_name: Field that failed validation ("key" or "value")
        limit: The length limit that was exceeded
    """

    def __init__(self, message: str, field_name: str, limit: int) -> None:
        super().__init__(
            message,
            code="BAD_REQUEST",
            details={"field": field_name, "limit": limit},
        )
        self.field_name = field_name
        self.limit = limit
