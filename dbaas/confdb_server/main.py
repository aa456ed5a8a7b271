"""
ConfDB Server - wiring entry point.

This module builds the item service from configuration:
- SQLite database (schema created on startup)
- Item, namespace and audit stores
- ItemService with the configured length limits

Usage:
    python -m dbaas.confdb_server.main

Configuration is entirely via environment variables.
See config.py for all available settings.

Invariants:
    - The schema exists before the service is handed out
    - Every collaborator is constructed before the service that uses it
"""

from __future__ import annotations

import logging
import sys
from dataclasses import dataclass

import json_log_formatter

from .config import ServerConfig
from .service import ItemService
from .store import AuditStore, Database, ItemStore, NamespaceStore

logger = logging.getLogger(__name__)


def setup_logging(config: ServerConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Server configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]


@dataclass
class ConfDbServices:
    """The wired-up component graph.

    Attributes:
        db: SQLite database
        items: Item store
        namespaces: Namespace directory
        audits: Audit log
        item_service: Item ordering and mutation service
    """

    db: Database
    items: ItemStore
    namespaces: NamespaceStore
    audits: AuditStore
    item_service: ItemService


def create_services(config: ServerConfig | None = None) -> ConfDbServices:
    """Build and initialize all components.

    Args:
        config: Optional configuration (loaded from env if not provided)

    Returns:
        ConfDbServices with an initialized database
    """
    config = config or ServerConfig.from_env()

    db = Database(
        config.storage.db_path,
        wal_mode=config.storage.wal_mode,
        busy_timeout_ms=config.storage.busy_timeout_ms,
        cache_size_pages=config.storage.cache_size_pages,
    )
    db.initialize()

    items = ItemStore(db)
    audits = AuditStore(db)
    namespaces = NamespaceStore(db, audits)
    item_service = ItemService(db, items, namespaces, audits, config.limits)

    return ConfDbServices(
        db=db,
        items=items,
        namespaces=namespaces,
        audits=audits,
        item_service=item_service,
    )


def create_item_service(config: ServerConfig | None = None) -> ItemService:
    """Build an ItemService backed by the configured database."""
    return create_services(config).item_service


def main() -> int:
    """Initialize the database and report the effective configuration."""
    try:
        config = ServerConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    setup_logging(config)
    config.log_config()

    services = create_services(config)
    logger.info("ConfDB database ready", extra={"db_path": str(services.db.path)})
    return 0


if __name__ == "__main__":
    sys.exit(main())
