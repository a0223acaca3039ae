"""
Database Layer for FindItNow

Provides:
- DocumentStore abstraction (InMemory for dev, Postgres for prod)
- PostgreSQL schema
- Environment-based configuration
"""

from .store import (
    DocumentStore,
    BatchContext,
    InMemoryDocumentStore,
    PostgresDocumentStore,
    StoreError,
    ConcurrencyError,
    DocumentExistsError,
    LockTimeoutError,
    SCHEMA_SQL,
)
from .config import DatabaseConfig, StoreDriver, get_database_url, get_store_driver

__all__ = [
    "DocumentStore",
    "BatchContext",
    "InMemoryDocumentStore",
    "PostgresDocumentStore",
    "StoreError",
    "ConcurrencyError",
    "DocumentExistsError",
    "LockTimeoutError",
    "SCHEMA_SQL",
    "DatabaseConfig",
    "StoreDriver",
    "get_database_url",
    "get_store_driver",
]
