"""
Document Store.

Keyed create-or-replace / delete persistence for:
- Accounts
- Suppliers
- Expenses
- Timeline entries
- Extracted documents

Backends: local SQLite file or Firestore (REST API).
"""

from ..config import Config, ConfigValidationError, StoreBackend
from .base import (
    ACCOUNTS,
    COLLECTIONS,
    DOCUMENTS,
    EXPENSES,
    SUPPLIERS,
    TIMELINE,
    DocumentStore,
    StoreError,
)
from .firestore import (
    FirestoreAPIError,
    FirestoreClient,
    FirestoreConnectionError,
    FirestoreError,
)
from .sqlite_store import SQLiteDocumentStore


def create_store(config: Config) -> DocumentStore:
    """
    Create the configured document store.

    Raises:
        ConfigValidationError: If the store configuration is incomplete
    """
    errors = config.validate()
    if errors:
        raise ConfigValidationError(errors)

    if config.store.backend == StoreBackend.FIRESTORE:
        return FirestoreClient.from_config(config.store.firestore)
    return SQLiteDocumentStore(config.store.sqlite_path)


__all__ = [
    "ACCOUNTS",
    "COLLECTIONS",
    "DOCUMENTS",
    "EXPENSES",
    "SUPPLIERS",
    "TIMELINE",
    "DocumentStore",
    "StoreError",
    "SQLiteDocumentStore",
    "FirestoreClient",
    "FirestoreError",
    "FirestoreAPIError",
    "FirestoreConnectionError",
    "create_store",
]
