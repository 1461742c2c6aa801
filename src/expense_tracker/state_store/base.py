"""
Persistence collaborator interface.

Entities are stored as JSON-like documents keyed by ``(collection, id)``.
The reconciliation engine only writes (create-or-replace and delete);
reads are used by the CLI to build the snapshot it reconciles against.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any

from ..schemas.models import (
    Account,
    DocumentMetadata,
    Expense,
    ReconciliationSnapshot,
    Supplier,
    TimelineEntry,
)

logger = logging.getLogger(__name__)

ACCOUNTS = "accounts"
SUPPLIERS = "suppliers"
EXPENSES = "expenses"
TIMELINE = "timeline"
DOCUMENTS = "documents"

COLLECTIONS = (ACCOUNTS, SUPPLIERS, EXPENSES, TIMELINE, DOCUMENTS)

# Entity type -> collection it lives in
ENTITY_COLLECTIONS: dict[type, str] = {
    Account: ACCOUNTS,
    Supplier: SUPPLIERS,
    Expense: EXPENSES,
    TimelineEntry: TIMELINE,
    DocumentMetadata: DOCUMENTS,
}


class StoreError(Exception):
    """Base exception for persistence failures."""

    pass


class DocumentStore(ABC):
    """Key-value document store, one namespace per collection."""

    @abstractmethod
    def upsert(self, collection: str, entity_id: str, data: dict[str, Any]) -> None:
        """Create or replace a document."""

    @abstractmethod
    def delete(self, collection: str, entity_id: str) -> None:
        """Delete a document (no-op if it does not exist)."""

    @abstractmethod
    def get(self, collection: str, entity_id: str) -> dict[str, Any] | None:
        """Fetch one document, or None."""

    @abstractmethod
    def list_collection(self, collection: str) -> list[dict[str, Any]]:
        """List every document in a collection."""

    # Entity helpers

    def persist(self, entity: Any) -> None:
        """Create or replace an entity in the collection for its type."""
        collection = _collection_for(type(entity))
        logger.debug("Persisting %s/%s", collection, entity.id)
        self.upsert(collection, entity.id, entity.to_dict())

    def remove_by_id(self, kind: type | str, entity_id: str) -> None:
        """Delete an entity by id. ``kind`` is an entity type or collection name."""
        collection = kind if isinstance(kind, str) else _collection_for(kind)
        _check_collection(collection)
        logger.debug("Removing %s/%s", collection, entity_id)
        self.delete(collection, entity_id)

    def load_entities(self, entity_type: type) -> list[Any]:
        """
        Load every stored entity of a type.

        Raises:
            StoreError: If a stored row cannot be read as that type
        """
        collection = _collection_for(entity_type)
        entities = []
        for data in self.list_collection(collection):
            try:
                entities.append(entity_type.from_dict(data))
            except (KeyError, TypeError, ValueError) as e:
                raise StoreError(
                    f"Unreadable {collection} row {data.get('id', '?')!r}: {e}"
                ) from e
        return entities

    def load_documents(self) -> list[DocumentMetadata]:
        """Stored documents in upload order."""
        documents = self.load_entities(DocumentMetadata)
        return sorted(documents, key=lambda d: (d.upload_date or "", d.id))

    def load_snapshot(self) -> ReconciliationSnapshot:
        """Build a reconciliation snapshot from the stored collections."""
        return ReconciliationSnapshot(
            accounts=tuple(self.load_entities(Account)),
            suppliers=tuple(self.load_entities(Supplier)),
            expenses=tuple(self.load_entities(Expense)),
            timeline_entries=tuple(self.load_entities(TimelineEntry)),
        )

    def count(self, collection: str) -> int:
        """Number of documents in a collection."""
        return len(self.list_collection(collection))

    def get_stats(self) -> dict[str, int]:
        """Get document counts per collection."""
        return {collection: self.count(collection) for collection in COLLECTIONS}

    def test_connection(self) -> bool:
        """Test that the store can be read."""
        try:
            self.list_collection(DOCUMENTS)
            return True
        except StoreError as e:
            logger.warning("Store connection failed: %s", e)
            return False

    def close(self) -> None:
        """Release resources (default: nothing to release)."""


def _collection_for(entity_type: type) -> str:
    try:
        return ENTITY_COLLECTIONS[entity_type]
    except KeyError:
        raise StoreError(f"Unsupported entity type: {entity_type.__name__}") from None


def _check_collection(collection: str) -> None:
    if collection not in COLLECTIONS:
        raise StoreError(f"Unknown collection: {collection}")
