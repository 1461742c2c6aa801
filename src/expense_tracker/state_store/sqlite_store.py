"""
SQLite-based document store implementation.

Tables:
- schema_version: Schema version tracking
- entities: JSON documents keyed by (collection, id)
"""

import json
import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .base import COLLECTIONS, DocumentStore, StoreError

logger = logging.getLogger(__name__)


class SQLiteDocumentStore(DocumentStore):
    """
    SQLite-based persistent store for entities.

    Every entity is one row holding its JSON serialization, so the schema
    never changes when an entity gains a field.

    Thread-safe for single-writer scenarios.
    """

    SCHEMA_VERSION = 1

    def __init__(self, db_path: Path | str):
        """
        Initialize document store.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection with row factory."""
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Context manager for database transactions."""
        try:
            conn = self._get_connection()
        except sqlite3.Error as e:
            raise StoreError(f"Cannot open database {self.db_path}: {e}") from e
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise StoreError(f"Database error: {e}") from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS entities (
                    collection TEXT NOT NULL,
                    entity_id TEXT NOT NULL,
                    data TEXT NOT NULL,  -- JSON object
                    updated_at TEXT NOT NULL,
                    PRIMARY KEY (collection, entity_id)
                )
            """
            )

            conn.execute(
                "INSERT OR IGNORE INTO schema_version (version) VALUES (?)",
                (self.SCHEMA_VERSION,),
            )

    @staticmethod
    def _check(collection: str) -> None:
        if collection not in COLLECTIONS:
            raise StoreError(f"Unknown collection: {collection}")

    def upsert(self, collection: str, entity_id: str, data: dict[str, Any]) -> None:
        """Create or replace a document."""
        self._check(collection)
        now = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
        payload = json.dumps({**data, "id": entity_id}, ensure_ascii=False, sort_keys=True)

        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO entities (collection, entity_id, data, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(collection, entity_id) DO UPDATE SET
                    data = excluded.data,
                    updated_at = excluded.updated_at
            """,
                (collection, entity_id, payload, now),
            )

    def delete(self, collection: str, entity_id: str) -> None:
        """Delete a document (no-op if it does not exist)."""
        self._check(collection)
        with self._transaction() as conn:
            conn.execute(
                "DELETE FROM entities WHERE collection = ? AND entity_id = ?",
                (collection, entity_id),
            )

    def get(self, collection: str, entity_id: str) -> dict[str, Any] | None:
        """Fetch one document, or None."""
        self._check(collection)
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT data FROM entities WHERE collection = ? AND entity_id = ?",
                (collection, entity_id),
            ).fetchone()
            return json.loads(row["data"]) if row else None

    def list_collection(self, collection: str) -> list[dict[str, Any]]:
        """List every document in a collection, ordered by id."""
        self._check(collection)
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT data FROM entities WHERE collection = ? ORDER BY entity_id",
                (collection,),
            ).fetchall()
            return [json.loads(row["data"]) for row in rows]

    def count(self, collection: str) -> int:
        """Number of documents in a collection."""
        self._check(collection)
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS n FROM entities WHERE collection = ?", (collection,)
            ).fetchone()
            return int(row["n"])

    def get_stats(self) -> dict[str, int]:
        """Get document counts per collection."""
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT collection, COUNT(*) AS n FROM entities GROUP BY collection"
            ).fetchall()
            counts = {row["collection"]: int(row["n"]) for row in rows}
        return {collection: counts.get(collection, 0) for collection in COLLECTIONS}
