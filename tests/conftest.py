"""Test fixtures and utilities."""

from decimal import Decimal
from pathlib import Path
from typing import Any

import pytest

from expense_tracker.config import Config, StoreConfig
from expense_tracker.schemas.models import (
    Account,
    AccountType,
    DocumentMetadata,
    RecurringExpenseCandidate,
    SourceType,
    StatementSettlement,
)
from expense_tracker.state_store import DocumentStore, StoreError


class MemoryStore(DocumentStore):
    """In-memory document store recording every write.

    ``fail_on`` makes upserts into that collection raise StoreError.
    """

    def __init__(self, fail_on: str | None = None) -> None:
        self.data: dict[str, dict[str, dict[str, Any]]] = {}
        self.writes: list[tuple[str, str]] = []
        self.deletes: list[tuple[str, str]] = []
        self.fail_on = fail_on

    def upsert(self, collection: str, entity_id: str, data: dict[str, Any]) -> None:
        if collection == self.fail_on:
            raise StoreError(f"simulated failure writing {collection}/{entity_id}")
        self.data.setdefault(collection, {})[entity_id] = dict(data)
        self.writes.append((collection, entity_id))

    def delete(self, collection: str, entity_id: str) -> None:
        self.data.get(collection, {}).pop(entity_id, None)
        self.deletes.append((collection, entity_id))

    def get(self, collection: str, entity_id: str) -> dict[str, Any] | None:
        return self.data.get(collection, {}).get(entity_id)

    def list_collection(self, collection: str) -> list[dict[str, Any]]:
        return list(self.data.get(collection, {}).values())

    def writes_to(self, collection: str) -> list[str]:
        return [entity_id for c, entity_id in self.writes if c == collection]


@pytest.fixture
def temp_db(tmp_path) -> Path:
    """Temporary database path for testing."""
    return tmp_path / "test_expenses.db"


@pytest.fixture
def memory_store() -> MemoryStore:
    """Fresh in-memory store."""
    return MemoryStore()


@pytest.fixture
def config(temp_db) -> Config:
    """Default configuration pointing at a temporary SQLite file."""
    return Config(store=StoreConfig(sqlite_path=temp_db))


@pytest.fixture
def checking_account() -> Account:
    """The user's main checking account."""
    return Account(
        id="acc-1",
        name="Conta Corrente",
        type=AccountType.CHECKING,
        iban="PT50 0035 0001 0001 2345 6789 0",
    )


@pytest.fixture
def card_account() -> Account:
    """A credit card with a hint list in its metadata."""
    return Account(
        id="acc-card",
        name="Banco NB Premium",
        type=AccountType.CARD,
        metadata={"hints": ["Visa 1234"], "number": "4111-1234"},
    )


@pytest.fixture
def invoice_document() -> DocumentMetadata:
    """Electricity invoice extracted from a PDF."""
    return DocumentMetadata(
        id="doc-energia-062024",
        original_name="energia_lisboa_junho.pdf",
        upload_date="2024-06-01T09:30:00Z",
        source_type=SourceType.INVOICE,
        amount=Decimal("62.30"),
        currency="EUR",
        due_date="2024-06-10",
        account_hint="Conta Corrente",
        company_name="Energia Lisboa",
    )


@pytest.fixture
def statement_document() -> DocumentMetadata:
    """Bank statement with two recurring charges and one payment line."""
    return DocumentMetadata(
        id="doc-statement-052024",
        original_name="extracto_maio.pdf",
        upload_date="2024-05-31",
        source_type=SourceType.STATEMENT,
        account_hint="Conta Corrente",
        company_name="Banco Exemplo",
        statement_account_iban="PT50 0035 0001 0001 2345 6789 0",
        recurring_expenses=(
            RecurringExpenseCandidate(
                description="Ginásio Fit",
                average_amount=Decimal("35.00"),
                currency="EUR",
                day_of_month=5,
                months_observed=("2024-03", "2024-04", "2024-05"),
            ),
            RecurringExpenseCandidate(
                description="Loja Aleatoria",
                average_amount=Decimal("12.90"),
                day_of_month=17,
                months_observed=("2024-05",),
            ),
        ),
        statement_settlements=(
            StatementSettlement(
                description="ENERGIA LISBOA SA",
                amount=Decimal("-62.30"),
                settled_on="2024-05-28",
            ),
        ),
    )


@pytest.fixture
def failing_store() -> MemoryStore:
    """Store whose expense writes fail."""
    return MemoryStore(fail_on="expenses")
