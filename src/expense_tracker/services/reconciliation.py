"""Document reconciliation orchestration service.

Takes one extracted document and the caller's current snapshot of accounts,
suppliers, expenses and timeline entries, and derives the entities the
document implies:

- Invoices/receipts: supplier, account, one expense, one timeline entry
- Statements: the bank as supplier, the statement account, one
  expense/timeline pair per recurring charge, then settlement of open
  expenses from the statement's payment lines

Every entity that is actually created or changed is persisted through the
document store and announced through the callbacks, exactly once. Resolution
misses are recorded and skipped; persistence errors propagate and abort the
current document.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, TypeVar

from expense_tracker.matching.accounts import AccountResolution, ensure_account
from expense_tracker.matching.settlement import settle_expenses_from_statement
from expense_tracker.matching.suppliers import (
    SupplierResolution,
    resolve_supplier,
    resolve_supplier_for_recurring_candidate,
)
from expense_tracker.schemas.dedupe import (
    DOCUMENT_EXPENSE_PREFIX,
    document_expense_key,
    expense_id_from_key,
    legacy_document_expense_id,
    legacy_recurring_expense_id,
    recurring_expense_key,
)
from expense_tracker.schemas.models import (
    Account,
    DocumentMetadata,
    Expense,
    ReconciliationSnapshot,
    RecurringExpenseCandidate,
    Supplier,
    TimelineEntry,
)
from expense_tracker.services.expense_derivation import (
    build_recurring_expense,
    derive_expense_from_document,
    has_expense_changed,
    recurring_expense_id,
)
from expense_tracker.services.timeline import (
    TIMELINE_ID_PREFIX,
    derive_timeline_entry_from_expense,
    has_timeline_changed,
)

if TYPE_CHECKING:
    from expense_tracker.config import Config
    from expense_tracker.state_store import DocumentStore

logger = logging.getLogger(__name__)

T = TypeVar("T", Account, Supplier, Expense, TimelineEntry)


class ReconciliationState(str, Enum):
    """Per-document reconciliation states, in order."""

    RECEIVED = "RECEIVED"
    RESOLVED_ENTITIES = "RESOLVED_ENTITIES"
    EXPENSE_DERIVED = "EXPENSE_DERIVED"
    TIMELINE_DERIVED = "TIMELINE_DERIVED"
    SETTLEMENTS_APPLIED = "SETTLEMENTS_APPLIED"
    DONE = "DONE"


@dataclass
class ReconciliationCallbacks:
    """Hooks fired once per entity actually created or changed."""

    on_account_upsert: Callable[[Account], None] | None = None
    on_supplier_upsert: Callable[[Supplier], None] | None = None
    on_expense_upsert: Callable[[Expense], None] | None = None
    on_timeline_upsert: Callable[[TimelineEntry], None] | None = None


@dataclass
class ReconciliationResult:
    """Result of reconciling one document."""

    document_id: str
    state: ReconciliationState
    snapshot: ReconciliationSnapshot
    accounts_upserted: list[str] = field(default_factory=list)
    suppliers_upserted: list[str] = field(default_factory=list)
    expenses_upserted: list[str] = field(default_factory=list)
    timeline_upserted: list[str] = field(default_factory=list)
    settled_expense_ids: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    missing_account_hints: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        """Return True if anything was persisted."""
        return bool(
            self.accounts_upserted
            or self.suppliers_upserted
            or self.expenses_upserted
            or self.timeline_upserted
        )


def _upsert_into(items: tuple[T, ...], item: T) -> tuple[T, ...]:
    """Copy-on-write replace-by-id (appends unknown ids)."""
    replaced = False
    result = []
    for existing in items:
        if existing.id == item.id:
            result.append(item)
            replaced = True
        else:
            result.append(existing)
    if not replaced:
        result.append(item)
    return tuple(result)


def _first(items: Iterable[T], predicate: Callable[[T], bool]) -> T | None:
    for item in items:
        if predicate(item):
            return item
    return None


class _Run:
    """Mutable working state for one document (never shared)."""

    def __init__(self, document: DocumentMetadata, snapshot: ReconciliationSnapshot) -> None:
        self.document = document
        self.accounts = tuple(snapshot.accounts)
        self.suppliers = tuple(snapshot.suppliers)
        self.expenses = tuple(snapshot.expenses)
        self.timeline = tuple(snapshot.timeline_entries)
        self.result = ReconciliationResult(
            document_id=document.id,
            state=ReconciliationState.RECEIVED,
            snapshot=snapshot,
        )

    def advance(self, state: ReconciliationState) -> None:
        logger.debug("Document %s: %s -> %s", self.document.id, self.result.state.value, state.value)
        self.result.state = state

    def skip(self, reason: str) -> None:
        logger.debug("Document %s: %s", self.document.id, reason)
        self.result.skipped.append(reason)

    def snapshot(self) -> ReconciliationSnapshot:
        return ReconciliationSnapshot(
            accounts=self.accounts,
            suppliers=self.suppliers,
            expenses=self.expenses,
            timeline_entries=self.timeline,
        )


class DocumentReconciliationService:
    """Orchestrates document-to-entity reconciliation.

    This service is safe to run repeatedly (idempotent):
    - Re-uploading the same document updates in place, never duplicates
    - Unchanged entities are neither persisted nor announced again
    - Paid expenses are never settled twice

    Usage:
        service = DocumentReconciliationService(store, config)
        result = service.process_document(document, snapshot)
        snapshot = result.snapshot
    """

    def __init__(
        self,
        store: DocumentStore,
        config: Config,
        callbacks: ReconciliationCallbacks | None = None,
    ) -> None:
        """Initialize the reconciliation service.

        Args:
            store: Persistence collaborator.
            config: Application configuration (validated here, before any work).
            callbacks: Optional upsert hooks.

        Raises:
            ConfigValidationError: If the configuration is invalid.
        """
        config.require_valid()
        self.store = store
        self.config = config
        self.recon = config.reconciliation
        self.callbacks = callbacks or ReconciliationCallbacks()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def process_document(
        self,
        document: DocumentMetadata,
        snapshot: ReconciliationSnapshot,
    ) -> ReconciliationResult:
        """Reconcile one document against a snapshot.

        Args:
            document: Extracted document.
            snapshot: Caller's current collections (not mutated).

        Returns:
            ReconciliationResult carrying the new snapshot.

        Raises:
            StoreError: If a persistence call fails. Entities persisted before
                the failure stay persisted; the caller keeps its old snapshot.
        """
        run = _Run(document, snapshot)
        logger.info(
            "Reconciling document %s (%s, %s)",
            document.id,
            document.source_type.value,
            document.original_name,
        )

        if document.is_statement:
            self._process_statement(run)
        else:
            self._process_invoice(run)

        run.advance(ReconciliationState.DONE)
        run.result.snapshot = run.snapshot()

        result = run.result
        logger.info(
            "Document %s: %d expense(s), %d timeline entr(ies), %d settled, %d skipped",
            document.id,
            len(result.expenses_upserted),
            len(result.timeline_upserted),
            len(result.settled_expense_ids),
            len(result.skipped),
        )
        return result

    def process_documents(
        self,
        documents: Sequence[DocumentMetadata],
        snapshot: ReconciliationSnapshot,
    ) -> list[ReconciliationResult]:
        """Reconcile documents one at a time, threading the snapshot through."""
        results = []
        for document in documents:
            result = self.process_document(document, snapshot)
            snapshot = result.snapshot
            results.append(result)
        return results

    # ------------------------------------------------------------------
    # Persistence + events
    # ------------------------------------------------------------------

    def _save_supplier(self, run: _Run, resolution: SupplierResolution) -> Supplier | None:
        run.suppliers = resolution.suppliers
        supplier = resolution.supplier
        if supplier is not None and resolution.changed:
            self.store.persist(supplier)
            run.result.suppliers_upserted.append(supplier.id)
            if self.callbacks.on_supplier_upsert:
                self.callbacks.on_supplier_upsert(supplier)
        return supplier

    def _save_account(self, run: _Run, resolution: AccountResolution, hint: str | None) -> Account | None:
        run.accounts = resolution.accounts
        account = resolution.account
        if account is None:
            if hint and hint not in run.result.missing_account_hints:
                run.result.missing_account_hints.append(hint)
            return None
        if resolution.created:
            self.store.persist(account)
            run.result.accounts_upserted.append(account.id)
            if self.callbacks.on_account_upsert:
                self.callbacks.on_account_upsert(account)
        return account

    def _save_expense(self, run: _Run, expense: Expense) -> None:
        self.store.persist(expense)
        run.expenses = _upsert_into(run.expenses, expense)
        run.result.expenses_upserted.append(expense.id)
        if self.callbacks.on_expense_upsert:
            self.callbacks.on_expense_upsert(expense)

    def _save_timeline(
        self,
        run: _Run,
        expense: Expense,
        existing: TimelineEntry | None,
        per_document: bool,
    ) -> None:
        entry = derive_timeline_entry_from_expense(expense, existing, per_document=per_document)
        if entry is None or not has_timeline_changed(existing, entry):
            return
        self.store.persist(entry)
        run.timeline = _upsert_into(run.timeline, entry)
        run.result.timeline_upserted.append(entry.id)
        if self.callbacks.on_timeline_upsert:
            self.callbacks.on_timeline_upsert(entry)

    def _resolve_account(
        self,
        run: _Run,
        hint: str | None,
        fallback_name: str | None,
    ) -> Account | None:
        resolution = ensure_account(
            hint,
            fallback_name,
            run.document,
            run.accounts,
            policy=self.recon.account_policy,
            min_candidate_length=self.recon.min_fuzzy_candidate_length,
        )
        return self._save_account(run, resolution, hint)

    # ------------------------------------------------------------------
    # Invoice / receipt path
    # ------------------------------------------------------------------

    def find_existing_document_expense(
        self,
        document: DocumentMetadata,
        expenses: Sequence[Expense],
    ) -> Expense | None:
        """Find the expense a document already produced.

        Lookup order: document id, legacy ``doc-exp-<document id>``,
        deterministic dedup id, dedup key.
        """
        found = _first(expenses, lambda e: e.document_id == document.id)
        if found:
            return found

        legacy_id = legacy_document_expense_id(document.id)
        found = _first(expenses, lambda e: e.id == legacy_id)
        if found:
            return found

        key = document_expense_key(document)
        if not key:
            return None
        dedup_id = expense_id_from_key(DOCUMENT_EXPENSE_PREFIX, key)
        found = _first(expenses, lambda e: e.id == dedup_id)
        if found:
            return found
        return _first(expenses, lambda e: e.deduplication_key == key)

    def _process_invoice(self, run: _Run) -> None:
        document = run.document

        supplier = self._save_supplier(run, resolve_supplier(document, run.suppliers))
        account = self._resolve_account(run, document.account_hint, document.company_name)
        run.advance(ReconciliationState.RESOLVED_ENTITIES)

        existing = self.find_existing_document_expense(document, run.expenses)
        derived = derive_expense_from_document(
            document,
            run.accounts,
            existing,
            supplier.id if supplier else None,
            account_id=account.id if account else None,
            min_candidate_length=self.recon.min_fuzzy_candidate_length,
            default_currency=self.recon.default_currency,
            default_category=self.recon.default_category,
        )
        run.advance(ReconciliationState.EXPENSE_DERIVED)

        if derived is None:
            if account is None and existing is None:
                run.skip(f"no account resolved for hint {document.account_hint!r}")
            else:
                run.skip("document lacks the amount or due date for a new expense")
            return
        if not has_expense_changed(existing, derived):
            logger.debug("Expense %s unchanged", derived.id)
            return

        self._save_expense(run, derived)

        per_document_id = f"{TIMELINE_ID_PREFIX}{document.id}"
        per_expense_id = f"{TIMELINE_ID_PREFIX}{derived.id}"
        existing_entry = _first(
            run.timeline,
            lambda t: t.linked_expense_id == derived.id or t.id in (per_document_id, per_expense_id),
        )
        self._save_timeline(run, derived, existing_entry, per_document=True)
        run.advance(ReconciliationState.TIMELINE_DERIVED)

    # ------------------------------------------------------------------
    # Statement path
    # ------------------------------------------------------------------

    def find_existing_recurring_expense(
        self,
        candidate: RecurringExpenseCandidate,
        document: DocumentMetadata,
        expenses: Sequence[Expense],
    ) -> Expense | None:
        """Find the expense a recurring charge already produced.

        Lookup order: deterministic id, legacy id, dedup key.
        """
        expense_id = recurring_expense_id(candidate, document)
        found = _first(expenses, lambda e: e.id == expense_id)
        if found:
            return found

        legacy_id = legacy_recurring_expense_id(document.id, candidate.description)
        found = _first(expenses, lambda e: e.id == legacy_id)
        if found:
            return found

        key = recurring_expense_key(candidate, document)
        if not key:
            return None
        return _first(expenses, lambda e: e.deduplication_key == key)

    def _process_statement(self, run: _Run) -> None:
        document = run.document

        # Recording the bank as a supplier is best-effort
        self._save_supplier(run, resolve_supplier(document, run.suppliers))
        statement_hint = document.statement_account_iban or document.account_hint
        statement_account = self._resolve_account(run, statement_hint, document.company_name)
        run.advance(ReconciliationState.RESOLVED_ENTITIES)

        for candidate in document.recurring_expenses:
            self._process_recurring_candidate(run, candidate, statement_account)
        run.advance(ReconciliationState.TIMELINE_DERIVED)

        if not document.statement_settlements:
            return
        if statement_account is None:
            run.skip(
                f"{len(document.statement_settlements)} settlement(s) skipped: "
                f"statement account {statement_hint!r} not resolved"
            )
            return

        outcome = settle_expenses_from_statement(
            document.statement_settlements,
            statement_account.id,
            document,
            run.expenses,
            tolerance_floor=self.recon.amount_tolerance_floor,
            tolerance_ratio=self.recon.amount_tolerance_ratio,
        )
        for expense in outcome.settled:
            self._save_expense(run, expense)
            run.result.settled_expense_ids.append(expense.id)
        run.advance(ReconciliationState.SETTLEMENTS_APPLIED)

    def _process_recurring_candidate(
        self,
        run: _Run,
        candidate: RecurringExpenseCandidate,
        statement_account: Account | None,
    ) -> None:
        document = run.document
        description = (candidate.description or "").strip()
        if not description:
            run.skip("recurring candidate without description")
            return

        months = {m.strip() for m in candidate.months_observed if m and m.strip()}
        existing = self.find_existing_recurring_expense(candidate, document, run.expenses)
        if len(months) < self.recon.min_recurring_months and existing is None:
            run.skip(f"recurring candidate {description!r} seen in {len(months)} month(s)")
            return

        if candidate.account_hint or statement_account is None:
            account = self._resolve_account(
                run,
                candidate.account_hint or document.statement_account_iban or document.account_hint,
                document.company_name or description,
            )
        else:
            account = statement_account
        if account is None:
            run.skip(f"recurring candidate {description!r}: no account resolved")
            return

        supplier = self._save_supplier(
            run, resolve_supplier_for_recurring_candidate(candidate, document, run.suppliers)
        )

        derived = build_recurring_expense(
            candidate,
            document,
            account.id,
            supplier.id if supplier else None,
            existing,
            min_months=self.recon.min_recurring_months,
            default_currency=self.recon.default_currency,
            category=self.recon.recurring_category,
        )
        if derived is None or not has_expense_changed(existing, derived):
            return

        self._save_expense(run, derived)

        per_expense_id = f"{TIMELINE_ID_PREFIX}{derived.id}"
        existing_entry = _first(
            run.timeline,
            lambda t: t.linked_expense_id == derived.id or t.id == per_expense_id,
        )
        self._save_timeline(run, derived, existing_entry, per_document=False)
