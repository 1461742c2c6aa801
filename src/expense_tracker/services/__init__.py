"""Services for expense derivation, timeline derivation and reconciliation."""

from expense_tracker.services.expense_derivation import (
    build_recurring_expense,
    compute_next_due_date,
    derive_expense_from_document,
    has_expense_changed,
)
from expense_tracker.services.reconciliation import (
    DocumentReconciliationService,
    ReconciliationCallbacks,
    ReconciliationResult,
    ReconciliationState,
)
from expense_tracker.services.timeline import (
    derive_timeline_entry_from_expense,
    has_timeline_changed,
)

__all__ = [
    "build_recurring_expense",
    "compute_next_due_date",
    "derive_expense_from_document",
    "has_expense_changed",
    "derive_timeline_entry_from_expense",
    "has_timeline_changed",
    "DocumentReconciliationService",
    "ReconciliationCallbacks",
    "ReconciliationResult",
    "ReconciliationState",
]
