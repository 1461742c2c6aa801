"""Fuzzy entity resolution: accounts, suppliers and statement settlements."""

from expense_tracker.matching.accounts import (
    AccountResolution,
    ensure_account,
    resolve_account,
)
from expense_tracker.matching.settlement import (
    SettlementOutcome,
    amount_approximately_equals,
    settle_expenses_from_statement,
)
from expense_tracker.matching.suppliers import (
    SupplierResolution,
    humanise_document_name,
    resolve_supplier,
    resolve_supplier_for_recurring_candidate,
)

__all__ = [
    "AccountResolution",
    "ensure_account",
    "resolve_account",
    "SettlementOutcome",
    "amount_approximately_equals",
    "settle_expenses_from_statement",
    "SupplierResolution",
    "humanise_document_name",
    "resolve_supplier",
    "resolve_supplier_for_recurring_candidate",
]
