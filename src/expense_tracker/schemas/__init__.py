"""
SSOT (Single Source of Truth) schemas for the pipeline.

These canonical schemas are the ONLY models used across all modules.
No duplicated "near-same" models allowed.
"""

from .dedupe import (
    DEDUP_KEY_SEPARATOR,
    DOCUMENT_EXPENSE_PREFIX,
    HASH_PREFIX_LENGTH,
    RECURRING_EXPENSE_PREFIX,
    compute_file_hash,
    compute_stable_hash,
    document_expense_key,
    document_id_from_file_hash,
    expense_id_from_key,
    legacy_document_expense_id,
    legacy_recurring_expense_id,
    normalize_identifier,
    recurring_expense_key,
)
from .models import (
    Account,
    AccountType,
    DocumentMetadata,
    Expense,
    ExpenseStatus,
    ReconciliationSnapshot,
    Recurrence,
    RecurringExpenseCandidate,
    SourceType,
    StatementSettlement,
    Supplier,
    SupplierMetadata,
    TimelineEntry,
    TimelineEntryType,
    ValidationStatus,
    to_decimal,
)

__all__ = [
    # Entities
    "Account",
    "AccountType",
    "ValidationStatus",
    "Supplier",
    "SupplierMetadata",
    "DocumentMetadata",
    "SourceType",
    "RecurringExpenseCandidate",
    "StatementSettlement",
    "Expense",
    "ExpenseStatus",
    "Recurrence",
    "TimelineEntry",
    "TimelineEntryType",
    "ReconciliationSnapshot",
    "to_decimal",
    # Dedupe
    "DEDUP_KEY_SEPARATOR",
    "DOCUMENT_EXPENSE_PREFIX",
    "RECURRING_EXPENSE_PREFIX",
    "HASH_PREFIX_LENGTH",
    "normalize_identifier",
    "compute_stable_hash",
    "compute_file_hash",
    "document_id_from_file_hash",
    "document_expense_key",
    "recurring_expense_key",
    "expense_id_from_key",
    "legacy_document_expense_id",
    "legacy_recurring_expense_id",
]
