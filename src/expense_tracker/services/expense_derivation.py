"""Expense derivation from extracted documents.

Two creation paths produce expenses:

- Invoices and receipts: one expense per document
  (``derive_expense_from_document``)
- Bank statements: one expense per recurring charge seen in at least
  ``min_months`` distinct months (``build_recurring_expense``)

Field precedence when an expense already exists: values freshly extracted
from the document win for amount, due date and account; description and
category keep the existing values so manual edits survive re-uploads.
The id and dedup key are fixed when the expense is first created.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import date, datetime
from decimal import Decimal

from ..config import MIN_FUZZY_CANDIDATE_LENGTH, MIN_RECURRING_MONTHS
from ..matching.accounts import resolve_account
from ..matching.suppliers import humanise_document_name
from ..schemas.dedupe import (
    DOCUMENT_EXPENSE_PREFIX,
    RECURRING_EXPENSE_PREFIX,
    document_expense_key,
    expense_id_from_key,
    legacy_document_expense_id,
    legacy_recurring_expense_id,
    recurring_expense_key,
)
from ..schemas.models import (
    Account,
    DocumentMetadata,
    Expense,
    ExpenseStatus,
    Recurrence,
    RecurringExpenseCandidate,
)

logger = logging.getLogger(__name__)

DEFAULT_CURRENCY = "EUR"
DEFAULT_CATEGORY = "Other"
RECURRING_CATEGORY = "Fixed expenses"

# Highest day that exists in every month
MAX_SAFE_DAY_OF_MONTH = 28

# Fields whose change warrants a write (and a new timeline derivation)
EXPENSE_MUTABLE_FIELDS = (
    "account_id",
    "description",
    "category",
    "amount",
    "currency",
    "due_date",
    "recurrence",
    "fixed",
    "status",
)


def parse_iso_date(value: str | date | None) -> date | None:
    """Parse ``YYYY-MM-DD`` or a full ISO timestamp into a date.

    Returns None for missing or unparseable values.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = value.strip()
    if not text:
        return None
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text).date()
    except ValueError:
        try:
            return date.fromisoformat(text[:10])
        except ValueError:
            return None


def _add_month(day: date) -> date:
    if day.month == 12:
        return day.replace(year=day.year + 1, month=1)
    return day.replace(month=day.month + 1)


def compute_next_due_date(
    day_of_month: int | None,
    reference_date: str | date | None = None,
    existing_due_date: str | None = None,
) -> str | None:
    """Next occurrence of a monthly charge strictly after the reference date.

    An existing due date is kept as-is. Otherwise the day is clamped to
    [1, 28] (default: the reference date's own day, clamped) so the result
    exists in every month, then rolled to the next month when it is not
    after the reference date.

    Args:
        day_of_month: Observed day of the charge, if known.
        reference_date: Usually the statement's upload date; today if None.
        existing_due_date: Due date already stored on the expense.

    Returns:
        ``YYYY-MM-DD`` string, or None when the reference date is unparseable.

    Examples:
        >>> compute_next_due_date(31, "2024-02-15")
        '2024-02-28'
        >>> compute_next_due_date(10, "2024-02-15")
        '2024-03-10'
    """
    if existing_due_date:
        return existing_due_date

    reference = parse_iso_date(reference_date) if reference_date is not None else date.today()
    if reference is None:
        return None

    if day_of_month is not None:
        day = min(max(int(round(day_of_month)), 1), MAX_SAFE_DAY_OF_MONTH)
    else:
        day = min(reference.day, MAX_SAFE_DAY_OF_MONTH)

    candidate = reference.replace(day=day)
    if candidate <= reference:
        candidate = _add_month(candidate)
    return candidate.isoformat()


def has_expense_changed(existing: Expense | None, candidate: Expense) -> bool:
    """True when there is no existing expense or any mutable field differs."""
    if existing is None:
        return True
    return any(
        getattr(existing, name) != getattr(candidate, name) for name in EXPENSE_MUTABLE_FIELDS
    )


def derive_expense_from_document(
    document: DocumentMetadata,
    accounts: Iterable[Account],
    existing_expense: Expense | None = None,
    supplier_id: str | None = None,
    *,
    account_id: str | None = None,
    min_candidate_length: int = MIN_FUZZY_CANDIDATE_LENGTH,
    default_currency: str = DEFAULT_CURRENCY,
    default_category: str = DEFAULT_CATEGORY,
) -> Expense | None:
    """Build or update the expense of an invoice/receipt.

    Args:
        document: Extracted invoice or receipt.
        accounts: Known accounts for resolving ``document.account_hint``.
        existing_expense: Expense previously derived from the same bill.
        supplier_id: Resolved supplier id (overrides the document's).
        account_id: Already-resolved account id, skipping hint resolution.

    Returns:
        The derived expense; the existing expense unchanged when no account
        resolves; None when a new expense lacks amount, due date or account.
    """
    existing = existing_expense

    if account_id is None:
        matched = resolve_account(document.account_hint, accounts, min_candidate_length)
        account_id = matched.id if matched else None
    resolved_account_id = account_id or (existing.account_id if existing else None)

    amount = document.amount if document.amount is not None else (existing.amount if existing else None)
    due_date = document.due_date or (existing.due_date if existing else None) or document.upload_date

    # A brand-new expense needs an amount and an explicit due date
    if existing is None and (amount is None or not document.due_date):
        logger.debug("Document %s lacks amount or due date; no expense derived", document.id)
        return None
    if not resolved_account_id:
        logger.debug(
            "Document %s account hint %r did not resolve; no expense derived",
            document.id,
            document.account_hint,
        )
        return existing
    if amount is None:
        return existing

    if existing is not None:
        expense_id = existing.id
        deduplication_key = existing.deduplication_key or document_expense_key(document)
    else:
        deduplication_key = document_expense_key(document)
        expense_id = (
            expense_id_from_key(DOCUMENT_EXPENSE_PREFIX, deduplication_key)
            if deduplication_key
            else legacy_document_expense_id(document.id)
        )

    return Expense(
        id=expense_id,
        document_id=document.id,
        account_id=resolved_account_id,
        description=(existing.description if existing else None)
        or document.company_name
        or humanise_document_name(document.original_name),
        category=(existing.category if existing else None)
        or document.expense_type
        or default_category,
        amount=Decimal(amount),
        currency=document.currency
        or (existing.currency if existing else None)
        or default_currency,
        due_date=due_date,
        recurrence=existing.recurrence if existing else None,
        fixed=existing.fixed if existing else True,
        status=existing.status if existing else ExpenseStatus.PLANNED,
        supplier_id=supplier_id or document.supplier_id or (existing.supplier_id if existing else None),
        deduplication_key=deduplication_key,
        paid_at=existing.paid_at if existing else None,
        settled_by=existing.settled_by if existing else None,
    )


def recurring_expense_id(candidate: RecurringExpenseCandidate, document: DocumentMetadata) -> str:
    """Deterministic id for a recurring statement charge."""
    key = recurring_expense_key(candidate, document)
    if key:
        return expense_id_from_key(RECURRING_EXPENSE_PREFIX, key)
    return legacy_recurring_expense_id(document.id, candidate.description)


def build_recurring_expense(
    candidate: RecurringExpenseCandidate,
    document: DocumentMetadata,
    account_id: str,
    supplier_id: str | None = None,
    existing_expense: Expense | None = None,
    *,
    min_months: int = MIN_RECURRING_MONTHS,
    default_currency: str = DEFAULT_CURRENCY,
    category: str = RECURRING_CATEGORY,
) -> Expense | None:
    """Promote a recurring statement charge to an expense.

    Charges observed in fewer than ``min_months`` distinct months are noise:
    the existing expense (or None) is returned untouched.
    """
    existing = existing_expense
    months = {month.strip() for month in candidate.months_observed if month and month.strip()}
    if len(months) < min_months:
        logger.debug(
            "Recurring charge %r seen in %d month(s), below %d; not promoted",
            candidate.description,
            len(months),
            min_months,
        )
        return existing

    amount = (
        candidate.average_amount
        if candidate.average_amount is not None
        else (existing.amount if existing else None)
    )
    if amount is None:
        return existing

    due_date = (
        compute_next_due_date(
            candidate.day_of_month,
            document.upload_date,
            existing.due_date if existing else None,
        )
        or document.due_date
        or document.upload_date
    )

    return Expense(
        id=existing.id if existing else recurring_expense_id(candidate, document),
        document_id=document.id,
        account_id=account_id,
        description=(existing.description if existing else None) or candidate.description.strip(),
        category=(existing.category if existing else None) or category,
        amount=Decimal(amount),
        currency=candidate.currency
        or document.currency
        or (existing.currency if existing else None)
        or default_currency,
        due_date=due_date,
        recurrence=Recurrence.MONTHLY,
        fixed=True,
        status=existing.status if existing else ExpenseStatus.UNDER_REVIEW,
        supplier_id=supplier_id or (existing.supplier_id if existing else None),
        deduplication_key=(existing.deduplication_key if existing else None)
        or recurring_expense_key(candidate, document),
        paid_at=existing.paid_at if existing else None,
        settled_by=existing.settled_by if existing else None,
    )
