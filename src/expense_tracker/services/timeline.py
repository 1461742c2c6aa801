"""Timeline entries derived from expenses."""

from __future__ import annotations

from ..schemas.models import Expense, TimelineEntry, TimelineEntryType

TIMELINE_ID_PREFIX = "doc-timeline-"

TIMELINE_MUTABLE_FIELDS = ("date", "description", "amount", "currency", "linked_expense_id")


def timeline_entry_id(expense: Expense, per_document: bool = True) -> str:
    """Stable entry id for an expense.

    Invoice expenses key the entry by their document (one expense per
    document). Statement expenses key it by the expense, since one statement
    yields many expenses.
    """
    if per_document and expense.document_id:
        return f"{TIMELINE_ID_PREFIX}{expense.document_id}"
    return f"{TIMELINE_ID_PREFIX}{expense.id}"


def derive_timeline_entry_from_expense(
    expense: Expense,
    existing_entry: TimelineEntry | None = None,
    *,
    per_document: bool = True,
) -> TimelineEntry | None:
    """Build or update the timeline entry for an expense's due date.

    Returns the existing entry (or None) when the expense has no due date.
    """
    if not expense.due_date:
        return existing_entry

    return TimelineEntry(
        id=existing_entry.id if existing_entry else timeline_entry_id(expense, per_document),
        date=expense.due_date,
        type=TimelineEntryType.EXPENSE,
        description=expense.description,
        amount=expense.amount,
        currency=expense.currency,
        linked_expense_id=expense.id,
        linked_transfer_id=existing_entry.linked_transfer_id if existing_entry else None,
    )


def has_timeline_changed(existing: TimelineEntry | None, candidate: TimelineEntry) -> bool:
    """True when there is no existing entry or any mutable field differs."""
    if existing is None:
        return True
    return any(
        getattr(existing, name) != getattr(candidate, name) for name in TIMELINE_MUTABLE_FIELDS
    )
