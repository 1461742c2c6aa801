"""Statement settlement matching.

Bank-statement lines are payments. Each one is matched against the open
(non-paid) expenses in strict stage order and the first stage that finds a
candidate wins:

1. ``expense_id_hint`` equals the expense id
2. ``document_id_hint`` equals the expense's document id
3. description containment (either way, normalized) on the statement's
   account, with an approximately equal amount when the line has one
4. amount-only on the statement's account, closest amount within tolerance

Paid expenses are terminal. Each line records itself on the expense it pays
(``settled_by``) and a line already recorded on some expense is never
matched again, so replaying a statement changes nothing even after newer
expenses with the same description or amount appear.
The matcher is pure; persistence and events belong to the caller.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, replace
from decimal import Decimal

from ..config import AMOUNT_TOLERANCE_FLOOR, AMOUNT_TOLERANCE_RATIO
from ..schemas.dedupe import normalize_identifier
from ..schemas.models import DocumentMetadata, Expense, ExpenseStatus, StatementSettlement

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SettlementOutcome:
    """Expense collection after settlement plus the expenses that flipped to paid."""

    expenses: tuple[Expense, ...]
    settled: tuple[Expense, ...] = ()


def amount_tolerance(
    amount: Decimal,
    floor: float = AMOUNT_TOLERANCE_FLOOR,
    ratio: float = AMOUNT_TOLERANCE_RATIO,
) -> Decimal:
    """Tolerance = max(floor, ratio * |amount|)."""
    return max(Decimal(str(floor)), abs(amount) * Decimal(str(ratio)))


def amount_approximately_equals(
    expected: Decimal,
    actual: Decimal,
    floor: float = AMOUNT_TOLERANCE_FLOOR,
    ratio: float = AMOUNT_TOLERANCE_RATIO,
) -> bool:
    """Compare absolute amounts within the settlement tolerance.

    Statements often show payments as negative numbers, so signs are ignored.
    """
    return abs(abs(expected) - abs(actual)) <= amount_tolerance(expected, floor, ratio)


def settlement_reference(document_id: str, index: int) -> str:
    """Stable reference for one line of a statement."""
    return f"{document_id}#{index}"


def _find_match(
    settlement: StatementSettlement,
    account_id: str,
    open_expenses: Sequence[Expense],
    floor: float,
    ratio: float,
) -> tuple[Expense | None, str]:
    if settlement.expense_id_hint:
        for expense in open_expenses:
            if expense.id == settlement.expense_id_hint:
                return expense, "expense-id"

    if settlement.document_id_hint:
        for expense in open_expenses:
            if expense.document_id and expense.document_id == settlement.document_id_hint:
                return expense, "document-id"

    same_account = [e for e in open_expenses if e.account_id == account_id]

    description = normalize_identifier(settlement.description)
    if description:
        for expense in same_account:
            candidate = normalize_identifier(expense.description)
            if not candidate or (description not in candidate and candidate not in description):
                continue
            if settlement.amount is not None and not amount_approximately_equals(
                settlement.amount, expense.amount, floor, ratio
            ):
                continue
            return expense, "description"

    if settlement.amount is not None:
        in_range = [
            e
            for e in same_account
            if amount_approximately_equals(settlement.amount, e.amount, floor, ratio)
        ]
        if in_range:
            closest = min(in_range, key=lambda e: abs(abs(e.amount) - abs(settlement.amount)))
            return closest, "amount"

    return None, ""


def settle_expenses_from_statement(
    settlements: Sequence[StatementSettlement],
    account_id: str,
    document: DocumentMetadata,
    expenses: Sequence[Expense],
    *,
    tolerance_floor: float = AMOUNT_TOLERANCE_FLOOR,
    tolerance_ratio: float = AMOUNT_TOLERANCE_RATIO,
) -> SettlementOutcome:
    """Mark expenses paid from the settlement lines of a statement.

    Args:
        settlements: Payment lines from the statement.
        account_id: Account the statement belongs to.
        document: The statement (its upload date is the last-resort paid date).
        expenses: Current expense collection (not mutated).

    Returns:
        SettlementOutcome with the updated collection and the settled expenses.
    """
    current = list(expenses)
    settled: list[Expense] = []
    used_lines = {e.settled_by for e in current if e.settled_by}

    for index, settlement in enumerate(settlements):
        line_ref = settlement_reference(document.id, index)
        if line_ref in used_lines:
            logger.debug("Settlement line %s already applied; skipping", line_ref)
            continue

        open_expenses = [e for e in current if not e.is_paid]
        match, stage = _find_match(
            settlement, account_id, open_expenses, tolerance_floor, tolerance_ratio
        )
        if match is None:
            logger.debug(
                "Settlement %r (%s) in document %s matched no open expense",
                settlement.description,
                settlement.amount,
                document.id,
            )
            continue

        if match.account_id != account_id:
            logger.debug(
                "Settlement matched expense %s on account %s, statement account is %s; skipping",
                match.id,
                match.account_id,
                account_id,
            )
            continue

        paid = replace(
            match,
            status=ExpenseStatus.PAID,
            paid_at=settlement.settled_on or match.paid_at or document.upload_date,
            settled_by=line_ref,
        )
        used_lines.add(line_ref)
        current = [paid if e.id == paid.id else e for e in current]
        settled.append(paid)
        logger.info("Expense %s settled by statement %s (%s match)", paid.id, document.id, stage)

    return SettlementOutcome(expenses=tuple(current), settled=tuple(settled))
