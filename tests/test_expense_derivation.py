"""Tests for expense derivation from documents and recurring charges."""

from dataclasses import replace
from datetime import date
from decimal import Decimal

from expense_tracker.schemas.dedupe import document_expense_key, expense_id_from_key
from expense_tracker.schemas.models import ExpenseStatus, Recurrence, RecurringExpenseCandidate
from expense_tracker.services.expense_derivation import (
    build_recurring_expense,
    compute_next_due_date,
    derive_expense_from_document,
    has_expense_changed,
    parse_iso_date,
    recurring_expense_id,
)


class TestComputeNextDueDate:
    """Tests for monthly due date projection."""

    def test_clamps_to_day_28(self):
        """Day 31 becomes the 28th so it exists in February."""
        assert compute_next_due_date(31, "2024-02-15") == "2024-02-28"

    def test_rolls_to_next_month(self):
        """A day already passed moves to next month."""
        assert compute_next_due_date(10, "2024-02-15") == "2024-03-10"

    def test_same_day_rolls(self):
        """The reference day itself is not strictly after."""
        assert compute_next_due_date(15, "2024-02-15") == "2024-03-15"

    def test_december_rolls_into_january(self):
        """Year boundary is handled."""
        assert compute_next_due_date(5, "2024-12-20") == "2025-01-05"

    def test_existing_due_date_kept(self):
        """A stored due date is never recomputed."""
        assert compute_next_due_date(5, "2024-05-31", "2024-06-05") == "2024-06-05"

    def test_no_day_uses_reference_day(self):
        """Without an observed day the reference day is used, clamped."""
        assert compute_next_due_date(None, "2024-01-31") == "2024-02-28"

    def test_day_below_one_is_clamped(self):
        """Days below 1 become the 1st."""
        assert compute_next_due_date(0, "2024-03-10") == "2024-04-01"

    def test_timestamp_reference(self):
        """Full ISO timestamps are accepted as reference."""
        assert compute_next_due_date(20, "2024-05-31T10:00:00Z") == "2024-06-20"

    def test_unparseable_reference(self):
        """Garbage reference dates give None."""
        assert compute_next_due_date(5, "not a date") is None

    def test_parse_iso_date(self):
        """Dates, timestamps and prefixes parse."""
        assert parse_iso_date("2024-06-01T09:30:00Z") == date(2024, 6, 1)
        assert parse_iso_date("2024-06-01 garbage") == date(2024, 6, 1)
        assert parse_iso_date("") is None
        assert parse_iso_date(None) is None


class TestDeriveExpenseFromDocument:
    """Tests for the invoice/receipt expense path."""

    def test_new_expense(self, invoice_document, checking_account):
        """A complete invoice becomes a planned expense."""
        expense = derive_expense_from_document(invoice_document, [checking_account])
        key = document_expense_key(invoice_document)
        assert expense.id == expense_id_from_key("exp", key)
        assert expense.deduplication_key == key
        assert expense.account_id == "acc-1"
        assert expense.amount == Decimal("62.30")
        assert expense.due_date == "2024-06-10"
        assert expense.status == ExpenseStatus.PLANNED
        assert expense.description == "Energia Lisboa"
        assert expense.category == "Other"
        assert expense.document_id == invoice_document.id

    def test_missing_due_date(self, invoice_document, checking_account):
        """New expenses need an explicit due date."""
        doc = replace(invoice_document, due_date=None)
        assert derive_expense_from_document(doc, [checking_account]) is None

    def test_missing_amount(self, invoice_document, checking_account):
        """New expenses need an amount."""
        doc = replace(invoice_document, amount=None)
        assert derive_expense_from_document(doc, [checking_account]) is None

    def test_unresolved_account(self, invoice_document, checking_account):
        """Without an account no new expense is derived."""
        doc = replace(invoice_document, account_hint="Cartão Desconhecido")
        assert derive_expense_from_document(doc, [checking_account]) is None

    def test_unresolved_account_keeps_existing_account(self, invoice_document, checking_account):
        """An existing expense keeps its account when the hint does not resolve."""
        existing = derive_expense_from_document(invoice_document, [checking_account])
        doc = replace(invoice_document, account_hint="Cartão Desconhecido", amount=Decimal("70.00"))
        updated = derive_expense_from_document(doc, [checking_account], existing)
        assert updated.account_id == "acc-1"
        assert updated.amount == Decimal("70.00")

    def test_reupload_is_unchanged(self, invoice_document, checking_account):
        """Deriving twice yields an identical expense."""
        first = derive_expense_from_document(invoice_document, [checking_account])
        second = derive_expense_from_document(invoice_document, [checking_account], first)
        assert second == first
        assert not has_expense_changed(first, second)

    def test_document_values_win_for_amount_and_account(
        self, invoice_document, checking_account, card_account
    ):
        """Fresh amount and resolved account overwrite the existing ones."""
        existing = derive_expense_from_document(invoice_document, [checking_account])
        doc = replace(invoice_document, amount=Decimal("64.10"), account_hint="Visa 1234")
        updated = derive_expense_from_document(doc, [checking_account, card_account], existing)
        assert updated.id == existing.id
        assert updated.amount == Decimal("64.10")
        assert updated.account_id == "acc-card"
        assert has_expense_changed(existing, updated)

    def test_manual_description_and_category_survive(self, invoice_document, checking_account):
        """User edits to description and category are kept on re-upload."""
        existing = replace(
            derive_expense_from_document(invoice_document, [checking_account]),
            description="Luz casa",
            category="Utilities",
        )
        updated = derive_expense_from_document(invoice_document, [checking_account], existing)
        assert updated.description == "Luz casa"
        assert updated.category == "Utilities"

    def test_paid_status_survives(self, invoice_document, checking_account):
        """Re-uploading a paid invoice never reopens it."""
        existing = replace(
            derive_expense_from_document(invoice_document, [checking_account]),
            status=ExpenseStatus.PAID,
            paid_at="2024-06-09",
        )
        updated = derive_expense_from_document(invoice_document, [checking_account], existing)
        assert updated.status == ExpenseStatus.PAID
        assert updated.paid_at == "2024-06-09"

    def test_supplier_id_override(self, invoice_document, checking_account):
        """The resolved supplier id is recorded."""
        expense = derive_expense_from_document(
            invoice_document, [checking_account], supplier_id="sup-energialisboa"
        )
        assert expense.supplier_id == "sup-energialisboa"

    def test_account_id_override(self, invoice_document):
        """A pre-resolved account skips hint resolution."""
        expense = derive_expense_from_document(invoice_document, [], account_id="acc-9")
        assert expense.account_id == "acc-9"

    def test_expense_type_and_currency_defaults(self, invoice_document, checking_account):
        """Expense type becomes the category; missing currency uses the default."""
        doc = replace(invoice_document, expense_type="Utilities", currency=None)
        expense = derive_expense_from_document(doc, [checking_account], default_currency="USD")
        assert expense.category == "Utilities"
        assert expense.currency == "USD"


class TestBuildRecurringExpense:
    """Tests for recurring charge promotion."""

    def test_promotes_after_two_months(self, statement_document):
        """A charge seen in two distinct months becomes an expense under review."""
        candidate = RecurringExpenseCandidate(
            description="Netflix",
            average_amount=Decimal("11.99"),
            day_of_month=12,
            months_observed=("2024-04", "2024-05"),
        )
        expense = build_recurring_expense(candidate, statement_document, "acc-1")
        assert expense.id == recurring_expense_id(candidate, statement_document)
        assert expense.status == ExpenseStatus.UNDER_REVIEW
        assert expense.recurrence == Recurrence.MONTHLY
        assert expense.fixed is True
        assert expense.category == "Fixed expenses"
        assert expense.due_date == "2024-06-12"
        assert expense.currency == "EUR"

    def test_single_month_is_not_promoted(self, statement_document):
        """One month of observations is noise."""
        candidate = RecurringExpenseCandidate(
            description="Loja", average_amount=Decimal("12.90"), months_observed=("2024-05",)
        )
        assert build_recurring_expense(candidate, statement_document, "acc-1") is None

    def test_duplicate_months_count_once(self, statement_document):
        """Repeated month strings are counted once."""
        candidate = RecurringExpenseCandidate(
            description="Loja",
            average_amount=Decimal("12.90"),
            months_observed=("2024-05", "2024-05 "),
        )
        assert build_recurring_expense(candidate, statement_document, "acc-1") is None

    def test_configurable_threshold(self, statement_document):
        """The month threshold is a parameter."""
        candidate = RecurringExpenseCandidate(
            description="Loja", average_amount=Decimal("12.90"), months_observed=("2024-05",)
        )
        assert build_recurring_expense(candidate, statement_document, "acc-1", min_months=1)

    def test_missing_amount(self, statement_document):
        """Without an amount nothing is created."""
        candidate = RecurringExpenseCandidate(
            description="Netflix", months_observed=("2024-04", "2024-05")
        )
        assert build_recurring_expense(candidate, statement_document, "acc-1") is None

    def test_update_keeps_id_due_date_and_status(self, statement_document):
        """Next month's statement updates the amount only."""
        candidate = RecurringExpenseCandidate(
            description="Netflix",
            average_amount=Decimal("11.99"),
            day_of_month=12,
            months_observed=("2024-04", "2024-05"),
        )
        existing = replace(
            build_recurring_expense(candidate, statement_document, "acc-1"),
            status=ExpenseStatus.PLANNED,
        )
        later = replace(statement_document, upload_date="2024-06-30")
        changed = replace(candidate, average_amount=Decimal("13.99"))
        updated = build_recurring_expense(changed, later, "acc-1", existing_expense=existing)
        assert updated.id == existing.id
        assert updated.due_date == existing.due_date
        assert updated.status == ExpenseStatus.PLANNED
        assert updated.amount == Decimal("13.99")
