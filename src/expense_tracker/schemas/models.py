"""
Canonical entity models (SSOT).

Every module in the pipeline uses these types exclusively. Entities are
frozen dataclasses: the reconciliation engine never mutates a record in
place, it builds a replacement with ``dataclasses.replace``.

Serialization uses snake_case keys. ``from_dict`` also accepts the camelCase
keys and the Portuguese enum values written by the original web client
(``dueDate``, ``sourceType: "fatura"``, ``status: "planeado"``, ...), so
documents already sitting in the store keep loading. Values that are neither
raise ``ValueError``.
"""

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Mapping, Optional


class SourceType(str, Enum):
    """Kind of uploaded financial document."""

    INVOICE = "invoice"
    RECEIPT = "receipt"
    STATEMENT = "statement"


class AccountType(str, Enum):
    """Account type."""

    CHECKING = "checking"
    SAVINGS = "savings"
    CARD = "card"
    OTHER = "other"


class ValidationStatus(str, Enum):
    """Whether a human has confirmed the account exists as recorded."""

    VALIDATED = "validated"
    NEEDS_MANUAL_VALIDATION = "needs-manual-validation"


class ExpenseStatus(str, Enum):
    """
    Expense lifecycle.

    PLANNED: Created from an invoice/receipt, awaiting payment
    UNDER_REVIEW: Detected automatically from a statement, needs confirmation
    PAID: Settled by a statement line (terminal for the settlement matcher)
    """

    PLANNED = "planned"
    PAID = "paid"
    UNDER_REVIEW = "under-review"


class Recurrence(str, Enum):
    """Expense recurrence."""

    MONTHLY = "monthly"
    YEARLY = "yearly"
    HALF_YEARLY = "half-yearly"
    ONE_OFF = "one-off"


class TimelineEntryType(str, Enum):
    """Timeline entry type."""

    EXPENSE = "expense"
    DUE_DATE = "due-date"
    TRANSFER = "transfer"


# Enum values written by the original (Portuguese) web client
LEGACY_ENUM_VALUES: dict[type, dict[str, Enum]] = {
    SourceType: {
        "fatura": SourceType.INVOICE,
        "recibo": SourceType.RECEIPT,
        "extracto": SourceType.STATEMENT,
        "extrato": SourceType.STATEMENT,
    },
    AccountType: {
        "corrente": AccountType.CHECKING,
        "poupanca": AccountType.SAVINGS,
        "cartao": AccountType.CARD,
        "outro": AccountType.OTHER,
    },
    ValidationStatus: {
        "validado": ValidationStatus.VALIDATED,
        "validacao-manual": ValidationStatus.NEEDS_MANUAL_VALIDATION,
    },
    ExpenseStatus: {
        "planeado": ExpenseStatus.PLANNED,
        "pago": ExpenseStatus.PAID,
        "em-analise": ExpenseStatus.UNDER_REVIEW,
    },
    Recurrence: {
        "mensal": Recurrence.MONTHLY,
        "anual": Recurrence.YEARLY,
        "semestral": Recurrence.HALF_YEARLY,
        "pontual": Recurrence.ONE_OFF,
    },
    TimelineEntryType: {
        "despesa": TimelineEntryType.EXPENSE,
        "vencimento": TimelineEntryType.DUE_DATE,
        "transferencia": TimelineEntryType.TRANSFER,
    },
}


def parse_enum(enum_type: type, value: Any, default: Optional[Enum] = None) -> Any:
    """
    Parse a stored enum value, accepting legacy spellings.

    Missing values give ``default``; unknown values raise ValueError.
    """
    if value is None or value == "":
        return default
    if isinstance(value, enum_type):
        return value
    key = str(value).strip().lower()
    legacy = LEGACY_ENUM_VALUES.get(enum_type, {})
    if key in legacy:
        return legacy[key]
    return enum_type(key)


def _get(data: Mapping[str, Any], key: str, camel: Optional[str] = None, default: Any = None) -> Any:
    """Read a snake_case key, falling back to its camelCase spelling."""
    if key in data and data[key] is not None:
        return data[key]
    if camel and camel in data and data[camel] is not None:
        return data[camel]
    return default


def to_decimal(value: Any) -> Optional[Decimal]:
    """
    Convert an amount to Decimal.

    Accepts Decimal, int, float and strings (comma as decimal separator is
    tolerated). Returns None for missing or unparseable values.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value
    if isinstance(value, (int, float)):
        return Decimal(str(value))
    if isinstance(value, str):
        cleaned = value.strip().replace(",", ".")
        if not cleaned:
            return None
        try:
            return Decimal(cleaned)
        except InvalidOperation:
            return None
    return None


def _amount_str(value: Optional[Decimal]) -> Optional[str]:
    return str(value) if value is not None else None


def _enum_value(value: Optional[Enum]) -> Optional[str]:
    return value.value if value is not None else None


@dataclass(frozen=True)
class Account:
    """
    A user account (bank account, card, savings pot).

    ``metadata`` is a free-form bag; identifier fields (``iban``,
    ``account_number``, ...) and hint lists (``hints``, ``aliases``) inside it
    take part in fuzzy account resolution.
    """

    id: str
    name: str
    type: AccountType = AccountType.OTHER
    balance: Decimal = Decimal("0")
    currency: str = "EUR"
    validation_status: ValidationStatus = ValidationStatus.VALIDATED
    iban: Optional[str] = None
    account_number: Optional[str] = None
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        """Serialize to dictionary for storage."""
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type.value,
            "balance": str(self.balance),
            "currency": self.currency,
            "validation_status": self.validation_status.value,
            "iban": self.iban,
            "account_number": self.account_number,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Account":
        """Deserialize from dictionary."""
        try:
            account_type = parse_enum(AccountType, data.get("type"), AccountType.OTHER)
        except ValueError:
            account_type = AccountType.OTHER
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            type=account_type,
            balance=to_decimal(data.get("balance")) or Decimal("0"),
            currency=data.get("currency") or "EUR",
            validation_status=parse_enum(
                ValidationStatus,
                _get(data, "validation_status", "validationStatus"),
                ValidationStatus.VALIDATED,
            ),
            iban=data.get("iban"),
            account_number=_get(data, "account_number", "accountNumber"),
            metadata=dict(data.get("metadata") or {}),
        )


@dataclass(frozen=True)
class SupplierMetadata:
    """Merged supplier knowledge. Lists only ever grow."""

    tax_id: Optional[str] = None
    aliases: tuple[str, ...] = ()
    account_hints: tuple[str, ...] = ()
    notes: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "tax_id": self.tax_id,
            "aliases": list(self.aliases),
            "account_hints": list(self.account_hints),
            "notes": self.notes,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SupplierMetadata":
        return cls(
            tax_id=_get(data, "tax_id", "taxId"),
            aliases=tuple(data.get("aliases") or ()),
            account_hints=tuple(_get(data, "account_hints", "accountHints", ())),
            notes=data.get("notes"),
        )


@dataclass(frozen=True)
class Supplier:
    """
    A supplier (utility, shop, bank).

    A supplier with ``reference_to_id`` set is an alias record pointing at a
    canonical supplier; resolution always follows the reference.
    """

    id: str
    name: str
    metadata: Optional[SupplierMetadata] = None
    reference_to_id: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "metadata": self.metadata.to_dict() if self.metadata else None,
            "reference_to_id": self.reference_to_id,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Supplier":
        metadata = data.get("metadata")
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            metadata=SupplierMetadata.from_dict(metadata) if metadata else None,
            reference_to_id=_get(data, "reference_to_id", "referenceToId"),
        )


@dataclass(frozen=True)
class RecurringExpenseCandidate:
    """A repeating charge pattern detected inside a bank statement."""

    description: str
    average_amount: Optional[Decimal] = None
    currency: Optional[str] = None
    account_hint: Optional[str] = None
    day_of_month: Optional[int] = None
    months_observed: tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {
            "description": self.description,
            "average_amount": _amount_str(self.average_amount),
            "currency": self.currency,
            "account_hint": self.account_hint,
            "day_of_month": self.day_of_month,
            "months_observed": list(self.months_observed),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RecurringExpenseCandidate":
        day = _get(data, "day_of_month", "dayOfMonth")
        return cls(
            description=data.get("description") or "",
            average_amount=to_decimal(_get(data, "average_amount", "averageAmount")),
            currency=data.get("currency"),
            account_hint=_get(data, "account_hint", "accountHint"),
            day_of_month=int(day) if isinstance(day, (int, float)) else None,
            months_observed=tuple(_get(data, "months_observed", "monthsObserved", ())),
        )


@dataclass(frozen=True)
class StatementSettlement:
    """A bank-statement line representing an actual payment."""

    description: Optional[str] = None
    amount: Optional[Decimal] = None
    settled_on: Optional[str] = None
    expense_id_hint: Optional[str] = None
    document_id_hint: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "description": self.description,
            "amount": _amount_str(self.amount),
            "settled_on": self.settled_on,
            "expense_id_hint": self.expense_id_hint,
            "document_id_hint": self.document_id_hint,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "StatementSettlement":
        return cls(
            description=data.get("description"),
            amount=to_decimal(data.get("amount")),
            settled_on=_get(data, "settled_on", "settledOn"),
            expense_id_hint=_get(data, "expense_id_hint", "expenseIdHint"),
            document_id_hint=_get(data, "document_id_hint", "documentIdHint"),
        )


@dataclass(frozen=True)
class DocumentMetadata:
    """
    Extraction result for one uploaded document.

    Immutable once extracted; the reconciliation engine only reads it.
    """

    id: str
    original_name: str
    upload_date: str
    source_type: SourceType = SourceType.INVOICE
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    due_date: Optional[str] = None
    account_hint: Optional[str] = None
    company_name: Optional[str] = None
    expense_type: Optional[str] = None
    notes: Optional[str] = None
    supplier_id: Optional[str] = None
    supplier_tax_id: Optional[str] = None
    statement_account_iban: Optional[str] = None
    recurring_expenses: tuple[RecurringExpenseCandidate, ...] = ()
    statement_settlements: tuple[StatementSettlement, ...] = ()
    extracted_at: Optional[str] = None

    @property
    def is_statement(self) -> bool:
        return self.source_type == SourceType.STATEMENT

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "original_name": self.original_name,
            "upload_date": self.upload_date,
            "source_type": self.source_type.value,
            "amount": _amount_str(self.amount),
            "currency": self.currency,
            "due_date": self.due_date,
            "account_hint": self.account_hint,
            "company_name": self.company_name,
            "expense_type": self.expense_type,
            "notes": self.notes,
            "supplier_id": self.supplier_id,
            "supplier_tax_id": self.supplier_tax_id,
            "statement_account_iban": self.statement_account_iban,
            "recurring_expenses": [c.to_dict() for c in self.recurring_expenses],
            "statement_settlements": [s.to_dict() for s in self.statement_settlements],
            "extracted_at": self.extracted_at,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "DocumentMetadata":
        return cls(
            id=data["id"],
            original_name=_get(data, "original_name", "originalName", ""),
            upload_date=_get(data, "upload_date", "uploadDate", ""),
            source_type=parse_enum(
                SourceType, _get(data, "source_type", "sourceType"), SourceType.INVOICE
            ),
            amount=to_decimal(data.get("amount")),
            currency=data.get("currency"),
            due_date=_get(data, "due_date", "dueDate"),
            account_hint=_get(data, "account_hint", "accountHint"),
            company_name=_get(data, "company_name", "companyName"),
            expense_type=_get(data, "expense_type", "expenseType"),
            notes=data.get("notes"),
            supplier_id=_get(data, "supplier_id", "supplierId"),
            supplier_tax_id=_get(data, "supplier_tax_id", "supplierTaxId"),
            statement_account_iban=_get(data, "statement_account_iban", "statementAccountIban"),
            recurring_expenses=tuple(
                RecurringExpenseCandidate.from_dict(item)
                for item in _get(data, "recurring_expenses", "recurringExpenses", ())
                if isinstance(item, Mapping)
            ),
            statement_settlements=tuple(
                StatementSettlement.from_dict(item)
                for item in _get(data, "statement_settlements", "statementSettlements", ())
                if isinstance(item, Mapping)
            ),
            extracted_at=_get(data, "extracted_at", "extractedAt"),
        )


@dataclass(frozen=True)
class Expense:
    """
    A planned, reviewed or paid expense.

    ``id`` is either caller-supplied (edit path) or derived from
    ``deduplication_key`` at creation; it never changes afterwards.
    ``settled_by`` names the statement line (``<document id>#<line index>``)
    that paid the expense.
    """

    id: str
    account_id: str
    description: str
    category: str
    amount: Decimal
    currency: str
    due_date: str
    document_id: Optional[str] = None
    recurrence: Optional[Recurrence] = None
    fixed: bool = True
    status: ExpenseStatus = ExpenseStatus.PLANNED
    supplier_id: Optional[str] = None
    deduplication_key: Optional[str] = None
    paid_at: Optional[str] = None
    settled_by: Optional[str] = None

    @property
    def is_paid(self) -> bool:
        return self.status == ExpenseStatus.PAID

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_id": self.document_id,
            "account_id": self.account_id,
            "description": self.description,
            "category": self.category,
            "amount": str(self.amount),
            "currency": self.currency,
            "due_date": self.due_date,
            "recurrence": _enum_value(self.recurrence),
            "fixed": self.fixed,
            "status": self.status.value,
            "supplier_id": self.supplier_id,
            "deduplication_key": self.deduplication_key,
            "paid_at": self.paid_at,
            "settled_by": self.settled_by,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Expense":
        return cls(
            id=data["id"],
            document_id=_get(data, "document_id", "documentId"),
            account_id=_get(data, "account_id", "accountId", ""),
            description=data.get("description", ""),
            category=data.get("category", ""),
            amount=to_decimal(data.get("amount")) or Decimal("0"),
            currency=data.get("currency") or "EUR",
            due_date=_get(data, "due_date", "dueDate", ""),
            recurrence=parse_enum(Recurrence, data.get("recurrence")),
            fixed=bool(data.get("fixed", True)),
            status=parse_enum(ExpenseStatus, data.get("status"), ExpenseStatus.PLANNED),
            supplier_id=_get(data, "supplier_id", "supplierId"),
            deduplication_key=_get(data, "deduplication_key", "deduplicationKey"),
            paid_at=_get(data, "paid_at", "paidAt"),
            settled_by=_get(data, "settled_by", "settledBy"),
        )


@dataclass(frozen=True)
class TimelineEntry:
    """A dated event on the unified financial timeline."""

    id: str
    date: str
    type: TimelineEntryType
    description: str
    amount: Decimal
    currency: str
    linked_expense_id: Optional[str] = None
    linked_transfer_id: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "date": self.date,
            "type": self.type.value,
            "description": self.description,
            "amount": str(self.amount),
            "currency": self.currency,
            "linked_expense_id": self.linked_expense_id,
            "linked_transfer_id": self.linked_transfer_id,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "TimelineEntry":
        return cls(
            id=data["id"],
            date=data.get("date", ""),
            type=parse_enum(TimelineEntryType, data.get("type"), TimelineEntryType.EXPENSE),
            description=data.get("description", ""),
            amount=to_decimal(data.get("amount")) or Decimal("0"),
            currency=data.get("currency") or "EUR",
            linked_expense_id=_get(data, "linked_expense_id", "linkedExpenseId"),
            linked_transfer_id=_get(data, "linked_transfer_id", "linkedTransferId"),
        )


@dataclass(frozen=True)
class ReconciliationSnapshot:
    """
    Caller-owned collections the engine reconciles against.

    The engine never mutates a snapshot; it returns a new one.
    """

    accounts: tuple[Account, ...] = ()
    suppliers: tuple[Supplier, ...] = ()
    expenses: tuple[Expense, ...] = ()
    timeline_entries: tuple[TimelineEntry, ...] = ()
