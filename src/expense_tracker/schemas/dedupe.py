"""
Dedupe key generation (CRITICAL).

This module defines THE deterministic expense identity functions.
This is the ONLY way to generate expense ids on the creation path.

Key formats:
1. Document expenses (invoice/receipt):
   key = source_type|company_or_file_name|amount|currency|due_date|account_hint|tax_id
   id  = "exp-" + SHA256(normalized key)[:16]

2. Recurring expenses (bank statement candidates):
   key = source_type|statement_iban_or_hint|candidate_hint|description
   id  = "rexp-" + SHA256(normalized key)[:16]

Keys must be:
- Stable: same logical document always produces the same key
- Insensitive to whitespace, accents and case in free-text components
- Independent of object identity (pure functions of content)
- Reproducible across processes (no salted builtin hash())
"""

import hashlib
import re
import unicodedata
from decimal import Decimal
from typing import Optional, Union

from .models import DocumentMetadata, RecurringExpenseCandidate, SourceType

# ============================================================================
# SSOT Constants for key generation
# ============================================================================

# Separator between key components
DEDUP_KEY_SEPARATOR = "|"

# Length of the hash prefix used in ids
HASH_PREFIX_LENGTH = 16

# Id prefixes
DOCUMENT_EXPENSE_PREFIX = "exp"
RECURRING_EXPENSE_PREFIX = "rexp"

# Legacy id patterns (still looked up for backwards compatibility)
LEGACY_DOCUMENT_EXPENSE_PREFIX = "doc-exp-"

_NON_ALPHANUMERIC = re.compile(r"[^a-z0-9]", re.IGNORECASE)
_WHITESPACE = re.compile(r"\s+")

KeyComponent = Union[str, Decimal, int, float, None]


def _strip_diacritics(value: str) -> str:
    decomposed = unicodedata.normalize("NFD", value)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def normalize_identifier(value: Optional[str]) -> str:
    """
    Canonicalize free text for fuzzy comparison.

    Strips diacritics, removes every non-alphanumeric character and
    lowercases. Total: None and empty strings normalize to "".

    Examples:
        >>> normalize_identifier("Ginásio Fit, Lda.")
        'ginasiofitlda'
        >>> normalize_identifier("PT50 0001 2345")
        'pt5000012345'
    """
    if not value:
        return ""
    return _NON_ALPHANUMERIC.sub("", _strip_diacritics(value)).lower()


def _normalize_component(value: KeyComponent) -> Optional[str]:
    """
    Normalize one key component.

    Numbers are rendered with 2 decimal places; strings are trimmed,
    whitespace-collapsed, accent-stripped and lowercased. Empty values
    return None and are left out of the key.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, (Decimal, int, float)):
        amount = Decimal(str(value)) if isinstance(value, float) else Decimal(value)
        if not amount.is_finite():
            return None
        return f"{amount:.2f}"
    if isinstance(value, str):
        cleaned = _WHITESPACE.sub(" ", value.strip())
        if not cleaned:
            return None
        return _strip_diacritics(cleaned).lower()
    return None


def build_deduplication_key(components: list[KeyComponent]) -> Optional[str]:
    """
    Join the normalized, non-empty components into a key.

    Returns:
        The key, or None if every component was empty.
    """
    segments = [s for s in (_normalize_component(c) for c in components) if s]
    if not segments:
        return None
    return DEDUP_KEY_SEPARATOR.join(segments)


def compute_stable_hash(value: str) -> str:
    """
    Compute a 64-character lowercase hex SHA256 of a string.

    Used instead of ``hash()`` because ids must be identical across runs
    and processes.
    """
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def expense_id_from_key(prefix: str, deduplication_key: str) -> str:
    """
    Derive a deterministic expense id from a dedup key.

    Format: {prefix}-{sha256(normalized key)[:16]}

    Examples:
        >>> expense_id_from_key("exp", "invoice|energia lisboa|62.30")[:4]
        'exp-'
    """
    normalized = normalize_identifier(deduplication_key)
    digest = compute_stable_hash(normalized or deduplication_key)
    return f"{prefix}-{digest[:HASH_PREFIX_LENGTH]}"


def document_expense_key(document: DocumentMetadata) -> Optional[str]:
    """
    Build the dedup key for an invoice/receipt expense.

    Components (in order): source type, company name (or original file
    name), amount, currency, due date, account hint, supplier tax id.

    Returns:
        The key, or None if the document has no amount (insufficient signal).
    """
    if document.amount is None:
        return None
    return build_deduplication_key(
        [
            document.source_type.value if document.source_type else SourceType.INVOICE.value,
            document.company_name or document.original_name,
            document.amount,
            document.currency,
            document.due_date,
            document.account_hint,
            document.supplier_tax_id,
        ]
    )


def recurring_expense_key(
    candidate: RecurringExpenseCandidate,
    document: DocumentMetadata,
) -> Optional[str]:
    """
    Build the dedup key for a recurring charge detected in a statement.

    The observed average amount is deliberately not part of the key: next
    month's statement should update the same expense, not create another.

    Returns:
        The key, or None if the candidate has no description.
    """
    if not candidate.description or not candidate.description.strip():
        return None
    return build_deduplication_key(
        [
            document.source_type.value if document.source_type else SourceType.STATEMENT.value,
            document.statement_account_iban or document.account_hint,
            candidate.account_hint,
            candidate.description,
        ]
    )


def legacy_document_expense_id(document_id: str) -> str:
    """Id format written by earlier versions for document expenses."""
    return f"{LEGACY_DOCUMENT_EXPENSE_PREFIX}{document_id}"


def legacy_recurring_expense_id(document_id: str, description: str) -> str:
    """Id format written by earlier versions for recurring statement expenses."""
    doc_segment = normalize_identifier(document_id)[-12:] or "doc"
    description_segment = normalize_identifier(description)[:24] or "item"
    return f"{LEGACY_DOCUMENT_EXPENSE_PREFIX}{doc_segment}-{description_segment}"


def compute_file_hash(file_bytes: bytes) -> str:
    """
    Compute SHA256 hash of file bytes.

    Returns:
        64-character lowercase hex string
    """
    return hashlib.sha256(file_bytes).hexdigest()


def document_id_from_file_hash(file_hash: str) -> str:
    """Content-addressed document id: the same file always maps to the same id."""
    return f"doc-{file_hash[:HASH_PREFIX_LENGTH]}"
