"""Account resolution from free-text account hints.

Account hints come straight out of document extraction ("Conta Corrente",
"PT50 0001 2345 ...", "Visa ****1234"), so matching is fuzzy: every account
contributes a set of normalized candidate strings and the hint matches when
it equals a candidate or, for candidates long enough to be meaningful, one
contains the other.

Resolution never fabricates an account. ``ensure_account`` layers the
configurable auto-create policy on top for setups that want placeholders.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from decimal import Decimal

from ..config import MIN_FUZZY_CANDIDATE_LENGTH, AccountPolicy
from ..schemas.dedupe import normalize_identifier
from ..schemas.models import Account, AccountType, DocumentMetadata, ValidationStatus

logger = logging.getLogger(__name__)

# Identifier-like fields looked up on the account and inside its metadata bag
ACCOUNT_IDENTIFIER_KEYS = (
    "iban",
    "iban_number",
    "ibanNumber",
    "account_number",
    "accountNumber",
    "number",
    "identifier",
)

# Metadata keys holding lists of extra hints
ACCOUNT_HINT_LIST_KEYS = ("hints", "account_hints", "accountHints", "aliases")

AUTO_ACCOUNT_PREFIX = "acc-auto"


@dataclass(frozen=True)
class AccountResolution:
    """Result of applying the account policy to a hint."""

    account: Account | None
    accounts: tuple[Account, ...]
    created: bool = False


def account_candidates(account: Account) -> set[str]:
    """Collect the normalized strings an account can be matched by."""
    raw: list[object] = [account.id, account.name, account.iban, account.account_number]
    metadata = account.metadata or {}
    for key in ACCOUNT_IDENTIFIER_KEYS:
        raw.append(metadata.get(key))
    for key in ACCOUNT_HINT_LIST_KEYS:
        values = metadata.get(key)
        if isinstance(values, (list, tuple)):
            raw.extend(values)

    candidates = set()
    for value in raw:
        if isinstance(value, str):
            normalized = normalize_identifier(value)
            if normalized:
                candidates.add(normalized)
    return candidates


def _matches(candidate: str, hint: str, min_candidate_length: int) -> bool:
    if candidate == hint:
        return True
    # Short tokens like "nb" would otherwise match half the accounts
    if len(candidate) < min_candidate_length or len(hint) < min_candidate_length:
        return False
    return hint in candidate or candidate in hint


def resolve_account(
    hint: str | None,
    accounts: Iterable[Account],
    min_candidate_length: int = MIN_FUZZY_CANDIDATE_LENGTH,
) -> Account | None:
    """Find the account a free-text hint refers to.

    Args:
        hint: Account hint from the document (name, IBAN, number...).
        accounts: Known accounts, searched in order.
        min_candidate_length: Minimum length for substring matching.
            Exact equality matches regardless of length.

    Returns:
        The first matching account, or None when there is no hint or no match.
    """
    normalized_hint = normalize_identifier(hint)
    if not normalized_hint:
        return None

    for account in accounts:
        for candidate in account_candidates(account):
            if _matches(candidate, normalized_hint, min_candidate_length):
                logger.debug("Account hint %r resolved to %s via %r", hint, account.id, candidate)
                return account

    logger.debug("Account hint %r did not match any account", hint)
    return None


def build_auto_account_id(name: str, existing_ids: Iterable[str]) -> str:
    """Deterministic placeholder account id, suffixed on collision."""
    base = f"{AUTO_ACCOUNT_PREFIX}-{normalize_identifier(name) or 'account'}"
    taken = set(existing_ids)
    candidate = base
    suffix = 2
    while candidate in taken:
        candidate = f"{base}-{suffix}"
        suffix += 1
    return candidate


def ensure_account(
    hint: str | None,
    fallback_name: str | None,
    document: DocumentMetadata,
    accounts: Sequence[Account],
    policy: AccountPolicy = AccountPolicy.REQUIRE_MANUAL,
    min_candidate_length: int = MIN_FUZZY_CANDIDATE_LENGTH,
) -> AccountResolution:
    """Resolve an account, creating a placeholder when the policy allows it.

    Under ``REQUIRE_MANUAL`` this is ``resolve_account`` with the snapshot
    passed through. Under ``AUTO_CREATE`` an unmatched hint (or fallback
    name) yields a new account flagged ``needs-manual-validation`` so the
    user can confirm it later.
    """
    accounts = tuple(accounts)
    account = resolve_account(hint, accounts, min_candidate_length)
    if account is not None or policy != AccountPolicy.AUTO_CREATE:
        return AccountResolution(account=account, accounts=accounts)

    hint = (hint or "").strip() or None
    fallback = (fallback_name or "").strip() or None

    if fallback:
        wanted = fallback.lower()
        for existing in accounts:
            if existing.name.strip().lower() == wanted:
                return AccountResolution(account=existing, accounts=accounts)

    if fallback:
        name = fallback
    elif hint:
        name = f"Account {hint}"
    elif document.company_name:
        name = f"{document.company_name} (to validate)"
    else:
        name = "Account to validate"

    hints = [value for value in (hint, document.company_name, document.original_name) if value]
    metadata: dict = {"hints": list(dict.fromkeys(hints))}
    if hint:
        metadata["identifier"] = hint
    created = Account(
        id=build_auto_account_id(hint or fallback or document.id, (a.id for a in accounts)),
        name=name,
        type=AccountType.OTHER,
        balance=Decimal("0"),
        currency=document.currency or "EUR",
        validation_status=ValidationStatus.NEEDS_MANUAL_VALIDATION,
        metadata=metadata,
    )
    logger.info("Created placeholder account %s (%s) from document %s", created.id, name, document.id)
    return AccountResolution(account=created, accounts=accounts + (created,), created=True)
