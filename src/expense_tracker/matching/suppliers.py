"""Supplier resolution and metadata merging.

Suppliers are matched (never duplicated) across documents. Every match
folds what the document knows about the supplier into its metadata: account
hints and aliases only ever grow, tax id and notes are filled when missing
but never overwritten.

Alias records point at a canonical supplier through ``reference_to_id``;
resolution always lands on the canonical record before merging.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, replace
from pathlib import PurePath

from ..schemas.dedupe import normalize_identifier
from ..schemas.models import (
    DocumentMetadata,
    RecurringExpenseCandidate,
    Supplier,
    SupplierMetadata,
)

logger = logging.getLogger(__name__)

SUPPLIER_ID_PREFIX = "sup"

_SEPARATORS = re.compile(r"[_\-.]+")


@dataclass(frozen=True)
class SupplierResolution:
    """Outcome of resolving a document's supplier.

    Attributes:
        supplier: Resolved canonical supplier (merged), or None.
        suppliers: Supplier collection including any created/updated record.
        created: A new supplier was created.
        updated: An existing supplier's metadata changed.
    """

    supplier: Supplier | None
    suppliers: tuple[Supplier, ...]
    created: bool = False
    updated: bool = False

    @property
    def changed(self) -> bool:
        return self.created or self.updated


def humanise_document_name(original_name: str | None) -> str:
    """Turn a file name like ``energia_lisboa-2024.pdf`` into ``Energia Lisboa 2024``."""
    stem = PurePath(original_name or "").stem
    words = _SEPARATORS.sub(" ", stem).split()
    if not words:
        return "Document"
    return " ".join(word[0].upper() + word[1:] for word in words)


def follow_reference(supplier: Supplier, suppliers: Sequence[Supplier]) -> Supplier:
    """Follow ``reference_to_id`` pointers to the canonical supplier.

    Dangling references and cycles stop at the last record reached.
    """
    by_id = {s.id: s for s in suppliers}
    current = supplier
    seen = {current.id}
    while current.reference_to_id:
        target = by_id.get(current.reference_to_id)
        if target is None or target.id in seen:
            logger.debug(
                "Supplier reference %s -> %s cannot be followed",
                current.id,
                current.reference_to_id,
            )
            break
        seen.add(target.id)
        current = target
    return current


def _name_keys(supplier: Supplier) -> set[str]:
    keys = {normalize_identifier(supplier.name)}
    if supplier.metadata:
        keys.update(normalize_identifier(alias) for alias in supplier.metadata.aliases)
    keys.discard("")
    return keys


def find_supplier(
    suppliers: Sequence[Supplier],
    supplier_id: str | None = None,
    name: str | None = None,
    include_aliases: bool = True,
) -> Supplier | None:
    """Find a supplier by exact id, then by normalized name (and aliases).

    The returned record is the canonical one (references followed).
    """
    if supplier_id:
        for supplier in suppliers:
            if supplier.id == supplier_id:
                return follow_reference(supplier, suppliers)

    wanted = normalize_identifier(name)
    if wanted:
        for supplier in suppliers:
            keys = _name_keys(supplier) if include_aliases else {normalize_identifier(supplier.name)}
            if wanted in keys:
                return follow_reference(supplier, suppliers)
    return None


def _append_unique(values: Iterable[str], *extra: str | None) -> tuple[str, ...]:
    result = list(values)
    seen = {normalize_identifier(v) for v in result}
    for value in extra:
        if not value or not value.strip():
            continue
        key = normalize_identifier(value)
        if key and key not in seen:
            result.append(value.strip())
            seen.add(key)
    return tuple(result)


def merge_supplier_metadata(
    supplier: Supplier,
    document: DocumentMetadata,
) -> SupplierMetadata:
    """Union the document's supplier knowledge into the supplier metadata."""
    current = supplier.metadata or SupplierMetadata()

    aliases = current.aliases
    company = (document.company_name or "").strip()
    if company and normalize_identifier(company) != normalize_identifier(supplier.name):
        aliases = _append_unique(aliases, company)

    return SupplierMetadata(
        tax_id=current.tax_id or document.supplier_tax_id or None,
        aliases=aliases,
        account_hints=_append_unique(
            current.account_hints, document.account_hint, document.statement_account_iban
        ),
        notes=current.notes or document.notes or None,
    )


def build_supplier_id(name: str, existing_ids: Iterable[str]) -> str:
    """Deterministic supplier id from the normalized name, suffixed on collision."""
    base = f"{SUPPLIER_ID_PREFIX}-{normalize_identifier(name) or 'supplier'}"
    taken = set(existing_ids)
    candidate = base
    suffix = 2
    while candidate in taken:
        candidate = f"{base}-{suffix}"
        suffix += 1
    return candidate


def _replace_supplier(suppliers: Sequence[Supplier], supplier: Supplier) -> tuple[Supplier, ...]:
    replaced = False
    result = []
    for existing in suppliers:
        if existing.id == supplier.id:
            result.append(supplier)
            replaced = True
        else:
            result.append(existing)
    if not replaced:
        result.append(supplier)
    return tuple(result)


def _merge_or_create(
    match: Supplier | None,
    document: DocumentMetadata,
    suppliers: tuple[Supplier, ...],
) -> SupplierResolution:
    if match is not None:
        merged_metadata = merge_supplier_metadata(match, document)
        if merged_metadata == (match.metadata or SupplierMetadata()):
            return SupplierResolution(supplier=match, suppliers=suppliers)
        merged = replace(match, metadata=merged_metadata)
        logger.info("Updated supplier %s metadata from document %s", merged.id, document.id)
        return SupplierResolution(
            supplier=merged,
            suppliers=_replace_supplier(suppliers, merged),
            updated=True,
        )

    if not document.company_name and not document.supplier_id:
        return SupplierResolution(supplier=None, suppliers=suppliers)

    name = (document.company_name or "").strip() or humanise_document_name(document.original_name)
    if not name:
        return SupplierResolution(supplier=None, suppliers=suppliers)

    draft = Supplier(id=build_supplier_id(name, (s.id for s in suppliers)), name=name)
    created = replace(draft, metadata=merge_supplier_metadata(draft, document))
    logger.info("Created supplier %s (%s) from document %s", created.id, name, document.id)
    return SupplierResolution(
        supplier=created,
        suppliers=suppliers + (created,),
        created=True,
    )


def resolve_supplier(
    document: DocumentMetadata,
    suppliers: Sequence[Supplier],
) -> SupplierResolution:
    """Resolve (match, merge or create) the supplier of a document.

    Match priority: exact ``supplier_id``, then normalized name/alias
    equality with the company name. The input collection is never mutated.
    """
    suppliers = tuple(suppliers)
    match = find_supplier(suppliers, supplier_id=document.supplier_id, name=document.company_name)
    return _merge_or_create(match, document, suppliers)


def resolve_supplier_for_recurring_candidate(
    candidate: RecurringExpenseCandidate,
    document: DocumentMetadata,
    suppliers: Sequence[Supplier],
) -> SupplierResolution:
    """Resolve the supplier behind a recurring statement charge.

    Matches the candidate description against supplier names only (no ids,
    no aliases). Merging and creation run on a synthetic document carrying
    only the candidate's name and account hint.
    """
    suppliers = tuple(suppliers)
    description = (candidate.description or "").strip()
    if not description:
        return SupplierResolution(supplier=None, suppliers=suppliers)

    synthetic = DocumentMetadata(
        id=document.id,
        original_name=description,
        upload_date=document.upload_date,
        source_type=document.source_type,
        company_name=description,
        account_hint=candidate.account_hint,
    )
    match = find_supplier(suppliers, name=description, include_aliases=False)
    return _merge_or_create(match, synthetic, suppliers)
