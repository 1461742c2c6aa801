"""
CLI main entry point.
"""

import argparse
import logging
import sys
from pathlib import Path

from ..config import Config, ConfigValidationError, create_default_config, load_config
from ..extraction import ExtractionClient, ExtractionError, build_document_metadata
from ..services.reconciliation import DocumentReconciliationService, ReconciliationResult
from ..state_store import StoreError, create_store

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def create_cli() -> argparse.ArgumentParser:
    """Create CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="expense-tracker",
        description="Extract financial documents and reconcile them into expenses",
    )

    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=Path("config.yaml"),
        help="Path to config file (default: config.yaml)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # init command
    init_parser = subparsers.add_parser("init", help="Write a default config file")
    init_parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite an existing config file",
    )

    # check command
    subparsers.add_parser("check", help="Test the extraction API connection")

    # extract command
    extract_parser = subparsers.add_parser("extract", help="Extract and store documents")
    extract_parser.add_argument(
        "files",
        nargs="+",
        type=Path,
        help="Document files to extract (PDF)",
    )
    extract_parser.add_argument(
        "--account-context",
        type=str,
        default=None,
        help="Preferred account name to hint the extraction with",
    )
    extract_parser.add_argument(
        "--reconcile",
        action="store_true",
        help="Reconcile the extracted documents right away",
    )

    # reconcile command
    reconcile_parser = subparsers.add_parser(
        "reconcile", help="Derive accounts, suppliers, expenses and timeline from stored documents"
    )
    reconcile_parser.add_argument(
        "--document-id",
        type=str,
        default=None,
        help="Reconcile a single stored document",
    )

    # status command
    subparsers.add_parser("status", help="Show entity counts per collection")

    return parser


def cmd_init(config_path: Path, force: bool = False) -> int:
    """Write a default config file."""
    if config_path.exists() and not force:
        print(f"⚠️  {config_path} already exists (use --force to overwrite)")
        return 1
    create_default_config(config_path)
    print(f"✓ Wrote default config to {config_path}")
    return 0


def cmd_check(config: Config) -> int:
    """Test the extraction API connection."""
    errors = config.validate_extraction()
    if errors:
        for error in errors:
            print(f"❌ {error}")
        return 1

    client = ExtractionClient.from_config(config.extraction)
    print(f"  → Connecting to {config.extraction.resolved_base_url()} ({client.model})")
    try:
        check = client.test_connection()
    except ExtractionError as e:
        print(f"❌ {e}")
        return 1
    finally:
        client.close()

    if check.success:
        print(f"  ✓ {check.message} ({check.latency_ms} ms)")
        return 0
    print(f"❌ {check.message}")
    return 1


def _print_result(result: ReconciliationResult) -> None:
    print(f"  {result.document_id}: {result.state.value}")
    print(f"     expenses upserted:  {len(result.expenses_upserted)}")
    print(f"     timeline upserted:  {len(result.timeline_upserted)}")
    print(f"     suppliers upserted: {len(result.suppliers_upserted)}")
    print(f"     accounts created:   {len(result.accounts_upserted)}")
    if result.settled_expense_ids:
        print(f"     settled:            {', '.join(result.settled_expense_ids)}")
    for reason in result.skipped:
        print(f"     - skipped: {reason}")


def _reconcile(config: Config, store, documents) -> int:
    service = DocumentReconciliationService(store, config)
    try:
        snapshot = store.load_snapshot()
        results = service.process_documents(documents, snapshot)
    except StoreError as e:
        print(f"❌ Persistence failed: {e}")
        return 1

    print()
    print("📊 Reconciliation Results")
    print("=" * 40)
    missing: list[str] = []
    for result in results:
        _print_result(result)
        missing.extend(h for h in result.missing_account_hints if h not in missing)

    if missing:
        print()
        print("⚠️  Accounts to create manually (no account matched these hints):")
        for hint in missing:
            print(f"   - {hint}")
    return 0


def cmd_extract(
    config: Config,
    files: list[Path],
    account_context: str | None = None,
    reconcile: bool = False,
) -> int:
    """Extract documents and store them."""
    errors = config.validate_extraction()
    if errors:
        for error in errors:
            print(f"❌ {error}")
        return 1

    store = create_store(config)
    client = ExtractionClient.from_config(config.extraction)
    extracted = []
    failed = 0

    try:
        for path in files:
            print(f"  → {path}")
            try:
                file_bytes = path.read_bytes()
            except OSError as e:
                print(f"    ❌ Cannot read file: {e}")
                failed += 1
                continue

            try:
                fields = client.extract(file_bytes, path.name, account_context=account_context)
            except ExtractionError as e:
                print(f"    ❌ Extraction failed: {e}")
                failed += 1
                continue

            document = build_document_metadata(fields, file_bytes, path.name)
            store.persist(document)
            extracted.append(document)
            print(
                f"    ✓ {document.id} {document.source_type.value} "
                f"amount={document.amount} due={document.due_date}"
            )
    except StoreError as e:
        print(f"❌ Persistence failed: {e}")
        return 1
    finally:
        client.close()

    print()
    print(f"Extracted {len(extracted)} document(s), {failed} failed")

    if reconcile and extracted:
        status = _reconcile(config, store, extracted)
        if status:
            return status
    return 1 if failed else 0


def cmd_reconcile(config: Config, document_id: str | None = None) -> int:
    """Reconcile stored documents in upload order."""
    store = create_store(config)
    if not store.test_connection():
        print(f"❌ Failed to connect to {config.store.backend.value} store")
        return 1

    try:
        documents = store.load_documents()
    except StoreError as e:
        print(f"❌ Failed to load documents: {e}")
        return 1

    if document_id:
        documents = [d for d in documents if d.id == document_id]
        if not documents:
            print(f"❌ Document {document_id} not found")
            return 1

    if not documents:
        print("⚠️  No documents to reconcile")
        return 0

    print(f"🔄 Reconciling {len(documents)} document(s)...")
    return _reconcile(config, store, documents)


def cmd_status(config: Config) -> int:
    """Show entity counts per collection."""
    store = create_store(config)
    try:
        counts = store.get_stats()
    except StoreError as e:
        print(f"❌ Failed to read store: {e}")
        return 1

    print("\n📊 Store Status")
    print("=" * 40)
    print(f"  Backend: {config.store.backend.value}")
    for collection, count in counts.items():
        print(f"  {collection + ':':<12} {count}")
    print()

    return 0


def main(args: list[str] | None = None) -> int:
    """Main entry point."""
    parser = create_cli()
    parsed = parser.parse_args(args)

    setup_logging(parsed.verbose)

    if not parsed.command:
        parser.print_help()
        return 1

    if parsed.command == "init":
        return cmd_init(parsed.config, parsed.force)

    # Load config
    try:
        config = load_config(parsed.config)
        config.require_valid()
    except ConfigValidationError as e:
        print(f"❌ {e}")
        return 1
    except Exception as e:
        print(f"❌ Failed to load config: {e}")
        return 1

    # Route to command
    try:
        if parsed.command == "check":
            return cmd_check(config)
        elif parsed.command == "extract":
            return cmd_extract(config, parsed.files, parsed.account_context, parsed.reconcile)
        elif parsed.command == "reconcile":
            return cmd_reconcile(config, parsed.document_id)
        elif parsed.command == "status":
            return cmd_status(config)
    except StoreError as e:
        print(f"❌ Store error: {e}")
        return 1

    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
