"""
Configuration management (SSOT).

This module defines ALL configuration for the expense tracker.
All config keys are defined here; no other module should invent config keys.

Key invariants:
- Fuzzy-matching thresholds live here as named settings, never inlined
- Store credentials are validated before any reconciliation work starts
- Environment variables override the YAML file
"""

import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

import yaml


class ConfigValidationError(Exception):
    """Raised when configuration validation fails."""

    def __init__(self, errors: list[str]):
        self.errors = errors
        super().__init__("Invalid configuration: " + "; ".join(errors))


class StoreBackend(str, Enum):
    """Persistence backend."""

    SQLITE = "sqlite"
    FIRESTORE = "firestore"


class AccountPolicy(str, Enum):
    """
    What to do when a document references an account no hint resolves.

    REQUIRE_MANUAL: Never create accounts; the line is skipped and reported
    AUTO_CREATE: Create a placeholder account flagged needs-manual-validation
    """

    REQUIRE_MANUAL = "require-manual"
    AUTO_CREATE = "auto-create"


# Empirically chosen matching constants
MIN_FUZZY_CANDIDATE_LENGTH = 4
AMOUNT_TOLERANCE_FLOOR = 0.5
AMOUNT_TOLERANCE_RATIO = 0.02
MIN_RECURRING_MONTHS = 2


@dataclass
class FirestoreConfig:
    """Firestore document store (REST API).

    ``id_token`` is optional; when set it is sent as a Bearer token so
    security rules requiring an authenticated user pass.
    """

    api_key: str = ""
    project_id: str = ""
    auth_domain: str | None = None
    database: str = "(default)"
    id_token: str | None = None
    base_url: str = "https://firestore.googleapis.com/v1"
    timeout_seconds: int = 30


@dataclass
class StoreConfig:
    """Persistence collaborator settings."""

    backend: StoreBackend = StoreBackend.SQLITE
    sqlite_path: Path = field(default_factory=lambda: Path("data/expenses.db"))
    firestore: FirestoreConfig = field(default_factory=FirestoreConfig)


@dataclass
class ExtractionConfig:
    """OpenAI-compatible extraction service."""

    api_key: str = ""
    base_url: str = "https://api.openai.com/v1"
    model: str = "gpt-4o-mini"
    # Request timeout (seconds)
    timeout_seconds: int = 60
    # Max retries per request
    max_retries: int = 2

    def resolved_base_url(self) -> str:
        """Base URL without trailing slash, falling back to the public API."""
        return (self.base_url or "https://api.openai.com/v1").rstrip("/")


@dataclass
class ReconciliationConfig:
    """Reconciliation settings."""

    # Auto-create placeholder accounts or require the user to create them
    account_policy: AccountPolicy = AccountPolicy.REQUIRE_MANUAL
    # Shorter candidates only match a hint exactly (no substring matching)
    min_fuzzy_candidate_length: int = MIN_FUZZY_CANDIDATE_LENGTH
    # Settlement amount tolerance = max(floor, ratio * amount)
    amount_tolerance_floor: float = AMOUNT_TOLERANCE_FLOOR
    amount_tolerance_ratio: float = AMOUNT_TOLERANCE_RATIO
    # Recurring charges must be seen in this many distinct months
    min_recurring_months: int = MIN_RECURRING_MONTHS
    default_currency: str = "EUR"
    default_category: str = "Other"
    recurring_category: str = "Fixed expenses"


@dataclass
class Config:
    """Application configuration (SSOT).

    All configuration is centralized here. No other module should define
    configuration keys or defaults.
    """

    store: StoreConfig = field(default_factory=StoreConfig)
    extraction: ExtractionConfig = field(default_factory=ExtractionConfig)
    reconciliation: ReconciliationConfig = field(default_factory=ReconciliationConfig)

    def validate(self) -> list[str]:
        """Validate configuration completeness and consistency.

        Returns:
            List of validation errors (empty if valid)
        """
        errors: list[str] = []

        if self.store.backend == StoreBackend.FIRESTORE:
            if not self.store.firestore.api_key:
                errors.append("store.firestore.api_key is required for the firestore backend")
            if not self.store.firestore.project_id:
                errors.append("store.firestore.project_id is required for the firestore backend")
        elif not str(self.store.sqlite_path):
            errors.append("store.sqlite_path is required for the sqlite backend")

        recon = self.reconciliation
        if recon.min_fuzzy_candidate_length < 1:
            errors.append("reconciliation.min_fuzzy_candidate_length must be >= 1")
        if recon.amount_tolerance_floor < 0 or recon.amount_tolerance_ratio < 0:
            errors.append("reconciliation amount tolerances must be >= 0")
        if recon.min_recurring_months < 1:
            errors.append("reconciliation.min_recurring_months must be >= 1")

        return errors

    def require_valid(self) -> None:
        """Raise ConfigValidationError if the configuration is unusable."""
        errors = self.validate()
        if errors:
            raise ConfigValidationError(errors)

    def validate_extraction(self) -> list[str]:
        """Validate settings needed only by commands that call the extraction API."""
        errors: list[str] = []
        if not self.extraction.api_key:
            errors.append("extraction.api_key is required (or set OPENAI_API_KEY)")
        if not self.extraction.model:
            errors.append("extraction.model is required")
        return errors


def _parse_enum(enum_cls, raw, default):
    try:
        return enum_cls(raw) if raw else default
    except ValueError as e:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ConfigValidationError([f"invalid value {raw!r}, expected one of: {allowed}"]) from e


def load_config(config_path: Path) -> Config:
    """
    Load configuration from YAML file.

    Environment variables can override config values:
    - EXPENSE_TRACKER_STORE (sqlite/firestore)
    - EXPENSE_TRACKER_DB (sqlite path)
    - FIRESTORE_API_KEY
    - FIRESTORE_PROJECT_ID
    - FIRESTORE_ID_TOKEN
    - OPENAI_API_KEY
    - OPENAI_BASE_URL
    - OPENAI_MODEL
    - EXPENSE_TRACKER_ACCOUNT_POLICY (require-manual/auto-create)
    """
    if config_path.exists():
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    else:
        data = {}

    # Store config
    store_data = data.get("store", {})
    firestore_data = store_data.get("firestore", {})
    firestore = FirestoreConfig(
        api_key=os.environ.get("FIRESTORE_API_KEY", firestore_data.get("api_key", "")),
        project_id=os.environ.get("FIRESTORE_PROJECT_ID", firestore_data.get("project_id", "")),
        auth_domain=firestore_data.get("auth_domain"),
        database=firestore_data.get("database", "(default)"),
        id_token=os.environ.get("FIRESTORE_ID_TOKEN", firestore_data.get("id_token")),
        base_url=firestore_data.get("base_url", "https://firestore.googleapis.com/v1"),
        timeout_seconds=int(firestore_data.get("timeout_seconds", 30)),
    )
    store = StoreConfig(
        backend=_parse_enum(
            StoreBackend,
            os.environ.get("EXPENSE_TRACKER_STORE", store_data.get("backend")),
            StoreBackend.SQLITE,
        ),
        sqlite_path=Path(
            os.environ.get("EXPENSE_TRACKER_DB", store_data.get("sqlite_path", "data/expenses.db"))
        ),
        firestore=firestore,
    )

    # Extraction config
    extraction_data = data.get("extraction", {})
    extraction = ExtractionConfig(
        api_key=os.environ.get("OPENAI_API_KEY", extraction_data.get("api_key", "")),
        base_url=os.environ.get(
            "OPENAI_BASE_URL", extraction_data.get("base_url", "https://api.openai.com/v1")
        ),
        model=os.environ.get("OPENAI_MODEL", extraction_data.get("model", "gpt-4o-mini")),
        timeout_seconds=int(extraction_data.get("timeout_seconds", 60)),
        max_retries=int(extraction_data.get("max_retries", 2)),
    )

    # Reconciliation config
    recon_data = data.get("reconciliation", {})
    reconciliation = ReconciliationConfig(
        account_policy=_parse_enum(
            AccountPolicy,
            os.environ.get("EXPENSE_TRACKER_ACCOUNT_POLICY", recon_data.get("account_policy")),
            AccountPolicy.REQUIRE_MANUAL,
        ),
        min_fuzzy_candidate_length=recon_data.get(
            "min_fuzzy_candidate_length", MIN_FUZZY_CANDIDATE_LENGTH
        ),
        amount_tolerance_floor=recon_data.get("amount_tolerance_floor", AMOUNT_TOLERANCE_FLOOR),
        amount_tolerance_ratio=recon_data.get("amount_tolerance_ratio", AMOUNT_TOLERANCE_RATIO),
        min_recurring_months=recon_data.get("min_recurring_months", MIN_RECURRING_MONTHS),
        default_currency=recon_data.get("default_currency", "EUR"),
        default_category=recon_data.get("default_category", "Other"),
        recurring_category=recon_data.get("recurring_category", "Fixed expenses"),
    )

    return Config(store=store, extraction=extraction, reconciliation=reconciliation)


def create_default_config(config_path: Path) -> None:
    """Create a default configuration file."""
    default_config = """# Expense Tracker Configuration
#
# Environment variables override these values (see config.py).

store:
  backend: "sqlite"                        # sqlite or firestore
  sqlite_path: "data/expenses.db"
  firestore:
    api_key: "YOUR_FIREBASE_API_KEY"
    project_id: "YOUR_PROJECT_ID"
    auth_domain: null
    database: "(default)"
    id_token: null                         # Optional Bearer token for secured rules

# OpenAI-compatible extraction service
extraction:
  api_key: "YOUR_OPENAI_API_KEY"
  base_url: "https://api.openai.com/v1"
  model: "gpt-4o-mini"
  timeout_seconds: 60
  max_retries: 2

# Reconciliation settings
reconciliation:
  account_policy: "require-manual"         # require-manual or auto-create
  min_fuzzy_candidate_length: 4            # Shorter names only match exactly
  amount_tolerance_floor: 0.5              # Settlement tolerance floor (currency units)
  amount_tolerance_ratio: 0.02             # Settlement tolerance as share of amount
  min_recurring_months: 2                  # Months a charge must repeat before it becomes an expense
  default_currency: "EUR"
  default_category: "Other"
  recurring_category: "Fixed expenses"
"""

    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w") as f:
        f.write(default_config)
