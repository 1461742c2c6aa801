"""
OpenAI-compatible document extraction client.

Flow per document:
1. Upload the file (``POST /files``, purpose ``assistants``)
2. Ask ``POST /responses`` for a JSON object matching ``DOCUMENT_SCHEMA``
3. Delete the uploaded file (best-effort)

The extraction itself is opaque; this module only shapes the request and
turns the JSON answer into ``ExtractedFields`` / ``DocumentMetadata``.
"""

import json
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..config import ExtractionConfig
from ..schemas.dedupe import compute_file_hash, document_id_from_file_hash
from ..schemas.models import (
    LEGACY_ENUM_VALUES,
    DocumentMetadata,
    RecurringExpenseCandidate,
    SourceType,
    StatementSettlement,
    to_decimal,
)

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.openai.com/v1"
DEFAULT_MODEL = "gpt-4o-mini"

# Legacy (Portuguese) labels plus spellings some models answer with
SOURCE_TYPE_ALIASES = {
    **LEGACY_ENUM_VALUES[SourceType],
    "bank_statement": SourceType.STATEMENT,
}

_NULLABLE_STRING = {"type": ["string", "null"]}
_NULLABLE_NUMBER = {"type": ["number", "null"]}

PING_SCHEMA = {
    "type": "object",
    "properties": {"reply": {"type": "string", "enum": ["pong"]}},
    "required": ["reply"],
    "additionalProperties": False,
}

DOCUMENT_SCHEMA = {
    "type": "object",
    "properties": {
        "sourceType": {
            "type": ["string", "null"],
            "enum": ["invoice", "receipt", "statement", None],
        },
        "amount": _NULLABLE_NUMBER,
        "currency": _NULLABLE_STRING,
        "dueDate": _NULLABLE_STRING,
        "accountHint": _NULLABLE_STRING,
        "companyName": _NULLABLE_STRING,
        "supplierTaxId": _NULLABLE_STRING,
        "statementAccountIban": _NULLABLE_STRING,
        "expenseType": _NULLABLE_STRING,
        "notes": _NULLABLE_STRING,
        "recurringExpenses": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "description": {"type": "string"},
                    "averageAmount": _NULLABLE_NUMBER,
                    "currency": _NULLABLE_STRING,
                    "accountHint": _NULLABLE_STRING,
                    "dayOfMonth": {"type": ["integer", "null"]},
                    "monthsObserved": {"type": "array", "items": {"type": "string"}},
                },
                "required": [
                    "description",
                    "averageAmount",
                    "currency",
                    "accountHint",
                    "dayOfMonth",
                    "monthsObserved",
                ],
                "additionalProperties": False,
            },
        },
        "statementSettlements": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "description": _NULLABLE_STRING,
                    "amount": _NULLABLE_NUMBER,
                    "settledOn": _NULLABLE_STRING,
                },
                "required": ["description", "amount", "settledOn"],
                "additionalProperties": False,
            },
        },
    },
    "required": [
        "sourceType",
        "amount",
        "currency",
        "dueDate",
        "accountHint",
        "companyName",
        "supplierTaxId",
        "statementAccountIban",
        "expenseType",
        "notes",
        "recurringExpenses",
        "statementSettlements",
    ],
    "additionalProperties": False,
}

EXTRACTION_PROMPT = (
    "Analyse the attached financial document and return a JSON object with the fields "
    '"sourceType", "amount", "currency", "dueDate", "accountHint", "companyName", '
    '"supplierTaxId", "statementAccountIban", "expenseType", "notes", '
    '"recurringExpenses" and "statementSettlements". '
    "sourceType must be one of: invoice, receipt, statement. amount must be a number. "
    "Dates must be ISO 8601. For bank statements, list charges that repeat across months "
    "in recurringExpenses (with the months they were observed in, as YYYY-MM) and every "
    "payment line in statementSettlements. "
)


class ExtractionError(Exception):
    """Base exception for extraction client errors."""

    pass


class ExtractionAPIError(ExtractionError):
    """API returned an error response."""

    def __init__(self, status_code: int, message: str, response_body: str | None = None):
        self.status_code = status_code
        self.message = message
        self.response_body = response_body
        super().__init__(f"Extraction API error {status_code}: {message}")


class ExtractionConnectionError(ExtractionError):
    """Failed to connect to the extraction API."""

    pass


@dataclass
class ConnectionCheck:
    """Result of a ping against the extraction API."""

    success: bool
    message: str
    model: str
    latency_ms: int | None = None


@dataclass
class ExtractedFields:
    """Fields the extraction service returned for one document."""

    source_type: SourceType | None = None
    amount: Any = None
    currency: str | None = None
    due_date: str | None = None
    account_hint: str | None = None
    company_name: str | None = None
    supplier_tax_id: str | None = None
    statement_account_iban: str | None = None
    expense_type: str | None = None
    notes: str | None = None
    recurring_expenses: list[RecurringExpenseCandidate] = field(default_factory=list)
    statement_settlements: list[StatementSettlement] = field(default_factory=list)
    raw_response: Any = None

    @classmethod
    def from_json(cls, parsed: Any, raw_response: Any = None) -> "ExtractedFields":
        """Build from the parsed JSON answer; non-objects yield an empty record."""
        if not isinstance(parsed, dict):
            return cls(raw_response=raw_response)

        def text(key: str) -> str | None:
            value = parsed.get(key)
            return value.strip() or None if isinstance(value, str) else None

        return cls(
            source_type=parse_source_type(parsed.get("sourceType")),
            amount=to_decimal(parsed.get("amount")),
            currency=text("currency"),
            due_date=text("dueDate"),
            account_hint=text("accountHint"),
            company_name=text("companyName"),
            supplier_tax_id=text("supplierTaxId"),
            statement_account_iban=text("statementAccountIban"),
            expense_type=text("expenseType"),
            notes=text("notes"),
            recurring_expenses=[
                RecurringExpenseCandidate.from_dict(item)
                for item in parsed.get("recurringExpenses") or []
                if isinstance(item, dict)
            ],
            statement_settlements=[
                StatementSettlement.from_dict(item)
                for item in parsed.get("statementSettlements") or []
                if isinstance(item, dict)
            ],
            raw_response=raw_response,
        )


def parse_source_type(value: Any) -> SourceType | None:
    """Map an extracted source type (current or legacy spelling) to SourceType."""
    if not isinstance(value, str) or not value.strip():
        return None
    key = value.strip().lower()
    if key in SOURCE_TYPE_ALIASES:
        return SOURCE_TYPE_ALIASES[key]
    try:
        return SourceType(key)
    except ValueError:
        logger.debug("Unknown source type from extraction: %r", value)
        return None


def extract_response_text(payload: Any) -> str | None:
    """Pull the answer text out of a Responses (or Chat Completions) payload."""
    if not isinstance(payload, dict):
        return None

    output = payload.get("output")
    if isinstance(output, list):
        chunks = [
            content.get("text")
            for item in output
            if isinstance(item, dict)
            for content in item.get("content") or []
            if isinstance(content, dict) and content.get("text")
        ]
        if chunks:
            return "\n".join(chunks)

    choices = payload.get("choices")
    if isinstance(choices, list) and choices:
        content = (choices[0].get("message") or {}).get("content")
        if isinstance(content, str):
            return content
        if isinstance(content, list):
            chunks = [part.get("text") for part in content if isinstance(part, dict)]
            chunks = [c for c in chunks if isinstance(c, str)]
            if chunks:
                return "\n".join(chunks)

    if isinstance(payload.get("content"), str):
        return payload["content"]
    return None


def extract_response_json(payload: Any) -> Any:
    """Parse the answer text as JSON; returns the raw text if it is not JSON."""
    text = extract_response_text(payload)
    if not text:
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        logger.warning("Extraction answer is not valid JSON; keeping raw text")
        return text


def build_document_metadata(
    fields: ExtractedFields,
    file_bytes: bytes,
    filename: str,
    upload_date: str | None = None,
) -> DocumentMetadata:
    """Turn extracted fields into a DocumentMetadata.

    The document id is content-addressed (``doc-<sha256[:16]>``), so the
    same file always maps to the same document.
    """
    now = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
    return DocumentMetadata(
        id=document_id_from_file_hash(compute_file_hash(file_bytes)),
        original_name=filename,
        upload_date=upload_date or now,
        source_type=fields.source_type or SourceType.INVOICE,
        amount=fields.amount,
        currency=fields.currency,
        due_date=fields.due_date,
        account_hint=fields.account_hint,
        company_name=fields.company_name,
        expense_type=fields.expense_type,
        notes=fields.notes,
        supplier_tax_id=fields.supplier_tax_id,
        statement_account_iban=fields.statement_account_iban,
        recurring_expenses=tuple(fields.recurring_expenses),
        statement_settlements=tuple(fields.statement_settlements),
        extracted_at=now,
    )


class ExtractionClient:
    """
    Client for an OpenAI-compatible Responses API.

    Features:
    - Connection check (ping/pong schema)
    - File upload + structured extraction
    - Automatic retry with backoff
    """

    DEFAULT_TIMEOUT = 60

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        model: str = DEFAULT_MODEL,
        timeout: int = DEFAULT_TIMEOUT,
        max_retries: int = 2,
        backoff_factor: float = 0.5,
    ):
        """
        Initialize extraction client.

        Args:
            api_key: API key (Bearer token)
            base_url: API root, e.g. "https://api.openai.com/v1"
            model: Model used for extraction
            timeout: Request timeout in seconds
            max_retries: Maximum retry attempts
            backoff_factor: Backoff factor for retries
        """
        self.base_url = (base_url or DEFAULT_BASE_URL).rstrip("/")
        self.model = model or DEFAULT_MODEL
        self.timeout = timeout

        # No session-wide Content-Type: file uploads are multipart
        self.session = requests.Session()
        self.session.headers.update(
            {
                "Authorization": f"Bearer {api_key}",
                "Accept": "application/json",
            }
        )

        retry_strategy = Retry(
            total=max_retries,
            backoff_factor=backoff_factor,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["GET", "POST", "DELETE"],
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

    @classmethod
    def from_config(cls, config: ExtractionConfig) -> "ExtractionClient":
        """Build a client from the ``extraction`` config section."""
        return cls(
            api_key=config.api_key,
            base_url=config.resolved_base_url(),
            model=config.model,
            timeout=config.timeout_seconds,
            max_retries=config.max_retries,
        )

    def _request(self, method: str, endpoint: str, **kwargs: Any) -> requests.Response:
        """Make an API request with error handling."""
        url = f"{self.base_url}{endpoint}"
        logger.debug("API Request: %s %s", method, url)

        try:
            response = self.session.request(method=method, url=url, timeout=self.timeout, **kwargs)
        except requests.exceptions.ConnectionError as e:
            logger.error("Connection error to %s: %s", url, e)
            raise ExtractionConnectionError(
                f"Failed to connect to extraction API at {self.base_url}: {e}"
            ) from e
        except requests.exceptions.Timeout as e:
            logger.error("Timeout for %s: %s", url, e)
            raise ExtractionConnectionError(f"Request to extraction API timed out: {e}") from e
        except requests.exceptions.RequestException as e:
            logger.error("Request error for %s: %s", url, e)
            raise ExtractionError(f"Request failed: {e}") from e

        logger.debug("Response status: %s", response.status_code)

        if not response.ok:
            try:
                payload = response.json()
                message = (payload.get("error") or {}).get("message") or payload.get("message")
            except ValueError:
                message = None
            message = message or response.reason or "Unknown error"
            logger.error("API Error %s: %s", response.status_code, message)
            raise ExtractionAPIError(response.status_code, message, response.text)

        return response

    def _responses(self, content: list[dict], schema_name: str, schema: dict) -> Any:
        body = {
            "model": self.model,
            "input": [{"role": "user", "content": content}],
            "text": {"format": {"type": "json_schema", "name": schema_name, "schema": schema}},
        }
        return self._request("POST", "/responses", json=body).json()

    def test_connection(self) -> ConnectionCheck:
        """Ask the model to answer "pong" through a one-field schema."""
        started = time.monotonic()
        payload = self._responses(
            [{"type": "input_text", "text": 'Reply with exactly the word "pong".'}],
            "ping_validation",
            PING_SCHEMA,
        )
        latency_ms = int(round((time.monotonic() - started) * 1000))

        parsed = extract_response_json(payload)
        if isinstance(parsed, dict) and parsed.get("reply") == "pong":
            return ConnectionCheck(True, "Connection validated.", self.model, latency_ms)
        return ConnectionCheck(
            False, "The API answered in an unexpected format.", self.model, latency_ms
        )

    def upload_file(self, file_bytes: bytes, filename: str) -> str:
        """Upload a file and return its id."""
        response = self._request(
            "POST",
            "/files",
            data={"purpose": "assistants"},
            files={"file": (filename, file_bytes)},
        )
        file_id = response.json().get("id")
        if not file_id:
            raise ExtractionError("Unexpected response when uploading file: missing id")
        return file_id

    def delete_file(self, file_id: str) -> None:
        """Delete an uploaded file."""
        self._request("DELETE", f"/files/{file_id}")

    def extract(
        self,
        file_bytes: bytes,
        filename: str,
        account_context: str | None = None,
    ) -> ExtractedFields:
        """
        Extract structured fields from a document.

        Args:
            file_bytes: Raw file content (usually PDF)
            filename: Original file name
            account_context: Preferred account name to hint the model with

        Returns:
            ExtractedFields (empty fields when the answer is not a JSON object)

        Raises:
            ExtractionAPIError: If the API returns an error
            ExtractionConnectionError: If the API is unreachable
        """
        file_id = self.upload_file(file_bytes, filename)
        logger.info("Uploaded %s for extraction (file %s)", filename, file_id)

        prompt = EXTRACTION_PROMPT
        if account_context:
            prompt += (
                f'The preferred context account is "{account_context}"; '
                "consider it when interpreting the document. "
            )
        prompt += "If a field does not exist, return null."

        try:
            payload = self._responses(
                [
                    {"type": "input_text", "text": prompt},
                    {"type": "input_file", "file_id": file_id},
                ],
                "document_metadata",
                DOCUMENT_SCHEMA,
            )
        finally:
            try:
                self.delete_file(file_id)
            except ExtractionError as e:
                logger.warning("Could not delete uploaded file %s: %s", file_id, e)

        fields = ExtractedFields.from_json(extract_response_json(payload), raw_response=payload)
        logger.info(
            "Extracted %s: type=%s amount=%s due=%s",
            filename,
            fields.source_type.value if fields.source_type else None,
            fields.amount,
            fields.due_date,
        )
        return fields

    def close(self) -> None:
        self.session.close()
