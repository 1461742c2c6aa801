"""
Tests for the document extraction client.

These tests use responses library to mock HTTP requests,
validating client behavior without making real API calls.
"""

import json
from decimal import Decimal

import pytest
import requests
import responses

from expense_tracker.config import ExtractionConfig
from expense_tracker.extraction import (
    ExtractedFields,
    ExtractionAPIError,
    ExtractionClient,
    ExtractionConnectionError,
    ExtractionError,
    build_document_metadata,
    extract_response_json,
    extract_response_text,
    parse_source_type,
)
from expense_tracker.schemas.dedupe import compute_file_hash
from expense_tracker.schemas.models import SourceType

BASE_URL = "http://llm.test/v1"

INVOICE_ANSWER = {
    "sourceType": "invoice",
    "amount": 62.3,
    "currency": "EUR",
    "dueDate": "2024-06-10",
    "accountHint": "Conta Corrente",
    "companyName": "Energia Lisboa",
    "supplierTaxId": None,
    "statementAccountIban": None,
    "expenseType": "Utilities",
    "notes": None,
    "recurringExpenses": [],
    "statementSettlements": [],
}


def responses_payload(answer) -> dict:
    """Wrap an answer the way the Responses API does."""
    return {
        "output": [
            {
                "type": "message",
                "content": [{"type": "output_text", "text": json.dumps(answer)}],
            }
        ]
    }


@pytest.fixture
def client() -> ExtractionClient:
    """Client pointing at the mocked endpoint."""
    return ExtractionClient(api_key="sk-test", base_url=BASE_URL, model="test-model")


class TestResponseParsing:
    """Test answer extraction helpers."""

    def test_responses_output(self):
        """Output text chunks are joined."""
        assert extract_response_text(responses_payload({"a": 1})) == '{"a": 1}'

    def test_chat_completions_fallback(self):
        """Chat Completions payloads are understood too."""
        payload = {"choices": [{"message": {"content": '{"reply": "pong"}'}}]}
        assert extract_response_json(payload) == {"reply": "pong"}

    def test_non_json_answer(self):
        """Non-JSON text is returned raw."""
        assert extract_response_json({"content": "sorry"}) == "sorry"

    def test_empty_payload(self):
        """Nothing to parse gives None."""
        assert extract_response_json({}) is None

    def test_legacy_source_types(self):
        """Older Portuguese labels map to current types."""
        assert parse_source_type("Fatura") == SourceType.INVOICE
        assert parse_source_type("extracto") == SourceType.STATEMENT
        assert parse_source_type("receipt") == SourceType.RECEIPT
        assert parse_source_type("menu") is None
        assert parse_source_type(None) is None


class TestExtractedFields:
    """Test turning answers into fields and document metadata."""

    def test_from_json(self):
        """All fields are parsed and blanks dropped."""
        answer = dict(INVOICE_ANSWER, notes="  ")
        fields = ExtractedFields.from_json(answer)
        assert fields.source_type == SourceType.INVOICE
        assert fields.amount == Decimal("62.3")
        assert fields.company_name == "Energia Lisboa"
        assert fields.notes is None

    def test_statement_lists(self):
        """Recurring charges and settlements are parsed."""
        answer = dict(
            INVOICE_ANSWER,
            sourceType="statement",
            recurringExpenses=[
                {
                    "description": "Ginásio Fit",
                    "averageAmount": 35,
                    "currency": "EUR",
                    "accountHint": None,
                    "dayOfMonth": 5,
                    "monthsObserved": ["2024-04", "2024-05"],
                }
            ],
            statementSettlements=[
                {"description": "ENERGIA LISBOA", "amount": -62.3, "settledOn": "2024-05-28"}
            ],
        )
        fields = ExtractedFields.from_json(answer)
        assert fields.recurring_expenses[0].months_observed == ("2024-04", "2024-05")
        assert fields.recurring_expenses[0].average_amount == Decimal("35")
        assert fields.statement_settlements[0].amount == Decimal("-62.3")

    def test_non_object_answer(self):
        """Non-object answers yield empty fields."""
        fields = ExtractedFields.from_json("sorry", raw_response="sorry")
        assert fields.source_type is None
        assert fields.raw_response == "sorry"

    def test_build_document_metadata(self):
        """Document id is content-addressed."""
        fields = ExtractedFields.from_json(INVOICE_ANSWER)
        document = build_document_metadata(fields, b"%PDF", "energia.pdf", "2024-06-01")
        assert document.id == f"doc-{compute_file_hash(b'%PDF')[:16]}"
        assert document.upload_date == "2024-06-01"
        assert document.amount == Decimal("62.3")
        assert document.expense_type == "Utilities"

    def test_missing_type_defaults_to_invoice(self):
        """Unknown document types are treated as invoices."""
        document = build_document_metadata(ExtractedFields(), b"x", "x.pdf")
        assert document.source_type == SourceType.INVOICE
        assert document.extracted_at


class TestExtractionClient:
    """Test extraction API client."""

    def test_from_config(self):
        """Config section maps onto the client."""
        config = ExtractionConfig(api_key="sk", base_url="http://llm.test/v1/", model="m")
        client = ExtractionClient.from_config(config)
        assert client.base_url == "http://llm.test/v1"
        assert client.model == "m"
        assert client.session.headers["Authorization"] == "Bearer sk"

    @responses.activate
    def test_connection_pong(self, client):
        """A pong answer validates the connection."""
        responses.add(
            responses.POST,
            f"{BASE_URL}/responses",
            json=responses_payload({"reply": "pong"}),
            status=200,
        )

        check = client.test_connection()

        assert check.success is True
        assert check.model == "test-model"
        body = json.loads(responses.calls[0].request.body)
        assert body["text"]["format"]["name"] == "ping_validation"

    @responses.activate
    def test_connection_unexpected_answer(self, client):
        """Anything but pong is reported as a failed check."""
        responses.add(
            responses.POST,
            f"{BASE_URL}/responses",
            json=responses_payload({"reply": "hello"}),
            status=200,
        )

        assert client.test_connection().success is False

    @responses.activate
    def test_extract_uploads_asks_and_deletes(self, client):
        """Extraction uploads the file, asks for JSON and deletes the file."""
        responses.add(responses.POST, f"{BASE_URL}/files", json={"id": "file-1"}, status=200)
        responses.add(
            responses.POST,
            f"{BASE_URL}/responses",
            json=responses_payload(INVOICE_ANSWER),
            status=200,
        )
        responses.add(responses.DELETE, f"{BASE_URL}/files/file-1", json={}, status=200)

        fields = client.extract(b"%PDF-1.4", "energia.pdf", account_context="Conta Corrente")

        assert fields.company_name == "Energia Lisboa"
        assert [c.request.method for c in responses.calls] == ["POST", "POST", "DELETE"]
        body = json.loads(responses.calls[1].request.body)
        content = body["input"][0]["content"]
        assert content[1] == {"type": "input_file", "file_id": "file-1"}
        assert "Conta Corrente" in content[0]["text"]
        assert body["model"] == "test-model"

    @responses.activate
    def test_extract_deletes_file_on_error(self, client):
        """The uploaded file is deleted even when extraction fails."""
        responses.add(responses.POST, f"{BASE_URL}/files", json={"id": "file-1"}, status=200)
        responses.add(
            responses.POST,
            f"{BASE_URL}/responses",
            json={"error": {"message": "bad request"}},
            status=400,
        )
        responses.add(responses.DELETE, f"{BASE_URL}/files/file-1", json={}, status=200)

        with pytest.raises(ExtractionAPIError) as exc_info:
            client.extract(b"%PDF-1.4", "energia.pdf")

        assert exc_info.value.status_code == 400
        assert exc_info.value.message == "bad request"
        assert responses.calls[-1].request.method == "DELETE"

    @responses.activate
    def test_failed_delete_is_not_fatal(self, client):
        """A failed cleanup only logs a warning."""
        responses.add(responses.POST, f"{BASE_URL}/files", json={"id": "file-1"}, status=200)
        responses.add(
            responses.POST,
            f"{BASE_URL}/responses",
            json=responses_payload(INVOICE_ANSWER),
            status=200,
        )
        responses.add(responses.DELETE, f"{BASE_URL}/files/file-1", json={}, status=404)

        fields = client.extract(b"%PDF-1.4", "energia.pdf")

        assert fields.amount == Decimal("62.3")

    @responses.activate
    def test_upload_without_id(self, client):
        """An upload answer without id is an error."""
        responses.add(responses.POST, f"{BASE_URL}/files", json={}, status=200)

        with pytest.raises(ExtractionError, match="missing id"):
            client.upload_file(b"x", "x.pdf")

    @responses.activate
    def test_connection_error(self, client):
        """Network failures raise ExtractionConnectionError."""
        responses.add(
            responses.POST,
            f"{BASE_URL}/responses",
            body=requests.exceptions.ConnectionError("refused"),
        )

        with pytest.raises(ExtractionConnectionError):
            client.test_connection()

    @responses.activate
    def test_unauthorized(self, client):
        """A rejected key raises ExtractionAPIError."""
        responses.add(
            responses.POST,
            f"{BASE_URL}/responses",
            json={"error": {"message": "Incorrect API key provided"}},
            status=401,
        )

        with pytest.raises(ExtractionAPIError) as exc_info:
            client.test_connection()

        assert exc_info.value.status_code == 401
