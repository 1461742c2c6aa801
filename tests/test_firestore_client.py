"""
Tests for the Firestore REST document store.

These tests use responses library to mock HTTP requests,
validating client behavior without making real API calls.
"""

import json
from decimal import Decimal

import pytest
import requests
import responses
from responses import matchers

from expense_tracker.config import FirestoreConfig
from expense_tracker.schemas.models import Expense
from expense_tracker.state_store import StoreError
from expense_tracker.state_store.firestore import (
    FirestoreAPIError,
    FirestoreClient,
    FirestoreConnectionError,
    FirestoreError,
    decode_document,
    decode_value,
    encode_fields,
    encode_value,
)

BASE_URL = "https://firestore.test/v1"
ROOT = f"{BASE_URL}/projects/demo/databases/(default)/documents"


@pytest.fixture
def client() -> FirestoreClient:
    """Client pointing at the mocked endpoint."""
    return FirestoreClient(project_id="demo", api_key="web-key", base_url=BASE_URL)


class TestValueCodec:
    """Test Firestore typed value encoding."""

    def test_encode_scalars(self):
        """Scalars map to their typed values."""
        assert encode_value("x") == {"stringValue": "x"}
        assert encode_value(True) == {"booleanValue": True}
        assert encode_value(5) == {"integerValue": "5"}
        assert encode_value(1.5) == {"doubleValue": 1.5}
        assert encode_value(None) == {"nullValue": None}

    def test_decimal_is_string(self):
        """Money stays lossless."""
        assert encode_value(Decimal("62.30")) == {"stringValue": "62.30"}

    def test_encode_nested(self):
        """Maps and arrays nest."""
        encoded = encode_value({"hints": ["a", "b"]})
        assert encoded == {
            "mapValue": {
                "fields": {
                    "hints": {"arrayValue": {"values": [{"stringValue": "a"}, {"stringValue": "b"}]}}
                }
            }
        }

    def test_encode_fields_drops_none(self):
        """None fields are left out of the document."""
        assert encode_fields({"a": 1, "b": None}) == {"a": {"integerValue": "1"}}

    def test_decode_roundtrip_of_entity(self):
        """An expense survives encode and decode."""
        expense = Expense(
            id="exp-1",
            account_id="acc-1",
            description="Energia Lisboa",
            category="Other",
            amount=Decimal("62.30"),
            currency="EUR",
            due_date="2024-06-10",
        )
        document = {
            "name": "projects/demo/databases/(default)/documents/expenses/exp-1",
            "fields": encode_fields(expense.to_dict()),
        }
        assert Expense.from_dict(decode_document(document)) == expense

    def test_decode_timestamp_and_unknown(self):
        """Timestamps decode to strings; unknown types to None."""
        assert decode_value({"timestampValue": "2024-06-01T00:00:00Z"}) == "2024-06-01T00:00:00Z"
        assert decode_value({"mysteryValue": 1}) is None


class TestFirestoreClient:
    """Test Firestore REST client."""

    def test_requires_credentials(self):
        """Project id and API key are mandatory."""
        with pytest.raises(FirestoreError):
            FirestoreClient(project_id="", api_key="key")

    def test_bearer_token(self):
        """An ID token is sent as Bearer authorization."""
        client = FirestoreClient(project_id="demo", api_key="k", id_token="tok")
        assert client.session.headers["Authorization"] == "Bearer tok"

    def test_from_config(self):
        """Config section maps onto the client."""
        config = FirestoreConfig(api_key="k", project_id="demo", database="expenses")
        client = FirestoreClient.from_config(config)
        assert client.documents_root == "projects/demo/databases/expenses/documents"

    @responses.activate
    def test_upsert_patches_document(self, client):
        """Upsert PATCHes the full document with the API key."""
        responses.add(
            responses.PATCH,
            f"{ROOT}/expenses/exp-1",
            json={"name": "x"},
            status=200,
            match=[matchers.query_param_matcher({"key": "web-key"})],
        )

        client.upsert("expenses", "exp-1", {"id": "exp-1", "amount": "62.30", "paid_at": None})

        body = json.loads(responses.calls[0].request.body)
        assert body == {"fields": {"amount": {"stringValue": "62.30"}}}

    @responses.activate
    def test_get_existing(self, client):
        """Get decodes the document and its id."""
        responses.add(
            responses.GET,
            f"{ROOT}/accounts/acc-1",
            json={
                "name": "projects/demo/databases/(default)/documents/accounts/acc-1",
                "fields": {"name": {"stringValue": "Conta Corrente"}},
            },
            status=200,
        )

        assert client.get("accounts", "acc-1") == {"id": "acc-1", "name": "Conta Corrente"}

    @responses.activate
    def test_get_missing(self, client):
        """404 means the document does not exist."""
        responses.add(
            responses.GET,
            f"{ROOT}/accounts/nope",
            json={"error": {"code": 404, "status": "NOT_FOUND", "message": "missing"}},
            status=404,
        )

        assert client.get("accounts", "nope") is None

    @responses.activate
    def test_delete(self, client):
        """Delete issues a DELETE."""
        responses.add(responses.DELETE, f"{ROOT}/timeline/doc-timeline-1", json={}, status=200)

        client.delete("timeline", "doc-timeline-1")

        assert responses.calls[0].request.method == "DELETE"

    @responses.activate
    def test_list_collection_paginates(self, client):
        """Listing follows nextPageToken until exhausted."""
        responses.add(
            responses.GET,
            f"{ROOT}/suppliers",
            json={
                "documents": [{"name": f"{ROOT}/suppliers/sup-a", "fields": {}}],
                "nextPageToken": "page-2",
            },
            status=200,
            match=[matchers.query_param_matcher({"key": "web-key", "pageSize": "300"})],
        )
        responses.add(
            responses.GET,
            f"{ROOT}/suppliers",
            json={"documents": [{"name": f"{ROOT}/suppliers/sup-b", "fields": {}}]},
            status=200,
            match=[
                matchers.query_param_matcher(
                    {"key": "web-key", "pageSize": "300", "pageToken": "page-2"}
                )
            ],
        )

        documents = client.list_collection("suppliers")

        assert [d["id"] for d in documents] == ["sup-a", "sup-b"]

    @responses.activate
    def test_list_empty_collection(self, client):
        """Empty collections have no documents key."""
        responses.add(responses.GET, f"{ROOT}/expenses", json={}, status=200)

        assert client.list_collection("expenses") == []

    @responses.activate
    def test_api_error(self, client):
        """Error responses raise FirestoreAPIError with the status."""
        responses.add(
            responses.PATCH,
            f"{ROOT}/expenses/exp-1",
            json={"error": {"code": 403, "status": "PERMISSION_DENIED", "message": "denied"}},
            status=403,
        )

        with pytest.raises(FirestoreAPIError) as exc_info:
            client.upsert("expenses", "exp-1", {"amount": "1.00"})

        assert exc_info.value.status_code == 403
        assert exc_info.value.status == "PERMISSION_DENIED"
        assert exc_info.value.message == "denied"

    @responses.activate
    def test_connection_error(self, client):
        """Network failures raise FirestoreConnectionError."""
        responses.add(
            responses.GET,
            f"{ROOT}/expenses/exp-1",
            body=requests.exceptions.ConnectionError("refused"),
        )

        with pytest.raises(FirestoreConnectionError):
            client.get("expenses", "exp-1")

    @responses.activate
    def test_test_connection(self, client):
        """Connection check reads one page."""
        responses.add(responses.GET, f"{ROOT}/documents", json={}, status=200)

        assert client.test_connection() is True

    @responses.activate
    def test_test_connection_failure(self, client):
        """Connection check reports auth failures as False."""
        responses.add(responses.GET, f"{ROOT}/documents", json={}, status=401)

        assert client.test_connection() is False

    def test_unknown_collection(self, client):
        """Unknown collections are rejected before any request."""
        with pytest.raises(StoreError):
            client.upsert("bogus", "x", {})
