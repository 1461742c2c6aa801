"""
Firestore REST API document store.

Talks to ``firestore.googleapis.com`` directly with the project's web API key
(and optionally a Firebase ID token), so no service-account SDK is needed.

Documents are addressed as
``projects/{project}/databases/{database}/documents/{collection}/{id}``.
``PATCH`` without an update mask creates or replaces the whole document.
"""

import logging
from typing import Any
from urllib.parse import quote

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..config import FirestoreConfig
from .base import COLLECTIONS, DocumentStore, StoreError

logger = logging.getLogger(__name__)


class FirestoreError(StoreError):
    """Base exception for Firestore client errors."""

    pass


class FirestoreAPIError(FirestoreError):
    """API returned an error response."""

    def __init__(
        self,
        status_code: int,
        message: str,
        response_body: str | None = None,
        status: str | None = None,
    ):
        self.status_code = status_code
        self.message = message
        self.response_body = response_body
        self.status = status

        detail = f"{status}: {message}" if status else message
        super().__init__(f"Firestore API error {status_code}: {detail}")


class FirestoreConnectionError(FirestoreError):
    """Failed to connect to Firestore."""

    pass


# ============================================================================
# Typed value encoding
# ============================================================================


def encode_value(value: Any) -> dict[str, Any]:
    """Encode a Python value as a Firestore typed value."""
    if value is None:
        return {"nullValue": None}
    # bool before int: bool is an int subclass
    if isinstance(value, bool):
        return {"booleanValue": value}
    if isinstance(value, int):
        return {"integerValue": str(value)}
    if isinstance(value, float):
        return {"doubleValue": value}
    if isinstance(value, str):
        return {"stringValue": value}
    if isinstance(value, dict):
        return {"mapValue": {"fields": encode_fields(value)}}
    if isinstance(value, (list, tuple)):
        return {"arrayValue": {"values": [encode_value(v) for v in value]}}
    # Decimal and anything else: lossless string
    return {"stringValue": str(value)}


def encode_fields(data: dict[str, Any]) -> dict[str, Any]:
    """Encode a document body. None values are left out of the document."""
    return {key: encode_value(value) for key, value in data.items() if value is not None}


def decode_value(value: dict[str, Any]) -> Any:
    """Decode a Firestore typed value."""
    if "nullValue" in value:
        return None
    if "booleanValue" in value:
        return bool(value["booleanValue"])
    if "integerValue" in value:
        return int(value["integerValue"])
    if "doubleValue" in value:
        return float(value["doubleValue"])
    if "mapValue" in value:
        return decode_fields(value["mapValue"].get("fields", {}))
    if "arrayValue" in value:
        return [decode_value(v) for v in value["arrayValue"].get("values", [])]
    for key in ("stringValue", "timestampValue", "referenceValue", "bytesValue"):
        if key in value:
            return value[key]
    if "geoPointValue" in value:
        return dict(value["geoPointValue"])
    logger.debug("Unknown Firestore value type: %s", list(value))
    return None


def decode_fields(fields: dict[str, Any]) -> dict[str, Any]:
    """Decode a document's ``fields`` map."""
    return {key: decode_value(value) for key, value in fields.items()}


def decode_document(document: dict[str, Any]) -> dict[str, Any]:
    """Decode a REST document resource; the id is the last path segment."""
    data = decode_fields(document.get("fields", {}))
    data.setdefault("id", document.get("name", "").rsplit("/", 1)[-1])
    return data


class FirestoreClient(DocumentStore):
    """
    Client for the Firestore REST API.

    Features:
    - Create-or-replace (PATCH) and delete by id
    - Paginated collection listing
    - Automatic retry with backoff
    """

    DEFAULT_BASE_URL = "https://firestore.googleapis.com/v1"
    DEFAULT_TIMEOUT = 30
    PAGE_SIZE = 300

    def __init__(
        self,
        project_id: str,
        api_key: str,
        database: str = "(default)",
        id_token: str | None = None,
        base_url: str = DEFAULT_BASE_URL,
        timeout: int = DEFAULT_TIMEOUT,
        max_retries: int = 3,
        backoff_factor: float = 0.5,
    ):
        """
        Initialize Firestore client.

        Args:
            project_id: Firebase project id
            api_key: Firebase web API key
            database: Firestore database id
            id_token: Optional Firebase ID token (Bearer auth for security rules)
            base_url: REST endpoint root
            timeout: Request timeout in seconds
            max_retries: Maximum retry attempts
            backoff_factor: Backoff factor for retries
        """
        if not project_id or not api_key:
            raise FirestoreError("Firestore requires both project_id and api_key")

        self.project_id = project_id
        self.api_key = api_key
        self.database = database
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

        # Configure session with retry
        self.session = requests.Session()
        self.session.headers.update(
            {
                "Accept": "application/json",
                "Content-Type": "application/json",
            }
        )
        if id_token:
            self.session.headers["Authorization"] = f"Bearer {id_token}"

        retry_strategy = Retry(
            total=max_retries,
            backoff_factor=backoff_factor,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["GET", "PATCH", "DELETE"],
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

    @classmethod
    def from_config(cls, config: FirestoreConfig) -> "FirestoreClient":
        """Build a client from the ``store.firestore`` config section."""
        return cls(
            project_id=config.project_id,
            api_key=config.api_key,
            database=config.database,
            id_token=config.id_token,
            base_url=config.base_url,
            timeout=config.timeout_seconds,
        )

    @property
    def documents_root(self) -> str:
        """Resource path of the database's document tree."""
        return f"projects/{self.project_id}/databases/{self.database}/documents"

    def _document_path(self, collection: str, entity_id: str) -> str:
        if collection not in COLLECTIONS:
            raise StoreError(f"Unknown collection: {collection}")
        return f"{self.documents_root}/{collection}/{quote(entity_id, safe='')}"

    def _request(
        self,
        method: str,
        path: str,
        params: dict | None = None,
        json_data: dict | None = None,
        allow_not_found: bool = False,
    ) -> requests.Response | None:
        """Make an API request with error handling."""
        url = f"{self.base_url}/{path}"
        query = {"key": self.api_key, **(params or {})}

        logger.debug("Firestore request: %s %s", method, url)

        try:
            response = self.session.request(
                method=method,
                url=url,
                params=query,
                json=json_data,
                timeout=self.timeout,
            )
        except requests.exceptions.ConnectionError as e:
            logger.error("Connection error to %s: %s", url, e)
            raise FirestoreConnectionError(f"Failed to connect to Firestore: {e}") from e
        except requests.exceptions.Timeout as e:
            logger.error("Timeout for %s: %s", url, e)
            raise FirestoreConnectionError(f"Request to Firestore timed out: {e}") from e
        except requests.exceptions.RequestException as e:
            logger.error("Request error for %s: %s", url, e)
            raise FirestoreError(f"Request failed: {e}") from e

        logger.debug("Response status: %s", response.status_code)

        if allow_not_found and response.status_code == 404:
            return None

        if not response.ok:
            error_body = response.text
            status = None
            try:
                error = response.json().get("error", {})
                message = error.get("message") or response.reason
                status = error.get("status")
            except ValueError:
                message = response.reason

            logger.error("Firestore API error %s: %s", response.status_code, message)
            raise FirestoreAPIError(
                status_code=response.status_code,
                message=message,
                response_body=error_body,
                status=status,
            )

        return response

    def upsert(self, collection: str, entity_id: str, data: dict[str, Any]) -> None:
        """Create or replace a document."""
        body = {key: value for key, value in data.items() if key != "id"}
        self._request(
            "PATCH",
            self._document_path(collection, entity_id),
            json_data={"fields": encode_fields(body)},
        )
        logger.debug("Saved %s/%s to Firestore", collection, entity_id)

    def delete(self, collection: str, entity_id: str) -> None:
        """Delete a document (Firestore deletes are idempotent)."""
        self._request("DELETE", self._document_path(collection, entity_id))

    def get(self, collection: str, entity_id: str) -> dict[str, Any] | None:
        """Fetch one document, or None when it does not exist."""
        response = self._request(
            "GET", self._document_path(collection, entity_id), allow_not_found=True
        )
        if response is None:
            return None
        return decode_document(response.json())

    def list_collection(self, collection: str) -> list[dict[str, Any]]:
        """List every document in a collection, following page tokens."""
        if collection not in COLLECTIONS:
            raise StoreError(f"Unknown collection: {collection}")

        documents: list[dict[str, Any]] = []
        page_token: str | None = None
        while True:
            params: dict[str, Any] = {"pageSize": self.PAGE_SIZE}
            if page_token:
                params["pageToken"] = page_token
            response = self._request("GET", f"{self.documents_root}/{collection}", params=params)
            payload = response.json()
            documents.extend(decode_document(d) for d in payload.get("documents", []))
            page_token = payload.get("nextPageToken")
            if not page_token:
                break

        logger.debug("Listed %d document(s) from %s", len(documents), collection)
        return documents

    def test_connection(self) -> bool:
        """Test connection by reading one page of the documents collection."""
        try:
            self._request("GET", f"{self.documents_root}/documents", params={"pageSize": 1})
            return True
        except FirestoreError as e:
            logger.warning("Firestore connection failed: %s", e)
            return False

    def close(self) -> None:
        self.session.close()
