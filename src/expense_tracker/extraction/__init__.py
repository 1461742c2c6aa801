"""Extraction collaborator (OpenAI-compatible Responses API)."""

from .client import (
    ConnectionCheck,
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

__all__ = [
    "ConnectionCheck",
    "ExtractedFields",
    "ExtractionAPIError",
    "ExtractionClient",
    "ExtractionConnectionError",
    "ExtractionError",
    "build_document_metadata",
    "extract_response_json",
    "extract_response_text",
    "parse_source_type",
]
