"""Financial field extraction using Gemini.

Hands a document's bytes and MIME type to the model with a JSON response
schema and validates the reply into an ``ExtractionResult``. Every failure
mode (bad base64, SDK error, non-JSON output, missing fields) surfaces as
``ExtractionError`` so callers can treat them uniformly.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import json
import logging
import os
from functools import lru_cache
from typing import Any

from google import genai
from google.genai import types
from pydantic import ValidationError

from finvision_service.config import (
    FINVISION_EXTRACTION_MODEL,
    VERTEX_LOCATION,
    VERTEX_PROJECT,
)
from finvision_service.models import ExtractionResult

logger = logging.getLogger(__name__)

_SYSTEM_INSTRUCTION = (
    "You are a professional financial auditor for small businesses. "
    "Extract data from the attached receipt or invoice into structured JSON. "
    "Identify whether it is INCOME (the user is the seller) or EXPENSE "
    "(the user is the buyer). Fields: date (YYYY-MM-DD), vendor, total_amount, "
    "tax_amount, category, currency (ISO 4217 code), type (income or expense), "
    "items (description, quantity, price)."
)

_RESPONSE_SCHEMA: dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "date": {"type": "STRING"},
        "vendor": {"type": "STRING"},
        "total_amount": {"type": "NUMBER"},
        "tax_amount": {"type": "NUMBER"},
        "category": {"type": "STRING"},
        "currency": {"type": "STRING"},
        "type": {"type": "STRING", "nullable": True},
        "items": {
            "type": "ARRAY",
            "items": {
                "type": "OBJECT",
                "properties": {
                    "description": {"type": "STRING"},
                    "quantity": {"type": "NUMBER"},
                    "price": {"type": "NUMBER"},
                },
                "required": ["description"],
            },
        },
    },
    "required": ["date", "vendor", "total_amount", "category", "currency", "type"],
}


class ExtractionError(RuntimeError):
    """The document could not be turned into an ExtractionResult."""


def _is_gcp_environment() -> bool:
    """Detect if running on GCP (Cloud Run, GCE, etc.)."""
    return bool(os.getenv("K_SERVICE") or os.getenv("GOOGLE_APPLICATION_CREDENTIALS"))


@lru_cache(maxsize=1)
def _get_gemini_client() -> genai.Client:
    """Cached Gemini client with automatic credential detection."""
    if _is_gcp_environment() and VERTEX_PROJECT:
        return genai.Client(
            vertexai=True, project=VERTEX_PROJECT, location=VERTEX_LOCATION
        )
    api_key = os.getenv("GEMINI_API_KEY")
    if not api_key:
        raise ValueError(
            "GEMINI_API_KEY not set. Set it for local dev or run on GCP for ADC."
        )
    return genai.Client(api_key=api_key)


def parse_extraction(raw: str | None) -> ExtractionResult:
    """Validate the model's JSON reply.

    Raises:
        ExtractionError: If the reply is empty, not JSON, not an object,
            or is missing a required field.
    """
    if not raw or not raw.strip():
        raise ExtractionError("Extraction response was empty")
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ExtractionError("Extraction response was not valid JSON") from e
    if not isinstance(payload, dict):
        raise ExtractionError("Extraction response was not a JSON object")
    try:
        return ExtractionResult.model_validate(payload)
    except ValidationError as e:
        missing = sorted({str(err["loc"][0]) for err in e.errors() if err["loc"]})
        raise ExtractionError(f"Extraction response failed validation: {', '.join(missing)}") from e


def extract_financial_data(base64_data: str, mime_type: str, user_name: str = "") -> ExtractionResult:
    """Run one blocking extraction call against the configured Gemini model."""
    if not mime_type:
        raise ExtractionError("Document MIME type is unknown")
    try:
        data = base64.b64decode(base64_data, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ExtractionError("Document payload is not valid base64") from e
    if not data:
        raise ExtractionError("Document payload is empty")

    subject = f' for business user "{user_name}"' if user_name else ""
    try:
        client = _get_gemini_client()
        response = client.models.generate_content(
            model=FINVISION_EXTRACTION_MODEL,
            contents=[
                types.Part.from_bytes(data=data, mime_type=mime_type),
                f"Analyze this document{subject}. Output JSON.",
            ],
            config={
                "system_instruction": _SYSTEM_INSTRUCTION,
                "response_mime_type": "application/json",
                "response_schema": _RESPONSE_SCHEMA,
            },
        )
    except Exception as e:
        logger.warning("Gemini extraction call failed: %s", e)
        raise ExtractionError(f"Extraction request failed: {type(e).__name__}") from e

    return parse_extraction(response.text)


async def analyze_document(base64_data: str, mime_type: str, user_name: str = "") -> ExtractionResult:
    """Run the blocking extraction call in the default executor."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(
        None, extract_financial_data, base64_data, mime_type, user_name
    )
