"""Unit tests for Gemini-backed extraction: request shape and reply validation."""

from __future__ import annotations

import base64
import json
from unittest.mock import MagicMock, patch

import pytest

from finvision_service.extraction import (
    ExtractionError,
    analyze_document,
    extract_financial_data,
    parse_extraction,
)

_PAYLOAD = base64.b64encode(b"%PDF-1.4 receipt").decode()

_REPLY = {
    "date": "2026-09-14",
    "vendor": "City Cafe",
    "total_amount": 46.2,
    "tax_amount": 3.7,
    "category": "Meals",
    "currency": "PLN",
    "type": "expense",
    "items": [{"description": "Flat white", "quantity": 2, "price": 14.0}],
}


def _mock_client(text: str | None) -> MagicMock:
    client = MagicMock()
    client.models.generate_content.return_value = MagicMock(text=text)
    return client


class TestParseExtraction:
    def test_valid_reply(self):
        result = parse_extraction(json.dumps(_REPLY))
        assert result.vendor == "City Cafe"
        assert result.items[0].description == "Flat white"

    def test_optional_fields_default(self):
        reply = {k: v for k, v in _REPLY.items() if k not in ("tax_amount", "items")}
        result = parse_extraction(json.dumps(reply))
        assert result.tax_amount == 0.0
        assert result.items == []

    def test_null_type_is_accepted(self):
        result = parse_extraction(json.dumps({**_REPLY, "type": None}))
        assert result.type is None

    def test_missing_type_is_rejected(self):
        reply = {k: v for k, v in _REPLY.items() if k != "type"}
        with pytest.raises(ExtractionError, match="type"):
            parse_extraction(json.dumps(reply))

    @pytest.mark.parametrize("field", ["date", "vendor", "total_amount", "category", "currency"])
    def test_missing_required_field(self, field):
        reply = {k: v for k, v in _REPLY.items() if k != field}
        with pytest.raises(ExtractionError, match=field):
            parse_extraction(json.dumps(reply))

    @pytest.mark.parametrize("raw", [None, "", "   ", "not json", "[1, 2]"])
    def test_unusable_reply(self, raw):
        with pytest.raises(ExtractionError):
            parse_extraction(raw)


class TestExtractFinancialData:
    def test_sends_document_and_schema(self):
        client = _mock_client(json.dumps(_REPLY))
        with patch("finvision_service.extraction._get_gemini_client", return_value=client):
            result = extract_financial_data(_PAYLOAD, "application/pdf", "Ada")

        assert result.total_amount == 46.2
        kwargs = client.models.generate_content.call_args.kwargs
        part, prompt = kwargs["contents"]
        assert part.inline_data.data == b"%PDF-1.4 receipt"
        assert part.inline_data.mime_type == "application/pdf"
        assert '"Ada"' in prompt
        assert kwargs["config"]["response_mime_type"] == "application/json"
        assert "type" in kwargs["config"]["response_schema"]["required"]

    def test_invalid_base64(self):
        with pytest.raises(ExtractionError, match="base64"):
            extract_financial_data("***", "application/pdf")

    def test_empty_payload(self):
        with pytest.raises(ExtractionError):
            extract_financial_data("", "application/pdf")

    def test_missing_mime_type(self):
        with pytest.raises(ExtractionError):
            extract_financial_data(_PAYLOAD, "")

    def test_sdk_failure_is_wrapped(self):
        client = MagicMock()
        client.models.generate_content.side_effect = RuntimeError("quota exceeded")
        with patch("finvision_service.extraction._get_gemini_client", return_value=client):
            with pytest.raises(ExtractionError):
                extract_financial_data(_PAYLOAD, "application/pdf")

    def test_missing_credentials_is_wrapped(self):
        with patch(
            "finvision_service.extraction._get_gemini_client",
            side_effect=ValueError("GEMINI_API_KEY not set"),
        ):
            with pytest.raises(ExtractionError):
                extract_financial_data(_PAYLOAD, "application/pdf")

    def test_non_json_reply(self):
        with patch(
            "finvision_service.extraction._get_gemini_client",
            return_value=_mock_client("Sorry, I cannot read this."),
        ):
            with pytest.raises(ExtractionError):
                extract_financial_data(_PAYLOAD, "application/pdf")


class TestAnalyzeDocument:
    async def test_runs_extraction_off_the_event_loop(self):
        with patch(
            "finvision_service.extraction._get_gemini_client",
            return_value=_mock_client(json.dumps(_REPLY)),
        ):
            result = await analyze_document(_PAYLOAD, "application/pdf", "Ada")
        assert result.vendor == "City Cafe"
