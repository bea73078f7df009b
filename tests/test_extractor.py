"""
Tests for the line item extractor module.

These tests verify prompt construction, response parsing, error
classification and the Gemini client wrapper (with the client mocked).
"""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from google.api_core import exceptions as google_exceptions

from receiving_qc.config import ExtractionFailure
from receiving_qc.errors import ExtractionError
from receiving_qc.extractor import (
    GeminiExtractor,
    build_extraction_prompt,
    classify_extraction_failure,
    clean_model_output,
    extract_pages,
    guess_image_mime,
    parse_extraction_response,
)
from receiving_qc.schemas import CatalogEntry, ExtractedLineItem, ExtractionResult


MODEL_RESPONSE = """```json
{
  "vendorName": "Acme Supply",
  "invoiceNumber": "INV-12345",
  "date": "2025-11-15",
  "total": 150.00,
  "items": [
    {"name": "Widget", "quantity": 10, "unitPrice": 2.5, "total": 25.0, "matchedInventoryId": "inv-1"},
    {"name": "Gadget", "quantity": 3}
  ]
}
```"""


class TestBuildPrompt:
    """Tests for prompt construction."""

    def test_includes_catalog(self):
        prompt = build_extraction_prompt([CatalogEntry(id="inv-1", name="Widget", sku="W-01")])
        assert '"id": "inv-1"' in prompt
        assert '"sku": "W-01"' in prompt
        assert "Return ONLY a valid JSON object" in prompt

    def test_empty_catalog(self):
        assert "[]" in build_extraction_prompt(None)


class TestParseResponse:
    """Tests for model response parsing."""

    def test_clean_model_output_strips_fences(self):
        assert clean_model_output('```json\n{"items": []}\n```') == '{"items": []}'

    def test_parses_camel_case_fields(self):
        result = parse_extraction_response(MODEL_RESPONSE)
        assert result.vendor_name == "Acme Supply"
        assert result.invoice_number == "INV-12345"
        assert result.invoice_date == "2025-11-15"
        assert len(result.items) == 2
        assert result.items[0].unit_price == 2.5
        assert result.items[0].matched_catalog_id == "inv-1"
        assert result.items[1].unit_price is None

    def test_bare_list_is_item_list(self):
        result = parse_extraction_response('[{"name": "Widget", "quantity": 1}]')
        assert [item.name for item in result.items] == ["Widget"]

    def test_null_items_means_empty(self):
        assert parse_extraction_response('{"items": null}').items == []

    def test_null_quantity_defaults_to_zero(self):
        result = parse_extraction_response('{"items": [{"name": "Widget", "quantity": null}]}')
        assert result.items[0].quantity == 0

    @pytest.mark.parametrize("text", [
        "not json at all",
        '"just a string"',
        '{"items": [{"quantity": 3}]}',
        '{"items": [{"name": "Widget", "quantity": -2}]}',
    ])
    def test_malformed(self, text):
        with pytest.raises(ExtractionError) as exc_info:
            parse_extraction_response(text)
        assert exc_info.value.kind == ExtractionFailure.MALFORMED


class TestClassifyFailure:
    """Tests for mapping client errors to user-facing messages."""

    @pytest.mark.parametrize("exc, kind", [
        (google_exceptions.Unauthenticated("bad credentials"), ExtractionFailure.CREDENTIALS),
        (Exception("API_KEY_INVALID"), ExtractionFailure.CREDENTIALS),
        (google_exceptions.ResourceExhausted("slow down"), ExtractionFailure.QUOTA),
        (Exception("429 RESOURCE_EXHAUSTED"), ExtractionFailure.QUOTA),
        (ValueError("response blocked: finish_reason SAFETY"), ExtractionFailure.SAFETY),
        (json.JSONDecodeError("Expecting value", "", 0), ExtractionFailure.MALFORMED),
        (google_exceptions.ServiceUnavailable("down"), ExtractionFailure.NETWORK),
        (ConnectionError("reset by peer"), ExtractionFailure.NETWORK),
        (RuntimeError("something odd"), ExtractionFailure.UNKNOWN),
    ])
    def test_kinds(self, exc, kind):
        assert classify_extraction_failure(exc).kind == kind

    def test_quota_message(self):
        error = classify_extraction_failure(google_exceptions.ResourceExhausted("slow down"))
        assert str(error) == "API quota exceeded. Please try again later."

    def test_unknown_keeps_message(self):
        assert "something odd" in str(classify_extraction_failure(RuntimeError("something odd")))

    def test_extraction_error_passes_through(self):
        original = ExtractionError("already classified", ExtractionFailure.EMPTY)
        assert classify_extraction_failure(original) is original


class TestGuessImageMime:
    def test_png(self):
        assert guess_image_mime(b"\x89PNG\r\n\x1a\n....") == "image/png"

    def test_default_jpeg(self):
        assert guess_image_mime(b"\xff\xd8\xff\xe0") == "image/jpeg"


# ============================================================================
# Gemini Extractor
# ============================================================================

@pytest.fixture
def mock_genai():
    with patch("receiving_qc.extractor.genai") as genai:
        yield genai


class TestGeminiExtractor:
    """Tests for the Gemini client wrapper."""

    def test_missing_api_key(self, mock_genai):
        extractor = GeminiExtractor(api_key="")
        with pytest.raises(ExtractionError) as exc_info:
            asyncio.run(extractor.extract_page(b"image"))
        assert exc_info.value.kind == ExtractionFailure.CREDENTIALS
        mock_genai.configure.assert_not_called()

    def test_empty_page(self, mock_genai):
        extractor = GeminiExtractor(api_key="test-key")
        with pytest.raises(ExtractionError) as exc_info:
            asyncio.run(extractor.extract_page(b""))
        assert exc_info.value.kind == ExtractionFailure.NO_IMAGE

    def test_successful_extraction(self, mock_genai):
        model = mock_genai.GenerativeModel.return_value
        model.generate_content_async = AsyncMock(return_value=MagicMock(text=MODEL_RESPONSE))
        extractor = GeminiExtractor(api_key="test-key", model_name="gemini-test")

        result = asyncio.run(extractor.extract_page(b"\xff\xd8jpeg", [CatalogEntry(id="inv-1", name="Widget")]))

        mock_genai.configure.assert_called_once_with(api_key="test-key")
        assert mock_genai.GenerativeModel.call_args.args[0] == "gemini-test"
        prompt, image = model.generate_content_async.call_args.args[0]
        assert "inv-1" in prompt
        assert image == {"mime_type": "image/jpeg", "data": b"\xff\xd8jpeg"}
        assert [item.name for item in result.items] == ["Widget", "Gadget"]

    def test_client_error_is_classified(self, mock_genai):
        model = mock_genai.GenerativeModel.return_value
        model.generate_content_async = AsyncMock(side_effect=google_exceptions.ResourceExhausted("quota"))
        extractor = GeminiExtractor(api_key="test-key")

        with pytest.raises(ExtractionError) as exc_info:
            asyncio.run(extractor.extract_page(b"image"))
        assert exc_info.value.kind == ExtractionFailure.QUOTA


# ============================================================================
# Multi-page Extraction
# ============================================================================

class PageExtractor:
    """Returns one named item per page."""

    def __init__(self, metadata=None):
        self.pages = []
        self.metadata = metadata or {}

    async def extract_page(self, page, catalog=None):
        self.pages.append(page)
        number = len(self.pages)
        return ExtractionResult(
            items=[ExtractedLineItem(name=page.decode(), quantity=number)],
            **self.metadata.get(number, {}),
        )


class TestExtractPages:
    """Tests for per-page extraction and concatenation."""

    def test_concatenates_in_page_order(self):
        extractor = PageExtractor()
        result = asyncio.run(extract_pages(extractor, [b"first", b"second", b"third"]))
        assert extractor.pages == [b"first", b"second", b"third"]
        assert [item.name for item in result.items] == ["first", "second", "third"]

    def test_metadata_from_first_page_that_has_it(self):
        extractor = PageExtractor(metadata={
            2: {"vendor_name": "Acme", "invoice_number": "INV-1"},
            3: {"vendor_name": "Other"},
        })
        result = asyncio.run(extract_pages(extractor, [b"a", b"b", b"c"]))
        assert result.vendor_name == "Acme"
        assert result.invoice_number == "INV-1"

    def test_no_pages(self):
        with pytest.raises(ExtractionError) as exc_info:
            asyncio.run(extract_pages(PageExtractor(), []))
        assert exc_info.value.kind == ExtractionFailure.NO_IMAGE
