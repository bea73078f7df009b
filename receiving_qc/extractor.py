"""
Line item extraction from invoice page images.

This module provides:
- The LineItemExtractor protocol the verification session depends on
- Prompt construction and model response parsing
- Translation of client failures into user-facing ExtractionErrors
- GeminiExtractor, a Google Generative AI implementation
- extract_pages, which runs an extractor over a multi-page document
"""

import json
import re
from typing import Optional, Protocol, Sequence

import google.generativeai as genai
from google.api_core import exceptions as google_exceptions
from pydantic import ValidationError

from .config import GEMINI_API_KEY, GEMINI_MODEL, ExtractionFailure, logger
from .errors import ExtractionError
from .schemas import CatalogEntry, ExtractionResult


class LineItemExtractor(Protocol):
    """Anything that can turn one invoice page image into line items."""

    async def extract_page(
        self,
        page: bytes,
        catalog: Optional[Sequence[CatalogEntry]] = None,
    ) -> ExtractionResult:
        ...


# ============================================================================
# Prompt & Response Handling
# ============================================================================

RESPONSE_SHAPE = """{
  "vendorName": "Vendor Name",
  "invoiceNumber": "INV-12345",
  "date": "2025-11-15",
  "items": [
    {
      "name": "Item Name",
      "quantity": 5,
      "unitPrice": 10.00,
      "matchedCatalogId": "abc123"
    }
  ]
}"""


def build_extraction_prompt(catalog: Optional[Sequence[CatalogEntry]] = None) -> str:
    """Build the instruction prompt, embedding the reference catalog for matching."""
    catalog_json = json.dumps(
        [entry.model_dump() for entry in (catalog or [])],
        indent=2,
    )
    return f"""You are analyzing an invoice/receipt photo.
Extract all line items from this invoice.

Here is the user's current catalog for matching:
{catalog_json}

For each invoice item, extract:
- name: Item name as shown on invoice
- quantity: Quantity ordered
- unitPrice: Price per unit (optional)
- matchedCatalogId: If this item matches any catalog item, include the catalog ID

Return ONLY a valid JSON object with this structure:
{RESPONSE_SHAPE}

Important:
- Try to match invoice items to catalog items by name similarity
- If you find a match, include the matchedCatalogId
- Extract vendor name, invoice number, and date if visible
- Return ONLY the JSON object, no markdown formatting"""


_CODE_FENCE = re.compile(r"```(?:json)?\s*\n?", re.IGNORECASE)


def clean_model_output(text: str) -> str:
    """Strip markdown code fences that models wrap around JSON."""
    return _CODE_FENCE.sub("", text).strip()


def parse_extraction_response(text: str) -> ExtractionResult:
    """
    Parse a model response into an ExtractionResult.

    A bare JSON list is accepted as the item list.

    Raises:
        ExtractionError: if the response is not valid extraction JSON
    """
    try:
        data = json.loads(clean_model_output(text))
    except json.JSONDecodeError as e:
        raise ExtractionError(
            "AI returned invalid response. Please try again.",
            ExtractionFailure.MALFORMED,
        ) from e

    if isinstance(data, list):
        data = {"items": data}
    if not isinstance(data, dict):
        raise ExtractionError(
            "AI returned invalid response. Please try again.",
            ExtractionFailure.MALFORMED,
        )
    if data.get("items") is None:
        data["items"] = []

    try:
        return ExtractionResult.model_validate(data)
    except ValidationError as e:
        logger.error(f"Extraction response failed validation: {e}")
        raise ExtractionError(
            "AI returned invalid response. Please try again.",
            ExtractionFailure.MALFORMED,
        ) from e


def classify_extraction_failure(exc: Exception) -> ExtractionError:
    """Map a client or parsing failure to a user-facing ExtractionError."""
    if isinstance(exc, ExtractionError):
        return exc

    message = str(exc)

    if isinstance(exc, (google_exceptions.Unauthenticated, google_exceptions.PermissionDenied)) \
            or "API_KEY" in message:
        return ExtractionError(
            "Invalid API key. Please check your Gemini API configuration.",
            ExtractionFailure.CREDENTIALS,
        )
    if isinstance(exc, google_exceptions.ResourceExhausted) \
            or "quota" in message.lower() or "RESOURCE_EXHAUSTED" in message:
        return ExtractionError(
            "API quota exceeded. Please try again later.",
            ExtractionFailure.QUOTA,
        )
    if "SAFETY" in message:
        return ExtractionError(
            "Image was blocked by safety filters. Please try a different image.",
            ExtractionFailure.SAFETY,
        )
    if isinstance(exc, json.JSONDecodeError) or "JSON" in message:
        return ExtractionError(
            "AI returned invalid response. Please try again.",
            ExtractionFailure.MALFORMED,
        )
    if isinstance(exc, (google_exceptions.ServiceUnavailable, google_exceptions.DeadlineExceeded,
                        ConnectionError, TimeoutError)):
        return ExtractionError(
            "Could not reach the extraction service. Check your connection and try again.",
            ExtractionFailure.NETWORK,
        )
    return ExtractionError(
        f"Analysis failed: {message or 'Unknown error'}",
        ExtractionFailure.UNKNOWN,
    )


def guess_image_mime(data: bytes) -> str:
    """Best-effort MIME type for an uploaded page image."""
    if data.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    return "image/jpeg"


# ============================================================================
# Gemini Extractor
# ============================================================================

class GeminiExtractor:
    """
    Extract invoice line items with a Gemini vision model.

    The model is asked for JSON output at temperature 0.
    """

    def __init__(self, api_key: Optional[str] = None, model_name: str = GEMINI_MODEL):
        self.api_key = api_key if api_key is not None else GEMINI_API_KEY
        self.model_name = model_name
        self.model = None
        if self.api_key:
            genai.configure(api_key=self.api_key)
            self.model = genai.GenerativeModel(
                model_name,
                generation_config={
                    "response_mime_type": "application/json",
                    "temperature": 0.0,
                },
            )

    async def extract_page(
        self,
        page: bytes,
        catalog: Optional[Sequence[CatalogEntry]] = None,
    ) -> ExtractionResult:
        if self.model is None:
            raise ExtractionError(
                "Gemini API key is not configured. Set GEMINI_API_KEY in the environment.",
                ExtractionFailure.CREDENTIALS,
            )
        if not page:
            raise ExtractionError(
                "No image data provided. Please upload a valid image.",
                ExtractionFailure.NO_IMAGE,
            )

        try:
            response = await self.model.generate_content_async([
                build_extraction_prompt(catalog),
                {"mime_type": guess_image_mime(page), "data": page},
            ])
            return parse_extraction_response(response.text)
        except Exception as e:
            logger.error(f"Error analyzing invoice page with {self.model_name}: {e}")
            raise classify_extraction_failure(e) from e


async def extract_pages(
    extractor: LineItemExtractor,
    pages: Sequence[bytes],
    catalog: Optional[Sequence[CatalogEntry]] = None,
) -> ExtractionResult:
    """
    Run the extractor once per page and concatenate the results in page order.

    Invoice metadata is taken from the first page that provides it.

    Raises:
        ExtractionError: if there are no pages or any page fails
    """
    if not pages:
        raise ExtractionError(
            "No image data provided. Please upload a valid image.",
            ExtractionFailure.NO_IMAGE,
        )

    combined = ExtractionResult()
    for number, page in enumerate(pages, start=1):
        result = await extractor.extract_page(page, catalog)
        logger.info(f"Page {number}/{len(pages)}: extracted {len(result.items)} item(s)")
        combined.items.extend(result.items)
        combined.vendor_name = combined.vendor_name or result.vendor_name
        combined.invoice_number = combined.invoice_number or result.invoice_number
        combined.invoice_date = combined.invoice_date or result.invoice_date

    return combined
