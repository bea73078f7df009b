"""
Rasterization of invoice documents into page images.

PDF pages are rendered with pdfplumber and encoded as JPEG, one image per
page in document order. Plain image uploads pass through as a single page.
"""

import io
from pathlib import Path
from typing import Union

import pdfplumber

from .config import JPEG_QUALITY, RASTER_RESOLUTION, logger
from .errors import RasterizationError


PDF_MAGIC = b"%PDF"


def is_pdf(data: bytes) -> bool:
    """Check whether raw bytes look like a PDF document."""
    return data.lstrip()[:4] == PDF_MAGIC


def rasterize_pdf(
    source: Union[bytes, Path],
    resolution: int = RASTER_RESOLUTION,
) -> list[bytes]:
    """
    Render every page of a PDF to JPEG bytes.

    Args:
        source: PDF content or a path to a PDF file
        resolution: Render resolution in dpi

    Returns:
        JPEG images, one per page, in document order

    Raises:
        RasterizationError: if the PDF cannot be opened or rendered
    """
    handle = io.BytesIO(source) if isinstance(source, bytes) else source
    pages: list[bytes] = []

    try:
        with pdfplumber.open(handle) as pdf:
            for page in pdf.pages:
                image = page.to_image(resolution=resolution).original
                buffer = io.BytesIO()
                image.convert("RGB").save(buffer, format="JPEG", quality=JPEG_QUALITY)
                pages.append(buffer.getvalue())
    except Exception as e:
        logger.error(f"Error converting PDF to images: {e}")
        raise RasterizationError(
            "Failed to process PDF file. Please try a different file or use an image instead."
        ) from e

    if not pages:
        raise RasterizationError("The PDF file has no pages.")

    logger.info(f"Rasterized PDF into {len(pages)} page image(s)")
    return pages


def load_source_pages(data: bytes) -> list[bytes]:
    """
    Turn an uploaded invoice into the ordered page images to extract.

    Raises:
        RasterizationError: if the upload is empty or an unreadable PDF
    """
    if not data:
        raise RasterizationError("The uploaded file is empty.")
    if is_pdf(data):
        return rasterize_pdf(data)
    return [data]
