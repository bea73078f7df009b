"""
Configuration constants and enums for the Receiving QC Service.
"""

import logging
import os
from enum import Enum
from typing import Final


# ============================================================================
# Workflow Enums
# ============================================================================

class ItemStatus(str, Enum):
    """Reconciliation status of a single invoice line."""
    PENDING = "pending"
    MATCH = "match"
    SHORTAGE = "shortage"
    OVERAGE = "overage"
    MISSING = "missing"
    DAMAGED = "damaged"


class WorkflowPhase(str, Enum):
    """Stages of a receiving verification session."""
    SCAN = "scan"
    VERIFY = "verify"
    REPORT = "report"


class StatusSource(str, Enum):
    """Which rule produced an item's current status."""
    INITIAL = "initial"
    COUNT = "count"
    MANUAL = "manual"
    RESET = "reset"


class ExtractionFailure(str, Enum):
    """Categories of line item extraction failures."""
    CREDENTIALS = "credentials"
    QUOTA = "quota"
    SAFETY = "safety"
    MALFORMED = "malformed"
    NETWORK = "network"
    EMPTY = "empty"
    NO_IMAGE = "no_image"
    UNKNOWN = "unknown"


# Statuses counted as discrepancies in the summary
ISSUE_STATUSES: Final[frozenset[ItemStatus]] = frozenset({
    ItemStatus.SHORTAGE,
    ItemStatus.OVERAGE,
    ItemStatus.MISSING,
    ItemStatus.DAMAGED,
})

# Statuses a user may set directly on an item
OVERRIDE_STATUSES: Final[frozenset[ItemStatus]] = frozenset({
    ItemStatus.MISSING,
    ItemStatus.DAMAGED,
})

# ============================================================================
# Extraction Configuration
# ============================================================================

GEMINI_API_KEY: Final[str] = os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY") or ""
GEMINI_MODEL: Final[str] = os.getenv("GEMINI_MODEL", "gemini-2.0-flash")

# 144 dpi renders a 72 dpi PDF page at 2x scale
RASTER_RESOLUTION: Final[int] = int(os.getenv("RASTER_RESOLUTION", "144"))
JPEG_QUALITY: Final[int] = int(os.getenv("JPEG_QUALITY", "95"))

# ============================================================================
# Storage Configuration
# ============================================================================

REPORTS_DIR: Final[str] = os.getenv("REPORTS_DIR", "receiving_reports")

# ============================================================================
# API Configuration
# ============================================================================

API_HOST: Final[str] = os.getenv("API_HOST", "0.0.0.0")
API_PORT: Final[int] = int(os.getenv("API_PORT", "8000"))
MAX_UPLOAD_SIZE_MB: Final[int] = int(os.getenv("MAX_UPLOAD_SIZE_MB", "10"))

# ============================================================================
# Logging Configuration
# ============================================================================

LOG_LEVEL: Final[str] = os.getenv("LOG_LEVEL", "INFO")

def setup_logging() -> logging.Logger:
    """Configure and return the application logger."""
    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    return logging.getLogger("receiving_qc")


logger = setup_logging()
