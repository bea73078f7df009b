"""
Pydantic models for receiving verification data.

This module defines the core data structures used throughout the Receiving QC Service:
- CatalogEntry, ExtractedLineItem and ExtractionResult for extractor input/output
- VerificationItem for an invoice line under live reconciliation
- ReceivingSummary for aggregate reconciliation counts
- ReportItem and ReceivingReport for the frozen, persistable outcome
"""

from datetime import datetime, timezone
from typing import Optional

from pydantic import AliasChoices, BaseModel, Field, field_validator

from .config import ISSUE_STATUSES, ItemStatus, StatusSource, WorkflowPhase


# ============================================================================
# Extraction Models
# ============================================================================

class CatalogEntry(BaseModel):
    """A known product the extractor may match invoice lines against."""
    id: str = Field(..., min_length=1, description="Catalog identifier")
    name: str = Field(..., description="Product name")
    sku: Optional[str] = Field(None, description="Stock keeping unit")


class ExtractedLineItem(BaseModel):
    """
    A candidate invoice line as returned by the extractor.

    Attributes:
        name: Item name as printed on the invoice
        quantity: Quantity the invoice claims was delivered
        unit_price: Optional price per unit
        matched_catalog_id: Optional catalog entry the extractor matched
    """
    name: str = Field(..., description="Item name as shown on the invoice")
    quantity: float = Field(0, ge=0, description="Invoiced quantity")
    unit_price: Optional[float] = Field(
        None,
        ge=0,
        validation_alias=AliasChoices("unit_price", "unitPrice"),
        description="Price per unit",
    )
    matched_catalog_id: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("matched_catalog_id", "matchedCatalogId", "matchedInventoryId"),
        description="Identifier of the matched catalog entry",
    )

    @field_validator("quantity", mode="before")
    @classmethod
    def default_missing_quantity(cls, v):
        """Models sometimes return null for quantities they cannot read."""
        return 0 if v is None else v

    model_config = {
        "populate_by_name": True,
        "json_schema_extra": {
            "examples": [
                {
                    "name": "Widget",
                    "quantity": 10,
                    "unit_price": 2.5,
                    "matched_catalog_id": "inv-001",
                }
            ]
        },
    }


class ExtractionResult(BaseModel):
    """Line items and invoice metadata extracted from one or more pages."""
    items: list[ExtractedLineItem] = Field(default_factory=list)
    vendor_name: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("vendor_name", "vendorName"),
    )
    invoice_number: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("invoice_number", "invoiceNumber"),
    )
    invoice_date: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("invoice_date", "date"),
    )

    model_config = {"populate_by_name": True}


# ============================================================================
# Verification Models
# ============================================================================

class VerificationItem(BaseModel):
    """
    One invoice line under reconciliation.

    `actual_qty` always starts at zero so that every unit is physically
    counted. `status_source` records which rule last wrote `status`.
    """
    name: str
    expected_qty: int = Field(..., ge=0, frozen=True)
    actual_qty: int = Field(0, ge=0)
    unit_price: Optional[float] = Field(None, ge=0)
    status: ItemStatus = ItemStatus.PENDING
    verified: bool = False
    notes: str = ""
    status_source: StatusSource = StatusSource.INITIAL

    model_config = {"validate_assignment": True}


class ReceivingSummary(BaseModel):
    """Aggregate reconciliation counts for a list of items."""
    total: int = Field(..., ge=0, description="Number of items")
    verified: int = Field(..., ge=0, description="Items the user finished counting")
    matched: int = Field(..., ge=0, description="Items whose count matches the invoice")
    issues: int = Field(..., ge=0, description="Items with a discrepancy")

    @property
    def unverified(self) -> int:
        return self.total - self.verified


# ============================================================================
# Report Models
# ============================================================================

class ReportItem(BaseModel):
    """Audit snapshot of a verified invoice line."""
    name: str
    expected_qty: int = Field(..., ge=0)
    actual_qty: int = Field(..., ge=0)
    unit_price: Optional[float] = None
    status: ItemStatus
    notes: str = ""

    model_config = {"frozen": True}


class ReceivingReport(BaseModel):
    """
    Immutable outcome of a receiving verification.

    Totals are computed once when the report is built and never
    recomputed from `items`.
    """
    items: tuple[ReportItem, ...] = ()
    total_items: int = Field(..., ge=0)
    matched_items: int = Field(..., ge=0)
    issue_items: int = Field(..., ge=0)
    created_at: datetime
    vendor_name: Optional[str] = None
    invoice_number: Optional[str] = None

    @field_validator("created_at")
    @classmethod
    def normalize_created_at(cls, v: datetime) -> datetime:
        """Naive timestamps are taken as UTC so reports always sort together."""
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)

    model_config = {
        "frozen": True,
        "json_schema_extra": {
            "examples": [
                {
                    "items": [
                        {
                            "name": "Widget",
                            "expected_qty": 10,
                            "actual_qty": 10,
                            "unit_price": 2.5,
                            "status": "match",
                            "notes": "",
                        },
                        {
                            "name": "Gadget",
                            "expected_qty": 4,
                            "actual_qty": 0,
                            "unit_price": None,
                            "status": "missing",
                            "notes": "Not on the pallet",
                        },
                    ],
                    "total_items": 2,
                    "matched_items": 1,
                    "issue_items": 1,
                    "created_at": "2025-11-15T09:30:00Z",
                    "vendor_name": "Acme Supply",
                    "invoice_number": "INV-12345",
                }
            ]
        },
    }

    @property
    def discrepancies(self) -> list[ReportItem]:
        """Items whose status is a shortage, overage, missing or damaged."""
        return [item for item in self.items if item.status in ISSUE_STATUSES]


class StoredReport(BaseModel):
    """A report together with the identifier the store assigned it."""
    id: str
    report: ReceivingReport


# ============================================================================
# API Request/Response Models
# ============================================================================

class CreateSessionRequest(BaseModel):
    """Request body for opening a verification session."""
    catalog: list[CatalogEntry] = Field(
        default_factory=list,
        description="Reference catalog passed to the extractor",
    )


class MarkItemRequest(BaseModel):
    """Request body for manually overriding an item's status."""
    status: ItemStatus = Field(..., description="Either missing or damaged")


class NotesRequest(BaseModel):
    """Request body for attaching notes to a verified item."""
    notes: str = ""


class SessionState(BaseModel):
    """Snapshot of a verification session returned by the API."""
    session_id: str
    phase: WorkflowPhase
    items: list[VerificationItem]
    summary: ReceivingSummary
    can_advance: bool
    vendor_name: Optional[str] = None
    invoice_number: Optional[str] = None
    last_error: Optional[str] = None


class SaveReportResponse(BaseModel):
    """Response for a successfully persisted report."""
    report_id: str
    report: ReceivingReport
