"""
Receiving Verification Service

A Python service for checking physical deliveries against their invoices:
line items are extracted from an invoice photo or PDF, the received goods
are counted item by item, and a discrepancy report is produced.
"""

__version__ = "0.1.0"
__author__ = "Receiving QC Team"

from .config import ItemStatus, WorkflowPhase
from .schemas import ExtractionResult, VerificationItem, ReceivingSummary, ReceivingReport
from .session import VerificationSession
from .reconciliation import summarize
from .report import build_report

__all__ = [
    "ItemStatus",
    "WorkflowPhase",
    "ExtractionResult",
    "VerificationItem",
    "ReceivingSummary",
    "ReceivingReport",
    "VerificationSession",
    "summarize",
    "build_report",
]
