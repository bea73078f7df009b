"""
Report builder for finished receiving verifications.

Turns a session that has reached (or may reach) the report phase into an
immutable ReceivingReport ready to hand to the report store.
"""

from datetime import datetime, timezone
from typing import Optional

from .config import WorkflowPhase, logger
from .errors import InvalidTransitionError
from .reconciliation import summarize
from .schemas import ReceivingReport, ReportItem, VerificationItem
from .session import VerificationSession


def to_report_item(item: VerificationItem) -> ReportItem:
    """Snapshot the audit fields of an item, dropping `verified`."""
    return ReportItem(
        name=item.name,
        expected_qty=item.expected_qty,
        actual_qty=item.actual_qty,
        unit_price=item.unit_price,
        status=item.status,
        notes=item.notes,
    )


def build_report(session: VerificationSession, created_at: Optional[datetime] = None) -> ReceivingReport:
    """
    Freeze a session's items and aggregates into a ReceivingReport.

    The session is not modified; resetting it after a successful save is
    up to the caller.

    Args:
        session: Session in the report phase, or in verify with at least
            one verified item
        created_at: Optional timestamp (defaults to now; naive values are taken as UTC)

    Raises:
        InvalidTransitionError: if the session is not report-eligible
    """
    if session.phase == WorkflowPhase.SCAN or session.summary().verified == 0:
        raise InvalidTransitionError(
            "Verify at least one item before building a report",
            session.phase,
            WorkflowPhase.REPORT,
        )

    items = session.items
    summary = summarize(items)
    report = ReceivingReport(
        items=tuple(to_report_item(item) for item in items),
        total_items=summary.total,
        matched_items=summary.matched,
        issue_items=summary.issues,
        created_at=created_at or datetime.now(timezone.utc),
        vendor_name=session.vendor_name,
        invoice_number=session.invoice_number,
    )

    logger.info(
        f"Built receiving report: {report.total_items} items, "
        f"{report.matched_items} matched, {report.issue_items} with issues"
    )
    return report


def format_report_text(report: ReceivingReport) -> str:
    """
    Format a ReceivingReport as human-readable text for CLI output.

    Args:
        report: ReceivingReport to format

    Returns:
        Formatted string for display
    """
    lines = [
        "=" * 50,
        "RECEIVING SUMMARY",
        "=" * 50,
    ]
    if report.vendor_name:
        lines.append(f"Vendor:            {report.vendor_name}")
    if report.invoice_number:
        lines.append(f"Invoice:           {report.invoice_number}")
    lines.extend([
        f"Created:           {report.created_at:%Y-%m-%d %H:%M:%S}",
        f"Items:             {report.total_items}",
        f"Perfect matches:   {report.matched_items}",
        f"Discrepancies:     {report.issue_items}",
    ])

    if report.discrepancies:
        lines.append("")
        lines.append("Issues Found:")
        lines.append("-" * 40)
        for item in report.discrepancies:
            lines.append(f"  {item.name}")
            lines.append(
                f"    Expected: {item.expected_qty} | Actual: {item.actual_qty} "
                f"| Status: {item.status.value.upper()}"
            )
            if item.notes:
                lines.append(f"    Note: {item.notes}")

    lines.append("=" * 50)
    return "\n".join(lines)
