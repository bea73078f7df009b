"""
Reconciliation aggregates for verification items.

Summaries are recomputed from the full item list on every call.
"""

from typing import Iterable, Sequence

from .config import ISSUE_STATUSES, ItemStatus
from .schemas import ReceivingSummary, VerificationItem


def summarize(items: Iterable[VerificationItem]) -> ReceivingSummary:
    """
    Compute total, verified, matched and issue counts for a list of items.

    Pending items count toward neither `matched` nor `issues`.
    """
    items = list(items)
    return ReceivingSummary(
        total=len(items),
        verified=sum(1 for item in items if item.verified),
        matched=sum(1 for item in items if item.status == ItemStatus.MATCH),
        issues=sum(1 for item in items if item.status in ISSUE_STATUSES),
    )


def issue_items(items: Iterable[VerificationItem]) -> list[VerificationItem]:
    """Return the items with a discrepancy, in their original order."""
    return [item for item in items if item.status in ISSUE_STATUSES]


def format_summary_text(summary: ReceivingSummary, items: Sequence[VerificationItem] = ()) -> str:
    """
    Format a ReceivingSummary as human-readable text for CLI output.

    Args:
        summary: ReceivingSummary to format
        items: Optional items; discrepancies among them are listed

    Returns:
        Formatted string for display
    """
    lines = [
        "=" * 50,
        "RECEIVING PROGRESS",
        "=" * 50,
        f"Items on invoice:  {summary.total}",
        f"Verified:          {summary.verified}/{summary.total}",
        f"Perfect matches:   {summary.matched}",
        f"Discrepancies:     {summary.issues}",
    ]

    issues = issue_items(items)
    if issues:
        lines.append("")
        lines.append("Issues:")
        lines.append("-" * 40)
        for item in issues:
            lines.append(
                f"  {item.name}: expected {item.expected_qty}, "
                f"counted {item.actual_qty} ({item.status.value})"
            )

    lines.append("=" * 50)
    return "\n".join(lines)
