"""
Command-line interface for the Receiving QC Service.

Provides three main commands:
- extract: Extract invoice line items from a photo or PDF to JSON
- verify: Count a delivery against extracted items and write the report
- history: List saved receiving reports
"""

import asyncio
import json
from pathlib import Path
from typing import Optional

import typer
from pydantic import ValidationError

from .config import ItemStatus, logger
from .errors import ExtractionError, InvalidTransitionError, ItemStateError, RasterizationError, StorageError
from .extractor import GeminiExtractor, extract_pages
from .rasterize import load_source_pages
from .reconciliation import format_summary_text
from .report import build_report, format_report_text
from .schemas import CatalogEntry, ExtractionResult
from .session import VerificationSession
from .storage import ReportStore


# Create Typer app
app = typer.Typer(
    name="receiving-qc",
    help="Receiving Verification Service CLI",
    add_completion=False,
)


def load_catalog(path: Optional[Path]) -> list[CatalogEntry]:
    """Read a reference catalog JSON list, if one was given."""
    if path is None:
        return []
    with open(path, "r", encoding="utf-8") as f:
        return [CatalogEntry.model_validate(entry) for entry in json.load(f)]


def apply_counts(session: VerificationSession, counts: list[dict]) -> None:
    """
    Apply recorded counts to a session, one entry per item in order.

    Each entry may hold `count` (units counted), `status` (missing or
    damaged) and `notes`. A count that does not match the invoice is
    confirmed as final.

    Raises:
        TypeError: if counts is not a list of objects
        ValueError: if a count or status cannot be read
    """
    if not isinstance(counts, list):
        raise TypeError(f"expected a list of count entries, got {type(counts).__name__}")
    for index, entry in enumerate(counts[:len(session.items)]):
        count = int(entry.get("count", 0))
        for _ in range(count):
            session.increment_count(index)

        status = entry.get("status")
        if status:
            session.mark_as(index, ItemStatus(status))
        elif count > 0 and not session.items[index].verified:
            session.finish_counting(index)

        notes = entry.get("notes")
        if notes and session.items[index].verified:
            session.set_notes(index, notes)


def prompt_counts(session: VerificationSession) -> None:
    """Interactively count each item."""
    for index, item in enumerate(session.items):
        answer = typer.prompt(
            f"[{index + 1}/{len(session.items)}] {item.name} (expected {item.expected_qty}) "
            "count, m=missing, d=damaged, s=skip",
            default="s",
        ).strip().lower()

        if answer == "s":
            continue
        if answer in ("m", "d"):
            session.mark_as(index, ItemStatus.MISSING if answer == "m" else ItemStatus.DAMAGED)
        else:
            try:
                count = int(answer)
            except ValueError:
                typer.echo(f"  Not a number, skipping {item.name}", err=True)
                continue
            for _ in range(max(0, count)):
                session.increment_count(index)
            if count > 0 and not session.items[index].verified:
                session.finish_counting(index)

        current = session.items[index]
        typer.echo(f"  -> {current.status.value}")
        if current.verified and current.status != ItemStatus.MATCH:
            notes = typer.prompt("  Notes", default="", show_default=False)
            if notes:
                session.set_notes(index, notes)


@app.command()
def extract(
    source: Path = typer.Option(
        ...,
        "--file",
        "-f",
        help="Invoice photo or PDF",
        exists=True,
        file_okay=True,
        dir_okay=False,
        resolve_path=True,
    ),
    output: Path = typer.Option(
        "extracted_items.json",
        "--output",
        "-o",
        help="Output JSON file path",
    ),
    catalog_file: Optional[Path] = typer.Option(
        None,
        "--catalog",
        "-c",
        help="JSON list of catalog entries ({id, name, sku}) to match against",
        exists=True,
        dir_okay=False,
    ),
) -> None:
    """
    Extract invoice line items to JSON.

    PDFs are rasterized page by page and every page is sent to the
    extraction model; the results are combined in page order.
    """
    typer.echo(f"Extracting line items from: {source}")

    try:
        pages = load_source_pages(source.read_bytes())
        catalog = load_catalog(catalog_file)
        result = asyncio.run(_extract(pages, catalog))

        if not result.items:
            typer.echo("No line items were extracted.", err=True)
            raise typer.Exit(code=1)

        with open(output, "w", encoding="utf-8") as f:
            json.dump(result.model_dump(mode="json"), f, indent=2)

        typer.echo(f"\n[OK] Extracted {len(result.items)} item(s) from {len(pages)} page(s) to: {output}")
        for item in result.items[:10]:
            typer.echo(f"  - {item.name} x {item.quantity:g}")
        if len(result.items) > 10:
            typer.echo(f"  ... and {len(result.items) - 10} more")

    except (ExtractionError, RasterizationError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)


async def _extract(pages: list[bytes], catalog: list[CatalogEntry]) -> ExtractionResult:
    return await extract_pages(GeminiExtractor(), pages, catalog)


@app.command()
def verify(
    input_file: Path = typer.Option(
        ...,
        "--input",
        "-i",
        help="Extraction JSON produced by the extract command",
        exists=True,
        file_okay=True,
        dir_okay=False,
        resolve_path=True,
    ),
    counts_file: Optional[Path] = typer.Option(
        None,
        "--counts",
        help="JSON list of {count, status, notes} per item; prompts interactively if omitted",
        exists=True,
        dir_okay=False,
    ),
    report: Path = typer.Option(
        "receiving_report.json",
        "--report",
        "-r",
        help="Output receiving report JSON file path",
    ),
    save: bool = typer.Option(
        False,
        "--save",
        help="Also store the report in the report directory",
    ),
    reports_dir: Optional[Path] = typer.Option(
        None,
        "--reports-dir",
        help="Report store directory (defaults to REPORTS_DIR)",
    ),
    fail_on_issues: bool = typer.Option(
        False,
        "--fail-on-issues",
        help="Exit with non-zero status if any discrepancies were found",
    ),
) -> None:
    """
    Count a delivery against extracted invoice items and produce a report.
    """
    try:
        with open(input_file, "r", encoding="utf-8") as f:
            data = json.load(f)
        if isinstance(data, list):
            data = {"items": data}
        extraction = ExtractionResult.model_validate(data)

        session = VerificationSession()
        session.load_extraction(extraction)
        typer.echo(f"Verifying {len(session.items)} item(s) from: {input_file}")

        if counts_file is not None:
            with open(counts_file, "r", encoding="utf-8") as f:
                apply_counts(session, json.load(f))
        else:
            prompt_counts(session)

        typer.echo("\n" + format_summary_text(session.summary(), session.items))

        session.advance_to_report()
        receiving_report = build_report(session)

        with open(report, "w", encoding="utf-8") as f:
            json.dump(receiving_report.model_dump(mode="json"), f, indent=2)

        typer.echo("\n" + format_report_text(receiving_report))
        typer.echo(f"\n[OK] Receiving report saved to: {report}")

        if save:
            report_id = ReportStore(reports_dir).save(receiving_report)
            typer.echo(f"[OK] Stored report as: {report_id}")

    except json.JSONDecodeError as e:
        typer.echo(f"Error: Invalid JSON: {e}", err=True)
        raise typer.Exit(code=1)
    except ValidationError as e:
        typer.echo(f"Error: Invalid extraction data: {e}", err=True)
        raise typer.Exit(code=1)
    except (ExtractionError, InvalidTransitionError, ItemStateError, StorageError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)
    except (ValueError, TypeError, AttributeError) as e:
        typer.echo(f"Error: Invalid counts: {e}", err=True)
        raise typer.Exit(code=1)

    if fail_on_issues and receiving_report.issue_items > 0:
        raise typer.Exit(code=1)


@app.command()
def history(
    reports_dir: Optional[Path] = typer.Option(
        None,
        "--reports-dir",
        help="Report store directory (defaults to REPORTS_DIR)",
    ),
    limit: int = typer.Option(20, "--limit", "-n", help="Maximum number of reports to show"),
) -> None:
    """List saved receiving reports, newest first."""
    try:
        stored = ReportStore(reports_dir).list_reports()
    except StorageError as e:
        typer.echo(f"Error: {e}", err=True)
        logger.exception("Could not read report history")
        raise typer.Exit(code=1)

    if not stored:
        typer.echo("No saved reports.")
        return

    for entry in stored[:limit]:
        r = entry.report
        vendor = r.vendor_name or "Unknown vendor"
        typer.echo(
            f"{r.created_at:%Y-%m-%d %H:%M} | {entry.id} | {vendor} | "
            f"{r.total_items} items, {r.matched_items} matched, {r.issue_items} issues"
        )
    if len(stored) > limit:
        typer.echo(f"... and {len(stored) - limit} more")


@app.command()
def version() -> None:
    """Show version information."""
    from . import __version__
    typer.echo(f"Receiving QC Service v{__version__}")


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
