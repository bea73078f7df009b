"""
Tests for the report builder.
"""

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from receiving_qc.config import ItemStatus, WorkflowPhase
from receiving_qc.errors import InvalidTransitionError
from receiving_qc.report import build_report, format_report_text
from receiving_qc.schemas import ExtractedLineItem, ExtractionResult
from receiving_qc.session import VerificationSession


CREATED = datetime(2025, 11, 15, 9, 30, tzinfo=timezone.utc)


@pytest.fixture
def counted_session() -> VerificationSession:
    """Two items matched by exact count, one marked missing."""
    s = VerificationSession()
    s.load_extraction(ExtractionResult(
        vendor_name="Acme Supply",
        invoice_number="INV-12345",
        items=[
            ExtractedLineItem(name="Widget", quantity=2, unit_price=2.5),
            ExtractedLineItem(name="Gadget", quantity=1),
            ExtractedLineItem(name="Sprocket", quantity=4),
        ],
    ))
    s.increment_count(0)
    s.increment_count(0)
    s.increment_count(1)
    s.mark_as(2, ItemStatus.MISSING)
    s.set_notes(2, "Not on the pallet")
    s.advance_to_report()
    return s


class TestBuildReport:
    """Tests for freezing a session into a report."""

    def test_scenario_two_matched_one_missing(self, counted_session):
        report = build_report(counted_session, created_at=CREATED)
        assert report.total_items == 3
        assert report.matched_items == 2
        assert report.issue_items == 1
        assert report.created_at == CREATED

    def test_carries_metadata_and_items(self, counted_session):
        report = build_report(counted_session)
        assert report.vendor_name == "Acme Supply"
        assert report.invoice_number == "INV-12345"
        assert [item.name for item in report.items] == ["Widget", "Gadget", "Sprocket"]
        assert report.items[0].unit_price == 2.5
        assert report.items[2].notes == "Not on the pallet"
        assert report.created_at.tzinfo is not None

    def test_verified_flag_dropped(self, counted_session):
        report = build_report(counted_session)
        assert "verified" not in report.items[0].model_dump()

    def test_does_not_mutate_session(self, counted_session):
        before = [item.model_dump() for item in counted_session.items]
        build_report(counted_session)
        assert counted_session.phase == WorkflowPhase.REPORT
        assert [item.model_dump() for item in counted_session.items] == before

    def test_report_is_independent_snapshot(self, counted_session):
        report = build_report(counted_session)
        counted_session.return_to_verify()
        counted_session.increment_count(2)
        counted_session.reset()
        assert report.items[2].status == ItemStatus.MISSING
        assert report.issue_items == 1

    def test_report_is_immutable(self, counted_session):
        report = build_report(counted_session)
        with pytest.raises(ValidationError):
            report.total_items = 10
        with pytest.raises(ValidationError):
            report.items[0].actual_qty = 99

    def test_rejects_scanning_session(self):
        with pytest.raises(InvalidTransitionError):
            build_report(VerificationSession())

    def test_rejects_session_without_verified_items(self):
        s = VerificationSession()
        s.load_extraction(ExtractionResult(items=[ExtractedLineItem(name="Widget", quantity=2)]))
        with pytest.raises(InvalidTransitionError):
            build_report(s)

    def test_naive_timestamp_taken_as_utc(self, counted_session):
        report = build_report(counted_session, created_at=datetime(2025, 11, 15, 9, 30))
        assert report.created_at == CREATED
        assert report.created_at.utcoffset() == timedelta(0)

    def test_discrepancies(self, counted_session):
        report = build_report(counted_session)
        assert [item.name for item in report.discrepancies] == ["Sprocket"]


class TestFormatReportText:
    """Tests for CLI report formatting."""

    def test_lists_issues(self, counted_session):
        text = format_report_text(build_report(counted_session, created_at=CREATED))
        assert "RECEIVING SUMMARY" in text
        assert "Vendor:            Acme Supply" in text
        assert "Perfect matches:   2" in text
        assert "Expected: 4 | Actual: 0 | Status: MISSING" in text
        assert "Note: Not on the pallet" in text
