"""
Tests for the file-based report store.
"""

from datetime import datetime, timedelta, timezone

import pytest

from receiving_qc.config import ItemStatus
from receiving_qc.errors import StorageError
from receiving_qc.schemas import ReceivingReport, ReportItem
from receiving_qc.storage import ReportStore


def make_report(created_at: datetime, vendor: str = "Acme Supply") -> ReceivingReport:
    return ReceivingReport(
        items=(
            ReportItem(name="Widget", expected_qty=10, actual_qty=10, unit_price=2.5, status=ItemStatus.MATCH),
            ReportItem(name="Gadget", expected_qty=3, actual_qty=0, status=ItemStatus.MISSING, notes="Not shipped"),
        ),
        total_items=2,
        matched_items=1,
        issue_items=1,
        created_at=created_at,
        vendor_name=vendor,
    )


@pytest.fixture
def store(tmp_path) -> ReportStore:
    return ReportStore(tmp_path / "reports")


class TestReportStore:
    """Tests for saving and querying reports."""

    def test_save_and_get(self, store):
        report = make_report(datetime(2025, 11, 15, tzinfo=timezone.utc))
        report_id = store.save(report)

        stored = store.get(report_id)
        assert stored.id == report_id
        assert stored.report == report

    def test_get_unknown(self, store):
        assert store.get("doesnotexist") is None

    def test_get_rejects_path_like_ids(self, store):
        assert store.get("../secrets") is None

    def test_list_empty_when_directory_missing(self, store):
        assert store.list_reports() == []

    def test_list_newest_first(self, store):
        base = datetime(2025, 11, 15, tzinfo=timezone.utc)
        store.save(make_report(base, vendor="Middle"))
        store.save(make_report(base + timedelta(days=1), vendor="Newest"))
        store.save(make_report(base - timedelta(days=1), vendor="Oldest"))

        vendors = [s.report.vendor_name for s in store.list_reports()]
        assert vendors == ["Newest", "Middle", "Oldest"]

    def test_list_mixes_naive_and_aware_timestamps(self, store):
        store.save(make_report(datetime(2025, 11, 16, 8, 0), vendor="Naive"))
        store.save(make_report(datetime(2025, 11, 15, 8, 0, tzinfo=timezone.utc), vendor="Aware"))
        store.save(make_report(datetime(2025, 11, 17, 8, 0, tzinfo=timezone(timedelta(hours=-5))), vendor="Offset"))

        vendors = [s.report.vendor_name for s in store.list_reports()]
        assert vendors == ["Offset", "Naive", "Aware"]

    def test_write_failure_raises_storage_error(self, tmp_path):
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("occupied")
        with pytest.raises(StorageError):
            ReportStore(blocker).save(make_report(datetime.now(timezone.utc)))

    def test_corrupt_file_raises_storage_error(self, store):
        store.directory.mkdir(parents=True)
        (store.directory / "abc123.json").write_text("{ not json")
        with pytest.raises(StorageError):
            store.list_reports()
