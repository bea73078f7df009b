"""
File-based persistence for receiving reports.

Each report is written as one JSON document named after its identifier.
"""

import json
import uuid
from pathlib import Path
from typing import Optional, Union

from pydantic import ValidationError

from .config import REPORTS_DIR, logger
from .errors import StorageError
from .schemas import ReceivingReport, StoredReport


class ReportStore:
    """Stores ReceivingReports as JSON files in a directory."""

    def __init__(self, directory: Union[str, Path, None] = None):
        self.directory = Path(directory or REPORTS_DIR)

    def _path(self, report_id: str) -> Path:
        return self.directory / f"{report_id}.json"

    def save(self, report: ReceivingReport) -> str:
        """
        Persist a report and return its new identifier.

        Raises:
            StorageError: if the report cannot be written
        """
        report_id = uuid.uuid4().hex
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            with open(self._path(report_id), "w", encoding="utf-8") as f:
                json.dump(report.model_dump(mode="json"), f, indent=2)
        except OSError as e:
            logger.error(f"Failed to save report to {self.directory}: {e}")
            raise StorageError(f"Could not save report: {e}") from e

        logger.info(f"Saved receiving report {report_id}")
        return report_id

    def _read(self, path: Path) -> StoredReport:
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
            return StoredReport(id=path.stem, report=ReceivingReport.model_validate(data))
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            raise StorageError(f"Could not read report {path.stem}: {e}") from e

    def get(self, report_id: str) -> Optional[StoredReport]:
        """Load one report, or None if no report has that identifier."""
        if not report_id.isalnum():
            return None
        path = self._path(report_id)
        if not path.is_file():
            return None
        return self._read(path)

    def list_reports(self) -> list[StoredReport]:
        """Return all stored reports, newest first."""
        if not self.directory.is_dir():
            return []
        stored = [self._read(path) for path in self.directory.glob("*.json")]
        return sorted(stored, key=lambda s: s.report.created_at, reverse=True)
