"""
Health Data Export Service

Reads every encrypted observation record in a pod directory and flattens
them into a single CSV table sorted by timestamp.
"""

from __future__ import annotations

import csv
import io
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Type

from ..pod import PodClient, is_failure
from .health_import_service import (
    BP_ALL_FIELDS,
    DIARY_ALL_FIELDS,
    FIELD_DATE,
    FIELD_TIMESTAMP,
    MEDICATION_ALL_FIELDS,
)
from .operations import OperationTracker, TransferKind
from .paths import BLOOD_PRESSURE_DIR, DIARY_DIR, ENC_SUFFIX, MEDICATION_DIR, join_pod_path, normalise_timestamp

logger = logging.getLogger(__name__)

NotifyFn = Callable[[str, str], None]


class HealthExportError(Exception):
    """Raised when no CSV can be produced for a directory."""


@dataclass
class ExportResult:
    """Result of an export operation."""

    success: bool
    message: str
    records: int = 0
    csv_text: Optional[str] = None
    file_path: Optional[Path] = None


class HealthDataExporter(ABC):
    """Shared pod -> CSV export pipeline."""

    data_type: str = ""
    timestamp_field: str = FIELD_TIMESTAMP
    csv_headers: Sequence[str] = ()

    def __init__(
        self,
        pod: PodClient,
        *,
        tracker: Optional[OperationTracker] = None,
        reporter: Optional[NotifyFn] = None,
    ) -> None:
        self.pod = pod
        self.tracker = tracker or OperationTracker()
        self._report = reporter

    @abstractmethod
    def process_record(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Flatten one stored record into a row keyed by the CSV headers."""

    @property
    def label(self) -> str:
        return self.data_type.replace("_", " ").capitalize()

    def collect_records(self, directory: Optional[str] = None) -> List[Dict[str, Any]]:
        """Read and flatten every record in *directory*, oldest first."""
        directory = directory or self.data_type
        try:
            resources = self.pod.list(self.pod.dir_url(directory))
        except Exception as exc:
            raise HealthExportError(f"Unable to list {directory}: {exc}") from exc

        files = [name for name in resources.files if name.endswith(ENC_SUFFIX)]
        if not files:
            raise HealthExportError(f"No {self.label} data files found in directory")

        records: List[Dict[str, Any]] = []
        for name in files:
            content = self.pod.read(join_pod_path(directory, name))
            if is_failure(content):
                logger.info("Skipping %s (read returned %s)", name, content.value)
                continue
            try:
                records.append(self.process_record(json.loads(content)))
            except (ValueError, TypeError, KeyError, AttributeError) as exc:
                logger.warning("Error processing file %s: %s", name, exc)

        if not records:
            raise HealthExportError(f"No valid {self.label} records found")

        records.sort(key=lambda record: str(record.get(self.timestamp_field) or ""))
        return records

    def render_csv(self, records: Sequence[Dict[str, Any]]) -> str:
        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        writer.writerow(self.csv_headers)
        for record in records:
            writer.writerow(["" if record.get(h) is None else record.get(h) for h in self.csv_headers])
        return buffer.getvalue()

    def export_csv(self, directory: Optional[str] = None) -> ExportResult:
        """Build the CSV text for *directory* without touching the local disk."""
        self.tracker.begin(TransferKind.EXPORT)
        try:
            records = self.collect_records(directory)
            text = self.render_csv(records)
        except HealthExportError as exc:
            logger.error("Export failed: %s", exc)
            return self._finish(ExportResult(success=False, message=str(exc)))
        except Exception as exc:
            logger.exception("Unexpected error exporting %s data", self.data_type)
            return self._finish(ExportResult(success=False, message=f"Export failed: {exc}"))
        message = f"Exported {len(records)} {self.label.lower()} record(s)"
        return self._finish(ExportResult(success=True, message=message, records=len(records), csv_text=text))

    def export_to_file(self, save_path: Path, directory: Optional[str] = None) -> ExportResult:
        result = self.export_csv(directory)
        if not result.success or result.csv_text is None:
            return result
        target = Path(save_path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(result.csv_text, encoding="utf-8")
        except OSError as exc:
            logger.error("Unable to write %s: %s", target, exc)
            failed = ExportResult(success=False, message=f"Unable to write {target.name}: {exc}")
            self.tracker.finish(TransferKind.EXPORT, False, failed.message)
            self._notify(failed.message, "error")
            return failed
        result.file_path = target
        return result

    def _finish(self, result: ExportResult) -> ExportResult:
        self.tracker.finish(TransferKind.EXPORT, result.success, result.message)
        self._notify(result.message, "success" if result.success else "error")
        return result

    def _notify(self, message: str, tone: str) -> None:
        if self._report:
            self._report(message, tone)


class ResponsesExporter(HealthDataExporter):
    """Exporter for records that keep their values under ``responses``.

    The timestamp column is written as UTC ISO-8601.
    """

    def process_record(self, data: Dict[str, Any]) -> Dict[str, Any]:
        responses = data.get("responses") or {}
        row = {header: responses.get(header) for header in self.csv_headers}
        row[self.timestamp_field] = normalise_timestamp(str(data[self.timestamp_field]), to_iso=True)
        return row


class BloodPressureExporter(ResponsesExporter):
    """Export blood pressure observations to CSV."""

    data_type = BLOOD_PRESSURE_DIR
    csv_headers = BP_ALL_FIELDS

    @property
    def label(self) -> str:
        return "Blood pressure"


class MedicationExporter(ResponsesExporter):
    """Export the medication list to CSV."""

    data_type = MEDICATION_DIR
    csv_headers = MEDICATION_ALL_FIELDS


class AppointmentExporter(HealthDataExporter):
    """Export diary appointments to CSV.

    Older diary records keep their fields at the top level rather than under
    ``responses``, so both places are read. The date keeps its own offset and
    is left blank when it cannot be parsed.
    """

    data_type = DIARY_DIR
    timestamp_field = FIELD_DATE
    csv_headers = DIARY_ALL_FIELDS

    def process_record(self, data: Dict[str, Any]) -> Dict[str, Any]:
        responses = data.get("responses") or {}
        row = {header: responses.get(header, data.get(header, "")) for header in self.csv_headers}
        try:
            row[FIELD_DATE] = normalise_timestamp(str(data[FIELD_DATE]))
        except (KeyError, ValueError):
            row[FIELD_DATE] = ""
        return row


EXPORTERS: Dict[str, Type[HealthDataExporter]] = {
    exporter.data_type: exporter
    for exporter in (BloodPressureExporter, MedicationExporter, AppointmentExporter)
}
