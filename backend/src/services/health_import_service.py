"""
Health Data Import Service

Converts CSV exports of health observations into one encrypted JSON record
per row inside the pod. Each data type subclasses ``HealthDataImporter`` and
describes its columns and field parsing; ``IMPORTERS`` maps the pod folder
name of every supported type to its importer.
"""

from __future__ import annotations

import csv
import io
import json
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Type

from ..pod import CallStatus, PodClient, PodNotFoundError, is_not_found
from .operations import OperationTracker, TransferKind
from .paths import (
    BLOOD_PRESSURE_DIR,
    DIARY_DIR,
    JSON_ENC_SUFFIX,
    MEDICATION_DIR,
    VACCINATION_DIR,
    join_pod_path,
    normalise_timestamp,
    parse_timestamp,
    safe_timestamp,
)

logger = logging.getLogger(__name__)

NotifyFn = Callable[[str, str], None]
ConfirmFilesFn = Callable[[List[str]], bool]
ConfirmFn = Callable[[], bool]

# Blood pressure CSV columns
FIELD_TIMESTAMP = "timestamp"
FIELD_SYSTOLIC = "systolic"
FIELD_DIASTOLIC = "diastolic"
FIELD_HEART_RATE = "heart_rate"
FIELD_FEELING = "feeling"
FIELD_NOTES = "notes"

BP_REQUIRED_FIELDS = (FIELD_TIMESTAMP, FIELD_SYSTOLIC, FIELD_DIASTOLIC, FIELD_HEART_RATE)
BP_OPTIONAL_FIELDS = (FIELD_FEELING, FIELD_NOTES)
BP_ALL_FIELDS = BP_REQUIRED_FIELDS + BP_OPTIONAL_FIELDS

# Medication CSV columns
FIELD_NAME = "name"
FIELD_DOSAGE = "dosage"
FIELD_FREQUENCY = "frequency"
FIELD_START_DATE = "start_date"

MEDICATION_REQUIRED_FIELDS = (FIELD_TIMESTAMP, FIELD_NAME, FIELD_DOSAGE, FIELD_FREQUENCY, FIELD_START_DATE)
MEDICATION_OPTIONAL_FIELDS = (FIELD_NOTES,)
MEDICATION_ALL_FIELDS = MEDICATION_REQUIRED_FIELDS + MEDICATION_OPTIONAL_FIELDS

# Vaccination CSV columns
FIELD_DATE = "date"
FIELD_VACCINE = "vaccine"
FIELD_PROVIDER = "provider"
FIELD_PROFESSIONAL = "professional"
FIELD_COST = "cost"

VACCINATION_REQUIRED_FIELDS = (FIELD_DATE, FIELD_VACCINE, FIELD_PROVIDER)
VACCINATION_OPTIONAL_FIELDS = (FIELD_PROFESSIONAL, FIELD_COST, FIELD_NOTES)
VACCINATION_ALL_FIELDS = VACCINATION_REQUIRED_FIELDS + VACCINATION_OPTIONAL_FIELDS

# Diary (appointment) CSV columns
FIELD_TITLE = "title"
FIELD_DESCRIPTION = "description"
FIELD_IS_PAST = "isPast"

DIARY_REQUIRED_FIELDS = (FIELD_DATE, FIELD_TITLE, FIELD_DESCRIPTION)
DIARY_ALL_FIELDS = DIARY_REQUIRED_FIELDS


class HealthImportError(Exception):
    """Raised when a CSV file cannot be imported at all."""


@dataclass
class ImportReport:
    """Summary of one CSV import run."""

    success: bool = False
    message: str = ""
    saved: int = 0
    skipped_rows: List[int] = field(default_factory=list)
    failed_rows: List[int] = field(default_factory=list)
    duplicate_timestamps: List[str] = field(default_factory=list)
    duplicate_files: List[str] = field(default_factory=list)
    overridden_files: List[str] = field(default_factory=list)
    missing_columns: List[str] = field(default_factory=list)
    cancelled: bool = False
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "saved": self.saved,
            "skipped_rows": list(self.skipped_rows),
            "failed_rows": list(self.failed_rows),
            "duplicate_timestamps": list(self.duplicate_timestamps),
            "duplicate_files": list(self.duplicate_files),
            "overridden_files": list(self.overridden_files),
            "missing_columns": list(self.missing_columns),
            "cancelled": self.cancelled,
            "warnings": list(self.warnings),
        }


class HealthDataImporter(ABC):
    """Shared CSV -> pod import pipeline."""

    data_type: str = ""
    timestamp_field: str = FIELD_TIMESTAMP
    required_columns: Sequence[str] = ()
    optional_columns: Sequence[str] = ()

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
    def default_responses(self) -> Dict[str, Any]:
        """Response map with default values for a new record."""

    @abstractmethod
    def process_field(self, header: str, value: str, responses: Dict[str, Any], row_index: int) -> bool:
        """Store *value* for *header* in *responses*; False when it is invalid."""

    def complete_responses(self, timestamp: str, responses: Dict[str, Any]) -> None:
        """Fill responses derived from the whole row (nothing by default)."""

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    def import_file(
        self,
        csv_path: Path,
        directory: Optional[str] = None,
        *,
        confirm_override: Optional[ConfirmFilesFn] = None,
        confirm_unchecked: Optional[ConfirmFn] = None,
    ) -> ImportReport:
        path = Path(csv_path)
        try:
            content = path.read_text(encoding="utf-8-sig")
        except OSError as exc:
            self.tracker.begin(TransferKind.IMPORT)
            return self._finish(ImportReport(message=f"Unable to read {path.name}: {exc}"))
        return self.import_csv(
            content,
            directory,
            confirm_override=confirm_override,
            confirm_unchecked=confirm_unchecked,
        )

    def import_csv(
        self,
        content: str,
        directory: Optional[str] = None,
        *,
        confirm_override: Optional[ConfirmFilesFn] = None,
        confirm_unchecked: Optional[ConfirmFn] = None,
    ) -> ImportReport:
        """Import CSV *content* into *directory* (defaults to the data type folder).

        ``confirm_override`` receives the existing files that share a date with
        the imported rows and decides whether they are replaced;
        ``confirm_unchecked`` decides whether to continue when the duplicate
        check itself fails. Without callbacks both questions are answered no.
        """
        self.tracker.begin(TransferKind.IMPORT)
        directory = directory or self.data_type
        try:
            report = self._run(content, directory, confirm_override, confirm_unchecked)
        except HealthImportError as exc:
            report = ImportReport(message=str(exc))
        except Exception as exc:
            logger.exception("Import into %s failed", directory)
            report = ImportReport(message=f"Import failed: {exc}")
        return self._finish(report)

    # ------------------------------------------------------------------ #
    # Pipeline
    # ------------------------------------------------------------------ #

    def _run(
        self,
        content: str,
        directory: str,
        confirm_override: Optional[ConfirmFilesFn],
        confirm_unchecked: Optional[ConfirmFn],
    ) -> ImportReport:
        rows = list(csv.reader(io.StringIO(content.lstrip("\ufeff"))))
        if not rows:
            raise HealthImportError("CSV file is empty")

        headers = [header.strip().lower() for header in rows[0]]
        required = [column.lower() for column in self.required_columns]
        missing = [column for column in required if column not in headers]
        if missing:
            return ImportReport(message=self._missing_columns_message(missing), missing_columns=missing)

        report = ImportReport()
        data_rows = rows[1:]
        timestamps = self._collect_timestamps(headers, data_rows)

        if timestamps:
            try:
                duplicates = self.find_existing_files(directory, timestamps)
            except Exception as exc:
                logger.warning("Unable to check for duplicates in %s: %s", directory, exc)
                if confirm_unchecked is None or not confirm_unchecked():
                    report.cancelled = True
                    report.message = "Import cancelled: existing data could not be checked for duplicates."
                    return report
                report.warnings.append("Existing data could not be checked for duplicates.")
                duplicates = []

            if duplicates:
                report.duplicate_files = duplicates
                if confirm_override is None or not confirm_override(duplicates):
                    report.cancelled = True
                    report.message = (
                        f"Import cancelled: {len(duplicates)} existing file(s) share dates with the import."
                    )
                    return report
                report.overridden_files = self.delete_existing_files(directory, duplicates)

        seen: set[str] = set()
        for index, row in enumerate(data_rows, start=1):
            if not row or all(not cell.strip() for cell in row):
                continue
            try:
                record = self._build_record(headers, row, index, seen, report)
                if record is None:
                    report.skipped_rows.append(index)
                    continue
                timestamp = record[self.timestamp_field]
                target = join_pod_path(directory, self.file_name_for(timestamp))
                status = self.pod.write(target, json.dumps(record), encrypted=True)
                if status == CallStatus.SUCCESS:
                    report.saved += 1
                else:
                    logger.warning("Failed to save row %d (%s)", index, status.value)
                    report.failed_rows.append(index)
            except Exception as exc:
                logger.warning("Error processing row %d: %s", index, exc)
                report.failed_rows.append(index)

        if report.duplicate_timestamps:
            listed = "\n".join(report.duplicate_timestamps)
            report.warnings.append(
                "Multiple entries found for these timestamps:\n"
                f"{listed}\n\nOnly the last entry for each timestamp will be saved."
            )

        report.success = not report.failed_rows and report.saved > 0
        if report.success:
            report.message = f"Imported {report.saved} {self.label} record(s)."
        elif report.saved == 0 and not report.failed_rows:
            report.message = "No valid rows found to import."
        else:
            report.message = (
                f"Imported {report.saved} record(s); {len(report.failed_rows)} row(s) failed."
            )
        return report

    def _collect_timestamps(self, headers: List[str], rows: List[List[str]]) -> List[str]:
        column = self.timestamp_field.lower()
        if column not in headers:
            return []
        position = headers.index(column)
        timestamps: List[str] = []
        for row in rows:
            if position >= len(row) or not row[position].strip():
                continue
            try:
                timestamps.append(normalise_timestamp(row[position].strip()))
            except ValueError:
                logger.debug("Ignoring invalid timestamp %r during duplicate scan", row[position])
        return timestamps

    def _build_record(
        self,
        headers: List[str],
        row: List[str],
        index: int,
        seen: set[str],
        report: ImportReport,
    ) -> Optional[Dict[str, Any]]:
        """Parse one row; None when a required field is missing or invalid.

        Raises ValueError for a malformed timestamp so the row counts as failed.
        """
        padded = row + [""] * (len(headers) - len(row))
        required = {column.lower() for column in self.required_columns}
        responses = self.default_responses()
        timestamp = ""
        complete = True

        for header, raw in zip(headers, padded):
            value = raw.strip()
            if header == self.timestamp_field.lower():
                if not value:
                    logger.info("Row %d: missing required timestamp", index)
                    complete = False
                    continue
                try:
                    timestamp = normalise_timestamp(value)
                except ValueError as exc:
                    raise ValueError(f"Row {index}: Invalid timestamp format: {value}") from exc
                if timestamp in seen:
                    report.duplicate_timestamps.append(timestamp)
                seen.add(timestamp)
                continue
            if not self.process_field(header, value, responses, index) and header in required:
                complete = False

        if not complete or not timestamp:
            return None
        self.complete_responses(timestamp, responses)
        return {self.timestamp_field: timestamp, "responses": responses}

    # ------------------------------------------------------------------ #
    # Duplicate handling
    # ------------------------------------------------------------------ #

    def find_existing_files(self, directory: str, timestamps: Sequence[str]) -> List[str]:
        """Existing records in *directory* whose file name date matches an imported row."""
        try:
            resources = self.pod.list(self.pod.dir_url(directory))
        except PodNotFoundError:
            return []

        pattern = re.compile(rf"{re.escape(self.data_type)}_(\d{{4}}-\d{{2}}-\d{{2}})T")
        by_date: Dict[str, List[str]] = {}
        for name in resources.files:
            if not (name.startswith(f"{self.data_type}_") and name.endswith(JSON_ENC_SUFFIX)):
                continue
            match = pattern.match(name)
            if match:
                by_date.setdefault(match.group(1), []).append(name)

        duplicates: List[str] = []
        for date_part in dict.fromkeys(ts.split("T")[0] for ts in timestamps):
            for name in by_date.get(date_part, []):
                if name not in duplicates:
                    duplicates.append(name)
        return duplicates

    def delete_existing_files(self, directory: str, file_names: Sequence[str]) -> List[str]:
        """Delete *file_names*; files that are already gone still count as removed."""
        removed: List[str] = []
        for name in file_names:
            target = join_pod_path(directory, name)
            try:
                self.pod.delete(target)
            except Exception as exc:
                if not is_not_found(exc):
                    raise HealthImportError(f"Failed to remove existing file {name}: {exc}") from exc
                logger.info("Existing file %s was already removed", name)
            removed.append(name)
        return removed

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #

    @property
    def label(self) -> str:
        return self.data_type.replace("_", " ")

    def file_name_for(self, timestamp: str) -> str:
        return f"{self.data_type}_{safe_timestamp(timestamp)}{JSON_ENC_SUFFIX}"

    def _missing_columns_message(self, missing: Sequence[str]) -> str:
        required = "\n".join(f"- {column}" for column in self.required_columns)
        optional = "\n".join(f"- {column}" for column in self.optional_columns)
        return (
            f"Required columns missing: {', '.join(missing)}\n\n"
            f"The following columns are required:\n{required}\n\n"
            f"These columns are optional:\n{optional}"
        )

    def _finish(self, report: ImportReport) -> ImportReport:
        self.tracker.finish(TransferKind.IMPORT, report.success, report.message)
        self._notify(report.message, "success" if report.success else "error")
        for warning in report.warnings:
            self._notify(warning, "warning")
        return report

    def _notify(self, message: str, tone: str) -> None:
        if self._report:
            self._report(message, tone)


class BloodPressureImporter(HealthDataImporter):
    """Import blood pressure observations from CSV."""

    data_type = BLOOD_PRESSURE_DIR
    required_columns = BP_REQUIRED_FIELDS
    optional_columns = BP_OPTIONAL_FIELDS

    _NUMERIC_FIELDS = {
        FIELD_SYSTOLIC: "systolic",
        FIELD_DIASTOLIC: "diastolic",
        FIELD_HEART_RATE: "heart rate",
    }

    def default_responses(self) -> Dict[str, Any]:
        return {
            FIELD_SYSTOLIC: 0,
            FIELD_DIASTOLIC: 0,
            FIELD_HEART_RATE: 0,
            FIELD_FEELING: "",
            FIELD_NOTES: "",
        }

    def process_field(self, header: str, value: str, responses: Dict[str, Any], row_index: int) -> bool:
        if header in self._NUMERIC_FIELDS:
            try:
                responses[header] = float(value)
            except ValueError:
                logger.info(
                    "Row %d: invalid or missing %s value: %r",
                    row_index,
                    self._NUMERIC_FIELDS[header],
                    value,
                )
                return False
            return True
        if header in (FIELD_FEELING, FIELD_NOTES):
            responses[header] = value
        # Unknown columns are ignored.
        return True


class TextRecordImporter(HealthDataImporter):
    """Importer whose columns are all stored as text.

    Required columns must be non-empty; unknown columns are ignored.
    """

    def default_responses(self) -> Dict[str, Any]:
        columns = list(self.required_columns) + list(self.optional_columns)
        return {column: "" for column in columns if column != self.timestamp_field}

    def process_field(self, header: str, value: str, responses: Dict[str, Any], row_index: int) -> bool:
        if header == self.timestamp_field or header not in responses:
            return True
        responses[header] = value
        if not value and header in self.required_columns:
            logger.info("Row %d: missing required %s", row_index, header)
            return False
        return True


class MedicationImporter(TextRecordImporter):
    """Import the medication list from CSV."""

    data_type = MEDICATION_DIR
    required_columns = MEDICATION_REQUIRED_FIELDS
    optional_columns = MEDICATION_OPTIONAL_FIELDS


class VaccinationImporter(TextRecordImporter):
    """Import vaccination history from CSV."""

    data_type = VACCINATION_DIR
    timestamp_field = FIELD_DATE
    required_columns = VACCINATION_REQUIRED_FIELDS
    optional_columns = VACCINATION_OPTIONAL_FIELDS


class AppointmentImporter(TextRecordImporter):
    """Import diary appointments from CSV, flagging the ones already past."""

    data_type = DIARY_DIR
    timestamp_field = FIELD_DATE
    required_columns = DIARY_REQUIRED_FIELDS

    def default_responses(self) -> Dict[str, Any]:
        responses = super().default_responses()
        responses[FIELD_IS_PAST] = False
        return responses

    def complete_responses(self, timestamp: str, responses: Dict[str, Any]) -> None:
        moment = parse_timestamp(timestamp)
        if moment is None:
            return
        now = datetime.now(timezone.utc) if moment.tzinfo else datetime.now()
        responses[FIELD_IS_PAST] = moment < now


IMPORTERS: Dict[str, Type[HealthDataImporter]] = {
    importer.data_type: importer
    for importer in (BloodPressureImporter, MedicationImporter, VaccinationImporter, AppointmentImporter)
}
