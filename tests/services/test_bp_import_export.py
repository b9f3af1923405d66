import csv
import io
import json

import pytest

from backend.src.services.health_export_service import BloodPressureExporter, HealthExportError
from backend.src.services.health_import_service import BloodPressureImporter
from backend.src.services.operations import OperationPhase, TransferKind

HEADER = "timestamp,systolic,diastolic,heart_rate,feeling,notes\n"


def _stored(pod, name):
    return json.loads(pod.read(f"blood_pressure/{name}"))


@pytest.fixture
def importer(pod, notifications):
    return BloodPressureImporter(pod, reporter=notifications)


def test_import_writes_one_record_per_row(importer, pod):
    content = HEADER + (
        "2025-03-01 08:15:00,120,80,62,Good,after walk\n"
        "2025-03-02T09:00:30.750,118,79,60,,\n"
    )

    report = importer.import_csv(content)

    assert report.success
    assert report.saved == 2
    record = _stored(pod, "blood_pressure_2025-03-01T08-15-00.json.enc.ttl")
    assert record == {
        "timestamp": "2025-03-01T08:15:00",
        "responses": {
            "systolic": 120.0,
            "diastolic": 80.0,
            "heart_rate": 62.0,
            "feeling": "Good",
            "notes": "after walk",
        },
    }
    assert _stored(pod, "blood_pressure_2025-03-02T09-00-30.json.enc.ttl")["responses"]["notes"] == ""
    assert importer.tracker.state(TransferKind.IMPORT).phase is OperationPhase.SUCCEEDED


def test_headers_are_case_and_space_insensitive(importer):
    content = " Timestamp , SYSTOLIC,Diastolic,Heart_Rate\n2025-03-01 08:15:00,120,80,62\n"
    report = importer.import_csv(content)
    assert report.success and report.saved == 1


def test_missing_required_columns(importer, notifications):
    report = importer.import_csv("timestamp,systolic\n2025-03-01 08:15:00,120\n")

    assert not report.success
    assert report.missing_columns == ["diastolic", "heart_rate"]
    assert "Required columns missing: diastolic, heart_rate" in report.message
    assert "- feeling" in report.message
    assert notifications.messages[-1][1] == "error"


def test_empty_csv_fails(importer):
    report = importer.import_csv("")
    assert not report.success
    assert report.message == "CSV file is empty"


def test_incomplete_rows_are_skipped_and_bad_timestamps_fail(importer):
    content = HEADER + (
        "2025-03-01 08:15:00,120,80,62,,\n"
        "2025-03-02 08:15:00,,80,62,,\n"
        "last tuesday,120,80,62,,\n"
        ",120,80,62,,\n"
        "2025-03-03 08:15:00,abc,80,62,,\n"
    )

    report = importer.import_csv(content)

    assert report.saved == 1
    assert report.skipped_rows == [2, 4, 5]
    assert report.failed_rows == [3]
    assert not report.success
    assert "1 row(s) failed" in report.message


def test_only_invalid_rows(importer):
    report = importer.import_csv(HEADER + "2025-03-01 08:15:00,,,,,\n")
    assert report.saved == 0
    assert report.message == "No valid rows found to import."


def test_duplicate_timestamps_in_file_warn(importer, pod, notifications):
    content = HEADER + (
        "2025-03-01 08:15:00,120,80,62,,first\n"
        "2025-03-01 08:15:00,130,85,70,,second\n"
    )

    report = importer.import_csv(content)

    assert report.duplicate_timestamps == ["2025-03-01T08:15:00"]
    assert "Only the last entry" in report.warnings[0]
    assert ("warning" in [tone for _message, tone in notifications.messages])
    assert _stored(pod, "blood_pressure_2025-03-01T08-15-00.json.enc.ttl")["responses"]["notes"] == "second"


def test_existing_dates_cancel_without_confirmation(importer, pod):
    pod.write("blood_pressure/blood_pressure_2025-03-01T07-00-00.json.enc.ttl", "{}")
    pod.write("blood_pressure/blood_pressure_2025-02-27T07-00-00.json.enc.ttl", "{}")

    seen = []
    report = importer.import_csv(
        HEADER + "2025-03-01 08:15:00,120,80,62,,\n",
        confirm_override=lambda files: seen.append(files) or False,
    )

    assert report.cancelled
    assert report.duplicate_files == ["blood_pressure_2025-03-01T07-00-00.json.enc.ttl"]
    assert seen == [report.duplicate_files]
    assert report.saved == 0
    assert pod.read("blood_pressure/blood_pressure_2025-03-01T07-00-00.json.enc.ttl") == "{}"


def test_existing_dates_are_replaced_when_confirmed(importer, pod):
    pod.write("blood_pressure/blood_pressure_2025-03-01T07-00-00.json.enc.ttl", "{}")

    report = importer.import_csv(
        HEADER + "2025-03-01 08:15:00,120,80,62,,\n",
        confirm_override=lambda files: True,
    )

    assert report.success
    assert report.overridden_files == ["blood_pressure_2025-03-01T07-00-00.json.enc.ttl"]
    resources = pod.list(pod.dir_url("blood_pressure"))
    assert resources.files == ["blood_pressure_2025-03-01T08-15-00.json.enc.ttl"]


def test_failed_duplicate_check_asks_to_continue(importer, pod, storage_error):
    pod.write("blood_pressure/blood_pressure_2025-01-01T00-00-00.json.enc.ttl", "{}")
    pod.list_errors["healthpod/data/blood_pressure"] = storage_error
    content = HEADER + "2025-03-01 08:15:00,120,80,62,,\n"

    cancelled = importer.import_csv(content)
    assert cancelled.cancelled
    assert cancelled.duplicate_files == []

    importer.tracker.reset()
    report = importer.import_csv(content, confirm_unchecked=lambda: True)
    assert report.success
    assert "could not be checked" in report.warnings[0]


def test_import_file_reads_utf8_bom(importer, tmp_path):
    source = tmp_path / "bp.csv"
    source.write_text(HEADER + "2025-03-01 08:15:00,120,80,62,,\n", encoding="utf-8-sig")

    report = importer.import_file(source)

    assert report.success


def test_import_file_missing(importer, tmp_path):
    report = importer.import_file(tmp_path / "nope.csv")
    assert not report.success
    assert "Unable to read nope.csv" in report.message


# --------------------------------------------------------------------------- #
# Export
# --------------------------------------------------------------------------- #


def _rows(text):
    return list(csv.DictReader(io.StringIO(text)))


def test_export_sorts_records_and_converts_to_utc(pod, importer):
    importer.import_csv(
        HEADER
        + "2025-03-02T10:00:00+02:00,130,85,70,Tired,\n"
        + "2025-03-01 08:15:00,120,80,62,Good,walk\n"
    )
    pod.write("blood_pressure/notes.txt", "ignored", encrypted=False)

    result = BloodPressureExporter(pod).export_csv()

    assert result.success
    assert result.records == 2
    assert result.csv_text.splitlines()[0] == "timestamp,systolic,diastolic,heart_rate,feeling,notes"
    rows = _rows(result.csv_text)
    assert [row["timestamp"] for row in rows] == ["2025-03-01T08:15:00Z", "2025-03-02T08:00:00Z"]
    assert rows[0]["feeling"] == "Good"
    assert float(rows[1]["systolic"]) == 130


def test_export_skips_unreadable_and_malformed_records(pod, importer, storage_error):
    importer.import_csv(HEADER + "2025-03-01 08:15:00,120,80,62,,\n")
    pod.write("blood_pressure/blood_pressure_broken.json.enc.ttl", "not json")
    pod.write("blood_pressure/blood_pressure_other.json.enc.ttl", "{}")
    pod.fetch_errors["healthpod/data/blood_pressure/blood_pressure_other.json.enc.ttl"] = storage_error

    result = BloodPressureExporter(pod).export_csv()

    assert result.records == 1


def test_export_without_files_fails(pod, notifications):
    pod.write("blood_pressure/readme.md", "x", encrypted=False)
    exporter = BloodPressureExporter(pod, reporter=notifications)

    result = exporter.export_csv()

    assert not result.success
    assert result.message == "No Blood pressure data files found in directory"
    assert exporter.tracker.state(TransferKind.EXPORT).phase is OperationPhase.FAILED
    with pytest.raises(HealthExportError):
        exporter.collect_records()


def test_export_unexpected_read_error_fails(pod, importer, monkeypatch):
    importer.import_csv(HEADER + "2025-03-01 08:15:00,120,80,62,,\n")

    def _broken_read(path):
        raise RuntimeError("connection reset")

    monkeypatch.setattr(pod, "read", _broken_read)
    exporter = BloodPressureExporter(pod)

    result = exporter.export_csv()

    assert not result.success
    assert "connection reset" in result.message
    assert exporter.tracker.state(TransferKind.EXPORT).phase is OperationPhase.FAILED
    assert not exporter.export_csv().success


def test_export_missing_directory_fails(pod):
    result = BloodPressureExporter(pod).export_csv()
    assert not result.success
    assert "Unable to list" in result.message


def test_export_to_file(pod, importer, tmp_path):
    importer.import_csv(HEADER + "2025-03-01 08:15:00,120,80,62,,\n")
    target = tmp_path / "exports" / "bp.csv"

    result = BloodPressureExporter(pod).export_to_file(target)

    assert result.success
    assert result.file_path == target
    assert target.read_text(encoding="utf-8") == result.csv_text
