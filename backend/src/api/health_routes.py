"""Health record CSV import and export endpoints.

``/api/health/{data_type}`` serves every type registered with the import and
export services; ``/api/bp`` is kept as the blood pressure shortcut.
"""

from __future__ import annotations

from typing import List, NoReturn, Optional

from fastapi import APIRouter, Depends, File, Query, UploadFile, status
from fastapi.responses import Response
from pydantic import BaseModel, Field

from ..services.health_export_service import EXPORTERS, BloodPressureExporter, HealthDataExporter
from ..services.health_import_service import IMPORTERS, BloodPressureImporter, HealthDataImporter
from ..services.operations import OperationInProgressError
from .dependencies import PodSession, busy_error, raise_api_error, require_security_key

router = APIRouter(prefix="/api/health", tags=["health-records"])
bp_router = APIRouter(prefix="/api/bp", tags=["blood-pressure"])


class ImportResponse(BaseModel):
    success: bool
    message: str
    saved: int = 0
    skipped_rows: List[int] = Field(default_factory=list)
    failed_rows: List[int] = Field(default_factory=list)
    duplicate_timestamps: List[str] = Field(default_factory=list)
    overridden_files: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


class DataTypesResponse(BaseModel):
    importable: List[str]
    exportable: List[str]


def _unknown_type(data_type: str) -> NoReturn:
    raise_api_error(
        status.HTTP_404_NOT_FOUND,
        "unknown_data_type",
        f"Unsupported health data type: {data_type}",
        supported=sorted(IMPORTERS),
    )


def _run_import(
    importer: HealthDataImporter,
    file: UploadFile,
    overwrite: bool,
    directory: Optional[str],
    session: PodSession,
) -> ImportResponse:
    raw = file.file.read()
    try:
        content = raw.decode("utf-8-sig")
    except UnicodeDecodeError:
        raise_api_error(status.HTTP_400_BAD_REQUEST, "invalid_csv", "CSV file must be UTF-8 encoded")

    try:
        report = importer.import_csv(
            content,
            directory or importer.data_type,
            confirm_override=lambda _files: overwrite,
            confirm_unchecked=lambda: overwrite,
        )
    except OperationInProgressError as exc:
        busy_error(exc)

    if report.cancelled and report.duplicate_files:
        raise_api_error(
            status.HTTP_409_CONFLICT,
            "duplicates_found",
            report.message,
            files=report.duplicate_files,
        )
    if report.cancelled:
        raise_api_error(status.HTTP_409_CONFLICT, "duplicate_check_failed", report.message)
    if report.missing_columns:
        raise_api_error(
            status.HTTP_400_BAD_REQUEST,
            "missing_columns",
            report.message,
            columns=report.missing_columns,
        )
    if report.saved == 0:
        raise_api_error(status.HTTP_400_BAD_REQUEST, "import_failed", report.message)

    session.browser.refresh()
    payload = report.to_dict()
    return ImportResponse(**{key: payload[key] for key in ImportResponse.model_fields})


def _run_export(exporter: HealthDataExporter, directory: Optional[str]) -> Response:
    try:
        result = exporter.export_csv(directory or exporter.data_type)
    except OperationInProgressError as exc:
        busy_error(exc)
    if not result.success or result.csv_text is None:
        raise_api_error(status.HTTP_404_NOT_FOUND, "no_records", result.message)
    return Response(
        content=result.csv_text,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{exporter.data_type}.csv"'},
    )


# ---------------------------------------------------------------------------
# Generic health records
# ---------------------------------------------------------------------------


@router.get("/types", response_model=DataTypesResponse)
def list_data_types() -> DataTypesResponse:
    return DataTypesResponse(importable=sorted(IMPORTERS), exportable=sorted(EXPORTERS))


@router.post("/{data_type}/import", response_model=ImportResponse)
def import_records(
    data_type: str,
    file: UploadFile = File(...),
    overwrite: bool = Query(default=False, description="Replace existing records on the same dates"),
    directory: Optional[str] = Query(default=None),
    session: PodSession = Depends(require_security_key),
) -> ImportResponse:
    importer_cls = IMPORTERS.get(data_type)
    if importer_cls is None:
        _unknown_type(data_type)
    return _run_import(importer_cls(session.pod, tracker=session.tracker), file, overwrite, directory, session)


@router.get("/{data_type}/export")
def export_records(
    data_type: str,
    directory: Optional[str] = Query(default=None),
    session: PodSession = Depends(require_security_key),
) -> Response:
    exporter_cls = EXPORTERS.get(data_type)
    if exporter_cls is None:
        _unknown_type(data_type)
    return _run_export(exporter_cls(session.pod, tracker=session.tracker), directory)


# ---------------------------------------------------------------------------
# Blood pressure
# ---------------------------------------------------------------------------


@bp_router.post("/import", response_model=ImportResponse)
def import_csv(
    file: UploadFile = File(...),
    overwrite: bool = Query(default=False, description="Replace existing readings on the same dates"),
    directory: Optional[str] = Query(default=None),
    session: PodSession = Depends(require_security_key),
) -> ImportResponse:
    importer = BloodPressureImporter(session.pod, tracker=session.tracker)
    return _run_import(importer, file, overwrite, directory, session)


@bp_router.get("/export")
def export_csv(
    directory: Optional[str] = Query(default=None),
    session: PodSession = Depends(require_security_key),
) -> Response:
    return _run_export(BloodPressureExporter(session.pod, tracker=session.tracker), directory)
