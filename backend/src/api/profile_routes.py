"""Profile endpoints - validate, import, export and read the stored profile."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, Query, status
from fastapi.responses import Response
from pydantic import BaseModel, Field

from ..services.operations import OperationInProgressError
from ..services.profile_service import ProfileResult, ProfileService, build_preview, validate_profile
from .dependencies import PodSession, busy_error, raise_api_error, require_security_key

router = APIRouter(prefix="/api/profile", tags=["profile"])

_ERROR_STATUS = {
    "invalid": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "duplicates": status.HTTP_409_CONFLICT,
    "not_found": status.HTTP_404_NOT_FOUND,
    "key_required": status.HTTP_401_UNAUTHORIZED,
    "cancelled": status.HTTP_409_CONFLICT,
}

# ---------------------------------------------------------------------------
# Pydantic models
# ---------------------------------------------------------------------------


class PreviewItem(BaseModel):
    label: str
    value: str


class ValidationResponse(BaseModel):
    valid: bool
    shape: Optional[str] = None
    message: str
    missing: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
    timestamp: str
    preview: List[PreviewItem] = Field(default_factory=list)


class ProfileImportResponse(BaseModel):
    success: bool
    message: str
    file_name: Optional[str] = None
    replaced_files: List[str] = Field(default_factory=list)
    preview: List[PreviewItem] = Field(default_factory=list)


def _preview(items) -> List[PreviewItem]:
    return [PreviewItem(label=label, value=value) for label, value in items]


def _raise_for(result: ProfileResult) -> None:
    if result.success:
        return
    code = result.code or "storage_error"
    extra: Dict[str, Any] = {}
    if result.duplicate_files and code == "duplicates":
        extra["files"] = result.duplicate_files
    if result.missing:
        extra["missing"] = result.missing
    if result.errors:
        extra["errors"] = result.errors
    raise_api_error(_ERROR_STATUS.get(code, status.HTTP_502_BAD_GATEWAY), code, result.message, **extra)


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


@router.post("/validate", response_model=ValidationResponse)
def validate(document: Any = Body(...)) -> ValidationResponse:
    validation = validate_profile(document)
    decoded = validation.decoded
    return ValidationResponse(
        valid=validation.valid,
        shape=decoded.shape.value if decoded.shape else None,
        message=validation.message,
        missing=decoded.missing,
        errors=validation.errors,
        timestamp=validation.timestamp,
        preview=_preview(build_preview(decoded.fields)) if decoded.valid else [],
    )


@router.post("/import", response_model=ProfileImportResponse, status_code=status.HTTP_201_CREATED)
def import_profile(
    document: Any = Body(...),
    overwrite: bool = Query(default=False, description="Replace the existing profile"),
    session: PodSession = Depends(require_security_key),
) -> ProfileImportResponse:
    service = ProfileService(session.pod, tracker=session.tracker)
    try:
        result = service.import_profile(document, confirm_override=lambda _files: overwrite)
    except OperationInProgressError as exc:
        busy_error(exc)
    _raise_for(result)
    session.browser.refresh()
    return ProfileImportResponse(
        success=True,
        message=result.message,
        file_name=result.file_name,
        replaced_files=result.duplicate_files,
        preview=_preview(result.preview),
    )


@router.get("/export")
def export_profile(session: PodSession = Depends(require_security_key)) -> Response:
    service = ProfileService(session.pod, tracker=session.tracker)
    try:
        result = service.export_profile()
    except OperationInProgressError as exc:
        busy_error(exc)
    _raise_for(result)
    file_name = (result.file_name or "profile.json.enc.ttl").removesuffix(".enc.ttl")
    return Response(
        content=result.content or "",
        media_type="application/json",
        headers={"Content-Disposition": f'attachment; filename="{file_name}"'},
    )


@router.get("")
def get_profile(session: PodSession = Depends(require_security_key)) -> Dict[str, Any]:
    """Stored profile fields, or empty defaults when none has been saved."""
    return ProfileService(session.pod, tracker=session.tracker).fetch_profile()
