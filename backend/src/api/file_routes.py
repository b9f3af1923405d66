"""
File transfer API routes

Stateless listing plus upload, download, delete and preview of encrypted
pod resources. Directory parameters default to the browser's current path.
"""

from __future__ import annotations

from typing import Dict, Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile, status
from fastapi.responses import Response
from pydantic import BaseModel

from ..services.operations import OperationInProgressError
from ..services.paths import is_text_file, remote_file_name, sanitize_file_name
from ..services.transfer_service import TransferResult, TransferService
from .browser_routes import ListingResponse, listing_response
from .dependencies import (
    PodSession,
    busy_error,
    get_keyed_session,
    get_session,
    raise_api_error,
    require_security_key,
)

router = APIRouter(prefix="/api/files", tags=["files"])


class TransferResponse(BaseModel):
    kind: str
    success: bool
    message: str
    remote_path: Optional[str] = None


class PreviewResponse(BaseModel):
    file_name: str
    remote_name: str
    is_text: bool
    preview: str


def _transfer_service(session: PodSession) -> TransferService:
    return TransferService(
        session.pod,
        tracker=session.tracker,
        on_refresh=session.browser.refresh,
    )


def _directory(session: PodSession, directory: Optional[str]) -> str:
    return directory or session.browser.current_path


def _response(result: TransferResult, error_code: str) -> TransferResponse:
    if not result.success:
        raise_api_error(status.HTTP_502_BAD_GATEWAY, error_code, result.message)
    return TransferResponse(
        kind=result.kind.value,
        success=result.success,
        message=result.message,
        remote_path=result.remote_path,
    )


@router.get("", response_model=ListingResponse)
def list_files(
    path: Optional[str] = Query(default=None, description="Logical directory, e.g. healthpod/data/blood_pressure"),
    session: PodSession = Depends(get_keyed_session),
) -> ListingResponse:
    return listing_response(session.directories.list_directory(_directory(session, path)))


@router.post("/upload", response_model=TransferResponse, status_code=status.HTTP_201_CREATED)
def upload_file(
    file: UploadFile = File(...),
    directory: Optional[str] = Form(default=None),
    session: PodSession = Depends(require_security_key),
) -> TransferResponse:
    file_name = file.filename or ""
    if not sanitize_file_name(file_name):
        raise_api_error(status.HTTP_400_BAD_REQUEST, "invalid_file_name", "A file name is required")
    data = file.file.read()
    try:
        result = _transfer_service(session).upload_bytes(file_name, data, _directory(session, directory))
    except OperationInProgressError as exc:
        busy_error(exc)
    return _response(result, "upload_failed")


@router.post("/preview", response_model=PreviewResponse)
def preview_file(file: UploadFile = File(...), session: PodSession = Depends(get_session)) -> PreviewResponse:
    file_name = file.filename or ""
    if not sanitize_file_name(file_name):
        raise_api_error(status.HTTP_400_BAD_REQUEST, "invalid_file_name", "A file name is required")
    data = file.file.read()
    return PreviewResponse(
        file_name=file_name,
        remote_name=remote_file_name(file_name),
        is_text=is_text_file(file_name),
        preview=_transfer_service(session).preview(file_name, data),
    )


@router.get("/download")
def download_file(
    name: Optional[str] = Query(default=None, description="Remote file name; defaults to the browser selection"),
    directory: Optional[str] = Query(default=None),
    session: PodSession = Depends(require_security_key),
) -> Response:
    remote_name = name or session.browser.selected
    if not remote_name:
        raise_api_error(status.HTTP_400_BAD_REQUEST, "no_file_selected", "No file selected for download")
    service = _transfer_service(session)
    try:
        result = service.download(remote_name, directory=_directory(session, directory))
    except OperationInProgressError as exc:
        busy_error(exc)
    if not result.success or result.payload is None:
        raise_api_error(status.HTTP_502_BAD_GATEWAY, "download_failed", result.message)

    suggested = service.suggested_name(remote_name)
    media_type = "text/plain; charset=utf-8" if is_text_file(suggested) else "application/octet-stream"
    return Response(
        content=result.payload,
        media_type=media_type,
        headers={"Content-Disposition": f"attachment; filename*=UTF-8''{quote(suggested)}"},
    )


@router.delete("", response_model=TransferResponse)
def delete_file(
    name: str = Query(..., min_length=1),
    directory: Optional[str] = Query(default=None),
    session: PodSession = Depends(get_keyed_session),
) -> TransferResponse:
    try:
        result = _transfer_service(session).delete(name, _directory(session, directory))
    except OperationInProgressError as exc:
        busy_error(exc)
    if result.success and session.browser.selected == name:
        session.browser.select(None)
    return _response(result, "delete_failed")


@router.get("/operations")
def operation_states(session: PodSession = Depends(get_session)) -> Dict[str, Dict[str, Optional[str]]]:
    return session.tracker.snapshot()
