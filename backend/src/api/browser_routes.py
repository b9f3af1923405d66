"""File browser session endpoints: current directory, navigation and selection."""

from __future__ import annotations

from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from ..services.directory_service import DirectoryListing
from .dependencies import PodSession, get_keyed_session, raise_api_error

router = APIRouter(prefix="/api/browser", tags=["browser"])


# ---------------------------------------------------------------------------
# Pydantic models
# ---------------------------------------------------------------------------


class FileEntryModel(BaseModel):
    name: str
    path: str
    last_modified: str


class ListingResponse(BaseModel):
    path: str
    directories: List[str] = Field(default_factory=list)
    files: List[FileEntryModel] = Field(default_factory=list)
    directory_counts: Dict[str, int] = Field(default_factory=dict)
    file_count: int = 0
    error: Optional[str] = None


class BrowserStateResponse(BaseModel):
    current_path: str
    history: List[str]
    at_root: bool
    selected: Optional[str] = None
    listing: ListingResponse


class NavigateRequest(BaseModel):
    directory: str = Field(..., min_length=1, description="Subdirectory of the current path")


class SelectRequest(BaseModel):
    name: Optional[str] = None


def listing_response(listing: DirectoryListing) -> ListingResponse:
    return ListingResponse(
        path=listing.path,
        directories=listing.directories,
        files=[FileEntryModel(**entry.to_dict()) for entry in listing.files],
        directory_counts=listing.directory_counts,
        file_count=listing.file_count,
        error=listing.error,
    )


def _state(session: PodSession) -> BrowserStateResponse:
    browser = session.browser
    return BrowserStateResponse(
        current_path=browser.current_path,
        history=browser.navigation.history,
        at_root=browser.navigation.at_root,
        selected=browser.selected,
        listing=listing_response(browser.listing),
    )


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


@router.get("", response_model=BrowserStateResponse)
def get_browser(session: PodSession = Depends(get_keyed_session)) -> BrowserStateResponse:
    """Current browser state; the listing is loaded on first access."""
    if session.browser.listing.path != session.browser.current_path or not (
        session.browser.listing.files or session.browser.listing.directories
    ):
        session.browser.refresh()
    return _state(session)


@router.post("/navigate", response_model=BrowserStateResponse)
def navigate(request: NavigateRequest, session: PodSession = Depends(get_keyed_session)) -> BrowserStateResponse:
    try:
        session.browser.navigate_to(request.directory)
    except ValueError as exc:
        raise_api_error(status.HTTP_400_BAD_REQUEST, "invalid_directory", str(exc))
    return _state(session)


@router.post("/up", response_model=BrowserStateResponse)
def navigate_up(session: PodSession = Depends(get_keyed_session)) -> BrowserStateResponse:
    session.browser.navigate_up()
    return _state(session)


@router.post("/refresh", response_model=BrowserStateResponse)
def refresh(session: PodSession = Depends(get_keyed_session)) -> BrowserStateResponse:
    session.browser.refresh()
    return _state(session)


@router.post("/select", response_model=BrowserStateResponse)
def select(request: SelectRequest, session: PodSession = Depends(get_keyed_session)) -> BrowserStateResponse:
    names = {entry.name for entry in session.browser.listing.files}
    if request.name is not None and request.name not in names:
        raise_api_error(status.HTTP_404_NOT_FOUND, "file_not_found", f"{request.name} is not in the current directory")
    session.browser.select(request.name)
    return _state(session)
