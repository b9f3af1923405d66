"""FastAPI dependencies: settings, the shared pod, per-pod sessions and API errors."""

from __future__ import annotations

import logging
import threading
import weakref
from dataclasses import dataclass
from typing import NoReturn, Optional

from fastapi import Depends, Header, HTTPException, status

from ..config import Settings, load_settings
from ..pod import PodClient, SecurityKeyError, create_pod
from ..services.directory_service import DirectoryService, FileBrowser
from ..services.operations import OperationInProgressError, OperationTracker

logger = logging.getLogger(__name__)


@dataclass
class PodSession:
    """Objects whose state lives as long as the pod they talk to."""

    pod: PodClient
    tracker: OperationTracker
    directories: DirectoryService
    browser: FileBrowser


_settings: Optional[Settings] = None
_pod: Optional[PodClient] = None
_pod_lock = threading.Lock()
_sessions: "weakref.WeakKeyDictionary[PodClient, PodSession]" = weakref.WeakKeyDictionary()
_sessions_lock = threading.Lock()


def raise_api_error(status_code: int, code: str, message: str, **extra) -> NoReturn:
    detail = {"code": code, "message": message}
    detail.update(extra)
    raise HTTPException(status_code=status_code, detail=detail)


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def get_pod(settings: Settings = Depends(get_settings)) -> PodClient:
    """Get or create the configured pod backend (thread-safe)."""
    global _pod
    if _pod is None:
        with _pod_lock:
            if _pod is None:
                try:
                    _pod = create_pod(settings)
                except Exception as exc:
                    logger.error("Unable to initialise %s pod: %s", settings.storage, exc)
                    raise_api_error(
                        status.HTTP_500_INTERNAL_SERVER_ERROR,
                        "configuration_error",
                        f"Storage backend unavailable: {exc}",
                    )
                logger.info("Using %s pod storage", settings.storage)
    return _pod


def get_session(pod: PodClient = Depends(get_pod)) -> PodSession:
    with _sessions_lock:
        session = _sessions.get(pod)
        if session is None:
            directories = DirectoryService(pod)
            session = PodSession(
                pod=pod,
                tracker=OperationTracker(),
                directories=directories,
                browser=FileBrowser(directories),
            )
            _sessions[pod] = session
    return session


def get_keyed_session(
    x_security_key: Optional[str] = Header(default=None),
    session: PodSession = Depends(get_session),
) -> PodSession:
    """Apply the ``X-Security-Key`` header, if any, before touching encrypted data."""
    if x_security_key:
        try:
            session.pod.keys.set_security_key(x_security_key)
        except SecurityKeyError as exc:
            raise_api_error(status.HTTP_401_UNAUTHORIZED, "invalid_security_key", str(exc))
    return session


def require_security_key(session: PodSession = Depends(get_keyed_session)) -> PodSession:
    if not session.pod.keys.has_security_key:
        raise_api_error(
            status.HTTP_401_UNAUTHORIZED,
            "security_key_required",
            "Provide your security key in the X-Security-Key header.",
        )
    return session


def busy_error(exc: OperationInProgressError) -> NoReturn:
    raise_api_error(status.HTTP_409_CONFLICT, "operation_in_progress", str(exc), kind=exc.kind.value)


def reset_state() -> None:
    """Drop cached settings, pod and sessions (used by tests)."""
    global _settings, _pod
    with _pod_lock:
        _settings = None
        _pod = None
    with _sessions_lock:
        _sessions.clear()
