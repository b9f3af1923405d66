"""
Transfer controller for the file browser.

Handles upload, download and delete of individual pod resources. Each
operation moves through an explicit ``OperationState`` and reports its
outcome through the optional reporter instead of raising to the caller.
"""

from __future__ import annotations

import base64
import binascii
import logging
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Any, Callable, Optional

from ..pod import CallStatus, DATA_ROOT, PodClient, is_failure, is_not_found
from .operations import OperationState, OperationTracker, TransferKind
from .paths import (
    ACL_SUFFIX,
    clean_file_name,
    is_text_file,
    join_pod_path,
    remote_file_name,
    sanitize_file_name,
)

logger = logging.getLogger(__name__)

NotifyFn = Callable[[str, str], None]
RefreshFn = Callable[[], Any]

PREVIEW_LIMIT = 500

DOWNLOAD_FAILED = "Download failed - please check your connection and permissions"
UPLOAD_FAILED = "Upload failed - please check your connection and permissions"
KEY_REQUIRED = "A security key is required to access encrypted files."


class TransferError(Exception):
    """Raised when a transfer cannot be completed."""


@dataclass(slots=True)
class TransferResult:
    """Outcome of a single upload, download or delete."""

    kind: TransferKind
    success: bool
    message: str
    remote_path: Optional[str] = None
    local_path: Optional[Path] = None
    payload: Optional[bytes] = None


def encode_content(file_name: str, data: bytes) -> str:
    """Text files are stored as-is, everything else as base64."""
    if is_text_file(file_name):
        return data.decode("utf-8")
    return base64.b64encode(data).decode("ascii")


def decode_content(file_name: str, content: str) -> bytes:
    """Inverse of :func:`encode_content` for a downloaded payload."""
    if is_text_file(file_name):
        return content.encode("utf-8")
    try:
        return base64.b64decode(content, validate=True)
    except (binascii.Error, ValueError):
        # Written by another client as plain text.
        return content.encode("utf-8")


def build_preview(file_name: str, data: bytes) -> str:
    """Short human readable preview shown before an upload is confirmed."""
    if is_text_file(file_name):
        text = data.decode("utf-8", errors="replace")
        return f"{text[:PREVIEW_LIMIT]}..." if len(text) > PREVIEW_LIMIT else text
    size_kb = len(data) / 1024
    extension = PurePosixPath(file_name).suffix
    return f"Binary file\nSize: {size_kb:.2f} KB\nType: {extension}"


class TransferService:
    """Upload, download and delete pod resources for the file browser."""

    def __init__(
        self,
        pod: PodClient,
        *,
        tracker: Optional[OperationTracker] = None,
        reporter: Optional[NotifyFn] = None,
        on_refresh: Optional[RefreshFn] = None,
    ) -> None:
        self.pod = pod
        self.tracker = tracker or OperationTracker()
        self._report = reporter
        self._on_refresh = on_refresh

    # ------------------------------------------------------------------ #
    # Upload
    # ------------------------------------------------------------------ #

    def upload_bytes(self, file_name: str, data: bytes, directory: str = DATA_ROOT) -> TransferResult:
        """Encrypt and store an in-memory file in *directory*."""
        self.tracker.begin(TransferKind.UPLOAD)
        remote_path: Optional[str] = None
        try:
            if not sanitize_file_name(file_name):
                raise TransferError(f"Invalid file name: {file_name!r}")
            remote_path = join_pod_path(directory, remote_file_name(file_name))
            content = encode_content(file_name, data)
            status = self.pod.write(remote_path, content, encrypted=True)
            if is_failure(status):
                raise TransferError(self._failure_text(status, UPLOAD_FAILED))
        except Exception as exc:
            logger.error("Upload of %s failed: %s", file_name, exc)
            return self._fail(TransferKind.UPLOAD, f"Upload error: {exc}", remote_path=remote_path)

        logger.info("Uploaded %s to %s", file_name, remote_path)
        self._refresh()
        return self._succeed(TransferKind.UPLOAD, "File uploaded successfully", remote_path=remote_path)

    def upload_file(self, local_path: Path, directory: str = DATA_ROOT) -> TransferResult:
        """Native-context upload: read *local_path* and store it."""
        path = Path(local_path)
        try:
            data = path.read_bytes()
        except OSError as exc:
            self.tracker.begin(TransferKind.UPLOAD)
            logger.error("Unable to read %s: %s", path, exc)
            return self._fail(TransferKind.UPLOAD, f"Upload error: unable to read {path.name}: {exc}")
        return self.upload_bytes(path.name, data, directory)

    def preview(self, file_name: str, data: bytes) -> str:
        return build_preview(file_name, data)

    def preview_file(self, local_path: Path) -> str:
        path = Path(local_path)
        try:
            return build_preview(path.name, path.read_bytes())
        except OSError as exc:
            raise TransferError(f"Unable to read {path}: {exc}") from exc

    # ------------------------------------------------------------------ #
    # Download
    # ------------------------------------------------------------------ #

    def fetch(self, remote_name: str, directory: str = DATA_ROOT) -> bytes:
        """Read and decrypt a remote file, returning the original bytes.

        Raises TransferError when the key is missing or the read returns a
        failure sentinel.
        """
        if not remote_name:
            raise TransferError("No file selected for download.")
        if not self.pod.keys.ensure_security_key("Please enter your security key to download the file"):
            raise TransferError(KEY_REQUIRED)
        remote_path = join_pod_path(directory, remote_name)
        content = self.pod.read(remote_path)
        if is_failure(content):
            raise TransferError(self._failure_text(content, DOWNLOAD_FAILED))
        return decode_content(clean_file_name(remote_name), content)

    def download(
        self,
        remote_name: str,
        save_path: Optional[Path] = None,
        directory: str = DATA_ROOT,
    ) -> TransferResult:
        """Fetch *remote_name* and write the decrypted payload to *save_path*.

        When *save_path* is a directory the suggested name (the remote name
        without its encrypted suffix) is used inside it. Without a save path
        the payload is only returned on the result.
        """
        self.tracker.begin(TransferKind.DOWNLOAD)
        target: Optional[Path] = None
        if save_path is not None:
            target = Path(save_path)
            if target.is_dir():
                target = target / self.suggested_name(remote_name)
        try:
            payload = self.fetch(remote_name, directory)
            if target is not None:
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_bytes(payload)
        except Exception as exc:
            logger.error("Download of %s failed: %s", remote_name, exc)
            return self._fail(TransferKind.DOWNLOAD, f"Download error: {exc}", local_path=target)

        return self._succeed(
            TransferKind.DOWNLOAD,
            "File downloaded successfully",
            remote_path=join_pod_path(directory, remote_name),
            local_path=target,
            payload=payload,
        )

    @staticmethod
    def suggested_name(remote_name: str) -> str:
        return clean_file_name(PurePosixPath(remote_name).name)

    # ------------------------------------------------------------------ #
    # Delete
    # ------------------------------------------------------------------ #

    def delete(self, remote_name: str, directory: str = DATA_ROOT) -> TransferResult:
        """Delete a resource and then, best-effort, its ``.acl`` sidecar.

        A resource that is already gone counts as deleted.
        """
        self.tracker.begin(TransferKind.DELETE)
        remote_path = join_pod_path(directory, remote_name)
        try:
            self.pod.delete(remote_path)
        except Exception as exc:
            if not is_not_found(exc):
                logger.error("Delete of %s failed: %s", remote_path, exc)
                return self._fail(TransferKind.DELETE, f"Delete failed: {exc}", remote_path=remote_path)
            logger.info("%s was already absent", remote_path)

        acl_path = remote_path + ACL_SUFFIX
        try:
            self.pod.delete(acl_path)
        except Exception as exc:
            logger.debug("Skipping ACL cleanup for %s: %s", acl_path, exc)

        self._refresh()
        return self._succeed(TransferKind.DELETE, "File deleted successfully", remote_path=remote_path)

    # ------------------------------------------------------------------ #
    # State
    # ------------------------------------------------------------------ #

    def state(self, kind: TransferKind) -> OperationState:
        return self.tracker.state(kind)

    def reset(self, kind: Optional[TransferKind] = None) -> None:
        self.tracker.reset(kind)

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #

    @staticmethod
    def _failure_text(status: Any, default: str) -> str:
        if status == CallStatus.NOT_LOGGED_IN:
            return "Not logged in or security key missing - please log in and try again"
        return default

    def _refresh(self) -> None:
        if self._on_refresh is None:
            return
        try:
            self._on_refresh()
        except Exception as exc:  # pragma: no cover - refresh errors are reported by the browser
            logger.warning("Refresh after transfer failed: %s", exc)

    def _succeed(self, kind: TransferKind, message: str, **details: Any) -> TransferResult:
        self.tracker.finish(kind, True, message)
        self._notify(message, "success")
        return TransferResult(kind=kind, success=True, message=message, **details)

    def _fail(self, kind: TransferKind, message: str, **details: Any) -> TransferResult:
        self.tracker.finish(kind, False, message)
        self._notify(message, "error")
        return TransferResult(kind=kind, success=False, message=message, **details)

    def _notify(self, message: str, tone: str) -> None:
        if self._report:
            self._report(message, tone)
