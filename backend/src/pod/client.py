"""Storage collaborator interface shared by the pod backends.

Every backend moves raw bytes; this base class layers the logical path
rules, transparent encryption and the status sentinels on top so services
only ever see ``read``/``write``/``delete``/``dir_url``/``list``.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from .encryption import DEFAULT_KDF_ITERATIONS, EncryptionEnvelope, EncryptionError
from .errors import PodAuthError, PodError, PodNotFoundError
from .keys import KeyManager, PromptFn
from .status import CallStatus

logger = logging.getLogger(__name__)

APP_ROOT = "healthpod"
DATA_ROOT = f"{APP_ROOT}/data"
KEY_RECORD_PATH = f"{APP_ROOT}/encryption/enc-keys.json"

ReadResult = Union[str, CallStatus]


@dataclass
class PodResources:
    """Immediate children of a pod container."""

    files: List[str] = field(default_factory=list)
    sub_dirs: List[str] = field(default_factory=list)
    modified: Dict[str, datetime] = field(default_factory=dict)


def resolve_path(path: str) -> str:
    """Map a logical path onto its location under the app root.

    ``profile/x`` and ``healthpod/data/profile/x`` address the same resource;
    paths already under ``healthpod/`` are kept as they are.
    """
    parts = [part for part in (path or "").replace("\\", "/").split("/") if part and part != "."]
    if any(part == ".." for part in parts):
        raise PodError(f"Path escapes the pod root: {path}")
    clean = "/".join(parts)
    if clean == APP_ROOT or clean.startswith(APP_ROOT + "/"):
        return clean
    return f"{DATA_ROOT}/{clean}" if clean else DATA_ROOT


class PodClient(ABC):
    """Base class for pod storage backends."""

    def __init__(
        self,
        *,
        prompt: Optional[PromptFn] = None,
        kdf_iterations: int = DEFAULT_KDF_ITERATIONS,
    ) -> None:
        self.keys = KeyManager(self, prompt=prompt, iterations=kdf_iterations)

    # ------------------------------------------------------------------ #
    # Backend hooks
    # ------------------------------------------------------------------ #

    @property
    @abstractmethod
    def base_url(self) -> str:
        """URL prefix that directory URLs are built from (ends with '/')."""

    @abstractmethod
    def _fetch(self, path: str) -> bytes:
        """Return the stored bytes at *path* or raise PodNotFoundError."""

    @abstractmethod
    def _store(self, path: str, data: bytes) -> None:
        """Create or replace the resource at *path*."""

    @abstractmethod
    def _remove(self, path: str) -> None:
        """Delete the resource at *path* or raise PodNotFoundError."""

    @abstractmethod
    def _list(self, path: str) -> PodResources:
        """List the container at *path* or raise PodNotFoundError."""

    @property
    def is_logged_in(self) -> bool:
        return True

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    def read(self, path: str) -> ReadResult:
        """Return the (decrypted) content at *path*, or a failure sentinel."""
        if not self.is_logged_in:
            return CallStatus.NOT_LOGGED_IN
        try:
            resolved = resolve_path(path)
            raw = self._fetch(resolved)
        except PodNotFoundError:
            logger.info("Resource not found: %s", path)
            return CallStatus.FAIL
        except PodAuthError as exc:
            logger.warning("Not authorised to read %s: %s", path, exc)
            return CallStatus.NOT_LOGGED_IN
        except PodError as exc:
            logger.error("Failed to read %s: %s", path, exc)
            return CallStatus.FAIL

        try:
            text = raw.decode("utf-8")
        except UnicodeDecodeError:
            logger.error("Resource %s is not UTF-8 text", path)
            return CallStatus.FAIL

        envelope = self._parse_envelope(text)
        if envelope is None:
            return text

        if not self.keys.ensure_security_key("Please enter your security key to read your data"):
            return CallStatus.NOT_LOGGED_IN
        try:
            return self.keys.cipher().decrypt_text(envelope)
        except EncryptionError as exc:
            logger.error("Failed to decrypt %s: %s", path, exc)
            return CallStatus.FAIL

    def write(self, path: str, content: str, *, encrypted: bool = True) -> CallStatus:
        """Store *content* at *path*, encrypting it unless told otherwise."""
        if not self.is_logged_in:
            return CallStatus.NOT_LOGGED_IN
        if encrypted:
            if not self.keys.ensure_security_key("Please enter your security key to save your data"):
                return CallStatus.NOT_LOGGED_IN
            try:
                body = self.keys.cipher().encrypt_text(content).to_json()
            except EncryptionError as exc:
                logger.error("Failed to encrypt %s: %s", path, exc)
                return CallStatus.FAIL
        else:
            body = content

        try:
            self._store(resolve_path(path), body.encode("utf-8"))
        except PodAuthError as exc:
            logger.warning("Not authorised to write %s: %s", path, exc)
            return CallStatus.NOT_LOGGED_IN
        except PodError as exc:
            logger.error("Failed to write %s: %s", path, exc)
            return CallStatus.FAIL
        return CallStatus.SUCCESS

    def delete(self, path: str) -> None:
        """Delete the resource at *path*; raises PodNotFoundError when absent."""
        self._remove(resolve_path(path))

    def dir_url(self, path: str) -> str:
        return f"{self.base_url}{resolve_path(path)}/"

    def list(self, dir_url: str) -> PodResources:
        """List a container previously resolved with :meth:`dir_url`."""
        if not dir_url.startswith(self.base_url):
            raise PodError(f"Directory URL does not belong to this pod: {dir_url}")
        return self._list(resolve_path(dir_url[len(self.base_url):]))

    # ------------------------------------------------------------------ #
    # Key record storage (KeyStore protocol)
    # ------------------------------------------------------------------ #

    def load_key_record(self) -> Optional[Dict[str, Any]]:
        try:
            raw = self._fetch(KEY_RECORD_PATH)
        except PodNotFoundError:
            return None
        return json.loads(raw.decode("utf-8"))

    def save_key_record(self, record: Dict[str, Any]) -> None:
        self._store(KEY_RECORD_PATH, json.dumps(record).encode("utf-8"))

    @staticmethod
    def _parse_envelope(text: str) -> Optional[Dict[str, Any]]:
        if not text.startswith("{"):
            return None
        try:
            data = json.loads(text)
        except json.JSONDecodeError:
            return None
        return data if EncryptionEnvelope.looks_like(data) else None
