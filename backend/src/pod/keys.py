"""Security key handling shared by every pod backend."""

from __future__ import annotations

import base64
import hashlib
import hmac
import logging
import secrets
import threading
from typing import Any, Callable, Dict, Optional, Protocol

from .encryption import DEFAULT_KDF_ITERATIONS, EncryptionError, EncryptionService, derive_key
from .errors import PodError, SecurityKeyError

logger = logging.getLogger(__name__)

PromptFn = Callable[[str], Optional[str]]

DEFAULT_PROMPT = "Please enter your security key"


class KeyStore(Protocol):
    def load_key_record(self) -> Optional[Dict[str, Any]]: ...

    def save_key_record(self, record: Dict[str, Any]) -> None: ...


class KeyManager:
    """Cache the derived encryption key and verify security keys against the pod.

    The first key ever set on a pod defines it: a random salt and a verifier
    are written through the key store, later keys must reproduce the verifier.
    """

    def __init__(
        self,
        store: KeyStore,
        *,
        prompt: Optional[PromptFn] = None,
        iterations: int = DEFAULT_KDF_ITERATIONS,
    ) -> None:
        self._store = store
        self._prompt = prompt
        self._iterations = iterations
        self._cipher: Optional[EncryptionService] = None
        self._lock = threading.Lock()

    @property
    def has_security_key(self) -> bool:
        return self._cipher is not None

    def set_security_key(self, security_key: str) -> None:
        """Verify *security_key* against the pod and cache the derived key."""
        if not security_key:
            raise SecurityKeyError("Security key must not be empty.")

        with self._lock:
            try:
                record = self._store.load_key_record()
                if record is None:
                    record, key = self._create_record(security_key)
                    self._store.save_key_record(record)
                    logger.info("Initialised pod encryption key record")
                else:
                    salt = base64.b64decode(record["salt"])
                    iterations = int(record.get("iterations", self._iterations))
                    key = derive_key(security_key, salt, iterations=iterations)
                    if not hmac.compare_digest(self._verifier(key), str(record.get("verifier", ""))):
                        raise SecurityKeyError("Security key does not match this pod.")
            except SecurityKeyError:
                raise
            except (KeyError, ValueError, EncryptionError, PodError) as exc:
                raise SecurityKeyError(f"Unable to verify security key: {exc}") from exc

            self._cipher = EncryptionService(key=key)

    def ensure_security_key(self, message: str = DEFAULT_PROMPT) -> bool:
        """Return True once a verified key is cached, prompting when needed."""
        if self._cipher is not None:
            return True
        if self._prompt is None:
            logger.debug("No security key cached and no prompt available")
            return False

        entered = self._prompt(message)
        if not entered:
            return False
        try:
            self.set_security_key(entered)
        except SecurityKeyError as exc:
            logger.warning("Security key rejected: %s", exc)
            return False
        return True

    def cipher(self) -> EncryptionService:
        """Return the cached cipher or raise when no key has been provided."""
        if self._cipher is None:
            raise SecurityKeyError("A security key is required for encrypted resources.")
        return self._cipher

    def forget(self) -> None:
        with self._lock:
            self._cipher = None

    def _create_record(self, security_key: str) -> tuple[Dict[str, Any], bytes]:
        salt = secrets.token_bytes(16)
        key = derive_key(security_key, salt, iterations=self._iterations)
        record = {
            "salt": base64.b64encode(salt).decode("ascii"),
            "iterations": self._iterations,
            "verifier": self._verifier(key),
        }
        return record, key

    @staticmethod
    def _verifier(key: bytes) -> str:
        return hashlib.sha256(b"healthpod-key-check:" + key).hexdigest()
