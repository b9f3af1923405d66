"""AES-GCM encryption for pod resources stored at rest."""

from __future__ import annotations

import base64
import json
import secrets
from dataclasses import dataclass
from typing import Any, Dict, Optional

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

DEFAULT_KDF_ITERATIONS = 200_000


class EncryptionError(Exception):
    """Raised when encryption or decryption fails."""


@dataclass(slots=True)
class EncryptionEnvelope:
    """Serialized payload for storage."""

    version: str
    iv: str
    ciphertext: str

    def to_dict(self) -> Dict[str, str]:
        return {"v": self.version, "iv": self.iv, "ct": self.ciphertext}

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EncryptionEnvelope":
        return cls(
            version=str(data.get("v")),
            iv=str(data.get("iv")),
            ciphertext=str(data.get("ct")),
        )

    @staticmethod
    def looks_like(data: Any) -> bool:
        """Return True when *data* has the shape of a serialized envelope."""
        return isinstance(data, dict) and {"v", "iv", "ct"} <= set(data)


def derive_key(
    security_key: str,
    salt: bytes,
    *,
    iterations: int = DEFAULT_KDF_ITERATIONS,
) -> bytes:
    """Stretch a user supplied security key into a 256-bit AES key."""
    if not security_key:
        raise EncryptionError("Security key must not be empty.")
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=salt,
        iterations=iterations,
    )
    return kdf.derive(security_key.encode("utf-8"))


class EncryptionService:
    """
    AES-GCM based encryption for pod resources.

    - Uses a 32-byte key derived from the user's security key
    - Returns compact JSON-friendly envelopes
    """

    DEFAULT_VERSION = "1"

    def __init__(self, *, key: Optional[bytes] = None) -> None:
        if key is None:
            raise EncryptionError("An encryption key is required.")
        if len(key) != 32:
            raise EncryptionError("Encryption key must be 32 bytes (256-bit).")
        self._key = key

    def encrypt_bytes(
        self, data: bytes, *, version: str = DEFAULT_VERSION
    ) -> EncryptionEnvelope:
        """Encrypt raw bytes and return an envelope."""
        if not isinstance(data, (bytes, bytearray)):
            raise EncryptionError("Data must be bytes.")

        iv = secrets.token_bytes(12)  # 96-bit nonce recommended for GCM
        cipher = AESGCM(self._key)
        ciphertext = cipher.encrypt(iv, bytes(data), None)

        return EncryptionEnvelope(
            version=version,
            iv=self._b64_encode(iv),
            ciphertext=self._b64_encode(ciphertext),
        )

    def decrypt_bytes(self, envelope: Dict[str, Any]) -> bytes:
        """Decrypt an envelope produced by encrypt_bytes."""
        try:
            parsed = EncryptionEnvelope.from_dict(envelope)
        except Exception as exc:
            raise EncryptionError(f"Invalid envelope: {exc}") from exc

        if parsed.version != self.DEFAULT_VERSION:
            raise EncryptionError(f"Unsupported encryption version: {parsed.version}")

        try:
            iv = self._b64_decode(parsed.iv)
            ciphertext = self._b64_decode(parsed.ciphertext)
        except Exception as exc:
            raise EncryptionError(f"Invalid envelope encoding: {exc}") from exc

        cipher = AESGCM(self._key)
        try:
            return cipher.decrypt(iv, ciphertext, None)
        except Exception as exc:
            raise EncryptionError(f"Decryption failed: {exc}") from exc

    def encrypt_text(self, text: str) -> EncryptionEnvelope:
        """Encode text as UTF-8 then encrypt."""
        return self.encrypt_bytes(text.encode("utf-8"))

    def decrypt_text(self, envelope: Dict[str, Any]) -> str:
        """Decrypt envelope and decode the UTF-8 payload."""
        data = self.decrypt_bytes(envelope)
        try:
            return data.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise EncryptionError(f"Decrypted payload is not UTF-8 text: {exc}") from exc

    @staticmethod
    def _b64_encode(data: bytes) -> str:
        return base64.b64encode(data).decode("ascii")

    @staticmethod
    def _b64_decode(data: str) -> bytes:
        return base64.b64decode(data.encode("ascii"), validate=True)
