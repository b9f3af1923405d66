from __future__ import annotations

import pytest

pytest.importorskip("cryptography")

from backend.src.pod.encryption import (
    EncryptionEnvelope,
    EncryptionError,
    EncryptionService,
    derive_key,
)


def _key_bytes() -> bytes:
    return b"0" * 32


def test_encrypt_decrypt_bytes_roundtrip():
    svc = EncryptionService(key=_key_bytes())
    envelope = svc.encrypt_bytes(b"hello world")
    assert envelope.version == "1"
    decrypted = svc.decrypt_bytes(envelope.to_dict())
    assert decrypted == b"hello world"


def test_encrypt_decrypt_text_roundtrip():
    svc = EncryptionService(key=_key_bytes())
    envelope = svc.encrypt_text('{"systolic": 120, "notes": "café"}')
    assert svc.decrypt_text(envelope.to_dict()) == '{"systolic": 120, "notes": "café"}'


def test_missing_or_bad_key_raises():
    with pytest.raises(EncryptionError):
        EncryptionService()

    with pytest.raises(EncryptionError):
        EncryptionService(key=b"short")


def test_decrypt_with_wrong_key_fails():
    svc = EncryptionService(key=_key_bytes())
    envelope = svc.encrypt_bytes(b"secret")

    svc_other = EncryptionService(key=b"1" * 32)

    with pytest.raises(EncryptionError):
        svc_other.decrypt_bytes(envelope.to_dict())


def test_invalid_envelope_rejected():
    svc = EncryptionService(key=_key_bytes())
    with pytest.raises(EncryptionError):
        svc.decrypt_bytes({"iv": "bad"})


def test_envelope_json_shape():
    envelope = EncryptionService(key=_key_bytes()).encrypt_text("x")
    assert EncryptionEnvelope.looks_like(envelope.to_dict())
    assert envelope.to_json().startswith('{"v":"1","iv":')
    assert not EncryptionEnvelope.looks_like({"timestamp": "2025-01-01"})


def test_derive_key_depends_on_salt_and_key():
    first = derive_key("key", b"salt-one", iterations=1000)
    assert len(first) == 32
    assert first == derive_key("key", b"salt-one", iterations=1000)
    assert first != derive_key("key", b"salt-two", iterations=1000)
    assert first != derive_key("other", b"salt-one", iterations=1000)

    with pytest.raises(EncryptionError):
        derive_key("", b"salt", iterations=1000)
