"""
Pytest configuration and fixtures
"""
from __future__ import annotations

from pathlib import Path
from typing import Dict, Optional

import pytest

from backend.src.pod import LocalPod, PodResources
from backend.src.pod.client import KEY_RECORD_PATH
from backend.src.pod.errors import PodError

SECURITY_KEY = "correct horse battery staple"
TEST_KDF_ITERATIONS = 1_000


class FlakyPod(LocalPod):
    """Local pod that can be told to fail specific calls."""

    def __init__(self, root: Path, **kwargs) -> None:
        super().__init__(root, **kwargs)
        self.fetch_errors: Dict[str, Exception] = {}
        self.remove_errors: Dict[str, Exception] = {}
        self.list_errors: Dict[str, Exception] = {}
        self.store_errors: Dict[str, Exception] = {}
        self.removed: list[str] = []
        self.listed: list[str] = []

    def _fetch(self, path: str) -> bytes:
        if path in self.fetch_errors:
            raise self.fetch_errors[path]
        return super()._fetch(path)

    def _store(self, path: str, data: bytes) -> None:
        if path in self.store_errors:
            raise self.store_errors[path]
        super()._store(path, data)

    def _remove(self, path: str) -> None:
        self.removed.append(path)
        if path in self.remove_errors:
            raise self.remove_errors[path]
        super()._remove(path)

    def _list(self, path: str) -> PodResources:
        self.listed.append(path)
        if path in self.list_errors:
            raise self.list_errors[path]
        return super()._list(path)


def make_pod(root: Path, *, security_key: Optional[str] = SECURITY_KEY) -> FlakyPod:
    pod = FlakyPod(root, kdf_iterations=TEST_KDF_ITERATIONS)
    if security_key:
        pod.keys.set_security_key(security_key)
    return pod


@pytest.fixture
def security_key() -> str:
    return SECURITY_KEY


@pytest.fixture
def pod_root(tmp_path: Path) -> Path:
    return tmp_path / "pod"


@pytest.fixture
def pod(pod_root: Path) -> FlakyPod:
    """Local pod with the security key already provided."""
    return make_pod(pod_root)


@pytest.fixture
def locked_pod(pod_root: Path) -> FlakyPod:
    """Same storage as ``pod`` but without a cached security key."""
    make_pod(pod_root)
    return make_pod(pod_root, security_key=None)


@pytest.fixture
def damaged_key_pod(pod_root: Path) -> FlakyPod:
    """Pod whose stored key record is unreadable, with a prompt that supplies the key."""
    make_pod(pod_root)
    (pod_root / KEY_RECORD_PATH).write_text("{not json", encoding="utf-8")
    return FlakyPod(pod_root, kdf_iterations=TEST_KDF_ITERATIONS, prompt=lambda message: SECURITY_KEY)


@pytest.fixture
def storage_error() -> PodError:
    return PodError("500 Internal Server Error")


@pytest.fixture
def notifications():
    """Reporter callback that records (message, tone) pairs."""
    messages: list[tuple[str, str]] = []

    def _report(message: str, tone: str) -> None:
        messages.append((message, tone))

    _report.messages = messages
    return _report
