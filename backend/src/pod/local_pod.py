"""Filesystem backed pod used for single-user desktop installs and tests."""

from __future__ import annotations

import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from .client import PodClient, PodResources
from .encryption import DEFAULT_KDF_ITERATIONS
from .errors import PodError, PodNotFoundError
from .keys import PromptFn


class LocalPod(PodClient):
    """Store pod resources as plain files below *root*."""

    def __init__(
        self,
        root: Path,
        *,
        prompt: Optional[PromptFn] = None,
        kdf_iterations: int = DEFAULT_KDF_ITERATIONS,
    ) -> None:
        super().__init__(prompt=prompt, kdf_iterations=kdf_iterations)
        self.root = Path(root).expanduser().resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    @property
    def base_url(self) -> str:
        return self.root.as_uri() + "/"

    def _target(self, path: str) -> Path:
        return self.root / Path(*path.split("/"))

    def _fetch(self, path: str) -> bytes:
        target = self._target(path)
        if not target.is_file():
            raise PodNotFoundError(f"NotFoundHttpError: {path}")
        try:
            return target.read_bytes()
        except OSError as exc:
            raise PodError(f"Unable to read {path}: {exc}") from exc

    def _store(self, path: str, data: bytes) -> None:
        target = self._target(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            tmp = target.with_name(target.name + ".tmp")
            tmp.write_bytes(data)
            os.replace(tmp, target)
        except OSError as exc:
            raise PodError(f"Unable to write {path}: {exc}") from exc

    def _remove(self, path: str) -> None:
        target = self._target(path)
        if not target.is_file():
            raise PodNotFoundError(f"NotFoundHttpError: {path}")
        try:
            target.unlink()
        except OSError as exc:
            raise PodError(f"Unable to delete {path}: {exc}") from exc

    def _list(self, path: str) -> PodResources:
        target = self._target(path)
        if not target.is_dir():
            raise PodNotFoundError(f"NotFoundHttpError: container {path}")

        resources = PodResources()
        for entry in sorted(target.iterdir(), key=lambda p: p.name):
            if entry.is_dir():
                resources.sub_dirs.append(entry.name)
            elif entry.is_file() and not entry.name.endswith(".tmp"):
                resources.files.append(entry.name)
                resources.modified[entry.name] = datetime.fromtimestamp(
                    entry.stat().st_mtime, tz=timezone.utc
                )
        return resources
