"""Pod backend storing resources in a Supabase Storage bucket."""

from __future__ import annotations

import logging
import os
from datetime import datetime
from typing import Any, Dict, Optional

from supabase import Client, create_client

from .client import PodClient, PodResources
from .encryption import DEFAULT_KDF_ITERATIONS
from .errors import PodAuthError, PodError, PodNotFoundError, is_not_found
from .keys import PromptFn

logger = logging.getLogger(__name__)

_PLACEHOLDER = ".emptyFolderPlaceholder"


class SupabasePod(PodClient):
    """Keep pod resources as objects in a (private) Supabase Storage bucket."""

    def __init__(
        self,
        supabase_url: Optional[str] = None,
        supabase_key: Optional[str] = None,
        *,
        bucket: str = "healthpod",
        prefix: str = "",
        prompt: Optional[PromptFn] = None,
        kdf_iterations: int = DEFAULT_KDF_ITERATIONS,
    ) -> None:
        super().__init__(prompt=prompt, kdf_iterations=kdf_iterations)
        self.supabase_url = supabase_url or os.getenv("SUPABASE_URL")
        self.supabase_key = (
            supabase_key
            or os.getenv("SUPABASE_SERVICE_ROLE_KEY")
            or os.getenv("SUPABASE_KEY")
            or os.getenv("SUPABASE_ANON_KEY")
        )
        if not self.supabase_url or not self.supabase_key:
            raise PodError("Supabase credentials not configured.")

        self.bucket = bucket
        self.prefix = prefix.strip("/")
        self._access_token: Optional[str] = None

        try:
            self.client: Client = create_client(self.supabase_url, self.supabase_key)
        except Exception as exc:  # pragma: no cover - client level errors hard to simulate
            raise PodError(f"Failed to initialize Supabase client: {exc}") from exc

    @property
    def base_url(self) -> str:
        return f"{self.supabase_url.rstrip('/')}/storage/v1/object/{self.bucket}/"

    def apply_access_token(self, token: Optional[str]) -> None:
        """Attach or clear a user's access token for RLS-aware storage calls."""
        self._access_token = token
        try:
            self.client.storage.session.headers["Authorization"] = f"Bearer {token or self.supabase_key}"
        except AttributeError:
            # Older storage clients don't expose their session; keep the service key.
            pass

    # ------------------------------------------------------------------ #
    # Backend hooks
    # ------------------------------------------------------------------ #

    def _object(self, path: str) -> str:
        return f"{self.prefix}/{path}" if self.prefix else path

    def _bucket(self):
        return self.client.storage.from_(self.bucket)

    def _fetch(self, path: str) -> bytes:
        try:
            return self._bucket().download(self._object(path))
        except Exception as exc:
            raise self._translate(exc, f"download {path}") from exc

    def _store(self, path: str, data: bytes) -> None:
        try:
            self._bucket().upload(
                self._object(path),
                data,
                {"content-type": "text/turtle", "upsert": "true"},
            )
        except Exception as exc:
            raise self._translate(exc, f"upload {path}") from exc

    def _remove(self, path: str) -> None:
        try:
            removed = self._bucket().remove([self._object(path)])
        except Exception as exc:
            raise self._translate(exc, f"delete {path}") from exc
        if not removed:
            raise PodNotFoundError(f"NotFoundHttpError: {path}")

    def _list(self, path: str) -> PodResources:
        try:
            entries = self._bucket().list(self._object(path))
        except Exception as exc:
            raise self._translate(exc, f"list {path}") from exc

        resources = PodResources()
        for entry in entries or []:
            name = entry.get("name")
            if not name or name == _PLACEHOLDER:
                continue
            if entry.get("id") is None:
                resources.sub_dirs.append(name)
                continue
            resources.files.append(name)
            modified = self._parse_time(entry)
            if modified is not None:
                resources.modified[name] = modified
        return resources

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #

    @staticmethod
    def _translate(exc: Exception, action: str) -> PodError:
        text = str(exc)
        if is_not_found(exc) or str(getattr(exc, "status", "")) == "404":
            return PodNotFoundError(f"Failed to {action}: {text}")
        if "401" in text or "403" in text or "Unauthorized" in text:
            return PodAuthError(f"Failed to {action}: {text}")
        return PodError(f"Failed to {action}: {text}")

    @staticmethod
    def _parse_time(entry: Dict[str, Any]) -> Optional[datetime]:
        value = entry.get("updated_at") or entry.get("created_at")
        if not value:
            return None
        try:
            return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            logger.debug("Unparseable storage timestamp %r", value)
            return None
