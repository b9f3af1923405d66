"""Pod storage collaborator: backends, encryption and status sentinels."""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

from .client import DATA_ROOT, PodClient, PodResources, resolve_path
from .errors import PodAuthError, PodError, PodNotFoundError, SecurityKeyError, is_not_found
from .keys import KeyManager, PromptFn
from .local_pod import LocalPod
from .status import CallStatus, is_failure

if TYPE_CHECKING:  # pragma: no cover - typing helper only
    from ..config.settings import Settings


def create_pod(settings: Settings, *, prompt: Optional[PromptFn] = None) -> PodClient:
    """Instantiate the backend selected by ``settings.storage``."""
    if settings.storage == "local":
        return LocalPod(settings.local_root, prompt=prompt, kdf_iterations=settings.kdf_iterations)
    if settings.storage == "supabase":
        from .supabase_pod import SupabasePod

        return SupabasePod(
            settings.supabase_url,
            settings.supabase_key,
            bucket=settings.bucket,
            prompt=prompt,
            kdf_iterations=settings.kdf_iterations,
        )
    raise PodError(f"Unknown storage backend: {settings.storage}")


__all__ = [
    "CallStatus",
    "DATA_ROOT",
    "KeyManager",
    "LocalPod",
    "PodAuthError",
    "PodClient",
    "PodError",
    "PodNotFoundError",
    "PodResources",
    "PromptFn",
    "SecurityKeyError",
    "create_pod",
    "is_failure",
    "is_not_found",
    "resolve_path",
]
