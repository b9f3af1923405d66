"""Runtime configuration read from the environment (and an optional .env)."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from ..pod.encryption import DEFAULT_KDF_ITERATIONS

load_dotenv()

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


@dataclass(frozen=True)
class Settings:
    storage: str = "local"
    local_root: Path = Path.home() / ".healthpod"
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None
    bucket: str = "healthpod"
    log_level: str = "INFO"
    kdf_iterations: int = DEFAULT_KDF_ITERATIONS


def load_settings() -> Settings:
    """Build settings from ``HEALTHPOD_*`` / ``SUPABASE_*`` variables."""
    local_root = os.getenv("HEALTHPOD_LOCAL_ROOT")
    iterations = os.getenv("HEALTHPOD_KDF_ITERATIONS")
    return Settings(
        storage=os.getenv("HEALTHPOD_STORAGE", "local").strip().lower(),
        local_root=Path(local_root).expanduser() if local_root else Settings.local_root,
        supabase_url=os.getenv("SUPABASE_URL"),
        supabase_key=os.getenv("SUPABASE_SERVICE_ROLE_KEY") or os.getenv("SUPABASE_KEY"),
        bucket=os.getenv("HEALTHPOD_BUCKET", "healthpod"),
        log_level=os.getenv("HEALTHPOD_LOG_LEVEL", "INFO").upper(),
        kdf_iterations=int(iterations) if iterations else DEFAULT_KDF_ITERATIONS,
    )


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)
