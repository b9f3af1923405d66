"""Naming and path conventions for resources stored in the pod."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from pathlib import PurePosixPath
from typing import Optional

from ..pod.client import DATA_ROOT

ENC_SUFFIX = ".enc.ttl"
JSON_ENC_SUFFIX = ".json" + ENC_SUFFIX
ACL_SUFFIX = ".acl"

PROFILE_DIR = "profile"
BLOOD_PRESSURE_DIR = "blood_pressure"
MEDICATION_DIR = "medication"
VACCINATION_DIR = "vaccination"
DIARY_DIR = "diary"

TEXT_EXTENSIONS = frozenset(
    {
        ".txt", ".md", ".csv", ".json", ".xml", ".html", ".htm", ".ttl",
        ".yaml", ".yml", ".log", ".ini", ".cfg", ".tsv", ".rtf",
    }
)

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9._-]")
_TIME_SEPARATOR = re.compile(r" (?=\d{2}:\d{2}(:\d{2})?)")


def sanitize_file_name(file_name: str) -> str:
    """Replace unsafe characters and drop an existing encrypted suffix."""
    name = PurePosixPath(file_name.replace("\\", "/")).name
    name = _UNSAFE_CHARS.sub("_", name)
    if name.endswith(ENC_SUFFIX):
        name = name[: -len(ENC_SUFFIX)]
    return name


def remote_file_name(file_name: str) -> str:
    """Sanitized name with the encrypted suffix appended exactly once."""
    return sanitize_file_name(file_name) + ENC_SUFFIX


def clean_file_name(remote_name: str) -> str:
    """Suggested local name for a remote resource."""
    return remote_name[: -len(ENC_SUFFIX)] if remote_name.endswith(ENC_SUFFIX) else remote_name


def is_encrypted_name(file_name: str) -> bool:
    return file_name.endswith(ENC_SUFFIX)


def is_text_file(file_name: str) -> bool:
    """Classify a file as text or binary from its extension."""
    return PurePosixPath(clean_file_name(file_name).lower()).suffix in TEXT_EXTENSIONS


def strip_data_root(path: Optional[str]) -> str:
    """Return *path* relative to ``healthpod/data`` without leading slashes."""
    clean = (path or "").strip().strip("/")
    if clean == DATA_ROOT:
        return ""
    if clean.startswith(DATA_ROOT + "/"):
        clean = clean[len(DATA_ROOT) + 1:]
    return clean.strip("/")


def join_pod_path(directory: Optional[str], file_name: str) -> str:
    sub = strip_data_root(directory)
    return f"{sub}/{file_name}" if sub else file_name


def data_path(*parts: str) -> str:
    """Full logical path under the virtual root, e.g. ``healthpod/data/profile``."""
    tail = "/".join(part.strip("/") for part in parts if part and part.strip("/"))
    return f"{DATA_ROOT}/{tail}" if tail else DATA_ROOT


def format_timestamp_for_filename(moment: datetime) -> str:
    """``YYYY-MM-DDTHH-MM-SS`` (colons are not safe in resource names)."""
    return moment.strftime("%Y-%m-%dT%H-%M-%S")


def parse_timestamp(value: object) -> Optional[datetime]:
    """Parse common ISO-8601 variants, returning None when *value* is not a time."""
    if isinstance(value, datetime):
        return value
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if "T" not in text:
        text = _TIME_SEPARATOR.sub("T", text, count=1)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


def normalise_timestamp(value: str, *, to_iso: bool = False) -> str:
    """Round to whole seconds and use ``T`` as the date/time separator.

    With ``to_iso`` the result is converted to UTC ISO-8601 (naive values are
    taken as UTC). Raises ValueError for unparseable input.
    """
    moment = parse_timestamp(value)
    if moment is None:
        raise ValueError(f"Invalid timestamp format: {value}")
    moment = moment.replace(microsecond=0)
    if to_iso:
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)
        return moment.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
    text = moment.isoformat()
    return text[:-6] + "Z" if text.endswith("+00:00") else text


def safe_timestamp(timestamp: str) -> str:
    """Timestamp with ``:`` and ``.`` runs replaced so it fits in a file name."""
    return re.sub(r"[:.]+", "-", timestamp)
