"""
Profile Import/Export Service

Profile documents arrive in one of three shapes: the fields at the top
level, nested under ``data``, or nested under ``responses``. They are
decoded once into a tagged ``ProfileDecodeResult`` and stored as a single
canonical ``{"timestamp", "data"}`` record under ``healthpod/data/profile``.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

from ..pod import CallStatus, PodClient, PodNotFoundError, is_failure, is_not_found
from .operations import OperationTracker, TransferKind
from .paths import (
    ENC_SUFFIX,
    JSON_ENC_SUFFIX,
    PROFILE_DIR,
    data_path,
    format_timestamp_for_filename,
    join_pod_path,
    parse_timestamp,
)

logger = logging.getLogger(__name__)

NotifyFn = Callable[[str, str], None]
ConfirmFilesFn = Callable[[List[str]], bool]
ConfirmPreviewFn = Callable[[List[Tuple[str, str]]], bool]

PROFILE_PATH = data_path(PROFILE_DIR)
PROFILE_PREFIX = "profile_"
PHOTO_PREFIX = "profile_photo_"
WRAPPER_KEYS = ("timestamp", "data", "responses")

NAME_FIELD = "name"
NAME_ALIAS = "patientName"

REQUIRED_FIELDS = (
    NAME_FIELD,
    "address",
    "bestContactPhone",
    "alternativeContactNumber",
    "email",
    "dateOfBirth",
    "gender",
    "identifyAsIndigenous",
)
STRING_FIELDS = REQUIRED_FIELDS[:-1]
PHONE_FIELDS = {
    "bestContactPhone": "best contact",
    "alternativeContactNumber": "alternative contact",
}

PREVIEW_FIELDS = (
    (NAME_FIELD, "Name"),
    ("dateOfBirth", "Date of Birth"),
    ("gender", "Gender"),
    ("email", "Email"),
    ("bestContactPhone", "Contact Phone"),
    ("address", "Address"),
)

EMAIL_PATTERN = re.compile(r"^[\w\-.]+@([\w-]+\.)+[\w-]{2,4}$")
PHONE_PATTERN = re.compile(r"^\+?[\d\s-]+$")


class ProfileError(Exception):
    """Raised when profile storage cannot be inspected or updated."""

    def __init__(self, message: str, code: str = "storage_error") -> None:
        super().__init__(message)
        self.code = code


class ProfileShape(str, Enum):
    FLAT = "flat"
    DATA = "data"
    RESPONSES = "responses"


@dataclass(slots=True)
class ProfileDecodeResult:
    """Outcome of matching a document against the known profile shapes.

    ``shape`` is None when no shape carries every required field; ``missing``
    then holds the smallest missing set among the shapes that were checked.
    """

    shape: Optional[ProfileShape]
    fields: Dict[str, Any] = field(default_factory=dict)
    missing: List[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return self.shape is not None


@dataclass(slots=True)
class ProfileValidation:
    decoded: ProfileDecodeResult
    errors: List[str]
    timestamp: str

    @property
    def valid(self) -> bool:
        return self.decoded.valid and not self.errors

    @property
    def message(self) -> str:
        if not self.decoded.valid:
            return "Invalid profile data structure - missing required fields: " + ", ".join(
                self.decoded.missing
            )
        if self.errors:
            return self.errors[0]
        return "Valid profile data"

    def record(self) -> Dict[str, Any]:
        return {"timestamp": self.timestamp, "data": dict(self.decoded.fields)}


@dataclass
class ProfileResult:
    success: bool
    message: str
    file_name: Optional[str] = None
    duplicate_files: List[str] = field(default_factory=list)
    cancelled: bool = False
    errors: List[str] = field(default_factory=list)
    missing: List[str] = field(default_factory=list)
    preview: List[Tuple[str, str]] = field(default_factory=list)
    content: Optional[str] = None
    file_path: Optional[Path] = None
    code: Optional[str] = None


# ---------------------------------------------------------------------------
# Decoding and validation
# ---------------------------------------------------------------------------


def _missing_fields(fields: Mapping[str, Any]) -> List[str]:
    missing = []
    for name in REQUIRED_FIELDS:
        if name in fields:
            continue
        if name == NAME_FIELD and NAME_ALIAS in fields:
            continue
        missing.append(name)
    return missing


def _canonical(fields: Mapping[str, Any]) -> Dict[str, Any]:
    result = dict(fields)
    if NAME_FIELD not in result and NAME_ALIAS in result:
        result[NAME_FIELD] = result[NAME_ALIAS]
    return result


def decode_profile(document: Any) -> ProfileDecodeResult:
    """Match *document* against the flat, ``data`` and ``responses`` shapes in order."""
    if not isinstance(document, dict):
        return ProfileDecodeResult(shape=None, missing=list(REQUIRED_FIELDS))

    candidates: List[Tuple[ProfileShape, Dict[str, Any]]] = [
        (ProfileShape.FLAT, {k: v for k, v in document.items() if k not in WRAPPER_KEYS}),
    ]
    for shape in (ProfileShape.DATA, ProfileShape.RESPONSES):
        nested = document.get(shape.value)
        if isinstance(nested, dict):
            candidates.append((shape, {k: v for k, v in nested.items() if k != "timestamp"}))

    best: Optional[List[str]] = None
    for shape, fields in candidates:
        missing = _missing_fields(fields)
        if not missing:
            return ProfileDecodeResult(shape=shape, fields=_canonical(fields))
        if best is None or len(missing) < len(best):
            best = missing
    return ProfileDecodeResult(shape=None, missing=best or [])


def check_fields(fields: Mapping[str, Any]) -> List[str]:
    """Type and format checks for an already decoded profile."""
    errors: List[str] = []
    if not isinstance(fields.get("identifyAsIndigenous"), bool):
        errors.append('Field "identifyAsIndigenous" must be a boolean')

    for name in STRING_FIELDS:
        value = fields.get(name)
        if value is None:
            errors.append(f'Field "{name}" cannot be null')
        elif not isinstance(value, str):
            errors.append(f'Field "{name}" must be a string')

    email = fields.get("email")
    if isinstance(email, str) and email and not EMAIL_PATTERN.match(email):
        errors.append("Invalid email format")

    for name, label in PHONE_FIELDS.items():
        value = fields.get(name)
        if isinstance(value, str) and value and not PHONE_PATTERN.match(value):
            errors.append(f"Invalid phone number format for {label}")

    dob = fields.get("dateOfBirth")
    if isinstance(dob, str) and dob:
        try:
            datetime.strptime(dob, "%Y-%m-%d")
        except ValueError:
            errors.append("Invalid date of birth format. Use YYYY-MM-DD")
    return errors


def resolve_timestamp(document: Any, *, now: Optional[datetime] = None) -> str:
    """``data.timestamp`` wins over a top-level one; fall back to *now* (UTC)."""
    candidates = []
    if isinstance(document, dict):
        nested = document.get("data")
        if isinstance(nested, dict):
            candidates.append(nested.get("timestamp"))
        candidates.append(document.get("timestamp"))
    for value in candidates:
        parsed = parse_timestamp(value)
        if parsed is not None:
            return parsed.isoformat()
    return (now or datetime.now(timezone.utc)).isoformat()


def validate_profile(document: Any) -> ProfileValidation:
    decoded = decode_profile(document)
    errors = check_fields(decoded.fields) if decoded.valid else []
    return ProfileValidation(decoded=decoded, errors=errors, timestamp=resolve_timestamp(document))


def build_preview(fields: Mapping[str, Any]) -> List[Tuple[str, str]]:
    """Ordered (label, value) pairs shown before a profile import is confirmed."""
    items: List[Tuple[str, str]] = []
    for name, label in PREVIEW_FIELDS:
        if name not in fields:
            continue
        value = fields[name]
        if isinstance(value, bool):
            value = "Yes" if value else "No"
        items.append((label, "" if value is None else str(value)))
    return items


def default_profile() -> Dict[str, Any]:
    return {name: "" for name in STRING_FIELDS} | {"identifyAsIndigenous": False}


def _profile_sort_key(file_name: str) -> str:
    """Timestamp embedded in ``profile_<timestamp>.json.enc.ttl``."""
    stem = file_name[len(PROFILE_PREFIX):]
    return stem.split(".json", 1)[0]


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class ProfileService:
    """Import, store, export and fetch the single canonical profile record."""

    def __init__(
        self,
        pod: PodClient,
        *,
        tracker: Optional[OperationTracker] = None,
        reporter: Optional[NotifyFn] = None,
        directory: str = PROFILE_PATH,
    ) -> None:
        self.pod = pod
        self.tracker = tracker or OperationTracker()
        self.directory = directory
        self._report = reporter

    # ---- storage helpers ---------------------------------------------- #

    def list_profile_files(self) -> List[str]:
        """Stored profile records, excluding profile photos."""
        try:
            resources = self.pod.list(self.pod.dir_url(self.directory))
        except PodNotFoundError:
            return []
        except Exception as exc:
            raise ProfileError(f"Unable to list profile files: {exc}") from exc
        return [
            name
            for name in resources.files
            if name.startswith(PROFILE_PREFIX)
            and name.endswith(ENC_SUFFIX)
            and not name.startswith(PHOTO_PREFIX)
        ]

    def delete_existing_profiles(self, file_names: List[str]) -> List[str]:
        removed = []
        for name in file_names:
            try:
                self.pod.delete(join_pod_path(self.directory, name))
            except Exception as exc:
                if not is_not_found(exc):
                    raise ProfileError(f"Failed to delete existing profile {name}: {exc}") from exc
                logger.info("Profile %s was already removed", name)
            removed.append(name)
        return removed

    def save_profile(
        self,
        record: Dict[str, Any],
        *,
        confirm_override: Optional[ConfirmFilesFn] = None,
    ) -> ProfileResult:
        """Replace every stored profile with *record*.

        Existing copies are only removed when ``confirm_override`` agrees.
        """
        try:
            existing = self.list_profile_files()
        except ProfileError as exc:
            return ProfileResult(success=False, message=str(exc), code=exc.code)

        if existing:
            if confirm_override is None or not confirm_override(list(existing)):
                return ProfileResult(
                    success=False,
                    cancelled=True,
                    code="duplicates",
                    duplicate_files=existing,
                    message=f"A profile already exists ({len(existing)} file(s)); import cancelled.",
                )
            try:
                self.delete_existing_profiles(existing)
            except ProfileError as exc:
                return ProfileResult(success=False, message=str(exc), code=exc.code, duplicate_files=existing)

        file_name = f"{PROFILE_PREFIX}{format_timestamp_for_filename(datetime.now())}{JSON_ENC_SUFFIX}"
        status = self.pod.write(
            join_pod_path(self.directory, file_name),
            json.dumps(record, indent=2),
            encrypted=True,
        )
        if is_failure(status):
            code = "key_required" if status == CallStatus.NOT_LOGGED_IN else "storage_error"
            return ProfileResult(success=False, message=f"Error saving profile: {status.value}", code=code)
        logger.info("Saved profile record %s", file_name)
        return ProfileResult(
            success=True,
            message="Profile data imported successfully",
            file_name=file_name,
            duplicate_files=existing,
        )

    # ---- import ------------------------------------------------------- #

    def import_profile(
        self,
        document: Union[str, bytes, Dict[str, Any]],
        *,
        confirm_override: Optional[ConfirmFilesFn] = None,
        confirm_preview: Optional[ConfirmPreviewFn] = None,
    ) -> ProfileResult:
        """Validate *document* (JSON text or parsed) and store it as the profile."""
        self.tracker.begin(TransferKind.IMPORT)
        try:
            result = self._import(document, confirm_override, confirm_preview)
        except Exception as exc:
            logger.exception("Profile import failed")
            result = ProfileResult(success=False, message=f"Error importing profile: {exc}", code="storage_error")
        return self._finish(TransferKind.IMPORT, result)

    def import_file(self, json_path: Path, **kwargs: Any) -> ProfileResult:
        path = Path(json_path)
        try:
            content = path.read_text(encoding="utf-8")
        except OSError as exc:
            self.tracker.begin(TransferKind.IMPORT)
            return self._finish(
                TransferKind.IMPORT,
                ProfileResult(success=False, message=f"Unable to read {path.name}: {exc}", code="invalid"),
            )
        return self.import_profile(content, **kwargs)

    def _import(
        self,
        document: Union[str, bytes, Dict[str, Any]],
        confirm_override: Optional[ConfirmFilesFn],
        confirm_preview: Optional[ConfirmPreviewFn],
    ) -> ProfileResult:
        if isinstance(document, (str, bytes)):
            try:
                document = json.loads(document)
            except json.JSONDecodeError as exc:
                return ProfileResult(success=False, message=f"Invalid JSON format: {exc}", code="invalid")

        validation = validate_profile(document)
        if not validation.valid:
            return ProfileResult(
                success=False,
                message=f"Invalid profile data: {validation.message}",
                errors=list(validation.errors),
                missing=list(validation.decoded.missing),
                code="invalid",
            )

        preview = build_preview(validation.decoded.fields)
        if confirm_preview is not None and not confirm_preview(preview):
            return ProfileResult(
                success=False,
                cancelled=True,
                message="Profile import cancelled",
                preview=preview,
                code="cancelled",
            )

        result = self.save_profile(validation.record(), confirm_override=confirm_override)
        result.preview = preview
        return result

    # ---- export ------------------------------------------------------- #

    def latest_profile_file(self) -> Optional[str]:
        files = sorted(self.list_profile_files(), key=_profile_sort_key, reverse=True)
        return files[0] if files else None

    def export_profile(self, save_path: Optional[Path] = None) -> ProfileResult:
        """Export the most recent profile record, optionally writing it to *save_path*."""
        self.tracker.begin(TransferKind.EXPORT)
        try:
            result = self._export(save_path)
        except (ProfileError, OSError) as exc:
            logger.error("Error exporting profile: %s", exc)
            result = ProfileResult(
                success=False,
                message=f"Error exporting profile: {exc}",
                code=getattr(exc, "code", "storage_error"),
            )
        except Exception as exc:
            logger.exception("Unexpected error exporting profile")
            result = ProfileResult(success=False, message=f"Error exporting profile: {exc}", code="storage_error")
        return self._finish(TransferKind.EXPORT, result)

    def _export(self, save_path: Optional[Path]) -> ProfileResult:
        latest = self.latest_profile_file()
        if latest is None:
            raise ProfileError("No profile files found in the directory", code="not_found")

        if not self.pod.keys.ensure_security_key("Please enter your security key to export profile data"):
            raise ProfileError("A security key is required to export profile data", code="key_required")

        content = self.pod.read(join_pod_path(self.directory, latest))
        if is_failure(content):
            raise ProfileError("Download failed - please check your connection and permissions")

        text = content if content.endswith("\n") else content + "\n"
        target: Optional[Path] = None
        if save_path is not None:
            target = Path(save_path)
            if target.is_dir():
                target = target / latest[: -len(ENC_SUFFIX)]
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(text, encoding="utf-8")
        return ProfileResult(
            success=True,
            message="Profile exported successfully",
            file_name=latest,
            content=text,
            file_path=target,
        )

    # ---- fetch -------------------------------------------------------- #

    def fetch_profile(self) -> Dict[str, Any]:
        """Current profile fields from the newest readable record, or defaults."""
        profile = default_profile()
        try:
            files = sorted(self.list_profile_files(), key=_profile_sort_key, reverse=True)
        except ProfileError as exc:
            logger.warning("Unable to fetch profile: %s", exc)
            return profile

        for name in files:
            content = self.pod.read(join_pod_path(self.directory, name))
            if is_failure(content):
                continue
            try:
                document = json.loads(content)
            except json.JSONDecodeError:
                logger.warning("Profile %s is not valid JSON", name)
                continue
            decoded = decode_profile(document)
            if decoded.valid:
                fields = decoded.fields
            elif isinstance(document, dict) and isinstance(document.get("data"), dict):
                fields = _canonical(document["data"])
            else:
                continue
            profile.update({k: v for k, v in fields.items() if k != NAME_ALIAS})
            return profile
        return profile

    def _finish(self, kind: TransferKind, result: ProfileResult) -> ProfileResult:
        self.tracker.finish(kind, result.success, result.message)
        tone = "success" if result.success else ("warning" if result.cancelled else "error")
        self._notify(result.message, tone)
        return result

    def _notify(self, message: str, tone: str) -> None:
        if self._report:
            self._report(message, tone)
