"""
Directory browsing over the pod.

Lists a logical directory, keeps only encrypted resources, counts the
matching files in each subdirectory and confirms every candidate can be
read before it is shown.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from ..pod import DATA_ROOT, PodClient, is_failure
from .paths import ENC_SUFFIX, data_path, strip_data_root

logger = logging.getLogger(__name__)

NotifyFn = Callable[[str, str], None]


@dataclass(slots=True)
class FileEntry:
    """A readable encrypted resource shown in the browser."""

    name: str
    path: str
    last_modified: datetime

    def to_dict(self) -> Dict[str, str]:
        return {
            "name": self.name,
            "path": self.path,
            "last_modified": self.last_modified.isoformat(),
        }


@dataclass(slots=True)
class DirectoryListing:
    """Result of one listing pass over a directory."""

    path: str
    directories: List[str] = field(default_factory=list)
    files: List[FileEntry] = field(default_factory=list)
    directory_counts: Dict[str, int] = field(default_factory=dict)
    file_count: int = 0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class NavigationState:
    """Stack of visited directories; the root can never be popped."""

    def __init__(self, root: str = DATA_ROOT) -> None:
        self._stack: List[str] = [root]

    @property
    def root(self) -> str:
        return self._stack[0]

    @property
    def current(self) -> str:
        return self._stack[-1]

    @property
    def history(self) -> List[str]:
        return list(self._stack)

    @property
    def at_root(self) -> bool:
        return len(self._stack) == 1

    def push(self, path: str) -> str:
        self._stack.append(path)
        return self.current

    def pop(self) -> str:
        if len(self._stack) > 1:
            self._stack.pop()
        return self.current


class DirectoryService:
    """List and validate encrypted resources in pod directories."""

    def __init__(self, pod: PodClient, *, suffix: str = ENC_SUFFIX) -> None:
        self.pod = pod
        self.suffix = suffix

    def list_directory(self, path: str = DATA_ROOT, *, validate: bool = True) -> DirectoryListing:
        """List *path*; failures yield an empty listing carrying the error text."""
        listing = DirectoryListing(path=path)
        try:
            resources = self.pod.list(self.pod.dir_url(path))
        except Exception as exc:
            logger.error("Failed to list directory %s: %s", path, exc)
            listing.error = str(exc)
            return listing

        listing.directories = list(resources.sub_dirs)
        for sub_dir in listing.directories:
            listing.directory_counts[sub_dir] = self.count_files(f"{path.rstrip('/')}/{sub_dir}")

        candidates = [name for name in resources.files if name.endswith(self.suffix)]
        listing.file_count = len(candidates)
        names = self.validate_files(path, candidates) if validate else candidates

        now = datetime.now(timezone.utc)
        base = data_path(strip_data_root(path))
        listing.files = [
            FileEntry(
                name=name,
                path=f"{base}/{name}",
                last_modified=resources.modified.get(name, now),
            )
            for name in names
        ]
        return listing

    def count_files(self, path: str) -> int:
        """Shallow count of suffix-matching files in *path*; 0 on any failure."""
        try:
            resources = self.pod.list(self.pod.dir_url(path))
        except Exception as exc:
            logger.warning("Could not count files in %s: %s", path, exc)
            return 0
        return sum(1 for name in resources.files if name.endswith(self.suffix))

    def validate_files(self, path: str, names: List[str]) -> List[str]:
        """Keep the names whose decrypt-and-read does not return a sentinel."""
        directory = strip_data_root(path)
        readable: List[str] = []
        for name in names:
            target = f"{directory}/{name}" if directory else name
            try:
                result = self.pod.read(target)
            except Exception as exc:
                logger.warning("Skipping unreadable file %s: %s", target, exc)
                continue
            if is_failure(result):
                logger.info("Skipping %s (read returned %s)", target, result.value)
                continue
            readable.append(name)
        return readable


class FileBrowser:
    """Per-session browser: navigation stack, current listing and selection."""

    def __init__(
        self,
        directories: DirectoryService,
        *,
        root: str = DATA_ROOT,
        reporter: Optional[NotifyFn] = None,
    ) -> None:
        self.directories = directories
        self.navigation = NavigationState(root)
        self.listing = DirectoryListing(path=root)
        self.selected: Optional[str] = None
        self._report = reporter
        self._lock = threading.Lock()

    @property
    def current_path(self) -> str:
        return self.navigation.current

    def navigate_to(self, sub_dir: str) -> DirectoryListing:
        """Enter *sub_dir* of the current directory and refresh."""
        name = sub_dir.strip("/")
        if not name or ".." in name.split("/"):
            raise ValueError(f"Invalid directory name: {sub_dir!r}")
        with self._lock:
            self.navigation.push(f"{self.current_path.rstrip('/')}/{name}")
            self.selected = None
        return self.refresh()

    def navigate_up(self) -> DirectoryListing:
        with self._lock:
            self.navigation.pop()
            self.selected = None
        return self.refresh()

    def refresh(self) -> DirectoryListing:
        listing = self.directories.list_directory(self.current_path)
        if listing.error:
            self._notify(f"Failed to load directory: {listing.error}", "error")
        with self._lock:
            self.listing = listing
        return listing

    def select(self, name: Optional[str]) -> None:
        self.selected = name

    def _notify(self, message: str, tone: str) -> None:
        if self._report:
            self._report(message, tone)
