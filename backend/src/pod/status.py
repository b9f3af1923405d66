"""Outcome sentinels returned by pod read/write calls."""

from __future__ import annotations

from enum import Enum
from typing import Any


class CallStatus(str, Enum):
    """Status values a pod call can return instead of content."""

    SUCCESS = "success"
    FAIL = "fail"
    NOT_LOGGED_IN = "notLoggedIn"


FAILURE_SENTINELS = frozenset({CallStatus.FAIL, CallStatus.NOT_LOGGED_IN})


def is_failure(result: Any) -> bool:
    """Return True when a read/write result is one of the failure sentinels."""
    return isinstance(result, CallStatus) and result in FAILURE_SENTINELS
