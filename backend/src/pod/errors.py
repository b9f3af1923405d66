"""Exceptions raised by pod storage backends."""

from __future__ import annotations


class PodError(Exception):
    """Base error for pod storage failures."""


class PodNotFoundError(PodError):
    """Raised when the requested resource or container does not exist."""


class PodAuthError(PodError):
    """Raised when the pod requires login or a security key first."""


class SecurityKeyError(PodAuthError):
    """Raised when a security key is missing or does not match the pod."""


def is_not_found(exc: BaseException) -> bool:
    """Return True when *exc* describes a missing resource.

    Storage clients do not share an exception hierarchy, so besides our own
    ``PodNotFoundError`` the message is checked for a 404 status or the
    ``NotFoundHttpError`` name used by Solid servers. Other "not found"
    wording (a missing bucket, an unknown user) is not a missing resource.
    """
    if isinstance(exc, PodNotFoundError):
        return True
    text = str(exc)
    return "404" in text or "NotFoundHttpError" in text
