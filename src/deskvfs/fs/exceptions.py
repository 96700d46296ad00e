"""Custom exception hierarchy for the deskvfs filesystem layer."""

from __future__ import annotations

import errno
import traceback
from typing import Any

ERROR_CODES: dict[str, int] = {
    "ENOENT": 404,
    "EACCES": 401,
}
"""Native error code name -> HTTP status for adapter failures."""


class VFSError(Exception):
    """Base exception for all deskvfs filesystem errors."""

    status_code: int = 400


class MountpointNotFoundError(VFSError):
    """Raised when no mountpoint matches the prefix of a VFS path."""

    status_code = 403


class ReadOnlyError(VFSError):
    """Raised when a write is attempted against a read-only mountpoint."""

    status_code = 403


class PermissionDeniedError(VFSError):
    """Raised when the user's groups do not satisfy the mountpoint rules."""

    status_code = 403


class ValidationError(VFSError):
    """Raised on malformed input, e.g. a missing path field."""

    status_code = 400


class CapabilityNotSupportedError(VFSError):
    """Raised when an adapter doesn't implement a requested operation."""

    status_code = 400


class AdapterError(VFSError):
    """Wraps a native I/O failure raised inside a storage adapter.

    ``code`` holds the symbolic errno name (``"ENOENT"``, ``"EEXIST"`` ...)
    and decides the HTTP status through :data:`ERROR_CODES`.
    """

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.code = code

    @property
    def status_code(self) -> int:  # type: ignore[override]
        return ERROR_CODES.get(self.code or "", 400)

    @classmethod
    def from_os_error(cls, exc: OSError, path: str | None = None) -> AdapterError:
        code = errno.errorcode.get(exc.errno) if exc.errno is not None else None
        message = exc.strerror or str(exc)
        if code:
            message = f"{code}: {message}"
        if path:
            message = f"{message}, '{path}'"
        err = cls(message, code)
        err.__cause__ = exc
        return err


def status_for(exc: BaseException) -> int:
    """Map an exception to the HTTP status of the response."""
    if isinstance(exc, VFSError):
        return exc.status_code
    if isinstance(exc, OSError):
        return AdapterError.from_os_error(exc).status_code
    return 400


def error_payload(exc: BaseException, *, development: bool = False) -> dict[str, Any]:
    """Client-visible error body. Stack traces only in development mode."""
    payload: dict[str, Any] = {"error": str(exc)}
    if development:
        payload["stack"] = "".join(
            traceback.format_exception(type(exc), exc, exc.__traceback__)
        )
    return payload
