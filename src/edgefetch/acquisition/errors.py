"""Exception taxonomy for model acquisition.

Every failure raised by the engine derives from :class:`AcquisitionError`
except :class:`DownloadCancelled` (a cooperative stop, not an application
error) and :class:`MemoryError`, which is re-raised untouched after the
partial file has been removed.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Union


class AcquisitionError(Exception):
    """Base exception for model acquisition errors."""

    code = "E_ACQUIRE"

    def __init__(self, message: str, *, status: Optional[int] = None):
        self.message = message
        self.status = status
        super().__init__(message)


class NotFoundError(AcquisitionError):
    """No manifest for the model, or no manifest entry matching the request."""

    code = "E_NOT_FOUND"


class UnauthorizedError(AcquisitionError):
    """The hub refused the request (401/403)."""

    code = "E_UNAUTHORIZED"


class InvalidReferenceError(AcquisitionError):
    """The model reference cannot be resolved to a hub repository."""

    code = "E_INVALID_REFERENCE"


class TransientIOError(AcquisitionError):
    """Network or disk failure; the caller may retry."""

    code = "E_IO"


class CommitError(TransientIOError):
    """The verified temporary file could not be moved into place."""

    code = "E_COMMIT"


class SystemDownloadError(AcquisitionError):
    """The OS-managed download job reported a failure."""

    code = "E_SYSTEM_DOWNLOAD"

    def __init__(self, message: str, *, reason: Optional[int] = None):
        self.reason = reason
        super().__init__(message)


class _IntegrityError(AcquisitionError):
    def __init__(
        self,
        message: str,
        *,
        path: Union[str, Path],
        expected: Union[int, str, None],
        actual: Union[int, str, None],
    ):
        self.path = str(path)
        self.expected = expected
        self.actual = actual
        super().__init__(message)


class SizeMismatchError(_IntegrityError):
    code = "E_SIZE_MISMATCH"


class HashMismatchError(_IntegrityError):
    code = "E_HASH_MISMATCH"


class BundleIncompleteError(AcquisitionError):
    """A required auxiliary file of a bundle could not be resolved."""

    code = "E_BUNDLE_INCOMPLETE"

    def __init__(self, message: str, *, role: str):
        self.role = role
        super().__init__(message)


class DownloadCancelled(Exception):
    """Raised when a transfer stops because its cancellation token fired."""


def error_for_status(status: int, message: str) -> AcquisitionError:
    """Map an unsuccessful HTTP status onto the error taxonomy."""

    if status == 404:
        return NotFoundError(message, status=status)
    if status in (401, 403):
        return UnauthorizedError(message, status=status)
    return TransientIOError(message, status=status)


__all__ = [
    "AcquisitionError",
    "BundleIncompleteError",
    "CommitError",
    "DownloadCancelled",
    "HashMismatchError",
    "InvalidReferenceError",
    "NotFoundError",
    "SizeMismatchError",
    "SystemDownloadError",
    "TransientIOError",
    "UnauthorizedError",
    "error_for_status",
]
