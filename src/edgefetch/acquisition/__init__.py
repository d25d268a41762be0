"""
Model acquisition for edgefetch

Fetches model artifacts from a model hub into a local cache that is safe to
use offline:

- Reference normalisation (hub URLs, ``@revision``) and a static alias table
- Manifest inspection with declared sizes and LFS sha256 digests
- Quantization-variant and single-file selection heuristics
- Resumable, chunked streaming over ``requests`` with atomic commit
- Optional aria2c backend with fallback to in-process streaming
- Multi-file bundles (primary weights plus VAE / text encoder)
"""

from typing import TYPE_CHECKING

from .errors import (
    AcquisitionError,
    BundleIncompleteError,
    CommitError,
    DownloadCancelled,
    HashMismatchError,
    InvalidReferenceError,
    NotFoundError,
    SizeMismatchError,
    SystemDownloadError,
    TransientIOError,
    UnauthorizedError,
)

if TYPE_CHECKING:
    from .config import AcquisitionConfig  # pragma: no cover
    from .orchestrator import (  # pragma: no cover
        BundleResult,
        DownloadResult,
        ModelAcquirer,
    )
    from .registry import ModelRegistry  # pragma: no cover
    from .search import ModelSearch  # pragma: no cover


def __getattr__(name):
    if name in ("ModelAcquirer", "DownloadResult", "BundleResult"):
        from . import orchestrator as _orchestrator

        return getattr(_orchestrator, name)
    if name == "AcquisitionConfig":
        from .config import AcquisitionConfig as _CFG

        return _CFG
    if name == "ModelRegistry":
        from .registry import ModelRegistry as _MR

        return _MR
    if name == "ModelSearch":
        from .search import ModelSearch as _MS

        return _MS
    raise AttributeError(name)


__all__ = [
    "AcquisitionConfig",
    "BundleResult",
    "DownloadResult",
    "ModelAcquirer",
    "ModelRegistry",
    "ModelSearch",
    # errors
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
]
