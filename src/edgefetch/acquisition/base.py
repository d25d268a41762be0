"""Download backend strategy and the shared verify-then-commit step."""

from __future__ import annotations

import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

from .cache import ExpectedHash, verify_file
from .cancellation import CancellationToken
from .errors import CommitError

logger = logging.getLogger(__name__)

# (bytes_so_far, total_bytes_or_None)
ProgressCallback = Callable[[int, Optional[int]], None]


class DownloadState(Enum):
    IDLE = "idle"
    REQUESTING = "requesting"
    FRESH = "fresh"
    RESUMING = "resuming"
    STREAMING = "streaming"
    VERIFYING = "verifying"
    COMMITTED = "committed"
    FAILED = "failed"


@dataclass
class DownloadTarget:
    """One in-flight transfer; mutated as bytes arrive."""

    source_url: str
    destination_path: Path
    temporary_path: Path
    expected_size: Optional[int] = None
    expected_hash: ExpectedHash = None
    resume_offset_bytes: int = 0
    bytes_written: int = 0
    state: DownloadState = DownloadState.IDLE
    hash_verified: bool = False


def discard_temporary(target: DownloadTarget) -> None:
    try:
        target.temporary_path.unlink()
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning("Could not remove partial file %s: %s", target.temporary_path, e)


def finalize_download(target: DownloadTarget) -> Path:
    """Verify the temp file against the manifest and rename it into place.

    Size and hash mismatches delete the temp file and raise. Only a file
    that passed verification is ever renamed to its final name.
    """
    target.state = DownloadState.VERIFYING
    try:
        target.hash_verified = verify_file(
            target.temporary_path,
            target.expected_size,
            target.expected_hash,
            label=target.destination_path.name,
        )
    except BaseException:
        target.state = DownloadState.FAILED
        discard_temporary(target)
        raise

    try:
        os.replace(target.temporary_path, target.destination_path)
    except OSError as e:
        target.state = DownloadState.FAILED
        discard_temporary(target)
        raise CommitError(
            f"Could not move {target.temporary_path} to {target.destination_path}: {e}"
        ) from e

    target.state = DownloadState.COMMITTED
    logger.info("Committed %s", target.destination_path)
    return target.destination_path


class DownloadBackend(ABC):
    """A way of moving bytes from ``source_url`` to the destination path.

    Implementations write into ``target.temporary_path`` and finish through
    :func:`finalize_download`, so every backend shares one result contract.
    """

    name: str = "backend"

    def is_available(self) -> bool:
        return True

    @abstractmethod
    def fetch(
        self,
        target: DownloadTarget,
        *,
        token: Optional[str] = None,
        progress: Optional[ProgressCallback] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> Path:
        """Transfer, verify and commit ``target``; return the final path."""


__all__ = [
    "DownloadBackend",
    "DownloadState",
    "DownloadTarget",
    "ProgressCallback",
    "discard_temporary",
    "finalize_download",
]
