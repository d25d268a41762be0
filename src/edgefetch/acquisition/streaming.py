"""
In-process resumable HTTP transfer.

State flow for one target::

    IDLE -> REQUESTING -> FRESH | RESUMING -> STREAMING -> VERIFYING
         -> COMMITTED | FAILED

A non-empty ``<name>.part`` file is resumed with ``Range: bytes=<offset>-``.
A ``206`` reply is appended; a ``200`` reply to a ranged request means the
server ignored the range, so the stale partial file is discarded and the
body written from byte zero. A ``416`` means the partial file cannot be
resumed; it is deleted and the file requested again in full. The body is
consumed in ``chunk_size`` pieces.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any, Dict, Optional

import requests

from .base import (
    DownloadBackend,
    DownloadState,
    DownloadTarget,
    ProgressCallback,
    discard_temporary,
    finalize_download,
)
from .cancellation import CancellationToken
from .errors import DownloadCancelled, TransientIOError, error_for_status
from .manifest import auth_headers, truncated_body

logger = logging.getLogger(__name__)

_CONTENT_RANGE = re.compile(r"^\s*bytes\s+(\d+)-(\d+)?/(\d+|\*)\s*$", re.IGNORECASE)


def parse_content_range(value: Optional[str]) -> Optional[tuple]:
    """Return ``(start, total_or_None)`` from a ``Content-Range`` header."""
    if not value:
        return None
    match = _CONTENT_RANGE.match(value)
    if not match:
        return None
    total = match.group(3)
    return int(match.group(1)), (int(total) if total != "*" else None)


def _content_length(response: requests.Response) -> Optional[int]:
    value = response.headers.get("Content-Length")
    try:
        return int(value) if value is not None else None
    except ValueError:
        return None


class StreamingDownloader(DownloadBackend):
    """Stream a file over a shared :class:`requests.Session`."""

    name = "streaming"

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        *,
        chunk_size: int = 8192,
        timeout: Any = (30.0, 60.0),
    ):
        self.session = session or requests.Session()
        self.chunk_size = chunk_size
        self.timeout = timeout

    def fetch(
        self,
        target: DownloadTarget,
        *,
        token: Optional[str] = None,
        progress: Optional[ProgressCallback] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> Path:
        target.destination_path.parent.mkdir(parents=True, exist_ok=True)

        headers = auth_headers(token)
        target.resume_offset_bytes = 0
        if target.temporary_path.exists():
            existing = target.temporary_path.stat().st_size
            if existing > 0:
                target.resume_offset_bytes = existing
                headers["Range"] = f"bytes={existing}-"

        target.state = DownloadState.REQUESTING
        response = self._request(target, headers)
        if response.status_code == 416 and target.resume_offset_bytes > 0:
            # The partial file is at or past the end of the remote object.
            response.close()
            logger.info(
                "Server rejected resume of %s at byte %d; restarting from zero",
                target.destination_path.name,
                target.resume_offset_bytes,
            )
            discard_temporary(target)
            target.resume_offset_bytes = 0
            headers.pop("Range", None)
            response = self._request(target, headers)

        try:
            return self._consume(target, response, progress, cancel_token)
        finally:
            response.close()

    def _request(
        self, target: DownloadTarget, headers: Dict[str, str]
    ) -> requests.Response:
        logger.debug(
            "GET %s (offset %d)", target.source_url, target.resume_offset_bytes
        )
        try:
            return self.session.get(
                target.source_url,
                headers=headers,
                stream=True,
                timeout=self.timeout,
                allow_redirects=True,
            )
        except requests.RequestException as e:
            target.state = DownloadState.FAILED
            raise TransientIOError(
                f"Request for {target.source_url} failed: {e}"
            ) from e

    def _consume(
        self,
        target: DownloadTarget,
        response: requests.Response,
        progress: Optional[ProgressCallback],
        cancel_token: Optional[CancellationToken],
    ) -> Path:
        status = response.status_code
        if not 200 <= status < 300:
            target.state = DownloadState.FAILED
            detail = truncated_body(response)
            name = target.destination_path.name
            message = f"Download of {name} failed with HTTP {status}"
            if detail:
                message = f"{message}: {detail}"
            raise error_for_status(status, message)

        offset = target.resume_offset_bytes
        total = target.expected_size
        if offset > 0 and status == 206:
            content_range = parse_content_range(response.headers.get("Content-Range"))
            if content_range is not None and content_range[0] != offset:
                target.state = DownloadState.FAILED
                discard_temporary(target)
                raise TransientIOError(
                    f"Server resumed {target.destination_path.name} at byte "
                    f"{content_range[0]}, expected {offset}"
                )
            if total is None and content_range is not None:
                total = content_range[1]
            target.state = DownloadState.RESUMING
            mode = "ab"
        else:
            if offset > 0:
                logger.info(
                    "Server ignored range request for %s; restarting from zero",
                    target.destination_path.name,
                )
                discard_temporary(target)
                offset = 0
                target.resume_offset_bytes = 0
            target.state = DownloadState.FRESH
            mode = "wb"

        if total is None:
            length = _content_length(response)
            if length is not None:
                total = offset + length

        target.bytes_written = offset
        target.state = DownloadState.STREAMING
        try:
            with target.temporary_path.open(mode) as out:
                for chunk in response.iter_content(chunk_size=self.chunk_size):
                    if cancel_token is not None:
                        cancel_token.raise_if_cancelled()
                    if not chunk:
                        continue
                    out.write(chunk)
                    target.bytes_written += len(chunk)
                    if progress is not None:
                        progress(target.bytes_written, total)
        except (DownloadCancelled, MemoryError):
            target.state = DownloadState.FAILED
            discard_temporary(target)
            raise
        except (OSError, requests.RequestException) as e:
            target.state = DownloadState.FAILED
            discard_temporary(target)
            raise TransientIOError(
                f"Transfer of {target.destination_path.name} interrupted: {e}"
            ) from e
        except BaseException:
            # Errors raised by the progress callback end the transfer too.
            target.state = DownloadState.FAILED
            discard_temporary(target)
            raise

        return finalize_download(target)


__all__ = ["DownloadState", "StreamingDownloader", "parse_content_range"]
