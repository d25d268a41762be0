"""
OS-level download backend driven by aria2c.

The bridge hands the transfer to an ``aria2c`` child process and polls it
at a fixed interval until it exits. The job is described through an aria2
input file so an ``Authorization`` header never shows up in the process
list. aria2c writes into the same ``<name>.part`` path the streaming
backend uses, so an interrupted transfer can be resumed by either backend.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import tempfile
import time
from enum import Enum
from pathlib import Path
from typing import Any, Callable, List, Optional

from .base import (
    DownloadBackend,
    DownloadState,
    DownloadTarget,
    ProgressCallback,
    discard_temporary,
    finalize_download,
)
from .cancellation import CancellationToken
from .errors import DownloadCancelled, SystemDownloadError

logger = logging.getLogger(__name__)

_TERMINATE_GRACE_SECONDS = 5.0


class JobStatus(Enum):
    RUNNING = "running"
    SUCCESSFUL = "successful"
    FAILED = "failed"


def _control_file(path: Path) -> Path:
    return path.with_name(path.name + ".aria2")


def _remove_quietly(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning("Could not remove %s: %s", path, e)


class SystemDownloadJob:
    """Handle on one enqueued aria2c transfer."""

    def __init__(self, process: Any, target: DownloadTarget, input_file: Path):
        self.process = process
        self.target = target
        self.input_file = input_file

    @property
    def reason(self) -> Optional[int]:
        return self.process.returncode

    def status(self) -> JobStatus:
        code = self.process.poll()
        if code is None:
            return JobStatus.RUNNING
        return JobStatus.SUCCESSFUL if code == 0 else JobStatus.FAILED

    def downloaded_bytes(self) -> int:
        try:
            return self.target.temporary_path.stat().st_size
        except OSError:
            return 0

    def close(self) -> None:
        _remove_quietly(self.input_file)
        _remove_quietly(_control_file(self.target.temporary_path))

    def revoke(self) -> None:
        """Stop the child process and delete everything it wrote."""
        if self.process.poll() is None:
            self.process.terminate()
            try:
                self.process.wait(timeout=_TERMINATE_GRACE_SECONDS)
            except subprocess.TimeoutExpired:
                logger.warning("aria2c did not exit after terminate; killing it")
                self.process.kill()
                self.process.wait()
        self.close()
        discard_temporary(self.target)


class SystemDownloadBridge(DownloadBackend):
    """Run transfers through aria2c and map its lifecycle onto ours."""

    name = "aria2c"

    def __init__(
        self,
        executable: str = "aria2c",
        *,
        poll_interval: float = 0.5,
        max_connections: int = 4,
        popen: Callable[..., Any] = subprocess.Popen,
        sleep: Callable[[float], None] = time.sleep,
        which: Callable[[str], Optional[str]] = shutil.which,
    ):
        self.executable = executable
        self.poll_interval = poll_interval
        self.max_connections = max_connections
        self._popen = popen
        self._sleep = sleep
        self._which = which

    def is_available(self) -> bool:
        return self._which(self.executable) is not None

    def _write_input_file(self, target: DownloadTarget, token: Optional[str]) -> Path:
        with tempfile.NamedTemporaryFile(
            mode="w", suffix=".aria2-input", delete=False, encoding="utf-8"
        ) as f:
            f.write(f"{target.source_url}\n")
            f.write(f"  out={target.temporary_path.name}\n")
            if token:
                f.write(f"  header=Authorization: Bearer {token}\n")
            input_file = Path(f.name)
        os.chmod(input_file, 0o600)
        return input_file

    def build_command(self, target: DownloadTarget, input_file: Path) -> List[str]:
        return [
            self.executable,
            "--input-file",
            str(input_file),
            "--dir",
            str(target.temporary_path.parent),
            "--max-connection-per-server",
            str(self.max_connections),
            "--split",
            str(self.max_connections),
            "--continue=true",
            "--auto-file-renaming=false",
            "--allow-overwrite=true",
            "--summary-interval",
            "0",
            "--console-log-level",
            "warn",
        ]

    def enqueue(
        self, target: DownloadTarget, token: Optional[str] = None
    ) -> SystemDownloadJob:
        input_file = self._write_input_file(target, token)
        command = self.build_command(target, input_file)
        try:
            process = self._popen(
                command,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                cwd=str(target.temporary_path.parent),
            )
        except OSError as e:
            _remove_quietly(input_file)
            raise SystemDownloadError(f"Could not start {self.executable}: {e}") from e
        logger.info("Started %s for %s", self.executable, target.destination_path.name)
        return SystemDownloadJob(process, target, input_file)

    def _wait(self, cancel_token: Optional[CancellationToken]) -> None:
        if cancel_token is not None:
            cancel_token.wait(self.poll_interval)
        else:
            self._sleep(self.poll_interval)

    def fetch(
        self,
        target: DownloadTarget,
        *,
        token: Optional[str] = None,
        progress: Optional[ProgressCallback] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> Path:
        target.destination_path.parent.mkdir(parents=True, exist_ok=True)
        target.state = DownloadState.REQUESTING
        job = self.enqueue(target, token)
        target.state = DownloadState.STREAMING

        try:
            while True:
                if cancel_token is not None and cancel_token.cancelled:
                    raise DownloadCancelled("download cancelled")

                status = job.status()
                target.bytes_written = job.downloaded_bytes()
                if progress is not None:
                    progress(target.bytes_written, target.expected_size)

                if status is JobStatus.SUCCESSFUL:
                    break
                if status is JobStatus.FAILED:
                    raise SystemDownloadError(
                        f"{self.executable} failed for {target.destination_path.name} "
                        f"(exit code {job.reason})",
                        reason=job.reason,
                    )
                self._wait(cancel_token)
        except BaseException:
            target.state = DownloadState.FAILED
            job.revoke()
            raise

        job.close()
        return finalize_download(target)


__all__ = ["JobStatus", "SystemDownloadBridge", "SystemDownloadJob"]
