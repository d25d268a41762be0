"""Cooperative cancellation shared by the transfer loops."""

from __future__ import annotations

import threading

from .errors import DownloadCancelled


class CancellationToken:
    """A one-way cancellation flag checked at chunk boundaries and poll ticks."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise DownloadCancelled("download cancelled")

    def wait(self, timeout: float) -> bool:
        """Sleep up to ``timeout`` seconds; return True early if cancelled."""
        return self._event.wait(timeout)


__all__ = ["CancellationToken"]
