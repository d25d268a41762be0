"""Centralised logging utilities for edgefetch."""

from __future__ import annotations

import logging
import os
import platform
from pathlib import Path
from typing import Optional

__all__ = ["configure_logging", "default_log_directory"]

_MANAGED_HANDLER_FLAG = "_edgefetch_managed_handler"


def _user_cache_directory() -> Path:
    if platform.system() == "Darwin":
        return Path.home() / "Library" / "Caches"
    if platform.system() == "Windows":
        local_app_data = os.environ.get("LOCALAPPDATA")
        if local_app_data:
            return Path(local_app_data)
    xdg_cache = os.environ.get("XDG_CACHE_HOME")
    if xdg_cache:
        return Path(xdg_cache)
    return Path.home() / ".cache"


def default_log_directory() -> Path:
    """Return the directory edgefetch writes its log files to."""

    env_override = os.environ.get("EDGEFETCH_LOG_DIR")
    if env_override:
        return Path(env_override).expanduser()
    return _user_cache_directory() / "edgefetch" / "logs"


def _remove_managed_handlers(logger: logging.Logger) -> None:
    """Detach any handlers previously installed by :func:`configure_logging`."""

    for handler in list(logger.handlers):
        if getattr(handler, _MANAGED_HANDLER_FLAG, False):
            logger.removeHandler(handler)
            handler.close()


def configure_logging(
    log_name: str,
    *,
    level: int = logging.INFO,
    log_dir: Optional[Path] = None,
    include_console: bool = True,
) -> Path:
    """Route root logging to ``<log_dir>/<log_name>.log`` (and stderr if asked).

    Calling this again replaces the handlers installed by the previous call,
    so switching log files never duplicates records.
    """

    target_directory = (
        Path(log_dir).expanduser() if log_dir else default_log_directory()
    )
    target_directory.mkdir(parents=True, exist_ok=True)
    log_path = target_directory / f"{log_name}.log"

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    _remove_managed_handlers(root_logger)

    formatter = logging.Formatter(
        fmt="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    file_handler = logging.FileHandler(log_path, encoding="utf-8")
    file_handler.setLevel(level)
    file_handler.setFormatter(formatter)
    setattr(file_handler, _MANAGED_HANDLER_FLAG, True)
    root_logger.addHandler(file_handler)

    if include_console:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(logging.WARNING if level < logging.WARNING else level)
        console_handler.setFormatter(formatter)
        setattr(console_handler, _MANAGED_HANDLER_FLAG, True)
        root_logger.addHandler(console_handler)

    logging.captureWarnings(True)

    return log_path
