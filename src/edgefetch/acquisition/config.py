"""
Configuration management for model acquisition.

Handles the cache root, hub endpoint, transfer tuning and the static alias
table, loaded from built-in defaults, a ``[tool.edgefetch]`` table in
pyproject.toml, and environment variables (highest precedence).
"""

from __future__ import annotations

import logging
import os
import platform
import tomllib
from dataclasses import dataclass, field, replace
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple

from .endpoints import DEFAULT_HUB_URL
from .references import DEFAULT_ALIASES, AliasTarget
from .selection import DEFAULT_VARIANT_PRIORITY, REPO_FILE_EXTENSIONS

logger = logging.getLogger(__name__)

_TRUE_VALUES = ("1", "true", "yes", "on")


def default_cache_root() -> Path:
    """Return the platform-specific model cache root."""
    if platform.system() == "Darwin":
        base = Path.home() / "Library" / "Caches"
    elif platform.system() == "Windows":
        local_app_data = os.environ.get("LOCALAPPDATA")
        base = Path(local_app_data) if local_app_data else Path.home() / ".cache"
    else:
        xdg_cache = os.environ.get("XDG_CACHE_HOME")
        base = Path(xdg_cache) if xdg_cache else Path.home() / ".cache"
    return base / "edgefetch" / "models"


@dataclass(frozen=True)
class AcquisitionConfig:
    """Immutable settings handed to :class:`ModelAcquirer`."""

    cache_root: Path = field(default_factory=default_cache_root)
    hub_url: str = DEFAULT_HUB_URL
    token: Optional[str] = field(default=None, repr=False)

    # Transfer settings
    chunk_size: int = 8192
    connect_timeout: float = 30.0
    read_timeout: float = 60.0
    poll_interval: float = 0.5

    # Selection defaults
    variant_priority: Tuple[str, ...] = DEFAULT_VARIANT_PRIORITY
    repo_file_extensions: Tuple[str, ...] = REPO_FILE_EXTENSIONS

    # System (aria2c) backend
    prefer_system_backend: bool = False
    aria2c_path: str = "aria2c"
    max_connections_per_server: int = 4

    registry_path: Optional[Path] = None
    aliases: Mapping[str, AliasTarget] = field(
        default_factory=lambda: MappingProxyType(dict(DEFAULT_ALIASES))
    )

    @property
    def timeout(self) -> Tuple[float, float]:
        """``(connect, read)`` timeout tuple in the form requests expects."""
        return (self.connect_timeout, self.read_timeout)

    @classmethod
    def from_pyproject(
        cls,
        pyproject_path: Optional[Path] = None,
        *,
        base: Optional["AcquisitionConfig"] = None,
    ) -> "AcquisitionConfig":
        """Load configuration from the ``[tool.edgefetch]`` table."""
        if pyproject_path is None:
            pyproject_path = Path.cwd() / "pyproject.toml"

        config = base or cls()
        if not pyproject_path.exists():
            return config

        try:
            with open(pyproject_path, "rb") as f:
                data = tomllib.load(f)
        except (OSError, tomllib.TOMLDecodeError) as e:
            logger.warning("Could not load config from %s: %s", pyproject_path, e)
            return config

        section = data.get("tool", {}).get("edgefetch", {})
        return config.with_overrides(section)

    @classmethod
    def from_env(
        cls, *, base: Optional["AcquisitionConfig"] = None
    ) -> "AcquisitionConfig":
        """Load configuration from environment variables."""
        config = base or cls()
        overrides: Dict[str, Any] = {}

        if os.environ.get("EDGEFETCH_CACHE_ROOT"):
            overrides["cache_root"] = os.environ["EDGEFETCH_CACHE_ROOT"]
        if os.environ.get("EDGEFETCH_HUB_URL"):
            overrides["hub_url"] = os.environ["EDGEFETCH_HUB_URL"]
        if os.environ.get("EDGEFETCH_REGISTRY"):
            overrides["registry_path"] = os.environ["EDGEFETCH_REGISTRY"]
        if "EDGEFETCH_PREFER_SYSTEM" in os.environ:
            overrides["prefer_system_backend"] = (
                os.environ["EDGEFETCH_PREFER_SYSTEM"].strip().lower() in _TRUE_VALUES
            )

        token = os.environ.get("EDGEFETCH_TOKEN") or os.environ.get("HF_TOKEN")
        if token and token.strip():
            overrides["token"] = token.strip()

        return config.with_overrides(overrides)

    def with_overrides(self, values: Mapping[str, Any]) -> "AcquisitionConfig":
        """Return a copy with recognised keys from ``values`` applied."""
        changes: Dict[str, Any] = {}
        for key, value in values.items():
            if key in ("cache_root", "registry_path"):
                changes[key] = Path(str(value)).expanduser() if value else None
            elif key in ("variant_priority", "repo_file_extensions"):
                changes[key] = tuple(str(item) for item in value)
            elif key == "aliases":
                merged = dict(self.aliases)
                for alias, target in dict(value).items():
                    merged[alias.strip().lower()] = AliasTarget.coerce(target)
                changes[key] = MappingProxyType(merged)
            elif key in (
                "hub_url",
                "token",
                "aria2c_path",
            ):
                changes[key] = str(value)
            elif key in ("chunk_size", "max_connections_per_server"):
                changes[key] = int(value)
            elif key in ("connect_timeout", "read_timeout", "poll_interval"):
                changes[key] = float(value)
            elif key == "prefer_system_backend":
                changes[key] = bool(value)
            else:
                logger.warning("Ignoring unknown edgefetch setting %r", key)
        if changes.get("cache_root", self.cache_root) is None:
            changes["cache_root"] = default_cache_root()
        return replace(self, **changes)


# Global config instance
_config_instance: Optional[AcquisitionConfig] = None


def get_config() -> AcquisitionConfig:
    """Get the process-wide configuration used by the CLI."""
    global _config_instance
    if _config_instance is None:
        _config_instance = AcquisitionConfig.from_env(
            base=AcquisitionConfig.from_pyproject()
        )
    return _config_instance


def set_config(config: Optional[AcquisitionConfig]) -> None:
    """Set (or with ``None`` reset) the process-wide configuration."""
    global _config_instance
    _config_instance = config


__all__ = [
    "AcquisitionConfig",
    "DEFAULT_HUB_URL",
    "default_cache_root",
    "get_config",
    "set_config",
]
