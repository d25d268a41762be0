"""Local cache layout and validity checks.

Cache Directory Structure::

    <cache_root>/
      <owner>--<name>/
        <revision>/
          model-Q4_K_M.gguf
          model-Q4_K_M.gguf.part      (only while a transfer is in flight)

A declared hash is authoritative for validity; otherwise (or when the hash
cannot be computed) the declared size decides; with neither, any non-empty
file is accepted.
"""

from __future__ import annotations

import hashlib
import logging
import shutil
from pathlib import Path
from typing import List, Optional, Tuple, Union

from .errors import HashMismatchError, InvalidReferenceError, SizeMismatchError
from .manifest import ContentHash

logger = logging.getLogger(__name__)

HASH_CHUNK_SIZE = 1024 * 1024
PARTIAL_SUFFIX = ".part"
_SEPARATOR_REPLACEMENT = "--"

ExpectedHash = Union[ContentHash, str, None]


def sanitize_model_id(model_id: str) -> str:
    """Flatten a hub id into a single directory name.

    ``/`` and ``\\`` are replaced by ``--`` so the id can never escape its
    directory under the cache root.
    """
    flattened = model_id.strip().strip("/\\")
    flattened = flattened.replace("/", _SEPARATOR_REPLACEMENT).replace(
        "\\", _SEPARATOR_REPLACEMENT
    )
    if flattened in ("", ".", ".."):
        raise InvalidReferenceError(
            f"Cannot derive a cache directory from {model_id!r}"
        )
    return flattened


def partial_path_for(destination: Path) -> Path:
    return destination.with_name(destination.name + PARTIAL_SUFFIX)


def normalize_expected_hash(expected: ExpectedHash) -> Optional[Tuple[str, str]]:
    """Return ``(algorithm, lowercase hex)`` or None when nothing is declared.

    A bare hex digest is assumed to be sha256; ``"sha256:ABC…"`` style
    prefixes are honoured.
    """
    if expected is None:
        return None
    if isinstance(expected, ContentHash):
        return expected.algorithm.lower(), expected.hex_digest.strip().lower()
    value = str(expected).strip()
    if not value:
        return None
    algorithm, sep, digest = value.partition(":")
    if not sep:
        return "sha256", value.lower()
    return algorithm.strip().lower() or "sha256", digest.strip().lower()


def compute_file_hash(
    path: Path, algorithm: str = "sha256", chunk_size: int = HASH_CHUNK_SIZE
) -> str:
    h = hashlib.new(algorithm)
    with path.open("rb") as f:
        while True:
            chunk = f.read(chunk_size)
            if not chunk:
                break
            h.update(chunk)
    return h.hexdigest()


def hash_matches(path: Path, expected: ExpectedHash) -> bool:
    normalized = normalize_expected_hash(expected)
    if normalized is None:
        return True
    algorithm, digest = normalized
    return compute_file_hash(path, algorithm) == digest


def check_cached_file(
    path: Path,
    expected_size: Optional[int] = None,
    expected_hash: ExpectedHash = None,
) -> Tuple[bool, bool]:
    """Return ``(valid, hash_verified)`` for an existing local file.

    A hash that cannot be computed (unknown algorithm, unreadable file)
    falls back to the size rule, as :func:`verify_file` does after a
    download.
    """
    if not path.is_file():
        return False, False

    if normalize_expected_hash(expected_hash) is not None:
        try:
            matched = hash_matches(path, expected_hash)
        except (OSError, ValueError) as e:
            logger.warning(
                "Could not hash cached file %s (%s); checking size only", path, e
            )
        else:
            return matched, matched

    actual_size = path.stat().st_size
    if expected_size is not None:
        return actual_size == expected_size, False
    return actual_size > 0, False


def is_valid(
    path: Path,
    expected_size: Optional[int] = None,
    expected_hash: ExpectedHash = None,
) -> bool:
    """Decide whether an existing local file already satisfies the manifest."""
    return check_cached_file(path, expected_size, expected_hash)[0]


def verify_file(
    path: Path,
    expected_size: Optional[int] = None,
    expected_hash: ExpectedHash = None,
    *,
    label: Optional[str] = None,
) -> bool:
    """Check a freshly downloaded file; raise on a definite mismatch.

    Returns True when a declared hash was checked and matched, False when no
    hash was declared or it could not be computed (a warning is logged and
    the size check stands).
    """
    name = label or path.name
    actual_size = path.stat().st_size
    if expected_size is not None and expected_size > 0 and actual_size != expected_size:
        raise SizeMismatchError(
            f"Downloaded file size mismatch for {name} "
            f"(expected {expected_size}, got {actual_size})",
            path=path,
            expected=expected_size,
            actual=actual_size,
        )

    normalized = normalize_expected_hash(expected_hash)
    if normalized is None:
        return False
    algorithm, digest = normalized
    try:
        actual = compute_file_hash(path, algorithm)
    except (OSError, ValueError) as e:
        logger.warning(
            "Could not verify %s hash of %s (%s); keeping size-checked file",
            algorithm,
            name,
            e,
        )
        return False
    if actual != digest:
        raise HashMismatchError(
            f"Downloaded file {algorithm} mismatch for {name}",
            path=path,
            expected=digest,
            actual=actual,
        )
    return True


class CacheLayout:
    """Paths under the cache root, keyed by sanitized id and revision."""

    def __init__(self, cache_root: Path):
        self.cache_root = Path(cache_root).expanduser()

    def model_dir(self, model_id: str) -> Path:
        return self.cache_root / sanitize_model_id(model_id)

    def revision_dir(self, model_id: str, revision: str) -> Path:
        return self.model_dir(model_id) / sanitize_model_id(revision)

    def destination(self, model_id: str, revision: str, relative_path: str) -> Path:
        filename = relative_path.replace("\\", "/").rsplit("/", 1)[-1]
        if filename in ("", ".", ".."):
            raise InvalidReferenceError(
                f"Invalid file name in manifest: {relative_path!r}"
            )
        return self.revision_dir(model_id, revision) / filename

    def list_cached_models(self) -> List[Path]:
        if not self.cache_root.is_dir():
            return []
        return sorted(p for p in self.cache_root.iterdir() if p.is_dir())

    def clear(self) -> None:
        if self.cache_root.exists():
            shutil.rmtree(self.cache_root)
            logger.info("Cleared model cache at %s", self.cache_root)


__all__ = [
    "CacheLayout",
    "PARTIAL_SUFFIX",
    "check_cached_file",
    "compute_file_hash",
    "hash_matches",
    "is_valid",
    "normalize_expected_hash",
    "partial_path_for",
    "sanitize_model_id",
    "verify_file",
]
