"""Manifest entry selection.

Two heuristics, used by different acquisition modes:

* :func:`select_quantized` picks one weight file among quantization
  variants and falls back to the *smallest* declared file.
* :func:`select_repository_file` picks a single artifact (VAE, encoder,
  checkpoint) and falls back to the *largest* file with an allowed
  extension.

Both honour an explicit filename first: exact case-insensitive path match,
then case-insensitive suffix match.
"""

from __future__ import annotations

import logging
import re
import sys
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple

from .manifest import RemoteFileEntry

logger = logging.getLogger(__name__)

DEFAULT_VARIANT_PRIORITY: Tuple[str, ...] = (
    "Q4_K_M",
    "Q4_K",
    "Q4_K_S",
    "Q4_0",
    "Q3_K_L",
    "Q5_K_S",
    "Q3_K_M",
    "Q5_K_M",
    "Q3_K_S",
    "Q2_K",
    "Q5_K",
    "Q5_0",
    "Q8_0",
    ".gguf",
)

QUANTIZED_EXTENSIONS: Tuple[str, ...] = (".gguf",)
REPO_FILE_EXTENSIONS: Tuple[str, ...] = (
    ".safetensors",
    ".pt",
    ".ckpt",
    ".gguf",
    ".bin",
)

_VARIANT_TOKEN = re.compile(
    r"^(q\d(?:_[01]|_k(?:_[sml])?)?|iq\d_[a-z]+"
    r"|int4|int8|fp16|f16|bf16|fp32|f32|fp8|nf4)$",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class SelectionCriteria:
    explicit_filename: Optional[str] = None
    ordered_variant_tokens: Tuple[str, ...] = ()
    allowed_extensions: Tuple[str, ...] = QUANTIZED_EXTENSIONS
    # Bundles must not silently substitute a different file for a named one.
    require_explicit_match: bool = False

    @classmethod
    def build(
        cls,
        filename: Optional[str] = None,
        variants: Optional[Sequence[str]] = None,
        extensions: Optional[Sequence[str]] = None,
        *,
        strict: bool = False,
    ) -> "SelectionCriteria":
        return cls(
            explicit_filename=filename or None,
            ordered_variant_tokens=tuple(variants or ()),
            allowed_extensions=tuple(extensions or QUANTIZED_EXTENSIONS),
            require_explicit_match=strict,
        )


def detect_variant(path: str) -> Optional[str]:
    """Return the quantization label embedded in a file name, if any.

    ``models/m-Q4_K_M.gguf`` -> ``"Q4_K_M"``.
    """
    stem = path.rsplit("/", 1)[-1]
    for token in reversed(re.split(r"[-.]", stem)):
        if _VARIANT_TOKEN.match(token):
            return token.upper()
    return None


def _has_extension(entry: RemoteFileEntry, extensions: Iterable[str]) -> bool:
    path = entry.relative_path.lower()
    return any(path.endswith(ext.lower()) for ext in extensions)


def match_filename(
    entries: Sequence[RemoteFileEntry], filename: str
) -> Optional[RemoteFileEntry]:
    """Exact case-insensitive path match first, then suffix match."""
    wanted = filename.strip().lower()
    if not wanted:
        return None
    for entry in entries:
        if entry.relative_path.lower() == wanted:
            return entry
    for entry in entries:
        if entry.relative_path.lower().endswith(wanted):
            return entry
    return None


def _files(entries: Iterable[RemoteFileEntry]) -> List[RemoteFileEntry]:
    return [entry for entry in entries if entry.is_file]


def select_quantized(
    entries: Sequence[RemoteFileEntry], criteria: SelectionCriteria
) -> Optional[RemoteFileEntry]:
    candidates = [
        entry
        for entry in _files(entries)
        if _has_extension(entry, criteria.allowed_extensions)
    ]
    if not candidates:
        return None

    if criteria.explicit_filename:
        match = match_filename(candidates, criteria.explicit_filename)
        if match is not None or criteria.require_explicit_match:
            return match
        logger.info(
            "No file named %s; falling back to variant priority",
            criteria.explicit_filename,
        )

    for token in criteria.ordered_variant_tokens:
        lowered = token.lower()
        for entry in candidates:
            if lowered in entry.relative_path.lower():
                return entry

    # Entries without a declared size sort last so a known-small file wins.
    return min(
        candidates,
        key=lambda e: e.size_bytes if e.size_bytes is not None else sys.maxsize,
    )


def select_repository_file(
    entries: Sequence[RemoteFileEntry], criteria: SelectionCriteria
) -> Optional[RemoteFileEntry]:
    files = _files(entries)

    if criteria.explicit_filename:
        match = match_filename(files, criteria.explicit_filename)
        if match is not None or criteria.require_explicit_match:
            return match

    candidates = [
        entry for entry in files if _has_extension(entry, criteria.allowed_extensions)
    ]
    if not candidates:
        return None
    return max(candidates, key=lambda e: e.size_bytes or 0)


__all__ = [
    "DEFAULT_VARIANT_PRIORITY",
    "QUANTIZED_EXTENSIONS",
    "REPO_FILE_EXTENSIONS",
    "SelectionCriteria",
    "detect_variant",
    "match_filename",
    "select_quantized",
    "select_repository_file",
]
