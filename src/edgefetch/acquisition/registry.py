"""
Catalog of composite models ("bundles").

A bundle names a primary weights file plus optional auxiliary files, which
may live in other hub repositories. The JSON form is a list of records::

    [
      {
        "modelId": "Wan-AI/Wan2.1-T2V-1.3B-GGUF",
        "filename": "Wan2.1-T2V-1.3B-Q4_K_M.gguf",
        "quantization": "Q4_K_M",
        "t5ModelId": "city96/umt5-xxl-encoder-gguf",
        "t5Filename": "umt5-xxl-encoder-Q3_K_S.gguf",
        "vaeFilename": "wan_2.1_vae.safetensors",
        "sizeBytes": 1073741824,
        "family": "wan"
      }
    ]

The VAE is taken from the primary repository; the text encoder from
``t5ModelId`` (or the primary repository when only a filename is given).
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from .references import DEFAULT_REVISION

logger = logging.getLogger(__name__)

ROLE_VAE = "vae"
ROLE_TEXT_ENCODER = "text_encoder"

ROLE_EXTENSIONS: Mapping[str, Tuple[str, ...]] = MappingProxyType(
    {
        ROLE_VAE: (".safetensors", ".pt", ".gguf"),
        ROLE_TEXT_ENCODER: (".gguf", ".safetensors"),
    }
)


@dataclass(frozen=True)
class FileRef:
    """One file of a bundle. ``filename=None`` means "configured but unknown"."""

    model_id: str
    filename: Optional[str] = None
    revision: str = DEFAULT_REVISION


@dataclass(frozen=True)
class BundleDescriptor:
    identifier: str
    primary: FileRef
    auxiliary: Mapping[str, Optional[FileRef]] = field(
        default_factory=lambda: MappingProxyType({})
    )
    quantization: Optional[str] = None
    size_bytes: Optional[int] = None
    family: Optional[str] = None

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "BundleDescriptor":
        try:
            model_id = str(record["modelId"])
            filename = str(record["filename"])
        except KeyError as e:
            raise ValueError(
                f"Registry entry is missing {e.args[0]!r}: {record!r}"
            ) from e

        vae_filename = record.get("vaeFilename")
        t5_model_id = record.get("t5ModelId")
        t5_filename = record.get("t5Filename")

        auxiliary: Dict[str, Optional[FileRef]] = {
            ROLE_VAE: FileRef(model_id, vae_filename) if vae_filename else None,
            ROLE_TEXT_ENCODER: None,
        }
        if t5_model_id or t5_filename:
            auxiliary[ROLE_TEXT_ENCODER] = FileRef(t5_model_id or model_id, t5_filename)

        size = record.get("sizeBytes")
        return cls(
            identifier=model_id,
            primary=FileRef(
                model_id, filename, record.get("revision") or DEFAULT_REVISION
            ),
            auxiliary=MappingProxyType(auxiliary),
            quantization=record.get("quantization"),
            size_bytes=int(size) if size is not None else None,
            family=record.get("family"),
        )


def _default_entries() -> List[BundleDescriptor]:
    return [
        BundleDescriptor.from_record(
            {
                "modelId": "Wan-AI/Wan2.1-T2V-1.3B-GGUF",
                "filename": "Wan2.1-T2V-1.3B-Q4_K_M.gguf",
                "quantization": "Q4_K_M",
                "t5ModelId": "city96/umt5-xxl-encoder-gguf",
                "t5Filename": "umt5-xxl-encoder-Q3_K_S.gguf",
                "vaeFilename": "wan_2.1_vae.safetensors",
                "family": "wan",
            }
        )
    ]


class ModelRegistry:
    """Immutable bundle catalog, built once and passed to the acquirer."""

    def __init__(self, entries: Iterable[BundleDescriptor]):
        self._entries: Tuple[BundleDescriptor, ...] = tuple(entries)

    @classmethod
    def default(cls) -> "ModelRegistry":
        return cls(_default_entries())

    @classmethod
    def from_json(cls, path: Path) -> "ModelRegistry":
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, list):
            raise ValueError(f"Registry {path} must contain a JSON list")
        entries = [BundleDescriptor.from_record(record) for record in data]
        logger.info("Loaded %d bundle entries from %s", len(entries), path)
        return cls(entries)

    @property
    def entries(self) -> Tuple[BundleDescriptor, ...]:
        return self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def find(self, identifier: str) -> Optional[BundleDescriptor]:
        """Case-insensitive exact id, then prefix match on id or repo name.

        A leading ``<family>/`` qualifier (``wan/Wan2.1-T2V-1.3B``) is
        dropped before the prefix pass.
        """
        wanted = identifier.strip().lower()
        if not wanted:
            return None
        for entry in self._entries:
            if entry.identifier.lower() == wanted:
                return entry

        prefix = wanted
        for entry in self._entries:
            if entry.family and prefix.startswith(entry.family.lower() + "/"):
                prefix = prefix[len(entry.family) + 1 :]
                break

        for entry in self._entries:
            full = entry.identifier.lower()
            name = full.rsplit("/", 1)[-1]
            if full.startswith(prefix) or name.startswith(prefix):
                return entry
        return None


__all__ = [
    "BundleDescriptor",
    "FileRef",
    "ModelRegistry",
    "ROLE_EXTENSIONS",
    "ROLE_TEXT_ENCODER",
    "ROLE_VAE",
]
