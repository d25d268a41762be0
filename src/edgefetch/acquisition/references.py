"""Model reference normalisation and alias resolution.

Accepts the forms users actually paste:

* ``owner/repo`` and ``owner/repo@revision``
* ``https://huggingface.co/owner/repo`` (optionally ``/tree/<revision>``)
* ``hf.co/owner/repo``, ``hf://owner/repo`` and ``.git`` clone URLs

Case is folded for alias lookup only; the resolved id keeps the caller's
casing unless an alias substitutes it.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Mapping, Optional, Tuple

from .errors import InvalidReferenceError

DEFAULT_REVISION = "main"

_URL_PREFIX = re.compile(
    r"^(?:hf://|(?:https?://)?(?:www\.)?(?:huggingface\.co|hf\.co)/)", re.IGNORECASE
)
_TREE_SUFFIX = re.compile(r"^(?P<repo>[^/]+/[^/]+)/tree/(?P<revision>.+)$")
_SEGMENT = re.compile(r"^[\w.-]+$")


@dataclass(frozen=True)
class AliasTarget:
    """Canonical id (and optionally pinned revision) for a renamed model."""

    model_id: str
    revision: Optional[str] = None

    @classmethod
    def coerce(cls, value: Any) -> "AliasTarget":
        if isinstance(value, AliasTarget):
            return value
        if isinstance(value, str):
            return cls(model_id=value)
        if isinstance(value, Mapping):
            return cls(model_id=str(value["model_id"]), revision=value.get("revision"))
        raise TypeError(f"Unsupported alias target: {value!r}")


@dataclass(frozen=True)
class ModelReference:
    requested_id: str
    requested_revision: str
    resolved_id: str
    resolved_revision: str
    alias_applied: bool = False


DEFAULT_ALIASES: Mapping[str, AliasTarget] = MappingProxyType(
    {
        "smollm2-135m-instruct": AliasTarget("bartowski/SmolLM2-135M-Instruct-GGUF"),
        "whisper.cpp": AliasTarget("ggerganov/whisper.cpp"),
        "umt5-xxl-encoder": AliasTarget("city96/umt5-xxl-encoder-gguf"),
        "wan2.1-t2v-1.3b": AliasTarget("Wan-AI/Wan2.1-T2V-1.3B-GGUF"),
        "wan/wan2.1-t2v-1.3b": AliasTarget("Wan-AI/Wan2.1-T2V-1.3B-GGUF"),
    }
)


def normalize_reference(raw_id: str) -> Tuple[str, Optional[str]]:
    """Strip URL prefixes and clone suffixes; return ``(model_id, revision)``.

    ``revision`` is only set when the reference itself carried one
    (``@rev`` or ``/tree/rev``).
    """
    value = (raw_id or "").strip()
    value = _URL_PREFIX.sub("", value)
    value = value.split("#", 1)[0].split("?", 1)[0].strip("/")
    if value.lower().endswith(".git"):
        value = value[: -len(".git")]

    revision: Optional[str] = None
    tree = _TREE_SUFFIX.match(value)
    if tree:
        value, revision = tree.group("repo"), tree.group("revision").strip("/")
    elif "@" in value:
        value, _, revision = value.partition("@")
        revision = revision.strip() or None
    return value.strip("/"), revision


class ReferenceResolver:
    """Resolve user references against a static, read-only alias table."""

    def __init__(self, aliases: Optional[Mapping[str, AliasTarget]] = None):
        table = DEFAULT_ALIASES if aliases is None else aliases
        self._aliases: Mapping[str, AliasTarget] = MappingProxyType(
            {key.strip().lower(): AliasTarget.coerce(val) for key, val in table.items()}
        )

    @property
    def aliases(self) -> Mapping[str, AliasTarget]:
        return self._aliases

    def resolve(
        self, raw_id: str, revision: Optional[str] = DEFAULT_REVISION
    ) -> ModelReference:
        requested_revision = revision or DEFAULT_REVISION
        model_id, embedded_revision = normalize_reference(raw_id)
        if not model_id:
            raise InvalidReferenceError(f"Empty model reference: {raw_id!r}")

        resolved_revision = embedded_revision or requested_revision
        alias = self._aliases.get(model_id.lower())
        if alias is not None:
            return ModelReference(
                requested_id=raw_id,
                requested_revision=requested_revision,
                resolved_id=alias.model_id,
                resolved_revision=alias.revision or resolved_revision,
                alias_applied=True,
            )

        segments = model_id.split("/")
        if len(segments) not in (1, 2) or not all(
            _SEGMENT.match(s) and s not in (".", "..") for s in segments
        ):
            raise InvalidReferenceError(
                f"Model reference {raw_id!r} is not of the form 'owner/name' "
                "(or a bare root model name) and matches no known alias"
            )

        return ModelReference(
            requested_id=raw_id,
            requested_revision=requested_revision,
            resolved_id=model_id,
            resolved_revision=resolved_revision,
        )


__all__ = [
    "AliasTarget",
    "DEFAULT_ALIASES",
    "DEFAULT_REVISION",
    "ModelReference",
    "ReferenceResolver",
    "normalize_reference",
]
