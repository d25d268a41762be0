"""
Remote manifest inspection.

Retrieves the file listing (paths, sizes, content hashes) for a model
revision from the hub and normalises it into :class:`RemoteFileEntry`
records.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

import requests

from .endpoints import HubEndpoints
from .errors import TransientIOError, error_for_status

logger = logging.getLogger(__name__)

_ERROR_BODY_LIMIT = 256


class EntryKind(Enum):
    FILE = "file"
    DIRECTORY = "directory"
    UNSPECIFIED = "unspecified"

    @classmethod
    def parse(cls, value: Optional[str]) -> "EntryKind":
        if value is None:
            return cls.UNSPECIFIED
        lowered = str(value).lower()
        if lowered == "file":
            return cls.FILE
        if lowered in ("directory", "dir"):
            return cls.DIRECTORY
        return cls.UNSPECIFIED


@dataclass(frozen=True)
class ContentHash:
    """Declared digest of a file, e.g. ``sha256`` + hex."""

    algorithm: str
    hex_digest: str

    def __str__(self) -> str:
        return f"{self.algorithm}:{self.hex_digest}"


@dataclass(frozen=True)
class RemoteFileEntry:
    relative_path: str
    size_bytes: Optional[int] = None
    content_hash: Optional[ContentHash] = None
    entry_kind: EntryKind = EntryKind.UNSPECIFIED

    @property
    def is_file(self) -> bool:
        # The model spec listing omits ``type`` for ordinary files.
        return self.entry_kind in (EntryKind.FILE, EntryKind.UNSPECIFIED)

    @property
    def filename(self) -> str:
        return self.relative_path.rsplit("/", 1)[-1]


def _as_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def parse_entry(data: Dict[str, Any]) -> Optional[RemoteFileEntry]:
    """Build an entry from one listing record (``siblings`` or tree form)."""
    path = data.get("rfilename") or data.get("path")
    if not path:
        return None

    size = _as_int(data.get("size"))
    content_hash: Optional[ContentHash] = None
    lfs = data.get("lfs")
    if isinstance(lfs, dict):
        lfs_size = _as_int(lfs.get("size"))
        if lfs_size is not None:
            size = lfs_size
        digest = lfs.get("sha256") or lfs.get("oid")
        if digest:
            algorithm = str(lfs.get("hashAlgorithm") or "sha256").lower()
            content_hash = ContentHash(algorithm, str(digest).lower())

    return RemoteFileEntry(
        relative_path=str(path),
        size_bytes=size,
        content_hash=content_hash,
        entry_kind=EntryKind.parse(data.get("type")),
    )


def parse_manifest(payload: Any) -> List[RemoteFileEntry]:
    """Normalise a model-spec (``{"siblings": [...]}``) or tree (``[...]``) payload."""
    if isinstance(payload, dict):
        records: Iterable[Any] = payload.get("siblings") or []
    elif isinstance(payload, list):
        records = payload
    else:
        raise TransientIOError(
            f"Unexpected manifest payload type: {type(payload).__name__}"
        )

    entries: List[RemoteFileEntry] = []
    for record in records:
        if not isinstance(record, dict):
            continue
        entry = parse_entry(record)
        if entry is not None:
            entries.append(entry)
    return entries


def auth_headers(token: Optional[str]) -> Dict[str, str]:
    return {"Authorization": f"Bearer {token}"} if token else {}


def truncated_body(response: requests.Response, limit: int = _ERROR_BODY_LIMIT) -> str:
    try:
        text = response.text or ""
    except (requests.RequestException, UnicodeDecodeError):
        return ""
    text = text.strip()
    return text if len(text) <= limit else text[:limit] + "…"


class ManifestFetcher:
    """Fetch the remote file listing for a model revision."""

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        endpoints: Optional[HubEndpoints] = None,
        timeout: Any = 30,
    ):
        self.session = session or requests.Session()
        self.endpoints = endpoints or HubEndpoints()
        self.timeout = timeout

    def fetch(
        self, model_id: str, revision: str = "main", token: Optional[str] = None
    ) -> List[RemoteFileEntry]:
        url = self.endpoints.manifest_url(model_id, revision)
        logger.debug("Fetching manifest %s", url)
        try:
            response = self.session.get(
                url,
                params={"blobs": "true"},
                headers=auth_headers(token),
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise TransientIOError(
                f"Could not fetch manifest for {model_id}: {e}"
            ) from e

        try:
            if not 200 <= response.status_code < 300:
                detail = truncated_body(response)
                message = (
                    f"Manifest request for '{model_id}' (revision '{revision}') "
                    f"failed with HTTP {response.status_code}"
                )
                if detail:
                    message = f"{message}: {detail}"
                raise error_for_status(response.status_code, message)
            try:
                payload = response.json()
            except ValueError as e:
                raise TransientIOError(f"Malformed manifest for {model_id}: {e}") from e
        finally:
            response.close()

        entries = parse_manifest(payload)
        logger.info(
            "Manifest for %s@%s lists %d entries", model_id, revision, len(entries)
        )
        return entries


__all__ = [
    "ContentHash",
    "EntryKind",
    "ManifestFetcher",
    "RemoteFileEntry",
    "auth_headers",
    "parse_entry",
    "parse_manifest",
    "truncated_body",
]
