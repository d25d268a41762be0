"""Canonical hub URLs.

Each path segment (owner, repository, revision, file path component) is
percent-encoded on its own; ``/`` between segments is kept as the
structural delimiter.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional
from urllib.parse import quote

DEFAULT_HUB_URL = "https://huggingface.co"


def encode_segment(segment: str) -> str:
    """Percent-encode a single path segment (spaces become ``%20``)."""
    return quote(segment, safe="")


def encode_path(path: str) -> str:
    return "/".join(encode_segment(part) for part in path.strip("/").split("/"))


@dataclass(frozen=True)
class HubEndpoints:
    base_url: str = DEFAULT_HUB_URL

    @property
    def _root(self) -> str:
        return self.base_url.rstrip("/")

    @property
    def api_models_url(self) -> str:
        return f"{self._root}/api/models"

    def search_url(self) -> str:
        return self.api_models_url

    def manifest_url(self, model_id: str, revision: Optional[str] = None) -> str:
        """Model spec endpoint whose ``siblings`` list every file of the repo.

        The default branch is served by the bare endpoint; any other revision
        goes through ``/revision/<rev>``.
        """
        url = f"{self.api_models_url}/{encode_path(model_id)}"
        if revision and revision != "main":
            url = f"{url}/revision/{encode_segment(revision)}"
        return url

    def file_url(self, model_id: str, revision: str, path: str) -> str:
        return (
            f"{self._root}/{encode_path(model_id)}/resolve/"
            f"{encode_segment(revision)}/{encode_path(path)}"
        )


__all__ = ["DEFAULT_HUB_URL", "HubEndpoints", "encode_path", "encode_segment"]
