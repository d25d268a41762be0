"""Hub model search and model metadata lookups."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import requests

from .endpoints import HubEndpoints
from .errors import TransientIOError, error_for_status
from .manifest import auth_headers, truncated_body

logger = logging.getLogger(__name__)

SORT_DOWNLOADS = "downloads"
SORT_AUTHOR = "author"
SORT_NONE = ""

DESCENDING = -1
ASCENDING = 1


@dataclass(frozen=True)
class ModelSummary:
    """One hit from the model listing endpoint."""

    model_id: str
    author: Optional[str] = None
    downloads: int = 0
    likes: int = 0
    private: bool = False
    tags: Tuple[str, ...] = ()
    created_at: Optional[str] = None
    last_modified: Optional[str] = None

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "ModelSummary":
        model_id = data.get("id") or data.get("modelId") or ""
        author = data.get("author")
        if not author and "/" in model_id:
            author = model_id.split("/", 1)[0]
        return cls(
            model_id=model_id,
            author=author,
            downloads=int(data.get("downloads") or 0),
            likes=int(data.get("likes") or 0),
            private=bool(data.get("private", False)),
            tags=tuple(data.get("tags") or ()),
            created_at=data.get("createdAt"),
            last_modified=data.get("lastModified"),
        )


@dataclass(frozen=True)
class ModelInfo(ModelSummary):
    disabled: bool = False
    gated: bool = False
    sha: Optional[str] = None
    files: Tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "ModelInfo":
        summary = ModelSummary.from_json(data)
        siblings = data.get("siblings") or []
        return cls(
            **asdict(summary),
            disabled=bool(data.get("disabled", False)),
            gated=bool(data.get("gated")),
            sha=data.get("sha"),
            files=tuple(
                s.get("rfilename", "") for s in siblings if isinstance(s, dict)
            ),
        )


class ModelSearch:
    """Query the hub's model listing with ``Link``-header pagination.

    The first :meth:`search` call builds the query; :meth:`next_page`
    follows the ``rel="next"`` link of the previous response until the hub
    stops sending one.
    """

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        endpoints: Optional[HubEndpoints] = None,
        timeout: Any = 30,
    ):
        self.session = session or requests.Session()
        self.endpoints = endpoints or HubEndpoints()
        self.timeout = timeout
        self._next_page_url: Optional[str] = None

    @property
    def has_next_page(self) -> bool:
        return self._next_page_url is not None

    def reset_pagination(self) -> None:
        self._next_page_url = None

    def search(
        self,
        query: str,
        *,
        author: Optional[str] = None,
        filter: Optional[str] = "text-generation",
        sort: str = SORT_DOWNLOADS,
        direction: int = DESCENDING,
        limit: int = 10,
        full: bool = True,
        config: bool = True,
    ) -> List[ModelSummary]:
        """Start a new search (pagination state is reset)."""
        params: Dict[str, Any] = {
            "search": query,
            "direction": str(direction),
            "limit": str(limit),
            "full": str(full).lower(),
            "config": str(config).lower(),
        }
        if author:
            params["author"] = author
        if filter:
            params["filter"] = filter
        if sort:
            params["sort"] = sort

        self.reset_pagination()
        return self._get_page(self.endpoints.search_url(), params)

    def next_page(self) -> List[ModelSummary]:
        if self._next_page_url is None:
            return []
        return self._get_page(self._next_page_url, None)

    def _get_page(
        self, url: str, params: Optional[Dict[str, Any]]
    ) -> List[ModelSummary]:
        try:
            response = self.session.get(url, params=params, timeout=self.timeout)
        except requests.RequestException as e:
            raise TransientIOError(f"Model search failed: {e}") from e

        try:
            if not 200 <= response.status_code < 300:
                logger.warning(
                    "Model search returned HTTP %s: %s",
                    response.status_code,
                    truncated_body(response),
                )
                self._next_page_url = None
                return []
            self._next_page_url = response.links.get("next", {}).get("url")
            try:
                payload = response.json()
            except ValueError as e:
                raise TransientIOError(f"Malformed search response: {e}") from e
        finally:
            response.close()

        if not isinstance(payload, list):
            raise TransientIOError("Malformed search response: expected a list")
        return [
            ModelSummary.from_json(item) for item in payload if isinstance(item, dict)
        ]

    def model_info(self, model_id: str, token: Optional[str] = None) -> ModelInfo:
        url = self.endpoints.manifest_url(model_id)
        try:
            response = self.session.get(
                url, headers=auth_headers(token), timeout=self.timeout
            )
        except requests.RequestException as e:
            raise TransientIOError(f"Model info request failed: {e}") from e

        try:
            if not 200 <= response.status_code < 300:
                raise error_for_status(
                    response.status_code,
                    f"Model '{model_id}' not found or unavailable "
                    f"(HTTP {response.status_code})",
                )
            try:
                payload = response.json()
            except ValueError as e:
                raise TransientIOError(
                    f"Malformed model info for {model_id}: {e}"
                ) from e
        finally:
            response.close()
        return ModelInfo.from_json(payload)


__all__ = [
    "ASCENDING",
    "DESCENDING",
    "ModelInfo",
    "ModelSearch",
    "ModelSummary",
    "SORT_AUTHOR",
    "SORT_DOWNLOADS",
    "SORT_NONE",
]
