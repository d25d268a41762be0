"""
In-process stand-ins for the hub.

:class:`FakeSession` replaces ``requests.Session`` and serves canned
manifests and byte bodies, honouring, ignoring or rejecting ``Range``.
"""

import hashlib
import json
import re
import threading
from typing import Any, Dict, List, Optional

from requests.structures import CaseInsensitiveDict

from edgefetch.acquisition.endpoints import HubEndpoints

HUB = "https://hub.test"
ENDPOINTS = HubEndpoints(HUB)

_RANGE = re.compile(r"bytes=(\d+)-")


class FakeResponse:
    """Minimal stand-in for :class:`requests.Response`."""

    def __init__(
        self,
        status_code: int = 200,
        body: bytes = b"",
        *,
        json_data: Any = None,
        headers: Optional[Dict[str, str]] = None,
        links: Optional[Dict[str, Dict[str, str]]] = None,
        chunk_size: Optional[int] = None,
        error: Optional[BaseException] = None,
        error_after: int = 1,
    ):
        self.status_code = status_code
        if json_data is not None:
            body = json.dumps(json_data).encode("utf-8")
        self.content = body
        self.headers = CaseInsensitiveDict(headers or {})
        self.links = links or {}
        self._chunk_size = chunk_size
        self._error = error
        self._error_after = error_after
        self.closed = False

    @property
    def text(self) -> str:
        return self.content.decode("utf-8", errors="replace")

    def json(self):
        return json.loads(self.content.decode("utf-8"))

    def iter_content(self, chunk_size: int = 1):
        size = self._chunk_size or chunk_size
        emitted = 0
        for start in range(0, len(self.content), size):
            if self._error is not None and emitted >= self._error_after:
                raise self._error
            yield self.content[start : start + size]
            emitted += 1
        if self._error is not None:
            raise self._error

    def close(self) -> None:
        self.closed = True


class FakeSession:
    """Route table keyed by exact URL; records every request."""

    def __init__(self):
        self.routes: Dict[str, Any] = {}
        self.calls: List[Dict[str, Any]] = []
        self._lock = threading.Lock()

    def get(self, url, params=None, headers=None, stream=False, timeout=None, **kwargs):
        with self._lock:
            self.calls.append(
                {"url": url, "params": params, "headers": dict(headers or {})}
            )
        route = self.routes.get(url)
        if route is None:
            return FakeResponse(404, b"Entry not found")
        if callable(route):
            return route(url, headers or {})
        return route

    # -- route helpers ------------------------------------------------------

    def add_response(self, url: str, response: FakeResponse) -> None:
        self.routes[url] = response

    def add_manifest(self, model_id: str, files, revision: str = "main") -> None:
        siblings = []
        for item in files:
            record = {"rfilename": item["path"]}
            if "size" in item:
                record["size"] = item["size"]
            if "sha256" in item:
                record["lfs"] = {"sha256": item["sha256"], "size": item.get("size")}
                if "algorithm" in item:
                    record["lfs"]["hashAlgorithm"] = item["algorithm"]
            siblings.append(record)
        payload = {"id": model_id, "siblings": siblings}
        self.routes[ENDPOINTS.manifest_url(model_id, revision)] = (
            lambda url, headers: FakeResponse(200, json_data=payload)
        )

    def add_file(
        self,
        model_id: str,
        path: str,
        body: bytes,
        *,
        revision: str = "main",
        honor_range: bool = True,
        reject_range: bool = False,
        error: Optional[BaseException] = None,
        chunk_size: Optional[int] = None,
    ) -> str:
        url = ENDPOINTS.file_url(model_id, revision, path)

        def handler(_url, headers):
            match = _RANGE.match(headers.get("Range", ""))
            if match and reject_range:
                return FakeResponse(
                    416,
                    b"Requested Range Not Satisfiable",
                    headers={"Content-Range": f"bytes */{len(body)}"},
                )
            if match and honor_range:
                start = int(match.group(1))
                return FakeResponse(
                    206,
                    body[start:],
                    headers={
                        "Content-Range": f"bytes {start}-{len(body) - 1}/{len(body)}",
                        "Content-Length": str(len(body) - start),
                    },
                    error=error,
                    chunk_size=chunk_size,
                )
            return FakeResponse(
                200,
                body,
                headers={"Content-Length": str(len(body))},
                error=error,
                chunk_size=chunk_size,
            )

        self.routes[url] = handler
        return url

    def requests_to(self, url: str) -> List[Dict[str, Any]]:
        return [call for call in self.calls if call["url"] == url]


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()
