from __future__ import annotations

import copy
import threading
from typing import Any
from urllib.parse import quote

import httpx

from ingest_catalog.app.config import Settings
from ingest_catalog.app.errors import TransientStoreError


class SearchIndex:
    def get(self, doc_type: str, doc_id: str) -> dict[str, Any] | None:
        raise NotImplementedError

    def index(self, doc_type: str, doc_id: str, document: dict[str, Any]) -> None:
        raise NotImplementedError

    def delete(self, doc_type: str, doc_id: str) -> None:
        raise NotImplementedError

    def exists(self, doc_type: str, doc_id: str) -> bool:
        return self.get(doc_type, doc_id) is not None


class InMemorySearchIndex(SearchIndex):
    def __init__(self) -> None:
        self._documents: dict[tuple[str, str], dict[str, Any]] = {}
        self._lock = threading.Lock()

    def get(self, doc_type: str, doc_id: str) -> dict[str, Any] | None:
        with self._lock:
            document = self._documents.get((doc_type, doc_id))
            return copy.deepcopy(document) if document is not None else None

    def index(self, doc_type: str, doc_id: str, document: dict[str, Any]) -> None:
        with self._lock:
            self._documents[(doc_type, doc_id)] = copy.deepcopy(document)

    def delete(self, doc_type: str, doc_id: str) -> None:
        with self._lock:
            self._documents.pop((doc_type, doc_id), None)

    def documents(self, doc_type: str) -> list[dict[str, Any]]:
        with self._lock:
            return [copy.deepcopy(doc) for (kind, _), doc in self._documents.items() if kind == doc_type]


class HttpSearchIndex(SearchIndex):
    """Elasticsearch-compatible document API, one index per document type."""

    def __init__(self, settings: Settings, client: httpx.Client | None = None) -> None:
        self._index = settings.search_index
        self._client = client or httpx.Client(
            base_url=settings.search_url.rstrip("/"),
            timeout=settings.search_timeout_seconds,
        )

    def _path(self, doc_type: str, doc_id: str) -> str:
        return f"/{self._index}-{doc_type}/_doc/{quote(doc_id, safe='')}"

    def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            response = self._client.request(method, path, **kwargs)
        except httpx.TransportError as exc:
            raise TransientStoreError(f"search index is unreachable: {exc}", {"store": "search index"}) from exc
        if response.status_code >= 500 or response.status_code == 429:
            raise TransientStoreError(
                f"search index returned {response.status_code}",
                {"store": "search index", "status_code": response.status_code},
            )
        return response

    def get(self, doc_type: str, doc_id: str) -> dict[str, Any] | None:
        response = self._request("GET", self._path(doc_type, doc_id))
        if response.status_code == 404:
            return None
        response.raise_for_status()
        return response.json().get("_source")

    def index(self, doc_type: str, doc_id: str, document: dict[str, Any]) -> None:
        response = self._request(
            "PUT",
            self._path(doc_type, doc_id),
            params={"refresh": "true"},
            json=document,
        )
        response.raise_for_status()

    def delete(self, doc_type: str, doc_id: str) -> None:
        response = self._request("DELETE", self._path(doc_type, doc_id), params={"refresh": "true"})
        if response.status_code == 404:
            return
        response.raise_for_status()
