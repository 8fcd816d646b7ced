from __future__ import annotations

import threading
from typing import Any
from urllib.parse import quote

import httpx

from ingest_catalog.app.config import Settings
from ingest_catalog.app.errors import TransientStoreError


class CmrClient:
    def unpublish(self, granule: dict[str, Any]) -> dict[str, Any]:
        """Remove ``granule`` from CMR and return it marked unpublished."""
        raise NotImplementedError


def _unpublished(granule: dict[str, Any]) -> dict[str, Any]:
    return {**granule, "published": False, "cmrLink": None}


class RecordingCmrClient(CmrClient):
    def __init__(self, failing_granule_ids: set[str] | None = None) -> None:
        self.removed: list[str] = []
        self.failing_granule_ids = set(failing_granule_ids or ())
        self._lock = threading.Lock()

    def unpublish(self, granule: dict[str, Any]) -> dict[str, Any]:
        granule_id = granule["granuleId"]
        if granule_id in self.failing_granule_ids:
            raise RuntimeError(f"CMR rejected removal of {granule_id}")
        with self._lock:
            self.removed.append(granule_id)
        return _unpublished(granule)


class HttpCmrClient(CmrClient):
    def __init__(self, settings: Settings, client: httpx.Client | None = None) -> None:
        self._provider = settings.cmr_provider
        self._token = settings.cmr_token
        self._client = client or httpx.Client(base_url=settings.cmr_ingest_url.rstrip("/"), timeout=30.0)

    def unpublish(self, granule: dict[str, Any]) -> dict[str, Any]:
        path = f"/providers/{quote(self._provider, safe='')}/granules/{quote(granule['granuleId'], safe='')}"
        try:
            response = self._client.delete(path, headers={"Authorization": self._token})
        except httpx.TransportError as exc:
            raise TransientStoreError(f"CMR is unreachable: {exc}", {"store": "cmr"}) from exc
        # Already gone from CMR counts as removed.
        if response.status_code != 404:
            response.raise_for_status()
        return _unpublished(granule)
