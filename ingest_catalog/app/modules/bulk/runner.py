"""Runs one operation over many granules with bounded concurrency.

Each item gets its own session and its own outcome. A failing item never
cancels the others; only a failure to reach the catalog at all, checked
before any item starts, aborts the run.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

import structlog
from sqlalchemy import text
from sqlalchemy.orm import Session, sessionmaker

from ingest_catalog.app.services.retry import RetryConfig, RetryPolicy


logger = structlog.get_logger(__name__)

ResolvedT = TypeVar("ResolvedT")


@dataclass(frozen=True)
class GranuleRef:
    granule_id: str
    collection_id: str | None = None

    @classmethod
    def parse(cls, item: Any) -> "GranuleRef":
        if isinstance(item, str):
            return cls(granule_id=item)
        return cls(granule_id=item["granuleId"], collection_id=item.get("collectionId"))


@dataclass
class ItemOutcome:
    granule_id: str
    collection_id: str | None
    ok: bool
    error: str | None = None
    result: Any = None

    def as_output(self) -> Any:
        if self.ok:
            return self.granule_id
        return {"granuleId": self.granule_id, "err": self.error}


class BulkOperationRunner(Generic[ResolvedT]):
    def __init__(
        self,
        session_factory: sessionmaker[Session],
        retry: RetryPolicy | None = None,
        concurrency: int = 10,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self._session_factory = session_factory
        self._retry = retry or RetryPolicy(RetryConfig.no_retry())
        self.concurrency = concurrency

    def _check_catalog(self) -> None:
        def ping() -> None:
            with self._session_factory() as db:
                db.execute(text("SELECT 1"))

        self._retry.call(ping, description="bulk.connect")

    def run(
        self,
        items: Sequence[GranuleRef],
        resolve: Callable[[Session, GranuleRef], ResolvedT],
        operation: Callable[[Session, GranuleRef, ResolvedT], Any],
    ) -> list[ItemOutcome]:
        """Resolve and process every item; outcomes keep the input order."""
        self._check_catalog()
        if not items:
            return []
        workers = min(self.concurrency, len(items))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="bulk") as pool:
            futures = [pool.submit(self._run_item, item, resolve, operation) for item in items]
            return [future.result() for future in futures]

    def _run_item(
        self,
        item: GranuleRef,
        resolve: Callable[[Session, GranuleRef], ResolvedT],
        operation: Callable[[Session, GranuleRef, ResolvedT], Any],
    ) -> ItemOutcome:
        try:
            with self._session_factory() as db:
                resolved = self._retry.call(lambda: resolve(db, item), description="bulk.resolve")
                result = operation(db, item, resolved)
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "bulk_item_failed",
                granule_id=item.granule_id,
                collection_id=item.collection_id,
                error=repr(exc),
            )
            return ItemOutcome(item.granule_id, item.collection_id, ok=False, error=str(exc) or repr(exc))
        return ItemOutcome(item.granule_id, item.collection_id, ok=True, result=result)
