"""Keeps the catalog, the legacy store and the search index in step for one
logical entity change.

Writes go catalog -> legacy store -> search index inside a single catalog
transaction that is committed last. A failure at any step undoes the steps
before it: the catalog by rolling back, the legacy store and the index by
projecting whatever the catalog holds once the rollback is done (or removing
the item when the catalog holds nothing). The original error is then
re-raised.

Deletes follow the same order. Because the catalog delete is only committed
after the other two stores succeed, a failure part way leaves the entity in
every store it was in.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import structlog
from sqlalchemy.orm import Session

from ingest_catalog.app.db.models import TERMINAL_STATUSES
from ingest_catalog.app.db.session import catalog_transaction
from ingest_catalog.app.modules.consistency.saga import Saga
from ingest_catalog.app.services.broadcast import Broadcaster
from ingest_catalog.app.services.legacy_store import LegacyStore
from ingest_catalog.app.services.retry import RetryPolicy
from ingest_catalog.app.services.search_index import SearchIndex


logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class EntityBinding:
    name: str
    legacy_table: str
    index_type: str
    topic_arn: str = ""
    publish_statuses: frozenset[str] = TERMINAL_STATUSES


@dataclass(frozen=True)
class EntityIdentity:
    legacy_key: dict[str, Any]
    index_id: str


@dataclass
class CatalogChange:
    row: Any
    record: dict[str, Any]
    # False when the catalog kept its current state; projections are left alone.
    project: bool = True


@dataclass
class WriteResult:
    row: Any
    record: dict[str, Any]
    applied: bool
    published: bool = False
    publish_error: str | None = None
    steps: list[str] = field(default_factory=list)


@dataclass
class DeleteResult:
    removed_from: list[str]
    steps: list[str] = field(default_factory=list)
    found: bool = True


class ConsistencyCoordinator:
    def __init__(
        self,
        legacy_store: LegacyStore,
        search_index: SearchIndex,
        broadcaster: Broadcaster,
        retry: RetryPolicy,
        statement_timeout_ms: int = 30000,
    ) -> None:
        self.legacy_store = legacy_store
        self.search_index = search_index
        self.broadcaster = broadcaster
        self.retry = retry
        self.statement_timeout_ms = statement_timeout_ms

    # Legacy store and index calls, each retried on transient failure.

    def _legacy_get(self, binding: EntityBinding, identity: EntityIdentity) -> dict[str, Any] | None:
        return self.retry.call(
            lambda: self.legacy_store.get(binding.legacy_table, identity.legacy_key),
            description=f"{binding.name}.legacy_get",
        )

    def _legacy_put(self, binding: EntityBinding, identity: EntityIdentity, item: dict[str, Any]) -> None:
        self.retry.call(
            lambda: self.legacy_store.put(binding.legacy_table, identity.legacy_key, item),
            description=f"{binding.name}.legacy_put",
        )

    def _legacy_delete(self, binding: EntityBinding, identity: EntityIdentity) -> None:
        self.retry.call(
            lambda: self.legacy_store.delete(binding.legacy_table, identity.legacy_key),
            description=f"{binding.name}.legacy_delete",
        )

    def _index_get(self, binding: EntityBinding, identity: EntityIdentity) -> dict[str, Any] | None:
        return self.retry.call(
            lambda: self.search_index.get(binding.index_type, identity.index_id),
            description=f"{binding.name}.index_get",
        )

    def _index_put(self, binding: EntityBinding, identity: EntityIdentity, document: dict[str, Any]) -> None:
        self.retry.call(
            lambda: self.search_index.index(binding.index_type, identity.index_id, document),
            description=f"{binding.name}.index_put",
        )

    def _index_delete(self, binding: EntityBinding, identity: EntityIdentity) -> None:
        self.retry.call(
            lambda: self.search_index.delete(binding.index_type, identity.index_id),
            description=f"{binding.name}.index_delete",
        )

    def _restore_legacy(self, binding: EntityBinding, identity: EntityIdentity, image: dict[str, Any] | None) -> None:
        if image is None:
            self._legacy_delete(binding, identity)
        else:
            self._legacy_put(binding, identity, image)

    def _restore_index(self, binding: EntityBinding, identity: EntityIdentity, image: dict[str, Any] | None) -> None:
        if image is None:
            self._index_delete(binding, identity)
        else:
            self._index_put(binding, identity, image)

    def _catalog_state_after_rollback(
        self, db: Session, committed_record: Callable[[], dict[str, Any] | None]
    ) -> Callable[[], dict[str, Any] | None]:
        restored: dict[str, dict[str, Any] | None] = {}

        def catalog_state() -> dict[str, Any] | None:
            # Another writer may have committed since this change began.
            if "record" not in restored:
                db.rollback()
                restored["record"] = committed_record()
            return restored["record"]

        return catalog_state

    def write(
        self,
        db: Session,
        binding: EntityBinding,
        identity: EntityIdentity,
        catalog_write: Callable[[], CatalogChange],
        committed_record: Callable[[], dict[str, Any] | None],
    ) -> WriteResult:
        """Apply ``catalog_write`` and project its record to the other stores.

        ``catalog_write`` runs inside the catalog transaction and must not
        commit; it returns the written row and its translated record.
        ``committed_record`` reads the entity's committed catalog record, or
        None when there is no row. It is only called after a rollback, to
        restore the legacy store and the index.
        """
        with catalog_transaction(db, self.statement_timeout_ms):
            change: dict[str, CatalogChange] = {}
            catalog_state = self._catalog_state_after_rollback(db, committed_record)

            def write_catalog() -> None:
                change["value"] = catalog_write()

            def write_legacy() -> None:
                if change["value"].project:
                    self._legacy_put(binding, identity, change["value"].record)

            def undo_legacy() -> None:
                if change["value"].project:
                    self._restore_legacy(binding, identity, catalog_state())

            def write_index() -> None:
                if change["value"].project:
                    self._index_put(binding, identity, change["value"].record)

            def undo_index() -> None:
                if change["value"].project:
                    self._restore_index(binding, identity, catalog_state())

            saga = (
                Saga(f"{binding.name}_write")
                .step("catalog", write_catalog, db.rollback)
                .step("legacy_store", write_legacy, undo_legacy)
                .step("search_index", write_index, undo_index)
                .step("catalog_commit", db.commit)
            )
            outcome = saga.run()

        result = WriteResult(
            row=change["value"].row,
            record=change["value"].record,
            applied=change["value"].project,
            steps=outcome.completed,
        )
        if result.applied:
            self._publish(binding, identity, result)
        return result

    def _publish(self, binding: EntityBinding, identity: EntityIdentity, result: WriteResult) -> None:
        if not binding.topic_arn or result.record.get("status") not in binding.publish_statuses:
            return
        try:
            self.retry.call(
                lambda: self.broadcaster.publish(binding.topic_arn, result.record),
                description=f"{binding.name}.publish",
            )
        except Exception as exc:  # noqa: BLE001
            # The stores are already consistent; report instead of rolling back.
            logger.error(
                "broadcast_failed",
                entity=binding.name,
                topic_arn=binding.topic_arn,
                document_id=identity.index_id,
                error=repr(exc),
            )
            result.publish_error = str(exc) or repr(exc)
            return
        result.published = True

    def delete(
        self,
        db: Session,
        binding: EntityBinding,
        identity: EntityIdentity,
        catalog_exists: Callable[[], bool],
        catalog_delete: Callable[[], int],
        committed_record: Callable[[], dict[str, Any] | None],
    ) -> DeleteResult:
        """Remove the entity from every store that holds it.

        When no store holds the entity nothing beyond the existence checks
        runs, and the result comes back with ``found`` set to False. On
        failure an entity held by the catalog is restored from its committed
        catalog record; one held only by the other stores gets their copies
        back.
        """
        with catalog_transaction(db, self.statement_timeout_ms):
            in_catalog = catalog_exists()
            legacy_before = self._legacy_get(binding, identity)
            index_before = self._index_get(binding, identity)
            if not in_catalog and legacy_before is None and index_before is None:
                return DeleteResult(removed_from=[], found=False)

            catalog_state = self._catalog_state_after_rollback(db, committed_record)
            legacy_image = lambda: catalog_state() if in_catalog else legacy_before  # noqa: E731
            index_image = lambda: catalog_state() if in_catalog else index_before  # noqa: E731

            removed_from: list[str] = []
            saga = Saga(f"{binding.name}_delete")
            if in_catalog:
                saga.step("catalog", catalog_delete, db.rollback)
                removed_from.append("catalog")
            if legacy_before is not None:
                saga.step(
                    "legacy_store",
                    lambda: self._legacy_delete(binding, identity),
                    lambda: self._restore_legacy(binding, identity, legacy_image()),
                )
                removed_from.append("legacy_store")
            if index_before is not None:
                saga.step(
                    "search_index",
                    lambda: self._index_delete(binding, identity),
                    lambda: self._restore_index(binding, identity, index_image()),
                )
                removed_from.append("search_index")
            saga.step("catalog_commit", db.commit)
            outcome = saga.run()

        return DeleteResult(removed_from=removed_from, steps=outcome.completed)
