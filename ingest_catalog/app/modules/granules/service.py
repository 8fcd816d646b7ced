from __future__ import annotations

from typing import Any

from sqlalchemy.orm import Session

from ingest_catalog.app.db.catalog_models import CatalogModels
from ingest_catalog.app.db.models import Granule, now_utc
from ingest_catalog.app.errors import DeletePublishedGranuleError, NotFoundError, ValidationError
from ingest_catalog.app.modules.consistency.coordinator import (
    CatalogChange,
    ConsistencyCoordinator,
    DeleteResult,
    EntityBinding,
    EntityIdentity,
    WriteResult,
)
from ingest_catalog.app.modules.ordering.policy import (
    CurrentGranule,
    GranuleWriteOrdering,
    IncomingWrite,
    OrderingMode,
)
from ingest_catalog.app.modules.translation.translator import Translator


GRANULE_LEGACY_TABLE = "granules"
GRANULE_INDEX_TYPE = "granule"


def granule_identity(granule_id: str, collection_id: str) -> EntityIdentity:
    return EntityIdentity(
        legacy_key={"granuleId": granule_id, "collectionId": collection_id},
        index_id=f"{collection_id}/{granule_id}",
    )


class GranuleService:
    def __init__(
        self,
        models: CatalogModels,
        translator: Translator,
        coordinator: ConsistencyCoordinator,
        ordering: GranuleWriteOrdering,
        topic_arn: str = "",
    ) -> None:
        self.models = models
        self.translator = translator
        self.coordinator = coordinator
        self.ordering = ordering
        self.binding = EntityBinding(
            name="granule",
            legacy_table=GRANULE_LEGACY_TABLE,
            index_type=GRANULE_INDEX_TYPE,
            topic_arn=topic_arn,
        )

    def _find(self, db: Session, granule_id: str, collection_id: str, *, for_update: bool = False) -> Granule | None:
        collection_cumulus_id = self.translator.collection_cumulus_id(db, collection_id)
        return self.models.granules.find(
            db,
            {"granule_id": granule_id, "collection_cumulus_id": collection_cumulus_id},
            for_update=for_update,
        )

    def _committed(self, db: Session, granule_id: str, collection_id: str) -> dict[str, Any] | None:
        granule = self._find(db, granule_id, collection_id)
        return self.translator.granule_to_api(db, granule) if granule is not None else None

    def write_from_workflow(self, db: Session, record: dict[str, Any], execution_arn: str) -> WriteResult:
        """Record a workflow's report on a granule and link the execution.

        The granule's status only changes when the ordering policy allows
        it; the execution is linked either way.
        """
        if not execution_arn:
            raise ValidationError("Field executionArn is missing", {"field": "executionArn"})
        values, files = self.translator.granule_from_api(db, record)
        identity = granule_identity(record["granuleId"], record["collectionId"])
        committed = lambda: self._committed(db, record["granuleId"], record["collectionId"])  # noqa: E731

        def catalog_write() -> CatalogChange:
            execution = self.translator.required_reference(self.models.executions, db, {"arn": execution_arn})
            current = self.models.granules.find(
                db,
                {"granule_id": values["granule_id"], "collection_cumulus_id": values["collection_cumulus_id"]},
                for_update=True,
            )
            linked = current is not None and self.models.granules_executions.exists(
                db,
                {"granule_cumulus_id": current.cumulus_id, "execution_cumulus_id": execution.cumulus_id},
            )
            decision = self.ordering.decide(
                CurrentGranule(current.status, current.updated_at) if current is not None else None,
                IncomingWrite(values["granule_id"], execution_arn, values["status"], values["updated_at"]),
                linked,
            )

            granule = current
            applied = False
            if decision.apply:
                where = None
                if linked and values["status"] == "running" and self.ordering.mode is OrderingMode.TIMESTAMP:
                    where = lambda excluded: Granule.updated_at <= excluded.updated_at  # noqa: E731
                rows = self.models.granules.upsert(db, values, where=where)
                if rows:
                    granule = rows[0]
                    applied = True
                    for item in files:
                        self.models.files.upsert(db, {**item, "granule_cumulus_id": granule.cumulus_id})
            # Another writer may have advanced the row; the link still holds.
            self.models.granules_executions.link(db, granule.cumulus_id, execution.cumulus_id)
            return CatalogChange(
                row=granule,
                record=self.translator.granule_to_api(db, granule),
                project=applied,
            )

        return self.coordinator.write(db, self.binding, identity, catalog_write, committed)

    def update_fields(self, db: Session, granule_id: str, collection_id: str, **values: Any) -> WriteResult:
        identity = granule_identity(granule_id, collection_id)
        committed = lambda: self._committed(db, granule_id, collection_id)  # noqa: E731

        def catalog_write() -> CatalogChange:
            granule = self._find(db, granule_id, collection_id, for_update=True)
            if granule is None:
                raise NotFoundError(
                    f"Granule {granule_id} not found in collection {collection_id}",
                    {"granuleId": granule_id, "collectionId": collection_id},
                )
            for column, value in values.items():
                setattr(granule, column, value)
            granule.updated_at = now_utc()
            db.flush()
            return CatalogChange(row=granule, record=self.translator.granule_to_api(db, granule))

        return self.coordinator.write(db, self.binding, identity, catalog_write, committed)

    def update_status_to_queued(self, db: Session, granule_id: str, collection_id: str) -> WriteResult:
        return self.update_fields(db, granule_id, collection_id, status="queued")

    def mark_unpublished(self, db: Session, granule_id: str, collection_id: str) -> WriteResult:
        return self.update_fields(db, granule_id, collection_id, published=False, cmr_link=None)

    def get(self, db: Session, granule_id: str, collection_id: str) -> dict[str, Any]:
        granule = self._find(db, granule_id, collection_id)
        if granule is None:
            raise NotFoundError(
                f"Granule {granule_id} not found in collection {collection_id}",
                {"granuleId": granule_id, "collectionId": collection_id},
            )
        return self.translator.granule_to_api(db, granule)

    def get_unique_by_granule_id(self, db: Session, granule_id: str) -> dict[str, Any]:
        return self.translator.granule_to_api(db, self.models.granules.get_unique_by_granule_id(db, granule_id))

    def delete(self, db: Session, granule_id: str, collection_id: str) -> DeleteResult:
        """Delete a granule and its files from every store.

        Published granules must be removed from CMR first.
        """
        identity = granule_identity(granule_id, collection_id)
        granule = self._find(db, granule_id, collection_id)
        if granule is not None and granule.published:
            raise DeletePublishedGranuleError(
                "You cannot delete a granule that is published to CMR. Remove it from CMR first",
                {"granuleId": granule_id, "collectionId": collection_id},
            )

        def catalog_delete() -> int:
            # Files and join rows cascade with the granule.
            return self.models.granules.delete(db, granule.cumulus_id) if granule is not None else 0

        return self.coordinator.delete(
            db,
            self.binding,
            identity,
            catalog_exists=lambda: granule is not None,
            catalog_delete=catalog_delete,
            committed_record=lambda: self._committed(db, granule_id, collection_id),
        )
