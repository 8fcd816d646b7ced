from __future__ import annotations

from typing import Any

from sqlalchemy.orm import Session

from ingest_catalog.app.db.catalog_models import CatalogModels
from ingest_catalog.app.errors import ConflictError, NotFoundError, ValidationError
from ingest_catalog.app.modules.consistency.coordinator import (
    CatalogChange,
    ConsistencyCoordinator,
    DeleteResult,
    EntityBinding,
    EntityIdentity,
    WriteResult,
)
from ingest_catalog.app.modules.translation.translator import Translator


EXECUTION_LEGACY_TABLE = "executions"
EXECUTION_INDEX_TYPE = "execution"


def execution_identity(arn: str) -> EntityIdentity:
    return EntityIdentity(legacy_key={"arn": arn}, index_id=arn)


class ExecutionService:
    def __init__(
        self,
        models: CatalogModels,
        translator: Translator,
        coordinator: ConsistencyCoordinator,
        topic_arn: str = "",
    ) -> None:
        self.models = models
        self.translator = translator
        self.coordinator = coordinator
        self.binding = EntityBinding(
            name="execution",
            legacy_table=EXECUTION_LEGACY_TABLE,
            index_type=EXECUTION_INDEX_TYPE,
            topic_arn=topic_arn,
        )

    def create(self, db: Session, record: dict[str, Any]) -> WriteResult:
        values = self.translator.execution_from_api(db, record)
        arn = values["arn"]
        if self.models.executions.exists(db, {"arn": arn}):
            raise ConflictError(f"A record already exists for {arn}", {"arn": arn})

        def catalog_write() -> CatalogChange:
            row = self.models.executions.create(db, values)
            return CatalogChange(row=row, record=self.translator.execution_to_api(db, row))

        return self.coordinator.write(
            db, self.binding, execution_identity(arn), catalog_write, lambda: self._committed(db, arn)
        )

    def update(self, db: Session, arn: str, record: dict[str, Any]) -> WriteResult:
        if record.get("arn") and record["arn"] != arn:
            raise ValidationError(
                f"Expected execution arn to be '{arn}'",
                {"path_arn": arn, "body_arn": record["arn"]},
            )
        if not self.models.executions.exists(db, {"arn": arn}):
            raise NotFoundError(f"Execution '{arn}' not found", {"arn": arn})
        values = self.translator.execution_from_api(db, {**record, "arn": arn})

        def catalog_write() -> CatalogChange:
            row = self.models.executions.upsert(db, values)[0]
            return CatalogChange(row=row, record=self.translator.execution_to_api(db, row))

        return self.coordinator.write(
            db, self.binding, execution_identity(arn), catalog_write, lambda: self._committed(db, arn)
        )

    def write_from_workflow(self, db: Session, record: dict[str, Any]) -> WriteResult:
        """Upsert an execution from a workflow status report.

        A ``running`` report for an execution that already exists only
        refreshes its timestamps and original payload.
        """
        values = self.translator.execution_from_api(db, record)

        def catalog_write() -> CatalogChange:
            row = self.models.executions.upsert_from_workflow(db, values)
            return CatalogChange(row=row, record=self.translator.execution_to_api(db, row))

        arn = values["arn"]
        return self.coordinator.write(
            db, self.binding, execution_identity(arn), catalog_write, lambda: self._committed(db, arn)
        )

    def _committed(self, db: Session, arn: str) -> dict[str, Any] | None:
        row = self.models.executions.find(db, {"arn": arn})
        return self.translator.execution_to_api(db, row) if row is not None else None

    def get(self, db: Session, arn: str) -> dict[str, Any]:
        row = self.models.executions.find(db, {"arn": arn})
        if row is None:
            raise NotFoundError(f"Execution '{arn}' not found", {"arn": arn})
        return self.translator.execution_to_api(db, row)

    def delete(self, db: Session, arn: str) -> DeleteResult:
        return self.coordinator.delete(
            db,
            self.binding,
            execution_identity(arn),
            catalog_exists=lambda: self.models.executions.exists(db, {"arn": arn}),
            catalog_delete=lambda: self.models.executions.delete(db, {"arn": arn}),
            committed_record=lambda: self._committed(db, arn),
        )
