from __future__ import annotations

from collections.abc import Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session

from ingest_catalog.app.db.models import GranuleExecution
from ingest_catalog.app.db.record_model import RecordModel


class GranuleExecutionModel(RecordModel[GranuleExecution]):
    """Granule/execution association rows.

    A pair is written at most once: re-asserting an existing pair returns the
    existing row.
    """

    orm = GranuleExecution
    table_name = "granules_executions"
    natural_keys = ("granule_cumulus_id", "execution_cumulus_id")

    def link(self, db: Session, granule_cumulus_id: int, execution_cumulus_id: int) -> GranuleExecution:
        rows = self.upsert(
            db,
            {
                "granule_cumulus_id": granule_cumulus_id,
                "execution_cumulus_id": execution_cumulus_id,
            },
            merge_columns=[],
        )
        return rows[0]

    def execution_cumulus_ids_for_granules(self, db: Session, granule_cumulus_ids: Iterable[int]) -> list[int]:
        ids = list(granule_cumulus_ids)
        if not ids:
            return []
        stmt = (
            select(GranuleExecution.execution_cumulus_id)
            .where(GranuleExecution.granule_cumulus_id.in_(ids))
            .distinct()
        )
        return self._retry.call(
            lambda: [row[0] for row in db.execute(stmt).all()],
            description="granules_executions.executions_for_granules",
        )

    def granule_cumulus_ids_for_executions(self, db: Session, execution_cumulus_ids: Iterable[int]) -> list[int]:
        ids = list(execution_cumulus_ids)
        if not ids:
            return []
        stmt = (
            select(GranuleExecution.granule_cumulus_id)
            .where(GranuleExecution.execution_cumulus_id.in_(ids))
            .distinct()
        )
        return self._retry.call(
            lambda: [row[0] for row in db.execute(stmt).all()],
            description="granules_executions.granules_for_executions",
        )
