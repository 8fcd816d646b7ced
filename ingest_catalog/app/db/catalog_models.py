from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from sqlalchemy.orm import Session

from ingest_catalog.app.db.join_model import GranuleExecutionModel
from ingest_catalog.app.db.models import (
    AsyncOperation,
    Collection,
    Execution,
    File,
    Granule,
    Provider,
    Rule,
)
from ingest_catalog.app.db.record_model import RecordModel, SearchSpec
from ingest_catalog.app.errors import AmbiguousMatchError, NotFoundError
from ingest_catalog.app.services.retry import RetryPolicy


# Columns a "running" report may touch on an execution that already exists.
RUNNING_EXECUTION_MERGE_COLUMNS = ("created_at", "updated_at", "timestamp", "original_payload")


class CollectionModel(RecordModel[Collection]):
    orm = Collection
    table_name = "collections"
    natural_keys = ("name", "version")


class ProviderModel(RecordModel[Provider]):
    orm = Provider
    table_name = "providers"
    natural_keys = ("name",)


class AsyncOperationModel(RecordModel[AsyncOperation]):
    orm = AsyncOperation
    table_name = "async_operations"
    natural_keys = ("id",)


class FileModel(RecordModel[File]):
    orm = File
    table_name = "files"
    natural_keys = ("bucket", "key")

    def for_granule(self, db: Session, granule_cumulus_id: int) -> list[File]:
        return self.search(db, SearchSpec(filters={"granule_cumulus_id": granule_cumulus_id}, sort_by="key"))


class RuleModel(RecordModel[Rule]):
    orm = Rule
    table_name = "rules"
    natural_keys = ("name",)


class ExecutionModel(RecordModel[Execution]):
    orm = Execution
    table_name = "executions"
    natural_keys = ("arn",)

    def upsert_from_workflow(self, db: Session, record: Mapping[str, Any]) -> Execution:
        """Upsert by ARN; a running report never overwrites final state."""
        merge_columns = None
        if record.get("status") == "running":
            merge_columns = [column for column in RUNNING_EXECUTION_MERGE_COLUMNS if column in record]
        rows = self.upsert(db, record, merge_columns=merge_columns)
        return rows[0]


class GranuleModel(RecordModel[Granule]):
    orm = Granule
    table_name = "granules"
    natural_keys = ("granule_id", "collection_cumulus_id")

    def get_unique_by_granule_id(self, db: Session, granule_id: str) -> Granule:
        rows = self.search(db, SearchSpec(filters={"granule_id": granule_id}, limit=2))
        if not rows:
            raise NotFoundError(
                f"No granule found for granuleId {granule_id}",
                {"table": self.table_name, "granule_id": granule_id},
            )
        if len(rows) > 1:
            raise AmbiguousMatchError(
                f"Failed to write {granule_id} due to granuleId duplication on collection",
                {"table": self.table_name, "granule_id": granule_id},
            )
        return rows[0]


@dataclass
class CatalogModels:
    collections: CollectionModel
    providers: ProviderModel
    async_operations: AsyncOperationModel
    executions: ExecutionModel
    granules: GranuleModel
    files: FileModel
    granules_executions: GranuleExecutionModel
    rules: RuleModel

    @classmethod
    def build(cls, retry: RetryPolicy | None = None) -> "CatalogModels":
        return cls(
            collections=CollectionModel(retry),
            providers=ProviderModel(retry),
            async_operations=AsyncOperationModel(retry),
            executions=ExecutionModel(retry),
            granules=GranuleModel(retry),
            files=FileModel(retry),
            granules_executions=GranuleExecutionModel(retry),
            rules=RuleModel(retry),
        )
