from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import structlog
from sqlalchemy.orm import Session, sessionmaker

from ingest_catalog.app.db.models import Granule
from ingest_catalog.app.errors import DeletePublishedGranuleError, ValidationError
from ingest_catalog.app.modules.bulk.runner import BulkOperationRunner, GranuleRef
from ingest_catalog.app.modules.granules.service import GranuleService
from ingest_catalog.app.modules.query import catalog_queries
from ingest_catalog.app.modules.translation.translator import Translator
from ingest_catalog.app.services.cmr import CmrClient
from ingest_catalog.app.services.workflow_invoker import WorkflowInvoker


logger = structlog.get_logger(__name__)

BULK_GRANULE = "BULK_GRANULE"
BULK_GRANULE_DELETE = "BULK_GRANULE_DELETE"
BULK_GRANULE_REINGEST = "BULK_GRANULE_REINGEST"
BULK_OPERATION_TYPES = (BULK_GRANULE, BULK_GRANULE_DELETE, BULK_GRANULE_REINGEST)

QUERY_PAGE_SIZE = 1000


@dataclass
class ResolvedGranule:
    row: Granule
    record: dict[str, Any]


def build_workflow_message(
    workflow_name: str,
    granule: dict[str, Any],
    async_operation_id: str | None = None,
    parent_execution_arn: str | None = None,
    original_payload: dict[str, Any] | None = None,
) -> dict[str, Any]:
    cumulus_meta: dict[str, Any] = {"workflow_name": workflow_name}
    if async_operation_id:
        cumulus_meta["asyncOperationId"] = async_operation_id
    if parent_execution_arn:
        cumulus_meta["parentExecutionArn"] = parent_execution_arn
    payload = original_payload if original_payload is not None else {"granules": [granule]}
    return {
        "cumulus_meta": cumulus_meta,
        "meta": {"collectionId": granule.get("collectionId"), "provider": granule.get("provider")},
        "payload": payload,
    }


class BulkOperations:
    def __init__(
        self,
        session_factory: sessionmaker[Session],
        runner: BulkOperationRunner[ResolvedGranule],
        translator: Translator,
        granules: GranuleService,
        invoker: WorkflowInvoker,
        cmr: CmrClient,
        default_queue_url: str = "",
    ) -> None:
        self.session_factory = session_factory
        self.runner = runner
        self.translator = translator
        self.granules = granules
        self.invoker = invoker
        self.cmr = cmr
        self.default_queue_url = default_queue_url

    def handle(self, operation_type: str, payload: dict[str, Any], async_operation_id: str | None = None) -> list[Any]:
        match operation_type:
            case "BULK_GRANULE":
                outcomes = self.apply_workflow(payload, async_operation_id)
            case "BULK_GRANULE_DELETE":
                outcomes = self.delete(payload)
            case "BULK_GRANULE_REINGEST":
                outcomes = self.reingest(payload, async_operation_id)
            case _:
                raise TypeError(f"Type {operation_type} could not be matched, no operation attempted.")
        return [outcome.as_output() for outcome in outcomes]

    def granules_for_payload(self, payload: dict[str, Any]) -> list[GranuleRef]:
        """An explicit granule list, or every granule matching ``query``."""
        if payload.get("granules"):
            return [GranuleRef.parse(item) for item in payload["granules"]]
        query = payload.get("query")
        if not query:
            raise ValidationError("One of granules or query is required", {"payload": payload})

        refs: list[GranuleRef] = []
        offset = 0
        with self.session_factory() as db:
            while True:
                records, total = catalog_queries.list_granules(
                    db,
                    self.translator,
                    status=query.get("status"),
                    collection_id=query.get("collectionId"),
                    updated_from=query.get("updatedAtFrom"),
                    updated_to=query.get("updatedAtTo"),
                    sort_by="cumulus_id",
                    order="asc",
                    limit=QUERY_PAGE_SIZE,
                    offset=offset,
                )
                refs.extend(GranuleRef(record["granuleId"], record["collectionId"]) for record in records)
                offset += len(records)
                if not records or offset >= total:
                    break
        return refs

    def resolve(self, db: Session, item: GranuleRef) -> ResolvedGranule:
        if item.collection_id:
            collection_cumulus_id = self.translator.collection_cumulus_id(db, item.collection_id)
            row = self.translator.models.granules.get(
                db, {"granule_id": item.granule_id, "collection_cumulus_id": collection_cumulus_id}
            )
        else:
            row = self.translator.models.granules.get_unique_by_granule_id(db, item.granule_id)
        return ResolvedGranule(row=row, record=self.translator.granule_to_api(db, row))

    def delete(self, payload: dict[str, Any]):  # noqa: ANN201
        force = bool(payload.get("forceRemoveFromCmr"))

        def delete_one(db: Session, item: GranuleRef, granule: ResolvedGranule) -> None:
            collection_id = granule.record["collectionId"]
            if granule.row.published:
                if not force:
                    raise DeletePublishedGranuleError(
                        "You cannot delete a granule that is published to CMR. Remove it from CMR first",
                        {"granuleId": item.granule_id, "collectionId": collection_id},
                    )
                self.cmr.unpublish(granule.record)
                self.granules.mark_unpublished(db, item.granule_id, collection_id)
            self.granules.delete(db, item.granule_id, collection_id)

        return self.runner.run(self.granules_for_payload(payload), self.resolve, delete_one)

    def apply_workflow(self, payload: dict[str, Any], async_operation_id: str | None = None):  # noqa: ANN201
        workflow_name = payload.get("workflowName")
        if not workflow_name:
            raise ValidationError("workflowName is required", {"payload": payload})
        queue_url = payload.get("queueUrl") or self.default_queue_url or None

        def apply_one(db: Session, item: GranuleRef, granule: ResolvedGranule) -> None:
            collection_id = granule.record["collectionId"]
            queued = self.granules.update_status_to_queued(db, item.granule_id, collection_id)
            self.invoker.start_workflow(
                build_workflow_message(workflow_name, queued.record, async_operation_id),
                queue_url,
            )

        return self.runner.run(self.granules_for_payload(payload), self.resolve, apply_one)

    def reingest(self, payload: dict[str, Any], async_operation_id: str | None = None):  # noqa: ANN201
        workflow_name = payload.get("workflowName")
        queue_url = payload.get("queueUrl") or self.default_queue_url or None

        def reingest_one(db: Session, item: GranuleRef, granule: ResolvedGranule) -> str:
            if workflow_name:
                arn = catalog_queries.newest_execution_arn(db, granule.row.cumulus_id, workflow_name)
            else:
                arns = catalog_queries.execution_arns_for_granules_and_workflows(db, [granule.row.cumulus_id])
                if not arns:
                    raise ValidationError(
                        f"Granule {item.granule_id} has no execution to reingest from",
                        {"granuleId": item.granule_id},
                    )
                arn = arns[0]
            execution = self.translator.execution_to_api(db, self.translator.models.executions.get(db, {"arn": arn}))
            queued = self.granules.update_status_to_queued(db, item.granule_id, granule.record["collectionId"])
            self.invoker.start_workflow(
                build_workflow_message(
                    execution.get("type") or workflow_name or "",
                    queued.record,
                    async_operation_id,
                    parent_execution_arn=arn,
                    original_payload=execution.get("originalPayload"),
                ),
                queue_url,
            )
            logger.info("granule_reingested", granule_id=item.granule_id, execution_arn=arn)
            return arn

        return self.runner.run(self.granules_for_payload(payload), self.resolve, reingest_one)
