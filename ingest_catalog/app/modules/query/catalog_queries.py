from __future__ import annotations

from typing import Any

from sqlalchemy import and_, func, select
from sqlalchemy.orm import Session

from ingest_catalog.app.db.models import Collection, Execution, Granule, GranuleExecution
from ingest_catalog.app.db.record_model import SearchSpec
from ingest_catalog.app.errors import NotFoundError, ValidationError
from ingest_catalog.app.modules.translation.translator import (
    Translator,
    construct_collection_id,
    from_epoch_ms,
)


MAX_PAGE_SIZE = 1000


def _page(limit: int | None, offset: int | None) -> tuple[int, int]:
    return min(max(limit or 100, 1), MAX_PAGE_SIZE), max(offset or 0, 0)


def list_granules(
    db: Session,
    translator: Translator,
    status: str | None = None,
    collection_id: str | None = None,
    updated_from: int | None = None,
    updated_to: int | None = None,
    sort_by: str = "updated_at",
    order: str = "desc",
    limit: int | None = None,
    offset: int | None = None,
) -> tuple[list[dict[str, Any]], int]:
    filters: dict[str, Any] = {}
    if status:
        filters["status"] = status
    if collection_id:
        filters["collection_cumulus_id"] = translator.collection_cumulus_id(db, collection_id)
    ranges = {}
    if updated_from is not None or updated_to is not None:
        ranges["updated_at"] = (from_epoch_ms(updated_from), from_epoch_ms(updated_to))
    page_size, page_offset = _page(limit, offset)
    spec = SearchSpec(filters=filters, ranges=ranges, sort_by=sort_by, order=order, limit=page_size, offset=page_offset)
    rows = translator.models.granules.search(db, spec)
    return [translator.granule_to_api(db, row) for row in rows], translator.models.granules.count(db, spec)


def list_executions(
    db: Session,
    translator: Translator,
    status: str | None = None,
    workflow_name: str | None = None,
    sort_by: str = "updated_at",
    order: str = "desc",
    limit: int | None = None,
    offset: int | None = None,
) -> tuple[list[dict[str, Any]], int]:
    filters: dict[str, Any] = {}
    if status:
        filters["status"] = status
    if workflow_name:
        filters["workflow_name"] = workflow_name
    page_size, page_offset = _page(limit, offset)
    spec = SearchSpec(filters=filters, sort_by=sort_by, order=order, limit=page_size, offset=page_offset)
    rows = translator.models.executions.search(db, spec)
    return [translator.execution_to_api(db, row) for row in rows], translator.models.executions.count(db, spec)


def get_execution_status(db: Session, translator: Translator, arn: str) -> dict[str, Any]:
    execution = translator.models.executions.find(db, {"arn": arn})
    if execution is None:
        raise NotFoundError(f"Execution '{arn}' not found", {"arn": arn})
    stmt = (
        select(Granule.granule_id, Collection.name, Collection.version)
        .join(GranuleExecution, GranuleExecution.granule_cumulus_id == Granule.cumulus_id)
        .join(Collection, Collection.cumulus_id == Granule.collection_cumulus_id)
        .where(GranuleExecution.execution_cumulus_id == execution.cumulus_id)
        .order_by(Granule.granule_id.asc())
    )
    granules = [
        {"granuleId": granule_id, "collectionId": construct_collection_id(name, version)}
        for granule_id, name, version in db.execute(stmt).all()
    ]
    return {"execution": translator.execution_to_api(db, execution), "granules": granules}


def granule_cumulus_ids(db: Session, translator: Translator, granules: list[dict[str, Any]]) -> list[int]:
    """Resolve ``{granuleId, collectionId}`` pairs; every pair must exist."""
    ids: list[int] = []
    for item in granules:
        if not item.get("granuleId") or not item.get("collectionId"):
            raise ValidationError("Each granule requires granuleId and collectionId", {"granule": item})
        collection_cumulus_id = translator.collection_cumulus_id(db, item["collectionId"])
        granule = translator.models.granules.get(
            db, {"granule_id": item["granuleId"], "collection_cumulus_id": collection_cumulus_id}
        )
        ids.append(granule.cumulus_id)
    return ids


def _executions_for_granules(granule_ids: list[int], workflow_names: list[str] | None = None):  # noqa: ANN202
    criteria = [GranuleExecution.granule_cumulus_id.in_(granule_ids)]
    if workflow_names:
        criteria.append(Execution.workflow_name.in_(workflow_names))
    return (
        select(Execution.arn)
        .join(GranuleExecution, GranuleExecution.execution_cumulus_id == Execution.cumulus_id)
        .where(and_(*criteria))
        .order_by(Execution.timestamp.desc().nulls_last(), Execution.cumulus_id.desc())
    )


def execution_arns_for_granules_and_workflows(
    db: Session, granule_ids: list[int], workflow_names: list[str] | None = None
) -> list[str]:
    """Execution ARNs linked to the granules, most recent first."""
    if not granule_ids:
        return []
    arns: list[str] = []
    for (arn,) in db.execute(_executions_for_granules(granule_ids, workflow_names)).all():
        if arn not in arns:
            arns.append(arn)
    return arns


def newest_execution_arn(db: Session, granule_id: int, workflow_name: str) -> str:
    stmt = _executions_for_granules([granule_id], [workflow_name]).limit(1)
    row = db.execute(stmt).first()
    if row is None:
        raise NotFoundError(
            f"No executions found for granule {granule_id} running workflow {workflow_name}",
            {"granule_cumulus_id": granule_id, "workflowName": workflow_name},
        )
    return row[0]


def workflows_by_granules(db: Session, translator: Translator, granules: list[dict[str, Any]]) -> list[str]:
    """Workflow names run against every listed granule, most recent first."""
    ids = set(granule_cumulus_ids(db, translator, granules))
    if not ids:
        return []
    latest = func.max(Execution.timestamp)
    stmt = (
        select(Execution.workflow_name, latest)
        .join(GranuleExecution, GranuleExecution.execution_cumulus_id == Execution.cumulus_id)
        .where(GranuleExecution.granule_cumulus_id.in_(ids))
        .where(Execution.workflow_name.is_not(None))
        .group_by(Execution.workflow_name)
        .having(func.count(func.distinct(GranuleExecution.granule_cumulus_id)) == len(ids))
        .order_by(latest.desc().nulls_last(), Execution.workflow_name.asc())
    )
    return [name for name, _ in db.execute(stmt).all()]
