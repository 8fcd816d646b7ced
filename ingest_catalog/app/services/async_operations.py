from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from ingest_catalog.app.db.models import AsyncOperation, now_utc


def create_async_operation(
    db: Session,
    operation_type: str,
    description: str,
    payload: dict[str, Any],
) -> AsyncOperation:
    operation = AsyncOperation(
        id=str(uuid.uuid4()),
        operation_type=operation_type,
        description=description,
        status="PENDING",
        payload=payload,
    )
    db.add(operation)
    db.commit()
    db.refresh(operation)
    return operation


def fetch_next_operation(db: Session, operation_types: tuple[str, ...] | None = None) -> AsyncOperation | None:
    stmt = select(AsyncOperation).where(AsyncOperation.status == "PENDING")
    if operation_types:
        stmt = stmt.where(AsyncOperation.operation_type.in_(operation_types))
    stmt = stmt.order_by(AsyncOperation.created_at.asc(), AsyncOperation.cumulus_id.asc()).limit(1)
    operation = db.execute(stmt).scalar_one_or_none()
    if operation is None:
        return None
    operation.status = "RUNNING"
    operation.updated_at = now_utc()
    db.commit()
    db.refresh(operation)
    return operation


def mark_operation_succeeded(db: Session, operation: AsyncOperation, output: Any) -> None:
    operation.status = "SUCCEEDED"
    operation.output = output
    operation.updated_at = now_utc()
    db.commit()


def mark_operation_failed(db: Session, operation: AsyncOperation, error: BaseException) -> None:
    operation.status = "TASK_FAILED"
    operation.output = {"name": type(error).__name__, "message": str(error)}
    operation.updated_at = now_utc()
    db.commit()
