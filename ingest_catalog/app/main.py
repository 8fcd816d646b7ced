from __future__ import annotations

from typing import Any

import structlog
from fastapi import APIRouter, Body, Depends, FastAPI, HTTPException, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.orm import Session

from ingest_catalog.app.config import Settings
from ingest_catalog.app.db import models  # noqa: F401
from ingest_catalog.app.db.session import Base, get_engine
from ingest_catalog.app.dependencies import Services, build_services, get_db, get_services
from ingest_catalog.app.errors import CatalogError, NotFoundError, ValidationError
from ingest_catalog.app.logging import configure_logging
from ingest_catalog.app.modules.bulk.operations import (
    BULK_GRANULE,
    BULK_GRANULE_DELETE,
    BULK_GRANULE_REINGEST,
)
from ingest_catalog.app.modules.consistency.coordinator import DeleteResult, WriteResult
from ingest_catalog.app.modules.query import catalog_queries
from ingest_catalog.app.modules.rules.triggers import RuleRecord
from ingest_catalog.app.modules.security.auth import AuthContext, require_auth, require_write
from ingest_catalog.app.schemas.api import (
    AsyncOperationResponse,
    BulkRequest,
    DeleteResponse,
    GranuleWriteRequest,
    ListResponse,
    WorkflowsByGranulesRequest,
    WriteResponse,
)
from ingest_catalog.app.services.async_operations import create_async_operation
from ingest_catalog.app.services.responses import (
    error_details,
    error_envelope,
    request_id,
    status_code_for,
    success_envelope,
)


logger = structlog.get_logger(__name__)

router = APIRouter()


def _write_payload(result: WriteResult) -> dict[str, Any]:
    payload = WriteResponse(
        record=result.record,
        applied=result.applied,
        published=result.published,
        publish_error=result.publish_error,
    )
    return payload.model_dump(mode="json", by_alias=True)


def _delete_payload(result: DeleteResult, **identifiers: str) -> dict[str, Any]:
    if not result.found:
        raise NotFoundError("No record found", identifiers)
    payload = DeleteResponse(removed_from=result.removed_from)
    return payload.model_dump(mode="json", by_alias=True)


@router.get("/health/live")
def health_live() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/health/ready")
def health_ready(db: Session = Depends(get_db)) -> dict[str, str]:
    db.execute(text("select 1"))
    return {"status": "ready"}


# Executions


@router.post("/api/v1/executions")
def api_create_execution(
    http_request: Request,
    record: dict[str, Any] = Body(...),
    db: Session = Depends(get_db),
    services: Services = Depends(get_services),
    auth: AuthContext = Depends(require_write),
):
    _ = auth
    result = services.executions.create(db, record)
    return success_envelope(request_id(http_request), _write_payload(result))


@router.post("/api/v1/executions/workflows-by-granules")
def api_workflows_by_granules(
    request: WorkflowsByGranulesRequest,
    http_request: Request,
    db: Session = Depends(get_db),
    services: Services = Depends(get_services),
    auth: AuthContext = Depends(require_auth),
):
    _ = auth
    workflows = catalog_queries.workflows_by_granules(db, services.translator, request.granules)
    return success_envelope(request_id(http_request), workflows)


@router.put("/api/v1/executions/{arn}")
def api_update_execution(
    arn: str,
    http_request: Request,
    record: dict[str, Any] = Body(...),
    db: Session = Depends(get_db),
    services: Services = Depends(get_services),
    auth: AuthContext = Depends(require_write),
):
    _ = auth
    result = services.executions.update(db, arn, record)
    return success_envelope(request_id(http_request), _write_payload(result))


@router.get("/api/v1/executions")
def api_list_executions(
    http_request: Request,
    status: str | None = None,
    workflow_name: str | None = Query(default=None, alias="type"),
    limit: int = Query(default=100, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    services: Services = Depends(get_services),
    auth: AuthContext = Depends(require_auth),
):
    _ = auth
    results, count = catalog_queries.list_executions(
        db, services.translator, status=status, workflow_name=workflow_name, limit=limit, offset=offset
    )
    payload = ListResponse(count=count, limit=limit, offset=offset, results=results)
    return success_envelope(request_id(http_request), payload.model_dump(mode="json"))


@router.get("/api/v1/executions/{arn}/status")
def api_execution_status(
    arn: str,
    http_request: Request,
    db: Session = Depends(get_db),
    services: Services = Depends(get_services),
    auth: AuthContext = Depends(require_auth),
):
    _ = auth
    return success_envelope(
        request_id(http_request), catalog_queries.get_execution_status(db, services.translator, arn)
    )


@router.get("/api/v1/executions/{arn}")
def api_get_execution(
    arn: str,
    http_request: Request,
    db: Session = Depends(get_db),
    services: Services = Depends(get_services),
    auth: AuthContext = Depends(require_auth),
):
    _ = auth
    return success_envelope(request_id(http_request), services.executions.get(db, arn))


@router.delete("/api/v1/executions/{arn}")
def api_delete_execution(
    arn: str,
    http_request: Request,
    db: Session = Depends(get_db),
    services: Services = Depends(get_services),
    auth: AuthContext = Depends(require_write),
):
    _ = auth
    result = services.executions.delete(db, arn)
    return success_envelope(request_id(http_request), _delete_payload(result, arn=arn))


# Granules


@router.post("/api/v1/granules")
def api_write_granule(
    request: GranuleWriteRequest,
    http_request: Request,
    db: Session = Depends(get_db),
    services: Services = Depends(get_services),
    auth: AuthContext = Depends(require_write),
):
    _ = auth
    result = services.granules.write_from_workflow(db, request.granule, request.execution_arn)
    return success_envelope(request_id(http_request), _write_payload(result))


@router.get("/api/v1/granules")
def api_list_granules(
    http_request: Request,
    status: str | None = None,
    collection_id: str | None = Query(default=None, alias="collectionId"),
    updated_from: int | None = Query(default=None, alias="updatedAtFrom"),
    updated_to: int | None = Query(default=None, alias="updatedAtTo"),
    limit: int = Query(default=100, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    services: Services = Depends(get_services),
    auth: AuthContext = Depends(require_auth),
):
    _ = auth
    results, count = catalog_queries.list_granules(
        db,
        services.translator,
        status=status,
        collection_id=collection_id,
        updated_from=updated_from,
        updated_to=updated_to,
        limit=limit,
        offset=offset,
    )
    payload = ListResponse(count=count, limit=limit, offset=offset, results=results)
    return success_envelope(request_id(http_request), payload.model_dump(mode="json"))


@router.get("/api/v1/granules/{collection_id}/{granule_id}")
def api_get_granule(
    collection_id: str,
    granule_id: str,
    http_request: Request,
    db: Session = Depends(get_db),
    services: Services = Depends(get_services),
    auth: AuthContext = Depends(require_auth),
):
    _ = auth
    return success_envelope(request_id(http_request), services.granules.get(db, granule_id, collection_id))


@router.delete("/api/v1/granules/{collection_id}/{granule_id}")
def api_delete_granule(
    collection_id: str,
    granule_id: str,
    http_request: Request,
    db: Session = Depends(get_db),
    services: Services = Depends(get_services),
    auth: AuthContext = Depends(require_write),
):
    _ = auth
    result = services.granules.delete(db, granule_id, collection_id)
    return success_envelope(
        request_id(http_request),
        _delete_payload(result, granuleId=granule_id, collectionId=collection_id),
    )


def _dispatch_bulk(db: Session, operation_type: str, request: BulkRequest, default_description: str) -> dict[str, Any]:
    if not request.granules and request.query is None:
        raise ValidationError("One of granules or query is required", {"operationType": operation_type})
    if operation_type == BULK_GRANULE and not request.workflow_name:
        raise ValidationError("workflowName is required", {"operationType": operation_type})
    operation = create_async_operation(
        db,
        operation_type,
        request.description or default_description,
        request.model_dump(mode="json", by_alias=True, exclude_none=True),
    )
    logger.info("bulk_operation_dispatched", async_operation_id=operation.id, operation_type=operation_type)
    payload = AsyncOperationResponse(
        id=operation.id,
        operation_type=operation.operation_type,
        status=operation.status,
        description=operation.description,
    )
    return payload.model_dump(mode="json", by_alias=True)


@router.post("/api/v1/granules/bulk", status_code=202)
def api_bulk_apply_workflow(
    request: BulkRequest,
    http_request: Request,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_write),
):
    _ = auth
    data = _dispatch_bulk(db, BULK_GRANULE, request, "Bulk run on granules")
    return success_envelope(request_id(http_request), data)


@router.post("/api/v1/granules/bulk-delete", status_code=202)
def api_bulk_delete(
    request: BulkRequest,
    http_request: Request,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_write),
):
    _ = auth
    data = _dispatch_bulk(db, BULK_GRANULE_DELETE, request, "Bulk granule deletion")
    return success_envelope(request_id(http_request), data)


@router.post("/api/v1/granules/bulk-reingest", status_code=202)
def api_bulk_reingest(
    request: BulkRequest,
    http_request: Request,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_write),
):
    _ = auth
    data = _dispatch_bulk(db, BULK_GRANULE_REINGEST, request, "Bulk granule reingest")
    return success_envelope(request_id(http_request), data)


@router.get("/api/v1/async-operations/{operation_id}")
def api_get_async_operation(
    operation_id: str,
    http_request: Request,
    db: Session = Depends(get_db),
    services: Services = Depends(get_services),
    auth: AuthContext = Depends(require_auth),
):
    _ = auth
    operation = services.models.async_operations.get(db, {"id": operation_id})
    return success_envelope(request_id(http_request), services.translator.async_operation_to_api(operation))


# Rules


def _rule_payload(rule: RuleRecord) -> dict[str, Any]:
    return rule.model_dump(mode="json", by_alias=True, exclude_none=True)


@router.post("/api/v1/rules")
def api_create_rule(
    request: RuleRecord,
    http_request: Request,
    db: Session = Depends(get_db),
    services: Services = Depends(get_services),
    auth: AuthContext = Depends(require_write),
):
    _ = auth
    return success_envelope(request_id(http_request), _rule_payload(services.rules.create(db, request)))


@router.get("/api/v1/rules")
def api_list_rules(
    http_request: Request,
    limit: int = Query(default=100, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    services: Services = Depends(get_services),
    auth: AuthContext = Depends(require_auth),
):
    _ = auth
    rules = [_rule_payload(rule) for rule in services.rules.list_rules(db, limit=limit, offset=offset)]
    return success_envelope(request_id(http_request), rules)


@router.get("/api/v1/rules/{name}")
def api_get_rule(
    name: str,
    http_request: Request,
    db: Session = Depends(get_db),
    services: Services = Depends(get_services),
    auth: AuthContext = Depends(require_auth),
):
    _ = auth
    return success_envelope(request_id(http_request), _rule_payload(services.rules.get(db, name)))


@router.put("/api/v1/rules/{name}")
def api_update_rule(
    name: str,
    request: RuleRecord,
    http_request: Request,
    db: Session = Depends(get_db),
    services: Services = Depends(get_services),
    auth: AuthContext = Depends(require_write),
):
    _ = auth
    return success_envelope(request_id(http_request), _rule_payload(services.rules.update(db, name, request)))


@router.delete("/api/v1/rules/{name}")
def api_delete_rule(
    name: str,
    http_request: Request,
    db: Session = Depends(get_db),
    services: Services = Depends(get_services),
    auth: AuthContext = Depends(require_write),
):
    _ = auth
    services.rules.delete(db, name)
    return success_envelope(request_id(http_request), {"detail": "Record deleted"})


async def catalog_error_handler(request: Request, exc: CatalogError):
    req_id = request_id(request)
    return JSONResponse(
        content=jsonable_encoder(
            error_envelope(req_id, exc.code, str(exc), details=error_details(exc), retryable=exc.retryable)
        ),
        status_code=status_code_for(exc),
    )


async def http_exception_handler(request: Request, exc: HTTPException):
    req_id = request_id(request)
    detail = exc.detail if isinstance(exc.detail, dict) else {"code": "INTERNAL_ERROR", "message": str(exc.detail)}
    envelope = error_envelope(
        req_id,
        detail.get("code", "INTERNAL_ERROR"),
        detail.get("message", "Unhandled HTTP exception"),
        details=detail.get("details", {}),
        retryable=detail.get("retryable", False),
    )
    return JSONResponse(content=jsonable_encoder(envelope), status_code=exc.status_code)


async def request_validation_handler(request: Request, exc: RequestValidationError):
    req_id = request_id(request)
    envelope = error_envelope(
        req_id,
        "VALIDATION_ERROR",
        "Request validation failed",
        details={"errors": exc.errors(), "outcome": "no_change"},
    )
    return JSONResponse(content=jsonable_encoder(envelope), status_code=400)


async def unexpected_error_handler(request: Request, exc: Exception):
    req_id = request_id(request)
    logger.error("unhandled_error", request_id=req_id, error=repr(exc))
    envelope = error_envelope(req_id, "INTERNAL_ERROR", str(exc) or type(exc).__name__, details=error_details(exc))
    return JSONResponse(content=jsonable_encoder(envelope), status_code=500)


def create_app(services: Services | None = None, settings: Settings | None = None) -> FastAPI:
    settings = services.settings if services is not None else settings or Settings.from_env()
    app = FastAPI(title=settings.api_title, version=settings.api_version)
    app.state.services = services

    @app.on_event("startup")
    def startup() -> None:
        configure_logging(json_output=settings.log_json, level=settings.log_level)
        if app.state.services is None:
            app.state.services = build_services(settings)
        Base.metadata.create_all(bind=get_engine(app.state.services.settings))

    app.add_exception_handler(CatalogError, catalog_error_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unexpected_error_handler)
    app.include_router(router)
    return app


app = create_app()
