from __future__ import annotations

from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


T = TypeVar("T")


class ErrorPayload(BaseModel):
    code: str
    message: str
    details: dict[str, Any] = Field(default_factory=dict)
    retryable: bool = False


class ResponseEnvelope(BaseModel, Generic[T]):
    request_id: str
    status: str
    data: T | None = None
    error: ErrorPayload | None = None


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class GranuleWriteRequest(_CamelModel):
    execution_arn: str
    granule: dict[str, Any]


class WriteResponse(_CamelModel):
    record: dict[str, Any]
    applied: bool
    published: bool = False
    publish_error: str | None = None


class DeleteResponse(_CamelModel):
    detail: str = "Record deleted"
    removed_from: list[str]


class ListResponse(_CamelModel):
    count: int
    limit: int
    offset: int
    results: list[dict[str, Any]]


class BulkGranuleQuery(_CamelModel):
    status: str | None = None
    collection_id: str | None = None
    updated_at_from: int | None = None
    updated_at_to: int | None = None


class BulkRequest(_CamelModel):
    granules: list[dict[str, Any] | str] | None = None
    query: BulkGranuleQuery | None = None
    workflow_name: str | None = None
    queue_url: str | None = None
    force_remove_from_cmr: bool = False
    description: str | None = None


class AsyncOperationResponse(_CamelModel):
    id: str
    operation_type: str
    status: str
    description: str = ""
    output: Any = None


class WorkflowsByGranulesRequest(_CamelModel):
    granules: list[dict[str, Any]]
