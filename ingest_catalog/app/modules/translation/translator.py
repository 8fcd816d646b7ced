"""Conversion between catalog rows and the camelCase record shape stored in
the legacy store, indexed for search, broadcast and served by the API.

Times in records are epoch milliseconds. Optional references (parent
execution, provider) translate to an absent value rather than an error when
the referenced row does not exist; required references that do not resolve
are validation errors.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy.orm import Session

from ingest_catalog.app.db.catalog_models import CatalogModels
from ingest_catalog.app.db.models import (
    AsyncOperation,
    Collection,
    Execution,
    File,
    Granule,
    as_utc,
    now_utc,
)
from ingest_catalog.app.errors import NotFoundError, ValidationError


COLLECTION_ID_SEPARATOR = "___"
EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def construct_collection_id(name: str, version: str) -> str:
    return f"{name}{COLLECTION_ID_SEPARATOR}{version}"


def deconstruct_collection_id(collection_id: str) -> tuple[str, str]:
    name, separator, version = collection_id.rpartition(COLLECTION_ID_SEPARATOR)
    if not separator or not name or not version:
        raise ValidationError(
            f"Invalid collectionId '{collection_id}', expected <name>{COLLECTION_ID_SEPARATOR}<version>",
            {"collectionId": collection_id},
        )
    return name, version


def to_epoch_ms(value: datetime | None) -> int | None:
    value = as_utc(value)
    if value is None:
        return None
    return (value - EPOCH) // timedelta(milliseconds=1)


def from_epoch_ms(value: int | float | None) -> datetime | None:
    if value is None:
        return None
    return EPOCH + timedelta(milliseconds=value)


def _drop_none(record: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in record.items() if value is not None}


class Translator:
    def __init__(self, models: CatalogModels) -> None:
        self.models = models

    def required_reference(self, lookup: Any, db: Session, identifier: dict[str, Any]) -> Any:
        try:
            return lookup.get(db, identifier)
        except NotFoundError as exc:
            raise ValidationError(str(exc), exc.details) from exc

    def collection_cumulus_id(self, db: Session, collection_id: str) -> int:
        name, version = deconstruct_collection_id(collection_id)
        collection = self.required_reference(self.models.collections, db, {"name": name, "version": version})
        return collection.cumulus_id

    def collection_id_of(self, db: Session, collection_cumulus_id: int | None) -> str | None:
        if collection_cumulus_id is None:
            return None
        collection: Collection = self.models.collections.get(db, collection_cumulus_id)
        return construct_collection_id(collection.name, collection.version)

    # Files

    def file_to_api(self, row: File) -> dict[str, Any]:
        return _drop_none(
            {
                "bucket": row.bucket,
                "key": row.key,
                "fileName": row.file_name,
                "size": row.file_size,
                "checksumType": row.checksum_type,
                "checksum": row.checksum_value,
                "type": row.type,
            }
        )

    def file_from_api(self, record: dict[str, Any]) -> dict[str, Any]:
        if not record.get("bucket") or not record.get("key"):
            raise ValidationError("Granule files require bucket and key", {"file": record})
        return {
            "bucket": record["bucket"],
            "key": record["key"],
            "file_name": record.get("fileName") or record["key"].rsplit("/", 1)[-1],
            "file_size": record.get("size"),
            "checksum_type": record.get("checksumType"),
            "checksum_value": record.get("checksum"),
            "type": record.get("type"),
        }

    # Granules

    def granule_to_api(self, db: Session, row: Granule) -> dict[str, Any]:
        provider = None
        if row.provider_cumulus_id is not None:
            provider = self.models.providers.get(db, row.provider_cumulus_id).name
        files = [self.file_to_api(item) for item in self.models.files.for_granule(db, row.cumulus_id)]
        return _drop_none(
            {
                "granuleId": row.granule_id,
                "collectionId": self.collection_id_of(db, row.collection_cumulus_id),
                "provider": provider,
                "status": row.status,
                "published": bool(row.published),
                "cmrLink": row.cmr_link,
                "duration": row.duration,
                "error": row.error,
                "files": files,
                "createdAt": to_epoch_ms(row.created_at),
                "updatedAt": to_epoch_ms(row.updated_at),
                "timestamp": to_epoch_ms(row.timestamp),
            }
        )

    def granule_from_api(self, db: Session, record: dict[str, Any]) -> tuple[dict[str, Any], list[dict[str, Any]]]:
        for field_name in ("granuleId", "collectionId", "status"):
            if not record.get(field_name):
                raise ValidationError(f"Field {field_name} is missing", {"field": field_name})
        values: dict[str, Any] = {
            "granule_id": record["granuleId"],
            "collection_cumulus_id": self.collection_cumulus_id(db, record["collectionId"]),
            "status": record["status"],
            "updated_at": from_epoch_ms(record.get("updatedAt")) or now_utc(),
        }
        if record.get("provider"):
            provider = self.required_reference(self.models.providers, db, {"name": record["provider"]})
            values["provider_cumulus_id"] = provider.cumulus_id
        if record.get("createdAt") is not None:
            values["created_at"] = from_epoch_ms(record["createdAt"])
        if record.get("timestamp") is not None:
            values["timestamp"] = from_epoch_ms(record["timestamp"])
        optional = {
            "published": "published",
            "cmrLink": "cmr_link",
            "duration": "duration",
            "error": "error",
            "originalPayload": "original_payload",
            "finalPayload": "final_payload",
        }
        for api_name, column in optional.items():
            if api_name in record:
                values[column] = record[api_name]
        files = [self.file_from_api(item) for item in record.get("files") or []]
        return values, files

    # Executions

    def execution_to_api(self, db: Session, row: Execution) -> dict[str, Any]:
        parent_arn = None
        if row.parent_cumulus_id is not None:
            parent = self.models.executions.find(db, row.parent_cumulus_id)
            parent_arn = parent.arn if parent is not None else None
        async_operation_id = None
        if row.async_operation_cumulus_id is not None:
            async_operation_id = self.models.async_operations.get(db, row.async_operation_cumulus_id).id
        return _drop_none(
            {
                "arn": row.arn,
                "name": row.name,
                "execution": row.url,
                "type": row.workflow_name,
                "status": row.status,
                "parentArn": parent_arn,
                "asyncOperationId": async_operation_id,
                "collectionId": self.collection_id_of(db, row.collection_cumulus_id),
                "originalPayload": row.original_payload,
                "finalPayload": row.final_payload,
                "error": row.error,
                "duration": row.duration,
                "createdAt": to_epoch_ms(row.created_at),
                "updatedAt": to_epoch_ms(row.updated_at),
                "timestamp": to_epoch_ms(row.timestamp),
            }
        )

    def execution_from_api(self, db: Session, record: dict[str, Any]) -> dict[str, Any]:
        if not record.get("arn"):
            raise ValidationError("Field arn is missing", {"field": "arn"})
        if not record.get("status"):
            raise ValidationError("Field status is missing", {"field": "status"})
        values: dict[str, Any] = {
            "arn": record["arn"],
            "status": record["status"],
            "updated_at": from_epoch_ms(record.get("updatedAt")) or now_utc(),
        }
        if record.get("asyncOperationId"):
            operation: AsyncOperation = self.required_reference(
                self.models.async_operations, db, {"id": record["asyncOperationId"]}
            )
            values["async_operation_cumulus_id"] = operation.cumulus_id
        if record.get("collectionId"):
            values["collection_cumulus_id"] = self.collection_cumulus_id(db, record["collectionId"])
        if record.get("parentArn"):
            # An unknown parent leaves any stored link in place.
            parent = self.models.executions.find(db, {"arn": record["parentArn"]})
            if parent is not None:
                values["parent_cumulus_id"] = parent.cumulus_id
        if record.get("createdAt") is not None:
            values["created_at"] = from_epoch_ms(record["createdAt"])
        if record.get("timestamp") is not None:
            values["timestamp"] = from_epoch_ms(record["timestamp"])
        optional = {
            "name": "name",
            "execution": "url",
            "type": "workflow_name",
            "originalPayload": "original_payload",
            "finalPayload": "final_payload",
            "error": "error",
            "duration": "duration",
        }
        for api_name, column in optional.items():
            if api_name in record:
                values[column] = record[api_name]
        return values

    # Async operations

    def async_operation_to_api(self, row: AsyncOperation) -> dict[str, Any]:
        return _drop_none(
            {
                "id": row.id,
                "description": row.description,
                "operationType": row.operation_type,
                "status": row.status,
                "output": row.output,
                "taskArn": row.task_arn,
                "createdAt": to_epoch_ms(row.created_at),
                "updatedAt": to_epoch_ms(row.updated_at),
            }
        )
