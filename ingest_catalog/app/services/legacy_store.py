from __future__ import annotations

import copy
import json
import threading
from decimal import Decimal
from typing import Any

from botocore.exceptions import BotoCoreError, ClientError

from ingest_catalog.app.config import Settings
from ingest_catalog.app.services.aws import aws_resource, raise_if_transient


def _key_of(key: dict[str, Any]) -> tuple[tuple[str, str], ...]:
    return tuple(sorted((name, str(value)) for name, value in key.items()))


class LegacyStore:
    """Key/value projection kept in step with the catalog."""

    def get(self, table: str, key: dict[str, Any]) -> dict[str, Any] | None:
        raise NotImplementedError

    def put(self, table: str, key: dict[str, Any], item: dict[str, Any]) -> None:
        raise NotImplementedError

    def delete(self, table: str, key: dict[str, Any]) -> None:
        raise NotImplementedError

    def exists(self, table: str, key: dict[str, Any]) -> bool:
        return self.get(table, key) is not None


class InMemoryLegacyStore(LegacyStore):
    def __init__(self) -> None:
        self._tables: dict[str, dict[tuple[tuple[str, str], ...], dict[str, Any]]] = {}
        self._lock = threading.Lock()

    def get(self, table: str, key: dict[str, Any]) -> dict[str, Any] | None:
        with self._lock:
            item = self._tables.get(table, {}).get(_key_of(key))
            return copy.deepcopy(item) if item is not None else None

    def put(self, table: str, key: dict[str, Any], item: dict[str, Any]) -> None:
        with self._lock:
            self._tables.setdefault(table, {})[_key_of(key)] = copy.deepcopy(item)

    def delete(self, table: str, key: dict[str, Any]) -> None:
        with self._lock:
            self._tables.get(table, {}).pop(_key_of(key), None)

    def items(self, table: str) -> list[dict[str, Any]]:
        with self._lock:
            return [copy.deepcopy(item) for item in self._tables.get(table, {}).values()]


def to_dynamo(item: dict[str, Any]) -> dict[str, Any]:
    # DynamoDB rejects floats; round-trip through JSON to get Decimals.
    return json.loads(json.dumps(item, default=str), parse_float=Decimal)


def from_dynamo(value: Any) -> Any:
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, dict):
        return {key: from_dynamo(inner) for key, inner in value.items()}
    if isinstance(value, list):
        return [from_dynamo(inner) for inner in value]
    return value


class DynamoLegacyStore(LegacyStore):
    def __init__(self, settings: Settings, table_names: dict[str, str]) -> None:
        self._resource = aws_resource(settings, "dynamodb")
        self._table_names = table_names

    def _table(self, table: str) -> Any:
        return self._resource.Table(self._table_names.get(table, table))

    def get(self, table: str, key: dict[str, Any]) -> dict[str, Any] | None:
        try:
            response = self._table(table).get_item(Key=key, ConsistentRead=True)
        except (BotoCoreError, ClientError) as exc:
            raise_if_transient(exc, "legacy store")
            raise
        item = response.get("Item")
        return from_dynamo(item) if item is not None else None

    def put(self, table: str, key: dict[str, Any], item: dict[str, Any]) -> None:
        try:
            self._table(table).put_item(Item=to_dynamo({**item, **key}))
        except (BotoCoreError, ClientError) as exc:
            raise_if_transient(exc, "legacy store")
            raise

    def delete(self, table: str, key: dict[str, Any]) -> None:
        try:
            self._table(table).delete_item(Key=key)
        except (BotoCoreError, ClientError) as exc:
            raise_if_transient(exc, "legacy store")
            raise
