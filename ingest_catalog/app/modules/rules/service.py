from __future__ import annotations

import re
from typing import Any

from sqlalchemy.orm import Session

from ingest_catalog.app.db.catalog_models import CatalogModels
from ingest_catalog.app.db.models import Rule, now_utc
from ingest_catalog.app.db.record_model import SearchSpec
from ingest_catalog.app.errors import ConflictError, NotFoundError, ValidationError
from ingest_catalog.app.modules.consistency.saga import Saga
from ingest_catalog.app.modules.rules.triggers import (
    CollectionRef,
    RuleRecord,
    RuleTriggerManager,
)
from ingest_catalog.app.modules.translation.translator import to_epoch_ms


RULE_NAME_PATTERN = re.compile(r"^\w+$")


def validate_rule_name(name: str) -> None:
    if not RULE_NAME_PATTERN.match(name):
        raise ValidationError(
            "Rule name may only contain letters, numbers, and underscores.",
            {"name": name},
        )


class RuleService:
    def __init__(self, models: CatalogModels, triggers: RuleTriggerManager) -> None:
        self.models = models
        self.triggers = triggers

    def _row_values(self, db: Session, rule: RuleRecord) -> dict[str, Any]:
        values: dict[str, Any] = {
            "name": rule.name,
            "workflow": rule.workflow,
            "type": rule.rule.type,
            "value": getattr(rule.rule, "value", None),
            "arn": getattr(rule.rule, "arn", None),
            "log_event_arn": getattr(rule.rule, "log_event_arn", None),
            "enabled": rule.enabled,
            "meta": rule.meta,
            "payload": rule.payload,
            "queue_url": rule.queue_url,
            "execution_name_prefix": rule.execution_name_prefix,
            "collection_cumulus_id": None,
            "provider_cumulus_id": None,
            "updated_at": now_utc(),
        }
        if rule.collection is not None:
            identifiers = {"name": rule.collection.name, "version": rule.collection.version}
            collection = self.models.collections.find(db, identifiers)
            if collection is None:
                raise ValidationError(
                    f"Record in collections with identifiers {identifiers} does not exist.",
                    {"collection": identifiers},
                )
            values["collection_cumulus_id"] = collection.cumulus_id
        if rule.provider:
            provider = self.models.providers.find(db, {"name": rule.provider})
            if provider is None:
                raise ValidationError(
                    f"Record in providers with identifiers {{'name': '{rule.provider}'}} does not exist.",
                    {"provider": rule.provider},
                )
            values["provider_cumulus_id"] = provider.cumulus_id
        return values

    def to_record(self, db: Session, row: Rule) -> RuleRecord:
        trigger: dict[str, Any] = {"type": row.type}
        if row.value is not None:
            trigger["value"] = row.value
        if row.arn:
            trigger["arn"] = row.arn
        if row.log_event_arn:
            trigger["logEventArn"] = row.log_event_arn
        collection = None
        if row.collection_cumulus_id is not None:
            found = self.models.collections.get(db, row.collection_cumulus_id)
            collection = CollectionRef(name=found.name, version=found.version)
        provider = None
        if row.provider_cumulus_id is not None:
            provider = self.models.providers.get(db, row.provider_cumulus_id).name
        return RuleRecord.model_validate(
            {
                "name": row.name,
                "workflow": row.workflow,
                "rule": trigger,
                "state": "ENABLED" if row.enabled else "DISABLED",
                "collection": collection,
                "provider": provider,
                "meta": row.meta or {},
                "payload": row.payload or {},
                "queueUrl": row.queue_url,
                "executionNamePrefix": row.execution_name_prefix,
                "createdAt": to_epoch_ms(row.created_at),
                "updatedAt": to_epoch_ms(row.updated_at),
            }
        )

    def get(self, db: Session, name: str) -> RuleRecord:
        row = self.models.rules.find(db, {"name": name})
        if row is None:
            raise NotFoundError(f"No record found for {name}", {"name": name})
        return self.to_record(db, row)

    def list_rules(self, db: Session, limit: int = 100, offset: int = 0) -> list[RuleRecord]:
        rows = self.models.rules.search(db, SearchSpec(sort_by="name", limit=limit, offset=offset))
        return [self.to_record(db, row) for row in rows]

    def create(self, db: Session, rule: RuleRecord) -> RuleRecord:
        validate_rule_name(rule.name)
        if self.models.rules.exists(db, {"name": rule.name}):
            raise ConflictError(f"A record already exists for {rule.name}", {"name": rule.name})
        # References must resolve before any binding is created.
        self._row_values(db, rule)

        bound: dict[str, RuleRecord] = {}

        def bind() -> None:
            bound["rule"] = self.triggers.add(rule)

        def write_catalog() -> None:
            self.models.rules.create(db, self._row_values(db, bound["rule"]))
            db.commit()

        try:
            Saga("rule_create").step(
                "triggers", bind, lambda: self.triggers.remove(db, bound["rule"])
            ).step("catalog", write_catalog).run()
        except Exception:
            db.rollback()
            raise
        return self.get(db, rule.name)

    def update(self, db: Session, name: str, rule: RuleRecord) -> RuleRecord:
        if rule.name != name:
            raise ValidationError(f"Expected rule name to be '{name}'", {"path_name": name, "body_name": rule.name})
        original = self.get(db, name)
        self._row_values(db, rule)
        updated = self.triggers.update(db, original, rule)
        try:
            values = self._row_values(db, updated)
            self.models.rules.upsert(db, values)
            db.commit()
        except Exception:
            db.rollback()
            raise
        return self.get(db, name)

    def delete(self, db: Session, name: str) -> None:
        rule = self.get(db, name)
        self.triggers.remove(db, rule)
        try:
            self.models.rules.delete(db, {"name": name})
            db.commit()
        except Exception:
            db.rollback()
            raise
