"""Composition root: builds every service from one ``Settings`` instance."""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
from typing import Any

from fastapi import Depends, Request
from sqlalchemy.orm import Session, sessionmaker

from ingest_catalog.app.config import Settings
from ingest_catalog.app.db.catalog_models import CatalogModels
from ingest_catalog.app.db.session import build_session_factory
from ingest_catalog.app.modules.bulk.operations import BulkOperations, ResolvedGranule
from ingest_catalog.app.modules.bulk.runner import BulkOperationRunner
from ingest_catalog.app.modules.consistency.coordinator import ConsistencyCoordinator
from ingest_catalog.app.modules.executions.service import ExecutionService
from ingest_catalog.app.modules.granules.service import GranuleService
from ingest_catalog.app.modules.ordering.policy import GranuleWriteOrdering, OrderingMode
from ingest_catalog.app.modules.rules.service import RuleService
from ingest_catalog.app.modules.rules.triggers import RuleTriggerManager, TriggerTargets
from ingest_catalog.app.modules.translation.translator import Translator
from ingest_catalog.app.services.aws import aws_client
from ingest_catalog.app.services.broadcast import Broadcaster, InMemoryBroadcaster, SnsBroadcaster
from ingest_catalog.app.services.cmr import CmrClient, HttpCmrClient, RecordingCmrClient
from ingest_catalog.app.services.legacy_store import DynamoLegacyStore, InMemoryLegacyStore, LegacyStore
from ingest_catalog.app.services.retry import RetryConfig, RetryPolicy
from ingest_catalog.app.services.search_index import HttpSearchIndex, InMemorySearchIndex, SearchIndex
from ingest_catalog.app.services.workflow_invoker import (
    RecordingWorkflowInvoker,
    SqsWorkflowInvoker,
    WorkflowInvoker,
)


@dataclass
class Services:
    settings: Settings
    session_factory: sessionmaker[Session]
    retry: RetryPolicy
    models: CatalogModels
    translator: Translator
    legacy_store: LegacyStore
    search_index: SearchIndex
    broadcaster: Broadcaster
    invoker: WorkflowInvoker
    cmr: CmrClient
    coordinator: ConsistencyCoordinator
    ordering: GranuleWriteOrdering
    granules: GranuleService
    executions: ExecutionService
    bulk: BulkOperations
    rule_triggers: RuleTriggerManager
    rules: RuleService


def build_services(
    settings: Settings,
    *,
    legacy_store: LegacyStore | None = None,
    search_index: SearchIndex | None = None,
    broadcaster: Broadcaster | None = None,
    invoker: WorkflowInvoker | None = None,
    cmr: CmrClient | None = None,
    trigger_clients: dict[str, Any] | None = None,
    retry: RetryPolicy | None = None,
) -> Services:
    aws_mode = settings.store_mode.lower() == "aws"
    if legacy_store is None:
        legacy_store = (
            DynamoLegacyStore(
                settings,
                {"granules": settings.granules_table, "executions": settings.executions_table},
            )
            if aws_mode
            else InMemoryLegacyStore()
        )
    if search_index is None:
        search_index = HttpSearchIndex(settings) if aws_mode else InMemorySearchIndex()
    if broadcaster is None:
        broadcaster = SnsBroadcaster(settings) if aws_mode else InMemoryBroadcaster()
    if invoker is None:
        invoker = SqsWorkflowInvoker(settings) if aws_mode else RecordingWorkflowInvoker()
    if cmr is None:
        cmr = HttpCmrClient(settings) if aws_mode and settings.cmr_ingest_url else RecordingCmrClient()

    clients = dict(trigger_clients or {})
    for service in ("lambda", "sns", "sqs", "events"):
        if service not in clients:
            clients[service] = aws_client(settings, service)

    retry = retry or RetryPolicy(RetryConfig.from_settings(settings))
    session_factory = build_session_factory(settings)
    models = CatalogModels.build(retry)
    translator = Translator(models)
    coordinator = ConsistencyCoordinator(
        legacy_store,
        search_index,
        broadcaster,
        retry,
        statement_timeout_ms=settings.statement_timeout_ms,
    )
    ordering = GranuleWriteOrdering(OrderingMode.parse(settings.granule_ordering))
    granules = GranuleService(models, translator, coordinator, ordering, topic_arn=settings.granule_topic_arn)
    executions = ExecutionService(models, translator, coordinator, topic_arn=settings.execution_topic_arn)
    runner: BulkOperationRunner[ResolvedGranule] = BulkOperationRunner(
        session_factory,
        retry,
        concurrency=settings.bulk_concurrency,
    )
    bulk = BulkOperations(
        session_factory,
        runner,
        translator,
        granules,
        invoker,
        cmr,
        default_queue_url=settings.default_queue_url,
    )
    rule_triggers = RuleTriggerManager(
        TriggerTargets.from_settings(settings),
        lambda_client=clients["lambda"],
        sns_client=clients["sns"],
        sqs_client=clients["sqs"],
        events_client=clients["events"],
        invoker=invoker,
    )
    return Services(
        settings=settings,
        session_factory=session_factory,
        retry=retry,
        models=models,
        translator=translator,
        legacy_store=legacy_store,
        search_index=search_index,
        broadcaster=broadcaster,
        invoker=invoker,
        cmr=cmr,
        coordinator=coordinator,
        ordering=ordering,
        granules=granules,
        executions=executions,
        bulk=bulk,
        rule_triggers=rule_triggers,
        rules=RuleService(models, rule_triggers),
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_db(services: Services = Depends(get_services)) -> Iterator[Session]:
    db = services.session_factory()
    try:
        yield db
    finally:
        db.close()
