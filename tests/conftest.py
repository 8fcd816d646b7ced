from __future__ import annotations

import os
from collections.abc import Iterator
from typing import Any

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

# Keep tests on local sqlite by default.
os.environ.setdefault("DATABASE_URL", "sqlite:///./ingest_catalog_test.db")
os.environ.setdefault("AUTH_ENABLED", "false")

from ingest_catalog.app.config import Settings  # noqa: E402
from ingest_catalog.app.db.session import Base, get_engine  # noqa: E402
from ingest_catalog.app.dependencies import Services, build_services  # noqa: E402
from ingest_catalog.app.main import create_app  # noqa: E402
from ingest_catalog.app.services.cmr import RecordingCmrClient  # noqa: E402
from ingest_catalog.app.services.retry import RetryConfig, RetryPolicy  # noqa: E402
from ingest_catalog.app.services.workflow_invoker import RecordingWorkflowInvoker  # noqa: E402
from tests.factories import (  # noqa: E402
    COLLECTION_ID,
    DEFAULT_QUEUE,
    EXECUTION_TOPIC,
    GRANULE_TOPIC,
    INBOUND_LOGGER,
    MESSAGE_CONSUMER,
    SCHEDULE_TARGET,
    FakeEventsClient,
    FakeLambdaClient,
    FakeSnsClient,
    FakeSqsClient,
    FlakyBroadcaster,
    FlakyLegacyStore,
    FlakySearchIndex,
)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        database_url=os.environ["DATABASE_URL"],
        db_retries=0,
        store_mode="local",
        execution_topic_arn=EXECUTION_TOPIC,
        granule_topic_arn=GRANULE_TOPIC,
        message_consumer_arn=MESSAGE_CONSUMER,
        kinesis_inbound_logger_arn=INBOUND_LOGGER,
        invoke_target_arn=SCHEDULE_TARGET,
        default_queue_url=DEFAULT_QUEUE,
    )


@pytest.fixture(autouse=True)
def reset_db(settings: Settings) -> None:
    engine = get_engine(settings)
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)


@pytest.fixture
def trigger_clients() -> dict[str, Any]:
    return {
        "lambda": FakeLambdaClient(),
        "sns": FakeSnsClient(),
        "sqs": FakeSqsClient(),
        "events": FakeEventsClient(),
    }


@pytest.fixture
def services(settings: Settings, trigger_clients: dict[str, Any]) -> Services:
    return build_services(
        settings,
        legacy_store=FlakyLegacyStore(),
        search_index=FlakySearchIndex(),
        broadcaster=FlakyBroadcaster(),
        invoker=RecordingWorkflowInvoker(),
        cmr=RecordingCmrClient(),
        trigger_clients=trigger_clients,
        retry=RetryPolicy(RetryConfig.no_retry()),
    )


@pytest.fixture
def db(services: Services) -> Iterator[Session]:
    session = services.session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def collection(services: Services, db: Session) -> str:
    services.models.collections.create(db, {"name": "MOD09GQ", "version": "006"})
    services.models.providers.create(db, {"name": "s3_provider", "protocol": "s3", "host": "cumulus-data"})
    db.commit()
    return COLLECTION_ID


@pytest.fixture
def client(services: Services) -> TestClient:
    return TestClient(create_app(services))
