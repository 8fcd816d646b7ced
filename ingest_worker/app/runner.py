from __future__ import annotations

import time

import structlog

from ingest_catalog.app.config import Settings
from ingest_catalog.app.db.session import Base, get_engine
from ingest_catalog.app.dependencies import Services, build_services
from ingest_catalog.app.logging import configure_logging
from ingest_catalog.app.modules.bulk.operations import BULK_OPERATION_TYPES
from ingest_catalog.app.services.async_operations import (
    fetch_next_operation,
    mark_operation_failed,
    mark_operation_succeeded,
)


logger = structlog.get_logger(__name__)


def process_one(services: Services) -> bool:
    with services.session_factory() as db:
        operation = fetch_next_operation(db, BULK_OPERATION_TYPES)
        if operation is None:
            return False

        log = logger.bind(async_operation_id=operation.id, operation_type=operation.operation_type)
        log.info("async_operation_started")
        try:
            output = services.bulk.handle(operation.operation_type, operation.payload or {}, operation.id)
        except Exception as exc:  # noqa: BLE001
            log.error("async_operation_failed", error=repr(exc))
            mark_operation_failed(db, operation, exc)
            return True
        mark_operation_succeeded(db, operation, output)
        log.info("async_operation_succeeded", items=len(output))
        return True


def run_forever(services: Services) -> None:
    interval = max(services.settings.worker_poll_interval_ms, 100) / 1000.0
    while True:
        handled = process_one(services)
        if not handled:
            time.sleep(interval)


def main() -> None:
    settings = Settings.from_env()
    configure_logging(json_output=settings.log_json, level=settings.log_level)
    services = build_services(settings)
    Base.metadata.create_all(bind=get_engine(settings))
    run_forever(services)


if __name__ == "__main__":
    main()
