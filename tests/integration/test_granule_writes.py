from __future__ import annotations

from dataclasses import replace

import pytest
from sqlalchemy import func, select

from ingest_catalog.app.db.models import Granule, GranuleExecution
from ingest_catalog.app.dependencies import Services, build_services
from ingest_catalog.app.errors import ValidationError
from ingest_catalog.app.modules.granules.service import GRANULE_INDEX_TYPE
from ingest_catalog.app.modules.translation.translator import to_epoch_ms
from ingest_catalog.app.services.retry import RetryConfig, RetryPolicy
from tests.factories import COLLECTION_ID, GRANULE_TOPIC, execution_record, granule_record

EXEC_A = "arn:aws:states:us-east-1:000000000000:execution:IngestGranule:exec-a"
EXEC_B = "arn:aws:states:us-east-1:000000000000:execution:IngestGranule:exec-b"


def _start(services: Services, db, *arns: str) -> None:
    for arn in arns:
        services.executions.write_from_workflow(db, execution_record(arn))


def _granule_rows(db) -> list[Granule]:
    return list(db.scalars(select(Granule)).all())


def _join_count(db) -> int:
    return db.execute(select(func.count()).select_from(GranuleExecution)).scalar_one()


def _index_status(services: Services) -> str:
    return services.search_index.get(GRANULE_INDEX_TYPE, f"{COLLECTION_ID}/G1")["status"]


def _legacy_status(services: Services) -> str:
    return services.legacy_store.get("granules", {"granuleId": "G1", "collectionId": COLLECTION_ID})["status"]


def test_running_then_completed_for_one_execution(services: Services, db, collection: str) -> None:
    _start(services, db, EXEC_A)

    services.granules.write_from_workflow(db, granule_record("G1", "running"), EXEC_A)
    result = services.granules.write_from_workflow(db, granule_record("G1", "completed"), EXEC_A)

    assert result.applied
    rows = _granule_rows(db)
    assert len(rows) == 1
    assert rows[0].status == "completed"
    assert _join_count(db) == 1
    assert _index_status(services) == "completed"
    assert _legacy_status(services) == "completed"


def test_repeated_link_keeps_one_join_row(services: Services, db, collection: str) -> None:
    _start(services, db, EXEC_A)
    for _ in range(3):
        services.granules.write_from_workflow(db, granule_record("G1", "completed"), EXEC_A)

    assert _join_count(db) == 1


def test_new_execution_claims_completed_granule(services: Services, db, collection: str) -> None:
    _start(services, db, EXEC_A, EXEC_B)
    services.granules.write_from_workflow(db, granule_record("G1", "completed"), EXEC_A)

    result = services.granules.write_from_workflow(db, granule_record("G1", "running"), EXEC_B)

    assert result.applied
    assert _granule_rows(db)[0].status == "running"
    assert _join_count(db) == 2

    # The older execution retrying while the granule is running does not regress anything.
    services.granules.write_from_workflow(db, granule_record("G1", "running"), EXEC_A)
    assert _granule_rows(db)[0].status == "running"


def test_stale_running_retry_is_discarded_but_stays_linked(services: Services, db, collection: str) -> None:
    _start(services, db, EXEC_A)
    services.granules.write_from_workflow(db, granule_record("G1", "running"), EXEC_A)
    services.granules.write_from_workflow(db, granule_record("G1", "completed"), EXEC_A)
    calls_before = len(services.legacy_store.calls)

    result = services.granules.write_from_workflow(db, granule_record("G1", "running"), EXEC_A)

    assert not result.applied
    assert result.record["status"] == "completed"
    assert _granule_rows(db)[0].status == "completed"
    assert _join_count(db) == 1
    assert _index_status(services) == "completed"
    assert services.legacy_store.calls[calls_before:] == []


def test_late_running_from_earlier_execution_cannot_reopen_granule(services: Services, db, collection: str) -> None:
    _start(services, db, EXEC_A, EXEC_B)
    services.granules.write_from_workflow(db, granule_record("G1", "completed"), EXEC_A)
    services.granules.write_from_workflow(db, granule_record("G1", "running"), EXEC_B)
    services.granules.write_from_workflow(db, granule_record("G1", "completed"), EXEC_B)

    result = services.granules.write_from_workflow(db, granule_record("G1", "running"), EXEC_A)

    assert not result.applied
    assert _granule_rows(db)[0].status == "completed"
    assert _legacy_status(services) == "completed"
    assert _join_count(db) == 2


def test_granule_files_are_written_with_the_granule(services: Services, db, collection: str) -> None:
    _start(services, db, EXEC_A)
    record = granule_record(
        "G1",
        "completed",
        files=[
            {"bucket": "protected", "key": "MOD09GQ/G1.hdf", "size": 1024},
            {"bucket": "public", "key": "MOD09GQ/G1.jpg"},
        ],
    )

    result = services.granules.write_from_workflow(db, record, EXEC_A)

    assert [item["key"] for item in result.record["files"]] == ["MOD09GQ/G1.hdf", "MOD09GQ/G1.jpg"]
    assert result.record["files"][0]["fileName"] == "G1.hdf"


def test_completed_granule_is_broadcast(services: Services, db, collection: str) -> None:
    _start(services, db, EXEC_A)
    services.granules.write_from_workflow(db, granule_record("G1", "running"), EXEC_A)
    result = services.granules.write_from_workflow(db, granule_record("G1", "completed"), EXEC_A)

    assert result.published
    granule_messages = [record for topic, record in services.broadcaster.messages if topic == GRANULE_TOPIC]
    assert [record["status"] for record in granule_messages] == ["completed"]


def test_write_requires_known_execution(services: Services, db, collection: str) -> None:
    with pytest.raises(ValidationError):
        services.granules.write_from_workflow(db, granule_record("G1", "running"), EXEC_A)

    assert _granule_rows(db) == []
    assert services.legacy_store.items("granules") == []


def test_write_requires_known_collection(services: Services, db, collection: str) -> None:
    _start(services, db, EXEC_A)

    with pytest.raises(ValidationError):
        services.granules.write_from_workflow(db, granule_record("G1", "running", collection_id="MISSING___001"), EXEC_A)


@pytest.fixture
def timestamp_services(settings, trigger_clients, services: Services) -> Services:
    return build_services(
        replace(settings, granule_ordering="timestamp"),
        legacy_store=services.legacy_store,
        search_index=services.search_index,
        broadcaster=services.broadcaster,
        invoker=services.invoker,
        cmr=services.cmr,
        trigger_clients=trigger_clients,
        retry=RetryPolicy(RetryConfig.no_retry()),
    )


def test_timestamp_mode_applies_newer_running_report(timestamp_services: Services, db, collection: str) -> None:
    services = timestamp_services
    _start(services, db, EXEC_A)
    services.granules.write_from_workflow(db, granule_record("G1", "completed", updatedAt=2_000_000), EXEC_A)

    result = services.granules.write_from_workflow(db, granule_record("G1", "running", updatedAt=3_000_000), EXEC_A)

    assert result.applied
    assert _granule_rows(db)[0].status == "running"


def test_timestamp_mode_discards_older_running_report(timestamp_services: Services, db, collection: str) -> None:
    services = timestamp_services
    _start(services, db, EXEC_A)
    services.granules.write_from_workflow(db, granule_record("G1", "completed", updatedAt=2_000_000), EXEC_A)

    result = services.granules.write_from_workflow(db, granule_record("G1", "running", updatedAt=1_000_000), EXEC_A)

    assert not result.applied
    assert _granule_rows(db)[0].status == "completed"


def test_timestamp_mode_older_running_report_keeps_newer_row(timestamp_services: Services, db, collection: str) -> None:
    services = timestamp_services
    _start(services, db, EXEC_A)
    services.granules.write_from_workflow(db, granule_record("G1", "running", updatedAt=3_000_000), EXEC_A)

    result = services.granules.write_from_workflow(db, granule_record("G1", "running", updatedAt=1_000_000), EXEC_A)

    assert not result.applied
    assert _join_count(db) == 1
    (row,) = _granule_rows(db)
    assert to_epoch_ms(row.updated_at) == 3_000_000
