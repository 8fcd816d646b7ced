from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from ingest_catalog.app.modules.ordering.policy import (
    CurrentGranule,
    GranuleWriteOrdering,
    IncomingWrite,
    OrderingMode,
)


NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _incoming(status: str, updated_at: datetime = NOW, arn: str = "arn:exec:A") -> IncomingWrite:
    return IncomingWrite(granule_id="G1", execution_arn=arn, status=status, updated_at=updated_at)


@pytest.mark.parametrize("mode", list(OrderingMode))
def test_first_write_always_applies(mode: OrderingMode) -> None:
    decision = GranuleWriteOrdering(mode).decide(None, _incoming("running"), execution_already_linked=False)
    assert decision.apply
    assert decision.reason == "new_granule"


@pytest.mark.parametrize("mode", list(OrderingMode))
@pytest.mark.parametrize("status", ["completed", "failed", "queued"])
def test_non_running_status_always_applies(mode: OrderingMode, status: str) -> None:
    current = CurrentGranule(status="completed", updated_at=NOW + timedelta(hours=1))
    decision = GranuleWriteOrdering(mode).decide(current, _incoming(status), execution_already_linked=True)
    assert decision.apply


@pytest.mark.parametrize("mode", list(OrderingMode))
def test_running_from_new_execution_claims_the_granule(mode: OrderingMode) -> None:
    current = CurrentGranule(status="completed", updated_at=NOW + timedelta(hours=1))
    decision = GranuleWriteOrdering(mode).decide(current, _incoming("running", arn="arn:exec:B"), False)
    assert decision.apply
    assert decision.reason == "new_execution"


@pytest.mark.parametrize("mode", list(OrderingMode))
def test_running_over_running_applies(mode: OrderingMode) -> None:
    current = CurrentGranule(status="running", updated_at=NOW + timedelta(hours=1))
    decision = GranuleWriteOrdering(mode).decide(current, _incoming("running"), execution_already_linked=True)
    assert decision.apply


def test_execution_mode_discards_regression_from_linked_execution() -> None:
    current = CurrentGranule(status="completed", updated_at=NOW - timedelta(hours=1))
    decision = GranuleWriteOrdering(OrderingMode.EXECUTION).decide(current, _incoming("running"), True)
    assert not decision.apply
    assert decision.reason == "superseded_execution"


def test_timestamp_mode_discards_older_report() -> None:
    current = CurrentGranule(status="completed", updated_at=NOW)
    decision = GranuleWriteOrdering(OrderingMode.TIMESTAMP).decide(
        current, _incoming("running", updated_at=NOW - timedelta(seconds=1)), True
    )
    assert not decision.apply
    assert decision.reason == "stale_report"


def test_timestamp_mode_applies_newer_report() -> None:
    # SQLite hands back naive datetimes for the current row.
    current = CurrentGranule(status="failed", updated_at=NOW.replace(tzinfo=None))
    decision = GranuleWriteOrdering(OrderingMode.TIMESTAMP).decide(
        current, _incoming("running", updated_at=NOW + timedelta(seconds=1)), True
    )
    assert decision.apply
    assert decision.reason == "newer_report"


def test_mode_parsing() -> None:
    assert OrderingMode.parse(" Timestamp ") is OrderingMode.TIMESTAMP
    with pytest.raises(ValueError):
        OrderingMode.parse("last-write-wins")
