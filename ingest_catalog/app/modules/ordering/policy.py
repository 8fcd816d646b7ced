"""Decides whether a workflow's granule status report may overwrite the
catalog row.

Join rows are never subject to this policy: every execution that reports
on a granule stays linked to it. Only the granule's mutable status columns
follow the decision made here.

Execution mode keys on whether the reporting execution was ever linked to
the granule, not on which execution last wrote a non-running status. A
``running`` report from an execution the granule has already seen is
discarded once the granule has settled, even when a different execution
settled it since: with A completed, B running, B completed, a late
``running`` from A leaves the granule completed. Use timestamp mode when
such reports should win on recency instead.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

import structlog

from ingest_catalog.app.db.models import as_utc


logger = structlog.get_logger(__name__)


class OrderingMode(str, Enum):
    # A linked execution may never move a settled granule back to running.
    EXECUTION = "execution"
    # Same, unless its report is at least as recent as the current row.
    TIMESTAMP = "timestamp"

    @classmethod
    def parse(cls, value: str) -> "OrderingMode":
        try:
            return cls(value.strip().lower())
        except ValueError as exc:
            raise ValueError(f"Unknown granule ordering mode '{value}'") from exc


@dataclass(frozen=True)
class CurrentGranule:
    status: str
    updated_at: datetime | None


@dataclass(frozen=True)
class IncomingWrite:
    granule_id: str
    execution_arn: str
    status: str
    updated_at: datetime | None


@dataclass(frozen=True)
class WriteDecision:
    apply: bool
    reason: str


class GranuleWriteOrdering:
    def __init__(self, mode: OrderingMode = OrderingMode.EXECUTION) -> None:
        self.mode = mode

    def decide(
        self,
        current: CurrentGranule | None,
        incoming: IncomingWrite,
        execution_already_linked: bool,
    ) -> WriteDecision:
        if current is None:
            return WriteDecision(True, "new_granule")
        if incoming.status != "running":
            return WriteDecision(True, "status_transition")
        if not execution_already_linked:
            return WriteDecision(True, "new_execution")
        if current.status == "running":
            return WriteDecision(True, "still_running")

        if self.mode is OrderingMode.TIMESTAMP:
            incoming_at = as_utc(incoming.updated_at)
            current_at = as_utc(current.updated_at)
            if incoming_at is not None and current_at is not None and incoming_at >= current_at:
                return WriteDecision(True, "newer_report")
            return self._discard(current, incoming, "stale_report")

        return self._discard(current, incoming, "superseded_execution")

    def _discard(self, current: CurrentGranule, incoming: IncomingWrite, reason: str) -> WriteDecision:
        logger.info(
            "granule_write_discarded",
            granule_id=incoming.granule_id,
            execution_arn=incoming.execution_arn,
            current_status=current.status,
            incoming_status=incoming.status,
            ordering_mode=self.mode.value,
            reason=reason,
        )
        return WriteDecision(False, reason)
