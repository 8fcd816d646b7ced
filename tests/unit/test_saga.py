from __future__ import annotations

import pytest

from ingest_catalog.app.errors import rolled_back_steps
from ingest_catalog.app.modules.consistency.saga import Saga


def test_steps_run_in_order_and_collect_results() -> None:
    calls: list[str] = []
    result = (
        Saga("ok")
        .step("a", lambda: calls.append("a") or 1)
        .step("b", lambda: calls.append("b") or 2)
        .run()
    )
    assert calls == ["a", "b"]
    assert result.completed == ["a", "b"]
    assert result.results == {"a": 1, "b": 2}


def test_failure_undoes_completed_steps_in_reverse_and_reraises() -> None:
    calls: list[str] = []
    failure = RuntimeError("step c failed")

    def fail() -> None:
        raise failure

    saga = (
        Saga("write")
        .step("a", lambda: calls.append("do a"), lambda: calls.append("undo a"))
        .step("b", lambda: calls.append("do b"), lambda: calls.append("undo b"))
        .step("c", fail, lambda: calls.append("undo c"))
        .step("d", lambda: calls.append("do d"))
    )

    with pytest.raises(RuntimeError) as excinfo:
        saga.run()

    assert excinfo.value is failure
    assert calls == ["do a", "do b", "undo b", "undo a"]
    assert rolled_back_steps(excinfo.value) == ("b", "a")


def test_failing_undo_does_not_stop_other_undos() -> None:
    calls: list[str] = []

    def broken_undo() -> None:
        raise ValueError("cannot undo b")

    def fail() -> None:
        raise KeyError("boom")

    saga = (
        Saga("write")
        .step("a", lambda: None, lambda: calls.append("undo a"))
        .step("b", lambda: None, broken_undo)
        .step("c", fail)
    )

    with pytest.raises(KeyError) as excinfo:
        saga.run()

    assert calls == ["undo a"]
    assert rolled_back_steps(excinfo.value) == ("a",)
    assert excinfo.value.compensation_failures == ("b",)


def test_failure_on_first_step_rolls_back_nothing() -> None:
    def fail() -> None:
        raise RuntimeError("catalog down")

    with pytest.raises(RuntimeError) as excinfo:
        Saga("write").step("catalog", fail).run()

    assert rolled_back_steps(excinfo.value) == ()
