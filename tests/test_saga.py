import logging

import pytest

from app.errors import StoreUnavailable
from app.services.saga import Saga


def recorder(calls, name, result=None, error=None):
    async def step(ctx):
        calls.append(name)
        if error is not None:
            raise error
        return result
    return step


@pytest.mark.asyncio
async def test_steps_run_in_order_and_share_context():
    calls = []

    async def second(ctx):
        calls.append("second")
        return ctx["first"] + 1

    result = await (
        Saga("demo")
        .step("first", recorder(calls, "first", result=41))
        .step("second", second)
        .run()
    )

    assert calls == ["first", "second"]
    assert result.context["second"] == 42
    assert result.completed == ["first", "second"]
    assert result.clean


@pytest.mark.asyncio
async def test_critical_failure_compensates_in_reverse_and_reraises():
    calls = []
    saga = (
        Saga("demo")
        .step("a", recorder(calls, "a"), recorder(calls, "undo_a"))
        .step("b", recorder(calls, "b"), recorder(calls, "undo_b"))
        .step("c", recorder(calls, "c", error=StoreUnavailable("boom")), recorder(calls, "undo_c"))
        .step("tail", recorder(calls, "tail"), critical=False)
    )

    with pytest.raises(StoreUnavailable):
        await saga.run()

    # the failed step is not compensated and the tail never runs
    assert calls == ["a", "b", "c", "undo_b", "undo_a"]


@pytest.mark.asyncio
async def test_tail_failure_is_recorded_not_compensated():
    calls = []
    result = await (
        Saga("demo")
        .step("a", recorder(calls, "a"), recorder(calls, "undo_a"))
        .step("t1", recorder(calls, "t1", error=RuntimeError("lost")), critical=False)
        .step("t2", recorder(calls, "t2"), critical=False)
        .run()
    )

    assert calls == ["a", "t1", "t2"]
    assert result.tail_failures == ["t1"]
    assert result.completed == ["a", "t2"]
    assert not result.clean


@pytest.mark.asyncio
async def test_failing_compensation_is_logged_and_original_error_wins(caplog):
    calls = []
    saga = (
        Saga("demo")
        .step("a", recorder(calls, "a"), recorder(calls, "undo_a"))
        .step("b", recorder(calls, "b"), recorder(calls, "undo_b", error=RuntimeError("undo broke")))
        .step("c", recorder(calls, "c", error=StoreUnavailable("boom")))
    )

    with caplog.at_level(logging.ERROR, logger="ecoswap.saga"):
        with pytest.raises(StoreUnavailable):
            await saga.run()

    assert calls == ["a", "b", "c", "undo_b", "undo_a"]
    assert "SAGA_COMPENSATION_FAIL" in caplog.text
