"""Tests for manual single-phase runs."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

import httpx
import pytest

from waterfall.models import Phase, PhaseState, PhaseStatus, PipelineState
from waterfall.pipeline.context import CancellationHandle, RunContext
from waterfall.pipeline.step_runner import StepRunner

if TYPE_CHECKING:
    from collections.abc import Callable

    from waterfall.pipeline.transport import WaterfallClient


def _recording_handler(
    seen: list[dict[str, Any]], response: httpx.Response
) -> Callable[[httpx.Request], httpx.Response]:
    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(json.loads(request.content))
        return response

    return handler


@pytest.mark.asyncio
async def test_step_completes_with_response_payload(
    make_client: Callable[..., WaterfallClient],
) -> None:
    seen: list[dict[str, Any]] = []
    client = make_client(_recording_handler(seen, httpx.Response(200, json={"plan": "steps"})))
    context = RunContext()
    runner = StepRunner(client, context)

    outcome = await runner.run("architect", "build a cli", provider="local")

    assert outcome.ok
    assert outcome.step == Phase.ARCHITECT
    assert outcome.data == {"plan": "steps"}
    assert context.state.current_phase == Phase.ARCHITECT
    assert context.state.phase(Phase.ARCHITECT) == PhaseState(
        status=PhaseStatus.COMPLETED, data={"plan": "steps"}
    )
    assert seen == [{"step": "architect", "input": "build a cli", "provider": "local"}]


@pytest.mark.asyncio
async def test_step_is_processing_while_request_is_in_flight(
    make_client: Callable[..., WaterfallClient],
) -> None:
    statuses: list[PhaseStatus] = []
    context = RunContext()

    def handler(_request: httpx.Request) -> httpx.Response:
        statuses.append(context.state.phase(Phase.EXECUTOR).status)
        return httpx.Response(200, json={"code": "print()"})

    runner = StepRunner(make_client(handler), context)

    await runner.run(Phase.EXECUTOR, {"plan": "p"})

    assert statuses == [PhaseStatus.PROCESSING]


@pytest.mark.asyncio
async def test_reviewer_gets_reasoner_plan_as_context(
    make_client: Callable[..., WaterfallClient],
) -> None:
    seen: list[dict[str, Any]] = []
    client = make_client(_recording_handler(seen, httpx.Response(200, json={"score": 80})))
    state = PipelineState(
        current_phase=Phase.EXECUTOR,
        phases={
            Phase.REASONER: PhaseState(status=PhaseStatus.COMPLETED, data={"steps": [1, 2]}),
            Phase.EXECUTOR: PhaseState(status=PhaseStatus.COMPLETED, data={"code": "x = 1"}),
        },
    )
    runner = StepRunner(client, RunContext(state))

    await runner.run(Phase.REVIEWER, "x = 1")

    assert seen[0]["context"] == {"plan": {"steps": [1, 2]}}


@pytest.mark.asyncio
async def test_out_of_order_step_still_runs(
    make_client: Callable[..., WaterfallClient],
) -> None:
    client = make_client(lambda _request: httpx.Response(200, json={"score": 70}))
    context = RunContext()
    runner = StepRunner(client, context)

    outcome = await runner.run(Phase.REVIEWER, "code")

    assert outcome.ok
    assert context.state.current_phase == Phase.REVIEWER
    assert context.state.phase(Phase.REVIEWER).status == PhaseStatus.COMPLETED


@pytest.mark.asyncio
async def test_failed_step_marks_error_and_keeps_data(
    make_client: Callable[..., WaterfallClient],
) -> None:
    client = make_client(lambda _request: httpx.Response(400, json={"error": "Invalid step"}))
    state = PipelineState(
        current_phase=Phase.REASONER,
        phases={Phase.REASONER: PhaseState(status=PhaseStatus.COMPLETED, data={"steps": []})},
    )
    context = RunContext(state)
    runner = StepRunner(client, context)

    outcome = await runner.run(Phase.REASONER, "again")

    assert not outcome.ok
    assert outcome.error == "Invalid step"
    reasoner = context.state.phase(Phase.REASONER)
    assert reasoner.status == PhaseStatus.ERROR
    assert reasoner.error == "Invalid step"
    assert reasoner.data == {"steps": []}


@pytest.mark.asyncio
async def test_unknown_step_name_raises(make_client: Callable[..., WaterfallClient]) -> None:
    runner = StepRunner(make_client(lambda _request: httpx.Response(200, json={})), RunContext())

    with pytest.raises(ValueError):
        await runner.run("planner", "x")


@pytest.mark.asyncio
async def test_step_that_lost_ownership_does_not_write(
    make_client: Callable[..., WaterfallClient],
) -> None:
    context = RunContext()
    handle = CancellationHandle("step-1")
    context.handle = handle

    def handler(_request: httpx.Request) -> httpx.Response:
        # Another run takes the context over while the request is in flight
        context.handle = None
        return httpx.Response(200, json={"plan": "late"})

    runner = StepRunner(make_client(handler), context)

    outcome = await runner.run(Phase.REASONER, "x", handle=handle)

    assert outcome.status == "cancelled"
    assert outcome.data is None
    reasoner = context.state.phase(Phase.REASONER)
    assert reasoner.status == PhaseStatus.PROCESSING
    assert reasoner.data is None


@pytest.mark.asyncio
async def test_failure_after_losing_ownership_is_not_recorded(
    make_client: Callable[..., WaterfallClient],
) -> None:
    context = RunContext()
    handle = CancellationHandle("step-1")
    context.handle = handle

    def handler(_request: httpx.Request) -> httpx.Response:
        context.handle = None
        return httpx.Response(400, json={"error": "Invalid step"})

    runner = StepRunner(make_client(handler), context)

    outcome = await runner.run(Phase.EXECUTOR, "x", handle=handle)

    assert outcome.status == "cancelled"
    assert context.state.phase(Phase.EXECUTOR).error is None
