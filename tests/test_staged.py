import asyncio

import pytest

from icon_evolver.errors import ExternalServiceError, InputValidationError, InvalidTransitionError
from icon_evolver.staged import StagedPipeline, StageFlow, StageStep, back_targets, invoke

FLOW = StageFlow(
    initial="IDLE",
    states=("IDLE", "LOADING", "LOADED", "BUILDING", "BUILT"),
    steps=(
        StageStep(name="load", entry=("IDLE",), pending="LOADING", done="LOADED", fallback="IDLE", output="data"),
        StageStep(
            name="build",
            entry=("LOADED", "BUILT"),
            pending="BUILDING",
            done="BUILT",
            fallback="LOADED",
            output="result",
            requires=("data",),
        ),
    ),
    back_targets=back_targets({"LOADED": ["IDLE"], "BUILT": ["LOADED", "IDLE"], "BUILDING": ["LOADED"]}),
)


def value(v):
    async def call():
        return v
    return call


def failing(exc):
    async def call():
        raise exc
    return call


def test_transition_table():
    table = FLOW.transition_table()
    assert table[("IDLE", "load.start")] == "LOADING"
    assert table[("LOADING", "load.succeed")] == "LOADED"
    assert table[("LOADING", "load.fail")] == "IDLE"
    assert table[("BUILT", "build.start")] == "BUILDING"
    assert ("IDLE", "build.start") not in table
    assert FLOW.required_outputs("BUILT") == ("data", "result")


def test_run_success_produces_new_snapshot():
    p = StagedPipeline(FLOW, context={"n": 0})
    before = p.snapshot
    after = asyncio.run(p.run("load", value("D"), on_success=lambda r: {"n": 1}))
    assert before.state == "IDLE" and before.output("data") is None
    assert after.state == "LOADED"
    assert after.output("data") == "D"
    assert after.get("n") == 1
    assert not after.busy
    with pytest.raises(TypeError):
        after.outputs["data"] = "x"


def test_failure_rolls_back_one_step_and_keeps_outputs():
    p = StagedPipeline(FLOW)
    asyncio.run(p.run("load", value("D")))
    asyncio.run(p.run("build", value("R1")))
    with pytest.raises(ExternalServiceError) as exc:
        asyncio.run(p.run("build", failing(RuntimeError("boom"))))
    assert exc.value.stage == "build"
    assert p.state == "LOADED"
    assert p.snapshot.output("data") == "D"
    assert p.snapshot.output("result") == "R1"
    assert "boom" in p.snapshot.error
    assert not p.busy


def test_first_stage_failure_returns_to_initial():
    p = StagedPipeline(FLOW)
    with pytest.raises(InputValidationError):
        asyncio.run(p.run("load", failing(InputValidationError("bad"))))
    assert p.state == "IDLE"


def test_start_not_allowed_from_state():
    p = StagedPipeline(FLOW)
    with pytest.raises(InvalidTransitionError):
        asyncio.run(p.run("build", value("R")))
    assert p.state == "IDLE"
    assert not p.can_start("build")
    assert p.can_start("load")


def test_single_flight_ignores_second_request():
    p = StagedPipeline(FLOW)
    gate = asyncio.Event()
    calls = []

    async def slow():
        calls.append("slow")
        await gate.wait()
        return "D"

    async def scenario():
        task = asyncio.ensure_future(p.run("load", slow))
        await asyncio.sleep(0)
        assert p.busy
        ignored = await p.run("load", value("other"))
        assert ignored.state == "LOADING"
        gate.set()
        return await task

    final = asyncio.run(scenario())
    assert final.output("data") == "D"
    assert calls == ["slow"]


def test_stale_response_is_discarded_after_navigation():
    p = StagedPipeline(FLOW)
    asyncio.run(p.run("load", value("D")))
    gate = asyncio.Event()

    async def slow():
        await gate.wait()
        return "late"

    async def scenario():
        task = asyncio.ensure_future(p.run("build", slow))
        await asyncio.sleep(0)
        p.go_to("LOADED")
        gate.set()
        return await task

    snap = asyncio.run(scenario())
    assert snap.state == "LOADED"
    assert snap.output("result") is None
    assert not snap.busy


def test_cancelled_stage_rolls_back_and_frees_pipeline():
    p = StagedPipeline(FLOW)
    asyncio.run(p.run("load", value("D")))

    async def hang():
        await asyncio.Event().wait()

    async def scenario():
        task = asyncio.ensure_future(p.run("build", hang))
        await asyncio.sleep(0)
        assert p.state == "BUILDING" and p.busy
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(scenario())
    assert p.state == "LOADED"
    assert not p.busy
    assert p.snapshot.error == "build cancelled"
    assert p.snapshot.output("data") == "D"
    assert asyncio.run(p.run("build", value("R"))).output("result") == "R"


def test_cancelled_task_frees_pipeline():
    p = StagedPipeline(FLOW)
    asyncio.run(p.run("load", value("D")))

    async def hang():
        await asyncio.Event().wait()

    async def scenario():
        task = asyncio.ensure_future(p.run_task("side job", hang))
        await asyncio.sleep(0)
        assert p.busy
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(scenario())
    assert p.state == "LOADED"
    assert not p.busy
    assert asyncio.run(p.run_task("side job", value(7))) == (True, 7)


def test_go_to_whitelist_and_requirements():
    p = StagedPipeline(FLOW)
    asyncio.run(p.run("load", value("D")))
    asyncio.run(p.run("build", value("R")))
    with pytest.raises(InvalidTransitionError):
        p.go_to("BUILDING")
    snap = p.go_to("LOADED")
    assert snap.state == "LOADED"
    assert snap.output("result") == "R"
    with pytest.raises(InvalidTransitionError):
        p.go_to("BUILT")


def test_reset_clears_outputs_and_restores_context():
    p = StagedPipeline(FLOW, context={"n": 0})
    asyncio.run(p.run("load", value("D"), on_success=lambda r: {"n": 5}))
    snap = p.reset()
    assert snap.state == "IDLE"
    assert snap.output("data") is None
    assert snap.get("n") == 0


def test_run_task_does_not_move_state():
    p = StagedPipeline(FLOW)
    asyncio.run(p.run("load", value("D")))
    accepted, result = asyncio.run(p.run_task("side job", value(7)))
    assert accepted and result == 7
    assert p.state == "LOADED"


def test_invoke_runs_blocking_functions_in_executor():
    assert asyncio.run(invoke(lambda a, b: a + b, 2, 3)) == 5

    async def coro(a):
        return a * 2

    assert asyncio.run(invoke(coro, 4)) == 8
