from __future__ import annotations

import threading
from pathlib import Path

import pytest

from dockrelease.pipeline.config import PipelineConfig
from dockrelease.pipeline.errors import (
    PipelineCancelled,
    PipelineError,
    StageExecutionError,
    StageFailure,
)
from dockrelease.pipeline.logging_utils import CoreLogger, RunStats
from dockrelease.pipeline.runtime import PipelineSession, StageExecutor
from dockrelease.pipeline.stages import RunStatus, StageDefinition, StageResult


class _StubPipeline:
    def __init__(self, tmp_path: Path, **overrides) -> None:  # type: ignore[no-untyped-def]
        self.config = PipelineConfig(
            log_dir=tmp_path / "logs", job_name="shop", run_number=42, **overrides
        )
        self.run_id = f"test-{tmp_path.name}"
        self.corelog = CoreLogger(self.run_id, self.config.log_dir / "run.jsonl")
        self.stats = RunStats(run_id=self.run_id)


class _Finalizer:
    def __init__(self) -> None:
        self.calls: list[tuple[RunStatus, int]] = []

    def __call__(self, run) -> None:  # type: ignore[no-untyped-def]
        self.calls.append((run.status, len(run.outcomes)))


def _stages(count: int, executed: list[str], *, fail_at: int | None = None, error=None):  # type: ignore[no-untyped-def]
    definitions = []
    for index in range(1, count + 1):
        name = f"Stage {index}"

        def _runner(pipeline, run, guard, _name=name, _index=index):  # type: ignore[no-untyped-def]
            executed.append(_name)
            if _index == fail_at:
                raise error or RuntimeError(f"{_name} exploded")

        definitions.append(StageDefinition(name, _runner))
    return definitions


def _execute(pipeline, definitions, finalizer=None, cancel_event=None):  # type: ignore[no-untyped-def]
    session = PipelineSession.create(
        pipeline, stage_definitions=definitions, cancel_event=cancel_event
    )
    return StageExecutor(pipeline=pipeline, session=session).run(finalizer=finalizer)


def test_all_stages_succeed_in_declared_order(tmp_path: Path) -> None:
    executed: list[str] = []
    finalizer = _Finalizer()

    run = _execute(_StubPipeline(tmp_path), _stages(4, executed), finalizer)

    assert run.status is RunStatus.SUCCESS
    assert executed == ["Stage 1", "Stage 2", "Stage 3", "Stage 4"]
    assert [o.name for o in run.outcomes] == executed
    assert [o.ordinal for o in run.outcomes] == [1, 2, 3, 4]
    assert all(o.status is RunStatus.SUCCESS for o in run.outcomes)
    assert finalizer.calls == [(RunStatus.SUCCESS, 4)]


def test_failure_at_stage_three_of_six_stops_and_still_finalizes(tmp_path: Path) -> None:
    executed: list[str] = []
    finalizer = _Finalizer()

    run = _execute(_StubPipeline(tmp_path), _stages(6, executed, fail_at=3), finalizer)

    assert executed == ["Stage 1", "Stage 2", "Stage 3"]
    assert run.status is RunStatus.FAILURE
    assert run.failed_stage == "Stage 3"
    assert isinstance(run.cause, StageFailure)
    assert run.cause.stage == "Stage 3"
    assert isinstance(run.cause.cause, RuntimeError)
    assert [o.status for o in run.outcomes] == [
        RunStatus.SUCCESS,
        RunStatus.SUCCESS,
        RunStatus.FAILURE,
    ]
    assert finalizer.calls == [(RunStatus.FAILURE, 3)]


def test_stage_execution_error_is_recorded_unchanged(tmp_path: Path) -> None:
    error = StageExecutionError("gate failed", stage="Stage 1", context={"k": "v"})
    run = _execute(_StubPipeline(tmp_path), _stages(2, [], fail_at=1, error=error))

    assert run.cause is error
    assert run.outcomes[0].error == "[Stage 1] gate failed"


def test_stage_result_output_path_is_recorded(tmp_path: Path) -> None:
    report = tmp_path / "trivy-report.html"
    definitions = [StageDefinition("Scan", lambda p, r, g: StageResult(output_path=report))]

    run = _execute(_StubPipeline(tmp_path), definitions)

    assert run.outcomes[0].output_path == report
    assert run.artifacts == {"Scan": report}


def test_cancellation_is_honoured_at_the_next_stage_boundary(tmp_path: Path) -> None:
    cancel = threading.Event()
    executed: list[str] = []
    finalizer = _Finalizer()

    def _first(pipeline, run, guard):  # type: ignore[no-untyped-def]
        executed.append("first")
        cancel.set()

    def _second(pipeline, run, guard):  # type: ignore[no-untyped-def]
        executed.append("second")

    run = _execute(
        _StubPipeline(tmp_path),
        [StageDefinition("first", _first), StageDefinition("second", _second)],
        finalizer,
        cancel,
    )

    assert executed == ["first"]
    assert run.status is RunStatus.FAILURE
    assert isinstance(run.cause, PipelineCancelled)
    assert run.failed_stage is None
    assert finalizer.calls == [(RunStatus.FAILURE, 1)]


def test_interrupt_still_finalizes_with_unknown_status(tmp_path: Path) -> None:
    finalizer = _Finalizer()
    definitions = _stages(3, [], fail_at=2, error=KeyboardInterrupt())

    with pytest.raises(KeyboardInterrupt):
        _execute(_StubPipeline(tmp_path), definitions, finalizer)

    assert finalizer.calls == [(RunStatus.UNKNOWN, 1)]


def test_run_is_sealed_after_finalization(tmp_path: Path) -> None:
    run = _execute(_StubPipeline(tmp_path), _stages(1, []))

    assert run.sealed
    with pytest.raises(PipelineError):
        run.record_success("late", 99, 0.0)
    with pytest.raises(PipelineError):
        run.mark_failed("late", RuntimeError("x"))


def test_skip_stages_are_not_planned(tmp_path: Path) -> None:
    executed: list[str] = []
    pipeline = _StubPipeline(tmp_path, skip_stages=["Stage 2"])

    run = _execute(pipeline, _stages(3, executed))

    assert executed == ["Stage 1", "Stage 3"]
    assert run.stage_names == ("Stage 1", "Stage 3")
    assert [o.ordinal for o in run.outcomes] == [1, 2]


def test_failures_are_logged_with_a_suggestion(tmp_path: Path) -> None:
    pipeline = _StubPipeline(tmp_path)
    _execute(pipeline, _stages(2, [], fail_at=1))

    assert pipeline.stats.failures[0]["stage"] == "Stage 1"
    assert "RuntimeError" in pipeline.stats.failures[0]["error"]
    assert pipeline.stats.failures[0]["suggestion"]
    events = (tmp_path / "logs" / "run.jsonl").read_text().splitlines()
    assert any('"event": "error"' in line for line in events)


def test_run_logger_does_not_propagate_to_root(tmp_path: Path) -> None:
    corelog = CoreLogger(f"prop-{tmp_path.name}", tmp_path / "run.jsonl")

    assert corelog.log.propagate is False
    assert len(corelog.log.handlers) == 1
