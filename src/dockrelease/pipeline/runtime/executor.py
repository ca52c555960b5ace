"""Fail-fast execution of an ordered stage plan with a guaranteed finalizer."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from ..errors import (
    PipelineCancelled,
    StageExecutionError,
    attach_context,
    coerce_stage_error,
)
from ..logging_utils import StageGuard
from ..stages import PipelineRun, StageResult
from .session import PipelineSession, StagePlan

if TYPE_CHECKING:  # pragma: no cover - avoid runtime import cycle
    from ..orchestrator import ReleasePipeline

Finalizer = Callable[[PipelineRun], None]


@dataclass(slots=True)
class StageExecutor:
    """Execute the session's stages in order, stopping at the first failure."""

    pipeline: ReleasePipeline
    session: PipelineSession

    def run(self, finalizer: Finalizer | None = None) -> PipelineRun:
        run = self.session.run
        corelog = self.pipeline.corelog
        try:
            for plan in self.session.stages:
                if self.session.cancelled:
                    corelog.warn(f"Cancellation requested; not starting '{plan.name}'")
                    run.mark_failed(
                        None,
                        PipelineCancelled(f"Run cancelled before stage '{plan.name}'"),
                    )
                    break
                if self._run_plan(plan) is not None:
                    break
            else:
                run.mark_succeeded()
        finally:
            try:
                if finalizer is not None:
                    finalizer(run)
            finally:
                run.seal()
        return run

    def _run_plan(self, plan: StagePlan) -> StageExecutionError | None:
        pipeline = self.pipeline
        run = self.session.run
        guard = StageGuard(pipeline.corelog, pipeline.stats, plan.name)
        context = {
            "stage": plan.name,
            "ordinal": plan.ordinal,
            "run_id": run.run_id,
            "job_name": run.job_name,
            "run_number": run.run_number,
        }
        try:
            with guard:
                try:
                    result = plan.run(pipeline, run, guard)
                except StageExecutionError as exc:
                    raise attach_context(exc, context)
                except Exception as exc:
                    raise coerce_stage_error(
                        plan.name,
                        f"Stage '{plan.name}' execution failed",
                        context=context,
                        cause=exc,
                    ) from exc
        except StageExecutionError as exc:
            run.record_failure(plan.name, plan.ordinal, guard.elapsed_ms, exc)
            return exc

        output_path = result.output_path if isinstance(result, StageResult) else None
        run.record_success(plan.name, plan.ordinal, guard.elapsed_ms, output_path)
        return None


__all__ = ["Finalizer", "StageExecutor"]
