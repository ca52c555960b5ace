"""Per-run session primitives: immutable stage plans plus run-owned state."""

from __future__ import annotations

import threading
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from ..config import PipelineConfig
from ..stages import PIPELINE_STAGES, PipelineRun, StageDefinition, StageResult

if TYPE_CHECKING:  # pragma: no cover - import cycle guard for type checkers only
    from ..orchestrator import ReleasePipeline


@dataclass(slots=True, frozen=True)
class StagePlan:
    """Immutable wrapper around a stage definition and its position."""

    definition: StageDefinition
    ordinal: int

    @property
    def name(self) -> str:
        return self.definition.name

    def run(self, pipeline: ReleasePipeline, run: PipelineRun, guard: Any) -> StageResult | None:
        return self.definition.runner(pipeline, run, guard)


@dataclass(slots=True)
class PipelineSession:
    """Container for per-run state and immutable configuration."""

    pipeline: ReleasePipeline
    config: PipelineConfig
    run: PipelineRun
    stages: tuple[StagePlan, ...]
    cancel_event: threading.Event = field(default_factory=threading.Event)

    @classmethod
    def create(
        cls,
        pipeline: ReleasePipeline,
        *,
        stage_definitions: Iterable[StageDefinition] | None = None,
        cancel_event: threading.Event | None = None,
    ) -> PipelineSession:
        config = pipeline.config
        definitions = list(PIPELINE_STAGES if stage_definitions is None else stage_definitions)
        known = {definition.name for definition in definitions}
        for name in config.skip_stages:
            if name not in known:
                message = f"skip_stages entry `{name}` matches no stage; ignoring it"
                pipeline.corelog.warn(message)
                pipeline.stats.warnings.append(message)
        plans = build_stage_plan(
            definition for definition in definitions if definition.name not in config.skip_stages
        )
        run = PipelineRun(
            run_id=pipeline.run_id,
            job_name=config.job_name,
            run_number=config.run_number,
            stage_names=tuple(plan.name for plan in plans),
        )
        return cls(
            pipeline=pipeline,
            config=config,
            run=run,
            stages=plans,
            cancel_event=cancel_event or threading.Event(),
        )

    def cancel(self) -> None:
        self.cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()


def build_stage_plan(definitions: Iterable[StageDefinition]) -> tuple[StagePlan, ...]:
    """Return an ordered tuple of ``StagePlan`` entries numbered from 1."""

    return tuple(StagePlan(defn, ordinal) for ordinal, defn in enumerate(definitions, start=1))


__all__ = ["PipelineSession", "StagePlan", "build_stage_plan"]
