"""Pipeline runtime: per-run session and the fail-fast stage executor."""

from .executor import Finalizer, StageExecutor
from .session import PipelineSession, StagePlan, build_stage_plan

__all__ = [
    "Finalizer",
    "PipelineSession",
    "StagePlan",
    "StageExecutor",
    "build_stage_plan",
]
