"""Remote docker resource cleanup stage."""

from __future__ import annotations

from typing import TYPE_CHECKING

from ..cleanup import parse_cleanup_tokens
from ..logging_utils import StageGuard
from .base import PipelineRun

if TYPE_CHECKING:
    from ..orchestrator import ReleasePipeline

__all__ = ["run"]


def run(pipeline: ReleasePipeline, run: PipelineRun, guard: StageGuard) -> None:
    tokens = parse_cleanup_tokens(pipeline.config.cleanup_types)
    report = pipeline.cleanup.clean(tokens)
    pipeline.corelog.event(
        guard.stage,
        "cleanup",
        executed=report.commands,
        skipped=[s.token for s in report.skipped],
    )
    pipeline.stats.warnings.extend(s.message for s in report.skipped)
    guard.done(executed=len(report.executed), skipped=len(report.skipped))
