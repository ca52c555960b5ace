"""Source checkout and application build stages."""

from __future__ import annotations

from typing import TYPE_CHECKING

from ..logging_utils import StageGuard
from .base import PipelineRun, StageResult

if TYPE_CHECKING:
    from ..orchestrator import ReleasePipeline

__all__ = ["run_checkout", "run_build"]


def run_checkout(pipeline: ReleasePipeline, run: PipelineRun, guard: StageGuard) -> None:
    cfg = pipeline.config
    if not cfg.repo_url:
        pipeline.corelog.info("[Checkout] skipped (repo_url not set, using workspace as-is)")
        guard.done(skipped=1)
        return

    target = cfg.workspace
    if (target / ".git").exists():
        pipeline.tools.run(["git", "fetch", "--depth", "1", "origin", cfg.repo_branch], cwd=target)
        pipeline.tools.run(["git", "checkout", "--force", "FETCH_HEAD"], cwd=target)
    else:
        target.parent.mkdir(parents=True, exist_ok=True)
        pipeline.tools.run(
            [
                "git",
                "clone",
                "--depth",
                "1",
                "--branch",
                cfg.repo_branch,
                "--",
                cfg.repo_url,
                str(target),
            ],
            cwd=target.parent,
        )
    guard.done(checked_out=1)


def run_build(pipeline: ReleasePipeline, run: PipelineRun, guard: StageGuard) -> StageResult:
    result = pipeline.tools.run(pipeline.config.build_command, output_path="target")
    guard.done(built=1)
    return StageResult(output_path=result.output_path)
