"""Static analysis and image vulnerability scanning stages."""

from __future__ import annotations

import os
from typing import TYPE_CHECKING

from ..logging_utils import StageGuard
from .base import PipelineRun, StageResult

if TYPE_CHECKING:
    from ..orchestrator import ReleasePipeline

__all__ = ["run_static_analysis", "run_vulnerability_scan"]


def run_static_analysis(pipeline: ReleasePipeline, run: PipelineRun, guard: StageGuard) -> None:
    cfg = pipeline.config
    argv = [
        "sonar-scanner",
        f"-Dsonar.projectKey={cfg.project_name}",
        f"-Dsonar.projectName={cfg.project_name}",
        f"-Dsonar.host.url={cfg.sonar_host_url}",
    ]
    secrets: list[str] = []
    env = None
    if cfg.sonar_token:
        # Passed through the environment so the token never shows up in argv.
        env = dict(os.environ)
        env["SONAR_TOKEN"] = cfg.sonar_token
        secrets.append(cfg.sonar_token)
    pipeline.tools.run(argv, env=env, redact=secrets)
    guard.done(analysed=1)


def run_vulnerability_scan(
    pipeline: ReleasePipeline, run: PipelineRun, guard: StageGuard
) -> StageResult:
    cfg = pipeline.config
    result = pipeline.tools.run(
        [
            "trivy",
            "image",
            "--severity",
            cfg.trivy_severity,
            "--format",
            "template",
            "--template",
            cfg.trivy_template,
            "--output",
            cfg.trivy_report,
            cfg.image_ref,
        ],
        output_path=cfg.trivy_report,
    )
    guard.progress(f"report written to {result.output_path}")
    guard.done(scanned=1)
    return StageResult(output_path=result.output_path)
