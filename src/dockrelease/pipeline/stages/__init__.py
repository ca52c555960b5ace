"""Stage registry for the release pipeline."""

from __future__ import annotations

from . import cleanup, deploy, image, scan, source
from .base import PipelineRun, RunStatus, StageDefinition, StageOutcome, StageResult

PIPELINE_STAGES: list[StageDefinition] = [
    StageDefinition("Checkout", source.run_checkout),
    StageDefinition("Build Application", source.run_build),
    StageDefinition("Static Analysis", scan.run_static_analysis),
    StageDefinition("Build Docker Image", image.run_build_image),
    StageDefinition("Vulnerability Scan", scan.run_vulnerability_scan),
    StageDefinition("Push Docker Image", image.run_push_image),
    StageDefinition("Clean Docker Resources", cleanup.run),
    StageDefinition("Deploy Container", deploy.run),
]

STAGE_NAMES: tuple[str, ...] = tuple(stage.name for stage in PIPELINE_STAGES)

__all__ = [
    "PIPELINE_STAGES",
    "STAGE_NAMES",
    "PipelineRun",
    "RunStatus",
    "StageDefinition",
    "StageOutcome",
    "StageResult",
]
