"""Container image build and registry push stages."""

from __future__ import annotations

from typing import TYPE_CHECKING

from ..errors import ConfigurationError
from ..logging_utils import StageGuard
from .base import PipelineRun

if TYPE_CHECKING:
    from ..orchestrator import ReleasePipeline

__all__ = ["run_build_image", "run_push_image"]


def run_build_image(pipeline: ReleasePipeline, run: PipelineRun, guard: StageGuard) -> None:
    cfg = pipeline.config
    pipeline.tools.run(["docker", "build", "-t", cfg.image_ref, cfg.docker_context])
    guard.done(images=1)


def run_push_image(pipeline: ReleasePipeline, run: PipelineRun, guard: StageGuard) -> None:
    cfg = pipeline.config
    if not cfg.registry_password:
        raise ConfigurationError("registry_password is required to push the image")
    pipeline.tools.run(
        ["docker", "login", "--username", cfg.registry_username, "--password-stdin"],
        input_text=cfg.registry_password,
        redact=[cfg.registry_password],
    )
    try:
        pipeline.tools.run(["docker", "push", cfg.image_ref])
    finally:
        pipeline.tools.run(["docker", "logout"])
    guard.done(pushed=1)
