"""Deploy the pushed image on the remote host."""

from __future__ import annotations

from typing import TYPE_CHECKING

from ..logging_utils import StageGuard
from ..remote import quote_remote
from .base import PipelineRun

if TYPE_CHECKING:
    from ..config import PipelineConfig
    from ..orchestrator import ReleasePipeline

__all__ = ["deploy_command", "run"]


def deploy_command(cfg: PipelineConfig) -> str:
    """Remote shell line replacing the running container with the new image."""

    image = quote_remote(cfg.image_ref)
    name = quote_remote(cfg.container_name)
    ports = quote_remote(cfg.port_mapping)
    return (
        f"docker pull {image} && "
        f"(docker stop {name} || true) && "
        f"(docker rm {name} || true) && "
        f"docker run -d --name {name} --restart unless-stopped -p {ports} {image}"
    )


def run(pipeline: ReleasePipeline, run: PipelineRun, guard: StageGuard) -> None:
    cfg = pipeline.config
    result = pipeline.remote.run(cfg.remote_host, deploy_command(cfg), pipeline.credentials)
    container_id = result.output.strip().splitlines()[-1] if result.output.strip() else ""
    if container_id:
        guard.progress(f"container {cfg.container_name} started ({container_id[:12]})")
    guard.done(deployed=1)
