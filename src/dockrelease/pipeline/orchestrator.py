"""Core orchestration for one release run."""

from __future__ import annotations

import logging
import threading
import time
import uuid
from collections.abc import Iterable, Mapping
from typing import Any

from .cleanup import CleanupDispatcher
from .config import PipelineConfig, build_pipeline_config
from .logging_utils import CoreLogger, RunStats, _fmt_hms_ms
from .notification import NotificationComposer, Transport
from .remote import RemoteExecutor, ScopedKeyProvider
from .runtime import PipelineSession, StageExecutor
from .stages import PipelineRun, StageDefinition
from .tools import ToolRunner

__all__ = ["ReleasePipeline", "run_pipeline"]


def run_pipeline(
    config: Mapping[str, Any] | PipelineConfig | None = None,
    *,
    cancel_event: threading.Event | None = None,
) -> PipelineRun:
    """Build a configuration from ``config`` and execute one release run."""

    pipe = ReleasePipeline(build_pipeline_config(config))
    return pipe.execute(cancel_event=cancel_event)


class ReleasePipeline:
    """Own the configuration and collaborators of a run and drive it to completion."""

    def __init__(
        self,
        config: PipelineConfig,
        *,
        tools: ToolRunner | None = None,
        remote: RemoteExecutor | None = None,
        credentials: ScopedKeyProvider | None = None,
        transport: Transport | None = None,
    ) -> None:
        self.config = config
        self.run_id = config.run_id or (
            time.strftime("%Y%m%d-%H%M%S") + "-" + uuid.uuid4().hex[:6]
        )

        self.corelog = CoreLogger(
            self.run_id,
            config.log_dir / "run.jsonl",
            console_level=(logging.WARNING if config.quiet else logging.INFO),
        )
        self.stats = RunStats(run_id=self.run_id, job_name=config.job_name)
        self.stats.config_snapshot = config.model_dump(mode="json")

        self.tools = tools or ToolRunner(config.workspace, timeout_sec=config.tool_timeout_sec)
        self.remote = remote or RemoteExecutor(timeout_sec=config.remote_timeout_sec)
        self.credentials = credentials or ScopedKeyProvider.from_config(config)
        self.cleanup = CleanupDispatcher(
            self.remote,
            self.credentials,
            config.remote_host,
            corelog=self.corelog,
        )
        self.notifier = NotificationComposer(config, transport)
        self.notification_sent: bool | None = None

    def execute(
        self,
        *,
        stage_definitions: Iterable[StageDefinition] | None = None,
        cancel_event: threading.Event | None = None,
    ) -> PipelineRun:
        session = PipelineSession.create(
            self,
            stage_definitions=stage_definitions,
            cancel_event=cancel_event,
        )
        self.corelog.info(
            f"Run {self.run_id}: {self.config.job_name} #{self.config.run_number} "
            f"({len(session.stages)} stages)"
        )
        self.corelog.event("run", "start", config=self.stats.config_snapshot)
        executor = StageExecutor(pipeline=self, session=session)
        return executor.run(finalizer=self._finalize)

    def _finalize(self, run: PipelineRun) -> None:
        self._log_summary(run)
        self.corelog.event("run", "stop", **run.summary())
        if not self.config.notify_enabled:
            self.corelog.info("[notify] skipped (notify_enabled=false)")
            return
        message = self.notifier.compose(run)
        self.notification_sent = self.notifier.send(message)
        self.corelog.event(
            "notify",
            "sent" if self.notification_sent else "failed",
            subject=message.subject,
            recipient=message.recipient,
        )

    def _log_summary(self, run: PipelineRun) -> None:
        failures = {f.get("stage"): f for f in self.stats.failures}
        attempted = {outcome.name for outcome in run.outcomes}
        self.corelog.info(f"Stage summary ({run.status.value}):")
        for name in run.stage_names:
            if name in failures:
                failure = failures[name]
                elapsed_ms = float(failure.get("elapsed_ms", 0.0))
                self.corelog.warn(
                    f"  - {name}: FAIL in {_fmt_hms_ms(elapsed_ms)}: {failure.get('error')}"
                    f" | Fix: {failure.get('suggestion')}"
                )
            elif name in attempted:
                elapsed_ms = float(self.stats.stage_timings_ms.get(name, 0.0))
                self.corelog.info(f"  - {name}: PASS in {_fmt_hms_ms(elapsed_ms)}")
            else:
                self.corelog.info(f"  - {name}: NOT RUN")
        for warning in self.stats.warnings:
            self.corelog.warn(f"  ! {warning}")
