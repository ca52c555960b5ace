"""Unified error types for the dockrelease pipeline.

Every failure that can end a release run is expressed through a compact
hierarchy that captures the stage it happened in and a serialisable context
payload, so the CLI, the JSONL event log and the notification body can all
render the same diagnosis.  Collaborator-specific failures (remote shell,
local tools, mail relay) subclass :class:`PipelineError` so the stage executor
can coerce them uniformly into :class:`StageExecutionError`.
"""

from __future__ import annotations

from collections.abc import Mapping, MutableMapping
from dataclasses import dataclass, field
from typing import Any

__all__ = [
    "PipelineError",
    "StageExecutionError",
    "StageFailure",
    "ConfigurationError",
    "DependencyError",
    "RemoteExecutionError",
    "ToolInvocationError",
    "NotificationSendError",
    "PipelineCancelled",
    "attach_context",
    "coerce_stage_error",
]


@dataclass(slots=True)
class PipelineError(RuntimeError):
    """Base class for pipeline level failures.

    Attributes
    ----------
    message:
        Human readable description of the failure.
    stage:
        Optional stage name (``None`` for configuration level issues).
    context:
        JSON serialisable dictionary with granular diagnostics.
    cause:
        Underlying exception (kept for debugging, not included in ``__str__``).
    """

    message: str
    stage: str | None = None
    context: MutableMapping[str, Any] = field(default_factory=dict)
    cause: BaseException | None = None

    def __post_init__(self) -> None:
        if self.context is None:
            self.context = {}

    def __str__(self) -> str:
        if self.stage:
            return f"[{self.stage}] {self.message}"
        return self.message


class StageExecutionError(PipelineError):
    """Error raised when a specific stage fails to execute."""


StageFailure = StageExecutionError


class ConfigurationError(PipelineError):
    """Raised when configuration validation fails."""


class DependencyError(PipelineError):
    """Raised when a required external tool is missing."""


class PipelineCancelled(PipelineError):
    """Raised at a stage boundary once cancellation has been requested."""


@dataclass(slots=True)
class RemoteExecutionError(PipelineError):
    """Remote command could not connect, authenticate, or exited non-zero."""

    exit_code: int | None = None
    output: str = ""

    def __str__(self) -> str:
        base = PipelineError.__str__(self)
        if self.exit_code is None:
            return base
        return f"{base} (exit code {self.exit_code})"


@dataclass(slots=True)
class ToolInvocationError(PipelineError):
    """Local collaborator (build tool, scanner, registry client) failed."""

    exit_code: int | None = None
    output: str = ""

    def __str__(self) -> str:
        base = PipelineError.__str__(self)
        if self.exit_code is None:
            return base
        return f"{base} (exit code {self.exit_code})"


class NotificationSendError(PipelineError):
    """The mail relay could not be reached at finalization time."""


def attach_context(
    error: PipelineError,
    context: Mapping[str, Any] | None,
) -> PipelineError:
    """Merge ``context`` into ``error.context`` preserving existing keys."""

    if not context:
        return error
    for key, value in context.items():
        error.context.setdefault(key, value)
    return error


def coerce_stage_error(
    stage: str,
    message: str,
    *,
    context: Mapping[str, Any] | None = None,
    cause: BaseException | None = None,
) -> StageExecutionError:
    """Create :class:`StageExecutionError` with a rich context payload."""

    payload: MutableMapping[str, Any] = {}
    if context:
        payload.update(context)
    if cause is not None:
        payload.setdefault("cause", repr(cause))
        exit_code = getattr(cause, "exit_code", None)
        if exit_code is not None:
            payload.setdefault("exit_code", exit_code)
    return StageExecutionError(message=message, stage=stage, context=payload, cause=cause)
