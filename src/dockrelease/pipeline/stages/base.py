"""Shared state and definitions for pipeline stages."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any

from ..errors import PipelineError


class RunStatus(str, Enum):
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"
    UNKNOWN = "UNKNOWN"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True, slots=True)
class StageOutcome:
    name: str
    ordinal: int
    status: RunStatus
    elapsed_ms: float = 0.0
    error: str | None = None
    output_path: Path | None = None


@dataclass
class PipelineRun:
    """Record of one run: identity, stage sequence, outcomes and final status."""

    run_id: str
    job_name: str
    run_number: int
    stage_names: tuple[str, ...] = ()
    status: RunStatus = RunStatus.UNKNOWN
    outcomes: list[StageOutcome] = field(default_factory=list)
    failed_stage: str | None = None
    cause: BaseException | None = None
    artifacts: dict[str, Path] = field(default_factory=dict)
    _sealed: bool = field(default=False, repr=False)

    @property
    def sealed(self) -> bool:
        return self._sealed

    def _ensure_open(self) -> None:
        if self._sealed:
            raise PipelineError(f"Run {self.run_id} is finalized and can no longer change")

    def record_success(
        self,
        name: str,
        ordinal: int,
        elapsed_ms: float,
        output_path: Path | None = None,
    ) -> StageOutcome:
        self._ensure_open()
        outcome = StageOutcome(
            name=name,
            ordinal=ordinal,
            status=RunStatus.SUCCESS,
            elapsed_ms=elapsed_ms,
            output_path=output_path,
        )
        self.outcomes.append(outcome)
        if output_path is not None:
            self.artifacts[name] = output_path
        return outcome

    def record_failure(
        self,
        name: str,
        ordinal: int,
        elapsed_ms: float,
        cause: BaseException,
    ) -> StageOutcome:
        self._ensure_open()
        outcome = StageOutcome(
            name=name,
            ordinal=ordinal,
            status=RunStatus.FAILURE,
            elapsed_ms=elapsed_ms,
            error=str(cause),
        )
        self.outcomes.append(outcome)
        self.mark_failed(name, cause)
        return outcome

    def mark_failed(self, stage: str | None, cause: BaseException) -> None:
        self._ensure_open()
        self.status = RunStatus.FAILURE
        self.failed_stage = stage
        self.cause = cause

    def mark_succeeded(self) -> None:
        self._ensure_open()
        self.status = RunStatus.SUCCESS

    def seal(self) -> None:
        self._sealed = True

    @property
    def succeeded(self) -> bool:
        return self.status is RunStatus.SUCCESS

    def summary(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "job_name": self.job_name,
            "run_number": self.run_number,
            "status": self.status.value,
            "failed_stage": self.failed_stage,
            "cause": str(self.cause) if self.cause is not None else None,
            "stages": [
                {
                    "name": o.name,
                    "ordinal": o.ordinal,
                    "status": o.status.value,
                    "elapsed_ms": round(o.elapsed_ms, 3),
                    "error": o.error,
                    "output_path": o.output_path,
                }
                for o in self.outcomes
            ],
            "artifacts": dict(self.artifacts),
        }


@dataclass
class StageResult:
    """Optional return value of a stage runner."""

    output_path: Path | None = None


StageRunner = Callable[["ReleasePipeline", PipelineRun, Any], "StageResult | None"]

if TYPE_CHECKING:
    from ..orchestrator import ReleasePipeline


@dataclass(frozen=True)
class StageDefinition:
    name: str
    runner: StageRunner


__all__ = [
    "PipelineRun",
    "RunStatus",
    "StageDefinition",
    "StageOutcome",
    "StageResult",
    "StageRunner",
]
