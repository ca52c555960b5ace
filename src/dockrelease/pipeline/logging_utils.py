from __future__ import annotations

import hashlib
import json
import logging
import subprocess
import time
from contextlib import AbstractContextManager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any


def _make_json_safe(obj: Any) -> Any:
    """Recursively convert values into JSON-serialisable types."""
    if isinstance(obj, Path):
        return obj.as_posix()
    if isinstance(obj, dict):
        return {str(key): _make_json_safe(value) for key, value in obj.items()}
    if isinstance(obj, (list, tuple, set, frozenset)):
        return [_make_json_safe(value) for value in obj]
    if isinstance(obj, BaseException):
        return f"{type(obj).__name__}: {obj}"
    return obj


class JSONLWriter:
    def __init__(self, path: Path):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        if not self.path.exists():
            self.path.write_text("", encoding="utf-8")

    def emit(self, record: dict[str, Any]) -> None:
        try:
            with self.path.open("a", encoding="utf-8") as f:
                f.write(json.dumps(_make_json_safe(record), ensure_ascii=False) + "\n")
        except OSError as exc:
            logging.getLogger(__name__).warning(
                "Could not write to event log %s: %s", self.path, exc
            )


@dataclass
class RunStats:
    run_id: str
    job_name: str = ""
    stage_timings_ms: dict[str, float] = field(default_factory=dict)
    stage_counts: dict[str, dict[str, int]] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    failures: list[dict[str, Any]] = field(default_factory=list)
    config_snapshot: dict[str, Any] = field(default_factory=dict)

    def mark(self, stage: str, elapsed_ms: float, counts: dict[str, int] | None = None) -> None:
        self.stage_timings_ms[stage] = self.stage_timings_ms.get(stage, 0.0) + float(elapsed_ms)
        if counts:
            slot = self.stage_counts.setdefault(stage, {})
            for key, value in counts.items():
                slot[key] = slot.get(key, 0) + int(value)


class CoreLogger:
    def __init__(self, run_id: str, jsonl_path: Path, console_level: int = logging.INFO):
        self.run_id = run_id
        self.jsonl = JSONLWriter(jsonl_path)
        self.log = logging.getLogger(f"dockrelease.run.{run_id}")
        self.log.setLevel(console_level)
        if not self.log.handlers:
            handler = logging.StreamHandler()
            handler.setLevel(console_level)
            fmt = logging.Formatter("[%(asctime)s] [%(levelname)s] %(message)s", datefmt="%H:%M:%S")
            handler.setFormatter(fmt)
            self.log.addHandler(handler)
        self.log.propagate = False

    def event(self, stage: str, event: str, **fields: Any) -> None:
        record = {
            "ts": time.strftime("%Y-%m-%dT%H:%M:%S", time.gmtime()),
            "run_id": self.run_id,
            "stage": stage,
            "event": event,
        }
        record.update(fields)
        self.jsonl.emit(record)

    def info(self, message: str, *args: Any, **kwargs: Any) -> None:
        """Log an informational message forwarding formatting arguments."""

        self.log.info(message, *args, **kwargs)

    def warn(self, message: str, *args: Any, **kwargs: Any) -> None:
        """Log a warning message forwarding formatting arguments."""

        self.log.warning(message, *args, **kwargs)

    def error(self, message: str, *args: Any, **kwargs: Any) -> None:
        """Log an error message forwarding formatting arguments."""

        self.log.error(message, *args, **kwargs)


def _fmt_hms_ms(milliseconds: float) -> str:
    """Return a human readable string with millisecond precision."""

    safe_ms = max(0.0, float(milliseconds))
    seconds = safe_ms / 1000.0
    base_seconds = int(seconds)
    fractional_ms = int(round((seconds - base_seconds) * 1000))

    if fractional_ms == 1000:
        base_seconds += 1
        fractional_ms = 0

    hours, remainder = divmod(base_seconds, 3600)
    minutes, secs = divmod(remainder, 60)

    if hours:
        return f"{hours:d}:{minutes:02d}:{secs:02d}.{fractional_ms:03d}"
    if minutes:
        return f"{minutes:02d}:{secs:02d}.{fractional_ms:03d}"
    return f"00:{secs:02d}.{fractional_ms:03d}"


def suggest_fix(stage: str, err: BaseException) -> str:
    text = str(err).lower()
    if isinstance(err, TimeoutError | subprocess.TimeoutExpired) or "timed out" in text:
        return "Raise tool_timeout_sec/remote_timeout_sec or check the collaborator is responsive."
    if stage == "Checkout":
        return "Verify repo_url/repo_branch and that the agent can reach the git remote."
    if stage == "Build Application":
        return "Run the build_command locally in the workspace; check compiler output above."
    if stage == "Static Analysis":
        if "token" in text or "401" in text:
            return "Provide a valid sonar_token for the analysis server."
        return "Confirm sonar-scanner is installed and sonar_host_url is reachable."
    if stage == "Build Docker Image":
        return "Ensure the Docker daemon is running and docker_context contains a Dockerfile."
    if stage == "Vulnerability Scan":
        return "Install trivy and confirm the HTML template path is valid."
    if stage == "Push Docker Image":
        if "denied" in text or "unauthorized" in text:
            return "Check registry_username/registry_password credentials."
        return "Verify the registry is reachable and the image was built."
    if stage in {"Clean Docker Resources", "Deploy Container"}:
        if "exit code 255" in text or "permission denied" in text:
            return "Check remote_host/remote_user and that the SSH key is authorised."
        return "Inspect the remote docker daemon; the command output is in the event log."
    return "Check logs for details; ensure tools are installed and credentials are set."


class StageGuard(AbstractContextManager["StageGuard"]):
    """Time one stage, log its outcome and record failures in ``RunStats``.

    Exceptions are never swallowed: the executor owns the fail-fast decision.
    """

    def __init__(self, corelog: CoreLogger, stats: RunStats, stage: str):
        self.corelog = corelog
        self.stats = stats
        self.stage = stage
        self.start: float | None = None
        self.elapsed_ms: float = 0.0

    def __enter__(self) -> StageGuard:
        self.start = time.time()
        self.corelog.info(f"[{self.stage}] start")
        self.corelog.event(self.stage, "start")
        return self

    def done(self, **counts: int) -> None:
        if counts:
            self.stats.mark(self.stage, 0.0, counts)

    def progress(self, message: str) -> None:
        self.corelog.info(f"[{self.stage}] {message}")
        self.corelog.event(self.stage, "progress", message=message)

    def __exit__(self, exc_type, exc, tb):  # type: ignore[override]
        if self.start is None:
            self.start = time.time()
        self.elapsed_ms = max(0.0, (time.time() - self.start) * 1000.0)
        dur_txt = _fmt_hms_ms(self.elapsed_ms)
        self.stats.mark(self.stage, self.elapsed_ms)

        if exc is None:
            self.corelog.event(self.stage, "stop", elapsed_ms=self.elapsed_ms)
            self.corelog.info(f"[{self.stage}] ok in {dur_txt}")
            return False

        root = getattr(exc, "cause", None) or exc
        trace_hash = hashlib.blake2s(
            f"{self.stage}:{type(root).__name__}".encode(), digest_size=8
        ).hexdigest()
        message = f"{type(root).__name__}: {root}"
        self.corelog.event(
            self.stage,
            "error",
            elapsed_ms=self.elapsed_ms,
            error=message,
            output=getattr(root, "output", None) or None,
            trace_hash=trace_hash,
        )
        self.corelog.error(f"[{self.stage}] {message} ({dur_txt})")
        self.stats.errors.append(f"{self.stage}: {message}")
        self.stats.failures.append(
            {
                "stage": self.stage,
                "error": message,
                "elapsed_ms": self.elapsed_ms,
                "suggestion": suggest_fix(self.stage, root),
            }
        )
        return False


__all__ = [
    "RunStats",
    "CoreLogger",
    "JSONLWriter",
    "StageGuard",
    "suggest_fix",
    "_fmt_hms_ms",
    "_make_json_safe",
]
