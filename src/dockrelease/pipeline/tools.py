"""Narrow local interface to the external collaborators.

The build tool, the analysis and vulnerability scanners and the registry
client are all driven the same way: run an argument vector in the workspace,
succeed on exit status 0, and optionally point at an artefact it produced.
"""

from __future__ import annotations

import logging
import subprocess
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

from .errors import DependencyError, ToolInvocationError
from .remote import render_command

logger = logging.getLogger(__name__)

# Log at most this many trailing characters of a failing tool's output.
_OUTPUT_TAIL_CHARS = 4000

__all__ = ["ToolResult", "ToolRunner"]


@dataclass(frozen=True, slots=True)
class ToolResult:
    exit_code: int
    output: str
    output_path: Path | None = None


class ToolRunner:
    def __init__(
        self,
        workspace: Path,
        *,
        timeout_sec: float = 1800.0,
        run_process: Callable[..., subprocess.CompletedProcess[str]] | None = None,
    ) -> None:
        self.workspace = Path(workspace)
        self.timeout_sec = timeout_sec
        self._run_process = run_process or subprocess.run

    def run(
        self,
        argv: Sequence[str],
        *,
        input_text: str | None = None,
        output_path: Path | str | None = None,
        env: Mapping[str, str] | None = None,
        redact: Sequence[str] = (),
        cwd: Path | None = None,
    ) -> ToolResult:
        """Run ``argv`` and raise :class:`ToolInvocationError` unless it exits 0.

        ``redact`` lists literal values (tokens, passwords) that must not appear
        in logs or error payloads.
        """

        args = [str(a) for a in argv]
        shown = _redact(render_command(args), redact)
        logger.info("exec: %s", shown)
        try:
            completed = self._run_process(
                args,
                cwd=str(cwd or self.workspace),
                input=input_text,
                stdin=None if input_text is not None else subprocess.DEVNULL,
                capture_output=True,
                text=True,
                timeout=self.timeout_sec,
                env=dict(env) if env is not None else None,
                check=False,
            )
        except FileNotFoundError as exc:
            raise DependencyError(
                f"{args[0]} not found on PATH",
                context={"command": shown},
                cause=exc,
            ) from exc
        except subprocess.TimeoutExpired as exc:
            raise ToolInvocationError(
                f"{args[0]} timed out after {self.timeout_sec:g}s",
                context={"command": shown},
                cause=exc,
            ) from exc

        output = _redact(
            "\n".join(part for part in (completed.stdout, completed.stderr) if part),
            redact,
        )
        if completed.returncode != 0:
            tail = output[-_OUTPUT_TAIL_CHARS:]
            raise ToolInvocationError(
                f"{args[0]} exited with status {completed.returncode}",
                context={"command": shown, "output_tail": tail},
                exit_code=completed.returncode,
                output=tail,
            )

        resolved: Path | None = None
        if output_path is not None:
            resolved = Path(output_path)
            if not resolved.is_absolute():
                resolved = (cwd or self.workspace) / resolved
        return ToolResult(exit_code=completed.returncode, output=output, output_path=resolved)


def _redact(text: str, secrets: Sequence[str]) -> str:
    for secret in secrets:
        if secret:
            text = text.replace(secret, "***")
    return text
