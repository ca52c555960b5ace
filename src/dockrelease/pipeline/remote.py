"""Remote command execution over ssh with per-command credential scopes.

Commands are executed with an argument vector, never through a local shell.
The remote side still hands the command string to the login shell, so every
user-supplied value inside it must be quoted by the caller (see
:func:`quote_remote`).
"""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
import tempfile
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

from .errors import ConfigurationError, PipelineError, RemoteExecutionError

if TYPE_CHECKING:
    from .config import PipelineConfig

logger = logging.getLogger(__name__)

SSH_EXECUTABLE = "ssh"
# ssh reserves 255 for its own connection and authentication failures.
SSH_TRANSPORT_FAILURE = 255

ProcessRunner = Callable[..., "subprocess.CompletedProcess[str]"]

__all__ = [
    "ExecutionResult",
    "RemoteCredential",
    "RemoteExecutor",
    "ScopedKeyProvider",
    "build_ssh_command",
    "quote_remote",
    "render_command",
]


@dataclass(frozen=True, slots=True)
class RemoteCredential:
    """Principal plus a reference to private key material on disk."""

    principal: str
    key_path: Path

    def __repr__(self) -> str:
        return f"RemoteCredential(principal={self.principal!r}, key_path=<scoped>)"


@dataclass(frozen=True, slots=True)
class ExecutionResult:
    exit_code: int
    output: str


def quote_remote(value: Any) -> str:
    """Quote ``value`` for inclusion in a remote shell command."""

    return shlex.quote(str(value))


def _check_token(name: str, value: str) -> str:
    if not value or value.startswith("-") or any(ch.isspace() for ch in value):
        raise ConfigurationError(f"Invalid ssh {name}: {value!r}")
    return value


def build_ssh_command(host: str, credential: RemoteCredential, command: str) -> list[str]:
    """Return the ssh invocation as an argument vector.

    Shape: ``ssh -o StrictHostKeyChecking=no -i <key> <principal>@<host> <command>``.
    """

    _check_token("host", host)
    _check_token("principal", credential.principal)
    if not command.strip():
        raise ConfigurationError("Remote command must not be empty")
    return [
        SSH_EXECUTABLE,
        "-o",
        "StrictHostKeyChecking=no",
        "-i",
        str(credential.key_path),
        f"{credential.principal}@{host}",
        command,
    ]


def render_command(argv: list[str]) -> str:
    """Render ``argv`` the way a shell would need to see it (for logs only)."""

    return shlex.join(argv)


class ScopedKeyProvider:
    """Hand out one :class:`RemoteCredential` at a time.

    Key material given inline is written to a private temporary file for the
    duration of a single command and overwritten and removed afterwards.  A key
    path is passed through untouched.  The provider is not reentrant.
    """

    def __init__(
        self,
        principal: str,
        *,
        key_path: Path | str | None = None,
        key_material: str | None = None,
        temp_dir: Path | str | None = None,
    ) -> None:
        self.principal = principal
        self._key_path = Path(key_path) if key_path else None
        self._key_material = key_material
        self._temp_dir = str(temp_dir) if temp_dir else None
        self._held = False

    @classmethod
    def from_config(cls, config: PipelineConfig) -> ScopedKeyProvider:
        return cls(
            config.remote_user,
            key_path=config.ssh_key_path,
            key_material=config.ssh_private_key,
        )

    @property
    def held(self) -> bool:
        return self._held

    @contextmanager
    def acquire(self) -> Iterator[RemoteCredential]:
        if self._held:
            raise PipelineError("Remote credential is already in use")
        self._held = True
        scratch: Path | None = None
        try:
            if self._key_material:
                scratch = self._materialise(self._key_material)
                key_path = scratch
            elif self._key_path is not None:
                key_path = self._key_path
            else:
                raise ConfigurationError("No ssh key configured (ssh_key_path or ssh_private_key)")
            yield RemoteCredential(principal=self.principal, key_path=key_path)
        finally:
            try:
                if scratch is not None:
                    _erase(scratch)
            finally:
                self._held = False

    def _materialise(self, material: str) -> Path:
        fd, name = tempfile.mkstemp(prefix="dockrelease-key-", dir=self._temp_dir)
        try:
            data = material if material.endswith("\n") else material + "\n"
            os.write(fd, data.encode("utf-8"))
        finally:
            os.close(fd)
        os.chmod(name, 0o600)
        return Path(name)


def _erase(path: Path) -> None:
    try:
        size = path.stat().st_size
        with path.open("r+b") as fh:
            fh.write(b"\0" * size)
            fh.flush()
            os.fsync(fh.fileno())
    except FileNotFoundError:
        return
    finally:
        path.unlink(missing_ok=True)


class RemoteExecutor:
    """Run one command on a remote host and report its exit status."""

    def __init__(
        self,
        *,
        timeout_sec: float = 600.0,
        run_process: ProcessRunner | None = None,
    ) -> None:
        self.timeout_sec = timeout_sec
        self._run_process = run_process or subprocess.run

    def execute(self, host: str, command: str, credential: RemoteCredential) -> ExecutionResult:
        argv = build_ssh_command(host, credential, command)
        logger.info("remote %s@%s: %s", credential.principal, host, command)
        try:
            completed = self._run_process(
                argv,
                stdin=subprocess.DEVNULL,
                capture_output=True,
                text=True,
                timeout=self.timeout_sec,
                check=False,
            )
        except FileNotFoundError as exc:
            raise RemoteExecutionError(
                f"{SSH_EXECUTABLE} executable not found",
                context={"host": host, "command": command},
                cause=exc,
            ) from exc
        except subprocess.TimeoutExpired as exc:
            raise RemoteExecutionError(
                f"Remote command timed out after {self.timeout_sec:g}s",
                context={"host": host, "command": command},
                cause=exc,
                output=_join_output(exc.stdout, exc.stderr),
            ) from exc

        output = _join_output(completed.stdout, completed.stderr)
        if completed.returncode == SSH_TRANSPORT_FAILURE:
            raise RemoteExecutionError(
                f"Could not connect or authenticate to {host}",
                context={"host": host, "command": command},
                exit_code=completed.returncode,
                output=output,
            )
        if completed.returncode != 0:
            raise RemoteExecutionError(
                f"Remote command failed on {host}: {command}",
                context={"host": host, "command": command},
                exit_code=completed.returncode,
                output=output,
            )
        return ExecutionResult(exit_code=completed.returncode, output=output)

    def run(self, host: str, command: str, provider: ScopedKeyProvider) -> ExecutionResult:
        """Execute ``command`` under a freshly acquired credential."""

        with provider.acquire() as credential:
            return self.execute(host, command, credential)


def _join_output(stdout: Any, stderr: Any) -> str:
    parts = []
    for chunk in (stdout, stderr):
        if not chunk:
            continue
        if isinstance(chunk, bytes):
            chunk = chunk.decode("utf-8", errors="replace")
        parts.append(chunk.rstrip("\n"))
    return "\n".join(parts)
