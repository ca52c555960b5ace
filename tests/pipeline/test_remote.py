from __future__ import annotations

import os
import stat
import subprocess
from pathlib import Path

import pytest

from dockrelease.pipeline import remote as remote_module
from dockrelease.pipeline.errors import ConfigurationError, PipelineError, RemoteExecutionError
from dockrelease.pipeline.remote import (
    RemoteCredential,
    RemoteExecutor,
    ScopedKeyProvider,
    build_ssh_command,
    quote_remote,
    render_command,
)


class _FakeSsh:
    def __init__(self, returncode: int = 0, stdout: str = "", stderr: str = "", exc=None) -> None:
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        self.exc = exc
        self.calls: list[tuple[list[str], dict]] = []

    def __call__(self, argv, **kwargs):  # type: ignore[no-untyped-def]
        self.calls.append((list(argv), kwargs))
        if self.exc is not None:
            raise self.exc
        return subprocess.CompletedProcess(argv, self.returncode, self.stdout, self.stderr)


CRED = RemoteCredential(principal="deploy", key_path=Path("/keys/id_ed25519"))


def test_ssh_command_follows_fixed_template() -> None:
    argv = build_ssh_command("10.0.0.5", CRED, "docker container prune -f")

    assert argv == [
        "ssh",
        "-o",
        "StrictHostKeyChecking=no",
        "-i",
        "/keys/id_ed25519",
        "deploy@10.0.0.5",
        "docker container prune -f",
    ]
    assert render_command(argv) == (
        "ssh -o StrictHostKeyChecking=no -i /keys/id_ed25519 "
        "deploy@10.0.0.5 'docker container prune -f'"
    )


@pytest.mark.parametrize("host", ["-oProxyCommand=touch /tmp/x", "", "a host"])
def test_ssh_command_rejects_option_like_or_blank_hosts(host: str) -> None:
    with pytest.raises(ConfigurationError):
        build_ssh_command(host, CRED, "true")


def test_quote_remote_neutralises_shell_metacharacters() -> None:
    assert quote_remote("web; rm -rf /") == "'web; rm -rf /'"
    assert quote_remote("web") == "web"


def test_execute_returns_result_without_a_local_shell() -> None:
    fake = _FakeSsh(stdout="Deleted Containers:\nabc\n")
    executor = RemoteExecutor(timeout_sec=5, run_process=fake)

    result = executor.execute("10.0.0.5", "docker container prune -f", CRED)

    assert result.exit_code == 0
    assert "Deleted Containers" in result.output
    argv, kwargs = fake.calls[0]
    assert argv[0] == "ssh"
    assert "shell" not in kwargs
    assert kwargs["stdin"] is subprocess.DEVNULL
    assert kwargs["timeout"] == 5


def test_transport_failure_is_reported_as_connection_error() -> None:
    fake = _FakeSsh(returncode=255, stderr="Permission denied (publickey).")
    executor = RemoteExecutor(run_process=fake)

    with pytest.raises(RemoteExecutionError) as excinfo:
        executor.execute("10.0.0.5", "true", CRED)

    assert excinfo.value.exit_code == 255
    assert "Could not connect" in str(excinfo.value)
    assert "Permission denied" in excinfo.value.output


def test_non_zero_remote_status_carries_exit_code_and_output() -> None:
    fake = _FakeSsh(returncode=1, stdout="partial", stderr="Cannot connect to the Docker daemon")
    executor = RemoteExecutor(run_process=fake)

    with pytest.raises(RemoteExecutionError) as excinfo:
        executor.execute("10.0.0.5", "docker volume prune -f", CRED)

    assert excinfo.value.exit_code == 1
    assert excinfo.value.output == "partial\nCannot connect to the Docker daemon"


def test_timeout_and_missing_binary_raise_remote_errors() -> None:
    timeout = _FakeSsh(exc=subprocess.TimeoutExpired(cmd="ssh", timeout=1))
    with pytest.raises(RemoteExecutionError, match="timed out"):
        RemoteExecutor(timeout_sec=1, run_process=timeout).execute("h", "true", CRED)

    missing = _FakeSsh(exc=FileNotFoundError("ssh"))
    with pytest.raises(RemoteExecutionError, match="not found"):
        RemoteExecutor(run_process=missing).execute("h", "true", CRED)


def test_inline_key_material_is_scoped_to_one_command(tmp_path: Path) -> None:
    provider = ScopedKeyProvider("deploy", key_material="-----KEY-----", temp_dir=tmp_path)
    seen: list[Path] = []

    def _check(argv, **kwargs):  # type: ignore[no-untyped-def]
        key = Path(argv[argv.index("-i") + 1])
        seen.append(key)
        assert key.read_text() == "-----KEY-----\n"
        assert stat.S_IMODE(os.stat(key).st_mode) == 0o600
        return subprocess.CompletedProcess(argv, 0, "", "")

    RemoteExecutor(run_process=_check).run("10.0.0.5", "true", provider)

    assert len(seen) == 1
    assert not seen[0].exists()
    assert provider.held is False


def test_key_material_is_erased_when_command_fails(tmp_path: Path) -> None:
    provider = ScopedKeyProvider("deploy", key_material="secret", temp_dir=tmp_path)
    executor = RemoteExecutor(run_process=_FakeSsh(returncode=2))

    with pytest.raises(RemoteExecutionError):
        executor.run("10.0.0.5", "false", provider)

    assert list(tmp_path.iterdir()) == []
    assert provider.held is False


def test_provider_is_not_reentrant(tmp_path: Path) -> None:
    provider = ScopedKeyProvider("deploy", key_path=tmp_path / "id")
    with provider.acquire() as credential:
        assert credential.principal == "deploy"
        with pytest.raises(PipelineError):
            with provider.acquire():
                pass
    with provider.acquire():
        assert provider.held is True


def test_provider_without_key_fails_and_releases() -> None:
    provider = ScopedKeyProvider("deploy")
    with pytest.raises(ConfigurationError):
        with provider.acquire():
            pass
    assert provider.held is False


def test_credential_repr_hides_key_location() -> None:
    assert "/keys" not in repr(CRED)


def test_provider_is_released_when_key_erasure_fails(tmp_path: Path, monkeypatch) -> None:
    def _fail(path: Path) -> None:
        raise PermissionError(f"cannot open {path}")

    monkeypatch.setattr(remote_module, "_erase", _fail)
    provider = ScopedKeyProvider("deploy", key_material="secret", temp_dir=tmp_path)

    with pytest.raises(PermissionError):
        with provider.acquire():
            pass

    assert provider.held is False
