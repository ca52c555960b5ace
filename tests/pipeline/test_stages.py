from __future__ import annotations

import subprocess
from pathlib import Path

import pytest

from dockrelease.pipeline.config import PipelineConfig
from dockrelease.pipeline.errors import ConfigurationError, DependencyError, ToolInvocationError
from dockrelease.pipeline.stages import PIPELINE_STAGES, STAGE_NAMES, PipelineRun
from dockrelease.pipeline.stages.deploy import deploy_command
from dockrelease.pipeline.stages.image import run_push_image
from dockrelease.pipeline.stages.scan import run_static_analysis
from dockrelease.pipeline.stages.source import run_checkout
from dockrelease.pipeline.tools import ToolRunner


class _StubGuard:
    stage = "stub"

    def __init__(self) -> None:
        self.done_calls: list[dict[str, int]] = []
        self.progress_calls: list[str] = []

    def done(self, **counts: int) -> None:
        self.done_calls.append(counts)

    def progress(self, message: str) -> None:
        self.progress_calls.append(message)


class _StubCoreLog:
    def __init__(self) -> None:
        self.messages: list[str] = []

    def info(self, message: str, *args, **kwargs) -> None:  # type: ignore[no-untyped-def]
        self.messages.append(message)

    def event(self, *args, **kwargs) -> None:  # type: ignore[no-untyped-def]
        return None


class _FakeProcesses:
    def __init__(self, returncode: int = 0, stdout: str = "") -> None:
        self.returncode = returncode
        self.stdout = stdout
        self.calls: list[tuple[list[str], dict]] = []

    def __call__(self, argv, **kwargs):  # type: ignore[no-untyped-def]
        self.calls.append((list(argv), kwargs))
        return subprocess.CompletedProcess(argv, self.returncode, self.stdout, "")


class _StubPipeline:
    def __init__(self, config: PipelineConfig, processes: _FakeProcesses) -> None:
        self.config = config
        self.corelog = _StubCoreLog()
        self.tools = ToolRunner(config.workspace, run_process=processes)


def _run() -> PipelineRun:
    return PipelineRun(run_id="r", job_name="j", run_number=1)


def test_registry_declares_release_order() -> None:
    assert STAGE_NAMES == (
        "Checkout",
        "Build Application",
        "Static Analysis",
        "Build Docker Image",
        "Vulnerability Scan",
        "Push Docker Image",
        "Clean Docker Resources",
        "Deploy Container",
    )
    assert len({stage.name for stage in PIPELINE_STAGES}) == len(PIPELINE_STAGES)


def test_deploy_command_quotes_user_supplied_names() -> None:
    cfg = PipelineConfig(container_name="web; reboot", port_mapping="80:8080")
    command = deploy_command(cfg)

    assert "--name 'web; reboot'" in command
    assert "docker stop 'web; reboot'" in command
    assert command.endswith("-p 80:8080 dockrelease/app:latest")


def test_checkout_is_skipped_without_repo_url(tmp_path: Path) -> None:
    processes = _FakeProcesses()
    pipeline = _StubPipeline(PipelineConfig(workspace=tmp_path), processes)
    guard = _StubGuard()

    run_checkout(pipeline, _run(), guard)

    assert processes.calls == []
    assert guard.done_calls == [{"skipped": 1}]


def test_checkout_clones_branch_into_workspace(tmp_path: Path) -> None:
    processes = _FakeProcesses()
    workspace = tmp_path / "ws"
    cfg = PipelineConfig(
        workspace=workspace, repo_url="https://git.example.com/shop.git", repo_branch="release"
    )

    run_checkout(_StubPipeline(cfg, processes), _run(), _StubGuard())

    argv, kwargs = processes.calls[0]
    assert argv == [
        "git",
        "clone",
        "--depth",
        "1",
        "--branch",
        "release",
        "--",
        "https://git.example.com/shop.git",
        str(workspace),
    ]
    assert kwargs["cwd"] == str(tmp_path)


def test_static_analysis_passes_token_through_environment(tmp_path: Path) -> None:
    processes = _FakeProcesses()
    cfg = PipelineConfig(workspace=tmp_path, project_name="shop", sonar_token="sq-123")

    run_static_analysis(_StubPipeline(cfg, processes), _run(), _StubGuard())

    argv, kwargs = processes.calls[0]
    assert "-Dsonar.projectKey=shop" in argv
    assert all("sq-123" not in arg for arg in argv)
    assert kwargs["env"]["SONAR_TOKEN"] == "sq-123"


def test_push_requires_registry_password(tmp_path: Path) -> None:
    processes = _FakeProcesses()
    with pytest.raises(ConfigurationError):
        run_push_image(
            _StubPipeline(PipelineConfig(workspace=tmp_path), processes), _run(), _StubGuard()
        )
    assert processes.calls == []


def test_push_logs_out_even_when_push_fails(tmp_path: Path) -> None:
    calls: list[list[str]] = []

    def _processes(argv, **kwargs):  # type: ignore[no-untyped-def]
        calls.append(list(argv))
        code = 1 if argv[:2] == ["docker", "push"] else 0
        return subprocess.CompletedProcess(argv, code, "", "denied: requested access")

    cfg = PipelineConfig(workspace=tmp_path, registry_password="pw")
    pipeline = _StubPipeline(cfg, _FakeProcesses())
    pipeline.tools = ToolRunner(tmp_path, run_process=_processes)

    with pytest.raises(ToolInvocationError) as excinfo:
        run_push_image(pipeline, _run(), _StubGuard())

    assert [argv[1] for argv in calls] == ["login", "push", "logout"]
    assert excinfo.value.exit_code == 1
    assert "denied" in excinfo.value.output


def test_missing_tool_raises_dependency_error(tmp_path: Path) -> None:
    def _missing(argv, **kwargs):  # type: ignore[no-untyped-def]
        raise FileNotFoundError(argv[0])

    runner = ToolRunner(tmp_path, run_process=_missing)

    with pytest.raises(DependencyError, match="trivy not found on PATH"):
        runner.run(["trivy", "--version"])
