"""Command line interface for the dockrelease pipeline."""

from __future__ import annotations

import json
import os
import signal
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Optional

import typer

# Enable rich-rendered help panels by default; allow opt-out via DOCKRELEASE_CLI_RICH=0/false.
_rich_pref = os.getenv("DOCKRELEASE_CLI_RICH", "").strip().lower()
try:  # Typer <0.12.3 lacks rich_utils
    typer.rich_utils.USE_RICH = _rich_pref not in {"0", "false", "no", "off"}  # type: ignore[attr-defined]
except AttributeError:
    pass

from .pipeline.cleanup import CleanupDispatcher, parse_cleanup_tokens
from .pipeline.config import (
    DEFAULT_CLEANUP_TYPES,
    build_pipeline_config,
    config_from_env,
)
from .pipeline.config import diagnostics as config_diagnostics
from .pipeline.errors import ConfigurationError, RemoteExecutionError
from .pipeline.logging_utils import _make_json_safe
from .pipeline.notification import NotificationComposer
from .pipeline.orchestrator import run_pipeline
from .pipeline.remote import RemoteExecutor, ScopedKeyProvider
from .pipeline.stages import PipelineRun, RunStatus

app = typer.Typer(help="Build, scan, package and deploy a containerized application.")

# Ensure Optional is available when annotations are evaluated by inspect on Python 3.11.
globals()["Optional"] = Optional


def core_run_pipeline(config: dict[str, Any], cancel_event: threading.Event) -> PipelineRun:
    return run_pipeline(config, cancel_event=cancel_event)


def _load_profile(profile: Path | None) -> dict[str, Any]:
    if profile is None:
        return {}
    if not profile.exists():
        raise typer.BadParameter(f"Profile '{profile}' not found.")
    try:
        data = json.loads(profile.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise typer.BadParameter(f"Profile file '{profile}' is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise typer.BadParameter(
            f"Profile file '{profile}' must contain a JSON object of overrides."
        )
    return data


def _merge_configs(*layers: dict[str, Any]) -> dict[str, Any]:
    merged: dict[str, Any] = {}
    for layer in layers:
        merged.update({key: value for key, value in layer.items() if value is not None})
    return merged


@contextmanager
def _cancel_on_signals(event: threading.Event) -> Iterator[None]:
    """Turn SIGINT/SIGTERM into a cancellation request honoured between stages."""

    def _handler(signum, _frame):  # type: ignore[no-untyped-def]
        typer.echo(f"Received signal {signum}; stopping after the current stage.", err=True)
        event.set()

    previous: dict[int, Any] = {}
    if threading.current_thread() is threading.main_thread():
        for sig in (signal.SIGINT, signal.SIGTERM):
            previous[sig] = signal.signal(sig, _handler)
    try:
        yield
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)


@app.command(help="Execute the full release pipeline and send the status notification.")
def run(
    cleanup_types: Optional[str] = typer.Option(
        None, help=f"Comma separated cleanup types (default: {DEFAULT_CLEANUP_TYPES})"
    ),
    project_name: Optional[str] = typer.Option(None, help="Project / image name"),
    registry_username: Optional[str] = typer.Option(None, help="Image registry username"),
    container_name: Optional[str] = typer.Option(None, help="Container name on the remote host"),
    image_tag: Optional[str] = typer.Option(None, help="Image tag (defaults to latest)"),
    remote_host: Optional[str] = typer.Option(None, help="Deployment host address"),
    remote_user: Optional[str] = typer.Option(None, help="SSH principal on the deployment host"),
    ssh_key_path: Optional[Path] = typer.Option(None, help="Private key used for ssh"),
    workspace: Optional[Path] = typer.Option(None, help="Workspace directory"),
    profile: Optional[Path] = typer.Option(None, help="JSON file of configuration overrides"),
    skip_stage: list[str] = typer.Option([], help="Stage name to skip (repeatable)"),
    no_notify: bool = typer.Option(False, "--no-notify", help="Do not send the status mail"),
    quiet: bool = typer.Option(False, "--quiet", help="Only log warnings and errors"),
):
    cli_overrides: dict[str, Any] = {
        "cleanup_types": cleanup_types,
        "project_name": project_name,
        "registry_username": registry_username,
        "container_name": container_name,
        "image_tag": image_tag,
        "remote_host": remote_host,
        "remote_user": remote_user,
        "ssh_key_path": ssh_key_path,
        "workspace": workspace,
        "skip_stages": list(skip_stage) or None,
        "notify_enabled": False if no_notify else None,
        "quiet": True if quiet else None,
    }
    overrides = _merge_configs(config_from_env(), _load_profile(profile), cli_overrides)
    try:
        build_pipeline_config(overrides)
    except ConfigurationError as exc:
        raise typer.BadParameter(str(exc)) from exc

    cancel_event = threading.Event()
    with _cancel_on_signals(cancel_event):
        result = core_run_pipeline(overrides, cancel_event)

    typer.echo(json.dumps(_make_json_safe(result.summary()), indent=2))
    if result.status is not RunStatus.SUCCESS:
        raise typer.Exit(code=1)


@app.command(help="Run only the remote docker cleanup for the given types.")
def clean(
    types: str = typer.Option(DEFAULT_CLEANUP_TYPES, help="Comma separated cleanup types"),
    remote_host: Optional[str] = typer.Option(None, help="Deployment host address"),
    remote_user: Optional[str] = typer.Option(None, help="SSH principal on the deployment host"),
    ssh_key_path: Optional[Path] = typer.Option(None, help="Private key used for ssh"),
):
    overrides = _merge_configs(
        config_from_env(),
        {"remote_host": remote_host, "remote_user": remote_user, "ssh_key_path": ssh_key_path},
    )
    try:
        cfg = build_pipeline_config(overrides)
    except ConfigurationError as exc:
        raise typer.BadParameter(str(exc)) from exc

    dispatcher = CleanupDispatcher(
        RemoteExecutor(timeout_sec=cfg.remote_timeout_sec),
        ScopedKeyProvider.from_config(cfg),
        cfg.remote_host,
    )
    try:
        report = dispatcher.clean(parse_cleanup_tokens(types))
    except (RemoteExecutionError, ConfigurationError) as exc:
        typer.echo(f"Cleanup failed: {exc}", err=True)
        output = getattr(exc, "output", "")
        if output:
            typer.echo(output, err=True)
        raise typer.Exit(code=1) from exc
    payload = {"executed": report.commands, "skipped": [s.token for s in report.skipped]}
    typer.echo(json.dumps(payload, indent=2))


@app.command("preview-notification", help="Render the status mail for a given run status.")
def preview_notification(
    status: str = typer.Option("SUCCESS", help="Run status to render"),
    job_name: Optional[str] = typer.Option(None, help="Job name"),
    run_number: Optional[int] = typer.Option(None, help="Run number"),
    profile: Optional[Path] = typer.Option(None, help="JSON file of configuration overrides"),
):
    overrides = _merge_configs(
        config_from_env(),
        _load_profile(profile),
        {"job_name": job_name, "run_number": run_number},
    )
    try:
        cfg = build_pipeline_config(overrides)
    except ConfigurationError as exc:
        raise typer.BadParameter(str(exc)) from exc
    try:
        run_status = RunStatus(status.upper())
    except ValueError:
        run_status = RunStatus.UNKNOWN
    preview = PipelineRun(
        run_id="preview",
        job_name=cfg.job_name,
        run_number=cfg.run_number,
        status=run_status,
    )
    # compose() never touches the transport, so no SMTP connection is opened.
    message = NotificationComposer(cfg, transport=_NullTransport()).compose(preview)
    typer.echo(f"Subject: {message.subject}")
    typer.echo(message.html_body)


class _NullTransport:
    def deliver(self, message, attachments):  # type: ignore[no-untyped-def]
        return None


@app.command(help="Check that the external tools are installed.")
def diagnostics():
    report = config_diagnostics()
    typer.echo(json.dumps(report, indent=2))
    if not report["ok"]:
        raise typer.Exit(code=1)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
