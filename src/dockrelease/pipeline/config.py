"""Configuration defaults and tool diagnostics for the release pipeline."""

from __future__ import annotations

import os
import re
import shlex
import shutil
import subprocess
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from dataclasses import field as dataclass_field
from dataclasses import fields as dataclass_fields
from pathlib import Path
from typing import Any

from packaging.version import InvalidVersion, Version

from .errors import ConfigurationError

DEFAULT_CLEANUP_TYPES = "container,image,volume,all"
SECRET_FIELDS: frozenset[str] = frozenset(
    {"registry_password", "sonar_token", "ssh_private_key", "smtp_password"}
)
ENV_PREFIX = "DOCKRELEASE_"

# Jenkins exposes these without a prefix; they seed the run identity.
_CI_ENV_ALIASES: dict[str, str] = {
    "JOB_NAME": "job_name",
    "BUILD_NUMBER": "run_number",
    "BUILD_URL": "build_url",
}

_NAME_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")


def _coerce_optional_path(value: Path | str | None) -> Path | None:
    if value is None or value == "":
        return None
    return Path(value)


def _coerce_bool(name: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off", ""}:
            return False
    raise ValueError(f"{name} must be a boolean value")


def _coerce_argv(name: str, value: Any) -> list[str]:
    if isinstance(value, str):
        return shlex.split(value)
    if isinstance(value, Iterable):
        return [str(part) for part in value]
    raise ValueError(f"{name} must be a string or a list of arguments")


@dataclass(slots=True)
class PipelineConfig:
    """Validated configuration for one release run.

    Constructed once at run start and passed by reference to every component.
    """

    # Invocation parameters
    cleanup_types: str = DEFAULT_CLEANUP_TYPES
    project_name: str = "app"
    registry_username: str = "dockrelease"
    container_name: str = "app"
    image_tag: str = "latest"

    # Run identity
    job_name: str = "dockrelease"
    run_number: int = 0
    build_url: str = ""

    # Workspace and source
    workspace: Path = Path(".")
    repo_url: str | None = None
    repo_branch: str = "main"
    docker_context: str = "."

    # Collaborator commands
    build_command: list[str] = dataclass_field(
        default_factory=lambda: ["mvn", "clean", "package", "-DskipTests"]
    )
    sonar_host_url: str = "http://localhost:9000"
    sonar_token: str | None = None
    trivy_report: str = "trivy-report.html"
    trivy_template: str = "@contrib/html.tpl"
    trivy_severity: str = "HIGH,CRITICAL"
    registry_password: str | None = None
    tool_timeout_sec: float = 1800.0

    # Remote host
    remote_host: str = "localhost"
    remote_user: str = "ubuntu"
    ssh_key_path: Path | None = None
    ssh_private_key: str | None = None
    remote_timeout_sec: float = 600.0
    port_mapping: str = "8080:8080"

    # Notification
    notify_enabled: bool = True
    mail_to: str = "release-team@example.com"
    mail_from: str = "dockrelease@example.com"
    mail_reply_to: str = "no-reply@example.com"
    smtp_host: str = "localhost"
    smtp_port: int = 25
    smtp_username: str | None = None
    smtp_password: str | None = None
    smtp_starttls: bool = False
    smtp_timeout_sec: float = 30.0
    attachment_pattern: str = "trivy-report.html"

    # Runtime
    skip_stages: list[str] = dataclass_field(default_factory=list)
    log_dir: Path = Path("logs")
    quiet: bool = False
    run_id: str | None = None

    def __post_init__(self) -> None:
        """Validate and normalise configuration fields."""

        self.workspace = Path(self.workspace)
        self.log_dir = Path(self.log_dir)
        self.ssh_key_path = _coerce_optional_path(self.ssh_key_path)
        self.build_command = _coerce_argv("build_command", self.build_command)
        if not self.build_command:
            raise ValueError("build_command must not be empty")

        if isinstance(self.skip_stages, str):
            self.skip_stages = [s.strip() for s in self.skip_stages.split(",") if s.strip()]
        else:
            self.skip_stages = [str(s) for s in (self.skip_stages or [])]

        for name in ("project_name", "registry_username", "container_name", "image_tag"):
            value = getattr(self, name)
            if not isinstance(value, str) or not value:
                raise ValueError(f"{name} must be a non-empty string")
        # Image references are handed to docker; keep them to the characters it accepts.
        if not _NAME_PATTERN.match(self.image_tag):
            raise ValueError(f"image_tag contains unsupported characters: {self.image_tag!r}")

        if not isinstance(self.cleanup_types, str):
            self.cleanup_types = ",".join(str(t) for t in self.cleanup_types)

        try:
            self.run_number = int(self.run_number)
        except (TypeError, ValueError) as exc:
            raise ValueError("run_number must be an integer") from exc
        if self.run_number < 0:
            raise ValueError("run_number must be >= 0")

        self.notify_enabled = _coerce_bool("notify_enabled", self.notify_enabled)
        self.smtp_starttls = _coerce_bool("smtp_starttls", self.smtp_starttls)
        self.quiet = _coerce_bool("quiet", self.quiet)

        for name in ("mail_to", "mail_from", "mail_reply_to"):
            value = getattr(self, name)
            if not isinstance(value, str) or "\r" in value or "\n" in value:
                raise ValueError(f"{name} must be a single-line string")
        # Attachments are globbed relative to the workspace; empty disables them.
        if Path(self.attachment_pattern).is_absolute():
            raise ValueError("attachment_pattern must be relative to the workspace")

        self._validate_positive_int("smtp_port", int(self.smtp_port))
        self.smtp_port = int(self.smtp_port)
        for name in ("tool_timeout_sec", "remote_timeout_sec", "smtp_timeout_sec"):
            try:
                value = float(getattr(self, name))
            except (TypeError, ValueError) as exc:
                raise ValueError(f"{name} must be a number > 0") from exc
            self._validate_positive_float(name, value)
            setattr(self, name, value)

        if not self.remote_host:
            raise ValueError("remote_host must be set")
        if not self.remote_user:
            raise ValueError("remote_user must be set")

    @staticmethod
    def _validate_positive_int(name: str, value: int) -> None:
        if not isinstance(value, int) or value <= 0:
            raise ValueError(f"{name} must be an integer > 0")

    @staticmethod
    def _validate_positive_float(name: str, value: float) -> None:
        if not isinstance(value, (int, float)) or value <= 0:
            raise ValueError(f"{name} must be a number > 0")

    @property
    def image_name(self) -> str:
        return f"{self.registry_username}/{self.project_name}"

    @property
    def image_ref(self) -> str:
        return f"{self.image_name}:{self.image_tag}"

    @property
    def console_url(self) -> str:
        if not self.build_url:
            return ""
        return self.build_url.rstrip("/") + "/console"

    def model_dump(self, *, mode: str = "python") -> dict[str, Any]:
        """Return the configuration as a dictionary.

        ``mode="json"`` converts paths to strings and masks secrets so the
        result can be written to logs.
        """

        if mode not in {"python", "json"}:
            raise ValueError("mode must be 'python' or 'json'")
        data: dict[str, Any] = {}
        for field in dataclass_fields(self):
            value = getattr(self, field.name)
            if mode == "json":
                if field.name in SECRET_FIELDS and value:
                    value = "***"
                elif isinstance(value, Path):
                    value = value.as_posix()
                elif isinstance(value, list):
                    value = list(value)
            data[field.name] = value
        return data

    @classmethod
    def model_validate(cls, data: Mapping[str, Any] | PipelineConfig) -> PipelineConfig:
        """Validate a mapping and construct a configuration instance."""

        if isinstance(data, PipelineConfig):
            return data
        if not isinstance(data, Mapping):
            raise ConfigurationError("PipelineConfig.model_validate expects a mapping")
        try:
            return cls(**dict(data))
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(str(exc), cause=exc) from exc


DEFAULT_PIPELINE_CONFIG: dict[str, Any] = PipelineConfig().model_dump(mode="python")

# Minimum versions of the external collaborators; ``None`` means presence only.
TOOL_REQUIREMENTS: dict[str, str | None] = {
    "git": "2.20",
    "mvn": "3.6",
    "sonar-scanner": None,
    "docker": "20.10",
    "trivy": "0.40",
    "ssh": None,
}

_VERSION_PATTERN = re.compile(r"(\d+\.\d+(?:\.\d+)?)")

__all__ = [
    "DEFAULT_CLEANUP_TYPES",
    "DEFAULT_PIPELINE_CONFIG",
    "TOOL_REQUIREMENTS",
    "PipelineConfig",
    "build_pipeline_config",
    "config_from_env",
    "diagnostics",
    "tool_health_summary",
]


def build_pipeline_config(
    overrides: Mapping[str, Any] | PipelineConfig | None = None,
) -> PipelineConfig:
    """Return a validated pipeline configuration merged with overrides."""

    if isinstance(overrides, PipelineConfig):
        return overrides

    merged: dict[str, Any] = PipelineConfig().model_dump(mode="python")
    for key, value in (overrides or {}).items():
        if key not in merged:
            raise ConfigurationError(f"Unknown configuration key: {key}")
        if value is None:
            continue
        merged[key] = value
    return PipelineConfig.model_validate(merged)


def config_from_env(environ: Mapping[str, str] | None = None) -> dict[str, Any]:
    """Collect overrides from ``DOCKRELEASE_*`` and CI job variables."""

    env = os.environ if environ is None else environ
    known = {field.name for field in dataclass_fields(PipelineConfig)}
    overrides: dict[str, Any] = {}
    for env_name, key in _CI_ENV_ALIASES.items():
        value = env.get(env_name)
        if value:
            overrides[key] = value
    for env_name, value in env.items():
        if not env_name.startswith(ENV_PREFIX):
            continue
        key = env_name[len(ENV_PREFIX) :].lower()
        if key in known:
            overrides[key] = value
    return overrides


def _probe_tool_version(executable: str) -> str | None:
    flag = "-V" if executable == "ssh" else "--version"
    try:
        result = subprocess.run(
            [executable, flag],
            capture_output=True,
            text=True,
            timeout=10,
        )
    except (OSError, subprocess.TimeoutExpired):
        return None
    match = _VERSION_PATTERN.search(f"{result.stdout}\n{result.stderr}")
    return match.group(1) if match else None


def tool_health_summary(tools: Mapping[str, str | None] | None = None) -> dict[str, dict[str, Any]]:
    """Report presence and version of each external collaborator binary."""

    summary: dict[str, dict[str, Any]] = {}
    for tool, min_ver in (tools or TOOL_REQUIREMENTS).items():
        entry: dict[str, Any] = {"required_min": min_ver}
        path = shutil.which(tool)
        if path is None:
            entry["status"] = "error"
            entry["issue"] = "not found on PATH"
            summary[tool] = entry
            continue

        entry["status"] = "ok"
        entry["path"] = path
        if min_ver is None:
            summary[tool] = entry
            continue

        version = _probe_tool_version(tool)
        if version is None:
            entry["status"] = "warn"
            entry["issue"] = "version could not be determined"
        else:
            entry["version"] = version
            try:
                if Version(version) < Version(min_ver):
                    entry["status"] = "warn"
                    entry["issue"] = f"version {version} < required {min_ver}"
            except InvalidVersion as exc:
                entry["status"] = "warn"
                entry["issue"] = f"version comparison failed: {exc}"
        summary[tool] = entry
    return summary


def diagnostics(tools: Mapping[str, str | None] | None = None) -> dict[str, Any]:
    """Return diagnostic information about the external collaborators."""

    summary = tool_health_summary(tools)
    issues = [
        f"{name}: {entry['issue']}" for name, entry in summary.items() if entry["status"] != "ok"
    ]
    return {
        "ok": all(entry["status"] != "error" for entry in summary.values()),
        "issues": issues,
        "summary": summary,
    }
