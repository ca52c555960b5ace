"""Release pipeline orchestration and its collaborators."""

from __future__ import annotations

from importlib import import_module
from types import ModuleType

_SUBMODULES: dict[str, str] = {
    "cleanup": "dockrelease.pipeline.cleanup",
    "config": "dockrelease.pipeline.config",
    "errors": "dockrelease.pipeline.errors",
    "logging_utils": "dockrelease.pipeline.logging_utils",
    "notification": "dockrelease.pipeline.notification",
    "orchestrator": "dockrelease.pipeline.orchestrator",
    "remote": "dockrelease.pipeline.remote",
    "runtime": "dockrelease.pipeline.runtime",
    "stages": "dockrelease.pipeline.stages",
    "tools": "dockrelease.pipeline.tools",
}

__all__ = list(_SUBMODULES)


def __getattr__(name: str) -> ModuleType:
    if name in _SUBMODULES:
        module = import_module(_SUBMODULES[name])
        globals()[name] = module
        return module
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


def __dir__() -> list[str]:
    return sorted(list(globals().keys()) + list(_SUBMODULES.keys()))
