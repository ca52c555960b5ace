"""Remote docker resource cleanup keyed by user supplied tokens."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import TYPE_CHECKING

from .remote import ExecutionResult, RemoteExecutor, ScopedKeyProvider

if TYPE_CHECKING:
    from .logging_utils import CoreLogger

logger = logging.getLogger(__name__)

__all__ = [
    "CLEANUP_COMMANDS",
    "CleanupDispatcher",
    "CleanupReport",
    "CleanupType",
    "UnrecognizedCleanupToken",
    "parse_cleanup_token",
    "parse_cleanup_tokens",
]


class CleanupType(str, Enum):
    CONTAINER = "container"
    IMAGE = "image"
    VOLUME = "volume"
    ALL = "all"

    @property
    def command(self) -> str:
        return CLEANUP_COMMANDS[self]


CLEANUP_COMMANDS = MappingProxyType(
    {
        CleanupType.CONTAINER: "docker container prune -f",
        CleanupType.IMAGE: "docker image prune -a -f",
        CleanupType.VOLUME: "docker volume prune -f",
        CleanupType.ALL: "docker system prune -a -f --volumes",
    }
)


@dataclass(frozen=True, slots=True)
class UnrecognizedCleanupToken:
    token: str

    @property
    def message(self) -> str:
        return f"invalid cleanup type: `{self.token}`. Skipping."


def parse_cleanup_token(token: str) -> CleanupType | UnrecognizedCleanupToken:
    """Map ``token`` onto :class:`CleanupType`; matching is case-sensitive."""

    for member in CleanupType:
        if member.value == token:
            return member
    return UnrecognizedCleanupToken(token)


def parse_cleanup_tokens(text: str) -> list[str]:
    """Split a comma separated parameter into tokens, keeping order and duplicates."""

    return [part.strip() for part in text.split(",") if part.strip()]


@dataclass(slots=True)
class CleanupReport:
    executed: list[tuple[CleanupType, ExecutionResult]] = field(default_factory=list)
    skipped: list[UnrecognizedCleanupToken] = field(default_factory=list)

    @property
    def commands(self) -> list[str]:
        return [kind.command for kind, _ in self.executed]


class CleanupDispatcher:
    """Run the maintenance command for each recognized token on the remote host.

    Unknown tokens are logged and skipped.  A failing remote command raises
    :class:`~dockrelease.pipeline.errors.RemoteExecutionError` so the enclosing
    stage fails.
    """

    def __init__(
        self,
        executor: RemoteExecutor,
        provider: ScopedKeyProvider,
        host: str,
        *,
        corelog: CoreLogger | None = None,
    ) -> None:
        self.executor = executor
        self.provider = provider
        self.host = host
        self.corelog = corelog

    def clean(self, tokens: Iterable[str]) -> CleanupReport:
        report = CleanupReport()
        for token in tokens:
            parsed = parse_cleanup_token(token)
            if isinstance(parsed, UnrecognizedCleanupToken):
                self._warn(parsed.message)
                report.skipped.append(parsed)
                continue
            result = self.executor.run(self.host, parsed.command, self.provider)
            report.executed.append((parsed, result))
        return report

    def _warn(self, message: str) -> None:
        if self.corelog is not None:
            self.corelog.warn(message)
        else:
            logger.warning(message)
