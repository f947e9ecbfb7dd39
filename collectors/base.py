# Abstract base collector for portlens

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Protocol

import structlog

from .config import Settings
from .errors import ToolError, ToolFailed

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class CommandResult:
    argv: list[str]
    returncode: int
    stdout: str
    stderr: str = ""


class Executor(Protocol):
    def run(self, argv: list[str], timeout: float) -> CommandResult:
        ...


@dataclass
class CollectorResult:
    """Tagged outcome of one collector run.

    ``reason`` is None when the value was fetched; otherwise it names why the
    value is absent and ``value`` holds the collector's "unknown" fallback.
    """

    collector_type: str
    command: list[str]
    raw_output: str
    value: Any
    reason: str | None = None
    error: str | None = None
    timestamp: str = field(default="")

    def __post_init__(self):
        if not self.timestamp:
            from datetime import datetime, timezone
            self.timestamp = datetime.now(timezone.utc).isoformat()

    @property
    def ok(self) -> bool:
        return self.reason is None


class Collector(ABC):

    name: str = "base"
    description: str = "Base collector"

    def __init__(self, settings: Settings):
        self.settings = settings

    @property
    def timeout(self) -> float:
        return self.settings.timeouts.default

    @abstractmethod
    def get_command(self) -> list[str]:
        pass

    @abstractmethod
    def parse_output(self, raw_output: str) -> Any:
        pass

    def empty_value(self) -> Any:
        return None

    def accepts(self, result: CommandResult) -> bool:
        return result.returncode == 0

    def execute(self, executor: Executor) -> CollectorResult:
        command = self.get_command()
        try:
            completed = executor.run(command, timeout=self.timeout)
            if not self.accepts(completed):
                raise ToolFailed(
                    f"{command[0]} exited with status {completed.returncode}",
                    command,
                    completed.returncode,
                )
            parsed = self.parse_output(completed.stdout)
            return CollectorResult(
                collector_type=self.name,
                command=command,
                raw_output=completed.stdout,
                value=parsed,
            )
        except ToolError as e:
            logger.debug("collector degraded", collector=self.name, reason=e.reason, error=str(e))
            return CollectorResult(
                collector_type=self.name,
                command=command,
                raw_output="",
                value=self.empty_value(),
                reason=e.reason,
                error=str(e),
            )
