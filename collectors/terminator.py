# Port-Owner Terminator - resolves the pids bound to a port and signals them.

import os
import signal
from dataclasses import dataclass
from typing import Any

import psutil
import structlog

from .base import Collector, CommandResult, Executor
from .config import Settings
from .errors import ACCESS_DENIED, RACE_LOST, error_for_reason

logger = structlog.get_logger(__name__)

SIGNALS = {
    "TERM": signal.SIGTERM,
    "KILL": signal.SIGKILL,
}


def normalize_signal(signal_kind: str) -> str:
    kind = signal_kind.upper()
    if kind.startswith("SIG"):
        kind = kind[3:]
    if kind not in SIGNALS:
        raise ValueError(f"Unsupported signal: {signal_kind}")
    return kind


class PortOwnerCollector(Collector):
    name = "port-owners"
    description = "Pids bound to a port"

    def __init__(self, settings: Settings, port: int, protocol: str):
        super().__init__(settings)
        if protocol not in ("tcp", "udp"):
            raise ValueError(f"Unsupported protocol: {protocol}")
        if not 0 <= port <= 65535:
            raise ValueError(f"Port out of range: {port}")
        self.port = port
        self.protocol = protocol

    @property
    def timeout(self) -> float:
        return self.settings.timeouts.owner_lookup

    def get_command(self) -> list[str]:
        if self.protocol == "tcp":
            return [self.settings.lsof_path, f"-tiTCP:{self.port}", "-sTCP:LISTEN"]
        return [self.settings.lsof_path, f"-tiUDP:{self.port}"]

    def empty_value(self) -> list[int]:
        return []

    def accepts(self, result: CommandResult) -> bool:
        return result.returncode == 0 or (result.returncode == 1 and not result.stdout.strip())

    def parse_output(self, raw_output: str) -> list[int]:
        pids: list[int] = []
        for line in raw_output.splitlines():
            line = line.strip()
            if not (line.isascii() and line.isdigit()):
                continue
            pid = int(line)
            if pid > 0 and pid not in pids:
                pids.append(pid)
        return pids


@dataclass(frozen=True)
class SignalOutcome:
    pid: int
    sent: bool
    reason: str | None = None


class PsutilSignaller:
    def send(self, pid: int, signum: int) -> SignalOutcome:
        try:
            psutil.Process(pid).send_signal(signum)
        except psutil.NoSuchProcess:
            return SignalOutcome(pid, False, RACE_LOST)
        except psutil.AccessDenied:
            return SignalOutcome(pid, False, ACCESS_DENIED)
        return SignalOutcome(pid, True)


class PortTerminator:
    def __init__(self, settings: Settings, executor: Executor, signaller: Any = None):
        self.settings = settings
        self.executor = executor
        self.signaller = signaller or PsutilSignaller()

    def resolve_owners(self, port: int, protocol: str = "tcp") -> list[int]:
        collector = PortOwnerCollector(self.settings, port, protocol)
        result = collector.execute(self.executor)
        if not result.ok:
            raise error_for_reason(
                result.reason,
                f"Could not resolve owners of {protocol}/{port}: {result.error}",
                result.command,
            )
        return result.value

    def signal_pids(self, pids: list[int], signal_kind: str = "TERM") -> list[SignalOutcome]:
        kind = normalize_signal(signal_kind)
        outcomes = []
        for pid in dict.fromkeys(pids):
            if pid <= 0 or pid == os.getpid():
                logger.warning("refusing to signal pid", pid=pid)
                outcomes.append(SignalOutcome(pid, False, ACCESS_DENIED))
                continue
            outcome = self.signaller.send(pid, SIGNALS[kind])
            if outcome.sent:
                logger.info("signal sent", pid=pid, signal=kind)
            else:
                logger.warning("signal not sent", pid=pid, signal=kind, reason=outcome.reason)
            outcomes.append(outcome)
        return outcomes

    def kill_port(self, port: int, protocol: str = "tcp", signal_kind: str = "TERM") -> int:
        kind = normalize_signal(signal_kind)
        pids = self.resolve_owners(port, protocol)
        if not pids:
            return 0
        outcomes = self.signal_pids(pids, kind)
        return sum(1 for outcome in outcomes if outcome.sent)

    def kill_pid(self, pid: int, signal_kind: str = "TERM") -> bool:
        outcomes = self.signal_pids([pid], signal_kind)
        return outcomes[0].sent
