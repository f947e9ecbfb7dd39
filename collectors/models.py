# Data Models - Socket records, process metadata, listeners and containers.

from dataclasses import asdict, dataclass, field, replace
from typing import Any

PROTOCOLS = ("tcp", "udp")


@dataclass(frozen=True)
class RawSocketRecord:
    protocol: str
    pid: int | None = None
    command_name: str | None = None
    uid: int | None = None
    user: str | None = None
    address_port_tokens: tuple[str, ...] = ()


@dataclass(frozen=True)
class ProcessMetadata:
    working_directory: str | None = None
    executable_path: str | None = None
    command_line: str | None = None
    started_at: str | None = None
    full_command: str | None = None
    cpu_percent: float | None = None
    memory_bytes: int | None = None


@dataclass(frozen=True)
class Listener:
    pid: int
    command_name: str
    address: str
    port: int
    protocol: str
    user: str | None = None
    uid: int | None = None
    executable_path: str | None = None
    working_directory: str | None = None
    command_line: str | None = None
    cpu_percent: float | None = None
    memory_bytes: int | None = None
    started_at: str | None = None
    display_name: str | None = None

    @property
    def identity(self) -> tuple[int, str, int, str]:
        return (self.pid, self.address, self.port, self.protocol)

    def enriched(self, metadata: ProcessMetadata, display_name: str | None) -> "Listener":
        return replace(
            self,
            executable_path=metadata.executable_path,
            working_directory=metadata.working_directory,
            command_line=metadata.command_line,
            cpu_percent=metadata.cpu_percent,
            memory_bytes=metadata.memory_bytes,
            started_at=metadata.started_at,
            display_name=display_name,
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ContainerPortMapping:
    container_port: int
    protocol: str = "tcp"
    host_address: str | None = None
    host_port: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class Container:
    id: str
    name: str
    image: str
    status_text: str
    ports: tuple[ContainerPortMapping, ...] = field(default_factory=tuple)
    cpu_percent: float | None = None
    memory_text: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
