# Container Collector - Running containers, published ports and live stats.

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, replace

import structlog

from .base import Collector, CollectorResult, Executor
from .config import Settings
from .errors import ContainerRuntimeUnavailable, ToolError, ToolFailed
from .models import Container, ContainerPortMapping

logger = structlog.get_logger(__name__)

CONTAINER_ACTIONS = ("start", "stop", "restart")
ALL_INTERFACES = "0.0.0.0"

LIST_FORMAT = "{{.ID}}\t{{.Image}}\t{{.Names}}\t{{.Ports}}\t{{.Status}}"
STATS_FORMAT = "{{.Name}}\t{{.CPUPerc}}\t{{.MemUsage}}"


def _parse_port_number(text: str) -> int | None:
    text = text.strip()
    if not text.isascii() or not text.isdigit():
        return None
    value = int(text)
    return value if value <= 65535 else None


def _split_protocol(text: str) -> tuple[str, str]:
    port_text, _, protocol = text.partition("/")
    return port_text, (protocol.strip() or "tcp").lower()


def parse_port_entry(entry: str) -> ContainerPortMapping | None:
    """Parse one ``[hostAddress:hostPort->]containerPort[/protocol]`` entry."""
    host_address = None
    host_port = None
    container_part = entry

    if "->" in entry:
        host_part, container_part = entry.split("->", 1)
        last_colon = host_part.rfind(":")
        if last_colon != -1:
            host_address = host_part[:last_colon].strip()
            if host_address in ("", "*"):
                host_address = ALL_INTERFACES
            elif host_address.startswith("[") and host_address.endswith("]"):
                host_address = host_address[1:-1]
            host_port = _parse_port_number(host_part[last_colon + 1:])

    port_text, protocol = _split_protocol(container_part)
    container_port = _parse_port_number(port_text)
    if container_port is None:
        return None

    return ContainerPortMapping(
        container_port=container_port,
        protocol=protocol,
        host_address=host_address,
        host_port=host_port,
    )


def parse_port_mappings(ports_field: str) -> list[ContainerPortMapping]:
    mappings = []
    for entry in (ports_field or "").split(","):
        entry = entry.strip()
        if not entry:
            continue
        mapping = parse_port_entry(entry)
        if mapping is not None:
            mappings.append(mapping)
    return mappings


def parse_cpu_percent(text: str | None) -> float | None:
    if not text or not text.endswith("%"):
        return None
    try:
        return float(text[:-1])
    except ValueError:
        return None


class ContainerListCollector(Collector):
    name = "containers"
    description = "Running containers with published ports"

    def __init__(self, settings: Settings, binary: str):
        super().__init__(settings)
        self.binary = binary

    @property
    def timeout(self) -> float:
        return self.settings.timeouts.container_listing

    def get_command(self) -> list[str]:
        return [self.binary, "ps", "--no-trunc", "--format", LIST_FORMAT]

    def empty_value(self) -> list[Container]:
        return []

    def parse_output(self, raw_output: str) -> list[Container]:
        containers = []
        for line in raw_output.splitlines():
            line = line.strip()
            if not line:
                continue
            fields = line.split("\t")
            fields += [""] * (5 - len(fields))
            container_id, image, name, ports_field, status = fields[:5]
            if not container_id:
                continue
            containers.append(Container(
                id=container_id,
                image=image,
                name=name,
                status_text=status,
                ports=tuple(parse_port_mappings(ports_field)),
            ))
        return containers


class ContainerStatsCollector(Collector):
    name = "container-stats"
    description = "Per-container CPU and memory usage"

    def __init__(self, settings: Settings, binary: str):
        super().__init__(settings)
        self.binary = binary

    @property
    def timeout(self) -> float:
        return self.settings.timeouts.container_stats

    def get_command(self) -> list[str]:
        return [self.binary, "stats", "--no-stream", "--format", STATS_FORMAT]

    def empty_value(self) -> dict[str, tuple[float | None, str | None]]:
        return {}

    def parse_output(self, raw_output: str) -> dict[str, tuple[float | None, str | None]]:
        stats = {}
        for line in raw_output.splitlines():
            if not line.strip():
                continue
            fields = line.split("\t")
            name = fields[0].strip()
            cpu = parse_cpu_percent(fields[1].strip()) if len(fields) > 1 else None
            memory = fields[2] if len(fields) > 2 else None
            stats[name] = (cpu, memory)
        return stats


@dataclass(frozen=True)
class ContainerReport:
    available: bool
    containers: tuple[Container, ...] = ()
    results: tuple[CollectorResult, ...] = ()

    @property
    def failures(self) -> list[tuple[str, str]]:
        return [(r.collector_type, r.reason) for r in self.results if not r.ok]


def merge_stats(containers: list[Container],
                stats: dict[str, tuple[float | None, str | None]]) -> list[Container]:
    merged = []
    for container in containers:
        if container.name in stats:
            cpu, memory = stats[container.name]
            container = replace(container, cpu_percent=cpu, memory_text=memory)
        merged.append(container)
    return merged


class ContainerRuntime:
    def __init__(self, settings: Settings, executor: Executor):
        self.settings = settings
        self.executor = executor

    def discover(self) -> str | None:
        for path in self.settings.docker_paths:
            try:
                result = self.executor.run(
                    [path, "version", "--format", "{{.Server.Version}}"],
                    timeout=self.settings.timeouts.runtime_probe,
                )
            except ToolError:
                continue
            if result.returncode == 0:
                return path
        return None

    def collect(self) -> ContainerReport:
        binary = self.discover()
        if binary is None:
            logger.debug("container runtime unavailable", candidates=self.settings.docker_paths)
            return ContainerReport(available=False)

        with ThreadPoolExecutor(max_workers=2) as pool:
            listing_future = pool.submit(ContainerListCollector(self.settings, binary).execute, self.executor)
            stats_future = pool.submit(ContainerStatsCollector(self.settings, binary).execute, self.executor)
            listing = listing_future.result()
            stats = stats_future.result()

        containers = merge_stats(listing.value, stats.value)
        return ContainerReport(
            available=True,
            containers=tuple(containers),
            results=(listing, stats),
        )

    def control(self, action: str, container_id: str) -> None:
        if action not in CONTAINER_ACTIONS:
            raise ValueError(f"Unknown container action: {action}")
        if not container_id:
            raise ValueError("Container id must not be empty")

        binary = self.discover()
        if binary is None:
            raise ContainerRuntimeUnavailable("No responsive container runtime found")

        command = [binary, action, container_id]
        result = self.executor.run(command, timeout=self.settings.timeouts.container_control)
        if result.returncode != 0:
            raise ToolFailed(
                result.stderr.strip() or f"{action} exited with status {result.returncode}",
                command,
                result.returncode,
            )
        logger.info("container action sent", action=action, container=container_id)
