#!/usr/bin/env python3
"""
Local port inspector: which processes listen on which ports, which
containers publish which ports, and a safe way to stop the owner of a port.

Usage:
    python portlens.py                          # list listening sockets
    python portlens.py list --hide-system --advanced
    python portlens.py kill 3000 --force
    python portlens.py report --format html --output output/ports.html
"""

import argparse
import json
import logging
import subprocess
import sys
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import structlog
from jinja2 import Environment, FileSystemLoader, select_autoescape

import collectors
from collectors.aggregate import aggregate_listeners
from collectors.base import CommandResult, Executor
from collectors.config import Settings, load_config
from collectors.containers import ContainerRuntime
from collectors.display_names import DisplayNameResolver
from collectors.errors import ToolError, ToolTimeout, ToolUnavailable
from collectors.models import PROTOCOLS, Container, Listener
from collectors.ports import PortCollector, base_listeners
from collectors.presentation import filter_listeners, format_memory, friendly_address
from collectors.processes import ProcessMetadataFetcher
from collectors.terminator import PortTerminator

logger = structlog.get_logger("portlens")

TEMPLATE_DIR = Path(collectors.__file__).resolve().parent / "templates"


def configure_logging(level: str = "warning", fmt: str = "console") -> None:
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, level.upper()),
    )

    processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if fmt == "json":
        processors.insert(0, structlog.processors.TimeStamper(fmt="iso"))
        processors.insert(0, structlog.stdlib.add_logger_name)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.insert(0, structlog.processors.TimeStamper(fmt="%H:%M:%S"))
        processors.append(structlog.dev.ConsoleRenderer(colors=False))

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


class LocalExecutor:
    def run(self, argv: list[str], timeout: float) -> CommandResult:
        try:
            result = subprocess.run(
                argv,
                capture_output=True,
                encoding="utf-8",
                errors="replace",
                timeout=timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise ToolTimeout(f"{argv[0]} timed out after {timeout}s", argv) from e
        except OSError as e:
            raise ToolUnavailable(f"{argv[0]} could not be executed: {e}", argv) from e

        return CommandResult(
            argv=list(argv),
            returncode=result.returncode,
            stdout=result.stdout,
            stderr=result.stderr,
        )


@dataclass(frozen=True)
class Snapshot:
    listeners: tuple[Listener, ...] = ()
    containers: tuple[Container, ...] = ()
    container_runtime_available: bool = False
    failures: tuple[tuple[str, str], ...] = ()
    generated_at: str = field(default="")

    def to_dict(self) -> dict[str, Any]:
        return {
            "generated_at": self.generated_at,
            "container_runtime_available": self.container_runtime_available,
            "listeners": [asdict(listener) for listener in self.listeners],
            "containers": [asdict(container) for container in self.containers],
            "failures": [{"source": source, "reason": reason} for source, reason in self.failures],
        }


class PortLens:
    """Headless poll service.

    ``refresh()`` runs one poll cycle and publishes its result as a single
    Snapshot. Cycles are serialized; readers always see one whole cycle.
    """

    def __init__(self, settings: Settings, executor: Executor | None = None,
                 sampler: Any = None, signaller: Any = None,
                 resolver: DisplayNameResolver | None = None):
        self.settings = settings
        self.executor = executor or LocalExecutor()
        self.fetcher = ProcessMetadataFetcher(settings, self.executor, sampler)
        self.runtime = ContainerRuntime(settings, self.executor)
        self.terminator = PortTerminator(settings, self.executor, signaller)
        self.resolver = resolver or DisplayNameResolver.from_settings(settings)
        self._snapshot = Snapshot()
        self._cycle_lock = threading.Lock()

    def collect_listeners(self) -> tuple[list[Listener], list[tuple[str, str]]]:
        with ThreadPoolExecutor(max_workers=len(PROTOCOLS)) as pool:
            futures = [
                pool.submit(PortCollector(self.settings, protocol).execute, self.executor)
                for protocol in PROTOCOLS
            ]
            results = [f.result() for f in futures]

        failures = [(r.collector_type, r.reason) for r in results if not r.ok]
        records = [record for result in results for record in result.value]
        base = base_listeners(records)

        fetches = self.fetcher.fetch_many(listener.pid for listener in base)
        for pid, fetch in fetches.items():
            failures.extend((f"{name}[{pid}]", reason) for name, reason in fetch.failures)

        metadata = {pid: fetch.metadata for pid, fetch in fetches.items()}
        return aggregate_listeners(base, metadata, self.resolver), failures

    def refresh(self) -> Snapshot:
        with self._cycle_lock:
            with ThreadPoolExecutor(max_workers=2) as pool:
                host_future = pool.submit(self.collect_listeners)
                container_future = pool.submit(self.runtime.collect)
                listeners, failures = host_future.result()
                report = container_future.result()

            failures.extend(report.failures)
            snapshot = Snapshot(
                listeners=tuple(listeners),
                containers=report.containers,
                container_runtime_available=report.available,
                failures=tuple(failures),
                generated_at=datetime.now(timezone.utc).isoformat(),
            )
            self._snapshot = snapshot

        for source, reason in snapshot.failures:
            logger.debug("sub-result degraded", source=source, reason=reason)
        logger.info(
            "poll cycle complete",
            listeners=len(snapshot.listeners),
            containers=len(snapshot.containers),
            degraded=len(snapshot.failures),
        )
        return snapshot

    def snapshot(self) -> Snapshot:
        return self._snapshot

    def current_listeners(self) -> list[Listener]:
        return list(self._snapshot.listeners)

    def current_containers(self) -> list[Container]:
        return list(self._snapshot.containers)

    def terminate(self, port: int, protocol: str = "tcp", signal_kind: str = "TERM") -> int:
        return self.terminator.kill_port(port, protocol, signal_kind)

    def terminate_pid(self, pid: int, signal_kind: str = "TERM") -> bool:
        return self.terminator.kill_pid(pid, signal_kind)

    def control_container(self, action: str, container_id: str) -> None:
        self.runtime.control(action, container_id)


def format_cpu(value: float | None) -> str:
    return "-" if value is None else f"{value:.1f}%"


def format_ports(container: Container) -> str:
    entries = []
    for mapping in container.ports:
        target = f"{mapping.container_port}/{mapping.protocol}"
        if mapping.host_port is not None:
            entries.append(f"{mapping.host_address or ''}:{mapping.host_port}->{target}")
        else:
            entries.append(target)
    return ", ".join(entries) or "-"


class Reporter:
    def __init__(self, template_dir: str | Path = TEMPLATE_DIR):
        self.template_dir = Path(template_dir)
        self.env = Environment(
            loader=FileSystemLoader(str(self.template_dir)),
            autoescape=select_autoescape(["html", "html.j2"]),
            trim_blocks=True,
            lstrip_blocks=True,
        )
        self.env.filters['friendly_address'] = friendly_address
        self.env.filters['format_memory'] = format_memory
        self.env.filters['format_cpu'] = format_cpu
        self.env.filters['format_ports'] = format_ports

    def render(self, snapshot: Snapshot, fmt: str = "html") -> str:
        if fmt == "json":
            return json.dumps(snapshot.to_dict(), indent=2)

        templates = {"html": "snapshot.html.j2", "text": "snapshot.txt.j2"}
        if fmt not in templates:
            raise ValueError(f"Unknown report format: {fmt}")

        template = self.env.get_template(templates[fmt])
        return template.render(
            snapshot=snapshot,
            listeners=snapshot.listeners,
            containers=snapshot.containers,
            generated_at=snapshot.generated_at,
        )

    def write(self, snapshot: Snapshot, output_path: str | Path, fmt: str = "html") -> str:
        output = Path(output_path)
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(self.render(snapshot, fmt), encoding="utf-8")
        return str(output)


def print_listeners(listeners: list[Listener], advanced: bool = False) -> None:
    if not advanced:
        print(f"{'PORT':<7} {'PROTO':<6} {'PID':<8} {'NAME':<28} {'ADDRESS'}")
        print("-" * 75)
        for entry in listeners:
            print(f"{entry.port:<7} {entry.protocol:<6} {entry.pid:<8} {(entry.display_name or entry.command_name):<28} "
                  f"{friendly_address(entry.address)}")
        return

    print(f"{'PORT':<7} {'PROTO':<6} {'PID':<8} {'NAME':<24} {'USER':<12} {'CPU':>7} {'MEMORY':>10}  {'COMMAND'}")
    print("-" * 110)
    for entry in listeners:
        command = " ".join(filter(None, [entry.executable_path, entry.command_line])) or entry.command_name
        print(f"{entry.port:<7} {entry.protocol:<6} {entry.pid:<8} {(entry.display_name or entry.command_name):<24} "
              f"{(entry.user or '-'):<12} {format_cpu(entry.cpu_percent):>7} {format_memory(entry.memory_bytes):>10}  {command}")


def cmd_list(lens: PortLens, args) -> int:
    snapshot = lens.refresh()
    listeners = filter_listeners(
        snapshot.listeners,
        lens.settings,
        hide_system=getattr(args, "hide_system", False),
        hide_idle=getattr(args, "hide_idle", False),
    )

    if getattr(args, "json", False):
        print(json.dumps([entry.to_dict() for entry in listeners], indent=2))
        return 0

    if not listeners:
        print("No listening ports found.")
        return 1

    print_listeners(listeners, getattr(args, "advanced", False))
    return 0


def cmd_containers(lens: PortLens, args) -> int:
    snapshot = lens.refresh()
    if not snapshot.container_runtime_available:
        print("[!] No responsive container runtime found.")
        return 1

    if args.json:
        print(json.dumps([c.to_dict() for c in snapshot.containers], indent=2))
        return 0

    if not snapshot.containers:
        print("No running containers.")
        return 1

    print(f"{'NAME':<24} {'IMAGE':<28} {'CPU':>7} {'MEMORY':<22} {'PORTS'}")
    print("-" * 100)
    for c in snapshot.containers:
        print(f"{c.name:<24} {c.image:<28} {format_cpu(c.cpu_percent):>7} {(c.memory_text or '-'):<22} "
              f"{format_ports(c)}")
    return 0


def cmd_kill(lens: PortLens, args) -> int:
    protocol = "udp" if args.udp else "tcp"
    signal_kind = "KILL" if args.force else "TERM"
    count = lens.terminate(args.port, protocol, signal_kind)
    if count == 0:
        print(f"No process signaled on {protocol}/{args.port}.")
        return 1
    print(f"[+] Sent SIG{signal_kind} to {count} process(es) on {protocol}/{args.port}")
    return 0


def cmd_kill_pid(lens: PortLens, args) -> int:
    signal_kind = "KILL" if args.force else "TERM"
    if not lens.terminate_pid(args.pid, signal_kind):
        print(f"[!] Could not signal PID {args.pid}.")
        return 1
    print(f"[+] Sent SIG{signal_kind} to PID {args.pid}")
    return 0


def cmd_docker(lens: PortLens, args) -> int:
    lens.control_container(args.action, args.container_id)
    print(f"[+] {args.action} sent to container {args.container_id}")
    return 0


def cmd_report(lens: PortLens, args) -> int:
    snapshot = lens.refresh()
    reporter = Reporter()
    if args.output:
        path = reporter.write(snapshot, args.output, args.format)
        print(f"[+] {args.format.upper()} report: {path}")
    else:
        print(reporter.render(snapshot, args.format))
    return 0


def cmd_watch(lens: PortLens, args) -> int:
    cycles = 0
    try:
        while args.count is None or cycles < args.count:
            snapshot = lens.refresh()
            listeners = filter_listeners(snapshot.listeners, lens.settings, hide_system=args.hide_system)
            print(f"\n[*] {snapshot.generated_at} - {len(listeners)} listener(s)")
            print_listeners(listeners, args.advanced)
            cycles += 1
            if args.count is None or cycles < args.count:
                time.sleep(args.interval)
    except KeyboardInterrupt:
        pass
    return 0


COMMANDS = {
    "list": cmd_list,
    "containers": cmd_containers,
    "kill": cmd_kill,
    "kill-pid": cmd_kill_pid,
    "docker": cmd_docker,
    "report": cmd_report,
    "watch": cmd_watch,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="portlens",
        description="portlens: listening ports, their processes and containers",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Everything listening, with resource usage and full command lines
  portlens list --advanced

  # Only your own processes
  portlens list --hide-system

  # Stop whatever listens on TCP 3000 (SIGKILL with --force)
  portlens kill 3000

  # Restart a container
  portlens docker restart my-container
        """
    )
    parser.add_argument("--config", "-c", default=None, help="Path to YAML config")
    parser.add_argument(
        "--log-level",
        default="warning",
        choices=["debug", "info", "warning", "error"],
        help="Log level (default: warning)"
    )
    parser.add_argument(
        "--log-format",
        default="console",
        choices=["console", "json"],
        help="Log output format (default: console)"
    )

    sub = parser.add_subparsers(dest="command")

    p_list = sub.add_parser("list", help="List listening sockets (default)")
    p_list.add_argument("--hide-system", action="store_true", help="Hide system and other users' processes")
    p_list.add_argument("--hide-idle", action="store_true", help="Hide processes using no CPU")
    p_list.add_argument("--advanced", "-a", action="store_true", help="Show user, usage and command line")
    p_list.add_argument("--json", action="store_true", help="Print JSON")

    p_containers = sub.add_parser("containers", help="List running containers and published ports")
    p_containers.add_argument("--json", action="store_true", help="Print JSON")

    p_kill = sub.add_parser("kill", help="Signal the processes listening on a port")
    p_kill.add_argument("port", type=int, help="Port number")
    p_kill.add_argument("--udp", action="store_true", help="Target UDP instead of TCP")
    p_kill.add_argument("--force", "-f", action="store_true", help="Send SIGKILL instead of SIGTERM")

    p_kill_pid = sub.add_parser("kill-pid", help="Signal a single process")
    p_kill_pid.add_argument("pid", type=int, help="Process id")
    p_kill_pid.add_argument("--force", "-f", action="store_true", help="Send SIGKILL instead of SIGTERM")

    p_docker = sub.add_parser("docker", help="Start, stop or restart a container")
    p_docker.add_argument("action", choices=["start", "stop", "restart"])
    p_docker.add_argument("container_id", help="Container id or name")

    p_report = sub.add_parser("report", help="Render a snapshot report")
    p_report.add_argument("--format", default="html", choices=["html", "text", "json"])
    p_report.add_argument("--output", "-o", default=None, help="Output file (default: stdout)")

    p_watch = sub.add_parser("watch", help="Poll and print listeners repeatedly")
    p_watch.add_argument("--interval", type=float, default=2.0, help="Seconds between polls (default: 2)")
    p_watch.add_argument("--count", type=int, default=None, help="Stop after N polls")
    p_watch.add_argument("--hide-system", action="store_true")
    p_watch.add_argument("--advanced", "-a", action="store_true")

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level, args.log_format)
    command = args.command or "list"

    try:
        settings = load_config(args.config)
    except ValueError as e:
        print(f"[!] Error: {e}")
        return 2

    lens = PortLens(settings)

    try:
        return COMMANDS[command](lens, args)
    except (ToolError, ValueError) as e:
        print(f"[!] {command} failed: {e}")
        return 2


if __name__ == "__main__":
    sys.exit(main())
