# Process Collector - Per-pid working directory, command line, start time and usage.

import re
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Iterable

import psutil

from .base import Collector, CollectorResult, Executor
from .config import Settings
from .errors import ACCESS_DENIED, NOT_FOUND
from .models import ProcessMetadata

# command text, two or more spaces, then lstart: "Mon Oct 19 09:59:00 2026"
_LSTART_PATTERN = re.compile(
    r'^(.*?\S)\s{2,}'
    r'([A-Z][a-z]{2}\s+[A-Z][a-z]{2}\s+\d{1,2}\s+\d{2}:\d{2}:\d{2}\s+\d{4})$'
)


@dataclass(frozen=True)
class ProcessLine:
    executable_path: str
    command_line: str
    started_at: str | None
    full_command: str


def basename(path: str | None) -> str | None:
    if not path:
        return None
    parts = [p for p in path.split("/") if p]
    return parts[-1] if parts else None


def parse_process_line(line: str) -> ProcessLine | None:
    line = line.strip()
    if not line:
        return None

    exec_plus_args, started_at = line, None
    match = _LSTART_PATTERN.match(line)
    if match:
        exec_plus_args, started_at = match.group(1), match.group(2)

    parts = re.split(r'\s+', exec_plus_args, maxsplit=1)
    executable_path = parts[0]
    command_line = parts[1] if len(parts) > 1 else ""

    return ProcessLine(
        executable_path=executable_path,
        command_line=command_line,
        started_at=started_at,
        full_command=basename(executable_path) or executable_path,
    )


class CwdCollector(Collector):
    name = "cwd"
    description = "Current working directory of a process"

    def __init__(self, settings: Settings, pid: int):
        super().__init__(settings)
        self.pid = pid

    @property
    def timeout(self) -> float:
        return self.settings.timeouts.process_metadata

    def get_command(self) -> list[str]:
        return [self.settings.lsof_path, "-a", "-p", str(self.pid), "-d", "cwd", "-Fn"]

    def parse_output(self, raw_output: str) -> str | None:
        for line in raw_output.splitlines():
            if line.startswith("n") and len(line) > 1:
                return line[1:]
        return None


class ProcessLineCollector(Collector):
    name = "ps"
    description = "Full command line and start time of a process"

    def __init__(self, settings: Settings, pid: int):
        super().__init__(settings)
        self.pid = pid

    @property
    def timeout(self) -> float:
        return self.settings.timeouts.process_metadata

    def get_command(self) -> list[str]:
        return [self.settings.ps_path, "-o", "command=,lstart=", "-p", str(self.pid)]

    def parse_output(self, raw_output: str) -> ProcessLine | None:
        for line in raw_output.splitlines():
            parsed = parse_process_line(line)
            if parsed is not None:
                return parsed
        return None


class ResourceSampler:
    name = "usage"

    def __init__(self, interval: float = 0.1):
        self.interval = interval

    def sample(self, pid: int) -> CollectorResult:
        command = ["psutil.Process", str(pid)]
        try:
            proc = psutil.Process(pid)
            rss = proc.memory_info().rss
            cpu = proc.cpu_percent(interval=self.interval)
        except psutil.NoSuchProcess as e:
            return CollectorResult(self.name, command, "", {}, reason=NOT_FOUND, error=str(e))
        except psutil.AccessDenied as e:
            return CollectorResult(self.name, command, "", {}, reason=ACCESS_DENIED, error=str(e))

        return CollectorResult(
            self.name,
            command,
            "",
            {"cpu_percent": max(0.0, float(cpu)), "memory_bytes": max(0, int(rss))},
        )


@dataclass(frozen=True)
class ProcessFetch:
    pid: int
    metadata: ProcessMetadata
    results: tuple[CollectorResult, ...]

    @property
    def failures(self) -> list[tuple[str, str]]:
        return [(r.collector_type, r.reason) for r in self.results if not r.ok]


def merge_process_results(pid: int, cwd: CollectorResult, ps: CollectorResult,
                          usage: CollectorResult) -> ProcessFetch:
    fields: dict[str, Any] = {"working_directory": cwd.value}

    line: ProcessLine | None = ps.value
    if line is not None:
        fields.update(
            executable_path=line.executable_path,
            command_line=line.command_line,
            started_at=line.started_at,
            full_command=line.full_command,
        )

    stats = usage.value or {}
    fields["cpu_percent"] = stats.get("cpu_percent")
    fields["memory_bytes"] = stats.get("memory_bytes")

    return ProcessFetch(pid=pid, metadata=ProcessMetadata(**fields), results=(cwd, ps, usage))


class ProcessMetadataFetcher:
    def __init__(self, settings: Settings, executor: Executor, sampler: Any = None):
        self.settings = settings
        self.executor = executor
        self.sampler = sampler or ResourceSampler(settings.cpu_sample_interval)

    def fetch(self, pid: int) -> ProcessFetch:
        return merge_process_results(
            pid,
            CwdCollector(self.settings, pid).execute(self.executor),
            ProcessLineCollector(self.settings, pid).execute(self.executor),
            self.sampler.sample(pid),
        )

    def fetch_many(self, pids: Iterable[int]) -> dict[int, ProcessFetch]:
        unique = sorted(set(pids))
        if not unique:
            return {}

        with ThreadPoolExecutor(max_workers=self.settings.max_workers) as pool:
            pending = {
                pid: (
                    pool.submit(CwdCollector(self.settings, pid).execute, self.executor),
                    pool.submit(ProcessLineCollector(self.settings, pid).execute, self.executor),
                    pool.submit(self.sampler.sample, pid),
                )
                for pid in unique
            }
            return {
                pid: merge_process_results(pid, *(f.result() for f in futures))
                for pid, futures in pending.items()
            }
