import sys
import threading
from pathlib import Path

import pytest


REPO_ROOT = Path(__file__).resolve().parents[1]

# Prefer repo sources over any installed package.
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from collectors.base import CollectorResult, CommandResult  # noqa: E402
from collectors.config import Settings  # noqa: E402
from collectors.errors import NOT_FOUND, RACE_LOST, ToolUnavailable  # noqa: E402
from collectors.terminator import SignalOutcome  # noqa: E402
from portlens import configure_logging  # noqa: E402

# Route structlog through stdlib logging so nothing lands on stdout.
configure_logging("warning")


class FakeExecutor:
    """Scripted stand-in for LocalExecutor; unscripted commands are unavailable."""

    def __init__(self):
        self.responses = {}
        self.calls = []
        self._lock = threading.Lock()

    def add(self, argv, stdout="", returncode=0, stderr=""):
        self.responses[tuple(argv)] = CommandResult(list(argv), returncode, stdout, stderr)

    def fail(self, argv, error):
        self.responses[tuple(argv)] = error

    def run(self, argv, timeout):
        with self._lock:
            self.calls.append(list(argv))
        response = self.responses.get(tuple(argv))
        if response is None:
            raise ToolUnavailable(f"{argv[0]} not scripted", list(argv))
        if isinstance(response, Exception):
            raise response
        return response


class FakeSampler:
    name = "usage"

    def __init__(self, usage=None):
        self.usage = dict(usage or {})
        self.sampled = []

    def sample(self, pid):
        self.sampled.append(pid)
        if pid not in self.usage:
            return CollectorResult(self.name, [], "", {}, reason=NOT_FOUND)
        cpu, memory = self.usage[pid]
        return CollectorResult(self.name, [], "", {"cpu_percent": cpu, "memory_bytes": memory})


class FakeSignaller:
    def __init__(self, gone=()):
        self.gone = set(gone)
        self.sent = []

    def send(self, pid, signum):
        if pid in self.gone:
            return SignalOutcome(pid, False, RACE_LOST)
        self.sent.append((pid, signum))
        return SignalOutcome(pid, True)


@pytest.fixture
def settings():
    return Settings(current_user="alice", max_workers=4, docker_paths=["/usr/local/bin/docker", "/usr/bin/docker"])


@pytest.fixture
def executor():
    return FakeExecutor()


@pytest.fixture
def sampler():
    return FakeSampler()


@pytest.fixture
def signaller():
    return FakeSignaller()
