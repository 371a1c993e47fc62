"""Pytest configuration and fixtures."""

import itertools
import os
import sys
from pathlib import Path

import pytest

# Add src directory to Python path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

from forgewatch.supervisor import NESTED_ENV_VAR  # noqa: E402
from forgewatch.watchers import BackendError, SubscriptionError  # noqa: E402


class FakeBackend:
    """In-memory WatchBackend: scripted batches, recorded subscriptions."""

    def __init__(self, refuse=(), fail_start=False):
        self.refuse = set(refuse)
        self.fail_start = fail_start
        self.unsubscribe_error: Exception | None = None
        self.subscribe_calls: list[str] = []
        self.subscribed: dict[str, int] = {}
        self.unsubscribed: list[int] = []
        self.batches: list = []
        self.on_empty = None
        self.started = False
        self.closed = False
        self.wakes = 0
        self._handles = itertools.count(1)

    def start(self):
        if self.fail_start:
            raise BackendError("inotify_init failed")
        self.started = True

    def subscribe(self, path):
        self.subscribe_calls.append(path)
        if path in self.refuse:
            raise SubscriptionError(path, "Permission denied")
        handle = next(self._handles)
        self.subscribed[path] = handle
        return handle

    def unsubscribe(self, handle):
        self.unsubscribed.append(handle)
        if self.unsubscribe_error is not None:
            raise self.unsubscribe_error

    def next_batch(self, timeout=None):
        if self.batches:
            item = self.batches.pop(0)
            if callable(item):
                item = item()
            if isinstance(item, Exception):
                raise item
            return item
        if self.on_empty is not None:
            self.on_empty()
        return []

    def wake(self):
        self.wakes += 1

    def close(self):
        self.closed = True


class FakeChild:
    """Stand-in for a Popen object."""

    _pids = itertools.count(1000)

    def __init__(self, command):
        self.command = command
        self.pid = next(self._pids)
        self.returncode = None
        self.terminated = False
        self.reaped = False


class FakeProcesses:
    """In-memory ChildProcess capability."""

    def __init__(self):
        self.children: list[FakeChild] = []
        self.terminations: list[int] = []
        self.fail_start = False
        self.max_live = 0

    def start(self, command):
        if self.fail_start:
            raise OSError("Fork failed")
        child = FakeChild(command)
        self.children.append(child)
        self.max_live = max(self.max_live, len(self.live()))
        return child

    def poll(self, child):
        return child.returncode

    def terminate(self, child):
        self.terminations.append(child.pid)
        child.terminated = True

    def wait(self, child):
        child.reaped = True
        if child.returncode is None:
            child.returncode = -15
        return child.returncode

    def live(self):
        return [c for c in self.children if not c.reaped]

    @property
    def commands(self):
        return [c.command for c in self.children]


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, now=100.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture(autouse=True)
def _restore_nested_marker():
    """WatchController.start() sets the nesting marker; keep it out of other tests."""
    saved = os.environ.pop(NESTED_ENV_VAR, None)
    yield
    os.environ.pop(NESTED_ENV_VAR, None)
    if saved is not None:
        os.environ[NESTED_ENV_VAR] = saved


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def processes():
    return FakeProcesses()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def src_tree(tmp_path):
    """A small project: src/ with main.c and a lib/ subdirectory."""
    src = tmp_path / "src"
    (src / "lib").mkdir(parents=True)
    (src / "main.c").write_text("int main(void) { return 0; }\n")
    return src
