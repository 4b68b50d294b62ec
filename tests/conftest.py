"""
Shared pytest fixtures for cookspace tests.

Provides an isolated HOME (so loggers and the registry never touch the real
~/.cookspace), fake processes/spawners that let tests press hotkeys while a
task is "running", and a display sink that records what it was told.
"""

import subprocess
import sys
import threading

import pytest
from click.testing import CliRunner

from cookspace.display import DisplaySink
from cookspace.keys import KeyEvent, KeyEventSource

# Above the kernel's pid_max ceiling (2**22), so never a live process
UNUSED_PID = 4194304 + 1000


# =============================================================================
# ISOLATION
# =============================================================================

@pytest.fixture(autouse=True)
def isolated_home(tmp_path, monkeypatch):
    """Point HOME at a temp dir and reset the config cache around each test."""
    from cookspace import config

    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    config._CONFIG_CACHE = None
    yield home
    config._CONFIG_CACHE = None


@pytest.fixture
def cli_runner():
    return CliRunner()


# =============================================================================
# FAKE PROCESSES
# =============================================================================

class FakeStream:
    """Byte stream that hands out queued chunks, then optionally blocks.

    on_first_read runs on the reader thread just before the first chunk is
    returned, which is where tests "press" hotkeys.
    """

    def __init__(self, chunks=(), release=None, on_first_read=None):
        self._chunks = list(chunks)
        self._release = release
        self._on_first_read = on_first_read

    def read1(self, size=-1):
        if self._on_first_read is not None:
            callback, self._on_first_read = self._on_first_read, None
            callback()
        if self._chunks:
            return self._chunks.pop(0)
        if self._release is not None:
            self._release.wait(5)
        return b""


class FakeProcess:
    """Stand-in for SpawnedProcess.

    With hang=True the streams block until terminate(), kill() or detach(),
    and wait() does not return until terminate() or kill() is called.
    """

    def __init__(self, pid=UNUSED_PID, stdout=(), stderr=(), exit_code=0, hang=False, on_start=None,
                 output_path=None):
        self.pid = pid
        self.exit_code = exit_code
        self.output_path = output_path
        self.terminate_calls = 0
        self.kill_calls = 0
        self.detach_calls = 0
        self.discard_calls = 0
        self._exited = threading.Event()
        self._unblock = threading.Event()
        if not hang:
            self._exited.set()
            self._unblock.set()
        release = self._unblock if hang else None
        self.stdout = FakeStream(stdout, release, on_start)
        self.stderr = FakeStream(stderr, release)

    def _finish(self, code):
        if not self._exited.is_set():
            self.exit_code = code
            self._exited.set()
        self._unblock.set()

    def detach(self):
        self.detach_calls += 1
        self._unblock.set()

    def discard_output(self):
        self.discard_calls += 1

    def terminate(self):
        self.terminate_calls += 1
        self._finish(-15)

    def kill(self):
        self.kill_calls += 1
        self._finish(-9)

    def poll(self):
        return self.exit_code if self._exited.is_set() else None

    def wait(self, timeout=None):
        if not self._exited.wait(5 if timeout is None else timeout):
            raise subprocess.TimeoutExpired("fake", timeout)
        return self.exit_code


class FakeSpawner:
    """Hands out queued FakeProcess objects (or raises queued exceptions)."""

    def __init__(self, *items):
        self._queue = list(items)
        self.calls = []
        self.spawned = []

    def __call__(self, command, cwd=None):
        self.calls.append((list(command), cwd))
        item = self._queue.pop(0)
        if isinstance(item, BaseException):
            raise item
        self.spawned.append(item)
        return item

    def release_all(self):
        for proc in self.spawned:
            proc.kill()


@pytest.fixture
def fake_process():
    """fake_process(**kwargs) -> FakeProcess."""
    return FakeProcess


@pytest.fixture
def spawner_factory():
    """Build FakeSpawners; any hanging processes are released at teardown."""
    created = []

    def make(*items):
        spawner = FakeSpawner(*items)
        created.append(spawner)
        return spawner

    yield make
    for spawner in created:
        spawner.release_all()


@pytest.fixture
def key_source():
    return KeyEventSource()


@pytest.fixture
def press(key_source):
    """press('a') -> callback that emits that key from wherever it runs."""
    def make(name):
        return lambda: key_source.emit(KeyEvent(name))
    return make


@pytest.fixture
def python_cmd():
    """python_cmd(code) -> argv running a short Python snippet in a real child."""
    def make(code):
        return [sys.executable, "-c", code]
    return make


@pytest.fixture
def unused_pid():
    return UNUSED_PID


# =============================================================================
# DISPLAY / REGISTRY
# =============================================================================

class RecordingDisplay(DisplaySink):
    """Records every call so tests can check what would have been drawn."""

    def __init__(self):
        self.events = []
        self.view = None

    def open(self, view):
        self.view = view
        self.events.append(("open",))

    def update(self, task_index, status, output_window):
        self.events.append(("update", task_index, status, list(output_window)))

    def set_current_command(self, command):
        self.events.append(("command", command))

    def show_failures(self, failures):
        self.events.append(("failures", [r.task.label for r in failures]))

    def close(self):
        self.events.append(("close",))

    def updates(self):
        return [e for e in self.events if e[0] == "update"]


@pytest.fixture
def display():
    return RecordingDisplay()


@pytest.fixture
def registry(tmp_path):
    from cookspace.process_registry import BackgroundProcessRegistry
    return BackgroundProcessRegistry(registry_path=tmp_path / "background-processes.json")


@pytest.fixture
def runner_factory(key_source, display, registry):
    """BatchRunner wired to the fake key source, recording display and temp registry."""
    from cookspace.runner import BatchRunner

    def make(spawner, **overrides):
        kwargs = dict(
            spawner=spawner,
            key_source=key_source,
            display=display,
            registry=registry,
            summary_delay=0,
            kill_grace_seconds=1,
        )
        kwargs.update(overrides)
        return BatchRunner(**kwargs)

    return make
