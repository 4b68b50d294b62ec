"""Spawning child processes for batch tasks.

A child's stdout and stderr both go to one log file instead of pipes. We
follow that file while the task is in the foreground; a backgrounded
child keeps writing to it after we stop reading, or after we exit.
"""
import os
import signal
import subprocess
import tempfile
import threading
from pathlib import Path
from typing import Callable, Optional, Sequence

from cookspace import config


class OutputFollower:
    """Reads a log file that a running process is still appending to.

    read1() waits for new bytes while the process runs, returns b"" once
    the process has exited and the file is drained, and returns b"" within
    one poll interval after close().
    """

    POLL_INTERVAL = 0.05

    def __init__(self, path: Path, is_running: Callable[[], bool]):
        self.path = Path(path)
        self._file = open(self.path, 'rb')
        self._is_running = is_running
        self._closed = threading.Event()
        self._lock = threading.Lock()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def read1(self, size: int = -1) -> bytes:
        while True:
            with self._lock:
                if self._closed.is_set():
                    return b""
                # Check before reading so bytes written just before exit are not lost
                running = self._is_running()
                data = self._file.read1(size)
                if data or not running:
                    return data
            self._closed.wait(self.POLL_INTERVAL)

    def close(self) -> None:
        with self._lock:
            self._closed.set()
            self._file.close()


class SpawnedProcess:
    """Handle on a child started in its own process group.

    Signals go to the whole group so helpers the command forks
    (git-remote-https, package manager workers) stop too.
    """

    def __init__(self, popen: subprocess.Popen, output_path: Path):
        self._popen = popen
        self.output_path = Path(output_path)
        self.stdout = OutputFollower(self.output_path, lambda: popen.poll() is None)
        # stderr is merged into the same file
        self.stderr = None

    @property
    def pid(self) -> int:
        return self._popen.pid

    @property
    def returncode(self) -> Optional[int]:
        return self._popen.returncode

    def _signal_group(self, sig: int) -> None:
        if self._popen.poll() is not None:
            return
        try:
            os.killpg(self._popen.pid, sig)
        except ProcessLookupError:
            pass
        except PermissionError:
            self._popen.send_signal(sig)

    def terminate(self) -> None:
        self._signal_group(signal.SIGTERM)

    def kill(self) -> None:
        self._signal_group(signal.SIGKILL)

    def poll(self) -> Optional[int]:
        return self._popen.poll()

    def wait(self, timeout: Optional[float] = None) -> int:
        return self._popen.wait(timeout=timeout)

    def detach(self) -> None:
        """Stop following output. The process keeps writing to output_path."""
        self.stdout.close()

    def discard_output(self) -> None:
        """Stop following output and delete the log file."""
        self.stdout.close()
        self.output_path.unlink(missing_ok=True)


def spawn_process(
    command: Sequence[str],
    cwd: Optional[str] = None,
    output_dir: Optional[Path] = None,
) -> SpawnedProcess:
    """Start `command` in `cwd` with its output going to a fresh log file.

    command[0] is executed directly, no shell. The log file is created in
    `output_dir` (default: the configured output_dir). Raises OSError
    (missing executable, bad cwd, permission denied) like subprocess.Popen.
    """
    output_dir = Path(output_dir) if output_dir is not None else config.get_output_dir()
    output_dir.mkdir(parents=True, exist_ok=True)
    prefix = Path(command[0]).name if command else "task"
    fd, path = tempfile.mkstemp(prefix=f"{prefix}-", suffix=".log", dir=output_dir)

    try:
        popen = subprocess.Popen(
            list(command),
            cwd=cwd,
            stdin=subprocess.DEVNULL,
            stdout=fd,
            stderr=subprocess.STDOUT,
            start_new_session=True,
        )
    except Exception:
        os.unlink(path)
        raise
    finally:
        os.close(fd)

    return SpawnedProcess(popen, path)
