"""
Background Process Registry - durable ledger of detached commands.

When the user backgrounds a running clone, the process keeps going after
the batch returns, writing to the log file named by output_path. Entries
here let later flows (quit, resume, delete session) warn about that work
and terminate it, even after a restart.

Entries are never edited in place: registering appends, and removal
rewrites the file without the removed entries.
"""

import json
import fcntl
import os
import signal
import time
from dataclasses import dataclass, asdict
from datetime import datetime
from pathlib import Path
from typing import Iterable, List, Optional

from cookspace import config
from cookspace.logging import CookLogger


@dataclass(frozen=True)
class BackgroundProcessEntry:
    """One detached process."""
    pid: int
    command: str
    description: str
    session_name: str
    registered_at: str
    output_path: str = ""

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> 'BackgroundProcessEntry':
        return cls(
            pid=int(data['pid']),
            command=str(data.get('command', '')),
            description=str(data.get('description', '')),
            session_name=str(data.get('session_name', '')),
            registered_at=str(data.get('registered_at', '')),
            output_path=str(data.get('output_path') or ''),
        )


def is_process_alive(pid: int) -> bool:
    """Best-effort liveness check (signal 0). Reaps our own exited children."""
    try:
        reaped, _ = os.waitpid(pid, os.WNOHANG)
        if reaped == pid:
            return False
    except ChildProcessError:
        # Not our child; fall through to signal 0
        pass

    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists but belongs to someone else
        return True
    return True


def _send_signal(pid: int, sig: int) -> None:
    """Signal the process group led by `pid`, falling back to the pid alone."""
    try:
        os.killpg(pid, sig)
    except (ProcessLookupError, PermissionError):
        os.kill(pid, sig)


class BackgroundProcessRegistry:
    """
    Persistent list of backgrounded processes with file locking.

    Reads take a shared fcntl lock, writes an exclusive one with the
    file re-read under the lock, so concurrent batches in separate
    processes can append without losing each other's entries.
    Note: File locking requires Unix-like systems.
    """

    def __init__(self, registry_path: Path = None, logger: CookLogger = None):
        if registry_path is None:
            registry_path = config.get_registry_path()
        self.registry_path = Path(registry_path)
        self._logger = logger if logger is not None else CookLogger()
        self._lock_timeout = 10  # seconds

    @staticmethod
    def _parse(content: str) -> List[BackgroundProcessEntry]:
        if not content.strip():
            return []
        try:
            data = json.loads(content)
        except json.JSONDecodeError:
            return []
        entries = []
        for raw in data.get('processes', []):
            try:
                entries.append(BackgroundProcessEntry.from_dict(raw))
            except (KeyError, TypeError, ValueError):
                continue
        return entries

    def _read(self) -> List[BackgroundProcessEntry]:
        """Load entries from disk with shared lock (allows concurrent reads)."""
        if not self.registry_path.exists():
            return []
        with open(self.registry_path, 'r') as f:
            try:
                fcntl.flock(f.fileno(), fcntl.LOCK_SH)
                return self._parse(f.read())
            finally:
                fcntl.flock(f.fileno(), fcntl.LOCK_UN)

    def _update(self, mutate) -> List[BackgroundProcessEntry]:
        """Apply `mutate(entries) -> entries` under an exclusive lock."""
        self.registry_path.parent.mkdir(parents=True, exist_ok=True)

        start_time = time.time()
        while True:
            # a+ creates the file but never truncates it before the lock is held
            with open(self.registry_path, 'a+') as f:
                try:
                    fcntl.flock(f.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                except BlockingIOError:
                    if time.time() - start_time > self._lock_timeout:
                        raise TimeoutError(
                            f"Could not acquire registry lock after {self._lock_timeout}s"
                        )
                    time.sleep(0.01)
                    continue

                try:
                    f.seek(0)
                    updated = mutate(self._parse(f.read()))
                    f.seek(0)
                    f.truncate()
                    json.dump({'processes': [e.to_dict() for e in updated]}, f, indent=2)
                    f.flush()
                finally:
                    fcntl.flock(f.fileno(), fcntl.LOCK_UN)
                return updated

    def register(
        self,
        pid: int,
        command: str,
        description: str,
        session_name: str,
        output_path: str = "",
    ) -> BackgroundProcessEntry:
        """Append a durable entry for a detached process.

        Raises:
            OSError / TimeoutError if the registry file can't be written
        """
        entry = BackgroundProcessEntry(
            pid=pid,
            command=command,
            description=description,
            session_name=session_name,
            registered_at=datetime.now().isoformat(),
            output_path=output_path,
        )
        self._update(lambda entries: entries + [entry])

        self._logger.log_event("registry", f"Background process registered: {pid}", {
            "pid": pid,
            "command": command,
            "session_name": session_name,
            "output_path": output_path,
        }, level="INFO")

        return entry

    def list(self, session_name: Optional[str] = None) -> List[BackgroundProcessEntry]:
        """Return all entries, optionally only those for one session.

        Entries are "probably still running"; the registry does not
        check liveness here.
        """
        entries = self._read()
        if session_name is None:
            return entries
        return [e for e in entries if e.session_name == session_name]

    def remove(self, pids: Iterable[int]) -> int:
        """Drop entries for the given pids. Returns how many were removed."""
        doomed = set(pids)
        if not doomed or not self.registry_path.exists():
            return 0

        removed = []

        def drop(entries):
            kept = []
            for e in entries:
                (removed if e.pid in doomed else kept).append(e)
            return kept

        self._update(drop)
        if removed:
            self._logger.log_event("registry", f"Removed {len(removed)} entr{'y' if len(removed) == 1 else 'ies'}", {
                "pids": sorted({e.pid for e in removed}),
            }, level="INFO")
        return len(removed)

    def remove_session(self, session_name: str) -> int:
        """Forget every entry of a session (e.g. when the session is deleted)."""
        return self.remove(e.pid for e in self.list(session_name))

    def prune(self) -> int:
        """Drop entries whose process has already exited."""
        dead = [e.pid for e in self._read() if not is_process_alive(e.pid)]
        return self.remove(dead)

    def kill_process(self, pid: int, grace_seconds: Optional[float] = None) -> bool:
        """
        Terminate one process: SIGTERM, wait up to the grace period, then SIGKILL.

        Returns:
            True if a signal was delivered, False if the process was already
            gone (or not ours to signal).
        """
        if grace_seconds is None:
            grace_seconds = config.get_kill_grace()

        try:
            _send_signal(pid, signal.SIGTERM)
        except ProcessLookupError:
            return False
        except PermissionError as e:
            self._logger.log_error("registry", f"Cannot signal {pid}", {
                "pid": pid,
                "reason": e.strerror or str(e),
            })
            return False

        deadline = time.time() + grace_seconds
        while time.time() < deadline:
            if not is_process_alive(pid):
                return True
            time.sleep(0.1)

        try:
            _send_signal(pid, signal.SIGKILL)
        except OSError:
            # Exited between the last check and now
            pass
        is_process_alive(pid)
        return True

    def kill_all(
        self,
        entries: Iterable[BackgroundProcessEntry],
        grace_seconds: Optional[float] = None,
    ) -> int:
        """
        Terminate every listed process and remove its entry.

        A process that already exited counts as done; its entry is
        removed all the same. Safe to call repeatedly.

        Returns:
            Number of processes that were actually signalled
        """
        entries = list(entries)
        killed = 0
        for entry in entries:
            if self.kill_process(entry.pid, grace_seconds=grace_seconds):
                killed += 1

        self.remove(e.pid for e in entries)

        if entries:
            self._logger.log_event("registry", f"Killed {killed} of {len(entries)} background process(es)", {
                "pids": [e.pid for e in entries],
                "killed": killed,
            }, level="INFO")
        return killed
