"""Error telemetry for cookspace.

Task failures and bookkeeping problems are appended to
~/.cookspace/errors.jsonl so `cookspace errors` can show patterns
(which repos keep failing to clone, whether the registry is flaky).

One JSON object per line:
{
    "timestamp": "2026-10-16T10:42:00Z",
    "command": "git clone --depth 1 ... https://github.com/acme/app.git",
    "component": "task",
    "error_type": "TASK_FAILED",
    "message": "fatal: repository not found",
    "context": {"label": "Cloning acme/app", "exit_code": 128},
    "duration_ms": 812
}
Timestamps are UTC.
"""

import json
from collections import Counter, deque
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Iterator, Optional

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


class ErrorType(Enum):
    SPAWN_FAILED = "SPAWN_FAILED"
    TASK_FAILED = "TASK_FAILED"
    REGISTRY_WRITE_FAILED = "REGISTRY_WRITE_FAILED"
    REGISTRY_LOCKED = "REGISTRY_LOCKED"


def _entry_time(entry: dict) -> Optional[datetime]:
    try:
        return datetime.strptime(entry.get("timestamp", ""), TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)
    except (TypeError, ValueError):
        return None


@dataclass(frozen=True)
class ErrorEntry:
    timestamp: str
    command: str
    component: str
    error_type: ErrorType
    message: str
    context: Optional[dict[str, Any]] = None
    duration_ms: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready dict; optional fields are left out when unset."""
        result = {
            "timestamp": self.timestamp,
            "command": self.command,
            "component": self.component,
            "error_type": self.error_type.value,
            "message": self.message,
            "context": self.context,
            "duration_ms": self.duration_ms,
        }
        return {key: value for key, value in result.items() if value is not None}


class ErrorLogger:
    """Appends ErrorEntry lines to a JSONL file, keeping the newest max_entries."""

    DEFAULT_MAX_ENTRIES = 10000

    def __init__(
        self,
        error_file: Optional[Path] = None,
        max_entries: int = DEFAULT_MAX_ENTRIES,
    ):
        self.error_file = Path(error_file) if error_file is not None else Path.home() / ".cookspace" / "errors.jsonl"
        self.max_entries = max_entries
        self.error_file.parent.mkdir(parents=True, exist_ok=True)

    def log_error(
        self,
        command: str,
        component: str,
        error_type: ErrorType,
        message: str,
        context: Optional[dict[str, Any]] = None,
        duration_ms: Optional[int] = None,
    ) -> None:
        """Record one error.

        Args:
            command: The command line that failed (or the CLI command)
            component: Where it happened: task, registry, ...
            error_type: Category for aggregation
            message: Human-readable detail, e.g. the command's last output
            context: Extra structured detail
            duration_ms: How long the failing work ran
        """
        entry = ErrorEntry(
            timestamp=datetime.now(timezone.utc).strftime(TIMESTAMP_FORMAT),
            command=command,
            component=component,
            error_type=error_type,
            message=message,
            context=context,
            duration_ms=duration_ms,
        )
        with open(self.error_file, "a") as f:
            f.write(json.dumps(entry.to_dict(), default=str) + "\n")

        self._trim()

    def _trim(self) -> None:
        with open(self.error_file, "r") as f:
            kept = deque(f, maxlen=self.max_entries + 1)
        if len(kept) > self.max_entries:
            kept.popleft()
            with open(self.error_file, "w") as f:
                f.writelines(kept)

    def _iter_entries(self) -> Iterator[dict[str, Any]]:
        """Entries in file (chronological) order; unparseable lines are skipped."""
        if not self.error_file.exists():
            return
        with open(self.error_file, "r") as f:
            for line in f:
                if not line.strip():
                    continue
                try:
                    yield json.loads(line)
                except json.JSONDecodeError:
                    continue

    def get_error_stats(self, days: int = 7) -> dict[str, Any]:
        """Counts by error type and by component over the last `days` days."""
        cutoff = datetime.now(timezone.utc) - timedelta(days=days)
        by_type: Counter = Counter()
        by_component: Counter = Counter()

        for entry in self._iter_entries():
            when = _entry_time(entry)
            if when is None or when < cutoff:
                continue
            by_type[entry.get("error_type", "UNKNOWN")] += 1
            by_component[entry.get("component", "unknown")] += 1

        return {
            "total": sum(by_type.values()),
            "by_type": dict(by_type),
            "by_component": dict(by_component),
        }

    def get_recent_errors(self, limit: int = 10) -> list[dict[str, Any]]:
        """Newest `limit` entries, newest first."""
        return list(reversed(deque(self._iter_entries(), maxlen=limit)))
