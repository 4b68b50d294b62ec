"""Event log for cookspace.

One event per line, readable on the left and parseable on the right:
    YYYY-MM-DD HH:MM:SS LEVEL [component] message | {"json": "data"}

Events go to monthly files (cookspace-YYYY-MM.log) under ~/.cookspace/logs/.
"""
import itertools
import json
import re
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

LOG_LINE = re.compile(
    r'^(?P<timestamp>\S+ \S+) (?P<level>[A-Z]+)\s+\[(?P<component>[^\]]*)\] '
    r'(?P<message>.*?) \| (?P<data>\{.*\})$'
)


def format_line(level: str, component: str, message: str, data: Dict[str, Any]) -> str:
    """Render one event. Multi-line messages (process output) are joined."""
    timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    message = " ".join(message.splitlines())
    payload = json.dumps(data, ensure_ascii=False, default=str)
    return f"{timestamp} {level:<5} [{component}] {message} | {payload}\n"


def parse_line(line: str) -> Optional[dict]:
    """Inverse of format_line; None for anything that doesn't match."""
    match = LOG_LINE.match(line.rstrip("\n"))
    if match is None:
        return None
    try:
        data = json.loads(match.group('data'))
    except json.JSONDecodeError:
        return None
    return {
        'timestamp': match.group('timestamp'),
        'level': match.group('level'),
        'component': match.group('component'),
        'message': match.group('message'),
        'data': data,
    }


class CookLogger:
    """Appends batch, task and registry events to the monthly log."""

    def __init__(self, log_dir: Optional[Path] = None):
        self.log_dir = Path(log_dir) if log_dir is not None else Path.home() / ".cookspace" / "logs"
        self.log_dir.mkdir(parents=True, exist_ok=True)

    @property
    def log_file(self) -> Path:
        return self.log_dir / f"cookspace-{datetime.now():%Y-%m}.log"

    def log_event(
        self,
        component: str,
        message: str,
        data: Dict[str, Any],
        level: str = "INFO"
    ) -> None:
        """Append one event.

        Args:
            component: Emitting component (batch, task, registry, ...)
            message: Human-readable message
            data: Structured data; values json can't encode are str()'d
            level: DEBUG, INFO, WARNING or ERROR
        """
        with open(self.log_file, "a") as f:
            f.write(format_line(level, component, message, data))

    def log_error(self, component: str, message: str, data: Dict[str, Any]) -> None:
        """ERROR event; data['reason'], when present, is appended to the message."""
        reason = data.get("reason")
        self.log_event(component, f"{message}: {reason}" if reason else message, data, level="ERROR")

    def log_batch_start(self, data: Dict[str, Any]) -> None:
        title = data.get("title")
        self.log_event("batch", f"Starting batch: {title}" if title else "Starting batch", data)

    def log_batch_complete(self, duration_ms: int, data: Dict[str, Any]) -> None:
        self.log_event("batch", f"Batch complete ({duration_ms}ms)", {"duration_ms": duration_ms, **data})

    def log_task_outcome(self, label: str, outcome: str, data: Dict[str, Any], failed: bool = False) -> None:
        self.log_event("task", f"{label}: {outcome}", {"outcome": outcome, **data},
                       level="ERROR" if failed else "INFO")

    def get_log_files(self) -> List[Path]:
        """Monthly log files, newest first."""
        # YYYY-MM in the name sorts chronologically
        return sorted(self.log_dir.glob("cookspace-*.log"), reverse=True)

    def iter_entries(self) -> Iterator[dict]:
        """Parsed entries from every log file, newest first. Malformed lines are skipped."""
        for log_file in self.get_log_files():
            with open(log_file, 'r') as f:
                lines = f.readlines()
            for line in reversed(lines):
                entry = parse_line(line)
                if entry is not None:
                    yield entry

    def read_logs(
        self,
        limit: int = 50,
        component_filter: Optional[str] = None,
        level_filter: Optional[str] = None
    ) -> List[dict]:
        """Newest `limit` entries, optionally only one component and/or level."""
        matching = (
            entry for entry in self.iter_entries()
            if (component_filter is None or entry['component'] == component_filter)
            and (level_filter is None or entry['level'] == level_filter)
        )
        return list(itertools.islice(matching, limit))
