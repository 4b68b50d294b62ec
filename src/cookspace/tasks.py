"""Value types shared by the batch runner, executor and display."""
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional


class TaskOutcome(Enum):
    """Final classification of one scheduled task."""
    COMPLETED = "completed"
    ERROR = "error"
    ABORTED = "aborted"
    SKIPPED = "skipped"
    BACKGROUNDED = "backgrounded"


class TaskStatus(Enum):
    """Display status of a task while a batch is running."""
    PENDING = "pending"
    RUNNING = "running"
    DONE = "done"
    ERROR = "error"
    ABORTED = "aborted"
    SKIPPED = "skipped"
    BACKGROUNDED = "backgrounded"


OUTCOME_STATUS = {
    TaskOutcome.COMPLETED: TaskStatus.DONE,
    TaskOutcome.ERROR: TaskStatus.ERROR,
    TaskOutcome.ABORTED: TaskStatus.ABORTED,
    TaskOutcome.SKIPPED: TaskStatus.SKIPPED,
    TaskOutcome.BACKGROUNDED: TaskStatus.BACKGROUNDED,
}


@dataclass(frozen=True)
class Task:
    """One external command to run.

    Attributes:
        label: Human-readable name shown in the task list
        command: argv list; command[0] is the executable
        working_directory: Optional cwd for the process
    """
    label: str
    command: tuple
    working_directory: Optional[str] = None

    def __post_init__(self):
        # Accept any sequence but store an immutable tuple
        object.__setattr__(self, 'command', tuple(self.command))

    @property
    def command_line(self) -> str:
        return " ".join(self.command)


@dataclass(frozen=True)
class TaskResult:
    """Outcome of one task, produced exactly once per scheduled task."""
    task: Task
    outcome: TaskOutcome
    exit_code: int
    output_tail: List[str] = field(default_factory=list)
    error_message: Optional[str] = None

    @property
    def success(self) -> bool:
        """Backgrounded work counts as success for flow purposes."""
        return self.outcome in (TaskOutcome.COMPLETED, TaskOutcome.BACKGROUNDED)

    def to_dict(self) -> dict:
        result = {
            'label': self.task.label,
            'command': list(self.task.command),
            'outcome': self.outcome.value,
            'exit_code': self.exit_code,
            'output_tail': list(self.output_tail),
        }
        if self.error_message is not None:
            result['error_message'] = self.error_message
        return result


@dataclass(frozen=True)
class BatchOptions:
    """Caller-facing options for one batch run."""
    show_output: bool = True
    output_lines: int = 5
    allow_abort: bool = False
    allow_skip: bool = False
    allow_background: bool = False
    session_name: Optional[str] = None
    title: str = "Running commands"

    def __post_init__(self):
        if not isinstance(self.output_lines, int) or isinstance(self.output_lines, bool):
            raise ValueError(f"output_lines must be an int, got {self.output_lines!r}")
        if self.output_lines < 1:
            raise ValueError(f"output_lines must be at least 1, got {self.output_lines}")
        if self.session_name is not None and not self.session_name.strip():
            raise ValueError("session_name must not be empty")
