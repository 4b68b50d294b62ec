"""Batch orchestration: run tasks in order with abort/skip/background controls."""
import time
from typing import Callable, List, Optional, Sequence

from cookspace import config
from cookspace.controls import ControlArbiter
from cookspace.display import BatchView, DisplaySink
from cookspace.error_logging import ErrorLogger
from cookspace.executor import INTERRUPTED_EXIT_CODE, TaskExecutor
from cookspace.keys import KeyEventSource
from cookspace.logging import CookLogger
from cookspace.process_registry import BackgroundProcessRegistry
from cookspace.spawn import spawn_process
from cookspace.tasks import BatchOptions, Task, TaskOutcome, TaskResult, TaskStatus


def _validate_tasks(tasks: Sequence[Task]) -> List[Task]:
    tasks = list(tasks)
    for i, task in enumerate(tasks):
        if not isinstance(task, Task):
            raise ValueError(f"tasks[{i}] is not a Task: {task!r}")
        if not task.command:
            raise ValueError(f"tasks[{i}] ({task.label!r}) has an empty command")
    return tasks


class BatchRunner:
    """
    Runs an ordered list of tasks, one at a time.

    Collaborators are injected so callers (and tests) can swap the
    spawner, key source, display and registry. Each call to run() builds
    its own arbiter, view and executor; nothing is carried between runs.
    """

    def __init__(
        self,
        spawner: Callable = spawn_process,
        key_source: Optional[KeyEventSource] = None,
        display: Optional[DisplaySink] = None,
        registry: Optional[BackgroundProcessRegistry] = None,
        logger: Optional[CookLogger] = None,
        error_logger: Optional[ErrorLogger] = None,
        hotkeys: Optional[dict] = None,
        summary_delay: Optional[float] = None,
        kill_grace_seconds: Optional[float] = None,
    ):
        self.spawner = spawner
        self.key_source = key_source
        self.display = display if display is not None else DisplaySink()
        self.registry = registry
        self.logger = logger if logger is not None else CookLogger()
        self.error_logger = error_logger
        self.hotkeys = hotkeys if hotkeys is not None else config.get_hotkeys()
        self.summary_delay = summary_delay if summary_delay is not None else config.get_summary_delay()
        self.kill_grace_seconds = (
            kill_grace_seconds if kill_grace_seconds is not None else config.get_kill_grace()
        )

    def run(self, tasks: Sequence[Task], options: BatchOptions) -> List[TaskResult]:
        """Run every task and return exactly one result per task, in order.

        Once any task is aborted, every later task is reported as Aborted
        without being spawned.

        Raises:
            ValueError: if options or tasks are malformed
        """
        if not isinstance(options, BatchOptions):
            raise ValueError(f"options must be BatchOptions, got {type(options).__name__}")
        tasks = _validate_tasks(tasks)

        arbiter = ControlArbiter(
            allow_abort=options.allow_abort,
            allow_skip=options.allow_skip,
            allow_background=options.allow_background,
            task_count=len(tasks),
            hotkeys=self.hotkeys,
        )
        view = BatchView(
            title=options.title,
            tasks=tasks,
            hints=arbiter.hints(),
            show_output=options.show_output,
        )
        executor = TaskExecutor(
            arbiter,
            options,
            spawner=self.spawner,
            display=self.display,
            registry=self.registry,
            logger=self.logger,
            error_logger=self.error_logger,
            kill_grace_seconds=self.kill_grace_seconds,
        )

        self.logger.log_batch_start({
            "title": options.title,
            "task_count": len(tasks),
            "session_name": options.session_name,
            "controls": arbiter.hints(),
        })
        started = time.time()
        results: List[TaskResult] = []

        self.display.open(view)
        try:
            with arbiter.listening(self.key_source):
                for index, task in enumerate(tasks):
                    if arbiter.abort_all:
                        results.append(TaskResult(
                            task=task,
                            outcome=TaskOutcome.ABORTED,
                            exit_code=INTERRUPTED_EXIT_CODE,
                            output_tail=[],
                        ))
                        self.display.update(index, TaskStatus.ABORTED, [])
                        continue

                    results.append(executor.execute(task, index))

            self.display.set_current_command("")

            failures = [r for r in results if r.outcome is TaskOutcome.ERROR]
            if failures:
                self.display.show_failures(failures)
                if self.summary_delay > 0:
                    time.sleep(self.summary_delay)
        finally:
            self.display.close()

        counts = {}
        for result in results:
            counts[result.outcome.value] = counts.get(result.outcome.value, 0) + 1
        self.logger.log_batch_complete(int((time.time() - started) * 1000), {
            "title": options.title,
            "outcomes": counts,
        })

        return results


def run_batch(tasks: Sequence[Task], options: BatchOptions, **collaborators) -> List[TaskResult]:
    """Run a batch with a fresh BatchRunner. See BatchRunner for collaborators."""
    return BatchRunner(**collaborators).run(tasks, options)
