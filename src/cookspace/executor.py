"""Runs one task: spawn, stream output, and race completion against backgrounding."""
import subprocess
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, wait
from typing import Callable, List, Optional

from cookspace.controls import ControlArbiter, ControlIntent
from cookspace.display import DisplaySink
from cookspace.error_logging import ErrorLogger, ErrorType
from cookspace.logging import CookLogger
from cookspace.process_registry import BackgroundProcessRegistry
from cookspace.spawn import spawn_process
from cookspace.stream import StreamReader
from cookspace.tasks import (
    OUTCOME_STATUS,
    BatchOptions,
    Task,
    TaskOutcome,
    TaskResult,
    TaskStatus,
)

INTERRUPTED_EXIT_CODE = -1
SPAWN_FAILED_EXIT_CODE = 1


class _Termination:
    """SIGTERM now, SIGKILL if the process outlives the grace period."""

    def __init__(self, proc, grace_seconds: float):
        self.proc = proc
        self.grace_seconds = grace_seconds
        self._timer: Optional[threading.Timer] = None
        self._lock = threading.Lock()

    def request(self) -> None:
        self.proc.terminate()
        with self._lock:
            if self._timer is None:
                self._timer = threading.Timer(self.grace_seconds, self._kill)
                self._timer.daemon = True
                self._timer.start()

    def _kill(self) -> None:
        if self.proc.poll() is None:
            self.proc.kill()

    def cancel(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()


class TaskExecutor:
    """
    Executes tasks one at a time for a batch.

    Per task: Pending -> Running -> one of Completed, Error, Aborted,
    Skipped or Backgrounded. While running, two futures race:
    the output stream finishing (with the exit code) and the arbiter's
    background release. Classification priority once either settles:

    1. abort seen during the task -> Aborted
    2. pending Skip intent -> Skipped
    3. release fired -> Backgrounded (even if the stream also finished)
    4. stream interrupted without a control intent -> Error
    5. exit code 0 -> Completed, otherwise Error
    """

    def __init__(
        self,
        arbiter: ControlArbiter,
        options: BatchOptions,
        spawner: Callable = spawn_process,
        display: Optional[DisplaySink] = None,
        registry: Optional[BackgroundProcessRegistry] = None,
        logger: Optional[CookLogger] = None,
        error_logger: Optional[ErrorLogger] = None,
        kill_grace_seconds: float = 3.0,
    ):
        self.arbiter = arbiter
        self.options = options
        self.spawner = spawner
        self.display = display if display is not None else DisplaySink()
        self._registry = registry
        self.logger = logger if logger is not None else CookLogger()
        self.error_logger = error_logger
        self.kill_grace_seconds = kill_grace_seconds

    def _show(self, index: int, status: TaskStatus, window: List[str]) -> None:
        self.display.update(index, status, window if self.options.show_output else [])

    def _record_error(self, task: Task, error_type: ErrorType, message: str, context: dict, started: float) -> None:
        if self.error_logger is None:
            return
        try:
            self.error_logger.log_error(
                command=task.command_line,
                component="task",
                error_type=error_type,
                message=message,
                context=context,
                duration_ms=int((time.time() - started) * 1000),
            )
        except OSError:
            # Telemetry is best-effort
            pass

    def _reap(self, proc) -> None:
        """Wait for a terminated process, killing it if it lingers."""
        try:
            proc.wait(timeout=self.kill_grace_seconds)
        except subprocess.TimeoutExpired:
            proc.kill()
            try:
                proc.wait(timeout=self.kill_grace_seconds)
            except subprocess.TimeoutExpired:
                self.logger.log_error("task", "Process survived SIGKILL", {"pid": proc.pid})

    def _register_background(self, task: Task, proc) -> None:
        pid = proc.pid
        output_path = str(proc.output_path) if proc.output_path else ""
        session_name = self.options.session_name
        if not session_name:
            self.logger.log_event("task", f"Backgrounded without session: {task.label}", {
                "pid": pid,
                "output_path": output_path,
            }, level="WARNING")
            return

        try:
            if self._registry is None:
                self._registry = BackgroundProcessRegistry(logger=self.logger)
            self._registry.register(
                pid, task.command_line, task.label, session_name, output_path=output_path,
            )
        except (OSError, TimeoutError) as e:
            # The process is running either way; only bookkeeping is lost
            self.logger.log_error("registry", "Failed to register background process", {
                "pid": pid,
                "session_name": session_name,
                "reason": str(e),
            })
            self._record_error(task, ErrorType.REGISTRY_WRITE_FAILED, str(e), {
                "pid": pid,
                "session_name": session_name,
            }, time.time())

    def execute(self, task: Task, index: int) -> TaskResult:
        """Run one task to an outcome. Never raises for task-level failures."""
        self.arbiter.reset()
        self._show(index, TaskStatus.RUNNING, [])
        if self.options.show_output:
            self.display.set_current_command(f"Running: {task.command_line}")

        started = time.time()
        try:
            proc = self.spawner(task.command, task.working_directory)
        except (OSError, ValueError, subprocess.SubprocessError) as e:
            message = str(e)
            self.logger.log_error("task", f"Failed to start: {task.label}", {
                "command": list(task.command),
                "cwd": task.working_directory,
                "reason": message,
            })
            self._record_error(task, ErrorType.SPAWN_FAILED, message, {"label": task.label}, started)
            self._show(index, TaskStatus.ERROR, [message])
            return TaskResult(
                task=task,
                outcome=TaskOutcome.ERROR,
                exit_code=SPAWN_FAILED_EXIT_CODE,
                output_tail=[],
                error_message=message,
            )

        detached = threading.Event()
        # Only this task's Abort/Skip sets it; later tasks' controls never
        # reach a reader that has been detached
        stop = threading.Event()

        def on_buffer_update(window: List[str]) -> None:
            if detached.is_set():
                return
            if self.options.show_output:
                self.display.update(index, TaskStatus.RUNNING, window)

        reader = StreamReader(
            max_lines=self.options.output_lines,
            on_buffer_update=on_buffer_update,
            should_stop=stop.is_set,
        )
        streamed: Future = Future()
        release: Future = Future()
        termination = _Termination(proc, self.kill_grace_seconds)

        def request_stop() -> None:
            stop.set()
            termination.request()

        def consume() -> None:
            try:
                result = reader.read_process(proc)
                exit_code = None if result.was_interrupted or detached.is_set() else proc.wait()
                streamed.set_result((result, exit_code))
            except Exception as e:
                streamed.set_exception(e)

        self.arbiter.bind(request_stop, release)
        threading.Thread(target=consume, name=f"task-{index}-output", daemon=True).start()
        try:
            wait([streamed, release], return_when=FIRST_COMPLETED)
        finally:
            self.arbiter.unbind()

        window = reader.window
        error_message = None
        exit_code = INTERRUPTED_EXIT_CODE

        if self.arbiter.abort_all:
            outcome = TaskOutcome.ABORTED
            self._reap(proc)
        elif self.arbiter.intent is ControlIntent.SKIP:
            outcome = TaskOutcome.SKIPPED
            self._reap(proc)
        elif release.done():
            outcome = TaskOutcome.BACKGROUNDED
            exit_code = 0
            # The child keeps writing to its log file after we stop following it
            detached.set()
            termination.cancel()
            proc.detach()
            self._register_background(task, proc)
        elif streamed.exception() is not None:
            outcome = TaskOutcome.ERROR
            error_message = str(streamed.exception())
        else:
            result, code = streamed.result()
            if result.was_interrupted:
                outcome = TaskOutcome.ERROR
                error_message = "Command was interrupted"
            elif code == 0:
                outcome = TaskOutcome.COMPLETED
                exit_code = 0
            else:
                outcome = TaskOutcome.ERROR
                exit_code = code
                error_message = result.full_output.strip() or f"Command exited with code {code}"

        if outcome is not TaskOutcome.BACKGROUNDED:
            termination.cancel()
            proc.discard_output()

        self.logger.log_task_outcome(task.label, outcome.value, {
            "pid": proc.pid,
            "exit_code": exit_code,
            "duration_ms": int((time.time() - started) * 1000),
        }, failed=outcome is TaskOutcome.ERROR)
        if outcome is TaskOutcome.ERROR:
            self._record_error(task, ErrorType.TASK_FAILED, error_message, {
                "label": task.label,
                "exit_code": exit_code,
            }, started)

        self._show(index, OUTCOME_STATUS[outcome], window)

        return TaskResult(
            task=task,
            outcome=outcome,
            exit_code=exit_code,
            output_tail=window,
            error_message=error_message,
        )
