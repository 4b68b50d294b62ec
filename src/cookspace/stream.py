"""Line-buffered reading of a child process's stdout/stderr.

Both streams feed one shared window of the most recent non-empty lines,
so the display always shows the combined tail of what the process printed.
Reading can be stopped cooperatively through a `should_stop` predicate that
is checked before and after every read.
"""
import codecs
import re
import threading
from collections import deque
from dataclasses import dataclass
from typing import Callable, List, Optional

LINE_BREAKS = re.compile(r'[\r\n]+')
READ_SIZE = 4096
STOP_JOIN_TIMEOUT = 0.5


@dataclass
class StreamResult:
    """What the reader saw by the time both streams were done."""
    output: List[str]
    full_output: str
    was_interrupted: bool


class StreamReader:
    """Reads process output into a bounded trailing window.

    Args:
        max_lines: Size of the trailing window (oldest line evicted first)
        on_line: Called once per complete line, untrimmed
        on_buffer_update: Called with a copy of the window after each change
        should_stop: Polled around each read; True ends reading early
    """

    def __init__(
        self,
        max_lines: int,
        on_line: Optional[Callable[[str], None]] = None,
        on_buffer_update: Optional[Callable[[List[str]], None]] = None,
        should_stop: Optional[Callable[[], bool]] = None,
    ):
        if max_lines < 1:
            raise ValueError(f"max_lines must be at least 1, got {max_lines}")
        self.max_lines = max_lines
        self.on_line = on_line
        self.on_buffer_update = on_buffer_update
        self.should_stop = should_stop
        self._window = deque(maxlen=max_lines)
        self._full_parts: List[str] = []
        self._lock = threading.Lock()
        self._interrupted = False

    @property
    def window(self) -> List[str]:
        with self._lock:
            return list(self._window)

    @property
    def full_output(self) -> str:
        with self._lock:
            return "".join(self._full_parts)

    @property
    def was_interrupted(self) -> bool:
        return self._interrupted

    def _stop_requested(self) -> bool:
        if self.should_stop is not None and self.should_stop():
            self._interrupted = True
            return True
        return False

    def _add_line(self, line: str) -> None:
        # Callbacks run under the lock so stdout/stderr updates reach
        # the display in the order they were appended
        with self._lock:
            if self.on_line is not None:
                self.on_line(line)
            trimmed = line.strip()
            if not trimmed:
                return
            self._window.append(trimmed)
            if self.on_buffer_update is not None:
                self.on_buffer_update(list(self._window))

    def read(self, stream) -> bool:
        """Consume one byte stream until EOF or until told to stop.

        Returns:
            True if reading stopped because should_stop() said so
        """
        if stream is None:
            return False

        decoder = codecs.getincrementaldecoder('utf-8')(errors='replace')
        pending = ""

        try:
            while True:
                if self._stop_requested():
                    return True

                chunk = stream.read1(READ_SIZE) if hasattr(stream, 'read1') else stream.read(READ_SIZE)
                if not chunk:
                    break

                text = decoder.decode(chunk)
                with self._lock:
                    self._full_parts.append(text)
                pending += text

                lines = LINE_BREAKS.split(pending)
                pending = lines.pop()
                for line in lines:
                    self._add_line(line)

                if self._stop_requested():
                    return True

            pending += decoder.decode(b'', final=True)
            if pending.strip():
                self._add_line(pending)
        except (OSError, ValueError):
            # Stream closed underneath us; treat as end of output
            pass

        return False

    def read_process(self, proc) -> StreamResult:
        """Read a process's stdout and stderr concurrently until both end.

        stderr is read on a helper thread, stdout on the calling thread.
        Does not wait for the process to exit.
        """
        stderr_thread = threading.Thread(
            target=self.read, args=(getattr(proc, 'stderr', None),), daemon=True
        )
        stderr_thread.start()
        self.read(getattr(proc, 'stdout', None))
        if self._interrupted:
            # A stuck stderr read must not hold the caller once stopping
            stderr_thread.join(STOP_JOIN_TIMEOUT)
        else:
            stderr_thread.join()

        return StreamResult(
            output=self.window,
            full_output=self.full_output,
            was_interrupted=self._interrupted,
        )
