"""Keyboard event sources.

A KeyEventSource fans key presses out to subscribers. TerminalKeySource
reads single keys from the controlling terminal with readchar on a
background thread while at least one subscriber is attached.
"""
import select
import sys
import termios
import threading
import tty
from dataclasses import dataclass
from typing import Callable, List

import readchar


@dataclass(frozen=True)
class KeyEvent:
    """A key press: a key name ('a', 'return', 'up', ...) and the ctrl modifier."""
    name: str
    ctrl: bool = False


KeyCallback = Callable[[KeyEvent], None]

_NAMED_KEYS = {
    readchar.key.UP: 'up',
    readchar.key.DOWN: 'down',
    readchar.key.LEFT: 'left',
    readchar.key.RIGHT: 'right',
    readchar.key.ESC: 'escape',
    readchar.key.TAB: 'tab',
    readchar.key.BACKSPACE: 'backspace',
    readchar.key.SPACE: 'space',
    '\r': 'return',
    '\n': 'return',
}


def key_event_from_raw(raw: str) -> KeyEvent:
    """Map a raw readchar key string to a KeyEvent.

    Control characters \\x01-\\x1a become ctrl+letter; named sequences
    get their name; anything else is passed through as-is.
    """
    if raw in _NAMED_KEYS:
        return KeyEvent(_NAMED_KEYS[raw])
    if len(raw) == 1 and 1 <= ord(raw) <= 26:
        return KeyEvent(chr(ord('a') + ord(raw) - 1), ctrl=True)
    return KeyEvent(raw)


class KeyEventSource:
    """Thread-safe publisher of key events."""

    def __init__(self):
        self._subscribers: List[KeyCallback] = []
        self._lock = threading.Lock()

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def subscribe(self, callback: KeyCallback) -> None:
        with self._lock:
            self._subscribers.append(callback)
            first = len(self._subscribers) == 1
        if first:
            self._on_first_subscriber()

    def unsubscribe(self, callback: KeyCallback) -> None:
        with self._lock:
            if callback in self._subscribers:
                self._subscribers.remove(callback)
            empty = not self._subscribers
        if empty:
            self._on_last_unsubscribe()

    def emit(self, event: KeyEvent) -> None:
        """Deliver one event to every current subscriber."""
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            callback(event)

    def _on_first_subscriber(self) -> None:
        pass

    def _on_last_unsubscribe(self) -> None:
        pass


class TerminalKeySource(KeyEventSource):
    """Reads key presses from stdin while anyone is listening.

    The terminal is put in cbreak mode for the lifetime of the reader
    thread so single key presses are visible to select() without Enter;
    the previous mode is restored when the last subscriber leaves.
    Does nothing when stdin is not a TTY.
    """

    POLL_INTERVAL = 0.1

    def __init__(self, stream=None):
        super().__init__()
        self._stream = stream if stream is not None else sys.stdin
        self._stop = threading.Event()
        self._thread = None

    def _is_tty(self) -> bool:
        try:
            return self._stream.isatty()
        except (AttributeError, ValueError):
            return False

    def _on_first_subscriber(self) -> None:
        if not self._is_tty() or self._thread is not None:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, daemon=True)
        self._thread.start()

    def _on_last_unsubscribe(self) -> None:
        thread = self._thread
        if thread is None:
            return
        self._stop.set()
        if thread is not threading.current_thread():
            thread.join(self.POLL_INTERVAL * 5)
        self._thread = None

    def _run(self) -> None:
        saved = None
        try:
            fd = self._stream.fileno()
            saved = termios.tcgetattr(fd)
            tty.setcbreak(fd)
            while not self._stop.is_set():
                readable, _, _ = select.select([self._stream], [], [], self.POLL_INTERVAL)
                if not readable or self._stop.is_set():
                    continue
                try:
                    raw = readchar.readkey()
                except KeyboardInterrupt:
                    # readchar raises on Ctrl+C; deliver it like any other key
                    raw = '\x03'
                self.emit(key_event_from_raw(raw))
        except (OSError, ValueError, termios.error):
            # Terminal went away; stop listening quietly
            pass
        finally:
            if saved is not None:
                termios.tcsetattr(fd, termios.TCSADRAIN, saved)
