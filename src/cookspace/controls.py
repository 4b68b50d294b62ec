"""Control hotkeys for a running batch: abort, skip and background."""
import threading
from concurrent.futures import Future
from contextlib import contextmanager
from enum import Enum, auto
from typing import Callable, Dict, List, Optional

from cookspace.keys import KeyEvent, KeyEventSource

DEFAULT_HOTKEYS = {'abort': 'a', 'skip': 's', 'background': 'b'}


class ControlIntent(Enum):
    """Most recent unconsumed user signal for the running task."""
    NONE = auto()
    ABORT = auto()
    SKIP = auto()
    BACKGROUND = auto()


class ControlArbiter:
    """Maps key presses to control intents for one batch.

    Holds a single pending intent (a later key press overwrites an earlier
    one) plus a sticky abort-all flag. While a task runs, the executor binds
    a terminate callback and a one-shot release future:

    - Abort sets ABORT, marks abort-all and terminates the process
    - Skip sets SKIP and terminates the process
    - Background sets BACKGROUND and resolves the release future,
      leaving the process running

    Key presses that arrive between reset() and bind() are applied as
    soon as the task binds.
    """

    def __init__(
        self,
        allow_abort: bool = False,
        allow_skip: bool = False,
        allow_background: bool = False,
        task_count: int = 1,
        hotkeys: Optional[Dict[str, str]] = None,
    ):
        hotkeys = {**DEFAULT_HOTKEYS, **(hotkeys or {})}
        self.task_count = task_count
        self.hotkeys = hotkeys
        self.key_map: Dict[str, ControlIntent] = {}
        if allow_abort:
            self.key_map[hotkeys['abort']] = ControlIntent.ABORT
        if allow_skip and task_count > 1:
            self.key_map[hotkeys['skip']] = ControlIntent.SKIP
        if allow_background:
            self.key_map[hotkeys['background']] = ControlIntent.BACKGROUND

        self._lock = threading.RLock()
        self._intent = ControlIntent.NONE
        self._abort_all = False
        self._terminate: Optional[Callable[[], None]] = None
        self._release: Optional[Future] = None

    @property
    def enabled(self) -> bool:
        return bool(self.key_map)

    @property
    def intent(self) -> ControlIntent:
        with self._lock:
            return self._intent

    @property
    def abort_all(self) -> bool:
        with self._lock:
            return self._abort_all

    def hints(self) -> List[str]:
        """Footer hints for the enabled controls, in display order."""
        labels = {
            ControlIntent.ABORT: "Abort All" if self.task_count > 1 else "Abort",
            ControlIntent.SKIP: "Skip",
            ControlIntent.BACKGROUND: "Background",
        }
        return [f"{key} {labels[intent]}" for key, intent in self.key_map.items()]

    def map_key(self, event: KeyEvent) -> ControlIntent:
        """Map a key press to an intent; NONE for anything unrecognized."""
        if event.ctrl:
            return ControlIntent.NONE
        return self.key_map.get(event.name, ControlIntent.NONE)

    def reset(self) -> None:
        """Start a fresh task: clear the pending intent and task hooks."""
        with self._lock:
            self._intent = ControlIntent.NONE
            self._terminate = None
            self._release = None

    def bind(self, terminate: Callable[[], None], release: Future) -> None:
        """Attach the running task's terminate callback and release future."""
        with self._lock:
            self._terminate = terminate
            self._release = release
            if self._intent in (ControlIntent.ABORT, ControlIntent.SKIP):
                terminate()
            elif self._intent is ControlIntent.BACKGROUND:
                self._fire_release()

    def unbind(self) -> None:
        with self._lock:
            self._terminate = None
            self._release = None

    def _fire_release(self) -> None:
        if self._release is not None and not self._release.done():
            self._release.set_result(ControlIntent.BACKGROUND)

    def handle_key(self, event: KeyEvent) -> ControlIntent:
        """Key listener callback. Returns the intent applied (NONE if ignored)."""
        intent = self.map_key(event)
        if intent is ControlIntent.NONE:
            return intent

        with self._lock:
            self._intent = intent
            if intent is ControlIntent.ABORT:
                self._abort_all = True
                if self._terminate is not None:
                    self._terminate()
            elif intent is ControlIntent.SKIP:
                if self._terminate is not None:
                    self._terminate()
            else:
                self._fire_release()

        return intent

    @contextmanager
    def listening(self, source: Optional[KeyEventSource]):
        """Subscribe to `source` for the duration of the block.

        The listener is removed on every exit path. With no enabled
        controls or no source, nothing is subscribed.
        """
        if source is None or not self.enabled:
            yield self
            return

        source.subscribe(self.handle_key)
        try:
            yield self
        finally:
            source.unsubscribe(self.handle_key)
