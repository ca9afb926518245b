"""Queue of pending actions, worked through one at a time by a background thread."""

import logging
import threading
from collections import deque
from typing import Callable, Deque, List, Optional, Tuple

from .models import Action, Settings

logger = logging.getLogger(__name__)


class ActionQueue:
    """Thread-safe FIFO of actions plus the one currently being run."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._pending: Deque[Action] = deque()
        self._current: Optional[Action] = None

    def push(self, action: Action) -> int:
        """Add an action to the back of the queue and return its 1-based position."""
        with self._lock:
            self._pending.append(action)
            return len(self._pending)

    def pop_next(self) -> Optional[Action]:
        """Take the next action off the queue and mark it as the current one."""
        with self._lock:
            action = self._pending.popleft() if self._pending else None
            self._current = action
            return action

    def finish_current(self) -> None:
        with self._lock:
            self._current = None

    def snapshot(self) -> Tuple[Optional[Action], List[Action]]:
        """Return copies of the current action and the queued ones."""
        with self._lock:
            current = self._current.model_copy() if self._current else None
            return current, [a.model_copy() for a in self._pending]

    def __len__(self) -> int:
        with self._lock:
            return len(self._pending)


class QueueConsumer:
    """Background thread that runs queued actions one at a time."""

    def __init__(
        self,
        queue: ActionQueue,
        settings: Settings,
        dispatcher: Callable[[Settings, Action], None],
        interval: float = 2.0,
    ) -> None:
        self.queue = queue
        self.settings = settings
        self.dispatcher = dispatcher
        self.interval = interval
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self.run, name="action-queue-consumer", daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)

    def run_once(self) -> bool:
        """Run the next queued action, if any. Returns whether one was run."""
        action = self.queue.pop_next()
        if action is None:
            return False
        logger.info(f"Running queued action: {action.model_dump()}")
        try:
            self.dispatcher(self.settings, action)
        except Exception:
            # Keep consuming after a failed action.
            logger.exception(f"Action failed: {action.model_dump()}")
        finally:
            self.queue.finish_current()
        return True

    def run(self) -> None:
        # Start immediately, then check every interval.
        while not self._stop.is_set():
            logger.debug("Checking action queue")
            self.run_once()
            self._stop.wait(self.interval)
