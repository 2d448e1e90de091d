import threading
import time
from typing import Callable, Dict, List, Optional, Set

from .models import PolicyKey


class WorkQueue:
    """
    De-duplicating work queue of watch-policy keys.

    A key is handed to at most one worker at a time: re-adding a key that
    is being processed marks it dirty, and it is queued again on ``done``.
    Delayed adds keep the earliest due time per key.
    """

    def __init__(
        self,
        backoff_base: float = 1.0,
        backoff_max: float = 300.0,
        now_fn: Callable[[], float] | None = None,
    ) -> None:
        self._now = now_fn or time.monotonic
        self._base = backoff_base
        self._max = backoff_max
        self._cond = threading.Condition()
        self._queue: List[PolicyKey] = []
        self._dirty: Set[PolicyKey] = set()
        self._processing: Set[PolicyKey] = set()
        self._waiting: Dict[PolicyKey, float] = {}
        self._failures: Dict[PolicyKey, int] = {}
        self._shutdown = False

    def _add_locked(self, key: PolicyKey) -> None:
        if key in self._dirty:
            return
        self._dirty.add(key)
        if key not in self._processing:
            self._queue.append(key)
            self._cond.notify()

    def _promote_locked(self) -> Optional[float]:
        """Move due delayed keys to the queue; return seconds until the next one."""
        now = self._now()
        due = [k for k, t in self._waiting.items() if t <= now]
        for k in sorted(due, key=lambda k: self._waiting[k]):
            del self._waiting[k]
            self._add_locked(k)
        if not self._waiting:
            return None
        return max(0.0, min(self._waiting.values()) - now)

    def add(self, key: PolicyKey) -> None:
        with self._cond:
            if not self._shutdown:
                self._add_locked(key)

    def add_after(self, key: PolicyKey, delay_seconds: float) -> None:
        if delay_seconds <= 0:
            self.add(key)
            return
        with self._cond:
            if self._shutdown:
                return
            due = self._now() + delay_seconds
            current = self._waiting.get(key)
            if current is None or due < current:
                self._waiting[key] = due
            self._cond.notify()

    def add_rate_limited(self, key: PolicyKey) -> float:
        with self._cond:
            n = self._failures.get(key, 0)
            self._failures[key] = n + 1
        delay = min(self._base * (2 ** n), self._max)
        self.add_after(key, delay)
        return delay

    def forget(self, key: PolicyKey) -> None:
        with self._cond:
            self._failures.pop(key, None)

    def num_requeues(self, key: PolicyKey) -> int:
        with self._cond:
            return self._failures.get(key, 0)

    def due_in(self, key: PolicyKey) -> Optional[float]:
        with self._cond:
            t = self._waiting.get(key)
            return None if t is None else t - self._now()

    def pop_ready(self) -> Optional[PolicyKey]:
        with self._cond:
            self._promote_locked()
            return self._pop_locked()

    def _pop_locked(self) -> Optional[PolicyKey]:
        if not self._queue:
            return None
        key = self._queue.pop(0)
        self._dirty.discard(key)
        self._processing.add(key)
        return key

    def get(self, timeout: Optional[float] = None) -> Optional[PolicyKey]:
        """Block until a key is ready, the timeout elapses or the queue shuts down."""
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            while not self._shutdown:
                next_due = self._promote_locked()
                key = self._pop_locked()
                if key is not None:
                    return key
                wait = next_due
                if deadline is not None:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        return None
                    wait = remaining if wait is None else min(wait, remaining)
                self._cond.wait(wait)
            return None

    def done(self, key: PolicyKey) -> None:
        with self._cond:
            self._processing.discard(key)
            if key in self._dirty:
                self._queue.append(key)
                self._cond.notify()

    def shutdown(self) -> None:
        with self._cond:
            self._shutdown = True
            self._cond.notify_all()

    def __len__(self) -> int:
        with self._cond:
            return len(self._queue)
