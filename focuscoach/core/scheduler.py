"""
Scheduler Module

Cooperative, single-threaded timer scheduling for the scoring pipeline.
Frame arrival, the score evaluation tick and the chime repeat are all
driven from one Scheduler so that reset() can cancel every timer cleanly.
Worker threads never touch pipeline state directly; they hand results back
with call_soon_threadsafe() and the owning thread runs them in run_pending().
"""

import heapq
import itertools
import threading
import time
from collections import deque
from concurrent.futures import Executor, Future
from typing import Any, Callable, Deque, List, Optional, Tuple

from ..utils.logger import get_logger

logger = get_logger(__name__)


class Clock:
    """Source of the current time in seconds."""

    def now(self) -> float:
        raise NotImplementedError


class SystemClock(Clock):
    """Wall clock (epoch seconds)."""

    def now(self) -> float:
        return time.time()


class VirtualClock(Clock):
    """Manually advanced clock for tests and offline replay."""

    def __init__(self, start: float = 0.0):
        self._now = float(start)

    def now(self) -> float:
        return self._now

    def set(self, value: float) -> None:
        if value < self._now:
            raise ValueError(f"Virtual clock cannot go backwards ({value} < {self._now})")
        self._now = float(value)

    def advance(self, seconds: float) -> float:
        self.set(self._now + seconds)
        return self._now


class TimerHandle:
    """Cancelable handle for a one-shot or repeating timer."""

    def __init__(self, when: float, callback: Callable, args: Tuple[Any, ...] = (),
                 interval: Optional[float] = None):
        self.when = when
        self.callback = callback
        self.args = args
        self.interval = interval
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def repeating(self) -> bool:
        return self.interval is not None

    def __repr__(self) -> str:
        state = "cancelled" if self._cancelled else "active"
        return f"<TimerHandle when={self.when:.3f} interval={self.interval} {state}>"


class Scheduler:
    """Heap based timer queue; the owning thread pumps it with run_pending()."""

    def __init__(self, clock: Optional[Clock] = None):
        self.clock = clock or SystemClock()
        self._timers: List[Tuple[float, int, TimerHandle]] = []
        self._seq = itertools.count()
        self._ready: Deque[Tuple[Callable, Tuple[Any, ...]]] = deque()
        self._ready_lock = threading.Lock()
        self._wakeup = threading.Event()
        self._stopped = False

    def now(self) -> float:
        return self.clock.now()

    def call_later(self, delay: float, callback: Callable, *args: Any) -> TimerHandle:
        """Run callback once after delay seconds."""
        handle = TimerHandle(self.now() + max(0.0, delay), callback, args)
        self._push(handle)
        return handle

    def call_every(self, interval: float, callback: Callable, *args: Any,
                   first_delay: Optional[float] = None) -> TimerHandle:
        """Run callback every interval seconds until the handle is cancelled."""
        if interval <= 0:
            raise ValueError("Repeat interval must be positive")
        delay = interval if first_delay is None else max(0.0, first_delay)
        handle = TimerHandle(self.now() + delay, callback, args, interval=interval)
        self._push(handle)
        return handle

    def call_soon_threadsafe(self, callback: Callable, *args: Any) -> None:
        """Queue callback from any thread; it runs on the next run_pending()."""
        with self._ready_lock:
            self._ready.append((callback, args))
        self._wakeup.set()

    def _push(self, handle: TimerHandle) -> None:
        heapq.heappush(self._timers, (handle.when, next(self._seq), handle))
        self._wakeup.set()

    def _drain_ready(self) -> int:
        ran = 0
        while True:
            with self._ready_lock:
                if not self._ready:
                    return ran
                callback, args = self._ready.popleft()
            self._run(callback, args)
            ran += 1

    def _run(self, callback: Callable, args: Tuple[Any, ...]) -> None:
        try:
            callback(*args)
        except Exception as e:
            # A failing timer must not take the scheduler down with it
            logger.log_error_with_context(e, f"scheduled callback {getattr(callback, '__name__', callback)}")

    def _fire(self, handle: TimerHandle) -> None:
        self._run(handle.callback, handle.args)
        if handle.repeating and not handle.cancelled:
            handle.when += handle.interval
            self._push(handle)

    def next_deadline(self) -> Optional[float]:
        while self._timers and self._timers[0][2].cancelled:
            heapq.heappop(self._timers)
        return self._timers[0][0] if self._timers else None

    def pending_timers(self) -> int:
        return sum(1 for _, _, h in self._timers if not h.cancelled)

    def run_pending(self) -> int:
        """Run queued thread callbacks and every timer due by now. Returns callbacks run."""
        ran = self._drain_ready()
        now = self.now()
        while True:
            deadline = self.next_deadline()
            if deadline is None or deadline > now:
                break
            _, _, handle = heapq.heappop(self._timers)
            self._fire(handle)
            ran += 1
            ran += self._drain_ready()
        return ran

    def run_forever(self, max_sleep: float = 0.05) -> None:
        """Block the calling thread and pump timers until stop() is called."""
        self._stopped = False
        while not self._stopped:
            self.run_pending()
            deadline = self.next_deadline()
            timeout = max_sleep if deadline is None else min(max_sleep, max(0.0, deadline - self.now()))
            self._wakeup.wait(timeout)
            self._wakeup.clear()

    def stop(self) -> None:
        self._stopped = True
        self._wakeup.set()


class InlineExecutor(Executor):
    """Executor that runs each task immediately on the calling thread."""

    def submit(self, fn: Callable, *args: Any, **kwargs: Any) -> Future:
        future: Future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as e:
            future.set_exception(e)
        return future


class VirtualScheduler(Scheduler):
    """Scheduler on a VirtualClock; advance() replays timers in deadline order."""

    def __init__(self, start: float = 0.0):
        super().__init__(VirtualClock(start))

    def advance(self, seconds: float) -> int:
        """Move virtual time forward, firing every timer that falls due on the way."""
        target = self.clock.now() + seconds
        ran = self._drain_ready()
        while True:
            deadline = self.next_deadline()
            if deadline is None or deadline > target:
                break
            if deadline > self.clock.now():
                self.clock.set(deadline)
            _, _, handle = heapq.heappop(self._timers)
            self._fire(handle)
            ran += 1
            ran += self._drain_ready()
        self.clock.set(target)
        return ran

    def advance_to(self, when: float) -> int:
        return self.advance(max(0.0, when - self.clock.now()))
