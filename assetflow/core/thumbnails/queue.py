from __future__ import annotations

import asyncio
import inspect
import logging
import threading
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Optional, Set, Union

from assetflow.core.errors import QueueOverrunError

logger = logging.getLogger(__name__)

MAX_CONCURRENT_LOADS = 2
DISPATCH_DELAY_S = 0.01

LoadFn = Callable[[], Union[Awaitable[Any], Any]]


class LoadQueue:
    """
    Global FIFO admission gate for asset fetches.

    A dispatched job owns one slot until it calls on_complete(). Jobs that
    raise before returning are counted as completed by the queue itself.
    """

    def __init__(
        self,
        max_concurrent: int = MAX_CONCURRENT_LOADS,
        *,
        dispatch_delay: float = DISPATCH_DELAY_S,
    ):
        self._max_concurrent = max(1, int(max_concurrent))
        self._dispatch_delay = max(0.0, float(dispatch_delay))
        self._lock = threading.Lock()
        self._pending: Deque[LoadFn] = deque()
        self._in_flight = 0
        self._peak_in_flight = 0
        self._tasks: Set[asyncio.Future] = set()
        self._scheduled_dispatches = 0

    @property
    def max_concurrent(self) -> int:
        return self._max_concurrent

    @property
    def in_flight(self) -> int:
        with self._lock:
            return self._in_flight

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._pending)

    @property
    def peak_in_flight(self) -> int:
        with self._lock:
            return self._peak_in_flight

    # --------------------------------------------------------

    def enqueue(self, load_fn: LoadFn) -> None:
        with self._lock:
            self._pending.append(load_fn)
        self._dispatch()

    def on_complete(self) -> None:
        with self._lock:
            if self._in_flight > 0:
                self._in_flight -= 1
            else:
                logger.warning("LoadQueue.on_complete() called with nothing in flight")

        loop = self._running_loop()
        if loop is None or self._dispatch_delay == 0:
            self._dispatch()
            return
        with self._lock:
            self._scheduled_dispatches += 1
        loop.call_later(self._dispatch_delay, self._delayed_dispatch)

    async def join(self) -> None:
        """Wait until nothing is pending, in flight or still running."""
        while True:
            with self._lock:
                tasks = list(self._tasks)
                busy = bool(self._pending) or self._in_flight > 0 or self._scheduled_dispatches > 0
            if tasks:
                await asyncio.gather(*tasks, return_exceptions=True)
                continue
            if not busy:
                return
            await asyncio.sleep(self._dispatch_delay or 0)

    # --------------------------------------------------------

    def _delayed_dispatch(self) -> None:
        with self._lock:
            self._scheduled_dispatches = max(0, self._scheduled_dispatches - 1)
        self._dispatch()

    def _dispatch(self) -> None:
        to_start = []
        with self._lock:
            while self._pending and self._in_flight < self._max_concurrent:
                to_start.append(self._pending.popleft())
                self._in_flight += 1
            if self._in_flight > self._max_concurrent:
                raise QueueOverrunError(
                    f"{self._in_flight} loads in flight, ceiling is {self._max_concurrent}"
                )
            self._peak_in_flight = max(self._peak_in_flight, self._in_flight)

        for job in to_start:
            self._start(job)

    def _start(self, job: LoadFn) -> None:
        try:
            result = job()
        except Exception as e:
            logger.warning(f"Load job failed before starting: {e}")
            self.on_complete()
            return

        if inspect.isawaitable(result):
            try:
                task = asyncio.ensure_future(result)
            except RuntimeError as e:
                # no running loop to host the job
                if inspect.iscoroutine(result):
                    result.close()
                logger.error(f"Cannot schedule load job: {e}")
                self.on_complete()
                return
            with self._lock:
                self._tasks.add(task)
            task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Future) -> None:
        with self._lock:
            self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Load job raised after dispatch: {exc!r}")

    @staticmethod
    def _running_loop() -> Optional[asyncio.AbstractEventLoop]:
        try:
            return asyncio.get_running_loop()
        except RuntimeError:
            return None


_load_queue: LoadQueue | None = None
_load_queue_lock = threading.Lock()


def get_load_queue(max_concurrent: int = MAX_CONCURRENT_LOADS) -> LoadQueue:
    """
    Get the process-wide LoadQueue.

    Args:
        max_concurrent: Only used on first initialization.
    """
    global _load_queue
    with _load_queue_lock:
        if _load_queue is None:
            _load_queue = LoadQueue(max_concurrent=max_concurrent)
        return _load_queue


def reset_load_queue() -> None:
    global _load_queue
    with _load_queue_lock:
        _load_queue = None
