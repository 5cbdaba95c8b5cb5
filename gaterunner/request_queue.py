"""Single-slot FIFO request queue.

At most one request is processing at any time. The ``on_started`` handler
runs as a task owned by the queue and must settle the request through
``mark_complete()`` or ``mark_failed()``. A deadline races against those
two signals; whichever comes first decides the outcome.

Usage:
    queue = RequestQueue(max_size=100)
    queue.set_callbacks(on_started=handle, on_failed=report)
    position = queue.enqueue(request)
"""

import asyncio
import functools
import logging
from collections import deque
from typing import Awaitable, Callable, Optional

from .errors import GateRunnerError, QueueClosedError, QueueFullError, RequestTimeoutError
from .models import Request, RequestStatus

logger = logging.getLogger("gaterunner.queue")

StartedCallback = Callable[[Request], Awaitable[None]]
CompletedCallback = Callable[[Request], Awaitable[None]]
FailedCallback = Callable[[Request, BaseException], Awaitable[None]]


class RequestQueue:
    """Bounded FIFO with exactly-once-in-flight scheduling."""

    def __init__(self, max_size: int = 100):
        self.max_size = max_size
        self._queue: deque[Request] = deque()
        self._busy = False
        self._current: Optional[Request] = None
        self._settled: Optional[asyncio.Future] = None
        self._runner: Optional[asyncio.Task] = None
        self._handler: Optional[asyncio.Task] = None
        self._idle = asyncio.Event()
        self._idle.set()
        self._on_started: Optional[StartedCallback] = None
        self._on_completed: Optional[CompletedCallback] = None
        self._on_failed: Optional[FailedCallback] = None

    def set_callbacks(
        self,
        on_started: Optional[StartedCallback] = None,
        on_completed: Optional[CompletedCallback] = None,
        on_failed: Optional[FailedCallback] = None,
    ):
        """Register lifecycle callbacks.

        on_started(request) runs as a task and must settle the request.
        on_completed(request) / on_failed(request, error) run after settlement,
        before the next request is scheduled.
        """
        self._on_started = on_started
        self._on_completed = on_completed
        self._on_failed = on_failed

    # ── Public API ───────────────────────────────────────────

    @property
    def size(self) -> int:
        """Number of requests waiting (excluding the one processing)."""
        return len(self._queue)

    @property
    def current(self) -> Optional[Request]:
        return self._current

    @property
    def is_idle(self) -> bool:
        return not self._busy and not self._queue

    def enqueue(self, request: Request) -> int:
        """Append a request and return its 1-based position.

        Raises:
            QueueFullError: if the queue is at capacity
        """
        if len(self._queue) >= self.max_size:
            logger.warning(
                f"Queue is full ({self.max_size}), rejecting request from user {request.requester_id}"
            )
            raise QueueFullError(self.max_size)

        request.status = RequestStatus.QUEUED
        self._queue.append(request)
        self._idle.clear()
        position = len(self._queue)
        logger.info(f"Request {request.id} added to queue from user {request.requester_id}, position: {position}")

        if not self._busy:
            self._schedule_next()
        return position

    def get_position(self, requester_id: int) -> Optional[int]:
        """1-based position of the requester's first queued request, or None."""
        for index, request in enumerate(self._queue):
            if request.requester_id == requester_id:
                return index + 1
        return None

    def is_processing(self, requester_id: int) -> bool:
        """Whether the request in flight belongs to this requester."""
        return self._current is not None and self._current.requester_id == requester_id

    def mark_complete(self):
        if self._settled is None or self._settled.done():
            logger.warning("mark_complete() called with no request in flight")
            return
        self._settled.set_result(None)

    def mark_failed(self, error: BaseException | str):
        if self._settled is None or self._settled.done():
            logger.warning(f"mark_failed() called with no request in flight: {error}")
            return
        if not isinstance(error, BaseException):
            error = GateRunnerError(str(error))
        self._settled.set_exception(error)

    async def wait_idle(self):
        """Block until nothing is queued or processing."""
        await self._idle.wait()

    async def close(self):
        """Cancel the request in flight and fail every waiting one."""
        dropped = list(self._queue)
        self._queue.clear()
        current = self._current
        if self._runner and not self._runner.done():
            self._runner.cancel()
            await asyncio.wait({self._runner})
        if self._handler and not self._handler.done():
            self._handler.cancel()
            await asyncio.wait({self._handler})
        self._busy = False
        self._current = None
        self._settled = None
        self._runner = None
        self._handler = None

        # A request the runner already settled keeps its status
        if current is not None and current.status == RequestStatus.PROCESSING:
            dropped.insert(0, current)
        for request in dropped:
            request.status = RequestStatus.FAILED
            logger.warning(f"Request {request.id} from user {request.requester_id} dropped: queue closed")
            await self._notify(self._on_failed, request, QueueClosedError())
        self._idle.set()

    # ── Scheduling ───────────────────────────────────────────

    def _schedule_next(self):
        # Deferred to the next loop iteration, never recursive
        asyncio.get_running_loop().call_soon(self._start_next)

    def _start_next(self):
        if self._busy or not self._queue:
            return
        self._busy = True
        request = self._queue.popleft()
        request.status = RequestStatus.PROCESSING
        self._current = request
        self._runner = asyncio.create_task(self._process(request))

    async def _process(self, request: Request):
        loop = asyncio.get_running_loop()
        settled = loop.create_future()
        self._settled = settled
        handler: Optional[asyncio.Task] = None
        error: Optional[BaseException] = None

        logger.info(f"Processing request {request.id} from user {request.requester_id}")
        try:
            if self._on_started:
                handler = asyncio.create_task(self._on_started(request))
                handler.add_done_callback(functools.partial(self._handler_done, settled))
                self._handler = handler

            try:
                await asyncio.wait_for(asyncio.shield(settled), timeout=request.deadline_ms / 1000)
            except asyncio.TimeoutError:
                error = RequestTimeoutError(request.deadline_ms)
            except Exception as e:
                error = e

            if handler is not None and not handler.done():
                if error is not None:
                    handler.cancel()
                await asyncio.wait({handler})
        finally:
            if not settled.done():
                settled.cancel()
            if handler is not None and not handler.done():
                handler.cancel()

        if error is None:
            request.status = RequestStatus.COMPLETED
            logger.info(f"Request {request.id} completed for user {request.requester_id}")
            await self._notify(self._on_completed, request)
        else:
            request.status = RequestStatus.FAILED
            logger.error(f"Request {request.id} failed for user {request.requester_id}: {error}")
            await self._notify(self._on_failed, request, error)

        self._busy = False
        self._current = None
        self._settled = None
        self._handler = None
        if self._queue:
            self._schedule_next()
        else:
            self._idle.set()

    def _handler_done(self, settled: asyncio.Future, task: asyncio.Task):
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None and not settled.done():
            logger.error(f"Request handler raised: {type(exc).__name__}: {exc}")
            settled.set_exception(exc)

    async def _notify(self, callback, *args):
        if callback is None:
            return
        try:
            await callback(*args)
        except Exception as e:
            logger.error(f"Queue callback {getattr(callback, '__name__', callback)} failed: {e}", exc_info=True)
