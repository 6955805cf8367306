"""Serialized per-participant event loop."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections import deque
from collections.abc import Callable, Coroutine
from typing import Any

logger = logging.getLogger("callkit.serial")

Handler = Callable[..., Coroutine[Any, Any, Any]]


class _Item:
    __slots__ = ("fn", "args", "future")

    def __init__(
        self, fn: Handler, args: tuple[Any, ...], future: asyncio.Future[Any] | None
    ) -> None:
        self.fn = fn
        self.args = args
        self.future = future


class SerialEventQueue:
    """Runs queued coroutine handlers one at a time, in submission order.

    Every event that can change a participant's negotiation state (relay
    messages, peer-connection callbacks, user intents) goes through one
    queue, so no two handlers for the same participant ever interleave.

    ``post()`` is fire-and-forget: failures are logged. ``submit()`` returns
    the handler's result or raises its exception. Calling ``submit()`` from
    inside a running handler executes the nested handler inline instead of
    queueing it behind the caller, which would deadlock.
    """

    def __init__(self, name: str = "callkit") -> None:
        self._name = name
        self._items: deque[_Item] = deque()
        self._wakeup = asyncio.Event()
        self._idle = asyncio.Event()
        self._idle.set()
        self._task: asyncio.Task[None] | None = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        return len(self._items)

    def start(self) -> None:
        """Start the worker task. Idempotent."""
        if self._task is None and not self._closed:
            self._task = asyncio.create_task(self._run(), name=f"serial:{self._name}")

    def in_worker(self) -> bool:
        """Whether the caller is the handler currently being run."""
        return self._task is not None and asyncio.current_task() is self._task

    def post(self, fn: Handler, *args: Any) -> None:
        """Queue *fn* without waiting for it."""
        if self._closed:
            logger.debug("Queue %s closed, dropping %s", self._name, _fn_name(fn))
            return
        self._enqueue(_Item(fn, args, None))

    async def submit(self, fn: Handler, *args: Any) -> Any:
        """Queue *fn* and wait for its result.

        Cancelling the caller before *fn* starts withdraws it from the queue.
        A handler that is already running is not interrupted.
        """
        if self._closed:
            raise RuntimeError(f"Event queue {self._name} is closed")
        if self.in_worker():
            return await fn(*args)
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        item = _Item(fn, args, future)
        self._enqueue(item)
        try:
            return await future
        except asyncio.CancelledError:
            # A caller that gave up before its turn withdraws the handler
            if item in self._items:
                self._items.remove(item)
            raise

    async def join(self) -> None:
        """Wait until every queued handler has run."""
        if self._task is None:
            return
        await self._idle.wait()

    async def stop(self) -> None:
        """Stop the worker. Queued handlers that have not started are dropped."""
        self._closed = True
        for item in self._items:
            if item.future is not None and not item.future.done():
                item.future.cancel()
        self._items.clear()
        self._idle.set()
        self._wakeup.set()
        task, self._task = self._task, None
        if task is None or task is asyncio.current_task():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    def _enqueue(self, item: _Item) -> None:
        self._items.append(item)
        self._idle.clear()
        self._wakeup.set()
        self.start()

    async def _run(self) -> None:
        while not self._closed:
            await self._wakeup.wait()
            self._wakeup.clear()

            while self._items and not self._closed:
                item = self._items.popleft()
                try:
                    result = await item.fn(*item.args)
                except asyncio.CancelledError:
                    if item.future is not None and not item.future.done():
                        item.future.cancel()
                    raise
                except Exception as exc:
                    if item.future is None:
                        logger.exception(
                            "Error in handler %s on queue %s", _fn_name(item.fn), self._name
                        )
                    elif not item.future.done():
                        item.future.set_exception(exc)
                else:
                    if item.future is not None and not item.future.done():
                        item.future.set_result(result)

            if not self._items:
                self._idle.set()


def _fn_name(fn: Handler) -> str:
    return getattr(fn, "__qualname__", repr(fn))
