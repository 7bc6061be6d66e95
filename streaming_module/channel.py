"""Bounded hand-off from a blocking generation worker to an asyncio consumer."""

from __future__ import annotations

import asyncio
import threading
from concurrent.futures import CancelledError
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any, Optional

_EOF = object()


class TokenChannel:
    """Single-producer, single-consumer queue with a fixed capacity.

    ``send`` and ``finish`` are called from a worker thread and block while
    the channel is full. ``recv`` is awaited on the event loop. When the
    consumer goes away it calls ``close``; the next ``send`` then returns
    ``False`` and the worker is expected to stop.
    """

    def __init__(self, capacity: int, loop: asyncio.AbstractEventLoop, poll_interval: float = 0.5) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self._loop = loop
        self._poll_interval = poll_interval
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=capacity)
        self._closed = threading.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def send(self, item: Any) -> bool:
        if self._closed.is_set():
            return False
        try:
            future = asyncio.run_coroutine_threadsafe(self._queue.put(item), self._loop)
        except RuntimeError:
            # loop already closed
            self._closed.set()
            return False
        while True:
            try:
                future.result(timeout=self._poll_interval)
                break
            except FutureTimeoutError:
                if self._closed.is_set():
                    future.cancel()
                    return False
            except CancelledError:
                self._closed.set()
                return False
        return not self._closed.is_set()

    def finish(self) -> None:
        if not self._closed.is_set():
            self.send(_EOF)

    async def recv(self) -> Optional[Any]:
        """Next item, or ``None`` once the sender has finished."""
        item = await self._queue.get()
        if item is _EOF:
            return None
        return item

    def close(self) -> None:
        """Drop the receiving end. Must run on the event loop."""
        self._closed.set()
        # free a slot for a sender blocked on a full queue
        while True:
            try:
                self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
