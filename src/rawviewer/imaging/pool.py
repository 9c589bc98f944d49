"""Decode concurrency layer.

Architecture:
    FastAPI (async) -> asyncio.Semaphore(N) -> ThreadPoolExecutor(N) -> RAW decode

A decode holds one slot from the moment it is admitted until its request
stops waiting for it. Requests that find every slot taken queue for up to
``queue_timeout`` seconds, then get 503.

LibRaw cannot be interrupted, so a request that is cancelled mid-decode
(client gone, server shutting down) gives its slot back immediately while
the worker thread runs the decode to completion in the background. The
executor has exactly N threads, so such orphaned decodes still delay later
work; they never run concurrently beyond N. Staged-file cleanup happens
inside the worker and is unaffected by cancellation.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable

    from rawviewer.config import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


class DecodePool:
    """Admits at most ``max_concurrent`` decodes and runs them off the event loop."""

    def __init__(self, settings: Settings) -> None:
        self._slots = asyncio.Semaphore(settings.max_concurrent)
        self._executor = ThreadPoolExecutor(
            max_workers=settings.max_concurrent,
            thread_name_prefix="raw-decode",
        )
        self._queue_timeout = settings.queue_timeout
        self._active_count: int = 0
        self._queue_depth: int = 0
        self._counter_lock = threading.Lock()

    async def run(self, func: Callable[..., T], *args: object) -> T:
        """Run a blocking decode step in a worker thread once a slot is free.

        Raises:
            TimeoutError: If no slot frees up within the queue timeout.
            asyncio.CancelledError: If the request is cancelled; the slot is
                released but the worker thread finishes ``func`` regardless.
        """
        async with self._slot():
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(self._executor, func, *args)

    @asynccontextmanager
    async def _slot(self) -> AsyncIterator[None]:
        self._adjust(queued=1)
        try:
            await asyncio.wait_for(self._slots.acquire(), timeout=self._queue_timeout)
        except TimeoutError:
            logger.warning("No decode slot freed up within %.1fs", self._queue_timeout)
            raise
        finally:
            self._adjust(queued=-1)

        self._adjust(active=1)
        try:
            yield
        finally:
            self._slots.release()
            self._adjust(active=-1)

    def _adjust(self, *, queued: int = 0, active: int = 0) -> None:
        with self._counter_lock:
            self._queue_depth += queued
            self._active_count += active

    @property
    def active_count(self) -> int:
        """Number of requests currently holding a decode slot."""
        with self._counter_lock:
            return self._active_count

    @property
    def queue_depth(self) -> int:
        """Number of requests waiting for a decode slot."""
        with self._counter_lock:
            return self._queue_depth

    def shutdown(self) -> None:
        """Wait for in-flight decodes, including orphaned ones, then stop the workers."""
        self._executor.shutdown(wait=True)
