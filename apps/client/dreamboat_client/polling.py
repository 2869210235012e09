"""
Polling

A repeating task whose lifetime is tied to the caller's scope, so
leaving a screen or session stops polling instead of leaking a timer.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable

import httpx

logger = logging.getLogger(__name__)


class RepeatingTask:
    """
    Call ``fetch`` every ``interval`` seconds until ``done(result)``.

    Transient HTTP errors are logged and retried on the next tick; any
    other exception ends the task and is re-raised from ``wait()``.

    Usage::

        async with RepeatingTask(client.get_samples, 3.0, done=lambda r: r["done"]) as task:
            result = await task.wait(timeout=300)
    """

    def __init__(
        self,
        fetch: Callable[[], Awaitable[Any]],
        interval: float,
        done: Callable[[Any], bool] | None = None,
        on_result: Callable[[Any], None] | None = None,
    ):
        self.fetch = fetch
        self.interval = interval
        self.done = done or (lambda result: False)
        self.on_result = on_result
        self.ticks = 0
        self._task: asyncio.Task | None = None
        self._result: asyncio.Future | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> "RepeatingTask":
        if self.running:
            return self
        self._result = asyncio.get_running_loop().create_future()
        self._task = asyncio.create_task(self._run())
        return self

    async def _run(self):
        try:
            while True:
                self.ticks += 1
                try:
                    result = await self.fetch()
                except httpx.TransportError as e:
                    logger.warning(f"Poll failed, retrying: {e}")
                else:
                    if self.on_result is not None:
                        self.on_result(result)
                    if self.done(result):
                        self._result.set_result(result)
                        return
                await asyncio.sleep(self.interval)
        except asyncio.CancelledError:
            if not self._result.done():
                self._result.cancel()
            raise
        except Exception as e:
            self._result.set_exception(e)

    async def wait(self, timeout: float | None = None) -> Any:
        """
        Wait for the terminal result.

        Raises:
            asyncio.TimeoutError: no terminal result within ``timeout``
            asyncio.CancelledError: the task was cancelled first
        """
        if self._result is None:
            raise RuntimeError("RepeatingTask was not started")
        return await asyncio.wait_for(asyncio.shield(self._result), timeout)

    async def cancel(self):
        """Stop polling. Safe to call more than once."""
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def __aenter__(self) -> "RepeatingTask":
        return self.start()

    async def __aexit__(self, *exc):
        await self.cancel()


async def poll_until(
    fetch: Callable[[], Awaitable[Any]],
    done: Callable[[Any], bool],
    interval: float = 3.0,
    timeout: float | None = None,
) -> Any:
    """Poll ``fetch`` until ``done`` and return the final result; always stops the timer."""
    async with RepeatingTask(fetch, interval, done=done) as task:
        return await task.wait(timeout=timeout)
