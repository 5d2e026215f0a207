"""Explicitly owned periodic background task.

Replaces fire-and-forget timers: the owner starts the ticker, can stop it,
and tests can skip starting it and call the callback directly instead.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)

TickCallback = Callable[[], Awaitable[object] | object]


class PeriodicTask:
    """Run a callback every ``interval_seconds`` on the running event loop.

    A failing tick is logged and the loop keeps going; one bad sweep must
    not stop future sweeps.
    """

    def __init__(self, name: str, interval_seconds: float, callback: TickCallback) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")
        self.name = name
        self.interval_seconds = interval_seconds
        self._callback = callback
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Schedule the loop. Must be called from within a running event loop."""
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run(), name=self.name)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                result = self._callback()
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.error(
                    "periodic_task.failed",
                    extra={"task": self.name, "error_type": type(exc).__name__, "error_msg": str(exc)},
                )
