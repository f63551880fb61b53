"""Cancellable timers for background work on the server loop."""

import asyncio
import logging
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)


class PeriodicTask:
    """Run an async callback every ``interval`` seconds until stopped.

    The first run happens one interval after ``start()``. A failing run is
    logged and the next one still happens.
    """

    def __init__(self, name: str, interval: float, callback: Callable[[], Awaitable[object]]):
        self.name = name
        self.interval = interval
        self.runs = 0
        self._callback = callback
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name=f"periodic:{self.name}")
        logger.debug(f"Started periodic task {self.name} every {self.interval}s")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self._callback()
            except Exception as e:
                logger.error(f"Periodic task {self.name} failed: {e}", exc_info=True)
            self.runs += 1

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        logger.debug(f"Stopped periodic task {self.name}")


class Debouncer:
    """Per-key trailing-edge debounce.

    ``schedule(key)`` may be called from any thread; the timers and the
    callback always run on ``loop``. Each call re-arms the key's timer, so a
    burst of calls results in one callback ``delay`` seconds after the last.
    """

    def __init__(
        self,
        delay: float,
        callback: Callable[[str], Awaitable[object]],
        loop: asyncio.AbstractEventLoop | None = None,
    ):
        self.delay = delay
        self._callback = callback
        self._loop = loop or asyncio.get_running_loop()
        self._handles: dict[str, asyncio.TimerHandle] = {}
        self._running: set[asyncio.Task] = set()
        self._closed = False

    def _on_loop_thread(self) -> bool:
        try:
            return asyncio.get_running_loop() is self._loop
        except RuntimeError:
            return False

    def schedule(self, key: str) -> None:
        if self._closed:
            return
        if self._on_loop_thread():
            self._arm(key)
        else:
            self._loop.call_soon_threadsafe(self._arm, key)

    def _arm(self, key: str) -> None:
        if self._closed:
            return
        handle = self._handles.pop(key, None)
        if handle is not None:
            handle.cancel()
        self._handles[key] = self._loop.call_later(self.delay, self._fire, key)

    def _fire(self, key: str) -> None:
        self._handles.pop(key, None)
        task = self._loop.create_task(self._invoke(key))
        self._running.add(task)
        task.add_done_callback(self._running.discard)

    async def _invoke(self, key: str) -> None:
        try:
            await self._callback(key)
        except Exception as e:
            logger.error(f"Debounced callback for {key} failed: {e}", exc_info=True)

    def cancel(self, key: str) -> None:
        """Drop a pending timer, if any. May be called from any thread."""
        if self._on_loop_thread():
            self._cancel(key)
        else:
            self._loop.call_soon_threadsafe(self._cancel, key)

    def _cancel(self, key: str) -> None:
        handle = self._handles.pop(key, None)
        if handle is not None:
            handle.cancel()

    def pending(self, key: str) -> bool:
        return key in self._handles

    @property
    def pending_count(self) -> int:
        return len(self._handles)

    async def shutdown(self) -> None:
        """Cancel pending timers and wait for callbacks already running."""
        self._closed = True
        for handle in self._handles.values():
            handle.cancel()
        self._handles.clear()
        if self._running:
            await asyncio.gather(*self._running, return_exceptions=True)
