"""
Countdown Ticker

Periodic tick that lets lockout countdown displays refresh themselves.
Subscribers receive the tick counter; the ticker never touches security
state.

Runs as an asyncio task owned by the application lifespan:

    ticker = CountdownTicker(interval=30)
    unsubscribe = ticker.subscribe(lambda count: ...)
    await ticker.start()
    ...
    await ticker.stop()
"""

import asyncio
import logging
import threading
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)

DEFAULT_TICK_INTERVAL = 30.0


class CountdownTicker:
    """Observable counter incremented every `interval` seconds."""

    def __init__(self, interval: float = DEFAULT_TICK_INTERVAL):
        self.interval = interval
        self._counter = 0
        self._subscribers: List[Callable[[int], None]] = []
        self._lock = threading.Lock()
        self._task: Optional[asyncio.Task] = None

    @property
    def counter(self) -> int:
        return self._counter

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def subscribe(self, callback: Callable[[int], None]) -> Callable[[], None]:
        """Register callback; returns a function that removes it again."""
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def tick(self) -> int:
        with self._lock:
            self._counter += 1
            count = self._counter
            subscribers = list(self._subscribers)

        for callback in subscribers:
            try:
                callback(count)
            except Exception as e:
                logger.error(f"Countdown subscriber failed: {e}", exc_info=True)

        return count

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            self.tick()

    async def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())
        logger.debug(f"Countdown ticker started (interval={self.interval}s)")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.debug("Countdown ticker stopped")
