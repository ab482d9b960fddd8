"""Countdown before recording: shows 3, 2, 1 then fires the start callback once."""
from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class CountdownTimer:
    def __init__(self, on_done: Callable, start_from: int = 3, interval: float = 1.0,
                 on_tick: Optional[Callable[[int], None]] = None):
        self.on_done = on_done
        self.on_tick = on_tick
        self.start_from = int(start_from)
        self.interval = float(interval)
        self.value: Optional[int] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> bool:
        """Begin counting; a second start while counting is ignored."""
        if self.active:
            logger.debug(f"[countdown] already counting ({self.value}); start ignored")
            return False
        self._task = asyncio.create_task(self._run())
        return True

    def cancel(self) -> None:
        # teardown only; the operator has no cancel path
        if self.active:
            self._task.cancel()
        self.value = None

    async def wait(self) -> None:
        if self._task is not None:
            await self._task

    async def _run(self) -> None:
        try:
            for n in range(self.start_from, 0, -1):
                self.value = n
                if self.on_tick is not None:
                    self.on_tick(n)
                await asyncio.sleep(self.interval)
        finally:
            self.value = None

        logger.debug("[countdown] reached zero; starting recording")
        res = self.on_done()
        if inspect.isawaitable(res):
            await res
