# race_game/timers.py
import time
import random
import asyncio
import inspect
from datetime import datetime, timedelta

import pytz


async def _maybe_await(result):
    if inspect.isawaitable(result):
        await result


class Countdown:
    """
    One cancellable task that ticks down once per `interval` and fires exactly
    once at the end. cancel() stops both the ticking and the fire.
    Callbacks may be plain functions or coroutines.
    """

    def __init__(self, duration: float, on_tick=None, on_fire=None, interval: float = 1.0):
        self.duration = max(0.0, float(duration))
        self.interval = interval
        self._on_tick = on_tick
        self._on_fire = on_fire
        self._task = None
        self._deadline = None
        self.ends_at = None
        self.fired = False

    @property
    def remaining(self) -> float:
        if self._deadline is None:
            return self.duration
        return max(0.0, self._deadline - time.monotonic())

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self):
        if self._task is not None:
            raise RuntimeError("Countdown already started.")
        self._deadline = time.monotonic() + self.duration
        self.ends_at = datetime.now(pytz.utc) + timedelta(seconds=self.duration)
        self._task = asyncio.get_running_loop().create_task(self._run())
        return self

    async def _run(self):
        # Tick work runs beside the clock; a slow tick is skipped over, never waited on.
        tick_task = None
        try:
            while True:
                remaining = self.remaining
                if remaining <= 0:
                    break
                if tick_task is not None and tick_task.done():
                    if not tick_task.cancelled() and tick_task.exception() is not None:
                        raise tick_task.exception()
                    tick_task = None
                if self._on_tick and tick_task is None:
                    tick_task = asyncio.ensure_future(_maybe_await(self._on_tick(remaining)))
                await asyncio.sleep(min(self.interval, remaining))
        finally:
            if tick_task is not None and not tick_task.done():
                tick_task.cancel()

        self.fired = True
        if self._on_fire:
            await _maybe_await(self._on_fire())

    async def wait(self) -> bool:
        """Waits for the countdown to end. Returns True if it fired, False if cancelled."""
        if self._task is None:
            raise RuntimeError("Countdown was never started.")
        await asyncio.wait({self._task})
        if not self._task.cancelled() and self._task.exception() is not None:
            raise self._task.exception()
        return self.fired

    def cancel(self):
        if self._task is not None and not self._task.done():
            self._task.cancel()


def backoff_delay(attempt: int, base: float, maximum: float, rng=None) -> float:
    """Exponential backoff with up to 25% jitter, never above `maximum`."""
    rng = rng or random
    delay = min(maximum, base * (2 ** max(0, attempt)))
    return min(maximum, delay + rng.uniform(0, delay * 0.25))
