# chat_bridge/connection.py
import random
import asyncio
import logging
from enum import Enum

from settings import BALANCE_CONFIG


class ConnectionState(str, Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    BACKOFF = "backoff"
    CLOSED = "closed"


def is_rate_limited(error) -> bool:
    if error is None:
        return False
    return getattr(error, "status", None) == 429 or "429" in str(error)


class ConnectionManager:
    """
    Owns one chat transport connection across reconnects.

    run(connect) calls `connect(manager)` in a loop. The coroutine should call
    manager.mark_open() once the transport is live and return (or raise) when
    the connection drops. Between attempts the manager waits with a growing
    delay; state changes go to subscribers as (state, reason).
    """

    def __init__(self, min_delay: float = None, max_delay: float = None,
                 rate_limited_delay: float = None, jitter=(0.25, 1.0), rng=None):
        chat = BALANCE_CONFIG['chat']
        self.min_delay = chat['reconnect_min_seconds'] if min_delay is None else min_delay
        self.max_delay = chat['reconnect_max_seconds'] if max_delay is None else max_delay
        self.rate_limited_delay = (chat['rate_limited_backoff_seconds']
                                   if rate_limited_delay is None else rate_limited_delay)
        self.jitter = jitter
        self.rng = rng or random.Random()
        self.state = ConnectionState.CLOSED
        self.attempts = 0
        self._backoff = 0.0
        self._listeners = []
        self._closing = False
        self._wake = None

    def subscribe(self, listener):
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener) if listener in self._listeners else None

    def _set_state(self, state: ConnectionState, reason: str = ""):
        self.state = state
        suffix = f" ({reason})" if reason else ""
        logging.info(f"Chat transport: {state.value}{suffix}")
        for listener in list(self._listeners):
            listener(state, reason)

    def mark_open(self):
        self._backoff = 0.0
        self._set_state(ConnectionState.OPEN)

    def next_delay(self, error=None) -> float:
        """Grows the backoff by 1.5x from the floor up to the ceiling; 429s jump straight to the rate-limit delay."""
        if is_rate_limited(error):
            self._backoff = max(self._backoff, self.rate_limited_delay)
        base = self._backoff or self.min_delay
        delay = min(max(base, self.min_delay) * 1.5, self.max_delay)
        self._backoff = delay
        return delay + self.rng.uniform(*self.jitter)

    async def run(self, connect):
        self._closing = False
        self._wake = asyncio.Event()
        while not self._closing:
            self.attempts += 1
            self._set_state(ConnectionState.CONNECTING)
            error = None
            try:
                await connect(self)
                reason = "disconnect"
            except asyncio.CancelledError:
                raise
            except Exception as e:
                error = e
                reason = f"error: {e}"
                logging.error(f"Chat transport failed: {e}")

            if self._closing:
                break

            delay = self.next_delay(error)
            self._set_state(ConnectionState.BACKOFF, reason)
            logging.info(f"Chat transport reconnecting in {delay:.2f}s.")
            try:
                await asyncio.wait_for(self._wake.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass

        self._set_state(ConnectionState.CLOSED)

    def close(self):
        self._closing = True
        if self._wake is not None:
            self._wake.set()
