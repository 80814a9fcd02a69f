import asyncio
import random
import pytest

from chat_bridge.connection import ConnectionManager, ConnectionState, is_rate_limited


class RateLimited(Exception):
    status = 429


@pytest.fixture
def manager():
    return ConnectionManager(min_delay=3.0, max_delay=60.0, rate_limited_delay=30.0,
                             jitter=(0.25, 1.0), rng=random.Random(1))


# --- Backoff ---

def test_delay_grows_by_half_from_the_floor(manager):
    delays = [manager.next_delay() for _ in range(4)]
    expected = [4.5, 6.75, 10.125, 15.1875]
    for delay, base in zip(delays, expected):
        assert base + 0.25 <= delay <= base + 1.0


def test_delay_is_capped(manager):
    for _ in range(30):
        delay = manager.next_delay()
    assert 60.25 <= delay <= 61.0


def test_rate_limit_forces_long_wait(manager):
    delay = manager.next_delay(RateLimited("Too Many Requests"))
    assert delay >= 30.0
    assert 45.25 <= delay <= 46.0


def test_open_resets_backoff(manager):
    manager.next_delay()
    manager.next_delay()
    manager.mark_open()
    assert 4.75 <= manager.next_delay() <= 5.5


def test_rate_limit_detection():
    assert is_rate_limited(RateLimited())
    assert is_rate_limited(Exception("HTTP 429 Too Many Requests"))
    assert not is_rate_limited(Exception("connection reset"))
    assert not is_rate_limited(None)


# --- Lifecycle ---

def test_reconnects_until_closed():
    manager = ConnectionManager(min_delay=0.001, max_delay=0.004, jitter=(0.0, 0.0))
    transitions = []
    manager.subscribe(lambda state, reason: transitions.append(state))
    attempts = []

    async def connect(mgr):
        attempts.append(mgr.state)
        if len(attempts) == 1:
            raise ConnectionError("socket closed")
        mgr.mark_open()
        if len(attempts) == 3:
            mgr.close()

    asyncio.run(manager.run(connect))

    assert len(attempts) == 3
    assert manager.attempts == 3
    assert manager.state == ConnectionState.CLOSED
    assert transitions[:3] == [ConnectionState.CONNECTING, ConnectionState.BACKOFF, ConnectionState.CONNECTING]
    assert ConnectionState.OPEN in transitions
    assert transitions[-1] == ConnectionState.CLOSED


def test_close_interrupts_backoff():
    manager = ConnectionManager(min_delay=30.0, max_delay=60.0, jitter=(0.0, 0.0))

    async def connect(mgr):
        return None

    async def scenario():
        task = asyncio.create_task(manager.run(connect))
        while manager.state != ConnectionState.BACKOFF:
            await asyncio.sleep(0.01)
        manager.close()
        await asyncio.wait_for(task, timeout=1)

    asyncio.run(scenario())
    assert manager.state == ConnectionState.CLOSED


def test_unsubscribe():
    manager = ConnectionManager()
    seen = []
    unsubscribe = manager.subscribe(lambda state, reason: seen.append(state))
    manager.mark_open()
    unsubscribe()
    manager.mark_open()
    assert seen == [ConnectionState.OPEN]
