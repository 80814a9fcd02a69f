import asyncio
import random
import sqlite3
import pytest
from copy import deepcopy
from unittest.mock import MagicMock

from ledger.wagering import Outcome, WageringService
from race_game.lifecycle import RaceDirector, RaceSnapshot, Stage
from settings import DEFAULT_BALANCE_CONFIG

# --- Fixtures ---

@pytest.fixture
def fast_config():
    config = deepcopy(DEFAULT_BALANCE_CONFIG)
    config['racing'].update({
        'tick_ms': 0,
        'betting_seconds': 0.05,
        'cooldown_seconds': 0.01,
        'error_backoff_base_seconds': 0.01,
        'error_backoff_max_seconds': 0.02,
    })
    return config


@pytest.fixture
def service(ledger_db):
    return WageringService(house_cut=0.1, entrants=3, track_length_range=(5, 5), rng=random.Random(1))


class FlakySettleService(WageringService):
    """Fails the first settlement with a transient error, then behaves normally."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.settle_calls = 0

    def settle(self, winning_slot, race_id=None):
        self.settle_calls += 1
        if self.settle_calls == 1:
            return Outcome.failure('ledger_unavailable')
        return super().settle(winning_slot, race_id)


def _record_stages(director):
    stages = []

    def listener(snapshot):
        if not stages or stages[-1] != snapshot.stage:
            stages.append(snapshot.stage)

    director.subscribe(listener)
    return stages


# --- Full Cycle ---

def test_cycle_runs_bets_race_and_settlement(service, fast_config):
    director = RaceDirector(service, fast_config, rng=random.Random(2))
    stages = _record_stages(director)

    def bet_when_open(snapshot):
        if snapshot.stage == Stage.BETTING and not service.store.list_bets(snapshot.race_id):
            for slot, name in enumerate(['A', 'B', 'C']):
                assert service.place_bet(name, slot, 100).ok

    director.subscribe(bet_when_open)

    assert asyncio.run(director.run_cycle()) is True
    assert stages == [Stage.LOADING, Stage.BETTING, Stage.RACING, Stage.COOLDOWN]

    snapshot = director.snapshot
    race = service.store.get_race(snapshot.race_id)
    assert race['status'] == 'done'
    assert race['winner_slot'] == snapshot.winner

    # Everyone staked 100, so whoever backed the winner takes floor(300 * 0.9).
    assert service.store.list_payouts(race['id'])[0]['amount'] == 270
    assert director.pending_settlements == []
    # Final pools stay on screen with the winner.
    assert snapshot.pools == {0: 100, 1: 100, 2: 100}


def test_snapshot_contract(service, fast_config):
    director = RaceDirector(service, fast_config, rng=random.Random(3))
    asyncio.run(director.run_cycle())

    snapshot = director.snapshot.to_dict()
    assert set(snapshot) == {'raceId', 'stage', 'entrants', 'positions', 'trackLength', 'events',
                             'winner', 'odds', 'pools', 'countdownEndsAt', 'tick'}
    assert snapshot['trackLength'] == 5
    assert len(snapshot['entrants']) == len(snapshot['positions']) == 3
    assert snapshot['positions'][snapshot['winner']] == 5
    assert snapshot['countdownEndsAt'] is None


def test_race_events_are_logged(service, fast_config):
    fast_config['simulation']['event_chance'] = 1.0
    director = RaceDirector(service, fast_config, rng=random.Random(4))
    asyncio.run(director.run_cycle())

    logged = service.store.list_race_events(director.snapshot.race_id)
    assert logged
    assert {e['tick'] for e in logged} <= set(range(1, director.snapshot.tick + 1))


def test_racing_race_skips_betting(service, fast_config):
    race_id = service.acquire_race().value['race']['id']
    service.place_bet('A', 0, 50)
    service.start_race()

    director = RaceDirector(service, fast_config, rng=random.Random(5))
    stages = _record_stages(director)
    asyncio.run(director.run_cycle())

    assert Stage.BETTING not in stages
    assert service.store.get_race(race_id)['status'] == 'done'


# --- Failures ---

def test_acquisition_failure_enters_error(fast_config):
    wagering = MagicMock()
    wagering.acquire_race.return_value = Outcome.failure('ledger_unavailable')

    director = RaceDirector(wagering, fast_config)
    assert asyncio.run(director.run_cycle()) is False
    assert director.stage == Stage.ERROR


def test_failed_settlement_is_retried_before_next_race(ledger_db, fast_config):
    service = FlakySettleService(house_cut=0.1, entrants=3, track_length_range=(5, 5),
                                 rng=random.Random(6))
    director = RaceDirector(service, fast_config, rng=random.Random(7))

    assert asyncio.run(director.run_cycle()) is True
    first_race = director.snapshot.race_id
    assert director.stage == Stage.COOLDOWN
    assert director.pending_settlements == [(first_race, director.snapshot.winner)]
    assert service.store.get_race(first_race)['status'] == 'racing'

    assert asyncio.run(director.run_cycle()) is True
    assert director.pending_settlements == []
    assert service.store.get_race(first_race)['status'] == 'done'
    assert director.snapshot.race_id != first_race


def test_unexpected_exception_enters_error_and_keeps_running(fast_config):
    wagering = MagicMock()
    wagering.acquire_race.side_effect = sqlite3.DatabaseError("database disk image is malformed")
    director = RaceDirector(wagering, fast_config, rng=random.Random(11))

    async def scenario():
        task = asyncio.create_task(director.run())
        await asyncio.sleep(0.15)
        alive = not task.done()
        director.stop()
        await asyncio.wait_for(task, timeout=1)
        return alive

    assert asyncio.run(scenario()) is True
    assert wagering.acquire_race.call_count >= 2
    assert director.stage == Stage.ERROR


def test_run_backs_off_and_stops(fast_config):
    wagering = MagicMock()
    wagering.acquire_race.return_value = Outcome.failure('ledger_unavailable')
    director = RaceDirector(wagering, fast_config, rng=random.Random(8))

    async def scenario():
        task = asyncio.create_task(director.run())
        await asyncio.sleep(0.15)
        director.stop()
        await asyncio.wait_for(task, timeout=1)

    asyncio.run(scenario())
    assert wagering.acquire_race.call_count >= 2
    assert director.stage == Stage.ERROR


def test_stop_during_betting_leaves_race_open(service, fast_config):
    fast_config['racing']['betting_seconds'] = 5
    director = RaceDirector(service, fast_config, rng=random.Random(9))

    async def scenario():
        task = asyncio.create_task(director.run())
        while director.stage != Stage.BETTING:
            await asyncio.sleep(0.01)
        director.stop()
        await asyncio.wait_for(task, timeout=1)

    asyncio.run(scenario())
    assert service.store.get_open_race()['id'] == director.snapshot.race_id


def test_failing_listener_does_not_stop_the_race(service, fast_config):
    director = RaceDirector(service, fast_config, rng=random.Random(10))

    def broken(snapshot):
        raise RuntimeError("renderer crashed")

    director.subscribe(broken)
    assert asyncio.run(director.run_cycle()) is True
    assert director.snapshot.winner is not None


def test_unsubscribe(fast_config):
    director = RaceDirector(MagicMock(), fast_config)
    seen = []
    unsubscribe = director.subscribe(seen.append)
    director._publish(tick=1)
    unsubscribe()
    director._publish(tick=2)
    assert [s.tick for s in seen] == [1]
    assert isinstance(seen[0], RaceSnapshot)
