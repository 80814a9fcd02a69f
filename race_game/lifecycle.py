# race_game/lifecycle.py
import random
import asyncio
import logging
from enum import Enum
from dataclasses import dataclass, field, replace
from typing import Dict, Optional, Tuple

from race_game.odds import display_odds
from race_game.race_logic import RaceEngine, RaceTuning
from race_game.timers import Countdown, backoff_delay
from settings import BALANCE_CONFIG

# Settlement errors that will never succeed on retry.
FINAL_SETTLEMENT_ERRORS = ("already_settled", "no_racing_race", "bad_winner")


class Stage(str, Enum):
    LOADING = "loading"
    BETTING = "betting"
    RACING = "racing"
    COOLDOWN = "cooldown"
    ERROR = "error"


@dataclass(frozen=True)
class RaceSnapshot:
    """Everything a renderer needs for one frame. Published whole, never patched."""
    stage: Stage = Stage.LOADING
    race_id: Optional[int] = None
    entrants: Tuple[str, ...] = ()
    positions: Tuple[float, ...] = ()
    track_length: int = 0
    events: Dict[int, str] = field(default_factory=dict)
    winner: Optional[int] = None
    odds: Tuple[float, ...] = ()
    pools: Dict[int, int] = field(default_factory=dict)
    countdown_ends_at: Optional[str] = None
    tick: int = 0

    def to_dict(self) -> dict:
        return {
            "raceId": self.race_id,
            "stage": self.stage.value,
            "entrants": list(self.entrants),
            "positions": [round(p, 3) for p in self.positions],
            "trackLength": self.track_length,
            "events": {str(slot): label for slot, label in self.events.items()},
            "winner": self.winner,
            "odds": list(self.odds),
            "pools": {str(slot): amount for slot, amount in self.pools.items()},
            "countdownEndsAt": self.countdown_ends_at,
            "tick": self.tick,
        }


class RaceDirector:
    """
    Drives the endless loading -> betting -> racing -> cooldown loop for one
    authoritative race at a time. Ledger calls run in worker threads so the
    race clock never waits on the database.
    """

    def __init__(self, wagering, config: dict = None, engine: RaceEngine = None, rng=None):
        config = config or BALANCE_CONFIG
        racing = config['racing']
        self.wagering = wagering
        self.rng = rng or random.Random()
        self.engine = engine or RaceEngine(RaceTuning.from_config(config), self.rng)
        self.tick_seconds = racing['tick_ms'] / 1000.0
        self.betting_seconds = racing['betting_seconds']
        self.cooldown_seconds = racing['cooldown_seconds']
        self.backoff_base = racing['error_backoff_base_seconds']
        self.backoff_max = racing['error_backoff_max_seconds']

        self._snapshot = RaceSnapshot()
        self._listeners = []
        self._countdown = None
        self._stopped = False
        self._error_attempts = 0
        self.pending_settlements = []  # (race_id, winner) still owed a payout

    # --- Snapshots ---

    @property
    def snapshot(self) -> RaceSnapshot:
        return self._snapshot

    @property
    def stage(self) -> Stage:
        return self._snapshot.stage

    def subscribe(self, listener):
        """Registers a callback for every new snapshot. Returns an unsubscribe function."""
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener) if listener in self._listeners else None

    def _publish(self, **changes):
        self._snapshot = replace(self._snapshot, **changes)
        for listener in list(self._listeners):
            try:
                listener(self._snapshot)
            except Exception as e:
                # Renderers are observers; one failing must not stall the race.
                logging.error(f"Snapshot listener failed: {e}")

    def _set_stage(self, stage: Stage):
        if stage != self._snapshot.stage:
            logging.info(f"Race director: {self._snapshot.stage.value} -> {stage.value}")
        self._publish(stage=stage)

    def _enter_error(self, reason: str):
        logging.error(f"Race director entering error stage: {reason}")
        self._set_stage(Stage.ERROR)

    # --- Loop ---

    async def run(self):
        """Runs cycles until stop() is called, backing off after failures."""
        self._stopped = False
        while not self._stopped:
            try:
                ok = await self.run_cycle()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logging.exception("Race cycle crashed.")
                self._enter_error(f"unexpected {type(e).__name__}")
                ok = False
            if ok:
                self._error_attempts = 0
                continue
            if self._stopped:
                break
            delay = backoff_delay(self._error_attempts, self.backoff_base, self.backoff_max, self.rng)
            self._error_attempts += 1
            logging.warning(f"Retrying race acquisition in {delay:.1f}s (attempt {self._error_attempts}).")
            await self._countdown_for(delay)

    def stop(self):
        self._stopped = True
        if self._countdown is not None:
            self._countdown.cancel()

    async def run_cycle(self) -> bool:
        """
        One acquire -> betting -> lock -> race -> settle -> cooldown pass.
        Returns False when the cycle ended in the error stage.
        """
        if not await self._retry_pending_settlements():
            self._enter_error("an earlier settlement is still outstanding")
            return False

        self._set_stage(Stage.LOADING)
        acquired = await asyncio.to_thread(self.wagering.acquire_race)
        if not acquired.ok:
            self._enter_error(f"race acquisition failed ({acquired.error})")
            return False

        race = acquired.value['race']
        race_id = race['id']
        glyphs = tuple(e['glyph'] for e in acquired.value['entrants'])
        state = self.engine.initial(len(glyphs), race['track_length'])
        self._publish(
            race_id=race_id,
            entrants=glyphs,
            positions=tuple(state.positions),
            track_length=state.track_length,
            events={},
            winner=None,
            odds=tuple(display_odds(state, self.engine.tuning)),
            pools={},
            tick=0,
        )

        if race['status'] == 'open':
            self._set_stage(Stage.BETTING)
            if not await self._countdown_for(self.betting_seconds, on_tick=self._pool_refresher(race_id)):
                return True

            locked = await asyncio.to_thread(self.wagering.start_race)
            if not locked.ok:
                self._enter_error(f"could not lock betting on race #{race_id} ({locked.error})")
                return False
        else:
            logging.info(f"Race #{race_id} is already racing; resuming without a betting window.")

        # Betting is closed, so these pools stay on screen through the cooldown.
        pools = await asyncio.to_thread(self.wagering.pools, race_id)
        if pools.ok:
            self._publish(pools=pools.value)

        self._set_stage(Stage.RACING)
        state, audit = await self._run_race(state)
        if state is None:
            return True

        await self._settle(race_id, state.winner)

        logged = await asyncio.to_thread(self.wagering.log_race_events, race_id, audit)
        if not logged.ok:
            logging.warning(f"Could not write the event log for race #{race_id}: {logged.error}")

        self._set_stage(Stage.COOLDOWN)
        await self._countdown_for(self.cooldown_seconds)
        return True

    async def _run_race(self, state):
        audit = []
        while True:
            if self._stopped:
                return None, audit
            result = self.engine.step(state)
            state = result.state
            audit.extend((state.tick, slot, label) for slot, label in result.events)
            self._publish(
                positions=tuple(state.positions),
                events=state.badges,
                winner=result.winner,
                odds=tuple(display_odds(state, self.engine.tuning)),
                tick=state.tick,
            )
            # The clock stops on the winning tick, before any settlement I/O.
            if result.winner is not None:
                logging.info(f"Race #{self._snapshot.race_id} won by slot {result.winner} after {state.tick} ticks.")
                return state, audit
            await asyncio.sleep(self.tick_seconds)

    # --- Settlement ---

    async def _settle(self, race_id: int, winner: int):
        outcome = await asyncio.to_thread(self.wagering.settle, winner, race_id)
        if outcome.ok:
            summary = outcome.value['summary']
            logging.info(f"Race #{race_id} paid {summary.paid_out} to {len(summary.payouts)} player(s).")
        elif outcome.error in FINAL_SETTLEMENT_ERRORS:
            logging.warning(f"Race #{race_id} settlement skipped: {outcome.error}")
        else:
            # Spectators already saw the winner; remember it and retry before the next race.
            logging.error(f"Race #{race_id} settlement failed ({outcome.error}); will retry.")
            self.pending_settlements.append((race_id, winner))

    async def _retry_pending_settlements(self) -> bool:
        """Retries owed settlements. Returns True once nothing is outstanding."""
        still_pending = []
        for race_id, winner in self.pending_settlements:
            outcome = await asyncio.to_thread(self.wagering.settle, winner, race_id)
            if outcome.ok or outcome.error in FINAL_SETTLEMENT_ERRORS:
                logging.info(f"Outstanding settlement for race #{race_id} resolved ({outcome.error or 'paid'}).")
            else:
                still_pending.append((race_id, winner))
        self.pending_settlements = still_pending
        return not still_pending

    # --- Timers ---

    def _pool_refresher(self, race_id: int):
        async def refresh(remaining):
            outcome = await asyncio.to_thread(self.wagering.open_race)
            race = outcome.value['race'] if outcome.ok else None
            if race is not None and race['id'] == race_id:
                self._publish(pools=outcome.value['pools'])
        return refresh

    async def _countdown_for(self, seconds: float, on_tick=None) -> bool:
        """Runs one countdown to completion. Returns False if it was cancelled by stop()."""
        if self._stopped:
            return False
        countdown = Countdown(seconds, on_tick=on_tick).start()
        self._countdown = countdown
        self._publish(countdown_ends_at=countdown.ends_at.isoformat())
        try:
            fired = await countdown.wait()
        finally:
            self._countdown = None
            self._publish(countdown_ends_at=None)
        return fired and not self._stopped
