# ledger/wagering.py
import random
import logging
from dataclasses import dataclass
from typing import Any, Optional

from ledger import database
from ledger.errors import LedgerError
from race_game.glyphs import pick_glyphs, random_track_length
from settings import BALANCE_CONFIG


@dataclass(frozen=True)
class Outcome:
    """Result of a wagering call: either ok with a value or failed with a stable error code."""
    ok: bool
    value: Any = None
    error: Optional[str] = None

    @classmethod
    def success(cls, value=None):
        return cls(True, value, None)

    @classmethod
    def failure(cls, error: str):
        return cls(False, None, error)


def _is_int(value) -> bool:
    # bool is an int subclass, but True is not a bet amount.
    return isinstance(value, int) and not isinstance(value, bool)


class WageringService:
    """
    Validates bet and settlement requests before they reach the ledger and turns
    ledger failures into Outcome values. All state lives in the store.
    """

    def __init__(self, store=None, house_cut: float = None, starting_balance: int = None,
                 entrants: int = None, track_length_range=None, rng=None):
        economy = BALANCE_CONFIG['economy']
        racing = BALANCE_CONFIG['racing']
        self.store = store or database
        self.house_cut = economy['house_cut'] if house_cut is None else house_cut
        self.starting_balance = economy['starting_balance'] if starting_balance is None else starting_balance
        self.entrants = entrants or racing['entrants']
        self.track_length_range = track_length_range or (racing['track_length_min'], racing['track_length_max'])
        self.rng = rng or random.Random()

    def _call(self, func, *args, **kwargs):
        try:
            return Outcome.success(func(*args, **kwargs))
        except LedgerError as e:
            return Outcome.failure(e.code)

    ### Races ###

    def acquire_race(self) -> Outcome:
        """Returns the active race, creating a fresh one with random entrants if there is none."""
        glyphs = pick_glyphs(self.entrants, self.rng)
        track_length = random_track_length(self.rng, *self.track_length_range)
        try:
            race, created = self.store.acquire_race(track_length, glyphs)
            entrants = self.store.list_entrants(race['id'])
        except LedgerError as e:
            logging.warning(f"Race acquisition failed: {e.code}")
            return Outcome.failure(e.code)
        if not created:
            logging.info(f"Reusing active race #{race['id']} ({race['status']}).")
        return Outcome.success({"race": race, "entrants": entrants, "created": created})

    def new_race(self) -> Outcome:
        return self.acquire_race()

    def start_race(self) -> Outcome:
        """Locks betting on the open race. The value is the race id."""
        try:
            race = self.store.get_open_race()
            if race is None or not self.store.lock_betting(race['id']):
                return Outcome.failure("no_open_race")
        except LedgerError as e:
            return Outcome.failure(e.code)
        return Outcome.success(race['id'])

    def open_race(self) -> Outcome:
        try:
            race = self.store.get_open_race()
            if race is None:
                return Outcome.success({"race": None, "entrants": [], "pools": {}})
            entrants = self.store.list_entrants(race['id'])
            pools = self.store.get_race_pools(race['id'])
        except LedgerError as e:
            return Outcome.failure(e.code)
        return Outcome.success({"race": race, "entrants": entrants, "pools": pools})

    def pools(self, race_id: int) -> Outcome:
        """Total staked per slot on `race_id`, whatever its status."""
        return self._call(self.store.get_race_pools, race_id)

    ### Bets ###

    def place_bet(self, user, slot, amount) -> Outcome:
        """
        Validates and places a bet on the open race. The value is the new balance.
        Errors: bad_input, no_open_race, insufficient_balance, ledger_unavailable.
        """
        if not isinstance(user, str) or not user.strip():
            return Outcome.failure("bad_input")
        if not _is_int(slot) or not _is_int(amount) or amount <= 0 or slot < 0:
            return Outcome.failure("bad_input")

        user = user.strip()
        try:
            race = self.store.get_open_race()
            if race is None:
                return Outcome.failure("no_open_race")
            if slot >= len(self.store.list_entrants(race['id'])):
                return Outcome.failure("bad_input")
            balance = self.store.place_bet(race['id'], user, slot, amount, self.starting_balance)
        except LedgerError as e:
            return Outcome.failure(e.code)
        return Outcome.success(balance)

    def settle(self, winning_slot, race_id: int = None) -> Outcome:
        """
        Settles the racing race (or `race_id`) for `winning_slot`.
        The value is {"race_id", "summary"}.
        Errors: bad_winner, no_racing_race, already_settled, ledger_unavailable.
        """
        if not _is_int(winning_slot) or winning_slot < 0:
            return Outcome.failure("bad_winner")
        if race_id is not None and not _is_int(race_id):
            return Outcome.failure("bad_input")

        try:
            race = self.store.get_race(race_id) if race_id is not None else self.store.get_racing_race()
            if race is None:
                return Outcome.failure("no_racing_race")
            if winning_slot >= len(self.store.list_entrants(race['id'])):
                return Outcome.failure("bad_winner")
            summary = self.store.settle_race(race['id'], winning_slot, self.house_cut)
        except LedgerError as e:
            logging.warning(f"Settlement of race (winner {winning_slot}) rejected: {e.code}")
            return Outcome.failure(e.code)
        return Outcome.success({"race_id": race['id'], "summary": summary})

    def log_race_events(self, race_id: int, events) -> Outcome:
        """Writes the simulation's (tick, slot, label) events to the audit log."""
        return self._call(self.store.log_race_events, race_id, events)

    ### Players ###

    def balance(self, user) -> Outcome:
        if not isinstance(user, str) or not user.strip():
            return Outcome.failure("missing_user")
        return self._call(self.store.create_player_if_absent, user.strip(), self.starting_balance)

    def leaderboard(self, limit: int = None) -> Outcome:
        return self._call(self.store.get_leaderboard, limit)
