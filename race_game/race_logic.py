# race_game/race_logic.py
import math
import random
from dataclasses import dataclass, field, fields, replace
from typing import Dict, List, Optional, Tuple

from race_game.events import apply_event, clamp, draw_event
from settings import BALANCE_CONFIG


@dataclass(frozen=True)
class RaceTuning:
    """Every knob of the simulation and the display-odds heuristic."""
    base_velocity_min: float
    base_velocity_max: float
    accel_min: float
    accel_max: float
    min_velocity: float
    max_velocity: float
    event_chance: float
    event_cooldown_ticks: int
    shield_duration_ticks: int
    badge_ticks: int
    boost_velocity: float
    gust_velocity: float
    slow_velocity: float
    stumble_velocity: float
    warp_min: float
    warp_max: float
    surge_min: float
    surge_max: float
    event_weights: Dict[str, float] = field(default_factory=dict)
    signal_limit: float = 1.0
    signal_decay: float = 0.97
    noise_sigma: float = 0.15
    progress_weight: float = 4.0
    signal_weight: float = 0.8
    comeback_weight: float = 1.5
    temperature: float = 1.0

    @classmethod
    def from_config(cls, config: dict = None) -> "RaceTuning":
        config = config or BALANCE_CONFIG
        known = {f.name for f in fields(cls)}
        merged = {**config['simulation'], **config['odds']}
        return cls(**{key: value for key, value in merged.items() if key in known})


@dataclass(frozen=True)
class HorseState:
    position: float
    velocity: float
    shield_ticks: int = 0
    cooldown_ticks: int = 0
    badge: Optional[str] = None
    badge_ticks: int = 0
    signal: float = 0.0  # display-odds accumulator, never used for movement
    noise: float = 0.0


@dataclass(frozen=True)
class RaceState:
    track_length: int
    horses: Tuple[HorseState, ...]
    tick: int = 0
    winner: Optional[int] = None

    @property
    def finished(self) -> bool:
        return self.winner is not None

    @property
    def positions(self) -> List[float]:
        return [h.position for h in self.horses]

    @property
    def badges(self) -> Dict[int, str]:
        """Labels currently on display, keyed by slot."""
        return {slot: h.badge for slot, h in enumerate(self.horses) if h.badge}


@dataclass(frozen=True)
class TickResult:
    state: RaceState
    events: Tuple[Tuple[int, str], ...]  # (slot, label) fired this tick
    winner: Optional[int]


class RaceEngine:
    """
    Steppable race simulation. `step` returns a new state and never touches the
    one it was given, so any number of observers can hold older states safely.
    """

    def __init__(self, tuning: RaceTuning = None, rng=None):
        self.tuning = tuning or RaceTuning.from_config()
        self.rng = rng or random.Random()

    def initial(self, n: int, track_length: int) -> RaceState:
        if n < 1:
            raise ValueError("A race needs at least one entrant.")
        if track_length <= 0:
            raise ValueError("Track length must be positive.")
        t = self.tuning
        horses = tuple(
            HorseState(
                position=0.0,
                velocity=clamp(self.rng.uniform(t.base_velocity_min, t.base_velocity_max),
                               t.min_velocity, t.max_velocity),
                noise=self.rng.gauss(0.0, t.noise_sigma) if t.noise_sigma > 0 else 0.0,
            )
            for _ in range(n)
        )
        return RaceState(track_length=track_length, horses=horses)

    def max_ticks(self, track_length: int) -> int:
        """Upper bound on ticks before someone finishes: every tick advances by at least min_velocity."""
        return math.ceil(track_length / self.tuning.min_velocity) + 1

    def _roll_event(self, horse: HorseState):
        if horse.cooldown_ticks > 0:
            return replace(horse, cooldown_ticks=horse.cooldown_ticks - 1), None, 0.0

        name = draw_event(self.tuning, self.rng)
        if name is None:
            return horse, None, 0.0

        changes, label, signal_delta = apply_event(name, horse, self.tuning, self.rng)
        horse = replace(horse, cooldown_ticks=self.tuning.event_cooldown_ticks, **changes)
        return horse, label, signal_delta

    def _advance(self, horse: HorseState, track_length: int):
        t = self.tuning

        # 1. Jitter
        velocity = clamp(horse.velocity + self.rng.uniform(t.accel_min, t.accel_max),
                         t.min_velocity, t.max_velocity)
        horse = replace(horse, velocity=velocity)

        # 2. Event roll (at most one per tick)
        horse, label, signal_delta = self._roll_event(horse)

        # 3. Shield decay
        if horse.shield_ticks > 0:
            horse = replace(horse, shield_ticks=horse.shield_ticks - 1)

        # 4. Advance and clamp to the line
        position = min(horse.position + horse.velocity, track_length)

        if label:
            badge, badge_ticks = label, t.badge_ticks
        elif horse.badge_ticks > 0:
            badge, badge_ticks = horse.badge, horse.badge_ticks - 1
        else:
            badge, badge_ticks = None, 0

        signal = clamp(horse.signal * t.signal_decay + signal_delta, -t.signal_limit, t.signal_limit)
        horse = replace(horse, position=position, badge=badge, badge_ticks=badge_ticks, signal=signal)
        return horse, label

    def step(self, state: RaceState) -> TickResult:
        if state.finished:
            raise ValueError("Race already has a winner.")

        horses = []
        events = []
        for slot, horse in enumerate(state.horses):
            horse, label = self._advance(horse, state.track_length)
            horses.append(horse)
            if label:
                events.append((slot, label))

        # Ties go to the lowest slot, not the furthest position.
        winner = next((slot for slot, h in enumerate(horses) if h.position >= state.track_length), None)
        new_state = RaceState(
            track_length=state.track_length,
            horses=tuple(horses),
            tick=state.tick + 1,
            winner=winner,
        )
        return TickResult(new_state, tuple(events), winner)

    def run(self, state: RaceState):
        """Yields every TickResult until the race has a winner."""
        while not state.finished:
            result = self.step(state)
            yield result
            state = result.state
